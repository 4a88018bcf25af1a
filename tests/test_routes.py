from conftest import ADDRESS, get_sample, get_supply
from samplechain.models import Shipment


def shipment_request(**overrides):
    data = {
        'recipient_name': 'Dana Reyes',
        'recipient_phone': '5125550100',
        'recipient_email': 'dana@example.com',
        'address': dict(ADDRESS),
        'items': [
            {'lot_number': 'LOT-A', 'quantity': '3'},
            {'lot_number': 'LOT-B', 'quantity': 2},
        ],
    }
    data.update(overrides)
    return data


def create(client, **overrides):
    response = client.post('/api/shipments', json=shipment_request(**overrides))
    assert response.status_code == 201, response.get_json()
    return response.get_json()['shipment']


def test_login_and_logout(client):
    response = client.post('/auth/login', json={'username': 'staff', 'password': 'wrong'})
    assert response.status_code == 401

    response = client.post('/auth/login', json={'username': 'staff', 'password': 'staff'})
    assert response.status_code == 200
    assert response.get_json()['user']['role'] == 'lab_staff'

    assert client.post('/auth/logout').status_code == 200
    assert client.get('/api/supplies').status_code == 401


def test_login_requires_fields(client):
    response = client.post('/auth/login', json={'username': 'staff'})
    assert response.status_code == 400
    assert 'password' in response.get_json()['details']


def test_authentication_required(client):
    """Protected endpoints answer 401 JSON, not a redirect."""
    for method, url in (
        ('post', '/api/shipments'),
        ('get', '/api/shipments/1'),
        ('get', '/api/processing/shipments'),
        ('post', '/api/processing/shipments/1/claim'),
        ('get', '/api/supplies'),
    ):
        response = getattr(client, method)(url, json={})
        assert response.status_code == 401
        assert response.get_json()['error'] == 'unauthorized'


def test_requester_cannot_fulfill(requester_client):
    shipment = create(requester_client)
    for url in (
        '/api/processing/shipments',
        '/api/supplies',
    ):
        assert requester_client.get(url).status_code == 403
    response = requester_client.post(f"/api/processing/shipments/{shipment['id']}/claim")
    assert response.status_code == 403
    assert response.get_json()['error'] == 'forbidden'


def test_create_shipment(app, requester_client):
    shipment = create(requester_client)
    assert shipment['status'] == 'initiated'
    assert shipment['amount_shipped'] == '5'
    assert shipment['unit'] == 'g'
    assert [line['lot_number'] for line in shipment['samples']] == ['LOT-A', 'LOT-B']
    assert shipment['recipient']['formatted_address'] == '500 Congress Ave, Austin, TX 78701, US'

    with app.app_context():
        assert get_sample('LOT-A').quantity == '2g'
        assert get_sample('LOT-B').status == 'depleted'


def test_create_shipment_with_legacy_address(requester_client):
    shipment = create(requester_client, address=None, delivery_address='77 Elm St, Boston, MA 02110')
    assert shipment['recipient']['address']['city'] == 'Boston'


def test_create_shipment_validation_errors(app, requester_client):
    response = requester_client.post('/api/shipments', json=shipment_request(recipient_phone=''))
    assert response.status_code == 400
    body = response.get_json()
    assert body['error'] == 'validation_error'
    assert 'recipient_phone' in body['details']['fields']

    items = [{'lot_number': 'LOT-A', 'quantity': '0.1'}] * 11
    response = requester_client.post('/api/shipments', json=shipment_request(items=items))
    assert response.status_code == 400

    response = requester_client.post('/api/shipments', json=shipment_request(items=[{'quantity': '1'}]))
    assert response.status_code == 400

    response = requester_client.post('/api/shipments', json=shipment_request(address=None))
    assert response.status_code == 400

    with app.app_context():
        assert Shipment.query.count() == 0
        assert get_sample('LOT-A').quantity == '5g'


def test_create_shipment_insufficient_inventory(app, requester_client):
    response = requester_client.post('/api/shipments', json=shipment_request(items=[
        {'lot_number': 'LOT-A', 'quantity': '3'},
        {'lot_number': 'LOT-B', 'quantity': '2.5'},
    ]))
    assert response.status_code == 409
    body = response.get_json()
    assert body['error'] == 'insufficient_inventory'
    assert body['details']['lot_number'] == 'LOT-B'
    assert body['details']['available'] == '2'

    with app.app_context():
        assert get_sample('LOT-A').quantity == '5g'


def test_unknown_sample_is_404(requester_client):
    response = requester_client.post('/api/shipments', json=shipment_request(items=[
        {'lot_number': 'LOT-NOPE', 'quantity': '1'},
    ]))
    assert response.status_code == 404
    assert response.get_json()['details']['lot_number'] == 'LOT-NOPE'


def test_shipment_visible_to_owner_and_staff(app, requester_client, staff_client):
    shipment = create(requester_client)
    assert requester_client.get(f"/api/shipments/{shipment['id']}").status_code == 200
    assert staff_client.get(f"/api/shipments/{shipment['id']}").status_code == 200

    other = app.test_client()
    other.post('/auth/login', json={'username': 'other', 'password': 'other'})
    assert other.get(f"/api/shipments/{shipment['id']}").status_code == 403
    assert requester_client.get('/api/shipments/999').status_code == 404


def test_fulfillment_workflow(app, requester_client, staff_client, carrier):
    shipment = create(requester_client)
    base = f"/api/processing/shipments/{shipment['id']}"

    queue = staff_client.get('/api/processing/shipments').get_json()
    assert [s['id'] for s in queue['shipments']] == [shipment['id']]

    assert staff_client.post(f'{base}/claim').get_json()['shipment']['status'] == 'processing'

    with app.app_context():
        shipper_id = get_supply('Insulated shipper').id
    response = staff_client.post(f'{base}/record-supplies', json={
        'supplies_used': [{'supply_id': shipper_id, 'quantity_used': 1}],
    })
    assert response.status_code == 200

    response = staff_client.post(f'{base}/ship', json={'weight': '2.5', 'service_type': 'FEDEX_2_DAY'})
    assert response.status_code == 200
    shipped = response.get_json()['shipment']
    assert shipped['status'] == 'shipped'
    assert shipped['tracking_number'] == 'FAKE00000001'
    assert shipped['supplies_used'] == [{'supply_id': shipper_id, 'name': 'Insulated shipper',
                                         'quantity_used': 1}]
    assert carrier.labels[0]['service'] == 'FEDEX_2_DAY'

    carrier.tracking_status = 'delivered'
    response = staff_client.post(f'{base}/poll-tracking')
    assert response.get_json()['shipment']['status'] == 'delivered'
    response = staff_client.post(f'{base}/poll-tracking')
    assert response.status_code == 200
    assert response.get_json()['tracking'] is None

    events = requester_client.get(f"/api/shipments/{shipment['id']}/custody").get_json()['events']
    assert [e['event_type'] for e in events] == [
        'created', 'processing_started', 'packed', 'label_generated', 'shipped', 'delivered'
    ]


def test_mark_shipped_without_tracking_number(requester_client, staff_client):
    shipment = create(requester_client)
    base = f"/api/processing/shipments/{shipment['id']}"
    staff_client.post(f'{base}/claim')

    response = staff_client.post(f'{base}/mark-shipped', json={'carrier': 'ups'})
    assert response.status_code == 409
    assert response.get_json()['error'] == 'invalid_transition'

    response = staff_client.post(f'{base}/mark-shipped', json={'tracking_number': '1Z999', 'carrier': 'ups'})
    assert response.status_code == 400
    assert response.get_json()['details']['field'] == 'supplies_used'

    response = staff_client.post(f'{base}/mark-shipped', json={
        'tracking_number': '1Z999',
        'carrier': 'ups',
        'supplies_used': [{'supply_id': 1, 'quantity_used': 1}],
    })
    assert response.status_code == 200
    assert response.get_json()['shipment']['status'] == 'shipped'


def test_carrier_outage_is_retryable(requester_client, staff_client, carrier):
    shipment = create(requester_client)
    base = f"/api/processing/shipments/{shipment['id']}"
    staff_client.post(f'{base}/claim')
    carrier.fail = True

    response = staff_client.post(f'{base}/ship', json={
        'weight': '1',
        'supplies_used': [{'supply_id': 1, 'quantity_used': 1}],
    })
    assert response.status_code == 503
    assert response.get_json()['retryable'] is True
    assert staff_client.get(f"/api/shipments/{shipment['id']}").get_json()['shipment']['status'] == 'processing'


def test_hazmat_flag_and_labels(requester_client, staff_client):
    shipment = create(requester_client)
    base = f"/api/processing/shipments/{shipment['id']}"

    response = staff_client.post(f'{base}/print-warning-labels')
    assert response.status_code == 404

    response = staff_client.post(f'{base}/flag-hazmat', json={
        'un_number': 'UN1993', 'proper_shipping_name': 'Flammable liquid, n.o.s.', 'hazard_class': '3',
    })
    assert response.status_code == 200
    assert response.get_json()['dg_declaration']['un_number'] == 'UN1993'

    response = staff_client.post(f'{base}/print-warning-labels')
    assert response.get_json()['dg_declaration']['warning_labels_printed'] is True

    detail = staff_client.get(f"/api/shipments/{shipment['id']}").get_json()['shipment']
    assert detail['is_hazmat'] is True
    assert detail['declaration']['warning_labels_printed'] is True


def test_supplies_endpoints(staff_client, logistics_client):
    supplies = staff_client.get('/api/supplies').get_json()['supplies']
    assert {s['name'] for s in supplies} == {'Insulated shipper', 'Dry ice pack'}

    low = staff_client.get('/api/supplies/low-stock').get_json()
    assert low['count'] == 1
    dry_ice_id = low['supplies'][0]['id']

    # Restocking is a logistics task
    assert staff_client.post(f'/api/supplies/{dry_ice_id}/restock', json={'quantity': 5}).status_code == 403

    response = logistics_client.post(f'/api/supplies/{dry_ice_id}/restock', json={'quantity': 5})
    assert response.status_code == 200
    assert response.get_json()['supply']['current_quantity'] == 8

    response = logistics_client.post(f'/api/supplies/{dry_ice_id}/restock', json={'quantity': -1})
    assert response.status_code == 400


def test_carrier_endpoints(requester_client, staff_client):
    response = requester_client.post('/api/carrier/validate-address', json={'address': dict(ADDRESS)})
    assert response.status_code == 200
    assert response.get_json()['valid'] is True

    response = staff_client.post('/api/carrier/rate', json={
        'delivery_address': '77 Elm St, Boston, MA 02110',
        'weight': '3',
    })
    assert response.status_code == 200
    assert response.get_json() == {'rate': '18.75', 'currency': 'USD', 'service_type': 'FEDEX_GROUND'}

    response = staff_client.post('/api/carrier/rate', json={'address': dict(ADDRESS), 'weight': '0'})
    assert response.status_code == 400
