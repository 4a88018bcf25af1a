from flask import current_app, jsonify, request
from flask_login import current_user, login_required

from samplechain import address as addresses
from samplechain.api import bp
from samplechain.api.forms import (
    AddressValidationForm, HazmatForm, MarkShippedForm, RateForm,
    RecordSuppliesForm, RestockForm, ShipForm, ShipmentRequestForm
)
from samplechain.auth.decorators import roles_required, staff_required
from samplechain.carrier import get_carrier, ship_from_address
from samplechain.errors import ValidationError
from samplechain.extensions import limiter
from samplechain.services import custody, fulfillment, shipments, supplies


def bind(form_class):
    """Bind the JSON body to ``form_class`` and validate it."""
    payload = request.get_json(silent=True)
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError('Request body must be a JSON object')
    form = form_class(formdata=None, data=payload)
    if not form.validate():
        raise ValidationError('Invalid request', fields=form.errors)
    return form


def shipment_payload(shipment):
    data = shipment.to_dict()
    data['declaration'] = shipment.declaration.to_dict() if shipment.declaration else None
    data['supplies_used'] = [usage.to_dict() for usage in shipment.supply_usages]
    return data


@bp.route('/shipments', methods=['POST'])
@login_required
@limiter.limit("30 per minute")
def create_shipment():
    form = bind(ShipmentRequestForm)
    shipment = shipments.create_shipment(
        actor=current_user,
        recipient=form.recipient(),
        items=form.items.data,
        address=form.address.data,
        legacy_address=form.delivery_address.data,
        scheduling={
            'scheduled_ship_date': form.ship_date(),
            'special_instructions': form.special_instructions.data,
        }
    )
    return jsonify({'shipment': shipment.to_dict()}), 201


@bp.route('/shipments/<int:shipment_id>', methods=['GET'])
@login_required
def get_shipment(shipment_id):
    shipment = shipments.get_shipment(shipment_id)
    if shipment.requested_by_id != current_user.id and not current_user.can_fulfill():
        return jsonify({'error': 'forbidden', 'message': 'Not your shipment.'}), 403
    return jsonify({'shipment': shipment_payload(shipment)})


@bp.route('/shipments/<int:shipment_id>/custody', methods=['GET'])
@login_required
def shipment_custody(shipment_id):
    shipment = shipments.get_shipment(shipment_id)
    if shipment.requested_by_id != current_user.id and not current_user.can_fulfill():
        return jsonify({'error': 'forbidden', 'message': 'Not your shipment.'}), 403
    events = custody.history(shipment.id)
    return jsonify({
        'shipment_id': shipment.id,
        'shipment_number': shipment.shipment_number,
        'events': [event.to_dict() for event in events],
    })


@bp.route('/processing/shipments', methods=['GET'])
@staff_required
def processing_queue():
    include_claimed = request.args.get('include_claimed', 'false').lower() == 'true'
    queue = shipments.processing_queue(include_claimed=include_claimed)
    return jsonify({
        'shipments': [shipment.to_dict() for shipment in queue],
        'count': len(queue),
    })


@bp.route('/processing/shipments/<int:shipment_id>/claim', methods=['POST'])
@staff_required
def claim_shipment(shipment_id):
    shipment = fulfillment.claim(shipment_id, current_user)
    return jsonify({'shipment': shipment.to_dict()})


@bp.route('/processing/shipments/<int:shipment_id>/record-supplies', methods=['POST'])
@staff_required
@limiter.limit("30 per minute")
def record_supplies(shipment_id):
    form = bind(RecordSuppliesForm)
    transactions = fulfillment.record_supplies(shipment_id, form.supplies_used.data, current_user)
    return jsonify({'transactions': [t.to_dict() for t in transactions]})


@bp.route('/processing/shipments/<int:shipment_id>/ship', methods=['POST'])
@staff_required
@limiter.limit("10 per minute")
def ship_shipment(shipment_id):
    form = bind(ShipForm)
    shipment = fulfillment.ship(
        shipment_id,
        current_user,
        form.package(),
        supplies=form.supplies_used.data or None
    )
    return jsonify({'shipment': shipment_payload(shipment)})


@bp.route('/processing/shipments/<int:shipment_id>/mark-shipped', methods=['POST'])
@staff_required
def mark_shipped(shipment_id):
    form = bind(MarkShippedForm)
    shipment = fulfillment.mark_shipped(
        shipment_id,
        current_user,
        form.tracking_number.data,
        carrier_name=form.carrier.data,
        cost=form.shipping_cost.data,
        supplies=form.supplies_used.data or None
    )
    return jsonify({'shipment': shipment_payload(shipment)})


@bp.route('/processing/shipments/<int:shipment_id>/poll-tracking', methods=['POST'])
@staff_required
@limiter.limit("60 per minute")
def poll_tracking(shipment_id):
    shipment, info = fulfillment.poll_tracking(shipment_id, current_user)
    return jsonify({
        'shipment': shipment.to_dict(include_lines=False),
        'tracking': info._asdict() if info else None,
    })


@bp.route('/processing/shipments/<int:shipment_id>/flag-hazmat', methods=['POST'])
@staff_required
def flag_hazmat(shipment_id):
    form = bind(HazmatForm)
    details = {name: field.data for name, field in form._fields.items()}
    declaration = fulfillment.flag_hazmat(shipment_id, details, current_user)
    return jsonify({
        'message': 'Shipment flagged as hazmat and DG declaration created',
        'dg_declaration': declaration.to_dict(),
    })


@bp.route('/processing/shipments/<int:shipment_id>/print-warning-labels', methods=['POST'])
@staff_required
def print_warning_labels(shipment_id):
    declaration = fulfillment.print_warning_labels(shipment_id, current_user)
    return jsonify({
        'message': 'Warning labels marked as printed',
        'dg_declaration': declaration.to_dict(),
    })


@bp.route('/supplies', methods=['GET'])
@staff_required
def list_supplies():
    return jsonify({'supplies': [supply.to_dict() for supply in supplies.all_supplies()]})


@bp.route('/supplies/low-stock', methods=['GET'])
@staff_required
def low_stock_supplies():
    low = supplies.low_stock()
    return jsonify({'supplies': [supply.to_dict() for supply in low], 'count': len(low)})


@bp.route('/supplies/<int:supply_id>/restock', methods=['POST'])
@roles_required('logistics', 'admin')
def restock_supply(supply_id):
    form = bind(RestockForm)
    transaction = supplies.restock(supply_id, form.quantity.data, current_user, notes=form.notes.data)
    return jsonify({'transaction': transaction.to_dict(), 'supply': transaction.supply.to_dict()})


@bp.route('/carrier/validate-address', methods=['POST'])
@login_required
@limiter.limit("30 per minute")
def validate_address():
    form = bind(AddressValidationForm)
    address = addresses.resolve(form.address.data, form.delivery_address.data)
    result = get_carrier().validate_address(address)
    return jsonify({
        'valid': result.valid,
        'corrected_address': result.corrected_address._asdict() if result.corrected_address else None,
        'warning': result.warning,
    })


@bp.route('/carrier/rate', methods=['POST'])
@staff_required
@limiter.limit("30 per minute")
def quote_rate():
    form = bind(RateForm)
    destination = addresses.resolve(form.address.data, form.delivery_address.data)
    weight = fulfillment.package_weight({'weight': form.weight.data})
    service = form.service_type.data or current_app.config['CARRIER_DEFAULT_SERVICE']
    quote = get_carrier().quote_rate(
        ship_from_address(current_app.config),
        destination,
        weight,
        service,
        weight_unit=(form.weight_unit.data or 'LB').upper()
    )
    return jsonify({'rate': str(quote.rate), 'currency': quote.currency, 'service_type': service})
