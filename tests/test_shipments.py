from decimal import Decimal

import pytest
from conftest import ADDRESS, RECIPIENT, get_sample, get_user
from samplechain.errors import (
    ConflictError, InsufficientInventory, NotFoundError, ValidationError
)
from samplechain.extensions import db
from samplechain.models import ChainOfCustodyEvent, Sample, Shipment, ShipmentSample
from samplechain.services import custody, shipments


def test_two_samples_debited_together(app, make_shipment):
    with app.app_context():
        shipment = make_shipment([
            {'lot_number': 'LOT-A', 'quantity': '3'},
            {'lot_number': 'LOT-B', 'quantity': '2'},
        ])

        assert shipment.status == 'initiated'
        assert shipment.amount_shipped == Decimal('5')
        assert shipment.unit == 'g'
        assert len(shipment.lines) == 2

        lot_a = get_sample('LOT-A')
        lot_b = get_sample('LOT-B')
        assert lot_a.quantity == '2g'
        assert lot_a.status == 'active'
        assert lot_b.quantity == '0'
        assert lot_b.status == 'depleted'


def test_shortfall_aborts_whole_request(app, make_shipment):
    with app.app_context():
        db.session.add(Sample(lot_number='LOT-B1', chemical_name='Potassium nitrate', quantity='1g'))
        db.session.commit()

        with pytest.raises(InsufficientInventory) as exc:
            make_shipment([
                {'lot_number': 'LOT-A', 'quantity': '3'},
                {'lot_number': 'LOT-B1', 'quantity': '2'},
            ])
        assert exc.value.details['lot_number'] == 'LOT-B1'
        assert exc.value.details['available'] == '1'
        assert exc.value.details['requested'] == '2'

        assert get_sample('LOT-A').quantity == '5g'
        assert get_sample('LOT-B1').quantity == '1g'
        assert Shipment.query.count() == 0
        assert ShipmentSample.query.count() == 0
        assert ChainOfCustodyEvent.query.count() == 0


def test_line_amounts_sum_to_shipment_amount(app, make_shipment):
    with app.app_context():
        shipment = make_shipment([
            {'lot_number': 'LOT-A', 'quantity': '1.25'},
            {'lot_number': 'LOT-C', 'quantity': '0.5'},
        ])
        lines = ShipmentSample.query.filter_by(shipment_id=shipment.id).all()
        assert sum(line.quantity_requested for line in lines) == shipment.amount_shipped
        # Multi-container lots collapse to their remaining total
        assert get_sample('LOT-C').quantity == '4.32g'


def test_volume_over_threshold_is_hazmat(app, make_shipment):
    with app.app_context():
        shipment = make_shipment([{'lot_number': 'LOT-ML', 'quantity': '35'}])
        assert shipment.is_hazmat is True
        assert shipment.requires_dg_declaration is True


def test_small_volume_without_hazards_is_not_hazmat(app, make_shipment):
    with app.app_context():
        shipment = make_shipment([{'lot_number': 'LOT-ML', 'quantity': '10'}])
        assert shipment.is_hazmat is False


def test_hazard_override_is_persisted(app, make_shipment):
    with app.app_context():
        shipment = make_shipment([{'lot_number': 'LOT-A', 'quantity': '1', 'un_number': 'UN1993'}])
        assert shipment.is_hazmat is True
        assert shipment.lines[0].un_number == 'UN1993'


def test_hazmat_not_recomputed_when_sample_changes(app, make_shipment):
    with app.app_context():
        shipment = make_shipment([{'lot_number': 'LOT-HAZ', 'quantity': '1'}])
        sample = get_sample('LOT-HAZ')
        sample.un_number = None
        sample.hazard_class = None
        db.session.commit()
        assert db.session.get(Shipment, shipment.id).is_hazmat is True


def test_created_event_summarizes_request(app, make_shipment):
    with app.app_context():
        shipment = make_shipment([
            {'lot_number': 'LOT-A', 'quantity': '3'},
            {'lot_number': 'LOT-B', 'quantity': '2'},
        ])
        events = custody.history(shipment.id)
        assert [e.event_type for e in events] == ['created']
        assert '2 sample(s)' in events[0].notes
        assert 'total 5g' in events[0].notes
        assert events[0].performed_by_id == get_user('requester').id


def test_item_count_limits(app, make_shipment):
    with app.app_context():
        with pytest.raises(ValidationError):
            make_shipment([])
        with pytest.raises(ValidationError) as exc:
            make_shipment([{'lot_number': 'LOT-A', 'quantity': '0.1'}] * 11)
        assert exc.value.details['count'] == 11
        assert get_sample('LOT-A').quantity == '5g'


def test_same_sample_twice_rejected(app, make_shipment):
    with app.app_context():
        sample_id = get_sample('LOT-A').id
        with pytest.raises(ValidationError):
            make_shipment([
                {'lot_number': 'LOT-A', 'quantity': '1'},
                {'sample_id': sample_id, 'quantity': '1'},
            ])


def test_inactive_sample_rejected(app, make_shipment):
    with app.app_context():
        with pytest.raises(ValidationError) as exc:
            make_shipment([{'lot_number': 'LOT-Q', 'quantity': '1'}])
        assert exc.value.details['status'] == 'quarantined'


def test_unknown_sample(app, make_shipment):
    with app.app_context():
        with pytest.raises(NotFoundError):
            make_shipment([{'lot_number': 'NOPE', 'quantity': '1'}])
        with pytest.raises(NotFoundError):
            make_shipment([{'sample_id': 9999, 'quantity': '1'}])


def test_mixed_units_rejected(app, make_shipment):
    with app.app_context():
        with pytest.raises(ValidationError):
            make_shipment([
                {'lot_number': 'LOT-A', 'quantity': '1'},
                {'lot_number': 'LOT-ML', 'quantity': '1'},
            ])


@pytest.mark.parametrize('quantity', ['0', '-2', 'lots', None])
def test_invalid_amount_rejected(app, make_shipment, quantity):
    with app.app_context():
        with pytest.raises(ValidationError):
            make_shipment([{'lot_number': 'LOT-A', 'quantity': quantity}])


@pytest.mark.parametrize('field', ['name', 'phone'])
def test_recipient_name_and_phone_required(app, field):
    with app.app_context():
        recipient = dict(RECIPIENT, **{field: '  '})
        with pytest.raises(ValidationError):
            shipments.create_shipment(
                get_user('requester'), recipient, [{'lot_number': 'LOT-A', 'quantity': '1'}],
                address=dict(ADDRESS), notifier=lambda *a: None
            )


def test_legacy_address_accepted(app, make_shipment):
    with app.app_context():
        shipment = make_shipment(
            [{'lot_number': 'LOT-A', 'quantity': '1'}],
            address=None,
            legacy_address='77 Elm St, Boston, MA 02110'
        )
        assert shipment.destination_city == 'Boston'
        assert shipment.destination_state == 'MA'
        assert shipment.destination_postal_code == '02110'


def test_duplicate_shipment_number_is_conflict(app, make_shipment):
    with app.app_context():
        first = make_shipment([{'lot_number': 'LOT-A', 'quantity': '1'}])
        number = first.shipment_number

        with pytest.raises(ConflictError):
            make_shipment([{'lot_number': 'LOT-B', 'quantity': '1'}], number_factory=lambda: number)

        assert Shipment.query.count() == 1
        assert get_sample('LOT-B').quantity == '2g'


def test_shipment_numbers_increase():
    first = shipments.generate_shipment_number()
    second = shipments.generate_shipment_number()
    assert first != second
    assert int(second.split('-')[1]) > int(first.split('-')[1])


def test_notification_sent_after_commit(app, make_shipment):
    sent = []

    def notifier(recipient, template, data):
        # Committed before anyone is told
        assert Shipment.query.filter_by(shipment_number=data['shipment_number']).count() == 1
        sent.append((recipient.username, template, data))

    with app.app_context():
        make_shipment([{'lot_number': 'LOT-A', 'quantity': '1'}], notifier=notifier)
    assert sent[0][0] == 'requester'
    assert sent[0][1] == 'shipment_created'
    assert sent[0][2]['line_count'] == 1


def test_notification_failure_does_not_undo_shipment(app, make_shipment):
    with app.app_context():
        from samplechain.notifications import best_effort

        @best_effort
        def broken(recipient, template, data):
            raise RuntimeError('socket gone')

        shipment = make_shipment([{'lot_number': 'LOT-A', 'quantity': '1'}], notifier=broken)
        assert db.session.get(Shipment, shipment.id) is not None
        assert get_sample('LOT-A').quantity == '4g'


def test_processing_queue_includes_legacy_pending(app, make_shipment):
    with app.app_context():
        first = make_shipment([{'lot_number': 'LOT-A', 'quantity': '1'}])
        second = make_shipment([{'lot_number': 'LOT-B', 'quantity': '1'}])
        legacy = db.session.get(Shipment, second.id)
        legacy.status = 'pending'
        db.session.commit()

        queue = shipments.processing_queue()
        assert [s.id for s in queue] == [first.id, second.id]


def test_sub_milliliter_precision_rejected_before_debit(app, make_shipment):
    with app.app_context():
        with pytest.raises(ValidationError):
            make_shipment([{'lot_number': 'LOT-ML', 'quantity': '29.9996'}])
        assert get_sample('LOT-ML').quantity == '50ml'
        assert Shipment.query.count() == 0


@pytest.mark.parametrize('amount, expected', [('29.999', False), ('30.000', True)])
def test_stored_amount_matches_hazmat_flag(app, make_shipment, amount, expected):
    with app.app_context():
        shipment_id = make_shipment([{'lot_number': 'LOT-ML', 'quantity': amount}]).id
        db.session.expire_all()
        shipment = db.session.get(Shipment, shipment_id)
        assert shipment.amount_shipped == Decimal(amount)
        assert shipment.lines[0].quantity_requested == Decimal(amount)
        assert shipment.is_hazmat is expected


def test_sequential_debits_then_overdraw(app, make_shipment):
    with app.app_context():
        for amount in ('10', '15', '20'):
            make_shipment([{'lot_number': 'LOT-ML', 'quantity': amount}])
        assert get_sample('LOT-ML').quantity == '5ml'

        with pytest.raises(InsufficientInventory) as exc:
            make_shipment([{'lot_number': 'LOT-ML', 'quantity': '6'}])
        assert exc.value.details['available'] == '5'
        assert exc.value.details['requested'] == '6'

        db.session.expire_all()
        assert get_sample('LOT-ML').quantity == '5ml'
        assert Shipment.query.count() == 3
