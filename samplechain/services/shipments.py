# samplechain/services/shipments.py

import threading
import time
from collections import namedtuple
from decimal import Decimal

from flask import current_app

from samplechain import address as addresses
from samplechain import hazmat
from samplechain import quantity as qty
from samplechain.extensions import db
from samplechain.errors import (
    InsufficientInventory, InsufficientQuantity, NotFoundError, ValidationError
)
from samplechain.models import Sample, Shipment, ShipmentSample
from samplechain.notifications import notify
from samplechain.services import atomic
from samplechain.services import custody

# One validated request line, resolved against its sample
LineItem = namedtuple('LineItem', ['sample', 'amount', 'unit', 'override'])

_number_lock = threading.Lock()
_last_stamp = 0


def generate_shipment_number():
    """Time-derived shipment number, strictly increasing within a process."""
    global _last_stamp
    with _number_lock:
        stamp = max(time.time_ns(), _last_stamp + 1)
        _last_stamp = stamp
    return f'SHP-{stamp}'


def _find_sample(item, session):
    sample_id = item.get('sample_id')
    lot_number = item.get('lot_number')
    if sample_id not in (None, ''):
        try:
            sample_id = int(sample_id)
        except (ValueError, TypeError):
            raise ValidationError('sample_id must be an integer', field='sample_id', value=str(sample_id))
        sample = session.get(Sample, sample_id)
        if sample is None:
            raise NotFoundError(f'Sample {sample_id} not found', sample_id=sample_id)
        return sample
    if lot_number:
        lot_number = str(lot_number).strip()
        sample = session.query(Sample).filter_by(lot_number=lot_number).first()
        if sample is None:
            raise NotFoundError(f'Sample lot {lot_number} not found', lot_number=lot_number)
        return sample
    raise ValidationError('Each item needs a sample_id or lot_number', field='items')


def _validate_recipient(recipient):
    recipient = {k: (v.strip() if isinstance(v, str) else v) for k, v in (recipient or {}).items()}
    if not recipient.get('name'):
        raise ValidationError('Recipient name is required', field='recipient_name')
    # The carrier refuses labels without a recipient phone number
    if not recipient.get('phone'):
        raise ValidationError('Recipient phone is required', field='recipient_phone')
    return recipient


def validate_items(items, session=None):
    """Resolve request items to LineItems without writing anything.

    Raises:
        ValidationError: wrong item count, bad amount, inactive or repeated
            sample, or mixed units
        NotFoundError: a sample does not exist
    """
    session = session or db.session
    max_items = current_app.config['MAX_SHIPMENT_ITEMS']
    default_unit = current_app.config['DEFAULT_QUANTITY_UNIT']

    if not items:
        raise ValidationError('At least one sample is required', field='items')
    if len(items) > max_items:
        raise ValidationError(
            f'A shipment holds at most {max_items} samples',
            field='items',
            count=len(items)
        )

    lines = []
    seen = set()
    for position, item in enumerate(items):
        sample = _find_sample(item, session)
        if sample.id in seen:
            raise ValidationError(
                f'Sample {sample.lot_number} is listed more than once',
                sample_id=sample.id,
                lot_number=sample.lot_number
            )
        seen.add(sample.id)
        if not sample.is_active():
            raise ValidationError(
                f'Sample {sample.lot_number} is {sample.status}, only active samples can ship',
                sample_id=sample.id,
                lot_number=sample.lot_number,
                status=sample.status
            )
        amount = qty.to_amount(item.get('quantity'), f'items[{position}].quantity')
        unit = (item.get('unit') or sample.unit or default_unit).strip()
        if sample.unit and sample.unit.lower() != unit.lower():
            raise ValidationError(
                f'Sample {sample.lot_number} is stocked in {sample.unit}, not {unit}',
                sample_id=sample.id,
                lot_number=sample.lot_number,
                unit=unit
            )
        override = {field: item.get(field) for field in hazmat.HAZARD_FIELDS if item.get(field)}
        lines.append(LineItem(sample, amount, unit, override))

    units = {line.unit.lower() for line in lines}
    if len(units) > 1:
        raise ValidationError(
            'All samples in a shipment must use the same unit',
            field='items',
            units=sorted(units)
        )
    return lines


def _lock_samples(lines, session):
    ids = [line.sample.id for line in lines]
    locked = session.query(Sample)\
        .filter(Sample.id.in_(ids))\
        .with_for_update()\
        .populate_existing()\
        .all()
    return {sample.id: sample for sample in locked}


def _verify_sufficiency(lines, locked):
    """Check every line against the locked rows before any debit."""
    for line in lines:
        sample = locked.get(line.sample.id)
        if sample is None:
            raise NotFoundError(f'Sample {line.sample.id} not found', sample_id=line.sample.id)
        if not sample.is_active():
            raise ValidationError(
                f'Sample {sample.lot_number} is {sample.status}, only active samples can ship',
                sample_id=sample.id,
                lot_number=sample.lot_number,
                status=sample.status
            )
        try:
            qty.debit(sample.quantity, line.amount)
        except InsufficientQuantity as e:
            raise InsufficientInventory(
                f'Insufficient inventory for lot {sample.lot_number}',
                sample_id=sample.id,
                lot_number=sample.lot_number,
                **e.details
            ) from e


def create_shipment(actor, recipient, items, address=None, legacy_address=None, scheduling=None,
                    session=None, notifier=notify, number_factory=generate_shipment_number):
    """Create a multi-sample shipment and debit its samples in one transaction.

    Args:
        actor: authenticated User placing the request
        recipient: dict with name, phone and optional email/company
        items: list of dicts naming a sample (``sample_id`` or ``lot_number``),
            a ``quantity``, an optional ``unit`` and optional hazard overrides
        address: structured destination fields
        legacy_address: single-string destination, used when ``address`` is empty
        scheduling: optional dict with ``scheduled_ship_date`` and
            ``special_instructions``

    Returns:
        Shipment: the committed shipment, status ``initiated``
    """
    session = session or db.session
    scheduling = scheduling or {}

    recipient = _validate_recipient(recipient)
    destination = addresses.resolve(address, legacy_address)
    lines = validate_items(items, session)

    total = sum((line.amount for line in lines), Decimal('0'))
    unit = lines[0].unit
    hazards = [hazmat.effective_hazard(line.sample, line.override) for line in lines]
    classification = hazmat.classify(hazards, total, unit)

    with atomic(session, 'Shipment creation', lot_numbers=[line.sample.lot_number for line in lines]):
        locked = _lock_samples(lines, session)
        _verify_sufficiency(lines, locked)

        shipment = Shipment(
            shipment_number=number_factory(),
            status='initiated',
            amount_shipped=total,
            unit=unit,
            recipient_name=recipient['name'],
            recipient_phone=recipient['phone'],
            recipient_email=recipient.get('email') or None,
            recipient_company=recipient.get('company') or None,
            is_hazmat=classification.is_hazmat,
            requires_dg_declaration=classification.requires_declaration,
            scheduled_ship_date=scheduling.get('scheduled_ship_date'),
            special_instructions=scheduling.get('special_instructions') or None,
            requested_by_id=actor.id
        )
        shipment.address = destination
        session.add(shipment)
        session.flush()

        for line, hazard in zip(lines, hazards):
            sample = locked[line.sample.id]
            session.add(ShipmentSample(
                shipment=shipment,
                sample_id=sample.id,
                quantity_requested=line.amount,
                unit=line.unit,
                un_number=hazard['un_number'],
                hazard_class=hazard['hazard_class']
            ))
            sample.apply_debit(line.amount, line.unit)

        note = f'Shipment created: {len(lines)} sample(s), total {qty.format_magnitude(total)}{unit}'
        if classification.is_hazmat:
            note += f' (hazmat: {", ".join(classification.reasons)})'
        custody.append(shipment, 'created', actor, notes=note, session=session)

    current_app.logger.info(
        f'Shipment {shipment.shipment_number} created by {actor.username}: '
        f'{len(lines)} line(s), {qty.format_magnitude(total)}{unit}, hazmat={shipment.is_hazmat}'
    )
    notifier(actor, 'shipment_created', {
        'shipment_id': shipment.id,
        'shipment_number': shipment.shipment_number,
        'line_count': len(lines),
    })
    return shipment


def get_shipment(shipment_id, session=None):
    session = session or db.session
    shipment = session.get(Shipment, shipment_id)
    if shipment is None:
        raise NotFoundError(f'Shipment {shipment_id} not found', shipment_id=shipment_id)
    return shipment


def processing_queue(include_claimed=False, session=None):
    """Shipments waiting for the lab, oldest first.

    Legacy ``pending`` shipments are listed with ``initiated`` ones.
    """
    session = session or db.session
    statuses = list(Shipment.UNPROCESSED_STATUSES)
    if include_claimed:
        statuses.append('processing')
    return session.query(Shipment)\
        .filter(Shipment.status.in_(statuses))\
        .order_by(Shipment.created_at.asc(), Shipment.id.asc())\
        .all()
