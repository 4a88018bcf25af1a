# samplechain/services/fulfillment.py
"""Lab-side processing of shipments.

Shipments only move forward::

    initiated/pending -> processing -> shipped -> delivered

Carrier calls are made with no database transaction open; their results
are persisted afterwards in one transaction, so a failed call leaves the
shipment exactly as it was.
"""

from decimal import Decimal, InvalidOperation

from flask import current_app

from samplechain import hazmat
from samplechain import quantity as qty
from samplechain.carrier import get_carrier, ship_from_address
from samplechain.extensions import db
from samplechain.errors import (
    ConflictError, InvalidTransition, NotFoundError, SampleChainError, ValidationError
)
from samplechain.models import (
    DangerousGoodsDeclaration, Shipment, ShipmentTracking, ShippingSupply
)
from samplechain.notifications import notify
from samplechain.services import atomic
from samplechain.services import custody
from samplechain.services import supplies as supply_ledger
from samplechain.utils import utcnow


def _locked(shipment_id, session):
    shipment = session.query(Shipment)\
        .filter(Shipment.id == shipment_id)\
        .with_for_update()\
        .populate_existing()\
        .first()
    if shipment is None:
        raise NotFoundError(f'Shipment {shipment_id} not found', shipment_id=shipment_id)
    return shipment


def _require_status(shipment, allowed, action):
    if shipment.status not in allowed:
        raise InvalidTransition(
            f'Cannot {action} shipment {shipment.shipment_number} while it is {shipment.status}',
            shipment_id=shipment.id,
            status=shipment.status,
            action=action
        )


def _shipment(shipment_id, session):
    shipment = session.get(Shipment, shipment_id)
    if shipment is None:
        raise NotFoundError(f'Shipment {shipment_id} not found', shipment_id=shipment_id)
    return shipment


def claim(shipment_id, actor, session=None):
    """Start processing a shipment.

    Claiming a shipment that is already processing is allowed and
    records no second ``processing_started`` event.
    """
    session = session or db.session
    with atomic(session, 'Claim', shipment_id=shipment_id):
        shipment = _locked(shipment_id, session)
        _require_status(shipment, Shipment.CLAIMABLE_STATUSES, 'claim')
        if shipment.prepared_by_id is None or shipment.status != 'processing':
            shipment.prepared_by_id = actor.id
        shipment.status = 'processing'
        if not custody.has_event(shipment.id, 'processing_started', session=session):
            custody.append(shipment, 'processing_started', actor,
                           notes=f'Processing started by {actor.display_name}', session=session)
    current_app.logger.info(f'Shipment {shipment.shipment_number} claimed by {actor.username}')
    return shipment


def _packed_note(usages, session):
    parts = [
        f'{quantity} x {session.get(ShippingSupply, supply_id).name}'
        for supply_id, quantity in usages.items()
    ]
    return 'Supplies used: ' + ', '.join(parts)


def record_supplies(shipment_id, usages, actor, session=None):
    """Debit packaging supplies used for a shipment being processed.

    Args:
        usages: list of ``{'supply_id', 'quantity_used'}`` dicts

    Returns:
        list of SupplyTransaction
    """
    session = session or db.session
    usages = supply_ledger.normalize_usages(usages)
    with atomic(session, 'Supply recording', shipment_id=shipment_id):
        shipment = _locked(shipment_id, session)
        _require_status(shipment, ('processing',), 'record supplies for')
        transactions = supply_ledger.consume_all(usages, actor, shipment, session=session)
        custody.append(shipment, 'packed', actor, notes=_packed_note(usages, session), session=session)
    current_app.logger.info(
        f'Recorded {len(transactions)} supply usage(s) for shipment {shipment.shipment_number}'
    )
    supply_ledger.alert_low_stock(transactions, session=session)
    return transactions


def _line_hazards(shipment):
    return [{
        'un_number': line.un_number,
        'hazard_class': line.hazard_class,
        'proper_shipping_name': line.sample.proper_shipping_name if line.sample else None,
        'packing_group': line.sample.packing_group if line.sample else None,
    } for line in shipment.lines]


def _declaration_values(shipment, details=None):
    details = {k: v for k, v in (details or {}).items() if v}
    values = dict(hazmat.declaration_source(_line_hazards(shipment)))
    values.update(details)
    return {
        'un_number': values.get('un_number'),
        'proper_shipping_name': values.get('proper_shipping_name'),
        'hazard_class': values.get('hazard_class'),
        'packing_group': values.get('packing_group'),
        'packaging_type': values.get('packaging_type'),
    }


def _create_declaration(shipment, actor, session, details=None):
    declaration = DangerousGoodsDeclaration(
        shipment_id=shipment.id,
        form_number=f'DG-{shipment.shipment_number}',
        quantity_shipped=shipment.amount_shipped,
        unit_of_measure=shipment.unit,
        warning_labels_required=True,
        created_by_id=actor.id,
        **_declaration_values(shipment, details)
    )
    session.add(declaration)
    shipment.declaration = declaration
    custody.append(shipment, 'dg_declaration_created', actor,
                   notes=f'DG declaration {declaration.form_number} created', session=session)
    return declaration


def _hazmat_details(shipment):
    if shipment.declaration is not None:
        return shipment.declaration.hazmat_details()
    values = _declaration_values(shipment)
    values.pop('packaging_type')
    values['quantity'] = qty.format_magnitude(shipment.amount_shipped)
    values['quantity_units'] = shipment.unit
    return values


def package_weight(package):
    try:
        weight = Decimal(str(package.get('weight')))
    except (InvalidOperation, ValueError, TypeError):
        raise ValidationError('Package weight must be a number', field='weight')
    if not weight.is_finite() or weight <= 0:
        raise ValidationError('Package weight must be greater than zero', field='weight')
    return weight


def ship(shipment_id, actor, package, supplies=None, session=None, carrier=None, notifier=notify):
    """Buy a carrier label and mark the shipment shipped.

    Args:
        package: dict with ``weight``, optional ``weight_unit`` and ``service_type``
        supplies: supply usages not yet recorded through ``record_supplies``

    Raises:
        InvalidTransition: the shipment is not being processed
        ValidationError: no supplies recorded or provided
        ExternalServiceError: the carrier call failed; nothing was written
    """
    session = session or db.session
    carrier = carrier or get_carrier()
    config = current_app.config

    shipment = _shipment(shipment_id, session)
    _require_status(shipment, ('processing',), 'ship')
    usages = supply_ledger.normalize_usages(supplies) if supplies else {}
    if not usages and shipment.supply_usages.count() == 0:
        raise ValidationError(
            'Record the supplies used before shipping',
            field='supplies_used',
            shipment_id=shipment.id
        )
    supply_ledger.check_available(usages, session=session)

    weight = package_weight(package)
    weight_unit = (package.get('weight_unit') or 'LB').upper()
    service = package.get('service_type') or config['CARRIER_DEFAULT_SERVICE']
    hazmat_details = _hazmat_details(shipment) if shipment.is_hazmat else None
    destination = shipment.address
    recipient = {'name': shipment.recipient_name, 'phone': shipment.recipient_phone}
    number = shipment.shipment_number

    # End the read transaction before the carrier call
    session.rollback()

    label = carrier.generate_label(
        ship_from_address(config), destination, weight, service,
        recipient=recipient, hazmat=hazmat_details, weight_unit=weight_unit
    )
    current_app.logger.info(f'Label {label.tracking_number} issued for shipment {number}')

    try:
        with atomic(session, 'Shipping', shipment_id=shipment_id, tracking_number=label.tracking_number):
            shipment = _locked(shipment_id, session)
            _require_status(shipment, ('processing',), 'ship')
            transactions = supply_ledger.consume_all(usages, actor, shipment, session=session)
            if transactions:
                custody.append(shipment, 'packed', actor,
                               notes=_packed_note(usages, session), session=session)
            if shipment.is_hazmat and shipment.declaration is None:
                _create_declaration(shipment, actor, session)

            shipment.carrier = carrier.name
            shipment.service_type = service
            shipment.tracking_number = label.tracking_number
            shipment.label_reference = label.label
            shipment.shipping_cost = label.cost
            shipment.estimated_delivery = label.estimated_delivery
            shipment.status = 'shipped'
            shipment.shipped_at = utcnow()
            if shipment.prepared_by_id is None:
                shipment.prepared_by_id = actor.id

            session.add(ShipmentTracking(
                shipment_id=shipment.id,
                tracking_number=label.tracking_number,
                carrier=carrier.name,
                status='label_created'
            ))
            custody.append(shipment, 'label_generated', actor,
                           notes=f'{carrier.name} label {label.tracking_number}, cost {label.cost}',
                           session=session)
            custody.append(shipment, 'shipped', actor,
                           notes=f'Shipped via {carrier.name} {service}', session=session)
    except SampleChainError:
        current_app.logger.warning(
            f'Label {label.tracking_number} for shipment {number} was not recorded; void it with the carrier'
        )
        raise

    current_app.logger.info(f'Shipment {number} shipped with tracking {label.tracking_number}')
    supply_ledger.alert_low_stock(transactions, session=session)
    notifier(shipment.requested_by, 'shipment_shipped', {
        'shipment_id': shipment.id,
        'shipment_number': shipment.shipment_number,
        'tracking_number': shipment.tracking_number,
    })
    return shipment


def mark_shipped(shipment_id, actor, tracking_number, carrier_name=None, cost=None, supplies=None,
                 session=None, notifier=notify):
    """Record a shipment sent outside the label integration.

    Like ``ship``, the supplies used must already be recorded or be passed
    in ``supplies``.
    """
    session = session or db.session
    usages = supply_ledger.normalize_usages(supplies) if supplies else {}
    tracking_number = (tracking_number or '').strip()
    shipment = _shipment(shipment_id, session)
    if not tracking_number:
        raise InvalidTransition(
            f'Shipment {shipment.shipment_number} cannot ship without a tracking number',
            shipment_id=shipment.id,
            status=shipment.status,
            action='ship'
        )
    if cost not in (None, ''):
        try:
            cost = Decimal(str(cost))
        except (InvalidOperation, ValueError):
            raise ValidationError('Shipping cost must be a number', field='shipping_cost')
        if not cost.is_finite() or cost < 0:
            raise ValidationError('Shipping cost cannot be negative', field='shipping_cost')
    else:
        cost = None

    with atomic(session, 'Manual shipping', shipment_id=shipment_id):
        shipment = _locked(shipment_id, session)
        _require_status(shipment, ('processing',), 'ship')
        if not usages and shipment.supply_usages.count() == 0:
            raise ValidationError(
                'Record the supplies used before shipping',
                field='supplies_used',
                shipment_id=shipment.id
            )
        transactions = supply_ledger.consume_all(usages, actor, shipment, session=session)
        if transactions:
            custody.append(shipment, 'packed', actor,
                           notes=_packed_note(usages, session), session=session)
        if shipment.is_hazmat and shipment.declaration is None:
            _create_declaration(shipment, actor, session)
        shipment.tracking_number = tracking_number
        shipment.carrier = carrier_name or 'manual'
        shipment.shipping_cost = cost
        shipment.status = 'shipped'
        shipment.shipped_at = utcnow()
        if shipment.prepared_by_id is None:
            shipment.prepared_by_id = actor.id
        session.add(ShipmentTracking(
            shipment_id=shipment.id,
            tracking_number=tracking_number,
            carrier=shipment.carrier,
            status='shipped'
        ))
        custody.append(shipment, 'shipped', actor,
                       notes=f'Marked shipped via {shipment.carrier}, tracking {tracking_number}',
                       session=session)

    current_app.logger.info(f'Shipment {shipment.shipment_number} marked shipped by {actor.username}')
    supply_ledger.alert_low_stock(transactions, session=session)
    notifier(shipment.requested_by, 'shipment_shipped', {
        'shipment_id': shipment.id,
        'shipment_number': shipment.shipment_number,
        'tracking_number': tracking_number,
    })
    return shipment


def poll_tracking(shipment_id, actor, session=None, carrier=None, notifier=notify):
    """Ask the carrier whether a shipped shipment arrived.

    Already delivered shipments are returned untouched, without a carrier
    call.

    Returns:
        tuple: (shipment, TrackingInfo or None)
    """
    session = session or db.session
    shipment = _shipment(shipment_id, session)
    if shipment.status == 'delivered':
        return shipment, None
    _require_status(shipment, ('shipped',), 'poll tracking for')
    if not shipment.tracking_number:
        raise InvalidTransition(
            f'Shipment {shipment.shipment_number} has no tracking number',
            shipment_id=shipment.id,
            status=shipment.status,
            action='poll tracking for'
        )
    carrier = carrier or get_carrier()
    tracking_number = shipment.tracking_number

    session.rollback()
    info = carrier.get_tracking(tracking_number)
    if info.status != 'delivered':
        current_app.logger.info(f'Tracking {tracking_number}: {info.status}')
        return _shipment(shipment_id, session), info

    with atomic(session, 'Delivery update', shipment_id=shipment_id):
        shipment = _locked(shipment_id, session)
        if shipment.status == 'delivered':
            return shipment, info
        _require_status(shipment, ('shipped',), 'deliver')
        shipment.status = 'delivered'
        shipment.delivered_at = utcnow()
        session.add(ShipmentTracking(
            shipment_id=shipment.id,
            tracking_number=tracking_number,
            carrier=shipment.carrier or carrier.name,
            status='delivered',
            location=info.location
        ))
        custody.append(shipment, 'delivered', actor, location=info.location,
                       notes=f'Carrier reported delivery of {tracking_number}', session=session)

    current_app.logger.info(f'Shipment {shipment.shipment_number} delivered')
    notifier(shipment.requested_by, 'shipment_delivered', {
        'shipment_id': shipment.id,
        'shipment_number': shipment.shipment_number,
    })
    return shipment, info


def flag_hazmat(shipment_id, details, actor, session=None):
    """Flag a shipment as dangerous goods and create its declaration."""
    session = session or db.session
    details = {k: (v.strip() if isinstance(v, str) else v) for k, v in (details or {}).items()}
    if not (details.get('un_number') or details.get('hazard_class')):
        raise ValidationError('A UN number or hazard class is required', field='un_number')

    with atomic(session, 'Hazmat flag', shipment_id=shipment_id):
        shipment = _locked(shipment_id, session)
        _require_status(shipment, Shipment.CLAIMABLE_STATUSES, 'flag hazmat on')
        if (hazmat.below_volume_threshold(shipment.amount_shipped, shipment.unit)
                and not any(hazmat.carries_hazard(h) for h in _line_hazards(shipment))):
            raise ValidationError(
                f'Shipment {shipment.shipment_number} does not meet the hazmat threshold '
                f'({qty.format_magnitude(hazmat.HAZMAT_VOLUME_THRESHOLD)}{hazmat.HAZMAT_VOLUME_UNIT})',
                shipment_id=shipment.id,
                quantity=qty.format_magnitude(shipment.amount_shipped),
                unit=shipment.unit
            )
        if shipment.declaration is not None:
            raise ConflictError(
                f'Shipment {shipment.shipment_number} already has a DG declaration',
                shipment_id=shipment.id,
                form_number=shipment.declaration.form_number
            )
        shipment.is_hazmat = True
        shipment.requires_dg_declaration = True
        custody.append(shipment, 'hazmat_flagged', actor,
                       notes=f'Flagged as hazmat: {details.get("un_number") or details.get("hazard_class")}',
                       session=session)
        declaration = _create_declaration(shipment, actor, session, details)

    current_app.logger.info(f'Shipment {shipment.shipment_number} flagged hazmat by {actor.username}')
    return declaration


def print_warning_labels(shipment_id, actor, session=None):
    session = session or db.session
    with atomic(session, 'Warning label printing', shipment_id=shipment_id):
        shipment = _locked(shipment_id, session)
        declaration = shipment.declaration
        if declaration is None:
            raise NotFoundError(
                f'No DG declaration found for shipment {shipment.shipment_number}',
                shipment_id=shipment.id
            )
        declaration.warning_labels_printed = True
        declaration.warning_labels_printed_by_id = actor.id
        declaration.warning_labels_printed_at = utcnow()
        custody.append(shipment, 'hazmat_flagged', actor, notes='Warning labels printed', session=session)
    return declaration
