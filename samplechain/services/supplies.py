# samplechain/services/supplies.py

from flask import current_app

from samplechain.extensions import db
from samplechain.errors import InsufficientQuantity, NotFoundError, ValidationError
from samplechain.models import ShippingSupply, SupplyTransaction, ShipmentSupplyUsage
from samplechain.notifications import notify_stock_alert
from samplechain.services import atomic


def _whole_positive(value, field):
    try:
        number = int(value)
    except (ValueError, TypeError):
        raise ValidationError(f'{field} must be a whole number', field=field, value=str(value))
    if number != value and str(number) != str(value).strip():
        raise ValidationError(f'{field} must be a whole number', field=field, value=str(value))
    if number <= 0:
        raise ValidationError(f'{field} must be greater than zero', field=field, value=str(value))
    return number


def normalize_usages(usages):
    """Merge ``[{'supply_id', 'quantity_used'}]`` into ``{supply_id: quantity}``."""
    if not usages:
        raise ValidationError('supplies_used must be a non-empty list', field='supplies_used')
    merged = {}
    for usage in usages:
        supply_id = _whole_positive(usage.get('supply_id'), 'supply_id')
        quantity = _whole_positive(usage.get('quantity_used'), 'quantity_used')
        merged[supply_id] = merged.get(supply_id, 0) + quantity
    return merged


def check_available(usages, session=None):
    """Verify every supply exists and holds enough, without writing."""
    session = session or db.session
    for supply_id, quantity in usages.items():
        supply = session.get(ShippingSupply, supply_id)
        if supply is None:
            raise NotFoundError(f'Supply {supply_id} not found', supply_id=supply_id)
        if supply.current_quantity < quantity:
            raise InsufficientQuantity(
                f'Not enough {supply.name} in stock',
                available=supply.current_quantity,
                requested=quantity,
                supply_id=supply_id
            )


def consume(supply_id, quantity, actor, shipment=None, notes=None, session=None):
    """Debit a supply count inside the caller's transaction.

    The decrement is a single conditional UPDATE, so two concurrent
    consumers can never take the count below zero.

    Returns:
        SupplyTransaction: the pending ledger row
    """
    session = session or db.session
    updated = session.query(ShippingSupply)\
        .filter(ShippingSupply.id == supply_id, ShippingSupply.current_quantity >= quantity)\
        .update(
            {ShippingSupply.current_quantity: ShippingSupply.current_quantity - quantity},
            synchronize_session=False
        )
    supply = session.get(ShippingSupply, supply_id)
    if supply is None:
        raise NotFoundError(f'Supply {supply_id} not found', supply_id=supply_id)
    session.refresh(supply)
    if not updated:
        raise InsufficientQuantity(
            f'Not enough {supply.name} in stock',
            available=supply.current_quantity,
            requested=quantity,
            supply_id=supply_id
        )

    after = supply.current_quantity
    transaction = SupplyTransaction(
        supply_id=supply_id,
        transaction_type='usage',
        quantity_change=-quantity,
        quantity_before=after + quantity,
        quantity_after=after,
        shipment_id=shipment.id if shipment else None,
        performed_by_id=actor.id,
        notes=notes or (f'Used for shipment {shipment.shipment_number}' if shipment else None)
    )
    session.add(transaction)

    if shipment is not None:
        usage = session.query(ShipmentSupplyUsage)\
            .filter_by(shipment_id=shipment.id, supply_id=supply_id).first()
        if usage:
            usage.quantity_used += quantity
        else:
            session.add(ShipmentSupplyUsage(
                shipment_id=shipment.id, supply_id=supply_id, quantity_used=quantity
            ))
    return transaction


def consume_all(usages, actor, shipment, session=None):
    """Debit every ``{supply_id: quantity}`` pair for one shipment."""
    return [
        consume(supply_id, quantity, actor, shipment=shipment, session=session)
        for supply_id, quantity in usages.items()
    ]


def alert_low_stock(transactions, session=None):
    """Emit stock alerts for supplies that fell to their threshold.

    Call only after the debits committed.
    """
    session = session or db.session
    seen = set()
    for transaction in transactions:
        if transaction.supply_id in seen:
            continue
        seen.add(transaction.supply_id)
        supply = session.get(ShippingSupply, transaction.supply_id)
        if supply is not None and supply.is_low_stock():
            notify_stock_alert(supply)


def restock(supply_id, quantity, actor, notes=None, session=None):
    """Add units to a supply and record a restock transaction."""
    session = session or db.session
    quantity = _whole_positive(quantity, 'quantity')
    with atomic(session, 'Restock', supply_id=supply_id):
        supply = session.get(ShippingSupply, supply_id, with_for_update=True, populate_existing=True)
        if supply is None:
            raise NotFoundError(f'Supply {supply_id} not found', supply_id=supply_id)
        before = supply.current_quantity
        supply.current_quantity = before + quantity
        transaction = SupplyTransaction(
            supply_id=supply.id,
            transaction_type='restock',
            quantity_change=quantity,
            quantity_before=before,
            quantity_after=supply.current_quantity,
            performed_by_id=actor.id,
            notes=notes
        )
        session.add(transaction)
    current_app.logger.info(f'Supply {supply.name} restocked: {before} -> {supply.current_quantity}')
    return transaction


def low_stock(session=None):
    session = session or db.session
    return session.query(ShippingSupply)\
        .filter(ShippingSupply.current_quantity <= ShippingSupply.low_stock_threshold)\
        .order_by(ShippingSupply.current_quantity.asc(), ShippingSupply.name)\
        .all()


def all_supplies(session=None):
    session = session or db.session
    return session.query(ShippingSupply)\
        .order_by(ShippingSupply.supply_type, ShippingSupply.name)\
        .all()
