# samplechain/services/custody.py

from samplechain.extensions import db
from samplechain.errors import ValidationError
from samplechain.models import ChainOfCustodyEvent


def append(shipment, event_type, actor, notes=None, location=None, session=None):
    """Add an event to a shipment's chain of custody.

    The event joins the caller's transaction; it is committed or rolled
    back together with the state change it records.

    Args:
        shipment: Shipment the event belongs to
        event_type: one of ChainOfCustodyEvent.EVENT_TYPES
        actor: User performing the action
        notes: optional free text
        location: optional place the event happened

    Returns:
        ChainOfCustodyEvent: the pending event
    """
    if event_type not in ChainOfCustodyEvent.EVENT_TYPES:
        raise ValidationError(f'Unknown custody event type: {event_type}', event_type=event_type)
    session = session or db.session
    entry = ChainOfCustodyEvent(
        shipment_id=shipment.id,
        event_type=event_type,
        performed_by_id=actor.id,
        notes=notes,
        location=location
    )
    session.add(entry)
    return entry


def history(shipment_id, session=None):
    """Events of a shipment, oldest first."""
    session = session or db.session
    return session.query(ChainOfCustodyEvent)\
        .filter(ChainOfCustodyEvent.shipment_id == shipment_id)\
        .order_by(ChainOfCustodyEvent.timestamp.asc(), ChainOfCustodyEvent.id.asc())\
        .all()


def has_event(shipment_id, event_type, session=None):
    session = session or db.session
    return session.query(ChainOfCustodyEvent.id)\
        .filter_by(shipment_id=shipment_id, event_type=event_type)\
        .first() is not None
