# samplechain/models/custody.py

from samplechain.extensions import db
from samplechain.errors import ImmutableRecordError
from samplechain.utils import utcnow, isoformat, format_timestamp
from sqlalchemy import event


class ChainOfCustodyEvent(db.Model):
    """Append-only audit trail entry for a shipment."""
    __tablename__ = 'chain_of_custody_event'

    EVENT_TYPES = (
        'created',
        'processing_started',
        'packed',
        'label_generated',
        'shipped',
        'delivered',
        'hazmat_flagged',
        'dg_declaration_created',
    )

    id = db.Column(db.Integer, primary_key=True)
    shipment_id = db.Column(db.Integer, db.ForeignKey('shipment.id'), nullable=False, index=True)
    event_type = db.Column(db.String(40), nullable=False)
    performed_by_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    location = db.Column(db.String(120))
    notes = db.Column(db.Text)
    timestamp = db.Column(db.DateTime, nullable=False, default=utcnow, index=True)

    performed_by = db.relationship('User')

    def to_dict(self):
        return {
            'id': self.id,
            'shipment_id': self.shipment_id,
            'event_type': self.event_type,
            'performed_by': self.performed_by_id,
            'performed_by_name': self.performed_by.display_name if self.performed_by else None,
            'location': self.location,
            'notes': self.notes,
            'timestamp': isoformat(self.timestamp),
            'local_time': format_timestamp(self.timestamp),
        }

    def __repr__(self):
        return f'<ChainOfCustodyEvent {self.event_type} shipment={self.shipment_id}>'


@event.listens_for(ChainOfCustodyEvent, 'before_update')
def refuse_custody_update(mapper, connection, target):
    raise ImmutableRecordError(
        'Chain-of-custody events cannot be modified',
        event_id=target.id,
        shipment_id=target.shipment_id
    )


@event.listens_for(ChainOfCustodyEvent, 'before_delete')
def refuse_custody_delete(mapper, connection, target):
    raise ImmutableRecordError(
        'Chain-of-custody events cannot be deleted',
        event_id=target.id,
        shipment_id=target.shipment_id
    )
