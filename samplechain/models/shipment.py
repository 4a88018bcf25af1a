# samplechain/models/shipment.py

from samplechain.extensions import db
from samplechain.address import Address, format_address
from samplechain.quantity import format_magnitude
from samplechain.utils import utcnow, isoformat
from sqlalchemy.orm import validates


class Shipment(db.Model):
    __tablename__ = 'shipment'

    STATUSES = ('pending', 'initiated', 'processing', 'shipped', 'delivered', 'cancelled')
    # 'pending' is written by the older single-sample request path and
    # means the same as 'initiated' to everything downstream.
    UNPROCESSED_STATUSES = ('initiated', 'pending')
    CLAIMABLE_STATUSES = ('initiated', 'pending', 'processing')

    id = db.Column(db.Integer, primary_key=True)
    shipment_number = db.Column(db.String(40), unique=True, nullable=False)
    status = db.Column(db.String(20), nullable=False, default='initiated', index=True)

    amount_shipped = db.Column(db.Numeric(12, 3), nullable=False)
    unit = db.Column(db.String(20), nullable=False)

    recipient_name = db.Column(db.String(200), nullable=False)
    recipient_phone = db.Column(db.String(40), nullable=False)
    recipient_email = db.Column(db.String(120))
    recipient_company = db.Column(db.String(200))
    destination_street = db.Column(db.String(300), nullable=False)
    destination_city = db.Column(db.String(100), nullable=False)
    destination_state = db.Column(db.String(50), nullable=False)
    destination_postal_code = db.Column(db.String(20), nullable=False)
    destination_country = db.Column(db.String(3), nullable=False, default='US')
    destination_address = db.Column(db.Text, nullable=False)

    is_hazmat = db.Column(db.Boolean, nullable=False, default=False)
    requires_dg_declaration = db.Column(db.Boolean, nullable=False, default=False)

    carrier = db.Column(db.String(40))
    service_type = db.Column(db.String(40))
    tracking_number = db.Column(db.String(60), index=True)
    label_reference = db.Column(db.Text)
    shipping_cost = db.Column(db.Numeric(10, 2))
    estimated_delivery = db.Column(db.String(40))

    scheduled_ship_date = db.Column(db.Date)
    special_instructions = db.Column(db.Text)

    requested_by_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    prepared_by_id = db.Column(db.Integer, db.ForeignKey('user.id'))

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)
    shipped_at = db.Column(db.DateTime)
    delivered_at = db.Column(db.DateTime)

    requested_by = db.relationship('User', foreign_keys=[requested_by_id])
    prepared_by = db.relationship('User', foreign_keys=[prepared_by_id])
    lines = db.relationship(
        'ShipmentSample',
        back_populates='shipment',
        order_by='ShipmentSample.id',
        cascade='all, delete-orphan'
    )
    supply_usages = db.relationship('ShipmentSupplyUsage', back_populates='shipment', lazy='dynamic')
    declaration = db.relationship('DangerousGoodsDeclaration', back_populates='shipment', uselist=False)
    tracking_events = db.relationship(
        'ShipmentTracking', back_populates='shipment', order_by='ShipmentTracking.id', lazy='dynamic'
    )

    @validates('status')
    def validate_status(self, key, value):
        if value not in self.STATUSES:
            raise ValueError(f"Invalid shipment status: {value}")
        return value

    @property
    def address(self):
        return Address(
            street=self.destination_street,
            city=self.destination_city,
            state=self.destination_state,
            postal_code=self.destination_postal_code,
            country=self.destination_country
        )

    @address.setter
    def address(self, address):
        self.destination_street = address.street
        self.destination_city = address.city
        self.destination_state = address.state
        self.destination_postal_code = address.postal_code
        self.destination_country = address.country
        self.destination_address = format_address(address)

    def is_unprocessed(self):
        return self.status in self.UNPROCESSED_STATUSES

    def to_dict(self, include_lines=True):
        data = {
            'id': self.id,
            'shipment_number': self.shipment_number,
            'status': self.status,
            'amount_shipped': format_magnitude(self.amount_shipped),
            'unit': self.unit,
            'recipient': {
                'name': self.recipient_name,
                'phone': self.recipient_phone,
                'email': self.recipient_email,
                'company': self.recipient_company,
                'address': self.address._asdict(),
                'formatted_address': self.destination_address,
            },
            'is_hazmat': self.is_hazmat,
            'requires_dg_declaration': self.requires_dg_declaration,
            'carrier': self.carrier,
            'tracking_number': self.tracking_number,
            'shipping_cost': str(self.shipping_cost) if self.shipping_cost is not None else None,
            'estimated_delivery': self.estimated_delivery,
            'scheduled_ship_date': isoformat(self.scheduled_ship_date),
            'special_instructions': self.special_instructions,
            'requested_by': self.requested_by_id,
            'prepared_by': self.prepared_by_id,
            'created_at': isoformat(self.created_at),
            'shipped_at': isoformat(self.shipped_at),
            'delivered_at': isoformat(self.delivered_at),
        }
        if include_lines:
            data['samples'] = [line.to_dict() for line in self.lines]
        return data

    def __repr__(self):
        return f'<Shipment {self.shipment_number}>'


class ShipmentSample(db.Model):
    """One sample included in a shipment."""
    __tablename__ = 'shipment_sample'

    id = db.Column(db.Integer, primary_key=True)
    shipment_id = db.Column(db.Integer, db.ForeignKey('shipment.id'), nullable=False, index=True)
    sample_id = db.Column(db.Integer, db.ForeignKey('sample.id'), nullable=False, index=True)
    quantity_requested = db.Column(db.Numeric(12, 3), nullable=False)
    unit = db.Column(db.String(20), nullable=False, default='ml')
    # Hazard values in force for this line when the shipment was created
    un_number = db.Column(db.String(10))
    hazard_class = db.Column(db.String(20))
    created_at = db.Column(db.DateTime, default=utcnow)

    shipment = db.relationship('Shipment', back_populates='lines')
    sample = db.relationship('Sample', back_populates='shipment_lines')

    __table_args__ = (
        db.UniqueConstraint('shipment_id', 'sample_id', name='unique_shipment_sample'),
    )

    def to_dict(self):
        return {
            'sample_id': self.sample_id,
            'lot_number': self.sample.lot_number if self.sample else None,
            'chemical_name': self.sample.chemical_name if self.sample else None,
            'quantity_requested': format_magnitude(self.quantity_requested),
            'unit': self.unit,
            'un_number': self.un_number,
            'hazard_class': self.hazard_class,
        }


class ShipmentTracking(db.Model):
    """Carrier tracking observations recorded for a shipment."""
    __tablename__ = 'shipment_tracking'

    id = db.Column(db.Integer, primary_key=True)
    shipment_id = db.Column(db.Integer, db.ForeignKey('shipment.id'), nullable=False, index=True)
    tracking_number = db.Column(db.String(60), nullable=False)
    carrier = db.Column(db.String(40), nullable=False)
    status = db.Column(db.String(40), nullable=False)
    location = db.Column(db.String(120))
    timestamp = db.Column(db.DateTime, nullable=False, default=utcnow)

    shipment = db.relationship('Shipment', back_populates='tracking_events')

    def to_dict(self):
        return {
            'tracking_number': self.tracking_number,
            'carrier': self.carrier,
            'status': self.status,
            'location': self.location,
            'timestamp': isoformat(self.timestamp),
        }
