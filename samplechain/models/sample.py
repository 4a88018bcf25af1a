# samplechain/models/sample.py

from samplechain.extensions import db
from samplechain import quantity as qty
from samplechain.utils import utcnow
from sqlalchemy.orm import validates


class Sample(db.Model):
    """A physical chemical lot held in freezer storage."""
    __tablename__ = 'sample'

    STATUSES = ('active', 'depleted', 'quarantined')

    id = db.Column(db.Integer, primary_key=True)
    lot_number = db.Column(db.String(64), unique=True, nullable=False, index=True)
    chemical_name = db.Column(db.String(200), nullable=False)
    # Free-form quantity, e.g. "12.86g" or "1: 0.91g, 2: 3.91g"
    quantity = db.Column(db.String(200), nullable=False)
    status = db.Column(db.String(20), nullable=False, default='active', index=True)
    storage_location = db.Column(db.String(100))

    un_number = db.Column(db.String(10))
    hazard_class = db.Column(db.String(20))
    packing_group = db.Column(db.String(5))
    proper_shipping_name = db.Column(db.String(200))

    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)
    version_id = db.Column(db.Integer, nullable=False)

    __mapper_args__ = {
        'version_id_col': version_id
    }

    shipment_lines = db.relationship('ShipmentSample', back_populates='sample', lazy='dynamic')

    @validates('lot_number')
    def validate_lot_number(self, key, value):
        if not value or not value.strip():
            raise ValueError("Lot number cannot be empty")
        return value.strip()

    @validates('status')
    def validate_status(self, key, value):
        if value not in self.STATUSES:
            raise ValueError("Invalid sample status")
        return value

    @property
    def total_quantity(self):
        return qty.parse(self.quantity)

    @property
    def unit(self):
        return qty.unit_of(self.quantity)

    def is_active(self):
        return self.status == 'active'

    def has_hazard_attributes(self):
        return bool(self.un_number or self.hazard_class)

    def apply_debit(self, amount, unit=None):
        """Debit ``amount`` from this lot and return the remaining magnitude.

        The lot becomes ``depleted`` and its quantity the zero sentinel when
        nothing is left.
        """
        remaining = qty.debit(self.quantity, amount)
        self.quantity = qty.serialize(remaining, self.unit or unit)
        if qty.is_depleted(remaining):
            self.status = 'depleted'
        return remaining

    def to_dict(self):
        return {
            'id': self.id,
            'lot_number': self.lot_number,
            'chemical_name': self.chemical_name,
            'quantity': self.quantity,
            'status': self.status,
            'storage_location': self.storage_location,
            'hazard': {
                'un_number': self.un_number,
                'hazard_class': self.hazard_class,
                'packing_group': self.packing_group,
                'proper_shipping_name': self.proper_shipping_name,
            },
        }

    def __repr__(self):
        return f'<Sample {self.lot_number}>'
