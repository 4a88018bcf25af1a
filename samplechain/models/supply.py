# samplechain/models/supply.py

from samplechain.extensions import db
from samplechain.utils import utcnow, isoformat
from sqlalchemy.orm import validates


class ShippingSupply(db.Model):
    """Consumable packaging material counted in whole units."""
    __tablename__ = 'shipping_supply'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), unique=True, nullable=False)
    supply_type = db.Column(db.String(40), nullable=False)
    current_quantity = db.Column(db.Integer, nullable=False, default=0)
    unit = db.Column(db.String(20), nullable=False, default='each')
    low_stock_threshold = db.Column(db.Integer, nullable=False, default=0)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    transactions = db.relationship(
        'SupplyTransaction', back_populates='supply', order_by='SupplyTransaction.id', lazy='dynamic'
    )

    __table_args__ = (
        db.CheckConstraint('current_quantity >= 0', name='supply_quantity_non_negative'),
    )

    @validates('current_quantity', 'low_stock_threshold')
    def validate_count(self, key, value):
        try:
            value = int(value)
        except (ValueError, TypeError):
            raise ValueError(f"{key} must be a whole number")
        if value < 0:
            raise ValueError(f"{key} cannot be negative")
        return value

    def check_stock_level(self):
        """
        Returns:
            - 'out' if current_quantity == 0
            - 'low' if current_quantity <= low_stock_threshold
            - 'ok' otherwise
        """
        if self.current_quantity == 0:
            return 'out'
        elif self.current_quantity <= self.low_stock_threshold:
            return 'low'
        return 'ok'

    def is_low_stock(self):
        return self.current_quantity <= self.low_stock_threshold

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'type': self.supply_type,
            'current_quantity': self.current_quantity,
            'unit': self.unit,
            'low_stock_threshold': self.low_stock_threshold,
            'stock_level': self.check_stock_level(),
            'is_low_stock': self.is_low_stock(),
        }

    def __repr__(self):
        return f'<ShippingSupply {self.name}>'


class SupplyTransaction(db.Model):
    """Insert-only record of every supply count change."""
    __tablename__ = 'supply_transaction'

    TYPES = ('usage', 'restock')

    id = db.Column(db.Integer, primary_key=True)
    supply_id = db.Column(db.Integer, db.ForeignKey('shipping_supply.id'), nullable=False, index=True)
    transaction_type = db.Column(db.String(20), nullable=False)
    quantity_change = db.Column(db.Integer, nullable=False)
    quantity_before = db.Column(db.Integer, nullable=False)
    quantity_after = db.Column(db.Integer, nullable=False)
    shipment_id = db.Column(db.Integer, db.ForeignKey('shipment.id'))
    performed_by_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    notes = db.Column(db.Text)
    timestamp = db.Column(db.DateTime, nullable=False, default=utcnow)

    supply = db.relationship('ShippingSupply', back_populates='transactions')

    def to_dict(self):
        return {
            'id': self.id,
            'supply_id': self.supply_id,
            'type': self.transaction_type,
            'quantity_change': self.quantity_change,
            'quantity_before': self.quantity_before,
            'quantity_after': self.quantity_after,
            'shipment_id': self.shipment_id,
            'performed_by': self.performed_by_id,
            'notes': self.notes,
            'timestamp': isoformat(self.timestamp),
        }


class ShipmentSupplyUsage(db.Model):
    """Total of one supply consumed by one shipment."""
    __tablename__ = 'shipment_supply_usage'

    id = db.Column(db.Integer, primary_key=True)
    shipment_id = db.Column(db.Integer, db.ForeignKey('shipment.id'), nullable=False, index=True)
    supply_id = db.Column(db.Integer, db.ForeignKey('shipping_supply.id'), nullable=False)
    quantity_used = db.Column(db.Integer, nullable=False)

    shipment = db.relationship('Shipment', back_populates='supply_usages')
    supply = db.relationship('ShippingSupply')

    __table_args__ = (
        db.UniqueConstraint('shipment_id', 'supply_id', name='unique_shipment_supply'),
    )

    def to_dict(self):
        return {
            'supply_id': self.supply_id,
            'name': self.supply.name if self.supply else None,
            'quantity_used': self.quantity_used,
        }
