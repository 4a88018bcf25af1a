# samplechain/models/declaration.py

from samplechain.extensions import db
from samplechain.quantity import format_magnitude
from samplechain.utils import utcnow, isoformat


class DangerousGoodsDeclaration(db.Model):
    __tablename__ = 'dangerous_goods_declaration'

    id = db.Column(db.Integer, primary_key=True)
    shipment_id = db.Column(db.Integer, db.ForeignKey('shipment.id'), unique=True, nullable=False)
    form_number = db.Column(db.String(40), unique=True, nullable=False)
    un_number = db.Column(db.String(10))
    proper_shipping_name = db.Column(db.String(200))
    hazard_class = db.Column(db.String(20))
    packing_group = db.Column(db.String(5))
    packaging_type = db.Column(db.String(60))
    quantity_shipped = db.Column(db.Numeric(12, 3), nullable=False)
    unit_of_measure = db.Column(db.String(20), nullable=False)
    warning_labels_required = db.Column(db.Boolean, nullable=False, default=True)
    warning_labels_printed = db.Column(db.Boolean, nullable=False, default=False)
    warning_labels_printed_by_id = db.Column(db.Integer, db.ForeignKey('user.id'))
    warning_labels_printed_at = db.Column(db.DateTime)
    created_by_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    shipment = db.relationship('Shipment', back_populates='declaration')

    def hazmat_details(self):
        """Carrier-facing hazardous commodity description."""
        return {
            'un_number': self.un_number,
            'proper_shipping_name': self.proper_shipping_name,
            'hazard_class': self.hazard_class,
            'packing_group': self.packing_group,
            'quantity': format_magnitude(self.quantity_shipped),
            'quantity_units': self.unit_of_measure,
        }

    def to_dict(self):
        return {
            'id': self.id,
            'shipment_id': self.shipment_id,
            'form_number': self.form_number,
            'un_number': self.un_number,
            'proper_shipping_name': self.proper_shipping_name,
            'hazard_class': self.hazard_class,
            'packing_group': self.packing_group,
            'packaging_type': self.packaging_type,
            'quantity_shipped': format_magnitude(self.quantity_shipped),
            'unit_of_measure': self.unit_of_measure,
            'warning_labels_required': self.warning_labels_required,
            'warning_labels_printed': self.warning_labels_printed,
            'warning_labels_printed_by': self.warning_labels_printed_by_id,
            'warning_labels_printed_at': isoformat(self.warning_labels_printed_at),
        }

    def __repr__(self):
        return f'<DangerousGoodsDeclaration {self.form_number}>'
