from datetime import datetime

from flask import current_app
from flask_wtf import FlaskForm
from wtforms import Form, StringField, TextAreaField, FieldList, FormField
from wtforms.validators import DataRequired, ValidationError


def strip_value(value):
    return value.strip() if isinstance(value, str) else value


class ApiForm(FlaskForm):
    """Base for forms bound to a JSON body.

    Bind with ``Form(formdata=None, data=payload)`` so nested lists and
    objects reach their FieldList / FormField unchanged.
    """
    class Meta:
        csrf = False


class AddressForm(Form):
    """Structured destination; older clients send street_address/zip."""
    street = StringField('Street', filters=[strip_value])
    street_address = StringField('Street Address', filters=[strip_value])
    city = StringField('City', filters=[strip_value])
    state = StringField('State', filters=[strip_value])
    state_or_province = StringField('State or Province', filters=[strip_value])
    postal_code = StringField('Postal Code', filters=[strip_value])
    zip = StringField('ZIP', filters=[strip_value])
    country = StringField('Country', filters=[strip_value])


class ItemForm(Form):
    """One requested sample with optional hazard overrides."""
    sample_id = StringField('Sample ID', filters=[strip_value])
    lot_number = StringField('Lot Number', filters=[strip_value])
    quantity = StringField('Quantity', validators=[DataRequired(message='Quantity is required')])
    unit = StringField('Unit', filters=[strip_value])
    un_number = StringField('UN Number', filters=[strip_value])
    hazard_class = StringField('Hazard Class', filters=[strip_value])
    proper_shipping_name = StringField('Proper Shipping Name', filters=[strip_value])
    packing_group = StringField('Packing Group', filters=[strip_value])

    def validate_lot_number(self, field):
        if not field.data and self.sample_id.data in (None, ''):
            raise ValidationError('Each item needs a sample_id or lot_number')


class ShipmentRequestForm(ApiForm):
    recipient_name = StringField(
        'Recipient Name',
        filters=[strip_value],
        validators=[DataRequired(message='Recipient name is required')]
    )
    recipient_phone = StringField(
        'Recipient Phone',
        filters=[strip_value],
        validators=[DataRequired(message='Recipient phone is required')]
    )
    recipient_email = StringField('Recipient Email', filters=[strip_value])
    recipient_company = StringField('Recipient Company', filters=[strip_value])
    address = FormField(AddressForm)
    delivery_address = StringField('Delivery Address', filters=[strip_value])
    items = FieldList(FormField(ItemForm))
    scheduled_ship_date = StringField('Scheduled Ship Date', filters=[strip_value])
    special_instructions = TextAreaField('Special Instructions', filters=[strip_value])

    def validate_items(self, field):
        max_items = current_app.config['MAX_SHIPMENT_ITEMS']
        if not field.entries:
            raise ValidationError('At least one sample is required')
        if len(field.entries) > max_items:
            raise ValidationError(f'A shipment holds at most {max_items} samples')

    def validate_scheduled_ship_date(self, field):
        if not field.data:
            return
        try:
            datetime.strptime(str(field.data), '%Y-%m-%d')
        except ValueError:
            raise ValidationError('Scheduled ship date must be YYYY-MM-DD')

    def ship_date(self):
        if not self.scheduled_ship_date.data:
            return None
        return datetime.strptime(str(self.scheduled_ship_date.data), '%Y-%m-%d').date()

    def recipient(self):
        return {
            'name': self.recipient_name.data,
            'phone': self.recipient_phone.data,
            'email': self.recipient_email.data,
            'company': self.recipient_company.data,
        }


class SupplyUsageForm(Form):
    supply_id = StringField('Supply', validators=[DataRequired(message='Supply is required')])
    quantity_used = StringField('Quantity Used', validators=[DataRequired(message='Quantity is required')])


class RecordSuppliesForm(ApiForm):
    supplies_used = FieldList(FormField(SupplyUsageForm))

    def validate_supplies_used(self, field):
        if not field.entries:
            raise ValidationError('At least one supply usage is required')


class ShipForm(ApiForm):
    weight = StringField('Weight', validators=[DataRequired(message='Package weight is required')])
    weight_unit = StringField('Weight Unit', filters=[strip_value])
    service_type = StringField('Service Type', filters=[strip_value])
    supplies_used = FieldList(FormField(SupplyUsageForm))

    def package(self):
        return {
            'weight': self.weight.data,
            'weight_unit': self.weight_unit.data,
            'service_type': self.service_type.data,
        }


class MarkShippedForm(ApiForm):
    tracking_number = StringField('Tracking Number', filters=[strip_value])
    carrier = StringField('Carrier', filters=[strip_value])
    shipping_cost = StringField('Shipping Cost', filters=[strip_value])
    supplies_used = FieldList(FormField(SupplyUsageForm))


class HazmatForm(ApiForm):
    un_number = StringField('UN Number', filters=[strip_value])
    proper_shipping_name = StringField('Proper Shipping Name', filters=[strip_value])
    hazard_class = StringField('Hazard Class', filters=[strip_value])
    packing_group = StringField('Packing Group', filters=[strip_value])
    packaging_type = StringField('Packaging Type', filters=[strip_value])


class RestockForm(ApiForm):
    quantity = StringField('Quantity', validators=[DataRequired(message='Quantity is required')])
    notes = TextAreaField('Notes', filters=[strip_value])


class AddressValidationForm(ApiForm):
    address = FormField(AddressForm)
    delivery_address = StringField('Delivery Address', filters=[strip_value])


class RateForm(AddressValidationForm):
    weight = StringField('Weight', validators=[DataRequired(message='Package weight is required')])
    weight_unit = StringField('Weight Unit', filters=[strip_value])
    service_type = StringField('Service Type', filters=[strip_value])
