# samplechain/quantity.py
"""Inventory quantity strings attached to samples.

A sample's quantity is stored as free-form text, either a single magnitude
(``"12.86g"``) or a per-container breakdown (``"1: 0.91g, 2: 3.91g"``).
Callers never look inside the string; they go through ``parse``, ``debit``
and ``serialize`` so the storage format can change in one place.
"""

import re
from decimal import Decimal, InvalidOperation

from samplechain.errors import InsufficientQuantity, InvalidQuantityFormat, ValidationError

# Serialized remaining quantity for a depleted sample.
DEPLETED_SENTINEL = '0'

# Shipment amounts are stored as Numeric(12, 3).
AMOUNT_PLACES = 3

_CONTAINER_LABEL = re.compile(r'(?:^|[,;])\s*\d+\s*:')
_MAGNITUDE = re.compile(r'\d+(?:\.\d+)?|\.\d+')
_UNIT = re.compile(r'(?:\d|\.)\s*([A-Za-zµμ]+)')


def parse(quantity):
    """Return the total magnitude of a quantity string as a Decimal.

    Container labels (``"1:"``) and units are ignored; every remaining
    numeric token is summed.

    Raises:
        InvalidQuantityFormat: the string holds no numeric token
    """
    if quantity is None:
        raise InvalidQuantityFormat('Quantity is missing', quantity=None)
    text = _CONTAINER_LABEL.sub(',', str(quantity))
    tokens = _MAGNITUDE.findall(text)
    if not tokens:
        raise InvalidQuantityFormat(
            f'Invalid sample quantity format: {quantity!r}',
            quantity=str(quantity)
        )
    return sum((Decimal(token) for token in tokens), Decimal('0'))


def unit_of(quantity):
    """Return the first unit written in a quantity string, or None."""
    match = _UNIT.search(str(quantity or ''))
    return match.group(1) if match else None


def to_amount(value, field='quantity'):
    """Coerce a requested amount to a positive, finite Decimal."""
    try:
        amount = Decimal(str(value).strip())
    except (InvalidOperation, ValueError, TypeError):
        raise ValidationError(f'{field} must be a number', field=field, value=str(value))
    if not amount.is_finite() or amount <= 0:
        raise ValidationError(f'{field} must be greater than zero', field=field, value=str(value))
    if amount.normalize().as_tuple().exponent < -AMOUNT_PLACES:
        raise ValidationError(
            f'{field} allows at most {AMOUNT_PLACES} decimal places',
            field=field,
            value=str(value)
        )
    return amount


def debit(current, amount):
    """Subtract ``amount`` from the quantity string ``current``.

    Returns:
        Decimal: remaining magnitude, never negative

    Raises:
        InvalidQuantityFormat: ``current`` cannot be parsed
        InsufficientQuantity: ``amount`` exceeds the total available
    """
    amount = to_amount(amount)
    total = parse(current)
    if amount > total:
        raise InsufficientQuantity(
            f'Insufficient quantity. Available: {format_magnitude(total)}, '
            f'Requested: {format_magnitude(amount)}',
            available=format_magnitude(total),
            requested=format_magnitude(amount)
        )
    return total - amount


def is_depleted(remaining):
    return remaining <= 0


def serialize(remaining, unit=None):
    """Render a remaining magnitude back to its stored string form."""
    if is_depleted(remaining):
        return DEPLETED_SENTINEL
    return f'{format_magnitude(remaining)}{unit or ""}'


def format_magnitude(value):
    """Format a Decimal without exponent or trailing zeros."""
    value = Decimal(value)
    if value == value.to_integral_value():
        return str(value.quantize(Decimal('1')))
    return format(value.normalize(), 'f')
