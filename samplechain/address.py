# samplechain/address.py

import re
from collections import namedtuple

from samplechain.errors import ValidationError

Address = namedtuple('Address', ['street', 'city', 'state', 'postal_code', 'country'])

REQUIRED_FIELDS = ('street', 'city', 'state', 'postal_code')

_STATE_AND_POSTAL = re.compile(r'^([A-Za-z]{2})\.?\s+([A-Za-z0-9][A-Za-z0-9 \-]{2,9})$')
_COUNTRY = re.compile(r'^[A-Za-z]{2,3}$')


def format_address(address):
    """Single-line display form, e.g. ``"1 Main St, Austin, TX 78701, US"``."""
    return (f'{address.street}, {address.city}, '
            f'{address.state} {address.postal_code}, {address.country}')


def from_fields(fields, default_country='US'):
    """Build an Address from structured request fields.

    Accepts both ``postal_code``/``zip`` and ``state``/``state_or_province``
    spellings used by older clients.
    """
    values = {
        'street': fields.get('street') or fields.get('street_address'),
        'city': fields.get('city'),
        'state': fields.get('state') or fields.get('state_or_province'),
        'postal_code': fields.get('postal_code') or fields.get('zip'),
        'country': fields.get('country') or default_country,
    }
    values = {k: str(v).strip() if v is not None else None for k, v in values.items()}
    missing = [name for name in REQUIRED_FIELDS if not values[name]]
    if missing:
        raise ValidationError(
            'Destination address is incomplete',
            field='address',
            missing=missing
        )
    values['state'] = values['state'].upper()
    values['country'] = values['country'].upper()
    return Address(**values)


def from_legacy(text, default_country='US'):
    """Reconcile a legacy one-line address to its structured form.

    The expected layout is ``street[, line 2], city, ST POSTAL[, COUNTRY]``
    with commas or newlines between parts.
    """
    parts = [p.strip() for p in re.split(r'[,\n]', text or '') if p.strip()]
    country = default_country
    if len(parts) >= 4 and _COUNTRY.match(parts[-1]) and _STATE_AND_POSTAL.match(parts[-2]):
        country = parts.pop()
    if len(parts) < 3:
        raise ValidationError(
            'Legacy address must look like "street, city, ST postal code"',
            field='delivery_address',
            value=text
        )
    match = _STATE_AND_POSTAL.match(parts[-1])
    if not match:
        raise ValidationError(
            'Legacy address is missing a state and postal code',
            field='delivery_address',
            value=text
        )
    return Address(
        street=', '.join(parts[:-2]),
        city=parts[-2],
        state=match.group(1).upper(),
        postal_code=match.group(2).strip(),
        country=country.upper()
    )


def resolve(structured=None, legacy=None, default_country='US'):
    """Resolve the two accepted address shapes into one Address.

    Structured fields win whenever any of them is present; the legacy
    combined string is only a fallback.
    """
    if structured and any(structured.get(k) for k in structured):
        return from_fields(structured, default_country)
    if legacy:
        return from_legacy(legacy, default_country)
    raise ValidationError('Destination address is required', field='address')
