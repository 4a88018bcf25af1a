# samplechain/hazmat.py

from collections import namedtuple
from decimal import Decimal

# Shipments of 30 or more of the default small-volume unit ship as
# dangerous goods regardless of the samples' hazard attributes.
HAZMAT_VOLUME_THRESHOLD = Decimal('30')
HAZMAT_VOLUME_UNIT = 'ml'

HazmatClassification = namedtuple(
    'HazmatClassification', ['is_hazmat', 'requires_declaration', 'reasons']
)

HAZARD_FIELDS = ('un_number', 'hazard_class', 'proper_shipping_name', 'packing_group')


def effective_hazard(sample, override=None):
    """Merge a sample's hazard attributes with a per-line override.

    Non-empty override values win over the sample's master record.

    Returns:
        dict: hazard field name -> value (possibly None)
    """
    override = override or {}
    hazard = {}
    for field in HAZARD_FIELDS:
        value = override.get(field)
        if isinstance(value, str):
            value = value.strip()
        if not value:
            value = getattr(sample, field, None) or None
        hazard[field] = value
    return hazard


def carries_hazard(hazard):
    return bool(hazard.get('un_number') or hazard.get('hazard_class'))


def classify(hazards, aggregate_amount, unit):
    """Classify a shipment as dangerous goods.

    Args:
        hazards: effective hazard dicts, one per line item
        aggregate_amount: total amount shipped
        unit: unit of ``aggregate_amount``

    Returns:
        HazmatClassification
    """
    reasons = []
    if any(carries_hazard(h) for h in hazards):
        reasons.append('hazard_attributes')
    if ((unit or '').lower() == HAZMAT_VOLUME_UNIT
            and Decimal(aggregate_amount) >= HAZMAT_VOLUME_THRESHOLD):
        reasons.append('volume_threshold')
    is_hazmat = bool(reasons)
    return HazmatClassification(is_hazmat, is_hazmat, tuple(reasons))


def below_volume_threshold(aggregate_amount, unit):
    """True for a small-volume shipment too light to ship as dangerous goods on volume alone."""
    return ((unit or '').lower() == HAZMAT_VOLUME_UNIT
            and Decimal(aggregate_amount) < HAZMAT_VOLUME_THRESHOLD)


def declaration_source(hazards):
    """Pick the hazard record a DG declaration is built from."""
    for hazard in hazards:
        if carries_hazard(hazard):
            return hazard
    return {}
