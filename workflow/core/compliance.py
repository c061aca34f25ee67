"""
Non-blocking compliance annotations.

Fiscal document presence arrives as read-only flags from the fiscal service;
this module only reports what looks missing. Nothing here ever gates a
transition or hides a price.
"""
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from django.utils.translation import gettext_lazy as _

DOCUMENT_LABELS = {
    'invoice': _('Invoice (NF-e)'),
    'animal_transit_permit': _('Animal transit permit (GTA)'),
    'sanitary_certificate': _('Sanitary certificate'),
    'phytosanitary_certificate': _('Phytosanitary certificate'),
    'hazmat_license': _('Hazardous goods licence (MOPP)'),
    'vehicle_registration': _('Vehicle registration (CRLV)'),
}

# Mandatory documents per cargo type; unknown cargo types require nothing
CARGO_REQUIRED_DOCUMENTS = {
    'live_cattle': ('animal_transit_permit', 'invoice'),
    'swine': ('animal_transit_permit', 'invoice'),
    'poultry': ('animal_transit_permit', 'invoice'),
    'horses': ('animal_transit_permit', 'sanitary_certificate'),
    'grain': ('invoice',),
    'produce': ('invoice', 'phytosanitary_certificate'),
    'refrigerated': ('invoice', 'sanitary_certificate'),
    'vehicles': ('invoice', 'vehicle_registration'),
    'hazardous': ('invoice', 'hazmat_license'),
    'general': ('invoice',),
}

LIVE_CARGO_TYPES = frozenset({'live_cattle', 'swine', 'poultry', 'horses'})


def _normalize_cargo(cargo_type):
    return str(cargo_type or '').strip().lower()


def required_documents(cargo_type):
    return CARGO_REQUIRED_DOCUMENTS.get(_normalize_cargo(cargo_type), ())


def is_live_cargo(cargo_type):
    return _normalize_cargo(cargo_type) in LIVE_CARGO_TYPES


def missing_documents(cargo_type, fiscal_documents):
    flags = fiscal_documents if isinstance(fiscal_documents, dict) else {}
    return [doc for doc in required_documents(cargo_type) if not flags.get(doc)]


def compliance_notes(cargo_type, fiscal_documents):
    """
    Annotations for documents the fiscal service has not flagged as present.

    Returns a list of ``{'code', 'document', 'label'}`` dicts, empty when
    the order looks complete.
    """
    return [
        {
            'code': 'missing_document',
            'document': doc,
            'label': str(DOCUMENT_LABELS.get(doc, doc)),
        }
        for doc in missing_documents(cargo_type, fiscal_documents)
    ]


def minimum_slot_price(min_rate_per_km, distance_km):
    """Reference floor for one truck on this route, or None when it cannot be computed."""
    if min_rate_per_km is None or distance_km is None:
        return None
    try:
        floor = Decimal(str(min_rate_per_km)) * Decimal(str(distance_km))
    except (InvalidOperation, ValueError):
        return None
    return floor.quantize(Decimal('0.01'), rounding=ROUND_HALF_UP)
