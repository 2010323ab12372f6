"""
Fingerprint codec — the wire format for "what was agreed".

    Landlord: {name} | Tenant: {name} | Unit: {info} | From: {date} | To: {date} | Rent: {number}

Serialization is STRICT: label text, order and separators are fixed, and
the output is the exact pre-image of the ledger hash. Changing a single
byte here orphans every hash already committed.

Parsing is LENIENT: extracted text is noisy, so unknown segments are
ignored and missing fields become ``"N/A"``. Parsing never raises; a
canonical fingerprint can always be re-derived from whatever the model
returned.
"""

from __future__ import annotations

from .models import NOT_AVAILABLE, Fingerprint, Unit

SEGMENT_SEPARATOR = " | "

# (label as serialized, lower-cased key accepted by the parser, field name)
_FIELDS: tuple[tuple[str, str, str], ...] = (
    ("Landlord", "landlord", "landlord_name"),
    ("Tenant", "tenant", "tenant_name"),
    ("Unit", "unit", "unit_info"),
    ("From", "from", "period_from"),
    ("To", "to", "period_to"),
    ("Rent", "rent", "rent"),
)

_KEY_TO_FIELD = {key: field for _, key, field in _FIELDS}


def serialize(fingerprint: Fingerprint) -> str:
    """Render a fingerprint in the canonical single-line format."""
    return SEGMENT_SEPARATOR.join(
        f"{label}: {getattr(fingerprint, field)}" for label, _, field in _FIELDS
    )


def parse(text: str) -> Fingerprint:
    """Parse fingerprint text back into fields.

    Each ``|`` segment is split on its FIRST colon only, so values such as
    ``Unit: 12/3, Soi 4: Bangkok`` survive intact. Later duplicates of a key
    win, as they would in a plain dict build.
    """
    values: dict[str, str] = {}
    for segment in text.split("|"):
        key, sep, value = segment.partition(":")
        if not sep:
            continue
        field = _KEY_TO_FIELD.get(key.strip().lower())
        if field is None:
            continue
        values[field] = value.strip()

    return Fingerprint(**{
        field: values.get(field) or NOT_AVAILABLE for _, _, field in _FIELDS
    })


def correct(original: Fingerprint, landlord_name: str, unit: Unit) -> Fingerprint:
    """Canonical fingerprint: official landlord and unit, submitted terms.

    Tenant, dates and rent come from the submitted contract; the landlord
    name and unit text come from the registry. Two tenants describing the
    same unit differently therefore end up with byte-identical fingerprints.
    """
    return Fingerprint(
        landlord_name=landlord_name,
        tenant_name=original.tenant_name,
        unit_info=official_unit_info(unit),
        period_from=original.period_from,
        period_to=original.period_to,
        rent=original.rent,
    )


def official_unit_info(unit: Unit) -> str:
    """``unit_number, street, city`` from the registry, empty parts skipped."""
    parts = [unit.unit_number, unit.address.street, unit.address.city]
    return ", ".join(p.strip() for p in parts if p and p.strip())


def split_unit_identifier(raw: str) -> tuple[str, str]:
    """Split raw contract unit text into (unit number, rest of address).

    >>> split_unit_identifier("Room 12B, 5 Main St, Bangkok")
    ('Room 12B', '5 Main St, Bangkok')
    """
    number, _, rest = raw.partition(",")
    return number.strip(), rest.strip()
