"""
Deterministic verification gates — the "paranoid" layer of unit verification.

The model reads the documents; these functions decide. Each gate takes
already-extracted values, performs one check in plain code, and raises a
typed error naming the conflicting values when the check fails. Address
equivalence is the one fuzzy judgement, so the comparison is passed in
as a callable and the gate itself stays side-effect free.

Order matters and is enforced by the engine:
  authenticity → three-way ownership → deed vs bill address → entered address
"""

from __future__ import annotations

from typing import Callable

from .config import AUTHENTICITY_THRESHOLD
from .exceptions import AddressMismatch, AuthenticityTooLow, OwnershipMismatch
from .models import DeedData, UtilityBillData

AddressComparer = Callable[[str, str], bool]


def normalize_name(name: str) -> str:
    """Case-fold for comparison. No fuzzy matching, no initials expansion."""
    return name.strip().casefold()


def check_authenticity(score: float, threshold: float = AUTHENTICITY_THRESHOLD) -> None:
    """A title deed must look genuine before anything is read from it.

    The threshold is inclusive: exactly 85 passes, 84.999 does not.
    """
    if score < threshold:
        raise AuthenticityTooLow(
            f"Document authenticity score is too low ({score:g}%). "
            f"A score of at least {threshold:g}% is required.",
            {"score": score, "threshold": threshold},
        )


def check_ownership(landlord_name: str, deed: DeedData, bill: UtilityBillData) -> None:
    """Three-way identity check: profile name == deed owner == bill holder.

    All three must be equal after case-folding. "Somchai J." is NOT
    "Somchai Jaidee" — partial or abbreviated names are rejected.
    """
    profile = normalize_name(landlord_name)
    owner = normalize_name(deed.owner_name)
    holder = normalize_name(bill.name_on_bill)

    if profile != owner or profile != holder:
        raise OwnershipMismatch(
            f"Ownership Mismatch: the names on the uploaded documents "
            f"({deed.owner_name}, {bill.name_on_bill}) do not match your "
            f"verified profile name ({landlord_name}).",
            {
                "profile_name": landlord_name,
                "deed_owner_name": deed.owner_name,
                "bill_name": bill.name_on_bill,
            },
        )


def check_address_agreement(
    deed: DeedData, bill: UtilityBillData, compare: AddressComparer
) -> None:
    """The deed and the bill must describe the same property."""
    if not compare(deed.property_address, bill.address_on_bill):
        raise AddressMismatch(
            "Address Mismatch: the address on the title deed does not match "
            "the address on the utility bill.",
            {
                "deed_address": deed.property_address,
                "bill_address": bill.address_on_bill,
            },
        )


def entered_address_matches(
    entered_address: str, deed: DeedData, compare: AddressComparer
) -> bool:
    """Advisory check of the landlord's typed address against the deed.

    Unlike the other gates this never raises: a mismatch is returned to the
    landlord as a confirmation prompt.
    """
    return compare(entered_address, deed.property_address)
