"""
Block Lease — Rental contract fingerprinting, reconciliation and anti-fraud.

Architecture: Fingerprint → Provisional hash → Landlord/unit match → Unit verification → Corrected hash → Ledger
Philosophy:  The tenant's document says WHAT was agreed. Only the registry says WHO and WHERE.
"""

__version__ = "1.0.0"
