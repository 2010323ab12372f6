"""
Custom exception hierarchy for contract reconciliation.

Each exception type maps to a specific category of failure in the
pipeline, so callers (the API layer, the CLI) can map them to a status
code and a human-readable reason without ever exposing provider errors.
"""

from __future__ import annotations


class BlockLeaseError(Exception):
    """Base exception for all reconciliation failures."""

    def __init__(self, code: str, message: str, details: dict | None = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)


class ExtractionError(BlockLeaseError):
    """The document intelligence service failed or returned unusable data."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__("EXTRACTION_FAILED", message, details)


class OwnershipMismatch(BlockLeaseError):
    """Landlord, deed owner and bill holder names disagree."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__("OWNERSHIP_MISMATCH", message, details)


class AddressMismatch(BlockLeaseError):
    """Two addresses that must describe the same property do not."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__("ADDRESS_MISMATCH", message, details)


class AuthenticityTooLow(BlockLeaseError):
    """The forensic authenticity score is below the acceptance threshold."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__("AUTHENTICITY_TOO_LOW", message, details)


class PreconditionFailed(BlockLeaseError):
    """The entity is not in a state that allows the requested operation."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__("PRECONDITION_FAILED", message, details)


class NotFound(BlockLeaseError):
    """The referenced record does not exist or belongs to someone else."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__("NOT_FOUND", message, details)


class LedgerUnavailable(BlockLeaseError):
    """The ledger could not be reached. Safe to retry; no state was changed."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__("LEDGER_UNAVAILABLE", message, details)


class InvalidSignature(BlockLeaseError):
    """An identity provider callback failed HMAC verification."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__("INVALID_SIGNATURE", message, details)


class IdentityProviderError(BlockLeaseError):
    """The identity verification provider failed or sent an unusable decision."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__("IDENTITY_PROVIDER_UNAVAILABLE", message, details)


class DuplicateDocument(BlockLeaseError):
    """A record with the same document hash already exists."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__("DUPLICATE_DOCUMENT", message, details)
