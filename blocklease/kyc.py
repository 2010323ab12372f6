"""
Landlord KYC through an external identity verification provider.

Flow:
  1. ``IdentityProviderClient.create_session`` registers the landlord with
     the provider and returns a redirect URL for the biometric check.
  2. The provider later POSTs a decision to our callback, signed with
     HMAC-SHA256 over the raw body using a shared secret.
  3. ``apply_callback`` verifies the signature FIRST. An unverified body is
     rejected outright and never parsed.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

import httpx

from .exceptions import IdentityProviderError, InvalidSignature
from .models import KycStatus, Landlord
from .registry import Registry

logger = logging.getLogger(__name__)


@dataclass
class KycDecision:
    """A verified provider decision for one landlord."""

    landlord_id: str
    status: KycStatus
    data: dict[str, Any] = field(default_factory=dict)


# ─── Provider Client ─────────────────────────────────────────────────


class IdentityProviderClient:
    """Creates verification sessions with the identity provider."""

    def __init__(
        self,
        base_url: str,
        api_key: str | None,
        timeout: float = 30.0,
        http_client: httpx.Client | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self._http = http_client or httpx.Client(timeout=timeout)

    def create_session(self, landlord: Landlord, callback_url: str) -> tuple[str, str]:
        """Start a session for ``landlord``.

        Returns:
            (provider session id, redirect URL for the landlord)
        """
        first, _, rest = landlord.name.partition(" ")
        payload = {
            "verification": {
                "callback": callback_url,
                "vendorData": landlord.id,
                "person": {"firstName": first, "lastName": rest or landlord.name},
                "timestamp": datetime.now(timezone.utc).isoformat(),
            }
        }
        try:
            response = self._http.post(
                f"{self.base_url}/sessions",
                json=payload,
                headers={"X-AUTH-CLIENT": self.api_key or ""},
            )
            response.raise_for_status()
            verification = response.json()["verification"]
            session_id, url = verification["id"], verification["url"]
        except (httpx.HTTPError, KeyError, TypeError, ValueError) as e:
            logger.error("Identity session creation failed for %s: %s", landlord.id, e)
            raise IdentityProviderError(
                "Identity verification is temporarily unavailable. Please try again."
            ) from e

        logger.info("Identity session %s created for landlord %s", session_id, landlord.id)
        return session_id, url


# ─── Signed Callbacks ────────────────────────────────────────────────


def sign(raw_body: bytes, secret: str) -> str:
    """Hex HMAC-SHA256 of the raw callback body."""
    return hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()


def verify_signature(raw_body: bytes, signature: str | None, secret: str | None) -> bool:
    """Constant-time signature check. Missing secret or signature never passes."""
    if not signature or not secret:
        return False
    return hmac.compare_digest(sign(raw_body, secret), signature.strip().lower())


def parse_callback(raw_body: bytes) -> Optional[KycDecision]:
    """Extract a decision from a (signature-verified) callback body.

    Only completed events that carry a person are decisions; anything else
    (started, submitted, ...) returns None and leaves KYC status untouched.
    """
    try:
        event = json.loads(raw_body)
    except (json.JSONDecodeError, UnicodeDecodeError):
        logger.warning("Ignoring unparseable identity callback")
        return None
    if not isinstance(event, dict):
        return None

    verification = event.get("verification") or {}
    person = (verification.get("person") or {}) if isinstance(verification, dict) else None
    if not isinstance(person, dict):
        logger.error("Identity callback has a malformed verification block")
        raise IdentityProviderError("The identity provider sent a malformed decision.")
    if event.get("status") != "success" or not person.get("firstName"):
        return None
    landlord_id = verification.get("vendorData")
    if not landlord_id:
        return None

    decision = verification.get("status")
    document = verification.get("document")
    if not isinstance(document, dict):
        document = {}
    return KycDecision(
        landlord_id=str(landlord_id),
        status=KycStatus.APPROVED if decision == "approved" else KycStatus.FAILED,
        data={
            "decision": decision,
            "fullName": person.get("fullName"),
            "dateOfBirth": person.get("dateOfBirth"),
            "address": document.get("address"),
        },
    )


def apply_callback(
    registry: Registry, raw_body: bytes, signature: str | None, secret: str | None
) -> Optional[KycDecision]:
    """Verify, parse and persist an identity provider callback.

    Raises:
        InvalidSignature: the body was not signed with the shared secret.
        IdentityProviderError: a signed body whose verification block is malformed.
    """
    if not verify_signature(raw_body, signature, secret):
        logger.warning("Rejected identity callback with invalid signature")
        raise InvalidSignature("Invalid signature.")

    decision = parse_callback(raw_body)
    if decision is None:
        return None
    if not registry.update_kyc(decision.landlord_id, decision.status, decision.data):
        logger.warning("Identity callback for unknown landlord %s", decision.landlord_id)
        return None
    logger.info("KYC for landlord %s is now %s", decision.landlord_id, decision.status.value)
    return decision
