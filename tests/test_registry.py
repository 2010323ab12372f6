"""
Registry tests — atomic inserts, the approval transaction, and the outbox.
"""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from blocklease.exceptions import DuplicateDocument, NotFound, PreconditionFailed
from blocklease.models import (
    Address,
    ApprovedContract,
    ContractStatus,
    KycStatus,
    OutboxMessage,
    OutboxStatus,
    PendingContract,
    Unit,
    UnitLifecycle,
    UnitStatus,
    VerificationStatus,
)
from blocklease.registry import Registry, new_id


def _unit(landlord_id: str, number: str = "12B", verified: bool = True) -> Unit:
    return Unit(
        id=new_id(),
        landlord_id=landlord_id,
        unit_number=number,
        address=Address(street="99 Sukhumvit Road", city="Bangkok"),
        verification_status=VerificationStatus.VERIFIED_BY_AI if verified else VerificationStatus.UNVERIFIED,
        is_verified=verified,
    )


def _pending(doc_hash: str, landlord_id: str | None, **overrides) -> PendingContract:
    values = {
        "doc_hash": doc_hash,
        "fingerprint": "Landlord: A",
        "tenant_email": "jane@example.com",
        "assigned_landlord_id": landlord_id,
        "unit_status": UnitStatus.UNMATCHED if landlord_id else UnitStatus.AWAITING_LANDLORD_REGISTRATION,
        "unmatched_unit_identifier": "Room 7, Silom Road",
    }
    values.update(overrides)
    return PendingContract(**values)


def _approved(doc_hash: str, landlord_id: str, unit_id: str) -> ApprovedContract:
    return ApprovedContract(
        doc_hash=doc_hash,
        fingerprint="Landlord: A",
        landlord_id=landlord_id,
        unit_id=unit_id,
        tenant_email="jane@example.com",
        tx_hash="0x" + "ab" * 32,
        approved_on=datetime.now(timezone.utc),
    )


def _message() -> OutboxMessage:
    return OutboxMessage(id=new_id(), recipient="jane@example.com", subject="Hi", body="<p>hi</p>")


class TestLandlords:
    def test_new_landlord_is_kyc_pending(self, registry) -> None:
        landlord = registry.add_landlord("Somchai Jaidee", "Somchai@Example.com")
        assert landlord.kyc_status == KycStatus.PENDING
        assert landlord.email == "somchai@example.com"

    def test_duplicate_email_rejected(self, registry) -> None:
        registry.add_landlord("A", "a@example.com")
        with pytest.raises(PreconditionFailed):
            registry.add_landlord("B", "A@example.com")

    def test_name_lookup_is_exact(self, registry, landlord) -> None:
        assert registry.find_landlord_by_name("Somchai Jaidee").id == landlord.id
        assert registry.find_landlord_by_name("somchai jaidee") is None
        assert registry.find_landlord_by_name("Somchai J.") is None

    def test_name_lookup_can_require_kyc(self, registry) -> None:
        registry.add_landlord("Niran Chaiyo", "niran@example.com")
        assert registry.find_landlord_by_name("Niran Chaiyo") is not None
        assert registry.find_landlord_by_name("Niran Chaiyo", KycStatus.APPROVED) is None

    def test_update_kyc(self, registry) -> None:
        created = registry.add_landlord("A", "a@example.com")
        assert registry.update_kyc(created.id, KycStatus.FAILED, {"decision": "declined"}) is True
        updated = registry.get_landlord(created.id)
        assert updated.kyc_status == KycStatus.FAILED
        assert updated.kyc_data == {"decision": "declined"}
        assert updated.last_kyc_update is not None

    def test_update_kyc_unknown_landlord(self, registry) -> None:
        assert registry.update_kyc("missing", KycStatus.APPROVED) is False


class TestUnits:
    def test_add_and_get(self, registry, landlord) -> None:
        unit = registry.add_unit(_unit(landlord.id))
        fetched = registry.get_unit(unit.id)
        assert fetched.address.street == "99 Sukhumvit Road"
        assert fetched.is_verified is True

    def test_archived_units_excluded_from_active(self, registry, landlord) -> None:
        kept = registry.add_unit(_unit(landlord.id, "1"))
        archived = registry.add_unit(_unit(landlord.id, "2"))
        assert registry.set_unit_lifecycle(archived.id, landlord.id, UnitLifecycle.ARCHIVED)
        assert [u.id for u in registry.list_active_units(landlord.id)] == [kept.id]
        assert len(registry.list_units(landlord.id)) == 2
        assert registry.get_unit(archived.id).archived_on is not None

    def test_lifecycle_requires_ownership(self, registry, landlord) -> None:
        unit = registry.add_unit(_unit(landlord.id))
        assert registry.set_unit_lifecycle(unit.id, "someone-else", UnitLifecycle.ARCHIVED) is False

    def test_mark_verified(self, registry, landlord) -> None:
        unit = registry.add_unit(_unit(landlord.id, verified=False))
        verified = registry.mark_unit_verified(unit.id, landlord.id, "d.pdf", "b.png", {"authenticityScore": 90})
        assert verified.is_verified is True
        assert verified.verification_status == VerificationStatus.VERIFIED_BY_AI
        assert verified.ai_extracted_data == {"authenticityScore": 90}

    def test_mark_verified_wrong_owner(self, registry, landlord) -> None:
        unit = registry.add_unit(_unit(landlord.id, verified=False))
        assert registry.mark_unit_verified(unit.id, "other", "d", "b", {}) is None


class TestPendingContracts:
    def test_duplicate_hash_rejected_atomically(self, registry) -> None:
        registry.add_pending(_pending("h1", None))
        with pytest.raises(DuplicateDocument):
            registry.add_pending(_pending("h1", None))

    def test_awaiting_registration_cannot_have_landlord(self) -> None:
        with pytest.raises(ValueError):
            _pending("h", "l1", unit_status=UnitStatus.AWAITING_LANDLORD_REGISTRATION)

    def test_matched_requires_unit(self) -> None:
        with pytest.raises(ValueError):
            _pending("h", "l1", unit_status=UnitStatus.MATCHED)

    def test_create_unit_for_pending_links_contract(self, registry, landlord) -> None:
        registry.add_pending(_pending("h1", landlord.id))
        unit = registry.create_unit_for_pending("h1", _unit(landlord.id, "Room 7", verified=False))
        pending = registry.get_pending("h1")
        assert pending.unit_status == UnitStatus.MATCHED
        assert pending.unit_id == unit.id

    def test_create_unit_for_matched_contract_rolls_back(self, registry, landlord) -> None:
        existing = registry.add_unit(_unit(landlord.id))
        registry.add_pending(_pending("h1", landlord.id, unit_status=UnitStatus.MATCHED, unit_id=existing.id))
        with pytest.raises(PreconditionFailed):
            registry.create_unit_for_pending("h1", _unit(landlord.id, "Room 7", verified=False))
        assert len(registry.list_units(landlord.id)) == 1


class TestPromote:
    def test_moves_pending_to_approved_with_outbox(self, registry, landlord) -> None:
        unit = registry.add_unit(_unit(landlord.id))
        registry.add_pending(_pending("provisional", landlord.id, unit_status=UnitStatus.MATCHED, unit_id=unit.id))
        message = _message()

        assert registry.promote("provisional", _approved("corrected", landlord.id, unit.id), message) is True
        assert registry.get_pending("provisional") is None
        assert registry.get_approved("corrected").status == ContractStatus.ACTIVE
        assert registry.get_message(message.id).status == OutboxStatus.PENDING

    def test_already_approved_consumes_pending(self, registry, landlord) -> None:
        unit = registry.add_unit(_unit(landlord.id))
        for h in ("p1", "p2"):
            registry.add_pending(_pending(h, landlord.id, unit_status=UnitStatus.MATCHED, unit_id=unit.id))
        assert registry.promote("p1", _approved("corrected", landlord.id, unit.id)) is True
        assert registry.promote("p2", _approved("corrected", landlord.id, unit.id)) is False
        assert registry.get_pending("p2") is None
        assert len(registry.list_approved_for_landlord(landlord.id)) == 1

    def test_missing_pending_raises_and_writes_nothing(self, registry, landlord) -> None:
        unit = registry.add_unit(_unit(landlord.id))
        with pytest.raises(NotFound):
            registry.promote("gone", _approved("corrected", landlord.id, unit.id), _message())
        assert registry.get_approved("corrected") is None
        assert registry.pending_messages() == []

    def test_terminate(self, registry, landlord) -> None:
        unit = registry.add_unit(_unit(landlord.id))
        registry.add_pending(_pending("p", landlord.id, unit_status=UnitStatus.MATCHED, unit_id=unit.id))
        registry.promote("p", _approved("c", landlord.id, unit.id))
        assert registry.terminate_approved("c", "someone-else") is False
        assert registry.terminate_approved("c", landlord.id) is True
        approved = registry.get_approved("c")
        assert approved.status == ContractStatus.TERMINATED
        assert approved.terminated_on is not None


class TestOutbox:
    def test_mark_sent(self, registry) -> None:
        message = registry.enqueue(_message())
        registry.mark_sent(message.id)
        stored = registry.get_message(message.id)
        assert stored.status == OutboxStatus.SENT
        assert stored.attempts == 1
        assert registry.pending_messages() == []

    def test_failures_retry_until_limit(self, registry) -> None:
        message = registry.enqueue(_message())
        registry.mark_failed(message.id, "timeout", max_attempts=2)
        assert registry.get_message(message.id).status == OutboxStatus.PENDING
        registry.mark_failed(message.id, "timeout", max_attempts=2)
        stored = registry.get_message(message.id)
        assert stored.status == OutboxStatus.FAILED
        assert stored.last_error == "timeout"


class TestIsolation:
    def test_in_memory_registries_do_not_share_state(self) -> None:
        a, b = Registry("sqlite://"), Registry("sqlite://")
        a.add_landlord("A", "a@example.com")
        assert b.find_landlord_by_name("A") is None
