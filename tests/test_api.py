"""
FastAPI endpoint tests for the Block Lease API.

Uses httpx + FastAPI TestClient — no real server, no model calls, no SMTP.
"""

from __future__ import annotations

import json

import api
import pytest
from api import app
from fastapi.testclient import TestClient

from blocklease.exceptions import ExtractionError, LedgerUnavailable
from blocklease.kyc import sign
from blocklease.models import Address, Unit, UtilityBillData, VerificationStatus
from blocklease.registry import new_id

client = TestClient(app)

TENANT = "jane@example.com"
CONTRACT = (
    "Landlord: Somchai Jaidee | Tenant: Jane Doe | Unit: 12B, 99 Sukhumvit Road, Bangkok"
    " | From: 01/01/2025 | To: 31/12/2025 | Rent: 15000"
)


@pytest.fixture(autouse=True)
def _use_engine(engine):
    """Point the app at the per-test engine (bypasses lifespan)."""
    api._engine = engine
    yield
    api._engine = None


@pytest.fixture
def verified_unit(registry, landlord) -> Unit:
    return registry.add_unit(Unit(
        id=new_id(),
        landlord_id=landlord.id,
        unit_number="12B",
        address=Address(street="99 Sukhumvit Road", city="Bangkok"),
        verification_status=VerificationStatus.VERIFIED_BY_AI,
        is_verified=True,
    ))


def _initiate(contract: str = CONTRACT):
    return client.post(
        "/contracts/initiate",
        files={"file": ("contract.txt", contract.encode("utf-8"), "text/plain")},
        data={"tenant_email": TENANT},
    )


def _unit_form(**overrides) -> dict:
    form = {"unit_number": "12B", "street": "99 Sukhumvit Road", "city": "Bangkok"}
    form.update(overrides)
    return form


_EVIDENCE = {
    "title_deed": ("deed.pdf", b"%PDF-deed", "application/pdf"),
    "utility_bill": ("bill.png", b"\x89PNG-bill", "image/png"),
}


class TestHealthEndpoint:
    def test_health_returns_200(self) -> None:
        resp = client.get("/health")
        assert resp.status_code == 200

    def test_health_response_shape(self) -> None:
        data = client.get("/health").json()
        assert data["status"] == "healthy"
        assert data["version"] == "1.0.0"
        assert data["notifications_enabled"] is True
        assert data["identity_enabled"] is False

    def test_503_before_startup(self) -> None:
        api._engine = None
        assert client.get("/health").status_code == 503


class TestInitiateEndpoint:
    def test_new_landlord_flow(self) -> None:
        resp = _initiate(CONTRACT.replace("Somchai Jaidee", "Niran Chaiyo"))
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "pending_new_landlord_unmatched"
        assert len(data["doc_hash"]) == 64

    def test_resubmission_is_already_pending(self) -> None:
        first = _initiate().json()
        second = _initiate().json()
        assert second["status"] == "already_pending"
        assert second["doc_hash"] == first["doc_hash"]

    def test_missing_email_is_422(self) -> None:
        resp = client.post(
            "/contracts/initiate",
            files={"file": ("contract.txt", CONTRACT.encode("utf-8"), "text/plain")},
        )
        assert resp.status_code == 422

    def test_extraction_failure_is_502(self, intelligence) -> None:
        intelligence.extraction_error = ExtractionError("The contract could not be read.", {"kind": "timeout"})
        resp = _initiate()
        assert resp.status_code == 502
        body = resp.json()
        assert body["code"] == "EXTRACTION_FAILED"
        assert body["details"] == {"kind": "timeout"}


class TestUnitEndpoints:
    def test_register_unit(self, landlord) -> None:
        resp = client.post("/units", headers={"X-Landlord-Id": landlord.id}, data=_unit_form(), files=_EVIDENCE)
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "verified"
        assert data["unit"]["is_verified"] is True

    def test_missing_evidence_is_403(self, landlord) -> None:
        resp = client.post("/units", headers={"X-Landlord-Id": landlord.id}, data=_unit_form())
        assert resp.status_code == 403
        assert resp.json()["code"] == "PRECONDITION_FAILED"

    def test_ownership_mismatch_is_403(self, landlord, intelligence) -> None:
        intelligence.bill = UtilityBillData(name_on_bill="Somchai J.", address_on_bill="12B, 99 Sukhumvit Road, Bangkok")
        resp = client.post("/units", headers={"X-Landlord-Id": landlord.id}, data=_unit_form(), files=_EVIDENCE)
        assert resp.status_code == 403
        assert resp.json()["code"] == "OWNERSHIP_MISMATCH"

    def test_low_authenticity_is_400(self, landlord, intelligence) -> None:
        intelligence.authenticity = 40.0
        resp = client.post("/units", headers={"X-Landlord-Id": landlord.id}, data=_unit_form(), files=_EVIDENCE)
        assert resp.status_code == 400
        assert resp.json()["code"] == "AUTHENTICITY_TOO_LOW"

    def test_address_confirmation_round_trip(self, landlord) -> None:
        form = _unit_form(street="99 Sukhumvit Soi 11")
        first = client.post("/units", headers={"X-Landlord-Id": landlord.id}, data=form, files=_EVIDENCE).json()
        assert first["status"] == "address_confirmation_required"
        assert first["unit"] is None

        confirmed = client.post(
            "/units", headers={"X-Landlord-Id": landlord.id}, data={**form, "confirmed": "true"}, files=_EVIDENCE
        ).json()
        assert confirmed["status"] == "verified"

    def test_archive_and_restore(self, landlord, verified_unit) -> None:
        headers = {"X-Landlord-Id": landlord.id}
        assert client.post(f"/units/{verified_unit.id}/archive", headers=headers).json()["status"] == "archived"
        assert client.post(f"/units/{verified_unit.id}/restore", headers=headers).json()["status"] == "active"

    def test_missing_landlord_header_is_422(self, verified_unit) -> None:
        assert client.post(f"/units/{verified_unit.id}/archive").status_code == 422


class TestApprovalEndpoints:
    def test_approve_then_public_verify(self, landlord, verified_unit) -> None:
        doc_hash = _initiate().json()["doc_hash"]

        resp = client.post(f"/contracts/{doc_hash}/approve", headers={"X-Landlord-Id": landlord.id})
        assert resp.status_code == 200
        approved = resp.json()
        assert approved["tx_hash"].startswith("0x")

        public = client.get(f"/verify/{approved['doc_hash']}")
        assert public.status_code == 200
        data = public.json()
        assert data["contract_status"] == "active"
        assert data["on_chain"]["landlord_name"] == "Somchai Jaidee"

    def test_ledger_outage_is_503(self, landlord, verified_unit, ledger, monkeypatch) -> None:
        doc_hash = _initiate().json()["doc_hash"]

        def down(*args):
            raise LedgerUnavailable("The ledger is temporarily unavailable.")

        monkeypatch.setattr(ledger, "commit", down)
        resp = client.post(f"/contracts/{doc_hash}/approve", headers={"X-Landlord-Id": landlord.id})
        assert resp.status_code == 503
        assert resp.json()["code"] == "LEDGER_UNAVAILABLE"

    def test_create_unit_for_unmatched_contract(self, landlord) -> None:
        doc_hash = _initiate().json()["doc_hash"]
        resp = client.post(f"/contracts/{doc_hash}/create-unit", headers={"X-Landlord-Id": landlord.id})
        assert resp.status_code == 200
        assert resp.json()["verification_status"] == "pending_scan"

    def test_terminate(self, landlord, verified_unit) -> None:
        doc_hash = _initiate().json()["doc_hash"]
        approved = client.post(f"/contracts/{doc_hash}/approve", headers={"X-Landlord-Id": landlord.id}).json()
        resp = client.post(f"/contracts/{approved['doc_hash']}/terminate", headers={"X-Landlord-Id": landlord.id})
        assert resp.status_code == 200
        assert resp.json()["status"] == "terminated"

    def test_unknown_hash_is_404(self) -> None:
        resp = client.get(f"/verify/{'f' * 64}")
        assert resp.status_code == 404
        assert resp.json()["code"] == "NOT_FOUND"

    def test_verify_document_upload(self, landlord, verified_unit) -> None:
        doc_hash = _initiate().json()["doc_hash"]
        client.post(f"/contracts/{doc_hash}/approve", headers={"X-Landlord-Id": landlord.id})
        resp = client.post(
            "/contracts/verify-document",
            files={"file": ("contract.txt", CONTRACT.encode("utf-8"), "text/plain")},
        )
        assert resp.json()["verified"] is True


class TestLandlordEndpoints:
    def test_register_landlord(self) -> None:
        resp = client.post("/landlords", json={"name": "Niran Chaiyo", "email": "niran@example.com"})
        assert resp.status_code == 201
        assert resp.json()["kyc_status"] == "pending"

    def test_duplicate_email_is_403(self) -> None:
        client.post("/landlords", json={"name": "A", "email": "a@example.com"})
        resp = client.post("/landlords", json={"name": "B", "email": "a@example.com"})
        assert resp.status_code == 403

    def test_dashboard(self, landlord, verified_unit) -> None:
        _initiate()
        data = client.get("/dashboard", headers={"X-Landlord-Id": landlord.id}).json()
        assert data["landlord"]["name"] == "Somchai Jaidee"
        assert len(data["units"]) == 1
        assert len(data["pending_contracts"]) == 1

    def test_invite(self, notifier) -> None:
        doc_hash = _initiate(CONTRACT.replace("Somchai Jaidee", "Niran Chaiyo")).json()["doc_hash"]
        resp = client.post(f"/contracts/{doc_hash}/invite", json={"landlord_email": "niran@example.com"})
        assert resp.status_code == 200
        assert resp.json()["delivered"] is True
        assert notifier.sent[0][0] == "niran@example.com"


class TestKycCallback:
    def _body(self, landlord_id: str) -> bytes:
        return json.dumps({
            "status": "success",
            "verification": {"status": "approved", "vendorData": landlord_id, "person": {"firstName": "Niran"}},
        }).encode("utf-8")

    def test_bad_signature_is_403(self, registry) -> None:
        created = registry.add_landlord("Niran Chaiyo", "niran@example.com")
        resp = client.post(
            "/api/kyc/callback", content=self._body(created.id), headers={"X-HMAC-Signature": "00" * 32}
        )
        assert resp.status_code == 403
        assert resp.json()["code"] == "INVALID_SIGNATURE"

    def test_signed_callback_approves(self, registry) -> None:
        created = registry.add_landlord("Niran Chaiyo", "niran@example.com")
        body = self._body(created.id)
        resp = client.post(
            "/api/kyc/callback", content=body, headers={"X-HMAC-Signature": sign(body, "test-secret")}
        )
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok", "landlord_id": created.id, "kyc_status": "approved"}

    def test_signed_malformed_callback_is_502(self) -> None:
        body = b'{"status": "success", "verification": "approved"}'
        resp = client.post(
            "/api/kyc/callback", content=body, headers={"X-HMAC-Signature": sign(body, "test-secret")}
        )
        assert resp.status_code == 502
        assert resp.json()["code"] == "IDENTITY_PROVIDER_UNAVAILABLE"

    def test_start_session_without_provider_is_502(self, landlord) -> None:
        resp = client.post("/kyc/session", headers={"X-Landlord-Id": landlord.id})
        assert resp.status_code == 502
        assert resp.json()["code"] == "IDENTITY_PROVIDER_UNAVAILABLE"
