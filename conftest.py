"""Pytest configuration — project root on sys.path plus offline fakes for every external service."""

import re
import sys
from pathlib import Path
from typing import Callable, Optional, Sequence

import pytest

sys.path.insert(0, str(Path(__file__).parent))

from blocklease import fingerprint  # noqa: E402
from blocklease.config import Settings  # noqa: E402
from blocklease.engine import ReconciliationEngine  # noqa: E402
from blocklease.exceptions import ExtractionError  # noqa: E402
from blocklease.ledger import SqlLedger  # noqa: E402
from blocklease.models import (  # noqa: E402
    Address,
    DeedData,
    Document,
    Fingerprint,
    KycStatus,
    Landlord,
    Unit,
    UtilityBillData,
)
from blocklease.notifications import Notifier  # noqa: E402
from blocklease.registry import Registry  # noqa: E402
from blocklease.storage import LocalBlobStorage  # noqa: E402

LANDLORD_NAME = "Somchai Jaidee"
PROPERTY_ADDRESS = "12B, 99 Sukhumvit Road, Bangkok"


def _squash(address: str) -> str:
    return re.sub(r"[\s,.]+", " ", address).strip().casefold()


class FakeIntelligence:
    """Scripted stand-in for DocumentIntelligence. No network.

    A contract document's bytes are its fingerprint text, so tests control
    exactly what "the model" read.
    """

    def __init__(self) -> None:
        self.authenticity = 97.5
        self.deed = DeedData(owner_name=LANDLORD_NAME, property_address=PROPERTY_ADDRESS)
        self.bill = UtilityBillData(name_on_bill=LANDLORD_NAME, address_on_bill=PROPERTY_ADDRESS)
        self.extraction_error: Optional[ExtractionError] = None
        self.address_equal: Callable[[str, str], bool] = lambda a, b: _squash(a) == _squash(b)
        self.unit_match: Optional[Callable[[str, Sequence[Unit]], Optional[str]]] = None
        self.calls: list[str] = []

    def extract_fingerprint(self, document: Document) -> str:
        self.calls.append("extract_fingerprint")
        if self.extraction_error is not None:
            raise self.extraction_error
        return " ".join(document.content.decode("utf-8").split())

    def check_authenticity(self, document: Document) -> float:
        self.calls.append("check_authenticity")
        return self.authenticity

    def extract_deed_data(self, document: Document) -> DeedData:
        self.calls.append("extract_deed_data")
        if self.extraction_error is not None:
            raise self.extraction_error
        return self.deed

    def extract_utility_bill_data(self, document: Document) -> UtilityBillData:
        self.calls.append("extract_utility_bill_data")
        if self.extraction_error is not None:
            raise self.extraction_error
        return self.bill

    def compare_addresses(self, a: str, b: str) -> bool:
        self.calls.append("compare_addresses")
        return self.address_equal(a, b)

    def find_best_unit_match(self, query_text: str, candidate_units: Sequence[Unit]) -> Optional[str]:
        self.calls.append("find_best_unit_match")
        if self.unit_match is not None:
            return self.unit_match(query_text, candidate_units)
        number, _ = fingerprint.split_unit_identifier(query_text)
        for unit in candidate_units:
            if unit.unit_number.casefold() == number.casefold():
                return unit.id
        return None


class RecordingNotifier(Notifier):
    """Collects messages instead of sending them; can be told to fail."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, str, str]] = []
        self.fail = False

    def send(self, recipient: str, subject: str, html_body: str) -> None:
        if self.fail:
            raise ConnectionError("SMTP server unreachable")
        self.sent.append((recipient, subject, html_body))


# ─── Fixtures ───────────────────────────────────────────────────────


@pytest.fixture(autouse=True)
def _no_llm_calls(monkeypatch):
    """Prevent real model API calls during tests — keeps the suite fast and free."""
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        public_base_url="https://blocklease.test",
        identity_secret_key="test-secret",
    )


@pytest.fixture
def registry() -> Registry:
    return Registry("sqlite://")


@pytest.fixture
def ledger() -> SqlLedger:
    return SqlLedger("sqlite://")


@pytest.fixture
def storage(tmp_path) -> LocalBlobStorage:
    return LocalBlobStorage(tmp_path / "blobs")


@pytest.fixture
def intelligence() -> FakeIntelligence:
    return FakeIntelligence()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def engine(registry, intelligence, ledger, storage, notifier, settings) -> ReconciliationEngine:
    return ReconciliationEngine(
        registry=registry,
        intelligence=intelligence,
        ledger=ledger,
        storage=storage,
        notifier=notifier,
        settings=settings,
    )


@pytest.fixture
def landlord(registry) -> Landlord:
    """A landlord whose KYC has been approved."""
    created = registry.add_landlord(LANDLORD_NAME, "somchai@example.com")
    registry.update_kyc(created.id, KycStatus.APPROVED, {"decision": "approved"})
    return registry.get_landlord(created.id)


@pytest.fixture
def make_contract() -> Callable[..., Document]:
    """Factory: a contract document whose model reading is the given fields."""

    def _make(**fields: str) -> Document:
        values = {
            "landlord_name": LANDLORD_NAME,
            "tenant_name": "Jane Doe",
            "unit_info": PROPERTY_ADDRESS,
            "period_from": "01/01/2025",
            "period_to": "31/12/2025",
            "rent": "15000",
        }
        values.update(fields)
        text = fingerprint.serialize(Fingerprint(**values))
        return Document(content=text.encode("utf-8"), mime_type="text/plain", filename="contract.pdf")

    return _make


@pytest.fixture
def deed_doc() -> Document:
    return Document(content=b"%PDF-deed", mime_type="application/pdf", filename="deed.pdf")


@pytest.fixture
def bill_doc() -> Document:
    return Document(content=b"\x89PNG-bill", mime_type="image/png", filename="bill.png")


@pytest.fixture
def unit_address() -> Address:
    return Address(street="99 Sukhumvit Road", city="Bangkok")
