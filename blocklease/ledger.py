"""
Hash & ledger gateway — the unit of public truth.

A contract is identified forever by the SHA-256 of its canonical
fingerprint text. The ledger maps that hash to an immutable approval
record. It is append-only: records are never updated or removed, and they
outlive any off-chain bookkeeping.

``LedgerGateway`` is the contract the engine depends on. ``SqlLedger``
implements it on an insert-only table; a chain-backed gateway only needs
to provide the same two operations.
"""

from __future__ import annotations

import hashlib
import logging
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, String, Text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import declarative_base

from .database import create_db_engine, create_session_factory
from .exceptions import LedgerUnavailable
from .models import LedgerRecord, TransactionReceipt

logger = logging.getLogger(__name__)


def compute_document_hash(fingerprint_text: str) -> str:
    """SHA-256 hex digest of the exact UTF-8 bytes. No normalization."""
    return hashlib.sha256(fingerprint_text.encode("utf-8")).hexdigest()


# ─── Gateway Contract ────────────────────────────────────────────────


class LedgerGateway(ABC):
    """Append-only registry of approved contract hashes."""

    @abstractmethod
    def commit(
        self,
        doc_hash: str,
        landlord_name: str,
        unit_info: str,
        tenant_name: str,
        period_from: str,
        period_to: str,
    ) -> TransactionReceipt:
        """Record a hash. Re-committing a known hash is a success, not an error.

        Raises:
            LedgerUnavailable: the ledger could not be written.
        """

    @abstractmethod
    def lookup(self, doc_hash: str) -> LedgerRecord:
        """Read a record. Unknown hashes return ``exists=False``."""


# ─── SQL-backed Ledger ───────────────────────────────────────────────

LedgerBase = declarative_base()


class LedgerEntry(LedgerBase):
    __tablename__ = "ledger_entries"

    doc_hash = Column(String(64), primary_key=True)
    landlord_name = Column(Text, nullable=False)
    unit_info = Column(Text, nullable=False)
    tenant_name = Column(Text, nullable=False)
    period_from = Column(String(32), nullable=False)
    period_to = Column(String(32), nullable=False)
    tx_hash = Column(String(66), unique=True, nullable=False)
    recorded_at = Column(DateTime(timezone=True), nullable=False)


class SqlLedger(LedgerGateway):
    """Insert-only ledger table. Rows are never updated or deleted."""

    def __init__(self, url: str = "sqlite://"):
        self.engine = create_db_engine(url)
        self._sessions = create_session_factory(self.engine)
        LedgerBase.metadata.create_all(self.engine)

    def commit(
        self,
        doc_hash: str,
        landlord_name: str,
        unit_info: str,
        tenant_name: str,
        period_from: str,
        period_to: str,
    ) -> TransactionReceipt:
        try:
            with self._sessions() as session:
                existing = session.get(LedgerEntry, doc_hash)
                if existing is not None:
                    logger.info("Hash %s already on ledger (tx %s)", doc_hash, existing.tx_hash)
                    return _receipt(existing, already_recorded=True)

                entry = LedgerEntry(
                    doc_hash=doc_hash,
                    landlord_name=landlord_name,
                    unit_info=unit_info,
                    tenant_name=tenant_name,
                    period_from=period_from,
                    period_to=period_to,
                    tx_hash=_new_tx_hash(doc_hash),
                    recorded_at=datetime.now(timezone.utc),
                )
                session.add(entry)
                session.commit()
                logger.info("Committed %s to ledger (tx %s)", doc_hash, entry.tx_hash)
                return _receipt(entry, already_recorded=False)
        except IntegrityError:
            # Lost a race with a concurrent commit of the same hash
            return self._existing_receipt(doc_hash)
        except SQLAlchemyError as e:
            logger.error("Ledger commit failed for %s: %s", doc_hash, e)
            raise LedgerUnavailable(
                "The ledger is temporarily unavailable. Please retry the approval.",
                {"doc_hash": doc_hash},
            ) from e

    def lookup(self, doc_hash: str) -> LedgerRecord:
        try:
            with self._sessions() as session:
                entry = session.get(LedgerEntry, doc_hash)
        except SQLAlchemyError as e:
            logger.error("Ledger lookup failed for %s: %s", doc_hash, e)
            raise LedgerUnavailable(
                "The ledger is temporarily unavailable. Please try again.",
                {"doc_hash": doc_hash},
            ) from e

        if entry is None:
            return LedgerRecord(exists=False)
        return LedgerRecord(
            exists=True,
            landlord_name=entry.landlord_name,
            unit_info=entry.unit_info,
            tenant_name=entry.tenant_name,
            period_from=entry.period_from,
            period_to=entry.period_to,
            approved_timestamp=entry.recorded_at,
        )

    def _existing_receipt(self, doc_hash: str) -> TransactionReceipt:
        try:
            with self._sessions() as session:
                entry = session.get(LedgerEntry, doc_hash)
        except SQLAlchemyError as e:
            raise LedgerUnavailable(
                "The ledger is temporarily unavailable. Please retry the approval.",
                {"doc_hash": doc_hash},
            ) from e
        if entry is None:
            raise LedgerUnavailable(
                "The ledger rejected the record. Please retry the approval.",
                {"doc_hash": doc_hash},
            )
        return _receipt(entry, already_recorded=True)


def _new_tx_hash(doc_hash: str) -> str:
    return "0x" + hashlib.sha256(f"{doc_hash}:{uuid.uuid4().hex}".encode("utf-8")).hexdigest()


def _receipt(entry: LedgerEntry, already_recorded: bool) -> TransactionReceipt:
    return TransactionReceipt(
        doc_hash=entry.doc_hash,
        tx_hash=entry.tx_hash,
        recorded_at=entry.recorded_at,
        already_recorded=already_recorded,
    )
