"""
Unit/contract registry — the only shared mutable state in the system.

Tables:
  landlords            identity + KYC status
  units                landlord portfolios (archived, never deleted)
  pending_contracts    tenant submissions, UNIQUE doc_hash
  approved_contracts   ledger-backed records, UNIQUE doc_hash
  notification_outbox  messages written in the same transaction as approvals

The unique constraint on ``pending_contracts.doc_hash`` is what makes
"check, then insert" safe when the same contract is uploaded twice at
once: the loser of the race gets ``DuplicateDocument``.

Every method opens its own short-lived session and returns pydantic
models, never ORM rows.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, JSON, String, Text, delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import declarative_base

from .database import create_db_engine, create_session_factory
from .exceptions import DuplicateDocument, NotFound, PreconditionFailed
from .models import (
    ApprovedContract,
    ContractStatus,
    KycStatus,
    Landlord,
    OutboxMessage,
    OutboxStatus,
    PendingContract,
    Unit,
    UnitLifecycle,
    UnitStatus,
    VerificationStatus,
)

logger = logging.getLogger(__name__)

Base = declarative_base()


def new_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ─── Tables ──────────────────────────────────────────────────────────


class LandlordRow(Base):
    __tablename__ = "landlords"

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(Text, nullable=False, index=True)
    email = Column(String(320), nullable=False, unique=True)
    kyc_status = Column(String(16), nullable=False, default=KycStatus.PENDING.value)
    identity_session_id = Column(String(128))
    kyc_data = Column(JSON)
    last_kyc_update = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class UnitRow(Base):
    __tablename__ = "units"

    id = Column(String(36), primary_key=True, default=new_id)
    landlord_id = Column(String(36), ForeignKey("landlords.id"), nullable=False, index=True)
    unit_number = Column(Text, nullable=False)
    address = Column(JSON, nullable=False)
    verification_status = Column(String(16), nullable=False, default=VerificationStatus.UNVERIFIED.value)
    is_verified = Column(Boolean, nullable=False, default=False)
    title_deed_key = Column(Text)
    utility_bill_key = Column(Text)
    ai_extracted_data = Column(JSON)
    status = Column(String(16), nullable=False, default=UnitLifecycle.ACTIVE.value)
    archived_on = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class PendingContractRow(Base):
    __tablename__ = "pending_contracts"

    doc_hash = Column(String(64), primary_key=True)
    fingerprint = Column(Text, nullable=False)
    tenant_email = Column(String(320), nullable=False)
    assigned_landlord_id = Column(String(36), ForeignKey("landlords.id"), index=True)
    unit_id = Column(String(36), ForeignKey("units.id"))
    unit_status = Column(String(40), nullable=False)
    unmatched_unit_identifier = Column(Text)
    contract_key = Column(Text)
    invitee_email = Column(String(320))
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class ApprovedContractRow(Base):
    __tablename__ = "approved_contracts"

    doc_hash = Column(String(64), primary_key=True)
    fingerprint = Column(Text, nullable=False)
    landlord_id = Column(String(36), ForeignKey("landlords.id"), nullable=False, index=True)
    unit_id = Column(String(36), ForeignKey("units.id"), nullable=False)
    tenant_email = Column(String(320), nullable=False)
    contract_key = Column(Text)
    tx_hash = Column(String(66), nullable=False)
    approved_on = Column(DateTime(timezone=True), nullable=False)
    status = Column(String(16), nullable=False, default=ContractStatus.ACTIVE.value)
    terminated_on = Column(DateTime(timezone=True))


class OutboxRow(Base):
    __tablename__ = "notification_outbox"

    id = Column(String(36), primary_key=True, default=new_id)
    recipient = Column(String(320), nullable=False)
    subject = Column(Text, nullable=False)
    body = Column(Text, nullable=False)
    status = Column(String(16), nullable=False, default=OutboxStatus.PENDING.value, index=True)
    attempts = Column(Integer, nullable=False, default=0)
    last_error = Column(Text)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    sent_at = Column(DateTime(timezone=True))


# ─── Registry ────────────────────────────────────────────────────────


class Registry:
    """Persistence for landlords, units, contracts and the notification outbox."""

    def __init__(self, url: str = "sqlite://"):
        self.engine = create_db_engine(url)
        self._sessions = create_session_factory(self.engine)
        Base.metadata.create_all(self.engine)

    # ─── Landlords ───────────────────────────────────────────────────

    def add_landlord(
        self, name: str, email: str, kyc_status: KycStatus = KycStatus.PENDING
    ) -> Landlord:
        row = LandlordRow(
            id=new_id(), name=name, email=email.strip().lower(), kyc_status=kyc_status.value
        )
        with self._sessions() as session:
            session.add(row)
            try:
                session.commit()
            except IntegrityError as e:
                raise PreconditionFailed(
                    "An account with this email already exists.", {"email": row.email}
                ) from e
            return Landlord.model_validate(row)

    def get_landlord(self, landlord_id: str) -> Optional[Landlord]:
        with self._sessions() as session:
            row = session.get(LandlordRow, landlord_id)
            return Landlord.model_validate(row) if row else None

    def find_landlord_by_name(
        self, name: str, kyc_status: KycStatus | None = None
    ) -> Optional[Landlord]:
        """Exact registered-name lookup, oldest account first."""
        stmt = select(LandlordRow).where(LandlordRow.name == name)
        if kyc_status is not None:
            stmt = stmt.where(LandlordRow.kyc_status == kyc_status.value)
        stmt = stmt.order_by(LandlordRow.created_at).limit(1)
        with self._sessions() as session:
            row = session.scalars(stmt).first()
            return Landlord.model_validate(row) if row else None

    def set_identity_session(self, landlord_id: str, session_id: str) -> None:
        with self._sessions() as session:
            session.execute(
                update(LandlordRow)
                .where(LandlordRow.id == landlord_id)
                .values(identity_session_id=session_id)
            )
            session.commit()

    def update_kyc(self, landlord_id: str, status: KycStatus, data: dict | None = None) -> bool:
        with self._sessions() as session:
            result = session.execute(
                update(LandlordRow)
                .where(LandlordRow.id == landlord_id)
                .values(kyc_status=status.value, kyc_data=data, last_kyc_update=utcnow())
            )
            session.commit()
            return result.rowcount > 0

    # ─── Units ───────────────────────────────────────────────────────

    def add_unit(self, unit: Unit) -> Unit:
        with self._sessions() as session:
            row = _unit_row(unit)
            session.add(row)
            session.commit()
            return Unit.model_validate(row)

    def get_unit(self, unit_id: str) -> Optional[Unit]:
        with self._sessions() as session:
            row = session.get(UnitRow, unit_id)
            return Unit.model_validate(row) if row else None

    def list_units(self, landlord_id: str, include_archived: bool = True) -> list[Unit]:
        stmt = select(UnitRow).where(UnitRow.landlord_id == landlord_id)
        if not include_archived:
            stmt = stmt.where(UnitRow.status == UnitLifecycle.ACTIVE.value)
        with self._sessions() as session:
            return [Unit.model_validate(r) for r in session.scalars(stmt.order_by(UnitRow.created_at))]

    def list_active_units(self, landlord_id: str) -> list[Unit]:
        return self.list_units(landlord_id, include_archived=False)

    def find_unit_by_number(self, landlord_id: str, unit_number: str) -> Optional[Unit]:
        stmt = (
            select(UnitRow)
            .where(UnitRow.landlord_id == landlord_id, UnitRow.unit_number == unit_number)
            .order_by(UnitRow.created_at)
            .limit(1)
        )
        with self._sessions() as session:
            row = session.scalars(stmt).first()
            return Unit.model_validate(row) if row else None

    def mark_unit_verified(
        self,
        unit_id: str,
        landlord_id: str,
        title_deed_key: str,
        utility_bill_key: str,
        ai_extracted_data: dict,
    ) -> Optional[Unit]:
        with self._sessions() as session:
            row = session.get(UnitRow, unit_id)
            if row is None or row.landlord_id != landlord_id:
                return None
            row.is_verified = True
            row.verification_status = VerificationStatus.VERIFIED_BY_AI.value
            row.title_deed_key = title_deed_key
            row.utility_bill_key = utility_bill_key
            row.ai_extracted_data = ai_extracted_data
            session.commit()
            return Unit.model_validate(row)

    def set_unit_lifecycle(self, unit_id: str, landlord_id: str, status: UnitLifecycle) -> bool:
        archived_on = utcnow() if status == UnitLifecycle.ARCHIVED else None
        with self._sessions() as session:
            result = session.execute(
                update(UnitRow)
                .where(UnitRow.id == unit_id, UnitRow.landlord_id == landlord_id)
                .values(status=status.value, archived_on=archived_on)
            )
            session.commit()
            return result.rowcount > 0

    # ─── Pending Contracts ───────────────────────────────────────────

    def add_pending(self, pending: PendingContract) -> PendingContract:
        """Insert a pending contract. The doc_hash is the atomic guard.

        Raises:
            DuplicateDocument: a pending contract with this hash already exists.
        """
        row = PendingContractRow(
            **pending.model_dump(exclude={"created_at", "unit_status"}),
            unit_status=pending.unit_status.value,
            created_at=pending.created_at or utcnow(),
        )
        with self._sessions() as session:
            session.add(row)
            try:
                session.commit()
            except IntegrityError as e:
                raise DuplicateDocument(
                    "This document has already been submitted.", {"doc_hash": pending.doc_hash}
                ) from e
            return PendingContract.model_validate(row)

    def get_pending(self, doc_hash: str) -> Optional[PendingContract]:
        with self._sessions() as session:
            row = session.get(PendingContractRow, doc_hash)
            return PendingContract.model_validate(row) if row else None

    def list_pending_for_landlord(self, landlord_id: str) -> list[PendingContract]:
        stmt = (
            select(PendingContractRow)
            .where(PendingContractRow.assigned_landlord_id == landlord_id)
            .order_by(PendingContractRow.created_at)
        )
        with self._sessions() as session:
            return [PendingContract.model_validate(r) for r in session.scalars(stmt)]

    def create_unit_for_pending(self, doc_hash: str, unit: Unit) -> Unit:
        """Create a unit and link an unmatched pending contract to it, atomically."""
        with self._sessions() as session:
            row = _unit_row(unit)
            session.add(row)
            session.flush()
            result = session.execute(
                update(PendingContractRow)
                .where(
                    PendingContractRow.doc_hash == doc_hash,
                    PendingContractRow.unit_status == UnitStatus.UNMATCHED.value,
                )
                .values(unit_id=row.id, unit_status=UnitStatus.MATCHED.value)
            )
            if result.rowcount == 0:
                session.rollback()
                raise PreconditionFailed(
                    "This contract is no longer waiting for a unit.", {"doc_hash": doc_hash}
                )
            session.commit()
            return Unit.model_validate(row)

    def set_invitee(self, doc_hash: str, email: str) -> None:
        with self._sessions() as session:
            session.execute(
                update(PendingContractRow)
                .where(PendingContractRow.doc_hash == doc_hash)
                .values(invitee_email=email.strip().lower())
            )
            session.commit()

    # ─── Approved Contracts ──────────────────────────────────────────

    def get_approved(self, doc_hash: str) -> Optional[ApprovedContract]:
        with self._sessions() as session:
            row = session.get(ApprovedContractRow, doc_hash)
            return ApprovedContract.model_validate(row) if row else None

    def list_approved_for_landlord(self, landlord_id: str) -> list[ApprovedContract]:
        stmt = (
            select(ApprovedContractRow)
            .where(ApprovedContractRow.landlord_id == landlord_id)
            .order_by(ApprovedContractRow.approved_on)
        )
        with self._sessions() as session:
            return [ApprovedContract.model_validate(r) for r in session.scalars(stmt)]

    def terminate_approved(self, doc_hash: str, landlord_id: str) -> bool:
        with self._sessions() as session:
            result = session.execute(
                update(ApprovedContractRow)
                .where(
                    ApprovedContractRow.doc_hash == doc_hash,
                    ApprovedContractRow.landlord_id == landlord_id,
                )
                .values(status=ContractStatus.TERMINATED.value, terminated_on=utcnow())
            )
            session.commit()
            return result.rowcount > 0

    def promote(
        self,
        pending_hash: str,
        approved: ApprovedContract,
        message: OutboxMessage | None = None,
    ) -> bool:
        """Move a contract from pending to approved in ONE transaction.

        The pending row is deleted, the approved row inserted, and the
        notification queued together; either all happen or none do.

        Returns:
            True if a new approved record was written; False if the corrected
            hash was already approved (the pending row is still consumed).

        Raises:
            NotFound: the pending contract was already promoted or removed.
        """
        with self._sessions() as session:
            if session.get(ApprovedContractRow, approved.doc_hash) is not None:
                self._consume_pending(session, pending_hash)
                session.commit()
                logger.info("Hash %s already approved; consumed pending %s", approved.doc_hash, pending_hash)
                return False

            self._consume_pending(session, pending_hash)
            session.add(ApprovedContractRow(
                **approved.model_dump(exclude={"status"}), status=approved.status.value
            ))
            if message is not None:
                session.add(_outbox_row(message))
            try:
                session.commit()
            except IntegrityError:
                session.rollback()
            else:
                return True

        # A concurrent approval wrote the same corrected hash first
        with self._sessions() as session:
            self._consume_pending(session, pending_hash)
            session.commit()
        return False

    @staticmethod
    def _consume_pending(session, pending_hash: str) -> None:
        result = session.execute(
            delete(PendingContractRow).where(PendingContractRow.doc_hash == pending_hash)
        )
        if result.rowcount == 0:
            session.rollback()
            raise NotFound("No matching pending contract found.", {"doc_hash": pending_hash})

    # ─── Outbox ──────────────────────────────────────────────────────

    def enqueue(self, message: OutboxMessage) -> OutboxMessage:
        with self._sessions() as session:
            row = _outbox_row(message)
            session.add(row)
            session.commit()
            return OutboxMessage.model_validate(row)

    def get_message(self, message_id: str) -> Optional[OutboxMessage]:
        with self._sessions() as session:
            row = session.get(OutboxRow, message_id)
            return OutboxMessage.model_validate(row) if row else None

    def pending_messages(self, limit: int = 50) -> list[OutboxMessage]:
        stmt = (
            select(OutboxRow)
            .where(OutboxRow.status == OutboxStatus.PENDING.value)
            .order_by(OutboxRow.created_at)
            .limit(limit)
        )
        with self._sessions() as session:
            return [OutboxMessage.model_validate(r) for r in session.scalars(stmt)]

    def mark_sent(self, message_id: str) -> None:
        with self._sessions() as session:
            row = session.get(OutboxRow, message_id)
            if row is None:
                return
            row.status = OutboxStatus.SENT.value
            row.attempts += 1
            row.sent_at = utcnow()
            row.last_error = None
            session.commit()

    def mark_failed(self, message_id: str, error: str, max_attempts: int) -> None:
        """Record a failed attempt; give up after ``max_attempts``."""
        with self._sessions() as session:
            row = session.get(OutboxRow, message_id)
            if row is None:
                return
            row.attempts += 1
            row.last_error = error
            if row.attempts >= max_attempts:
                row.status = OutboxStatus.FAILED.value
            session.commit()


# ─── Row Builders ────────────────────────────────────────────────────


def _unit_row(unit: Unit) -> UnitRow:
    return UnitRow(
        id=unit.id,
        landlord_id=unit.landlord_id,
        unit_number=unit.unit_number,
        address=unit.address.model_dump(),
        verification_status=unit.verification_status.value,
        is_verified=unit.is_verified,
        title_deed_key=unit.title_deed_key,
        utility_bill_key=unit.utility_bill_key,
        ai_extracted_data=unit.ai_extracted_data,
        status=unit.status.value,
        archived_on=unit.archived_on,
        created_at=unit.created_at or utcnow(),
    )


def _outbox_row(message: OutboxMessage) -> OutboxRow:
    return OutboxRow(
        id=message.id,
        recipient=message.recipient,
        subject=message.subject,
        body=message.body,
        status=message.status.value,
        attempts=message.attempts,
        created_at=message.created_at or utcnow(),
    )
