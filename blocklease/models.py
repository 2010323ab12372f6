"""
Pydantic models for the contract registry — strict typing at every boundary.

Status fields are explicit enums, and each entity validates the status
combinations it may legally be in. A ``matched`` pending contract without
a unit id, or a verified unit without the AI verification status, fails
loudly at construction instead of leaking downstream.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

NOT_AVAILABLE = "N/A"


# ─── Status Enums ────────────────────────────────────────────────────


class KycStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    FAILED = "failed"


class VerificationStatus(str, Enum):
    UNVERIFIED = "unverified"
    PENDING_SCAN = "pending_scan"  # Created from a contract, deed not yet scanned
    VERIFIED_BY_AI = "verified_by_ai"


class UnitLifecycle(str, Enum):
    ACTIVE = "active"
    ARCHIVED = "archived"


class UnitStatus(str, Enum):
    """How a pending contract relates to the landlord's portfolio."""

    MATCHED = "matched"
    UNMATCHED = "unmatched"
    AWAITING_LANDLORD_REGISTRATION = "awaiting_landlord_registration"


class ContractStatus(str, Enum):
    ACTIVE = "active"
    TERMINATED = "terminated"


class OutboxStatus(str, Enum):
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


class InitiationStatus(str, Enum):
    """Where a scanned contract lands after tenant initiation."""

    ALREADY_PENDING = "already_pending"
    ALREADY_APPROVED = "already_approved"
    PENDING_NEW_LANDLORD_UNMATCHED = "pending_new_landlord_unmatched"
    PENDING_MATCHED_AWAITING_LANDLORD_VERIFICATION = "pending_matched_awaiting_landlord_verification"
    PENDING_MATCHED_READY_FOR_APPROVAL = "pending_matched_ready_for_approval"


class UnitVerificationOutcome(str, Enum):
    VERIFIED = "verified"
    ADDRESS_CONFIRMATION_REQUIRED = "address_confirmation_required"


# ─── Fingerprint ─────────────────────────────────────────────────────


class Fingerprint(BaseModel):
    """The six essential terms of a rental contract — the pre-image of its hash."""

    model_config = ConfigDict(frozen=True)

    landlord_name: str = NOT_AVAILABLE
    tenant_name: str = NOT_AVAILABLE
    unit_info: str = NOT_AVAILABLE
    period_from: str = NOT_AVAILABLE  # DD/MM/YYYY
    period_to: str = NOT_AVAILABLE  # DD/MM/YYYY
    rent: str = NOT_AVAILABLE  # Decimal text, no currency


# ─── Documents & Extractions ─────────────────────────────────────────


class Document(BaseModel):
    """An uploaded scan (image or PDF) as raw bytes."""

    content: bytes
    mime_type: str = "application/octet-stream"
    filename: str = "document"


class DeedData(BaseModel):
    owner_name: str
    property_address: str


class UtilityBillData(BaseModel):
    name_on_bill: str
    address_on_bill: str


# ─── Registry Entities ───────────────────────────────────────────────


class Address(BaseModel):
    street: str = ""
    city: str = ""
    province: str = ""
    zip_code: str = ""
    country: str = ""

    def one_line(self) -> str:
        parts = [self.street, self.city, self.province, self.zip_code, self.country]
        return ", ".join(p.strip() for p in parts if p and p.strip())


class Landlord(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    email: str
    kyc_status: KycStatus = KycStatus.PENDING
    identity_session_id: Optional[str] = None
    kyc_data: Optional[dict] = None
    last_kyc_update: Optional[datetime] = None
    created_at: Optional[datetime] = None


class Unit(BaseModel):
    """One physical rental property owned by exactly one landlord."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    landlord_id: str
    unit_number: str
    address: Address = Field(default_factory=Address)
    verification_status: VerificationStatus = VerificationStatus.UNVERIFIED
    is_verified: bool = False
    title_deed_key: Optional[str] = None
    utility_bill_key: Optional[str] = None
    ai_extracted_data: Optional[dict] = None
    status: UnitLifecycle = UnitLifecycle.ACTIVE
    archived_on: Optional[datetime] = None
    created_at: Optional[datetime] = None

    @model_validator(mode="after")
    def _verified_flag_matches_status(self) -> Unit:
        if self.is_verified != (self.verification_status == VerificationStatus.VERIFIED_BY_AI):
            raise ValueError(
                f"is_verified={self.is_verified} contradicts "
                f"verification_status={self.verification_status.value}"
            )
        return self


class PendingContract(BaseModel):
    """A tenant-submitted contract that is not yet on the ledger."""

    model_config = ConfigDict(from_attributes=True)

    doc_hash: str
    fingerprint: str
    tenant_email: str
    assigned_landlord_id: Optional[str] = None
    unit_id: Optional[str] = None
    unit_status: UnitStatus
    unmatched_unit_identifier: Optional[str] = None
    contract_key: Optional[str] = None
    invitee_email: Optional[str] = None
    created_at: Optional[datetime] = None

    @model_validator(mode="after")
    def _status_is_consistent(self) -> PendingContract:
        if self.unit_status == UnitStatus.MATCHED and not self.unit_id:
            raise ValueError("A matched pending contract must reference a unit")
        if self.unit_status == UnitStatus.AWAITING_LANDLORD_REGISTRATION and self.assigned_landlord_id:
            raise ValueError("A contract awaiting registration cannot have a landlord")
        if self.unit_status != UnitStatus.AWAITING_LANDLORD_REGISTRATION and not self.assigned_landlord_id:
            raise ValueError(f"A {self.unit_status.value} contract must have a landlord")
        return self


class ApprovedContract(BaseModel):
    """The on-ledger record of an approved contract. Never deleted."""

    model_config = ConfigDict(from_attributes=True)

    doc_hash: str
    fingerprint: str
    landlord_id: str
    unit_id: str
    tenant_email: str
    contract_key: Optional[str] = None
    tx_hash: str
    approved_on: datetime
    status: ContractStatus = ContractStatus.ACTIVE
    terminated_on: Optional[datetime] = None


class OutboxMessage(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    recipient: str
    subject: str
    body: str
    status: OutboxStatus = OutboxStatus.PENDING
    attempts: int = 0
    last_error: Optional[str] = None
    created_at: Optional[datetime] = None
    sent_at: Optional[datetime] = None


# ─── Ledger ──────────────────────────────────────────────────────────


class TransactionReceipt(BaseModel):
    doc_hash: str
    tx_hash: str
    recorded_at: datetime
    already_recorded: bool = False  # Ledger already held this hash


class LedgerRecord(BaseModel):
    exists: bool
    landlord_name: str = ""
    unit_info: str = ""
    tenant_name: str = ""
    period_from: str = ""
    period_to: str = ""
    approved_timestamp: Optional[datetime] = None


# ─── Operation Results ───────────────────────────────────────────────


class InitiationResult(BaseModel):
    status: InitiationStatus
    doc_hash: str
    message: str
    unit_status: Optional[UnitStatus] = None


class UnitVerificationResult(BaseModel):
    status: UnitVerificationOutcome
    message: str
    unit: Optional[Unit] = None
    user_input_address: Optional[str] = None
    ai_suggested_address: Optional[str] = None


class ApprovalResult(BaseModel):
    doc_hash: str  # Corrected hash, the permanent public id
    tx_hash: str
    fingerprint: str
    already_approved: bool = False
    message: str


class PublicVerification(BaseModel):
    doc_hash: str
    contract_status: ContractStatus
    on_chain: LedgerRecord
    tx_hash: Optional[str] = None
    document_url: Optional[str] = None
    fingerprint: str


class DocumentVerification(BaseModel):
    verified: bool
    message: str
    fingerprint: str
    doc_hash: Optional[str] = None
    details: Optional[LedgerRecord] = None


class Dashboard(BaseModel):
    landlord: Landlord
    units: list[Unit] = Field(default_factory=list)
    title_deed_urls: dict[str, Optional[str]] = Field(default_factory=dict)
    pending_contracts: list[PendingContract] = Field(default_factory=list)
    approved_contracts: list[ApprovedContract] = Field(default_factory=list)
