"""
Reconciliation engine — orchestrates every state transition of a contract.

Flow:
  ┌──────────────┐
  │ Tenant scan  │   ← extract fingerprint, provisional hash
  └──────┬───────┘
         │
  ┌──────▼───────┐
  │ Known hash?  │   ← already pending / already approved: stop here
  └──────┬───────┘
         │
  ┌──────▼───────┐
  │ Landlord by  │   ← exact name + KYC approved (weak match, logged)
  │ name, unit   │   ← model picks a unit from the landlord's portfolio
  └──────┬───────┘
         │
  ┌──────▼───────┐
  │   Pending    │   ← UNIQUE doc_hash makes duplicate uploads harmless
  └──────┬───────┘
         │           landlord verifies the unit (deed + utility bill)
  ┌──────▼───────┐
  │   Approve    │   ← corrected fingerprint from registry data
  └──────┬───────┘
         │
  ┌──────▼───────┐
  │ Ledger, then │   ← pending → approved + outbox, one transaction
  │  promotion   │
  └──────────────┘

Design principles:
  - The tenant's document decides WHAT was agreed (tenant, dates, rent).
    The registry decides WHO and WHERE (landlord name, unit address).
  - The corrected hash, not the submitted one, is the public identifier.
  - A ledger failure leaves everything untouched, so approval can be retried.
  - Notification never blocks or undoes an approval.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Optional

from . import fingerprint, kyc, validators
from .config import Settings
from .exceptions import DuplicateDocument, IdentityProviderError, NotFound, PreconditionFailed
from .intelligence import DocumentIntelligence
from .kyc import IdentityProviderClient, KycDecision
from .ledger import LedgerGateway, SqlLedger, compute_document_hash
from .models import (
    Address,
    ApprovalResult,
    ApprovedContract,
    ContractStatus,
    Dashboard,
    DeedData,
    Document,
    DocumentVerification,
    InitiationResult,
    InitiationStatus,
    KycStatus,
    Landlord,
    OutboxMessage,
    PendingContract,
    PublicVerification,
    Unit,
    UnitLifecycle,
    UnitStatus,
    UnitVerificationOutcome,
    UnitVerificationResult,
    UtilityBillData,
    VerificationStatus,
)
from .notifications import (
    Notifier,
    SmtpNotifier,
    dispatch_message,
    dispatch_outbox,
    outbox_message,
    render_approval_email,
    render_invitation_email,
    verification_url,
)
from .registry import Registry, new_id, utcnow
from .storage import BlobStorage, LocalBlobStorage

logger = logging.getLogger(__name__)

ARCHIVED_FINGERPRINT = "Fingerprint data is archived."

_INITIATION_MESSAGES = {
    InitiationStatus.ALREADY_PENDING: (
        "This document has already been submitted and is awaiting landlord approval."
    ),
    InitiationStatus.ALREADY_APPROVED: (
        "This document has already been approved and recorded on the blockchain."
    ),
    InitiationStatus.PENDING_NEW_LANDLORD_UNMATCHED: (
        "Landlord not found. Please provide their email to invite them."
    ),
    InitiationStatus.PENDING_MATCHED_AWAITING_LANDLORD_VERIFICATION: (
        "Landlord found. The property must be verified by the landlord before approval."
    ),
    InitiationStatus.PENDING_MATCHED_READY_FOR_APPROVAL: (
        "Landlord found. Contract sent for approval."
    ),
}


class ReconciliationEngine:
    """All contract, unit and verification operations.

    Usage:
        engine = ReconciliationEngine.from_settings(Settings())
        result = engine.initiate_contract(document, "tenant@example.com")
        ...
        engine.approve_contract(landlord_id, result.doc_hash)
    """

    def __init__(
        self,
        registry: Registry,
        intelligence: DocumentIntelligence,
        ledger: LedgerGateway,
        storage: BlobStorage,
        notifier: Notifier | None = None,
        identity: IdentityProviderClient | None = None,
        settings: Settings | None = None,
    ):
        self.registry = registry
        self.intelligence = intelligence
        self.ledger = ledger
        self.storage = storage
        self.notifier = notifier
        self.identity = identity
        self.settings = settings or Settings()

    @classmethod
    def from_settings(cls, settings: Settings) -> ReconciliationEngine:
        """Build the process-wide clients once and wire them together."""
        notifier = None
        if settings.smtp_host:
            notifier = SmtpNotifier(
                host=settings.smtp_host,
                port=settings.smtp_port,
                sender=settings.email_sender,
                username=settings.smtp_username,
                password=settings.smtp_password,
                use_ssl=settings.smtp_use_ssl,
            )
        identity = None
        if settings.identity_api_key:
            identity = IdentityProviderClient(settings.identity_api_url, settings.identity_api_key)

        return cls(
            registry=Registry(settings.database_url),
            intelligence=DocumentIntelligence.from_settings(settings),
            ledger=SqlLedger(settings.ledger_url),
            storage=LocalBlobStorage(settings.storage_dir),
            notifier=notifier,
            identity=identity,
            settings=settings,
        )

    # ─── Tenant Initiation ───────────────────────────────────────────

    def initiate_contract(self, document: Document, tenant_email: str) -> InitiationResult:
        """Scan a tenant's contract and file it as pending.

        Resubmitting the same document is idempotent: it reports
        ``already_pending`` / ``already_approved`` and writes nothing.
        """
        tenant_email = (tenant_email or "").strip().lower()
        if not document.content or not tenant_email:
            raise PreconditionFailed("Contract file and tenant email are required.")

        # ── Step 1: Fingerprint + provisional hash ──────────────────
        fingerprint_text = self.intelligence.extract_fingerprint(document)
        doc_hash = compute_document_hash(fingerprint_text)

        # ── Step 2: Idempotency short-circuit ───────────────────────
        known = self._known_status(doc_hash)
        if known is not None:
            logger.info("Document %s resubmitted (%s)", doc_hash, known.value)
            return InitiationResult(
                status=known, doc_hash=doc_hash, message=_INITIATION_MESSAGES[known]
            )

        # ── Step 3: Landlord lookup by extracted name ───────────────
        details = fingerprint.parse(fingerprint_text)
        landlord = self.registry.find_landlord_by_name(details.landlord_name, KycStatus.APPROVED)
        contract_key = self.storage.put(document.content, "pending-contracts", document.filename)

        if landlord is None:
            # ── Step 4: Nobody to assign it to yet ──────────────────
            logger.info("No approved landlord named %r, awaiting registration", details.landlord_name)
            pending = PendingContract(
                doc_hash=doc_hash,
                fingerprint=fingerprint_text,
                tenant_email=tenant_email,
                unit_status=UnitStatus.AWAITING_LANDLORD_REGISTRATION,
                unmatched_unit_identifier=details.unit_info,
                contract_key=contract_key,
            )
        else:
            # ── Step 5: Unit match within the landlord's portfolio ──
            # The name is read from the tenant's upload, not authenticated.
            logger.info(
                "Low-confidence landlord match: extracted name %r -> landlord %s",
                details.landlord_name, landlord.id,
            )
            units = self.registry.list_active_units(landlord.id)
            unit_id = self.intelligence.find_best_unit_match(details.unit_info, units)
            pending = PendingContract(
                doc_hash=doc_hash,
                fingerprint=fingerprint_text,
                tenant_email=tenant_email,
                assigned_landlord_id=landlord.id,
                unit_id=unit_id,
                unit_status=UnitStatus.MATCHED if unit_id else UnitStatus.UNMATCHED,
                unmatched_unit_identifier=None if unit_id else details.unit_info,
                contract_key=contract_key,
            )

        # ── Step 6: Atomic insert ───────────────────────────────────
        try:
            pending = self.registry.add_pending(pending)
        except DuplicateDocument:
            logger.info("Concurrent submission of %s won the race", doc_hash)
            status = InitiationStatus.ALREADY_PENDING
            return InitiationResult(
                status=status, doc_hash=doc_hash, message=_INITIATION_MESSAGES[status]
            )

        status = self.describe_pending(pending)
        logger.info("Contract %s filed as %s", doc_hash, status.value)
        return InitiationResult(
            status=status,
            doc_hash=doc_hash,
            message=_INITIATION_MESSAGES[status],
            unit_status=pending.unit_status,
        )

    def describe_pending(self, pending: PendingContract) -> InitiationStatus:
        """Which post-initiation state a stored pending contract is in."""
        if pending.unit_status == UnitStatus.AWAITING_LANDLORD_REGISTRATION:
            return InitiationStatus.PENDING_NEW_LANDLORD_UNMATCHED
        if pending.unit_status == UnitStatus.MATCHED and pending.unit_id:
            unit = self.registry.get_unit(pending.unit_id)
            if unit is not None and unit.is_verified:
                return InitiationStatus.PENDING_MATCHED_READY_FOR_APPROVAL
        return InitiationStatus.PENDING_MATCHED_AWAITING_LANDLORD_VERIFICATION

    def _known_status(self, doc_hash: str) -> Optional[InitiationStatus]:
        if self.registry.get_pending(doc_hash) is not None:
            return InitiationStatus.ALREADY_PENDING
        if self.registry.get_approved(doc_hash) is not None:
            return InitiationStatus.ALREADY_APPROVED
        return None

    # ─── Unit Verification ───────────────────────────────────────────

    def register_unit(
        self,
        landlord_id: str,
        unit_number: str,
        address: Address,
        title_deed: Document | None,
        utility_bill: Document | None,
        confirmed: bool = False,
    ) -> UnitVerificationResult:
        """Add a new unit to a landlord's portfolio, verified on creation.

        When the typed address disagrees with the deed, nothing is stored and
        the landlord is asked to confirm; resubmitting with ``confirmed=True``
        skips that comparison.
        """
        if not unit_number.strip() or not address.street.strip() or not address.city.strip():
            raise PreconditionFailed("Unit number, street and city are required.")
        title_deed, utility_bill = _require_documents(title_deed, utility_bill)
        landlord = self._approved_landlord(landlord_id)

        deed, bill, evidence = self._run_gates(landlord, title_deed, utility_bill)

        # ── Step d: typed address vs deed (advisory) ────────────────
        if not confirmed:
            entered = f"{unit_number.strip()}, {address.one_line()}"
            if not validators.entered_address_matches(entered, deed, self.intelligence.compare_addresses):
                logger.info("Entered address differs from deed for landlord %s", landlord_id)
                return UnitVerificationResult(
                    status=UnitVerificationOutcome.ADDRESS_CONFIRMATION_REQUIRED,
                    message=(
                        "Address Mismatch: the address you entered does not exactly "
                        "match the one on the title deed."
                    ),
                    user_input_address=entered,
                    ai_suggested_address=deed.property_address,
                )

        # ── Step e: persist ─────────────────────────────────────────
        deed_key, bill_key = self._store_evidence(title_deed, utility_bill)
        unit = self.registry.add_unit(Unit(
            id=new_id(),
            landlord_id=landlord_id,
            unit_number=unit_number.strip(),
            address=address,
            verification_status=VerificationStatus.VERIFIED_BY_AI,
            is_verified=True,
            title_deed_key=deed_key,
            utility_bill_key=bill_key,
            ai_extracted_data=evidence,
        ))
        logger.info("Unit %s registered and verified for landlord %s", unit.id, landlord_id)
        return UnitVerificationResult(
            status=UnitVerificationOutcome.VERIFIED,
            message="Unit created and verified successfully!",
            unit=unit,
        )

    def verify_unit(
        self,
        landlord_id: str,
        unit_id: str,
        title_deed: Document | None,
        utility_bill: Document | None,
    ) -> UnitVerificationResult:
        """Verify an existing unit (e.g. one created from a tenant's contract)."""
        title_deed, utility_bill = _require_documents(title_deed, utility_bill)
        landlord = self._approved_landlord(landlord_id)
        unit = self.registry.get_unit(unit_id)
        if unit is None or unit.landlord_id != landlord_id:
            raise NotFound("Unit not found or you don't have permission.", {"unit_id": unit_id})

        _, _, evidence = self._run_gates(landlord, title_deed, utility_bill)

        deed_key, bill_key = self._store_evidence(title_deed, utility_bill)
        verified = self.registry.mark_unit_verified(unit_id, landlord_id, deed_key, bill_key, evidence)
        if verified is None:
            raise NotFound("Unit not found or you don't have permission.", {"unit_id": unit_id})
        logger.info("Unit %s verified for landlord %s", unit_id, landlord_id)
        return UnitVerificationResult(
            status=UnitVerificationOutcome.VERIFIED,
            message="Unit deed verified successfully!",
            unit=verified,
        )

    def _run_gates(
        self, landlord: Landlord, title_deed: Document, utility_bill: Document
    ) -> tuple[DeedData, UtilityBillData, dict]:
        """Steps a-c of unit verification. Each failing gate raises."""
        # ── Step a: authenticity (hard gate) ────────────────────────
        score = self.intelligence.check_authenticity(title_deed)
        validators.check_authenticity(score, self.settings.authenticity_threshold)

        # ── Step b: three-way ownership ─────────────────────────────
        with ThreadPoolExecutor(max_workers=2) as pool:
            deed_future = pool.submit(self.intelligence.extract_deed_data, title_deed)
            bill_future = pool.submit(self.intelligence.extract_utility_bill_data, utility_bill)
            deed = deed_future.result()
            bill = bill_future.result()
        validators.check_ownership(landlord.name, deed, bill)

        # ── Step c: deed address vs bill address ────────────────────
        validators.check_address_agreement(deed, bill, self.intelligence.compare_addresses)

        evidence = {
            "authenticityScore": score,
            "deedData": deed.model_dump(),
            "billData": bill.model_dump(),
        }
        return deed, bill, evidence

    def _store_evidence(self, title_deed: Document, utility_bill: Document) -> tuple[str, str]:
        deed_key = self.storage.put(title_deed.content, "verified-title-deeds", title_deed.filename)
        bill_key = self.storage.put(utility_bill.content, "verified-utility-bills", utility_bill.filename)
        return deed_key, bill_key

    # ─── Approval ────────────────────────────────────────────────────

    def approve_contract(self, landlord_id: str, doc_hash: str) -> ApprovalResult:
        """Approve a pending contract and record its corrected hash on the ledger."""
        pending = self._assigned_pending(landlord_id, doc_hash)
        landlord = self._approved_landlord(landlord_id)
        if pending.unit_status != UnitStatus.MATCHED or not pending.unit_id:
            raise PreconditionFailed(
                "Action Required: this contract's unit is not in your portfolio yet. "
                "Add the unit before approving.",
                {"doc_hash": doc_hash},
            )

        # ── Step 1: Authoritative unit ──────────────────────────────
        unit = self.registry.get_unit(pending.unit_id)
        if unit is None or unit.landlord_id != landlord_id or not unit.is_verified:
            raise PreconditionFailed(
                "Action Required: You must verify the title deed for this unit before approving.",
                {"unit_id": pending.unit_id},
            )
        if unit.status == UnitLifecycle.ARCHIVED:
            raise PreconditionFailed(
                "This unit is archived. Restore it before approving contracts for it.",
                {"unit_id": unit.id},
            )

        # ── Step 2: Corrected fingerprint ───────────────────────────
        original = fingerprint.parse(pending.fingerprint)
        corrected = fingerprint.correct(original, landlord.name, unit)
        corrected_text = fingerprint.serialize(corrected)

        # ── Step 3: Corrected hash = permanent public id ────────────
        corrected_hash = compute_document_hash(corrected_text)
        subject, body = render_approval_email(
            verification_url(self.settings.public_base_url, corrected_hash)
        )
        message = outbox_message(pending.tenant_email, subject, body)

        # ── Step 4: Ledger, then exactly-once promotion ─────────────
        receipt = self.ledger.commit(
            corrected_hash,
            corrected.landlord_name,
            corrected.unit_info,
            corrected.tenant_name,
            corrected.period_from,
            corrected.period_to,
        )
        approved = ApprovedContract(
            doc_hash=corrected_hash,
            fingerprint=corrected_text,
            landlord_id=landlord_id,
            unit_id=unit.id,
            tenant_email=pending.tenant_email,
            contract_key=pending.contract_key,
            tx_hash=receipt.tx_hash,
            approved_on=utcnow(),
        )
        created = self.registry.promote(pending.doc_hash, approved, message)

        if not created:
            logger.info("Contract %s was already approved as %s", doc_hash, corrected_hash)
            return ApprovalResult(
                doc_hash=corrected_hash,
                tx_hash=receipt.tx_hash,
                fingerprint=corrected_text,
                already_approved=True,
                message="This contract was already approved and recorded on the blockchain.",
            )

        # ── Step 5: Best-effort tenant notification ─────────────────
        self._deliver(message)
        logger.info("Contract %s approved as %s (tx %s)", doc_hash, corrected_hash, receipt.tx_hash)
        return ApprovalResult(
            doc_hash=corrected_hash,
            tx_hash=receipt.tx_hash,
            fingerprint=corrected_text,
            message="Contract approved and recorded on the blockchain!",
        )

    def approve_and_create_unit(self, landlord_id: str, doc_hash: str) -> Unit:
        """Add an unmatched contract's unit to the portfolio, unverified.

        The contract can only be approved once the new unit passes
        ``verify_unit``.
        """
        pending = self._assigned_pending(landlord_id, doc_hash)
        if pending.unit_status != UnitStatus.UNMATCHED:
            raise PreconditionFailed(
                "No unmatched pending contract found.", {"doc_hash": doc_hash}
            )

        raw = pending.unmatched_unit_identifier or ""
        unit_number, remainder = fingerprint.split_unit_identifier(raw)
        unit = self.registry.create_unit_for_pending(doc_hash, Unit(
            id=new_id(),
            landlord_id=landlord_id,
            unit_number=unit_number or raw or "N/A",
            address=Address(street=remainder),
            verification_status=VerificationStatus.PENDING_SCAN,
            is_verified=False,
        ))
        logger.info("Unit %s (%r) created from contract %s", unit.id, unit.unit_number, doc_hash)
        return unit

    def _assigned_pending(self, landlord_id: str, doc_hash: str) -> PendingContract:
        pending = self.registry.get_pending(doc_hash)
        if pending is None or pending.assigned_landlord_id != landlord_id:
            raise NotFound("No matching pending contract found.", {"doc_hash": doc_hash})
        return pending

    def _approved_landlord(self, landlord_id: str) -> Landlord:
        landlord = self.registry.get_landlord(landlord_id)
        if landlord is None:
            raise NotFound("Landlord not found.", {"landlord_id": landlord_id})
        if landlord.kyc_status != KycStatus.APPROVED:
            raise PreconditionFailed(
                "Identity verification (KYC) must be approved first.",
                {"kyc_status": landlord.kyc_status.value},
            )
        return landlord

    # ─── Public Verification ─────────────────────────────────────────

    def public_verify(self, doc_hash: str) -> PublicVerification:
        """Look a hash up on the ledger and attach the off-chain record if any."""
        doc_hash = (doc_hash or "").strip()
        if not doc_hash:
            raise PreconditionFailed("Document hash is required.")

        record = self.ledger.lookup(doc_hash)
        if not record.exists:
            raise NotFound(
                "A verified record for this document was not found on the blockchain.",
                {"doc_hash": doc_hash},
            )

        approved = self.registry.get_approved(doc_hash)
        if approved is None:
            # The ledger outlives off-chain records; a missing one means terminated
            logger.warning("On-chain hash %s has no off-chain record, reporting terminated", doc_hash)
            return PublicVerification(
                doc_hash=doc_hash,
                contract_status=ContractStatus.TERMINATED,
                on_chain=record,
                fingerprint=ARCHIVED_FINGERPRINT,
            )

        return PublicVerification(
            doc_hash=doc_hash,
            contract_status=approved.status,
            on_chain=record,
            tx_hash=approved.tx_hash,
            document_url=self.storage.get_read_url(approved.contract_key, self.settings.read_url_ttl),
            fingerprint=approved.fingerprint,
        )

    def verify_document(self, document: Document) -> DocumentVerification:
        """Check an uploaded contract against the ledger.

        The corrected fingerprint is re-derived the same way approval does it
        (landlord by name, unit by unit number), so a tenant's copy verifies
        even if its unit text differs from the registry's.
        """
        fingerprint_text = self.intelligence.extract_fingerprint(document)
        details = fingerprint.parse(fingerprint_text)
        not_found = DocumentVerification(
            verified=False,
            message="Document not found or not verified on the blockchain.",
            fingerprint=fingerprint_text,
        )

        landlord = self.registry.find_landlord_by_name(details.landlord_name)
        if landlord is None:
            return not_found
        unit_number, _ = fingerprint.split_unit_identifier(details.unit_info)
        unit = self.registry.find_unit_by_number(landlord.id, unit_number)
        if unit is None:
            return not_found

        corrected_text = fingerprint.serialize(fingerprint.correct(details, landlord.name, unit))
        corrected_hash = compute_document_hash(corrected_text)
        record = self.ledger.lookup(corrected_hash)
        if not record.exists:
            return not_found.model_copy(update={"doc_hash": corrected_hash})

        return DocumentVerification(
            verified=True,
            message="Document is authentic and verified on the blockchain!",
            fingerprint=corrected_text,
            doc_hash=corrected_hash,
            details=record,
        )

    # ─── Lifecycle ───────────────────────────────────────────────────

    def terminate_contract(self, landlord_id: str, doc_hash: str) -> ApprovedContract:
        if not self.registry.terminate_approved(doc_hash, landlord_id):
            raise NotFound(
                "Approved contract not found or you don't have permission.", {"doc_hash": doc_hash}
            )
        logger.info("Contract %s terminated by landlord %s", doc_hash, landlord_id)
        approved = self.registry.get_approved(doc_hash)
        assert approved is not None
        return approved

    def archive_unit(self, landlord_id: str, unit_id: str) -> Unit:
        return self._set_unit_lifecycle(landlord_id, unit_id, UnitLifecycle.ARCHIVED)

    def restore_unit(self, landlord_id: str, unit_id: str) -> Unit:
        return self._set_unit_lifecycle(landlord_id, unit_id, UnitLifecycle.ACTIVE)

    def _set_unit_lifecycle(self, landlord_id: str, unit_id: str, status: UnitLifecycle) -> Unit:
        if not self.registry.set_unit_lifecycle(unit_id, landlord_id, status):
            raise NotFound("Unit not found or you don't have permission.", {"unit_id": unit_id})
        unit = self.registry.get_unit(unit_id)
        assert unit is not None
        logger.info("Unit %s is now %s", unit_id, status.value)
        return unit

    def landlord_dashboard(self, landlord_id: str) -> Dashboard:
        landlord = self.registry.get_landlord(landlord_id)
        if landlord is None:
            raise NotFound("Landlord not found.", {"landlord_id": landlord_id})
        units = self.registry.list_units(landlord_id)
        return Dashboard(
            landlord=landlord,
            units=units,
            title_deed_urls={
                u.id: self.storage.get_read_url(u.title_deed_key, self.settings.read_url_ttl)
                for u in units
            },
            pending_contracts=self.registry.list_pending_for_landlord(landlord_id),
            approved_contracts=self.registry.list_approved_for_landlord(landlord_id),
        )

    # ─── Landlords & KYC ─────────────────────────────────────────────

    def register_landlord(self, name: str, email: str) -> Landlord:
        if not name.strip() or not email.strip():
            raise PreconditionFailed("Name and email are required.")
        landlord = self.registry.add_landlord(name.strip(), email)
        logger.info("Landlord %s registered (KYC pending)", landlord.id)
        return landlord

    def start_kyc(self, landlord_id: str) -> str:
        """Open an identity verification session; returns the redirect URL."""
        if self.identity is None:
            raise IdentityProviderError("Identity verification is not configured.")
        landlord = self.registry.get_landlord(landlord_id)
        if landlord is None:
            raise NotFound("Landlord not found.", {"landlord_id": landlord_id})
        callback_url = f"{self.settings.public_base_url}/api/kyc/callback"
        session_id, url = self.identity.create_session(landlord, callback_url)
        self.registry.set_identity_session(landlord_id, session_id)
        return url

    def handle_kyc_callback(self, raw_body: bytes, signature: str | None) -> Optional[KycDecision]:
        return kyc.apply_callback(
            self.registry, raw_body, signature, self.settings.identity_secret_key
        )

    # ─── Notifications ───────────────────────────────────────────────

    def invite_landlord(self, doc_hash: str, landlord_email: str) -> OutboxMessage:
        """Email a landlord who is not registered yet about a waiting contract."""
        landlord_email = (landlord_email or "").strip().lower()
        if not doc_hash or not landlord_email:
            raise PreconditionFailed("Document hash and landlord email are required.")
        if self.registry.get_pending(doc_hash) is None:
            raise NotFound("No pending contract found for that document hash.", {"doc_hash": doc_hash})

        subject, body = render_invitation_email(f"{self.settings.public_base_url}/login")
        message = self.registry.enqueue(outbox_message(landlord_email, subject, body))
        self.registry.set_invitee(doc_hash, landlord_email)
        self._deliver(message)
        return message

    def dispatch_outbox(self) -> int:
        """Retry every queued notification. Returns how many were sent."""
        if self.notifier is None:
            return 0
        return dispatch_outbox(self.registry, self.notifier)

    def _deliver(self, message: OutboxMessage) -> None:
        if self.notifier is None:
            logger.info("No notifier configured; message %s stays queued", message.id)
            return
        dispatch_message(self.registry, self.notifier, message)


def _require_documents(
    title_deed: Document | None, utility_bill: Document | None
) -> tuple[Document, Document]:
    if title_deed is None or utility_bill is None or not title_deed.content or not utility_bill.content:
        raise PreconditionFailed("Both a Title Deed and a recent Utility Bill are required.")
    return title_deed, utility_bill
