"""
Block Lease — FastAPI Server
============================

RESTful API for rental contract reconciliation and public verification.

Endpoints:
    POST /contracts/initiate               Tenant uploads a contract
    POST /contracts/verify-document        Check an uploaded contract against the ledger
    POST /contracts/{hash}/invite          Invite an unregistered landlord
    POST /contracts/{hash}/approve         Landlord approves (records on ledger)
    POST /contracts/{hash}/create-unit     Landlord adds an unmatched contract's unit
    POST /contracts/{hash}/terminate       Landlord terminates an approved contract
    GET  /verify/{hash}                    Public verification by hash
    POST /landlords                        Register a landlord (KYC pending)
    POST /kyc/session                      Start identity verification
    POST /api/kyc/callback                 Signed identity provider webhook
    POST /units                            Register + verify a new unit
    POST /units/{id}/verify                Verify an existing unit
    POST /units/{id}/archive|restore       Unit lifecycle
    GET  /dashboard                        Landlord dashboard
    POST /outbox/dispatch                  Retry queued notifications
    GET  /health                           Health check / readiness probe

Landlord endpoints identify the caller with the ``X-Landlord-Id`` header;
session handling lives in front of this service.

Run:
    uvicorn api:app --reload              # Dev (http://localhost:8000)
    uvicorn api:app --host 0.0.0.0        # Production
"""

from __future__ import annotations

import asyncio
import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

from dotenv import load_dotenv
from fastapi import FastAPI, File, Form, Header, HTTPException, Request, UploadFile
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from blocklease import __version__
from blocklease.config import Settings
from blocklease.engine import ReconciliationEngine
from blocklease.exceptions import (
    AddressMismatch,
    AuthenticityTooLow,
    BlockLeaseError,
    DuplicateDocument,
    ExtractionError,
    IdentityProviderError,
    InvalidSignature,
    LedgerUnavailable,
    NotFound,
    OwnershipMismatch,
    PreconditionFailed,
)
from blocklease.models import (
    Address,
    ApprovalResult,
    ApprovedContract,
    Dashboard,
    Document,
    DocumentVerification,
    InitiationResult,
    Landlord,
    OutboxStatus,
    PublicVerification,
    Unit,
    UnitVerificationResult,
)

load_dotenv()

logger = logging.getLogger(__name__)

MAX_UPLOAD_BYTES = 10 * 1_048_576

_STATUS_CODES: dict[type[BlockLeaseError], int] = {
    ExtractionError: 502,
    OwnershipMismatch: 403,
    AddressMismatch: 400,
    AuthenticityTooLow: 400,
    PreconditionFailed: 403,
    NotFound: 404,
    LedgerUnavailable: 503,
    InvalidSignature: 403,
    IdentityProviderError: 502,
    DuplicateDocument: 409,
}


# ─── Application Lifespan (build engine once) ───────────────────────

_engine: ReconciliationEngine | None = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the engine and its long-lived clients on startup."""
    global _engine  # noqa: PLW0603
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO"),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    _engine = ReconciliationEngine.from_settings(Settings())
    yield
    _engine = None


# ─── FastAPI App ─────────────────────────────────────────────────────

app = FastAPI(
    title="Block Lease API",
    description=(
        "Rental contract fingerprinting and reconciliation. Tenants upload "
        "contracts, landlords prove ownership of their units, and approved "
        "contracts are anchored to an append-only ledger for public verification."
    ),
    version=__version__,
    lifespan=lifespan,
)


@app.exception_handler(BlockLeaseError)
async def _handle_domain_error(request: Request, exc: BlockLeaseError) -> JSONResponse:
    status_code = _status_for(exc)
    if status_code >= 500:
        logger.error("%s %s failed: %s (%s)", request.method, request.url.path, exc.code, exc.message)
    return JSONResponse(
        status_code=status_code,
        content={"code": exc.code, "message": exc.message, "details": exc.details},
    )


# ─── Request / Response Schemas ─────────────────────────────────────


class LandlordRequest(BaseModel):
    name: str = Field(..., min_length=1, json_schema_extra={"example": "Somchai Jaidee"})
    email: str = Field(..., min_length=3, json_schema_extra={"example": "somchai@example.com"})


class InviteRequest(BaseModel):
    landlord_email: str = Field(..., min_length=3)


class InviteResponse(BaseModel):
    message_id: str
    recipient: str
    delivered: bool


class KycSessionResponse(BaseModel):
    url: str


class KycCallbackResponse(BaseModel):
    status: str
    landlord_id: Optional[str] = None
    kyc_status: Optional[str] = None


class DispatchResponse(BaseModel):
    sent: int


class HealthResponse(BaseModel):
    status: str
    version: str
    notifications_enabled: bool
    identity_enabled: bool


# ─── Helpers ─────────────────────────────────────────────────────────


def _get_engine() -> ReconciliationEngine:
    if _engine is None:
        raise HTTPException(status_code=503, detail="Engine not initialised")
    return _engine


def _status_for(exc: BlockLeaseError) -> int:
    for exc_type in type(exc).__mro__:
        if exc_type in _STATUS_CODES:
            return _STATUS_CODES[exc_type]
    return 500


async def _read_document(file: UploadFile) -> Document:
    """Read an upload into a Document, enforcing the size limit."""
    if file.size and file.size > MAX_UPLOAD_BYTES:
        raise HTTPException(status_code=413, detail="File too large (max 10 MB)")
    content = await file.read()
    if len(content) > MAX_UPLOAD_BYTES:
        raise HTTPException(status_code=413, detail="File too large (max 10 MB)")
    return Document(
        content=content,
        mime_type=file.content_type or "application/octet-stream",
        filename=file.filename or "document",
    )


async def _read_optional(file: UploadFile | None) -> Document | None:
    return await _read_document(file) if file is not None else None


# ─── Tenant Endpoints ───────────────────────────────────────────────


@app.post(
    "/contracts/initiate",
    summary="Upload a rental contract",
    tags=["Contracts"],
    responses={502: {"description": "Document could not be read"}},
)
async def initiate_contract(
    file: UploadFile = File(...),
    tenant_email: str = Form(...),
) -> InitiationResult:
    """Fingerprint a tenant's contract and route it to its landlord.

    Uploading the same contract twice is harmless: the response reports
    **already_pending** or **already_approved**.
    """
    engine = _get_engine()
    document = await _read_document(file)
    return await asyncio.to_thread(engine.initiate_contract, document, tenant_email)


@app.post(
    "/contracts/verify-document",
    summary="Verify an uploaded contract against the ledger",
    tags=["Verification"],
)
async def verify_document(file: UploadFile = File(...)) -> DocumentVerification:
    engine = _get_engine()
    document = await _read_document(file)
    return await asyncio.to_thread(engine.verify_document, document)


@app.post(
    "/contracts/{doc_hash}/invite",
    summary="Invite an unregistered landlord to review a contract",
    tags=["Contracts"],
)
def invite_landlord(doc_hash: str, request: InviteRequest) -> InviteResponse:
    engine = _get_engine()
    message = engine.invite_landlord(doc_hash, request.landlord_email)
    stored = engine.registry.get_message(message.id)
    return InviteResponse(
        message_id=message.id,
        recipient=message.recipient,
        delivered=stored is not None and stored.status == OutboxStatus.SENT,
    )


@app.get(
    "/verify/{doc_hash}",
    summary="Public verification by document hash",
    tags=["Verification"],
    responses={404: {"description": "Hash not found on the ledger"}},
)
def public_verify(doc_hash: str) -> PublicVerification:
    """Anyone holding a hash (e.g. from the tenant's QR code) can check it here."""
    return _get_engine().public_verify(doc_hash)


# ─── Landlord Endpoints ─────────────────────────────────────────────


@app.post("/landlords", summary="Register a landlord", tags=["Landlords"], status_code=201)
def register_landlord(request: LandlordRequest) -> Landlord:
    return _get_engine().register_landlord(request.name, request.email)


@app.post("/kyc/session", summary="Start identity verification", tags=["Landlords"])
def start_kyc(x_landlord_id: str = Header(...)) -> KycSessionResponse:
    return KycSessionResponse(url=_get_engine().start_kyc(x_landlord_id))


@app.post(
    "/api/kyc/callback",
    summary="Identity provider webhook",
    tags=["Landlords"],
    responses={403: {"description": "Invalid signature"}},
)
async def kyc_callback(
    request: Request, x_hmac_signature: Optional[str] = Header(None)
) -> KycCallbackResponse:
    """Signature is verified over the RAW body before anything is parsed."""
    engine = _get_engine()
    raw_body = await request.body()
    decision = await asyncio.to_thread(engine.handle_kyc_callback, raw_body, x_hmac_signature)
    if decision is None:
        return KycCallbackResponse(status="ignored")
    return KycCallbackResponse(
        status="ok", landlord_id=decision.landlord_id, kyc_status=decision.status.value
    )


@app.get("/dashboard", summary="Landlord dashboard", tags=["Landlords"])
def dashboard(x_landlord_id: str = Header(...)) -> Dashboard:
    return _get_engine().landlord_dashboard(x_landlord_id)


@app.post(
    "/units",
    summary="Register and verify a new unit",
    tags=["Units"],
    responses={
        400: {"description": "Authenticity too low or addresses disagree"},
        403: {"description": "Ownership mismatch or KYC not approved"},
    },
)
async def register_unit(
    x_landlord_id: str = Header(...),
    unit_number: str = Form(...),
    street: str = Form(...),
    city: str = Form(...),
    province: str = Form(""),
    zip_code: str = Form(""),
    country: str = Form(""),
    confirmed: bool = Form(False),
    title_deed: Optional[UploadFile] = File(None),
    utility_bill: Optional[UploadFile] = File(None),
) -> UnitVerificationResult:
    """Runs every verification gate. If the typed address differs from the
    deed, the response asks for confirmation and nothing is stored; resend
    with ``confirmed=true`` to accept.
    """
    engine = _get_engine()
    address = Address(
        street=street, city=city, province=province, zip_code=zip_code, country=country
    )
    deed = await _read_optional(title_deed)
    bill = await _read_optional(utility_bill)
    return await asyncio.to_thread(
        engine.register_unit, x_landlord_id, unit_number, address, deed, bill, confirmed
    )


@app.post("/units/{unit_id}/verify", summary="Verify an existing unit", tags=["Units"])
async def verify_unit(
    unit_id: str,
    x_landlord_id: str = Header(...),
    title_deed: Optional[UploadFile] = File(None),
    utility_bill: Optional[UploadFile] = File(None),
) -> UnitVerificationResult:
    engine = _get_engine()
    deed = await _read_optional(title_deed)
    bill = await _read_optional(utility_bill)
    return await asyncio.to_thread(engine.verify_unit, x_landlord_id, unit_id, deed, bill)


@app.post("/units/{unit_id}/archive", summary="Archive a unit", tags=["Units"])
def archive_unit(unit_id: str, x_landlord_id: str = Header(...)) -> Unit:
    return _get_engine().archive_unit(x_landlord_id, unit_id)


@app.post("/units/{unit_id}/restore", summary="Restore an archived unit", tags=["Units"])
def restore_unit(unit_id: str, x_landlord_id: str = Header(...)) -> Unit:
    return _get_engine().restore_unit(x_landlord_id, unit_id)


@app.post(
    "/contracts/{doc_hash}/approve",
    summary="Approve a pending contract",
    tags=["Contracts"],
    responses={503: {"description": "Ledger unavailable, safe to retry"}},
)
def approve_contract(doc_hash: str, x_landlord_id: str = Header(...)) -> ApprovalResult:
    """Records the corrected fingerprint hash on the ledger. The returned
    **doc_hash** is the contract's permanent public identifier.
    """
    return _get_engine().approve_contract(x_landlord_id, doc_hash)


@app.post(
    "/contracts/{doc_hash}/create-unit",
    summary="Add an unmatched contract's unit to the portfolio",
    tags=["Contracts"],
)
def approve_and_create_unit(doc_hash: str, x_landlord_id: str = Header(...)) -> Unit:
    return _get_engine().approve_and_create_unit(x_landlord_id, doc_hash)


@app.post("/contracts/{doc_hash}/terminate", summary="Terminate a contract", tags=["Contracts"])
def terminate_contract(doc_hash: str, x_landlord_id: str = Header(...)) -> ApprovedContract:
    return _get_engine().terminate_contract(x_landlord_id, doc_hash)


# ─── System ──────────────────────────────────────────────────────────


@app.post("/outbox/dispatch", summary="Retry queued notifications", tags=["System"])
def dispatch_outbox() -> DispatchResponse:
    return DispatchResponse(sent=_get_engine().dispatch_outbox())


@app.get(
    "/health",
    summary="Health check",
    tags=["System"],
    responses={503: {"description": "Engine not yet initialised"}},
)
def health_check() -> HealthResponse:
    engine = _get_engine()
    return HealthResponse(
        status="healthy",
        version=__version__,
        notifications_enabled=engine.notifier is not None,
        identity_enabled=engine.identity is not None,
    )
