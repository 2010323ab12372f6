"""
Tenant and landlord notifications.

Approval emails are never sent inside the approval itself. The rendered
message is written to the outbox in the same transaction that promotes
the contract, and delivered afterwards by ``dispatch_message`` /
``dispatch_outbox``. A mail failure therefore never undoes an approval,
and the message stays queued for the next dispatch.
"""

from __future__ import annotations

import base64
import io
import logging
import smtplib
from abc import ABC, abstractmethod
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from html import escape

import qrcode
import qrcode.image.svg

from .models import OutboxMessage, OutboxStatus
from .registry import Registry, new_id

logger = logging.getLogger(__name__)

MAX_DELIVERY_ATTEMPTS = 5

APPROVAL_SUBJECT = "Your Rental Agreement has been Verified on the Blockchain!"
INVITATION_SUBJECT = "You Have a New Document to Approve"


# ─── Transport ───────────────────────────────────────────────────────


class Notifier(ABC):
    @abstractmethod
    def send(self, recipient: str, subject: str, html_body: str) -> None:
        """Deliver one message. Raises on failure."""


class SmtpNotifier(Notifier):
    """Plain SMTP delivery (STARTTLS, or implicit TLS with ``use_ssl``)."""

    def __init__(
        self,
        host: str,
        port: int,
        sender: str,
        username: str | None = None,
        password: str | None = None,
        use_ssl: bool = False,
        timeout: float = 30.0,
    ):
        self.host = host
        self.port = port
        self.sender = sender
        self.username = username
        self.password = password
        self.use_ssl = use_ssl
        self.timeout = timeout

    def _connect(self) -> smtplib.SMTP:
        if self.use_ssl:
            return smtplib.SMTP_SSL(self.host, self.port, timeout=self.timeout)
        return smtplib.SMTP(self.host, self.port, timeout=self.timeout)

    def send(self, recipient: str, subject: str, html_body: str) -> None:
        msg = MIMEMultipart("alternative")
        msg["From"] = f"Block Lease <{self.sender}>"
        msg["To"] = recipient
        msg["Subject"] = subject
        msg.attach(MIMEText(html_body, "html", "utf-8"))

        with self._connect() as server:
            if not self.use_ssl:
                server.starttls()
            if self.username and self.password:
                server.login(self.username, self.password)
            server.sendmail(self.sender, [recipient], msg.as_string())
        logger.info("Email %r sent to %s", subject, recipient)


# ─── Rendering ───────────────────────────────────────────────────────


def verification_url(public_base_url: str, doc_hash: str) -> str:
    return f"{public_base_url.rstrip('/')}/verify/{doc_hash}"


def qr_code_data_uri(url: str) -> str:
    """An inline SVG QR code pointing at ``url``."""
    image = qrcode.make(url, image_factory=qrcode.image.svg.SvgPathImage)
    buffer = io.BytesIO()
    image.save(buffer)
    encoded = base64.b64encode(buffer.getvalue()).decode("ascii")
    return f"data:image/svg+xml;base64,{encoded}"


def render_approval_email(share_url: str) -> tuple[str, str]:
    """Subject and HTML body telling a tenant their contract is on the ledger."""
    link = escape(share_url, quote=True)
    body = f"""\
<!DOCTYPE html>
<html><body style="font-family: Arial, sans-serif; color: #111827;">
  <h1>Your agreement is verified</h1>
  <p>Your rental agreement has been approved by your landlord and its
  fingerprint has been recorded on the blockchain.</p>
  <p>Anyone can check it at:<br><a href="{link}">{link}</a></p>
  <p><img src="{qr_code_data_uri(share_url)}" alt="Verification QR code" width="200" height="200"></p>
  <p style="font-size: 12px; color: #6B7280;">Block Lease</p>
</body></html>
"""
    return APPROVAL_SUBJECT, body


def render_invitation_email(login_url: str) -> tuple[str, str]:
    """Subject and HTML body inviting a landlord to review a tenant's contract."""
    link = escape(login_url, quote=True)
    body = f"""\
<!DOCTYPE html>
<html><body style="font-family: Arial, sans-serif; color: #111827;">
  <h1>A tenant is waiting for you</h1>
  <p>A tenant has submitted a rental agreement that names you as the
  landlord. Sign in to register, verify the property and approve it.</p>
  <p><a href="{link}">{link}</a></p>
  <p style="font-size: 12px; color: #6B7280;">Block Lease</p>
</body></html>
"""
    return INVITATION_SUBJECT, body


def outbox_message(recipient: str, subject: str, body: str) -> OutboxMessage:
    return OutboxMessage(id=new_id(), recipient=recipient, subject=subject, body=body)


# ─── Dispatch ────────────────────────────────────────────────────────


def dispatch_message(
    registry: Registry,
    notifier: Notifier,
    message: OutboxMessage,
    max_attempts: int = MAX_DELIVERY_ATTEMPTS,
) -> bool:
    """Try to deliver one queued message. Never raises.

    Returns:
        True if the message was delivered.
    """
    if message.status != OutboxStatus.PENDING:
        return message.status == OutboxStatus.SENT
    try:
        notifier.send(message.recipient, message.subject, message.body)
    except Exception as e:  # noqa: BLE001
        logger.warning("Could not send %r to %s: %s", message.subject, message.recipient, e)
        registry.mark_failed(message.id, str(e), max_attempts)
        return False
    registry.mark_sent(message.id)
    return True


def dispatch_outbox(
    registry: Registry,
    notifier: Notifier,
    limit: int = 50,
    max_attempts: int = MAX_DELIVERY_ATTEMPTS,
) -> int:
    """Deliver queued messages, oldest first. Returns how many were sent."""
    sent = 0
    for message in registry.pending_messages(limit):
        if dispatch_message(registry, notifier, message, max_attempts):
            sent += 1
    if sent:
        logger.info("Outbox dispatch delivered %d message(s)", sent)
    return sent
