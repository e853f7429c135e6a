"""Moderation notifications.

Delivery is best effort: `deliver` never raises, so a failed e-mail or message
cannot undo a committed moderation decision.
"""
import asyncio
import enum
import logging
import smtplib
from dataclasses import dataclass
from email.message import EmailMessage
from typing import Any, Dict, Optional, Protocol, Tuple

from twilio.base.exceptions import TwilioException
from twilio.rest import Client

from grove.config import Settings

logger = logging.getLogger(__name__)


class NotificationKind(str, enum.Enum):
    STORY_SUBMITTED = "story_submitted"
    STORY_REJECTED = "story_rejected"


@dataclass
class NotificationResult:
    success: bool
    error: Optional[str] = None


class Notifier(Protocol):
    async def notify(self, kind: NotificationKind, payload: Dict[str, Any]) -> NotificationResult:
        ...


def render_message(kind: NotificationKind, payload: Dict[str, Any]) -> Tuple[str, str]:
    """Returns (subject, plain text body) for a notification."""
    recipient = payload.get("recipient_name") or "there"
    tree_name = payload.get("tree_name", "")
    title = payload.get("story_title", "")

    if kind == NotificationKind.STORY_SUBMITTED:
        subject = f"New Story Submitted for {tree_name}"
        body = (
            f"Hi {recipient},\n\n"
            f"{payload.get('author_name') or 'Someone'} submitted the story \"{title}\" "
            f"to {tree_name}. It is waiting for review.\n\n"
            f"Approve: {payload.get('approve_url')}\n"
            f"Reject: {payload.get('reject_url')}\n"
            f"View tree: {payload.get('view_url')}\n"
        )
        return subject, body

    subject = f"Your story for {tree_name} was not approved"
    body = (
        f"Hi {recipient},\n\n"
        f"Your story \"{title}\" submitted to {tree_name} was reviewed and not approved.\n"
    )
    reason = payload.get("reason")
    if reason:
        body += f"\nReason: {reason}\n"
    return subject, body


class LogNotifier:
    """Writes notifications to the log. Default outside production."""

    async def notify(self, kind: NotificationKind, payload: Dict[str, Any]) -> NotificationResult:
        subject, _ = render_message(kind, payload)
        logger.info(f"[notification:{kind.value}] to={payload.get('recipient_email')} subject={subject!r}")
        return NotificationResult(success=True)


@dataclass
class EmailConfig:
    smtp_host: str
    smtp_port: int = 587
    smtp_user: Optional[str] = None
    smtp_password: Optional[str] = None
    from_email: str = "notifications@grove.local"
    from_name: str = "Grove"
    use_tls: bool = True


class EmailNotifier:
    """Delivers notifications over SMTP."""

    def __init__(self, config: EmailConfig):
        self.config = config

    def _send(self, to_email: str, subject: str, body: str) -> None:
        msg = EmailMessage()
        msg["Subject"] = subject
        msg["From"] = f"{self.config.from_name} <{self.config.from_email}>"
        msg["To"] = to_email
        msg.set_content(body)

        with smtplib.SMTP(self.config.smtp_host, self.config.smtp_port) as server:
            if self.config.use_tls:
                server.starttls()
            if self.config.smtp_user and self.config.smtp_password:
                server.login(self.config.smtp_user, self.config.smtp_password)
            server.send_message(msg)

    async def notify(self, kind: NotificationKind, payload: Dict[str, Any]) -> NotificationResult:
        to_email = payload.get("recipient_email")
        if not to_email:
            return NotificationResult(success=False, error="recipient has no email address")

        subject, body = render_message(kind, payload)
        try:
            # smtplib blocks; keep it off the event loop
            await asyncio.to_thread(self._send, to_email, subject, body)
        except (smtplib.SMTPException, OSError) as e:
            return NotificationResult(success=False, error=str(e))
        logger.info(f"Email sent to {to_email}: {subject}")
        return NotificationResult(success=True)


class WhatsAppNotifier:
    """Delivers notifications as WhatsApp messages through Twilio."""

    def __init__(self, client: Client, from_number: str):
        self.client = client
        self.from_number = from_number

    async def notify(self, kind: NotificationKind, payload: Dict[str, Any]) -> NotificationResult:
        phone = payload.get("recipient_phone")
        if not phone:
            return NotificationResult(success=False, error="recipient has no phone number")

        subject, body = render_message(kind, payload)
        try:
            message = await asyncio.to_thread(
                self.client.messages.create,
                from_=f"whatsapp:{self.from_number}",
                to=f"whatsapp:{phone}",
                body=f"*{subject}*\n\n{body}",
            )
        except TwilioException as e:
            return NotificationResult(success=False, error=str(e))
        logger.info(f"WhatsApp message {message.sid} sent to {phone}")
        return NotificationResult(success=True)


def build_notifier(settings: Settings) -> Notifier:
    backend = settings.NOTIFIER_BACKEND.lower()
    if backend == "email" and settings.SMTP_HOST:
        return EmailNotifier(
            EmailConfig(
                smtp_host=settings.SMTP_HOST,
                smtp_port=settings.SMTP_PORT,
                smtp_user=settings.SMTP_USER,
                smtp_password=settings.SMTP_PASSWORD,
                from_email=settings.EMAIL_FROM,
                from_name=settings.EMAIL_FROM_NAME,
                use_tls=settings.SMTP_USE_TLS,
            )
        )
    if backend == "whatsapp" and settings.TWILIO_ACCOUNT_SID and settings.TWILIO_AUTH_TOKEN:
        client = Client(settings.TWILIO_ACCOUNT_SID, settings.TWILIO_AUTH_TOKEN)
        return WhatsAppNotifier(client, settings.TWILIO_PHONE_NUMBER)
    if backend != "log":
        logger.warning(f"Notifier backend {backend!r} is not configured, falling back to log")
    return LogNotifier()


async def deliver(notifier: Notifier, kind: NotificationKind, payload: Dict[str, Any]) -> NotificationResult:
    try:
        result = await notifier.notify(kind, payload)
    except Exception as e:
        logger.exception(f"Notifier raised while sending {kind.value}")
        return NotificationResult(success=False, error=str(e))
    if not result.success:
        logger.error(f"Failed to send {kind.value} to {payload.get('recipient_email')}: {result.error}")
    return result
