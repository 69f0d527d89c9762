"""Mail transports consumed by the delivery queue."""

import asyncio
import smtplib
import time
from dataclasses import dataclass
from email.message import EmailMessage
from typing import Optional, Protocol

import structlog

from app.config import Settings, settings as default_settings

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class SendResult:
    ok: bool
    error: Optional[str] = None
    message_id: Optional[str] = None

    @classmethod
    def success(cls, message_id: Optional[str] = None) -> "SendResult":
        return cls(ok=True, message_id=message_id)

    @classmethod
    def failure(cls, error: str) -> "SendResult":
        return cls(ok=False, error=error)


class MailTransport(Protocol):
    """Send primitive. Implementations bound each attempt with their own timeout."""

    async def send(self, recipient: str, subject: str, body: str) -> SendResult:
        ...


class SmtpMailTransport:
    """
    SMTP transport (STARTTLS + login) backed by smtplib.

    smtplib is blocking, so each send runs in a worker thread; the socket
    timeout keeps a dead server from stalling the queue.
    """

    def __init__(
        self,
        host: str,
        port: int,
        username: str,
        password: str,
        sender: str,
        use_tls: bool = True,
        timeout: float = 10.0,
    ):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.sender = sender
        self.use_tls = use_tls
        self.timeout = timeout

    def _build_message(self, recipient: str, subject: str, body: str) -> EmailMessage:
        message = EmailMessage()
        message["From"] = self.sender
        message["To"] = recipient
        message["Subject"] = subject
        message.set_content(body)
        return message

    def _send_blocking(self, message: EmailMessage) -> None:
        with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as smtp:
            if self.use_tls:
                smtp.starttls()
            if self.username:
                smtp.login(self.username, self.password)
            smtp.send_message(message)

    async def send(self, recipient: str, subject: str, body: str) -> SendResult:
        message = self._build_message(recipient, subject, body)
        started = time.monotonic()
        try:
            await asyncio.to_thread(self._send_blocking, message)
        except (smtplib.SMTPException, OSError) as e:
            logger.warning(
                "smtp_send_failed",
                recipient=recipient,
                subject=subject,
                duration_ms=int((time.monotonic() - started) * 1000),
                error=str(e),
            )
            return SendResult.failure(f"{type(e).__name__}: {e}")

        logger.info(
            "smtp_send_succeeded",
            recipient=recipient,
            subject=subject,
            duration_ms=int((time.monotonic() - started) * 1000),
        )
        return SendResult.success(message_id=message.get("Message-ID"))


class LogMailTransport:
    """Development transport: logs the message instead of sending it."""

    async def send(self, recipient: str, subject: str, body: str) -> SendResult:
        logger.info("email_not_sent_no_smtp_config", recipient=recipient, subject=subject)
        return SendResult.success(message_id=f"log-{int(time.time() * 1000)}")


def build_mail_transport(config: Settings = default_settings) -> MailTransport:
    """SMTP when credentials are configured, log-only otherwise."""
    if not config.smtp_configured:
        logger.warning(
            "smtp_credentials_not_configured",
            has_host=bool(config.SMTP_HOST),
            has_user=bool(config.SMTP_USER),
            has_password=bool(config.SMTP_PASSWORD),
        )
        return LogMailTransport()

    return SmtpMailTransport(
        host=config.SMTP_HOST,
        port=config.SMTP_PORT,
        username=config.SMTP_USER,
        password=config.SMTP_PASSWORD,
        sender=config.EMAIL_FROM,
        use_tls=config.SMTP_USE_TLS,
        timeout=config.SMTP_TIMEOUT_SECONDS,
    )
