"""SMTP email adapter."""

import asyncio
import logging
import smtplib
from email.message import EmailMessage
from functools import lru_cache
from typing import Optional

from fixit.core.config import Settings, get_settings
from fixit.core.errors import ExternalDependencyError

logger = logging.getLogger(__name__)


class EmailService:
    """Sends mail through the configured SMTP relay.

    smtplib is blocking, so each send runs in a worker thread under a deadline.
    """

    def __init__(self, settings: Settings):
        self.host = settings.smtp_host
        self.port = settings.smtp_port
        self.username = settings.smtp_username
        self.password = settings.smtp_password
        self.use_tls = settings.smtp_use_tls
        self.sender = f"{settings.app_name} <{settings.mail_from}>"
        self.timeout = settings.mail_timeout_seconds

    @property
    def configured(self) -> bool:
        return bool(self.host)

    def _build(self, to: str, subject: str, text: str, html: Optional[str]) -> EmailMessage:
        message = EmailMessage()
        message["From"] = self.sender
        message["To"] = to
        message["Subject"] = subject
        message.set_content(text)
        if html:
            message.add_alternative(html, subtype="html")
        return message

    def _send_sync(self, message: EmailMessage) -> None:
        with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
            if self.use_tls:
                server.starttls()
            if self.username and self.password:
                server.login(self.username, self.password)
            server.send_message(message)

    async def send(self, to: str, subject: str, text: str, html: Optional[str] = None) -> bool:
        """Send one email. Returns False when SMTP is not configured."""
        if not self.configured:
            logger.warning(f"[EMAIL] SMTP not configured; email '{subject}' to {to} not sent")
            return False

        message = self._build(to, subject, text, html)
        try:
            await asyncio.wait_for(asyncio.to_thread(self._send_sync, message), timeout=self.timeout)
        except asyncio.TimeoutError:
            raise ExternalDependencyError("Mail server timed out", retryable=True)
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"[EMAIL] Failed to send '{subject}' to {to}: {e}")
            raise ExternalDependencyError(f"Mail delivery failed: {e}")

        logger.info(f"[EMAIL] Sent '{subject}' to {to}")
        return True


@lru_cache
def get_email_service() -> EmailService:
    return EmailService(get_settings())
