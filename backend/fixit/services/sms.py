"""SMS adapter (Twilio)."""

import asyncio
import logging
from functools import lru_cache

from twilio.base.exceptions import TwilioException
from twilio.rest import Client

from fixit.core.config import Settings, get_settings
from fixit.core.errors import ExternalDependencyError

logger = logging.getLogger(__name__)


class SmsService:
    """Sends SMS through Twilio. The REST client is blocking; sends run in a thread."""

    def __init__(self, settings: Settings):
        self.account_sid = settings.twilio_account_sid
        self.auth_token = settings.twilio_auth_token
        self.sender_id = settings.sms_sender_id
        self.timeout = settings.mail_timeout_seconds
        self._client = None

    @property
    def configured(self) -> bool:
        return bool(self.account_sid and self.auth_token and self.sender_id)

    @property
    def client(self) -> Client:
        if self._client is None:
            self._client = Client(self.account_sid, self.auth_token)
        return self._client

    def _send_sync(self, to: str, body: str) -> str:
        message = self.client.messages.create(body=body, from_=self.sender_id, to=to)
        return message.sid

    async def send(self, to: str, body: str) -> bool:
        """Send one SMS. Returns False when the provider is not configured."""
        if not self.configured:
            logger.warning(f"[SMS] Provider not configured; SMS to {to} not sent")
            return False

        try:
            sid = await asyncio.wait_for(asyncio.to_thread(self._send_sync, to, body), timeout=self.timeout)
        except asyncio.TimeoutError:
            raise ExternalDependencyError("SMS provider timed out", retryable=True)
        except TwilioException as e:
            logger.error(f"[SMS] Failed to send SMS to {to}: {e}")
            raise ExternalDependencyError(f"SMS delivery failed: {e}")

        logger.info(f"[SMS] Sent SMS to {to} (sid={sid})")
        return True


@lru_cache
def get_sms_service() -> SmsService:
    return SmsService(get_settings())
