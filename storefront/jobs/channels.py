"""Delivery channels used by the notification job.

Deployments plug real providers (SES, Twilio...) in behind these ports; the
logging adapters are the local-dev default and only write the message to
the log.
"""

from abc import ABC, abstractmethod
from uuid import uuid4

import structlog

logger = structlog.get_logger(__name__)


class EmailChannel(ABC):
    @abstractmethod
    async def send(self, to: str, subject: str, body: str) -> dict:
        """Send an email message.

        Returns:
            dict with keys: message_id, status ("sent" or "failed"), error (optional)
        """
        ...


class SmsChannel(ABC):
    @abstractmethod
    async def send(self, to: str, message: str) -> dict:
        """Send a text message; same result shape as ``EmailChannel.send``."""
        ...


class LoggingEmailChannel(EmailChannel):
    async def send(self, to: str, subject: str, body: str) -> dict:
        message_id = f"local_email_{uuid4().hex[:12]}"
        logger.info("Email not sent (logging channel)", to=to, subject=subject, body=body, message_id=message_id)
        return {"message_id": message_id, "status": "sent"}


class LoggingSmsChannel(SmsChannel):
    async def send(self, to: str, message: str) -> dict:
        message_id = f"local_sms_{uuid4().hex[:12]}"
        logger.info("SMS not sent (logging channel)", to=to, message=message, message_id=message_id)
        return {"message_id": message_id, "status": "sent"}
