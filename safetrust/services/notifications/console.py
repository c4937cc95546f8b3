"""Log-only providers for development and tests.

MFA notifications can carry one-time codes, so message bodies are never
written to the log. Only the masked recipient and size are.
"""

import uuid

from safetrust.core.logging import get_logger
from safetrust.core.mfa import mask_phone_number
from safetrust.services.notifications.base import EmailProvider, SMSProvider

logger = get_logger(__name__)


def _mask_email(address: str) -> str:
    local, _, domain = address.partition("@")
    return f"{local[:1]}***@{domain}" if domain else "***"


class ConsoleEmailProvider(EmailProvider):
    name = "console-email"

    def send(self, to: str, subject: str, body_text: str, body_html: str | None = None) -> str:
        message_id = f"console:{uuid.uuid4()}"
        logger.info(
            f"email not sent (console backend): {subject}",
            extra={"recipient": _mask_email(to), "body_length": len(body_text), "message_id": message_id},
        )
        return message_id


class ConsoleSMSProvider(SMSProvider):
    name = "console-sms"

    def send(self, to: str, body: str) -> str:
        message_id = f"console:{uuid.uuid4()}"
        logger.info(
            "sms not sent (console backend)",
            extra={"recipient": mask_phone_number(to), "body_length": len(body), "message_id": message_id},
        )
        return message_id
