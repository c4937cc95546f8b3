"""HTTP SMS gateway provider."""

import httpx

from safetrust.core.logging import get_logger
from safetrust.core.mfa import mask_phone_number
from safetrust.services.notifications.base import SMSProvider

logger = get_logger(__name__)


class HTTPSMSGatewayProvider(SMSProvider):
    """Posts messages to a JSON SMS gateway: {"to": ..., "body": ...} -> {"id": ...}."""

    name = "http-sms"

    def __init__(
        self,
        url: str,
        token: str | None = None,
        timeout: float = 10.0,
        transport: httpx.BaseTransport | None = None,
    ):
        self.url = url
        self.token = token
        self.timeout = timeout
        self.transport = transport

    def send(self, to: str, body: str) -> str:
        headers = {"Authorization": f"Bearer {self.token}"} if self.token else {}
        with httpx.Client(timeout=self.timeout, transport=self.transport) as client:
            resp = client.post(self.url, json={"to": to, "body": body}, headers=headers)
            resp.raise_for_status()
            data = resp.json() if resp.content else {}

        message_id = str(data.get("id", ""))
        logger.info("SMS sent via gateway", extra={"recipient": mask_phone_number(to), "message_id": message_id})
        return message_id
