"""Notifier: provider selection and fire-and-forget delivery."""

import asyncio
from typing import Any, Callable

from safetrust.core.config import Settings, settings
from safetrust.core.logging import get_logger
from safetrust.services.notifications.base import EmailProvider, SMSProvider
from safetrust.services.notifications.console import ConsoleEmailProvider, ConsoleSMSProvider
from safetrust.services.notifications.sms_gateway import HTTPSMSGatewayProvider
from safetrust.services.notifications.smtp import SMTPEmailProvider

logger = get_logger(__name__)


class Notifier:
    """
    Delivers email and SMS through synchronous providers without blocking callers.

    ``notify_email`` / ``notify_sms`` schedule delivery on a worker thread and
    return immediately. Delivery is not guaranteed: failures are logged, never
    retried and never raised to the caller.
    """

    def __init__(self, email_provider: EmailProvider, sms_provider: SMSProvider):
        self.email_provider = email_provider
        self.sms_provider = sms_provider
        self._tasks: set[asyncio.Task] = set()

    def notify_email(self, to: str, subject: str, body_text: str) -> asyncio.Task:
        return self._dispatch(
            "email", self.email_provider.send, to=to, subject=subject, body_text=body_text
        )

    def notify_sms(self, to: str, body: str) -> asyncio.Task:
        return self._dispatch("sms", self.sms_provider.send, to=to, body=body)

    def _dispatch(self, channel: str, send: Callable[..., str], **kwargs: Any) -> asyncio.Task:
        task = asyncio.create_task(self._deliver(channel, send, **kwargs))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _deliver(self, channel: str, send: Callable[..., str], **kwargs: Any) -> str | None:
        try:
            return await asyncio.to_thread(send, **kwargs)
        except Exception as e:
            logger.warning(
                f"Notification delivery failed: {e}",
                extra={"channel": channel, "provider": getattr(getattr(send, "__self__", None), "name", channel)},
            )
            return None

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait for in-flight deliveries (used on shutdown and in tests)."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks))


def build_notifier(config: Settings | None = None) -> Notifier:
    """Build a notifier from settings, falling back to console providers."""
    config = config or settings

    email_backend = config.EMAIL_BACKEND.lower()
    if email_backend in ("mailpit", "smtp"):
        email_provider: EmailProvider = SMTPEmailProvider(
            host=config.EMAIL_HOST,
            port=config.EMAIL_PORT,
            from_email=config.EMAIL_FROM,
            use_tls=config.EMAIL_USE_TLS,
            use_ssl=config.EMAIL_USE_SSL,
            username=config.EMAIL_USERNAME,
            password=config.EMAIL_PASSWORD,
        )
        logger.info(f"Email provider initialized: SMTP ({config.EMAIL_HOST}:{config.EMAIL_PORT})")
    else:
        email_provider = ConsoleEmailProvider()
        logger.info("Email provider initialized: Console (fallback)")

    sms_backend = config.SMS_BACKEND.lower()
    if sms_backend == "http" and config.SMS_GATEWAY_URL:
        sms_provider: SMSProvider = HTTPSMSGatewayProvider(
            url=config.SMS_GATEWAY_URL,
            token=config.SMS_GATEWAY_TOKEN,
        )
        logger.info("SMS provider initialized: HTTP gateway")
    else:
        if sms_backend == "http":
            logger.warning("SMS_BACKEND=http without SMS_GATEWAY_URL, falling back to console")
        sms_provider = ConsoleSMSProvider()

    return Notifier(email_provider=email_provider, sms_provider=sms_provider)
