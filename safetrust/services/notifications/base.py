"""Provider interfaces for out-of-band MFA notifications.

Providers are synchronous and may block; ``Notifier`` runs them on a worker
thread. Each ``send`` returns the provider's message id or raises.
"""

from abc import ABC, abstractmethod


class EmailProvider(ABC):
    name = "email"

    @abstractmethod
    def send(self, to: str, subject: str, body_text: str, body_html: str | None = None) -> str:
        """Deliver one message to ``to`` and return its message id."""


class SMSProvider(ABC):
    name = "sms"

    @abstractmethod
    def send(self, to: str, body: str) -> str:
        """Deliver ``body`` to the phone number ``to`` and return its message id."""
