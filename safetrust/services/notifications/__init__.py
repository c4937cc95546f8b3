"""Out-of-band notification delivery (email and SMS)."""

from safetrust.services.notifications.base import EmailProvider, SMSProvider
from safetrust.services.notifications.service import Notifier, build_notifier

__all__ = ["EmailProvider", "SMSProvider", "Notifier", "build_notifier"]
