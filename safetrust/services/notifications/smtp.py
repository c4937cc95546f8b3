"""SMTP delivery for MFA emails (enrollment, disable and backup-code notices)."""

import smtplib
from email.message import EmailMessage
from email.utils import make_msgid

from safetrust.core.logging import get_logger
from safetrust.services.notifications.base import EmailProvider

logger = get_logger(__name__)


class SMTPEmailProvider(EmailProvider):
    name = "smtp"

    def __init__(
        self,
        host: str,
        port: int,
        from_email: str,
        use_tls: bool = False,
        use_ssl: bool = False,
        username: str | None = None,
        password: str | None = None,
        timeout: float = 10.0,
    ):
        if use_tls and use_ssl:
            raise ValueError("EMAIL_USE_TLS and EMAIL_USE_SSL are mutually exclusive")
        self.host = host
        self.port = port
        self.from_email = from_email
        self.use_tls = use_tls
        self.use_ssl = use_ssl
        self.username = username
        self.password = password
        self.timeout = timeout

    def build_message(self, to: str, subject: str, body_text: str, body_html: str | None = None) -> EmailMessage:
        msg = EmailMessage()
        msg["From"] = self.from_email
        msg["To"] = to
        msg["Subject"] = subject
        msg["Message-ID"] = make_msgid(domain=self.from_email.partition("@")[2] or None)
        msg.set_content(body_text)
        if body_html:
            msg.add_alternative(body_html, subtype="html")
        return msg

    def send(self, to: str, subject: str, body_text: str, body_html: str | None = None) -> str:
        msg = self.build_message(to, subject, body_text, body_html)
        smtp_cls = smtplib.SMTP_SSL if self.use_ssl else smtplib.SMTP

        with smtp_cls(self.host, self.port, timeout=self.timeout) as server:
            if self.use_tls:
                server.starttls()
            if self.username:
                server.login(self.username, self.password or "")
            server.send_message(msg)

        logger.info(f"email sent: {subject}", extra={"smtp_host": self.host, "message_id": msg["Message-ID"]})
        return msg["Message-ID"]
