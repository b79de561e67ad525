"""Email delivery over SMTP.

send() reports delivery failures through SendResult instead of raising, so
callers decide what a failed email means for their flow (registration rolls
back, forgot-password just reports the failure). Missing SMTP configuration
is not a delivery failure: it raises InternalError so it cannot be mistaken
for a transient problem.
"""

from __future__ import annotations

import logging
import smtplib
import ssl
from dataclasses import dataclass
from email.message import EmailMessage
from email.utils import formataddr, make_msgid
from typing import Protocol

from core.config import Settings
from core.errors import ErrorSource, InternalError

logger = logging.getLogger("authstarter.mailer")


@dataclass(frozen=True)
class SendResult:
    success: bool
    message_id: str | None = None
    error: str | None = None


class EmailSender(Protocol):
    """Anything that can deliver one email."""

    def send(self, to: str, subject: str, html: str, text: str = "") -> SendResult: ...


class SmtpEmailSender:
    """Sends multipart (text + HTML) email through an authenticated SMTP server.

    A new connection is opened per message. Volumes here are a handful of
    OTP emails, so pooling connections is not worth the reconnect handling.
    """

    def __init__(self, settings: Settings) -> None:
        self.host = settings.smtp_host
        self.port = settings.smtp_port
        self.user = settings.smtp_user
        self.password = settings.smtp_password
        self.use_tls = settings.smtp_use_tls
        self.use_ssl = settings.smtp_use_ssl
        self.timeout = settings.smtp_timeout_seconds
        self.sender = settings.sender_address
        self.app_name = settings.app_name

    def _assert_configured(self) -> None:
        missing = [
            ErrorSource(name, f"Missing {name.upper()}")
            for name, value in (("smtp_user", self.user), ("smtp_password", self.password), ("email_from", self.sender))
            if not value
        ]
        if missing:
            raise InternalError("Email configuration missing", missing)

    def _connect(self) -> smtplib.SMTP:
        context = ssl.create_default_context()
        if self.use_ssl:
            conn: smtplib.SMTP = smtplib.SMTP_SSL(self.host, self.port, timeout=self.timeout, context=context)
        else:
            conn = smtplib.SMTP(self.host, self.port, timeout=self.timeout)
            conn.ehlo()
            if self.use_tls:
                conn.starttls(context=context)
                conn.ehlo()
        conn.login(self.user, self.password)
        return conn

    def send(self, to: str, subject: str, html: str, text: str = "") -> SendResult:
        self._assert_configured()

        msg = EmailMessage()
        msg["Subject"] = subject
        msg["From"] = formataddr((self.app_name, self.sender))
        msg["To"] = to
        msg["Message-ID"] = make_msgid()
        msg.set_content(text or subject)
        msg.add_alternative(html, subtype="html")

        try:
            with self._connect() as conn:
                refused = conn.send_message(msg)
        except (smtplib.SMTPException, OSError) as exc:
            logger.error("Email send failed: subject=%r to=%s error=%s", subject, to, exc)
            return SendResult(success=False, error=str(exc))

        if refused:
            logger.error("Email refused by server: subject=%r to=%s refused=%s", subject, to, refused)
            return SendResult(success=False, error=f"Recipient refused: {', '.join(refused)}")

        logger.info("Email sent: subject=%r to=%s message_id=%s", subject, to, msg["Message-ID"])
        return SendResult(success=True, message_id=msg["Message-ID"])
