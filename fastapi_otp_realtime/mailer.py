"""
Mail delivery for OTP codes.

``build_mailer`` picks a transport from configuration: explicit SMTP settings
win, then a named-provider account (Gmail by default). In development with
neither configured, codes are written to the log instead of being sent.
"""

import logging
from email.message import EmailMessage
from typing import Protocol

import aiosmtplib

from fastapi_otp_realtime.config import OTPRealtimeConfig
from fastapi_otp_realtime.exceptions import ConfigurationError

logger = logging.getLogger(__name__)


class Mailer(Protocol):
    """Anything that can deliver a message to one recipient."""

    async def send(self, to: str, subject: str, text: str, html: str) -> None: ...


class SMTPMailer:
    """Send mail through an SMTP server with aiosmtplib."""

    def __init__(
        self,
        hostname: str,
        port: int,
        username: str,
        password: str,
        sender: str,
    ) -> None:
        self.hostname = hostname
        self.port = port
        self.username = username
        self.password = password
        self.sender = sender

    @property
    def use_tls(self) -> bool:
        """Implicit TLS on 465; other ports upgrade with STARTTLS."""
        return self.port == 465

    async def send(self, to: str, subject: str, text: str, html: str) -> None:
        msg = EmailMessage()
        msg["From"] = self.sender
        msg["To"] = to
        msg["Subject"] = subject
        msg.set_content(text)
        msg.add_alternative(html, subtype="html")

        await aiosmtplib.send(
            msg,
            hostname=self.hostname,
            port=self.port,
            username=self.username,
            password=self.password,
            use_tls=self.use_tls,
            start_tls=None if self.use_tls else True,
        )
        logger.info("Sent '%s' to %s via %s", subject, to, self.hostname)


class ConsoleMailer:
    """Development mailer: logs messages instead of sending them."""

    async def send(self, to: str, subject: str, text: str, html: str) -> None:
        logger.info("[console mail] to=%s subject=%s\n%s", to, subject, text)


def build_mailer(config: OTPRealtimeConfig) -> Mailer:
    """
    Select the mail transport for ``config``.

    Raises:
        ConfigurationError: if no transport is configured outside development
    """
    if config.smtp_host and config.smtp_port and config.smtp_user and config.smtp_password:
        return SMTPMailer(
            hostname=config.smtp_host,
            port=config.smtp_port,
            username=config.smtp_user,
            password=config.smtp_password,
            sender=config.mail_from or config.smtp_user,
        )

    if config.email_user and config.email_password:
        return SMTPMailer(
            hostname=config.email_provider_host,
            port=465,
            username=config.email_user,
            password=config.email_password,
            sender=config.mail_from or config.email_user,
        )

    if config.is_development:
        logger.warning("No SMTP configuration found; OTP codes will be logged")
        return ConsoleMailer()

    raise ConfigurationError(
        "No SMTP configuration found. Set SMTP_* or EMAIL_USER/EMAIL_PASS"
    )
