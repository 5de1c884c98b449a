"""Outbound delivery of one-time passcodes."""

from __future__ import annotations

import logging
import smtplib
from dataclasses import dataclass
from email.message import EmailMessage
from typing import Optional, Protocol

from .models import OtpPurpose

logger = logging.getLogger("authcore.notifier")


class Notifier(Protocol):
    def send_otp(self, address: str, code: str, purpose: OtpPurpose) -> None:
        ...


_SUBJECTS = {
    OtpPurpose.VERIFY_EMAIL: "Verify your email address",
    OtpPurpose.RESET_PASSWORD: "Your password reset code",
}

_TEMPLATES = {
    OtpPurpose.VERIFY_EMAIL: """
Hello,

Your verification code is:

{code}

This code will expire in {minutes} minutes.

If you did not create an account, please ignore this email.
""",
    OtpPurpose.RESET_PASSWORD: """
Hello,

You requested to reset your password. Your one-time code is:

{code}

This code will expire in {minutes} minutes.

If you did not request a password reset, please ignore this email. Your password will remain unchanged.
""",
}


def render_otp_email(code: str, purpose: OtpPurpose, *, minutes: int = 10) -> tuple[str, str]:
    """Return the ``(subject, body)`` pair for a passcode email."""

    return _SUBJECTS[purpose], _TEMPLATES[purpose].format(code=code, minutes=minutes).strip() + "\n"


class LoggingNotifier:
    """Notifier for development setups without a mail server. Never logs the code."""

    def send_otp(self, address: str, code: str, purpose: OtpPurpose) -> None:
        logger.info("Passcode for %s issued to %s (delivery disabled)", purpose.value, address)


@dataclass(frozen=True)
class SMTPSettings:
    host: str
    port: int = 587
    username: Optional[str] = None
    password: Optional[str] = None
    use_tls: bool = True
    sender: str = "no-reply@example.com"
    timeout: float = 10.0


class SMTPNotifier:
    """Deliver passcodes by email over SMTP."""

    def __init__(self, settings: SMTPSettings, *, otp_minutes: int = 10) -> None:
        self._settings = settings
        self._otp_minutes = otp_minutes

    def build_message(self, address: str, code: str, purpose: OtpPurpose) -> EmailMessage:
        subject, body = render_otp_email(code, purpose, minutes=self._otp_minutes)
        message = EmailMessage()
        message["Subject"] = subject
        message["From"] = self._settings.sender
        message["To"] = address
        message.set_content(body)
        return message

    def send_otp(self, address: str, code: str, purpose: OtpPurpose) -> None:
        message = self.build_message(address, code, purpose)
        settings = self._settings
        with smtplib.SMTP(settings.host, settings.port, timeout=settings.timeout) as smtp:
            if settings.use_tls:
                smtp.starttls()
            if settings.username and settings.password:
                smtp.login(settings.username, settings.password)
            smtp.send_message(message)
        logger.info("Sent %s passcode email to %s", purpose.value, address)


__all__ = [
    "LoggingNotifier",
    "Notifier",
    "SMTPNotifier",
    "SMTPSettings",
    "render_otp_email",
]
