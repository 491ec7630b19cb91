"""
auth/mailer.py -- Out-of-band delivery of OTP tokens by email.

When SMTP is not configured (SMTP_HOST empty) the mailer logs that a message
would have been sent, with the recipient redacted and without the token.
That keeps development setups working without ever writing a live secret to
the log.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
import smtplib
import ssl
from email.message import EmailMessage

from auth.models import OtpPurpose
from core.config import Settings

logger = logging.getLogger("gatehouse.auth")

_SUBJECTS = {
    OtpPurpose.VERIFY_EMAIL: "Confirm your email address",
    OtpPurpose.RESET_PASSWORD: "Reset your password",
}

_BODIES = {
    OtpPurpose.VERIFY_EMAIL: (
        "Use this code to confirm your email address:\n\n    {token}\n\n"
        "It expires at {expires_at} UTC.\n\nAccount reference: {user_id}"
    ),
    OtpPurpose.RESET_PASSWORD: (
        "Use this code to choose a new password:\n\n    {token}\n\n"
        "It expires at {expires_at} UTC. If you did not ask for a reset, ignore this email.\n\n"
        "Account reference: {user_id}"
    ),
}


def redact_email(email: str) -> str:
    if "@" not in email:
        return "redacted"
    local, domain = email.split("@", 1)
    return f"{local[:2]}***@{domain}"


class OtpMailer:
    def __init__(self, settings: Settings) -> None:
        self.host = settings.smtp_host
        self.port = settings.smtp_port
        self.user = settings.smtp_user
        self.password = settings.smtp_password
        self.use_tls = settings.smtp_use_tls
        self.sender = settings.mail_from or settings.smtp_user

    @property
    def is_configured(self) -> bool:
        return bool(self.host and self.sender)

    def send_otp(self, to_email: str, user_id: str, purpose: OtpPurpose, token: str, expires_at: str) -> None:
        """Deliver a token. SMTP errors propagate to the caller (OSError subclasses)."""
        if not self.is_configured:
            logger.info("SMTP not configured; %s email to %s not sent", purpose.value, redact_email(to_email))
            return

        msg = EmailMessage()
        msg["Subject"] = _SUBJECTS[purpose]
        msg["From"] = self.sender
        msg["To"] = to_email
        msg.set_content(_BODIES[purpose].format(token=token, expires_at=expires_at, user_id=user_id))

        with smtplib.SMTP(self.host, self.port, timeout=10) as smtp:
            if self.use_tls:
                smtp.starttls(context=ssl.create_default_context())
            if self.user:
                smtp.login(self.user, self.password)
            smtp.send_message(msg)
        logger.info("Sent %s email to %s", purpose.value, redact_email(to_email))
