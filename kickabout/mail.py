"""Outbound email for verification and password-reset links."""

from __future__ import annotations

import html
import logging
import smtplib
from email.message import EmailMessage
from email.utils import formataddr

from .config import Settings
from .errors import ExternalServiceError

logger = logging.getLogger("uvicorn.error")

SMTP_TIMEOUT_SECONDS = 15
NOT_CONFIGURED_MESSAGE = (
    "Email is not configured. Set KICKABOUT_SMTP_USER and KICKABOUT_SMTP_PASSWORD."
)
AUTH_FAILED_MESSAGE = (
    "SMTP authentication failed. Check KICKABOUT_SMTP_USER and use an SMTP "
    "token or app password rather than your account password."
)


def _html_body(intro: str, url: str, outro: str) -> str:
    safe_url = html.escape(url, quote=True)
    return (
        '<!DOCTYPE html><html><body style="font-family:sans-serif;max-width:480px;">'
        f"<p>{html.escape(intro)}</p>"
        f'<p><a href="{safe_url}">{safe_url}</a></p>'
        f"<p>{html.escape(outro)}</p></body></html>"
    )


class Mailer:
    """Sends mail over SMTP in production and logs links otherwise."""

    def __init__(self, settings: Settings) -> None:
        self.settings = settings

    @property
    def is_configured(self) -> bool:
        return bool(self.settings.smtp_user and self.settings.smtp_password)

    @property
    def delivers(self) -> bool:
        return self.settings.is_production

    def ensure_configured(self) -> None:
        if self.delivers and not self.is_configured:
            raise ExternalServiceError(NOT_CONFIGURED_MESSAGE)

    def _from_address(self) -> str:
        sender = self.settings.smtp_from or self.settings.smtp_user
        if not sender:
            raise ExternalServiceError(NOT_CONFIGURED_MESSAGE)
        name = self.settings.smtp_from_name
        return formataddr((name, sender)) if name else sender

    def send_verification_email(self, to: str, verify_url: str) -> None:
        if not self.delivers:
            logger.info("[dev] Verification link for %s: %s", to, verify_url)
            return
        intro = "Please verify your email by opening this link:"
        outro = "If you didn't create an account, you can ignore this email."
        self._send(
            to,
            subject=f"Verify your email – {self.settings.smtp_from_name}",
            text=f"{intro}\n\n{verify_url}\n\n{outro}",
            html_body=_html_body(intro, verify_url, outro),
        )

    def send_password_reset_email(self, to: str, reset_url: str) -> None:
        if not self.delivers:
            logger.info("[dev] Password reset link for %s: %s", to, reset_url)
            return
        intro = "Reset your password by opening this link:"
        outro = (
            "This link expires in 1 hour. If you didn't request a reset, "
            "you can ignore this email."
        )
        self._send(
            to,
            subject=f"Reset your password – {self.settings.smtp_from_name}",
            text=f"{intro}\n\n{reset_url}\n\n{outro}",
            html_body=_html_body(intro, reset_url, outro),
        )

    def _connect(self) -> smtplib.SMTP:
        host, port = self.settings.smtp_host, self.settings.smtp_port
        if self.settings.smtp_secure:
            return smtplib.SMTP_SSL(host, port, timeout=SMTP_TIMEOUT_SECONDS)
        return smtplib.SMTP(host, port, timeout=SMTP_TIMEOUT_SECONDS)

    def _send(self, to: str, *, subject: str, text: str, html_body: str) -> None:
        self.ensure_configured()
        msg = EmailMessage()
        msg["From"] = self._from_address()
        msg["To"] = to
        msg["Subject"] = subject
        msg.set_content(text)
        msg.add_alternative(html_body, subtype="html")
        try:
            with self._connect() as smtp:
                if not self.settings.smtp_secure:
                    smtp.starttls()
                smtp.login(self.settings.smtp_user, self.settings.smtp_password)
                smtp.send_message(msg)
        except smtplib.SMTPAuthenticationError as exc:
            logger.error("SMTP authentication failed sending to %s: %s", to, exc)
            raise ExternalServiceError(AUTH_FAILED_MESSAGE) from exc
        except (smtplib.SMTPException, OSError) as exc:
            logger.error("Failed to send email to %s: %s", to, exc)
            raise ExternalServiceError(f"Could not send email: {exc}") from exc
        logger.info("Sent '%s' to %s", subject, to)
