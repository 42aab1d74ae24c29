"""
auth/mailer.py -- Password reset email delivery over SMTP.

Development mode: when SMTP_HOST or EMAIL_FROM is not configured, the reset
link is written to the log instead of being sent. This keeps the forgot /
reset flow usable locally without a mail server.

Failures are raised as MailDeliveryError. The session service turns that into
EMAIL_SEND_FAILED -- the token has been minted but the user never got it, so
reporting success would be wrong.
"""

from __future__ import annotations

import html
import logging
import smtplib
import ssl
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from urllib.parse import urlencode

from core.config import Settings

logger = logging.getLogger("blogauth.mail")

RESET_SUBJECT = "Reset Your Password - Blog App"


class MailDeliveryError(Exception):
    """The reset email could not be handed to the SMTP server."""


def _redact_email(email: str) -> str:
    """Redact an email address for logging to avoid PII leakage."""
    if "@" not in email:
        return "redacted"
    local, domain = email.split("@", 1)
    return f"{local[:2]}***@{domain}"


def build_reset_link(frontend_url: str, token: str) -> str:
    return f"{frontend_url.rstrip('/')}/reset-password?{urlencode({'token': token})}"


def _text_body(user_name: str, link: str, expiry_minutes: int) -> str:
    return (
        f"Hello {user_name},\n\n"
        "We received a request to reset the password for your account.\n"
        f"Open the link below to choose a new password:\n\n{link}\n\n"
        f"This link will expire in {expiry_minutes} minutes.\n"
        "If you did not request a password reset, you can ignore this email.\n\n"
        "Best regards,\nBlog App Team\n"
    )


def _html_body(user_name: str, link: str, expiry_minutes: int) -> str:
    name = html.escape(user_name)
    href = html.escape(link, quote=True)
    return (
        "<!DOCTYPE html><html lang=\"en\"><body style=\"font-family: Arial, sans-serif;\">"
        f"<h1>Reset Your Password</h1><p>Hello <strong>{name}</strong>,</p>"
        "<p>We received a request to reset the password for your account.</p>"
        f"<p><a href=\"{href}\">Reset My Password</a></p>"
        f"<p>This link will expire in {expiry_minutes} minutes.</p>"
        "<p>If you did not request a password reset, you can ignore this email.</p>"
        "<p>Best regards,<br>Blog App Team</p></body></html>"
    )


class ResetMailer:
    """Sends password reset links. One instance per app; holds no connection."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings

    @property
    def is_configured(self) -> bool:
        return self._settings.smtp_configured

    def send_password_reset(self, to_email: str, token: str, user_name: str) -> None:
        """Deliver the reset link for `token` to `to_email`.

        Raises MailDeliveryError on any SMTP or socket failure.
        """
        cfg = self._settings
        link = build_reset_link(cfg.frontend_url, token)
        expiry_minutes = cfg.reset_token_ttl_seconds // 60

        if not self.is_configured:
            logger.info(
                "SMTP not configured; password reset link for %s: %s",
                _redact_email(to_email),
                link,
            )
            return

        msg = MIMEMultipart("alternative")
        msg["Subject"] = RESET_SUBJECT
        msg["From"] = f"{cfg.email_from_name} <{cfg.email_from}>"
        msg["To"] = to_email
        msg.attach(MIMEText(_text_body(user_name, link, expiry_minutes), "plain"))
        msg.attach(MIMEText(_html_body(user_name, link, expiry_minutes), "html"))

        context = ssl.create_default_context()
        try:
            if cfg.smtp_use_tls:
                with smtplib.SMTP(cfg.smtp_host, cfg.smtp_port, timeout=cfg.smtp_timeout_seconds) as server:
                    server.starttls(context=context)
                    if cfg.smtp_user and cfg.smtp_password:
                        server.login(cfg.smtp_user, cfg.smtp_password)
                    server.sendmail(cfg.email_from, to_email, msg.as_string())
            else:
                with smtplib.SMTP_SSL(
                    cfg.smtp_host, cfg.smtp_port, context=context, timeout=cfg.smtp_timeout_seconds
                ) as server:
                    if cfg.smtp_user and cfg.smtp_password:
                        server.login(cfg.smtp_user, cfg.smtp_password)
                    server.sendmail(cfg.email_from, to_email, msg.as_string())
        except (smtplib.SMTPException, OSError) as exc:
            logger.error("Password reset email to %s failed: %s", _redact_email(to_email), exc)
            raise MailDeliveryError(str(exc)) from exc

        logger.info("Password reset email sent to %s", _redact_email(to_email))
