"""Outgoing account mail (verification + password reset).

Without SMTP credentials the message is logged instead of sent, so local
development works without a mail server.
"""

from __future__ import annotations

import logging
import smtplib
from email.message import EmailMessage
from urllib.parse import quote

from paper_nexus.config import Config

logger = logging.getLogger(__name__)


def _smtp_configured(cfg: Config) -> bool:
    return bool(cfg.SMTP_HOST and cfg.SMTP_USER and cfg.SMTP_PASSWORD and (cfg.SMTP_FROM or cfg.SMTP_USER))


def send_mail(cfg: Config, *, to_email: str, subject: str, body: str) -> bool:
    """Send a plain-text message. Returns True when handed to an SMTP server.

    Delivery failures are logged and reported as False; callers never fail a
    request because mail could not be delivered.
    """
    if not _smtp_configured(cfg):
        logger.warning("SMTP not configured, mail to %s logged only", to_email)
        logger.info("Subject: %s\n%s", subject, body)
        return False

    msg = EmailMessage()
    msg["From"] = cfg.SMTP_FROM or cfg.SMTP_USER
    msg["To"] = to_email
    msg["Subject"] = subject
    msg.set_content(body)

    security = (cfg.SMTP_SECURITY or "ssl").lower()
    try:
        if security in {"ssl", "smtps"}:
            with smtplib.SMTP_SSL(cfg.SMTP_HOST, cfg.SMTP_PORT, timeout=20) as server:
                server.login(cfg.SMTP_USER, cfg.SMTP_PASSWORD)
                server.send_message(msg)
            return True

        with smtplib.SMTP(cfg.SMTP_HOST, cfg.SMTP_PORT, timeout=20) as server:
            server.ehlo()
            if security in {"starttls", "tls"}:
                server.starttls()
                server.ehlo()
            server.login(cfg.SMTP_USER, cfg.SMTP_PASSWORD)
            server.send_message(msg)
        return True
    except (smtplib.SMTPException, OSError):
        logger.exception("failed to send mail to %s", to_email)
        return False


def _link(cfg: Config, path: str, token: str) -> str:
    base = (cfg.PUBLIC_APP_URL or "").rstrip("/")
    return f"{base}{path}?token={quote(token)}"


def send_verification_email(cfg: Config, *, to_email: str, username: str, token: str) -> bool:
    link = _link(cfg, "/verify-email", token)
    body = (
        f"Hi {username},\n\n"
        "Please confirm your email address by opening the link below:\n\n"
        f"{link}\n\n"
        f"The link expires in {cfg.VERIFICATION_TOKEN_TTL_HOURS} hours.\n"
    )
    return send_mail(cfg, to_email=to_email, subject="Verify your Paper Nexus account", body=body)


def send_password_reset_email(cfg: Config, *, to_email: str, username: str, token: str) -> bool:
    link = _link(cfg, "/reset-password", token)
    body = (
        f"Hi {username},\n\n"
        "Someone asked to reset the password for your account. If that was you, open:\n\n"
        f"{link}\n\n"
        f"The link expires in {cfg.RESET_TOKEN_TTL_MINUTES} minutes. "
        "If you did not ask for this, ignore this message.\n"
    )
    return send_mail(cfg, to_email=to_email, subject="Reset your Paper Nexus password", body=body)
