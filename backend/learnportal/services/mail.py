from __future__ import annotations

import logging
from html import escape

from learnportal.core.settings import get_settings
from learnportal.providers import brevo_mail

logger = logging.getLogger(__name__)


def _code_body(title: str, intro: str, code: str, ttl_minutes: int) -> str:
    return (
        f"<h2>{escape(title)}</h2>"
        f"<p>{escape(intro)}</p>"
        f"<p style=\"font-size:28px;letter-spacing:4px\"><strong>{escape(code)}</strong></p>"
        f"<p>This code will expire in {ttl_minutes} minutes.</p>"
        "<p>If you didn't request this, please ignore this email.</p>"
    )


def _send(to_email: str, subject: str, html: str) -> None:
    settings = get_settings()
    brevo_mail.send_email(
        api_key=settings.brevo_api_key,
        sender_name=settings.mail_sender_name,
        sender_email=settings.mail_sender_email,
        to_email=to_email,
        subject=subject,
        html=html,
    )
    logger.info("mail sent subject=%r", subject)


def send_verification_code(to_email: str, code: str) -> None:
    ttl_minutes = max(1, get_settings().otp_ttl_seconds // 60)
    html = _code_body(
        "Email Verification",
        "Please use the following code to verify your email address:",
        code,
        ttl_minutes,
    )
    _send(to_email, "Email Verification - Your OTP Code", html)


def send_password_reset_code(to_email: str, code: str) -> None:
    ttl_minutes = max(1, get_settings().otp_ttl_seconds // 60)
    html = _code_body(
        "Password Reset",
        "Use the following code to reset your password:",
        code,
        ttl_minutes,
    )
    _send(to_email, "Password Reset - Your OTP Code", html)
