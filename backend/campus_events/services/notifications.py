"""
Transactional emails. Sending is best-effort: a failure is logged and
reported as False, never raised into the request that triggered it.
"""

from __future__ import annotations

from typing import Any
from urllib.parse import quote

from ..observability.logging import get_logger
from ..settings import settings
from .email_ses import send_text_email

log = get_logger("notifications")


def _frontend_link(path: str, token: str) -> str:
    base = str(settings.frontend_url or "").rstrip("/")
    return f"{base}{path}?token={quote(token)}"


def _send(kind: str, *, to_email: str, subject: str, text: str) -> bool:
    if not settings.email_enabled:
        log.info("email_skipped_disabled", kind=kind)
        return False
    try:
        res = send_text_email(to_email=to_email, subject=subject, text=text, kind=kind)
    except Exception as e:  # noqa: BLE001
        log.warning("email_send_failed", kind=kind, error=str(e))
        return False
    if not res.get("ok"):
        log.warning("email_send_failed", kind=kind, error=res.get("error"))
        return False
    log.info("email_sent", kind=kind, message_id=res.get("messageId"))
    return True


def send_verification_email(*, to_email: str, first_name: str, token: str) -> bool:
    link = _frontend_link("/verify-email", token)
    hours = max(1, int(settings.email_verification_ttl_seconds) // 3600)
    text = (
        f"Hi {first_name},\n\n"
        "Welcome to Campus Events. Please confirm your email address by opening the link below:\n\n"
        f"{link}\n\n"
        f"The link expires in {hours} hour(s). If you did not create an account, ignore this email.\n"
    )
    return _send("email_verification", to_email=to_email, subject="Verify your email address", text=text)


def send_password_reset_email(*, to_email: str, first_name: str, token: str) -> bool:
    link = _frontend_link("/reset-password", token)
    text = (
        f"Hi {first_name},\n\n"
        "We received a request to reset your password. Open the link below to choose a new one:\n\n"
        f"{link}\n\n"
        "If you did not request this, you can safely ignore this email.\n"
    )
    return _send("password_reset", to_email=to_email, subject="Reset your password", text=text)


def send_registration_confirmation(*, to_email: str, first_name: str, event: dict[str, Any]) -> bool:
    when = event.get("event_date")
    when_txt = when.strftime("%A, %d %B %Y at %H:%M UTC") if hasattr(when, "strftime") else str(when or "")
    text = (
        f"Hi {first_name},\n\n"
        f"You are registered for {event.get('title') or 'the event'}.\n\n"
        f"When: {when_txt}\n"
        f"Where: {event.get('location') or 'TBA'}\n\n"
        "See you there!\n"
    )
    return _send(
        "event_registration",
        to_email=to_email,
        subject=f"Registration confirmed: {str(event.get('title') or 'Event')[:150]}",
        text=text,
    )
