"""Structured logging helpers (PII-safe)."""

import logging
from typing import Any

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging once for API and worker processes."""
    logging.basicConfig(
        level=getattr(logging, (level or "INFO").upper(), logging.INFO),
        format=LOG_FORMAT,
        datefmt=LOG_DATE_FORMAT,
    )


def mask_email(email: str | None) -> str:
    """Mask an email address for logs (keeps first 3 chars of local part)."""
    if not email:
        return ""
    local, _, domain = email.partition("@")
    prefix = local[:3] if local else ""
    return f"{prefix}...@{domain}" if domain else f"{prefix}..."


def build_log_context(
    *,
    ticket_id: int | None = None,
    organization_id: int | None = None,
    actor_id: int | None = None,
    channel: str | None = None,
    request_id: str | None = None,
) -> dict[str, Any]:
    """Return a PII-safe log context dict."""
    context: dict[str, Any] = {}
    if ticket_id is not None:
        context["ticket_id"] = ticket_id
    if organization_id is not None:
        context["organization_id"] = organization_id
    if actor_id is not None:
        context["actor_id"] = actor_id
    if channel:
        context["channel"] = channel
    if request_id:
        context["request_id"] = request_id
    return context
