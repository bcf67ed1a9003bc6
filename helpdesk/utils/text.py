"""Text normalization helpers shared by channel adapters and the matcher."""

from __future__ import annotations

import html
import re

_REPLY_PREFIX_RE = re.compile(r"^\s*(?:re|fw|fwd|rv|aw)\s*:\s*", re.IGNORECASE)
_TAG_RE = re.compile(r"<[^>]+>")
_BLOCK_RE = re.compile(r"<\s*(?:br|/p|/div|/li|/tr|/h[1-6])\b[^>]*>", re.IGNORECASE)
_STRIP_BLOCK_RE = re.compile(r"<(script|style|head)\b.*?</\1\s*>", re.IGNORECASE | re.DOTALL)
_WS_RE = re.compile(r"[ \t\r\f\v]+")
_NEWLINES_RE = re.compile(r"\n{3,}")


def normalize_email(email: str | None) -> str:
    return (email or "").strip().lower()


def email_domain(email: str | None) -> str | None:
    """Return the lowercased domain after the last `@`, or None."""
    normalized = normalize_email(email)
    if "@" not in normalized:
        return None
    domain = normalized.rsplit("@", 1)[1].strip()
    return domain or None


def normalize_subject(subject: str | None) -> str:
    """Strip any run of reply/forward prefixes and collapse whitespace."""
    value = (subject or "").strip()
    while True:
        stripped = _REPLY_PREFIX_RE.sub("", value, count=1)
        if stripped == value:
            break
        value = stripped
    return " ".join(value.split())


def html_to_text(body_html: str | None) -> str:
    """Best-effort plain text from an HTML body."""
    if not body_html:
        return ""
    text = _STRIP_BLOCK_RE.sub("", body_html)
    text = _BLOCK_RE.sub("\n", text)
    text = _TAG_RE.sub("", text)
    text = html.unescape(text)
    lines = [_WS_RE.sub(" ", line).strip() for line in text.split("\n")]
    return _NEWLINES_RE.sub("\n\n", "\n".join(lines)).strip()


def escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
