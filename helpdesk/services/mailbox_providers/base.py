"""Provider-neutral mailbox interface."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from helpdesk.db.enums import TicketChannel
from helpdesk.services.inbound_service import InboundMessage


@dataclass
class MailboxItem:
    """One pending provider message.

    `ref` is the provider handle used to mark the item consumed. `message`
    is None when the raw item could not be normalized.
    """

    ref: str
    message: InboundMessage | None
    error: str | None = None


@dataclass
class AttachmentContent:
    content: bytes
    filename: str | None = None
    mime_type: str | None = None


class MailboxProvider(Protocol):
    channel: TicketChannel

    def fetch_pending(self, limit: int) -> list[MailboxItem]:
        """Return up to `limit` unconsumed messages, oldest first."""
        ...

    def mark_consumed(self, item: MailboxItem) -> None:
        """Flag the item so the next fetch skips it. Called after commit."""
        ...

    def fetch_attachment(self, reference: str) -> AttachmentContent | None:
        """Fetch attachment bytes by stored provider reference; None if gone."""
        ...
