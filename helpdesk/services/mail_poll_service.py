"""One poll tick per email channel: fetch, ingest, then mark consumed."""

from __future__ import annotations

import logging
from typing import Callable

from sqlalchemy.orm import Session

from helpdesk.core.config import settings
from helpdesk.core.errors import (
    ExternalProviderError,
    HelpdeskError,
    InvalidAddress,
    ValidationError,
)
from helpdesk.core.structured_logging import mask_email
from helpdesk.core.task_guard import TaskGuard, get_task_guard
from helpdesk.db.enums import RequesterPolicy, TicketChannel
from helpdesk.db.session import SessionLocal
from helpdesk.services import inbound_service
from helpdesk.services.mailbox_providers.base import MailboxProvider

logger = logging.getLogger(__name__)

CHANNEL_ALIASES = {
    "graph": TicketChannel.EMAIL_GRAPH,
    "imap": TicketChannel.EMAIL_IMAP,
}


def parse_channel(value: str) -> TicketChannel:
    key = (value or "").strip().lower()
    if key in CHANNEL_ALIASES:
        return CHANNEL_ALIASES[key]
    try:
        channel = TicketChannel(key)
    except ValueError:
        channel = None
    if channel not in CHANNEL_ALIASES.values():
        raise ValidationError(
            "Unknown mail channel", detail=[{"field": "channel", "message": "use graph or imap"}]
        )
    return channel


def build_provider(channel: TicketChannel) -> MailboxProvider:
    if channel == TicketChannel.EMAIL_GRAPH:
        from helpdesk.services.mailbox_providers.graph import GraphMailboxProvider

        return GraphMailboxProvider()
    if channel == TicketChannel.EMAIL_IMAP:
        from helpdesk.services.mailbox_providers.imap import ImapMailboxProvider

        return ImapMailboxProvider()
    raise ValueError(f"No mailbox provider for {channel}")


def batch_size_for(channel: TicketChannel) -> int:
    if channel == TicketChannel.EMAIL_GRAPH:
        return settings.GRAPH_BATCH_SIZE
    return settings.IMAP_BATCH_SIZE


def poll_mailbox(db: Session, provider: MailboxProvider, *, batch_size: int) -> dict[str, int]:
    """Process one batch sequentially.

    Items are marked consumed only after their ingest transaction committed
    (or they were deliberately skipped). A provider failure aborts the tick;
    unconsumed items are picked up again next tick.
    """
    counts = {"fetched": 0, "created": 0, "appended": 0, "duplicates": 0, "skipped": 0, "failed": 0}
    channel = provider.channel.value
    logger.info("Mail poll tick started", extra={"channel": channel})

    items = provider.fetch_pending(batch_size)
    counts["fetched"] = len(items)

    for item in items:
        message = item.message
        if message is None:
            logger.warning("Dropping unreadable item %s: %s", item.ref, item.error, extra={"channel": channel})
            counts["failed"] += 1
            provider.mark_consumed(item)
            continue

        reason = inbound_service.should_ignore_sender(message.sender_email)
        if reason is None and provider.channel == TicketChannel.EMAIL_GRAPH:
            if not inbound_service.addressed_to_mailbox(message, settings.SUPPORT_MAILBOX):
                reason = "not_addressed_to_mailbox"
        if reason:
            logger.info(
                "Skipping message from %s (%s)", mask_email(message.sender_email), reason,
                extra={"channel": channel},
            )
            counts["skipped"] += 1
            provider.mark_consumed(item)
            continue

        try:
            result = inbound_service.ingest_message(
                db, message, policy=RequesterPolicy.LOOKUP_OR_CREATE
            )
        except InvalidAddress:
            logger.warning("Skipping message with invalid sender", extra={"channel": channel})
            counts["skipped"] += 1
            provider.mark_consumed(item)
            continue
        except ExternalProviderError:
            raise
        except HelpdeskError as exc:
            logger.warning("Ingest failed for %s: %s", item.ref, exc.message, extra={"channel": channel})
            counts["failed"] += 1
            continue
        except Exception:
            logger.exception("Unexpected ingest failure for %s", item.ref, extra={"channel": channel})
            counts["failed"] += 1
            continue

        if result.outcome == inbound_service.OUTCOME_CREATED:
            counts["created"] += 1
        elif result.outcome == inbound_service.OUTCOME_APPENDED:
            counts["appended"] += 1
        else:
            counts["duplicates"] += 1
        provider.mark_consumed(item)

    logger.info(
        "Mail poll tick finished: fetched=%s created=%s appended=%s duplicates=%s skipped=%s failed=%s",
        counts["fetched"],
        counts["created"],
        counts["appended"],
        counts["duplicates"],
        counts["skipped"],
        counts["failed"],
        extra={"channel": channel},
    )
    return counts


def run_poll_tick(
    channel: TicketChannel,
    *,
    session_factory: Callable[[], Session] = SessionLocal,
    provider: MailboxProvider | None = None,
    guard: TaskGuard | None = None,
) -> dict[str, int] | None:
    """Run one guarded tick; None when a tick for this channel is in flight."""
    guard = guard or get_task_guard()

    def _tick() -> dict[str, int]:
        db = session_factory()
        try:
            return poll_mailbox(
                db, provider or build_provider(channel), batch_size=batch_size_for(channel)
            )
        finally:
            db.close()

    ran, counts = guard.run_if_idle(f"mail-poll:{channel.value}", _tick)
    return counts if ran else None
