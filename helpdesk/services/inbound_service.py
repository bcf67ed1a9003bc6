"""Inbound message ingestion shared by every channel adapter.

One transaction per message: duplicate check, creation lock, match, then
either append to the matched ticket or open a new one.
"""

from __future__ import annotations

import hashlib
import logging
import threading
from contextlib import contextmanager, nullcontext
from dataclasses import dataclass, field
from datetime import datetime, timezone

from sqlalchemy import select, text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from helpdesk.core.config import settings
from helpdesk.core.errors import ConflictError
from helpdesk.core.structured_logging import build_log_context, mask_email
from helpdesk.core.transactions import is_postgres, run_in_transaction
from helpdesk.db.enums import (
    ActorType,
    MessageDirection,
    RequesterPolicy,
    TicketChannel,
    TicketPriority,
    TicketStatus,
)
from helpdesk.db.models import TicketAttachment, TicketMessage
from helpdesk.services import directory_service, ticket_service
from helpdesk.services.matcher_service import match_ticket
from helpdesk.utils.text import html_to_text, normalize_email, normalize_subject

logger = logging.getLogger(__name__)

OUTCOME_CREATED = "created"
OUTCOME_APPENDED = "appended"
OUTCOME_DUPLICATE = "duplicate"

DEFAULT_SUBJECT = "(no subject)"


@dataclass
class AttachmentMeta:
    filename: str
    mime_type: str = "application/octet-stream"
    size_bytes: int = 0
    provider_ref: str | None = None
    is_inline: bool = False
    content_id: str | None = None


@dataclass
class InboundMessage:
    """Channel-neutral inbound message."""

    channel: TicketChannel
    sender_email: str
    subject: str
    sender_name: str | None = None
    body_text: str | None = None
    body_html: str | None = None
    thread_key: str | None = None
    provider_message_id: str | None = None
    to_emails: list[str] = field(default_factory=list)
    cc_emails: list[str] = field(default_factory=list)
    attachments: list[AttachmentMeta] = field(default_factory=list)
    received_at: datetime | None = None

    @property
    def text(self) -> str:
        if self.body_text and self.body_text.strip():
            return self.body_text
        return html_to_text(self.body_html)


@dataclass(frozen=True)
class IngestResult:
    outcome: str
    ticket_id: int | None
    match_reason: str | None = None
    reopened: bool = False


# =============================================================================
# Sender filters and priority
# =============================================================================


def should_ignore_sender(sender_email: str) -> str | None:
    """Return a skip reason for internal or automated senders."""
    sender = normalize_email(sender_email)
    domain = sender.rsplit("@", 1)[-1] if "@" in sender else ""
    if domain and domain in settings.internal_domains_list:
        return "internal_domain"
    for pattern in settings.blocked_sender_patterns_list:
        if pattern in sender:
            return "blocked_sender"
    return None


def addressed_to_mailbox(message: InboundMessage, mailbox: str | None) -> bool:
    if not mailbox:
        return True
    target = normalize_email(mailbox)
    recipients = {normalize_email(addr) for addr in (*message.to_emails, *message.cc_emails)}
    return target in recipients


def detect_priority(subject: str | None, body: str | None) -> TicketPriority:
    haystack = f"{subject or ''} {body or ''}".lower()
    if any(word in haystack for word in settings.urgent_keywords_list):
        return TicketPriority.URGENT
    if any(word in haystack for word in settings.high_priority_keywords_list):
        return TicketPriority.HIGH
    return TicketPriority.NORMAL


# =============================================================================
# Creation lock
# =============================================================================

_LOCAL_STRIPES = [threading.Lock() for _ in range(64)]


def creation_lock_key(sender: str, subject: str | None) -> int:
    """Signed 64-bit key for (sender, normalized subject)."""
    raw = f"{normalize_email(sender)}|{normalize_subject(subject).lower()}".encode("utf-8")
    return int.from_bytes(hashlib.sha256(raw).digest()[:8], "big", signed=True)


@contextmanager
def _local_creation_lock(key: int):
    lock = _LOCAL_STRIPES[key % len(_LOCAL_STRIPES)]
    with lock:
        yield


def _acquire_creation_lock(db: Session, key: int) -> None:
    if is_postgres(db):
        db.execute(text("SELECT pg_advisory_xact_lock(:key)"), {"key": key})


# =============================================================================
# Ingest
# =============================================================================


def find_ingested(db: Session, provider_message_id: str | None) -> TicketMessage | None:
    if not provider_message_id:
        return None
    return db.scalars(
        select(TicketMessage).where(
            TicketMessage.provider_message_id == provider_message_id,
            TicketMessage.direction == MessageDirection.INBOUND,
        )
    ).first()


def _build_message(message: InboundMessage, sender: str) -> TicketMessage:
    row = TicketMessage(
        direction=MessageDirection.INBOUND,
        is_internal=False,
        body_text=message.text,
        body_html=message.body_html,
        from_email=sender,
        to_email=normalize_email(message.to_emails[0]) if message.to_emails else None,
        cc_emails=[normalize_email(addr) for addr in message.cc_emails if addr],
        provider_message_id=message.provider_message_id,
        thread_key=message.thread_key,
    )
    if message.received_at is not None:
        row.created_at = message.received_at
    for meta in message.attachments:
        row.attachments.append(
            TicketAttachment(
                filename=meta.filename,
                mime_type=meta.mime_type,
                size_bytes=meta.size_bytes,
                provider=message.channel,
                provider_ref=meta.provider_ref,
                is_inline=meta.is_inline,
                content_id=meta.content_id,
            )
        )
    return row


def _ingest_once(
    db: Session, message: InboundMessage, sender: str, policy: RequesterPolicy, lock_key: int
) -> IngestResult:
    _acquire_creation_lock(db, lock_key)

    existing = find_ingested(db, message.provider_message_id)
    if existing:
        return IngestResult(OUTCOME_DUPLICATE, existing.ticket_id)

    now = datetime.now(timezone.utc)
    match = match_ticket(db, sender=sender, subject=message.subject, thread_key=message.thread_key, now=now)

    if match.ticket is not None:
        ticket = match.ticket
        row = _build_message(message, sender)
        reopened = ticket_service.record_inbound_message(
            db, ticket=ticket, message=row, requester_id=ticket.requester_id, now=now
        )
        result = IngestResult(OUTCOME_APPENDED, ticket.id, match.reason, reopened)
    else:
        org = directory_service.resolve_organization(db, email=sender)
        requester = directory_service.resolve_requester(
            db,
            organization_id=org.id,
            email=sender,
            name=message.sender_name,
            policy=policy,
        )
        subject = (message.subject or "").strip() or DEFAULT_SUBJECT
        ticket = ticket_service.create_ticket(
            db,
            organization_id=org.id,
            subject=subject,
            channel=message.channel,
            status=TicketStatus.NEW,
            priority=detect_priority(subject, message.text),
            from_email=sender,
            requester_id=requester.id if requester else None,
            actor_type=ActorType.REQUESTER,
            actor_id=requester.id if requester else None,
            now=now,
        )
        ticket_service.record_inbound_message(
            db,
            ticket=ticket,
            message=_build_message(message, sender),
            requester_id=ticket.requester_id,
            now=now,
        )
        result = IngestResult(OUTCOME_CREATED, ticket.id)

    try:
        db.flush()
    except IntegrityError as exc:
        raise ConflictError("Concurrent ingest of the same message") from exc
    return result


def ingest_message(
    db: Session,
    message: InboundMessage,
    *,
    policy: RequesterPolicy = RequesterPolicy.LOOKUP_OR_CREATE,
) -> IngestResult:
    """Match-then-write one inbound message atomically; commits.

    Re-delivery of an already stored provider message id yields `duplicate`
    and writes nothing.

    Raises:
        InvalidAddress: sender has no domain
        ConflictError: lost a uniqueness race on every retry
    """
    sender = normalize_email(message.sender_email)
    lock_key = creation_lock_key(sender, message.subject)

    local_lock = nullcontext() if is_postgres(db) else _local_creation_lock(lock_key)
    with local_lock:
        result = run_in_transaction(
            db, lambda session: _ingest_once(session, message, sender, policy, lock_key)
        )

    logger.info(
        "Inbound message from %s %s",
        mask_email(sender),
        result.outcome,
        extra=build_log_context(ticket_id=result.ticket_id, channel=message.channel.value),
    )
    return result


def ingest_webhook(db: Session, *, sender: str, subject: str, text: str) -> IngestResult:
    """Ingest a `{from, subject, text}` webhook payload."""
    return ingest_message(
        db,
        InboundMessage(
            channel=TicketChannel.WEBHOOK,
            sender_email=sender,
            subject=subject,
            body_text=text,
        ),
        policy=RequesterPolicy(settings.WEBHOOK_REQUESTER_POLICY),
    )
