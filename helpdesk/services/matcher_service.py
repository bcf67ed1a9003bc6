"""Match inbound messages to existing tickets.

Tiers, first hit wins:
1. thread key recorded on a prior message of a non-closed ticket
2. `#<id>` subject tag, only for the same original sender
3. same sender, subject substring, created within the fuzzy window
Anything else starts a new ticket.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from helpdesk.core.config import settings
from helpdesk.db.enums import TicketStatus
from helpdesk.db.models import Ticket, TicketMessage
from helpdesk.db.types import utc_now
from helpdesk.utils.text import escape_like, normalize_email, normalize_subject

logger = logging.getLogger(__name__)

SUBJECT_TAG_RE = re.compile(r"#(\d{1,18})\b")
MAX_TICKET_ID = 2_147_483_647

REASON_THREAD_KEY = "thread_key"
REASON_SUBJECT_TAG = "subject_tag"
REASON_FUZZY = "fuzzy_subject"


@dataclass(frozen=True)
class MatchResult:
    ticket: Ticket | None
    reason: str | None = None


def _match_thread_key(db: Session, thread_key: str) -> Ticket | None:
    return db.scalars(
        select(Ticket)
        .join(TicketMessage, TicketMessage.ticket_id == Ticket.id)
        .where(
            Ticket.status != TicketStatus.CLOSED,
            or_(
                TicketMessage.thread_key == thread_key,
                TicketMessage.provider_message_id == thread_key,
            ),
        )
        .order_by(Ticket.created_at.desc(), Ticket.id.desc())
    ).first()


def parse_subject_tag(subject: str | None) -> int | None:
    """Return the first `#<id>` tag as a bounded positive int, or None."""
    for match in SUBJECT_TAG_RE.finditer(subject or ""):
        ticket_id = int(match.group(1))
        if 0 < ticket_id <= MAX_TICKET_ID:
            return ticket_id
    return None


def _match_subject_tag(db: Session, subject: str, sender: str) -> Ticket | None:
    ticket_id = parse_subject_tag(subject)
    if ticket_id is None:
        return None
    ticket = db.get(Ticket, ticket_id)
    if not ticket or ticket.status == TicketStatus.CLOSED:
        return None
    if normalize_email(ticket.from_email) != sender:
        logger.info("Subject tag #%s ignored: sender mismatch", ticket_id)
        return None
    return ticket


def _match_fuzzy(db: Session, subject: str, sender: str, now: datetime) -> Ticket | None:
    subject_norm = normalize_subject(subject)
    if not subject_norm:
        return None
    window_start = now - timedelta(days=settings.FUZZY_MATCH_WINDOW_DAYS)
    pattern = f"%{escape_like(subject_norm)}%"
    return db.scalars(
        select(Ticket)
        .where(
            Ticket.status != TicketStatus.CLOSED,
            Ticket.from_email == sender,
            Ticket.created_at >= window_start,
            Ticket.subject.ilike(pattern, escape="\\"),
        )
        .order_by(Ticket.created_at.desc(), Ticket.id.desc())
    ).first()


def match_ticket(
    db: Session,
    *,
    sender: str,
    subject: str | None,
    thread_key: str | None = None,
    now: datetime | None = None,
) -> MatchResult:
    """Find the existing ticket an inbound message belongs to."""
    sender = normalize_email(sender)
    now = now or utc_now()

    if thread_key:
        ticket = _match_thread_key(db, thread_key)
        if ticket:
            return MatchResult(ticket, REASON_THREAD_KEY)

    ticket = _match_subject_tag(db, subject or "", sender)
    if ticket:
        return MatchResult(ticket, REASON_SUBJECT_TAG)

    ticket = _match_fuzzy(db, subject or "", sender, now)
    if ticket:
        return MatchResult(ticket, REASON_FUZZY)

    return MatchResult(None)
