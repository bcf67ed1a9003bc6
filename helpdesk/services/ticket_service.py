"""Ticket lifecycle: creation, replies, explicit updates, reopen, reads."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone

from sqlalchemy import case, func
from sqlalchemy.orm import Session, selectinload

from helpdesk.core.errors import NotFoundError, ValidationError
from helpdesk.core.structured_logging import build_log_context
from helpdesk.core.transactions import run_in_transaction
from helpdesk.db.enums import (
    PRIORITY_RANK,
    ActorType,
    MessageDirection,
    TicketChannel,
    TicketEventType,
    TicketPriority,
    TicketStatus,
)
from helpdesk.db.models import Agent, Ticket, TicketEvent, TicketMessage
from helpdesk.services import directory_service
from helpdesk.services.ticket_event_service import append_event, snapshot
from helpdesk.utils.pagination import PaginationParams, total_pages
from helpdesk.utils.text import escape_like, normalize_email, normalize_subject

logger = logging.getLogger(__name__)

REOPEN_FROM = {TicketStatus.RESOLVED, TicketStatus.CLOSED}
REPLY_OPENS_FROM = {TicketStatus.NEW, TicketStatus.PENDING}
NO_CHANGES = "No changes"


# =============================================================================
# Helpers
# =============================================================================


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def get_ticket(db: Session, *, ticket_id: int, for_update: bool = False) -> Ticket:
    query = db.query(Ticket).filter(Ticket.id == ticket_id)
    if for_update:
        query = query.with_for_update()
    ticket = query.first()
    if not ticket:
        raise NotFoundError("Ticket not found")
    return ticket


def _ensure_agent(db: Session, agent_id: int) -> Agent:
    agent = db.get(Agent, agent_id)
    if not agent:
        raise NotFoundError("Agent not found")
    return agent


def _set_status(
    db: Session,
    ticket: Ticket,
    next_status: TicketStatus,
    *,
    actor_type: ActorType,
    actor_id: int | None,
    now: datetime,
) -> bool:
    """Transition status with its timestamp side effects; False if unchanged."""
    if ticket.status == next_status:
        return False
    previous = ticket.status
    ticket.status = next_status
    if next_status == TicketStatus.RESOLVED:
        ticket.last_resolved_at = now
    elif next_status == TicketStatus.CLOSED:
        ticket.last_closed_at = now
    append_event(
        db,
        ticket=ticket,
        event_type=TicketEventType.STATUS_CHANGED,
        actor_type=actor_type,
        actor_id=actor_id,
        old_value=previous,
        new_value=next_status,
    )
    return True


def _set_assignee(
    db: Session,
    ticket: Ticket,
    assignee_id: int | None,
    *,
    actor_type: ActorType,
    actor_id: int | None,
) -> bool:
    if ticket.assignee_id == assignee_id:
        return False
    previous = ticket.assignee_id
    ticket.assignee_id = assignee_id
    append_event(
        db,
        ticket=ticket,
        event_type=TicketEventType.ASSIGNED,
        actor_type=actor_type,
        actor_id=actor_id,
        old_value=previous,
        new_value=assignee_id,
    )
    return True


# =============================================================================
# Creation
# =============================================================================


def create_ticket(
    db: Session,
    *,
    organization_id: int,
    subject: str,
    channel: TicketChannel,
    status: TicketStatus = TicketStatus.NEW,
    priority: TicketPriority = TicketPriority.NORMAL,
    from_email: str | None = None,
    requester_id: int | None = None,
    assignee_id: int | None = None,
    actor_type: ActorType = ActorType.SYSTEM,
    actor_id: int | None = None,
    now: datetime | None = None,
) -> Ticket:
    """Insert a ticket and its CREATED event in the caller's transaction."""
    now = now or _now_utc()
    ticket = Ticket(
        organization_id=organization_id,
        requester_id=requester_id,
        assignee_id=assignee_id,
        subject=subject,
        subject_norm=normalize_subject(subject).lower(),
        from_email=normalize_email(from_email) or None,
        status=status,
        priority=priority,
        channel=channel,
        created_at=now,
        last_activity_at=now,
    )
    db.add(ticket)
    db.flush()
    append_event(
        db,
        ticket=ticket,
        event_type=TicketEventType.CREATED,
        actor_type=actor_type,
        actor_id=actor_id,
        new_value=ticket.status,
        event_data=snapshot(ticket),
    )
    return ticket


def create_api_ticket(
    db: Session,
    *,
    actor_id: int,
    organization_id: int,
    subject: str,
    requester_id: int | None = None,
    message: str | None = None,
    priority: TicketPriority = TicketPriority.NORMAL,
    assignee_id: int | None = None,
) -> Ticket:
    """Create a ticket on behalf of an agent; commits."""

    def _create(db: Session) -> Ticket:
        directory_service.get_organization(db, organization_id=organization_id)
        requester = None
        if requester_id is not None:
            requester = directory_service.get_requester(db, requester_id=requester_id)
            if requester.organization_id != organization_id:
                raise ValidationError(
                    "Requester does not belong to organization",
                    detail=[{"field": "requesterId", "message": "organization mismatch"}],
                )
        if assignee_id is not None:
            _ensure_agent(db, assignee_id)

        body = (message or "").strip()
        ticket = create_ticket(
            db,
            organization_id=organization_id,
            subject=subject,
            channel=TicketChannel.API,
            status=TicketStatus.OPEN if body else TicketStatus.NEW,
            priority=priority,
            from_email=requester.email if requester else None,
            requester_id=requester_id,
            assignee_id=assignee_id,
            actor_type=ActorType.AGENT,
            actor_id=actor_id,
        )
        if body:
            db.add(
                TicketMessage(
                    ticket_id=ticket.id,
                    direction=MessageDirection.INBOUND,
                    is_internal=False,
                    body_text=body,
                    from_email=ticket.from_email,
                )
            )
            append_event(
                db,
                ticket=ticket,
                event_type=TicketEventType.MESSAGE_SENT,
                actor_type=ActorType.REQUESTER,
                actor_id=requester_id,
            )
        return ticket

    ticket = run_in_transaction(db, _create)
    logger.info(
        "Created ticket via API",
        extra=build_log_context(
            ticket_id=ticket.id, organization_id=organization_id, actor_id=actor_id, channel="api"
        ),
    )
    return ticket


# =============================================================================
# Messages
# =============================================================================


@dataclass
class ReplyOutcome:
    ticket_id: int
    message_id: int
    is_internal: bool
    first_response: bool = False
    status_changed: bool = False
    auto_assigned: bool = False


def reply_to_ticket(
    db: Session,
    *,
    ticket_id: int,
    agent_id: int,
    message: str,
    is_internal: bool = False,
) -> ReplyOutcome:
    """Record an agent reply or internal note; commits.

    A public reply opens NEW/PENDING tickets, auto-assigns unowned tickets
    and stamps the first response once. Internal notes only add the message
    and its event.
    """
    body = (message or "").strip()
    if not body:
        raise ValidationError(
            "Message is required", detail=[{"field": "message", "message": "required"}]
        )

    def _reply(db: Session) -> ReplyOutcome:
        ticket = get_ticket(db, ticket_id=ticket_id, for_update=True)
        now = _now_utc()
        msg = TicketMessage(
            ticket_id=ticket.id,
            direction=MessageDirection.OUTBOUND,
            is_internal=is_internal,
            author_agent_id=agent_id,
            body_text=body,
            to_email=None if is_internal else ticket.from_email,
            created_at=now,
        )
        db.add(msg)
        db.flush()

        outcome = ReplyOutcome(ticket_id=ticket.id, message_id=msg.id, is_internal=is_internal)
        if not is_internal:
            if ticket.status in REPLY_OPENS_FROM:
                outcome.status_changed = _set_status(
                    db,
                    ticket,
                    TicketStatus.OPEN,
                    actor_type=ActorType.AGENT,
                    actor_id=agent_id,
                    now=now,
                )
            if ticket.assignee_id is None:
                outcome.auto_assigned = _set_assignee(
                    db, ticket, agent_id, actor_type=ActorType.AGENT, actor_id=agent_id
                )
            if ticket.first_response_at is None:
                ticket.first_response_at = now
                outcome.first_response = True
            ticket.last_activity_at = now

        append_event(
            db,
            ticket=ticket,
            event_type=TicketEventType.MESSAGE_SENT,
            actor_type=ActorType.AGENT,
            actor_id=agent_id,
            event_data={"message_id": msg.id, "is_internal": is_internal},
        )
        return outcome

    outcome = run_in_transaction(db, _reply)
    logger.info(
        "Agent reply recorded",
        extra=build_log_context(ticket_id=ticket_id, actor_id=agent_id),
    )
    return outcome


def record_inbound_message(
    db: Session,
    *,
    ticket: Ticket,
    message: TicketMessage,
    requester_id: int | None = None,
    now: datetime | None = None,
) -> bool:
    """Append an inbound message in the caller's transaction.

    Reopens RESOLVED/CLOSED tickets without clearing their last resolved or
    closed timestamps. Returns True when the ticket was reopened.
    """
    now = now or _now_utc()
    message.ticket_id = ticket.id
    message.direction = MessageDirection.INBOUND
    db.add(message)
    db.flush()

    reopened = False
    if ticket.status in REOPEN_FROM:
        reopened = _set_status(
            db,
            ticket,
            TicketStatus.OPEN,
            actor_type=ActorType.REQUESTER,
            actor_id=requester_id,
            now=now,
        )
    ticket.last_activity_at = now
    append_event(
        db,
        ticket=ticket,
        event_type=TicketEventType.MESSAGE_SENT,
        actor_type=ActorType.REQUESTER,
        actor_id=requester_id,
        event_data={"message_id": message.id},
    )
    return reopened


# =============================================================================
# Explicit updates
# =============================================================================


def update_ticket(
    db: Session,
    *,
    ticket_id: int,
    actor_id: int | None,
    status: TicketStatus | None = None,
    priority: TicketPriority | None = None,
    assignee_id: int | None = None,
    assignee_set: bool = False,
) -> dict:
    """Apply only the fields that differ, one event per change; commits.

    `assignee_set` distinguishes an explicit unassign (None) from omission.
    """
    actor_type = ActorType.AGENT if actor_id is not None else ActorType.SYSTEM

    def _update(db: Session) -> list[str]:
        ticket = get_ticket(db, ticket_id=ticket_id, for_update=True)
        now = _now_utc()
        changes: list[str] = []

        if status is not None and _set_status(
            db, ticket, status, actor_type=actor_type, actor_id=actor_id, now=now
        ):
            changes.append("status")

        if priority is not None and ticket.priority != priority:
            previous = ticket.priority
            ticket.priority = priority
            append_event(
                db,
                ticket=ticket,
                event_type=TicketEventType.PRIORITY_CHANGED,
                actor_type=actor_type,
                actor_id=actor_id,
                old_value=previous,
                new_value=priority,
            )
            changes.append("priority")

        if assignee_set and ticket.assignee_id != assignee_id:
            if assignee_id is not None:
                _ensure_agent(db, assignee_id)
            _set_assignee(db, ticket, assignee_id, actor_type=actor_type, actor_id=actor_id)
            changes.append("assignee_id")

        if changes:
            ticket.last_activity_at = now
        return changes

    changes = run_in_transaction(db, _update)
    if not changes:
        return {"ok": True, "message": NO_CHANGES, "changes": []}

    logger.info(
        "Ticket updated: %s",
        ",".join(changes),
        extra=build_log_context(ticket_id=ticket_id, actor_id=actor_id),
    )
    return {"ok": True, "message": "Ticket updated", "changes": changes}


# =============================================================================
# Reads
# =============================================================================


@dataclass
class TicketListPage:
    items: list[Ticket]
    total: int
    page: int
    page_size: int
    total_pages: int = 0


_PRIORITY_ORDER = case(
    *((Ticket.priority == priority, rank) for priority, rank in PRIORITY_RANK.items()),
    else_=0,
)


def _as_datetime(value: date | datetime, *, end_of_day: bool = False) -> datetime:
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if end_of_day:
        return datetime.combine(value + timedelta(days=1), time.min, tzinfo=timezone.utc)
    return datetime.combine(value, time.min, tzinfo=timezone.utc)


def list_tickets(
    db: Session,
    *,
    pagination: PaginationParams,
    status_filter: TicketStatus | None = None,
    assignee_id: int | None = None,
    organization_id: int | None = None,
    search: str | None = None,
    date_from: date | datetime | None = None,
    date_to: date | datetime | None = None,
) -> TicketListPage:
    """List tickets, most urgent then most recently active first."""
    query = db.query(Ticket)

    if status_filter:
        query = query.filter(Ticket.status == status_filter)
    if assignee_id:
        query = query.filter(Ticket.assignee_id == assignee_id)
    if organization_id:
        query = query.filter(Ticket.organization_id == organization_id)
    if search and search.strip():
        pattern = f"%{escape_like(search.strip())}%"
        query = query.filter(Ticket.subject.ilike(pattern, escape="\\"))
    if date_from:
        query = query.filter(Ticket.created_at >= _as_datetime(date_from))
    if date_to:
        upper = _as_datetime(date_to, end_of_day=not isinstance(date_to, datetime))
        if isinstance(date_to, datetime):
            query = query.filter(Ticket.created_at <= upper)
        else:
            query = query.filter(Ticket.created_at < upper)

    total = query.with_entities(func.count(Ticket.id)).scalar() or 0
    items = (
        query.order_by(_PRIORITY_ORDER.desc(), Ticket.last_activity_at.desc(), Ticket.id.desc())
        .offset(pagination.offset)
        .limit(pagination.page_size)
        .all()
    )
    return TicketListPage(
        items=items,
        total=total,
        page=pagination.page,
        page_size=pagination.page_size,
        total_pages=total_pages(total, pagination.page_size),
    )


@dataclass
class TicketDetail:
    ticket: Ticket
    messages: list[TicketMessage] = field(default_factory=list)
    events: list[TicketEvent] = field(default_factory=list)


def get_ticket_detail(db: Session, *, ticket_id: int) -> TicketDetail:
    """Return the ticket with ordered messages (and attachments) and its events."""
    ticket = get_ticket(db, ticket_id=ticket_id)
    messages = (
        db.query(TicketMessage)
        .options(selectinload(TicketMessage.attachments))
        .filter(TicketMessage.ticket_id == ticket.id)
        .order_by(TicketMessage.created_at.asc(), TicketMessage.id.asc())
        .all()
    )
    events = (
        db.query(TicketEvent)
        .filter(TicketEvent.ticket_id == ticket.id)
        .order_by(TicketEvent.created_at.asc(), TicketEvent.id.asc())
        .all()
    )
    return TicketDetail(ticket=ticket, messages=messages, events=events)
