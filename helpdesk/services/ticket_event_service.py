"""Append-only ticket event log and replay."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable

from sqlalchemy import select
from sqlalchemy.orm import Session

from helpdesk.db.enums import ActorType, TicketEventType, TicketPriority, TicketStatus
from helpdesk.db.models import Ticket, TicketEvent


def _value(value: Any) -> str | None:
    if value is None:
        return None
    if hasattr(value, "value"):
        return str(value.value)
    return str(value)


def append_event(
    db: Session,
    *,
    ticket: Ticket,
    event_type: TicketEventType,
    actor_type: ActorType,
    actor_id: int | None = None,
    old_value: Any = None,
    new_value: Any = None,
    event_data: dict | None = None,
) -> TicketEvent:
    """Add an event in the caller's transaction. Events are never updated."""
    event = TicketEvent(
        ticket_id=ticket.id,
        event_type=event_type,
        actor_type=actor_type,
        actor_id=actor_id,
        old_value=_value(old_value),
        new_value=_value(new_value),
        event_data=event_data or {},
    )
    db.add(event)
    return event


def snapshot(ticket: Ticket) -> dict[str, Any]:
    return {
        "status": _value(ticket.status),
        "priority": _value(ticket.priority),
        "assignee_id": ticket.assignee_id,
        "channel": _value(ticket.channel),
    }


def list_events(db: Session, *, ticket_id: int) -> list[TicketEvent]:
    return list(
        db.scalars(
            select(TicketEvent)
            .where(TicketEvent.ticket_id == ticket_id)
            .order_by(TicketEvent.created_at, TicketEvent.id)
        ).all()
    )


@dataclass
class ReplayedState:
    status: TicketStatus | None = None
    priority: TicketPriority | None = None
    assignee_id: int | None = None


def replay_events(events: Iterable[TicketEvent]) -> ReplayedState:
    """Rebuild status, priority and assignee from an ordered event stream."""
    state = ReplayedState()
    for event in events:
        if event.event_type == TicketEventType.CREATED:
            data = event.event_data or {}
            state.status = TicketStatus(data["status"]) if data.get("status") else None
            state.priority = TicketPriority(data["priority"]) if data.get("priority") else None
            state.assignee_id = data.get("assignee_id")
        elif event.event_type == TicketEventType.STATUS_CHANGED:
            state.status = TicketStatus(event.new_value)
        elif event.event_type == TicketEventType.PRIORITY_CHANGED:
            state.priority = TicketPriority(event.new_value)
        elif event.event_type == TicketEventType.ASSIGNED:
            state.assignee_id = int(event.new_value) if event.new_value else None
    return state
