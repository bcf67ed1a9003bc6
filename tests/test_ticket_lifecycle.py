"""Lifecycle transitions, timestamp side effects and the event log."""

from datetime import datetime, timedelta, timezone

import pytest

from helpdesk.core.errors import NotFoundError, ValidationError
from helpdesk.db.enums import (
    PRIORITY_RANK,
    ActorType,
    MessageDirection,
    TicketChannel,
    TicketEventType,
    TicketPriority,
    TicketStatus,
)
from helpdesk.db.models import Ticket, TicketEvent, TicketMessage
from helpdesk.services import ticket_service
from helpdesk.services.ticket_event_service import list_events, replay_events


def _email_ticket(db, org, *, status=TicketStatus.NEW, assignee_id=None) -> Ticket:
    ticket = ticket_service.create_ticket(
        db,
        organization_id=org.id,
        subject="Cannot print",
        channel=TicketChannel.EMAIL_IMAP,
        status=status,
        from_email="jane@acme.com",
        assignee_id=assignee_id,
        actor_type=ActorType.REQUESTER,
    )
    db.commit()
    return ticket


def _event_types(db, ticket_id):
    return [event.event_type for event in list_events(db, ticket_id=ticket_id)]


def _assert_replay_matches(db, ticket_id):
    db.expire_all()
    ticket = db.get(Ticket, ticket_id)
    state = replay_events(list_events(db, ticket_id=ticket_id))
    assert state.status == ticket.status
    assert state.priority == ticket.priority
    assert state.assignee_id == ticket.assignee_id


# =============================================================================
# Creation
# =============================================================================

def test_create_appends_created_event_with_snapshot(db, org):
    ticket = _email_ticket(db, org)
    events = list_events(db, ticket_id=ticket.id)

    assert len(events) == 1
    assert events[0].event_type == TicketEventType.CREATED
    assert events[0].event_data == {
        "status": "new",
        "priority": "normal",
        "assignee_id": None,
        "channel": "email_imap",
    }
    assert ticket.public_id is not None


def test_api_ticket_with_message_starts_open(db, org, agent):
    ticket = ticket_service.create_api_ticket(
        db, actor_id=agent.id, organization_id=org.id, subject="Set up account", message="Please help"
    )
    assert ticket.status == TicketStatus.OPEN
    assert _event_types(db, ticket.id) == [TicketEventType.CREATED, TicketEventType.MESSAGE_SENT]
    messages = db.query(TicketMessage).filter(TicketMessage.ticket_id == ticket.id).all()
    assert [m.direction for m in messages] == [MessageDirection.INBOUND]


def test_api_ticket_without_message_starts_new(db, org, agent):
    ticket = ticket_service.create_api_ticket(
        db, actor_id=agent.id, organization_id=org.id, subject="Set up account"
    )
    assert ticket.status == TicketStatus.NEW
    assert ticket.channel == TicketChannel.API


def test_api_ticket_unknown_organization(db, agent):
    with pytest.raises(NotFoundError):
        ticket_service.create_api_ticket(db, actor_id=agent.id, organization_id=999, subject="x")


def test_api_ticket_unknown_requester(db, org, agent):
    with pytest.raises(NotFoundError):
        ticket_service.create_api_ticket(
            db, actor_id=agent.id, organization_id=org.id, subject="x", requester_id=12345
        )


# =============================================================================
# Agent replies
# =============================================================================

def test_first_reply_opens_assigns_and_stamps_first_response(db, org, agent):
    ticket = _email_ticket(db, org)

    outcome = ticket_service.reply_to_ticket(db, ticket_id=ticket.id, agent_id=agent.id, message="On it")

    db.refresh(ticket)
    assert outcome.first_response is True
    assert ticket.status == TicketStatus.OPEN
    assert ticket.assignee_id == agent.id
    assert ticket.first_response_at is not None
    assert _event_types(db, ticket.id) == [
        TicketEventType.CREATED,
        TicketEventType.STATUS_CHANGED,
        TicketEventType.ASSIGNED,
        TicketEventType.MESSAGE_SENT,
    ]
    _assert_replay_matches(db, ticket.id)


def test_first_response_is_set_only_once(db, org, agent, other_agent):
    ticket = _email_ticket(db, org)
    ticket_service.reply_to_ticket(db, ticket_id=ticket.id, agent_id=agent.id, message="First")
    db.refresh(ticket)
    first = ticket.first_response_at

    ticket_service.update_ticket(db, ticket_id=ticket.id, actor_id=agent.id, status=TicketStatus.CLOSED)
    ticket_service.update_ticket(db, ticket_id=ticket.id, actor_id=agent.id, status=TicketStatus.PENDING)
    outcome = ticket_service.reply_to_ticket(db, ticket_id=ticket.id, agent_id=other_agent.id, message="Second")

    db.refresh(ticket)
    assert outcome.first_response is False
    assert ticket.first_response_at == first
    assert ticket.assignee_id == agent.id
    assert ticket.status == TicketStatus.OPEN


def test_internal_note_touches_nothing_but_message_and_event(db, org, agent):
    ticket = _email_ticket(db, org)

    ticket_service.reply_to_ticket(
        db, ticket_id=ticket.id, agent_id=agent.id, message="Checking logs", is_internal=True
    )

    db.refresh(ticket)
    assert ticket.status == TicketStatus.NEW
    assert ticket.first_response_at is None
    assert ticket.assignee_id is None
    assert _event_types(db, ticket.id) == [TicketEventType.CREATED, TicketEventType.MESSAGE_SENT]
    note = db.query(TicketMessage).filter(TicketMessage.ticket_id == ticket.id).one()
    assert note.is_internal is True


def test_reply_to_resolved_ticket_keeps_status(db, org, agent):
    ticket = _email_ticket(db, org, status=TicketStatus.RESOLVED)
    ticket_service.reply_to_ticket(db, ticket_id=ticket.id, agent_id=agent.id, message="FYI")
    db.refresh(ticket)
    assert ticket.status == TicketStatus.RESOLVED


def test_reply_unknown_ticket(db, agent):
    with pytest.raises(NotFoundError):
        ticket_service.reply_to_ticket(db, ticket_id=424242, agent_id=agent.id, message="hi")


def test_reply_requires_message(db, org, agent):
    ticket = _email_ticket(db, org)
    with pytest.raises(ValidationError):
        ticket_service.reply_to_ticket(db, ticket_id=ticket.id, agent_id=agent.id, message="   ")


# =============================================================================
# Explicit updates
# =============================================================================

def test_noop_update_writes_no_events(db, org, agent):
    ticket = _email_ticket(db, org, status=TicketStatus.OPEN)
    before = db.query(TicketEvent).count()

    result = ticket_service.update_ticket(
        db,
        ticket_id=ticket.id,
        actor_id=agent.id,
        status=TicketStatus.OPEN,
        priority=TicketPriority.NORMAL,
    )

    assert result == {"ok": True, "message": "No changes", "changes": []}
    assert db.query(TicketEvent).count() == before


def test_update_writes_one_event_per_changed_field(db, org, agent):
    ticket = _email_ticket(db, org)

    result = ticket_service.update_ticket(
        db,
        ticket_id=ticket.id,
        actor_id=agent.id,
        status=TicketStatus.PENDING,
        priority=TicketPriority.URGENT,
        assignee_id=agent.id,
        assignee_set=True,
    )

    assert result["changes"] == ["status", "priority", "assignee_id"]
    events = list_events(db, ticket_id=ticket.id)[1:]
    assert [(e.event_type, e.old_value, e.new_value) for e in events] == [
        (TicketEventType.STATUS_CHANGED, "new", "pending"),
        (TicketEventType.PRIORITY_CHANGED, "normal", "urgent"),
        (TicketEventType.ASSIGNED, None, str(agent.id)),
    ]
    assert all(e.actor_type == ActorType.AGENT and e.actor_id == agent.id for e in events)
    _assert_replay_matches(db, ticket.id)


def test_resolve_and_close_stamp_timestamps(db, org, agent):
    ticket = _email_ticket(db, org, status=TicketStatus.OPEN)

    ticket_service.update_ticket(db, ticket_id=ticket.id, actor_id=agent.id, status=TicketStatus.RESOLVED)
    db.refresh(ticket)
    assert ticket.last_resolved_at is not None
    assert ticket.last_closed_at is None

    ticket_service.update_ticket(db, ticket_id=ticket.id, actor_id=agent.id, status=TicketStatus.CLOSED)
    db.refresh(ticket)
    assert ticket.last_closed_at is not None


def test_unassign_is_explicit(db, org, agent):
    ticket = _email_ticket(db, org, assignee_id=agent.id)

    omitted = ticket_service.update_ticket(db, ticket_id=ticket.id, actor_id=agent.id)
    assert omitted["message"] == "No changes"

    ticket_service.update_ticket(
        db, ticket_id=ticket.id, actor_id=agent.id, assignee_id=None, assignee_set=True
    )
    db.refresh(ticket)
    assert ticket.assignee_id is None
    _assert_replay_matches(db, ticket.id)


def test_update_to_unknown_agent(db, org, agent):
    ticket = _email_ticket(db, org)
    with pytest.raises(NotFoundError):
        ticket_service.update_ticket(
            db, ticket_id=ticket.id, actor_id=agent.id, assignee_id=9999, assignee_set=True
        )
    assert _event_types(db, ticket.id) == [TicketEventType.CREATED]


def test_update_unknown_ticket(db, agent):
    with pytest.raises(NotFoundError):
        ticket_service.update_ticket(db, ticket_id=31337, actor_id=agent.id, status=TicketStatus.OPEN)


# =============================================================================
# Inbound on existing tickets
# =============================================================================

def test_inbound_reopens_closed_ticket_and_keeps_history(db, org, agent):
    ticket = _email_ticket(db, org, status=TicketStatus.OPEN)
    ticket_service.update_ticket(db, ticket_id=ticket.id, actor_id=agent.id, status=TicketStatus.RESOLVED)
    ticket_service.update_ticket(db, ticket_id=ticket.id, actor_id=agent.id, status=TicketStatus.CLOSED)
    db.refresh(ticket)
    resolved_at = ticket.last_resolved_at
    closed_at = ticket.last_closed_at
    activity_before = ticket.last_activity_at

    later = activity_before + timedelta(minutes=5)
    reopened = ticket_service.record_inbound_message(
        db,
        ticket=ticket,
        message=TicketMessage(body_text="It broke again", from_email="jane@acme.com"),
        now=later,
    )
    db.commit()
    db.refresh(ticket)

    assert reopened is True
    assert ticket.status == TicketStatus.OPEN
    assert ticket.last_activity_at == later
    assert ticket.last_resolved_at == resolved_at
    assert ticket.last_closed_at == closed_at

    status_events = [
        e for e in list_events(db, ticket_id=ticket.id) if e.event_type == TicketEventType.STATUS_CHANGED
    ]
    assert status_events[-1].actor_type == ActorType.REQUESTER
    assert (status_events[-1].old_value, status_events[-1].new_value) == ("closed", "open")
    _assert_replay_matches(db, ticket.id)


def test_inbound_on_open_ticket_does_not_change_status(db, org):
    ticket = _email_ticket(db, org, status=TicketStatus.PENDING)
    reopened = ticket_service.record_inbound_message(
        db, ticket=ticket, message=TicketMessage(body_text="more info")
    )
    db.commit()
    assert reopened is False
    assert ticket.status == TicketStatus.PENDING


# =============================================================================
# Reads
# =============================================================================

def test_list_orders_by_priority_then_activity(db, org):
    base = datetime(2026, 1, 5, 9, 0, tzinfo=timezone.utc)
    low = ticket_service.create_ticket(
        db, organization_id=org.id, subject="low", channel=TicketChannel.API,
        priority=TicketPriority.LOW, now=base + timedelta(hours=3),
    )
    urgent = ticket_service.create_ticket(
        db, organization_id=org.id, subject="urgent", channel=TicketChannel.API,
        priority=TicketPriority.URGENT, now=base,
    )
    normal_old = ticket_service.create_ticket(
        db, organization_id=org.id, subject="normal old", channel=TicketChannel.API, now=base,
    )
    normal_new = ticket_service.create_ticket(
        db, organization_id=org.id, subject="normal new", channel=TicketChannel.API,
        now=base + timedelta(hours=1),
    )
    db.commit()

    from helpdesk.utils.pagination import PaginationParams

    page = ticket_service.list_tickets(db, pagination=PaginationParams(page=1, page_size=10))
    assert [t.id for t in page.items] == [urgent.id, normal_new.id, normal_old.id, low.id]
    assert page.total == 4
    assert page.total_pages == 1


def test_list_ranks_every_priority(db, org):
    now = datetime(2026, 1, 5, 9, 0, tzinfo=timezone.utc)
    for priority in (TicketPriority.NORMAL, TicketPriority.URGENT, TicketPriority.LOW, TicketPriority.HIGH):
        ticket_service.create_ticket(
            db, organization_id=org.id, subject=priority.value, channel=TicketChannel.API,
            priority=priority, now=now,
        )
    db.commit()

    from helpdesk.utils.pagination import PaginationParams

    page = ticket_service.list_tickets(db, pagination=PaginationParams(page=1, page_size=10))
    ranks = [PRIORITY_RANK[TicketPriority(t.priority)] for t in page.items]
    assert ranks == [3, 2, 1, 0]
