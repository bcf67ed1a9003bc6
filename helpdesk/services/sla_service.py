"""Derived SLA compliance, queue counts and KPIs.

Everything here is recomputed from committed rows on every call; there is
no stored SLA state and no cache.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Iterable

from sqlalchemy import exists, func, select
from sqlalchemy.orm import Session

from helpdesk.core.config import settings
from helpdesk.db.enums import MessageDirection, TicketStatus
from helpdesk.db.models import Agent, Ticket, TicketMessage


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class SlaTargets:
    first_response_minutes: int
    resolution_minutes: int

    @classmethod
    def from_settings(cls) -> "SlaTargets":
        return cls(
            first_response_minutes=settings.SLA_FIRST_RESPONSE_MINUTES,
            resolution_minutes=settings.SLA_RESOLUTION_MINUTES,
        )


# =============================================================================
# Classification
# =============================================================================

SLA_OK = "ok"
SLA_BREACHED = "breached"
SLA_PENDING = "pending"


def classify_first_response(
    created_at: datetime,
    first_response_at: datetime | None,
    *,
    target_minutes: int,
    now: datetime,
) -> str:
    """`ok`, `breached`, or `pending` (unanswered but still inside the target)."""
    target = timedelta(minutes=target_minutes)
    if first_response_at is not None:
        return SLA_OK if first_response_at - created_at <= target else SLA_BREACHED
    return SLA_BREACHED if now - created_at > target else SLA_PENDING


def classify_resolution(
    created_at: datetime, resolved_at: datetime | None, *, target_minutes: int
) -> str | None:
    """None when the ticket has never been resolved (excluded from stats)."""
    if resolved_at is None:
        return None
    return SLA_OK if resolved_at - created_at <= timedelta(minutes=target_minutes) else SLA_BREACHED


def _clock_stats(labels: Iterable[str | None], target_minutes: int) -> dict:
    ok = breached = 0
    for label in labels:
        if label == SLA_OK:
            ok += 1
        elif label == SLA_BREACHED:
            breached += 1
    total = ok + breached
    compliance = round(ok * 100.0 / total, 2) if total else 100.0
    return {
        "target_minutes": target_minutes,
        "total": total,
        "ok": ok,
        "breached": breached,
        "compliance": compliance,
    }


def get_sla_report(
    db: Session,
    *,
    organization_id: int | None = None,
    targets: SlaTargets | None = None,
    now: datetime | None = None,
) -> dict:
    """Compliance for the first-response and resolution clocks."""
    targets = targets or SlaTargets.from_settings()
    now = now or _now_utc()

    query = select(Ticket.created_at, Ticket.first_response_at, Ticket.last_resolved_at)
    if organization_id:
        query = query.where(Ticket.organization_id == organization_id)
    rows = db.execute(query).all()

    first_response = _clock_stats(
        (
            classify_first_response(
                created_at,
                first_response_at,
                target_minutes=targets.first_response_minutes,
                now=now,
            )
            for created_at, first_response_at, _ in rows
        ),
        targets.first_response_minutes,
    )
    resolution = _clock_stats(
        (
            classify_resolution(created_at, resolved_at, target_minutes=targets.resolution_minutes)
            for created_at, _, resolved_at in rows
        ),
        targets.resolution_minutes,
    )
    return {"first_response": first_response, "resolution": resolution}


# =============================================================================
# Queues
# =============================================================================


def _count(db: Session, *criteria) -> int:
    return db.scalar(select(func.count(Ticket.id)).where(*criteria)) or 0


def get_queue_counts(
    db: Session,
    *,
    agent_id: int | None,
    targets: SlaTargets | None = None,
    now: datetime | None = None,
) -> dict:
    targets = targets or SlaTargets.from_settings()
    now = now or _now_utc()
    active = Ticket.status.not_in([TicketStatus.RESOLVED, TicketStatus.CLOSED])
    breach_cutoff = now - timedelta(minutes=targets.first_response_minutes)

    has_outbound = exists().where(
        TicketMessage.ticket_id == Ticket.id,
        TicketMessage.direction == MessageDirection.OUTBOUND,
        TicketMessage.is_internal.is_(False),
    )

    return {
        "unassigned": _count(db, active, Ticket.assignee_id.is_(None)),
        "new": _count(db, Ticket.status == TicketStatus.NEW),
        "open": _count(db, Ticket.status == TicketStatus.OPEN),
        "my_tickets": _count(db, active, Ticket.assignee_id == agent_id) if agent_id else 0,
        # TODO: product to confirm whether this should require the latest
        # message to be outbound rather than any outbound message.
        "waiting_customer": _count(db, Ticket.status == TicketStatus.OPEN, has_outbound),
        "sla_breached": _count(
            db,
            active,
            Ticket.first_response_at.is_(None),
            Ticket.created_at < breach_cutoff,
        ),
    }


def get_dashboard_counts(db: Session, *, agent_id: int | None) -> dict:
    active = Ticket.status.not_in([TicketStatus.RESOLVED, TicketStatus.CLOSED])
    return {
        "new": _count(db, Ticket.status == TicketStatus.NEW),
        "open": _count(db, Ticket.status == TicketStatus.OPEN),
        "pending": _count(db, Ticket.status == TicketStatus.PENDING),
        "assigned_to_me": _count(db, active, Ticket.assignee_id == agent_id) if agent_id else 0,
    }


# =============================================================================
# KPIs
# =============================================================================


def _avg_minutes(deltas: list[timedelta]) -> float | None:
    if not deltas:
        return None
    return round(sum(d.total_seconds() for d in deltas) / 60.0 / len(deltas), 2)


def get_ticket_kpis(db: Session, *, organization_id: int | None = None) -> dict:
    query = select(
        Ticket.status, Ticket.created_at, Ticket.first_response_at, Ticket.last_resolved_at
    )
    if organization_id:
        query = query.where(Ticket.organization_id == organization_id)
    rows = db.execute(query).all()

    by_status = {status.value: 0 for status in TicketStatus}
    first_response: list[timedelta] = []
    resolution: list[timedelta] = []
    for status, created_at, first_response_at, resolved_at in rows:
        by_status[TicketStatus(status).value] += 1
        if first_response_at is not None:
            first_response.append(first_response_at - created_at)
        if resolved_at is not None:
            resolution.append(resolved_at - created_at)

    return {
        "total": len(rows),
        "by_status": by_status,
        "avg_first_response_minutes": _avg_minutes(first_response),
        "avg_resolution_minutes": _avg_minutes(resolution),
        "first_response_samples": len(first_response),
        "resolution_samples": len(resolution),
    }


def get_agent_kpis(db: Session) -> list[dict]:
    agents = db.scalars(select(Agent).order_by(Agent.name, Agent.id)).all()
    rows = db.execute(
        select(
            Ticket.assignee_id,
            Ticket.status,
            Ticket.created_at,
            Ticket.first_response_at,
            Ticket.last_resolved_at,
        ).where(Ticket.assignee_id.is_not(None))
    ).all()

    per_agent: dict[int, list] = {}
    for row in rows:
        per_agent.setdefault(row.assignee_id, []).append(row)

    results = []
    for agent in agents:
        tickets = per_agent.get(agent.id, [])
        first_response = [
            r.first_response_at - r.created_at for r in tickets if r.first_response_at is not None
        ]
        resolution = [
            r.last_resolved_at - r.created_at for r in tickets if r.last_resolved_at is not None
        ]
        results.append(
            {
                "agent_id": agent.id,
                "agent_name": agent.name,
                "assigned": len(tickets),
                "open": sum(
                    1
                    for r in tickets
                    if TicketStatus(r.status) in {TicketStatus.NEW, TicketStatus.OPEN, TicketStatus.PENDING}
                ),
                "resolved": sum(
                    1
                    for r in tickets
                    if TicketStatus(r.status) in {TicketStatus.RESOLVED, TicketStatus.CLOSED}
                ),
                "avg_first_response_minutes": _avg_minutes(first_response),
                "avg_resolution_minutes": _avg_minutes(resolution),
            }
        )
    return results
