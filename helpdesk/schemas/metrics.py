"""Pydantic schemas for derived SLA, queue and KPI reads."""

from pydantic import BaseModel


class SlaClockStats(BaseModel):
    target_minutes: int
    total: int
    ok: int
    breached: int
    compliance: float


class SlaReport(BaseModel):
    first_response: SlaClockStats
    resolution: SlaClockStats


class QueueCounts(BaseModel):
    unassigned: int
    new: int
    open: int
    my_tickets: int
    waiting_customer: int
    sla_breached: int


class TicketKpis(BaseModel):
    total: int
    by_status: dict[str, int]
    avg_first_response_minutes: float | None = None
    avg_resolution_minutes: float | None = None
    first_response_samples: int
    resolution_samples: int


class AgentKpis(BaseModel):
    agent_id: int
    agent_name: str
    assigned: int
    open: int
    resolved: int
    avg_first_response_minutes: float | None = None
    avg_resolution_minutes: float | None = None


class DashboardCounts(BaseModel):
    new: int
    open: int
    pending: int
    assigned_to_me: int


class PollResult(BaseModel):
    channel: str
    fetched: int = 0
    created: int = 0
    appended: int = 0
    duplicates: int = 0
    skipped: int = 0
    failed: int = 0
