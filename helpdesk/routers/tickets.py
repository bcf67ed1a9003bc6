"""Ticket list/detail/create/update/reply and derived metrics APIs."""

from __future__ import annotations

from datetime import date

from fastapi import APIRouter, BackgroundTasks, Depends, Query, status
from sqlalchemy.orm import Session

from helpdesk.core.deps import get_current_session, get_db
from helpdesk.core.security import ActorSession
from helpdesk.db.enums import TicketStatus
from helpdesk.schemas.metrics import AgentKpis, DashboardCounts, QueueCounts, SlaReport, TicketKpis
from helpdesk.schemas.ticketing import (
    AckResponse,
    TicketCreate,
    TicketCreatedResponse,
    TicketDetailResponse,
    TicketEventRead,
    TicketListItem,
    TicketListResponse,
    TicketMessageRead,
    TicketPatchRequest,
    TicketReplyCreate,
)
from helpdesk.services import notification_service, sla_service, ticket_service
from helpdesk.utils.pagination import PaginationParams, get_pagination

router = APIRouter(prefix="/tickets", tags=["Tickets"])


# =============================================================================
# Derived reads (declared before /{ticket_id})
# =============================================================================


@router.get("/sla", response_model=SlaReport)
def get_sla(
    organization_id: int | None = None,
    db: Session = Depends(get_db),
    session: ActorSession = Depends(get_current_session),
):
    return sla_service.get_sla_report(db, organization_id=organization_id)


@router.get("/queues", response_model=QueueCounts)
def get_queues(
    db: Session = Depends(get_db),
    session: ActorSession = Depends(get_current_session),
):
    return sla_service.get_queue_counts(db, agent_id=session.agent_id)


@router.get("/kpis", response_model=TicketKpis)
def get_kpis(
    organization_id: int | None = None,
    db: Session = Depends(get_db),
    session: ActorSession = Depends(get_current_session),
):
    return sla_service.get_ticket_kpis(db, organization_id=organization_id)


@router.get("/kpis/agents", response_model=list[AgentKpis])
def get_agent_kpis(
    db: Session = Depends(get_db),
    session: ActorSession = Depends(get_current_session),
):
    return sla_service.get_agent_kpis(db)


@router.get("/dashboard", response_model=DashboardCounts)
def get_dashboard(
    db: Session = Depends(get_db),
    session: ActorSession = Depends(get_current_session),
):
    return sla_service.get_dashboard_counts(db, agent_id=session.agent_id)


# =============================================================================
# Tickets
# =============================================================================


@router.get("", response_model=TicketListResponse)
def list_tickets(
    status_filter: TicketStatus | None = Query(default=None, alias="status"),
    assignee_id: int | None = None,
    organization_id: int | None = None,
    search: str | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
    pagination: PaginationParams = Depends(get_pagination),
    db: Session = Depends(get_db),
    session: ActorSession = Depends(get_current_session),
) -> TicketListResponse:
    """List tickets with filters, most urgent first."""
    page = ticket_service.list_tickets(
        db,
        pagination=pagination,
        status_filter=status_filter,
        assignee_id=assignee_id,
        organization_id=organization_id,
        search=search,
        date_from=date_from,
        date_to=date_to,
    )
    return TicketListResponse(
        items=[TicketListItem.model_validate(ticket) for ticket in page.items],
        total=page.total,
        page=page.page,
        page_size=page.page_size,
        total_pages=page.total_pages,
    )


@router.post("", response_model=TicketCreatedResponse, status_code=status.HTTP_201_CREATED)
def create_ticket(
    body: TicketCreate,
    db: Session = Depends(get_db),
    session: ActorSession = Depends(get_current_session),
) -> TicketCreatedResponse:
    ticket = ticket_service.create_api_ticket(
        db,
        actor_id=session.agent_id,
        organization_id=body.organization_id,
        requester_id=body.requester_id,
        subject=body.subject,
        message=body.message,
        priority=body.priority,
        assignee_id=body.assignee_id,
    )
    return TicketCreatedResponse(ticket_id=ticket.id)


@router.get("/{ticket_id}", response_model=TicketDetailResponse)
def get_ticket_detail(
    ticket_id: int,
    db: Session = Depends(get_db),
    session: ActorSession = Depends(get_current_session),
) -> TicketDetailResponse:
    detail = ticket_service.get_ticket_detail(db, ticket_id=ticket_id)
    return TicketDetailResponse(
        ticket=TicketListItem.model_validate(detail.ticket),
        messages=[TicketMessageRead.model_validate(m) for m in detail.messages],
        events=[TicketEventRead.model_validate(e) for e in detail.events],
    )


@router.patch("/{ticket_id}", response_model=AckResponse)
def patch_ticket(
    ticket_id: int,
    body: TicketPatchRequest,
    db: Session = Depends(get_db),
    session: ActorSession = Depends(get_current_session),
) -> AckResponse:
    result = ticket_service.update_ticket(
        db,
        ticket_id=ticket_id,
        actor_id=session.agent_id,
        status=body.status,
        priority=body.priority,
        assignee_id=body.assignee_id,
        assignee_set="assignee_id" in body.model_fields_set,
    )
    return AckResponse(**result)


@router.post("/{ticket_id}/reply", response_model=AckResponse)
def reply_to_ticket(
    ticket_id: int,
    body: TicketReplyCreate,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    session: ActorSession = Depends(get_current_session),
) -> AckResponse:
    """Post an agent reply; the requester email goes out after commit."""
    outcome = ticket_service.reply_to_ticket(
        db,
        ticket_id=ticket_id,
        agent_id=session.agent_id,
        message=body.message,
        is_internal=body.is_internal,
    )
    if not outcome.is_internal:
        background_tasks.add_task(
            notification_service.notify_agent_reply, outcome.ticket_id, outcome.message_id
        )
    return AckResponse(message="Reply recorded")
