"""Inbound webhook endpoints (shared-secret authenticated)."""

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from helpdesk.core.config import settings
from helpdesk.core.deps import get_db, verify_webhook_secret
from helpdesk.core.rate_limit import limiter
from helpdesk.schemas.ticketing import InboundWebhookPayload, TicketCreatedResponse
from helpdesk.services import inbound_service

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post(
    "/inbound-email",
    response_model=TicketCreatedResponse,
    dependencies=[Depends(verify_webhook_secret)],
)
@limiter.limit(settings.RATE_LIMIT_WEBHOOK)
def inbound_email(
    request: Request,
    body: InboundWebhookPayload,
    db: Session = Depends(get_db),
) -> TicketCreatedResponse:
    """Turn `{from, subject, text}` into a new or continued ticket."""
    result = inbound_service.ingest_webhook(
        db, sender=body.sender, subject=body.subject, text=body.text
    )
    return TicketCreatedResponse(ticket_id=result.ticket_id)
