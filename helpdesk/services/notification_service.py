"""Best-effort email notification to the requester after an agent reply.

Runs after the reply transaction has committed. Failures are logged and
swallowed; they never affect the stored reply.
"""

from __future__ import annotations

import logging
from typing import Callable

import anyio
import httpx
from sqlalchemy import select
from sqlalchemy.orm import Session

from helpdesk.core.config import settings
from helpdesk.core.structured_logging import build_log_context, mask_email
from helpdesk.db.enums import MessageDirection
from helpdesk.db.models import Ticket, TicketMessage
from helpdesk.db.session import SessionLocal
from helpdesk.services.http_service import DEFAULT_RETRY_STATUSES, request_with_retries

logger = logging.getLogger(__name__)

NOTIFY_MAX_ATTEMPTS = 3
NOTIFY_RETRY_BASE_DELAY = 0.5
NOTIFY_RETRY_MAX_DELAY = 4.0
NOTIFY_TIMEOUT_SECONDS = 20.0


def build_subject(ticket: Ticket) -> str:
    return f"Re: Ticket #{ticket.id} - {ticket.subject}"


def build_message_id(ticket_id: int, message_id: int) -> str:
    return f"<ticket-{ticket_id}-{message_id}@{settings.NOTIFY_MESSAGE_ID_DOMAIN}>"


def _latest_inbound(db: Session, ticket_id: int) -> TicketMessage | None:
    return db.scalars(
        select(TicketMessage)
        .where(
            TicketMessage.ticket_id == ticket_id,
            TicketMessage.direction == MessageDirection.INBOUND,
        )
        .order_by(TicketMessage.created_at.desc(), TicketMessage.id.desc())
    ).first()


def _thread_headers(inbound: TicketMessage | None) -> dict[str, str]:
    """In-Reply-To/References pointing at the customer's last RFC message id."""
    if not inbound:
        return {}
    parent = inbound.provider_message_id
    if not parent or not parent.startswith("<"):
        return {}
    references = [inbound.thread_key] if inbound.thread_key and inbound.thread_key != parent else []
    references.append(parent)
    return {"In-Reply-To": parent, "References": " ".join(references)}


def prepare_notification(db: Session, *, ticket_id: int, message_id: int) -> dict | None:
    """Stamp the outbound Message-ID on the reply and build the send payload."""
    ticket = db.get(Ticket, ticket_id)
    message = db.get(TicketMessage, message_id)
    if not ticket or not message or message.is_internal:
        return None
    if not ticket.from_email:
        logger.info(
            "Ticket has no requester address, skipping notification",
            extra=build_log_context(ticket_id=ticket_id),
        )
        return None

    inbound = _latest_inbound(db, ticket_id)
    outbound_id = build_message_id(ticket.id, message.id)
    message.provider_message_id = outbound_id
    message.thread_key = inbound.thread_key if inbound and inbound.thread_key else outbound_id
    message.from_email = settings.SUPPORT_MAILBOX or None
    db.commit()

    sender = settings.SUPPORT_MAILBOX
    from_address = f"{settings.NOTIFY_FROM_NAME} <{sender}>" if settings.NOTIFY_FROM_NAME else sender
    headers = {"Message-ID": outbound_id}
    headers.update(_thread_headers(inbound))
    return {
        "from": from_address,
        "to": [ticket.from_email],
        "subject": build_subject(ticket),
        "text": message.body_text or "",
        "headers": headers,
    }


async def send_notification(payload: dict) -> tuple[bool, str | None]:
    """POST the payload to the transactional email API."""
    request_headers = {
        "Authorization": f"Bearer {settings.NOTIFY_API_KEY}",
        "Content-Type": "application/json",
    }
    async with httpx.AsyncClient(timeout=NOTIFY_TIMEOUT_SECONDS) as client:

        async def request_fn() -> httpx.Response:
            return await client.post(settings.NOTIFY_API_URL, headers=request_headers, json=payload)

        response = await request_with_retries(
            request_fn,
            max_attempts=NOTIFY_MAX_ATTEMPTS,
            base_delay=NOTIFY_RETRY_BASE_DELAY,
            max_delay=NOTIFY_RETRY_MAX_DELAY,
            retry_statuses=DEFAULT_RETRY_STATUSES,
        )

    if 200 <= response.status_code < 300:
        return True, None
    return False, f"Email API error: {response.status_code}"


def _load_notification(
    session_factory: Callable[[], Session], ticket_id: int, message_id: int
) -> dict | None:
    db = session_factory()
    try:
        return prepare_notification(db, ticket_id=ticket_id, message_id=message_id)
    finally:
        db.close()


async def notify_agent_reply(
    ticket_id: int,
    message_id: int,
    *,
    session_factory: Callable[[], Session] = SessionLocal,
) -> bool:
    """Send the reply notification; never raises."""
    if not settings.NOTIFY_ENABLED:
        logger.debug("Notifications disabled", extra=build_log_context(ticket_id=ticket_id))
        return False

    try:
        payload = await anyio.to_thread.run_sync(
            _load_notification, session_factory, ticket_id, message_id
        )
        if payload is None:
            return False

        ok, error = await send_notification(payload)
        if not ok:
            logger.warning(
                "Reply notification to %s failed: %s",
                mask_email(payload["to"][0]),
                error,
                extra=build_log_context(ticket_id=ticket_id),
            )
        return ok
    except Exception:
        logger.exception(
            "Reply notification failed", extra=build_log_context(ticket_id=ticket_id)
        )
        return False
