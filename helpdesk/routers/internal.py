"""
Internal endpoints for scheduled/cron operations.

Protected by X-Internal-Secret header.
"""

import anyio
from fastapi import APIRouter, Depends, Query

from helpdesk.core.deps import verify_internal_secret
from helpdesk.core.errors import ConflictError
from helpdesk.schemas.metrics import PollResult
from helpdesk.services import mail_poll_service

router = APIRouter(
    prefix="/internal/scheduled",
    tags=["internal"],
    dependencies=[Depends(verify_internal_secret)],
)


@router.post("/mail-poll", response_model=PollResult)
async def trigger_mail_poll(channel: str = Query(...)) -> PollResult:
    """Run one mail poll tick now, unless one is already running."""
    parsed = mail_poll_service.parse_channel(channel)
    counts = await anyio.to_thread.run_sync(mail_poll_service.run_poll_tick, parsed)
    if counts is None:
        raise ConflictError("A poll for this channel is already running")
    return PollResult(channel=parsed.value, **counts)
