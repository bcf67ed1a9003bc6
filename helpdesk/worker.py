"""Background worker: one independent polling loop per enabled mail channel.

Run with: python -m helpdesk.worker
"""

from __future__ import annotations

import logging

import anyio

from helpdesk.core.config import settings
from helpdesk.core.errors import ExternalProviderError
from helpdesk.core.structured_logging import configure_logging
from helpdesk.db.enums import TicketChannel
from helpdesk.services import mail_poll_service

logger = logging.getLogger(__name__)


def enabled_channels() -> list[tuple[TicketChannel, int]]:
    channels = []
    if settings.GRAPH_ENABLED:
        channels.append((TicketChannel.EMAIL_GRAPH, settings.GRAPH_POLL_INTERVAL_SECONDS))
    if settings.IMAP_ENABLED:
        channels.append((TicketChannel.EMAIL_IMAP, settings.IMAP_POLL_INTERVAL_SECONDS))
    return channels


async def poll_loop(channel: TicketChannel, interval_seconds: int) -> None:
    """Tick forever on a fixed interval; a failed tick is retried next interval."""
    logger.info("Mail poller %s starting (interval: %ss)", channel.value, interval_seconds)
    while True:
        try:
            counts = await anyio.to_thread.run_sync(mail_poll_service.run_poll_tick, channel)
            if counts is None:
                logger.info("Previous %s tick still running, skipped", channel.value)
        except ExternalProviderError as exc:
            logger.error("Mail poll %s aborted: %s", channel.value, exc.message)
        except Exception:
            logger.exception("Mail poll %s crashed", channel.value)
        await anyio.sleep(interval_seconds)


async def worker_loop() -> None:
    channels = enabled_channels()
    if not channels:
        logger.warning("No mail channels enabled (GRAPH_ENABLED / IMAP_ENABLED)")
        return
    async with anyio.create_task_group() as tg:
        for channel, interval in channels:
            tg.start_soon(poll_loop, channel, interval)


def main() -> None:
    """Entry point for the worker."""
    configure_logging(settings.LOG_LEVEL)
    try:
        anyio.run(worker_loop)
    except KeyboardInterrupt:
        logger.info("Worker shutting down")


if __name__ == "__main__":
    main()
