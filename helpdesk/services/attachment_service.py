"""Lazy attachment download through the originating mailbox provider."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable

from sqlalchemy.orm import Session

from helpdesk.core.errors import NotFoundError
from helpdesk.db.enums import EMAIL_CHANNELS, TicketChannel
from helpdesk.db.models import TicketAttachment
from helpdesk.services.mail_poll_service import build_provider
from helpdesk.services.mailbox_providers.base import MailboxProvider

logger = logging.getLogger(__name__)


@dataclass
class AttachmentDownload:
    content: bytes
    filename: str
    mime_type: str


def get_attachment_download(
    db: Session,
    *,
    attachment_id: int,
    provider_factory: Callable[[TicketChannel], MailboxProvider] | None = None,
) -> AttachmentDownload:
    """Resolve the stored provider reference and fetch the bytes now.

    Raises:
        NotFoundError: unknown attachment, no provider reference, or the
            provider no longer has the message
    """
    attachment = db.get(TicketAttachment, attachment_id)
    if not attachment:
        raise NotFoundError("Attachment not found")
    if not attachment.provider_ref or attachment.provider not in EMAIL_CHANNELS:
        raise NotFoundError("Attachment content not available")

    provider = (provider_factory or build_provider)(attachment.provider)
    fetched = provider.fetch_attachment(attachment.provider_ref)
    if fetched is None:
        logger.info("Provider no longer has attachment %s", attachment_id)
        raise NotFoundError("Attachment content not available")

    return AttachmentDownload(
        content=fetched.content,
        filename=attachment.filename,
        mime_type=attachment.mime_type or fetched.mime_type or "application/octet-stream",
    )
