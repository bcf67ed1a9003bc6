"""Mailbox provider clients used by the email pollers."""

from helpdesk.services.mailbox_providers.base import (
    AttachmentContent,
    MailboxItem,
    MailboxProvider,
)

__all__ = ["AttachmentContent", "MailboxItem", "MailboxProvider"]
