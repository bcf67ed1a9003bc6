"""IMAP mailbox client (email-poll-B)."""

from __future__ import annotations

import imaplib
import logging
from contextlib import contextmanager
from datetime import timezone
from email import policy
from email.message import EmailMessage
from email.parser import BytesParser
from email.utils import getaddresses, parsedate_to_datetime
from typing import Callable, Iterator

from helpdesk.core.config import settings
from helpdesk.core.errors import ExternalProviderError
from helpdesk.db.enums import TicketChannel
from helpdesk.services.inbound_service import AttachmentMeta, InboundMessage
from helpdesk.services.mailbox_providers.base import AttachmentContent, MailboxItem
from helpdesk.utils.text import normalize_email

logger = logging.getLogger(__name__)

REF_SEPARATOR = ":"


def _decode_part(part) -> str | None:
    payload = part.get_payload(decode=True)
    if payload is None:
        return None
    charset = part.get_content_charset() or "utf-8"
    try:
        return payload.decode(charset, errors="replace")
    except LookupError:
        return payload.decode("utf-8", errors="replace")


def _is_attachment(part) -> bool:
    disposition = str(part.get("Content-Disposition") or "").lower()
    return bool(part.get_filename()) or "attachment" in disposition


def thread_key_from_headers(
    references: str | None, in_reply_to: str | None, message_id: str | None
) -> str | None:
    """First References id, else In-Reply-To, else the message's own id."""
    refs = (references or "").split()
    if refs:
        return refs[0]
    return (in_reply_to or "").strip() or (message_id or "").strip() or None


def parse_mime_message(raw_bytes: bytes, *, uid: str) -> InboundMessage:
    """Normalize raw RFC 822 bytes into an InboundMessage."""
    message: EmailMessage = BytesParser(policy=policy.default).parsebytes(raw_bytes)

    from_list = getaddresses([str(message.get("From") or "")])
    to_list = getaddresses([str(message.get("To") or "")])
    cc_list = getaddresses([str(message.get("Cc") or "")])

    rfc_message_id = str(message.get("Message-ID") or "").strip() or None
    in_reply_to = str(message.get("In-Reply-To") or "").strip() or None
    references = str(message.get("References") or "").strip() or None

    received_at = None
    if message.get("Date"):
        try:
            received_at = parsedate_to_datetime(str(message.get("Date")))
        except (TypeError, ValueError):
            received_at = None
        if received_at and received_at.tzinfo is None:
            received_at = received_at.replace(tzinfo=timezone.utc)

    body_text = None
    body_html = None
    attachments: list[AttachmentMeta] = []
    for index, part in enumerate(message.walk()):
        if part.is_multipart():
            continue
        content_type = part.get_content_type()
        if _is_attachment(part):
            payload = part.get_payload(decode=True) or b""
            disposition = str(part.get("Content-Disposition") or "").lower()
            attachments.append(
                AttachmentMeta(
                    filename=part.get_filename() or "attachment",
                    mime_type=content_type or "application/octet-stream",
                    size_bytes=len(payload),
                    provider_ref=f"{uid}{REF_SEPARATOR}{index}",
                    is_inline="inline" in disposition,
                    content_id=str(part.get("Content-ID") or "").strip("<>") or None,
                )
            )
        elif content_type == "text/plain" and body_text is None:
            body_text = _decode_part(part)
        elif content_type == "text/html" and body_html is None:
            body_html = _decode_part(part)

    return InboundMessage(
        channel=TicketChannel.EMAIL_IMAP,
        sender_email=normalize_email(from_list[0][1]) if from_list else "",
        sender_name=(from_list[0][0].strip() or None) if from_list else None,
        subject=str(message.get("Subject") or "").strip(),
        body_text=body_text,
        body_html=body_html,
        thread_key=thread_key_from_headers(references, in_reply_to, rfc_message_id),
        provider_message_id=rfc_message_id or f"imap-uid-{uid}",
        to_emails=[addr for _, addr in to_list if addr],
        cc_emails=[addr for _, addr in cc_list if addr],
        attachments=attachments,
        received_at=received_at,
    )


class ImapMailboxProvider:
    """Reads UNSEEN messages without marking them until consumed."""

    channel = TicketChannel.EMAIL_IMAP

    def __init__(
        self,
        *,
        host: str | None = None,
        port: int | None = None,
        user: str | None = None,
        password: str | None = None,
        folder: str | None = None,
        connect: Callable[[], imaplib.IMAP4] | None = None,
    ):
        self.host = host or settings.IMAP_HOST
        self.port = port or settings.IMAP_PORT
        self.user = user or settings.IMAP_USER
        self.password = password or settings.IMAP_PASSWORD
        self.folder = folder or settings.IMAP_FOLDER
        self._connect = connect or (lambda: imaplib.IMAP4_SSL(self.host, self.port))

    @contextmanager
    def _session(self) -> Iterator[imaplib.IMAP4]:
        try:
            conn = self._connect()
            conn.login(self.user, self.password)
            conn.select(self.folder)
        except (imaplib.IMAP4.error, OSError) as exc:
            raise ExternalProviderError("IMAP connection failed") from exc
        try:
            yield conn
        except (imaplib.IMAP4.error, OSError) as exc:
            raise ExternalProviderError("IMAP command failed") from exc
        finally:
            try:
                conn.logout()
            except (imaplib.IMAP4.error, OSError):
                logger.debug("IMAP logout failed", exc_info=True)

    @staticmethod
    def _fetch_raw(conn: imaplib.IMAP4, uid: str) -> bytes | None:
        status, data = conn.uid("FETCH", uid, "(BODY.PEEK[])")
        if status != "OK":
            return None
        for chunk in data or []:
            if isinstance(chunk, tuple) and len(chunk) > 1:
                return chunk[1]
        return None

    def fetch_pending(self, limit: int) -> list[MailboxItem]:
        items: list[MailboxItem] = []
        with self._session() as conn:
            status, data = conn.uid("SEARCH", None, "UNSEEN")
            if status != "OK":
                raise ExternalProviderError("IMAP search failed")
            uids = [uid.decode() for uid in (data[0] or b"").split()][:limit]
            for uid in uids:
                raw = self._fetch_raw(conn, uid)
                if raw is None:
                    items.append(MailboxItem(ref=uid, message=None, error="fetch failed"))
                    continue
                try:
                    items.append(MailboxItem(ref=uid, message=parse_mime_message(raw, uid=uid)))
                except (ValueError, TypeError, LookupError) as exc:
                    logger.warning("Could not parse IMAP message uid=%s", uid, exc_info=exc)
                    items.append(MailboxItem(ref=uid, message=None, error=str(exc)))
        return items

    def mark_consumed(self, item: MailboxItem) -> None:
        with self._session() as conn:
            status, _ = conn.uid("STORE", item.ref, "+FLAGS", "(\\Seen)")
            if status != "OK":
                raise ExternalProviderError(f"IMAP store failed for uid={item.ref}")

    def fetch_attachment(self, reference: str) -> AttachmentContent | None:
        uid, _, index = reference.partition(REF_SEPARATOR)
        if not uid or not index.isdigit():
            return None
        with self._session() as conn:
            raw = self._fetch_raw(conn, uid)
        if raw is None:
            return None
        message = BytesParser(policy=policy.default).parsebytes(raw)
        for position, part in enumerate(message.walk()):
            if position == int(index):
                return AttachmentContent(
                    content=part.get_payload(decode=True) or b"",
                    filename=part.get_filename(),
                    mime_type=part.get_content_type(),
                )
        return None
