"""Microsoft Graph mailbox client (email-poll-A)."""

from __future__ import annotations

import logging
import time
from datetime import datetime

import httpx

from helpdesk.core.config import settings
from helpdesk.core.errors import ExternalProviderError
from helpdesk.db.enums import TicketChannel
from helpdesk.services.http_service import request_with_retries_sync
from helpdesk.services.inbound_service import AttachmentMeta, InboundMessage
from helpdesk.services.mailbox_providers.base import AttachmentContent, MailboxItem

logger = logging.getLogger(__name__)

GRAPH_BASE_URL = "https://graph.microsoft.com/v1.0"
TOKEN_URL = "https://login.microsoftonline.com/{tenant}/oauth2/v2.0/token"
GRAPH_SCOPE = "https://graph.microsoft.com/.default"
GRAPH_TIMEOUT_SECONDS = 30.0
MESSAGE_FIELDS = (
    "id,subject,from,toRecipients,ccRecipients,body,receivedDateTime,"
    "internetMessageId,conversationId,hasAttachments"
)
REF_SEPARATOR = "|"


def _address(entry: dict | None) -> str:
    return ((entry or {}).get("emailAddress") or {}).get("address") or ""


def _parse_datetime(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


class GraphMailboxProvider:
    """Reads unread mail from a shared mailbox with app-only credentials."""

    channel = TicketChannel.EMAIL_GRAPH

    def __init__(
        self,
        *,
        tenant_id: str | None = None,
        client_id: str | None = None,
        client_secret: str | None = None,
        mailbox: str | None = None,
        client: httpx.Client | None = None,
    ):
        self.tenant_id = tenant_id or settings.GRAPH_TENANT_ID
        self.client_id = client_id or settings.GRAPH_CLIENT_ID
        self.client_secret = client_secret or settings.GRAPH_CLIENT_SECRET
        self.mailbox = mailbox or settings.SUPPORT_MAILBOX
        self._client = client or httpx.Client(timeout=GRAPH_TIMEOUT_SECONDS)
        self._token: str | None = None
        self._token_expires_at = 0.0

    # -------------------------------------------------------------------------
    # HTTP plumbing
    # -------------------------------------------------------------------------

    def _access_token(self) -> str:
        if self._token and time.monotonic() < self._token_expires_at - 60:
            return self._token
        try:
            response = request_with_retries_sync(
                lambda: self._client.post(
                    TOKEN_URL.format(tenant=self.tenant_id),
                    data={
                        "client_id": self.client_id,
                        "client_secret": self.client_secret,
                        "scope": GRAPH_SCOPE,
                        "grant_type": "client_credentials",
                    },
                )
            )
        except httpx.RequestError as exc:
            raise ExternalProviderError("Graph token request failed") from exc
        if response.status_code != 200:
            raise ExternalProviderError(f"Graph token request returned {response.status_code}")
        data = response.json()
        self._token = data["access_token"]
        self._token_expires_at = time.monotonic() + int(data.get("expires_in", 3600))
        return self._token

    def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        url = f"{GRAPH_BASE_URL}/users/{self.mailbox}{path}"
        headers = {"Authorization": f"Bearer {self._access_token()}"}
        try:
            response = request_with_retries_sync(
                lambda: self._client.request(method, url, headers=headers, **kwargs)
            )
        except httpx.RequestError as exc:
            raise ExternalProviderError(f"Graph {method} {path} failed") from exc
        return response

    # -------------------------------------------------------------------------
    # MailboxProvider
    # -------------------------------------------------------------------------

    def fetch_pending(self, limit: int) -> list[MailboxItem]:
        response = self._request(
            "GET",
            "/messages",
            params={
                "$filter": "isRead eq false",
                "$select": MESSAGE_FIELDS,
                "$top": str(limit),
                "$orderby": "receivedDateTime asc",
            },
        )
        if response.status_code != 200:
            raise ExternalProviderError(f"Graph list messages returned {response.status_code}")

        items = []
        for raw in response.json().get("value", []):
            try:
                items.append(MailboxItem(ref=raw["id"], message=self._normalize(raw)))
            except (KeyError, TypeError, ValueError) as exc:
                logger.warning("Could not normalize Graph message", exc_info=exc)
                items.append(MailboxItem(ref=raw.get("id", ""), message=None, error=str(exc)))
        return items

    def _normalize(self, raw: dict) -> InboundMessage:
        body = raw.get("body") or {}
        content = body.get("content") or ""
        is_html = (body.get("contentType") or "").lower() == "html"
        sender = raw.get("from") or {}
        return InboundMessage(
            channel=self.channel,
            sender_email=_address(sender),
            sender_name=(sender.get("emailAddress") or {}).get("name"),
            subject=raw.get("subject") or "",
            body_text=None if is_html else content,
            body_html=content if is_html else None,
            thread_key=raw.get("conversationId") or None,
            provider_message_id=raw.get("internetMessageId") or raw["id"],
            to_emails=[_address(r) for r in raw.get("toRecipients") or [] if _address(r)],
            cc_emails=[_address(r) for r in raw.get("ccRecipients") or [] if _address(r)],
            attachments=self._list_attachments(raw["id"]) if raw.get("hasAttachments") else [],
            received_at=_parse_datetime(raw.get("receivedDateTime")),
        )

    def _list_attachments(self, message_id: str) -> list[AttachmentMeta]:
        response = self._request(
            "GET",
            f"/messages/{message_id}/attachments",
            params={"$select": "id,name,contentType,size,isInline,contentId"},
        )
        if response.status_code != 200:
            raise ExternalProviderError(f"Graph list attachments returned {response.status_code}")
        return [
            AttachmentMeta(
                filename=att.get("name") or "attachment",
                mime_type=att.get("contentType") or "application/octet-stream",
                size_bytes=int(att.get("size") or 0),
                provider_ref=f"{message_id}{REF_SEPARATOR}{att['id']}",
                is_inline=bool(att.get("isInline")),
                content_id=att.get("contentId"),
            )
            for att in response.json().get("value", [])
        ]

    def mark_consumed(self, item: MailboxItem) -> None:
        response = self._request("PATCH", f"/messages/{item.ref}", json={"isRead": True})
        if response.status_code not in (200, 204):
            raise ExternalProviderError(f"Graph mark read returned {response.status_code}")

    def fetch_attachment(self, reference: str) -> AttachmentContent | None:
        message_id, _, attachment_id = reference.partition(REF_SEPARATOR)
        if not message_id or not attachment_id:
            return None
        response = self._request("GET", f"/messages/{message_id}/attachments/{attachment_id}/$value")
        if response.status_code == 404:
            return None
        if response.status_code != 200:
            raise ExternalProviderError(f"Graph attachment fetch returned {response.status_code}")
        return AttachmentContent(
            content=response.content, mime_type=response.headers.get("content-type")
        )
