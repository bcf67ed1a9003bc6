"""Pydantic schemas for ticket APIs."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from helpdesk.db.enums import (
    ActorType,
    MessageDirection,
    TicketChannel,
    TicketEventType,
    TicketPriority,
    TicketStatus,
)


class _Request(BaseModel):
    """Request bodies accept snake_case or camelCase keys."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


# =============================================================================
# Requests
# =============================================================================


class TicketCreate(_Request):
    organization_id: int = Field(alias="organizationId", gt=0)
    requester_id: int | None = Field(default=None, alias="requesterId", gt=0)
    subject: str = Field(min_length=1, max_length=500)
    message: str | None = None
    priority: TicketPriority = TicketPriority.NORMAL
    assignee_id: int | None = Field(default=None, alias="assigneeId", gt=0)

    @field_validator("subject")
    @classmethod
    def _subject_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("subject must not be blank")
        return value


class TicketReplyCreate(_Request):
    message: str = Field(min_length=1)
    is_internal: bool = Field(default=False, alias="isInternal")


class TicketPatchRequest(_Request):
    """Partial update; omitted fields are left alone."""

    status: TicketStatus | None = None
    priority: TicketPriority | None = None
    assignee_id: int | None = Field(default=None, alias="assigneeId")


class InboundWebhookPayload(_Request):
    sender: str = Field(alias="from", min_length=3, max_length=320)
    subject: str = Field(min_length=1, max_length=500)
    text: str = Field(min_length=1)

    @field_validator("sender")
    @classmethod
    def _sender_has_at(cls, value: str) -> str:
        value = value.strip()
        if "@" not in value:
            raise ValueError("from must be an email address")
        return value


# =============================================================================
# Responses
# =============================================================================


class TicketCreatedResponse(BaseModel):
    """Serialized as `{"ticketId": N}`."""

    model_config = ConfigDict(populate_by_name=True)

    ticket_id: int = Field(alias="ticketId")


class AckResponse(BaseModel):
    ok: bool = True
    message: str | None = None
    changes: list[str] = Field(default_factory=list)


class TicketListItem(BaseModel):
    """Inbox row for a ticket."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    public_id: UUID
    organization_id: int
    requester_id: int | None = None
    assignee_id: int | None = None
    subject: str
    from_email: str | None = None
    status: TicketStatus
    priority: TicketPriority
    channel: TicketChannel
    created_at: datetime
    first_response_at: datetime | None = None
    last_resolved_at: datetime | None = None
    last_closed_at: datetime | None = None
    last_activity_at: datetime


class TicketListResponse(BaseModel):
    items: list[TicketListItem]
    total: int
    page: int
    page_size: int
    total_pages: int


class TicketAttachmentRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    filename: str
    mime_type: str
    size_bytes: int
    is_inline: bool
    content_id: str | None = None


class TicketMessageRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    direction: MessageDirection
    is_internal: bool
    author_agent_id: int | None = None
    body_text: str | None = None
    body_html: str | None = None
    from_email: str | None = None
    to_email: str | None = None
    cc_emails: list[str] = Field(default_factory=list)
    provider_message_id: str | None = None
    thread_key: str | None = None
    created_at: datetime
    attachments: list[TicketAttachmentRead] = Field(default_factory=list)


class TicketEventRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    event_type: TicketEventType
    actor_type: ActorType
    actor_id: int | None = None
    old_value: str | None = None
    new_value: str | None = None
    event_data: dict = Field(default_factory=dict)
    created_at: datetime


class TicketDetailResponse(BaseModel):
    ticket: TicketListItem
    messages: list[TicketMessageRead]
    events: list[TicketEventRead]
