"""Ticketing ORM models."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import (
    JSON,
    Boolean,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from helpdesk.db.base import Base
from helpdesk.db.enums import (
    ActorType,
    MessageDirection,
    TicketChannel,
    TicketEventType,
    TicketPriority,
    TicketStatus,
)
from helpdesk.db.models._types import enum_type
from helpdesk.db.types import utc_now

if TYPE_CHECKING:
    from helpdesk.db.models.directory import Agent, Organization, Requester


class Ticket(Base):
    """Support ticket and its lifecycle timestamps."""

    __tablename__ = "tickets"
    __table_args__ = (
        Index("idx_tickets_org_status", "organization_id", "status"),
        Index("idx_tickets_assignee", "assignee_id"),
        Index("idx_tickets_from_email_created", "from_email", "created_at"),
        Index("idx_tickets_activity", "last_activity_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    public_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, default=uuid.uuid4, unique=True, nullable=False
    )
    organization_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("organizations.id"), nullable=False
    )
    requester_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("requesters.id", ondelete="SET NULL"), nullable=True
    )
    assignee_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("agents.id", ondelete="SET NULL"), nullable=True
    )
    subject: Mapped[str] = mapped_column(Text, nullable=False)
    subject_norm: Mapped[str] = mapped_column(Text, nullable=False, default="")
    from_email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    status: Mapped[TicketStatus] = mapped_column(
        enum_type(TicketStatus, name="ticket_status"),
        nullable=False,
        default=TicketStatus.NEW,
    )
    priority: Mapped[TicketPriority] = mapped_column(
        enum_type(TicketPriority, name="ticket_priority"),
        nullable=False,
        default=TicketPriority.NORMAL,
    )
    channel: Mapped[TicketChannel] = mapped_column(
        enum_type(TicketChannel, name="ticket_channel"), nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(default=utc_now, nullable=False)
    first_response_at: Mapped[datetime | None] = mapped_column(nullable=True)
    last_resolved_at: Mapped[datetime | None] = mapped_column(nullable=True)
    last_closed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    last_activity_at: Mapped[datetime] = mapped_column(default=utc_now, nullable=False)

    organization: Mapped["Organization"] = relationship(back_populates="tickets")
    requester: Mapped["Requester | None"] = relationship()
    assignee: Mapped["Agent | None"] = relationship()
    messages: Mapped[list["TicketMessage"]] = relationship(
        back_populates="ticket",
        order_by="TicketMessage.id",
    )
    events: Mapped[list["TicketEvent"]] = relationship(
        back_populates="ticket",
        order_by="TicketEvent.id",
    )


class TicketMessage(Base):
    """Message on a ticket; also the substrate for thread matching."""

    __tablename__ = "ticket_messages"
    __table_args__ = (
        UniqueConstraint(
            "ticket_id", "provider_message_id", name="uq_ticket_messages_provider_id"
        ),
        Index("idx_ticket_messages_ticket_created", "ticket_id", "created_at"),
        Index("idx_ticket_messages_thread_key", "thread_key"),
        Index("idx_ticket_messages_provider_id", "provider_message_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    ticket_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False
    )
    direction: Mapped[MessageDirection] = mapped_column(
        enum_type(MessageDirection, name="message_direction"), nullable=False
    )
    is_internal: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    author_agent_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("agents.id", ondelete="SET NULL"), nullable=True
    )
    body_text: Mapped[str | None] = mapped_column(Text, nullable=True)
    body_html: Mapped[str | None] = mapped_column(Text, nullable=True)
    from_email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    to_email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    cc_emails: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)
    provider_message_id: Mapped[str | None] = mapped_column(String(512), nullable=True)
    thread_key: Mapped[str | None] = mapped_column(String(512), nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=utc_now, nullable=False)

    ticket: Mapped["Ticket"] = relationship(back_populates="messages")
    attachments: Mapped[list["TicketAttachment"]] = relationship(
        back_populates="message", order_by="TicketAttachment.id"
    )


class TicketAttachment(Base):
    """Attachment metadata; bytes stay with the provider."""

    __tablename__ = "ticket_attachments"
    __table_args__ = (Index("idx_ticket_attachments_message", "message_id"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    message_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("ticket_messages.id", ondelete="CASCADE"), nullable=False
    )
    filename: Mapped[str] = mapped_column(String(512), nullable=False)
    mime_type: Mapped[str] = mapped_column(
        String(255), nullable=False, default="application/octet-stream"
    )
    size_bytes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    provider: Mapped[TicketChannel] = mapped_column(
        enum_type(TicketChannel, name="ticket_channel"), nullable=False
    )
    provider_ref: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    is_inline: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    content_id: Mapped[str | None] = mapped_column(String(512), nullable=True)

    message: Mapped["TicketMessage"] = relationship(back_populates="attachments")


class TicketEvent(Base):
    """Immutable event entries for ticket actions."""

    __tablename__ = "ticket_events"
    __table_args__ = (Index("idx_ticket_events_ticket_created", "ticket_id", "created_at"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    ticket_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False
    )
    event_type: Mapped[TicketEventType] = mapped_column(
        enum_type(TicketEventType, name="ticket_event_type"), nullable=False
    )
    actor_type: Mapped[ActorType] = mapped_column(
        enum_type(ActorType, name="actor_type"), nullable=False
    )
    actor_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    old_value: Mapped[str | None] = mapped_column(String(64), nullable=True)
    new_value: Mapped[str | None] = mapped_column(String(64), nullable=True)
    event_data: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)
    created_at: Mapped[datetime] = mapped_column(default=utc_now, nullable=False)

    ticket: Mapped["Ticket"] = relationship(back_populates="events")
