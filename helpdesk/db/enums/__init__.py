"""Enum definitions for application constants."""

from helpdesk.db.enums.ticketing import (
    ActorType,
    EMAIL_CHANNELS,
    MessageDirection,
    PRIORITY_RANK,
    RequesterPolicy,
    TicketChannel,
    TicketEventType,
    TicketPriority,
    TicketStatus,
)

__all__ = [
    "ActorType",
    "EMAIL_CHANNELS",
    "MessageDirection",
    "PRIORITY_RANK",
    "RequesterPolicy",
    "TicketChannel",
    "TicketEventType",
    "TicketPriority",
    "TicketStatus",
]
