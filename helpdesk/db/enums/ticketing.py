"""Ticketing enums."""

from enum import Enum


class TicketStatus(str, Enum):
    """Ticket lifecycle status."""

    NEW = "new"
    OPEN = "open"
    PENDING = "pending"
    RESOLVED = "resolved"
    CLOSED = "closed"


class TicketPriority(str, Enum):
    """Ticket priority."""

    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"


class TicketChannel(str, Enum):
    """Where a ticket originated."""

    EMAIL_GRAPH = "email_graph"
    EMAIL_IMAP = "email_imap"
    WEBHOOK = "webhook"
    API = "api"


class MessageDirection(str, Enum):
    INBOUND = "inbound"
    OUTBOUND = "outbound"


class TicketEventType(str, Enum):
    """Append-only ticket event types."""

    CREATED = "created"
    MESSAGE_SENT = "message_sent"
    STATUS_CHANGED = "status_changed"
    PRIORITY_CHANGED = "priority_changed"
    ASSIGNED = "assigned"


class ActorType(str, Enum):
    SYSTEM = "system"
    AGENT = "agent"
    REQUESTER = "requester"


class RequesterPolicy(str, Enum):
    """Whether a channel may create requesters it does not know."""

    LOOKUP_ONLY = "lookup_only"
    LOOKUP_OR_CREATE = "lookup_or_create"


PRIORITY_RANK = {
    TicketPriority.LOW: 0,
    TicketPriority.NORMAL: 1,
    TicketPriority.HIGH: 2,
    TicketPriority.URGENT: 3,
}

EMAIL_CHANNELS = frozenset({TicketChannel.EMAIL_GRAPH, TicketChannel.EMAIL_IMAP})
