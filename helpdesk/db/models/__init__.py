"""ORM models."""

from helpdesk.db.models.directory import Agent, Organization, OrganizationDomain, Requester
from helpdesk.db.models.ticketing import Ticket, TicketAttachment, TicketEvent, TicketMessage

__all__ = [
    "Agent",
    "Organization",
    "OrganizationDomain",
    "Requester",
    "Ticket",
    "TicketAttachment",
    "TicketEvent",
    "TicketMessage",
]
