"""
Tickets Infrastructure Layer
============================

Contains:
- Models: SQLAlchemy ORM models
- Repositories: SQLAlchemy and in-memory ticket repositories
- External: event sinks (in-memory, logging, webhook)
"""

from helpdesk.tickets.infrastructure.repositories import (
    SQLAlchemyTicketRepository,
    InMemoryTicketRepository,
)
from helpdesk.tickets.infrastructure.external import (
    InMemoryEventSink,
    LoggingEventSink,
    WebhookEventSink,
)

__all__ = [
    "SQLAlchemyTicketRepository",
    "InMemoryTicketRepository",
    "InMemoryEventSink",
    "LoggingEventSink",
    "WebhookEventSink",
]
