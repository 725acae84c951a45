"""
Tickets Application Layer
=========================

Contains:
- Services: TicketService (load, transition, compare-and-swap save, publish)
- DTOs: Data transfer objects for API serialization

This layer depends on the domain layer and repository interfaces,
but not on concrete infrastructure implementations.
"""

from helpdesk.tickets.application.dto import (
    TicketCreateRequest,
    TransitionRequest,
    EscalateRequest,
    ReassignRequest,
    MessageCreateRequest,
    RateTicketRequest,
    TicketResponse,
    MessageResponse,
    TransitionResponse,
    IntakeResponse,
    EscalationRecordResponse,
    TimelineEntryResponse,
)
from helpdesk.tickets.application.services import (
    TicketService,
    ITicketRepository,
    IEventSink,
    Clock,
    utcnow,
)

__all__ = [
    # DTOs
    "TicketCreateRequest",
    "TransitionRequest",
    "EscalateRequest",
    "ReassignRequest",
    "MessageCreateRequest",
    "RateTicketRequest",
    "TicketResponse",
    "MessageResponse",
    "TransitionResponse",
    "IntakeResponse",
    "EscalationRecordResponse",
    "TimelineEntryResponse",
    # Services
    "TicketService",
    "Clock",
    "utcnow",
    # Interfaces
    "ITicketRepository",
    "IEventSink",
]
