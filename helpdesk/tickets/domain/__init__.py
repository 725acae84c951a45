"""
Tickets Domain Layer
====================

Contains:
- Entities: Ticket, Message, EmbeddingVector
- Events: TicketCreated, TicketStatusChanged, EscalationEvent,
  MaxEscalationReached, DuplicateLinked, TicketReassigned, MessagePosted,
  TicketRated
- Domain Service: TicketStateMachine
- Routing: role owning a ticket at each escalation level
- Timeline: chronological view of a ticket

This layer has no dependencies on infrastructure - pure Python business logic.
"""

from helpdesk.tickets.domain.entities import (
    Ticket,
    Message,
    EmbeddingVector,
    format_ticket_number,
    MESSAGE_MAX_LENGTH,
    RATING_RANGE,
    RATING_COMMENT_MAX_LENGTH,
)
from helpdesk.tickets.domain.events import (
    DomainEvent,
    TicketCreated,
    TicketStatusChanged,
    EscalationEvent,
    MaxEscalationReached,
    DuplicateLinked,
    TicketReassigned,
    MessagePosted,
    TicketRated,
)
from helpdesk.tickets.domain.routing import (
    CATEGORY_ROUTING,
    ESCALATION_ROLES,
    role_for_level,
)
from helpdesk.tickets.domain.state_machine import (
    TicketAction,
    TicketStateMachine,
    TransitionResult,
    TransitionRule,
    TRANSITION_RULES,
)
from helpdesk.tickets.domain.timeline import TimelineEntry, build_timeline

__all__ = [
    # Entities
    "Ticket",
    "Message",
    "EmbeddingVector",
    "format_ticket_number",
    "MESSAGE_MAX_LENGTH",
    "RATING_RANGE",
    "RATING_COMMENT_MAX_LENGTH",
    # Events
    "DomainEvent",
    "TicketCreated",
    "TicketStatusChanged",
    "EscalationEvent",
    "MaxEscalationReached",
    "DuplicateLinked",
    "TicketReassigned",
    "MessagePosted",
    "TicketRated",
    # Routing
    "CATEGORY_ROUTING",
    "ESCALATION_ROLES",
    "role_for_level",
    # State machine
    "TicketAction",
    "TicketStateMachine",
    "TransitionResult",
    "TransitionRule",
    "TRANSITION_RULES",
    # Timeline
    "TimelineEntry",
    "build_timeline",
]
