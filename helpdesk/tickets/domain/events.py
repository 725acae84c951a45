"""
Ticket Domain Events
====================

Immutable records of what happened to a ticket, published to the
notification and analytics collaborators after a change commits.

Delivery is at-least-once, so consumers deduplicate on ``dedup_key``.
"""

from datetime import datetime
from typing import Any, Optional, Tuple

from pydantic import BaseModel, ConfigDict

from helpdesk.config import (
    EscalationTrigger, EscalationUrgency, Priority, TicketCategory, TicketStatus
)


class DomainEvent(BaseModel):
    """Base class for every event a ticket emits."""
    model_config = ConfigDict(frozen=True)

    ticket_id: str
    occurred_at: datetime

    @property
    def event_type(self) -> str:
        return type(self).__name__

    @property
    def dedup_key(self) -> Tuple[str, str, str]:
        return (self.ticket_id, self.event_type, self.occurred_at.isoformat())

    def to_payload(self) -> dict[str, Any]:
        """JSON-ready representation including the event type."""
        return {"event_type": self.event_type, **self.model_dump(mode="json")}


class TicketCreated(DomainEvent):
    priority: Priority
    urgency: EscalationUrgency
    category: TicketCategory
    escalation_level: int
    deadline: Optional[datetime]
    creator_id: str


class TicketStatusChanged(DomainEvent):
    from_status: TicketStatus
    to_status: TicketStatus
    actor_id: str
    assignee_id: Optional[str] = None
    deadline: Optional[datetime] = None
    reason: Optional[str] = None


class EscalationEvent(DomainEvent):
    """Append-only audit record of a level change."""
    from_level: int
    to_level: int
    to_authority: str
    triggered_by: EscalationTrigger
    reason: str
    actor_id: str
    deadline: Optional[datetime] = None
    to_role: Optional[str] = None


class MaxEscalationReached(DomainEvent):
    """Informational: the ticket is at the top of the authority chain."""
    escalation_level: int
    triggered_by: EscalationTrigger
    reason: str


class DuplicateLinked(DomainEvent):
    parent_ticket_id: str
    similarity: float
    embedding_model: str


class TicketReassigned(DomainEvent):
    from_assignee_id: Optional[str]
    to_assignee_id: str
    actor_id: str
    reason: Optional[str] = None


class MessagePosted(DomainEvent):
    message_id: str
    author_id: str
    is_internal: bool


class TicketRated(DomainEvent):
    rating: int
    actor_id: str
