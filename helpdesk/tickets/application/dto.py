"""
Ticket Application DTOs
=======================

Pydantic models for the ticket API layer.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from helpdesk.config import (
    EscalationTrigger, EscalationUrgency, Priority, TicketCategory, TicketStatus
)
from helpdesk.tickets.domain import (
    EscalationEvent, Message, Ticket, TicketAction, TimelineEntry
)


# ========== Request DTOs ==========

class TicketCreateRequest(BaseModel):
    """Request model for filing a ticket."""
    title: str = Field(..., min_length=5, max_length=200, description="Short summary")
    description: str = Field(..., min_length=20, max_length=5000, description="Full description")
    category: TicketCategory = Field(..., description="Complaint category")
    priority: Priority = Field(default=Priority.MEDIUM, description="Requester-chosen priority")
    urgency: Optional[EscalationUrgency] = Field(
        None,
        description="Escalation urgency; derived from priority when omitted"
    )
    tags: List[str] = Field(default_factory=list, max_length=20)
    is_anonymous: bool = Field(default=False, description="Hide the requester from non-staff")
    campus_id: Optional[str] = Field(None, description="Target campus; defaults to the requester's")
    college_id: Optional[str] = None
    department_id: Optional[str] = None


class TransitionRequest(BaseModel):
    action: TicketAction = Field(..., description="Transition to apply")
    assignee_id: Optional[str] = Field(None, description="New assignee (ASSIGN only)")
    reason: Optional[str] = Field(None, max_length=1000)


class EscalateRequest(BaseModel):
    reason: str = Field(default="Manual escalation", min_length=1, max_length=1000)


class ReassignRequest(BaseModel):
    assignee_id: str = Field(..., min_length=1)
    reason: Optional[str] = Field(None, max_length=1000)


class MessageCreateRequest(BaseModel):
    body: str = Field(..., min_length=1, max_length=5000)
    is_internal: bool = False
    attachment_ids: List[str] = Field(default_factory=list)


class RateTicketRequest(BaseModel):
    rating: int = Field(..., ge=1, le=5, description="Satisfaction score")
    comment: Optional[str] = Field(None, max_length=1000)


# ========== Response DTOs ==========

class EscalationRecordResponse(BaseModel):
    from_level: int
    to_level: int
    to_authority: str
    to_role: Optional[str] = None
    triggered_by: EscalationTrigger
    reason: str
    actor_id: str
    occurred_at: datetime

    @classmethod
    def from_event(cls, event: EscalationEvent) -> "EscalationRecordResponse":
        return cls(
            from_level=event.from_level,
            to_level=event.to_level,
            to_authority=event.to_authority,
            to_role=event.to_role,
            triggered_by=event.triggered_by,
            reason=event.reason,
            actor_id=event.actor_id,
            occurred_at=event.occurred_at,
        )


class TicketResponse(BaseModel):
    """Response model for a single ticket."""
    id: str
    title: str
    description: str
    category: TicketCategory
    priority: Priority
    urgency: EscalationUrgency
    status: TicketStatus
    campus_id: str
    college_id: Optional[str] = None
    department_id: Optional[str] = None
    creator_id: Optional[str] = Field(None, description="Hidden for anonymous tickets")
    assignee_id: Optional[str] = None
    escalation_level: int
    authority: str
    routed_role: str = Field(..., description="Role owning the ticket at its current level")
    deadline: Optional[datetime] = None
    linked_duplicate_of: Optional[str] = None
    is_anonymous: bool
    tags: List[str] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime
    first_response_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None
    rating: Optional[int] = None
    rating_comment: Optional[str] = None
    rated_at: Optional[datetime] = None
    escalation_history: List[EscalationRecordResponse] = Field(default_factory=list)
    version: int

    @classmethod
    def from_entity(cls, ticket: Ticket, reveal_creator: bool = True) -> "TicketResponse":
        return cls(
            id=ticket.id,
            title=ticket.title,
            description=ticket.description,
            category=ticket.category,
            priority=ticket.priority,
            urgency=ticket.urgency,
            status=ticket.status,
            campus_id=ticket.scope.campus_id,
            college_id=ticket.scope.college_id,
            department_id=ticket.scope.department_id,
            creator_id=ticket.creator_id if reveal_creator else None,
            assignee_id=ticket.assignee_id,
            escalation_level=ticket.escalation_level,
            authority=ticket.authority,
            routed_role=ticket.routed_role,
            deadline=ticket.deadline,
            linked_duplicate_of=ticket.linked_duplicate_of,
            is_anonymous=ticket.is_anonymous,
            tags=list(ticket.tags),
            created_at=ticket.created_at,
            updated_at=ticket.updated_at,
            first_response_at=ticket.first_response_at,
            resolved_at=ticket.resolved_at,
            closed_at=ticket.closed_at,
            rating=ticket.rating,
            rating_comment=ticket.rating_comment,
            rated_at=ticket.rated_at,
            escalation_history=[
                EscalationRecordResponse.from_event(e) for e in ticket.escalation_history
            ],
            version=ticket.version,
        )


class MessageResponse(BaseModel):
    id: str
    ticket_id: str
    author_id: str
    body: str
    is_internal: bool
    is_system: bool
    attachment_ids: List[str]
    created_at: datetime

    @classmethod
    def from_entity(cls, message: Message) -> "MessageResponse":
        return cls(
            id=message.id,
            ticket_id=message.ticket_id,
            author_id=message.author_id,
            body=message.body,
            is_internal=message.is_internal,
            is_system=message.is_system,
            attachment_ids=list(message.attachment_ids),
            created_at=message.created_at,
        )


class TransitionResponse(BaseModel):
    """Ticket after a transition plus the types of the events it emitted."""
    ticket: TicketResponse
    changed: bool
    events: List[str] = Field(default_factory=list)


class IntakeResponse(BaseModel):
    """Result of filing a ticket."""
    ticket: TicketResponse
    duplicate_of: Optional[str] = None
    similarity: Optional[float] = None
    duplicate_check_performed: bool = True


class TimelineEntryResponse(BaseModel):
    type: str
    timestamp: datetime
    data: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_entry(cls, entry: TimelineEntry) -> "TimelineEntryResponse":
        return cls(type=entry.kind, timestamp=entry.timestamp, data=dict(entry.data))
