"""
Ticket Domain Entities
======================

Pure Python domain entities for the ticket lifecycle.

A Ticket exclusively owns its messages and its escalation history; both are
append-only. Tickets are never deleted: CLOSED and REJECTED are terminal
but retained.
"""

import copy
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Tuple
from uuid import uuid4

from helpdesk.access.domain import OrgUnit
from helpdesk.config import (
    TicketStatus, Priority, EscalationUrgency, TicketCategory,
    ACTIVE_STATUSES, DEADLINE_FREE_STATUSES, TERMINAL_STATUSES,
    MAX_ESCALATION_LEVEL, TICKET_NUMBER_PREFIX, AUTHORITY_LEVELS,
)
from helpdesk.core import ValidationException
from helpdesk.tickets.domain.events import EscalationEvent
from helpdesk.tickets.domain.routing import role_for_level

MESSAGE_MAX_LENGTH = 5000
RATING_RANGE = (1, 5)
RATING_COMMENT_MAX_LENGTH = 1000


def format_ticket_number(sequence: int) -> str:
    """Render a repository sequence as a ticket number, e.g. TKT-000042."""
    return f"{TICKET_NUMBER_PREFIX}-{sequence:06d}"


@dataclass(frozen=True)
class EmbeddingVector:
    """
    A text embedding tagged with the model that produced it.

    Vectors from different models are never comparable.
    """
    values: Tuple[float, ...]
    model: str

    @property
    def dimension(self) -> int:
        return len(self.values)


@dataclass(frozen=True)
class Message:
    """A single entry in a ticket's conversation thread. Never mutated."""

    ticket_id: str
    author_id: str
    body: str
    created_at: datetime
    is_internal: bool = False
    is_system: bool = False
    attachment_ids: Tuple[str, ...] = ()
    id: str = field(default_factory=lambda: str(uuid4()))

    def __post_init__(self):
        length = len(self.body.strip())
        if length < 1 or len(self.body) > MESSAGE_MAX_LENGTH:
            raise ValidationException(
                f"Message body must be 1-{MESSAGE_MAX_LENGTH} characters",
                {"length": len(self.body)}
            )


@dataclass
class Ticket:
    """
    Ticket entity.

    Mutated only through TicketStateMachine, which always works on a clone
    so a failed transition leaves the original untouched.
    """

    id: str
    title: str
    description: str
    category: TicketCategory
    priority: Priority
    urgency: EscalationUrgency
    scope: OrgUnit
    creator_id: str
    status: TicketStatus
    created_at: datetime
    updated_at: datetime

    escalation_level: int = 0
    deadline: Optional[datetime] = None
    assignee_id: Optional[str] = None
    linked_duplicate_of: Optional[str] = None

    resolved_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None
    first_response_at: Optional[datetime] = None

    # Set once MaxEscalationReached was raised for the current deadline
    escalation_exhausted: bool = False

    is_anonymous: bool = False
    tags: List[str] = field(default_factory=list)

    # Requester feedback, once, after resolution
    rating: Optional[int] = None
    rating_comment: Optional[str] = None
    rated_at: Optional[datetime] = None

    messages: List[Message] = field(default_factory=list)
    escalation_history: List[EscalationEvent] = field(default_factory=list)

    version: int = 0

    def __post_init__(self):
        """Validate ticket on initialization."""
        if not 0 <= self.escalation_level <= MAX_ESCALATION_LEVEL:
            raise ValueError(f"escalation_level must be within 0..{MAX_ESCALATION_LEVEL}")

        if self.updated_at < self.created_at:
            raise ValueError("updated_at cannot be before created_at")

        if self.linked_duplicate_of is not None:
            if self.linked_duplicate_of == self.id:
                raise ValueError("a ticket cannot be a duplicate of itself")
            if self.deadline is not None:
                raise ValueError("linked duplicates carry no deadline")
        elif (self.deadline is None) != (self.status in DEADLINE_FREE_STATUSES):
            raise ValueError(
                f"deadline must be null exactly when status is one of "
                f"{[s.value for s in DEADLINE_FREE_STATUSES]}"
            )

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def is_duplicate(self) -> bool:
        return self.linked_duplicate_of is not None

    @property
    def authority(self) -> str:
        return AUTHORITY_LEVELS[self.escalation_level]

    @property
    def routed_role(self) -> str:
        return role_for_level(self.category, self.escalation_level)

    @property
    def department_id(self) -> Optional[str]:
        return self.scope.department_id

    def is_overdue(self, now: datetime) -> bool:
        return self.deadline is not None and self.deadline <= now

    def clone(self) -> "Ticket":
        """Deep copy for copy-on-write transitions."""
        return copy.deepcopy(self)
