"""
Ticket State Machine
====================

Validates and applies ticket lifecycle transitions.

Every operation works on a clone of the ticket it is given and returns a
TransitionResult carrying the new ticket and the events to publish. A
failed check raises before anything is touched, so callers never observe
partial updates.

Transition graph::

    OPEN ──START──▶ IN_PROGRESS ──RESOLVE──▶ RESOLVED ──CLOSE──▶ CLOSED
     │                 ▲   │  ▲                  │
     │                 │   │  └──────REOPEN──────┘
     │     REQUESTER_REPLY │
     │                 │   ▼
     ├─REQUEST_INFO─▶ PENDING_INFO ──ESCALATE──▶ ESCALATED ──ASSIGN──▶ IN_PROGRESS
     │
     └──REJECT──▶ REJECTED

SLA breaches escalate from any active status; see ``escalate``.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, FrozenSet, List, Optional, Sequence

from helpdesk.access.domain import OrgUnit, PermissionModel, Principal
from helpdesk.config import (
    ACTIVE_STATUSES, AUTHORITY_LEVELS, DEADLINE_FREE_STATUSES, MAX_ESCALATION_LEVEL,
    EscalationTrigger, EscalationUrgency, Priority, TicketCategory, TicketStatus,
)
from helpdesk.core import (
    InvalidTransition, TransitionExpired, Unauthorized, ValidationException
)
from helpdesk.shared.infrastructure.logging import get_logger
from helpdesk.sla.domain import ISLAPolicyProvider
from helpdesk.tickets.domain.entities import (
    RATING_COMMENT_MAX_LENGTH, RATING_RANGE, Message, Ticket,
)
from helpdesk.tickets.domain.events import (
    DomainEvent, DuplicateLinked, EscalationEvent, MaxEscalationReached,
    MessagePosted, TicketCreated, TicketRated, TicketReassigned, TicketStatusChanged,
)

logger = get_logger(__name__)

TITLE_LENGTH = (5, 200)
DESCRIPTION_LENGTH = (20, 5000)
STAFF_CAPABILITY = "ticket:update"


class TicketAction(str, Enum):
    """Named transitions a caller may request."""
    START = "START"
    REQUEST_INFO = "REQUEST_INFO"
    REQUESTER_REPLY = "REQUESTER_REPLY"
    ESCALATE = "ESCALATE"
    ASSIGN = "ASSIGN"
    RESOLVE = "RESOLVE"
    CLOSE = "CLOSE"
    REOPEN = "REOPEN"
    REJECT = "REJECT"


@dataclass(frozen=True)
class TransitionRule:
    """Source states, target state and the capabilities (any of) required."""
    action: TicketAction
    sources: FrozenSet[TicketStatus]
    target: TicketStatus
    capabilities: tuple = ()
    system_only: bool = False


TRANSITION_RULES: Dict[TicketAction, TransitionRule] = {
    rule.action: rule for rule in (
        TransitionRule(
            TicketAction.START,
            frozenset({TicketStatus.OPEN}),
            TicketStatus.IN_PROGRESS,
            ("ticket:update",),
        ),
        TransitionRule(
            TicketAction.REQUEST_INFO,
            frozenset({TicketStatus.OPEN, TicketStatus.IN_PROGRESS}),
            TicketStatus.PENDING_INFO,
            ("ticket:update",),
        ),
        TransitionRule(
            TicketAction.REQUESTER_REPLY,
            frozenset({TicketStatus.PENDING_INFO}),
            TicketStatus.IN_PROGRESS,
            system_only=True,
        ),
        TransitionRule(
            TicketAction.ESCALATE,
            frozenset({TicketStatus.IN_PROGRESS, TicketStatus.PENDING_INFO}),
            TicketStatus.ESCALATED,
            ("ticket:escalate",),
        ),
        TransitionRule(
            TicketAction.ASSIGN,
            frozenset({TicketStatus.ESCALATED}),
            TicketStatus.IN_PROGRESS,
            ("ticket:assign",),
        ),
        TransitionRule(
            TicketAction.RESOLVE,
            frozenset({TicketStatus.IN_PROGRESS, TicketStatus.ESCALATED}),
            TicketStatus.RESOLVED,
            ("ticket:resolve",),
        ),
        TransitionRule(
            TicketAction.CLOSE,
            frozenset({TicketStatus.RESOLVED}),
            TicketStatus.CLOSED,
            ("ticket:close",),
        ),
        TransitionRule(
            TicketAction.REOPEN,
            frozenset({TicketStatus.RESOLVED}),
            TicketStatus.IN_PROGRESS,
            ("ticket:reopen",),
        ),
        TransitionRule(
            TicketAction.REJECT,
            frozenset({TicketStatus.OPEN}),
            TicketStatus.REJECTED,
            ("ticket:resolve", "ticket:close"),
        ),
    )
}

# SLA breaches move any active ticket up a level, OPEN included
SLA_ESCALATION_SOURCES = frozenset(ACTIVE_STATUSES)


@dataclass
class TransitionResult:
    """
    Outcome of a state machine operation.

    `changed` is False when the ticket needs no persisting (idempotent
    re-escalation, manual escalation at the top level).
    """
    ticket: Ticket
    events: List[DomainEvent] = field(default_factory=list)
    changed: bool = True


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _system_note(ticket: Ticket, body: str, now: datetime) -> Message:
    """Internal audit message authored by the system."""
    return Message(
        ticket_id=ticket.id,
        author_id=Principal.system().user_id,
        body=body,
        created_at=now,
        is_internal=True,
        is_system=True,
    )


def _check_length(name: str, value: str, bounds: tuple) -> None:
    low, high = bounds
    if not low <= len(value.strip()) <= high:
        raise ValidationException(
            f"{name} must be {low}-{high} characters",
            {"field": name, "length": len(value)}
        )


class TicketStateMachine:
    """
    Central authority over ticket status, level and deadline.

    Check order for every transition: linked-duplicate guard, authorization,
    source state, reopen window.
    """

    def __init__(self, policy_provider: ISLAPolicyProvider):
        self._policy_provider = policy_provider

    # ========== Creation ==========

    def create(
        self,
        ticket_id: str,
        actor: Principal,
        title: str,
        description: str,
        category: TicketCategory,
        priority: Priority,
        scope: OrgUnit,
        now: Optional[datetime] = None,
        urgency: Optional[EscalationUrgency] = None,
        tags: Sequence[str] = (),
        is_anonymous: bool = False,
    ) -> TransitionResult:
        """Create a fresh OPEN ticket at level 0 with its SLA clock started."""
        now = now or _utcnow()
        self._require_creator(actor, ticket_id)
        _check_length("title", title, TITLE_LENGTH)
        _check_length("description", description, DESCRIPTION_LENGTH)

        policy = self._policy_provider.get_policy()
        urgency = urgency or policy.urgency_for(priority)

        ticket = Ticket(
            id=ticket_id,
            title=title.strip(),
            description=description.strip(),
            category=category,
            priority=priority,
            urgency=urgency,
            scope=scope,
            creator_id=actor.user_id,
            status=TicketStatus.OPEN,
            created_at=now,
            updated_at=now,
            escalation_level=0,
            deadline=policy.deadline_from(now, urgency),
            is_anonymous=is_anonymous,
            tags=list(tags),
        )
        event = TicketCreated(
            ticket_id=ticket.id,
            occurred_at=now,
            priority=priority,
            urgency=urgency,
            category=category,
            escalation_level=0,
            deadline=ticket.deadline,
            creator_id=actor.user_id,
        )
        return TransitionResult(ticket=ticket, events=[event])

    def create_linked_duplicate(
        self,
        ticket_id: str,
        actor: Principal,
        title: str,
        description: str,
        category: TicketCategory,
        priority: Priority,
        scope: OrgUnit,
        parent: Ticket,
        similarity: float,
        embedding_model: str,
        now: Optional[datetime] = None,
        urgency: Optional[EscalationUrgency] = None,
        tags: Sequence[str] = (),
        is_anonymous: bool = False,
    ) -> TransitionResult:
        """
        Create a ticket pre-linked to `parent`.

        The duplicate mirrors the parent's status and level and carries no
        deadline of its own; only DuplicateLinked is emitted.
        """
        now = now or _utcnow()
        self._require_creator(actor, ticket_id)
        _check_length("title", title, TITLE_LENGTH)
        _check_length("description", description, DESCRIPTION_LENGTH)
        if parent.is_duplicate:
            raise InvalidTransition(
                parent.id, parent.status.value, "LINK_DUPLICATE",
                "cannot link to a ticket that is itself a duplicate"
            )

        policy = self._policy_provider.get_policy()
        ticket = Ticket(
            id=ticket_id,
            title=title.strip(),
            description=description.strip(),
            category=category,
            priority=priority,
            urgency=urgency or policy.urgency_for(priority),
            scope=scope,
            creator_id=actor.user_id,
            status=parent.status,
            created_at=now,
            updated_at=now,
            escalation_level=parent.escalation_level,
            deadline=None,
            linked_duplicate_of=parent.id,
            is_anonymous=is_anonymous,
            tags=list(tags),
        )
        event = DuplicateLinked(
            ticket_id=ticket.id,
            occurred_at=now,
            parent_ticket_id=parent.id,
            similarity=similarity,
            embedding_model=embedding_model,
        )
        return TransitionResult(ticket=ticket, events=[event])

    # ========== Transitions ==========

    def apply(
        self,
        ticket: Ticket,
        action: TicketAction,
        actor: Principal,
        now: Optional[datetime] = None,
        assignee_id: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> TransitionResult:
        """
        Apply a named transition.

        Raises:
            InvalidTransition: ticket is a linked duplicate, or the current
                status does not permit the action
            Unauthorized: actor lacks the capability within the ticket scope
            TransitionExpired: reopen attempted outside the reopen window
        """
        if action == TicketAction.ESCALATE:
            return self.escalate(
                ticket, actor, EscalationTrigger.MANUAL,
                reason or "Manual escalation", now
            )

        now = now or _utcnow()
        rule = TRANSITION_RULES[action]
        self._guard_not_duplicate(ticket, action.value)
        self._authorize(ticket, actor, rule.capabilities, rule.system_only)
        self._guard_source(ticket, action.value, rule.sources)

        policy = self._policy_provider.get_policy()
        if action == TicketAction.REOPEN:
            expires_at = (ticket.resolved_at or ticket.updated_at) + policy.reopen_window
            if now > expires_at:
                raise TransitionExpired(ticket.id, expires_at.isoformat())

        updated = ticket.clone()
        updated.status = rule.target
        updated.updated_at = now

        if action == TicketAction.START and updated.assignee_id is None and not actor.is_system:
            updated.assignee_id = actor.user_id
        elif action == TicketAction.ASSIGN:
            updated.assignee_id = assignee_id or actor.user_id
        elif action == TicketAction.RESOLVE:
            updated.resolved_at = now
        elif action == TicketAction.REOPEN:
            updated.resolved_at = None
        elif action in (TicketAction.CLOSE, TicketAction.REJECT):
            updated.closed_at = now

        self._recompute_deadline(updated, now)

        event = TicketStatusChanged(
            ticket_id=updated.id,
            occurred_at=now,
            from_status=ticket.status,
            to_status=updated.status,
            actor_id=actor.user_id,
            assignee_id=updated.assignee_id,
            deadline=updated.deadline,
            reason=reason,
        )
        return TransitionResult(ticket=updated, events=[event])

    def escalate(
        self,
        ticket: Ticket,
        actor: Principal,
        triggered_by: EscalationTrigger,
        reason: str,
        now: Optional[datetime] = None,
    ) -> TransitionResult:
        """
        Move the ticket one level up the authority chain.

        SLA-breach escalation is system-only and idempotent: a ticket whose
        deadline is absent, still in the future, or already reported as
        exhausted is returned unchanged. At level 3 nothing moves; a
        MaxEscalationReached event is emitted instead.

        A successful escalation appends an internal system message naming
        the new authority and the role it is routed to.
        """
        now = now or _utcnow()
        self._guard_not_duplicate(ticket, TicketAction.ESCALATE.value)

        if triggered_by == EscalationTrigger.SLA_BREACH:
            if not actor.is_system:
                raise Unauthorized(actor.user_id, "escalation:sla-breach", ticket.id)
            sources = SLA_ESCALATION_SOURCES
        else:
            rule = TRANSITION_RULES[TicketAction.ESCALATE]
            self._authorize(ticket, actor, rule.capabilities)
            sources = rule.sources

        if triggered_by == EscalationTrigger.SLA_BREACH:
            if (ticket.status not in sources or not ticket.is_overdue(now)
                    or ticket.escalation_exhausted):
                return TransitionResult(ticket=ticket, events=[], changed=False)
        else:
            self._guard_source(ticket, TicketAction.ESCALATE.value, sources)

        if ticket.escalation_level >= MAX_ESCALATION_LEVEL:
            logger.warning(
                "terminal escalation reached",
                extra={
                    "ticket_id": ticket.id,
                    "escalation_level": ticket.escalation_level,
                    "triggered_by": triggered_by.value,
                }
            )
            event = MaxEscalationReached(
                ticket_id=ticket.id,
                occurred_at=now,
                escalation_level=ticket.escalation_level,
                triggered_by=triggered_by,
                reason=reason,
            )
            if triggered_by == EscalationTrigger.MANUAL:
                return TransitionResult(ticket=ticket, events=[event], changed=False)
            updated = ticket.clone()
            updated.escalation_exhausted = True
            return TransitionResult(ticket=updated, events=[event])

        updated = ticket.clone()
        updated.escalation_level = ticket.escalation_level + 1
        updated.status = TicketStatus.ESCALATED
        # Routed to a role; a holder of it claims the ticket with ASSIGN
        updated.assignee_id = None
        updated.updated_at = now
        self._recompute_deadline(updated, now)

        event = EscalationEvent(
            ticket_id=updated.id,
            occurred_at=now,
            from_level=ticket.escalation_level,
            to_level=updated.escalation_level,
            to_authority=AUTHORITY_LEVELS[updated.escalation_level],
            triggered_by=triggered_by,
            reason=reason,
            actor_id=actor.user_id,
            deadline=updated.deadline,
            to_role=updated.routed_role,
        )
        updated.escalation_history.append(event)
        updated.messages.append(_system_note(
            updated,
            f"Ticket escalated from {ticket.authority} to {updated.authority} "
            f"({updated.routed_role}). Reason: {reason}",
            now,
        ))
        return TransitionResult(ticket=updated, events=[event])

    def reassign(
        self,
        ticket: Ticket,
        actor: Principal,
        assignee_id: str,
        reason: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> TransitionResult:
        """Change the assignee within the current level; status is unchanged."""
        now = now or _utcnow()
        self._guard_not_duplicate(ticket, "REASSIGN")
        self._authorize(ticket, actor, ("ticket:assign",))
        self._guard_source(ticket, "REASSIGN", frozenset(ACTIVE_STATUSES))

        updated = ticket.clone()
        updated.assignee_id = assignee_id
        updated.updated_at = now
        note = f"Ticket reassigned to {assignee_id}"
        updated.messages.append(_system_note(updated, f"{note}. Reason: {reason}" if reason else note, now))
        event = TicketReassigned(
            ticket_id=updated.id,
            occurred_at=now,
            from_assignee_id=ticket.assignee_id,
            to_assignee_id=assignee_id,
            actor_id=actor.user_id,
            reason=reason,
        )
        return TransitionResult(ticket=updated, events=[event])

    def mirror_parent(
        self,
        duplicate: Ticket,
        parent: Ticket,
        now: Optional[datetime] = None,
    ) -> TransitionResult:
        """Copy the parent's status and level onto a linked duplicate."""
        now = now or _utcnow()
        if duplicate.linked_duplicate_of != parent.id:
            raise ValidationException(
                f"Ticket {duplicate.id} is not linked to {parent.id}",
                {"ticket_id": duplicate.id, "parent_ticket_id": parent.id}
            )

        level = max(duplicate.escalation_level, parent.escalation_level)
        if duplicate.status == parent.status and duplicate.escalation_level == level:
            return TransitionResult(ticket=duplicate, events=[], changed=False)

        updated = duplicate.clone()
        updated.status = parent.status
        updated.escalation_level = level
        updated.updated_at = now
        if parent.status == TicketStatus.RESOLVED:
            updated.resolved_at = parent.resolved_at
        if parent.status in (TicketStatus.CLOSED, TicketStatus.REJECTED):
            updated.closed_at = parent.closed_at

        events: List[DomainEvent] = []
        if duplicate.status != updated.status:
            events.append(TicketStatusChanged(
                ticket_id=updated.id,
                occurred_at=now,
                from_status=duplicate.status,
                to_status=updated.status,
                actor_id=Principal.system().user_id,
                reason=f"Mirrored from {parent.id}",
            ))
        return TransitionResult(ticket=updated, events=events)

    # ========== Feedback ==========

    def rate(
        self,
        ticket: Ticket,
        actor: Principal,
        rating: int,
        comment: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> TransitionResult:
        """
        Record the requester's rating of a resolved or closed ticket.

        Raises:
            Unauthorized: actor is not the requester
            InvalidTransition: ticket is not RESOLVED/CLOSED, or already rated
            ValidationException: rating outside 1-5 or comment too long
        """
        now = now or _utcnow()
        if actor.user_id != ticket.creator_id:
            raise Unauthorized(actor.user_id, "ticket:rate", ticket.id,
                               {"reason": "only the requester can rate a ticket"})
        if ticket.status not in (TicketStatus.RESOLVED, TicketStatus.CLOSED):
            raise InvalidTransition(ticket.id, ticket.status.value, "RATE",
                                    "only resolved or closed tickets can be rated")
        if ticket.rated_at is not None:
            raise InvalidTransition(ticket.id, ticket.status.value, "RATE",
                                    "ticket has already been rated")

        low, high = RATING_RANGE
        if not low <= rating <= high:
            raise ValidationException(f"rating must be {low}-{high}", {"rating": rating})
        if comment is not None and len(comment) > RATING_COMMENT_MAX_LENGTH:
            raise ValidationException(
                f"rating comment must be at most {RATING_COMMENT_MAX_LENGTH} characters",
                {"length": len(comment)}
            )

        updated = ticket.clone()
        updated.rating = rating
        updated.rating_comment = comment
        updated.rated_at = now
        updated.updated_at = now
        event = TicketRated(ticket_id=ticket.id, occurred_at=now, rating=rating, actor_id=actor.user_id)
        return TransitionResult(ticket=updated, events=[event])

    # ========== Messages ==========

    def add_message(
        self,
        ticket: Ticket,
        actor: Principal,
        body: str,
        is_internal: bool = False,
        attachment_ids: Sequence[str] = (),
        now: Optional[datetime] = None,
    ) -> TransitionResult:
        """
        Append a message to the ticket thread.

        A requester reply on a PENDING_INFO ticket moves it back to
        IN_PROGRESS as a system transition. The first public staff reply
        stamps ``first_response_at``.
        """
        now = now or _utcnow()
        if ticket.is_terminal:
            raise InvalidTransition(
                ticket.id, ticket.status.value, "POST_MESSAGE",
                "cannot post messages on a closed or rejected ticket"
            )

        is_requester = actor.user_id == ticket.creator_id
        is_staff = self.is_staff(ticket, actor)
        if not (is_requester or is_staff):
            raise Unauthorized(actor.user_id, STAFF_CAPABILITY, ticket.id)
        if is_internal and not is_staff:
            raise Unauthorized(actor.user_id, STAFF_CAPABILITY, ticket.id,
                               {"reason": "internal notes are staff-only"})

        message = Message(
            ticket_id=ticket.id,
            author_id=actor.user_id,
            body=body,
            created_at=now,
            is_internal=is_internal,
            attachment_ids=tuple(attachment_ids),
        )
        updated = ticket.clone()
        updated.messages.append(message)
        updated.updated_at = now
        if is_staff and not is_requester and not is_internal and updated.first_response_at is None:
            updated.first_response_at = now

        events: List[DomainEvent] = [MessagePosted(
            ticket_id=ticket.id,
            occurred_at=now,
            message_id=message.id,
            author_id=actor.user_id,
            is_internal=is_internal,
        )]

        if is_requester and ticket.status == TicketStatus.PENDING_INFO and not ticket.is_duplicate:
            reply = self.apply(
                updated, TicketAction.REQUESTER_REPLY, Principal.system(), now,
                reason="Requester replied"
            )
            updated = reply.ticket
            events.extend(reply.events)

        return TransitionResult(ticket=updated, events=events)

    def visible_messages(self, ticket: Ticket, actor: Principal) -> List[Message]:
        """Messages the actor may read; internal notes are staff-only."""
        if self.is_staff(ticket, actor):
            return list(ticket.messages)
        return [m for m in ticket.messages if not m.is_internal]

    @staticmethod
    def is_staff(ticket: Ticket, actor: Principal) -> bool:
        return actor.is_system or PermissionModel.allow(
            actor.roles, STAFF_CAPABILITY, ticket.scope, actor.scope
        )

    # ========== Guards ==========

    @staticmethod
    def _require_creator(actor: Principal, ticket_id: str) -> None:
        if not actor.is_system and not PermissionModel.has_capability(actor.roles, "ticket:create"):
            raise Unauthorized(actor.user_id, "ticket:create", ticket_id)

    @staticmethod
    def _guard_not_duplicate(ticket: Ticket, action: str) -> None:
        if ticket.is_duplicate:
            raise InvalidTransition(
                ticket.id, ticket.status.value, action,
                f"ticket is linked as a duplicate of {ticket.linked_duplicate_of}"
            )

    @staticmethod
    def _authorize(
        ticket: Ticket,
        actor: Principal,
        capabilities: Sequence[str],
        system_only: bool = False
    ) -> None:
        if actor.is_system:
            return
        if system_only or not capabilities:
            raise Unauthorized(actor.user_id, "system", ticket.id)
        for capability in capabilities:
            if PermissionModel.allow(actor.roles, capability, ticket.scope, actor.scope):
                return
        raise Unauthorized(actor.user_id, " | ".join(capabilities), ticket.id)

    @staticmethod
    def _guard_source(ticket: Ticket, action: str, sources: FrozenSet[TicketStatus]) -> None:
        if ticket.status not in sources:
            raise InvalidTransition(ticket.id, ticket.status.value, action)

    def _recompute_deadline(self, ticket: Ticket, now: datetime) -> None:
        """Restart the SLA clock on IN_PROGRESS/ESCALATED; clear it once resolved."""
        if ticket.status in DEADLINE_FREE_STATUSES:
            ticket.deadline = None
        elif ticket.status in (TicketStatus.IN_PROGRESS, TicketStatus.ESCALATED):
            policy = self._policy_provider.get_policy()
            ticket.deadline = policy.deadline_from(now, ticket.urgency)
            ticket.escalation_exhausted = False
