"""
Ticket Application Services
===========================

Application services orchestrate the state machine, the repository and the
event sink.

Following SOLID principles:
- Single Responsibility: the state machine decides, the service persists
- Dependency Inversion: depend on repository and sink abstractions
"""

from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Callable, List, Optional, Sequence, Tuple

from helpdesk.access.domain import PermissionModel, Principal
from helpdesk.config import EscalationTrigger
from helpdesk.core import (
    ConcurrentModification, EventDeliveryException, ResourceNotFoundException,
    Unauthorized,
)
from helpdesk.shared.infrastructure.logging import get_logger
from helpdesk.tickets.domain import (
    DomainEvent, EmbeddingVector, EscalationEvent, Message, Ticket,
    TicketAction, TicketStateMachine, TimelineEntry, TransitionResult,
    build_timeline,
)

logger = get_logger(__name__)

Clock = Callable[[], datetime]

# Save attempts per duplicate before a mirroring conflict is given up on
MIRROR_ATTEMPTS = 3


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ========== Repository Interfaces (Dependency Inversion) ==========

class ITicketRepository(ABC):
    """Interface for ticket persistence."""

    @abstractmethod
    async def get(self, ticket_id: str) -> Optional[Ticket]:
        """Get ticket by number, with messages and escalation history."""

    @abstractmethod
    async def create(self, ticket: Ticket, embedding: Optional[EmbeddingVector] = None) -> Ticket:
        """Insert a new ticket and its text embedding."""

    @abstractmethod
    async def save(self, ticket: Ticket) -> Ticket:
        """
        Compare-and-swap on ``ticket.version``.

        Returns:
            The stored ticket with its version incremented

        Raises:
            ConcurrentModification: stored version differs from ticket.version
        """

    @abstractmethod
    async def list_expired_deadlines(self, now: datetime) -> List[Ticket]:
        """Active tickets whose deadline <= now, excluding exhausted ones."""

    @abstractmethod
    async def list_open_tickets_in_scope(
        self, department_id: str
    ) -> List[Tuple[Ticket, EmbeddingVector]]:
        """Active tickets of one department that have a stored embedding."""

    @abstractmethod
    async def list_duplicates_of(self, ticket_id: str) -> List[Ticket]:
        """Tickets whose linked_duplicate_of points at ticket_id."""

    @abstractmethod
    async def next_ticket_sequence(self) -> int:
        """Allocate the next ticket number sequence value."""


class IEventSink(ABC):
    """Interface for publishing domain events (at-least-once)."""

    @abstractmethod
    async def publish(self, events: Sequence[DomainEvent]) -> None:
        """Deliver events to notification/analytics collaborators."""


# ========== Application Services ==========

class TicketService:
    """
    Repository-backed ticket transitions.

    Each operation loads the ticket, lets the state machine produce a new
    copy, and saves it with compare-and-swap. A lost race is retried once
    against the freshly loaded post-state; a second loss propagates.
    Events are published only after the save commits.
    """

    def __init__(
        self,
        repository: ITicketRepository,
        state_machine: TicketStateMachine,
        event_sink: IEventSink,
        clock: Optional[Clock] = None
    ):
        self._repo = repository
        self._state_machine = state_machine
        self._event_sink = event_sink
        self._clock = clock or utcnow

    @property
    def state_machine(self) -> TicketStateMachine:
        return self._state_machine

    def now(self) -> datetime:
        return self._clock()

    # ========== Queries ==========

    async def get_ticket(self, ticket_id: str, actor: Principal) -> Ticket:
        ticket = await self._load(ticket_id)
        self._authorize_read(ticket, actor)
        return ticket

    async def list_messages(self, ticket_id: str, actor: Principal) -> List[Message]:
        ticket = await self.get_ticket(ticket_id, actor)
        return self._state_machine.visible_messages(ticket, actor)

    async def list_duplicates(self, ticket_id: str, actor: Principal) -> List[Ticket]:
        await self.get_ticket(ticket_id, actor)
        return await self._repo.list_duplicates_of(ticket_id)

    async def get_timeline(self, ticket_id: str, actor: Principal) -> List[TimelineEntry]:
        """Timeline of the ticket; system messages only appear for staff."""
        ticket = await self.get_ticket(ticket_id, actor)
        return build_timeline(ticket, self._state_machine.visible_messages(ticket, actor))

    def can_see_requester(self, ticket: Ticket, actor: Principal) -> bool:
        """Anonymous tickets hide the requester from everyone but staff."""
        return (
            not ticket.is_anonymous
            or actor.user_id == ticket.creator_id
            or self._state_machine.is_staff(ticket, actor)
        )

    # ========== Commands ==========

    async def transition(
        self,
        ticket_id: str,
        action: TicketAction,
        actor: Principal,
        assignee_id: Optional[str] = None,
        reason: Optional[str] = None
    ) -> TransitionResult:
        now = self._clock()
        return await self._run(
            ticket_id,
            lambda t: self._state_machine.apply(t, action, actor, now, assignee_id, reason)
        )

    async def escalate(
        self,
        ticket_id: str,
        actor: Principal,
        reason: str = "Manual escalation"
    ) -> TransitionResult:
        now = self._clock()
        return await self._run(
            ticket_id,
            lambda t: self._state_machine.escalate(
                t, actor, EscalationTrigger.MANUAL, reason, now
            )
        )

    async def escalate_for_sla_breach(
        self,
        ticket_id: str,
        now: Optional[datetime] = None,
        reason: str = "SLA breach"
    ) -> TransitionResult:
        """
        System-triggered escalation used by the scheduler.

        The state machine re-checks the deadline against the freshly loaded
        ticket, so a ticket reported expired twice escalates once.
        """
        now = now or self._clock()
        return await self._run(
            ticket_id,
            lambda t: self._state_machine.escalate(
                t, Principal.system(), EscalationTrigger.SLA_BREACH, reason, now
            )
        )

    async def reassign(
        self,
        ticket_id: str,
        actor: Principal,
        assignee_id: str,
        reason: Optional[str] = None
    ) -> TransitionResult:
        now = self._clock()
        return await self._run(
            ticket_id,
            lambda t: self._state_machine.reassign(t, actor, assignee_id, reason, now)
        )

    async def post_message(
        self,
        ticket_id: str,
        actor: Principal,
        body: str,
        is_internal: bool = False,
        attachment_ids: Sequence[str] = ()
    ) -> Message:
        now = self._clock()
        result = await self._run(
            ticket_id,
            lambda t: self._state_machine.add_message(
                t, actor, body, is_internal, attachment_ids, now
            )
        )
        return result.ticket.messages[-1]

    async def rate(
        self,
        ticket_id: str,
        actor: Principal,
        rating: int,
        comment: Optional[str] = None
    ) -> TransitionResult:
        now = self._clock()
        return await self._run(
            ticket_id,
            lambda t: self._state_machine.rate(t, actor, rating, comment, now)
        )

    async def sync_duplicate(self, duplicate_id: str) -> TransitionResult:
        """
        Bring a linked duplicate in line with its parent's stored state.

        Both tickets are re-read on every attempt, so the duplicate ends up
        mirroring the latest committed parent whichever of several concurrent
        mirrors saves last. Events are returned, not published.

        Raises:
            ConcurrentModification: lost the save race MIRROR_ATTEMPTS times
        """
        attempt = 0
        while True:
            attempt += 1
            duplicate = await self._load(duplicate_id)
            if not duplicate.is_duplicate:
                return TransitionResult(ticket=duplicate, events=[], changed=False)
            parent = await self._load(duplicate.linked_duplicate_of)
            result = self._state_machine.mirror_parent(duplicate, parent, self._clock())
            if not result.changed:
                return result
            try:
                saved = await self._repo.save(result.ticket)
            except ConcurrentModification:
                if attempt >= MIRROR_ATTEMPTS:
                    raise
                continue
            return TransitionResult(ticket=saved, events=result.events, changed=True)

    async def publish(self, events: Sequence[DomainEvent]) -> None:
        """Publish committed events; delivery failures never undo a commit."""
        if not events:
            return
        try:
            await self._event_sink.publish(events)
        except EventDeliveryException as e:
            logger.error(
                "Event delivery failed",
                extra={
                    "error": str(e),
                    "event_types": [ev.event_type for ev in events],
                    "ticket_ids": sorted({ev.ticket_id for ev in events}),
                }
            )

    # ========== Internals ==========

    async def _load(self, ticket_id: str) -> Ticket:
        ticket = await self._repo.get(ticket_id)
        if ticket is None:
            raise ResourceNotFoundException("Ticket", ticket_id)
        return ticket

    def _authorize_read(self, ticket: Ticket, actor: Principal) -> None:
        if (
            actor.user_id == ticket.creator_id
            or self._state_machine.is_staff(ticket, actor)
            or PermissionModel.allow(actor.roles, "ticket:read:all", ticket.scope, actor.scope)
        ):
            return
        raise Unauthorized(actor.user_id, "ticket:read", ticket.id)

    async def _run(
        self,
        ticket_id: str,
        operation: Callable[[Ticket], TransitionResult]
    ) -> TransitionResult:
        result = await self._apply_with_retry(ticket_id, operation)
        events = list(result.events)
        if result.changed and not result.ticket.is_duplicate:
            events.extend(await self._mirror_duplicates(result.ticket))
        await self.publish(events)
        return result

    async def _apply_with_retry(
        self,
        ticket_id: str,
        operation: Callable[[Ticket], TransitionResult]
    ) -> TransitionResult:
        try:
            return await self._attempt(ticket_id, operation)
        except ConcurrentModification as e:
            logger.info(
                "Concurrent modification, retrying once",
                extra={"ticket_id": ticket_id, "expected_version": e.expected_version}
            )
            return await self._attempt(ticket_id, operation)

    async def _attempt(
        self,
        ticket_id: str,
        operation: Callable[[Ticket], TransitionResult]
    ) -> TransitionResult:
        ticket = await self._load(ticket_id)
        result = operation(ticket)
        if not result.changed:
            return result
        saved = await self._repo.save(result.ticket)

        for event in result.events:
            if isinstance(event, EscalationEvent):
                logger.info(
                    "Ticket escalated",
                    extra={
                        "ticket_id": saved.id,
                        "from_level": event.from_level,
                        "to_level": event.to_level,
                        "to_authority": event.to_authority,
                        "triggered_by": event.triggered_by.value,
                    }
                )
        return TransitionResult(ticket=saved, events=result.events, changed=True)

    async def _mirror_duplicates(self, parent: Ticket) -> List[DomainEvent]:
        """Propagate the parent's stored status and level to linked duplicates."""
        events: List[DomainEvent] = []
        for duplicate in await self._repo.list_duplicates_of(parent.id):
            try:
                result = await self.sync_duplicate(duplicate.id)
            except ConcurrentModification as e:
                logger.error(
                    "Failed to mirror parent onto duplicate",
                    extra={"ticket_id": duplicate.id, "parent_ticket_id": parent.id, "error": str(e)}
                )
                continue
            events.extend(result.events)
        return events
