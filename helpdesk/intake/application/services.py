"""
Intake Application Services
===========================

Ticket creation: embed the text, look for a duplicate among the open
tickets of the same department, then either create a pre-linked duplicate
or a fresh OPEN ticket with its SLA clock started.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from helpdesk.access.domain import OrgUnit, Principal
from helpdesk.config import EscalationUrgency, Priority, TicketCategory
from helpdesk.core import ConcurrentModification, DetectorUnavailable
from helpdesk.intake.domain import DuplicateDetector, DuplicateMatch
from helpdesk.shared.infrastructure.logging import get_logger
from helpdesk.tickets.application import ITicketRepository, TicketService
from helpdesk.tickets.domain import (
    DomainEvent, EmbeddingVector, Ticket, format_ticket_number
)

logger = get_logger(__name__)


class IEmbeddingProvider(ABC):
    """Interface for the external text-embedding call."""

    @property
    @abstractmethod
    def model(self) -> str:
        """Pinned model identity stamped on every vector."""

    @abstractmethod
    async def embed(self, text: str) -> EmbeddingVector:
        """
        Embed text.

        Raises:
            DetectorUnavailable: provider unreachable or returned garbage
        """


@dataclass
class IntakeResult:
    """Outcome of filing a ticket."""
    ticket: Ticket
    events: List[DomainEvent] = field(default_factory=list)
    duplicate_of: Optional[str] = None
    similarity: Optional[float] = None
    duplicate_check_performed: bool = True


class TicketIntakeService:
    """
    Orchestrates ticket creation.

    Fails open: if the embedding call fails the ticket is created without
    duplicate checking and a warning is logged.
    """

    def __init__(
        self,
        repository: ITicketRepository,
        ticket_service: TicketService,
        detector: DuplicateDetector,
        embedding_provider: IEmbeddingProvider
    ):
        self._repo = repository
        self._ticket_service = ticket_service
        self._state_machine = ticket_service.state_machine
        self._detector = detector
        self._embedding_provider = embedding_provider

    async def submit(
        self,
        actor: Principal,
        title: str,
        description: str,
        category: TicketCategory,
        priority: Priority,
        scope: OrgUnit,
        urgency: Optional[EscalationUrgency] = None,
        tags: Sequence[str] = (),
        is_anonymous: bool = False
    ) -> IntakeResult:
        """
        File a new ticket.

        Args:
            actor: Authenticated requester
            scope: Org unit the ticket belongs to
            urgency: Explicit escalation urgency; derived from priority if None

        Returns:
            IntakeResult with the stored ticket and the published events
        """
        embedding = await self._embed(f"{title}\n\n{description}", actor)
        match = await self._find_duplicate(embedding, scope) if embedding else None

        ticket_id = format_ticket_number(await self._repo.next_ticket_sequence())
        now = self._ticket_service.now()

        if match is not None:
            result = self._state_machine.create_linked_duplicate(
                ticket_id, actor, title, description, category, priority, scope,
                parent=match.ticket,
                similarity=match.similarity,
                embedding_model=match.model,
                now=now,
                urgency=urgency,
                tags=tags,
                is_anonymous=is_anonymous,
            )
        else:
            result = self._state_machine.create(
                ticket_id, actor, title, description, category, priority, scope,
                now=now,
                urgency=urgency,
                tags=tags,
                is_anonymous=is_anonymous,
            )

        ticket = await self._repo.create(result.ticket, embedding)
        events = list(result.events)

        if ticket.is_duplicate:
            # The parent may have moved between the match and the insert
            try:
                synced = await self._ticket_service.sync_duplicate(ticket.id)
            except ConcurrentModification as e:
                logger.error(
                    "Failed to mirror parent onto new duplicate",
                    extra={"ticket_id": ticket.id, "parent_ticket_id": ticket.linked_duplicate_of,
                           "error": str(e)}
                )
            else:
                ticket = synced.ticket
                events.extend(synced.events)

        await self._ticket_service.publish(events)

        logger.info(
            "Ticket linked as duplicate" if match else "Ticket created",
            extra={
                "ticket_id": ticket.id,
                "status": ticket.status.value,
                "priority": ticket.priority.value,
                "department_id": scope.department_id,
                "duplicate_of": match.ticket.id if match else None,
                "similarity": round(match.similarity, 4) if match else None,
            }
        )

        return IntakeResult(
            ticket=ticket,
            events=events,
            duplicate_of=match.ticket.id if match else None,
            similarity=match.similarity if match else None,
            duplicate_check_performed=embedding is not None,
        )

    async def _embed(self, text: str, actor: Principal) -> Optional[EmbeddingVector]:
        try:
            return await self._embedding_provider.embed(text)
        except DetectorUnavailable as e:
            logger.warning(
                "Duplicate detection unavailable",
                extra={"error": str(e), "actor_id": actor.user_id}
            )
            return None

    async def _find_duplicate(
        self,
        embedding: EmbeddingVector,
        scope: OrgUnit
    ) -> Optional[DuplicateMatch]:
        # Duplicate search never crosses departments
        if scope.department_id is None:
            return None

        pool = await self._repo.list_open_tickets_in_scope(scope.department_id)
        match = self._detector.find(embedding, pool)
        if match is None:
            return None

        # The pool is a snapshot; link against the parent's current state
        parent = await self._repo.get(match.ticket.id)
        if parent is None or not parent.is_active or parent.is_duplicate:
            return None
        return DuplicateMatch(ticket=parent, similarity=match.similarity, model=match.model)
