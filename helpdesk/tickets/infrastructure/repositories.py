"""
Ticket Infrastructure Repositories
==================================

Concrete implementations of ITicketRepository.

Both implementations store a ticket's version and refuse a save whose
version is stale, raising ConcurrentModification.
"""

import asyncio
from contextlib import AbstractAsyncContextManager
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Tuple

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from helpdesk.access.domain import OrgUnit
from helpdesk.config import (
    ACTIVE_STATUSES, EscalationTrigger, EscalationUrgency, Priority,
    TicketCategory, TicketStatus,
)
from helpdesk.core import ConcurrentModification, RepositoryException, ResourceNotFoundException
from helpdesk.infrastructure.database import get_session_context
from helpdesk.tickets.application import ITicketRepository
from helpdesk.tickets.domain import EmbeddingVector, EscalationEvent, Message, Ticket
from helpdesk.tickets.infrastructure.models import (
    EscalationEventModel, MessageModel, TicketModel, TicketSequenceModel,
)

SessionFactory = Callable[[], AbstractAsyncContextManager[AsyncSession]]

_ACTIVE_VALUES = [s.value for s in ACTIVE_STATUSES]


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; everything stored is UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class SQLAlchemyTicketRepository(ITicketRepository):
    """
    SQLAlchemy implementation of the ticket repository.

    Every call runs in its own session so a compare-and-swap commits or
    rolls back as a unit.
    """

    def __init__(self, session_factory: SessionFactory = get_session_context):
        self._session_factory = session_factory

    async def get(self, ticket_id: str) -> Optional[Ticket]:
        async with self._session_factory() as session:
            model = await session.get(TicketModel, ticket_id)
            return self._to_entity(model) if model else None

    async def create(self, ticket: Ticket, embedding: Optional[EmbeddingVector] = None) -> Ticket:
        async with self._session_factory() as session:
            model = TicketModel(
                id=ticket.id,
                created_at=_as_utc(ticket.created_at),
                embedding=list(embedding.values) if embedding else None,
                embedding_model=embedding.model if embedding else None,
                version=ticket.version,
                **self._mutable_fields(ticket),
            )
            session.add(model)
            for message in ticket.messages:
                session.add(self._message_model(message))
            for event in ticket.escalation_history:
                session.add(self._escalation_model(event))
            await session.flush()
        return ticket.clone()

    async def save(self, ticket: Ticket) -> Ticket:
        async with self._session_factory() as session:
            stmt = (
                update(TicketModel)
                .where(TicketModel.id == ticket.id, TicketModel.version == ticket.version)
                .values(version=ticket.version + 1, **self._mutable_fields(ticket))
                .execution_options(synchronize_session=False)
            )
            result = await session.execute(stmt)
            if result.rowcount != 1:
                actual = await session.scalar(
                    select(TicketModel.version).where(TicketModel.id == ticket.id)
                )
                if actual is None:
                    raise ResourceNotFoundException("Ticket", ticket.id)
                raise ConcurrentModification(ticket.id, ticket.version, actual)

            stored_ids = set(await session.scalars(
                select(MessageModel.id).where(MessageModel.ticket_id == ticket.id)
            ))
            for message in ticket.messages:
                if message.id not in stored_ids:
                    session.add(self._message_model(message))

            stored_events = await session.scalar(
                select(func.count()).select_from(EscalationEventModel)
                .where(EscalationEventModel.ticket_id == ticket.id)
            )
            for event in ticket.escalation_history[stored_events:]:
                session.add(self._escalation_model(event))

        saved = ticket.clone()
        saved.version = ticket.version + 1
        return saved

    async def list_expired_deadlines(self, now: datetime) -> List[Ticket]:
        async with self._session_factory() as session:
            stmt = (
                select(TicketModel)
                .where(
                    TicketModel.status.in_(_ACTIVE_VALUES),
                    TicketModel.deadline.is_not(None),
                    TicketModel.deadline <= _as_utc(now),
                    TicketModel.escalation_exhausted.is_(False),
                    TicketModel.linked_duplicate_of.is_(None),
                )
                .order_by(TicketModel.deadline.asc())
            )
            models = (await session.scalars(stmt)).all()
            return [self._to_entity(m) for m in models]

    async def list_open_tickets_in_scope(
        self, department_id: str
    ) -> List[Tuple[Ticket, EmbeddingVector]]:
        async with self._session_factory() as session:
            stmt = (
                select(TicketModel)
                .where(
                    TicketModel.department_id == department_id,
                    TicketModel.status.in_(_ACTIVE_VALUES),
                    TicketModel.embedding.is_not(None),
                    TicketModel.linked_duplicate_of.is_(None),
                )
                .order_by(TicketModel.created_at.desc())
            )
            models = (await session.scalars(stmt)).all()
            # Rows written before none_as_null hold a JSON null
            return [
                (
                    self._to_entity(m),
                    EmbeddingVector(values=tuple(m.embedding), model=m.embedding_model or ""),
                )
                for m in models
                if m.embedding
            ]

    async def list_duplicates_of(self, ticket_id: str) -> List[Ticket]:
        async with self._session_factory() as session:
            stmt = (
                select(TicketModel)
                .where(TicketModel.linked_duplicate_of == ticket_id)
                .order_by(TicketModel.created_at.asc())
            )
            models = (await session.scalars(stmt)).all()
            return [self._to_entity(m) for m in models]

    async def next_ticket_sequence(self) -> int:
        async with self._session_factory() as session:
            row = TicketSequenceModel()
            session.add(row)
            await session.flush()
            if row.id is None:
                raise RepositoryException("Ticket sequence allocation returned no id")
            return row.id

    # ========== Mapping ==========

    @staticmethod
    def _mutable_fields(ticket: Ticket) -> dict:
        return {
            "title": ticket.title,
            "description": ticket.description,
            "category": ticket.category.value,
            "priority": ticket.priority.value,
            "urgency": ticket.urgency.value,
            "status": ticket.status.value,
            "campus_id": ticket.scope.campus_id,
            "college_id": ticket.scope.college_id,
            "department_id": ticket.scope.department_id,
            "creator_id": ticket.creator_id,
            "assignee_id": ticket.assignee_id,
            "escalation_level": ticket.escalation_level,
            "deadline": _as_utc(ticket.deadline),
            "escalation_exhausted": ticket.escalation_exhausted,
            "linked_duplicate_of": ticket.linked_duplicate_of,
            "updated_at": _as_utc(ticket.updated_at),
            "first_response_at": _as_utc(ticket.first_response_at),
            "resolved_at": _as_utc(ticket.resolved_at),
            "closed_at": _as_utc(ticket.closed_at),
            "is_anonymous": ticket.is_anonymous,
            "tags": list(ticket.tags),
            "rating": ticket.rating,
            "rating_comment": ticket.rating_comment,
            "rated_at": _as_utc(ticket.rated_at),
        }

    @staticmethod
    def _message_model(message: Message) -> MessageModel:
        return MessageModel(
            id=message.id,
            ticket_id=message.ticket_id,
            author_id=message.author_id,
            body=message.body,
            is_internal=message.is_internal,
            is_system=message.is_system,
            attachment_ids=list(message.attachment_ids),
            created_at=_as_utc(message.created_at),
        )

    @staticmethod
    def _escalation_model(event: EscalationEvent) -> EscalationEventModel:
        return EscalationEventModel(
            ticket_id=event.ticket_id,
            from_level=event.from_level,
            to_level=event.to_level,
            to_authority=event.to_authority,
            to_role=event.to_role,
            triggered_by=event.triggered_by.value,
            reason=event.reason,
            actor_id=event.actor_id,
            deadline=_as_utc(event.deadline),
            occurred_at=_as_utc(event.occurred_at),
        )

    @staticmethod
    def _to_entity(model: TicketModel) -> Ticket:
        return Ticket(
            id=model.id,
            title=model.title,
            description=model.description,
            category=TicketCategory(model.category),
            priority=Priority(model.priority),
            urgency=EscalationUrgency(model.urgency),
            scope=OrgUnit.from_ids(model.campus_id, model.college_id, model.department_id),
            creator_id=model.creator_id,
            status=TicketStatus(model.status),
            created_at=_as_utc(model.created_at),
            updated_at=_as_utc(model.updated_at),
            escalation_level=model.escalation_level,
            deadline=_as_utc(model.deadline),
            assignee_id=model.assignee_id,
            linked_duplicate_of=model.linked_duplicate_of,
            resolved_at=_as_utc(model.resolved_at),
            closed_at=_as_utc(model.closed_at),
            first_response_at=_as_utc(model.first_response_at),
            escalation_exhausted=model.escalation_exhausted,
            is_anonymous=model.is_anonymous,
            tags=list(model.tags or []),
            rating=model.rating,
            rating_comment=model.rating_comment,
            rated_at=_as_utc(model.rated_at),
            messages=[
                Message(
                    id=m.id,
                    ticket_id=m.ticket_id,
                    author_id=m.author_id,
                    body=m.body,
                    created_at=_as_utc(m.created_at),
                    is_internal=m.is_internal,
                    is_system=m.is_system,
                    attachment_ids=tuple(m.attachment_ids or ()),
                )
                for m in model.messages
            ],
            escalation_history=[
                EscalationEvent(
                    ticket_id=e.ticket_id,
                    occurred_at=_as_utc(e.occurred_at),
                    from_level=e.from_level,
                    to_level=e.to_level,
                    to_authority=e.to_authority,
                    triggered_by=EscalationTrigger(e.triggered_by),
                    reason=e.reason,
                    actor_id=e.actor_id,
                    deadline=_as_utc(e.deadline),
                    to_role=e.to_role,
                )
                for e in model.escalation_events
            ],
            version=model.version,
        )


class InMemoryTicketRepository(ITicketRepository):
    """
    Process-local repository for tests and single-process development.

    Stores clones so callers never share mutable state with the store;
    an asyncio.Lock serialises compare-and-swap.
    """

    def __init__(self):
        self._tickets: Dict[str, Ticket] = {}
        self._embeddings: Dict[str, EmbeddingVector] = {}
        self._sequence = 0
        self._lock = asyncio.Lock()

    async def get(self, ticket_id: str) -> Optional[Ticket]:
        ticket = self._tickets.get(ticket_id)
        return ticket.clone() if ticket else None

    async def create(self, ticket: Ticket, embedding: Optional[EmbeddingVector] = None) -> Ticket:
        async with self._lock:
            if ticket.id in self._tickets:
                raise RepositoryException(f"Ticket {ticket.id} already exists")
            self._tickets[ticket.id] = ticket.clone()
            if embedding is not None:
                self._embeddings[ticket.id] = embedding
        return ticket.clone()

    async def save(self, ticket: Ticket) -> Ticket:
        async with self._lock:
            stored = self._tickets.get(ticket.id)
            if stored is None:
                raise ResourceNotFoundException("Ticket", ticket.id)
            if stored.version != ticket.version:
                raise ConcurrentModification(ticket.id, ticket.version, stored.version)
            saved = ticket.clone()
            saved.version = ticket.version + 1
            self._tickets[ticket.id] = saved
            return saved.clone()

    async def list_expired_deadlines(self, now: datetime) -> List[Ticket]:
        expired = [
            t for t in self._tickets.values()
            if t.status in ACTIVE_STATUSES
            and t.deadline is not None
            and t.deadline <= now
            and not t.escalation_exhausted
            and not t.is_duplicate
        ]
        return [t.clone() for t in sorted(expired, key=lambda t: t.deadline)]

    async def list_open_tickets_in_scope(
        self, department_id: str
    ) -> List[Tuple[Ticket, EmbeddingVector]]:
        return [
            (t.clone(), self._embeddings[t.id])
            for t in self._tickets.values()
            if t.department_id == department_id
            and t.status in ACTIVE_STATUSES
            and not t.is_duplicate
            and t.id in self._embeddings
        ]

    async def list_duplicates_of(self, ticket_id: str) -> List[Ticket]:
        duplicates = [t for t in self._tickets.values() if t.linked_duplicate_of == ticket_id]
        return [t.clone() for t in sorted(duplicates, key=lambda t: t.created_at)]

    async def next_ticket_sequence(self) -> int:
        async with self._lock:
            self._sequence += 1
            return self._sequence
