from datetime import timedelta

import pytest
from sqlalchemy import text

from helpdesk.access.domain import Principal
from helpdesk.config import EscalationTrigger, Priority, TicketCategory, TicketStatus
from helpdesk.core import ConcurrentModification, ResourceNotFoundException
from helpdesk.infrastructure.database import (
    close_database, create_tables, get_session_context, init_database,
)
from helpdesk.intake.application import TicketIntakeService
from helpdesk.intake.domain import DuplicateDetector
from helpdesk.tickets.application import TicketService
from helpdesk.tickets.domain import EmbeddingVector, TicketAction, format_ticket_number
from helpdesk.tickets.infrastructure import SQLAlchemyTicketRepository

DESCRIPTION = "Mess hall dinner was served cold for the whole week."


@pytest.fixture()
async def sql_repo(tmp_path):
    init_database(f"sqlite+aiosqlite:///{tmp_path / 'helpdesk.db'}")
    await create_tables()
    yield SQLAlchemyTicketRepository()
    await close_database()


async def _create(sql_repo, state_machine, student, scope, now, embedding=None):
    number = format_ticket_number(await sql_repo.next_ticket_sequence())
    ticket = state_machine.create(
        number, student, "Cold dinner", DESCRIPTION,
        TicketCategory.HOSTEL, Priority.MEDIUM, scope, now=now,
    ).ticket
    return await sql_repo.create(ticket, embedding)


async def _submit(intake, actor, scope):
    return await intake.submit(
        actor=actor,
        title="Cold dinner",
        description=DESCRIPTION,
        category=TicketCategory.HOSTEL,
        priority=Priority.MEDIUM,
        scope=scope,
    )


async def test_sequence_is_monotonic(sql_repo):
    first = await sql_repo.next_ticket_sequence()
    second = await sql_repo.next_ticket_sequence()
    assert second == first + 1


async def test_round_trip_keeps_scope_and_times(sql_repo, state_machine, student, org, clock):
    created = await _create(sql_repo, state_machine, student, org.d1, clock.now)

    loaded = await sql_repo.get(created.id)

    assert loaded.id == "TKT-000001"
    assert loaded.scope == org.d1
    assert loaded.deadline == created.deadline
    assert loaded.created_at == clock.now
    assert loaded.status == TicketStatus.OPEN
    assert loaded.version == 0


async def test_missing_ticket_returns_none(sql_repo):
    assert await sql_repo.get("TKT-424242") is None


async def test_save_bumps_version_and_appends_children(sql_repo, state_machine, student, hod, org, clock):
    ticket = await _create(sql_repo, state_machine, student, org.d1, clock.now)
    ticket = state_machine.add_message(ticket, hod, "Kitchen staff informed", now=clock.now).ticket
    ticket = state_machine.apply(ticket, TicketAction.START, hod, clock.now).ticket
    later = ticket.deadline
    ticket = state_machine.escalate(
        ticket, Principal.system(), EscalationTrigger.SLA_BREACH, "SLA breach", later
    ).ticket

    saved = await sql_repo.save(ticket)
    loaded = await sql_repo.get(ticket.id)

    assert saved.version == 1
    assert loaded.version == 1
    assert loaded.status == TicketStatus.ESCALATED
    assert loaded.escalation_level == 1
    assert [m.body for m in loaded.messages if not m.is_system] == ["Kitchen staff informed"]
    system_notes = [m for m in loaded.messages if m.is_system]
    assert len(system_notes) == 1
    assert system_notes[0].is_internal is True
    assert len(loaded.escalation_history) == 1
    assert loaded.escalation_history[0].occurred_at == later
    assert loaded.escalation_history[0].to_role == "DIRECTOR"
    assert loaded.first_response_at == clock.now


async def test_stale_save_raises(sql_repo, state_machine, student, org, clock):
    ticket = await _create(sql_repo, state_machine, student, org.d1, clock.now)
    await sql_repo.save(ticket)
    with pytest.raises(ConcurrentModification) as exc:
        await sql_repo.save(ticket)
    assert exc.value.actual_version == 1


async def test_save_unknown_ticket(sql_repo, state_machine, student, org, clock):
    ticket = state_machine.create(
        "TKT-000099", student, "Cold dinner", DESCRIPTION,
        TicketCategory.HOSTEL, Priority.MEDIUM, org.d1, now=clock.now,
    ).ticket
    with pytest.raises(ResourceNotFoundException):
        await sql_repo.save(ticket)


async def test_list_expired_deadlines(sql_repo, state_machine, student, org, clock):
    overdue = await _create(sql_repo, state_machine, student, org.d1, clock.now)
    clock.advance(hours=6)
    await _create(sql_repo, state_machine, student, org.d1, clock.now)

    expired = await sql_repo.list_expired_deadlines(overdue.deadline + timedelta(minutes=1))

    assert [t.id for t in expired] == [overdue.id]


async def test_open_tickets_in_scope_carry_embeddings(sql_repo, state_machine, student, make_principal, org, clock):
    vector = EmbeddingVector(values=(0.6, 0.8), model="test-embed-v1")
    in_scope = await _create(sql_repo, state_machine, student, org.d1, clock.now, vector)
    await _create(sql_repo, state_machine, student, org.d1, clock.now)
    other = make_principal("stu-3", "STUDENT", scope=org.d2)
    await _create(sql_repo, state_machine, other, org.d2, clock.now, vector)

    pool = await sql_repo.list_open_tickets_in_scope("D1")

    assert [(t.id, v) for t, v in pool] == [(in_scope.id, vector)]


async def test_ticket_without_embedding_stores_sql_null(sql_repo, state_machine, student, org, clock):
    await _create(sql_repo, state_machine, student, org.d1, clock.now)

    async with get_session_context() as session:
        stored = (await session.execute(
            text("SELECT COUNT(*) FROM tickets WHERE embedding IS NULL")
        )).scalar_one()

    assert stored == 1
    assert await sql_repo.list_open_tickets_in_scope("D1") == []


async def test_intake_fails_open_on_sql_backend(sql_repo, state_machine, sink, embeddings, student, org, clock):
    service = TicketService(sql_repo, state_machine, sink, clock)
    intake = TicketIntakeService(sql_repo, service, DuplicateDetector(), embeddings)

    embeddings.fail = True
    first = await _submit(intake, student, org.d1)
    embeddings.fail = False
    second = await _submit(intake, student, org.d1)

    assert first.duplicate_check_performed is False
    assert second.duplicate_check_performed is True
    assert second.duplicate_of is None
    assert second.ticket.status == TicketStatus.OPEN
    assert [t.id for t, _ in await sql_repo.list_open_tickets_in_scope("D1")] == [second.ticket.id]


async def test_rating_round_trip(sql_repo, state_machine, student, hod, org, clock):
    ticket = await _create(sql_repo, state_machine, student, org.d1, clock.now)
    ticket = state_machine.apply(ticket, TicketAction.START, hod, clock.now).ticket
    ticket = state_machine.apply(ticket, TicketAction.RESOLVE, hod, clock.now).ticket
    ticket = state_machine.rate(ticket, student, 4, "Warm food again", clock.now).ticket

    await sql_repo.save(ticket)
    loaded = await sql_repo.get(ticket.id)

    assert (loaded.rating, loaded.rating_comment, loaded.rated_at) == (4, "Warm food again", clock.now)


async def test_duplicates_of(sql_repo, state_machine, student, org, clock):
    parent = await _create(sql_repo, state_machine, student, org.d1, clock.now)
    duplicate = state_machine.create_linked_duplicate(
        "TKT-000050", student, "Cold dinner again", DESCRIPTION,
        TicketCategory.HOSTEL, Priority.MEDIUM, org.d1,
        parent=parent, similarity=0.95, embedding_model="test-embed-v1", now=clock.now,
    ).ticket
    await sql_repo.create(duplicate)

    duplicates = await sql_repo.list_duplicates_of(parent.id)

    assert [t.id for t in duplicates] == ["TKT-000050"]
    assert duplicates[0].deadline is None
    expired = await sql_repo.list_expired_deadlines(clock.now + timedelta(days=30))
    assert [t.id for t in expired] == [parent.id]
