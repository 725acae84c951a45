from datetime import timedelta

from helpdesk.access.domain import Principal
from helpdesk.config import Priority, TicketCategory, TicketStatus
from helpdesk.sla.application import EscalationScheduler
from helpdesk.sla.infrastructure import EscalationJobRunner
from helpdesk.tickets.application import TicketService
from helpdesk.tickets.domain import EscalationEvent, MaxEscalationReached, TicketAction
from helpdesk.tickets.infrastructure import InMemoryTicketRepository


class FlakyRepository(InMemoryTicketRepository):
    """Fails every save of one ticket."""

    def __init__(self, broken_id: str):
        super().__init__()
        self.broken_id = broken_id

    async def save(self, ticket):
        if ticket.id == self.broken_id:
            raise RuntimeError("disk full")
        return await super().save(ticket)


class SnapshotRepository(InMemoryTicketRepository):
    """Returns a fixed, possibly stale, expired list."""

    snapshot = None

    async def list_expired_deadlines(self, now):
        if self.snapshot is not None:
            return list(self.snapshot)
        return await super().list_expired_deadlines(now)


async def _escalate_to(ticket_service, ticket_id, level):
    ticket = None
    for _ in range(level):
        current = await ticket_service.get_ticket(ticket_id, Principal.system())
        ticket = (await ticket_service.escalate_for_sla_breach(ticket_id, current.deadline)).ticket
    return ticket


async def test_scheduler_escalates_overdue_ticket(scheduler, ticket_service, repo, sink,
                                                  file_ticket, campus_admin, clock):
    ticket = await file_ticket(priority=Priority.HIGH)
    level_one = await _escalate_to(ticket_service, ticket.id, 1)
    clock.now = level_one.updated_at + timedelta(hours=1)
    assigned = await ticket_service.transition(ticket.id, TicketAction.ASSIGN, campus_admin)
    assert level_one.escalation_level == 1
    assert assigned.ticket.status == TicketStatus.IN_PROGRESS

    now = assigned.ticket.deadline + timedelta(minutes=5)
    sink.clear()
    report = await scheduler.run_once(now)

    stored = await repo.get(ticket.id)
    assert report.scanned == 1
    assert report.escalated == 1
    assert stored.escalation_level == 2
    assert stored.authority == "CAMPUS"
    assert stored.status == TicketStatus.ESCALATED
    assert stored.deadline == now + timedelta(hours=12)
    assert len(sink.of_type(EscalationEvent)) == 1


async def test_scheduler_reports_top_level(scheduler, ticket_service, repo, sink, file_ticket, caplog):
    ticket = await file_ticket()
    top = await _escalate_to(ticket_service, ticket.id, 3)
    sink.clear()

    report = await scheduler.run_once(top.deadline + timedelta(minutes=1))

    stored = await repo.get(ticket.id)
    assert report.max_reached == 1
    assert stored.escalation_level == 3
    assert stored.status == TicketStatus.ESCALATED
    assert [type(e) for e in sink.events] == [MaxEscalationReached]
    assert "terminal escalation reached" in caplog.text

    # Reported once per deadline
    again = await scheduler.run_once(top.deadline + timedelta(hours=1))
    assert again.scanned == 0
    assert len(sink.events) == 1


async def test_scheduler_ignores_tickets_within_deadline(scheduler, file_ticket):
    ticket = await file_ticket()
    report = await scheduler.run_once(ticket.deadline - timedelta(seconds=1))
    assert report.scanned == 0


async def test_repeated_scan_escalates_once(scheduler, repo, file_ticket):
    ticket = await file_ticket()
    now = ticket.deadline + timedelta(minutes=1)

    await scheduler.run_once(now)
    report = await scheduler.run_once(now)

    assert report.scanned == 0
    assert (await repo.get(ticket.id)).escalation_level == 1


async def test_ticket_resolved_after_listing_is_skipped(state_machine, sink, clock, student, hod, org):
    repo = SnapshotRepository()
    service = TicketService(repo, state_machine, sink, clock)
    created = state_machine.create(
        "TKT-000001", student, "Broken lab door", "The lab door lock on the east wing is jammed shut.",
        TicketCategory.ACADEMIC, Priority.LOW, org.d1, now=clock.now,
    ).ticket
    ticket = await repo.create(created)
    repo.snapshot = [ticket]

    await service.transition(ticket.id, TicketAction.START, hod)
    await service.transition(ticket.id, TicketAction.RESOLVE, hod)

    report = await EscalationScheduler(repo, service).run_once(ticket.deadline + timedelta(hours=1))

    assert report.scanned == 1
    assert report.skipped == 1
    assert (await repo.get(ticket.id)).status == TicketStatus.RESOLVED


async def test_one_failure_does_not_halt_scan(state_machine, sink, clock, student, org):
    repo = FlakyRepository(broken_id="TKT-000001")
    service = TicketService(repo, state_machine, sink, clock)
    for number in ("TKT-000001", "TKT-000002"):
        result = state_machine.create(
            number, student, "Bus pass rejected", "My bus pass is rejected by the gate reader.",
            TicketCategory.TRANSPORT, Priority.HIGH, org.d1, now=clock.now,
        )
        await repo.create(result.ticket)

    report = await EscalationScheduler(repo, service).run_once(clock.now + timedelta(hours=13))

    assert report.scanned == 2
    assert report.failed == 1
    assert report.failed_ticket_ids == ["TKT-000001"]
    assert report.escalated == 1
    assert (await repo.get("TKT-000002")).escalation_level == 1


async def test_job_runner_lifecycle():
    runner = EscalationJobRunner(interval_seconds=3600)

    async def job():
        return None

    await runner.start(job)
    assert runner.is_running
    await runner.stop()
    assert not runner.is_running
