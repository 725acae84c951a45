from datetime import datetime, timedelta, timezone
from typing import Dict, Optional

import pytest

from helpdesk.access.domain import OrgUnit, Principal, RoleCatalog
from helpdesk.config import OrgLevel, Priority, TicketCategory
from helpdesk.core import DetectorUnavailable
from helpdesk.intake.application import IEmbeddingProvider, TicketIntakeService
from helpdesk.intake.domain import DuplicateDetector
from helpdesk.sla.application import EscalationScheduler
from helpdesk.sla.domain import StaticSLAPolicyProvider
from helpdesk.tickets.application import TicketService
from helpdesk.tickets.domain import EmbeddingVector, TicketStateMachine, format_ticket_number
from helpdesk.tickets.infrastructure import InMemoryEventSink, InMemoryTicketRepository

START = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)

DESCRIPTION = "The shuttle from the north gate has not arrived for three days."


class FixedClock:
    """Manually advanced clock."""

    def __init__(self, now: datetime = START):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class StubEmbeddingProvider(IEmbeddingProvider):
    """Returns preset vectors by text prefix; raises when `fail` is set."""

    def __init__(self, model: str = "test-embed-v1"):
        self._model = model
        self.vectors: Dict[str, tuple] = {}
        self.fail = False
        self.calls = 0

    @property
    def model(self) -> str:
        return self._model

    async def embed(self, text: str) -> EmbeddingVector:
        self.calls += 1
        if self.fail:
            raise DetectorUnavailable("provider timed out")
        for prefix, values in self.vectors.items():
            if text.startswith(prefix):
                return EmbeddingVector(values=values, model=self._model)
        return EmbeddingVector(values=(0.0, 0.0, 1.0), model=self._model)


class Org:
    """Campus C1 ⊃ college CL1 ⊃ departments D1, D2; campus C2 ⊃ CL2 ⊃ D3."""

    def __init__(self):
        self.c1 = OrgUnit.campus("C1")
        self.cl1 = OrgUnit("CL1", OrgLevel.COLLEGE, self.c1)
        self.d1 = OrgUnit("D1", OrgLevel.DEPARTMENT, self.cl1)
        self.d2 = OrgUnit("D2", OrgLevel.DEPARTMENT, self.cl1)
        self.c2 = OrgUnit.campus("C2")
        self.cl2 = OrgUnit("CL2", OrgLevel.COLLEGE, self.c2)
        self.d3 = OrgUnit("D3", OrgLevel.DEPARTMENT, self.cl2)


@pytest.fixture()
def org():
    return Org()


@pytest.fixture()
def catalog():
    return RoleCatalog()


@pytest.fixture()
def make_principal(catalog):
    def _make(user_id: str, *role_names: str, scope: Optional[OrgUnit] = None) -> Principal:
        return Principal(user_id=user_id, roles=catalog.resolve(role_names), scope=scope)
    return _make


@pytest.fixture()
def student(make_principal, org):
    return make_principal("stu-1", "STUDENT", scope=org.d1)


@pytest.fixture()
def hod(make_principal, org):
    return make_principal("hod-1", "HOD", scope=org.d1)


@pytest.fixture()
def campus_admin(make_principal, org):
    return make_principal("admin-1", "CAMPUS_ADMIN", scope=org.c1)


@pytest.fixture()
def clock():
    return FixedClock()


@pytest.fixture()
def policy_provider():
    return StaticSLAPolicyProvider()


@pytest.fixture()
def state_machine(policy_provider):
    return TicketStateMachine(policy_provider)


@pytest.fixture()
def repo():
    return InMemoryTicketRepository()


@pytest.fixture()
def sink():
    return InMemoryEventSink()


@pytest.fixture()
def ticket_service(repo, state_machine, sink, clock):
    return TicketService(repo, state_machine, sink, clock)


@pytest.fixture()
def embeddings():
    return StubEmbeddingProvider()


@pytest.fixture()
def intake(repo, ticket_service, embeddings):
    return TicketIntakeService(repo, ticket_service, DuplicateDetector(), embeddings)


@pytest.fixture()
def scheduler(repo, ticket_service):
    return EscalationScheduler(repo, ticket_service)


@pytest.fixture()
def file_ticket(repo, state_machine, student, org, clock):
    """Create and store an OPEN ticket directly, bypassing intake."""
    async def _file(priority: Priority = Priority.HIGH, scope: Optional[OrgUnit] = None,
                    creator: Optional[Principal] = None, embedding: Optional[EmbeddingVector] = None,
                    title: str = "Shuttle not running"):
        number = format_ticket_number(await repo.next_ticket_sequence())
        result = state_machine.create(
            number, creator or student, title, DESCRIPTION,
            TicketCategory.TRANSPORT, priority, scope or org.d1, now=clock(),
        )
        return await repo.create(result.ticket, embedding)
    return _file
