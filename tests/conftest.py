import os

os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("SLA_SCHEDULER_ENABLED", "false")
os.environ.setdefault("SLACK_WEBHOOK_URL", "")

import copy
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence, Set

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from support_sla.core import NotificationDeliveryException, RepositoryException
from support_sla.infrastructure.database import Base
from support_sla.shared.infrastructure.clock import FrozenClock
from support_sla.sla.application import (
    INotificationDispatcher,
    ISLAPolicyProvider,
    ITicketStore,
    ITransitionOutbox,
    SLAEvaluationService,
    TicketSLAService,
)
from support_sla.sla.domain import SLAFieldsUpdate, SLAPolicy, SLATransition, Ticket
from support_sla.sla.infrastructure import models  # noqa: F401

T0 = datetime(2024, 1, 15, 10, 0, tzinfo=timezone.utc)


class StaticPolicyProvider(ISLAPolicyProvider):
    def __init__(self, policy: Optional[SLAPolicy] = None):
        self.policy = policy or SLAPolicy()

    def get_policy(self) -> SLAPolicy:
        return self.policy


class InMemoryTicketStore(ITicketStore):
    """Ticket store keeping copies so callers can't mutate stored state."""

    def __init__(self):
        self.tickets: Dict[str, Ticket] = {}
        self.transitions: List[SLATransition] = []
        self.failing_ids: Set[str] = set()
        self.update_calls = 0

    def put(self, ticket: Ticket) -> Ticket:
        self.tickets[ticket.id] = copy.deepcopy(ticket)
        return ticket

    def _record(self, transitions: Sequence[SLATransition]) -> None:
        for transition in transitions:
            if transition.id is None:
                transition.id = f"tr-{len(self.transitions) + 1}"
            self.transitions.append(copy.deepcopy(transition))

    async def list_active_tickets(self, on_invalid=None) -> List[Ticket]:
        return [copy.deepcopy(t) for t in self.tickets.values() if t.is_active]

    async def get_by_id(self, ticket_id: str) -> Optional[Ticket]:
        ticket = self.tickets.get(ticket_id)
        return copy.deepcopy(ticket) if ticket else None

    async def create(self, ticket, transitions=()):
        self.put(ticket)
        self._record(transitions)
        return ticket

    async def save(self, ticket, transitions=()):
        if ticket.id in self.failing_ids:
            raise RepositoryException(f"Failed to save ticket {ticket.id}")
        self.put(ticket)
        self._record(transitions)
        return ticket

    async def update_sla_fields(
        self,
        ticket_id: str,
        fields: SLAFieldsUpdate,
        expected: Optional[SLAFieldsUpdate] = None,
        transitions: Sequence[SLATransition] = ()
    ) -> bool:
        self.update_calls += 1
        if ticket_id in self.failing_ids:
            raise RepositoryException(f"Failed to update SLA fields of ticket {ticket_id}")

        stored = self.tickets[ticket_id]
        if expected is not None and (
            stored.response_sla_status != expected.response_sla_status
            or stored.resolution_sla_status != expected.resolution_sla_status
            or stored.sla_paused_at != expected.sla_paused_at
        ):
            return False

        stored.response_sla_status = fields.response_sla_status
        stored.resolution_sla_status = fields.resolution_sla_status
        stored.response_sla_deadline = fields.response_sla_deadline
        stored.resolution_sla_deadline = fields.resolution_sla_deadline
        stored.response_sla_budget = fields.response_sla_budget
        stored.resolution_sla_budget = fields.resolution_sla_budget
        stored.sla_paused_at = fields.sla_paused_at
        stored.sla_paused_duration = fields.sla_paused_duration
        self._record(transitions)
        return True


class InMemoryOutbox(ITransitionOutbox):
    def __init__(self, store: InMemoryTicketStore):
        self._store = store
        self.sent: Dict[str, datetime] = {}

    async def get_pending(self, limit: int = 500) -> List[SLATransition]:
        pending = [t for t in self._store.transitions if t.id not in self.sent]
        return [copy.deepcopy(t) for t in pending[:limit]]

    async def mark_sent(self, transition_id: str, sent_at: datetime) -> None:
        self.sent[transition_id] = sent_at


class RecordingDispatcher(INotificationDispatcher):
    """Records delivered transitions; fails the next `failures` calls."""

    def __init__(self, failures: int = 0):
        self.delivered: List[SLATransition] = []
        self.failures = failures
        self.calls = 0

    async def notify(self, transition: SLATransition) -> bool:
        self.calls += 1
        if self.failures > 0:
            self.failures -= 1
            raise NotificationDeliveryException("webhook unreachable")
        self.delivered.append(transition)
        return True

    def delivered_to(self, status: str) -> List[SLATransition]:
        return [t for t in self.delivered if t.to_status == status]

    async def close(self) -> None:
        return None


def make_ticket(ticket_id: str = "T-1", priority: str = "urgent", **overrides) -> Ticket:
    fields = {"status": "open", "created_at": T0, "title": f"Ticket {ticket_id}"}
    fields.update(overrides)
    return Ticket(id=ticket_id, priority=priority, **fields)


@pytest.fixture()
def clock():
    return FrozenClock(T0)


@pytest.fixture()
def policy_provider():
    return StaticPolicyProvider()


@pytest.fixture()
def store():
    return InMemoryTicketStore()


@pytest.fixture()
def outbox(store):
    return InMemoryOutbox(store)


@pytest.fixture()
def dispatcher():
    return RecordingDispatcher()


@pytest.fixture()
def evaluation_service(store, outbox, dispatcher, policy_provider, clock):
    return SLAEvaluationService(store, outbox, dispatcher, policy_provider, clock)


@pytest.fixture()
def ticket_service(store, policy_provider, clock):
    return TicketSLAService(store, policy_provider, clock)


@pytest.fixture()
async def async_engine():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture()
def session_factory(async_engine):
    return async_sessionmaker(bind=async_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture()
async def db_session(session_factory):
    async with session_factory() as session:
        yield session
        await session.rollback()
