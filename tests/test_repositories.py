from datetime import timedelta

import pytest

from support_sla.core import InvalidTicketRecordException, ValidationException
from support_sla.shared.infrastructure.clock import FrozenClock
from support_sla.sla.application import SLAEvaluationService
from support_sla.sla.domain import SLAPolicy, SLATracker
from support_sla.sla.infrastructure import SQLAlchemyTicketStore, SQLAlchemyTransitionOutbox
from support_sla.sla.infrastructure.models import TicketModel

from conftest import T0, RecordingDispatcher, StaticPolicyProvider, make_ticket


@pytest.fixture()
def tracker():
    return SLATracker(SLAPolicy())


async def test_create_and_load_round_trip(db_session, tracker):
    store = SQLAlchemyTicketStore(db_session)
    ticket = make_ticket(assigned_to_id="agent-7")
    transitions = tracker.refresh(ticket, T0)
    await store.create(ticket, transitions)

    loaded = await store.get_by_id("T-1")

    assert loaded.response_sla_deadline == T0 + timedelta(minutes=60)
    assert loaded.response_sla_deadline.tzinfo is not None
    assert loaded.response_sla_status == "on_track"
    assert loaded.assigned_to_id == "agent-7"
    assert loaded.sla_paused_duration == timedelta(0)
    assert all(t.id for t in transitions)


async def test_duplicate_create_rejected(db_session):
    store = SQLAlchemyTicketStore(db_session)
    await store.create(make_ticket())
    with pytest.raises(ValidationException):
        await store.create(make_ticket())


async def test_list_active_tickets_skips_terminal(db_session):
    store = SQLAlchemyTicketStore(db_session)
    await store.create(make_ticket("T-open"))
    await store.create(make_ticket("T-wait", status="waiting_on_user"))
    await store.create(make_ticket("T-done", status="resolved", resolved_at=T0))

    active = await store.list_active_tickets()

    assert sorted(t.id for t in active) == ["T-open", "T-wait"]


async def test_conditional_update_checks_expected_statuses(db_session, tracker):
    store = SQLAlchemyTicketStore(db_session)
    ticket = make_ticket()
    tracker.refresh(ticket, T0)
    await store.create(ticket)

    expected = ticket.sla_fields()
    transitions = tracker.refresh(ticket, T0 + timedelta(minutes=55))

    assert await store.update_sla_fields("T-1", ticket.sla_fields(), expected, transitions) is True
    # the same expectation no longer holds
    assert await store.update_sla_fields("T-1", ticket.sla_fields(), expected, transitions) is False

    loaded = await store.get_by_id("T-1")
    assert loaded.response_sla_status == "critical"


async def test_conditional_update_matches_pause_start(db_session, tracker):
    store = SQLAlchemyTicketStore(db_session)
    ticket = make_ticket()
    tracker.refresh(ticket, T0)
    tracker.change_status(ticket, "waiting_on_user", T0 + timedelta(minutes=10))
    await store.create(ticket)

    expected = ticket.sla_fields()
    tracker.change_status(ticket, "open", T0 + timedelta(minutes=30))

    assert await store.update_sla_fields("T-1", ticket.sla_fields(), expected) is True
    loaded = await store.get_by_id("T-1")
    assert loaded.sla_paused_at is None
    assert loaded.sla_paused_duration == timedelta(minutes=20)
    assert loaded.response_sla_deadline == T0 + timedelta(minutes=80)


async def test_outbox_pending_and_mark_sent(db_session, tracker):
    store = SQLAlchemyTicketStore(db_session)
    outbox = SQLAlchemyTransitionOutbox(db_session)
    ticket = make_ticket()
    await store.create(ticket, tracker.refresh(ticket, T0))

    pending = await outbox.get_pending()
    assert {(t.sla_type, t.to_status) for t in pending} == {
        ("response", "on_track"),
        ("resolution", "on_track"),
    }
    assert pending[0].occurred_at == T0

    await outbox.mark_sent(pending[0].id, T0)
    remaining = await outbox.get_pending()
    assert [t.id for t in remaining] == [pending[1].id]


async def test_evaluation_pass_against_database(session_factory):
    policy_provider = StaticPolicyProvider()
    dispatcher = RecordingDispatcher()
    tracker = SLATracker(policy_provider.get_policy())

    async with session_factory() as session:
        ticket = make_ticket()
        await SQLAlchemyTicketStore(session).create(ticket, tracker.refresh(ticket, T0))

    async def run_at(minutes):
        async with session_factory() as session:
            service = SLAEvaluationService(
                SQLAlchemyTicketStore(session),
                SQLAlchemyTransitionOutbox(session),
                dispatcher,
                policy_provider,
                FrozenClock(T0 + timedelta(minutes=minutes)),
            )
            return await service.run_once()

    first = await run_at(61)
    second = await run_at(61)

    assert first.tickets_updated == 1
    assert first.notifications_sent == 3
    assert second.tickets_updated == 0
    assert second.notifications_sent == 0
    assert len(dispatcher.delivered_to("breached")) == 1


def broken_row(ticket_id="T-broken"):
    # updated_at before created_at cannot become a Ticket
    return TicketModel(
        id=ticket_id,
        priority="urgent",
        status="open",
        title="Imported",
        created_at=T0 + timedelta(hours=2),
        updated_at=T0,
    )


async def test_budgets_are_stored_with_deadlines(db_session, tracker):
    store = SQLAlchemyTicketStore(db_session)
    ticket = make_ticket()
    await store.create(ticket, tracker.refresh(ticket, T0))

    loaded = await store.get_by_id("T-1")

    assert loaded.response_sla_budget == timedelta(minutes=60)
    assert loaded.resolution_sla_budget == timedelta(minutes=240)


async def test_invalid_row_is_skipped_when_listing(db_session):
    store = SQLAlchemyTicketStore(db_session)
    db_session.add(broken_row())
    await db_session.commit()
    await store.create(make_ticket("T-good"))

    reported = []
    active = await store.list_active_tickets(on_invalid=lambda ticket_id, error: reported.append((ticket_id, error)))

    assert [t.id for t in active] == ["T-good"]
    assert len(reported) == 1
    assert reported[0][0] == "T-broken"
    assert isinstance(reported[0][1], InvalidTicketRecordException)


async def test_invalid_row_raises_on_direct_load(db_session):
    db_session.add(broken_row())
    await db_session.commit()

    with pytest.raises(InvalidTicketRecordException) as excinfo:
        await SQLAlchemyTicketStore(db_session).get_by_id("T-broken")
    assert excinfo.value.ticket_id == "T-broken"


async def test_evaluation_pass_survives_invalid_row(session_factory):
    policy_provider = StaticPolicyProvider()
    tracker = SLATracker(policy_provider.get_policy())

    async with session_factory() as session:
        session.add(broken_row())
        await session.commit()
        ticket = make_ticket("T-good")
        await SQLAlchemyTicketStore(session).create(ticket, tracker.refresh(ticket, T0))

    async with session_factory() as session:
        service = SLAEvaluationService(
            SQLAlchemyTicketStore(session),
            SQLAlchemyTransitionOutbox(session),
            RecordingDispatcher(),
            policy_provider,
            FrozenClock(T0 + timedelta(minutes=50)),
        )
        summary = await service.run_once()

    assert summary.errors == 1
    assert summary.error_details[0].startswith("T-broken:")
    assert summary.tickets_evaluated == 1
    assert summary.tickets_updated == 1

    async with session_factory() as session:
        loaded = await SQLAlchemyTicketStore(session).get_by_id("T-good")
    assert loaded.response_sla_status == "approaching"
