from datetime import timedelta

import pytest

from support_sla.core import InvalidPriorityException, ValidationException
from support_sla.sla.domain import SLAPolicy, SLATracker

from conftest import T0, make_ticket


def minutes(n):
    return T0 + timedelta(minutes=n)


@pytest.fixture()
def tracker():
    return SLATracker(SLAPolicy())


def tracked_ticket(tracker, **overrides):
    ticket = make_ticket(**overrides)
    tracker.refresh(ticket, T0)
    return ticket


def test_refresh_emits_initial_transitions(tracker):
    ticket = make_ticket()
    transitions = tracker.refresh(ticket, T0)
    assert {(t.sla_type, t.from_status, t.to_status) for t in transitions} == {
        ("response", None, "on_track"),
        ("resolution", None, "on_track"),
    }


def test_refresh_twice_at_same_instant_changes_nothing(tracker):
    ticket = tracked_ticket(tracker)
    tracker.refresh(ticket, minutes(50))
    before = ticket.sla_fields()
    assert tracker.refresh(ticket, minutes(50)) == []
    assert ticket.sla_fields() == before


def test_unknown_priority_raises(tracker):
    ticket = make_ticket(priority="blocker")
    with pytest.raises(InvalidPriorityException):
        tracker.refresh(ticket, T0)


def test_pause_and_resume_shift_deadlines(tracker):
    ticket = tracked_ticket(tracker)

    tracker.change_status(ticket, "waiting_on_user", minutes(50))
    assert ticket.sla_paused_at == minutes(50)
    assert ticket.sla_paused_reason == "waiting_on_user"
    assert ticket.response_sla_status == "paused"

    tracker.change_status(ticket, "in_progress", minutes(70))
    assert ticket.sla_paused_at is None
    assert ticket.sla_paused_duration == timedelta(minutes=20)
    assert ticket.response_sla_deadline == minutes(80)
    assert ticket.resolution_sla_deadline == minutes(260)

    tracker.refresh(ticket, minutes(75))
    assert ticket.response_sla_status == "critical"


def test_pause_conservation_over_several_pauses(tracker):
    ticket = tracked_ticket(tracker)
    pauses = [(10, 25), (40, 41), (100, 160)]
    for start, end in pauses:
        tracker.change_status(ticket, "waiting_on_user", minutes(start))
        tracker.change_status(ticket, "open", minutes(end))

    total = sum(end - start for start, end in pauses)
    assert ticket.sla_paused_duration == timedelta(minutes=total)
    assert ticket.response_sla_deadline == T0 + timedelta(minutes=60 + total)
    assert ticket.resolution_sla_deadline == T0 + timedelta(minutes=240 + total)


def test_pause_is_not_reentrant(tracker):
    ticket = tracked_ticket(tracker)
    tracker.change_status(ticket, "waiting_on_user", minutes(10))
    # scheduler passes while still waiting must not restart the pause
    tracker.refresh(ticket, minutes(20))
    tracker.refresh(ticket, minutes(30))
    assert ticket.sla_paused_at == minutes(10)

    tracker.change_status(ticket, "in_progress", minutes(40))
    assert ticket.sla_paused_duration == timedelta(minutes=30)


def test_resume_does_not_move_stopped_deadline(tracker):
    ticket = tracked_ticket(tracker)
    tracker.record_response(ticket, minutes(5))
    tracker.change_status(ticket, "waiting_on_user", minutes(10))
    tracker.change_status(ticket, "open", minutes(40))

    assert ticket.response_sla_deadline == minutes(60)
    assert ticket.resolution_sla_deadline == minutes(270)
    assert ticket.response_sla_status == "on_track"


def test_resolve_while_paused_counts_the_pause(tracker):
    ticket = tracked_ticket(tracker)
    tracker.change_status(ticket, "waiting_on_user", minutes(200))
    tracker.change_status(ticket, "resolved", minutes(260))

    assert ticket.sla_paused_at is None
    assert ticket.resolution_sla_deadline == minutes(300)
    assert ticket.resolved_at == minutes(260)
    assert ticket.resolution_sla_status == "on_track"
    # resolving also counts as the first response, after the response deadline
    assert ticket.responded_at == minutes(260)
    assert ticket.response_sla_status == "breached"


def test_first_response_is_stamped_once(tracker):
    ticket = tracked_ticket(tracker)
    tracker.record_response(ticket, minutes(30))
    tracker.record_response(ticket, minutes(90))
    assert ticket.responded_at == minutes(30)
    tracker.refresh(ticket, minutes(500))
    assert ticket.response_sla_status == "on_track"


def test_closed_and_rejected_stamp_closed_at(tracker):
    closed = tracked_ticket(tracker, ticket_id="T-closed")
    tracker.change_status(closed, "closed", minutes(30))
    assert closed.closed_at == minutes(30)
    assert closed.resolved_at == minutes(30)

    rejected = tracked_ticket(tracker, ticket_id="T-rejected")
    tracker.change_status(rejected, "rejected", minutes(30))
    assert rejected.closed_at == minutes(30)
    assert rejected.resolved_at is None


def test_same_status_is_a_noop(tracker):
    ticket = tracked_ticket(tracker)
    before = ticket.sla_fields()
    assert tracker.change_status(ticket, "open", minutes(10)) == []
    assert ticket.sla_fields() == before


def test_unknown_status_rejected(tracker):
    ticket = tracked_ticket(tracker)
    with pytest.raises(ValidationException):
        tracker.change_status(ticket, "escalated", minutes(10))


def test_reopen_frozen_keeps_resolution_stopped():
    tracker = SLATracker(SLAPolicy(reopen_policy="frozen"))
    ticket = tracked_ticket(tracker)
    tracker.change_status(ticket, "resolved", minutes(100))
    tracker.change_status(ticket, "open", minutes(400))

    assert ticket.resolved_at == minutes(100)
    assert ticket.closed_at is None
    tracker.refresh(ticket, minutes(1000))
    assert ticket.resolution_sla_status == "on_track"


def test_reopen_resume_continues_the_clock():
    tracker = SLATracker(SLAPolicy(reopen_policy="resume"))
    ticket = tracked_ticket(tracker)
    tracker.change_status(ticket, "resolved", minutes(100))
    tracker.change_status(ticket, "in_progress", minutes(400))

    assert ticket.resolved_at is None
    # 140 minutes were left at resolution time
    assert ticket.resolution_sla_deadline == minutes(540)
    assert ticket.resolution_sla_status == "on_track"


def test_reopen_reset_restarts_the_budget():
    tracker = SLATracker(SLAPolicy(reopen_policy="reset"))
    ticket = tracked_ticket(tracker)
    tracker.change_status(ticket, "resolved", minutes(100))
    tracker.change_status(ticket, "open", minutes(400))

    assert ticket.resolved_at is None
    assert ticket.resolution_sla_deadline == minutes(640)


def test_snapshot_of_paused_ticket(tracker):
    ticket = tracked_ticket(tracker)
    tracker.change_status(ticket, "waiting_on_user", minutes(30))

    snapshot = tracker.snapshot(ticket, minutes(500))
    assert snapshot.response.status == "paused"
    assert snapshot.response.remaining_seconds == 30 * 60
    assert snapshot.most_urgent_status == "paused"


def test_snapshot_of_resolved_ticket_uses_stored_status(tracker):
    ticket = tracked_ticket(tracker)
    tracker.change_status(ticket, "resolved", minutes(30))

    snapshot = tracker.snapshot(ticket, minutes(5000))
    assert snapshot.resolution.status == "on_track"
    assert snapshot.resolution.stopped_at == minutes(30)
    assert snapshot.to_dict()["overall_status"] == "on_track"


def test_stamps_before_creation_rejected(tracker):
    ticket = tracked_ticket(tracker)
    with pytest.raises(ValidationException):
        tracker.change_status(ticket, "in_progress", minutes(-5))
    with pytest.raises(ValidationException):
        tracker.record_response(ticket, minutes(-5))
    assert ticket.status == "open"
    assert ticket.responded_at is None


def test_snapshot_uses_stored_budget_over_policy(tracker):
    ticket = tracked_ticket(tracker)
    reloaded = SLATracker(SLAPolicy(sla_targets={"urgent": {"response": 600, "resolution": 2400}}))

    snapshot = reloaded.snapshot(ticket, minutes(40))

    assert snapshot.response.budget_seconds == 3600
    assert snapshot.response.percentage_remaining == pytest.approx(100 / 3)
    assert reloaded.evaluate(ticket, minutes(40))["response"] == "on_track"
