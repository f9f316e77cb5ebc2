from datetime import datetime, timedelta, timezone

import pytest

from support_sla.core import MisconfiguredThresholdsException
from support_sla.sla.domain import (
    BusinessCalendar, BusinessHoursConfig, DeadlineCalculator, SLAPolicy, SLATracker
)
from support_sla.sla.domain.business_hours import working_time_between, working_time_left
from support_sla.sla.infrastructure.external import SLAConfigManager

from conftest import T0, make_ticket

# T0 is Monday 2024-01-15 10:00 UTC


def utc(day, hour, minute=0):
    return datetime(2024, 1, day, hour, minute, tzinfo=timezone.utc)


def business_policy(**business_hours):
    return SLAPolicy(business_hours={"enabled": True, **business_hours})


def test_business_hours_disabled_by_default():
    policy = SLAPolicy()
    assert policy.business_hours.enabled is False
    assert DeadlineCalculator(policy).calendar is None
    assert DeadlineCalculator(policy).compute_deadline("high", "response", utc(15, 16)) == utc(15, 20)


def test_budget_within_one_working_day():
    calculator = DeadlineCalculator(business_policy())
    deadlines = calculator.compute_deadlines("urgent", T0)
    assert deadlines.response_deadline == utc(15, 11)
    assert deadlines.resolution_deadline == utc(15, 14)


def test_budget_carries_over_to_next_morning():
    calculator = DeadlineCalculator(business_policy())
    assert calculator.compute_deadline("high", "response", utc(15, 16)) == utc(16, 12)
    # 24 working hours: 1 on Monday, 8 each Tuesday and Wednesday, 7 on Thursday
    assert calculator.compute_deadline("high", "resolution", utc(15, 16)) == utc(18, 16)


def test_friday_afternoon_rolls_over_the_weekend():
    calculator = DeadlineCalculator(business_policy())
    friday = utc(19, 16)
    assert calculator.compute_deadline("urgent", "response", friday) == utc(19, 17)
    assert calculator.compute_deadline("urgent", "resolution", friday) == utc(22, 12)


def test_ticket_opened_at_weekend_starts_monday_morning():
    calculator = DeadlineCalculator(business_policy())
    assert calculator.compute_deadline("urgent", "response", utc(20, 12)) == utc(22, 10)


def test_recurring_holiday_is_skipped_every_year():
    calculator = DeadlineCalculator(business_policy(
        holidays=[{"day": "2020-01-16", "name": "Founders day", "recurring": True}]
    ))
    assert calculator.compute_deadline("high", "response", utc(15, 16)) == utc(17, 12)


@pytest.mark.parametrize("holiday, deadline", [
    ("2024-01-16", utc(17, 12)),
    ("2023-01-16", utc(16, 12)),
])
def test_fixed_holiday_only_matches_its_year(holiday, deadline):
    calculator = DeadlineCalculator(business_policy(holidays=[{"day": holiday}]))
    assert calculator.compute_deadline("high", "response", utc(15, 16)) == deadline


def test_working_hours_follow_the_configured_timezone():
    calculator = DeadlineCalculator(business_policy(timezone="America/New_York"))
    # 10:00 UTC is 05:00 in New York; work starts at 09:00 local (14:00 UTC)
    assert calculator.compute_deadline("urgent", "response", T0) == utc(15, 15)


def test_overnight_pause_counts_only_working_time():
    tracker = SLATracker(business_policy())
    ticket = make_ticket(created_at=utc(15, 16, 30), updated_at=utc(15, 16, 30))
    tracker.refresh(ticket, utc(15, 16, 30))
    assert ticket.response_sla_deadline == utc(16, 9, 30)

    tracker.change_status(ticket, "waiting_on_user", utc(15, 16, 45))
    tracker.change_status(ticket, "in_progress", utc(16, 9, 15))

    assert ticket.sla_paused_duration == timedelta(minutes=30)
    assert ticket.response_sla_deadline == utc(16, 10)


def test_status_ratio_ignores_closed_hours():
    tracker = SLATracker(business_policy())
    ticket = make_ticket(priority="high", created_at=utc(15, 16), updated_at=utc(15, 16))
    tracker.refresh(ticket, utc(15, 16))

    overnight = tracker.snapshot(ticket, utc(15, 23))
    assert overnight.response.status == "on_track"
    assert overnight.response.remaining_seconds == 3 * 3600
    assert overnight.response.percentage_remaining == pytest.approx(75.0)

    assert tracker.evaluate(ticket, utc(16, 11))["response"] == "approaching"
    assert tracker.evaluate(ticket, utc(16, 11, 40))["response"] == "critical"
    assert tracker.evaluate(ticket, utc(16, 12))["response"] == "breached"


def test_wall_clock_helpers_without_calendar():
    assert working_time_between(utc(15, 16), utc(16, 10)) == timedelta(hours=18)
    assert working_time_between(utc(16, 10), utc(15, 16)) == timedelta(0)
    assert working_time_left(utc(16, 10), utc(15, 16)) == -timedelta(hours=18)


def test_working_time_left_is_negative_after_deadline():
    calendar = BusinessCalendar(BusinessHoursConfig(enabled=True))
    assert working_time_left(utc(16, 10), utc(15, 11), calendar) == -timedelta(hours=7)
    assert working_time_between(utc(19, 16), utc(22, 10), calendar) == timedelta(hours=2)


@pytest.mark.parametrize("data", [
    {"start_hour": 17, "end_hour": 9},
    {"start_hour": 9, "end_hour": 25},
    {"weekdays": []},
    {"weekdays": [0, 7]},
    {"timezone": "Mars/Olympus_Mons"},
])
def test_invalid_business_hours_rejected(data):
    with pytest.raises(MisconfiguredThresholdsException):
        SLAPolicy(business_hours={"enabled": True, **data})


def test_config_manager_loads_business_hours(tmp_path):
    path = tmp_path / "sla_config.yaml"
    path.write_text(
        "business_hours:\n"
        "  enabled: true\n"
        "  timezone: Europe/Berlin\n"
        "  weekdays: [0, 1, 2, 3]\n"
        "  start_hour: 8\n"
        "  end_hour: 16\n"
        "  holidays:\n"
        "    - {day: 2024-12-25, name: Christmas, recurring: true}\n"
    )

    policy = SLAConfigManager().load(path)

    assert policy.business_hours.enabled is True
    assert policy.business_hours.weekdays == [0, 1, 2, 3]
    assert policy.business_hours.holidays[0].recurring is True
    calendar = BusinessCalendar(policy.business_hours)
    assert calendar.is_holiday(datetime(2031, 12, 25).date())
    assert not calendar.is_working_day(datetime(2024, 1, 19).date())
