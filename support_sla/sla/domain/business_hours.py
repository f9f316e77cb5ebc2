"""
Business Hours
==============

Working-time calendar for SLA budgets.

With business hours enabled in the policy, budgets and pauses count only
working time: the configured weekdays between start_hour and end_hour in the
business timezone, holidays excluded. Recurring holidays match on month and
day every year.

Disabled (the default), every helper here is plain wall-clock arithmetic.
"""

from datetime import date, datetime, time, timedelta, timezone
from typing import Iterator, List, Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, Field, model_validator

from support_sla.core import MisconfiguredThresholdsException

# How far ahead to look for the next working window before giving up
MAX_SEARCH_DAYS = 3660


class HolidayConfig(BaseModel):
    """Non-working day."""
    day: date = Field(description="Holiday date; only month and day matter when recurring")
    name: str = Field(default="")
    recurring: bool = Field(default=False, description="Repeats every year")


class BusinessHoursConfig(BaseModel):
    """`business_hours` section of the SLA policy."""
    enabled: bool = Field(default=False)
    timezone: str = Field(default="UTC", description="IANA timezone of the support team")
    weekdays: List[int] = Field(
        default_factory=lambda: [0, 1, 2, 3, 4],
        description="Working weekdays, 0 = Monday"
    )
    start_hour: int = Field(default=9, description="First working hour (local)")
    end_hour: int = Field(default=17, description="Hour work stops (local, exclusive)")
    holidays: List[HolidayConfig] = Field(default_factory=list)

    @model_validator(mode="after")
    def validate_hours(self) -> "BusinessHoursConfig":
        if not 0 <= self.start_hour < self.end_hour <= 24:
            raise MisconfiguredThresholdsException(
                "business_hours needs 0 <= start_hour < end_hour <= 24",
                {"start_hour": self.start_hour, "end_hour": self.end_hour}
            )
        if not self.weekdays or any(day not in range(7) for day in self.weekdays):
            raise MisconfiguredThresholdsException(
                "business_hours.weekdays must list days between 0 (Monday) and 6",
                {"weekdays": self.weekdays}
            )
        try:
            ZoneInfo(self.timezone)
        except (ZoneInfoNotFoundError, ValueError):
            raise MisconfiguredThresholdsException(
                f"Unknown business_hours timezone '{self.timezone}'"
            )
        return self


class BusinessCalendar:
    """Working-time arithmetic over a BusinessHoursConfig."""

    def __init__(self, config: BusinessHoursConfig):
        self._tz = ZoneInfo(config.timezone)
        self._start = timedelta(hours=config.start_hour)
        self._end = timedelta(hours=config.end_hour)
        self._weekdays = frozenset(config.weekdays)
        self._fixed_holidays = {h.day for h in config.holidays if not h.recurring}
        self._recurring_holidays = {(h.day.month, h.day.day) for h in config.holidays if h.recurring}

    def is_holiday(self, day: date) -> bool:
        return day in self._fixed_holidays or (day.month, day.day) in self._recurring_holidays

    def is_working_day(self, day: date) -> bool:
        return day.weekday() in self._weekdays and not self.is_holiday(day)

    def _windows_from(self, moment: datetime) -> Iterator[Tuple[datetime, datetime]]:
        """Working windows (local time) ending after `moment`, clipped to start at it."""
        local = moment.astimezone(self._tz)
        day = local.date()
        for _ in range(MAX_SEARCH_DAYS):
            if self.is_working_day(day):
                midnight = datetime.combine(day, time(0), tzinfo=self._tz)
                opens, closes = midnight + self._start, midnight + self._end
                if closes > local:
                    yield max(opens, local), closes
            day += timedelta(days=1)
        raise MisconfiguredThresholdsException(
            f"No working hours within {MAX_SEARCH_DAYS} days of {moment.isoformat()}"
        )

    def add(self, moment: datetime, duration: timedelta) -> datetime:
        """Instant at which `duration` of working time has passed after `moment`."""
        if duration <= timedelta(0):
            return moment
        remaining = duration
        for opens, closes in self._windows_from(moment):
            available = closes - opens
            if remaining <= available:
                return (opens + remaining).astimezone(timezone.utc)
            remaining -= available

    def between(self, start: datetime, end: datetime) -> timedelta:
        """Working time in [start, end); zero when end is not after start."""
        total = timedelta(0)
        if end <= start:
            return total
        local_end = end.astimezone(self._tz)
        for opens, closes in self._windows_from(start):
            if opens >= local_end:
                break
            total += min(closes, local_end) - opens
        return total


def add_working_time(
    moment: datetime,
    duration: timedelta,
    calendar: Optional[BusinessCalendar] = None
) -> datetime:
    if calendar is None:
        return moment + duration
    return calendar.add(moment, duration)


def working_time_between(
    start: datetime,
    end: datetime,
    calendar: Optional[BusinessCalendar] = None
) -> timedelta:
    """Time counted between two instants, never negative."""
    if calendar is None:
        return max(end - start, timedelta(0))
    return calendar.between(start, end)


def working_time_left(
    moment: datetime,
    deadline: datetime,
    calendar: Optional[BusinessCalendar] = None
) -> timedelta:
    """Time left until `deadline`; negative once it has passed."""
    if deadline >= moment:
        return working_time_between(moment, deadline, calendar)
    return -working_time_between(deadline, moment, calendar)
