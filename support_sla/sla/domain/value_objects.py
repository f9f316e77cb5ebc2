"""
SLA Value Objects
==================

Immutable value objects and stateless calculators for the SLA domain.

Value objects are defined by their attributes rather than an identity.
They are immutable and can be freely shared.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, model_validator

from support_sla.config import (
    Priority, SLAType, SLAStatus, ReopenPolicy,
    VALID_SLA_TYPES, VALID_SLA_STATUSES, VALID_REOPEN_POLICIES
)
from support_sla.core import InvalidPriorityException, MisconfiguredThresholdsException
from support_sla.sla.domain.business_hours import (
    BusinessCalendar, BusinessHoursConfig, add_working_time, working_time_left
)


class SLATargetConfig(BaseModel):
    """Response/resolution budget for one priority, in minutes."""
    response: int = Field(description="Minutes allowed until first response")
    resolution: int = Field(description="Minutes allowed until resolution")

    def minutes_for(self, sla_type: str) -> int:
        return self.response if sla_type == SLAType.RESPONSE else self.resolution


class StatusThresholds(BaseModel):
    """
    Remaining-time ratios at which an SLA becomes approaching / critical.

    A ratio of 0.25 means "25% or less of the budget remains".
    """
    approaching: float = Field(default=0.25)
    critical: float = Field(default=0.10)


def _default_targets() -> Dict[str, SLATargetConfig]:
    return {
        Priority.URGENT: SLATargetConfig(response=60, resolution=240),
        Priority.HIGH: SLATargetConfig(response=240, resolution=1440),
        Priority.MEDIUM: SLATargetConfig(response=1440, resolution=4320),
        Priority.LOW: SLATargetConfig(response=4320, resolution=10080),
    }


def _default_thresholds() -> Dict[str, StatusThresholds]:
    return {sla_type: StatusThresholds() for sla_type in VALID_SLA_TYPES}


class SLAPolicy(BaseModel):
    """
    SLA policy loaded from YAML.

    Holds the budget table keyed by priority, the per-type status thresholds,
    the reopen policy, which statuses produce a notification and the optional
    business-hours calendar budgets are counted in.

    Validation failures raise MisconfiguredThresholdsException directly so a
    bad policy aborts startup instead of silently skewing every status.
    """
    sla_targets: Dict[str, SLATargetConfig] = Field(
        default_factory=_default_targets,
        description="Budgets in minutes by priority"
    )
    thresholds: Dict[str, StatusThresholds] = Field(
        default_factory=_default_thresholds,
        description="Status thresholds by SLA type"
    )
    reopen_policy: str = Field(
        default=ReopenPolicy.FROZEN,
        description="resume | reset | frozen"
    )
    notify_on: List[str] = Field(
        default_factory=lambda: [SLAStatus.CRITICAL, SLAStatus.BREACHED],
        description="Statuses whose entry triggers an outbound notification"
    )
    business_hours: BusinessHoursConfig = Field(
        default_factory=BusinessHoursConfig,
        description="Working-time calendar; wall-clock budgets when disabled"
    )

    @model_validator(mode="after")
    def validate_policy(self) -> "SLAPolicy":
        if not self.sla_targets:
            raise MisconfiguredThresholdsException("sla_targets must define at least one priority")

        for priority, target in self.sla_targets.items():
            for sla_type in VALID_SLA_TYPES:
                if target.minutes_for(sla_type) <= 0:
                    raise MisconfiguredThresholdsException(
                        f"{sla_type} budget for priority '{priority}' must be positive",
                        {"priority": priority, "sla_type": sla_type}
                    )

        for sla_type in VALID_SLA_TYPES:
            self.thresholds.setdefault(sla_type, StatusThresholds())

        for sla_type, limits in self.thresholds.items():
            if sla_type not in VALID_SLA_TYPES:
                raise MisconfiguredThresholdsException(f"Unknown SLA type '{sla_type}' in thresholds")
            for name, ratio in (("approaching", limits.approaching), ("critical", limits.critical)):
                if not 0.0 <= ratio <= 1.0:
                    raise MisconfiguredThresholdsException(
                        f"{sla_type}.{name} threshold {ratio} outside [0, 1]",
                        {"sla_type": sla_type, "threshold": name, "value": ratio}
                    )
            if limits.critical > limits.approaching:
                raise MisconfiguredThresholdsException(
                    f"{sla_type}.critical ({limits.critical}) above approaching ({limits.approaching})",
                    {"sla_type": sla_type}
                )

        if self.reopen_policy not in VALID_REOPEN_POLICIES:
            raise MisconfiguredThresholdsException(
                f"reopen_policy must be one of {VALID_REOPEN_POLICIES}",
                {"reopen_policy": self.reopen_policy}
            )

        unknown = [s for s in self.notify_on if s not in VALID_SLA_STATUSES]
        if unknown:
            raise MisconfiguredThresholdsException(f"Unknown statuses in notify_on: {unknown}")

        return self

    @property
    def priorities(self) -> List[str]:
        return list(self.sla_targets)

    def get_budget(self, priority: str, sla_type: str) -> timedelta:
        """
        Budget for a priority and SLA type.

        Raises:
            InvalidPriorityException: priority missing from sla_targets
        """
        target = self.sla_targets.get(priority)
        if target is None:
            raise InvalidPriorityException(priority, self.priorities)
        return timedelta(minutes=target.minutes_for(sla_type))

    def get_thresholds(self, sla_type: str) -> StatusThresholds:
        return self.thresholds[sla_type]


@dataclass(frozen=True)
class SLADeadlines:
    """Pair of absolute deadlines for one ticket."""
    response_deadline: datetime
    resolution_deadline: datetime

    def for_type(self, sla_type: str) -> datetime:
        if sla_type == SLAType.RESPONSE:
            return self.response_deadline
        return self.resolution_deadline


class DeadlineCalculator:
    """
    Computes SLA deadlines from priority, start time and paused time.

    deadline = start + budget + paused_so_far, where the addition counts
    working time only when the policy enables business hours. Never reads
    the clock, so identical inputs always give identical deadlines.
    """

    def __init__(self, policy: SLAPolicy):
        self._policy = policy
        self.calendar: Optional[BusinessCalendar] = (
            BusinessCalendar(policy.business_hours) if policy.business_hours.enabled else None
        )

    def budget(self, priority: str, sla_type: str) -> timedelta:
        return self._policy.get_budget(priority, sla_type)

    def compute_deadline(
        self,
        priority: str,
        sla_type: str,
        start_time: datetime,
        paused_so_far: timedelta = timedelta(0)
    ) -> datetime:
        return add_working_time(
            start_time, self.budget(priority, sla_type) + paused_so_far, self.calendar
        )

    def compute_deadlines(
        self,
        priority: str,
        start_time: datetime,
        paused_so_far: timedelta = timedelta(0)
    ) -> SLADeadlines:
        """
        Compute response and resolution deadlines.

        Raises:
            InvalidPriorityException: priority is not in the budget table
        """
        return SLADeadlines(
            response_deadline=self.compute_deadline(
                priority, SLAType.RESPONSE, start_time, paused_so_far
            ),
            resolution_deadline=self.compute_deadline(
                priority, SLAType.RESOLUTION, start_time, paused_so_far
            ),
        )


class SLAStatusEvaluator:
    """
    Pure status function for one SLA type.

    Precedence: stopping event, then pause, then remaining-time ratio.
    Remaining time is working time when a business calendar is given.
    """

    def __init__(self, thresholds: StatusThresholds, calendar: Optional[BusinessCalendar] = None):
        self._thresholds = thresholds
        self._calendar = calendar

    def evaluate(
        self,
        now: datetime,
        deadline: datetime,
        budget: timedelta,
        stopped_at: Optional[datetime] = None,
        is_paused: bool = False
    ) -> str:
        """
        Derive the SLA status.

        Args:
            now: Evaluation instant
            deadline: Current (pause-adjusted) deadline
            budget: Budget the deadline was computed with; equals the time
                between the effective start and the deadline, pauses excluded
            stopped_at: When the stopping event (response/resolution) happened
            is_paused: Whether the SLA clock is paused

        Returns:
            One of the SLAStatus values
        """
        if stopped_at is not None:
            return SLAStatus.ON_TRACK if stopped_at <= deadline else SLAStatus.BREACHED

        if is_paused:
            return SLAStatus.PAUSED

        remaining = working_time_left(now, deadline, self._calendar).total_seconds()
        if remaining <= 0:
            return SLAStatus.BREACHED

        total = budget.total_seconds()
        if total <= 0:
            # non-positive budgets never pass SLAPolicy validation
            return SLAStatus.ON_TRACK

        ratio = remaining / total
        if ratio <= self._thresholds.critical:
            return SLAStatus.CRITICAL
        if ratio <= self._thresholds.approaching:
            return SLAStatus.APPROACHING
        return SLAStatus.ON_TRACK

    def remaining_metrics(
        self,
        now: datetime,
        deadline: datetime,
        budget: timedelta,
        stopped_at: Optional[datetime] = None,
        paused_at: Optional[datetime] = None
    ) -> tuple[float, float]:
        """
        Remaining seconds (may be negative) and percentage of budget remaining.

        Measured at the stopping event when there is one, else at the start
        of the current pause, else at `now`.
        """
        reference = stopped_at or paused_at or now
        remaining = working_time_left(reference, deadline, self._calendar).total_seconds()
        total = budget.total_seconds()
        percentage = max(0.0, min(100.0, remaining / total * 100)) if total > 0 else 0.0
        return remaining, percentage
