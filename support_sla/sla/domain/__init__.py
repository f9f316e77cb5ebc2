"""
SLA Domain Layer
================

Domain layer for SLA tracking.

Contains:
- Entities: Ticket, SLATransition, SLA snapshots
- Value Objects: SLAPolicy, SLADeadlines, BusinessHoursConfig
- Business calendar: working-time arithmetic for business-hours budgets
- Domain Services: DeadlineCalculator, SLAStatusEvaluator, PauseTracker, SLATracker

This layer has no dependencies on infrastructure - pure Python business logic.
"""

from support_sla.sla.domain.entities import (
    Ticket,
    SLAFieldsUpdate,
    SLATransition,
    SLAClockSnapshot,
    SLASnapshot,
)
from support_sla.sla.domain.business_hours import (
    BusinessCalendar,
    BusinessHoursConfig,
    HolidayConfig,
)
from support_sla.sla.domain.value_objects import (
    SLAPolicy,
    SLATargetConfig,
    StatusThresholds,
    SLADeadlines,
    DeadlineCalculator,
    SLAStatusEvaluator,
)
from support_sla.sla.domain.tracker import PauseTracker, SLATracker

__all__ = [
    # Entities
    "Ticket",
    "SLAFieldsUpdate",
    "SLATransition",
    "SLAClockSnapshot",
    "SLASnapshot",
    # Value Objects
    "SLAPolicy",
    "SLATargetConfig",
    "StatusThresholds",
    "SLADeadlines",
    "BusinessHoursConfig",
    "HolidayConfig",
    "BusinessCalendar",
    # Domain Services
    "DeadlineCalculator",
    "SLAStatusEvaluator",
    "PauseTracker",
    "SLATracker",
]
