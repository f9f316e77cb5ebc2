"""
SLA Domain Entities
====================

Pure Python domain entities for SLA tracking.

Following Domain-Driven Design principles, these entities contain
business logic and are free of infrastructure concerns.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional

from support_sla.config import (
    SLAType, SLAStatus,
    ACTIVE_STATUSES, TERMINAL_STATUSES, SLA_STATUS_SEVERITY
)


@dataclass
class Ticket:
    """
    Support ticket carrying its SLA tracking fields.

    The SLA statuses are a cache of SLATracker's computation and are only
    written by it.
    """

    id: str
    priority: str
    status: str
    created_at: datetime
    updated_at: Optional[datetime] = None
    title: str = ""
    assigned_to_id: Optional[str] = None

    # SLA-stopping and terminal events
    responded_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None

    # SLA tracking
    response_sla_deadline: Optional[datetime] = None
    resolution_sla_deadline: Optional[datetime] = None
    # Budgets the deadlines were computed with
    response_sla_budget: Optional[timedelta] = None
    resolution_sla_budget: Optional[timedelta] = None
    response_sla_status: Optional[str] = None
    resolution_sla_status: Optional[str] = None
    sla_paused_at: Optional[datetime] = None
    sla_paused_reason: Optional[str] = None
    sla_paused_duration: timedelta = field(default_factory=timedelta)

    def __post_init__(self):
        """Validate ticket on initialization."""
        if self.updated_at is None:
            self.updated_at = self.created_at

        if self.updated_at < self.created_at:
            raise ValueError("updated_at cannot be before created_at")

        if self.responded_at and self.responded_at < self.created_at:
            raise ValueError("responded_at cannot be before created_at")

        if self.resolved_at and self.resolved_at < self.created_at:
            raise ValueError("resolved_at cannot be before created_at")

        if self.sla_paused_duration < timedelta(0):
            raise ValueError("sla_paused_duration cannot be negative")

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def is_paused(self) -> bool:
        return self.sla_paused_at is not None

    def deadline_for(self, sla_type: str) -> Optional[datetime]:
        if sla_type == SLAType.RESPONSE:
            return self.response_sla_deadline
        return self.resolution_sla_deadline

    def set_deadline(self, sla_type: str, value: Optional[datetime]) -> None:
        if sla_type == SLAType.RESPONSE:
            self.response_sla_deadline = value
        else:
            self.resolution_sla_deadline = value

    def budget_for(self, sla_type: str) -> Optional[timedelta]:
        if sla_type == SLAType.RESPONSE:
            return self.response_sla_budget
        return self.resolution_sla_budget

    def set_budget(self, sla_type: str, value: timedelta) -> None:
        if sla_type == SLAType.RESPONSE:
            self.response_sla_budget = value
        else:
            self.resolution_sla_budget = value

    def status_for(self, sla_type: str) -> Optional[str]:
        if sla_type == SLAType.RESPONSE:
            return self.response_sla_status
        return self.resolution_sla_status

    def set_status(self, sla_type: str, value: str) -> None:
        if sla_type == SLAType.RESPONSE:
            self.response_sla_status = value
        else:
            self.resolution_sla_status = value

    def stopped_at_for(self, sla_type: str) -> Optional[datetime]:
        """Stopping event of an SLA type: first response or resolution."""
        if sla_type == SLAType.RESPONSE:
            return self.responded_at
        return self.resolved_at

    def sla_fields(self) -> "SLAFieldsUpdate":
        return SLAFieldsUpdate(
            response_sla_status=self.response_sla_status,
            resolution_sla_status=self.resolution_sla_status,
            sla_paused_at=self.sla_paused_at,
            sla_paused_duration=self.sla_paused_duration,
            response_sla_deadline=self.response_sla_deadline,
            resolution_sla_deadline=self.resolution_sla_deadline,
            response_sla_budget=self.response_sla_budget,
            resolution_sla_budget=self.resolution_sla_budget,
        )


@dataclass(frozen=True)
class SLAFieldsUpdate:
    """Write-set of a scheduler pass for one ticket."""
    response_sla_status: Optional[str]
    resolution_sla_status: Optional[str]
    sla_paused_at: Optional[datetime]
    sla_paused_duration: timedelta
    response_sla_deadline: Optional[datetime]
    resolution_sla_deadline: Optional[datetime]
    response_sla_budget: Optional[timedelta] = None
    resolution_sla_budget: Optional[timedelta] = None


@dataclass
class SLATransition:
    """
    Event emitted when a persisted SLA status changes value.

    `id` is assigned by the outbox once the transition is stored.
    """

    ticket_id: str
    sla_type: str
    from_status: Optional[str]
    to_status: str
    occurred_at: datetime
    deadline: Optional[datetime] = None
    priority: Optional[str] = None
    ticket_title: str = ""
    id: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "ticket_id": self.ticket_id,
            "sla_type": self.sla_type,
            "from_status": self.from_status,
            "to_status": self.to_status,
            "occurred_at": self.occurred_at.isoformat(),
            "deadline": self.deadline.isoformat() if self.deadline else None,
            "priority": self.priority,
        }


@dataclass
class SLAClockSnapshot:
    """Point-in-time view of one SLA clock."""
    sla_type: str
    deadline: Optional[datetime]
    budget_seconds: float
    status: Optional[str]
    remaining_seconds: float
    percentage_remaining: float
    stopped_at: Optional[datetime] = None

    @property
    def is_breached(self) -> bool:
        return self.status == SLAStatus.BREACHED

    def to_dict(self) -> dict:
        return {
            "deadline": self.deadline.isoformat() if self.deadline else None,
            "budget_seconds": self.budget_seconds,
            "status": self.status,
            "remaining_seconds": self.remaining_seconds,
            "percentage_remaining": self.percentage_remaining,
            "is_breached": self.is_breached,
            "stopped_at": self.stopped_at.isoformat() if self.stopped_at else None,
        }


@dataclass
class SLASnapshot:
    """SLA view of a ticket, both clocks included."""
    ticket_id: str
    ticket_status: str
    priority: str
    evaluated_at: datetime
    response: SLAClockSnapshot
    resolution: SLAClockSnapshot
    paused_at: Optional[datetime] = None
    paused_seconds: float = 0.0

    @property
    def most_urgent_status(self) -> Optional[str]:
        """Worst of the two statuses; paused only when neither is ranked."""
        statuses = [s for s in (self.response.status, self.resolution.status) if s]
        ranked = [s for s in statuses if s in SLA_STATUS_SEVERITY]
        if ranked:
            return max(ranked, key=SLA_STATUS_SEVERITY.__getitem__)
        return statuses[0] if statuses else None

    def to_dict(self) -> dict:
        return {
            "ticket_id": self.ticket_id,
            "ticket_status": self.ticket_status,
            "priority": self.priority,
            "evaluated_at": self.evaluated_at.isoformat(),
            "paused_at": self.paused_at.isoformat() if self.paused_at else None,
            "paused_seconds": self.paused_seconds,
            "response": self.response.to_dict(),
            "resolution": self.resolution.to_dict(),
            "overall_status": self.most_urgent_status,
        }
