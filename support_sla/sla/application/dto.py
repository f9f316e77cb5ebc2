"""
SLA Application DTOs
=====================

Data Transfer Objects for SLA API layer.

These Pydantic models handle serialization/deserialization and validation
for API requests and responses.
"""

from datetime import datetime, timezone
from typing import Dict, List, Literal, Optional
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator

from support_sla.config import TicketStatus
from support_sla.sla.domain import Ticket, SLAClockSnapshot, SLASnapshot


# ========== Type Aliases for Literals ==========
TicketStatusStr = Literal["open", "in_progress", "waiting_on_user", "resolved", "closed", "rejected"]
SLAStatusStr = Literal["on_track", "approaching", "critical", "breached", "paused"]


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# ========== Request DTOs ==========

class TicketOpenRequest(BaseModel):
    """Request model for starting SLA tracking of a ticket."""
    id: str = Field(default_factory=lambda: str(uuid4()), min_length=1, max_length=64, description="Ticket ID")
    priority: str = Field(..., min_length=1, description="Priority key from the SLA policy")
    title: str = Field(default="", max_length=500, description="Ticket title")
    assigned_to_id: Optional[str] = Field(None, max_length=64, description="Assigned agent")
    created_at: Optional[datetime] = Field(None, description="Creation time; defaults to now")

    @field_validator("priority")
    @classmethod
    def normalize_priority(cls, v: str) -> str:
        return v.strip().lower()

    @field_validator("created_at")
    @classmethod
    def ensure_timezone(cls, v: Optional[datetime]) -> Optional[datetime]:
        """Naive timestamps are taken as UTC."""
        return _as_utc(v)

    def to_domain(self, now: datetime) -> Ticket:
        return Ticket(
            id=self.id,
            priority=self.priority,
            status=TicketStatus.OPEN,
            created_at=self.created_at or now,
            title=self.title,
            assigned_to_id=self.assigned_to_id,
        )


class StatusChangeRequest(BaseModel):
    """Request model for a ticket status change."""
    status: TicketStatusStr = Field(..., description="New ticket status")
    reason: Optional[str] = Field(None, max_length=255, description="Pause reason, if pausing")


# ========== Response DTOs ==========

class SLAClockResponse(BaseModel):
    """Response model for one SLA clock."""
    deadline: Optional[datetime] = Field(None, description="Current deadline")
    budget_seconds: float = Field(..., description="Configured budget")
    status: Optional[SLAStatusStr] = Field(None, description="Current SLA status")
    remaining_seconds: float = Field(..., description="Time remaining; negative when overdue")
    percentage_remaining: float = Field(..., description="Percentage of the budget remaining")
    is_breached: bool = Field(..., description="Whether the SLA is breached")
    stopped_at: Optional[datetime] = Field(None, description="Response or resolution time")

    @classmethod
    def from_snapshot(cls, clock: SLAClockSnapshot) -> "SLAClockResponse":
        return cls(
            deadline=clock.deadline,
            budget_seconds=clock.budget_seconds,
            status=clock.status,
            remaining_seconds=clock.remaining_seconds,
            percentage_remaining=round(clock.percentage_remaining, 2),
            is_breached=clock.is_breached,
            stopped_at=clock.stopped_at,
        )


class TicketSLAResponse(BaseModel):
    """Response model for ticket SLA information."""
    ticket_id: str
    ticket_status: TicketStatusStr
    priority: str
    evaluated_at: datetime
    paused_at: Optional[datetime] = None
    paused_seconds: float = 0.0
    response_sla: SLAClockResponse = Field(..., description="Response SLA clock")
    resolution_sla: SLAClockResponse = Field(..., description="Resolution SLA clock")
    overall_status: Optional[SLAStatusStr] = Field(None, description="Most urgent of the two statuses")

    @classmethod
    def from_snapshot(cls, snapshot: SLASnapshot) -> "TicketSLAResponse":
        return cls(
            ticket_id=snapshot.ticket_id,
            ticket_status=snapshot.ticket_status,
            priority=snapshot.priority,
            evaluated_at=snapshot.evaluated_at,
            paused_at=snapshot.paused_at,
            paused_seconds=snapshot.paused_seconds,
            response_sla=SLAClockResponse.from_snapshot(snapshot.response),
            resolution_sla=SLAClockResponse.from_snapshot(snapshot.resolution),
            overall_status=snapshot.most_urgent_status,
        )


class EvaluationSummaryResponse(BaseModel):
    """Response model for one evaluation pass."""
    started_at: datetime
    tickets_evaluated: int
    tickets_updated: int
    transitions_emitted: int
    stale_skipped: int
    notifications_sent: int
    notification_failures: int
    errors: int
    error_details: List[str] = Field(default_factory=list)


class DashboardResponse(BaseModel):
    """Active tickets per SLA status."""
    response: Dict[str, int] = Field(..., description="Counts by response SLA status")
    resolution: Dict[str, int] = Field(..., description="Counts by resolution SLA status")
    unknown_priority: int = Field(default=0, description="Active tickets whose priority has no budget")
