"""
SLA Infrastructure Models
==========================

SQLAlchemy ORM models for SLA module.

These are the database representations of our domain entities.
They belong in the infrastructure layer, not the domain layer.
"""

from datetime import datetime, timezone
from typing import Optional
from uuid import uuid4

from sqlalchemy import String, DateTime, Boolean, Integer, Index
from sqlalchemy.orm import Mapped, mapped_column

from support_sla.infrastructure.database import Base
from support_sla.config import TicketStatus


def _new_id() -> str:
    return str(uuid4())


class TicketModel(Base):
    """
    Database model for Ticket entity.

    Maps to the 'tickets' table.
    """
    __tablename__ = "tickets"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)

    priority: Mapped[str] = mapped_column(String(50), nullable=False)
    status: Mapped[str] = mapped_column(String(50), nullable=False, default=TicketStatus.OPEN, index=True)
    title: Mapped[str] = mapped_column(String(500), nullable=False, default="")
    assigned_to_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
    responded_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    resolved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    closed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # SLA tracking
    response_sla_deadline: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    resolution_sla_deadline: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    response_sla_status: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    resolution_sla_status: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    sla_paused_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    sla_paused_reason: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    sla_paused_seconds: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    # Budgets the deadlines were computed with
    response_sla_budget_seconds: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    resolution_sla_budget_seconds: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)


class SLATransitionModel(Base):
    """
    Database model for SLATransition events.

    Maps to the 'sla_transitions' table. Rows with notification_sent False
    form the notification outbox.
    """
    __tablename__ = "sla_transitions"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)

    ticket_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    sla_type: Mapped[str] = mapped_column(String(50), nullable=False)
    from_status: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    to_status: Mapped[str] = mapped_column(String(50), nullable=False)
    occurred_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    deadline: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    priority: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    ticket_title: Mapped[str] = mapped_column(String(500), nullable=False, default="")

    # Notification tracking
    notification_sent: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    notification_sent_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("ix_sla_transitions_pending", "notification_sent", "occurred_at"),
    )
