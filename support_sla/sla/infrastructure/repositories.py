"""
SLA Infrastructure Repositories
=================================

Concrete implementations of repository interfaces using SQLAlchemy.

This layer contains the data access logic - how we store and retrieve
entities from the database.
"""

from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional, Sequence
from uuid import uuid4

from sqlalchemy import select, update, and_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from support_sla.config import ACTIVE_STATUSES
from support_sla.core import (
    InvalidTicketRecordException, RepositoryException, ValidationException
)
from support_sla.shared.infrastructure.logging import get_logger
from support_sla.sla.application.services import ITicketStore, ITransitionOutbox
from support_sla.sla.domain import Ticket, SLAFieldsUpdate, SLATransition
from support_sla.sla.infrastructure.models import TicketModel, SLATransitionModel

logger = get_logger(__name__)


def _utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; everything here is stored in UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _seconds(value: Optional[timedelta]) -> Optional[int]:
    return None if value is None else int(value.total_seconds())


def _duration(seconds: Optional[int]) -> Optional[timedelta]:
    return None if seconds is None else timedelta(seconds=seconds)


def _matches(column, value):
    return column.is_(None) if value is None else column == value


class SQLAlchemyTicketStore(ITicketStore):
    """
    SQLAlchemy implementation of the ticket store.

    Every write commits its own transaction so that one failing ticket
    never undoes the work done for the others.
    """

    def __init__(self, session: AsyncSession):
        self._session = session

    # ========== Mapping ==========

    @staticmethod
    def _to_domain(model: TicketModel) -> Ticket:
        """
        Raises:
            InvalidTicketRecordException: the row breaks a Ticket invariant
        """
        try:
            return SQLAlchemyTicketStore._build_ticket(model)
        except (ValueError, TypeError) as e:
            raise InvalidTicketRecordException(model.id, str(e))

    @staticmethod
    def _build_ticket(model: TicketModel) -> Ticket:
        return Ticket(
            id=model.id,
            priority=model.priority,
            status=model.status,
            title=model.title or "",
            assigned_to_id=model.assigned_to_id,
            created_at=_utc(model.created_at),
            updated_at=_utc(model.updated_at),
            responded_at=_utc(model.responded_at),
            resolved_at=_utc(model.resolved_at),
            closed_at=_utc(model.closed_at),
            response_sla_deadline=_utc(model.response_sla_deadline),
            resolution_sla_deadline=_utc(model.resolution_sla_deadline),
            response_sla_budget=_duration(model.response_sla_budget_seconds),
            resolution_sla_budget=_duration(model.resolution_sla_budget_seconds),
            response_sla_status=model.response_sla_status,
            resolution_sla_status=model.resolution_sla_status,
            sla_paused_at=_utc(model.sla_paused_at),
            sla_paused_reason=model.sla_paused_reason,
            sla_paused_duration=timedelta(seconds=model.sla_paused_seconds or 0),
        )

    @staticmethod
    def _apply(model: TicketModel, ticket: Ticket) -> None:
        model.priority = ticket.priority
        model.status = ticket.status
        model.title = ticket.title
        model.assigned_to_id = ticket.assigned_to_id
        model.created_at = ticket.created_at
        model.updated_at = ticket.updated_at
        model.responded_at = ticket.responded_at
        model.resolved_at = ticket.resolved_at
        model.closed_at = ticket.closed_at
        model.response_sla_deadline = ticket.response_sla_deadline
        model.resolution_sla_deadline = ticket.resolution_sla_deadline
        model.response_sla_budget_seconds = _seconds(ticket.response_sla_budget)
        model.resolution_sla_budget_seconds = _seconds(ticket.resolution_sla_budget)
        model.response_sla_status = ticket.response_sla_status
        model.resolution_sla_status = ticket.resolution_sla_status
        model.sla_paused_at = ticket.sla_paused_at
        model.sla_paused_reason = ticket.sla_paused_reason
        model.sla_paused_seconds = int(ticket.sla_paused_duration.total_seconds())

    def _add_transitions(self, transitions: Sequence[SLATransition]) -> None:
        for transition in transitions:
            model = SLATransitionModel(
                ticket_id=transition.ticket_id,
                sla_type=transition.sla_type,
                from_status=transition.from_status,
                to_status=transition.to_status,
                occurred_at=transition.occurred_at,
                deadline=transition.deadline,
                priority=transition.priority,
                ticket_title=transition.ticket_title,
                notification_sent=False,
            )
            if transition.id is None:
                transition.id = str(uuid4())
            model.id = transition.id
            self._session.add(model)

    async def _commit(self, action: str, ticket_id: str) -> None:
        try:
            await self._session.commit()
        except SQLAlchemyError as e:
            await self._session.rollback()
            raise RepositoryException(
                f"Failed to {action} ticket {ticket_id}",
                {"ticket_id": ticket_id, "error": str(e)}
            )

    # ========== Queries ==========

    async def list_active_tickets(
        self,
        on_invalid: Optional[Callable[[str, Exception], None]] = None
    ) -> List[Ticket]:
        """
        Active tickets, oldest first.

        Rows that cannot be mapped are logged, reported to `on_invalid` and
        left out instead of failing the whole listing.
        """
        stmt = (
            select(TicketModel)
            .where(TicketModel.status.in_(ACTIVE_STATUSES))
            .order_by(TicketModel.created_at.asc())
            .execution_options(populate_existing=True)
        )
        try:
            result = await self._session.execute(stmt)
        except SQLAlchemyError as e:
            raise RepositoryException("Failed to list active tickets", {"error": str(e)})
        tickets = []
        for model in result.scalars().all():
            try:
                tickets.append(self._to_domain(model))
            except InvalidTicketRecordException as e:
                logger.error(
                    "Skipping unreadable ticket row",
                    extra={"ticket_id": e.ticket_id, "error": e.message}
                )
                if on_invalid is not None:
                    on_invalid(e.ticket_id, e)
        return tickets

    async def get_by_id(self, ticket_id: str) -> Optional[Ticket]:
        model = await self._get_model(ticket_id)
        return self._to_domain(model) if model else None

    async def _get_model(self, ticket_id: str) -> Optional[TicketModel]:
        stmt = (
            select(TicketModel)
            .where(TicketModel.id == ticket_id)
            .execution_options(populate_existing=True)
        )
        try:
            result = await self._session.execute(stmt)
        except SQLAlchemyError as e:
            raise RepositoryException(f"Failed to load ticket {ticket_id}", {"error": str(e)})
        return result.scalar_one_or_none()

    # ========== Writes ==========

    async def create(
        self,
        ticket: Ticket,
        transitions: Sequence[SLATransition] = ()
    ) -> Ticket:
        if await self._get_model(ticket.id) is not None:
            raise ValidationException(f"Ticket '{ticket.id}' already exists", {"ticket_id": ticket.id})

        model = TicketModel(id=ticket.id)
        self._apply(model, ticket)
        self._session.add(model)
        self._add_transitions(transitions)
        try:
            await self._session.commit()
        except IntegrityError:
            await self._session.rollback()
            raise ValidationException(f"Ticket '{ticket.id}' already exists", {"ticket_id": ticket.id})
        except SQLAlchemyError as e:
            await self._session.rollback()
            raise RepositoryException(
                f"Failed to create ticket {ticket.id}",
                {"ticket_id": ticket.id, "error": str(e)}
            )
        return ticket

    async def save(
        self,
        ticket: Ticket,
        transitions: Sequence[SLATransition] = ()
    ) -> Ticket:
        model = await self._get_model(ticket.id)
        if model is None:
            raise RepositoryException(f"Ticket {ticket.id} not found", {"ticket_id": ticket.id})
        self._apply(model, ticket)
        self._add_transitions(transitions)
        await self._commit("save", ticket.id)
        return ticket

    async def update_sla_fields(
        self,
        ticket_id: str,
        fields: SLAFieldsUpdate,
        expected: Optional[SLAFieldsUpdate] = None,
        transitions: Sequence[SLATransition] = ()
    ) -> bool:
        conditions = [TicketModel.id == ticket_id]
        if expected is not None:
            conditions.extend([
                _matches(TicketModel.response_sla_status, expected.response_sla_status),
                _matches(TicketModel.resolution_sla_status, expected.resolution_sla_status),
                _matches(TicketModel.sla_paused_at, expected.sla_paused_at),
            ])

        stmt = (
            update(TicketModel)
            .where(and_(*conditions))
            .values(
                response_sla_status=fields.response_sla_status,
                resolution_sla_status=fields.resolution_sla_status,
                response_sla_deadline=fields.response_sla_deadline,
                resolution_sla_deadline=fields.resolution_sla_deadline,
                response_sla_budget_seconds=_seconds(fields.response_sla_budget),
                resolution_sla_budget_seconds=_seconds(fields.resolution_sla_budget),
                sla_paused_at=fields.sla_paused_at,
                sla_paused_seconds=int(fields.sla_paused_duration.total_seconds()),
            )
            .execution_options(synchronize_session=False)
        )

        try:
            result = await self._session.execute(stmt)
            if result.rowcount == 0:
                await self._session.rollback()
                return False
            self._add_transitions(transitions)
            await self._session.commit()
        except SQLAlchemyError as e:
            await self._session.rollback()
            raise RepositoryException(
                f"Failed to update SLA fields of ticket {ticket_id}",
                {"ticket_id": ticket_id, "error": str(e)}
            )
        return True


class SQLAlchemyTransitionOutbox(ITransitionOutbox):
    """
    SQLAlchemy implementation of the transition outbox.

    Reads and acknowledges the sla_transitions rows written by the store.
    """

    def __init__(self, session: AsyncSession):
        self._session = session

    async def get_pending(self, limit: int = 500) -> List[SLATransition]:
        """Get transitions that haven't been delivered yet."""
        stmt = (
            select(SLATransitionModel)
            .where(SLATransitionModel.notification_sent == False)  # noqa: E712
            .order_by(SLATransitionModel.occurred_at.asc())
            .limit(limit)
            .execution_options(populate_existing=True)
        )
        try:
            result = await self._session.execute(stmt)
        except SQLAlchemyError as e:
            raise RepositoryException("Failed to read pending transitions", {"error": str(e)})

        return [
            SLATransition(
                id=model.id,
                ticket_id=model.ticket_id,
                sla_type=model.sla_type,
                from_status=model.from_status,
                to_status=model.to_status,
                occurred_at=_utc(model.occurred_at),
                deadline=_utc(model.deadline),
                priority=model.priority,
                ticket_title=model.ticket_title or "",
            )
            for model in result.scalars().all()
        ]

    async def mark_sent(self, transition_id: str, sent_at: datetime) -> None:
        """Mark transition as delivered."""
        stmt = (
            update(SLATransitionModel)
            .where(SLATransitionModel.id == transition_id)
            .values(notification_sent=True, notification_sent_at=sent_at)
            .execution_options(synchronize_session=False)
        )
        try:
            result = await self._session.execute(stmt)
            await self._session.commit()
        except SQLAlchemyError as e:
            await self._session.rollback()
            raise RepositoryException(
                f"Failed to mark transition {transition_id} as sent",
                {"transition_id": transition_id, "error": str(e)}
            )
        if result.rowcount == 0:
            raise RepositoryException(f"Transition {transition_id} not found")
