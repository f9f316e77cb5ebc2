"""
SLA Application Services
=========================

Application services orchestrate business logic and coordinate between
domain entities and repositories.

Following SOLID principles:
- Single Responsibility: Each service has one clear purpose
- Dependency Inversion: Depend on abstractions (stores, dispatchers), not concrete implementations
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Optional, Sequence

from support_sla.config import VALID_SLA_STATUSES, SLAType
from support_sla.core import (
    InvalidPriorityException,
    NotificationDeliveryException,
    RepositoryException,
    ResourceNotFoundException,
    ValidationException,
)
from support_sla.shared.infrastructure.clock import Clock, SystemClock
from support_sla.shared.infrastructure.logging import get_logger
from support_sla.sla.domain import (
    Ticket, SLAFieldsUpdate, SLATransition, SLASnapshot,
    SLAPolicy, SLATracker
)

logger = get_logger(__name__)


# ========== Repository Interfaces (Dependency Inversion) ==========

class ITicketStore(ABC):
    """Interface for ticket data access."""

    @abstractmethod
    async def list_active_tickets(
        self,
        on_invalid: Optional[Callable[[str, Exception], None]] = None
    ) -> List[Ticket]:
        """
        Tickets whose status is open, in_progress or waiting_on_user.

        A stored row that cannot be turned into a Ticket is skipped and
        reported to `on_invalid` with its id.
        """

    @abstractmethod
    async def get_by_id(self, ticket_id: str) -> Optional[Ticket]:
        """Get ticket by id."""

    @abstractmethod
    async def create(
        self,
        ticket: Ticket,
        transitions: Sequence[SLATransition] = ()
    ) -> Ticket:
        """Insert a new ticket together with its first transitions."""

    @abstractmethod
    async def save(
        self,
        ticket: Ticket,
        transitions: Sequence[SLATransition] = ()
    ) -> Ticket:
        """Persist every field of an existing ticket together with transitions."""

    @abstractmethod
    async def update_sla_fields(
        self,
        ticket_id: str,
        fields: SLAFieldsUpdate,
        expected: Optional[SLAFieldsUpdate] = None,
        transitions: Sequence[SLATransition] = ()
    ) -> bool:
        """
        Write the SLA fields of one ticket.

        When `expected` is given the write only happens if the stored
        statuses and pause start still equal it. Returns False when
        nothing was written.
        """


class ITransitionOutbox(ABC):
    """Interface for stored transitions awaiting notification."""

    @abstractmethod
    async def get_pending(self, limit: int = 500) -> List[SLATransition]:
        """Transitions not yet delivered, oldest first."""

    @abstractmethod
    async def mark_sent(self, transition_id: str, sent_at: datetime) -> None:
        """Mark a transition as delivered."""


class INotificationDispatcher(ABC):
    """Interface for delivering SLA transitions to people."""

    @abstractmethod
    async def notify(self, transition: SLATransition) -> bool:
        """Deliver one transition. Returns True once it needs no retry."""


class ISLAPolicyProvider(ABC):
    """Interface for SLA policy access."""

    @abstractmethod
    def get_policy(self) -> SLAPolicy:
        """Get current SLA policy."""


# ========== Application Services ==========

@dataclass
class EvaluationSummary:
    """Counters of one scheduler pass."""
    started_at: datetime
    tickets_evaluated: int = 0
    tickets_updated: int = 0
    transitions_emitted: int = 0
    stale_skipped: int = 0
    notifications_sent: int = 0
    notification_failures: int = 0
    errors: int = 0
    error_details: List[str] = field(default_factory=list)

    def record_error(self, ticket_id: Optional[str], error: Exception) -> None:
        self.errors += 1
        prefix = f"{ticket_id}: " if ticket_id else ""
        self.error_details.append(f"{prefix}{type(error).__name__}: {error}")

    def to_dict(self) -> dict:
        return {
            "started_at": self.started_at.isoformat(),
            "tickets_evaluated": self.tickets_evaluated,
            "tickets_updated": self.tickets_updated,
            "transitions_emitted": self.transitions_emitted,
            "stale_skipped": self.stale_skipped,
            "notifications_sent": self.notifications_sent,
            "notification_failures": self.notification_failures,
            "errors": self.errors,
            "error_details": self.error_details,
        }


class SLAEvaluationService:
    """
    One pass of the SLA scheduler loop.

    1. Lists active tickets
    2. Refreshes pause state, deadlines and statuses per ticket
    3. Writes changed SLA fields together with the transition records
    4. Dispatches every pending transition and marks the delivered ones

    A failing ticket is logged, counted and skipped. run_once never raises.
    """

    def __init__(
        self,
        ticket_store: ITicketStore,
        outbox: ITransitionOutbox,
        dispatcher: INotificationDispatcher,
        policy_provider: ISLAPolicyProvider,
        clock: Optional[Clock] = None,
        notification_batch_size: int = 500
    ):
        self._ticket_store = ticket_store
        self._outbox = outbox
        self._dispatcher = dispatcher
        self._policy_provider = policy_provider
        self._clock = clock or SystemClock()
        self._batch_size = notification_batch_size

    async def run_once(self) -> EvaluationSummary:
        now = self._clock.now()
        summary = EvaluationSummary(started_at=now)
        tracker = SLATracker(self._policy_provider.get_policy())

        try:
            tickets = await self._ticket_store.list_active_tickets(
                on_invalid=summary.record_error
            )
        except Exception as e:
            logger.error("Failed to list active tickets", extra={"error": str(e)})
            summary.record_error(None, e)
            return summary

        for ticket in tickets:
            summary.tickets_evaluated += 1
            try:
                await self._evaluate_ticket(ticket, tracker, now, summary)
            except InvalidPriorityException as e:
                logger.warning(
                    "Skipping ticket with unknown priority",
                    extra={"ticket_id": ticket.id, "priority": e.priority}
                )
                summary.record_error(ticket.id, e)
            except RepositoryException as e:
                logger.error(
                    "Failed to persist SLA fields, will retry next run",
                    extra={"ticket_id": ticket.id, "error": e.message}
                )
                summary.record_error(ticket.id, e)
            except Exception as e:
                logger.exception(
                    "Unexpected error evaluating ticket",
                    extra={"ticket_id": ticket.id}
                )
                summary.record_error(ticket.id, e)

        await self.dispatch_pending(summary)

        logger.info("SLA evaluation pass complete", extra=summary.to_dict())
        return summary

    async def _evaluate_ticket(
        self,
        ticket: Ticket,
        tracker: SLATracker,
        now: datetime,
        summary: EvaluationSummary
    ) -> None:
        expected = ticket.sla_fields()
        transitions = tracker.refresh(ticket, now)
        fields = ticket.sla_fields()

        if fields == expected:
            return

        written = await self._ticket_store.update_sla_fields(
            ticket.id, fields, expected=expected, transitions=transitions
        )
        if not written:
            # Another pass already moved this ticket on
            summary.stale_skipped += 1
            logger.info("Skipped stale SLA update", extra={"ticket_id": ticket.id})
            return

        summary.tickets_updated += 1
        summary.transitions_emitted += len(transitions)
        for transition in transitions:
            logger.info(
                "SLA status changed",
                extra={
                    "ticket_id": ticket.id,
                    "sla_type": transition.sla_type,
                    "from_status": transition.from_status,
                    "to_status": transition.to_status,
                }
            )

    async def dispatch_pending(self, summary: EvaluationSummary) -> None:
        """Deliver stored transitions; failures stay pending for the next pass."""
        try:
            pending = await self._outbox.get_pending(self._batch_size)
        except RepositoryException as e:
            logger.error("Failed to read pending transitions", extra={"error": e.message})
            summary.record_error(None, e)
            return

        for transition in pending:
            try:
                delivered = await self._dispatcher.notify(transition)
            except NotificationDeliveryException as e:
                logger.warning(
                    "Notification not delivered, will retry next run",
                    extra={"ticket_id": transition.ticket_id, "error": e.message}
                )
                delivered = False
            except Exception:
                logger.exception(
                    "Unexpected error dispatching notification",
                    extra={"ticket_id": transition.ticket_id}
                )
                delivered = False

            if not delivered:
                summary.notification_failures += 1
                continue

            try:
                await self._outbox.mark_sent(transition.id, self._clock.now())
            except RepositoryException as e:
                logger.error(
                    "Failed to mark transition as sent",
                    extra={"transition_id": transition.id, "error": e.message}
                )
                summary.record_error(transition.ticket_id, e)
                continue
            summary.notifications_sent += 1


class TicketSLAService:
    """
    SLA side of the ticket lifecycle.

    Keeps SLA fields consistent when a ticket is opened, answered or moved
    between statuses. Transitions go to the outbox with the ticket write and
    are delivered by the next evaluation pass.
    """

    def __init__(
        self,
        ticket_store: ITicketStore,
        policy_provider: ISLAPolicyProvider,
        clock: Optional[Clock] = None
    ):
        self._ticket_store = ticket_store
        self._policy_provider = policy_provider
        self._clock = clock or SystemClock()

    def _tracker(self) -> SLATracker:
        return SLATracker(self._policy_provider.get_policy())

    async def _get(self, ticket_id: str) -> Ticket:
        ticket = await self._ticket_store.get_by_id(ticket_id)
        if ticket is None:
            raise ResourceNotFoundException("Ticket", ticket_id)
        return ticket

    async def open_ticket(self, ticket: Ticket) -> Ticket:
        """
        Start tracking a ticket.

        Raises:
            ValidationException: a ticket with this id already exists, or its
                created_at lies in the future
            InvalidPriorityException: priority is not in the budget table
        """
        now = self._clock.now()
        if ticket.created_at > now:
            raise ValidationException(
                "created_at cannot be in the future",
                {"ticket_id": ticket.id, "created_at": ticket.created_at.isoformat()}
            )
        if await self._ticket_store.get_by_id(ticket.id) is not None:
            raise ValidationException(f"Ticket '{ticket.id}' already exists", {"ticket_id": ticket.id})

        transitions = self._tracker().refresh(ticket, now)
        created = await self._ticket_store.create(ticket, transitions)
        logger.info(
            "Ticket SLA tracking started",
            extra={
                "ticket_id": ticket.id,
                "priority": ticket.priority,
                "response_deadline": ticket.response_sla_deadline.isoformat(),
                "resolution_deadline": ticket.resolution_sla_deadline.isoformat(),
            }
        )
        return created

    async def change_status(
        self,
        ticket_id: str,
        new_status: str,
        reason: Optional[str] = None
    ) -> Ticket:
        ticket = await self._get(ticket_id)
        old_status = ticket.status
        transitions = self._tracker().change_status(ticket, new_status, self._clock.now(), reason)
        saved = await self._ticket_store.save(ticket, transitions)
        logger.info(
            "Ticket status changed",
            extra={
                "ticket_id": ticket_id,
                "from_status": old_status,
                "to_status": new_status,
                "sla_paused": ticket.is_paused,
                "transitions": len(transitions),
            }
        )
        return saved

    async def record_response(self, ticket_id: str) -> Ticket:
        ticket = await self._get(ticket_id)
        transitions = self._tracker().record_response(ticket, self._clock.now())
        return await self._ticket_store.save(ticket, transitions)

    async def get_snapshot(self, ticket_id: str) -> SLASnapshot:
        ticket = await self._get(ticket_id)
        return self._tracker().snapshot(ticket, self._clock.now())

    async def dashboard(self) -> Dict[str, Dict[str, int]]:
        """Active tickets counted per live SLA status, per SLA type."""
        tracker = self._tracker()
        now = self._clock.now()
        counts = {
            sla_type: {status: 0 for status in VALID_SLA_STATUSES}
            for sla_type in (SLAType.RESPONSE, SLAType.RESOLUTION)
        }
        counts["unknown_priority"] = {"tickets": 0}

        for ticket in await self._ticket_store.list_active_tickets():
            try:
                statuses = tracker.evaluate(ticket, now)
            except InvalidPriorityException:
                counts["unknown_priority"]["tickets"] += 1
                continue
            for sla_type, status in statuses.items():
                counts[sla_type][status] += 1

        return counts
