"""
SLA Tracker
===========

Per-ticket SLA state machine.

PauseTracker owns the RUNNING/PAUSED clock state. SLATracker combines it
with the DeadlineCalculator and one SLAStatusEvaluator per SLA type, and is
the only code that writes the SLA fields of a Ticket. Every method takes
`now` explicitly; nothing here reads the system clock.
"""

from datetime import datetime, timedelta
from typing import Dict, List, Optional

from support_sla.config import (
    SLAType, TicketStatus, ReopenPolicy,
    VALID_SLA_TYPES, VALID_STATUSES, ACTIVE_STATUSES, TERMINAL_STATUSES
)
from support_sla.core import ValidationException
from support_sla.sla.domain.business_hours import (
    BusinessCalendar, add_working_time, working_time_between
)
from support_sla.sla.domain.entities import (
    Ticket, SLATransition, SLAClockSnapshot, SLASnapshot
)
from support_sla.sla.domain.value_objects import (
    SLAPolicy, DeadlineCalculator, SLAStatusEvaluator
)


WAITING_ON_USER_REASON = "waiting_on_user"


class PauseTracker:
    """
    RUNNING / PAUSED clock per ticket.

    `sla_paused_at is None` means RUNNING. Pause lengths count working time
    when a business calendar is given.
    """

    def __init__(self, calendar: Optional[BusinessCalendar] = None):
        self._calendar = calendar

    def pause(self, ticket: Ticket, now: datetime, reason: Optional[str] = None) -> bool:
        """
        RUNNING -> PAUSED.

        Returns False when the ticket was already paused; the original pause
        start is kept so pauses never stack.
        """
        if ticket.is_paused:
            return False
        ticket.sla_paused_at = now
        ticket.sla_paused_reason = reason
        return True

    def resume(self, ticket: Ticket, now: datetime) -> timedelta:
        """
        PAUSED -> RUNNING.

        Adds the pause to the cumulative paused duration and pushes every
        deadline whose stopping event has not happened by the same amount.

        Returns:
            The length of the pause that just ended (zero if not paused)
        """
        if not ticket.is_paused:
            return timedelta(0)

        pause_duration = working_time_between(ticket.sla_paused_at, now, self._calendar)
        ticket.sla_paused_duration += pause_duration

        for sla_type in VALID_SLA_TYPES:
            deadline = ticket.deadline_for(sla_type)
            if deadline is not None and ticket.stopped_at_for(sla_type) is None:
                ticket.set_deadline(sla_type, add_working_time(deadline, pause_duration, self._calendar))

        ticket.sla_paused_at = None
        ticket.sla_paused_reason = None
        return pause_duration


class SLATracker:
    """
    Keeps a ticket's SLA deadlines, pause state and statuses consistent.

    Mutating methods return the SLATransition events for every SLA type whose
    status value changed.
    """

    def __init__(self, policy: SLAPolicy):
        self._policy = policy
        self.calculator = DeadlineCalculator(policy)
        self.evaluators: Dict[str, SLAStatusEvaluator] = {
            sla_type: SLAStatusEvaluator(policy.get_thresholds(sla_type), self.calculator.calendar)
            for sla_type in VALID_SLA_TYPES
        }
        self.pauses = PauseTracker(self.calculator.calendar)

    @property
    def policy(self) -> SLAPolicy:
        return self._policy

    # ========== Building blocks ==========

    def _deadline(self, ticket: Ticket, sla_type: str) -> datetime:
        deadline = ticket.deadline_for(sla_type)
        if deadline is None:
            deadline = self.calculator.compute_deadline(
                ticket.priority, sla_type, ticket.created_at, ticket.sla_paused_duration
            )
        return deadline

    def _budget(self, ticket: Ticket, sla_type: str) -> timedelta:
        """Budget stored with the deadline; the current policy only fills gaps."""
        return ticket.budget_for(sla_type) or self.calculator.budget(ticket.priority, sla_type)

    @staticmethod
    def _require_not_before_creation(ticket: Ticket, now: datetime) -> None:
        if now < ticket.created_at:
            raise ValidationException(
                f"Ticket '{ticket.id}' was created after {now.isoformat()}",
                {"ticket_id": ticket.id, "created_at": ticket.created_at.isoformat()}
            )

    def reconcile_pause(
        self,
        ticket: Ticket,
        now: datetime,
        reason: Optional[str] = None
    ) -> None:
        """Make the clock state agree with the ticket status."""
        if ticket.status == TicketStatus.WAITING_ON_USER:
            self.pauses.pause(ticket, now, reason or WAITING_ON_USER_REASON)
        elif ticket.is_paused:
            self.pauses.resume(ticket, now)

    def ensure_deadlines(self, ticket: Ticket) -> None:
        """
        Fill in missing deadlines from created_at and the paused time so far,
        recording the budget each one was computed with.

        Raises:
            InvalidPriorityException: priority is not in the budget table
        """
        for sla_type in VALID_SLA_TYPES:
            if ticket.deadline_for(sla_type) is None:
                ticket.set_deadline(sla_type, self._deadline(ticket, sla_type))
                ticket.set_budget(sla_type, self.calculator.budget(ticket.priority, sla_type))
            elif ticket.budget_for(sla_type) is None:
                ticket.set_budget(sla_type, self.calculator.budget(ticket.priority, sla_type))

    def evaluate(self, ticket: Ticket, now: datetime) -> Dict[str, str]:
        """Compute both statuses without touching the ticket."""
        results = {}
        for sla_type in VALID_SLA_TYPES:
            results[sla_type] = self.evaluators[sla_type].evaluate(
                now,
                self._deadline(ticket, sla_type),
                self._budget(ticket, sla_type),
                stopped_at=ticket.stopped_at_for(sla_type),
                is_paused=ticket.is_paused,
            )
        return results

    def _apply_statuses(self, ticket: Ticket, now: datetime) -> List[SLATransition]:
        transitions = []
        for sla_type, new_status in self.evaluate(ticket, now).items():
            old_status = ticket.status_for(sla_type)
            if new_status == old_status:
                continue
            ticket.set_status(sla_type, new_status)
            transitions.append(SLATransition(
                ticket_id=ticket.id,
                sla_type=sla_type,
                from_status=old_status,
                to_status=new_status,
                occurred_at=now,
                deadline=ticket.deadline_for(sla_type),
                priority=ticket.priority,
                ticket_title=ticket.title,
            ))
        return transitions

    # ========== Operations ==========

    def refresh(self, ticket: Ticket, now: datetime) -> List[SLATransition]:
        """
        Bring deadlines, pause state and statuses up to date at `now`.

        Used both when a ticket is first tracked and on every scheduler pass.
        """
        self.ensure_deadlines(ticket)
        self.reconcile_pause(ticket, now)
        return self._apply_statuses(ticket, now)

    def record_response(self, ticket: Ticket, now: datetime) -> List[SLATransition]:
        """
        Stamp the first response; later calls keep the first timestamp.

        Raises:
            ValidationException: `now` is before the ticket was created
        """
        self.ensure_deadlines(ticket)
        if ticket.responded_at is None:
            self._require_not_before_creation(ticket, now)
            ticket.responded_at = now
            ticket.updated_at = now
        return self._apply_statuses(ticket, now)

    def change_status(
        self,
        ticket: Ticket,
        new_status: str,
        now: datetime,
        reason: Optional[str] = None
    ) -> List[SLATransition]:
        """
        Move the ticket to a new status and keep the SLA fields consistent.

        Raises:
            ValidationException: unknown status, or `now` is before the
                ticket was created
            InvalidPriorityException: priority is not in the budget table
        """
        if new_status not in VALID_STATUSES:
            raise ValidationException(
                f"Unknown ticket status '{new_status}'",
                {"status": new_status, "allowed": VALID_STATUSES}
            )

        self.ensure_deadlines(ticket)
        if new_status == ticket.status:
            return []
        self._require_not_before_creation(ticket, now)

        old_status = ticket.status
        ticket.status = new_status
        ticket.updated_at = now

        if old_status in TERMINAL_STATUSES and new_status in ACTIVE_STATUSES:
            self._reopen(ticket, now)

        # Resume before stamping resolved_at so the paused time still
        # extends the resolution deadline.
        self.reconcile_pause(ticket, now, reason)

        if new_status in (TicketStatus.RESOLVED, TicketStatus.CLOSED):
            if ticket.resolved_at is None:
                ticket.resolved_at = now
            if ticket.responded_at is None:
                ticket.responded_at = now
        if new_status in (TicketStatus.CLOSED, TicketStatus.REJECTED):
            ticket.closed_at = now

        return self._apply_statuses(ticket, now)

    def _reopen(self, ticket: Ticket, now: datetime) -> None:
        ticket.closed_at = None
        if ticket.resolved_at is None:
            return

        policy = self._policy.reopen_policy
        calendar = self.calculator.calendar
        if policy == ReopenPolicy.RESUME:
            resolved_for = working_time_between(ticket.resolved_at, now, calendar)
            ticket.resolution_sla_deadline = add_working_time(
                ticket.resolution_sla_deadline, resolved_for, calendar
            )
            ticket.resolved_at = None
        elif policy == ReopenPolicy.RESET:
            ticket.resolution_sla_deadline = self.calculator.compute_deadline(
                ticket.priority, SLAType.RESOLUTION, now
            )
            ticket.resolution_sla_budget = self.calculator.budget(ticket.priority, SLAType.RESOLUTION)
            ticket.resolved_at = None
        # ReopenPolicy.FROZEN keeps resolved_at, so the resolution status stays put

    # ========== Read model ==========

    def snapshot(self, ticket: Ticket, now: datetime) -> SLASnapshot:
        """
        Live SLA view of a ticket.

        Terminal tickets report their stored statuses, which stopped moving
        when the ticket left the active set.
        """
        live = None if ticket.is_terminal else self.evaluate(ticket, now)
        clocks = {}
        for sla_type in VALID_SLA_TYPES:
            budget = self._budget(ticket, sla_type)
            deadline = self._deadline(ticket, sla_type)
            stopped_at = ticket.stopped_at_for(sla_type)
            remaining, percentage = self.evaluators[sla_type].remaining_metrics(
                now, deadline, budget, stopped_at, ticket.sla_paused_at
            )
            clocks[sla_type] = SLAClockSnapshot(
                sla_type=sla_type,
                deadline=deadline,
                budget_seconds=budget.total_seconds(),
                status=live[sla_type] if live else ticket.status_for(sla_type),
                remaining_seconds=remaining,
                percentage_remaining=percentage,
                stopped_at=stopped_at,
            )

        return SLASnapshot(
            ticket_id=ticket.id,
            ticket_status=ticket.status,
            priority=ticket.priority,
            evaluated_at=now,
            response=clocks[SLAType.RESPONSE],
            resolution=clocks[SLAType.RESOLUTION],
            paused_at=ticket.sla_paused_at,
            paused_seconds=ticket.sla_paused_duration.total_seconds(),
        )
