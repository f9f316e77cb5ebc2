"""
SLA Application Layer
======================

Application layer for SLA tracking.

Contains:
- Services: Orchestrate business logic and coordinate with repositories
- DTOs: Data transfer objects for API serialization

This layer depends on the domain layer and repository interfaces,
but not on concrete infrastructure implementations.
"""

from support_sla.sla.application.dto import (
    TicketOpenRequest,
    StatusChangeRequest,
    SLAClockResponse,
    TicketSLAResponse,
    EvaluationSummaryResponse,
    DashboardResponse,
)
from support_sla.sla.application.services import (
    EvaluationSummary,
    SLAEvaluationService,
    TicketSLAService,
    ITicketStore,
    ITransitionOutbox,
    INotificationDispatcher,
    ISLAPolicyProvider,
)

__all__ = [
    # DTOs
    "TicketOpenRequest",
    "StatusChangeRequest",
    "SLAClockResponse",
    "TicketSLAResponse",
    "EvaluationSummaryResponse",
    "DashboardResponse",
    # Services
    "EvaluationSummary",
    "SLAEvaluationService",
    "TicketSLAService",
    # Interfaces
    "ITicketStore",
    "ITransitionOutbox",
    "INotificationDispatcher",
    "ISLAPolicyProvider",
]
