"""
SLA Controllers (API Routes)
=============================

FastAPI routes for SLA tracking endpoints.

Controllers are thin - they delegate to application services. Domain
errors propagate to the application exception handler, which maps them
to HTTP status codes.
"""

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from support_sla.config import settings
from support_sla.infrastructure.database import get_session
from support_sla.shared.infrastructure.clock import Clock
from support_sla.shared.infrastructure.logging import get_logger
from support_sla.sla.application import (
    SLAEvaluationService,
    TicketSLAService,
    INotificationDispatcher,
    ISLAPolicyProvider,
    TicketOpenRequest,
    StatusChangeRequest,
    TicketSLAResponse,
    EvaluationSummaryResponse,
    DashboardResponse,
)
from support_sla.sla.infrastructure.repositories import (
    SQLAlchemyTicketStore,
    SQLAlchemyTransitionOutbox,
)

logger = get_logger(__name__)
router = APIRouter(prefix="/sla", tags=["SLA Tracking"])


# ========== Example payloads for Swagger ==========

TICKET_OPEN_EXAMPLE = {
    "id": "TICKET-001",
    "priority": "urgent",
    "title": "Cannot log in after password reset",
    "created_at": "2024-01-15T10:00:00Z"
}

TICKET_SLA_RESPONSE_EXAMPLE = {
    "ticket_id": "TICKET-001",
    "ticket_status": "open",
    "priority": "urgent",
    "evaluated_at": "2024-01-15T10:46:00Z",
    "paused_at": None,
    "paused_seconds": 0,
    "response_sla": {
        "deadline": "2024-01-15T11:00:00Z",
        "budget_seconds": 3600,
        "status": "approaching",
        "remaining_seconds": 840,
        "percentage_remaining": 23.33,
        "is_breached": False,
        "stopped_at": None
    },
    "resolution_sla": {
        "deadline": "2024-01-15T14:00:00Z",
        "budget_seconds": 14400,
        "status": "on_track",
        "remaining_seconds": 11640,
        "percentage_remaining": 80.83,
        "is_breached": False,
        "stopped_at": None
    },
    "overall_status": "approaching"
}


# ========== Dependencies ==========

def get_policy_provider(request: Request) -> ISLAPolicyProvider:
    return request.app.state.policy_provider


def get_dispatcher(request: Request) -> INotificationDispatcher:
    return request.app.state.dispatcher


def get_clock(request: Request) -> Clock:
    return request.app.state.clock


async def get_ticket_service(
    session: AsyncSession = Depends(get_session),
    policy_provider: ISLAPolicyProvider = Depends(get_policy_provider),
    clock: Clock = Depends(get_clock)
) -> TicketSLAService:
    """Get ticket SLA service instance."""
    return TicketSLAService(SQLAlchemyTicketStore(session), policy_provider, clock)


async def get_evaluation_service(
    session: AsyncSession = Depends(get_session),
    policy_provider: ISLAPolicyProvider = Depends(get_policy_provider),
    dispatcher: INotificationDispatcher = Depends(get_dispatcher),
    clock: Clock = Depends(get_clock)
) -> SLAEvaluationService:
    """Get SLA evaluation service instance."""
    return SLAEvaluationService(
        SQLAlchemyTicketStore(session),
        SQLAlchemyTransitionOutbox(session),
        dispatcher,
        policy_provider,
        clock,
        notification_batch_size=settings.sla_notification_batch_size
    )


# ========== Route Handlers ==========

@router.post(
    "/tickets",
    response_model=TicketSLAResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Start SLA tracking for a ticket",
    description="""
    Register a new ticket and compute its response and resolution deadlines
    from the priority budgets in the SLA policy.

    Unknown priorities are rejected with 422; an existing id is rejected with 422.
    """,
    responses={201: {"content": {"application/json": {"example": TICKET_SLA_RESPONSE_EXAMPLE}}}},
    openapi_extra={"requestBody": {"content": {"application/json": {"example": TICKET_OPEN_EXAMPLE}}}}
)
async def open_ticket(
    payload: TicketOpenRequest,
    service: TicketSLAService = Depends(get_ticket_service),
    clock: Clock = Depends(get_clock)
) -> TicketSLAResponse:
    ticket = await service.open_ticket(payload.to_domain(clock.now()))
    snapshot = await service.get_snapshot(ticket.id)
    return TicketSLAResponse.from_snapshot(snapshot)


@router.get(
    "/tickets/{ticket_id}",
    response_model=TicketSLAResponse,
    summary="Get SLA status for a ticket",
    responses={200: {"content": {"application/json": {"example": TICKET_SLA_RESPONSE_EXAMPLE}}}}
)
async def get_ticket_sla(
    ticket_id: str,
    service: TicketSLAService = Depends(get_ticket_service)
) -> TicketSLAResponse:
    snapshot = await service.get_snapshot(ticket_id)
    return TicketSLAResponse.from_snapshot(snapshot)


@router.post(
    "/tickets/{ticket_id}/status",
    response_model=TicketSLAResponse,
    summary="Change ticket status",
    description="""
    Move a ticket to a new status.

    - `waiting_on_user` pauses both SLA clocks; leaving it resumes them and
      pushes the open deadlines by the paused time.
    - `resolved` / `closed` stop the resolution clock.
    - Reopening a resolved ticket follows the policy's `reopen_policy`.
    """
)
async def change_ticket_status(
    ticket_id: str,
    payload: StatusChangeRequest,
    service: TicketSLAService = Depends(get_ticket_service)
) -> TicketSLAResponse:
    await service.change_status(ticket_id, payload.status, payload.reason)
    snapshot = await service.get_snapshot(ticket_id)
    return TicketSLAResponse.from_snapshot(snapshot)


@router.post(
    "/tickets/{ticket_id}/response",
    response_model=TicketSLAResponse,
    summary="Record first response",
    description="Stops the response SLA clock. Later calls keep the first timestamp."
)
async def record_first_response(
    ticket_id: str,
    service: TicketSLAService = Depends(get_ticket_service)
) -> TicketSLAResponse:
    await service.record_response(ticket_id)
    snapshot = await service.get_snapshot(ticket_id)
    return TicketSLAResponse.from_snapshot(snapshot)


@router.post(
    "/evaluate",
    response_model=EvaluationSummaryResponse,
    summary="Run one SLA evaluation pass now",
    description="Same pass the scheduler runs periodically. Never fails on a single ticket."
)
async def trigger_evaluation(
    service: SLAEvaluationService = Depends(get_evaluation_service)
) -> EvaluationSummaryResponse:
    summary = await service.run_once()
    logger.info("Manual SLA evaluation triggered", extra={"tickets_evaluated": summary.tickets_evaluated})
    return EvaluationSummaryResponse(**summary.to_dict())


@router.get(
    "/dashboard",
    response_model=DashboardResponse,
    summary="SLA dashboard",
    description="Active tickets counted per live response and resolution SLA status."
)
async def get_dashboard(
    service: TicketSLAService = Depends(get_ticket_service)
) -> DashboardResponse:
    counts = await service.dashboard()
    return DashboardResponse(
        response=counts["response"],
        resolution=counts["resolution"],
        unknown_priority=counts["unknown_priority"]["tickets"],
    )


# Alias for main.py import
sla_router = router
