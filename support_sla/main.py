"""
Support SLA - Main Application
==============================

SLA deadline tracking and notification service for support tickets.

Clean Architecture Layers:
- Interfaces: FastAPI controllers
- Application: Services and DTOs
- Domain: Entities, value objects and the SLA state machine
- Infrastructure: Database, policy file, Slack, scheduler
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

# Configuration and Core
from support_sla.config import settings
from support_sla.core import ApplicationException

# Infrastructure
from support_sla.infrastructure.database import (
    init_database, close_database, create_tables, get_session_context
)
from support_sla.shared.infrastructure.clock import SystemClock

# SLA Module
from support_sla.sla.application import SLAEvaluationService
from support_sla.sla.infrastructure import (
    SLAConfigManager,
    SlackNotificationDispatcher,
    LoggingNotificationDispatcher,
    SLAScheduler,
    SQLAlchemyTicketStore,
    SQLAlchemyTransitionOutbox,
)
from support_sla.sla.interfaces import sla_router

# Shared API
from support_sla.shared.api.middleware import (
    CorrelationIDMiddleware,
    LoggingMiddleware,
    application_exception_handler,
    global_exception_handler,
)

# Logging
from support_sla.shared.infrastructure.logging import setup_logging, get_logger, log_latency

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """
    Application lifespan manager.

    STARTUP:
    1. Setup structured logging
    2. Initialize database and create tables
    3. Load SLA policy (invalid policy aborts startup)
    4. Pick the notification dispatcher
    5. Start SLA scheduler

    SHUTDOWN:
    1. Stop SLA scheduler
    2. Stop policy watcher
    3. Close dispatcher and database connections
    """
    # === STARTUP ===
    setup_logging(settings.log_level, settings.environment)
    logger.info("Starting SLA service", extra={
        "version": settings.app_version,
        "environment": settings.environment
    })

    init_database()

    # Create tables (for development - use migrations in production)
    try:
        await create_tables()
    except Exception as e:
        logger.warning("Database not available - running in degraded mode", extra={"error": str(e)})

    config_manager = SLAConfigManager()
    config_manager.load(settings.sla_config_path)
    config_manager.start_watching()

    clock = SystemClock()
    if settings.slack_webhook_url:
        dispatcher = SlackNotificationDispatcher(config_manager, clock=clock)
    else:
        logger.info("Slack webhook not configured, SLA transitions will only be logged")
        dispatcher = LoggingNotificationDispatcher(config_manager)

    async def sla_evaluation_job():
        """Background SLA evaluation job."""
        async with get_session_context() as session:
            service = SLAEvaluationService(
                SQLAlchemyTicketStore(session),
                SQLAlchemyTransitionOutbox(session),
                dispatcher,
                config_manager,
                clock,
                notification_batch_size=settings.sla_notification_batch_size
            )
            with log_latency(logger, "sla_evaluation"):
                await service.run_once()

    scheduler = SLAScheduler(interval_minutes=settings.sla_evaluation_interval_minutes)
    if settings.sla_scheduler_enabled:
        await scheduler.start(sla_evaluation_job)

    # Store services in app state for dependency injection
    app.state.policy_provider = config_manager
    app.state.dispatcher = dispatcher
    app.state.clock = clock
    app.state.scheduler = scheduler

    logger.info("SLA service started successfully")

    yield  # Application runs here

    # === SHUTDOWN ===
    logger.info("Shutting down SLA service")
    await scheduler.stop()
    config_manager.stop_watching()
    await dispatcher.close()
    await close_database()
    logger.info("SLA service shutdown complete")


# Create FastAPI application
app = FastAPI(
    title="Support SLA API",
    description="""
    ## Support Ticket SLA Tracking

    Tracks response and resolution deadlines for support tickets, pauses the
    clocks while a ticket waits on the user, and notifies when an SLA becomes
    critical or is breached.

    **Endpoints:**
    - `POST /sla/tickets` - Start SLA tracking for a ticket
    - `GET /sla/tickets/{id}` - SLA status of a ticket
    - `POST /sla/tickets/{id}/status` - Change ticket status
    - `POST /sla/tickets/{id}/response` - Record first response
    - `POST /sla/evaluate` - Run one evaluation pass now
    - `GET /sla/dashboard` - Active tickets per SLA status

    **Default budgets (minutes, response / resolution):**

    | Priority | Response | Resolution |
    |----------|----------|------------|
    | urgent   | 60       | 240        |
    | high     | 240      | 1440       |
    | medium   | 1440     | 4320       |
    | low      | 4320     | 10080      |
    """,
    version=settings.app_version,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan
)

# === CORS Middleware ===
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# === Custom Middleware (from shared) ===
app.add_middleware(LoggingMiddleware)
app.add_middleware(CorrelationIDMiddleware)
app.add_exception_handler(ApplicationException, application_exception_handler)
app.add_exception_handler(Exception, global_exception_handler)

# === Include Module Routers ===
app.include_router(sla_router)


# === Health Check Endpoint ===

@app.get("/health", tags=["Health"], responses={
    200: {
        "description": "Service is healthy",
        "content": {
            "application/json": {
                "example": {
                    "status": "healthy",
                    "version": "1.0.0",
                    "environment": "development",
                    "checks": {
                        "database": "connected",
                        "sla_config": "loaded",
                        "sla_scheduler": "running"
                    }
                }
            }
        }
    }
})
async def health_check(request: Request):
    """
    Health check endpoint for load balancers and orchestrators.

    Reports database connectivity, SLA policy status and scheduler state.
    """
    scheduler = getattr(request.app.state, "scheduler", None)
    policy_provider = getattr(request.app.state, "policy_provider", None)

    checks = {
        "database": "connected",
        "sla_config": "loaded" if policy_provider is not None else "not_loaded",
        "sla_scheduler": "running" if scheduler and scheduler.is_running else "stopped",
    }

    try:
        async with get_session_context() as session:
            await session.execute(text("SELECT 1"))
    except Exception as e:
        checks["database"] = f"unavailable: {e}"

    healthy = checks["database"] == "connected" and checks["sla_config"] == "loaded"
    return {
        "status": "healthy" if healthy else "degraded",
        "version": settings.app_version,
        "environment": settings.environment,
        "checks": checks
    }


@app.get("/", tags=["Root"])
async def root():
    """Root endpoint with API information."""
    return {
        "service": settings.app_name,
        "version": settings.app_version,
        "architecture": "Clean Architecture / Modular Monolith",
        "docs": "/docs",
        "health": "/health",
        "modules": {
            "sla": {
                "prefix": "/sla",
                "endpoints": [
                    "POST /sla/tickets - Start SLA tracking",
                    "GET /sla/tickets/{id} - Get ticket SLA status",
                    "POST /sla/tickets/{id}/status - Change ticket status",
                    "POST /sla/tickets/{id}/response - Record first response",
                    "POST /sla/evaluate - Run evaluation pass",
                    "GET /sla/dashboard - Get dashboard"
                ]
            }
        }
    }


# === Development Entry Point ===

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "support_sla.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.environment == "development",
        log_level=settings.log_level.lower()
    )
