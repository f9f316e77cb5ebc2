"""
SLA Infrastructure Layer
=========================

Infrastructure implementations for SLA tracking:
- Models: SQLAlchemy ORM models
- Repositories: Ticket store and transition outbox
- External: Policy file watcher, Slack dispatcher, scheduler
"""

from support_sla.sla.infrastructure.models import TicketModel, SLATransitionModel
from support_sla.sla.infrastructure.repositories import (
    SQLAlchemyTicketStore,
    SQLAlchemyTransitionOutbox,
)
from support_sla.sla.infrastructure.external import (
    SLAConfigManager,
    SlackNotificationDispatcher,
    LoggingNotificationDispatcher,
    SLAScheduler,
)

__all__ = [
    "TicketModel",
    "SLATransitionModel",
    "SQLAlchemyTicketStore",
    "SQLAlchemyTransitionOutbox",
    "SLAConfigManager",
    "SlackNotificationDispatcher",
    "LoggingNotificationDispatcher",
    "SLAScheduler",
]
