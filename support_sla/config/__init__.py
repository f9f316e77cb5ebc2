"""
Configuration Module
====================

Application settings and configuration management using Pydantic.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, field_validator
from functools import lru_cache
from pathlib import Path
from typing import List, Optional


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Uses Pydantic for validation and type safety.
    """

    # ========== Application ==========
    app_name: str = Field(default="support-sla", description="Application name")
    app_version: str = Field(default="1.0.0", description="Application version")
    environment: str = Field(default="development", description="Environment name")
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: str = Field(default="INFO", description="Root log level")

    # ========== Server ==========
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8000, description="Server port", ge=1, le=65535)

    # ========== Database ==========
    database_url: str = Field(
        default="postgresql+asyncpg://localhost:5432/support",
        description="PostgreSQL connection URL (async)"
    )
    db_pool_size: int = Field(default=5, description="Database connection pool size", ge=1)
    db_max_overflow: int = Field(default=10, description="Max overflow connections", ge=0)

    # ========== SLA Configuration ==========
    sla_config_path: Path = Field(
        default=Path("sla_config.yaml"),
        description="Path to SLA policy YAML file"
    )
    sla_evaluation_interval_minutes: int = Field(
        default=15,
        description="Minutes between SLA evaluation passes",
        ge=1
    )
    sla_scheduler_enabled: bool = Field(
        default=True,
        description="Run the periodic SLA evaluation job"
    )
    sla_notification_batch_size: int = Field(
        default=500,
        description="Max pending transitions dispatched per pass",
        ge=1
    )

    # ========== Slack Integration ==========
    slack_webhook_url: Optional[str] = Field(
        default=None,
        description="Slack webhook URL for SLA notifications"
    )
    slack_channel: str = Field(
        default="#support-sla",
        description="Slack channel for SLA notifications"
    )
    slack_timeout_seconds: float = Field(
        default=5.0,
        description="Timeout for Slack API calls",
        ge=0.1,
        le=30
    )
    support_base_url: str = Field(
        default="https://app.example.com/support/tickets",
        description="Base URL used to link tickets in notifications"
    )

    # ========== CORS ==========
    cors_origins: List[str] = Field(
        default=["http://localhost:3000"],
        description="Allowed CORS origins"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Ensure environment is one of allowed values."""
        allowed = {"development", "staging", "production", "test"}
        if v not in allowed:
            raise ValueError(f"environment must be one of {allowed}")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        allowed = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in allowed:
            raise ValueError(f"log_level must be one of {allowed}")
        return v.upper()


@lru_cache()
def get_settings() -> Settings:
    """Returns cached Settings instance."""
    return Settings()


# Global settings instance
settings = get_settings()


# ========== Constants ==========

class Priority(str):
    """Reference ticket priority levels (the policy file may define others)."""
    URGENT = "urgent"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class TicketStatus(str):
    """Ticket lifecycle statuses."""
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    WAITING_ON_USER = "waiting_on_user"
    RESOLVED = "resolved"
    CLOSED = "closed"
    REJECTED = "rejected"


class SLAType(str):
    """Types of SLA clocks."""
    RESPONSE = "response"
    RESOLUTION = "resolution"


class SLAStatus(str):
    """Derived SLA status per SLA type."""
    ON_TRACK = "on_track"
    APPROACHING = "approaching"
    CRITICAL = "critical"
    BREACHED = "breached"
    PAUSED = "paused"


class ReopenPolicy(str):
    """What happens to the resolution clock when a resolved ticket is reopened."""
    RESUME = "resume"
    RESET = "reset"
    FROZEN = "frozen"


# ========== Lists for validation ==========

VALID_STATUSES = [
    TicketStatus.OPEN, TicketStatus.IN_PROGRESS,
    TicketStatus.WAITING_ON_USER, TicketStatus.RESOLVED,
    TicketStatus.CLOSED, TicketStatus.REJECTED
]
ACTIVE_STATUSES = [
    TicketStatus.OPEN, TicketStatus.IN_PROGRESS, TicketStatus.WAITING_ON_USER
]
TERMINAL_STATUSES = [
    TicketStatus.RESOLVED, TicketStatus.CLOSED, TicketStatus.REJECTED
]
VALID_SLA_TYPES = [SLAType.RESPONSE, SLAType.RESOLUTION]
VALID_SLA_STATUSES = [
    SLAStatus.ON_TRACK, SLAStatus.APPROACHING, SLAStatus.CRITICAL,
    SLAStatus.BREACHED, SLAStatus.PAUSED
]
VALID_REOPEN_POLICIES = [ReopenPolicy.RESUME, ReopenPolicy.RESET, ReopenPolicy.FROZEN]

# Ordering used for "worsening"; paused sits outside the progression.
SLA_STATUS_SEVERITY = {
    SLAStatus.ON_TRACK: 0,
    SLAStatus.APPROACHING: 1,
    SLAStatus.CRITICAL: 2,
    SLAStatus.BREACHED: 3,
}
