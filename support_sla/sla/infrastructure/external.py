"""
SLA External Service Integrations
==================================

External services for SLA monitoring:
- YAML policy file loading with watchdog hot reload
- Slack webhook notifications (plus a log-only fallback)
- APScheduler for the periodic evaluation pass
"""

import asyncio
import threading
import time
from datetime import datetime
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx
import yaml
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from pydantic import ValidationError
from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from support_sla.config import SLAStatus, settings
from support_sla.core import (
    ApplicationException,
    MisconfiguredThresholdsException,
    NotificationDeliveryException,
)
from support_sla.shared.infrastructure.clock import Clock, SystemClock
from support_sla.shared.infrastructure.logging import get_logger
from support_sla.sla.application.services import INotificationDispatcher, ISLAPolicyProvider
from support_sla.sla.domain import SLAPolicy, SLATransition

logger = get_logger(__name__)


# ========== Policy configuration ==========

class ConfigFileHandler(FileSystemEventHandler):
    """Watchdog event handler for SLA policy file changes."""

    def __init__(self, config_manager: "SLAConfigManager", config_path: Path):
        self.config_manager = config_manager
        self.config_path = config_path
        super().__init__()

    def on_modified(self, event):
        """Handle file modification event."""
        if event.is_directory:
            return
        if Path(event.src_path).resolve() == self.config_path.resolve():
            logger.info("SLA policy file changed", extra={"path": str(event.src_path)})
            self.config_manager.reload()

    on_created = on_modified


class SLAConfigManager(ISLAPolicyProvider):
    """
    Thread-safe SLA policy manager with hot-reload support.

    Uses watchdog to monitor file changes and reload the policy
    without restarting the service. A file that fails validation on
    reload is logged and the previous policy stays active.
    """

    def __init__(self):
        self._policy: Optional[SLAPolicy] = None
        self._lock = threading.Lock()
        self._path: Optional[Path] = None
        self._observer = None

    def load(self, path: Path) -> SLAPolicy:
        """
        Initial policy load.

        Raises:
            MisconfiguredThresholdsException: the file is not a valid policy
        """
        self._path = Path(path)
        policy = self._load_from_file(self._path)
        with self._lock:
            self._policy = policy
        logger.info(
            "SLA policy loaded",
            extra={
                "path": str(self._path),
                "priorities": policy.priorities,
                "reopen_policy": policy.reopen_policy,
            }
        )
        return policy

    def _load_from_file(self, path: Path) -> SLAPolicy:
        """Load and validate the YAML policy file."""
        if not path.exists():
            logger.warning("SLA policy file not found, using defaults", extra={"path": str(path)})
            return SLAPolicy()

        try:
            with open(path, "r") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise MisconfiguredThresholdsException(f"Invalid YAML in {path}: {e}")

        if not isinstance(data, dict):
            raise MisconfiguredThresholdsException(f"SLA policy file {path} must contain a mapping")

        try:
            return SLAPolicy(**data)
        except ValidationError as e:
            raise MisconfiguredThresholdsException(
                f"Invalid SLA policy in {path}",
                {"errors": e.errors(include_url=False)}
            )

    def reload(self) -> bool:
        """Reload policy from file; keeps the current one on failure."""
        if self._path is None:
            return False

        try:
            new_policy = self._load_from_file(self._path)
        except ApplicationException as e:
            logger.error(
                "Failed to reload SLA policy, keeping previous",
                extra={"error": e.message, "details": e.details}
            )
            return False
        except OSError as e:
            logger.error("Failed to read SLA policy file", extra={"error": str(e)})
            return False

        with self._lock:
            self._policy = new_policy
        logger.info("SLA policy reloaded successfully")
        return True

    def start_watching(self) -> None:
        """
        Start watching the policy file for changes.

        Skips watching if the file doesn't exist or inotify is unavailable.
        """
        if self._path is None:
            raise RuntimeError("Policy not loaded. Call load() first.")

        if not self._path.exists():
            logger.info(
                "Policy file doesn't exist, skipping file watch",
                extra={"path": str(self._path)}
            )
            return

        try:
            self._observer = Observer()
            handler = ConfigFileHandler(self, self._path)
            self._observer.schedule(
                handler,
                str(self._path.resolve().parent),
                recursive=False
            )
            self._observer.start()
            logger.info("Started watching SLA policy file", extra={"path": str(self._path)})
        except OSError as e:
            logger.warning("File watching not available, using static policy", extra={"error": str(e)})
            self._observer = None

    def stop_watching(self) -> None:
        """Stop watching the policy file (safe to call even if not watching)."""
        if self._observer is not None:
            self._observer.stop()
            self._observer.join(timeout=5)
            self._observer = None

    def get_policy(self) -> SLAPolicy:
        with self._lock:
            if self._policy is None:
                raise RuntimeError("SLA policy not loaded")
            return self._policy

    @property
    def policy(self) -> SLAPolicy:
        return self.get_policy()


# ========== Notifications ==========

def format_minutes(minutes: int) -> str:
    """45 -> '45m', 65 -> '1h 5m', 3060 -> '2d 3h'."""
    if minutes < 60:
        return f"{minutes}m"
    if minutes < 1440:
        return f"{minutes // 60}h {minutes % 60}m"
    return f"{minutes // 1440}d {(minutes % 1440) // 60}h"


def describe_deadline(deadline: Optional[datetime], now: datetime) -> str:
    """'due in 1h 5m' before the deadline, 'overdue by 2d 3h' after it."""
    if deadline is None:
        return "no deadline"
    minutes = int((deadline - now).total_seconds() // 60)
    if minutes > 0:
        return f"due in {format_minutes(minutes)}"
    return f"overdue by {format_minutes(abs(minutes))}"


class CircuitState:
    """Circuit breaker states."""
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """
    Circuit breaker for the notification webhook.

    States:
    - CLOSED: Normal operation, requests pass through
    - OPEN: After N failures, reject all requests for M seconds
    - HALF_OPEN: After timeout, allow one test request
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        recovery_timeout: float = 60.0
    ):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure_time: Optional[float] = None

    @property
    def state(self) -> str:
        if self._state == CircuitState.OPEN and self._last_failure_time is not None:
            if time.monotonic() - self._last_failure_time >= self.recovery_timeout:
                self._state = CircuitState.HALF_OPEN
        return self._state

    def allow_request(self) -> bool:
        return self.state in (CircuitState.CLOSED, CircuitState.HALF_OPEN)

    def record_success(self) -> None:
        self._failure_count = 0
        self._state = CircuitState.CLOSED

    def record_failure(self) -> None:
        self._failure_count += 1
        self._last_failure_time = time.monotonic()

        if self._failure_count >= self.failure_threshold:
            self._state = CircuitState.OPEN
            logger.warning(
                "Circuit breaker opened",
                extra={
                    "failure_count": self._failure_count,
                    "recovery_timeout": self.recovery_timeout
                }
            )


_HEADERS = {
    SLAStatus.BREACHED: (":rotating_light:", "SLA Breached"),
    SLAStatus.CRITICAL: (":warning:", "SLA Critical"),
    SLAStatus.APPROACHING: (":hourglass_flowing_sand:", "SLA Approaching"),
    SLAStatus.ON_TRACK: (":white_check_mark:", "SLA Back On Track"),
    SLAStatus.PAUSED: (":double_vertical_bar:", "SLA Paused"),
}


class SlackNotificationDispatcher(INotificationDispatcher):
    """
    Slack webhook dispatcher with circuit breaker and retry logic.

    Only transitions into a status listed in the policy's notify_on are
    posted; the rest are acknowledged without a message.
    """

    def __init__(
        self,
        policy_provider: ISLAPolicyProvider,
        webhook_url: Optional[str] = None,
        channel: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        ticket_base_url: Optional[str] = None,
        clock: Optional[Clock] = None,
        max_retries: int = 3,
        retry_backoff_seconds: float = 1.0,
        http_client: Optional[httpx.AsyncClient] = None
    ):
        self._policy_provider = policy_provider
        self._webhook_url = webhook_url or settings.slack_webhook_url
        self._channel = channel or settings.slack_channel
        self._timeout = timeout_seconds or settings.slack_timeout_seconds
        self._ticket_base_url = (ticket_base_url or settings.support_base_url).rstrip("/")
        self._clock = clock or SystemClock()
        self._max_retries = max_retries
        self._retry_backoff = retry_backoff_seconds
        self._circuit_breaker = CircuitBreaker(failure_threshold=5, recovery_timeout=60)
        self._http_client = http_client

    def _get_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self._timeout)
        return self._http_client

    def build_message(self, transition: SLATransition) -> Dict[str, Any]:
        """Build Slack Block Kit message."""
        emoji, header_text = _HEADERS.get(transition.to_status, (":bell:", "SLA Update"))
        ticket_url = f"{self._ticket_base_url}/{transition.ticket_id}"
        title = transition.ticket_title or transition.ticket_id
        timing = describe_deadline(transition.deadline, self._clock.now())

        blocks = [
            {
                "type": "header",
                "text": {
                    "type": "plain_text",
                    "text": f"{emoji} {header_text}",
                    "emoji": True
                }
            },
            {
                "type": "section",
                "fields": [
                    {"type": "mrkdwn", "text": f"*Ticket:*\n<{ticket_url}|{title}>"},
                    {"type": "mrkdwn", "text": f"*Priority:*\n{(transition.priority or 'unknown').title()}"},
                    {"type": "mrkdwn", "text": f"*SLA Type:*\n{transition.sla_type.title()}"},
                    {"type": "mrkdwn", "text": f"*Status:*\n{transition.to_status.replace('_', ' ').title()}"},
                ]
            },
            {
                "type": "context",
                "elements": [
                    {
                        "type": "mrkdwn",
                        "text": f"{transition.sla_type.title()} {timing} | was {transition.from_status or 'untracked'}"
                    }
                ]
            }
        ]

        return {
            "channel": self._channel,
            "text": f"{header_text}: {title} ({transition.sla_type} {timing})",
            "blocks": blocks
        }

    async def notify(self, transition: SLATransition) -> bool:
        """
        Post a transition to Slack.

        Raises:
            NotificationDeliveryException: circuit open or all retries failed
        """
        if transition.to_status not in self._policy_provider.get_policy().notify_on:
            return True

        if not self._webhook_url:
            raise NotificationDeliveryException("Slack webhook URL not configured")

        if not self._circuit_breaker.allow_request():
            raise NotificationDeliveryException(
                "Circuit breaker open, skipping Slack notification",
                {"ticket_id": transition.ticket_id}
            )

        message = self.build_message(transition)

        for attempt in range(self._max_retries):
            try:
                response = await self._get_client().post(self._webhook_url, json=message)
                if response.status_code == 200:
                    self._circuit_breaker.record_success()
                    logger.info(
                        "Slack notification sent",
                        extra={
                            "ticket_id": transition.ticket_id,
                            "sla_type": transition.sla_type,
                            "to_status": transition.to_status,
                        }
                    )
                    return True
                logger.warning(
                    "Slack webhook returned non-200",
                    extra={"status_code": response.status_code, "attempt": attempt + 1}
                )
            except httpx.HTTPError as e:
                logger.error(
                    "Slack notification failed",
                    extra={
                        "error": str(e),
                        "attempt": attempt + 1,
                        "ticket_id": transition.ticket_id
                    }
                )

            if attempt < self._max_retries - 1:
                await asyncio.sleep(self._retry_backoff * 2 ** attempt)

        self._circuit_breaker.record_failure()
        raise NotificationDeliveryException(
            f"Slack delivery failed after {self._max_retries} attempts",
            {"ticket_id": transition.ticket_id, "transition_id": transition.id}
        )

    async def close(self) -> None:
        """Close HTTP client."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None


class LoggingNotificationDispatcher(INotificationDispatcher):
    """Writes transitions to the log; used when no webhook is configured."""

    def __init__(self, policy_provider: Optional[ISLAPolicyProvider] = None):
        self._policy_provider = policy_provider

    async def notify(self, transition: SLATransition) -> bool:
        notify_on = (
            self._policy_provider.get_policy().notify_on
            if self._policy_provider else [SLAStatus.CRITICAL, SLAStatus.BREACHED]
        )
        log = logger.warning if transition.to_status in notify_on else logger.info
        log("SLA transition", extra=transition.to_dict())
        return True

    async def close(self) -> None:
        return None


# ========== Scheduling ==========

class SLAScheduler:
    """
    Wrapper for APScheduler for background SLA evaluation.

    Manages the lifecycle of the scheduler and jobs.
    """

    def __init__(self, interval_minutes: int = 15):
        self.interval_minutes = interval_minutes
        self._scheduler: Optional[AsyncIOScheduler] = None
        self._running = False

    async def start(self, job_func: Callable[[], Awaitable[Any]]) -> None:
        """Start the scheduler with the given job function."""
        if self._running:
            logger.warning("SLA scheduler already running")
            return

        self._scheduler = AsyncIOScheduler()

        self._scheduler.add_job(
            job_func,
            "interval",
            minutes=self.interval_minutes,
            id="sla_evaluation",
            name="SLA Evaluation Job",
            misfire_grace_time=60,
            max_instances=1,
            coalesce=True,
            replace_existing=True
        )

        self._scheduler.start()
        self._running = True

        logger.info(
            "SLA scheduler started",
            extra={"interval_minutes": self.interval_minutes}
        )

    async def stop(self) -> None:
        """Stop the scheduler gracefully."""
        if not self._running:
            return

        if self._scheduler:
            self._scheduler.shutdown(wait=False)

        self._running = False
        logger.info("SLA scheduler stopped")

    @property
    def is_running(self) -> bool:
        return self._running
