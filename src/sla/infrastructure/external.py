"""
SLA External Service Integrations
==================================

External services for SLA enforcement:
- Escalation webhook notifications
- YAML policy file watcher
- APScheduler for the background monitor and load audit
"""

import asyncio
import threading
import time
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx
import yaml
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from pydantic import ValidationError
from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from src.config import settings
from src.core import ConfigurationException
from src.dispatch.application.interfaces import IEscalationNotifier
from src.dispatch.domain import Ticket
from src.shared.infrastructure.logging import get_logger
from src.sla.domain import Escalation, SLAPolicy

logger = get_logger(__name__)


class ConfigFileHandler(FileSystemEventHandler):
    """Watchdog event handler for SLA policy file changes."""

    def __init__(self, config_manager: "SLAConfigManager", config_path: Path):
        self.config_manager = config_manager
        self.config_path = config_path
        super().__init__()

    def on_modified(self, event):
        if event.is_directory:
            return
        if Path(event.src_path).resolve() == self.config_path.resolve():
            logger.info("SLA policy file changed", extra={"path": event.src_path})
            self.config_manager.reload()


class SLAConfigManager:
    """
    Thread-safe SLA policy holder with hot-reload support.

    Uses watchdog to monitor the YAML file and swap the policy without
    restarting the service. A reload that fails validation keeps the
    previous policy. Deadlines already stored on tickets are never
    recomputed.
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
            ConfigurationException: If the file exists but is invalid
        """
        self._path = Path(path)
        try:
            policy = self._load_from_file(self._path)
        except (yaml.YAMLError, ValidationError, ValueError) as e:
            raise ConfigurationException(
                f"Invalid SLA policy file {self._path}: {e}",
                {"path": str(self._path)}
            )
        with self._lock:
            self._policy = policy
        return policy

    def _load_from_file(self, path: Path) -> SLAPolicy:
        if not path.exists():
            logger.warning("SLA policy file not found, using defaults", extra={"path": str(path)})
            return SLAPolicy()

        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}

        return SLAPolicy(**data)

    def reload(self) -> bool:
        """Reload the policy from file."""
        if self._path is None:
            return False

        try:
            new_policy = self._load_from_file(self._path)
        except (OSError, yaml.YAMLError, ValidationError, ValueError) as e:
            logger.error(
                "Failed to reload SLA policy, keeping previous",
                extra={"path": str(self._path), "error": str(e)}
            )
            return False

        with self._lock:
            self._policy = new_policy
        logger.info("SLA policy reloaded", extra={"path": str(self._path)})
        return True

    def start_watching(self) -> None:
        """
        Start watching the policy file for changes.

        Skipped when the file doesn't exist or the platform lacks file
        notifications.
        """
        if self._path is None:
            raise RuntimeError("Policy not loaded. Call load() first.")

        if not self._path.exists():
            logger.info(
                "SLA policy file doesn't exist, skipping file watch",
                extra={"path": str(self._path)}
            )
            return

        try:
            self._observer = Observer()
            handler = ConfigFileHandler(self, self._path)
            self._observer.schedule(handler, str(self._path.parent), recursive=False)
            self._observer.start()
            logger.info("Started watching SLA policy file", extra={"path": str(self._path)})
        except OSError as e:
            logger.warning("File watching not available, using static policy", extra={"error": str(e)})
            self._observer = None

    def stop_watching(self) -> None:
        """Stop watching (safe to call even if not watching)."""
        if self._observer is not None:
            self._observer.stop()
            self._observer.join(timeout=5)
            self._observer = None

    def get_policy(self) -> SLAPolicy:
        """Current policy; defaults until a file has been loaded."""
        with self._lock:
            if self._policy is None:
                self._policy = SLAPolicy()
            return self._policy

    @property
    def policy(self) -> SLAPolicy:
        return self.get_policy()


class CircuitState:
    """Circuit breaker states."""
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """
    Circuit breaker for preventing cascade failures.

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
        if self._state == CircuitState.OPEN and self._last_failure_time:
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


class WebhookEscalationNotifier(IEscalationNotifier):
    """
    Posts escalations to a webhook (Slack-compatible payload).

    Handles delivery with:
    - Circuit breaker to prevent cascade failures
    - Exponential backoff retry
    - Timeout handling

    Failures are logged and reported as False, never raised.
    """

    def __init__(
        self,
        webhook_url: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        channels: Optional[Callable[[], list]] = None,
        max_retries: int = 3,
        backoff_base: float = 1.0,
        http_client: Optional[httpx.AsyncClient] = None
    ):
        self._webhook_url = webhook_url if webhook_url is not None else settings.escalation_webhook_url
        self._timeout = timeout_seconds or settings.escalation_webhook_timeout_seconds
        self._channels = channels or (lambda: [])
        self._max_retries = max_retries
        self._backoff_base = backoff_base
        self._circuit_breaker = CircuitBreaker(failure_threshold=5, recovery_timeout=60)
        self._http_client = http_client

    async def _get_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self._timeout)
        return self._http_client

    def _build_message(self, escalation: Escalation, ticket: Ticket) -> Dict[str, Any]:
        """Build a Block Kit message."""
        return {
            "channels": list(self._channels()),
            "text": f"Ticket {ticket.id} escalated: {escalation.trigger_event}",
            "blocks": [
                {
                    "type": "header",
                    "text": {"type": "plain_text", "text": "Ticket Escalation"}
                },
                {
                    "type": "section",
                    "fields": [
                        {"type": "mrkdwn", "text": f"*Ticket:*\n{ticket.id}"},
                        {"type": "mrkdwn", "text": f"*Priority:*\n{ticket.priority.value}"},
                        {"type": "mrkdwn", "text": f"*Category:*\n{ticket.category} / {ticket.subcategory}"},
                        {"type": "mrkdwn", "text": f"*Status:*\n{ticket.status.value}"},
                        {"type": "mrkdwn", "text": f"*Trigger:*\n{escalation.trigger_event}"},
                        {"type": "mrkdwn", "text": f"*Escalated to:*\n{escalation.escalated_to_user_id or 'unassigned'}"}
                    ]
                },
                {
                    "type": "context",
                    "elements": [{
                        "type": "mrkdwn",
                        "text": f"Store: {ticket.store_id} | SLA deadline: {ticket.sla_deadline.isoformat()}"
                    }]
                }
            ],
            "escalation": {
                "id": escalation.id,
                "ticket_id": escalation.ticket_id,
                "trigger_event": escalation.trigger_event,
                "escalated_to_user_id": escalation.escalated_to_user_id,
                "created_at": escalation.created_at.isoformat(),
            }
        }

    async def notify(self, escalation: Escalation, ticket: Ticket) -> bool:
        if not self._webhook_url:
            logger.debug("Escalation webhook URL not configured, skipping notification")
            return False

        if not self._circuit_breaker.allow_request():
            logger.warning(
                "Circuit breaker open, skipping escalation notification",
                extra={"ticket_id": ticket.id}
            )
            return False

        message = self._build_message(escalation, ticket)

        for attempt in range(self._max_retries):
            try:
                client = await self._get_client()
                response = await client.post(self._webhook_url, json=message)

                if 200 <= response.status_code < 300:
                    self._circuit_breaker.record_success()
                    logger.info(
                        "Escalation notification sent",
                        extra={"ticket_id": ticket.id, "escalation_id": escalation.id}
                    )
                    return True

                logger.warning(
                    "Escalation webhook returned non-2xx",
                    extra={"status_code": response.status_code, "attempt": attempt + 1}
                )

            except httpx.HTTPError as e:
                logger.error(
                    "Escalation notification failed",
                    extra={"error": str(e), "attempt": attempt + 1, "ticket_id": ticket.id}
                )

            if attempt < self._max_retries - 1:
                await asyncio.sleep(self._backoff_base * 2 ** attempt)

        self._circuit_breaker.record_failure()
        return False

    async def close(self) -> None:
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None


class EscalationScheduler:
    """
    Wrapper for APScheduler running the periodic SLA jobs.

    `max_instances=1` keeps each job from overlapping itself.
    """

    def __init__(
        self,
        escalation_interval_minutes: Optional[int] = None,
        audit_interval_minutes: Optional[int] = None
    ):
        self.escalation_interval_minutes = (
            settings.escalation_interval_minutes
            if escalation_interval_minutes is None else escalation_interval_minutes
        )
        self.audit_interval_minutes = (
            settings.load_audit_interval_minutes
            if audit_interval_minutes is None else audit_interval_minutes
        )
        self._scheduler: Optional[AsyncIOScheduler] = None
        self._running = False

    async def start(
        self,
        escalation_job: Callable[[], Awaitable[Any]],
        audit_job: Optional[Callable[[], Awaitable[Any]]] = None
    ) -> None:
        """Start the scheduler with the given job coroutines."""
        if self._running:
            logger.warning("Escalation scheduler already running")
            return

        if self.escalation_interval_minutes <= 0:
            logger.info("Escalation monitor disabled by configuration")
            return

        self._scheduler = AsyncIOScheduler()

        self._scheduler.add_job(
            escalation_job,
            "interval",
            minutes=self.escalation_interval_minutes,
            id="escalation_monitor",
            name="Escalation Monitor",
            misfire_grace_time=60,
            max_instances=1,
            coalesce=True,
            replace_existing=True
        )

        if audit_job is not None and self.audit_interval_minutes > 0:
            self._scheduler.add_job(
                audit_job,
                "interval",
                minutes=self.audit_interval_minutes,
                id="provider_load_audit",
                name="Provider Load Audit",
                misfire_grace_time=300,
                max_instances=1,
                coalesce=True,
                replace_existing=True
            )

        self._scheduler.start()
        self._running = True

        logger.info(
            "Escalation scheduler started",
            extra={
                "escalation_interval_minutes": self.escalation_interval_minutes,
                "audit_interval_minutes": self.audit_interval_minutes if audit_job else 0
            }
        )

    async def stop(self) -> None:
        """Stop the scheduler gracefully."""
        if not self._running:
            return

        if self._scheduler:
            self._scheduler.shutdown(wait=False)

        self._running = False
        logger.info("Escalation scheduler stopped")

    @property
    def is_running(self) -> bool:
        return self._running
