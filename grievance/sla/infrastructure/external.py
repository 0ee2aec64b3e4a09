"""
SLA External Service Integrations
==================================

External services used by the SLA module:
- Policy YAML loader with watchdog hot reload
- Slack webhook escalation notifications (retry + circuit breaker)
- APScheduler wrapper for the periodic escalation sweep
"""

import asyncio
import threading
import time
from pathlib import Path
from typing import Any, Dict, List, Optional

import httpx
import yaml
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from pydantic import ValidationError
from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from grievance.config import settings
from grievance.core import ConfigurationException
from grievance.shared.infrastructure.logging import get_logger
from grievance.sla.application import IEscalationNotifier, IPolicyProvider
from grievance.sla.domain import EscalationMessage, PortalPolicyConfig, WorkingTimeClock

logger = get_logger(__name__)


class PolicyFileHandler(FileSystemEventHandler):
    """Watchdog event handler for policy file changes."""

    def __init__(self, config_manager: "PolicyConfigManager", config_path: Path):
        self.config_manager = config_manager
        self.config_path = config_path
        super().__init__()

    def on_modified(self, event):
        if event.is_directory:
            return
        if Path(event.src_path).resolve() == self.config_path.resolve():
            logger.info("Policy file changed", extra={"path": str(event.src_path)})
            self.config_manager.reload()


class PolicyConfigManager(IPolicyProvider):
    """
    Thread-safe holder of the working-hours / escalation policy.

    A bad edit to the YAML file keeps the previous policy in force.
    """

    def __init__(self, config: Optional[PortalPolicyConfig] = None):
        self._config: Optional[PortalPolicyConfig] = config
        self._clock: Optional[WorkingTimeClock] = None
        self._lock = threading.Lock()
        self._path: Optional[Path] = None
        self._observer = None

    def load(self, path: Path) -> PortalPolicyConfig:
        """
        Initial configuration load.

        Raises:
            ConfigurationException: if the file exists but is invalid
        """
        self._path = Path(path)
        config = self._load_from_file(self._path)
        with self._lock:
            self._config = config
            self._clock = None
        return config

    def _load_from_file(self, path: Path) -> PortalPolicyConfig:
        if not path.exists():
            logger.warning("Policy file not found, using defaults", extra={"path": str(path)})
            return PortalPolicyConfig()

        try:
            with open(path, "r") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationException(f"Malformed policy file {path}", {"error": str(e)}) from e

        try:
            return PortalPolicyConfig(**data)
        except ValidationError as e:
            raise ConfigurationException(
                f"Invalid policy file {path}",
                {"errors": e.errors(include_url=False, include_context=False)}
            ) from e

    def reload(self) -> bool:
        """Reload configuration from file; returns False and keeps the old policy on error."""
        if self._path is None:
            return False

        try:
            new_config = self._load_from_file(self._path)
        except (ConfigurationException, OSError) as e:
            logger.error("Failed to reload policy", extra={"path": str(self._path), "error": str(e)})
            return False

        with self._lock:
            self._config = new_config
            self._clock = None
        logger.info("Policy reloaded", extra={"path": str(self._path)})
        return True

    def start_watching(self) -> None:
        """Watch the policy file for changes (skipped when the file is absent)."""
        if self._path is None:
            raise RuntimeError("Policy not loaded. Call load() first.")

        if not self._path.exists():
            logger.info("Policy file absent, not watching", extra={"path": str(self._path)})
            return

        try:
            self._observer = Observer()
            self._observer.schedule(
                PolicyFileHandler(self, self._path),
                str(self._path.parent),
                recursive=False
            )
            self._observer.start()
            logger.info("Watching policy file", extra={"path": str(self._path)})
        except OSError as e:
            logger.warning("File watching not available, using static policy", extra={"error": str(e)})
            self._observer = None

    def stop_watching(self) -> None:
        """Stop watching (safe to call even if not watching)."""
        if self._observer is not None:
            self._observer.stop()
            self._observer.join(timeout=5)
            self._observer = None

    @property
    def config(self) -> PortalPolicyConfig:
        if self._config is None:
            raise RuntimeError("Policy configuration not loaded")
        return self._config

    @property
    def working_clock(self) -> WorkingTimeClock:
        """Working-time clock for the current policy, rebuilt after each reload."""
        with self._lock:
            if self._clock is None:
                self._clock = WorkingTimeClock.from_config(self.config.working_hours)
            return self._clock

    def escalation_threshold(self) -> int:
        """Escalation level forcing critical priority."""
        return self.config.escalation.priority_threshold or settings.escalation_priority_threshold

    def escalation_channels(self) -> List[str]:
        return self.config.escalation.notify or [settings.slack_channel]


class CircuitState:
    """Circuit breaker states."""
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """
    Circuit breaker for the Slack webhook.

    - CLOSED: requests pass through
    - OPEN: after N failures, reject all requests for M seconds
    - HALF_OPEN: after the timeout, allow one trial request
    """

    def __init__(self, failure_threshold: int = 5, recovery_timeout: float = 60.0):
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


class SlackEscalationNotifier(IEscalationNotifier):
    """
    Slack webhook client for escalation notifications.

    Delivery is best effort: failures are logged and reported as ``False``,
    never raised, so they cannot undo an escalation already persisted.
    """

    def __init__(
        self,
        webhook_url: Optional[str] = None,
        channels: Optional[List[str]] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        retry_delay: float = 1.0
    ):
        self._webhook_url = webhook_url if webhook_url is not None else settings.slack_webhook_url
        self._channels = channels or [settings.slack_channel]
        self._circuit_breaker = CircuitBreaker(failure_threshold=5, recovery_timeout=60)
        self._http_client = http_client
        self._retry_delay = retry_delay

    async def _get_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=settings.slack_timeout_seconds)
        return self._http_client

    def _build_message(self, data: EscalationMessage, channel: str) -> Dict[str, Any]:
        """Build a Slack Block Kit message."""
        header = "SLA breach escalation" if data.automatic else "Manual escalation"
        if data.remaining_hours < 0:
            timing = f"Overdue by {abs(data.remaining_hours):.2f} working hours"
        else:
            timing = f"{data.remaining_hours:.2f} working hours remaining"

        return {
            "channel": channel,
            "blocks": [
                {
                    "type": "header",
                    "text": {"type": "plain_text", "text": f"{header}: issue #{data.issue_id}"}
                },
                {
                    "type": "section",
                    "fields": [
                        {"type": "mrkdwn", "text": f"*Priority:*\n{data.priority.title()}"},
                        {"type": "mrkdwn", "text": f"*Escalation level:*\n{data.escalation_level}"},
                        {"type": "mrkdwn", "text": f"*SLA:*\n{data.sla_state}"},
                        {"type": "mrkdwn", "text": f"*Assignee:*\n{data.assigned_to or 'unassigned'}"},
                    ]
                },
                {
                    "type": "context",
                    "elements": [
                        {"type": "mrkdwn", "text": f"Deadline: {data.deadline} | {timing}"}
                    ]
                }
            ]
        }

    async def send_escalation(self, data: EscalationMessage, max_retries: int = 3) -> bool:
        """
        Post an escalation to every configured channel.

        Returns:
            True if every channel accepted the message
        """
        if not self._webhook_url:
            logger.debug("Slack webhook URL not configured, skipping notification")
            return False

        if not self._circuit_breaker.allow_request():
            logger.warning(
                "Circuit breaker open, skipping Slack notification",
                extra={"issue_id": data.issue_id}
            )
            return False

        delivered = True
        for channel in self._channels:
            delivered = await self._post(self._build_message(data, channel), data, max_retries) and delivered
        return delivered

    async def _post(self, message: Dict[str, Any], data: EscalationMessage, max_retries: int) -> bool:
        for attempt in range(max_retries):
            try:
                client = await self._get_client()
                response = await client.post(self._webhook_url, json=message)
                if response.status_code == 200:
                    self._circuit_breaker.record_success()
                    logger.info(
                        "Escalation notification sent",
                        extra={"issue_id": data.issue_id, "channel": message["channel"]}
                    )
                    return True
                logger.warning(
                    "Slack webhook returned non-200",
                    extra={"status_code": response.status_code, "attempt": attempt + 1}
                )
            except httpx.HTTPError as e:
                logger.error(
                    "Escalation notification failed",
                    extra={"error": str(e), "attempt": attempt + 1, "issue_id": data.issue_id}
                )

            if attempt < max_retries - 1:
                await asyncio.sleep(self._retry_delay * 2 ** attempt)

        self._circuit_breaker.record_failure()
        return False

    async def close(self) -> None:
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None


class SLAScheduler:
    """
    APScheduler wrapper running the escalation sweep on an interval.
    """

    def __init__(self, interval_seconds: int = 300):
        self.interval_seconds = interval_seconds
        self._scheduler: Optional[AsyncIOScheduler] = None
        self._running = False

    async def start(self, job_func) -> None:
        if self._running:
            logger.warning("SLA scheduler already running")
            return

        self._scheduler = AsyncIOScheduler()
        self._scheduler.add_job(
            job_func,
            "interval",
            seconds=self.interval_seconds,
            id="escalation_sweep",
            name="SLA Escalation Sweep",
            misfire_grace_time=60,
            max_instances=1,
            replace_existing=True
        )
        self._scheduler.start()
        self._running = True

        logger.info("SLA scheduler started", extra={"interval_seconds": self.interval_seconds})

    async def stop(self) -> None:
        if not self._running:
            return

        if self._scheduler:
            self._scheduler.shutdown(wait=False)

        self._running = False
        logger.info("SLA scheduler stopped")

    @property
    def is_running(self) -> bool:
        return self._running
