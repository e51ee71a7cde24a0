"""
Compliance External Service Integrations
========================================

External services for compliance tracking:
- YAML config store with watchdog hot-reload
- Webhook notification sender (httpx) behind a circuit breaker
- Bounded notification queue drained by a worker task
- APScheduler job for the periodic compliance sweep
"""

import asyncio
import threading
import time
from pathlib import Path
from typing import Callable, Optional

import httpx
import yaml
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from bgcheck_compliance.compliance.application.services import INotificationPublisher
from bgcheck_compliance.compliance.application.sweep import ComplianceSweep, SweepReport
from bgcheck_compliance.compliance.domain import (
    ComplianceConfig,
    EscalationRule,
    NotificationRequest,
    SLAConfiguration,
    parse_compliance_config,
)
from bgcheck_compliance.compliance.infrastructure.memory import InMemoryConfigStore
from bgcheck_compliance.core import MisconfiguredSLA, NotificationDispatchFailed
from bgcheck_compliance.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


# ========== Configuration ==========

class ConfigFileHandler(FileSystemEventHandler):
    """Watchdog event handler for compliance config file changes."""

    def __init__(self, config_store: "YAMLConfigStore", config_path: Path):
        self.config_store = config_store
        self.config_path = config_path
        super().__init__()

    def on_modified(self, event):
        """Handle file modification event."""
        if event.is_directory:
            return
        if Path(event.src_path).resolve() == self.config_path.resolve():
            logger.info("Compliance config file changed", extra={"path": str(event.src_path)})
            self.config_store.reload()


class YAMLConfigStore(InMemoryConfigStore):
    """
    Thread-safe compliance configuration backed by a YAML file.

    Uses watchdog to pick up edits without restarting the service. An
    invalid file is rejected and the last good configuration stays active.
    Admin edits made through the API are written back to the file.
    """

    def __init__(self, path: Path):
        super().__init__()
        self._path = Path(path)
        self._lock = threading.RLock()
        self._observer = None

    @property
    def path(self) -> Path:
        return self._path

    def _load_from_file(self) -> ComplianceConfig:
        if not self._path.exists():
            logger.warning(
                "Compliance config file not found, using defaults",
                extra={"path": str(self._path)}
            )
            return ComplianceConfig()

        with open(self._path, "r") as f:
            data = yaml.safe_load(f) or {}
        return parse_compliance_config(data)

    def load(self) -> ComplianceConfig:
        """
        Initial configuration load.

        Raises:
            MisconfiguredSLA: if the file content is invalid
        """
        config = self._load_from_file()
        self.replace(config)
        logger.info(
            "Compliance configuration loaded",
            extra={
                "sla_configurations": len(config.sla_configurations),
                "escalation_rules": len(config.escalation_rules)
            }
        )
        return config

    def reload(self) -> bool:
        """Reload configuration from file, keeping the current one on failure."""
        with self._lock:
            return self._reload_locked()

    def _reload_locked(self) -> bool:
        try:
            config = self._load_from_file()
        except MisconfiguredSLA as e:
            logger.error(
                "Compliance config rejected, keeping previous configuration",
                extra={"path": str(self._path), "errors": e.details.get("errors")}
            )
            return False
        except (OSError, yaml.YAMLError) as e:
            logger.error(
                "Failed to read compliance config, keeping previous configuration",
                extra={"path": str(self._path), "error": str(e)}
            )
            return False

        self.replace(config)
        logger.info("Compliance configuration reloaded successfully")
        return True

    def get_config(self) -> ComplianceConfig:
        with self._lock:
            return super().get_config()

    def replace(self, config: ComplianceConfig) -> None:
        with self._lock:
            super().replace(config)

    def _persist(self) -> None:
        data = self.get_config().model_dump(mode="json")
        self._path.parent.mkdir(parents=True, exist_ok=True)
        with open(self._path, "w") as f:
            yaml.safe_dump(data, f, sort_keys=False)

    # Edits hold the lock from read to file write so a watcher reload cannot
    # interleave with them.

    def save_sla_configuration(self, config: SLAConfiguration) -> SLAConfiguration:
        with self._lock:
            saved = super().save_sla_configuration(config)
            self._persist()
        return saved

    def save_escalation_rule(self, rule: EscalationRule) -> EscalationRule:
        with self._lock:
            saved = super().save_escalation_rule(rule)
            self._persist()
        return saved

    def delete_escalation_rule(self, rule_id: str) -> None:
        with self._lock:
            super().delete_escalation_rule(rule_id)
            self._persist()

    def start_watching(self) -> None:
        """
        Start watching the configuration file for changes.

        Skips watching when the file does not exist or inotify is unavailable
        (e.g. some container runtimes).
        """
        if not self._path.exists():
            logger.info(
                "Config file doesn't exist, skipping file watch",
                extra={"path": str(self._path)}
            )
            return

        try:
            self._observer = Observer()
            handler = ConfigFileHandler(self, self._path)
            self._observer.schedule(handler, str(self._path.resolve().parent), recursive=False)
            self._observer.start()
            logger.info("Started watching config file", extra={"path": str(self._path)})
        except OSError as e:
            logger.warning("File watching not available, using static config", extra={"error": str(e)})
            self._observer = None

    def stop_watching(self) -> None:
        """Stop watching configuration file (safe to call even if not watching)."""
        if self._observer is not None:
            self._observer.stop()
            self._observer.join(timeout=5)
            self._observer = None


# ========== Notification delivery ==========

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
        recovery_timeout: float = 60.0,
        clock: Callable[[], float] = time.monotonic
    ):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self._clock = clock
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure_time: Optional[float] = None

    @property
    def state(self) -> str:
        if self._state == CircuitState.OPEN and self._last_failure_time is not None:
            if self._clock() - self._last_failure_time >= self.recovery_timeout:
                self._state = CircuitState.HALF_OPEN
        return self._state

    def allow_request(self) -> bool:
        return self.state in (CircuitState.CLOSED, CircuitState.HALF_OPEN)

    def record_success(self) -> None:
        self._failure_count = 0
        self._state = CircuitState.CLOSED

    def record_failure(self) -> None:
        self._failure_count += 1
        self._last_failure_time = self._clock()

        if self._failure_count >= self.failure_threshold or self._state == CircuitState.HALF_OPEN:
            self._state = CircuitState.OPEN
            logger.warning(
                "Circuit breaker opened",
                extra={
                    "failure_count": self._failure_count,
                    "recovery_timeout": self.recovery_timeout
                }
            )


class WebhookNotificationSender:
    """
    Webhook client with circuit breaker and retry logic.

    POSTs each notification request as JSON. Delivery to people (email,
    chat, in-app) is the receiving service's job.
    """

    def __init__(
        self,
        webhook_url: Optional[str],
        timeout_seconds: float = 5.0,
        max_retries: int = 3,
        backoff_seconds: float = 1.0,
        circuit_breaker: Optional[CircuitBreaker] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self._webhook_url = webhook_url
        self._timeout_seconds = timeout_seconds
        self._max_retries = max_retries
        self._backoff_seconds = backoff_seconds
        self._circuit_breaker = circuit_breaker or CircuitBreaker()
        self._transport = transport
        self._http_client: Optional[httpx.AsyncClient] = None

    @property
    def circuit_breaker(self) -> CircuitBreaker:
        return self._circuit_breaker

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                timeout=self._timeout_seconds,
                transport=self._transport
            )
        return self._http_client

    async def send(self, request: NotificationRequest) -> bool:
        """
        Deliver one notification request.

        Returns:
            True if the webhook accepted it, False otherwise
        """
        if not self._webhook_url:
            logger.debug(
                "Notification webhook URL not configured, skipping notification",
                extra={"entity_id": request.entity_id, "kind": request.kind.value}
            )
            return False

        if not self._circuit_breaker.allow_request():
            logger.warning(
                "Circuit breaker open, skipping notification",
                extra={"entity_id": request.entity_id}
            )
            return False

        payload = request.to_payload()

        for attempt in range(self._max_retries):
            try:
                client = await self._get_client()
                response = await client.post(self._webhook_url, json=payload)

                if response.is_success:
                    self._circuit_breaker.record_success()
                    logger.info(
                        "Notification sent",
                        extra={
                            "entity_id": request.entity_id,
                            "kind": request.kind.value,
                            "recipients": len(request.recipients)
                        }
                    )
                    return True

                logger.warning(
                    "Notification webhook returned non-2xx",
                    extra={"status_code": response.status_code, "attempt": attempt + 1}
                )
            except httpx.HTTPError as e:
                logger.error(
                    "Notification request failed",
                    extra={"error": str(e), "attempt": attempt + 1, "entity_id": request.entity_id}
                )

            if attempt < self._max_retries - 1:
                await asyncio.sleep(self._backoff_seconds * 2 ** attempt)

        self._circuit_breaker.record_failure()
        return False

    async def close(self) -> None:
        """Close HTTP client."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None


class NotificationQueue(INotificationPublisher):
    """
    Bounded hand-off between the engine and the notification sender.

    ``publish`` never blocks: when the queue is full the request is dropped
    and logged. A single worker task delivers requests one at a time, each
    bounded by ``send_timeout_seconds``.
    """

    def __init__(
        self,
        sender: WebhookNotificationSender,
        maxsize: int = 500,
        send_timeout_seconds: float = 5.0
    ):
        self._sender = sender
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._send_timeout_seconds = send_timeout_seconds
        self._worker: Optional[asyncio.Task] = None
        self.delivered = 0
        self.failed = 0
        self.dropped = 0

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def publish(self, request: NotificationRequest) -> bool:
        try:
            self._queue.put_nowait(request)
        except asyncio.QueueFull:
            self.dropped += 1
            error = NotificationDispatchFailed(
                "Notification queue full, request dropped",
                {"entity_id": request.entity_id, "kind": request.kind.value}
            )
            logger.error(error.message, extra=error.details)
            return False
        return True

    def start(self) -> None:
        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(self._run(), name="notification-worker")
            logger.info("Notification worker started")

    async def _run(self) -> None:
        while True:
            request = await self._queue.get()
            try:
                await self._deliver(request)
            finally:
                self._queue.task_done()

    async def _deliver(self, request: NotificationRequest) -> None:
        try:
            sent = await asyncio.wait_for(self._sender.send(request), timeout=self._send_timeout_seconds)
        except asyncio.TimeoutError:
            sent = False
            self._sender.circuit_breaker.record_failure()
            logger.error(
                "Notification delivery timed out",
                extra={"entity_id": request.entity_id, "timeout_seconds": self._send_timeout_seconds}
            )
        except Exception as e:
            sent = False
            logger.error(
                "Notification delivery failed",
                extra={"entity_id": request.entity_id, "error": str(e), "error_type": type(e).__name__}
            )

        if sent:
            self.delivered += 1
        else:
            self.failed += 1

    async def stop(self, drain_timeout_seconds: float = 5.0) -> None:
        """Give queued requests a bounded chance to go out, then stop the worker."""
        if self._worker is None:
            return

        try:
            await asyncio.wait_for(self._queue.join(), timeout=drain_timeout_seconds)
        except asyncio.TimeoutError:
            logger.warning("Notification queue not drained before shutdown", extra={"pending": self.pending})

        self._worker.cancel()
        try:
            await self._worker
        except asyncio.CancelledError:
            pass
        self._worker = None
        logger.info(
            "Notification worker stopped",
            extra={"delivered": self.delivered, "failed": self.failed, "dropped": self.dropped}
        )


# ========== Scheduling ==========

class ComplianceScheduler:
    """
    Wrapper for APScheduler running the compliance sweep on an interval.

    Stopping lets the entity currently being evaluated finish and skips the
    rest of that sweep.
    """

    def __init__(self, sweep: ComplianceSweep, interval_seconds: int = 300):
        self.interval_seconds = interval_seconds
        self._sweep = sweep
        self._scheduler: Optional[AsyncIOScheduler] = None
        self._stop_event = asyncio.Event()
        self._running_lock = asyncio.Lock()
        self._running = False

    async def run_sweep(self) -> Optional[SweepReport]:
        """Job body; also callable directly."""
        if self._stop_event.is_set():
            return None
        async with self._running_lock:
            try:
                return await self._sweep.run_once(self._stop_event)
            except Exception as e:
                logger.error(
                    "Compliance sweep failed",
                    extra={"error": str(e), "error_type": type(e).__name__}
                )
                return None

    async def start(self) -> None:
        """Start the scheduler."""
        if self._running:
            logger.warning("Compliance scheduler already running")
            return

        self._stop_event.clear()
        self._scheduler = AsyncIOScheduler()
        self._scheduler.add_job(
            self.run_sweep,
            "interval",
            seconds=self.interval_seconds,
            id="compliance_sweep",
            name="Compliance Sweep Job",
            misfire_grace_time=60,
            coalesce=True,
            max_instances=1,
            replace_existing=True
        )
        self._scheduler.start()
        self._running = True

        logger.info("Compliance scheduler started", extra={"interval_seconds": self.interval_seconds})

    async def stop(self, timeout_seconds: float = 30.0) -> None:
        """Stop the scheduler, waiting for an in-flight entity evaluation."""
        if not self._running:
            return

        self._stop_event.set()
        try:
            await asyncio.wait_for(self._running_lock.acquire(), timeout=timeout_seconds)
        except asyncio.TimeoutError:
            logger.warning("In-flight compliance sweep did not stop in time")
        else:
            self._running_lock.release()

        if self._scheduler:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None

        self._running = False
        logger.info("Compliance scheduler stopped")

    @property
    def is_running(self) -> bool:
        return self._running
