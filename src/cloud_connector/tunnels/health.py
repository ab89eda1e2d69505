"""Background health monitor for connected tunnels."""

import threading
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from datetime import datetime

from ..common.logging import get_logger
from ..common.utils import is_port_open
from ..config import HealthMonitorConfig
from .models import HealthFailureCause, TunnelEntry, TunnelEvent, TunnelStatus
from .registry import TunnelRegistry
from .supervisor import TunnelProcessSupervisor

logger = get_logger(__name__)

CheckOutcome = tuple[HealthFailureCause | None, str | None]
EventListener = Callable[[TunnelEvent], None]


class HealthMonitor:
    """
    Background task that verifies connected tunnels.

    Every interval it takes a snapshot of connected entries and checks each
    one on a worker thread: the helper process must be alive and the local
    port must accept a TCP connection. Workers only report outcomes; the
    monitor applies transitions and publishes events. Failed tunnels stay in
    the error state until the user retries.
    """

    def __init__(
        self,
        registry: TunnelRegistry,
        supervisor: TunnelProcessSupervisor,
        config: HealthMonitorConfig | None = None,
        port_check: Callable[..., bool] = is_port_open,
    ):
        self.registry = registry
        self.supervisor = supervisor
        self.config = config or HealthMonitorConfig()
        self._port_check = port_check
        self._listeners: list[EventListener] = []
        self._listeners_lock = threading.Lock()
        self._cycle_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._executor: ThreadPoolExecutor | None = None

    def subscribe(self, listener: EventListener) -> None:
        """Register a callable that receives every ``TunnelEvent``."""
        with self._listeners_lock:
            self._listeners.append(listener)

    def unsubscribe(self, listener: EventListener) -> None:
        with self._listeners_lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Start the background health monitoring thread."""
        if self.is_running:
            logger.warning("Health monitor already running")
            return

        self._stop_event.clear()
        self._executor = ThreadPoolExecutor(
            max_workers=self.config.max_workers, thread_name_prefix="tunnel-health"
        )
        self._thread = threading.Thread(
            target=self._monitor_loop, name="tunnel-health-monitor", daemon=True
        )
        self._thread.start()
        logger.info(
            "Health monitor started",
            interval=self.config.check_interval,
            port_check_timeout=self.config.port_check_timeout,
        )

    def stop(self, timeout: float | None = 5.0) -> None:
        """Stop the monitoring thread."""
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        if self._executor is not None:
            self._executor.shutdown(wait=False, cancel_futures=True)
            self._executor = None
        logger.info("Health monitor stopped")

    def _monitor_loop(self) -> None:
        while not self._stop_event.wait(self.config.check_interval):
            try:
                self.check_now()
            except Exception as e:
                logger.error("Error in health monitor loop", error=str(e))

    def check_now(self) -> list[TunnelEvent]:
        """Run one health check cycle and return the events it produced."""
        with self._cycle_lock:
            snapshot = self.registry.list(status=TunnelStatus.CONNECTED)
            if not snapshot:
                return []

            if self._executor is not None:
                return self._run_cycle(self._executor, snapshot)
            with ThreadPoolExecutor(
                max_workers=self.config.max_workers,
                thread_name_prefix="tunnel-health",
            ) as executor:
                return self._run_cycle(executor, snapshot)

    def _run_cycle(
        self, executor: ThreadPoolExecutor, snapshot: list[TunnelEntry]
    ) -> list[TunnelEvent]:
        futures: dict[Future[CheckOutcome], TunnelEntry] = {
            executor.submit(self._check_entry, entry): entry for entry in snapshot
        }

        events = []
        # Results are applied as they arrive so a slow target delays nobody
        for future in as_completed(futures):
            entry = futures[future]
            try:
                outcome = future.result()
            except Exception as e:
                outcome = (HealthFailureCause.CHECK_FAILED, f"Health check failed: {e}")

            event = self._apply(entry, outcome)
            if event is not None:
                events.append(event)
                self._publish(event)
        return events

    def _check_entry(self, entry: TunnelEntry) -> CheckOutcome:
        if not self.supervisor.is_alive(entry.key):
            return HealthFailureCause.PROCESS_EXITED, "Tunnel helper process exited"

        port = entry.local_port
        timeout = self.config.port_check_timeout
        if port is None or not self._port_check(port, timeout=timeout):
            return (
                HealthFailureCause.PORT_CLOSED,
                f"Local port {port} is not accepting connections",
            )
        return None, None

    def _apply(self, entry: TunnelEntry, outcome: CheckOutcome) -> TunnelEvent | None:
        cause, message = outcome
        if cause is None:
            self.registry.record_health_check(entry.key, entry.entry_id, datetime.now())
            logger.debug("Tunnel healthy", key=str(entry.key))
            return None

        message = message or cause.value
        updated = self.registry.mark_error(
            entry.key,
            message,
            entry_id=entry.entry_id,
            expected_status=TunnelStatus.CONNECTED,
        )
        if updated is None:
            # Removed or replaced while the check ran
            return None

        logger.warning(
            "Tunnel health check failed",
            key=str(entry.key),
            cause=cause.value,
            error=message,
        )
        return TunnelEvent(
            target=entry.target,
            remote_port=entry.remote_port,
            project=entry.project,
            zone=entry.zone,
            cause=cause,
            message=message,
        )

    def _publish(self, event: TunnelEvent) -> None:
        with self._listeners_lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(event)
            except Exception as e:
                logger.error(
                    "Tunnel event listener failed",
                    key=str(event.key),
                    error=str(e),
                )
