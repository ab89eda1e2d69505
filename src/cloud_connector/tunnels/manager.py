"""Tunnel manager for lifecycle management."""

import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor

from ..common.exceptions import ConnectorError, TunnelError
from ..common.logging import get_logger
from .models import TunnelEntry, TunnelKey, TunnelStatus
from .registry import TunnelRegistry
from .supervisor import TunnelProcessSupervisor
from .validation import sanitize_zone_from_url, validate_tunnel_request

logger = get_logger(__name__)

# Extra time a concurrent caller waits beyond the supervisor's startup timeout
WAIT_MARGIN = 5.0


class TunnelManager:
    """Connects and disconnects tunnels, keeping registry and processes in step."""

    def __init__(
        self,
        registry: TunnelRegistry,
        supervisor: TunnelProcessSupervisor,
        max_workers: int = 4,
    ):
        """Initialize tunnel manager.

        Args:
            registry: Registry owned by the composition root
            supervisor: Process supervisor owned by the composition root
            max_workers: Threads available to ``connect_async``
        """
        self.registry = registry
        self.supervisor = supervisor
        self._lock = threading.Lock()
        self._in_flight: dict[TunnelKey, threading.Event] = {}
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="tunnel-connect"
        )

    def connect(self, target: str, remote_port: int, project: str, zone: str) -> int:
        """Open a tunnel, or return the port of the one already open.

        At most one helper process is spawned per key: a second call while the
        first is still connecting waits for its outcome. ``zone`` may be given
        as a full zone URL; only its last segment is used.

        Returns:
            Local port forwarding to ``target:remote_port``

        Raises:
            InvalidIdentifierError: If any identifier is malformed
            TunnelError: If the tunnel could not be established
        """
        zone = sanitize_zone_from_url(zone)
        validate_tunnel_request(project, zone, target, remote_port)
        key = TunnelKey(target=target, remote_port=remote_port)

        pending: threading.Event | None = None
        done = threading.Event()
        with self._lock:
            previous = self.registry.get(key)
            entry, created = self.registry.begin_connect(key, project, zone)
            if created:
                self._in_flight[key] = done
            else:
                pending = self._in_flight.get(key)

        if not created:
            return self._await_existing(key, entry, pending)

        try:
            if previous is not None:
                # The failed attempt's helper may still be running
                self.supervisor.kill(key, owner=previous.entry_id)
            return self._establish(entry, project, zone)
        finally:
            with self._lock:
                if self._in_flight.get(key) is done:
                    del self._in_flight[key]
            done.set()

    def _establish(self, entry: TunnelEntry, project: str, zone: str) -> int:
        key = entry.key
        try:
            local_port = self.supervisor.spawn(key, project, zone, owner=entry.entry_id)
        except ConnectorError as e:
            self.registry.mark_error(key, str(e), entry_id=entry.entry_id)
            raise
        except Exception as e:
            self.registry.mark_error(
                key, f"Unexpected error: {e}", entry_id=entry.entry_id
            )
            raise TunnelError(f"Failed to start tunnel {key}: {e}") from e

        updated = self.registry.mark_connected(
            key, entry.entry_id, local_port, self.supervisor.pid(key)
        )
        if updated is None:
            # Disconnected while the helper was starting
            self.supervisor.kill(key, owner=entry.entry_id)
            raise TunnelError(f"Tunnel {key} was disconnected while connecting")
        return local_port

    def _await_existing(
        self, key: TunnelKey, entry: TunnelEntry, pending: threading.Event | None
    ) -> int:
        if entry.status == TunnelStatus.CONNECTED and entry.local_port is not None:
            logger.debug("Tunnel already connected", key=str(key))
            return entry.local_port

        deadline = time.monotonic() + self.supervisor.config.startup_timeout + WAIT_MARGIN
        while True:
            if pending is not None:
                remaining = deadline - time.monotonic()
                if remaining <= 0 or not pending.wait(remaining):
                    raise TunnelError(f"Timed out waiting for tunnel {key} to connect")

            current = self.registry.get(key)
            if current is None:
                raise TunnelError(f"Tunnel {key} was disconnected while connecting")
            if current.status == TunnelStatus.CONNECTED and current.local_port is not None:
                return current.local_port
            if (
                current.status == TunnelStatus.CONNECTING
                and current.entry_id != entry.entry_id
            ):
                # Superseded by a newer attempt; wait for that one instead
                entry = current
                with self._lock:
                    pending = self._in_flight.get(key)
                continue
            raise TunnelError(current.error or f"Tunnel {key} failed to connect")

    def connect_async(
        self, target: str, remote_port: int, project: str, zone: str
    ) -> "Future[int]":
        """Run ``connect`` on a worker thread, off the caller's event loop."""
        return self._executor.submit(self.connect, target, remote_port, project, zone)

    def retry(self, key: TunnelKey) -> int:
        """Reconnect a tunnel that is in the error state.

        Raises:
            TunnelError: If the key has no entry in the error state
        """
        entry = self.registry.get(key)
        if entry is None or entry.status != TunnelStatus.ERROR:
            raise TunnelError(f"Tunnel {key} is not in error state")
        if entry.project is None or entry.zone is None:
            raise TunnelError(f"Tunnel {key} has no project/zone to retry with")
        return self.connect(key.target, key.remote_port, entry.project, entry.zone)

    def disconnect(self, key: TunnelKey) -> None:
        """Kill the tunnel's process and forget it; idempotent."""
        self.supervisor.kill(key)
        removed = self.registry.remove(key)
        if removed is not None:
            logger.info("Disconnected tunnel", key=str(key))

    def get(self, key: TunnelKey) -> TunnelEntry | None:
        return self.registry.get(key)

    def list(
        self, target_prefix: str | None = None, status: TunnelStatus | None = None
    ) -> list[TunnelEntry]:
        return self.registry.list(target_prefix=target_prefix, status=status)

    def local_port(self, key: TunnelKey) -> int | None:
        """Local port of a connected tunnel, for RDP/SSH launchers."""
        entry = self.registry.get(key)
        if entry is None or entry.status != TunnelStatus.CONNECTED:
            return None
        return entry.local_port

    def shutdown_all(self) -> None:
        """Disconnect every tunnel and stop accepting async connects."""
        self._executor.shutdown(wait=False, cancel_futures=True)
        for entry in self.registry.list():
            self.disconnect(entry.key)
        self.supervisor.shutdown()
        logger.info("Shutdown all tunnels")
