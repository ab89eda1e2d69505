"""Ownership of the tunnel helper processes, one per tunnel key."""

import re
import threading
import time
from collections.abc import Callable
from typing import NamedTuple

from ..common.exceptions import ConnectorError, TunnelError, TunnelStartupTimeout
from ..common.logging import get_logger
from ..common.process import HelperProcess, resolve_binary
from ..common.utils import is_port_open
from ..config import SupervisorConfig
from .models import TunnelKey
from .validation import validate_tunnel_request

logger = get_logger(__name__)

# gcloud reports the bound port when asked for localhost:0
LOCAL_PORT_PATTERN = re.compile(
    r"(?:Picking local unused port|Listening on port) \[(\d+)\]"
)
POLL_INTERVAL = 0.1
PORT_CHECK_TIMEOUT = 0.5


class OwnedProcess(NamedTuple):
    process: HelperProcess
    owner: str | None


class TunnelProcessSupervisor:
    """Spawns, owns and terminates tunnel helper processes.

    The supervisor is the only holder of process handles; callers receive the
    confirmed local port and at most an opaque pid.
    """

    def __init__(
        self,
        config: SupervisorConfig | None = None,
        port_check: Callable[..., bool] = is_port_open,
    ):
        """Initialize the supervisor.

        Args:
            config: Helper binary and timeout settings
            port_check: ``port_check(port, timeout=...)`` returning True when
                the local port accepts TCP connections
        """
        self.config = config or SupervisorConfig()
        self._port_check = port_check
        self._processes: dict[TunnelKey, OwnedProcess] = {}
        self._lock = threading.Lock()

    def build_command(
        self, binary: str, key: TunnelKey, project: str, zone: str, local_port: int
    ) -> list[str]:
        """Build the helper argument vector. Values must already be validated."""
        return [
            binary,
            "compute",
            "start-iap-tunnel",
            key.target,
            str(key.remote_port),
            f"--local-host-port=localhost:{local_port}",
            "--zone",
            zone,
            "--project",
            project,
        ]

    def spawn(
        self, key: TunnelKey, project: str, zone: str, owner: str | None = None
    ) -> int:
        """Start the helper for ``key`` and wait until its local port is live.

        Args:
            key: Tunnel target and remote port
            project: Cloud project of the target
            zone: Zone of the target
            owner: Token of the connect attempt the process belongs to; only
                ``kill`` calls carrying the same token (or none) may stop it

        Returns:
            Confirmed local port

        Raises:
            InvalidIdentifierError: If any identifier fails validation
            TunnelError: If the helper cannot be started, exits early, or a
                live helper of another attempt already holds the key
            TunnelStartupTimeout: If the port is not confirmed in time
        """
        validate_tunnel_request(project, zone, key.target, key.remote_port)

        try:
            binary = resolve_binary(self.config.helper_binary)
        except ConnectorError as e:
            raise TunnelError(f"Cannot start tunnel {key}: {e}") from e

        requested_port = self.config.local_port or 0
        discovered: list[int] = []
        port_reported = threading.Event()

        def on_output(line: str) -> None:
            logger.debug("Tunnel helper output", key=str(key), line=line)
            match = LOCAL_PORT_PATTERN.search(line)
            if match and not port_reported.is_set():
                discovered.append(int(match.group(1)))
                port_reported.set()

        process = HelperProcess(
            self.build_command(binary, key, project, zone, requested_port),
            on_output=on_output,
            stop_timeout=self.config.stop_timeout,
        )

        try:
            process.start()
        except ConnectorError as e:
            raise TunnelError(f"Failed to spawn tunnel helper for {key}: {e}") from e

        self._register(key, process, owner)

        try:
            local_port = self._await_port(
                key, process, requested_port or None, discovered, port_reported
            )
        except TunnelError:
            self._discard(key, process)
            raise

        logger.info(
            "Tunnel helper ready", key=str(key), local_port=local_port, pid=process.pid
        )
        return local_port

    def _register(
        self, key: TunnelKey, process: HelperProcess, owner: str | None
    ) -> None:
        # A dead leftover or one of the same owner is replaced; a live helper
        # of another attempt is left alone
        with self._lock:
            leftover = self._processes.get(key)
            if (
                leftover is not None
                and owner is not None
                and leftover.owner != owner
                and leftover.process.is_running()
            ):
                conflict = True
            else:
                conflict = False
                self._processes[key] = OwnedProcess(process, owner)

        if conflict:
            process.stop()
            logger.warning(
                "Tunnel helper already owned by another attempt",
                key=str(key),
                owner=leftover.owner,
            )
            raise TunnelError(f"Tunnel {key} is held by another connect attempt")

        if leftover is not None:
            leftover.process.stop()
            logger.info("Replaced leftover tunnel helper", key=str(key))

    def _await_port(
        self,
        key: TunnelKey,
        process: HelperProcess,
        local_port: int | None,
        discovered: list[int],
        port_reported: threading.Event,
    ) -> int:
        deadline = time.monotonic() + self.config.startup_timeout
        while time.monotonic() < deadline:
            if not process.is_running():
                returncode = process.returncode
                process.stop()
                detail = process.output_tail() or "no output"
                raise TunnelError(
                    f"Tunnel helper for {key} exited with code {returncode}: {detail}"
                )

            if local_port is None and port_reported.is_set():
                local_port = discovered[0]

            if local_port is not None and self._port_check(
                local_port, timeout=PORT_CHECK_TIMEOUT
            ):
                return local_port

            time.sleep(POLL_INTERVAL)

        waiting_for = (
            f"local port {local_port}" if local_port else "the helper to report its port"
        )
        raise TunnelStartupTimeout(
            f"Timed out after {self.config.startup_timeout}s waiting for {waiting_for} "
            f"(tunnel {key})"
        )

    def _discard(self, key: TunnelKey, process: HelperProcess) -> None:
        with self._lock:
            owned = self._processes.get(key)
            if owned is not None and owned.process is process:
                del self._processes[key]
        process.stop()

    def kill(self, key: TunnelKey, owner: str | None = None) -> bool:
        """Terminate the process owned for ``key``; unknown or dead keys are fine.

        Args:
            key: Tunnel whose helper should stop
            owner: When given, stop the helper only if it was spawned with
                this token

        Returns:
            True if a matching process was owned for the key
        """
        with self._lock:
            owned = self._processes.get(key)
            if owned is None or (owner is not None and owned.owner != owner):
                return False
            del self._processes[key]

        if not owned.process.stop():
            logger.error("Tunnel helper may still be running", key=str(key))
        logger.info("Tunnel helper stopped", key=str(key))
        return True

    def is_alive(self, key: TunnelKey) -> bool:
        """Check if the helper owned for ``key`` is still running"""
        with self._lock:
            owned = self._processes.get(key)
        return owned is not None and owned.process.is_running()

    def pid(self, key: TunnelKey) -> int | None:
        with self._lock:
            owned = self._processes.get(key)
        return owned.process.pid if owned else None

    def owned_keys(self) -> list[TunnelKey]:
        with self._lock:
            return list(self._processes)

    def shutdown(self) -> None:
        """Terminate every owned process so no helper outlives the application."""
        keys = self.owned_keys()
        for key in keys:
            try:
                self.kill(key)
            except Exception as e:
                logger.error("Error stopping tunnel helper", key=str(key), error=str(e))
        if keys:
            logger.info("Supervisor shut down", stopped=len(keys))
