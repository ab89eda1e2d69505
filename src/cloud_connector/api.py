"""High-level API for the cloud connector.

``CloudConnector`` is the composition root: it owns the registry, the process
supervisor, the tunnel manager and the health monitor, and hands them to
consumers by reference. There is no module-level tunnel state.
"""

import atexit
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from types import TracebackType
from typing import Literal

from .common.exceptions import TunnelError
from .common.logging import get_logger, setup_logging
from .config import ConnectorConfig
from .sftp.session import current_username
from .sftp.transfer import SecureFileTransfer
from .tunnels.health import EventListener, HealthMonitor
from .tunnels.manager import TunnelManager
from .tunnels.models import TunnelEntry, TunnelKey, TunnelStatus
from .tunnels.registry import TunnelRegistry
from .tunnels.supervisor import TunnelProcessSupervisor

logger = get_logger(__name__)


def _as_key(key: TunnelKey | str) -> TunnelKey:
    return key if isinstance(key, TunnelKey) else TunnelKey.parse(key)


class CloudConnector:
    """Application-wide owner of tunnels, their processes and their health."""

    def __init__(
        self,
        config: ConnectorConfig | None = None,
        notify: EventListener | None = None,
    ):
        """Create the connector.

        Args:
            config: Connector configuration (defaults if None)
            notify: Notification sink receiving a ``TunnelEvent`` whenever a
                connected tunnel fails its health check
        """
        self.config = config or ConnectorConfig()
        self.registry = TunnelRegistry()
        self.supervisor = TunnelProcessSupervisor(self.config.supervisor)
        self.tunnels = TunnelManager(self.registry, self.supervisor)
        self.health = HealthMonitor(self.registry, self.supervisor, self.config.health)
        if notify is not None:
            self.health.subscribe(notify)
        self._started = False

    @classmethod
    def from_config_file(
        cls, path: Path | None = None, notify: EventListener | None = None
    ) -> "CloudConnector":
        """Load YAML configuration, set up logging and build a connector."""
        config = ConnectorConfig.load(path)
        setup_logging(level=config.log_level, log_file=config.resolved_log_file)
        return cls(config, notify=notify)

    def start(self) -> None:
        """Start health monitoring and make sure helpers die with the process."""
        if self._started:
            return
        self.health.start()
        atexit.register(self.close)
        self._started = True
        logger.info("Cloud connector started")

    def close(self) -> None:
        """Stop monitoring and terminate every tunnel helper."""
        self.health.stop()
        self.tunnels.shutdown_all()
        if self._started:
            atexit.unregister(self.close)
            self._started = False
        logger.info("Cloud connector closed")

    def __enter__(self) -> "CloudConnector":
        self.start()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> Literal[False]:
        self.close()
        return False

    def connect(self, target: str, remote_port: int, project: str, zone: str) -> int:
        """Open (or reuse) the tunnel to ``target:remote_port``; returns its local port."""
        return self.tunnels.connect(target, remote_port, project, zone)

    def disconnect(self, key: TunnelKey | str) -> None:
        self.tunnels.disconnect(_as_key(key))

    def retry(self, key: TunnelKey | str) -> int:
        return self.tunnels.retry(_as_key(key))

    def get(self, key: TunnelKey | str) -> TunnelEntry | None:
        return self.registry.get(_as_key(key))

    def list_tunnels(self, target_prefix: str | None = None) -> list[TunnelEntry]:
        return self.registry.list(target_prefix=target_prefix)

    def local_port(self, key: TunnelKey | str) -> int | None:
        """Local port of a connected tunnel, for RDP/SSH launchers."""
        return self.tunnels.local_port(_as_key(key))

    def file_transfer(
        self, key: TunnelKey | str, username: str | None = None
    ) -> SecureFileTransfer:
        """File operations over a connected tunnel (normally to port 22).

        Raises:
            TunnelError: If the tunnel is not connected
        """
        tunnel_key = _as_key(key)
        entry = self.registry.get(tunnel_key)
        if entry is None or entry.status != TunnelStatus.CONNECTED or not entry.local_port:
            raise TunnelError(f"Tunnel {tunnel_key} is not connected")
        return SecureFileTransfer(
            entry.local_port,
            username or current_username(),
            config=self.config.transfer,
        )


@contextmanager
def managed_tunnel(
    target: str,
    remote_port: int,
    project: str,
    zone: str,
    *,
    config: ConnectorConfig | None = None,
) -> Iterator[int]:
    """Context manager for a single tunnel with automatic cleanup.

    Example:
        >>> with managed_tunnel("my-vm", 3389, "my-project", "us-central1-a") as port:
        ...     launch_rdp(port)
    """
    connector = CloudConnector(config)
    try:
        yield connector.connect(target, remote_port, project, zone)
    finally:
        connector.close()
