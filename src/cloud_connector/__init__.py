"""Cloud Connector - secure tunnels and file transfer to remote instances."""

from .api import CloudConnector, managed_tunnel
from .common.exceptions import (
    AuthenticationFailed,
    BinaryNotFoundError,
    ConfigurationError,
    ConnectorError,
    InputValidationError,
    InvalidIdentifierError,
    InvalidName,
    InvalidTunnelKeyError,
    PathTraversalRejected,
    ProcessError,
    RegistryInvariantError,
    RemoteIoError,
    TransferError,
    TransferSizeExceeded,
    TunnelError,
    TunnelStartupTimeout,
)
from .common.logging import get_logger, setup_logging
from .config import (
    ConnectorConfig,
    HealthMonitorConfig,
    SupervisorConfig,
    TransferConfig,
)
from .sftp import RemoteFileEntry, SecureFileTransfer, TransferResult
from .tunnels import (
    HealthFailureCause,
    HealthMonitor,
    TunnelEntry,
    TunnelEvent,
    TunnelKey,
    TunnelManager,
    TunnelProcessSupervisor,
    TunnelRegistry,
    TunnelStatus,
)

__version__ = "0.1.0"

__all__ = [
    # High-level API
    "CloudConnector",
    "managed_tunnel",
    # Configuration
    "ConnectorConfig",
    "SupervisorConfig",
    "HealthMonitorConfig",
    "TransferConfig",
    # Tunnels
    "TunnelKey",
    "TunnelStatus",
    "TunnelEntry",
    "TunnelEvent",
    "HealthFailureCause",
    "TunnelRegistry",
    "TunnelProcessSupervisor",
    "TunnelManager",
    "HealthMonitor",
    # File transfer
    "SecureFileTransfer",
    "RemoteFileEntry",
    "TransferResult",
    # Exceptions
    "ConnectorError",
    "ConfigurationError",
    "InputValidationError",
    "InvalidIdentifierError",
    "InvalidTunnelKeyError",
    "PathTraversalRejected",
    "InvalidName",
    "ProcessError",
    "BinaryNotFoundError",
    "TunnelError",
    "TunnelStartupTimeout",
    "TransferError",
    "TransferSizeExceeded",
    "RemoteIoError",
    "AuthenticationFailed",
    "RegistryInvariantError",
    # Logging
    "get_logger",
    "setup_logging",
]
