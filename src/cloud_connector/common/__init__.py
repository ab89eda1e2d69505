"""Common utilities and shared functionality."""

from .exceptions import (
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
from .logging import default_log_file, get_logger, setup_logging
from .process import HelperProcess, resolve_binary
from .utils import MAX_PORT, MIN_PORT, is_port_open, mask_sensitive_data, validate_port

__all__ = [
    # Process management
    "HelperProcess",
    "resolve_binary",
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
    "default_log_file",
    # Utils
    "validate_port",
    "is_port_open",
    "mask_sensitive_data",
    "MIN_PORT",
    "MAX_PORT",
]
