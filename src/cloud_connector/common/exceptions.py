"""Custom exceptions for the cloud connector."""


class ConnectorError(Exception):
    """Base exception for all cloud connector errors."""

    pass


class ConfigurationError(ConnectorError):
    """Raised when configuration is invalid."""

    pass


# Validation errors: raised before any process or network resource is touched


class InputValidationError(ConnectorError):
    """Raised when user supplied input fails validation."""

    pass


class InvalidIdentifierError(InputValidationError):
    """Raised for malformed project, zone, instance, username or port values."""

    pass


class InvalidTunnelKeyError(InputValidationError):
    """Raised when a "target:port" tunnel key cannot be parsed."""

    pass


class PathTraversalRejected(InputValidationError):
    """Raised when a path escapes its allowed root."""

    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Path rejected '{path}': {reason}")


class InvalidName(InputValidationError):
    """Raised when a bare file or directory name is unsafe."""

    def __init__(self, name: str, reason: str):
        self.name = name
        self.reason = reason
        super().__init__(f"Invalid name '{name}': {reason}")


# Operational errors: captured into entry state or returned to the caller


class ProcessError(ConnectorError):
    """Raised when helper process operations fail."""

    pass


class BinaryNotFoundError(ProcessError):
    """Raised when the tunnel helper binary is not found or not executable."""

    pass


class TunnelError(ConnectorError):
    """Raised when a tunnel cannot be established."""

    pass


class TunnelStartupTimeout(TunnelError):
    """Raised when the forwarded local port is not confirmed in time."""

    pass


class TransferError(ConnectorError):
    """Base class for file transfer failures."""

    pass


class TransferSizeExceeded(TransferError):
    """Raised when a transfer grows past the configured ceiling."""

    def __init__(self, limit: int):
        self.limit = limit
        super().__init__(
            f"File size exceeds maximum allowed size of {limit} bytes. Transfer aborted."
        )


class RemoteIoError(TransferError):
    """Raised when a remote filesystem operation fails."""

    def __init__(self, message: str, cause: BaseException | None = None):
        self.cause = cause
        if cause is not None:
            message = f"{message}: {cause}"
        super().__init__(message)


class AuthenticationFailed(ConnectorError):
    """Raised when every SSH authentication method failed."""

    def __init__(self, attempted_methods: list[str]):
        self.attempted_methods = list(attempted_methods)
        details = "\n  * ".join(self.attempted_methods) or "no methods attempted"
        super().__init__(f"All SSH authentication methods failed:\n  * {details}")


# Invariant violations: defects, never silently patched


class RegistryInvariantError(ConnectorError):
    """Raised when the tunnel registry is asked to break its state machine."""

    pass
