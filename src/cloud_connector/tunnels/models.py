"""Tunnel models.

Entries are immutable: every state change produces a new ``TunnelEntry`` via
``model_copy``, so snapshots handed to callers can never be mutated under them.
"""

import re
import uuid
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..common.exceptions import InvalidTunnelKeyError

_PORT_TEXT = re.compile(r"^[0-9]+$")


class TunnelStatus(str, Enum):
    """Tunnel status enumeration."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"


class TunnelKey(BaseModel):
    """Identity of one forwarding session: (target, remote port)."""

    model_config = ConfigDict(frozen=True)

    target: str = Field(min_length=1, description="Instance name")
    remote_port: int = Field(ge=1, le=65535, description="Port on the instance")

    def __str__(self) -> str:
        return f"{self.target}:{self.remote_port}"

    @classmethod
    def parse(cls, text: str) -> "TunnelKey":
        """Parse the ``"{target}:{port}"`` wire form.

        Raises:
            InvalidTunnelKeyError: Unless there are exactly two parts and the
                second is a number in port range
        """
        parts = text.split(":", 1)
        if len(parts) != 2 or ":" in parts[1] or not _PORT_TEXT.match(parts[1]):
            raise InvalidTunnelKeyError(
                f"Invalid tunnel key '{text}': expected 'target:port'"
            )
        try:
            return cls(target=parts[0], remote_port=int(parts[1]))
        except ValidationError as e:
            raise InvalidTunnelKeyError(f"Invalid tunnel key '{text}': {e}") from e


class TunnelEntry(BaseModel):
    """State of one tunnel as recorded by the registry."""

    model_config = ConfigDict(frozen=True)

    key: TunnelKey
    status: TunnelStatus = TunnelStatus.CONNECTING
    entry_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    local_port: int | None = Field(default=None, ge=1, le=65535)
    project: str | None = None
    zone: str | None = None
    process_ref: int | None = Field(
        default=None, description="Opaque process id; never the process handle"
    )
    created_at: datetime = Field(default_factory=datetime.now)
    connected_at: datetime | None = None
    last_health_check: datetime | None = None
    error: str | None = None

    @property
    def target(self) -> str:
        return self.key.target

    @property
    def remote_port(self) -> int:
        return self.key.remote_port

    def with_status(self, status: TunnelStatus, **changes: Any) -> "TunnelEntry":
        """Create new entry instance with updated status (immutable pattern)."""
        update_data: dict[str, Any] = {"status": status, **changes}

        if status == TunnelStatus.CONNECTED and self.connected_at is None:
            update_data.setdefault("connected_at", datetime.now())

        return self.model_copy(update=update_data)

    def to_dict(self) -> dict[str, Any]:
        """Serialize for the UI boundary, with the key in its wire form."""
        data = self.model_dump(mode="json", exclude={"key"})
        data["key"] = str(self.key)
        data["target"] = self.target
        data["remote_port"] = self.remote_port
        return data


class HealthFailureCause(str, Enum):
    """Why a health check failed."""

    PROCESS_EXITED = "process_exited"
    PORT_CLOSED = "port_closed"
    CHECK_FAILED = "check_failed"


class TunnelEvent(BaseModel):
    """Notification published when a connected tunnel fails."""

    model_config = ConfigDict(frozen=True)

    target: str
    remote_port: int
    project: str | None = None
    zone: str | None = None
    cause: HealthFailureCause
    message: str
    timestamp: datetime = Field(default_factory=datetime.now)

    @property
    def key(self) -> TunnelKey:
        return TunnelKey(target=self.target, remote_port=self.remote_port)
