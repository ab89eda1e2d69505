"""Tunnel registry: the authoritative map from tunnel key to tunnel state."""

import threading
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr

from ..common.exceptions import RegistryInvariantError
from ..common.logging import get_logger
from .models import TunnelEntry, TunnelKey, TunnelStatus

logger = get_logger(__name__)

# None stands for "no entry" (implicitly disconnected)
_TRANSITIONS: dict[TunnelStatus | None, set[TunnelStatus]] = {
    None: {TunnelStatus.CONNECTING},
    TunnelStatus.CONNECTING: {TunnelStatus.CONNECTED, TunnelStatus.ERROR},
    TunnelStatus.CONNECTED: {TunnelStatus.ERROR},
    TunnelStatus.ERROR: {TunnelStatus.CONNECTING},
}


class TunnelRegistry(BaseModel):
    """In-memory store of tunnel entries enforcing the tunnel state machine.

    The registry performs no I/O. All reads return frozen entries or new
    lists, so callers always hold snapshots rather than live views.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    tunnels: dict[TunnelKey, TunnelEntry] = Field(
        default_factory=dict, description="Tunnel entries by key"
    )
    _lock: Any = PrivateAttr(default_factory=threading.RLock)

    def _check_transition(
        self, key: TunnelKey, current: TunnelStatus | None, new: TunnelStatus
    ) -> None:
        if new not in _TRANSITIONS.get(current, set()):
            current_name = current.value if current else "absent"
            logger.critical(
                "Illegal tunnel state transition",
                key=str(key),
                current=current_name,
                requested=new.value,
            )
            raise RegistryInvariantError(
                f"Illegal transition for tunnel '{key}': {current_name} -> {new.value}"
            )

    def begin_connect(
        self, key: TunnelKey, project: str | None = None, zone: str | None = None
    ) -> tuple[TunnelEntry, bool]:
        """Record a connection attempt unless one is already live.

        Args:
            key: Tunnel to connect
            project: Cloud project of the target
            zone: Zone of the target

        Returns:
            (entry, created). ``created`` is False when an entry was already
            connecting or connected; that entry is returned unchanged.
        """
        with self._lock:
            existing = self.tunnels.get(key)
            if existing is not None and existing.status in (
                TunnelStatus.CONNECTING,
                TunnelStatus.CONNECTED,
            ):
                return existing, False

            self._check_transition(
                key, existing.status if existing else None, TunnelStatus.CONNECTING
            )
            # A retry from error keeps the identifiers of the failed attempt
            if existing is not None:
                project = project or existing.project
                zone = zone or existing.zone
            entry = TunnelEntry(
                key=key, status=TunnelStatus.CONNECTING, project=project, zone=zone
            )
            self.tunnels[key] = entry

        logger.info("Tunnel connecting", key=str(key))
        return entry, True

    def mark_connected(
        self, key: TunnelKey, entry_id: str, local_port: int, process_ref: int | None
    ) -> TunnelEntry | None:
        """Move a connecting entry to connected.

        Returns:
            Updated entry, or None if the entry was removed (or replaced)
            while the attempt was in flight
        """
        with self._lock:
            entry = self.tunnels.get(key)
            if entry is None or entry.entry_id != entry_id:
                logger.info("Discarding connect result for removed tunnel", key=str(key))
                return None

            self._check_transition(key, entry.status, TunnelStatus.CONNECTED)
            updated = entry.with_status(
                TunnelStatus.CONNECTED,
                local_port=local_port,
                process_ref=process_ref,
                error=None,
            )
            self.tunnels[key] = updated

        logger.info("Tunnel connected", key=str(key), local_port=local_port)
        return updated

    def mark_error(
        self,
        key: TunnelKey,
        message: str,
        *,
        entry_id: str | None = None,
        expected_status: TunnelStatus | None = None,
    ) -> TunnelEntry | None:
        """Move an entry to error with a cause message.

        Args:
            key: Tunnel that failed
            message: Human readable cause, stored in ``error``
            entry_id: If given, only the entry with this identity is updated
            expected_status: If given, only an entry in this status is updated

        Returns:
            Updated entry, or None if the result was stale and discarded
        """
        with self._lock:
            entry = self.tunnels.get(key)
            if entry is None:
                logger.debug("Discarding error for removed tunnel", key=str(key))
                return None
            if entry_id is not None and entry.entry_id != entry_id:
                logger.debug("Discarding error for replaced tunnel", key=str(key))
                return None
            if expected_status is not None and entry.status != expected_status:
                logger.debug(
                    "Discarding stale error",
                    key=str(key),
                    status=entry.status.value,
                )
                return None

            self._check_transition(key, entry.status, TunnelStatus.ERROR)
            updated = entry.with_status(TunnelStatus.ERROR, error=message)
            self.tunnels[key] = updated

        logger.warning("Tunnel entered error state", key=str(key), error=message)
        return updated

    def record_health_check(
        self, key: TunnelKey, entry_id: str, checked_at: datetime | None = None
    ) -> TunnelEntry | None:
        """Stamp a successful health check on a still-connected entry."""
        with self._lock:
            entry = self.tunnels.get(key)
            if (
                entry is None
                or entry.entry_id != entry_id
                or entry.status != TunnelStatus.CONNECTED
            ):
                return None
            updated = entry.model_copy(
                update={"last_health_check": checked_at or datetime.now()}
            )
            self.tunnels[key] = updated
            return updated

    def remove(self, key: TunnelKey) -> TunnelEntry | None:
        """Remove an entry; a missing key is not an error.

        Returns:
            Removed entry, or None if there was none
        """
        with self._lock:
            entry = self.tunnels.pop(key, None)

        if entry is not None:
            logger.info("Removed tunnel from registry", key=str(key))
        return entry

    def get(self, key: TunnelKey) -> TunnelEntry | None:
        """Get entry by key.

        Returns:
            Entry if found, None otherwise (implicitly disconnected)
        """
        with self._lock:
            return self.tunnels.get(key)

    def status(self, key: TunnelKey) -> TunnelStatus:
        entry = self.get(key)
        return entry.status if entry else TunnelStatus.DISCONNECTED

    def list(
        self, target_prefix: str | None = None, status: TunnelStatus | None = None
    ) -> list[TunnelEntry]:
        """List a snapshot of entries with optional filtering.

        Args:
            target_prefix: Only entries whose target starts with this prefix
            status: Filter by status

        Returns:
            New list of frozen entries
        """
        with self._lock:
            entries = list(self.tunnels.values())

        if target_prefix is not None:
            entries = [e for e in entries if e.target.startswith(target_prefix)]

        if status is not None:
            entries = [e for e in entries if e.status == status]

        return entries

    def __len__(self) -> int:
        with self._lock:
            return len(self.tunnels)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self.tunnels

    def to_dict(self) -> dict[str, Any]:
        """Serialize a snapshot keyed by the ``"target:port"`` wire form."""
        return {str(entry.key): entry.to_dict() for entry in self.list()}
