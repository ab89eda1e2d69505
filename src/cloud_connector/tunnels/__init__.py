"""Tunnel lifecycle: registry, process supervision and health monitoring."""

from .health import HealthMonitor
from .manager import TunnelManager
from .models import (
    HealthFailureCause,
    TunnelEntry,
    TunnelEvent,
    TunnelKey,
    TunnelStatus,
)
from .registry import TunnelRegistry
from .supervisor import TunnelProcessSupervisor
from .validation import (
    sanitize_zone_from_url,
    validate_instance_name,
    validate_project_id,
    validate_tunnel_request,
    validate_username,
    validate_zone,
)

__all__ = [
    # Models
    "TunnelKey",
    "TunnelStatus",
    "TunnelEntry",
    "TunnelEvent",
    "HealthFailureCause",
    # Lifecycle
    "TunnelRegistry",
    "TunnelProcessSupervisor",
    "TunnelManager",
    "HealthMonitor",
    # Validation
    "validate_project_id",
    "validate_zone",
    "validate_instance_name",
    "validate_username",
    "validate_tunnel_request",
    "sanitize_zone_from_url",
]
