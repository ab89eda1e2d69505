"""Configuration models for the cloud connector."""

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .common.exceptions import ConfigurationError
from .common.logging import default_log_file

DEFAULT_MAX_TRANSFER_BYTES = 10 * 1024 * 1024 * 1024  # 10 GiB
DEFAULT_CONFIG_FILE = Path.home() / ".config" / "cloud_connector" / "config.yaml"


class SupervisorConfig(BaseModel):
    """Settings for spawning tunnel helper processes."""

    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    helper_binary: str = Field(
        default="gcloud", min_length=1, description="Tunnel helper executable"
    )
    startup_timeout: float = Field(
        default=10.0, ge=0.1, le=120.0, description="Seconds to confirm local port"
    )
    stop_timeout: float = Field(
        default=5.0, ge=0.1, le=30.0, description="Grace period before SIGKILL"
    )
    local_port: int | None = Field(
        default=None,
        ge=1,
        le=65535,
        description="Fixed local port (OS-assigned if None)",
    )


class HealthMonitorConfig(BaseModel):
    """Settings for the background health monitor."""

    model_config = ConfigDict(extra="forbid")

    check_interval: float = Field(
        default=30.0, gt=0, description="Seconds between health checks"
    )
    port_check_timeout: float = Field(
        default=2.0, gt=0, le=30.0, description="Local TCP connect check timeout"
    )
    max_workers: int = Field(
        default=8, ge=1, le=64, description="Parallel per-tunnel checks"
    )


class TransferConfig(BaseModel):
    """Settings for SFTP transfers."""

    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    max_transfer_bytes: int = Field(
        default=DEFAULT_MAX_TRANSFER_BYTES, ge=0, description="Size ceiling per file"
    )
    chunk_size: int = Field(default=32 * 1024, ge=1, description="Copy buffer size")
    ssh_key_path: str = Field(
        default="~/.ssh/id_rsa", min_length=1, description="Fallback private key"
    )
    connect_timeout: float = Field(default=10.0, gt=0, le=120.0)
    local_root: Path | None = Field(
        default=None, description="Local root for transfers (home dir if None)"
    )

    @property
    def key_path(self) -> Path:
        return Path(self.ssh_key_path).expanduser()

    @property
    def resolved_local_root(self) -> Path:
        return (self.local_root or Path.home()).expanduser()


class ConnectorConfig(BaseModel):
    """Top-level configuration for the connector."""

    model_config = ConfigDict(extra="forbid")

    supervisor: SupervisorConfig = Field(default_factory=SupervisorConfig)
    health: HealthMonitorConfig = Field(default_factory=HealthMonitorConfig)
    transfer: TransferConfig = Field(default_factory=TransferConfig)
    log_level: str = Field(default="INFO")
    log_file: Path | None = Field(default=None)
    log_to_file: bool = Field(
        default=False, description="Log to the default file when log_file is unset"
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level name."""
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level '{v}'")
        return level

    @classmethod
    def load(cls, path: Path | None = None) -> "ConnectorConfig":
        """Load configuration from a YAML file; missing files yield defaults.

        Raises:
            ConfigurationError: If the file cannot be parsed or fails validation
        """
        path = path or DEFAULT_CONFIG_FILE
        if not path.exists():
            return cls()

        try:
            with open(path) as f:
                data: Any = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in {path}: {e}") from e

        if not isinstance(data, dict):
            raise ConfigurationError(f"Config file {path} must contain a mapping")

        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid configuration in {path}: {e}") from e

    @property
    def resolved_log_file(self) -> Path | None:
        if self.log_file is not None:
            return self.log_file.expanduser()
        return default_log_file() if self.log_to_file else None
