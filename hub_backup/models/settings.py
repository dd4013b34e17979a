"""
Operator settings for Hub Backup.

Tunables that are not part of the hub documents: thresholds, delays,
scratch locations and the well-known health endpoints. Loaded from an
optional YAML file.
"""

import tempfile
from pathlib import Path
from typing import Dict, List, Optional, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from hub_backup.core.exceptions import ConfigurationError


METADATA_FILENAME = "hub-metadata.json"
REGISTRY_FILENAME = "service-registry.json"

DEFAULT_HEALTH_ENDPOINTS = {
    "Home Assistant": "http://{local_ip}:8123",
    "Portainer": "http://{local_ip}:9000",
    "Grafana": "http://{local_ip}:3000",
    "Pi-hole": "http://{local_ip}/admin",
}

GIB = 1024 ** 3


class HubSettings(BaseModel):
    """Operator-level settings."""
    hub_root: str = "/srv/hub"
    backup_root: Optional[str] = None
    user: Optional[str] = None
    metadata_file: Optional[str] = None
    registry_file: Optional[str] = None
    scratch_root: Optional[str] = None
    system_paths: Optional[List[str]] = None
    system_restore_root: str = "/"

    warn_free_gb: float = Field(default=5.0, ge=0)
    critical_free_gb: float = Field(default=2.0, ge=0)
    emergency_keep: int = Field(default=3, ge=1)
    log_horizon_days: int = Field(default=90, ge=1)
    stale_scratch_hours: int = Field(default=24, ge=1)

    critical_settle_seconds: float = Field(default=2.0, ge=0)
    stop_settle_seconds: float = Field(default=3.0, ge=0)
    health_check_delay: float = Field(default=15.0, ge=0)
    probe_timeout: float = Field(default=3.0, gt=0)
    health_endpoints: Dict[str, str] = Field(default_factory=lambda: dict(DEFAULT_HEALTH_ENDPOINTS))

    model_config = ConfigDict(extra="forbid")

    @classmethod
    def load(cls, path: Optional[Union[str, Path]] = None, **overrides) -> "HubSettings":
        """Load settings from a YAML file, then apply non-empty overrides."""
        data = {}
        if path:
            config_path = Path(path)
            try:
                with open(config_path, "r", encoding="utf-8") as f:
                    data = yaml.safe_load(f) or {}
            except FileNotFoundError as e:
                raise ConfigurationError(f"Settings file not found: {config_path}") from e
            except yaml.YAMLError as e:
                raise ConfigurationError(f"Invalid YAML in {config_path}: {e}") from e
            if not isinstance(data, dict):
                raise ConfigurationError(f"Settings file must contain a mapping: {config_path}")

        data.update({k: v for k, v in overrides.items() if v is not None})

        try:
            return cls(**data)
        except PydanticValidationError as e:
            raise ConfigurationError(f"Invalid settings: {e}") from e

    @property
    def warn_free_bytes(self) -> int:
        return int(self.warn_free_gb * GIB)

    @property
    def critical_free_bytes(self) -> int:
        return int(self.critical_free_gb * GIB)

    def metadata_path(self) -> Path:
        return Path(self.metadata_file) if self.metadata_file else Path(self.hub_root) / METADATA_FILENAME

    def registry_path(self) -> Path:
        return Path(self.registry_file) if self.registry_file else Path(self.hub_root) / REGISTRY_FILENAME

    def scratch_dir(self) -> Path:
        return Path(self.scratch_root or tempfile.gettempdir())

    def resolve_system_paths(self, user: str) -> List[Path]:
        if self.system_paths is not None:
            return [Path(p) for p in self.system_paths]
        home = Path("/home") / user
        return [Path("/etc/cron.d"), home / ".bashrc", home / "scripts"]
