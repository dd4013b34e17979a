"""
Hub metadata models for Hub Backup.

This module defines Pydantic models for the host-wide metadata document:
paths, owning account, backup strategy and network identity.
"""

import re
from datetime import datetime, UTC
from pathlib import Path
from typing import Any, Dict, List

from pydantic import BaseModel, Field, field_validator


METADATA_SCHEMA_VERSION = "1.0"
DEFAULT_RETENTION = 6

DEFAULT_EXCLUDE_PATTERNS = [
    "*.log",
    "*/logs/*",
    "*/cache/*",
    "*.tmp",
]

_KEEP_LAST = re.compile(r"^keep[_-]last[_-](\d+)$")


class HubInfo(BaseModel):
    """Host identity and paths."""
    version: str = METADATA_SCHEMA_VERSION
    created: datetime = Field(default_factory=lambda: datetime.now(UTC))
    last_updated: datetime = Field(default_factory=lambda: datetime.now(UTC))
    local_ip: str = ""
    hostname: str = ""
    hub_root: str
    backup_root: str
    user: str
    total_services: int = Field(default=0, ge=0)


class BackupStrategy(BaseModel):
    """How the hub is backed up."""
    data_paths: List[str] = Field(default_factory=list)
    exclude_patterns: List[str] = Field(default_factory=lambda: list(DEFAULT_EXCLUDE_PATTERNS))
    container_handling: str = "recreate_fresh"
    retention_policy: int = Field(default=DEFAULT_RETENTION, ge=1)

    @field_validator("retention_policy", mode="before")
    @classmethod
    def parse_retention(cls, v):
        # Accepts 6, "6", "keep_last_6" or {"keep": 6}
        if isinstance(v, dict):
            v = v.get("keep", DEFAULT_RETENTION)
        if isinstance(v, str):
            match = _KEEP_LAST.match(v.strip())
            if match:
                return int(match.group(1))
        return v


class NetworkConfig(BaseModel):
    """Network information recorded at provisioning time."""
    local_ip: str = ""
    firewall_ports: List[str] = Field(default_factory=list)
    extra: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("firewall_ports", mode="before")
    @classmethod
    def ports_as_strings(cls, v):
        if isinstance(v, (list, tuple)):
            return [str(item) for item in v]
        return v


class HubMetadata(BaseModel):
    """The hub metadata document."""
    hub_info: HubInfo
    backup_strategy: BackupStrategy = Field(default_factory=BackupStrategy)
    network_config: NetworkConfig = Field(default_factory=NetworkConfig)

    @classmethod
    def create(
        cls,
        hub_root: str,
        backup_root: str,
        user: str,
        hostname: str = "",
        local_ip: str = "",
    ) -> "HubMetadata":
        """Build a fresh document for a newly provisioned hub."""
        return cls(
            hub_info=HubInfo(
                hub_root=str(hub_root),
                backup_root=str(backup_root),
                user=user,
                hostname=hostname,
                local_ip=local_ip,
            ),
            backup_strategy=BackupStrategy(data_paths=[str(hub_root)]),
            network_config=NetworkConfig(local_ip=local_ip),
        )

    @property
    def data_root(self) -> Path:
        return Path(self.hub_info.hub_root)

    @property
    def backup_root(self) -> Path:
        return Path(self.hub_info.backup_root)
