"""
Service registry models for Hub Backup.

This module defines Pydantic models for the service registry document:
one entry per deployed service plus registry-level bookkeeping.
"""

import os
from datetime import datetime, UTC
from enum import Enum
from pathlib import Path
from typing import Any, List, Optional, Tuple

from pydantic import BaseModel, Field, field_validator, model_validator


REGISTRY_SCHEMA_VERSION = "1.0"


class BackupPriority(str, Enum):
    """Backup and startup priority of a service."""
    CRITICAL = "critical"
    HIGH = "high"
    NORMAL = "normal"

    @property
    def rank(self) -> int:
        return _PRIORITY_RANK[self]


_PRIORITY_RANK = {
    BackupPriority.CRITICAL: 0,
    BackupPriority.HIGH: 1,
    BackupPriority.NORMAL: 2,
}


def _stringify_ports(value: Any) -> Any:
    if isinstance(value, (list, tuple)):
        return [str(item) for item in value]
    return value


class ServiceEntry(BaseModel):
    """A single registered service."""
    name: str = Field(..., min_length=1)
    data_path: str
    container_name: str
    access_url: str = ""
    description: str = ""
    service_type: str = "generic"
    backup_priority: BackupPriority = BackupPriority.NORMAL
    installed_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    ports: List[str] = Field(default_factory=list)
    dependencies: List[str] = Field(default_factory=list)
    critical: bool = False

    @field_validator("ports", mode="before")
    @classmethod
    def ports_as_strings(cls, v):
        return _stringify_ports(v)

    @field_validator("dependencies")
    @classmethod
    def dependencies_are_a_set(cls, v):
        seen = []
        for dep in v:
            if dep not in seen:
                seen.append(dep)
        return seen

    @field_validator("data_path")
    @classmethod
    def data_path_must_be_absolute(cls, v):
        if not Path(v).is_absolute():
            raise ValueError(f"data_path must be absolute: {v}")
        return v

    @property
    def starts_early(self) -> bool:
        """Whether the service belongs to the critical restart group."""
        return self.critical or self.backup_priority in (BackupPriority.CRITICAL, BackupPriority.HIGH)

    @property
    def startup_key(self) -> Tuple[int, int]:
        return (0 if self.critical else 1, self.backup_priority.rank)

    def is_under(self, data_root: Path) -> bool:
        path = Path(os.path.normpath(self.data_path))
        root = Path(os.path.normpath(data_root))
        return path == root or root in path.parents


class RegistryInfo(BaseModel):
    """Registry-level metadata."""
    version: str = REGISTRY_SCHEMA_VERSION
    created: datetime = Field(default_factory=lambda: datetime.now(UTC))
    last_updated: datetime = Field(default_factory=lambda: datetime.now(UTC))
    discovery_method: str = "manual"
    backup_compatible: bool = True


class Registry(BaseModel):
    """The service registry document."""
    registry_info: RegistryInfo = Field(default_factory=RegistryInfo)
    services: List[ServiceEntry] = Field(default_factory=list)

    @model_validator(mode="after")
    def names_must_be_unique(self):
        names = [service.name for service in self.services]
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if duplicates:
            raise ValueError(f"Duplicate service names: {', '.join(duplicates)}")
        return self

    def get(self, name: str) -> Optional[ServiceEntry]:
        for service in self.services:
            if service.name == name:
                return service
        return None

    def outside_root(self, data_root: Path) -> List[str]:
        """Names of services whose data path escapes the data root."""
        return [s.name for s in self.services if not s.is_under(data_root)]
