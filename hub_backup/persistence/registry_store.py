"""
Service registry store.

Loads, validates and appends to the service registry document. All writes
go through an atomic whole-document replace.
"""

import json
import logging
from datetime import datetime, UTC
from pathlib import Path
from typing import List, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from hub_backup.core.exceptions import ConfigurationError, CorruptRegistry, DuplicateService, ValidationError
from hub_backup.models.registry import Registry, ServiceEntry
from hub_backup.persistence.documents import read_document, write_document_atomic

logger = logging.getLogger(__name__)


class RegistryStore:
    """Durable mapping of service name to service metadata."""

    def __init__(self, path: Union[str, Path], data_root: Optional[Union[str, Path]] = None):
        self.path = Path(path)
        self.data_root = Path(data_root) if data_root else None

    def load(self) -> Registry:
        """
        Load the registry document.

        An absent document is initialised to an empty registry (and persisted
        when its directory exists).

        Raises:
            CorruptRegistry: If the document cannot be parsed or violates the schema
        """
        if not self.path.exists():
            registry = Registry()
            if self.path.parent.is_dir():
                logger.info(f"Initialising empty service registry at {self.path}")
                self.save(registry)
            return registry

        try:
            registry = read_document(self.path, Registry)
        except (OSError, UnicodeDecodeError, json.JSONDecodeError, PydanticValidationError) as e:
            raise CorruptRegistry(
                f"Service registry is unreadable: {self.path}: {e}",
                details={"path": str(self.path)}
            ) from e

        if self.data_root:
            escaped = registry.outside_root(self.data_root)
            if escaped:
                raise CorruptRegistry(
                    f"Services with data paths outside {self.data_root}: {', '.join(escaped)}",
                    failed_checks=escaped,
                )

        return registry

    def save(self, registry: Registry) -> None:
        try:
            write_document_atomic(self.path, registry)
        except OSError as e:
            raise ConfigurationError(
                f"Cannot write service registry {self.path}: {e}",
                details={"path": str(self.path)}
            ) from e

    def append_service(self, entry: ServiceEntry) -> Registry:
        """
        Register a new service.

        Raises:
            DuplicateService: If a service with the same name is already registered
            ValidationError: If the service data path lies outside the data root
        """
        registry = self.load()

        if registry.get(entry.name) is not None:
            raise DuplicateService(entry.name)

        if self.data_root and not entry.is_under(self.data_root):
            raise ValidationError(
                f"Data path {entry.data_path} is not under {self.data_root}",
                failed_checks=["data_path"],
            )

        registry.services.append(entry)
        registry.registry_info.last_updated = datetime.now(UTC)
        self.save(registry)

        logger.info(f"Registered service {entry.name} ({entry.container_name})")
        return registry

    def list_data_paths(self) -> List[str]:
        return [service.data_path for service in self.load().services]

    def list_container_names(self) -> List[str]:
        return [service.container_name for service in self.load().services]

    def list_critical(self) -> List[ServiceEntry]:
        """Services in the critical restart group, in startup order."""
        early = [service for service in self.load().services if service.starts_early]
        return sorted(early, key=lambda service: service.startup_key)
