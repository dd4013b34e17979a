"""
Hub metadata store.

Loads and atomically rewrites the hub metadata document, and exposes the
configuration values the rest of the core is allowed to depend on.
"""

import json
import logging
from datetime import datetime, UTC
from pathlib import Path
from typing import List, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from hub_backup.core.exceptions import ConfigurationError, ValidationError
from hub_backup.models.metadata import HubMetadata
from hub_backup.models.registry import ServiceEntry
from hub_backup.persistence.documents import read_document, write_document_atomic

logger = logging.getLogger(__name__)


class MetadataStore:
    """Durable host-wide configuration document."""

    def __init__(self, path: Union[str, Path], default: Optional[HubMetadata] = None):
        self.path = Path(path)
        self.default = default
        self._document: Optional[HubMetadata] = None

    def load(self) -> HubMetadata:
        """
        Load the metadata document, falling back to the default when absent.

        Raises:
            ValidationError: If the document exists but is malformed
            ConfigurationError: If the document is absent and no default was given
        """
        if not self.path.exists():
            if self.default is None:
                raise ConfigurationError(f"Hub metadata not found: {self.path}")
            self._document = self.default
            return self._document

        try:
            self._document = read_document(self.path, HubMetadata)
        except (OSError, UnicodeDecodeError, json.JSONDecodeError, PydanticValidationError) as e:
            raise ValidationError(
                f"Hub metadata is unreadable: {self.path}: {e}",
                details={"path": str(self.path)}
            ) from e
        return self._document

    @property
    def document(self) -> HubMetadata:
        if self._document is None:
            return self.load()
        return self._document

    def save(self, metadata: HubMetadata) -> None:
        metadata.hub_info.last_updated = datetime.now(UTC)
        try:
            write_document_atomic(self.path, metadata)
        except OSError as e:
            raise ConfigurationError(
                f"Cannot write hub metadata {self.path}: {e}",
                details={"path": str(self.path)}
            ) from e
        self._document = metadata

    def initialize(self) -> HubMetadata:
        """Persist the default document if none exists yet."""
        if self.path.exists():
            return self.load()
        if self.default is None:
            raise ConfigurationError(f"No default hub metadata to write to {self.path}")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise ConfigurationError(f"Cannot create {self.path.parent}: {e}") from e
        self.save(self.default)
        logger.info(f"Hub metadata initialised at {self.path}")
        return self.default

    def record_registration(self, entry: ServiceEntry, total_services: int) -> HubMetadata:
        """Update the document after a service registration."""
        metadata = self.load()
        metadata.hub_info.total_services = total_services
        for port in entry.ports:
            if port not in metadata.network_config.firewall_ports:
                metadata.network_config.firewall_ports.append(port)
        if entry.data_path not in metadata.backup_strategy.data_paths:
            metadata.backup_strategy.data_paths.append(entry.data_path)
        self.save(metadata)
        return metadata

    def retention_count(self) -> int:
        return self.document.backup_strategy.retention_policy

    def data_root(self) -> Path:
        return self.document.data_root

    def backup_root(self) -> Path:
        return self.document.backup_root

    def owning_account(self) -> str:
        return self.document.hub_info.user

    def exclude_patterns(self) -> List[str]:
        return list(self.document.backup_strategy.exclude_patterns)

    def host_identity(self) -> str:
        return self.document.hub_info.hostname

    def local_ip(self) -> str:
        return self.document.hub_info.local_ip or self.document.network_config.local_ip
