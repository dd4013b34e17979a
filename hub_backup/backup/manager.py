"""
Backup manager for creating, verifying, pruning and restoring hub backups.

This module provides the BackupManager class that wires the hub documents,
operator settings and container runtime into the backup, verification,
cleanup and restore passes.
"""

import getpass
import logging
import time
from datetime import datetime
from pathlib import Path
from typing import Callable, List, Optional, Tuple, Union

import psutil

from hub_backup.backup.builder import BackupBuilder
from hub_backup.backup.catalog import ArchiveEntry, BackupCatalog
from hub_backup.backup.history import BackupLog
from hub_backup.backup.restore import RestoreOrchestrator, default_health_checker
from hub_backup.backup.storage import RetentionManager, RetentionPolicy
from hub_backup.backup.templates import render_schedule
from hub_backup.backup.validator import VerificationEngine
from hub_backup.models.metadata import HubMetadata
from hub_backup.models.registry import Registry, ServiceEntry
from hub_backup.models.session import BackupResult, CleanupReport, RestoreReport, VerificationReport
from hub_backup.models.settings import HubSettings
from hub_backup.persistence.metadata_store import MetadataStore
from hub_backup.persistence.registry_store import RegistryStore
from hub_backup.platforms.container import ContainerRuntime, DockerRuntime
from hub_backup.utils.helpers import host_name, local_ip_address
from hub_backup.validation.health import HealthChecker

logger = logging.getLogger(__name__)


def default_backup_root(user: str) -> str:
    return str(Path("/home") / user / "backups")


def default_metadata(settings: HubSettings) -> HubMetadata:
    """In-memory metadata document for a hub that has not been initialised."""
    user = settings.user or getpass.getuser()
    return HubMetadata.create(
        hub_root=settings.hub_root,
        backup_root=settings.backup_root or default_backup_root(user),
        user=user,
        hostname=host_name(),
        local_ip=local_ip_address() or "",
    )


class BackupManager:
    """Entry point for every hub backup operation."""

    def __init__(
        self,
        settings: HubSettings,
        metadata: Optional[MetadataStore] = None,
        registry: Optional[RegistryStore] = None,
        runtime: Optional[ContainerRuntime] = None,
        disk_usage: Callable = psutil.disk_usage,
        clock: Callable[[], datetime] = datetime.now
    ):
        self.settings = settings
        self.metadata = metadata or MetadataStore(settings.metadata_path(), default=default_metadata(settings))
        self.registry = registry or RegistryStore(settings.registry_path(), data_root=settings.hub_root)
        self._runtime = runtime
        self._disk_usage = disk_usage
        self.clock = clock

    @property
    def runtime(self) -> ContainerRuntime:
        if self._runtime is None:
            self._runtime = DockerRuntime()
        return self._runtime

    @property
    def catalog(self) -> BackupCatalog:
        return BackupCatalog(self.metadata.backup_root())

    @property
    def backup_log(self) -> BackupLog:
        return BackupLog(self.catalog.log_path)

    def retention_manager(self) -> RetentionManager:
        catalog = self.catalog
        return RetentionManager(
            catalog,
            policy=RetentionPolicy(self.metadata.retention_count()),
            warn_free_bytes=self.settings.warn_free_bytes,
            critical_free_bytes=self.settings.critical_free_bytes,
            emergency_keep=self.settings.emergency_keep,
            disk_usage=self._disk_usage,
        )

    def run_backup(self) -> BackupResult:
        """Create one archive, log it and apply the retention policy."""
        builder = BackupBuilder(
            self.metadata,
            self.registry,
            retention=self.retention_manager(),
            system_paths=self.settings.resolve_system_paths(self.metadata.owning_account()),
            scratch_root=self.settings.scratch_dir(),
            clock=self.clock,
        )
        return builder.build()

    def verify(self) -> VerificationReport:
        return VerificationEngine(self.catalog).verify()

    def cleanup(self, now: Optional[datetime] = None) -> CleanupReport:
        return self.retention_manager().cleanup(
            self.settings.scratch_dir(),
            log_horizon_days=self.settings.log_horizon_days,
            stale_scratch_hours=self.settings.stale_scratch_hours,
            now=now,
        )

    def restore(
        self,
        archive: Union[str, Path],
        confirm: Optional[Callable[[RestoreReport], bool]] = None,
        restore_system_config: bool = False,
        health_checker: Optional[HealthChecker] = None,
        sleep: Callable[[float], None] = time.sleep,
        allow_superuser: bool = False
    ) -> RestoreReport:
        orchestrator = RestoreOrchestrator(
            self.runtime,
            self.registry,
            self.metadata,
            settings=self.settings,
            health_checker=health_checker or default_health_checker(self.settings, self.metadata),
            confirm=confirm,
            sleep=sleep,
            allow_superuser=allow_superuser,
            restore_system_config=restore_system_config,
        )
        return orchestrator.restore(archive)

    def register(self, entry: ServiceEntry) -> Registry:
        """Append a service to the registry and record it in the hub metadata."""
        registry = self.registry.append_service(entry)
        if self.metadata.path.parent.is_dir():
            self.metadata.record_registration(entry, total_services=len(registry.services))
        return registry

    def initialize(self) -> Tuple[HubMetadata, Registry]:
        """Create the data root and both hub documents if they are missing."""
        self.metadata.document.data_root.mkdir(parents=True, exist_ok=True)
        metadata = self.metadata.initialize()
        registry = self.registry.load()
        self.catalog.ensure()
        return metadata, registry

    def list_archives(self) -> Tuple[List[ArchiveEntry], List[Path]]:
        catalog = self.catalog
        return catalog.entries(), catalog.quarantined()

    def schedule(self, command: str = "hub-backup") -> str:
        return render_schedule(self.metadata.owning_account(), command, self.catalog.log_path)
