"""
Backup builder.

Produces one immutable, timestamped archive of the data root plus a small
set of system configuration paths, a manifest and restore instructions.
Either exactly one new archive appears in the catalog or none does.
"""

import errno
import fnmatch
import logging
import os
import shutil
import tarfile
import tempfile
from datetime import datetime
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Union

import psutil

from hub_backup.backup.catalog import BackupCatalog
from hub_backup.backup.history import BackupLog
from hub_backup.backup.storage import RetentionManager
from hub_backup.backup.templates import (
    INSTRUCTIONS_NAME,
    MANIFEST_NAME,
    render_manifest,
    render_restore_instructions,
)
from hub_backup.backup.validator import DATA_MEMBER, SYSTEM_MEMBER
from hub_backup.core.exceptions import ArchiveWriteFailed, BackupError, DataRootMissing
from hub_backup.models.session import BackupResult
from hub_backup.persistence.metadata_store import MetadataStore
from hub_backup.persistence.registry_store import RegistryStore
from hub_backup.utils.helpers import format_bytes

logger = logging.getLogger(__name__)

ARCHIVE_MEMBERS = (DATA_MEMBER, SYSTEM_MEMBER, MANIFEST_NAME, INSTRUCTIONS_NAME)


def make_exclude_filter(patterns: Iterable[str]) -> Callable[[tarfile.TarInfo], Optional[tarfile.TarInfo]]:
    """Tar filter dropping members whose path below the root matches a glob."""
    patterns = list(patterns)

    def exclude(tarinfo: tarfile.TarInfo) -> Optional[tarfile.TarInfo]:
        parts = tarinfo.name.split("/", 1)
        if len(parts) < 2:
            return tarinfo
        relative = parts[1]
        basename = relative.rsplit("/", 1)[-1]
        for pattern in patterns:
            if fnmatch.fnmatch(relative, pattern) or fnmatch.fnmatch(basename, pattern):
                return None
        return tarinfo

    return exclude


def write_empty_archive(path: Path) -> None:
    with tarfile.open(path, "w:gz"):
        pass


class BackupBuilder:
    """Builds one archive from the current registry and hub metadata."""

    def __init__(
        self,
        metadata: MetadataStore,
        registry: RegistryStore,
        retention: Optional[RetentionManager] = None,
        system_paths: Iterable[Union[str, Path]] = (),
        scratch_root: Optional[Union[str, Path]] = None,
        clock: Callable[[], datetime] = datetime.now
    ):
        self.metadata = metadata
        self.registry = registry
        self.retention = retention
        self.system_paths = [Path(p) for p in system_paths]
        self.scratch_root = Path(scratch_root) if scratch_root else Path(tempfile.gettempdir())
        self.clock = clock

    def build(self) -> BackupResult:
        """
        Create a new archive in the backup root and return its details.

        Raises:
            DataRootMissing: If the configured data root does not exist
            ArchiveWriteFailed: If the archive cannot be written
            BackupError: If the data root cannot be snapshotted
        """
        data_root = self.metadata.data_root()
        if not data_root.is_dir():
            raise DataRootMissing(f"Hub directory not found: {data_root}")

        registry = self.registry.load()
        for service in registry.services:
            if not Path(service.data_path).exists():
                logger.warning(f"Registered data path missing for {service.name}: {service.data_path}")

        catalog = BackupCatalog(self.metadata.backup_root())
        try:
            catalog.ensure()
        except OSError as e:
            raise ArchiveWriteFailed(f"Cannot create backup root {catalog.backup_root}: {e}") from e

        created = self.clock().replace(microsecond=0)
        final_path = catalog.new_archive_path(created)
        warnings: List[str] = []

        logger.info(f"Starting configuration backup at {created}")
        try:
            self.scratch_root.mkdir(parents=True, exist_ok=True)
            workdir = Path(tempfile.mkdtemp(prefix=final_path.name[:-len(".tar.gz")] + "-", dir=self.scratch_root))
        except OSError as e:
            raise ArchiveWriteFailed(f"Cannot create scratch directory in {self.scratch_root}: {e}") from e
        try:
            self._snapshot_data_root(data_root, workdir / DATA_MEMBER)
            warning = self._snapshot_system_paths(workdir / SYSTEM_MEMBER)
            if warning:
                warnings.append(warning)

            service_dirs = sorted(p.name for p in data_root.iterdir() if p.is_dir())
            self._write_documents(workdir, created, data_root, service_dirs)

            self._package(workdir, final_path)
        finally:
            shutil.rmtree(workdir, ignore_errors=True)

        size = final_path.stat().st_size
        logger.info(f"Backup archive created: {final_path} ({format_bytes(size)})")
        try:
            BackupLog(catalog.log_path).append("BACKUP", f"{final_path.name} ({format_bytes(size)})")
        except OSError as e:
            message = f"Could not write backup log {catalog.log_path}: {e}"
            logger.warning(message)
            warnings.append(message)

        pruned = self.retention.prune() if self.retention else []

        return BackupResult(
            path=final_path,
            size=size,
            created_at=created,
            service_directories=service_dirs,
            warnings=warnings,
            pruned=pruned,
        )

    def _write_documents(self, workdir: Path, created: datetime, data_root: Path, service_dirs: List[str]) -> None:
        try:
            (workdir / MANIFEST_NAME).write_text(
                render_manifest(
                    created,
                    data_root,
                    hostname=self.metadata.host_identity(),
                    local_ip=self.metadata.local_ip(),
                    service_directories=service_dirs,
                ),
                encoding="utf-8",
            )
            (workdir / INSTRUCTIONS_NAME).write_text(
                render_restore_instructions(data_root, self.metadata.owning_account()),
                encoding="utf-8",
            )
        except OSError as e:
            raise ArchiveWriteFailed(f"Failed to write backup information: {e}") from e

    def _snapshot_data_root(self, data_root: Path, target: Path) -> None:
        logger.info("Backing up service configurations and data...")
        try:
            with tarfile.open(target, "w:gz") as tar:
                tar.add(
                    str(data_root),
                    arcname=data_root.name,
                    filter=make_exclude_filter(self.metadata.exclude_patterns())
                )
        except (OSError, tarfile.TarError) as e:
            if getattr(e, "errno", None) == errno.ENOSPC:
                raise ArchiveWriteFailed(f"Failed to backup hub data: {e}") from e
            raise BackupError(f"Failed to backup hub data: {e}") from e

    def _snapshot_system_paths(self, target: Path) -> Optional[str]:
        """Snapshot system configuration paths; failures only produce a warning."""
        present = [p for p in self.system_paths if p.exists()]
        message = None
        if present:
            try:
                with tarfile.open(target, "w:gz") as tar:
                    for path in present:
                        tar.add(str(path), arcname=str(path).lstrip("/"))
                return None
            except (OSError, tarfile.TarError) as e:
                message = f"Some system configs could not be backed up (non-critical): {e}"
                logger.warning(message)

        try:
            target.unlink(missing_ok=True)
            write_empty_archive(target)
        except (OSError, tarfile.TarError) as e:
            raise ArchiveWriteFailed(f"Failed to write system configuration snapshot: {e}") from e
        return message

    def _package(self, workdir: Path, final_path: Path) -> None:
        partial = BackupCatalog.partial_path(final_path)
        try:
            with tarfile.open(partial, "w:gz") as tar:
                for member in ARCHIVE_MEMBERS:
                    tar.add(str(workdir / member), arcname=member)
            os.replace(partial, final_path)
        except (OSError, tarfile.TarError) as e:
            partial.unlink(missing_ok=True)
            free = psutil.disk_usage(str(final_path.parent)).free if final_path.parent.exists() else 0
            raise ArchiveWriteFailed(
                f"Failed to create backup archive: {e}",
                details={"available": format_bytes(free)}
            ) from e
