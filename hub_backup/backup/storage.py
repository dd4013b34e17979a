"""
Backup storage maintenance with retention policies.

This module prunes the live catalog to a bounded size, applies emergency
pruning when the backup root runs low on space, and performs the
ancillary cleanup of the backup log and stale scratch directories.
"""

import fnmatch
import logging
import os
import shutil
from datetime import datetime, timedelta
from pathlib import Path
from typing import Callable, List, Optional, Union

import psutil

from hub_backup.backup.catalog import ArchiveEntry, BackupCatalog
from hub_backup.backup.history import BackupLog
from hub_backup.core.exceptions import BackupError, ResourceExhaustionError
from hub_backup.models.metadata import DEFAULT_RETENTION
from hub_backup.models.session import CleanupReport

logger = logging.getLogger(__name__)

GIB = 1024 ** 3

SCRATCH_PATTERNS = ("hub-*backup-*", "hub-*restore-*")


class RetentionPolicy:
    """Keep the N most recent archives by creation time."""

    def __init__(self, keep: int = DEFAULT_RETENTION):
        if keep < 1:
            raise ValueError("Retention must keep at least one archive")
        self.keep = keep

    def expired(self, entries: List[ArchiveEntry]) -> List[ArchiveEntry]:
        """Entries beyond the newest ``keep``, oldest first."""
        ordered = sorted(entries, key=lambda e: e.sort_key)
        if len(ordered) <= self.keep:
            return []
        return ordered[:len(ordered) - self.keep]


class RetentionManager:
    """Prunes the archive catalog."""

    def __init__(
        self,
        catalog: BackupCatalog,
        policy: Optional[RetentionPolicy] = None,
        warn_free_bytes: int = 5 * GIB,
        critical_free_bytes: int = 2 * GIB,
        emergency_keep: int = 3,
        backup_log: Optional[BackupLog] = None,
        disk_usage: Callable = psutil.disk_usage
    ):
        self.catalog = catalog
        self.policy = policy or RetentionPolicy()
        self.warn_free_bytes = warn_free_bytes
        self.critical_free_bytes = critical_free_bytes
        self.emergency_keep = emergency_keep
        self.backup_log = backup_log or BackupLog(catalog.log_path)
        self._disk_usage = disk_usage

    def prune(self, keep: Optional[int] = None) -> List[str]:
        """Delete archives beyond the ``keep`` most recent. Returns removed names."""
        policy = RetentionPolicy(keep) if keep is not None else self.policy
        removed = []
        for entry in policy.expired(self.catalog.entries()):
            self.catalog.remove(entry)
            removed.append(entry.name)
        if removed:
            logger.info(f"Old backups cleaned up (keeping last {policy.keep})")
        return removed

    def free_bytes(self) -> int:
        return int(self._disk_usage(str(self.catalog.backup_root)).free)

    def check_disk_space(self) -> int:
        """
        Free bytes on the backup root.

        Raises:
            ResourceExhaustionError: If free space is below the critical threshold
        """
        free = self.free_bytes()
        if free < self.critical_free_bytes:
            raise ResourceExhaustionError(
                f"Critically low space on {self.catalog.backup_root}: {free // GIB}GB available",
                free_bytes=free
            )
        return free

    def enforce_disk_policy(self, report: CleanupReport) -> None:
        """Warn on low space and prune aggressively on critically low space."""
        try:
            free = self.check_disk_space()
        except ResourceExhaustionError as e:
            report.free_bytes = e.free_bytes
            report.low_space = True
            report.emergency = True
            self._record_low_space(e.free_bytes, report)
            logger.warning("Critically low space - removing oldest backups")
            keep = min(self.policy.keep, self.emergency_keep)
            report.pruned.extend(self.prune(keep=keep))
            logger.info(f"Kept only {keep} most recent backups due to space constraints")
            return

        report.free_bytes = free
        if free < self.warn_free_bytes:
            report.low_space = True
            self._record_low_space(free, report)

    def _record_low_space(self, free: int, report: CleanupReport) -> None:
        message = f"Low disk space ({free // GIB}GB available)"
        logger.warning(message)
        report.warnings.append(message)
        self.backup_log.append("WARNING", message)

    def remove_stale_scratch(
        self,
        scratch_root: Union[str, Path],
        max_age_hours: int = 24,
        now: Optional[datetime] = None
    ) -> List[str]:
        """Remove leftover backup/restore scratch directories older than max_age_hours."""
        scratch_root = Path(scratch_root)
        if not scratch_root.is_dir():
            return []

        cutoff = (now or datetime.now()) - timedelta(hours=max_age_hours)
        removed = []
        for path in scratch_root.iterdir():
            if not path.is_dir() or path.is_symlink():
                continue
            if not any(fnmatch.fnmatch(path.name, pattern) for pattern in SCRATCH_PATTERNS):
                continue
            if datetime.fromtimestamp(path.stat().st_mtime) >= cutoff:
                continue
            try:
                shutil.rmtree(path)
            except OSError as e:
                logger.warning(f"Could not remove stale scratch directory {path}: {e}")
                continue
            removed.append(str(path))
        return removed

    def cleanup(
        self,
        scratch_root: Union[str, Path],
        log_horizon_days: int = 90,
        stale_scratch_hours: int = 24,
        now: Optional[datetime] = None
    ) -> CleanupReport:
        """
        Daily maintenance: size-based prune, log trim, stale scratch removal
        and the disk-space policy.

        Raises:
            BackupError: If the backup root is missing or inaccessible
        """
        root = self.catalog.backup_root
        if not root.is_dir() or not os.access(root, os.R_OK | os.W_OK | os.X_OK):
            raise BackupError(f"Backup directory not found or not accessible: {root}")

        report = CleanupReport()
        report.pruned.extend(self.prune())
        report.log_entries_removed = self.backup_log.trim(log_horizon_days, now=now)
        report.scratch_removed = self.remove_stale_scratch(scratch_root, stale_scratch_hours, now=now)
        self.enforce_disk_policy(report)

        self.backup_log.append("CLEANUP", "Maintenance completed")
        logger.info("Daily cleanup completed")
        return report
