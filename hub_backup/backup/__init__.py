"""
Backup and restore for Hub Backup.

This module provides archive creation, verification, retention and the
restore state machine.
"""

from hub_backup.backup.builder import BackupBuilder
from hub_backup.backup.catalog import ArchiveEntry, BackupCatalog
from hub_backup.backup.history import BackupLog
from hub_backup.backup.manager import BackupManager
from hub_backup.backup.restore import RestoreOrchestrator
from hub_backup.backup.storage import RetentionManager, RetentionPolicy
from hub_backup.backup.validator import VerificationEngine

__all__ = [
    "ArchiveEntry",
    "BackupBuilder",
    "BackupCatalog",
    "BackupLog",
    "BackupManager",
    "RestoreOrchestrator",
    "RetentionManager",
    "RetentionPolicy",
    "VerificationEngine",
]
