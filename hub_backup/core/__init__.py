"""
Core module for Hub Backup.

This module contains the error taxonomy used throughout the application.
"""

from hub_backup.core.exceptions import (
    HubBackupError,
    ConfigurationError,
    ValidationError,
    CorruptRegistry,
    DuplicateService,
    SafetyCheckError,
    PartialFailure,
    DataIntegrityError,
    ResourceExhaustionError,
    ReplacementFailure,
    BackupError,
    DataRootMissing,
    ArchiveWriteFailed,
    ContainerRuntimeError,
)

__all__ = [
    "HubBackupError",
    "ConfigurationError",
    "ValidationError",
    "CorruptRegistry",
    "DuplicateService",
    "SafetyCheckError",
    "PartialFailure",
    "DataIntegrityError",
    "ResourceExhaustionError",
    "ReplacementFailure",
    "BackupError",
    "DataRootMissing",
    "ArchiveWriteFailed",
    "ContainerRuntimeError",
]
