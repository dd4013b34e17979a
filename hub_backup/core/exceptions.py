"""
Custom exceptions for Hub Backup.

This module defines the error taxonomy shared by the backup, verification,
retention and restore components.
"""

from typing import Any, Dict, List, Optional


class HubBackupError(Exception):
    """Base exception class for Hub Backup errors."""

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        self.code = code or self.__class__.__name__
        self.details = details or {}


class ConfigurationError(HubBackupError):
    """Raised when operator settings or hub metadata are unusable."""
    pass


class ValidationError(HubBackupError):
    """Raised when an archive or a hub document is malformed or missing."""

    def __init__(
        self,
        message: str,
        failed_checks: Optional[List[str]] = None,
        **kwargs
    ):
        super().__init__(message, **kwargs)
        self.failed_checks = failed_checks or []


class CorruptRegistry(ValidationError):
    """Raised when the service registry cannot be parsed or violates its schema."""
    pass


class DuplicateService(HubBackupError):
    """Raised when registering a service name that is already present."""

    def __init__(self, name: str):
        super().__init__(f"Service already registered: {name}", details={"service": name})
        self.name = name


class SafetyCheckError(HubBackupError):
    """Raised when the operating context is unsafe for a restore."""
    pass


class PartialFailure(HubBackupError):
    """A per-container stop/start failure. Recorded, never raised to the caller."""

    def __init__(self, container: str, action: str, reason: str):
        super().__init__(
            f"Failed to {action} {container}: {reason}",
            details={"container": container, "action": action}
        )
        self.container = container
        self.action = action
        self.reason = reason


class DataIntegrityError(HubBackupError):
    """Raised when an archive cannot be decompressed."""
    pass


class ResourceExhaustionError(HubBackupError):
    """Raised when free space on the backup root is below the critical threshold."""

    def __init__(self, message: str, free_bytes: int = 0, **kwargs):
        super().__init__(message, **kwargs)
        self.free_bytes = free_bytes


class ReplacementFailure(HubBackupError):
    """Raised when swapping in the restored data root fails."""
    pass


class BackupError(HubBackupError):
    """Raised when backup operations fail."""
    pass


class DataRootMissing(BackupError):
    """Raised when the configured data root does not exist."""
    pass


class ArchiveWriteFailed(BackupError):
    """Raised when the archive cannot be written to the backup root."""
    pass


class ContainerRuntimeError(HubBackupError):
    """Raised when the container runtime rejects a command or is unreachable."""
    pass
