"""
Data models for Hub Backup.

This module contains Pydantic models for the hub documents, operator
settings and the reports produced by each pass.
"""

from hub_backup.models.registry import BackupPriority, Registry, RegistryInfo, ServiceEntry
from hub_backup.models.metadata import BackupStrategy, HubInfo, HubMetadata, NetworkConfig
from hub_backup.models.session import (
    BackupResult,
    CleanupReport,
    HealthResult,
    RestoreReport,
    RestoreState,
    RestoreStep,
    StepStatus,
    VerificationReport,
)
from hub_backup.models.settings import HubSettings

__all__ = [
    "BackupPriority",
    "Registry",
    "RegistryInfo",
    "ServiceEntry",
    "BackupStrategy",
    "HubInfo",
    "HubMetadata",
    "NetworkConfig",
    "BackupResult",
    "CleanupReport",
    "HealthResult",
    "RestoreReport",
    "RestoreState",
    "RestoreStep",
    "StepStatus",
    "VerificationReport",
    "HubSettings",
]
