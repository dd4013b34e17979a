"""
Hub Backup

Backup, verification, retention and restore for a single-host container
service hub whose state lives under one data root.
"""

__version__ = "0.1.0"

from hub_backup.models.metadata import HubMetadata
from hub_backup.models.registry import Registry, ServiceEntry
from hub_backup.models.settings import HubSettings

__all__ = [
    "HubMetadata",
    "HubSettings",
    "Registry",
    "ServiceEntry",
]
