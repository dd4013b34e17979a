"""
Persistence for the hub documents.

The registry and metadata documents are only ever replaced whole.
"""

from hub_backup.persistence.documents import read_document, write_document_atomic
from hub_backup.persistence.metadata_store import MetadataStore
from hub_backup.persistence.registry_store import RegistryStore

__all__ = [
    "MetadataStore",
    "RegistryStore",
    "read_document",
    "write_document_atomic",
]
