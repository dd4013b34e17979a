"""
Pytest configuration and fixtures for the Hub Backup tests.

This module provides a throwaway hub layout under ``tmp_path`` (data root,
backup root, scratch root and document locations), an in-memory container
runtime and factories for hand-made archives.
"""

import io
import os
import pwd
import tarfile
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterable, List, Optional

import pytest

from hub_backup.backup.catalog import archive_name
from hub_backup.core.exceptions import ContainerRuntimeError
from hub_backup.models.metadata import HubMetadata
from hub_backup.models.registry import BackupPriority, ServiceEntry
from hub_backup.models.settings import HubSettings
from hub_backup.persistence.metadata_store import MetadataStore
from hub_backup.persistence.registry_store import RegistryStore
from hub_backup.platforms.container import ContainerRuntime

CURRENT_USER = pwd.getpwuid(os.getuid()).pw_name


class FakeRuntime(ContainerRuntime):
    """In-memory container runtime recording every stop/start call."""

    def __init__(
        self,
        running: Iterable[str] = (),
        stopped: Iterable[str] = (),
        reachable: bool = True,
        fail_stop: Iterable[str] = (),
        fail_start: Iterable[str] = ()
    ):
        self.running = list(running)
        self.containers = list(running) + [name for name in stopped if name not in running]
        self.reachable = reachable
        self.fail_stop = set(fail_stop)
        self.fail_start = set(fail_start)
        self.calls: List[tuple] = []

    def ping(self) -> bool:
        return self.reachable

    def list_running(self) -> List[str]:
        return list(self.running)

    def list_all(self) -> List[str]:
        return list(self.containers)

    def stop(self, name: str) -> None:
        self.calls.append(("stop", name))
        if name in self.fail_stop:
            raise ContainerRuntimeError(f"cannot stop {name}")
        if name in self.running:
            self.running.remove(name)

    def start(self, name: str) -> None:
        self.calls.append(("start", name))
        if name in self.fail_start:
            raise ContainerRuntimeError(f"cannot start {name}")
        if name not in self.running:
            self.running.append(name)

    def started(self) -> List[str]:
        return [name for action, name in self.calls if action == "start"]


def write_tree(root: Path, files: Dict[str, bytes]) -> None:
    for relative, content in files.items():
        path = root / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(content)


def read_tree(root: Path) -> Dict[str, bytes]:
    """Relative path -> content for every regular file below *root*."""
    return {
        str(path.relative_to(root)): path.read_bytes()
        for path in sorted(root.rglob("*"))
        if path.is_file()
    }


def _add_bytes(tar: tarfile.TarFile, name: str, content: bytes) -> None:
    info = tarfile.TarInfo(name)
    info.size = len(content)
    tar.addfile(info, io.BytesIO(content))


def _gzip_tar(files: Dict[str, bytes]) -> bytes:
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w:gz") as tar:
        for name, content in files.items():
            _add_bytes(tar, name, content)
    return buffer.getvalue()


@pytest.fixture
def hub_root(tmp_path) -> Path:
    root = tmp_path / "srv" / "hub"
    root.mkdir(parents=True)
    return root


@pytest.fixture
def backup_root(tmp_path) -> Path:
    return tmp_path / "backups"


@pytest.fixture
def scratch_root(tmp_path) -> Path:
    root = tmp_path / "scratch"
    root.mkdir()
    return root


@pytest.fixture
def settings(tmp_path, hub_root, backup_root, scratch_root) -> HubSettings:
    """Settings with the hub documents kept outside the data root and no delays."""
    state = tmp_path / "state"
    state.mkdir()
    return HubSettings(
        hub_root=str(hub_root),
        backup_root=str(backup_root),
        user=CURRENT_USER,
        metadata_file=str(state / "hub-metadata.json"),
        registry_file=str(state / "service-registry.json"),
        scratch_root=str(scratch_root),
        system_paths=[],
        system_restore_root=str(tmp_path / "sysroot"),
        critical_settle_seconds=0,
        stop_settle_seconds=0,
        health_check_delay=0,
        health_endpoints={},
    )


@pytest.fixture
def metadata_document(hub_root, backup_root) -> HubMetadata:
    return HubMetadata.create(
        hub_root=str(hub_root),
        backup_root=str(backup_root),
        user=CURRENT_USER,
        hostname="testhub",
        local_ip="192.168.1.50",
    )


@pytest.fixture
def metadata_store(settings, metadata_document) -> MetadataStore:
    store = MetadataStore(settings.metadata_path(), default=metadata_document)
    store.save(metadata_document)
    return store


@pytest.fixture
def registry_store(settings, hub_root) -> RegistryStore:
    return RegistryStore(settings.registry_path(), data_root=hub_root)


@pytest.fixture
def service_factory(hub_root):
    """Build ServiceEntry objects whose data lives under the data root."""
    def make(
        name: str,
        container: Optional[str] = None,
        priority: BackupPriority = BackupPriority.NORMAL,
        critical: bool = False,
        **kwargs
    ) -> ServiceEntry:
        return ServiceEntry(
            name=name,
            data_path=str(hub_root / name),
            container_name=container or name,
            backup_priority=priority,
            critical=critical,
            **kwargs
        )
    return make


@pytest.fixture
def archive_factory(backup_root):
    """Write hand-made archives into the backup root."""
    def make(
        created: datetime,
        data_files: Optional[Dict[str, bytes]] = None,
        with_data: bool = True,
        with_manifest: bool = True,
        prefix: str = "",
        sequence: int = 0
    ) -> Path:
        backup_root.mkdir(parents=True, exist_ok=True)
        path = backup_root / archive_name(created, sequence)
        with tarfile.open(path, "w:gz") as tar:
            if with_data:
                payload = {f"hub/{k}": v for k, v in (data_files or {"svc/config.yaml": b"a: 1\n"}).items()}
                _add_bytes(tar, f"{prefix}hub-data.tar.gz", _gzip_tar(payload))
            _add_bytes(tar, f"{prefix}system-essentials.tar.gz", _gzip_tar({}))
            if with_manifest:
                _add_bytes(tar, f"{prefix}BACKUP_INFO.txt", b"Hub Configuration Backup\nDate: test\n")
            _add_bytes(tar, f"{prefix}RESTORE_INSTRUCTIONS.txt", b"restore me\n")
        return path
    return make


@pytest.fixture
def runtime_factory():
    return FakeRuntime


@pytest.fixture(name="write_tree")
def write_tree_fixture():
    return write_tree


@pytest.fixture(name="read_tree")
def read_tree_fixture():
    return read_tree
