"""
Unit tests for the restore orchestrator state machine.
"""

import io
import os
import shutil
import tarfile
from datetime import datetime

import httpx
import pytest

from hub_backup.backup.builder import BackupBuilder
from hub_backup.backup.restore import RestoreOrchestrator
from hub_backup.core.exceptions import (
    CorruptRegistry,
    DataIntegrityError,
    ReplacementFailure,
    SafetyCheckError,
    ValidationError,
)
from hub_backup.models.registry import BackupPriority
from hub_backup.models.session import RestoreState, StepStatus
from hub_backup.validation.health import HealthChecker

ORIGINAL = {
    "serviceA/config/x.yaml": b"key: value",
    "serviceB/data/y.db": bytes(range(256)) * 4,
}


class TestRestoreOrchestrator:
    """Test cases for RestoreOrchestrator."""

    @pytest.fixture
    def archive(self, metadata_store, registry_store, scratch_root, hub_root, write_tree):
        write_tree(hub_root, ORIGINAL)
        return BackupBuilder(metadata_store, registry_store, scratch_root=scratch_root).build().path

    @pytest.fixture
    def make_orchestrator(self, runtime_factory, registry_store, metadata_store, settings):
        def make(runtime=None, **kwargs):
            kwargs.setdefault("allow_superuser", True)
            return RestoreOrchestrator(
                runtime if runtime is not None else runtime_factory(),
                registry_store,
                metadata_store,
                settings=settings,
                sleep=lambda seconds: None,
                **kwargs
            )
        return make

    def modify(self, hub_root, write_tree):
        write_tree(hub_root, {"serviceA/config/x.yaml": b"changed", "extra/new.txt": b"new"})

    def test_round_trip(self, archive, make_orchestrator, hub_root, scratch_root, write_tree, read_tree):
        self.modify(hub_root, write_tree)

        report = make_orchestrator().restore(archive)

        assert report.succeeded
        assert report.state == RestoreState.DONE
        assert read_tree(hub_root) == ORIGINAL
        assert not hub_root.with_name("hub.old").exists()
        assert not [p for p in scratch_root.iterdir() if p.is_dir()]
        assert [s.state for s in report.steps] == [
            RestoreState.VALIDATING,
            RestoreState.SAFETY_CHECKING,
            RestoreState.SNAPSHOTTING_CURRENT,
            RestoreState.STOPPING,
            RestoreState.EXTRACTING,
            RestoreState.REPLACING,
            RestoreState.RESTARTING_CRITICAL,
            RestoreState.RESTARTING_REMAINING,
            RestoreState.HEALTH_CHECKING,
        ]
        assert all(s.status == StepStatus.COMPLETED for s in report.steps)

    def test_ownership_normalised(self, archive, make_orchestrator, hub_root):
        report = make_orchestrator().restore(archive)

        assert report.succeeded
        for path in hub_root.rglob("*"):
            assert path.stat().st_uid == os.getuid()

    def test_safety_snapshot_of_current_data(self, archive, make_orchestrator, hub_root, write_tree):
        self.modify(hub_root, write_tree)

        report = make_orchestrator().restore(archive)

        assert report.safety_snapshot is not None
        assert report.safety_snapshot.name.startswith("hub-safety-backup-")
        with tarfile.open(report.safety_snapshot, "r:gz") as tar:
            snapshot = tar.extractfile("hub/serviceA/config/x.yaml").read()
        assert snapshot == b"changed"

    def test_manifest_preview(self, archive, make_orchestrator):
        report = make_orchestrator().restore(archive)

        assert report.manifest_preview[0] == "Hub Configuration Backup"

    def test_replacement_failure_rolls_back(
        self, archive, make_orchestrator, hub_root, write_tree, read_tree, runtime_factory
    ):
        self.modify(hub_root, write_tree)
        before = read_tree(hub_root)
        runtime = runtime_factory(running=["web"])
        orchestrator = make_orchestrator(runtime)

        def fail(source, data_root):
            data_root.mkdir()
            (data_root / "half-written").write_bytes(b"x")
            raise PermissionError(13, "Permission denied", str(data_root))

        orchestrator._place_new_root = fail

        report = orchestrator.restore(archive)

        assert report.state == RestoreState.ABORTED
        assert isinstance(report.error, ReplacementFailure)
        assert not report.succeeded
        assert read_tree(hub_root) == before
        assert not hub_root.with_name("hub.old").exists()
        assert report.step(RestoreState.REPLACING).status == StepStatus.FAILED
        assert runtime.calls == [("stop", "web"), ("start", "web")]

    def test_failed_extraction_leaves_data_root_untouched(
        self, make_orchestrator, hub_root, tmp_path, write_tree, read_tree, runtime_factory
    ):
        write_tree(hub_root, ORIGINAL)
        archive = tmp_path / "bad-data.tar.gz"
        with tarfile.open(archive, "w:gz") as tar:
            for name, content in (("hub-data.tar.gz", b"not gzip"), ("BACKUP_INFO.txt", b"info\n")):
                info = tarfile.TarInfo(name)
                info.size = len(content)
                tar.addfile(info, io.BytesIO(content))
        runtime = runtime_factory(running=["web"])

        report = make_orchestrator(runtime).restore(archive)

        assert report.state == RestoreState.ABORTED
        assert isinstance(report.error, DataIntegrityError)
        assert report.step(RestoreState.EXTRACTING).status == StepStatus.FAILED
        assert read_tree(hub_root) == ORIGINAL
        assert runtime.calls == [("stop", "web"), ("start", "web")]

    def test_critical_services_start_first(
        self, archive, make_orchestrator, registry_store, service_factory, runtime_factory
    ):
        registry_store.append_service(service_factory("web"))
        registry_store.append_service(service_factory("influxdb", priority=BackupPriority.HIGH))
        registry_store.append_service(service_factory("homeassistant", container="ha", critical=True))
        runtime = runtime_factory(running=["web", "influxdb", "ha"])

        report = make_orchestrator(runtime).restore(archive)

        assert report.succeeded
        assert runtime.started() == ["ha", "influxdb", "web"]
        last_stop = max(i for i, call in enumerate(runtime.calls) if call[0] == "stop")
        first_start = min(i for i, call in enumerate(runtime.calls) if call[0] == "start")
        assert last_stop < first_start

    def test_stopped_containers_are_started_again(self, archive, make_orchestrator, runtime_factory):
        runtime = runtime_factory(running=["grafana"], stopped=["portainer"])

        report = make_orchestrator(runtime).restore(archive)

        assert report.succeeded
        assert sorted(runtime.started()) == ["grafana", "portainer"]

    def test_partial_failures_degrade_but_succeed(self, archive, make_orchestrator, runtime_factory):
        runtime = runtime_factory(running=["web", "db"], fail_stop=["web"], fail_start=["db"])

        report = make_orchestrator(runtime).restore(archive)

        assert report.succeeded
        assert report.degraded
        assert sorted((f.action, f.container) for f in report.failures) == [("start", "db"), ("stop", "web")]
        assert report.step(RestoreState.STOPPING).status == StepStatus.DEGRADED

    def test_missing_archive(self, make_orchestrator, tmp_path, runtime_factory):
        runtime = runtime_factory(running=["web"])

        report = make_orchestrator(runtime).restore(tmp_path / "absent.tar.gz")

        assert report.state == RestoreState.ABORTED
        assert isinstance(report.error, ValidationError)
        assert runtime.calls == []

    def test_archive_without_hub_data(self, make_orchestrator, archive_factory, hub_root, write_tree, read_tree):
        write_tree(hub_root, ORIGINAL)
        archive = archive_factory(datetime(2026, 1, 1), with_data=False)

        report = make_orchestrator().restore(archive)

        assert isinstance(report.error, ValidationError)
        assert read_tree(hub_root) == ORIGINAL

    def test_corrupt_archive(self, archive, make_orchestrator):
        content = archive.read_bytes()
        archive.write_bytes(content[:len(content) // 2])

        report = make_orchestrator().restore(archive)

        assert report.state == RestoreState.ABORTED
        assert report.error.failed_checks == ["decompress"]

    def test_unreachable_runtime(self, archive, make_orchestrator, runtime_factory, hub_root, read_tree):
        runtime = runtime_factory(running=["web"], reachable=False)

        report = make_orchestrator(runtime).restore(archive)

        assert isinstance(report.error, SafetyCheckError)
        assert runtime.calls == []
        assert read_tree(hub_root) == ORIGINAL

    def test_superuser_refused(self, archive, make_orchestrator, monkeypatch):
        monkeypatch.setattr("hub_backup.backup.restore.os.geteuid", lambda: 0)

        report = make_orchestrator(allow_superuser=False).restore(archive)

        assert isinstance(report.error, SafetyCheckError)
        assert report.step(RestoreState.SAFETY_CHECKING).status == StepStatus.FAILED

    def test_declined_confirmation(self, archive, make_orchestrator, runtime_factory, hub_root, write_tree, read_tree):
        self.modify(hub_root, write_tree)
        before = read_tree(hub_root)
        runtime = runtime_factory(running=["web"])
        seen = []

        def decline(report):
            seen.append(report.manifest_preview)
            return False

        report = make_orchestrator(runtime, confirm=decline).restore(archive)

        assert report.state == RestoreState.CANCELLED
        assert not report.succeeded
        assert seen and seen[0]
        assert runtime.calls == []
        assert read_tree(hub_root) == before

    def test_missing_data_root_is_created(self, archive, make_orchestrator, hub_root, tmp_path, read_tree):
        shutil.rmtree(tmp_path / "srv")

        report = make_orchestrator().restore(archive)

        assert report.succeeded
        assert report.safety_snapshot is None
        assert read_tree(hub_root) == ORIGINAL

    def test_stale_old_directory_is_replaced(self, archive, make_orchestrator, hub_root, write_tree, read_tree):
        stale = hub_root.with_name("hub.old")
        write_tree(stale, {"leftover": b"from an interrupted restore"})

        report = make_orchestrator().restore(archive)

        assert report.succeeded
        assert not stale.exists()
        assert read_tree(hub_root) == ORIGINAL

    def test_old_directory_restored_when_data_root_missing(
        self, archive, make_orchestrator, hub_root, read_tree
    ):
        stale = hub_root.with_name("hub.old")
        hub_root.rename(stale)
        orchestrator = make_orchestrator()

        def fail(source, data_root):
            raise OSError(30, "Read-only file system")

        orchestrator._place_new_root = fail

        report = orchestrator.restore(archive)

        assert isinstance(report.error, ReplacementFailure)
        assert read_tree(hub_root) == ORIGINAL
        assert not stale.exists()

    def test_health_probes_are_informational(self, archive, make_orchestrator, registry_store, service_factory):
        registry_store.append_service(service_factory("nodered", access_url="http://{local_ip}:1880"))

        def handler(request):
            if request.url.port in (3000, 1880):
                return httpx.Response(200)
            raise httpx.ConnectError("connection refused", request=request)

        checker = HealthChecker(
            {"Grafana": "http://10.0.0.5:3000", "Portainer": "http://10.0.0.5:9000"},
            transport=httpx.MockTransport(handler),
        )

        report = make_orchestrator(health_checker=checker).restore(archive)

        assert report.succeeded
        results = {h.name: h.reachable for h in report.health}
        assert results == {"Grafana": True, "Portainer": False, "nodered": True}
        assert [h.url for h in report.health if h.name == "nodered"] == ["http://192.168.1.50:1880"]

    def test_system_config_restore(
        self, metadata_store, registry_store, scratch_root, hub_root, settings, tmp_path,
        write_tree, runtime_factory
    ):
        write_tree(hub_root, ORIGINAL)
        cron = tmp_path / "etc" / "cron.d"
        write_tree(cron, {"hub": b"0 2 1 * * pi true\n"})
        archive = BackupBuilder(
            metadata_store, registry_store, system_paths=[cron], scratch_root=scratch_root
        ).build().path

        report = RestoreOrchestrator(
            runtime_factory(), registry_store, metadata_store,
            settings=settings,
            sleep=lambda seconds: None,
            allow_superuser=True,
            restore_system_config=True,
        ).restore(archive)

        assert report.succeeded
        restored = tmp_path / "sysroot" / str(cron / "hub").lstrip("/")
        assert restored.read_bytes() == b"0 2 1 * * pi true\n"

    def test_unremovable_old_root_aborts_and_restarts_containers(
        self, archive, make_orchestrator, hub_root, tmp_path, write_tree, read_tree, runtime_factory
    ):
        elsewhere = tmp_path / "elsewhere"
        write_tree(elsewhere, {"keep.txt": b"not ours"})
        hub_root.with_name("hub.old").symlink_to(elsewhere, target_is_directory=True)
        runtime = runtime_factory(running=["db", "web"])

        report = make_orchestrator(runtime).restore(archive)

        assert report.state == RestoreState.ABORTED
        assert isinstance(report.error, ReplacementFailure)
        assert report.step(RestoreState.REPLACING).status == StepStatus.FAILED
        assert sorted(runtime.running) == ["db", "web"]
        assert read_tree(hub_root) == ORIGINAL
        assert read_tree(elsewhere) == {"keep.txt": b"not ours"}

    def test_unexpected_error_aborts_and_restarts_containers(
        self, archive, make_orchestrator, hub_root, read_tree, runtime_factory
    ):
        runtime = runtime_factory(running=["web"])
        orchestrator = make_orchestrator(runtime)

        def explode(staging):
            raise RuntimeError("boom")

        orchestrator._restored_tree = explode

        report = orchestrator.restore(archive)

        assert report.state == RestoreState.ABORTED
        assert report.error.code == "UNEXPECTED_ERROR"
        assert "boom" in report.error.message
        assert report.step(RestoreState.REPLACING).error == "boom"
        assert runtime.calls == [("stop", "web"), ("start", "web")]
        assert read_tree(hub_root) == ORIGINAL

    def test_unreadable_critical_group_starts_everything(
        self, archive, make_orchestrator, registry_store, runtime_factory, monkeypatch
    ):
        def corrupt():
            raise CorruptRegistry("Service registry is unreadable")

        monkeypatch.setattr(registry_store, "list_critical", corrupt)
        runtime = runtime_factory(running=["web", "db"])

        report = make_orchestrator(runtime).restore(archive)

        assert report.succeeded
        assert report.degraded
        assert sorted(runtime.started()) == ["db", "web"]
        assert any("critical services" in warning for warning in report.warnings)
