"""
Unit tests for the verification engine.
"""

from datetime import datetime

import pytest

from hub_backup.backup.catalog import BackupCatalog
from hub_backup.backup.validator import VerificationEngine, read_members
from hub_backup.core.exceptions import DataIntegrityError


class TestVerificationEngine:
    """Test cases for VerificationEngine."""

    @pytest.fixture
    def catalog(self, backup_root):
        return BackupCatalog(backup_root)

    def truncate(self, path):
        content = path.read_bytes()
        path.write_bytes(content[:len(content) // 2])
        return path.read_bytes()

    def test_all_valid(self, catalog, archive_factory):
        archive_factory(datetime(2026, 1, 1))
        archive_factory(datetime(2026, 2, 1))

        report = VerificationEngine(catalog).verify()

        assert report.total == 2
        assert report.failed_count == 0
        assert report.ok

    def test_truncated_archive_is_quarantined(self, catalog, archive_factory):
        good = [archive_factory(datetime(2026, 1, 1)), archive_factory(datetime(2026, 3, 1))]
        bad = archive_factory(datetime(2026, 2, 1))
        truncated = self.truncate(bad)

        report = VerificationEngine(catalog).verify()

        assert report.total == 3
        assert report.failed_count == 1
        assert report.quarantined_count == 1
        assert report.quarantined == [bad.name]
        assert not bad.exists()
        assert (catalog.quarantine_dir / bad.name).read_bytes() == truncated
        assert [e.path for e in catalog.entries()] == good

    def test_not_gzip_is_quarantined(self, catalog, backup_root):
        backup_root.mkdir()
        junk = backup_root / "hub-config-backup-2026-01-01_00-00-00.tar.gz"
        junk.write_bytes(b"this is not an archive")

        report = VerificationEngine(catalog).verify()

        assert report.quarantined_count == 1
        assert catalog.entries() == []

    def test_incomplete_archive_left_in_place(self, catalog, archive_factory):
        incomplete = archive_factory(datetime(2026, 1, 1), with_manifest=False)

        report = VerificationEngine(catalog).verify()

        assert report.failed_count == 1
        assert report.quarantined_count == 0
        assert report.incomplete == [incomplete.name]
        assert incomplete.exists()
        assert catalog.quarantined() == []

    def test_dot_slash_member_names(self, catalog, archive_factory):
        path = archive_factory(datetime(2026, 1, 1), prefix="./")

        assert "hub-data.tar.gz" in read_members(path)
        assert VerificationEngine(catalog).verify().ok

    def test_rerun_reports_no_new_failures(self, catalog, archive_factory):
        archive_factory(datetime(2026, 1, 1))
        self.truncate(archive_factory(datetime(2026, 2, 1)))
        engine = VerificationEngine(catalog)

        first = engine.verify()
        second = engine.verify()

        assert first.failed_count == 1
        assert second.total == 1
        assert second.failed_count == 0
        assert len(catalog.quarantined()) == 1

    def test_writes_log_line(self, catalog, archive_factory, backup_root):
        archive_factory(datetime(2026, 1, 1))

        VerificationEngine(catalog).verify()

        log = (backup_root / "backup.log").read_text(encoding="utf-8")
        assert "VERIFICATION: 1 total, 0 failed, 0 corrupted" in log

    def test_read_members_raises_on_corruption(self, tmp_path):
        path = tmp_path / "broken.tar.gz"
        path.write_bytes(b"\x1f\x8b\x08\x00garbage")

        with pytest.raises(DataIntegrityError):
            read_members(path)

    def test_quarantine_failure_does_not_stop_the_pass(self, catalog, archive_factory, backup_root):
        bad = archive_factory(datetime(2026, 1, 1))
        truncated = self.truncate(bad)
        good = archive_factory(datetime(2026, 2, 1))
        (backup_root / "corrupted").write_text("not a directory", encoding="utf-8")

        report = VerificationEngine(catalog).verify()

        assert report.total == 2
        assert report.failed_count == 1
        assert report.quarantined_count == 0
        assert bad.read_bytes() == truncated
        assert good.exists()
        log = (backup_root / "backup.log").read_text(encoding="utf-8")
        assert "VERIFICATION: 2 total, 1 failed, 0 corrupted" in log
