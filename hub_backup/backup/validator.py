"""
Archive verification.

Checks that each archive in the live catalog decompresses and carries the
members a restore needs. Archives that do not decompress are moved to the
quarantine directory; incomplete ones are reported and left in place.
"""

import gzip
import logging
import tarfile
import zlib
from pathlib import Path
from typing import List, Optional

from hub_backup.backup.catalog import BackupCatalog
from hub_backup.backup.history import BackupLog
from hub_backup.backup.templates import MANIFEST_NAME
from hub_backup.core.exceptions import DataIntegrityError
from hub_backup.models.session import VerificationReport

logger = logging.getLogger(__name__)

DATA_MEMBER = "hub-data.tar.gz"
SYSTEM_MEMBER = "system-essentials.tar.gz"
REQUIRED_MEMBERS = (DATA_MEMBER, MANIFEST_NAME)

_READ_ERRORS = (tarfile.TarError, EOFError, OSError, zlib.error)


def normalise_member(name: str) -> str:
    """Member name without the ``./`` prefix ``tar -C dir .`` adds."""
    while name.startswith("./"):
        name = name[2:]
    return name.lstrip("/")


def read_members(path: Path) -> List[str]:
    """
    Decompress an archive end to end and list its member names.

    Raises:
        DataIntegrityError: If the archive does not decompress cleanly
    """
    try:
        with gzip.open(path, "rb") as stream:
            while stream.read(1024 * 1024):
                pass
        with tarfile.open(path, "r:gz") as tar:
            return [normalise_member(member.name) for member in tar.getmembers()]
    except _READ_ERRORS as e:
        raise DataIntegrityError(
            f"Archive does not decompress: {path.name}: {e}",
            details={"path": str(path)}
        ) from e


def missing_members(members: List[str], required=REQUIRED_MEMBERS) -> List[str]:
    present = set(members)
    return [name for name in required if name not in present]


def read_member_text(path: Path, member: str, max_lines: Optional[int] = None) -> List[str]:
    """Lines of a plain-text member, or an empty list if it cannot be read."""
    try:
        with tarfile.open(path, "r:gz") as tar:
            for info in tar.getmembers():
                if normalise_member(info.name) == member and info.isfile():
                    handle = tar.extractfile(info)
                    if handle is None:
                        return []
                    lines = handle.read().decode("utf-8", errors="replace").splitlines()
                    return lines[:max_lines] if max_lines else lines
    except _READ_ERRORS as e:
        logger.debug(f"Could not read {member} from {path}: {e}")
    return []


class VerificationEngine:
    """Integrity and completeness pass over the live catalog."""

    def __init__(self, catalog: BackupCatalog, backup_log: Optional[BackupLog] = None):
        self.catalog = catalog
        self.backup_log = backup_log or BackupLog(catalog.log_path)

    def verify(self) -> VerificationReport:
        report = VerificationReport()

        entries = self.catalog.entries()
        if not entries:
            logger.warning("No backup files found")

        for entry in entries:
            report.total += 1
            logger.info(f"Verifying: {entry.name}")

            try:
                members = read_members(entry.path)
            except DataIntegrityError as e:
                logger.error(f"{entry.name} - CORRUPTED: {e.message}")
                report.failed_count += 1
                try:
                    self.catalog.quarantine(entry)
                except OSError as move_error:
                    logger.error(f"Could not move {entry.name} to quarantine: {move_error}")
                    continue
                report.quarantined_count += 1
                report.quarantined.append(entry.name)
                continue

            missing = missing_members(members)
            if missing:
                logger.warning(f"{entry.name} - Missing essential files: {', '.join(missing)}")
                report.failed_count += 1
                report.incomplete.append(entry.name)
            else:
                logger.info(f"{entry.name} - OK")

        self.backup_log.append(
            "VERIFICATION",
            f"{report.total} total, {report.failed_count} failed, {report.quarantined_count} corrupted"
        )

        if report.ok:
            logger.info("All backups verified successfully")
        else:
            logger.warning(f"{report.failed_count} backup(s) failed verification")
        return report
