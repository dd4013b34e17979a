"""
Backup catalog.

Lists, sorts and filters the archives in the backup root by the creation
time encoded in their names, and owns the quarantine subdirectory.
"""

import logging
import re
import shutil
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Tuple, Union

logger = logging.getLogger(__name__)

ARCHIVE_PREFIX = "hub-config-backup-"
ARCHIVE_SUFFIX = ".tar.gz"
TIMESTAMP_FORMAT = "%Y-%m-%d_%H-%M-%S"
QUARANTINE_DIRNAME = "corrupted"
BACKUP_LOG_NAME = "backup.log"

_ARCHIVE_NAME = re.compile(
    r"^hub-config-backup-(\d{4}-\d{2}-\d{2}_\d{2}-\d{2}-\d{2})(?:-(\d+))?\.tar\.gz$"
)


def parse_archive_name(name: str) -> Optional[Tuple[datetime, int]]:
    """Return (creation time, sequence) for a catalog archive name, else None."""
    match = _ARCHIVE_NAME.match(name)
    if not match:
        return None
    try:
        created = datetime.strptime(match.group(1), TIMESTAMP_FORMAT)
    except ValueError:
        return None
    return created, int(match.group(2) or 0)


def archive_name(created: datetime, sequence: int = 0) -> str:
    stamp = created.strftime(TIMESTAMP_FORMAT)
    if sequence:
        return f"{ARCHIVE_PREFIX}{stamp}-{sequence}{ARCHIVE_SUFFIX}"
    return f"{ARCHIVE_PREFIX}{stamp}{ARCHIVE_SUFFIX}"


@dataclass(frozen=True)
class ArchiveEntry:
    """One archive in the live catalog."""
    path: Path
    created_at: datetime
    sequence: int = 0

    @property
    def name(self) -> str:
        return self.path.name

    @property
    def size(self) -> int:
        return self.path.stat().st_size

    @property
    def sort_key(self) -> Tuple[datetime, int]:
        return (self.created_at, self.sequence)

    @classmethod
    def from_path(cls, path: Path) -> Optional["ArchiveEntry"]:
        parsed = parse_archive_name(path.name)
        if parsed is None:
            return None
        return cls(path=path, created_at=parsed[0], sequence=parsed[1])


class BackupCatalog:
    """The set of archives currently present in the backup root."""

    def __init__(self, backup_root: Union[str, Path]):
        self.backup_root = Path(backup_root)

    @property
    def quarantine_dir(self) -> Path:
        return self.backup_root / QUARANTINE_DIRNAME

    @property
    def log_path(self) -> Path:
        return self.backup_root / BACKUP_LOG_NAME

    def ensure(self) -> None:
        self.backup_root.mkdir(parents=True, exist_ok=True)

    def entries(self) -> List[ArchiveEntry]:
        """Live archives, oldest first."""
        if not self.backup_root.is_dir():
            return []
        entries = []
        for path in self.backup_root.iterdir():
            if not path.is_file():
                continue
            entry = ArchiveEntry.from_path(path)
            if entry:
                entries.append(entry)
        return sorted(entries, key=lambda e: e.sort_key)

    def newest(self, count: int) -> List[ArchiveEntry]:
        if count <= 0:
            return []
        return self.entries()[-count:]

    def quarantined(self) -> List[Path]:
        if not self.quarantine_dir.is_dir():
            return []
        return sorted(p for p in self.quarantine_dir.iterdir() if p.is_file())

    def new_archive_path(self, moment: Optional[datetime] = None) -> Path:
        """Allocate an unused archive name for *moment* (default: now)."""
        created = (moment or datetime.now()).replace(microsecond=0)
        sequence = 0
        while True:
            candidate = self.backup_root / archive_name(created, sequence)
            if not candidate.exists():
                return candidate
            sequence += 1

    @staticmethod
    def partial_path(final_path: Path) -> Path:
        """Name an archive is written under before it is complete."""
        return final_path.with_name(f".{final_path.name}.partial")

    def quarantine(self, entry: ArchiveEntry) -> Path:
        """Move an archive into the quarantine directory, unchanged."""
        self.quarantine_dir.mkdir(parents=True, exist_ok=True)
        destination = self.quarantine_dir / entry.name
        counter = 1
        while destination.exists():
            destination = self.quarantine_dir / f"{entry.name}.{counter}"
            counter += 1
        shutil.move(str(entry.path), str(destination))
        logger.warning(f"Moved corrupted backup to quarantine: {destination}")
        return destination

    def remove(self, entry: ArchiveEntry) -> None:
        entry.path.unlink()
        logger.info(f"Removed backup {entry.name}")
