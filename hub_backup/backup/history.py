"""
Backup log.

An append-only text file in the backup root with one
``YYYY-MM-DD HH:MM:SS - EVENT: detail`` line per event.
"""

import logging
import os
import tempfile
from datetime import datetime, timedelta
from pathlib import Path
from typing import Optional, Union

from hub_backup.utils.helpers import log_timestamp

logger = logging.getLogger(__name__)

_STAMP_LENGTH = len("YYYY-MM-DD HH:MM:SS")


class BackupLog:
    """The backup root's event log."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    def append(self, event: str, detail: str, moment: Optional[datetime] = None) -> str:
        line = f"{log_timestamp(moment)} - {event}: {detail}"
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "a", encoding="utf-8") as f:
            f.write(line + "\n")
        return line

    def lines(self):
        if not self.path.exists():
            return []
        return self.path.read_text(encoding="utf-8").splitlines()

    def trim(self, horizon_days: int, now: Optional[datetime] = None) -> int:
        """
        Drop entries older than the horizon.

        Lines without a parseable timestamp are kept. Returns the number of
        removed lines.
        """
        if not self.path.exists():
            return 0

        cutoff = (now or datetime.now()) - timedelta(days=horizon_days)
        kept = []
        removed = 0
        for line in self.lines():
            try:
                stamp = datetime.strptime(line[:_STAMP_LENGTH], "%Y-%m-%d %H:%M:%S")
            except ValueError:
                kept.append(line)
                continue
            if stamp < cutoff:
                removed += 1
            else:
                kept.append(line)

        if removed:
            fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, prefix=".backup-log-", suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write("".join(line + "\n" for line in kept))
                os.replace(tmp_name, self.path)
            except Exception:
                Path(tmp_name).unlink(missing_ok=True)
                raise
            logger.info(f"Log cleanup: removed {removed} entries older than {horizon_days} days")
        else:
            logger.info("Log cleanup: no old entries to remove")
        return removed
