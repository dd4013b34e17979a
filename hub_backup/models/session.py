"""
Session models for Hub Backup.

This module defines the restore state machine states, per-step records
and the reports returned by the backup, verification, cleanup and restore
passes.
"""

from dataclasses import dataclass
from datetime import datetime, UTC
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from hub_backup.core.exceptions import HubBackupError, PartialFailure


class RestoreState(str, Enum):
    """States of a restore session."""
    VALIDATING = "validating"
    SAFETY_CHECKING = "safety_checking"
    SNAPSHOTTING_CURRENT = "snapshotting_current"
    STOPPING = "stopping"
    EXTRACTING = "extracting"
    REPLACING = "replacing"
    RESTARTING_CRITICAL = "restarting_critical"
    RESTARTING_REMAINING = "restarting_remaining"
    HEALTH_CHECKING = "health_checking"
    DONE = "done"
    ABORTED = "aborted"
    CANCELLED = "cancelled"


class StepStatus(str, Enum):
    """Restore step status."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    DEGRADED = "degraded"


class RestoreStep:
    """Record of one state visited by a restore session."""

    def __init__(self, state: RestoreState):
        self.state = state
        self.status = StepStatus.PENDING
        self.start_time: Optional[datetime] = None
        self.end_time: Optional[datetime] = None
        self.error: Optional[str] = None
        self.details: Dict[str, Any] = {}

    def start(self):
        """Mark step as started."""
        self.status = StepStatus.RUNNING
        self.start_time = datetime.now(UTC)

    def complete(self, degraded: bool = False):
        """Mark step as completed."""
        self.status = StepStatus.DEGRADED if degraded else StepStatus.COMPLETED
        self.end_time = datetime.now(UTC)

    def fail(self, error: str):
        """Mark step as failed."""
        self.status = StepStatus.FAILED
        self.end_time = datetime.now(UTC)
        self.error = error


@dataclass
class HealthResult:
    """Outcome of one post-restore reachability probe."""
    name: str
    url: str
    reachable: bool
    detail: str = ""


class RestoreReport:
    """Everything the operator needs to know about a restore session."""

    def __init__(self, archive: Path):
        self.archive = Path(archive)
        self.state = RestoreState.VALIDATING
        self.steps: List[RestoreStep] = []
        self.failures: List[PartialFailure] = []
        self.warnings: List[str] = []
        self.safety_snapshot: Optional[Path] = None
        self.health: List[HealthResult] = []
        self.error: Optional[HubBackupError] = None
        self.replaced = False
        self.manifest_preview: List[str] = []

    @property
    def succeeded(self) -> bool:
        """A restore succeeds once the new data root is in place."""
        return self.replaced and self.state == RestoreState.DONE

    @property
    def degraded(self) -> bool:
        return bool(self.failures or self.warnings)

    def step(self, state: RestoreState) -> Optional[RestoreStep]:
        for step in self.steps:
            if step.state == state:
                return step
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "archive": str(self.archive),
            "state": self.state.value,
            "succeeded": self.succeeded,
            "safety_snapshot": str(self.safety_snapshot) if self.safety_snapshot else None,
            "error": self.error.message if self.error else None,
            "error_code": self.error.code if self.error else None,
            "failures": [f.message for f in self.failures],
            "warnings": list(self.warnings),
            "health": [
                {"name": h.name, "url": h.url, "reachable": h.reachable}
                for h in self.health
            ],
            "steps": [
                {
                    "state": step.state.value,
                    "status": step.status.value,
                    "error": step.error,
                    "details": step.details,
                }
                for step in self.steps
            ],
        }


class VerificationReport(BaseModel):
    """Result of a verification pass over the live catalog."""
    total: int = 0
    failed_count: int = 0
    quarantined_count: int = 0
    incomplete: List[str] = Field(default_factory=list)
    quarantined: List[str] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.failed_count == 0


class BackupResult(BaseModel):
    """Result of a successful backup run."""
    path: Path
    size: int
    created_at: datetime
    service_directories: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    pruned: List[str] = Field(default_factory=list)


class CleanupReport(BaseModel):
    """Result of a cleanup maintenance pass."""
    pruned: List[str] = Field(default_factory=list)
    emergency: bool = False
    low_space: bool = False
    free_bytes: Optional[int] = None
    log_entries_removed: int = 0
    scratch_removed: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
