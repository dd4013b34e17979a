"""
Restore orchestrator.

Drives a restore session through an explicit sequence of states:

    Validating -> SafetyChecking -> SnapshottingCurrent -> Stopping ->
    Extracting -> Replacing -> RestartingCritical -> RestartingRemaining ->
    HealthChecking -> Done

Any fatal error before Replacing completes ends the session in Aborted.
The data root is never left missing: if placing the restored tree fails,
the previous tree is moved back before the session aborts. Failures after
Replacing only degrade the report.
"""

import logging
import os
import pwd
import shutil
import tarfile
import tempfile
import time
import zlib
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, List, Optional, Union

from hub_backup.backup.templates import MANIFEST_NAME
from hub_backup.backup.validator import (
    DATA_MEMBER,
    SYSTEM_MEMBER,
    read_member_text,
    read_members,
)
from hub_backup.core.exceptions import (
    ContainerRuntimeError,
    DataIntegrityError,
    HubBackupError,
    ReplacementFailure,
    SafetyCheckError,
    ValidationError,
)
from hub_backup.models.registry import ServiceEntry
from hub_backup.models.session import RestoreReport, RestoreState, RestoreStep
from hub_backup.models.settings import HubSettings
from hub_backup.persistence.metadata_store import MetadataStore
from hub_backup.persistence.registry_store import RegistryStore
from hub_backup.platforms.container import ContainerRuntime
from hub_backup.utils.helpers import local_ip_address
from hub_backup.validation.health import HealthChecker, expand_endpoints

logger = logging.getLogger(__name__)

OLD_SUFFIX = ".old"
MANIFEST_PREVIEW_LINES = 10

_EXTRACT_ERRORS = (tarfile.TarError, EOFError, OSError, zlib.error)


def old_root_for(data_root: Path) -> Path:
    return data_root.with_name(data_root.name + OLD_SUFFIX)


class RestoreOrchestrator:
    """Restores a hub from one archive."""

    def __init__(
        self,
        runtime: ContainerRuntime,
        registry: RegistryStore,
        metadata: MetadataStore,
        settings: Optional[HubSettings] = None,
        health_checker: Optional[HealthChecker] = None,
        confirm: Optional[Callable[[RestoreReport], bool]] = None,
        sleep: Callable[[float], None] = time.sleep,
        allow_superuser: bool = False,
        restore_system_config: bool = False
    ):
        self.runtime = runtime
        self.registry = registry
        self.metadata = metadata
        self.settings = settings or HubSettings()
        self.health_checker = health_checker
        self.confirm = confirm
        self.sleep = sleep
        self.allow_superuser = allow_superuser
        self.restore_system_config = restore_system_config

        self._stopped: List[str] = []

    @contextmanager
    def _step(self, report: RestoreReport, state: RestoreState):
        step = RestoreStep(state)
        report.steps.append(step)
        report.state = state
        step.start()
        logger.info(f"Restore: {state.value}")
        try:
            yield step
        except Exception as e:
            step.fail(e.message if isinstance(e, HubBackupError) else str(e))
            raise
        step.complete(degraded=bool(step.details.get("degraded")))

    def restore(self, archive: Union[str, Path]) -> RestoreReport:
        """
        Run a full restore session for *archive*.

        Never raises: the outcome, including the fatal
        error if any, is carried by the returned report.
        """
        report = RestoreReport(Path(archive))
        self._stopped = []
        workdir: Optional[Path] = None

        try:
            self._validate(report)
            self._safety_check(report)

            if self.confirm is not None and not self.confirm(report):
                logger.info("Restore cancelled by operator")
                report.state = RestoreState.CANCELLED
                return report

            self._snapshot_current(report)
            self._stop_containers(report)
            workdir = self._extract(report)
            self._replace(report, workdir)
        except Exception as e:
            error = e
            if not isinstance(e, HubBackupError):
                logger.exception("Unexpected error during restore")
                error = HubBackupError(
                    f"Unexpected error: {e}",
                    code="UNEXPECTED_ERROR",
                    details={"type": type(e).__name__}
                )
            logger.error(f"Restore aborted during {report.state.value}: {error.message}")
            report.error = error
            report.state = RestoreState.ABORTED
            self._recover_stopped(report)
            return report
        finally:
            if workdir is not None:
                shutil.rmtree(workdir, ignore_errors=True)

        known = self._known_containers(report)
        services = self._load_services(report)
        started = self._restart_critical(report, known)
        self._restart_remaining(report, [name for name in known if name not in started])
        self._health_check(report, services)

        report.state = RestoreState.DONE
        if report.degraded:
            logger.warning("Restore completed with warnings")
        else:
            logger.info("Restore completed successfully")
        return report

    # Pre-flight

    def _validate(self, report: RestoreReport) -> None:
        with self._step(report, RestoreState.VALIDATING) as step:
            archive = report.archive
            if not archive.is_file():
                raise ValidationError(f"Backup file not found: {archive}", failed_checks=["exists"])

            try:
                members = read_members(archive)
            except DataIntegrityError as e:
                raise ValidationError(
                    f"Backup file is corrupted or invalid: {archive}",
                    failed_checks=["decompress"],
                    details=e.details
                ) from e

            if DATA_MEMBER not in members:
                raise ValidationError(
                    f"Backup doesn't contain hub data: {archive}",
                    failed_checks=["hub_data"]
                )

            if MANIFEST_NAME in members:
                report.manifest_preview = read_member_text(
                    archive, MANIFEST_NAME, max_lines=MANIFEST_PREVIEW_LINES
                )
            step.details["members"] = members
            logger.info("Backup file is valid")

    def _safety_check(self, report: RestoreReport) -> None:
        with self._step(report, RestoreState.SAFETY_CHECKING):
            if os.geteuid() == 0 and not self.allow_superuser:
                raise SafetyCheckError("Don't run restore as root! Run as the hub user instead")

            if not self.runtime.ping():
                raise SafetyCheckError("Container runtime is not running or not accessible")

            parent = self.metadata.data_root().parent
            if not parent.is_dir():
                logger.warning(f"Creating missing parent of the hub directory: {parent}")
                try:
                    parent.mkdir(parents=True, exist_ok=True)
                except OSError as e:
                    raise SafetyCheckError(f"Cannot create {parent}: {e}") from e

    # Destructive phase

    def _snapshot_current(self, report: RestoreReport) -> None:
        with self._step(report, RestoreState.SNAPSHOTTING_CURRENT) as step:
            data_root = self.metadata.data_root()
            if not data_root.is_dir() or not any(data_root.iterdir()):
                logger.info("No existing data to back up")
                return

            scratch = self.settings.scratch_dir()
            snapshot = scratch / f"hub-safety-backup-{int(time.time())}.tar.gz"
            try:
                scratch.mkdir(parents=True, exist_ok=True)
                with tarfile.open(snapshot, "w:gz") as tar:
                    tar.add(str(data_root), arcname=data_root.name)
            except (OSError, tarfile.TarError) as e:
                snapshot.unlink(missing_ok=True)
                message = f"Could not create safety backup of current data: {e}"
                logger.warning(message)
                report.warnings.append(message)
                step.details["degraded"] = True
                return

            report.safety_snapshot = snapshot
            step.details["snapshot"] = str(snapshot)
            logger.info(f"Current data backed up to: {snapshot}")

    def _stop_containers(self, report: RestoreReport) -> None:
        with self._step(report, RestoreState.STOPPING) as step:
            try:
                running = self.runtime.list_running()
            except ContainerRuntimeError as e:
                raise SafetyCheckError(f"Cannot list running containers: {e.message}") from e

            if not running:
                logger.info("No running containers found")
                return

            logger.info(f"Stopping containers: {' '.join(running)}")
            failures = self.runtime.stop_all(running)
            failed = {failure.container for failure in failures}
            self._stopped = [name for name in running if name not in failed]
            report.failures.extend(failures)
            step.details["stopped"] = list(self._stopped)
            if failures:
                step.details["degraded"] = True
            self.sleep(self.settings.stop_settle_seconds)

    def _extract(self, report: RestoreReport) -> Path:
        with self._step(report, RestoreState.EXTRACTING):
            scratch = self.settings.scratch_dir()
            scratch.mkdir(parents=True, exist_ok=True)
            workdir = Path(tempfile.mkdtemp(prefix="hub-restore-", dir=scratch))
            staging = workdir / "data"
            try:
                with tarfile.open(report.archive, "r:gz") as tar:
                    tar.extractall(workdir, filter="tar")
                staging.mkdir()
                with tarfile.open(workdir / DATA_MEMBER, "r:gz") as tar:
                    tar.extractall(staging, filter="tar")
            except _EXTRACT_ERRORS as e:
                shutil.rmtree(workdir, ignore_errors=True)
                raise DataIntegrityError(f"Failed to extract backup: {e}") from e
            logger.info("Backup extracted successfully")
            return workdir

    def _replace(self, report: RestoreReport, workdir: Path) -> None:
        with self._step(report, RestoreState.REPLACING) as step:
            data_root = self.metadata.data_root()
            old_root = old_root_for(data_root)
            source = self._restored_tree(workdir / "data")

            if old_root.exists() or old_root.is_symlink():
                if data_root.exists():
                    logger.info(f"Removing leftover {old_root}")
                    try:
                        shutil.rmtree(old_root)
                    except OSError as e:
                        raise ReplacementFailure(
                            f"Could not remove leftover {old_root}: {e}",
                            details={"old_root": str(old_root)}
                        ) from e
                else:
                    logger.warning(f"{data_root} is missing; treating {old_root} as the previous data")

            if data_root.exists():
                try:
                    os.rename(data_root, old_root)
                except OSError as e:
                    raise ReplacementFailure(f"Could not move {data_root} aside: {e}") from e

            try:
                self._place_new_root(source, data_root)
            except OSError as e:
                try:
                    self._roll_back(data_root, old_root)
                except OSError as rollback_error:
                    raise ReplacementFailure(
                        f"Failed to restore hub data ({e}) and to roll back ({rollback_error}); "
                        f"previous data is at {old_root}",
                        details={"data_root": str(data_root), "old_root": str(old_root)}
                    ) from rollback_error
                raise ReplacementFailure(
                    f"Failed to restore hub data: {e}",
                    details={"data_root": str(data_root)}
                ) from e

            report.replaced = True
            logger.info("Hub data restored successfully")

            warning = self._restore_ownership(data_root)
            if warning:
                report.warnings.append(warning)
                step.details["degraded"] = True

            if old_root.exists():
                shutil.rmtree(old_root, ignore_errors=True)

            if self.restore_system_config:
                warning = self._restore_system_config(workdir / SYSTEM_MEMBER)
                if warning:
                    report.warnings.append(warning)
                    step.details["degraded"] = True

    @staticmethod
    def _restored_tree(staging: Path) -> Path:
        """The single top-level directory of the data snapshot, or the staging dir itself."""
        children = list(staging.iterdir())
        if len(children) == 1 and children[0].is_dir() and not children[0].is_symlink():
            return children[0]
        return staging

    def _place_new_root(self, source: Path, data_root: Path) -> None:
        shutil.move(str(source), str(data_root))

    def _roll_back(self, data_root: Path, old_root: Path) -> None:
        logger.error("Placing restored data failed, rolling back")
        if not old_root.exists():
            return
        if data_root.exists():
            shutil.rmtree(data_root)
        os.rename(old_root, data_root)
        logger.info(f"Previous data moved back to {data_root}")

    def _restore_ownership(self, data_root: Path) -> Optional[str]:
        user = self.metadata.owning_account()
        try:
            account = pwd.getpwnam(user)
        except KeyError:
            message = f"Unknown account {user}; ownership of {data_root} not changed"
            logger.warning(message)
            return message

        try:
            os.chown(data_root, account.pw_uid, account.pw_gid, follow_symlinks=False)
            for dirpath, dirnames, filenames in os.walk(data_root):
                for name in dirnames + filenames:
                    os.chown(os.path.join(dirpath, name), account.pw_uid, account.pw_gid, follow_symlinks=False)
        except OSError as e:
            message = f"Could not set ownership of {data_root} to {user}: {e}"
            logger.warning(message)
            return message
        return None

    def _restore_system_config(self, archive: Path) -> Optional[str]:
        if not archive.is_file():
            return None
        target = self.settings.system_restore_root
        try:
            with tarfile.open(archive, "r:gz") as tar:
                tar.extractall(target, filter="tar")
        except _EXTRACT_ERRORS as e:
            message = f"Some system configs couldn't be restored: {e}"
            logger.warning(message)
            return message
        logger.info("System configurations restored")
        return None

    def _recover_stopped(self, report: RestoreReport) -> None:
        """Restart containers this session stopped before it aborted."""
        if not self._stopped:
            return
        logger.warning("Attempting to restart containers")
        report.failures.extend(self.runtime.start_all(self._stopped))

    # Post-replacement phase

    def _load_services(self, report: RestoreReport) -> List[ServiceEntry]:
        try:
            return list(self.registry.load().services)
        except HubBackupError as e:
            message = f"Could not read restored service registry: {e.message}"
            logger.warning(message)
            report.warnings.append(message)
            return []

    def _known_containers(self, report: RestoreReport) -> List[str]:
        try:
            return self.runtime.list_all()
        except ContainerRuntimeError as e:
            message = f"Cannot list containers: {e.message}"
            logger.warning(message)
            report.warnings.append(message)
            return list(self._stopped)

    def _restart_critical(self, report: RestoreReport, known: List[str]) -> List[str]:
        """Start the critical restart group in order. Returns the names started."""
        with self._step(report, RestoreState.RESTARTING_CRITICAL) as step:
            try:
                critical = self.registry.list_critical()
            except HubBackupError as e:
                message = f"Could not determine critical services, starting all together: {e.message}"
                logger.warning(message)
                report.warnings.append(message)
                step.details["degraded"] = True
                critical = []
            started = []
            for service in critical:
                name = service.container_name
                if name not in known or name in started:
                    continue
                logger.info(f"Starting critical service: {name}")
                failure = self.runtime.try_start(name)
                if failure:
                    report.failures.append(failure)
                    step.details["degraded"] = True
                started.append(name)
                self.sleep(self.settings.critical_settle_seconds)
            step.details["started"] = started
            return started

    def _restart_remaining(self, report: RestoreReport, remaining: List[str]) -> None:
        with self._step(report, RestoreState.RESTARTING_REMAINING) as step:
            if not remaining:
                logger.info("No other containers to start")
                return
            failures = self.runtime.start_all(remaining)
            report.failures.extend(failures)
            step.details["started"] = remaining
            if failures:
                step.details["degraded"] = True

    def _health_check(self, report: RestoreReport, services: List[ServiceEntry]) -> None:
        with self._step(report, RestoreState.HEALTH_CHECKING) as step:
            if self.health_checker is None:
                return
            logger.info("Giving services time to wake up...")
            self.sleep(self.settings.health_check_delay)

            local_ip = self.metadata.local_ip() or local_ip_address() or "localhost"
            service_urls = {
                s.name: s.access_url.replace("{local_ip}", local_ip)
                for s in services if s.access_url
            }
            report.health = self.health_checker.check_all(extra=service_urls)
            step.details["reachable"] = sum(1 for result in report.health if result.reachable)


def default_health_checker(settings: HubSettings, metadata: MetadataStore) -> HealthChecker:
    """Health checker for the well-known endpoints of this hub."""
    local_ip = metadata.local_ip() or local_ip_address() or "localhost"
    return HealthChecker(
        endpoints=expand_endpoints(settings.health_endpoints, local_ip),
        timeout=settings.probe_timeout
    )
