"""
Transaction Executor

Applies a MigrationPlan to disk, all or nothing.

Every step that succeeds appends its inverse to the rollback log. If any
step fails, the log is replayed most-recent-first and ApplyError is raised,
so the caller never sees a half-applied plan. Atomicity is scoped to one
apply() call: paths from earlier, committed runs are never touched.

Nothing existing is overwritten. Directories are created with mkdir (an
existing file at that path fails the step), files with exclusive create.
Rollback only removes paths this call created, and only with rmdir/unlink,
so a directory the user filled in the meantime survives a rollback.

Sequence for a non-dry apply:
  1. refuse foreign conflicts unless force or backup is set
  2. create missing ancestors of the root, take the advisory lock
  3. copy the root aside if backup is set
  4. run steps in plan order, then re-stamp a stale descriptor
  5. release the lock
"""

import logging
import os
import shutil
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path, PurePosixPath

from .config import Settings
from .errors import ApplyError, ConflictError, DirforgeError, LockError
from .lock import RootLock
from .metadata import MetadataWriter, _atomic_write
from .plan import MigrationPlan, MigrationStep, StepKind
from .report import ResultCode
from .serializable import Serializable

logger = logging.getLogger(__name__)


@dataclass
class ApplyOptions(Serializable):
    dry_run: bool = False
    backup: bool = False
    force: bool = False                     # proceed despite foreign entries; never deletes
    restrictive_metadata: bool = True
    lock: bool = True


@dataclass(frozen=True)
class RollbackAction:
    """Inverse of one effect of this transaction."""
    action: str                 # rmdir | unlink | restore | remove-backup | unlock
    path: str
    content: str | None = None
    mode: int | None = None


@dataclass
class TransactionResult(Serializable):
    _skip_none = True

    root: str
    status: ResultCode
    plan: MigrationPlan
    dry_run: bool = False
    applied: list = field(default_factory=list)     # step paths created by this call
    skipped: list = field(default_factory=list)     # step paths found already present
    refreshed: str | None = None                    # descriptor re-stamped by this call
    backup_path: str | None = None
    error: dict | None = None

    @property
    def ok(self) -> bool:
        return self.status.ok

    @property
    def exit_status(self) -> int:
        return self.status.exit_status

    def to_report(self) -> dict:
        report = self.plan.to_report(dry_run=self.dry_run)
        report.update({
            "status": self.status.value,
            "applied": list(self.applied),
            "skipped": list(self.skipped),
            "backupPath": self.backup_path,
            "error": self.error,
        })
        if self.refreshed:
            report["refreshed"] = self.refreshed
        return report


def _backup_name(root: Path) -> Path:
    stamp = datetime.now().strftime("%Y%m%d-%H%M%S")
    candidate = root.parent / f"{root.name}.backup-{stamp}"
    n = 1
    while candidate.exists():
        candidate = root.parent / f"{root.name}.backup-{stamp}-{n}"
        n += 1
    return candidate


class Transaction:
    """One apply() call: the steps it ran and how to undo them."""

    def __init__(self, plan: MigrationPlan, settings: Settings, writer: MetadataWriter):
        self.plan = plan
        self.root = Path(plan.root)
        self.settings = settings
        self.writer = writer
        self.applied_steps: list[MigrationStep] = []
        self.skipped_steps: list[MigrationStep] = []
        self.rollback_log: list[RollbackAction] = []
        self.backup_path: Path | None = None
        self.refreshed: str | None = None
        self.lock: RootLock | None = None

    def record(self, action: str, path: Path, **kwargs):
        self.rollback_log.append(RollbackAction(action=action, path=str(path), **kwargs))

    # ── Effects ───────────────────────────────────────────────

    def create_ancestors(self):
        """Create missing directories above the root, so the lock has somewhere to live."""
        missing = []
        current = self.root.parent
        while not current.exists() and not current.is_symlink():
            missing.append(current)
            if current.parent == current:
                break
            current = current.parent
        for path in reversed(missing):
            self._create_directory(path, self.settings.dir_mode)
            logger.debug("Created %s", path)

    def acquire_lock(self, lock: RootLock):
        """Take the lock. Rollback releases it before removing ancestors created for it."""
        lock.acquire()
        self.lock = lock
        self.record("unlock", lock.path)

    def create_root(self):
        if self.root.exists() or self.root.is_symlink():
            return
        self._create_directory(self.root, self.settings.dir_mode)
        logger.debug("Created %s", self.root)

    def backup(self):
        if not self.root.is_dir() or not any(self.root.iterdir()):
            return
        target = _backup_name(self.root)
        self.backup_path = target
        self.record("remove-backup", target)
        shutil.copytree(self.root, target, symlinks=True)
        logger.info("Backed up %s to %s", self.root, target)

    def run_step(self, step: MigrationStep):
        target = self.root / PurePosixPath(step.path)
        if step.kind == StepKind.CREATE_DIRECTORY:
            if step.metadata:
                mode = self.writer.modes[0]
            else:
                mode = step.mode if step.mode is not None else self.settings.dir_mode
            try:
                self._create_directory(target, mode)
            except FileExistsError:
                if target.is_dir() and not target.is_symlink():
                    self.skipped_steps.append(step)
                    logger.debug("Already present: %s/", step.path)
                    return
                raise

        elif step.kind == StepKind.CREATE_FILE:
            try:
                self._create_file(target, step.content or "",
                                  step.mode if step.mode is not None else self.settings.file_mode)
            except FileExistsError:
                if target.is_file() and not target.is_symlink():
                    self.skipped_steps.append(step)
                    logger.debug("Already present: %s", step.path)
                    return
                raise

        elif step.kind == StepKind.WRITE_METADATA:
            if target.exists():
                self.skipped_steps.append(step)
                logger.debug("Descriptor already present: %s", step.path)
                return
            if self.plan.descriptor is None:
                raise ValueError(f"Plan has a WriteMetadata step for {step.path} but no descriptor")
            directory = str(PurePosixPath(step.path).parent)
            self.writer.write(self.root, step.level, self.plan.descriptor, directory)
            self.record("unlink", target)

        self.applied_steps.append(step)
        logger.debug("Applied %s %s", step.kind.value, step.path)

    def refresh_descriptor(self):
        refresh = self.plan.descriptor_refresh
        target = self.root / PurePosixPath(refresh.path)
        previous = target.read_text(encoding="utf-8")
        previous_mode = target.stat().st_mode & 0o7777
        self.writer.refresh(
            self.root, refresh.level, refresh.to_version,
            updated=self.plan.stamped_at or datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ"),
            directory=refresh.directory,
        )
        self.record("restore", target, content=previous, mode=previous_mode)
        self.refreshed = refresh.path
        logger.debug("Refreshed %s %s -> %s", refresh.path, refresh.from_version, refresh.to_version)

    def _create_directory(self, path: Path, mode: int):
        os.mkdir(path, mode)
        self.record("rmdir", path)
        os.chmod(path, mode)

    def _create_file(self, path: Path, content: str, mode: int):
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, mode)
        self.record("unlink", path)
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
        os.chmod(path, mode)

    # ── Undo ──────────────────────────────────────────────────

    def rollback(self) -> list[str]:
        """Undo recorded effects, most recent first. Returns the failures."""
        errors = []
        while self.rollback_log:
            entry = self.rollback_log.pop()
            try:
                if entry.action == "rmdir":
                    os.rmdir(entry.path)
                elif entry.action == "unlink":
                    os.unlink(entry.path)
                elif entry.action == "restore":
                    _atomic_write(Path(entry.path), entry.content, entry.mode)
                elif entry.action == "remove-backup":
                    shutil.rmtree(entry.path)
                elif entry.action == "unlock":
                    self.lock.release()
                logger.debug("Rolled back %s %s", entry.action, entry.path)
            except FileNotFoundError:
                logger.debug("Rollback %s %s: already gone", entry.action, entry.path)
            except OSError as e:
                logger.warning("Rollback %s %s failed: %s", entry.action, entry.path, e)
                errors.append(f"{entry.action} {entry.path}: {e}")
        return errors


def _success_status(plan: MigrationPlan) -> ResultCode:
    return ResultCode.SUCCESS_WITH_WARNINGS if plan.manual_warnings else ResultCode.SUCCESS


def apply(plan: MigrationPlan, options: ApplyOptions | None = None, *,
          settings: Settings | None = None, writer: MetadataWriter | None = None) -> TransactionResult:
    """Apply ``plan``. Raises ConflictError, LockError or ApplyError on failure."""
    options = options or ApplyOptions()
    settings = settings or Settings()
    writer = writer or MetadataWriter(settings, restrictive=options.restrictive_metadata)
    blocked = plan.foreign_conflicts() and not (options.force or options.backup)

    if options.dry_run:
        logger.debug("Dry run for %s: %d steps", plan.root, len(plan.steps))
        return TransactionResult(
            root=plan.root,
            status=ResultCode.CONFLICT_BLOCKED if blocked else _success_status(plan),
            plan=plan,
            dry_run=True,
        )

    if blocked:
        conflicts = [c.path for c in plan.foreign_conflicts()]
        raise ConflictError(
            f"{plan.root} contains entries outside {plan.world_type}: {', '.join(conflicts)} "
            f"(use force to add alongside them, or backup to copy the root aside first)",
            path=plan.root, conflicts=conflicts,
        )

    if plan.is_empty():
        logger.info("Nothing to apply for %s", plan.root)
        return TransactionResult(root=plan.root, status=_success_status(plan), plan=plan)

    tx = Transaction(plan, settings, writer)
    lock = RootLock(tx.root, settings.lock_max_age, settings.lock_dir) if options.lock else None
    current = None
    logger.info("Applying %d steps to %s", len(plan.steps), plan.root)
    try:
        try:
            tx.create_ancestors()
            if lock is not None:
                tx.acquire_lock(lock)
            tx.create_root()
            if options.backup:
                tx.backup()
            for step in plan.steps:
                current = step.path
                tx.run_step(step)
            if plan.descriptor_refresh is not None:
                current = plan.descriptor_refresh.path
                tx.refresh_descriptor()
        except LockError:
            tx.rollback()
            raise
        except (OSError, DirforgeError, ValueError) as e:
            rollback_errors = tx.rollback()
            logger.info("Rolled back %s after failure at %s: %s", plan.root, current, e)
            raise ApplyError(
                f"Step failed at {current or plan.root}: {e}",
                path=current or plan.root, cause=e, rollback_errors=rollback_errors,
            ) from e
        except BaseException:
            tx.rollback()
            logger.warning("Interrupted while applying to %s; rolled back", plan.root)
            raise
    finally:
        if lock is not None:
            lock.release()

    logger.info(
        "Committed %s: %d created, %d already present",
        plan.root, len(tx.applied_steps), len(tx.skipped_steps),
    )
    return TransactionResult(
        root=plan.root,
        status=_success_status(plan),
        plan=plan,
        applied=[s.path for s in tx.applied_steps],
        skipped=[s.path for s in tx.skipped_steps],
        refreshed=tx.refreshed,
        backup_path=str(tx.backup_path) if tx.backup_path else None,
    )
