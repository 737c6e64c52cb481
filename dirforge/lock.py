"""
Advisory root lock

Cross-platform advisory locking via atomic mkdir. mkdir either succeeds or
raises if the directory already exists, on every major OS.

The lock lives beside the root, never inside it, so a locked tree looks
exactly like an unlocked one to anyone walking it:

    <parent>/.<root-name>.dirforge.lockdir/            existence = locked
    <parent>/.<root-name>.dirforge.lockdir/owner.json  who holds it

When the parent is not writable (a shared, read-only projects directory
holding a root the caller owns) the lock goes to a per-user lock directory
instead, named after the root's absolute path:

    <lock_dir>/<root-name>-<sha1[:12]>.dirforge.lockdir/

The lock is advisory. It narrows the window for two concurrent applies on
one root, it does not make them safe.
"""

import hashlib
import json
import logging
import os
import shutil
import socket
import time
from pathlib import Path

from .errors import LockError
from .metadata import _atomic_write

logger = logging.getLogger(__name__)

LOCK_SUFFIX = ".dirforge.lockdir"


def _hostname() -> str:
    """Get hostname, cached after first call."""
    if not hasattr(_hostname, "_cached"):
        _hostname._cached = socket.gethostname()
    return _hostname._cached


def lock_path(root: Path, directory: Path | None = None) -> Path:
    """Lockdir for ``root``: beside it, or inside ``directory`` when given."""
    root = Path(root)
    if directory is None:
        return root.parent / f".{root.name}{LOCK_SUFFIX}"
    digest = hashlib.sha1(str(root.absolute()).encode("utf-8")).hexdigest()[:12]
    return Path(directory).expanduser() / f"{root.name}-{digest}{LOCK_SUFFIX}"


class RootLock:
    """Exclusive advisory lock on one scaffold root."""

    def __init__(self, root: Path, max_age: float = 3600 * 4, fallback_dir: str | None = None):
        self.root = Path(root)
        self.path = lock_path(self.root)
        self.max_age = max_age
        self.fallback_dir = fallback_dir
        self.held = False

    def __enter__(self):
        self.acquire()
        return self

    def __exit__(self, *exc):
        self.release()
        return False

    def acquire(self):
        """Take the lock or raise LockError naming the current holder."""
        self.path = self._choose_path()
        try:
            self.path.mkdir(exist_ok=False)
        except FileExistsError:
            owner = self.owner()
            if owner and not self._is_stale(owner):
                raise LockError(
                    f"{self.root} is locked by pid {owner.get('pid')} on {owner.get('hostname')}",
                    path=self.root, owner=owner,
                ) from None
            logger.warning("Reclaiming stale lock %s (owner: %s)", self.path, owner)
            self._force_remove()
            try:
                self.path.mkdir(exist_ok=False)
            except FileExistsError:
                # Someone else grabbed it first
                raise LockError(f"{self.root} is locked", path=self.root, owner=self.owner()) from None

        _atomic_write(self.path / "owner.json", json.dumps({
            "root": str(self.root),
            "acquired_at": time.time(),
            "pid": os.getpid(),
            "hostname": _hostname(),
        }, indent=2), 0o644)
        self.held = True
        logger.debug("Acquired lock %s", self.path)

    def _choose_path(self) -> Path:
        beside = lock_path(self.root)
        if self.fallback_dir is None or os.access(beside.parent, os.W_OK):
            return beside
        directory = Path(self.fallback_dir).expanduser()
        directory.mkdir(parents=True, exist_ok=True)
        logger.debug("%s is not writable, locking %s in %s", beside.parent, self.root, directory)
        return lock_path(self.root, directory)

    def release(self):
        if not self.held:
            return
        self._force_remove()
        self.held = False
        logger.debug("Released lock %s", self.path)

    def owner(self) -> dict | None:
        owner_path = self.path / "owner.json"
        if not owner_path.exists():
            return None
        try:
            return json.loads(owner_path.read_text())
        except (json.JSONDecodeError, OSError):
            return None

    def _force_remove(self):
        if self.path.exists():
            shutil.rmtree(self.path)

    def _is_stale(self, owner: dict) -> bool:
        """
        A lock is stale if it is older than max_age, or if its owning PID
        no longer exists on this host.
        """
        acquired_at = owner.get("acquired_at", 0)
        if (time.time() - acquired_at) > self.max_age:
            return True
        if owner.get("hostname") == _hostname():
            pid = owner.get("pid")
            if pid is not None and not _is_process_alive(pid):
                return True
        return False


def _is_process_alive(pid: int) -> bool:
    """Signal 0 checks a pid without touching it. Off POSIX the age check decides."""
    if os.name != "posix":
        return True
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        pass    # alive, owned by another user
    return True
