"""
Scheduler leadership lock.

Only one process may run the tick loop. Leadership is an atomic lock file
holding the owner PID (first line) and the UTC acquisition time (second line).
A lock whose PID is dead, or which is older than `stale_after_seconds`, is
taken over.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, NamedTuple, Optional

logger = logging.getLogger(__name__)


class LockHolder(NamedTuple):
    pid: Optional[int]
    acquired_at: Optional[datetime]


def _is_process_alive(pid: int) -> bool:
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # Exists but owned by another user.
        return True
    except OSError:
        return False
    return True


def read_lock_holder(lock_path: Path) -> LockHolder:
    try:
        lines = lock_path.read_text(encoding="utf-8").splitlines()
    except OSError:
        return LockHolder(None, None)

    pid_raw = lines[0].strip() if lines else ""
    pid = int(pid_raw) if pid_raw.isdigit() else None

    acquired_at = None
    ts_raw = lines[1].strip().removesuffix("Z") if len(lines) > 1 else ""
    if ts_raw:
        try:
            acquired_at = datetime.fromisoformat(ts_raw)
        except ValueError:
            acquired_at = None
    if acquired_at is not None:
        if acquired_at.tzinfo is None:
            acquired_at = acquired_at.replace(tzinfo=timezone.utc)
        acquired_at = acquired_at.astimezone(timezone.utc)
    return LockHolder(pid, acquired_at)


@dataclass
class SchedulerLock:
    """
    File-based scheduler leadership lock.

    `try_acquire()` returns True when this process becomes (or already is) the
    leader. Acquisition never raises; a filesystem problem simply means "not leader".
    """

    lock_path: str
    stale_after_seconds: Optional[int] = None
    is_process_alive: Callable[[int], bool] = _is_process_alive
    now: Callable[[], datetime] = lambda: datetime.now(timezone.utc)

    _held: bool = field(default=False, repr=False)

    @property
    def path(self) -> Path:
        return Path(self.lock_path)

    @property
    def is_held(self) -> bool:
        return self._held

    def holder(self) -> LockHolder:
        return read_lock_holder(self.path)

    def _is_stale(self, holder: LockHolder) -> bool:
        if holder.pid is None or not self.is_process_alive(holder.pid):
            return True
        if self.stale_after_seconds and holder.acquired_at is not None:
            age = (self.now() - holder.acquired_at).total_seconds()
            return age > float(self.stale_after_seconds)
        return False

    def try_acquire(self) -> bool:
        if self._held:
            return True

        path = self.path
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            logger.warning("Cannot create scheduler lock directory %s: %s", path.parent, exc)
            return False

        if path.exists():
            holder = self.holder()
            if not self._is_stale(holder):
                return False
            logger.info("Taking over stale scheduler lock %s (pid=%s)", path, holder.pid)
            try:
                path.unlink()
            except FileNotFoundError:
                pass
            except OSError:
                return False

        try:
            fd = os.open(str(path), os.O_CREAT | os.O_EXCL | os.O_WRONLY)
        except OSError:
            return False

        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                acquired_at = self.now().astimezone(timezone.utc).replace(tzinfo=None)
                f.write(f"{os.getpid()}\n{acquired_at.isoformat()}Z\n")
        except OSError as exc:
            logger.warning("Failed writing scheduler lock %s: %s", path, exc)
            return False

        self._held = True
        return True

    def release(self) -> None:
        if not self._held:
            return
        self._held = False
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass
        except OSError as exc:
            logger.warning("Failed removing scheduler lock %s: %s", self.path, exc)
