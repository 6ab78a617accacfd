"""Exclusive ownership of the persistent browser profile directory."""

from __future__ import annotations

from datetime import datetime, timezone
import json
import logging
import os
from pathlib import Path

LOGGER = logging.getLogger(__name__)

LOCK_FILE_NAME = "readingsync.lock"


class ProfileLockedError(RuntimeError):
    """Another run currently owns the profile directory."""


def _pid_alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    except OSError:
        return False
    return True


class ProfileLock:
    """Lock file beside the profile, created with ``O_EXCL``.

    A lock left behind by a dead process is treated as stale and replaced.
    """

    def __init__(self, profile_dir: Path) -> None:
        self._profile_dir = profile_dir
        self._path = profile_dir.parent / f"{profile_dir.name}.{LOCK_FILE_NAME}"
        self._fd: int | None = None

    @property
    def path(self) -> Path:
        return self._path

    def acquire(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        try:
            self._fd = self._open_exclusive()
        except FileExistsError:
            if not self._is_stale():
                raise ProfileLockedError(
                    f"Browser profile {self._profile_dir} is in use by another run (lock: {self._path})"
                ) from None
            LOGGER.info("Removing stale profile lock %s", self._path)
            self._path.unlink(missing_ok=True)
            self._fd = self._open_exclusive()

        payload = {"pid": os.getpid(), "started_at": datetime.now(timezone.utc).isoformat()}
        os.write(self._fd, json.dumps(payload).encode("utf-8"))
        os.fsync(self._fd)

    def release(self) -> None:
        if self._fd is None:
            return
        os.close(self._fd)
        self._fd = None
        self._path.unlink(missing_ok=True)

    def __enter__(self) -> "ProfileLock":
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()

    def _open_exclusive(self) -> int:
        return os.open(str(self._path), os.O_CREAT | os.O_EXCL | os.O_WRONLY)

    def _is_stale(self) -> bool:
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
            pid = int(data["pid"])
        except (OSError, ValueError, KeyError, TypeError):
            return True
        return not _pid_alive(pid)
