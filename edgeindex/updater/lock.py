"""Exclusive advisory lock over a releases base directory (POSIX ``flock``)."""

from __future__ import annotations

import fcntl
import logging
import os
from pathlib import Path
from typing import Optional

import psutil

from ..core.errors import UpdateInProgress

logger = logging.getLogger(__name__)

LOCK_FILE_NAME = ".update.lock"


class UpdateLock:
    def __init__(self, base_dir: str | Path):
        self.base_dir = Path(base_dir)
        self.path = self.base_dir / LOCK_FILE_NAME
        self._fd: Optional[int] = None

    @property
    def held(self) -> bool:
        return self._fd is not None

    def _holder_pid(self, fd: int) -> Optional[int]:
        try:
            os.lseek(fd, 0, os.SEEK_SET)
            raw = os.read(fd, 32).decode("ascii", errors="ignore").strip()
            return int(raw) if raw else None
        except (OSError, ValueError):
            return None

    def acquire(self) -> None:
        if self._fd is not None:
            return
        self.base_dir.mkdir(parents=True, exist_ok=True)
        fd = os.open(str(self.path), os.O_RDWR | os.O_CREAT, 0o644)
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            pid = self._holder_pid(fd)
            os.close(fd)
            if pid is not None:
                state = "running" if psutil.pid_exists(pid) else "not running"
                raise UpdateInProgress(f"Another update holds {self.path} (pid {pid}, {state})") from None
            raise UpdateInProgress(f"Another update holds {self.path}") from None
        except OSError:
            os.close(fd)
            raise

        try:
            os.ftruncate(fd, 0)
            os.write(fd, f"{os.getpid()}\n".encode("ascii"))
        except OSError:
            fcntl.flock(fd, fcntl.LOCK_UN)
            os.close(fd)
            raise
        self._fd = fd
        logger.debug("Acquired update lock %s", self.path)

    def release(self) -> None:
        fd = self._fd
        if fd is None:
            return
        self._fd = None
        try:
            os.ftruncate(fd, 0)
            fcntl.flock(fd, fcntl.LOCK_UN)
        finally:
            os.close(fd)
        logger.debug("Released update lock %s", self.path)

    def __enter__(self) -> "UpdateLock":
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()
