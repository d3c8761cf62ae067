"""``current`` / ``rollback`` symlink pointers and the atomic swap."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional

from ..core.errors import SwapFailed

logger = logging.getLogger(__name__)

CURRENT_NAME = "current"
ROLLBACK_NAME = "rollback"
RELEASES_DIR_NAME = "releases"


def release_target(version: str) -> str:
    return f"{RELEASES_DIR_NAME}/{version}"


def release_version_of(target: Optional[str]) -> Optional[str]:
    if not target:
        return None
    return Path(target.rstrip("/")).name or None


def fsync_dir(path: Path) -> None:
    fd = os.open(str(path), os.O_RDONLY)
    try:
        os.fsync(fd)
    finally:
        os.close(fd)


class ReleasePointers:
    def __init__(self, base_dir: str | Path):
        self.base_dir = Path(base_dir)
        self.current = self.base_dir / CURRENT_NAME
        self.rollback = self.base_dir / ROLLBACK_NAME

    @staticmethod
    def _read(link: Path) -> Optional[str]:
        if not link.is_symlink():
            return None
        return os.readlink(link)

    def read_current(self) -> Optional[str]:
        return self._read(self.current)

    def read_rollback(self) -> Optional[str]:
        return self._read(self.rollback)

    def resolve(self, target: Optional[str]) -> Optional[Path]:
        if not target:
            return None
        path = Path(target)
        if not path.is_absolute():
            path = self.base_dir / path
        return path.resolve()

    def protected_releases(self) -> set[Path]:
        """Resolved release dirs that ``current`` and ``rollback`` point at."""
        protected = set()
        for target in (self.read_current(), self.read_rollback()):
            resolved = self.resolve(target)
            if resolved is not None:
                protected.add(resolved)
        return protected

    def _replace_link(self, link: Path, target: str) -> bool:
        tmp_link = self.base_dir / f".{link.name}.tmp.{os.getpid()}"
        try:
            if tmp_link.is_symlink() or tmp_link.exists():
                tmp_link.unlink()
            os.symlink(target, tmp_link)
        except OSError as e:
            raise SwapFailed(f"Could not create temporary pointer {tmp_link}: {e}") from e
        try:
            os.replace(tmp_link, link)
        except OSError as e:
            try:
                tmp_link.unlink()
            except OSError:
                logger.debug("Could not remove temporary pointer %s", tmp_link)
            raise SwapFailed(f"Could not replace {link}: {e}") from e
        try:
            fsync_dir(self.base_dir)
        except OSError as e:
            logger.warning("Durability flush of %s failed after replacing %s: %s", self.base_dir, link, e)
            return False
        return True

    def set_rollback(self, target: str) -> None:
        self._replace_link(self.rollback, target)
        logger.info("Rollback point created: %s", target)

    def clear_rollback(self) -> None:
        if self.rollback.is_symlink():
            self.rollback.unlink()

    def swap_current(self, target: str) -> bool:
        """Atomically re-point ``current`` by renaming a fresh temp link over it.

        Returns False when the rename committed but the directory fsync failed.
        """
        durable = self._replace_link(self.current, target)
        logger.info("Atomic swap completed: current -> %s", target)
        return durable

    def verify_current(self, target: str) -> bool:
        actual = self.read_current()
        if actual != target:
            logger.warning("Current points to unexpected target: %s (expected %s)", actual, target)
            return False
        return True
