from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable

from packaging.version import InvalidVersion, Version

logger = logging.getLogger(__name__)

RETENTION_ORDERS = ("mtime", "version")


@dataclass
class PruneResult:
    kept: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)


def _mtime_key(path: Path) -> tuple[int, str]:
    return (path.stat().st_mtime_ns, path.name)


def _version_key(path: Path) -> tuple[int, object, int, str]:
    try:
        return (1, Version(path.name), *_mtime_key(path))
    except InvalidVersion:
        # Unparsable names rank below any valid version.
        return (0, Version("0"), *_mtime_key(path))


def list_releases(releases_dir: str | Path, order: str = "mtime") -> list[Path]:
    """Release directories, newest first."""
    root = Path(releases_dir)
    if not root.is_dir():
        return []
    releases = [p for p in root.iterdir() if p.is_dir() and not p.is_symlink()]
    key = _version_key if order == "version" else _mtime_key
    return sorted(releases, key=key, reverse=True)


def prune_releases(
    releases_dir: str | Path,
    keep: int,
    protected: Iterable[Path] = (),
    order: str = "mtime",
) -> PruneResult:
    """Delete releases outside the newest ``keep``, never the protected ones.

    Protected releases count towards ``keep``; the remaining slots go to the
    newest unprotected releases.
    """
    protected_set = {Path(p).resolve() for p in protected}
    releases = list_releases(releases_dir, order=order)
    result = PruneResult()

    retained = [p for p in releases if p.resolve() in protected_set]
    for release in releases:
        if len(retained) >= keep:
            break
        if release not in retained:
            retained.append(release)

    for release in releases:
        if release in retained:
            result.kept.append(release.name)
            continue
        logger.info("Removing old release: %s", release.name)
        try:
            shutil.rmtree(release)
            result.removed.append(release.name)
        except OSError as e:
            logger.warning("Could not remove old release %s: %s", release, e)
            result.failed[release.name] = str(e)
    return result
