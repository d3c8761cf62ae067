from __future__ import annotations

import logging
import sqlite3
from pathlib import Path
from typing import Any, Iterable

from ..core.errors import ReleaseAlreadyExists, RequiredArtifactMissing, StagedArtifactInvalid

logger = logging.getLogger(__name__)


def create_release_dir(releases_dir: str | Path, version: str) -> Path:
    """Create ``releases/<version>`` exclusively."""
    root = Path(releases_dir)
    root.mkdir(parents=True, exist_ok=True)
    stage_dir = root / version
    if stage_dir.exists() or stage_dir.is_symlink():
        raise ReleaseAlreadyExists(version, str(stage_dir))
    try:
        stage_dir.mkdir()
    except FileExistsError as e:
        raise ReleaseAlreadyExists(version, str(stage_dir)) from e
    logger.info("Created staging directory: %s", stage_dir)
    return stage_dir


def check_required_artifacts(stage_dir: str | Path, required: Iterable[str]) -> None:
    for name in required:
        if not (Path(stage_dir) / name).is_file():
            raise RequiredArtifactMissing(f"Required file missing in staged release: {name}")


def smoke_check(db_path: str | Path, query: str) -> Any:
    """Run ``query`` read-only against the SQLite index and return the first value."""
    path = Path(db_path)
    if not path.is_file():
        raise StagedArtifactInvalid(f"Index database not found: {path}")

    # immutable=1 keeps SQLite from creating -wal/-shm files beside the index
    uri = f"{path.resolve().as_uri()}?mode=ro&immutable=1"
    try:
        conn = sqlite3.connect(uri, uri=True)
    except sqlite3.Error as e:
        raise StagedArtifactInvalid(f"Could not open index database {path}: {e}") from e
    try:
        row = conn.execute(query).fetchone()
    except sqlite3.Error as e:
        raise StagedArtifactInvalid(f"Index smoke check failed for {path}: {e}") from e
    finally:
        conn.close()
    return row[0] if row else None
