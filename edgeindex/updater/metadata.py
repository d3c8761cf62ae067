from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

METADATA_FILE_NAME = "version.json"


@dataclass(frozen=True)
class VersionMetadata:
    current_version: str
    previous_version: str
    update_type: str
    updated_at: str
    files_count: int
    total_bytes: int


def utc_timestamp(now: Optional[datetime] = None) -> str:
    return (now or datetime.now(timezone.utc)).strftime("%Y-%m-%dT%H:%M:%SZ")


def write_version_metadata(path: str | Path, metadata: VersionMetadata) -> None:
    target = Path(path)
    tmp = target.with_name(f".{target.name}.tmp.{os.getpid()}")
    try:
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(asdict(metadata), f, indent=2)
            f.write("\n")
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, target)
    except Exception:
        tmp.unlink(missing_ok=True)
        raise
    logger.info("Wrote version metadata: %s", target)


def read_version_metadata(path: str | Path) -> Optional[VersionMetadata]:
    try:
        data = json.loads(Path(path).read_text(encoding="utf-8"))
        return VersionMetadata(**data)
    except FileNotFoundError:
        return None
    except (OSError, ValueError, TypeError) as e:
        logger.warning("Could not read version metadata %s: %s", path, e)
        return None
