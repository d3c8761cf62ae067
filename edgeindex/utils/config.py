from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Mapping, Optional

from ..core.errors import ConfigError
from ..core.manifest import is_safe_relative_path
from ..updater.retention import RETENTION_ORDERS

logger = logging.getLogger(__name__)

ENV_PREFIX = "EDGEINDEX_"


@dataclass
class UpdaterConfig:
    base_dir: str = "data/indexes"
    retention_count: int = 3
    retention_order: str = "mtime"
    required_artifacts: list[str] = field(default_factory=lambda: ["fts.sqlite"])
    smoke_database: str = "fts.sqlite"  # "" disables the smoke check
    smoke_query: str = "SELECT COUNT(*) FROM fts"
    hash_workers: int = 1
    log_dir: Optional[str] = None

    def validate(self) -> "UpdaterConfig":
        for name in ("base_dir", "retention_order", "smoke_database", "smoke_query"):
            if not isinstance(getattr(self, name), str):
                raise ConfigError(f"{name} must be a string, got {getattr(self, name)!r}")
        if self.log_dir is not None and not isinstance(self.log_dir, str):
            raise ConfigError(f"log_dir must be a string or null, got {self.log_dir!r}")
        if isinstance(self.retention_count, bool) or not isinstance(self.retention_count, int) or self.retention_count < 1:
            raise ConfigError(f"retention_count must be an integer >= 1, got {self.retention_count!r}")
        if self.retention_order not in RETENTION_ORDERS:
            raise ConfigError(f"retention_order must be one of {RETENTION_ORDERS}, got {self.retention_order!r}")
        if isinstance(self.hash_workers, bool) or not isinstance(self.hash_workers, int) or self.hash_workers < 1:
            raise ConfigError(f"hash_workers must be an integer >= 1, got {self.hash_workers!r}")
        if not isinstance(self.required_artifacts, list) or not all(isinstance(a, str) for a in self.required_artifacts):
            raise ConfigError("required_artifacts must be a list of file names")
        for name in self.required_artifacts:
            if not is_safe_relative_path(name):
                raise ConfigError(f"required_artifacts entry {name!r} is not a relative path inside the release")
        if self.smoke_database and not is_safe_relative_path(self.smoke_database):
            raise ConfigError(f"smoke_database {self.smoke_database!r} is not a relative path inside the release")
        if self.smoke_database and not self.smoke_query.strip():
            raise ConfigError("smoke_query must not be empty when smoke_database is set")
        if not self.base_dir:
            raise ConfigError("base_dir must not be empty")
        return self


def _int_env(env: Mapping[str, str], name: str) -> Optional[int]:
    raw = env.get(ENV_PREFIX + name, "").strip()
    if not raw:
        return None
    try:
        return int(raw)
    except ValueError as e:
        raise ConfigError(f"{ENV_PREFIX}{name} must be an integer, got {raw!r}") from e


def load_config(path: str | Path | None = None, env: Optional[Mapping[str, str]] = None) -> UpdaterConfig:
    """Defaults, then the optional JSON file, then ``EDGEINDEX_*`` variables."""
    env = os.environ if env is None else env
    config = UpdaterConfig()

    if path:
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            raise ConfigError(f"Could not load config {path}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigError(f"Config {path} must contain a JSON object")
        known = {f.name for f in fields(UpdaterConfig)}
        for key, value in data.items():
            if key not in known:
                logger.warning("Ignoring unknown config key: %s", key)
                continue
            setattr(config, key, value)

    base_dir = env.get(ENV_PREFIX + "BASE_DIR", "").strip()
    if base_dir:
        config.base_dir = base_dir
    log_dir = env.get(ENV_PREFIX + "LOG_DIR", "").strip()
    if log_dir:
        config.log_dir = log_dir
    retention_count = _int_env(env, "RETENTION_COUNT")
    if retention_count is not None:
        config.retention_count = retention_count
    hash_workers = _int_env(env, "HASH_WORKERS")
    if hash_workers is not None:
        config.hash_workers = hash_workers

    return config.validate()
