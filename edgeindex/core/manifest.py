"""Release manifest parsing and structural validation."""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import Any

from .errors import ManifestMalformed

SHA256_RE = re.compile(r"^[0-9a-fA-F]{64}$")
SUPPORTED_UPDATE_TYPES = ("full",)
DEFAULT_PREVIOUS_VERSION = "initial"
DEFAULT_UPDATE_TYPE = "full"
DEFAULT_ACTION = "add"


@dataclass(frozen=True)
class FileEntry:
    path: str
    sha256: str
    size_bytes: int
    action: str = DEFAULT_ACTION


@dataclass(frozen=True)
class Manifest:
    version: str
    previous_version: str
    update_type: str
    files: tuple[FileEntry, ...]
    raw: bytes = field(default=b"", repr=False, compare=False)


def is_safe_relative_path(value: str) -> bool:
    if not value or "\x00" in value or "\\" in value:
        return False
    if value.startswith("/") or re.match(r"^[A-Za-z]:", value):
        return False
    parts = PurePosixPath(value).parts
    if not parts or ".." in parts:
        return False
    return all(part not in ("", ".") for part in value.split("/"))


def _is_safe_version(value: str) -> bool:
    return bool(value) and value not in (".", "..") and is_safe_relative_path(value) and "/" not in value


def _require_str(data: dict[str, Any], key: str, *, default: str | None = None, where: str = "manifest") -> str:
    if key not in data or data[key] is None:
        if default is None:
            raise ManifestMalformed(f"{where}: missing required field '{key}'")
        return default
    value = data[key]
    if not isinstance(value, str):
        raise ManifestMalformed(f"{where}: field '{key}' must be a string")
    return value


def _parse_entry(index: int, item: Any) -> FileEntry:
    where = f"files[{index}]"
    if not isinstance(item, dict):
        raise ManifestMalformed(f"{where}: entry must be an object")

    path = _require_str(item, "path", where=where)
    if not is_safe_relative_path(path):
        raise ManifestMalformed(f"{where}: unsafe path {path!r}")

    digest = _require_str(item, "sha256", where=where)
    if not SHA256_RE.match(digest):
        raise ManifestMalformed(f"{where}: sha256 must be 64 hex characters")

    if "bytes" not in item:
        raise ManifestMalformed(f"{where}: missing required field 'bytes'")
    size = item["bytes"]
    # bool is an int subclass
    if isinstance(size, bool) or not isinstance(size, int) or size < 0:
        raise ManifestMalformed(f"{where}: bytes must be a non-negative integer")

    action = _require_str(item, "action", default=DEFAULT_ACTION, where=where)
    return FileEntry(path=path, sha256=digest.lower(), size_bytes=size, action=action)


def parse_manifest(raw: bytes) -> Manifest:
    try:
        data = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise ManifestMalformed(f"Invalid JSON in manifest: {e}") from e

    if not isinstance(data, dict):
        raise ManifestMalformed("manifest: top level must be an object")

    version = _require_str(data, "version").strip()
    if not _is_safe_version(version):
        raise ManifestMalformed(f"manifest: version {version!r} is not a valid release name")

    previous_version = _require_str(data, "previous_version", default=DEFAULT_PREVIOUS_VERSION)
    update_type = _require_str(data, "update_type", default=DEFAULT_UPDATE_TYPE)
    if update_type not in SUPPORTED_UPDATE_TYPES:
        raise ManifestMalformed(f"manifest: unsupported update_type {update_type!r}")

    if "files" not in data:
        raise ManifestMalformed("manifest: missing required field 'files'")
    files = data["files"]
    if not isinstance(files, list):
        raise ManifestMalformed("manifest: field 'files' must be a list")

    entries: list[FileEntry] = []
    seen: set[str] = set()
    parents: set[str] = set()
    for index, item in enumerate(files):
        entry = _parse_entry(index, item)
        if entry.path in seen:
            raise ManifestMalformed(f"files[{index}]: duplicate path {entry.path!r}")
        entry_parents = {p.as_posix() for p in PurePosixPath(entry.path).parents if p.name}
        if entry.path in parents or entry_parents & seen:
            raise ManifestMalformed(f"files[{index}]: path {entry.path!r} is both a file and a directory")
        seen.add(entry.path)
        parents |= entry_parents
        entries.append(entry)

    return Manifest(
        version=version,
        previous_version=previous_version,
        update_type=update_type,
        files=tuple(entries),
        raw=raw,
    )


def load_manifest(path: str | Path) -> Manifest:
    manifest_path = Path(path)
    if not manifest_path.is_file():
        raise ManifestMalformed(f"Manifest file not found: {manifest_path}")
    try:
        raw = manifest_path.read_bytes()
    except OSError as e:
        raise ManifestMalformed(f"Could not read manifest {manifest_path}: {e}") from e
    return parse_manifest(raw)
