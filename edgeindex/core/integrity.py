"""Per-file SHA-256 verification while copying a release into staging."""

from __future__ import annotations

import concurrent.futures
import hashlib
import logging
import os
import shutil
from dataclasses import dataclass
from pathlib import Path

from .errors import CopyVerificationFailed, HashMismatch, SourceFileMissing
from .manifest import FileEntry, Manifest

logger = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 1024


@dataclass
class StagingCounters:
    files_count: int = 0
    total_bytes: int = 0


def sha256_file(path: str | Path) -> str:
    hasher = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(CHUNK_SIZE), b""):
            hasher.update(chunk)
    return hasher.hexdigest().lower()


def _source_path(source_dir: Path, entry: FileEntry) -> Path:
    source = source_dir / entry.path
    try:
        resolved = source.resolve()
    except OSError as e:
        raise SourceFileMissing(entry.path, str(source)) from e
    if not resolved.is_relative_to(source_dir.resolve()) or not resolved.is_file():
        raise SourceFileMissing(entry.path, str(source))
    return source


def verify_source(source_dir: Path, entry: FileEntry) -> Path:
    source = _source_path(source_dir, entry)
    actual = sha256_file(source)
    if actual != entry.sha256:
        raise HashMismatch(entry.path, entry.sha256, actual)
    return source


def copy_verified(source: Path, target: Path, entry: FileEntry) -> None:
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(source, target)
        with open(target, "rb") as f:
            os.fsync(f.fileno())
        copied = sha256_file(target)
    except OSError as e:
        raise CopyVerificationFailed(entry.path, entry.sha256, f"unreadable copy ({e})") from e
    if copied != entry.sha256:
        raise CopyVerificationFailed(entry.path, entry.sha256, copied)


def _verify_sources_parallel(manifest: Manifest, source_dir: Path, workers: int) -> list[Path]:
    entries = list(manifest.files)
    with concurrent.futures.ThreadPoolExecutor(max_workers=min(workers, max(1, len(entries)))) as executor:
        futures = [executor.submit(verify_source, source_dir, entry) for entry in entries]
        for future in concurrent.futures.as_completed(futures):
            if future.exception() is not None:
                for pending in futures:
                    pending.cancel()
                break

    # Report the earliest-listed failure among the entries that ran.
    sources: list[Path] = []
    for entry, future in zip(entries, futures):
        if future.cancelled():
            continue
        error = future.exception()
        if isinstance(error, OSError):
            raise SourceFileMissing(entry.path, str(source_dir / entry.path)) from error
        if error is not None:
            raise error
        sources.append(future.result())
    return sources


def stage_files(manifest: Manifest, source_dir: str | Path, stage_dir: str | Path, workers: int = 1) -> StagingCounters:
    """Verify every manifest entry and copy it into ``stage_dir``.

    Entries are processed in manifest order and the first failure aborts.
    With ``workers > 1`` the source hashes are checked concurrently first;
    copies always run sequentially in this thread.
    """
    source_root = Path(source_dir)
    stage_root = Path(stage_dir)
    counters = StagingCounters()

    if workers > 1:
        sources = _verify_sources_parallel(manifest, source_root, workers)
    else:
        sources = []

    for index, entry in enumerate(manifest.files):
        logger.info("Processing %s (%s, %s bytes)", entry.path, entry.action, entry.size_bytes)
        if sources:
            source = sources[index]
        else:
            try:
                source = verify_source(source_root, entry)
            except OSError as e:
                raise SourceFileMissing(entry.path, str(source_root / entry.path)) from e
        copy_verified(source, stage_root / entry.path, entry)
        counters.files_count += 1
        counters.total_bytes += entry.size_bytes
        logger.debug("%s verified and staged", entry.path)

    logger.info("All files staged: %s files, %s bytes", counters.files_count, counters.total_bytes)
    return counters
