"""Verified, atomic promotion of a signed index release.

A run is a strict sequence of gates::

    lock -> manifest -> signature -> staging/integrity -> smoke check
         -> rollback pointer + atomic swap -> post-swap check -> retention -> metadata

Everything before the swap is a hard gate: on failure the half-built release
is removed and ``current``/``rollback`` are left exactly as they were. After the
swap nothing is undone; problems are recorded as soft failures on the report.
"""

from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List, Optional

from ..core.errors import (
    MetadataWriteFailed,
    PostSwapVerificationFailed,
    RetentionPruneFailed,
    SoftUpdateError,
    StagedArtifactInvalid,
    SwapFailed,
    UpdaterError,
)
from ..core.integrity import StagingCounters, stage_files
from ..core.manifest import Manifest, load_manifest
from ..core.signature import verify_signature_files
from ..utils.config import UpdaterConfig
from .lock import UpdateLock
from .metadata import METADATA_FILE_NAME, VersionMetadata, read_version_metadata, utc_timestamp, write_version_metadata
from .retention import list_releases, prune_releases
from .stager import check_required_artifacts, create_release_dir, smoke_check
from .swap import RELEASES_DIR_NAME, ReleasePointers, release_target, release_version_of

logger = logging.getLogger(__name__)


class UpdatePhase(str, Enum):
    VALIDATING = "validating"
    STAGING = "staging"
    SWAPPING = "swapping"
    FINALIZING = "finalizing"
    DONE = "done"


@dataclass
class UpdateContext:
    base_dir: Path
    manifest_path: Path
    signature_path: Path
    public_key_path: Path
    phase: UpdatePhase = UpdatePhase.VALIDATING
    manifest: Optional[Manifest] = None
    stage_dir: Optional[Path] = None
    stage_created: bool = False
    counters: StagingCounters = field(default_factory=StagingCounters)
    previous_target: Optional[str] = None
    previous_rollback: Optional[str] = None
    swapped: bool = False
    durable: bool = True

    @property
    def releases_dir(self) -> Path:
        return self.base_dir / RELEASES_DIR_NAME

    @property
    def source_dir(self) -> Path:
        return self.manifest_path.parent

    @property
    def metadata_path(self) -> Path:
        return self.base_dir / METADATA_FILE_NAME


@dataclass
class UpdateReport:
    version: str
    previous_version: str
    update_type: str
    phase: UpdatePhase
    swapped: bool
    files_count: int
    total_bytes: int
    rollback_target: Optional[str] = None
    pruned: List[str] = field(default_factory=list)
    soft_failures: List[SoftUpdateError] = field(default_factory=list)

    @property
    def post_swap_verified(self) -> bool:
        return not any(isinstance(f, PostSwapVerificationFailed) for f in self.soft_failures)


@dataclass(frozen=True)
class ReleaseStatus:
    current_version: Optional[str]
    rollback_version: Optional[str]
    releases: List[str]
    metadata: Optional[VersionMetadata]


class ReleaseUpdater:
    def __init__(self, config: Optional[UpdaterConfig] = None):
        self.config = (config or UpdaterConfig()).validate()
        self.base_dir = Path(self.config.base_dir)
        self.pointers = ReleasePointers(self.base_dir)

    def run(self, manifest_path: str | Path, signature_path: str | Path, public_key_path: str | Path) -> UpdateReport:
        ctx = UpdateContext(
            base_dir=self.base_dir,
            manifest_path=Path(manifest_path),
            signature_path=Path(signature_path),
            public_key_path=Path(public_key_path),
        )
        lock = UpdateLock(self.base_dir)
        try:
            lock.acquire()
        except UpdaterError as e:
            e.phase = ctx.phase.value
            logger.error("Update refused: %s", e)
            raise

        try:
            try:
                self._validate(ctx)
                self._stage(ctx)
                self._swap(ctx)
            except Exception as e:
                if isinstance(e, UpdaterError):
                    e.phase = ctx.phase.value
                    logger.error("Update failed during %s: %s", ctx.phase.value, e)
                else:
                    logger.exception("Unexpected error during %s", ctx.phase.value)
                self._discard_stage(ctx)
                raise
            return self._finalize(ctx)
        finally:
            lock.release()

    # --------------------------
    # Hard gates
    # --------------------------
    def _validate(self, ctx: UpdateContext) -> None:
        ctx.phase = UpdatePhase.VALIDATING
        manifest = load_manifest(ctx.manifest_path)
        logger.info(
            "Update %s -> %s (%s, %s files)",
            manifest.previous_version,
            manifest.version,
            manifest.update_type,
            len(manifest.files),
        )
        verify_signature_files(manifest.raw, ctx.signature_path, ctx.public_key_path)
        ctx.manifest = manifest

    def _stage(self, ctx: UpdateContext) -> None:
        ctx.phase = UpdatePhase.STAGING
        assert ctx.manifest is not None
        ctx.stage_dir = create_release_dir(ctx.releases_dir, ctx.manifest.version)
        ctx.stage_created = True

        ctx.counters = stage_files(ctx.manifest, ctx.source_dir, ctx.stage_dir, workers=self.config.hash_workers)
        check_required_artifacts(ctx.stage_dir, self.config.required_artifacts)
        if self.config.smoke_database:
            result = smoke_check(ctx.stage_dir / self.config.smoke_database, self.config.smoke_query)
            logger.info("Staged index valid (smoke check returned %s)", result)

    def _swap(self, ctx: UpdateContext) -> None:
        ctx.phase = UpdatePhase.SWAPPING
        assert ctx.manifest is not None
        ctx.previous_target = self.pointers.read_current()
        ctx.previous_rollback = self.pointers.read_rollback()

        if ctx.previous_target:
            self.pointers.set_rollback(ctx.previous_target)
        else:
            logger.warning("No existing current version to roll back to")

        try:
            ctx.durable = self.pointers.swap_current(release_target(ctx.manifest.version))
        except SwapFailed:
            self._restore_rollback(ctx)
            raise
        ctx.swapped = True

    def _restore_rollback(self, ctx: UpdateContext) -> None:
        if ctx.previous_rollback == self.pointers.read_rollback():
            return
        try:
            if ctx.previous_rollback:
                self.pointers.set_rollback(ctx.previous_rollback)
            else:
                self.pointers.clear_rollback()
        except (OSError, SwapFailed) as e:
            logger.error("Could not restore rollback pointer to %s: %s", ctx.previous_rollback, e)

    def _discard_stage(self, ctx: UpdateContext) -> None:
        if ctx.swapped or not ctx.stage_created or ctx.stage_dir is None:
            return
        try:
            shutil.rmtree(ctx.stage_dir)
            logger.info("Removed staging directory %s", ctx.stage_dir)
        except OSError as e:
            logger.error("Could not remove staging directory %s: %s", ctx.stage_dir, e)

    # --------------------------
    # Post-swap (soft)
    # --------------------------
    def _soft(self, report: UpdateReport, error: SoftUpdateError) -> None:
        error.phase = UpdatePhase.FINALIZING.value
        logger.warning("%s: %s", type(error).__name__, error)
        report.soft_failures.append(error)

    def _finalize(self, ctx: UpdateContext) -> UpdateReport:
        ctx.phase = UpdatePhase.FINALIZING
        manifest = ctx.manifest
        assert manifest is not None
        target = release_target(manifest.version)
        report = UpdateReport(
            version=manifest.version,
            previous_version=manifest.previous_version,
            update_type=manifest.update_type,
            phase=ctx.phase,
            swapped=True,
            files_count=ctx.counters.files_count,
            total_bytes=ctx.counters.total_bytes,
            rollback_target=ctx.previous_target,
        )

        if not ctx.durable:
            self._soft(report, PostSwapVerificationFailed(f"Directory fsync failed after swapping to {target}"))
        self._verify_post_swap(target, report)
        self._apply_retention(report)
        self._record_metadata(ctx, report)

        ctx.phase = UpdatePhase.DONE
        report.phase = ctx.phase
        logger.info(
            "Update complete: %s -> %s (%s files, %s bytes)",
            manifest.previous_version,
            manifest.version,
            report.files_count,
            report.total_bytes,
        )
        return report

    def _verify_post_swap(self, target: str, report: UpdateReport) -> None:
        if not self.pointers.verify_current(target):
            self._soft(report, PostSwapVerificationFailed(f"current does not point to {target}"))
            return
        if not self.config.smoke_database:
            return
        try:
            smoke_check(self.pointers.current / self.config.smoke_database, self.config.smoke_query)
        except StagedArtifactInvalid as e:
            self._soft(report, PostSwapVerificationFailed(f"New index may have issues (swap committed): {e}"))
            return
        logger.info("New index is operational")

    def _apply_retention(self, report: UpdateReport) -> None:
        try:
            result = prune_releases(
                self.base_dir / RELEASES_DIR_NAME,
                keep=self.config.retention_count,
                protected=self.pointers.protected_releases(),
                order=self.config.retention_order,
            )
        except OSError as e:
            self._soft(report, RetentionPruneFailed(f"Could not prune releases: {e}"))
            return
        report.pruned = result.removed
        if result.failed:
            names = ", ".join(sorted(result.failed))
            self._soft(report, RetentionPruneFailed(f"Could not remove old releases: {names}"))

    def _record_metadata(self, ctx: UpdateContext, report: UpdateReport) -> None:
        metadata = VersionMetadata(
            current_version=report.version,
            previous_version=report.previous_version,
            update_type=report.update_type,
            updated_at=utc_timestamp(),
            files_count=report.files_count,
            total_bytes=report.total_bytes,
        )
        try:
            write_version_metadata(ctx.metadata_path, metadata)
        except OSError as e:
            self._soft(report, MetadataWriteFailed(f"Could not write {ctx.metadata_path}: {e}"))

    # --------------------------
    # Status
    # --------------------------
    def status(self) -> ReleaseStatus:
        return ReleaseStatus(
            current_version=release_version_of(self.pointers.read_current()),
            rollback_version=release_version_of(self.pointers.read_rollback()),
            releases=[p.name for p in list_releases(self.base_dir / RELEASES_DIR_NAME, order=self.config.retention_order)],
            metadata=read_version_metadata(self.base_dir / METADATA_FILE_NAME),
        )


__all__ = [
    "ReleaseStatus",
    "ReleaseUpdater",
    "UpdateContext",
    "UpdatePhase",
    "UpdateReport",
]
