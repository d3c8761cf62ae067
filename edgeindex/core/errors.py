from __future__ import annotations

from typing import Optional


class UpdaterError(Exception):
    """Base class for release update failures."""

    phase: Optional[str] = None


class HardUpdateError(UpdaterError):
    """Pre-swap failure. Nothing live was mutated."""


class SoftUpdateError(UpdaterError):
    """Post-swap failure. The swap already committed and is not undone."""


class ManifestMalformed(HardUpdateError):
    """Manifest is missing, not valid JSON, or structurally invalid."""


class SignatureInvalid(HardUpdateError):
    """Detached manifest signature could not be verified."""


class SourceFileMissing(HardUpdateError):
    def __init__(self, path: str, source: str):
        super().__init__(f"Source file not found for {path}: {source}")
        self.path = path
        self.source = source


class _DigestError(HardUpdateError):
    label = "Hash mismatch"

    def __init__(self, path: str, expected: str, actual: str):
        super().__init__(f"{self.label} for {path} (expected {expected}, actual {actual})")
        self.path = path
        self.expected = expected
        self.actual = actual


class HashMismatch(_DigestError):
    label = "Hash mismatch"


class CopyVerificationFailed(_DigestError):
    label = "Copy verification failed"


class ReleaseAlreadyExists(HardUpdateError):
    def __init__(self, version: str, path: str):
        super().__init__(f"Release {version} already exists: {path}")
        self.version = version
        self.path = path


class RequiredArtifactMissing(HardUpdateError):
    """A required file is absent from the staged release."""


class StagedArtifactInvalid(HardUpdateError):
    """Staged index failed its read-only smoke check."""


class UpdateInProgress(HardUpdateError):
    """Another update run holds the releases lock."""


class SwapFailed(HardUpdateError):
    """The temporary pointer could not be installed; current is unchanged."""


class PostSwapVerificationFailed(SoftUpdateError):
    pass


class MetadataWriteFailed(SoftUpdateError):
    pass


class RetentionPruneFailed(SoftUpdateError):
    pass


class ConfigError(ValueError):
    """Invalid updater configuration."""
