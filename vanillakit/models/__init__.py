"""vanillakit data models — all Pydantic v2, all frozen (immutable)."""

from vanillakit.models.artifacts import (
    ArtifactDescriptor,
    CachedArtifact,
    CacheEntryMeta,
    CacheKey,
    ContentHash,
    ExportedArtifact,
    FetchResult,
)
from vanillakit.models.manifest import (
    Library,
    VersionClassifier,
    VersionIndex,
    VersionManifest,
    VersionReference,
)
from vanillakit.models.reports import (
    CacheVerificationReport,
    Diagnostic,
    DiagnosticKind,
    PipelineResult,
    Severity,
    StageRecord,
)
from vanillakit.models.stages import (
    VALID_TRANSITIONS,
    AccessWidenConfig,
    DecompileConfig,
    ExtractConfig,
    MappingSelection,
    MergeConfig,
    PipelineRequest,
    Platform,
    RemapConfig,
    RequestState,
    StageKind,
    StageSpec,
)

__all__ = [
    # artifacts
    "ArtifactDescriptor",
    "CachedArtifact",
    "CacheEntryMeta",
    "CacheKey",
    "ContentHash",
    "ExportedArtifact",
    "FetchResult",
    # manifest
    "Library",
    "VersionClassifier",
    "VersionIndex",
    "VersionManifest",
    "VersionReference",
    # reports
    "CacheVerificationReport",
    "Diagnostic",
    "DiagnosticKind",
    "PipelineResult",
    "Severity",
    "StageRecord",
    # stages
    "VALID_TRANSITIONS",
    "AccessWidenConfig",
    "DecompileConfig",
    "ExtractConfig",
    "MappingSelection",
    "MergeConfig",
    "PipelineRequest",
    "Platform",
    "RemapConfig",
    "RequestState",
    "StageKind",
    "StageSpec",
]
