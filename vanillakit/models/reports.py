"""Diagnostics and pipeline result models.

Non-fatal outcomes (unmapped symbols, per-class decompile failures) are not
exceptions: they are ``Diagnostic`` records collected into the result and
persisted with the cached artifact so cache hits still report them.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class Severity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class DiagnosticKind(str, Enum):
    """What a diagnostic is about."""

    UNMAPPED_SYMBOL = "unmapped_symbol"
    DECOMPILE_FAILURE = "decompile_failure"
    DECOMPILE_TIMEOUT = "decompile_timeout"
    MERGE_OVERRIDE = "merge_override"
    SIGNATURE_STRIPPED = "signature_stripped"
    PASSTHROUGH = "passthrough"
    MALFORMED_CLASS = "malformed_class"


class Diagnostic(BaseModel):
    """One non-fatal finding from a stage run."""

    model_config = ConfigDict(frozen=True)

    severity: Severity = Severity.WARNING
    kind: DiagnosticKind
    stage_id: str = ""
    subject: str = ""
    message: str
    # Caused by run conditions (e.g. a timeout) rather than by the inputs.
    transient: bool = False

    def for_stage(self, stage_id: str) -> Diagnostic:
        """Copy of this diagnostic attributed to *stage_id*."""
        return self.model_copy(update={"stage_id": stage_id})


class StageRecord(BaseModel):
    """What happened to one stage (or raw input) during a request."""

    model_config = ConfigDict(frozen=True)

    stage_id: str
    kind: str  # stage kind, or "download" for raw inputs
    output_role: str
    key_digest: str
    sha256: str
    size: int
    cache_hit: bool
    duration_seconds: float = 0.0
    diagnostics: list[Diagnostic] = []


class PipelineResult(BaseModel):
    """Outcome of one successfully completed pipeline request."""

    model_config = ConfigDict(frozen=True)

    request_id: str
    version_id: str
    target_role: str
    final_key_digest: str
    final_sha256: str
    final_size: int
    state_history: list[str] = []
    inputs: list[StageRecord] = []
    stages: list[StageRecord] = []
    diagnostics: list[Diagnostic] = []
    fetch_count: int = 0
    execution_count: int = 0
    completed_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def all_cache_hits(self) -> bool:
        return self.fetch_count == 0 and self.execution_count == 0

    @property
    def warnings(self) -> list[Diagnostic]:
        return [d for d in self.diagnostics if d.severity != Severity.INFO]


class CacheVerificationReport(BaseModel):
    """Outcome of re-hashing every cache entry."""

    model_config = ConfigDict(frozen=True)

    checked: int = 0
    valid: int = 0
    evicted: list[str] = []  # key digests of removed entries
