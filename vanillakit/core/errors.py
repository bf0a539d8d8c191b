"""Error taxonomy shared by the downloader, cache, resolver, stages and orchestrator.

Retry semantics live with the raiser: only ``NetworkError`` is retried, and only
inside the Downloader.  Everything else propagates to the orchestrator, which
wraps it in ``PipelineStageError`` with the failing stage and role attached.
"""

from __future__ import annotations


class VanillaKitError(RuntimeError):
    """Base class for every error raised by vanillakit."""


# ---------------------------------------------------------------------------
# Network
# ---------------------------------------------------------------------------


class NetworkError(VanillaKitError):
    """Transient transport failure (reset, timeout, 5xx).  Retryable."""

    def __init__(self, url: str, message: str, *, status_code: int | None = None) -> None:
        super().__init__(f"{url}: {message}")
        self.url = url
        self.status_code = status_code


class NotFoundError(VanillaKitError):
    """The remote answered 404/410 for a URL.  Never retried."""

    def __init__(self, url: str, status_code: int = 404) -> None:
        super().__init__(f"{url}: not found (HTTP {status_code})")
        self.url = url
        self.status_code = status_code


class AccessError(VanillaKitError):
    """The remote refused the request with a 4xx other than 404/410."""

    def __init__(self, url: str, status_code: int) -> None:
        super().__init__(f"{url}: access refused (HTTP {status_code})")
        self.url = url
        self.status_code = status_code


class IntegrityError(VanillaKitError):
    """Fetched or cached bytes do not match their declared hash or size."""

    def __init__(self, subject: str, expected: str, actual: str) -> None:
        super().__init__(
            f"Integrity check failed for {subject}: expected {expected}, got {actual}"
        )
        self.subject = subject
        self.expected = expected
        self.actual = actual


# ---------------------------------------------------------------------------
# Manifests and planning
# ---------------------------------------------------------------------------


class UnknownVersionError(VanillaKitError):
    """The requested version id is absent from the version index."""

    def __init__(self, version_id: str) -> None:
        super().__init__(f"Unknown version {version_id!r}")
        self.version_id = version_id


class ManifestParseError(VanillaKitError):
    """A manifest document is malformed or misses required fields."""


class ArtifactUnavailableError(VanillaKitError):
    """A version manifest does not provide an artifact role the plan needs."""

    def __init__(self, version_id: str, role: str, hint: str = "") -> None:
        message = f"Version {version_id} does not provide {role!r}"
        if hint:
            message = f"{message}. {hint}"
        super().__init__(message)
        self.version_id = version_id
        self.role = role


class PlanningError(VanillaKitError):
    """A pipeline request cannot be expanded into a valid stage chain."""


# ---------------------------------------------------------------------------
# Stages
# ---------------------------------------------------------------------------


class StageError(VanillaKitError):
    """Base for stage-specific input incompatibilities."""


class StageInputError(StageError):
    """A stage received inputs or configuration it cannot accept."""


class StructuralConflictError(StageError):
    """Merge found an entry whose shape differs between the two archives."""

    def __init__(self, path: str, detail: str) -> None:
        super().__init__(f"Structural conflict at {path!r}: {detail}")
        self.path = path


class TargetNotFoundError(StageError):
    """An access-widener entry names a class or member absent from the input."""

    def __init__(self, target: str) -> None:
        super().__init__(f"Access widener target not found: {target}")
        self.target = target


class MappingCoverageError(StageError):
    """Full mapping coverage was required but some symbols stayed unmapped."""

    def __init__(self, unmapped: list[str]) -> None:
        preview = ", ".join(unmapped[:10])
        more = f" (+{len(unmapped) - 10} more)" if len(unmapped) > 10 else ""
        super().__init__(f"{len(unmapped)} unmapped symbols: {preview}{more}")
        self.unmapped = unmapped


class MappingFormatError(StageError):
    """A mapping file could not be parsed."""


class WidenerFormatError(StageError):
    """An access widener definition could not be parsed."""


class StageExecutionError(StageError):
    """Unexpected failure inside a stage's ``execute()``."""


# ---------------------------------------------------------------------------
# Orchestration
# ---------------------------------------------------------------------------


class PipelineStageError(VanillaKitError):
    """A pipeline request failed; names the originating stage and role.

    The underlying error is chained as ``__cause__``.
    """

    def __init__(self, request_id: str, stage_id: str, role: str, cause: BaseException) -> None:
        super().__init__(
            f"Request {request_id} failed at stage {stage_id!r} "
            f"(producing {role!r}): {cause}"
        )
        self.request_id = request_id
        self.stage_id = stage_id
        self.role = role
        self.cause = cause


class RequestCancelledError(VanillaKitError):
    """The request was cancelled by its initiator before completion."""


class CacheLockTimeout(VanillaKitError):
    """Another process held the lock for a cache key for too long."""
