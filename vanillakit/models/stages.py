"""Stage and request models: tagged stage configs, StageSpec, PipelineRequest.

Stage variety is modelled as a tagged union: every ``StageSpec`` carries a
``kind`` and a kind-specific configuration, dispatched through one
``run_stage``/``fingerprint`` contract (see ``vanillakit.stages.base``).
"""

from __future__ import annotations

import uuid
from enum import Enum
from typing import Annotated, Any, ClassVar, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator

from vanillakit.models.artifacts import ArtifactDescriptor, ContentHash, SOURCES_JAR


class StageKind(str, Enum):
    """Transform stage variants."""

    EXTRACT = "extract"
    MERGE = "merge"
    REMAP = "remap"
    ACCESS_WIDEN = "access_widen"
    DECOMPILE = "decompile"


class Platform(str, Enum):
    """Which side of the distribution a request prepares."""

    CLIENT = "client"
    SERVER = "server"
    JOINED = "joined"  # client and server merged into one jar


class RequestState(str, Enum):
    """Per-request state machine."""

    PLANNED = "planned"
    RESOLVING_INPUTS = "resolving_inputs"
    EXECUTING = "executing"
    CACHED = "cached"
    FAILED = "failed"
    CANCELLED = "cancelled"


# Valid state transitions — enforced by RequestStateMachine.
# EXECUTING -> EXECUTING advances to the next stage of the chain.
# Terminal states (CACHED, FAILED, CANCELLED) have no outgoing transitions.
VALID_TRANSITIONS: dict[RequestState, set[RequestState]] = {
    RequestState.PLANNED: {
        RequestState.RESOLVING_INPUTS,
        RequestState.FAILED,
        RequestState.CANCELLED,
    },
    RequestState.RESOLVING_INPUTS: {
        RequestState.EXECUTING,
        RequestState.CACHED,  # empty chain: the target is a raw artifact
        RequestState.FAILED,
        RequestState.CANCELLED,
    },
    RequestState.EXECUTING: {
        RequestState.EXECUTING,
        RequestState.CACHED,
        RequestState.FAILED,
        RequestState.CANCELLED,
    },
    RequestState.CACHED: set(),  # terminal
    RequestState.FAILED: set(),  # terminal
    RequestState.CANCELLED: set(),  # terminal
}

TERMINAL_STATES: frozenset[RequestState] = frozenset(
    state for state, targets in VALID_TRANSITIONS.items() if not targets
)


# ---------------------------------------------------------------------------
# Stage configurations
# ---------------------------------------------------------------------------


class _StageConfigBase(BaseModel):
    """Common behaviour for stage configurations.

    ``cosmetic_fields`` names options that never change the produced bytes;
    they are excluded from the fingerprint so tweaking them reuses the cache.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    cosmetic_fields: ClassVar[frozenset[str]] = frozenset()

    def fingerprint_payload(self) -> dict[str, Any]:
        """The output-affecting subset of this config, as plain JSON data."""
        return self.model_dump(mode="json", exclude=set(self.cosmetic_fields))


class ExtractConfig(_StageConfigBase):
    """Unwrap a bundler-format server jar.  No options."""

    kind: Literal["extract"] = "extract"


class MergeConfig(_StageConfigBase):
    """Merge client and server jars.

    ``server_only`` lists glob patterns of entries where the server copy wins
    when both archives contain the path.  Everywhere else the client wins.
    """

    kind: Literal["merge"] = "merge"
    server_only: list[str] = []


class RemapConfig(_StageConfigBase):
    """Apply one mapping layer to a jar."""

    kind: Literal["remap"] = "remap"
    provider: str
    mapping_version: str = ""
    source_namespace: str = "official"
    target_namespace: str = "named"
    require_full_coverage: bool = False
    strip_signatures: bool = True


class AccessWidenConfig(_StageConfigBase):
    """Widen access per one or more access-widener definitions (their text).

    ``namespace`` is the namespace of the jar being widened; every widener
    header must declare it.  Empty accepts any namespace.
    """

    kind: Literal["access_widen"] = "access_widen"
    wideners: list[str]
    namespace: str = ""


class DecompileConfig(_StageConfigBase):
    """Decompile every class of a jar into a sources jar."""

    kind: Literal["decompile"] = "decompile"
    engine: str = "skeleton"
    include_private: bool = True
    options: dict[str, str] = {}
    class_timeout_seconds: float | None = 30.0
    workers: int = Field(default=4, ge=1)

    cosmetic_fields: ClassVar[frozenset[str]] = frozenset(
        {"class_timeout_seconds", "workers"}
    )


StageConfig = Annotated[
    Union[ExtractConfig, MergeConfig, RemapConfig, AccessWidenConfig, DecompileConfig],
    Field(discriminator="kind"),
]


class StageSpec(BaseModel):
    """One step of a transform chain.  Stateless and reusable across runs."""

    model_config = ConfigDict(frozen=True)

    stage_id: str
    kind: StageKind
    input_roles: list[str]
    output_role: str
    config: StageConfig

    @model_validator(mode="after")
    def _kind_matches_config(self) -> StageSpec:
        if self.config.kind != self.kind.value:
            raise ValueError(
                f"Stage {self.stage_id!r} is {self.kind.value!r} "
                f"but carries a {self.config.kind!r} config"
            )
        return self


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------


class MappingSelection(BaseModel):
    """One mapping layer of a request.

    ``official`` mappings come from the version manifest and need no URL.
    Other providers name the mapping file explicitly.
    """

    model_config = ConfigDict(frozen=True)

    provider: str
    url: str | None = None
    hash: ContentHash | None = None
    size: int | None = None
    version: str = ""
    source_namespace: str = "official"
    target_namespace: str = "named"


class PipelineRequest(BaseModel):
    """Desired final role plus stage configuration for one version.

    Expanded once into an ordered chain of StageSpecs before execution.
    ``request_id`` identifies the request in logs and errors; it never takes
    part in cache keys.
    """

    model_config = ConfigDict(frozen=True)

    version_id: str
    platform: Platform = Platform.JOINED
    target_role: str = SOURCES_JAR
    mappings: list[MappingSelection] = []
    access_wideners: list[str] = []
    merge: MergeConfig = MergeConfig()
    decompiler: DecompileConfig = DecompileConfig()
    require_full_coverage: bool = False
    # Explicit chain replacing the default plan.
    stages: list[StageSpec] | None = None
    # Additional raw inputs available to custom chains, keyed by their role.
    artifacts: list[ArtifactDescriptor] = []
    request_id: str = Field(default_factory=lambda: uuid.uuid4().hex[:12])
