"""Expansion of a PipelineRequest into an ordered, validated stage chain.

The default chain for a request is::

    extract  server-jar                      -> server-jar.extracted   (server, joined)
    merge    client-jar, server-jar.extracted -> merged-jar            (joined)
    remap.N  <jar>, <mapping files>          -> remapped-jar           (one per mapping layer)
    access_widen <jar>                       -> widened-jar            (when wideners are given)
    decompile <jar>                          -> sources-jar

Custom chains are validated the same way: every input is produced by an
earlier stage or is a raw artifact, no role is produced twice, the graph
is acyclic (Kahn's algorithm) and the target role is reachable.  The plan
is trimmed to the stages the target actually needs.
"""

from __future__ import annotations

from collections import deque
from collections.abc import Collection
from dataclasses import dataclass

from vanillakit.core.errors import PlanningError, StageInputError
from vanillakit.mappings import MANIFEST_PROVIDERS, MAPPING_PROVIDERS
from vanillakit.models.artifacts import (
    CLIENT_JAR,
    CLIENT_MAPPINGS,
    EXTRACTED_SERVER_JAR,
    MERGED_JAR,
    REMAPPED_JAR,
    SERVER_JAR,
    SERVER_MAPPINGS,
    SOURCES_JAR,
    WIDENED_JAR,
    mapping_role,
)
from vanillakit.models.stages import (
    AccessWidenConfig,
    ExtractConfig,
    Platform,
    PipelineRequest,
    RemapConfig,
    StageKind,
    StageSpec,
)
from vanillakit.stages import STAGE_REGISTRY

OFFICIAL_NAMESPACE = "official"


@dataclass(frozen=True)
class ChainPlan:
    """An executable chain: stages in dependency order plus the raw inputs."""

    stages: list[StageSpec]
    raw_roles: list[str]
    target_role: str

    @property
    def produced_roles(self) -> list[str]:
        return [spec.output_role for spec in self.stages]


# ---------------------------------------------------------------------------
# Default chain
# ---------------------------------------------------------------------------


def _official_mapping_roles(platform: Platform) -> list[str]:
    if platform is Platform.CLIENT:
        return [CLIENT_MAPPINGS]
    if platform is Platform.SERVER:
        return [SERVER_MAPPINGS]
    return [CLIENT_MAPPINGS, SERVER_MAPPINGS]


def _check_provider(provider: str, where: str) -> None:
    if provider not in MAPPING_PROVIDERS:
        raise PlanningError(
            f"Unknown mapping provider {provider!r} in {where}. "
            f"Registered providers: {sorted(MAPPING_PROVIDERS.keys())}"
        )


def default_chain(request: PipelineRequest) -> list[StageSpec]:
    """The stage chain implied by the request's platform, mappings and wideners."""
    stages: list[StageSpec] = []
    platform = request.platform

    if platform is Platform.CLIENT:
        current = CLIENT_JAR
    else:
        stages.append(
            StageSpec(
                stage_id="extract",
                kind=StageKind.EXTRACT,
                input_roles=[SERVER_JAR],
                output_role=EXTRACTED_SERVER_JAR,
                config=ExtractConfig(),
            )
        )
        current = EXTRACTED_SERVER_JAR
    if platform is Platform.JOINED:
        stages.append(
            StageSpec(
                stage_id="merge",
                kind=StageKind.MERGE,
                input_roles=[CLIENT_JAR, EXTRACTED_SERVER_JAR],
                output_role=MERGED_JAR,
                config=request.merge,
            )
        )
        current = MERGED_JAR

    namespace = OFFICIAL_NAMESPACE
    layers = len(request.mappings)
    for index, selection in enumerate(request.mappings):
        _check_provider(selection.provider, f"mapping layer {index}")
        if selection.provider in MANIFEST_PROVIDERS:
            mapping_inputs = _official_mapping_roles(platform)
        else:
            mapping_inputs = [mapping_role(index)]
        if selection.provider == "parchment":
            source, target = namespace, namespace
        else:
            source, target = selection.source_namespace, selection.target_namespace
        output = REMAPPED_JAR if index == layers - 1 else f"{REMAPPED_JAR}.{index}"
        stages.append(
            StageSpec(
                stage_id=f"remap.{index}",
                kind=StageKind.REMAP,
                input_roles=[current, *mapping_inputs],
                output_role=output,
                config=RemapConfig(
                    provider=selection.provider,
                    mapping_version=selection.version,
                    source_namespace=source,
                    target_namespace=target,
                    require_full_coverage=request.require_full_coverage,
                ),
            )
        )
        current = output
        namespace = target

    if request.access_wideners:
        stages.append(
            StageSpec(
                stage_id="access_widen",
                kind=StageKind.ACCESS_WIDEN,
                input_roles=[current],
                output_role=WIDENED_JAR,
                config=AccessWidenConfig(wideners=list(request.access_wideners), namespace=namespace),
            )
        )
        current = WIDENED_JAR

    stages.append(
        StageSpec(
            stage_id="decompile",
            kind=StageKind.DECOMPILE,
            input_roles=[current],
            output_role=SOURCES_JAR,
            config=request.decompiler,
        )
    )
    return stages


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def _topological_order(stages: list[StageSpec]) -> list[StageSpec]:
    """Order stages so producers precede consumers (Kahn's algorithm).

    Ties keep the declared order.  Raises ``PlanningError`` on a cycle.
    """
    producer = {spec.output_role: i for i, spec in enumerate(stages)}
    dependents: dict[int, list[int]] = {i: [] for i in range(len(stages))}
    in_degree = {i: 0 for i in range(len(stages))}
    for i, spec in enumerate(stages):
        for role in spec.input_roles:
            if role in producer:
                dependents[producer[role]].append(i)
                in_degree[i] += 1

    queue = deque(i for i in range(len(stages)) if in_degree[i] == 0)
    order: list[int] = []
    while queue:
        node = queue.popleft()
        order.append(node)
        for dep in sorted(dependents[node]):
            in_degree[dep] -= 1
            if in_degree[dep] == 0:
                queue.append(dep)

    if len(order) != len(stages):
        stuck = sorted(stages[i].stage_id for i in in_degree if i not in order)
        raise PlanningError(f"Stage chain has a cycle involving {stuck}")
    return [stages[i] for i in order]


def _trim(stages: list[StageSpec], target_role: str) -> list[StageSpec]:
    producer = {spec.output_role: spec for spec in stages}
    needed: set[str] = set()
    queue = deque([target_role])
    while queue:
        role = queue.popleft()
        spec = producer.get(role)
        if spec is None or spec.stage_id in needed:
            continue
        needed.add(spec.stage_id)
        queue.extend(spec.input_roles)
    return [spec for spec in stages if spec.stage_id in needed]


def plan_chain(request: PipelineRequest, raw_roles: Collection[str]) -> ChainPlan:
    """Expand *request* into a validated chain.

    Parameters
    ----------
    request:
        The pipeline request; its explicit ``stages`` replace the default chain.
    raw_roles:
        Roles that can be obtained as raw artifacts (manifest downloads,
        request-provided descriptors).  Whether each one is actually
        available is checked when inputs are resolved.
    """
    stages = list(request.stages) if request.stages is not None else default_chain(request)
    raw = set(raw_roles)

    seen_ids: set[str] = set()
    seen_outputs: set[str] = set()
    for spec in stages:
        if spec.stage_id in seen_ids:
            raise PlanningError(f"Duplicate stage id {spec.stage_id!r}")
        seen_ids.add(spec.stage_id)
        if spec.output_role in seen_outputs:
            raise PlanningError(f"Role {spec.output_role!r} is produced by more than one stage")
        if spec.output_role in raw:
            raise PlanningError(f"Stage {spec.stage_id!r} would overwrite raw artifact {spec.output_role!r}")
        seen_outputs.add(spec.output_role)
        try:
            STAGE_REGISTRY[spec.kind].check_arity(spec.stage_id, len(spec.input_roles))
        except StageInputError as exc:
            raise PlanningError(str(exc)) from exc
        if isinstance(spec.config, RemapConfig):
            _check_provider(spec.config.provider, f"stage {spec.stage_id!r}")

    for spec in stages:
        for role in spec.input_roles:
            if role not in seen_outputs and role not in raw:
                raise PlanningError(
                    f"Stage {spec.stage_id!r} needs {role!r}, which no stage produces "
                    f"and no raw artifact provides"
                )

    ordered = _topological_order(stages)
    target = request.target_role
    if target not in seen_outputs and target not in raw:
        raise PlanningError(
            f"Target role {target!r} is not produced by the chain "
            f"(produces {sorted(seen_outputs)})"
        )
    trimmed = _trim(ordered, target)
    produced = {spec.output_role for spec in trimmed}
    needed_raw: list[str] = []
    for spec in trimmed:
        for role in spec.input_roles:
            if role not in produced and role not in needed_raw:
                needed_raw.append(role)
    if not trimmed and target not in needed_raw:
        needed_raw.append(target)
    return ChainPlan(stages=trimmed, raw_roles=needed_raw, target_role=target)
