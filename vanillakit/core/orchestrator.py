"""Pipeline orchestrator — the central coordinator for vanillakit requests.

The orchestrator wires together the VersionManifestResolver, the chain
planner, the RequestStateMachine, the ArtifactCache and the stage registry
into one execution engine:

    Planned -> Resolving-Inputs -> Executing(stage 1..n) -> Cached
                                                        \\-> Failed / Cancelled

Cache keys are Merkle-chained: a stage's key folds in the keys of its
inputs plus its own configuration fingerprint, so any upstream change
invalidates everything downstream and nothing upstream.  Raw artifacts are
downloaded lazily, only when a stage that needs them actually executes.
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path

from vanillakit.config import KitConfig
from vanillakit.core.artifact_store import ArtifactCache, CacheMissError
from vanillakit.core.errors import (
    ArtifactUnavailableError,
    PipelineStageError,
    PlanningError,
    RequestCancelledError,
)
from vanillakit.core.hasher import compute_chain_fingerprint, compute_source_digest
from vanillakit.core.planner import ChainPlan, plan_chain
from vanillakit.core.stage_machine import RequestStateMachine
from vanillakit.mappings import MANIFEST_PROVIDERS
from vanillakit.models.artifacts import (
    CLIENT_JAR,
    CLIENT_MAPPINGS,
    SERVER_JAR,
    SERVER_MAPPINGS,
    ArtifactDescriptor,
    CachedArtifact,
    CacheKey,
    ExportedArtifact,
    mapping_role,
)
from vanillakit.models.reports import Diagnostic, PipelineResult, Severity, StageRecord
from vanillakit.models.stages import PipelineRequest, RequestState, StageSpec
from vanillakit.network import get_downloader
from vanillakit.network.base import Downloader
from vanillakit.resolver.version_manifest import VersionManifestResolver
from vanillakit.stages import StageContext, get_stage

logger = logging.getLogger(__name__)

# Roles every plan may reference; availability is checked per version.
KNOWN_RAW_ROLES: frozenset[str] = frozenset(
    {CLIENT_JAR, SERVER_JAR, CLIENT_MAPPINGS, SERVER_MAPPINGS}
)

_MAPPINGS_HINT = "Official mappings are published for 1.14.4 and later only."


class CancelToken:
    """Cooperative cancellation flag, checked between stages.

    A stage that is already executing always finishes and is cached, so
    other requests waiting on the same key are never affected.
    """

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


@dataclass
class _RunState:
    """Book-keeping for one request execution."""

    request: PipelineRequest
    machine: RequestStateMachine
    descriptors: dict[str, ArtifactDescriptor]
    keys: dict[str, CacheKey] = field(default_factory=dict)
    done: dict[str, CachedArtifact] = field(default_factory=dict)
    inputs: list[StageRecord] = field(default_factory=list)
    stages: list[StageRecord] = field(default_factory=list)
    fetch_count: int = 0
    execution_count: int = 0


class PipelineOrchestrator:
    """Plans, keys and executes pipeline requests against one cache root.

    Parameters
    ----------
    config:
        Settings; uses defaults (and ``VANILLAKIT_*`` env vars) if not provided.
    cache:
        Artifact cache.  Created at ``config.cache_root`` if not provided.
    downloader:
        HTTP backend.  Built from ``config.http_backend`` if not provided.
    resolver:
        Version manifest resolver sharing the cache and downloader.
    """

    def __init__(
        self,
        config: KitConfig | None = None,
        *,
        cache: ArtifactCache | None = None,
        downloader: Downloader | None = None,
        resolver: VersionManifestResolver | None = None,
    ) -> None:
        self.config = config or KitConfig()
        self.cache = cache or ArtifactCache(
            self.config.cache_root, lock_timeout=self.config.lock_timeout_seconds
        )
        self.downloader = downloader or get_downloader(self.config.http_backend, self.config)
        self.resolver = resolver or VersionManifestResolver(
            self.cache,
            self.downloader,
            manifest_url=self.config.manifest_url,
            ttl_seconds=self.config.manifest_ttl_seconds,
            offline=self.config.offline,
        )

    # ------------------------------------------------------------------
    # Planning
    # ------------------------------------------------------------------

    def raw_descriptors(self, request: PipelineRequest) -> dict[str, ArtifactDescriptor]:
        """Raw artifacts available to *request*, keyed by role."""
        manifest = self.resolver.resolve(request.version_id)
        descriptors = dict(manifest.artifacts())
        for index, selection in enumerate(request.mappings):
            if selection.provider in MANIFEST_PROVIDERS:
                continue
            if not selection.url:
                raise PlanningError(
                    f"Mapping layer {index} ({selection.provider}) needs a URL"
                )
            role = mapping_role(index)
            descriptors[role] = ArtifactDescriptor(
                id=f"{selection.provider}-{selection.version or index}",
                url=selection.url,
                role=role,
                size=selection.size,
                hash=selection.hash,
            )
        for descriptor in request.artifacts:
            descriptors[descriptor.role] = descriptor
        return descriptors

    def plan(self, request: PipelineRequest) -> tuple[ChainPlan, dict[str, ArtifactDescriptor]]:
        """Expand *request* and check that every raw input is available."""
        descriptors = self.raw_descriptors(request)
        known = set(descriptors) | KNOWN_RAW_ROLES
        plan = plan_chain(request, known)
        for role in plan.raw_roles:
            if role not in descriptors:
                hint = _MAPPINGS_HINT if role in (CLIENT_MAPPINGS, SERVER_MAPPINGS) else ""
                raise ArtifactUnavailableError(request.version_id, role, hint)
        return plan, descriptors

    # ------------------------------------------------------------------
    # Keys
    # ------------------------------------------------------------------

    def compute_keys(
        self, plan: ChainPlan, descriptors: dict[str, ArtifactDescriptor]
    ) -> dict[str, CacheKey]:
        """CacheKey of every raw input and stage output of *plan*, by role."""
        keys: dict[str, CacheKey] = {
            role: CacheKey.for_descriptor(descriptors[role]) for role in plan.raw_roles
        }
        for spec in plan.stages:
            upstream = [keys[role] for role in spec.input_roles]
            stage = get_stage(spec.kind)
            keys[spec.output_role] = CacheKey(
                role=spec.output_role,
                source=compute_source_digest([k.digest for k in upstream]),
                chain=compute_chain_fingerprint(
                    [k.chain for k in upstream], spec.kind.value, stage.fingerprint(spec.config)
                ),
            )
        return keys

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def run(self, request: PipelineRequest, cancel: CancelToken | None = None) -> PipelineResult:
        """Execute *request* and return its result.

        Raises ``PipelineStageError`` (naming the failing stage and role)
        or ``RequestCancelledError``.
        """
        machine = RequestStateMachine(request.request_id)
        logger.info(
            "request %s: %s %s -> %s",
            request.request_id,
            request.version_id,
            request.platform.value,
            request.target_role,
        )
        try:
            plan, descriptors = self.plan(request)
        except Exception as exc:
            machine.fail(detail="planning")
            raise PipelineStageError(request.request_id, "plan", request.target_role, exc) from exc

        state = _RunState(request=request, machine=machine, descriptors=descriptors)
        self._check_cancel(state, cancel)
        machine.transition(RequestState.RESOLVING_INPUTS)
        try:
            state.keys = self.compute_keys(plan, descriptors)
        except Exception as exc:
            machine.fail(detail="keys")
            raise PipelineStageError(request.request_id, "resolve", request.target_role, exc) from exc

        for spec in plan.stages:
            self._check_cancel(state, cancel)
            machine.transition(RequestState.EXECUTING, detail=spec.stage_id)
            self._ensure_stage(state, spec)

        final = self._ensure(state, plan.target_role)
        machine.transition(RequestState.CACHED)

        diagnostics: list[Diagnostic] = []
        for record in state.stages:
            diagnostics.extend(record.diagnostics)
        if any(d.severity is not Severity.INFO for d in diagnostics):
            logger.warning(
                "request %s finished with %d diagnostics", request.request_id, len(diagnostics)
            )
        return PipelineResult(
            request_id=request.request_id,
            version_id=request.version_id,
            target_role=plan.target_role,
            final_key_digest=final.key_digest,
            final_sha256=final.sha256,
            final_size=final.size,
            state_history=[s.value for s in machine.history],
            inputs=state.inputs,
            stages=state.stages,
            diagnostics=diagnostics,
            fetch_count=state.fetch_count,
            execution_count=state.execution_count,
        )

    def run_many(
        self, requests: list[PipelineRequest], cancel: CancelToken | None = None
    ) -> list[PipelineResult | Exception]:
        """Run independent requests in parallel; results and errors in order."""
        with ThreadPoolExecutor(
            max_workers=self.config.max_parallel_requests, thread_name_prefix="request"
        ) as pool:
            futures = [pool.submit(self.run, request, cancel) for request in requests]
            outcomes: list[PipelineResult | Exception] = []
            for future in futures:
                try:
                    outcomes.append(future.result())
                except Exception as exc:
                    outcomes.append(exc)
            return outcomes

    def _check_cancel(self, state: _RunState, cancel: CancelToken | None) -> None:
        if cancel is not None and cancel.cancelled:
            state.machine.cancel()
            logger.info("request %s cancelled", state.request.request_id)
            raise RequestCancelledError(f"Request {state.request.request_id} was cancelled")

    def _ensure(self, state: _RunState, role: str) -> CachedArtifact:
        """Cached handle for *role*, fetching a raw artifact on first use."""
        handle = state.done.get(role)
        if handle is not None:
            return handle
        if role in state.descriptors:
            return self._ensure_raw(state, role)
        raise PlanningError(f"Role {role!r} requested before the stage producing it ran")

    def _ensure_raw(self, state: _RunState, role: str) -> CachedArtifact:
        descriptor = state.descriptors[role]
        key = state.keys.get(role) or CacheKey.for_descriptor(descriptor)

        def download(destination: Path) -> None:
            logger.info("Downloading %s from %s", role, descriptor.url)
            self.downloader.fetch(
                descriptor.url,
                destination,
                expected_hash=descriptor.hash,
                expected_size=descriptor.size,
            )
            state.fetch_count += 1

        started = time.monotonic()
        try:
            handle = self.cache.get_or_fetch(key, download)
        except Exception as exc:
            state.machine.fail(detail=f"fetch {role}")
            raise PipelineStageError(state.request.request_id, "fetch", role, exc) from exc
        state.done[role] = handle
        state.inputs.append(
            StageRecord(
                stage_id="fetch",
                kind="download",
                output_role=role,
                key_digest=handle.key_digest,
                sha256=handle.sha256,
                size=handle.size,
                cache_hit=handle.hit,
                duration_seconds=time.monotonic() - started,
            )
        )
        return handle

    def _ensure_stage(self, state: _RunState, spec: StageSpec) -> CachedArtifact:
        key = state.keys[spec.output_role]
        stage = get_stage(spec.kind)
        context = StageContext(request_id=state.request.request_id, version_id=state.request.version_id)

        def produce(destination: Path) -> list[Diagnostic]:
            inputs = [self._input_bytes(state, role) for role in spec.input_roles]
            output = stage.run_stage(spec, inputs, context)
            destination.write_bytes(output.data)
            state.execution_count += 1
            return output.diagnostics

        started = time.monotonic()
        try:
            handle = self.cache.get_or_fetch(key, produce, refresh=self.config.force_refresh)
        except PipelineStageError as exc:
            if exc.request_id == state.request.request_id:
                raise
            # Error raised by another request's producer for a shared key.
            state.machine.fail(detail=spec.stage_id)
            raise PipelineStageError(
                state.request.request_id, exc.stage_id, exc.role, exc.cause
            ) from exc.cause
        except Exception as exc:
            state.machine.fail(detail=spec.stage_id)
            logger.error("request %s: stage %s failed: %s", state.request.request_id, spec.stage_id, exc)
            raise PipelineStageError(
                state.request.request_id, spec.stage_id, spec.output_role, exc
            ) from exc

        state.done[spec.output_role] = handle
        state.stages.append(
            StageRecord(
                stage_id=spec.stage_id,
                kind=spec.kind.value,
                output_role=spec.output_role,
                key_digest=handle.key_digest,
                sha256=handle.sha256,
                size=handle.size,
                cache_hit=handle.hit,
                duration_seconds=time.monotonic() - started,
                diagnostics=handle.diagnostics,
            )
        )
        logger.info(
            "request %s: %s %s (%s)",
            state.request.request_id,
            spec.stage_id,
            "cache hit" if handle.hit else "executed",
            handle.key.short(),
        )
        return handle

    def _input_bytes(self, state: _RunState, role: str) -> bytes:
        handle = self._ensure(state, role)
        return self.cache.read_bytes(handle.key)

    # ------------------------------------------------------------------
    # Delivery
    # ------------------------------------------------------------------

    def _final_key(self, result: PipelineResult) -> CacheKey:
        key = self.cache.key_for_digest(result.final_key_digest)
        if key is None:
            raise CacheMissError(
                f"Final artifact of request {result.request_id} is no longer cached"
            )
        return key

    def read_bytes(self, result: PipelineResult) -> bytes:
        """Final artifact bytes of a completed request."""
        return self.cache.read_bytes(self._final_key(result))

    def export(self, result: PipelineResult, destination: Path) -> ExportedArtifact:
        """Copy the final artifact of a completed request to *destination*."""
        return self.cache.export(self._final_key(result), destination)

    def close(self) -> None:
        self.downloader.close()
