"""Unit tests for the PipelineOrchestrator.

Covers planning against a resolved manifest, Merkle cache keys, lazy
downloads, cache reuse across runs and orchestrators, failure wrapping,
cancellation and delivery of the final artifact.
"""

from __future__ import annotations

import copy
import hashlib
from collections.abc import Callable
from pathlib import Path

import pytest

from tests.conftest import WIDENER_TEXT, FakeDownloader, Game, build_game, make_jar
from vanillakit.core.errors import (
    ArtifactUnavailableError,
    NotFoundError,
    PipelineStageError,
    PlanningError,
    RequestCancelledError,
    TargetNotFoundError,
    UnknownVersionError,
)
from vanillakit.core.orchestrator import CancelToken, PipelineOrchestrator
from vanillakit.jvm.archive import read_entries
from vanillakit.models.artifacts import (
    CLIENT_JAR,
    SERVER_JAR,
    SOURCES_JAR,
    ArtifactDescriptor,
    CacheKey,
    ContentHash,
)
from vanillakit.models.reports import DiagnosticKind
from vanillakit.models.stages import (
    DecompileConfig,
    MappingSelection,
    PipelineRequest,
    Platform,
    StageKind,
    StageSpec,
)

OrchestratorFactory = Callable[..., PipelineOrchestrator]


def _request(version_id: str = "1.0", **overrides) -> PipelineRequest:
    fields = {"version_id": version_id, "mappings": [MappingSelection(provider="official")]}
    fields.update(overrides)
    return PipelineRequest(**fields)


# ---------------------------------------------------------------------------
# Test: First run and cache reuse
# ---------------------------------------------------------------------------


class TestRunAndReuse:
    """A request executes once; identical requests are served from the cache."""

    def test_first_run_downloads_and_executes(
        self, orchestrator: PipelineOrchestrator, downloader: FakeDownloader, game: Game
    ):
        result = orchestrator.run(_request())
        assert [s.stage_id for s in result.stages] == ["extract", "merge", "remap.0", "decompile"]
        assert result.fetch_count == 4
        assert result.execution_count == 4
        assert not any(s.cache_hit for s in result.stages)
        assert result.state_history == [
            "planned",
            "resolving_inputs",
            "executing",
            "executing",
            "executing",
            "executing",
            "cached",
        ]
        assert sorted(r.output_role for r in result.inputs) == [
            "client-jar",
            "client-mappings",
            "server-jar",
            "server-mappings",
        ]
        for url in game.urls.values():
            assert downloader.count(url) == 1
        assert result.target_role == SOURCES_JAR

    def test_second_run_is_all_cache_hits(self, orchestrator: PipelineOrchestrator):
        first = orchestrator.run(_request())
        second = orchestrator.run(_request())
        assert second.all_cache_hits
        assert second.inputs == []
        assert all(s.cache_hit for s in second.stages)
        assert second.final_key_digest == first.final_key_digest
        assert second.final_sha256 == first.final_sha256
        assert second.request_id != first.request_id

    def test_new_orchestrator_reuses_cache(
        self, make_orchestrator: OrchestratorFactory, game: Game
    ):
        make_orchestrator(game).run(_request())
        fresh_downloader = FakeDownloader(game.files)
        result = make_orchestrator(game, fresh_downloader).run(_request())
        assert result.all_cache_hits
        assert fresh_downloader.calls == []

    def test_force_refresh_reexecutes_stages_only(
        self, make_orchestrator: OrchestratorFactory, game: Game
    ):
        make_orchestrator(game).run(_request())
        result = make_orchestrator(game, force_refresh=True).run(_request())
        assert result.execution_count == 4
        assert result.fetch_count == 0

    def test_final_artifact_delivery(self, orchestrator: PipelineOrchestrator, tmp_path: Path):
        result = orchestrator.run(_request())
        data = orchestrator.read_bytes(result)
        assert hashlib.sha256(data).hexdigest() == result.final_sha256
        assert set(read_entries(data)) == {
            "net/example/Counter.java",
            "net/example/SubCounter.java",
            "net/example/server/Dedicated.java",
        }
        exported = orchestrator.export(result, tmp_path / "out" / "sources.jar")
        assert exported.path.read_bytes() == data
        assert exported.size == result.final_size

    def test_raw_target(self, orchestrator: PipelineOrchestrator, game: Game):
        result = orchestrator.run(PipelineRequest(version_id="1.0", target_role=CLIENT_JAR))
        assert result.stages == []
        assert result.state_history == ["planned", "resolving_inputs", "cached"]
        assert result.final_sha256 == hashlib.sha256(game.client_jar).hexdigest()
        assert result.fetch_count == 1

    def test_client_chain_fetches_only_what_it_needs(
        self, orchestrator: PipelineOrchestrator, downloader: FakeDownloader, game: Game
    ):
        orchestrator.run(_request(platform=Platform.CLIENT))
        assert downloader.count(game.urls["server"]) == 0
        assert downloader.count(game.urls["server_mappings"]) == 0

    def test_diagnostics_survive_cache_hits(
        self, make_orchestrator: OrchestratorFactory
    ):
        broken = build_game("1.1", malformed=True)
        orchestrator = make_orchestrator(broken)
        first = orchestrator.run(_request("1.1"))
        second = orchestrator.run(_request("1.1"))
        for result in (first, second):
            failures = [d for d in result.diagnostics if d.kind is DiagnosticKind.DECOMPILE_FAILURE]
            assert [d.subject for d in failures] == ["broken.class"]
            assert failures[0].stage_id == "decompile"
        assert second.all_cache_hits


# ---------------------------------------------------------------------------
# Test: Cache keys
# ---------------------------------------------------------------------------


class TestKeys:
    """Keys change exactly where the configuration or the inputs change."""

    def _keys(self, orchestrator: PipelineOrchestrator, request: PipelineRequest) -> dict[str, CacheKey]:
        return orchestrator.compute_keys(*orchestrator.plan(request))

    def test_raw_keys_use_declared_hash(self, orchestrator: PipelineOrchestrator, game: Game):
        keys = self._keys(orchestrator, _request())
        sha1 = hashlib.sha1(game.client_jar).hexdigest()
        assert keys[CLIENT_JAR].source == f"sha1:{sha1}"
        assert keys[CLIENT_JAR].chain == ""

    def test_downstream_only_invalidation(self, orchestrator: PipelineOrchestrator):
        base = self._keys(orchestrator, _request())
        changed = self._keys(orchestrator, _request(decompiler=DecompileConfig(include_private=False)))
        differing = {role for role in base if base[role] != changed[role]}
        assert differing == {SOURCES_JAR}

    def test_cosmetic_options_share_keys(self, orchestrator: PipelineOrchestrator):
        base = self._keys(orchestrator, _request())
        tuned = self._keys(orchestrator, _request(decompiler=DecompileConfig(workers=12)))
        assert base == tuned

    def test_request_id_not_part_of_keys(self, orchestrator: PipelineOrchestrator):
        assert self._keys(orchestrator, _request(request_id="one")) == self._keys(
            orchestrator, _request(request_id="two")
        )

    def test_different_game_bytes_different_keys(
        self, make_orchestrator: OrchestratorFactory, game: Game
    ):
        other = build_game("1.0", malformed=True)
        first = self._keys(make_orchestrator(game), _request())
        second = self._keys(make_orchestrator(other), _request())
        assert first[SERVER_JAR] == second[SERVER_JAR]
        assert first[CLIENT_JAR] != second[CLIENT_JAR]
        assert first["server-jar.extracted"] == second["server-jar.extracted"]
        assert first["merged-jar"] != second["merged-jar"]


class TestTransientOutcomes:
    """Outputs carrying a timeout are delivered but rebuilt on the next run."""

    def test_timed_out_decompile_is_rebuilt(
        self, orchestrator: PipelineOrchestrator, hanging_engine
    ):
        engine = hanging_engine("net/example/Counter")
        request = _request(
            decompiler=DecompileConfig(engine="hanging", workers=1, class_timeout_seconds=0.5)
        )
        first = orchestrator.run(request)
        (timeout,) = [d for d in first.diagnostics if d.kind is DiagnosticKind.DECOMPILE_TIMEOUT]
        assert timeout.subject == "net/example/Counter.class"
        assert timeout.transient
        assert "timed out" in read_entries(orchestrator.read_bytes(first))[
            "net/example/Counter.java"
        ].decode()

        engine.release.set()
        second = orchestrator.run(request)
        assert [s.cache_hit for s in second.stages] == [True, True, True, False]
        assert not any(d.transient for d in second.diagnostics)
        counter = read_entries(orchestrator.read_bytes(second))["net/example/Counter.java"]
        assert "public class Counter {" in counter.decode()

        third = orchestrator.run(request)
        assert third.all_cache_hits
        assert third.final_sha256 == second.final_sha256


# ---------------------------------------------------------------------------
# Test: Failures
# ---------------------------------------------------------------------------


class TestFailures:
    """Failures name the stage and role and leave nothing half-cached."""

    def test_missing_official_mappings(self, make_orchestrator: OrchestratorFactory):
        old = build_game("0.9")
        manifest = copy.deepcopy(old.manifest)
        del manifest["downloads"]["client_mappings"]
        del manifest["downloads"]["server_mappings"]
        orchestrator = make_orchestrator(old)
        orchestrator.resolver.inject(manifest)
        with pytest.raises(PipelineStageError) as info:
            orchestrator.run(_request("0.9"))
        assert info.value.stage_id == "plan"
        assert isinstance(info.value.cause, ArtifactUnavailableError)
        assert "1.14.4" in str(info.value)

    def test_mapping_layer_needs_url(self, orchestrator: PipelineOrchestrator):
        with pytest.raises(PipelineStageError) as info:
            orchestrator.run(_request(mappings=[MappingSelection(provider="tiny")]))
        assert isinstance(info.value.cause, PlanningError)

    def test_unknown_provider_fails_before_downloads(
        self, orchestrator: PipelineOrchestrator, downloader: FakeDownloader
    ):
        with pytest.raises(PipelineStageError) as info:
            orchestrator.run(_request(mappings=[MappingSelection(provider="yarn")]))
        assert info.value.stage_id == "plan"
        assert isinstance(info.value.cause, PlanningError)
        assert "yarn" in str(info.value)
        assert downloader.calls == []

    def test_unknown_version_offline(self, make_orchestrator: OrchestratorFactory, game: Game):
        orchestrator = make_orchestrator(game, offline=True)
        with pytest.raises(PipelineStageError) as info:
            orchestrator.run(_request("9.9"))
        assert isinstance(info.value.cause, UnknownVersionError)

    def test_download_failure_names_role(self, make_orchestrator: OrchestratorFactory, game: Game):
        files = {url: data for url, data in game.files.items() if url != game.urls["server"]}
        orchestrator = make_orchestrator(game, FakeDownloader(files))
        with pytest.raises(PipelineStageError) as info:
            orchestrator.run(_request())
        assert (info.value.stage_id, info.value.role) == ("fetch", SERVER_JAR)
        assert isinstance(info.value.cause, NotFoundError)

    def test_stage_failure_keeps_upstream_cached(self, orchestrator: PipelineOrchestrator):
        widener = "accessWidener v2 named\naccessible class net/example/Missing\n"
        with pytest.raises(PipelineStageError) as info:
            orchestrator.run(_request(access_wideners=[widener]))
        assert (info.value.stage_id, info.value.role) == ("access_widen", "widened-jar")
        assert isinstance(info.value.cause, TargetNotFoundError)

        result = orchestrator.run(_request())
        assert result.fetch_count == 0
        assert [s.cache_hit for s in result.stages] == [True, True, True, False]

    def test_cancelled_before_start(self, orchestrator: PipelineOrchestrator, downloader: FakeDownloader):
        token = CancelToken()
        token.cancel()
        with pytest.raises(RequestCancelledError):
            orchestrator.run(_request(), token)
        assert downloader.calls == []


# ---------------------------------------------------------------------------
# Test: Custom chains and parallel requests
# ---------------------------------------------------------------------------


class TestCustomAndParallel:
    def test_request_provided_artifact(self, make_orchestrator: OrchestratorFactory, game: Game):
        extra = make_jar({"notes.txt": b"no classes here"})
        url = "https://mods.example.invalid/extra.jar"
        downloader = FakeDownloader({**game.files, url: extra})
        orchestrator = make_orchestrator(game, downloader)
        request = PipelineRequest(
            version_id="1.0",
            target_role="extra-sources",
            artifacts=[
                ArtifactDescriptor(
                    id="extra",
                    url=url,
                    role="extra-jar",
                    hash=ContentHash.parse(f"sha256:{hashlib.sha256(extra).hexdigest()}"),
                )
            ],
            stages=[
                StageSpec(
                    stage_id="decompile-extra",
                    kind=StageKind.DECOMPILE,
                    input_roles=["extra-jar"],
                    output_role="extra-sources",
                    config=DecompileConfig(),
                )
            ],
        )
        result = orchestrator.run(request)
        assert [s.stage_id for s in result.stages] == ["decompile-extra"]
        assert downloader.calls == [url]
        assert read_entries(orchestrator.read_bytes(result)) == {}

    def test_run_many_reports_each_outcome(self, orchestrator: PipelineOrchestrator):
        outcomes = orchestrator.run_many([
            _request(platform=Platform.CLIENT),
            _request(platform=Platform.SERVER),
            _request("9.9"),
        ])
        assert outcomes[0].target_role == SOURCES_JAR
        assert outcomes[1].target_role == SOURCES_JAR
        assert isinstance(outcomes[2], PipelineStageError)

    def test_widener_changes_rerun_downstream_only(self, orchestrator: PipelineOrchestrator):
        orchestrator.run(_request(access_wideners=[WIDENER_TEXT]))
        edited = WIDENER_TEXT.replace("mutable field net/example/Counter count I\n", "")
        result = orchestrator.run(_request(access_wideners=[edited]))
        executed = [s.stage_id for s in result.stages if not s.cache_hit]
        assert executed == ["access_widen", "decompile"]
        assert result.fetch_count == 0
