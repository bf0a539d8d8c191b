"""Adversarial tests — many callers racing for the same cache key.

These tests verify that:
1. Concurrent callers for one key run the producer exactly once
2. A producer failure reaches every waiter and caches nothing
3. Two cache instances over one root (separate processes) serialise on the file lock
4. Identical pipeline requests in parallel execute each stage once
"""

from __future__ import annotations

import threading
import time
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

import pytest

from tests.conftest import FakeDownloader, Game
from vanillakit.core.artifact_store import ArtifactCache
from vanillakit.core.errors import PipelineStageError
from vanillakit.models.artifacts import CacheKey
from vanillakit.models.stages import MappingSelection, PipelineRequest

WORKERS = 8
KEY = CacheKey(role="merged-jar", source="contested", chain="chain")


class _SlowProducer:
    """Writes *data* after a pause long enough for every racer to arrive."""

    def __init__(self, data: bytes = b"payload", error: Exception | None = None) -> None:
        self.data = data
        self.error = error
        self.runs = 0
        self._lock = threading.Lock()

    def __call__(self, destination: Path) -> None:
        with self._lock:
            self.runs += 1
        time.sleep(0.3)
        if self.error is not None:
            raise self.error
        destination.write_bytes(self.data)


def _race(caches: list[ArtifactCache], producer: _SlowProducer) -> list[object]:
    barrier = threading.Barrier(WORKERS)

    def call(index: int) -> object:
        barrier.wait()
        try:
            return caches[index % len(caches)].get_or_fetch(KEY, producer)
        except Exception as exc:
            return exc

    with ThreadPoolExecutor(max_workers=WORKERS) as pool:
        return list(pool.map(call, range(WORKERS)))


class TestSingleFlight:
    def test_one_producer_run(self, cache: ArtifactCache):
        producer = _SlowProducer()
        outcomes = _race([cache], producer)
        assert producer.runs == 1
        assert [o.hit for o in outcomes].count(False) == 1
        assert len({o.sha256 for o in outcomes}) == 1
        assert cache.read_bytes(KEY) == b"payload"

    def test_failure_reaches_every_waiter(self, cache: ArtifactCache):
        error = RuntimeError("producer exploded")
        producer = _SlowProducer(error=error)
        outcomes = _race([cache], producer)
        assert producer.runs == 1
        assert all(o is error for o in outcomes)
        assert cache.lookup(KEY) is None

        retry = cache.get_or_fetch(KEY, _SlowProducer(b"second try"))
        assert retry.hit is False

    def test_separate_instances_share_the_file_lock(self, tmp_path: Path):
        root = tmp_path / "shared"
        caches = [ArtifactCache(root, lock_timeout=30.0) for _ in range(2)]
        producer = _SlowProducer()
        outcomes = _race(caches, producer)
        assert producer.runs == 1
        assert all(not isinstance(o, Exception) for o in outcomes)
        assert caches[1].read_bytes(KEY) == b"payload"


class TestParallelRequests:
    REQUEST = dict(version_id="1.0", mappings=[MappingSelection(provider="official")])

    def test_identical_requests_build_once(self, make_orchestrator, game: Game):
        downloader = FakeDownloader(game.files)
        orchestrator = make_orchestrator(game, downloader)
        results = orchestrator.run_many([PipelineRequest(**self.REQUEST) for _ in range(4)])

        assert all(not isinstance(r, Exception) for r in results)
        assert sum(r.execution_count for r in results) == 4
        assert sum(r.fetch_count for r in results) == 4
        assert len({r.final_sha256 for r in results}) == 1
        for url in game.urls.values():
            assert downloader.count(url) == 1

    def test_shared_failure_names_each_request(self, make_orchestrator, game: Game):
        files = {url: data for url, data in game.files.items() if url != game.urls["client"]}
        orchestrator = make_orchestrator(game, FakeDownloader(files))
        requests = [PipelineRequest(**self.REQUEST, request_id=f"r{i}") for i in range(3)]
        results = orchestrator.run_many(requests)

        for request, outcome in zip(requests, results):
            assert isinstance(outcome, PipelineStageError)
            assert outcome.request_id == request.request_id
            assert outcome.role == "client-jar"
        with pytest.raises(PipelineStageError):
            orchestrator.run(PipelineRequest(**self.REQUEST))
