"""Tests for the ArtifactCache — read-through fetch, verification and maintenance."""

from __future__ import annotations

import os
from pathlib import Path

import pytest

from vanillakit.core.artifact_store import ArtifactCache, CacheMissError
from vanillakit.core.errors import VanillaKitError
from vanillakit.core.hasher import sha256_hex
from vanillakit.models.artifacts import CacheKey
from vanillakit.models.reports import Diagnostic, DiagnosticKind


def _key(name: str = "merged-jar") -> CacheKey:
    return CacheKey(role=name, source="src-" + name, chain="chain")


def _writer(data: bytes, calls: list[int] | None = None, diagnostics=None):
    def produce(destination: Path):
        if calls is not None:
            calls.append(1)
        destination.write_bytes(data)
        return diagnostics

    return produce


class TestGetOrFetch:
    def test_miss_then_hit(self, cache: ArtifactCache):
        calls: list[int] = []
        first = cache.get_or_fetch(_key(), _writer(b"payload", calls))
        second = cache.get_or_fetch(_key(), _writer(b"other", calls))
        assert first.hit is False
        assert second.hit is True
        assert len(calls) == 1
        assert first.sha256 == second.sha256 == sha256_hex(b"payload")
        assert cache.read_bytes(_key()) == b"payload"
        assert cache.stats.hits == 1 and cache.stats.producer_runs == 1

    def test_diagnostics_persisted_with_entry(self, cache: ArtifactCache):
        diagnostics = [Diagnostic(kind=DiagnosticKind.UNMAPPED_SYMBOL, subject="a.b", message="m")]
        cache.get_or_fetch(_key(), _writer(b"x", diagnostics=diagnostics))
        reopened = ArtifactCache(cache.root)
        hit = reopened.get_or_fetch(_key(), _writer(b"unused"))
        assert hit.hit is True
        assert [d.subject for d in hit.diagnostics] == ["a.b"]

    def test_failed_producer_caches_nothing(self, cache: ArtifactCache):
        def boom(destination: Path):
            destination.write_bytes(b"partial")
            raise RuntimeError("stage exploded")

        with pytest.raises(RuntimeError, match="exploded"):
            cache.get_or_fetch(_key(), boom)
        assert cache.lookup(_key()) is None
        assert not cache.contains(_key())
        assert list((cache.root / "tmp").iterdir()) == []

    def test_producer_must_write_output(self, cache: ArtifactCache):
        with pytest.raises(VanillaKitError, match="wrote no output"):
            cache.get_or_fetch(_key(), lambda destination: None)

    def test_refresh_replaces_entry(self, cache: ArtifactCache):
        cache.get_or_fetch(_key(), _writer(b"old"))
        refreshed = cache.get_or_fetch(_key(), _writer(b"new"), refresh=True)
        assert refreshed.hit is False
        assert cache.read_bytes(_key()) == b"new"

    def test_distinct_keys_are_independent(self, cache: ArtifactCache):
        cache.get_or_fetch(_key("a"), _writer(b"A"))
        cache.get_or_fetch(_key("b"), _writer(b"B"))
        assert cache.read_bytes(_key("a")) == b"A"
        assert cache.read_bytes(_key("b")) == b"B"

    def test_provisional_entry_rebuilt_on_next_fetch(self, cache: ArtifactCache):
        timeout = Diagnostic(
            kind=DiagnosticKind.DECOMPILE_TIMEOUT, subject="a/A.class", message="m", transient=True
        )
        first = cache.get_or_fetch(_key(), _writer(b"partial", diagnostics=[timeout]))
        assert first.provisional
        assert cache.read_bytes(_key()) == b"partial"
        assert cache.lookup(_key()).provisional

        calls: list[int] = []
        second = cache.get_or_fetch(_key(), _writer(b"complete", calls))
        assert second.hit is False
        assert not second.provisional
        assert calls == [1]
        assert cache.read_bytes(_key()) == b"complete"
        assert cache.get_or_fetch(_key(), _writer(b"unused", calls)).hit is True
        assert calls == [1]


class TestReading:
    def test_read_missing_raises(self, cache: ArtifactCache):
        with pytest.raises(CacheMissError):
            cache.read_bytes(_key())

    def test_key_for_digest(self, cache: ArtifactCache):
        cache.get_or_fetch(_key(), _writer(b"x"))
        assert cache.key_for_digest(_key().digest) == _key()
        assert cache.key_for_digest("0" * 64) is None

    def test_export_copies_atomically(self, cache: ArtifactCache, tmp_path: Path):
        cache.get_or_fetch(_key(), _writer(b"exported bytes"))
        target = tmp_path / "out" / "final.jar"
        exported = cache.export(_key(), target)
        assert target.read_bytes() == b"exported bytes"
        assert exported.sha256 == sha256_hex(b"exported bytes")
        assert exported.size == len(b"exported bytes")
        assert [p.name for p in target.parent.iterdir()] == ["final.jar"]

    def test_open_streams_blob(self, cache: ArtifactCache):
        cache.get_or_fetch(_key(), _writer(b"streamed"))
        with cache.open(_key()) as fp:
            assert fp.read() == b"streamed"


class TestMaintenance:
    def test_entries_lists_sidecars(self, cache: ArtifactCache):
        cache.get_or_fetch(_key("a"), _writer(b"A"))
        cache.get_or_fetch(_key("b"), _writer(b"BB"))
        metas = list(cache.entries())
        assert sorted(m.key.role for m in metas) == ["a", "b"]
        assert sorted(m.size for m in metas) == [1, 2]

    def test_invalidate(self, cache: ArtifactCache):
        cache.get_or_fetch(_key(), _writer(b"x"))
        assert cache.invalidate(_key()) is True
        assert cache.invalidate(_key()) is False
        assert cache.lookup(_key()) is None

    def test_clear(self, cache: ArtifactCache):
        cache.get_or_fetch(_key("a"), _writer(b"A"))
        cache.store_document("index.json", b"{}")
        assert cache.clear() == 1
        assert list(cache.entries()) == []
        assert cache.read_document("index.json") is None

    def test_verify_all_clean(self, cache: ArtifactCache):
        cache.get_or_fetch(_key(), _writer(b"x"))
        report = cache.verify_all()
        assert report.checked == 1 and report.valid == 1 and report.evicted == []


class TestDocuments:
    def test_store_and_read(self, cache: ArtifactCache):
        cache.store_document("versions/1.0.json", b'{"id": "1.0"}')
        assert cache.read_document("versions/1.0.json") == b'{"id": "1.0"}'
        assert cache.document_age("versions/1.0.json") is not None

    def test_stale_document_ignored(self, cache: ArtifactCache):
        cache.store_document("index.json", b"{}")
        assert cache.read_document("index.json", max_age=3600) == b"{}"
        path = cache.root / "manifests" / "index.json"
        os.utime(path, (1, 1))
        assert cache.read_document("index.json", max_age=3600) is None
        assert cache.read_document("index.json") == b"{}"

    def test_document_names_cannot_escape(self, cache: ArtifactCache):
        with pytest.raises(ValueError):
            cache.store_document("../outside.json", b"{}")
