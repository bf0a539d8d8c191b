"""Shared test fixtures for vanillakit."""

from __future__ import annotations

import hashlib
import threading
from collections.abc import Callable, Iterable, Iterator
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import pytest

from vanillakit.config import KitConfig
from vanillakit.core.artifact_store import ArtifactCache
from vanillakit.core.errors import NotFoundError
from vanillakit.core.orchestrator import PipelineOrchestrator
from vanillakit.jvm.archive import write_archive
from vanillakit.jvm.classfile import (
    ACC_FINAL,
    ACC_PRIVATE,
    ACC_PUBLIC,
    ACC_SUPER,
    CONSTANT_FIELDREF,
    CONSTANT_METHODREF,
    ClassFile,
    Constant,
)
from vanillakit.jvm.decompiler import DECOMPILERS, SkeletonDecompiler, SymbolDocs
from vanillakit.models.artifacts import ContentHash, FetchResult
from vanillakit.network.base import DownloadSink

BASE_URL = "https://downloads.example.invalid"


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------


def build_class(
    name: str,
    *,
    super_name: str | None = "java/lang/Object",
    interfaces: list[str] | None = None,
    access: int = ACC_PUBLIC | ACC_SUPER,
    fields: Iterable[tuple[int, str, str]] = (),
    methods: Iterable[tuple[int, str, str]] = (),
    method_refs: Iterable[tuple[str, str, str]] = (),
    field_refs: Iterable[tuple[str, str, str]] = (),
) -> bytes:
    """Serialise a minimal class: declarations plus constant-pool references."""
    classfile = ClassFile.new(
        name, super_name=super_name, interfaces=interfaces, access_flags=access
    )
    for flags, field_name, descriptor in fields:
        classfile.add_field(flags, field_name, descriptor)
    for flags, method_name, descriptor in methods:
        classfile.add_method(flags, method_name, descriptor)
    for tag, refs in ((CONSTANT_METHODREF, method_refs), (CONSTANT_FIELDREF, field_refs)):
        for owner, ref_name, descriptor in refs:
            classfile._append(
                Constant(
                    tag,
                    (classfile.add_class(owner), classfile.add_name_and_type(ref_name, descriptor)),
                )
            )
    return classfile.to_bytes()


def make_jar(entries: dict[str, bytes]) -> bytes:
    return write_archive(entries)


def make_bundle(inner_jar: bytes, path: str = "server-1.0.jar") -> bytes:
    """A launcher-bundle server jar wrapping *inner_jar*."""
    listing = f"{hashlib.sha256(inner_jar).hexdigest()}\tserver:1.0\t{path}\n"
    return make_jar({
        "META-INF/versions.list": listing.encode(),
        f"META-INF/versions/{path}": inner_jar,
        "net/minecraft/bundler/Main.class": build_class("net/minecraft/bundler/Main"),
    })


def sha1(data: bytes) -> str:
    return hashlib.sha1(data).hexdigest()


# ---------------------------------------------------------------------------
# Fake downloader
# ---------------------------------------------------------------------------


class FakeDownloader:
    """Serves in-memory files, counts fetches and verifies like a real backend."""

    name = "fake"

    def __init__(self, files: dict[str, bytes] | None = None) -> None:
        self.files = dict(files or {})
        self.calls: list[str] = []
        self._lock = threading.Lock()

    def fetch(
        self,
        url: str,
        destination: Path,
        *,
        expected_hash: ContentHash | None = None,
        expected_size: int | None = None,
    ) -> FetchResult:
        with self._lock:
            self.calls.append(url)
        if url not in self.files:
            raise NotFoundError(url)
        sink = DownloadSink(url, destination, expected_hash)
        try:
            sink.begin(resume=False)
            sink.write(self.files[url])
            return sink.finish(expected_size, attempts=1)
        except BaseException:
            sink.discard()
            raise

    def count(self, url: str) -> int:
        with self._lock:
            return self.calls.count(url)

    def close(self) -> None:
        pass


# ---------------------------------------------------------------------------
# A small synthetic game version
# ---------------------------------------------------------------------------

CLIENT_MAPPINGS_TEXT = """\
# client mappings
net.example.Counter -> a:
    int count -> a
    1:1:void setCount(int) -> a
net.example.SubCounter -> b:
"""

SERVER_MAPPINGS_TEXT = """\
net.example.Counter -> a:
    int count -> a
    void setCount(int) -> a
net.example.server.Dedicated -> c:
"""

WIDENER_TEXT = """\
accessWidener v2 named
accessible field net/example/Counter count I
mutable field net/example/Counter count I
accessible method net/example/Counter setCount (I)V
"""


@dataclass
class Game:
    """Bytes and manifest of one synthetic version."""

    version_id: str
    files: dict[str, bytes]
    manifest: dict[str, Any]
    client_jar: bytes
    server_jar: bytes
    inner_server_jar: bytes
    urls: dict[str, str] = field(default_factory=dict)


def counter_class() -> bytes:
    return build_class(
        "a",
        fields=[(ACC_PRIVATE | ACC_FINAL, "a", "I")],
        methods=[(ACC_PUBLIC, "<init>", "()V"), (ACC_PRIVATE, "a", "(I)V")],
    )


def sub_counter_class() -> bytes:
    return build_class(
        "b",
        super_name="a",
        methods=[(ACC_PUBLIC, "<init>", "()V")],
        method_refs=[("a", "a", "(I)V"), ("b", "a", "(I)V")],
        field_refs=[("a", "a", "I")],
    )


def build_game(version_id: str = "1.0", *, malformed: bool = False) -> Game:
    client_entries = {
        "a.class": counter_class(),
        "b.class": sub_counter_class(),
        "assets/lang/en_us.json": b'{"hello": "Hello"}',
        "META-INF/MANIFEST.MF": b"Manifest-Version: 1.0\r\nMain-Class: b\r\n\r\n",
    }
    if malformed:
        client_entries["broken.class"] = b"\xca\xfe\xba\xbe\x00\x00"
    client_jar = make_jar(client_entries)
    inner_server = make_jar({
        "a.class": counter_class(),
        "c.class": build_class("c", methods=[(ACC_PUBLIC, "<init>", "()V")]),
        "data/server.properties": b"motd=hello\n",
    })
    server_jar = make_bundle(inner_server)
    client_mappings = CLIENT_MAPPINGS_TEXT.encode()
    server_mappings = SERVER_MAPPINGS_TEXT.encode()

    blobs = {
        "client": client_jar,
        "server": server_jar,
        "client_mappings": client_mappings,
        "server_mappings": server_mappings,
    }
    urls = {key: f"{BASE_URL}/{version_id}/{key}" for key in blobs}
    manifest = {
        "id": version_id,
        "type": "release",
        "mainClass": "b",
        "javaVersion": {"component": "java-runtime-gamma", "majorVersion": 17},
        "downloads": {
            key: {"url": urls[key], "sha1": sha1(data), "size": len(data)}
            for key, data in blobs.items()
        },
        "libraries": [],
    }
    return Game(
        version_id=version_id,
        files={urls[key]: data for key, data in blobs.items()},
        manifest=manifest,
        client_jar=client_jar,
        server_jar=server_jar,
        inner_server_jar=inner_server,
        urls=urls,
    )


class HangingDecompiler(SkeletonDecompiler):
    """Skeleton engine that stalls on chosen classes until released."""

    name = "hanging"

    def __init__(self, hang_on: Iterable[str]):
        self.hang_on = set(hang_on)
        self.release = threading.Event()

    def decompile(self, classfile: ClassFile, docs: SymbolDocs, options: dict[str, Any]) -> str:
        if classfile.name in self.hang_on:
            self.release.wait()
        return super().decompile(classfile, docs, options)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def tmp_dir(tmp_path: Path) -> Path:
    """Provide a temporary directory for test artifacts."""
    return tmp_path


@pytest.fixture
def cache(tmp_dir: Path) -> ArtifactCache:
    """Provide a fresh ArtifactCache in a temp directory."""
    return ArtifactCache(tmp_dir / "cache", lock_timeout=30.0)


@pytest.fixture
def kit_config(tmp_dir: Path) -> KitConfig:
    return KitConfig(cache_root=tmp_dir / "cache", lock_timeout_seconds=30.0)


@pytest.fixture
def game() -> Game:
    return build_game()


@pytest.fixture
def downloader(game: Game) -> FakeDownloader:
    return FakeDownloader(game.files)


@pytest.fixture
def make_orchestrator(
    kit_config: KitConfig, cache: ArtifactCache
) -> Callable[..., PipelineOrchestrator]:
    """Factory fixture: an orchestrator over the shared cache with *game* injected."""

    def _factory(
        game: Game, downloader: FakeDownloader | None = None, **overrides: Any
    ) -> PipelineOrchestrator:
        config = kit_config.model_copy(update=overrides) if overrides else kit_config
        orchestrator = PipelineOrchestrator(
            config, cache=cache, downloader=downloader or FakeDownloader(game.files)
        )
        orchestrator.resolver.inject(game.manifest)
        return orchestrator

    return _factory


@pytest.fixture
def orchestrator(
    make_orchestrator: Callable[..., PipelineOrchestrator],
    game: Game,
    downloader: FakeDownloader,
) -> PipelineOrchestrator:
    return make_orchestrator(game, downloader)


@pytest.fixture
def hanging_engine(monkeypatch: pytest.MonkeyPatch) -> Iterator[Callable[..., HangingDecompiler]]:
    """Register a ``hanging`` decompiler; stalled workers are released at teardown."""
    engines: list[HangingDecompiler] = []

    def _register(*hang_on: str) -> HangingDecompiler:
        engine = HangingDecompiler(hang_on)
        monkeypatch.setitem(DECOMPILERS, engine.name, engine)
        engines.append(engine)
        return engine

    yield _register
    for engine in engines:
        engine.release.set()
