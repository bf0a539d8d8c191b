"""Content-addressed artifact cache with read-through fetch.

Storage layout under the cache root::

    artifacts/{digest[0:2]}/{digest}.bin        blob
    artifacts/{digest[0:2]}/{digest}.meta.json  sidecar (CacheEntryMeta)
    manifests/{name}                            manifest documents
    locks/{digest}.lock                         cross-process key locks
    tmp/                                        producer scratch files

``digest`` is the SHA-256 of the canonical CacheKey.  Entries are never
mutated in place: producers write into ``tmp/`` and the finished file is
moved into place with ``os.replace``.  The whole root is a pure cache and
may be deleted at any time.
"""

from __future__ import annotations

import logging
import os
import shutil
import threading
import time
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import BinaryIO, Callable

from filelock import FileLock, Timeout
from pydantic import ValidationError

from vanillakit.core.errors import CacheLockTimeout, IntegrityError, VanillaKitError
from vanillakit.core.hasher import HashAlgorithm
from vanillakit.models.artifacts import (
    CachedArtifact,
    CacheEntryMeta,
    CacheKey,
    ContentHash,
    ExportedArtifact,
)
from vanillakit.models.reports import CacheVerificationReport, Diagnostic

logger = logging.getLogger(__name__)

# A producer writes the artifact to the given temporary path and may return
# non-fatal diagnostics, which are persisted with the entry.
Producer = Callable[[Path], "list[Diagnostic] | None"]


class CacheMissError(VanillaKitError):
    """Raised when bytes are requested for a key that is not cached."""


@dataclass
class _Flight:
    """An in-progress production other threads can wait on."""

    done: threading.Event = field(default_factory=threading.Event)
    result: CachedArtifact | None = None
    error: BaseException | None = None


@dataclass
class CacheStats:
    hits: int = 0
    misses: int = 0
    producer_runs: int = 0
    evictions: int = 0


class ArtifactCache:
    """Content-addressed on-disk store with per-key single-flight production.

    At most one producer runs per key at any time: in-process callers
    coalesce on an in-memory flight map guarded by a mutex, and separate
    processes serialize on a file lock per key.  Every hit re-hashes the
    stored blob; a corrupt entry is evicted and produced again.

    Parameters
    ----------
    root:
        Root directory of the cache.
    lock_timeout:
        Seconds to wait for another process holding the same key.
    """

    def __init__(self, root: Path, *, lock_timeout: float = 900.0) -> None:
        self._root = Path(root)
        self._lock_timeout = lock_timeout
        for sub in ("artifacts", "manifests", "locks", "tmp"):
            (self._root / sub).mkdir(parents=True, exist_ok=True)
        self._mutex = threading.Lock()
        self._flights: dict[str, _Flight] = {}
        self.stats = CacheStats()

    @property
    def root(self) -> Path:
        return self._root

    # ------------------------------------------------------------------
    # Paths
    # ------------------------------------------------------------------

    def _blob_path(self, digest: str) -> Path:
        return self._root / "artifacts" / digest[:2] / f"{digest}.bin"

    def _meta_path(self, digest: str) -> Path:
        return self._root / "artifacts" / digest[:2] / f"{digest}.meta.json"

    def _lock_path(self, digest: str) -> Path:
        return self._root / "locks" / f"{digest}.lock"

    def _document_path(self, name: str) -> Path:
        path = (self._root / "manifests" / name).resolve()
        base = (self._root / "manifests").resolve()
        if base not in path.parents:
            raise ValueError(f"Document name escapes the manifest cache: {name!r}")
        return path

    def temp_path(self, suffix: str = ".part") -> Path:
        """A fresh scratch path inside the cache root (same filesystem)."""
        return self._root / "tmp" / f"{uuid.uuid4().hex}{suffix}"

    @contextmanager
    def temp_file(self, suffix: str = ".part") -> Iterator[Path]:
        """Yield a scratch path that is removed afterwards unless promoted."""
        path = self.temp_path(suffix)
        try:
            yield path
        finally:
            path.unlink(missing_ok=True)

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def _read_meta(self, digest: str) -> CacheEntryMeta | None:
        path = self._meta_path(digest)
        try:
            return CacheEntryMeta.model_validate_json(path.read_bytes())
        except FileNotFoundError:
            return None
        except (ValidationError, ValueError):
            logger.warning("Unreadable cache sidecar %s", path)
            return None

    def _check(self, key: CacheKey, digest: str) -> tuple[CachedArtifact | None, bool]:
        """Return (handle, corrupt).  Read-only: never evicts."""
        meta_path = self._meta_path(digest)
        if not meta_path.exists():
            return None, False
        meta = self._read_meta(digest)
        blob = self._blob_path(digest)
        if meta is None or meta.key_digest != digest or meta.key != key or not blob.exists():
            return None, True
        actual = HashAlgorithm.SHA256.file_hexdigest(blob)
        if actual != meta.sha256 or blob.stat().st_size != meta.size:
            logger.warning(
                "Cache entry %s failed re-verification (expected sha256=%s, got %s)",
                key.short(),
                meta.sha256[:12],
                actual[:12],
            )
            return None, True
        return (
            CachedArtifact(
                key=key,
                sha256=meta.sha256,
                size=meta.size,
                hit=True,
                diagnostics=meta.diagnostics,
            ),
            False,
        )

    def lookup(self, key: CacheKey) -> CachedArtifact | None:
        """Return a verified handle for *key*, or None on miss or corruption."""
        handle, _ = self._check(key, key.digest)
        return handle

    def contains(self, key: CacheKey) -> bool:
        return self._meta_path(key.digest).exists() and self._blob_path(key.digest).exists()

    def verify(self, key: CacheKey) -> bool:
        """Re-hash the stored blob for *key* against its sidecar."""
        return self.lookup(key) is not None

    # ------------------------------------------------------------------
    # Read-through fetch
    # ------------------------------------------------------------------

    def get_or_fetch(
        self, key: CacheKey, producer: Producer, *, refresh: bool = False
    ) -> CachedArtifact:
        """Return the cached artifact for *key*, producing it on a miss.

        Concurrent callers for the same key wait for the single in-flight
        producer and then observe its result; a producer failure is raised
        to every waiter and nothing is cached.  With ``refresh`` an existing
        entry is ignored and replaced.  A provisional entry (one carrying a
        transient diagnostic) stays readable but is rebuilt by the next fetch.
        """
        digest = key.digest
        if not refresh:
            handle = self.lookup(key)
            if handle is not None and not handle.provisional:
                self._count("hits")
                logger.debug("Cache hit %s", key.short())
                return handle

        with self._mutex:
            flight = self._flights.get(digest)
            leader = flight is None
            if leader:
                flight = _Flight()
                self._flights[digest] = flight

        if not leader:
            logger.debug("Waiting for in-flight producer of %s", key.short())
            flight.done.wait()
            if flight.error is not None:
                raise flight.error
            self._count("hits")
            return flight.result.model_copy(update={"hit": True})

        try:
            result = self._produce_locked(key, producer, refresh=refresh)
            flight.result = result
            return result
        except BaseException as exc:
            flight.error = exc
            raise
        finally:
            with self._mutex:
                self._flights.pop(digest, None)
            flight.done.set()

    def _produce_locked(
        self, key: CacheKey, producer: Producer, *, refresh: bool
    ) -> CachedArtifact:
        digest = key.digest
        lock = FileLock(str(self._lock_path(digest)))
        try:
            lock.acquire(timeout=self._lock_timeout)
        except Timeout as exc:
            raise CacheLockTimeout(
                f"Could not lock {key.short()} within {self._lock_timeout}s"
            ) from exc
        try:
            handle, corrupt = self._check(key, digest)
            if handle is not None and not refresh and not handle.provisional:
                # Another thread or process finished while we waited.
                self._count("hits")
                return handle
            if corrupt:
                self._evict(digest)
            self._count("misses")
            return self._produce(key, producer)
        finally:
            lock.release()

    def _produce(self, key: CacheKey, producer: Producer) -> CachedArtifact:
        digest = key.digest
        tmp = self.temp_path()
        started = time.monotonic()
        try:
            self._count("producer_runs")
            diagnostics = list(producer(tmp) or [])
            if not tmp.exists():
                raise VanillaKitError(f"Producer for {key.short()} wrote no output")
            sha256 = HashAlgorithm.SHA256.file_hexdigest(tmp)
            size = tmp.stat().st_size
            meta = CacheEntryMeta(
                key=key,
                key_digest=digest,
                sha256=sha256,
                size=size,
                diagnostics=diagnostics,
            )
            blob = self._blob_path(digest)
            blob.parent.mkdir(parents=True, exist_ok=True)
            # Readers treat a missing sidecar as a miss, so drop it first.
            self._meta_path(digest).unlink(missing_ok=True)
            os.replace(tmp, blob)
            self._atomic_write(self._meta_path(digest), meta.model_dump_json(indent=2).encode())
        except BaseException:
            tmp.unlink(missing_ok=True)
            raise
        logger.info(
            "Cached %s (%d bytes, sha256=%s) in %.2fs",
            key.short(),
            size,
            sha256[:12],
            time.monotonic() - started,
        )
        if any(d.transient for d in diagnostics):
            logger.warning("Cached %s provisionally; the next fetch rebuilds it", key.short())
        return CachedArtifact(
            key=key, sha256=sha256, size=size, hit=False, diagnostics=diagnostics
        )

    def _atomic_write(self, path: Path, data: bytes) -> None:
        tmp = self.temp_path(".write")
        try:
            tmp.write_bytes(data)
            path.parent.mkdir(parents=True, exist_ok=True)
            os.replace(tmp, path)
        except BaseException:
            tmp.unlink(missing_ok=True)
            raise

    def _count(self, name: str) -> None:
        with self._mutex:
            setattr(self.stats, name, getattr(self.stats, name) + 1)

    # ------------------------------------------------------------------
    # Reading
    # ------------------------------------------------------------------

    def key_for_digest(self, digest: str) -> CacheKey | None:
        """The key recorded in the sidecar stored under *digest*."""
        meta = self._read_meta(digest)
        if meta is None or meta.key_digest != digest:
            return None
        return meta.key

    def _require(self, key: CacheKey) -> Path:
        blob = self._blob_path(key.digest)
        if not self._meta_path(key.digest).exists() or not blob.exists():
            raise CacheMissError(f"Not cached: {key.short()}")
        return blob

    def read_bytes(self, key: CacheKey) -> bytes:
        """Return the cached bytes for *key*, verified against the sidecar."""
        data = self._require(key).read_bytes()
        meta = self._read_meta(key.digest)
        if meta is None:
            raise CacheMissError(f"Not cached: {key.short()}")
        actual = HashAlgorithm.SHA256.hexdigest(data)
        if actual != meta.sha256:
            raise IntegrityError(key.short(), f"sha256:{meta.sha256}", f"sha256:{actual}")
        return data

    def open(self, key: CacheKey) -> BinaryIO:
        """Open the cached blob for reading.  The caller closes it."""
        return open(self._require(key), "rb")

    def export(self, key: CacheKey, destination: Path) -> ExportedArtifact:
        """Copy the cached artifact to *destination* atomically."""
        blob = self._require(key)
        destination = Path(destination)
        destination.parent.mkdir(parents=True, exist_ok=True)
        tmp = destination.with_name(f".{destination.name}.{uuid.uuid4().hex[:8]}.part")
        try:
            shutil.copyfile(blob, tmp)
            os.replace(tmp, destination)
        except BaseException:
            tmp.unlink(missing_ok=True)
            raise
        meta = self._read_meta(key.digest)
        sha256 = meta.sha256 if meta else HashAlgorithm.SHA256.file_hexdigest(destination)
        return ExportedArtifact(
            key=key, path=destination, sha256=sha256, size=destination.stat().st_size
        )

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def _evict(self, digest: str) -> None:
        self._meta_path(digest).unlink(missing_ok=True)
        self._blob_path(digest).unlink(missing_ok=True)
        self._count("evictions")
        logger.warning("Evicted cache entry %s", digest[:12])

    def invalidate(self, key: CacheKey) -> bool:
        """Remove the entry for *key*.  Returns whether one existed."""
        digest = key.digest
        with FileLock(str(self._lock_path(digest)), timeout=self._lock_timeout):
            existed = self._meta_path(digest).exists() or self._blob_path(digest).exists()
            if existed:
                self._evict(digest)
        return existed

    def entries(self) -> Iterator[CacheEntryMeta]:
        """Iterate over readable sidecars, sorted by key digest."""
        for meta_path in sorted((self._root / "artifacts").glob("*/*.meta.json")):
            digest = meta_path.name.removesuffix(".meta.json")
            meta = self._read_meta(digest)
            if meta is not None:
                yield meta

    def verify_all(self) -> CacheVerificationReport:
        """Re-hash every entry and evict the ones that fail."""
        checked = 0
        valid = 0
        evicted: list[str] = []
        for meta_path in sorted((self._root / "artifacts").glob("*/*.meta.json")):
            digest = meta_path.name.removesuffix(".meta.json")
            checked += 1
            with FileLock(str(self._lock_path(digest)), timeout=self._lock_timeout):
                meta = self._read_meta(digest)
                ok = meta is not None and self._check(meta.key, digest)[0] is not None
                if ok:
                    valid += 1
                else:
                    self._evict(digest)
                    evicted.append(digest)
        return CacheVerificationReport(checked=checked, valid=valid, evicted=evicted)

    def clear(self) -> int:
        """Delete every artifact and document.  Returns the number of blobs removed."""
        removed = sum(1 for _ in (self._root / "artifacts").glob("*/*.bin"))
        for sub in ("artifacts", "manifests", "tmp"):
            shutil.rmtree(self._root / sub, ignore_errors=True)
            (self._root / sub).mkdir(parents=True, exist_ok=True)
        logger.info("Cleared cache at %s (%d artifacts)", self._root, removed)
        return removed

    # ------------------------------------------------------------------
    # Manifest documents
    # ------------------------------------------------------------------

    def document_age(self, name: str) -> float | None:
        """Seconds since the document was stored, or None if absent."""
        path = self._document_path(name)
        if not path.exists():
            return None
        return max(0.0, time.time() - path.stat().st_mtime)

    def read_document(
        self,
        name: str,
        *,
        max_age: float | None = None,
        expected_hash: ContentHash | None = None,
    ) -> bytes | None:
        """Return a stored document, or None if absent, stale or mismatching."""
        path = self._document_path(name)
        if not path.exists():
            return None
        if max_age is not None:
            age = self.document_age(name)
            if age is not None and age > max_age:
                logger.debug("Document %s is stale (%.0fs > %.0fs)", name, age, max_age)
                return None
        data = path.read_bytes()
        if expected_hash is not None and not expected_hash.matches(data):
            logger.warning("Cached document %s does not match %s", name, expected_hash)
            return None
        return data

    def store_document(self, name: str, source: bytes | Path) -> Path:
        """Store a document atomically; *source* is bytes or a scratch path to move."""
        path = self._document_path(name)
        path.parent.mkdir(parents=True, exist_ok=True)
        if isinstance(source, Path):
            os.replace(source, path)
        else:
            self._atomic_write(path, source)
        return path
