"""Downloader contract and the streaming machinery shared by every backend.

A Downloader streams a URL to a caller-chosen temporary path.  It never
exposes partial data: on any failure the destination is removed, and on
success the caller promotes the file (normally into the Artifact Cache).

Backends differ only in how they issue a single GET; the retry loop, the
incremental hashing, the size/hash verification and the HTTP status
classification live here so both backends behave identically.
"""

from __future__ import annotations

import hashlib
import logging
from pathlib import Path
from typing import BinaryIO, Callable, Protocol, runtime_checkable

from vanillakit.core.errors import (
    AccessError,
    IntegrityError,
    NetworkError,
    NotFoundError,
)
from vanillakit.models.artifacts import ContentHash, FetchResult
from vanillakit.network.retry import RetryPolicyFactory, create_retry_policy

logger = logging.getLogger(__name__)

CHUNK_SIZE = 1 << 16


@runtime_checkable
class Downloader(Protocol):
    """Capability interface implemented by every HTTP backend."""

    name: str

    def fetch(
        self,
        url: str,
        destination: Path,
        *,
        expected_hash: ContentHash | None = None,
        expected_size: int | None = None,
    ) -> FetchResult:
        """Stream *url* into *destination*, verifying size and hash if given."""
        ...

    def close(self) -> None:
        ...


# ---------------------------------------------------------------------------
# Status classification
# ---------------------------------------------------------------------------


def raise_for_status(url: str, status_code: int) -> None:
    """Map an HTTP status to the error taxonomy.  2xx returns normally."""
    if 200 <= status_code < 300:
        return
    if status_code in (404, 410):
        raise NotFoundError(url, status_code)
    if status_code == 429 or status_code >= 500:
        raise NetworkError(url, f"HTTP {status_code}", status_code=status_code)
    raise AccessError(url, status_code)


# ---------------------------------------------------------------------------
# Streaming sink
# ---------------------------------------------------------------------------


class DownloadSink:
    """Writes a response body to the destination while hashing it.

    SHA-256 is always computed (it is the cache's content address); the
    declared algorithm is computed alongside when an expected hash is given.
    A sink can resume a partial file left by a previous attempt.
    """

    def __init__(self, url: str, destination: Path, expected_hash: ContentHash | None) -> None:
        self.url = url
        self.destination = destination
        self.expected_hash = expected_hash
        self.size = 0
        self._fp: BinaryIO | None = None
        self._reset_digests()

    def _reset_digests(self) -> None:
        self._sha256 = hashlib.sha256()
        self._declared = (
            self.expected_hash.algorithm.new() if self.expected_hash is not None else None
        )

    def _update(self, chunk: bytes) -> None:
        self._sha256.update(chunk)
        if self._declared is not None:
            self._declared.update(chunk)
        self.size += len(chunk)

    @property
    def resume_offset(self) -> int:
        """Bytes already on disk from an interrupted attempt."""
        if self.destination.exists():
            return self.destination.stat().st_size
        return 0

    def begin(self, *, resume: bool) -> None:
        """Open the destination, either appending to a partial file or afresh."""
        self.destination.parent.mkdir(parents=True, exist_ok=True)
        self._reset_digests()
        self.size = 0
        if resume and self.destination.exists():
            with open(self.destination, "rb") as existing:
                for chunk in iter(lambda: existing.read(CHUNK_SIZE), b""):
                    self._update(chunk)
            self._fp = open(self.destination, "ab")
            logger.info("Resuming %s at byte %d", self.url, self.size)
        else:
            self._fp = open(self.destination, "wb")

    def write(self, chunk: bytes) -> None:
        if self._fp is None:
            raise RuntimeError("DownloadSink.write() before begin()")
        self._fp.write(chunk)
        self._update(chunk)

    def close(self) -> None:
        if self._fp is not None:
            self._fp.close()
            self._fp = None

    def discard(self) -> None:
        self.close()
        self.destination.unlink(missing_ok=True)

    def finish(self, expected_size: int | None, attempts: int) -> FetchResult:
        """Verify the completed stream.  Raises IntegrityError on mismatch."""
        self.close()
        if expected_size is not None and self.size != expected_size:
            raise IntegrityError(self.url, f"{expected_size} bytes", f"{self.size} bytes")
        verified = None
        if self.expected_hash is not None and self._declared is not None:
            actual = self._declared.hexdigest()
            if actual != self.expected_hash.digest:
                raise IntegrityError(
                    self.url,
                    str(self.expected_hash),
                    f"{self.expected_hash.algorithm.value}:{actual}",
                )
            verified = self.expected_hash
        return FetchResult(
            url=self.url,
            size=self.size,
            sha256=self._sha256.hexdigest(),
            verified=verified,
            attempts=attempts,
        )


# ---------------------------------------------------------------------------
# Retry loop
# ---------------------------------------------------------------------------

# One GET: (url, sink, resume_offset) -> None.  Raises the taxonomy errors.
AttemptFn = Callable[[str, DownloadSink, int], None]


def fetch_with_retry(
    url: str,
    destination: Path,
    attempt_fn: AttemptFn,
    *,
    expected_hash: ContentHash | None = None,
    expected_size: int | None = None,
    retry_policy: RetryPolicyFactory | None = None,
) -> FetchResult:
    """Run *attempt_fn* under the retry policy and verify the result.

    The destination is removed on every failure path, including integrity
    failures, so a caller never observes partial or unverified bytes.
    """
    policy = retry_policy() if retry_policy is not None else create_retry_policy()
    sink = DownloadSink(url, destination, expected_hash)
    destination.unlink(missing_ok=True)
    attempts = 0
    try:
        for attempt in policy:
            with attempt:
                attempts = attempt.retry_state.attempt_number
                try:
                    attempt_fn(url, sink, sink.resume_offset)
                finally:
                    sink.close()
        result = sink.finish(expected_size, attempts)
    except BaseException:
        sink.discard()
        raise
    logger.info(
        "Fetched %s (%d bytes, sha256=%s, attempts=%d)",
        url,
        result.size,
        result.sha256[:12],
        attempts,
    )
    return result
