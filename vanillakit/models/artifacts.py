"""Artifact identity models: descriptors, content hashes and cache keys.

A ``CacheKey`` is the Merkle-chained identity of one artifact under one
transform-chain configuration.  Two requests with the same key must yield
byte-identical cached output.
"""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field

from vanillakit.core.hasher import (
    HashAlgorithm,
    content_address,
    url_fingerprint,
)
from vanillakit.models.reports import Diagnostic

# ---------------------------------------------------------------------------
# Artifact roles
# ---------------------------------------------------------------------------

# Raw roles: provided by a version manifest or by the request itself.
CLIENT_JAR = "client-jar"
SERVER_JAR = "server-jar"
CLIENT_MAPPINGS = "client-mappings"
SERVER_MAPPINGS = "server-mappings"
LIBRARY = "library"

# Derived roles: produced by transform stages.
EXTRACTED_SERVER_JAR = "server-jar.extracted"
MERGED_JAR = "merged-jar"
REMAPPED_JAR = "remapped-jar"
WIDENED_JAR = "widened-jar"
SOURCES_JAR = "sources-jar"

# Manifest download key -> artifact role.
DOWNLOAD_ROLES: dict[str, str] = {
    "client": CLIENT_JAR,
    "server": SERVER_JAR,
    "client_mappings": CLIENT_MAPPINGS,
    "server_mappings": SERVER_MAPPINGS,
}


def mapping_role(index: int) -> str:
    """Role of the n-th request-provided mapping file."""
    return f"mappings.{index}"


# ---------------------------------------------------------------------------
# Hashes and descriptors
# ---------------------------------------------------------------------------


class ContentHash(BaseModel):
    """A declared digest: algorithm plus lowercase hex digest."""

    model_config = ConfigDict(frozen=True)

    algorithm: HashAlgorithm
    digest: str

    def __str__(self) -> str:
        return f"{self.algorithm.value}:{self.digest}"

    @classmethod
    def parse(cls, value: str) -> ContentHash:
        """Parse ``"<algorithm>:<hex>"`` (e.g. ``"sha1:3f7a..."``)."""
        algorithm, sep, digest = value.partition(":")
        if not sep or not digest:
            raise ValueError(f"Expected '<algorithm>:<digest>', got {value!r}")
        try:
            algo = HashAlgorithm(algorithm.strip().lower())
        except ValueError:
            raise ValueError(
                f"Unsupported hash algorithm {algorithm!r}; "
                f"expected one of {[a.value for a in HashAlgorithm]}"
            ) from None
        return cls(algorithm=algo, digest=digest.strip().lower())

    def matches(self, data: bytes) -> bool:
        """Whether *data* hashes to this digest."""
        return self.algorithm.hexdigest(data) == self.digest


class ArtifactDescriptor(BaseModel):
    """A remote artifact as described by a manifest.  Immutable once resolved."""

    model_config = ConfigDict(frozen=True)

    id: str
    url: str
    role: str
    size: int | None = None
    hash: ContentHash | None = None
    # Relative path hint for libraries (maven layout); not part of the identity.
    path: str | None = None

    @property
    def source_identity(self) -> str:
        """Content hash when declared, otherwise a hash of the URL."""
        if self.hash is not None:
            return str(self.hash)
        return url_fingerprint(self.url)


# ---------------------------------------------------------------------------
# Cache keys and entries
# ---------------------------------------------------------------------------


class CacheKey(BaseModel):
    """Composite identity (role, source, transform-chain fingerprint).

    For a raw artifact, ``source`` is the declared content hash (or a URL
    hash) and ``chain`` is empty.  For a stage output, ``source`` folds the
    ordered key digests of the stage inputs and ``chain`` folds the upstream
    chains with the stage kind and configuration fingerprint.
    """

    model_config = ConfigDict(frozen=True)

    role: str
    source: str
    chain: str = ""

    @property
    def digest(self) -> str:
        """SHA-256 over the canonical form of the key; the on-disk identity."""
        return content_address(self.model_dump(mode="json"))

    @classmethod
    def for_descriptor(cls, descriptor: ArtifactDescriptor) -> CacheKey:
        """Key of a raw, downloaded artifact."""
        return cls(role=descriptor.role, source=descriptor.source_identity)

    def short(self) -> str:
        return f"{self.role}@{self.digest[:12]}"


class CacheEntryMeta(BaseModel):
    """Sidecar metadata stored next to every cached blob."""

    model_config = ConfigDict(frozen=True)

    key: CacheKey
    key_digest: str
    sha256: str
    size: int
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    diagnostics: list[Diagnostic] = []


class CachedArtifact(BaseModel):
    """Handle returned by the cache.  Callers never see the blob path itself;
    bytes are obtained through the cache.
    """

    model_config = ConfigDict(frozen=True)

    key: CacheKey
    sha256: str
    size: int
    hit: bool
    diagnostics: list[Diagnostic] = []

    @property
    def key_digest(self) -> str:
        return self.key.digest

    @property
    def provisional(self) -> bool:
        """Produced under transient conditions; a later fetch rebuilds it."""
        return any(d.transient for d in self.diagnostics)


class FetchResult(BaseModel):
    """Outcome of one successful Downloader fetch."""

    model_config = ConfigDict(frozen=True)

    url: str
    size: int
    sha256: str
    verified: ContentHash | None = None
    attempts: int = 1


class ExportedArtifact(BaseModel):
    """A cached artifact copied out of the cache for a consumer."""

    model_config = ConfigDict(frozen=True)

    key: CacheKey
    path: Path
    sha256: str
    size: int
