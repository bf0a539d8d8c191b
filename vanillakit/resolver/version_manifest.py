"""Version manifest resolver.

Fetches the top-level version index (cached with a freshness window), finds
the entry for a version and fetches that version's own manifest (cached
forever under its declared sha1 and re-verified on every read).
"""

from __future__ import annotations

import json
import logging
import threading
import time
from pathlib import Path
from typing import Any
from urllib.parse import urlparse

from pydantic import ValidationError

from vanillakit.config import VERSION_MANIFEST_URL
from vanillakit.core.artifact_store import ArtifactCache
from vanillakit.core.errors import ManifestParseError, UnknownVersionError
from vanillakit.core.hasher import HashAlgorithm
from vanillakit.models.artifacts import ArtifactDescriptor, ContentHash
from vanillakit.models.manifest import (
    VersionClassifier,
    VersionIndex,
    VersionManifest,
    VersionReference,
)
from vanillakit.network.base import Downloader

logger = logging.getLogger(__name__)


def _load_json(data: bytes, what: str) -> Any:
    try:
        return json.loads(data)
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise ManifestParseError(f"{what} is not valid JSON: {exc}") from exc


def parse_index(data: bytes) -> VersionIndex:
    """Parse a version index document."""
    document = _load_json(data, "Version index")
    try:
        return VersionIndex.model_validate(document)
    except ValidationError as exc:
        raise ManifestParseError(f"Malformed version index: {exc}") from exc


def parse_version_manifest(data: bytes, source: str = "version manifest") -> VersionManifest:
    """Parse a per-version manifest document."""
    document = _load_json(data, source)
    if not isinstance(document, dict):
        raise ManifestParseError(f"{source} must be a JSON object")
    try:
        return VersionManifest.from_document(document)
    except ValidationError as exc:
        raise ManifestParseError(f"Malformed {source}: {exc}") from exc


class VersionManifestResolver:
    """Resolve version ids to typed manifests.

    Parameters
    ----------
    cache:
        The Artifact Cache; manifest documents live in its document area.
    downloader:
        Any Downloader backend.
    manifest_url:
        URL of the version index.
    ttl_seconds:
        Freshness window of the cached index.  An older index is re-fetched.
    offline:
        Never touch the network; cached documents are used regardless of age.
    """

    def __init__(
        self,
        cache: ArtifactCache,
        downloader: Downloader,
        *,
        manifest_url: str = VERSION_MANIFEST_URL,
        ttl_seconds: float = 86400.0,
        offline: bool = False,
    ) -> None:
        self._cache = cache
        self._downloader = downloader
        self._manifest_url = manifest_url
        self._ttl = ttl_seconds
        self._offline = offline
        self._index_name = Path(urlparse(manifest_url).path).name or "version_manifest.json"
        self._lock = threading.RLock()
        self._index: VersionIndex | None = None
        self._index_fetched = False
        # monotonic time at which the loaded index was fetched
        self._index_loaded_at = 0.0
        self._manifests: dict[str, VersionManifest] = {}
        self._injected: dict[str, VersionManifest] = {}

    # ------------------------------------------------------------------
    # Index
    # ------------------------------------------------------------------

    def _download_document(
        self, url: str, name: str, expected_hash: ContentHash | None
    ) -> bytes:
        with self._cache.temp_file(".json") as tmp:
            self._downloader.fetch(url, tmp, expected_hash=expected_hash)
            data = tmp.read_bytes()
            self._cache.store_document(name, tmp)
        return data

    def index(self, *, refresh: bool = False) -> VersionIndex:
        """Return the version index, fetching it when missing or stale."""
        with self._lock:
            if self._index is not None and not refresh and not self._index_expired():
                return self._index
            data = None
            if not refresh:
                max_age = None if self._offline else self._ttl
                data = self._cache.read_document(self._index_name, max_age=max_age)
            fetched = False
            if data is None:
                if self._offline:
                    logger.warning("Offline and no cached version index; only injected versions resolve")
                    self._index = VersionIndex(versions=[])
                    return self._index
                logger.info("Fetching version index %s", self._manifest_url)
                data = self._download_document(self._manifest_url, self._index_name, None)
                fetched = True
            self._index = parse_index(data)
            self._index_fetched = fetched
            age = 0.0 if fetched else (self._cache.document_age(self._index_name) or 0.0)
            self._index_loaded_at = time.monotonic() - age
            return self._index

    def _index_expired(self) -> bool:
        if self._offline:
            return False
        return time.monotonic() - self._index_loaded_at > self._ttl

    def versions(self, classifier: VersionClassifier | None = None) -> list[VersionReference]:
        """Versions from the index, optionally filtered by classifier."""
        refs = list(self.index().versions)
        if classifier is not None:
            refs = [ref for ref in refs if ref.type == classifier.value]
        return refs

    def latest(self, classifier: VersionClassifier = VersionClassifier.RELEASE) -> str | None:
        """Latest version id of a classifier, from the index's ``latest`` map
        when it names one, otherwise the first matching index entry."""
        index = self.index()
        alias = index.alias(classifier.value)
        if alias:
            return alias
        for ref in index.versions:
            if ref.type == classifier.value:
                return ref.id
        return None

    # ------------------------------------------------------------------
    # Versions
    # ------------------------------------------------------------------

    def _find(self, index: VersionIndex, version_id: str) -> VersionReference | None:
        return index.find(index.alias(version_id) or version_id)

    def resolve(self, version_id: str) -> VersionManifest:
        """Resolve *version_id* (or ``release``/``snapshot``) to its manifest.

        Raises ``UnknownVersionError`` when absent from the index and
        ``ManifestParseError`` when a document is malformed.
        """
        with self._lock:
            if version_id in self._injected:
                return self._injected[version_id]
            if version_id in self._manifests:
                return self._manifests[version_id]

            index = self.index()
            ref = self._find(index, version_id)
            if ref is None and not self._offline and not self._index_fetched:
                logger.info("Version %s not in cached index; refreshing index", version_id)
                index = self.index(refresh=True)
                ref = self._find(index, version_id)
            if ref is None:
                raise UnknownVersionError(version_id)

            manifest = self._load_version(ref)
            self._manifests[version_id] = manifest
            self._manifests[ref.id] = manifest
            return manifest

    def _load_version(self, ref: VersionReference) -> VersionManifest:
        name = f"versions/{ref.id}.json"
        expected = (
            ContentHash(algorithm=HashAlgorithm.SHA1, digest=ref.sha1.lower())
            if ref.sha1
            else None
        )
        data = self._cache.read_document(name, expected_hash=expected)
        if data is None:
            if self._offline:
                raise UnknownVersionError(ref.id)
            logger.info("Fetching manifest for %s", ref.id)
            data = self._download_document(ref.url, name, expected)
        manifest = parse_version_manifest(data, f"manifest of {ref.id}")
        if manifest.id != ref.id:
            logger.warning("Manifest at %s declares id %s, expected %s", ref.url, manifest.id, ref.id)
        return manifest

    def inject(self, source: Path | dict[str, Any]) -> VersionManifest:
        """Register a local version descriptor that is not in the index."""
        if isinstance(source, dict):
            data = json.dumps(source).encode("utf-8")
            label = "injected manifest"
        else:
            data = Path(source).read_bytes()
            label = str(source)
        manifest = parse_version_manifest(data, label)
        with self._lock:
            self._injected[manifest.id] = manifest
        logger.info("Injected local version %s", manifest.id)
        return manifest

    def artifacts(self, version_id: str) -> dict[str, ArtifactDescriptor]:
        """Convenience: resolve and return the artifact descriptors by role."""
        return self.resolve(version_id).artifacts()
