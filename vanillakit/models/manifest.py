"""Version index and per-version manifest models.

Parsing is tolerant of unknown fields (forward compatibility) and strict
about the fields this system consumes.  Validation failures are turned into
``ManifestParseError`` by the resolver.
"""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, Field

from vanillakit.core.hasher import HashAlgorithm
from vanillakit.models.artifacts import (
    DOWNLOAD_ROLES,
    LIBRARY,
    ArtifactDescriptor,
    ContentHash,
)

if TYPE_CHECKING:
    from vanillakit.resolver.rules import RuleContext


class VersionClassifier(str, Enum):
    """Release classification of a version."""

    RELEASE = "release"
    SNAPSHOT = "snapshot"
    OLD_BETA = "old_beta"
    OLD_ALPHA = "old_alpha"
    PENDING = "pending"


class _ManifestModel(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)


# ---------------------------------------------------------------------------
# Version index (version_manifest_v2.json)
# ---------------------------------------------------------------------------


class VersionReference(_ManifestModel):
    """One entry of the version index."""

    id: str
    type: str
    url: str
    time: str = ""
    release_time: str = Field(default="", alias="releaseTime")
    sha1: str | None = None
    compliance_level: int | None = Field(default=None, alias="complianceLevel")

    @property
    def classifier(self) -> VersionClassifier | None:
        try:
            return VersionClassifier(self.type)
        except ValueError:
            return None


class LatestVersions(_ManifestModel):
    release: str | None = None
    snapshot: str | None = None


class VersionIndex(_ManifestModel):
    """The top-level version index."""

    latest: LatestVersions = LatestVersions()
    versions: list[VersionReference]

    def find(self, version_id: str) -> VersionReference | None:
        for ref in self.versions:
            if ref.id == version_id:
                return ref
        return None

    def alias(self, name: str) -> str | None:
        """Resolve ``release``/``snapshot`` to the latest version id."""
        if name == VersionClassifier.RELEASE.value:
            return self.latest.release
        if name == VersionClassifier.SNAPSHOT.value:
            return self.latest.snapshot
        return None


# ---------------------------------------------------------------------------
# Per-version manifest
# ---------------------------------------------------------------------------


class Download(_ManifestModel):
    url: str
    sha1: str | None = None
    size: int | None = None
    path: str | None = None

    def to_descriptor(self, artifact_id: str, role: str) -> ArtifactDescriptor:
        return ArtifactDescriptor(
            id=artifact_id,
            url=self.url,
            role=role,
            size=self.size,
            hash=(
                ContentHash(algorithm=HashAlgorithm.SHA1, digest=self.sha1.lower())
                if self.sha1
                else None
            ),
            path=self.path,
        )


class OsRule(_ManifestModel):
    name: str | None = None
    version: str | None = None  # regex against the OS version
    arch: str | None = None


class Rule(_ManifestModel):
    action: str
    os: OsRule | None = None
    features: dict[str, bool] | None = None


class LibraryDownloads(_ManifestModel):
    artifact: Download | None = None
    classifiers: dict[str, Download] = {}


class Library(_ManifestModel):
    name: str
    downloads: LibraryDownloads | None = None
    rules: list[Rule] = []
    natives: dict[str, str] = {}
    url: str | None = None  # maven repository base for legacy entries


class JavaVersion(_ManifestModel):
    component: str = ""
    major_version: int = Field(alias="majorVersion")


class VersionManifest(_ManifestModel):
    """A version's own manifest document."""

    id: str
    type: str
    downloads: dict[str, Download] = {}
    libraries: list[Library] = []
    main_class: str | None = Field(default=None, alias="mainClass")
    release_time: str = Field(default="", alias="releaseTime")
    java_version: JavaVersion | None = Field(default=None, alias="javaVersion")

    @property
    def classifier(self) -> VersionClassifier | None:
        try:
            return VersionClassifier(self.type)
        except ValueError:
            return None

    def artifacts(self) -> dict[str, ArtifactDescriptor]:
        """Downloadable artifacts keyed by role.

        Known download keys map to the standard roles; unknown keys keep
        their manifest name as role.
        """
        result: dict[str, ArtifactDescriptor] = {}
        for key in sorted(self.downloads):
            role = DOWNLOAD_ROLES.get(key, key)
            result[role] = self.downloads[key].to_descriptor(f"{self.id}:{key}", role)
        return result

    def artifact(self, role: str) -> ArtifactDescriptor | None:
        return self.artifacts().get(role)

    def libraries_for(self, context: RuleContext | None = None) -> list[ArtifactDescriptor]:
        """Library artifacts whose rules allow them under *context*."""
        from vanillakit.resolver.rules import RuleContext, rules_allow

        context = context or RuleContext.current()
        result: list[ArtifactDescriptor] = []
        for library in self.libraries:
            if library.rules and not rules_allow(library.rules, context):
                continue
            downloads = library.downloads
            if downloads is None:
                continue
            if downloads.artifact is not None:
                result.append(downloads.artifact.to_descriptor(library.name, LIBRARY))
            native_key = library.natives.get(context.os_name)
            if native_key:
                native_key = native_key.replace("${arch}", context.bits)
                native = downloads.classifiers.get(native_key)
                if native is not None:
                    result.append(
                        native.to_descriptor(f"{library.name}:{native_key}", LIBRARY)
                    )
        return result

    @classmethod
    def from_document(cls, document: dict[str, Any]) -> VersionManifest:
        return cls.model_validate(document)
