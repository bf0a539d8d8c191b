"""Version resolution: manifest resolver, library rules, server bundles."""

from vanillakit.resolver.bundler import BundledEntry, extract_server_jar
from vanillakit.resolver.rules import RuleContext, rules_allow
from vanillakit.resolver.version_manifest import (
    VersionManifestResolver,
    parse_index,
    parse_version_manifest,
)

__all__ = [
    "BundledEntry",
    "RuleContext",
    "VersionManifestResolver",
    "extract_server_jar",
    "parse_index",
    "parse_version_manifest",
    "rules_allow",
]
