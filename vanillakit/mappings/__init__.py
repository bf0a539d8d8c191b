"""Mapping providers — registry mapping provider name to parser.

Usage::

    from vanillakit.mappings import load_mappings

    mappings = load_mappings("official", data)
    mappings.map_class("a")  # -> "net/minecraft/Foo"
"""

from __future__ import annotations

from typing import Protocol

from vanillakit.core.errors import MappingFormatError
from vanillakit.mappings.model import MappingSet, translate_javadoc
from vanillakit.mappings.parchment import parse_parchment
from vanillakit.mappings.proguard import parse_proguard
from vanillakit.mappings.tiny import parse_tiny_v2


class MappingParser(Protocol):
    def __call__(
        self, text: str, *, source_namespace: str, target_namespace: str
    ) -> MappingSet: ...


# ---------------------------------------------------------------------------
# Provider registry: provider name -> parser
# ---------------------------------------------------------------------------

MAPPING_PROVIDERS: dict[str, MappingParser] = {
    "official": parse_proguard,
    "tiny": parse_tiny_v2,
    "parchment": parse_parchment,
}

# Providers whose files come from the version manifest rather than the request.
MANIFEST_PROVIDERS: frozenset[str] = frozenset({"official"})


def load_mappings(
    provider: str,
    data: bytes,
    *,
    source_namespace: str = "official",
    target_namespace: str = "named",
) -> MappingSet:
    """Parse mapping bytes with the parser registered for *provider*.

    Raises ``KeyError`` for unknown providers and ``MappingFormatError``
    for malformed data.
    """
    try:
        parser = MAPPING_PROVIDERS[provider]
    except KeyError:
        raise KeyError(
            f"Unknown mapping provider {provider!r}. "
            f"Registered providers: {sorted(MAPPING_PROVIDERS.keys())}"
        ) from None
    try:
        text = data.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise MappingFormatError(f"{provider} mappings are not UTF-8: {exc}") from exc
    if provider == "parchment":
        # Parchment applies within one namespace.
        source_namespace = target_namespace
    return parser(text, source_namespace=source_namespace, target_namespace=target_namespace)


__all__ = [
    "MANIFEST_PROVIDERS",
    "MAPPING_PROVIDERS",
    "MappingSet",
    "load_mappings",
    "parse_parchment",
    "parse_proguard",
    "parse_tiny_v2",
    "translate_javadoc",
]
