"""Parchment-style JSON: parameter names and javadoc for already-named classes.

Parchment does not rename anything; its keys are in the namespace of the
jar it is applied to (normally ``named``, after the official mappings).
"""

from __future__ import annotations

import json
from typing import Any

from vanillakit.core.errors import MappingFormatError
from vanillakit.mappings.model import MappingSet


def _lines(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    return [str(line) for line in value]


def parse_parchment(
    text: str,
    *,
    source_namespace: str = "named",
    target_namespace: str = "named",
) -> MappingSet:
    """Parse a Parchment export (``parchment.json``)."""
    try:
        document = json.loads(text)
    except json.JSONDecodeError as exc:
        raise MappingFormatError(f"Parchment data is not valid JSON: {exc}") from exc
    if not isinstance(document, dict) or not isinstance(document.get("classes", []), list):
        raise MappingFormatError("Parchment data must be an object with a 'classes' list")

    result = MappingSet(source_namespace=source_namespace, target_namespace=target_namespace)
    try:
        for cls in document.get("classes", []):
            owner = cls["name"]
            if cls.get("javadoc"):
                result.javadoc[("c", owner)] = _lines(cls["javadoc"])
            for field in cls.get("fields", []):
                if field.get("javadoc"):
                    result.javadoc[("f", owner, field["name"])] = _lines(field["javadoc"])
            for method in cls.get("methods", []):
                name, descriptor = method["name"], method["descriptor"]
                if method.get("javadoc"):
                    result.javadoc[("m", owner, name, descriptor)] = _lines(method["javadoc"])
                for param in method.get("parameters", []):
                    if param.get("name"):
                        result.parameters.setdefault((owner, name, descriptor), {})[
                            int(param["index"])
                        ] = param["name"]
    except (KeyError, TypeError, ValueError) as exc:
        raise MappingFormatError(f"Malformed Parchment entry: {exc!r}") from exc
    return result
