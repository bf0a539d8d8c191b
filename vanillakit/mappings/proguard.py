"""ProGuard mapping files, the format of the official mappings.

The file maps named -> obfuscated::

    net.minecraft.client.Main -> net.minecraft.client.main.Main:
        java.lang.String VERSION -> a
        1:4:void main(java.lang.String[]) -> main

It is read reversed, producing an obfuscated -> named ``MappingSet`` whose
member descriptors are expressed with obfuscated class names.
"""

from __future__ import annotations

import re

from vanillakit.core.errors import MappingFormatError
from vanillakit.jvm.descriptors import java_to_descriptor
from vanillakit.mappings.model import MappingSet

_CLASS_LINE = re.compile(r"^(\S+) -> (\S+):$")
_METHOD_LINE = re.compile(
    r"^(?:\d+:\d+:)?(\S+) ([^\s(]+)\(([^)]*)\)(?::\d+(?::\d+)?)? -> (\S+)$"
)
_FIELD_LINE = re.compile(r"^(\S+) (\S+) -> (\S+)$")


def _internal(java_name: str) -> str:
    return java_name.replace(".", "/")


def parse_proguard(
    text: str,
    *,
    source_namespace: str = "official",
    target_namespace: str = "named",
) -> MappingSet:
    """Parse ProGuard text into an obfuscated -> named mapping set."""
    lines = text.splitlines()

    # First pass: class names, needed to express descriptors in obf names.
    named_to_obf: dict[str, str] = {}
    for lineno, line in enumerate(lines, start=1):
        if not line or line.startswith("#") or line[0].isspace():
            continue
        match = _CLASS_LINE.match(line.rstrip())
        if match is None:
            raise MappingFormatError(f"line {lineno}: malformed class line {line!r}")
        named_to_obf[_internal(match.group(1))] = _internal(match.group(2))

    def to_obf(internal_name: str) -> str:
        return named_to_obf.get(internal_name, internal_name)

    result = MappingSet(source_namespace=source_namespace, target_namespace=target_namespace)
    for named, obf in named_to_obf.items():
        result.classes[obf] = named

    owner: str | None = None
    for lineno, line in enumerate(lines, start=1):
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue
        if not line[0].isspace():
            owner = named_to_obf[_internal(_CLASS_LINE.match(line.rstrip()).group(1))]
            continue
        if owner is None:
            raise MappingFormatError(f"line {lineno}: member outside of a class")
        method = _METHOD_LINE.match(stripped)
        if method is not None:
            return_type, name, args, obf_name = method.groups()
            arg_types = [a.strip() for a in args.split(",") if a.strip()]
            descriptor = "(" + "".join(java_to_descriptor(a, to_obf) for a in arg_types) + ")"
            descriptor += java_to_descriptor(return_type, to_obf)
            result.methods[(owner, obf_name, descriptor)] = name
            continue
        field = _FIELD_LINE.match(stripped)
        if field is not None:
            _type, name, obf_name = field.groups()
            result.fields[(owner, obf_name)] = name
            continue
        raise MappingFormatError(f"line {lineno}: malformed member line {stripped!r}")
    return result
