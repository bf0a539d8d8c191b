"""Tiny v2 mapping files.

::

    tiny	2	0	official	intermediary	named
    c	a	net/minecraft/class_1	net/minecraft/Foo
    	f	I	a	field_1	count
    	m	(I)V	a	method_1	setCount
    		p	1			value

Descriptors are written in the first namespace.  Empty names fall back to
the first namespace's name.
"""

from __future__ import annotations

from vanillakit.core.errors import MappingFormatError
from vanillakit.jvm.descriptors import remap_descriptor
from vanillakit.mappings.model import MappingSet

_ESCAPES = {"\\\\": "\\", "\\n": "\n", "\\r": "\r", "\\t": "\t", "\\0": "\0"}


def _unescape(value: str) -> str:
    if "\\" not in value:
        return value
    out = []
    i = 0
    while i < len(value):
        pair = value[i:i + 2]
        if pair in _ESCAPES:
            out.append(_ESCAPES[pair])
            i += 2
        else:
            out.append(value[i])
            i += 1
    return "".join(out)


def parse_tiny_v2(
    text: str,
    *,
    source_namespace: str = "official",
    target_namespace: str = "named",
) -> MappingSet:
    """Parse tiny v2 text, mapping *source_namespace* -> *target_namespace*."""
    lines = text.splitlines()
    if not lines:
        raise MappingFormatError("empty tiny file")
    header = lines[0].split("\t")
    if len(header) < 5 or header[0] != "tiny" or header[1] != "2":
        raise MappingFormatError(f"not a tiny v2 header: {lines[0]!r}")
    namespaces = header[3:]
    for ns in (source_namespace, target_namespace):
        if ns not in namespaces:
            raise MappingFormatError(f"namespace {ns!r} not in {namespaces}")
    src = namespaces.index(source_namespace)
    dst = namespaces.index(target_namespace)
    escaped = False

    classes: list[list[str]] = []
    members: list[tuple[str, list[str], list[str]]] = []  # (kind, class names, [desc, *names])
    params: list[tuple[list[str], list[str], int, str]] = []
    docs: list[tuple[list[str], list[str] | None, str]] = []
    current_class: list[str] | None = None
    current_method: list[str] | None = None

    def names_of(raw: list[str], lineno: int) -> list[str]:
        if len(raw) < len(namespaces):
            raw = raw + [""] * (len(namespaces) - len(raw))
        names = [_unescape(n) if escaped else n for n in raw[: len(namespaces)]]
        if not names[0]:
            raise MappingFormatError(f"line {lineno}: missing name in first namespace")
        return [n or names[0] for n in names]

    in_header = True
    for lineno, line in enumerate(lines[1:], start=2):
        if not line.strip():
            continue
        depth = len(line) - len(line.lstrip("\t"))
        parts = line[depth:].split("\t")
        kind = parts[0]
        if in_header and depth == 1:
            if kind == "escaped-names":
                escaped = True
            continue
        in_header = False
        if depth == 0 and kind == "c":
            current_class = names_of(parts[1:], lineno)
            current_method = None
            classes.append(current_class)
        elif depth == 1 and kind in ("f", "m"):
            if current_class is None:
                raise MappingFormatError(f"line {lineno}: member outside of a class")
            if len(parts) < 3:
                raise MappingFormatError(f"line {lineno}: malformed member")
            entry = [parts[1], *names_of(parts[2:], lineno)]
            members.append((kind, current_class, entry))
            current_method = entry if kind == "m" else None
        elif depth == 2 and kind == "p":
            if current_method is None or current_class is None:
                raise MappingFormatError(f"line {lineno}: parameter outside of a method")
            try:
                slot = int(parts[1])
            except (IndexError, ValueError):
                raise MappingFormatError(f"line {lineno}: bad parameter index") from None
            raw = parts[2:] + [""] * (len(namespaces) - len(parts[2:]))
            target = raw[dst] if dst < len(raw) else ""
            if target:
                params.append((current_class, current_method, slot, target))
        elif kind == "c" and depth >= 1:
            comment = _unescape(parts[1]) if len(parts) > 1 else ""
            if depth == 1 and current_class is not None:
                docs.append((current_class, None, comment))
            elif depth == 2 and current_method is not None and current_class is not None:
                docs.append((current_class, current_method, comment))
        # local variables ("v") and unknown sections are ignored

    result = MappingSet(source_namespace=source_namespace, target_namespace=target_namespace)
    first_to_src = {names[0]: names[src] for names in classes}

    def src_descriptor(descriptor: str) -> str:
        if src == 0:
            return descriptor
        return remap_descriptor(descriptor, lambda n: first_to_src.get(n, n))

    for names in classes:
        result.classes[names[src]] = names[dst]
    for kind, owner_names, entry in members:
        descriptor, names = entry[0], entry[1:]
        owner = owner_names[src]
        if kind == "f":
            result.fields[(owner, names[src])] = names[dst]
        else:
            result.methods[(owner, names[src], src_descriptor(descriptor))] = names[dst]
    for owner_names, method, slot, name in params:
        method_key = (owner_names[src], method[1 + src], src_descriptor(method[0]))
        result.parameters.setdefault(method_key, {})[slot] = name
    for owner_names, method, comment in docs:
        if method is None:
            key: tuple[str, ...] = ("c", owner_names[src])
        else:
            key = ("m", owner_names[src], method[1 + src], src_descriptor(method[0]))
        result.javadoc.setdefault(key, []).append(comment)
    return result
