"""Descriptor and generic-signature helpers."""

from __future__ import annotations

import re
from typing import Callable

_CLASS_IN_DESCRIPTOR = re.compile(r"L([^;]+);")

PRIMITIVES: dict[str, str] = {
    "B": "byte",
    "C": "char",
    "D": "double",
    "F": "float",
    "I": "int",
    "J": "long",
    "S": "short",
    "Z": "boolean",
    "V": "void",
}
PRIMITIVE_DESCRIPTORS: dict[str, str] = {v: k for k, v in PRIMITIVES.items()}

ClassMapper = Callable[[str], str]


def remap_descriptor(descriptor: str, map_class: ClassMapper) -> str:
    """Rename every class type in a field or method descriptor."""
    return _CLASS_IN_DESCRIPTOR.sub(lambda m: f"L{map_class(m.group(1))};", descriptor)


def remap_internal_name(name: str, map_class: ClassMapper) -> str:
    """Rename a CONSTANT_Class name, which may be an array descriptor."""
    if name.startswith("["):
        return remap_descriptor(name, map_class)
    return map_class(name)


def method_argument_types(descriptor: str) -> list[str]:
    """Split a method descriptor's arguments into single type descriptors."""
    if not descriptor.startswith("("):
        raise ValueError(f"Not a method descriptor: {descriptor!r}")
    args: list[str] = []
    i = 1
    while descriptor[i] != ")":
        start = i
        while descriptor[i] == "[":
            i += 1
        if descriptor[i] == "L":
            i = descriptor.index(";", i)
        i += 1
        args.append(descriptor[start:i])
    return args


def method_return_type(descriptor: str) -> str:
    return descriptor[descriptor.index(")") + 1:]


def argument_slots(descriptor: str, is_static: bool) -> list[int]:
    """Local-variable slot of each argument (long and double take two)."""
    slot = 0 if is_static else 1
    slots = []
    for arg in method_argument_types(descriptor):
        slots.append(slot)
        slot += 2 if arg in ("J", "D") else 1
    return slots


def descriptor_to_java(descriptor: str) -> str:
    """``[Ljava/util/Map$Entry;`` -> ``java.util.Map.Entry[]``."""
    dims = len(descriptor) - len(descriptor.lstrip("["))
    base = descriptor[dims:]
    if base.startswith("L"):
        name = base[1:-1].replace("/", ".").replace("$", ".")
    else:
        name = PRIMITIVES[base]
    return name + "[]" * dims


def java_to_descriptor(java_type: str, map_class: ClassMapper | None = None) -> str:
    """``java.lang.String[]`` -> ``[Ljava/lang/String;`` (ProGuard type syntax).

    *map_class* receives the internal name of class types, e.g. to turn
    named types into obfuscated ones.
    """
    dims = 0
    while java_type.endswith("[]"):
        java_type = java_type[:-2]
        dims += 1
    if java_type in PRIMITIVE_DESCRIPTORS:
        base = PRIMITIVE_DESCRIPTORS[java_type]
    else:
        internal = java_type.replace(".", "/")
        if map_class is not None:
            internal = map_class(internal)
        base = f"L{internal};"
    return "[" * dims + base


# ---------------------------------------------------------------------------
# Generic signatures
# ---------------------------------------------------------------------------


class _SignatureRemapper:
    """Recursive-descent rewrite of class names in a generic signature."""

    def __init__(self, signature: str, map_class: ClassMapper) -> None:
        self.sig = signature
        self.map_class = map_class
        self.i = 0
        self.out: list[str] = []

    def run(self) -> str:
        if self.sig.startswith("<"):
            self._formal_type_parameters()
        while self.i < len(self.sig):
            c = self.sig[self.i]
            if c in "()^" or c in PRIMITIVES:
                self.out.append(c)
                self.i += 1
            else:
                self._reference_type()
        return "".join(self.out)

    def _read_until(self, stops: str) -> str:
        start = self.i
        while self.sig[self.i] not in stops:
            self.i += 1
        return self.sig[start:self.i]

    def _formal_type_parameters(self) -> None:
        self.out.append("<")
        self.i += 1
        while self.sig[self.i] != ">":
            self.out.append(self._read_until(":"))
            # class bound (may be empty) followed by interface bounds
            while self.sig[self.i] == ":":
                self.out.append(":")
                self.i += 1
                if self.sig[self.i] not in ":>" and not self._at_identifier_end():
                    self._reference_type()
        self.out.append(">")
        self.i += 1

    def _at_identifier_end(self) -> bool:
        # After an empty class bound the next char starts an interface bound
        # (':') or the next type parameter identifier.
        return self.sig[self.i] not in "LT["

    def _reference_type(self) -> None:
        c = self.sig[self.i]
        if c == "L":
            self._class_type()
        elif c == "T":
            self.out.append(self._read_until(";") + ";")
            self.i += 1
        elif c == "[":
            self.out.append("[")
            self.i += 1
            if self.sig[self.i] in PRIMITIVES:
                self.out.append(self.sig[self.i])
                self.i += 1
            else:
                self._reference_type()
        else:
            raise ValueError(f"Unexpected {c!r} at {self.i} in signature {self.sig!r}")

    def _class_type(self) -> None:
        self.i += 1  # 'L'
        outer = self._read_until("<.;")
        mapped = self.map_class(outer)
        self.out.append("L" + mapped)
        self._type_arguments()
        while self.sig[self.i] == ".":
            self.i += 1
            simple = self._read_until("<.;")
            outer = f"{outer}${simple}"
            inner_mapped = self.map_class(outer)
            if inner_mapped.startswith(mapped + "$"):
                simple = inner_mapped[len(mapped) + 1:]
            else:
                simple = inner_mapped.rsplit("$", 1)[-1]
            mapped = inner_mapped
            self.out.append("." + simple)
            self._type_arguments()
        self.out.append(";")
        self.i += 1

    def _type_arguments(self) -> None:
        if self.sig[self.i] != "<":
            return
        self.out.append("<")
        self.i += 1
        while self.sig[self.i] != ">":
            c = self.sig[self.i]
            if c == "*":
                self.out.append("*")
                self.i += 1
                continue
            if c in "+-":
                self.out.append(c)
                self.i += 1
            self._reference_type()
        self.out.append(">")
        self.i += 1


def remap_signature(signature: str, map_class: ClassMapper) -> str:
    """Rename every class in a class, field or method generic signature."""
    try:
        return _SignatureRemapper(signature, map_class).run()
    except IndexError:
        raise ValueError(f"Truncated generic signature {signature!r}") from None
