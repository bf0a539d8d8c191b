"""The mapping-set model shared by all mapping providers.

A ``MappingSet`` translates names from a source namespace to a target
namespace.  All keys use source-namespace names and descriptors; member
lookups walk the class hierarchy so an inherited member resolves through
the class that declares it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable

from vanillakit.jvm.descriptors import remap_descriptor

# class -> (super class, interfaces...) in the source namespace
Hierarchy = dict[str, list[str]]


@dataclass
class MappingSet:
    source_namespace: str = "official"
    target_namespace: str = "named"
    classes: dict[str, str] = field(default_factory=dict)
    # (owner, name) -> name; (owner, name, descriptor) -> name
    fields: dict[tuple[str, str], str] = field(default_factory=dict)
    methods: dict[tuple[str, str, str], str] = field(default_factory=dict)
    # (owner, method, descriptor) -> {local variable slot: name}
    parameters: dict[tuple[str, str, str], dict[int, str]] = field(default_factory=dict)
    # ("c", owner) | ("f", owner, name) | ("m", owner, name, descriptor) -> lines
    javadoc: dict[tuple[str, ...], list[str]] = field(default_factory=dict)

    @property
    def renames(self) -> bool:
        """Whether the set renames anything (parameter-only sets do not)."""
        return bool(self.classes or self.fields or self.methods)

    def __len__(self) -> int:
        return len(self.classes) + len(self.fields) + len(self.methods)

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def map_class(self, name: str) -> str:
        """Target name of a class; unmapped inner classes follow their outer."""
        mapped = self.classes.get(name)
        if mapped is not None:
            return mapped
        outer, sep, inner = name.rpartition("$")
        if sep and outer:
            return f"{self.map_class(outer)}${inner}"
        return name

    def has_class(self, name: str) -> bool:
        return name in self.classes

    def map_descriptor(self, descriptor: str) -> str:
        return remap_descriptor(descriptor, self.map_class)

    def _walk(self, owner: str, hierarchy: Hierarchy | None) -> list[str]:
        """*owner* followed by its ancestors, breadth first."""
        order = [owner]
        seen = {owner}
        i = 0
        while i < len(order) and hierarchy:
            for parent in hierarchy.get(order[i], []):
                if parent not in seen:
                    seen.add(parent)
                    order.append(parent)
            i += 1
        return order

    def lookup_field(self, owner: str, name: str, hierarchy: Hierarchy | None = None) -> str | None:
        for candidate in self._walk(owner, hierarchy):
            mapped = self.fields.get((candidate, name))
            if mapped is not None:
                return mapped
        return None

    def lookup_method(
        self, owner: str, name: str, descriptor: str, hierarchy: Hierarchy | None = None
    ) -> str | None:
        if name.startswith("<"):
            return None
        for candidate in self._walk(owner, hierarchy):
            mapped = self.methods.get((candidate, name, descriptor))
            if mapped is not None:
                return mapped
        return None

    def map_field(self, owner: str, name: str, hierarchy: Hierarchy | None = None) -> str:
        return self.lookup_field(owner, name, hierarchy) or name

    def map_method(
        self, owner: str, name: str, descriptor: str, hierarchy: Hierarchy | None = None
    ) -> str:
        return self.lookup_method(owner, name, descriptor, hierarchy) or name

    # ------------------------------------------------------------------
    # Composition
    # ------------------------------------------------------------------

    def update(self, other: MappingSet) -> None:
        """Add entries of *other* that this set does not define yet."""
        for key, value in other.classes.items():
            self.classes.setdefault(key, value)
        for key, value in other.fields.items():
            self.fields.setdefault(key, value)
        for key, value in other.methods.items():
            self.methods.setdefault(key, value)
        for key, params in other.parameters.items():
            merged = self.parameters.setdefault(key, {})
            for slot, name in params.items():
                merged.setdefault(slot, name)
        for key, lines in other.javadoc.items():
            self.javadoc.setdefault(key, lines)

    def translate_parameters(self) -> dict[tuple[str, str, str], dict[int, str]]:
        """Parameter names keyed by target-namespace owner, name and descriptor."""
        result: dict[tuple[str, str, str], dict[int, str]] = {}
        for (owner, name, descriptor), params in self.parameters.items():
            key = (
                self.map_class(owner),
                self.map_method(owner, name, descriptor),
                self.map_descriptor(descriptor),
            )
            result.setdefault(key, {}).update(params)
        return result


def reverse_class_map(classes: dict[str, str]) -> Callable[[str], str]:
    """Mapper from target names back to source names, identity when unknown."""
    reverse = {target: source for source, target in classes.items()}
    return lambda name: reverse.get(name, name)


def translate_javadoc(mappings: MappingSet) -> dict[tuple[str, ...], list[str]]:
    """Javadoc keyed by target-namespace names."""
    result: dict[tuple[str, ...], list[str]] = {}
    for key, lines in mappings.javadoc.items():
        kind, owner = key[0], key[1]
        if kind == "c":
            result[("c", mappings.map_class(owner))] = lines
        elif kind == "f":
            result[("f", mappings.map_class(owner), mappings.map_field(owner, key[2]))] = lines
        elif kind == "m":
            name, descriptor = key[2], key[3]
            result[(
                "m",
                mappings.map_class(owner),
                mappings.map_method(owner, name, descriptor),
                mappings.map_descriptor(descriptor),
            )] = lines
    return result
