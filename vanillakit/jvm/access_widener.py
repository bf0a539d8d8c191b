"""Access widener files: parsing and applying them to class files.

Format::

    accessWidener v2 named
    # comment
    accessible class net/minecraft/Foo
    extendable method net/minecraft/Foo bar (I)V
    transitive-mutable field net/minecraft/Foo count I

``transitive-`` variants are only valid in v2 files; they are applied
exactly like their plain counterparts (transitivity only matters to
tools that re-export wideners).
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from vanillakit.core.errors import TargetNotFoundError, WidenerFormatError
from vanillakit.jvm.classfile import (
    ACC_FINAL,
    ACC_INTERFACE,
    ACC_PRIVATE,
    ACC_PROTECTED,
    ACC_PUBLIC,
    ACC_STATIC,
    VISIBILITY_MASK,
    ClassFile,
)


class Access(str, Enum):
    ACCESSIBLE = "accessible"
    EXTENDABLE = "extendable"
    MUTABLE = "mutable"


class TargetKind(str, Enum):
    CLASS = "class"
    METHOD = "method"
    FIELD = "field"


ALLOWED_ACCESS: dict[TargetKind, frozenset[Access]] = {
    TargetKind.CLASS: frozenset({Access.ACCESSIBLE, Access.EXTENDABLE}),
    TargetKind.METHOD: frozenset({Access.ACCESSIBLE, Access.EXTENDABLE}),
    TargetKind.FIELD: frozenset({Access.ACCESSIBLE, Access.MUTABLE}),
}


@dataclass(frozen=True)
class WidenerEntry:
    access: Access
    kind: TargetKind
    owner: str
    name: str = ""
    descriptor: str = ""
    transitive: bool = False
    line: int = 0

    def describe(self) -> str:
        if self.kind is TargetKind.CLASS:
            return f"class {self.owner}"
        return f"{self.kind.value} {self.owner}.{self.name} {self.descriptor}"


@dataclass(frozen=True)
class AccessWidener:
    version: int
    namespace: str
    entries: tuple[WidenerEntry, ...]

    def for_class(self, name: str) -> list[WidenerEntry]:
        return [e for e in self.entries if e.owner == name]

    @property
    def owners(self) -> set[str]:
        return {e.owner for e in self.entries}


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


def parse_access_widener(text: str, *, source: str = "access widener") -> AccessWidener:
    """Parse widener text; raises ``WidenerFormatError`` with the line number."""
    lines = text.splitlines()
    header_index = next(
        (i for i, line in enumerate(lines) if line.split("#", 1)[0].strip()), None
    )
    if header_index is None:
        raise WidenerFormatError(f"{source}: empty file")
    header = lines[header_index].split("#", 1)[0].split()
    if len(header) != 3 or header[0] != "accessWidener" or header[1] not in ("v1", "v2"):
        raise WidenerFormatError(
            f"{source}:{header_index + 1}: expected 'accessWidener v1|v2 <namespace>', "
            f"got {lines[header_index]!r}"
        )
    version = int(header[1][1:])

    entries: list[WidenerEntry] = []
    for lineno, raw in enumerate(lines[header_index + 1:], start=header_index + 2):
        tokens = raw.split("#", 1)[0].split()
        if not tokens:
            continue
        where = f"{source}:{lineno}"
        access_token = tokens[0]
        transitive = access_token.startswith("transitive-")
        if transitive:
            if version < 2:
                raise WidenerFormatError(f"{where}: transitive access requires v2")
            access_token = access_token[len("transitive-"):]
        try:
            access = Access(access_token)
        except ValueError:
            raise WidenerFormatError(f"{where}: unknown access {tokens[0]!r}") from None
        if len(tokens) < 2:
            raise WidenerFormatError(f"{where}: missing target kind")
        try:
            kind = TargetKind(tokens[1])
        except ValueError:
            raise WidenerFormatError(f"{where}: unknown target kind {tokens[1]!r}") from None
        if access not in ALLOWED_ACCESS[kind]:
            raise WidenerFormatError(f"{where}: {access.value} is not valid for a {kind.value}")
        expected = 3 if kind is TargetKind.CLASS else 5
        if len(tokens) != expected:
            raise WidenerFormatError(
                f"{where}: {kind.value} entries take {expected - 2} operands, got {len(tokens) - 2}"
            )
        if kind is TargetKind.CLASS:
            entries.append(WidenerEntry(access, kind, tokens[2], transitive=transitive, line=lineno))
        else:
            entries.append(
                WidenerEntry(access, kind, tokens[2], tokens[3], tokens[4], transitive, lineno)
            )
    return AccessWidener(version=version, namespace=header[2], entries=tuple(entries))


# ---------------------------------------------------------------------------
# Applying
# ---------------------------------------------------------------------------


def make_public(flags: int) -> int:
    return (flags & ~VISIBILITY_MASK) | ACC_PUBLIC


def make_protected(flags: int) -> int:
    if flags & ACC_PUBLIC:
        return flags
    return (flags & ~VISIBILITY_MASK) | ACC_PROTECTED


def widen_class_flags(flags: int, access: Access) -> int:
    flags = make_public(flags)
    if access is Access.EXTENDABLE:
        flags &= ~ACC_FINAL
    return flags


def widen_method_flags(flags: int, access: Access, *, constructor: bool, interface: bool) -> int:
    if access is Access.ACCESSIBLE:
        if flags & ACC_PRIVATE and not constructor and not flags & ACC_STATIC and not interface:
            # A formerly private instance method must not become overridable.
            flags |= ACC_FINAL
        return make_public(flags)
    return make_protected(flags) & ~ACC_FINAL


def widen_field_flags(flags: int, access: Access) -> int:
    if access is Access.ACCESSIBLE:
        return make_public(flags)
    return flags & ~ACC_FINAL


def apply_access_widener(classfile: ClassFile, entries: list[WidenerEntry]) -> None:
    """Apply *entries* (all owned by this class) to *classfile* in place.

    Raises ``TargetNotFoundError`` when a named member does not exist.
    """
    interface = bool(classfile.access_flags & ACC_INTERFACE)
    for entry in entries:
        if entry.kind is TargetKind.CLASS:
            classfile.access_flags = widen_class_flags(classfile.access_flags, entry.access)
        elif entry.kind is TargetKind.METHOD:
            member = classfile.find_method(entry.name, entry.descriptor)
            if member is None:
                raise TargetNotFoundError(entry.describe())
            member.access_flags = widen_method_flags(
                member.access_flags,
                entry.access,
                constructor=entry.name == "<init>",
                interface=interface,
            )
        else:
            member = classfile.find_field(entry.name, entry.descriptor)
            if member is None:
                raise TargetNotFoundError(entry.describe())
            member.access_flags = widen_field_flags(member.access_flags, entry.access)


def widen_inner_class_entries(classfile: ClassFile, widened: dict[str, Access]) -> bool:
    """Mirror class widening in this class's ``InnerClasses`` table.

    *widened* maps class names to the access applied to them.  Returns
    whether anything changed.
    """
    entries = classfile.inner_classes()
    changed = False
    for entry in entries:
        name = classfile.class_name(entry.inner_class_index)
        access = widened.get(name)
        if access is None:
            continue
        flags = widen_class_flags(entry.access_flags, access)
        if flags != entry.access_flags:
            entry.access_flags = flags
            changed = True
    if changed:
        classfile.set_inner_classes(entries)
    return changed
