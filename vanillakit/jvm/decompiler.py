"""Decompiler engines.

Engines sit behind the ``Decompiler`` protocol and are looked up by name
in ``DECOMPILERS``.  The built-in ``skeleton`` engine emits compilable-ish
Java declarations (package, modifiers, supertypes, fields, method
signatures with stub bodies) from class-file structure alone.  It is a
stand-in with the right shape; richer engines register under other names.
"""

from __future__ import annotations

import json
from typing import Any, Protocol, runtime_checkable

from vanillakit.jvm.classfile import (
    ACC_ABSTRACT,
    ACC_ANNOTATION,
    ACC_BRIDGE,
    ACC_ENUM,
    ACC_FINAL,
    ACC_INTERFACE,
    ACC_NATIVE,
    ACC_PRIVATE,
    ACC_PROTECTED,
    ACC_PUBLIC,
    ACC_STATIC,
    ACC_SYNCHRONIZED,
    ACC_SYNTHETIC,
    ACC_TRANSIENT,
    ACC_VOLATILE,
    ClassFile,
    Member,
)
from vanillakit.jvm.descriptors import (
    argument_slots,
    descriptor_to_java,
    method_argument_types,
    method_return_type,
)

PARAMETERS_PATH = "META-INF/vanillakit/parameters.json"


class SymbolDocs:
    """Parameter names and javadoc recorded by the remap stage.

    Reads the ``parameters.json`` document::

        {"parameters": {"owner name desc": {"1": "value"}},
         "javadoc": {"c owner": [...], "m owner name desc": [...]}}
    """

    def __init__(
        self,
        parameters: dict[str, dict[str, str]] | None = None,
        javadoc: dict[str, list[str]] | None = None,
    ) -> None:
        self.parameters = parameters or {}
        self.javadoc = javadoc or {}

    @classmethod
    def from_bytes(cls, data: bytes | None) -> SymbolDocs:
        if not data:
            return cls()
        document = json.loads(data.decode("utf-8"))
        return cls(document.get("parameters", {}), document.get("javadoc", {}))

    def to_bytes(self) -> bytes:
        document = {"parameters": self.parameters, "javadoc": self.javadoc}
        return json.dumps(document, sort_keys=True, indent=1).encode("utf-8")

    def parameter_name(self, owner: str, name: str, descriptor: str, slot: int) -> str | None:
        return self.parameters.get(f"{owner} {name} {descriptor}", {}).get(str(slot))

    def doc(self, *key: str) -> list[str]:
        return self.javadoc.get(" ".join(key), [])


@runtime_checkable
class Decompiler(Protocol):
    name: str

    def decompile(self, classfile: ClassFile, docs: SymbolDocs, options: dict[str, Any]) -> str:
        """Return Java source text for one class."""
        ...


# ---------------------------------------------------------------------------
# Skeleton engine
# ---------------------------------------------------------------------------


def _class_modifiers(flags: int) -> list[str]:
    words = []
    if flags & ACC_PUBLIC:
        words.append("public")
    if flags & ACC_PROTECTED:
        words.append("protected")
    if flags & ACC_PRIVATE:
        words.append("private")
    if flags & ACC_STATIC:
        words.append("static")
    if flags & ACC_ABSTRACT and not flags & ACC_INTERFACE:
        words.append("abstract")
    if flags & ACC_FINAL and not flags & ACC_ENUM:
        words.append("final")
    return words


def _member_modifiers(flags: int, *, method: bool, in_interface: bool) -> list[str]:
    words = []
    for flag, word in ((ACC_PUBLIC, "public"), (ACC_PROTECTED, "protected"), (ACC_PRIVATE, "private")):
        if flags & flag and not (in_interface and flag == ACC_PUBLIC):
            words.append(word)
    if flags & ACC_STATIC:
        words.append("static")
    if flags & ACC_FINAL:
        words.append("final")
    if method:
        if flags & ACC_ABSTRACT and not in_interface:
            words.append("abstract")
        if flags & ACC_SYNCHRONIZED:
            words.append("synchronized")
        if flags & ACC_NATIVE:
            words.append("native")
        if in_interface and not flags & (ACC_ABSTRACT | ACC_STATIC | ACC_PRIVATE):
            words.append("default")
    else:
        if flags & ACC_VOLATILE:
            words.append("volatile")
        if flags & ACC_TRANSIENT:
            words.append("transient")
    return words


def _java_name(internal: str) -> str:
    return internal.replace("/", ".").replace("$", ".")


def _javadoc(lines: list[str], indent: str) -> list[str]:
    if not lines:
        return []
    body = [f"{indent} * {line}".rstrip() for line in lines]
    return [f"{indent}/**", *body, f"{indent} */"]


class SkeletonDecompiler:
    """Declarations only; every method body throws."""

    name = "skeleton"

    def decompile(self, classfile: ClassFile, docs: SymbolDocs, options: dict[str, Any]) -> str:
        include_private = bool(options.get("include_private", True))
        internal = classfile.name
        package, _, simple = internal.rpartition("/")
        simple = simple.rsplit("$", 1)[-1]
        flags = classfile.access_flags
        interface = bool(flags & ACC_INTERFACE)

        out: list[str] = []
        if package:
            out += [f"package {package.replace('/', '.')};", ""]
        out += _javadoc(docs.doc("c", internal), "")

        if flags & ACC_ANNOTATION:
            kind = "@interface"
        elif interface:
            kind = "interface"
        elif flags & ACC_ENUM:
            kind = "enum"
        else:
            kind = "class"
        header = " ".join([*_class_modifiers(flags), kind, simple])
        super_name = classfile.super_name
        interfaces = [_java_name(n) for n in classfile.interface_names]
        if kind == "class" and super_name and super_name != "java/lang/Object":
            header += f" extends {_java_name(super_name)}"
        if interfaces and kind != "@interface":
            header += (" extends " if interface else " implements ") + ", ".join(interfaces)
        out.append(header + " {")

        for member in classfile.fields:
            if member.access_flags & ACC_SYNTHETIC:
                continue
            if member.access_flags & ACC_PRIVATE and not include_private:
                continue
            name = classfile.member_name(member)
            out += _javadoc(docs.doc("f", internal, name), "    ")
            modifiers = _member_modifiers(member.access_flags, method=False, in_interface=interface)
            java_type = descriptor_to_java(classfile.member_descriptor(member))
            out.append("    " + " ".join([*modifiers, java_type, name]) + ";")

        for member in classfile.methods:
            if member.access_flags & (ACC_SYNTHETIC | ACC_BRIDGE):
                continue
            if member.access_flags & ACC_PRIVATE and not include_private:
                continue
            name = classfile.member_name(member)
            if name == "<clinit>":
                continue
            out.append("")
            out += self._method(classfile, member, docs, simple, interface)

        out.append("}")
        return "\n".join(out) + "\n"

    def _method(
        self,
        classfile: ClassFile,
        member: Member,
        docs: SymbolDocs,
        simple: str,
        interface: bool,
    ) -> list[str]:
        owner = classfile.name
        name = classfile.member_name(member)
        descriptor = classfile.member_descriptor(member)
        flags = member.access_flags
        is_static = bool(flags & ACC_STATIC)

        params = []
        for position, (arg, slot) in enumerate(
            zip(method_argument_types(descriptor), argument_slots(descriptor, is_static))
        ):
            param = docs.parameter_name(owner, name, descriptor, slot) or f"arg{position}"
            params.append(f"{descriptor_to_java(arg)} {param}")

        modifiers = _member_modifiers(flags, method=True, in_interface=interface)
        if name == "<init>":
            signature = " ".join([*modifiers, simple])
        else:
            signature = " ".join([*modifiers, descriptor_to_java(method_return_type(descriptor)), name])
        signature += "(" + ", ".join(params) + ")"

        lines = _javadoc(docs.doc("m", owner, name, descriptor), "    ")
        if flags & (ACC_ABSTRACT | ACC_NATIVE):
            lines.append(f"    {signature};")
        else:
            lines += [
                f"    {signature} {{",
                "        throw new UnsupportedOperationException();",
                "    }",
            ]
        return lines


def placeholder_source(class_path: str, reason: str) -> str:
    """Stand-in source for a class that could not be decompiled."""
    safe = reason.replace("*/", "* /")
    return f"/*\n * Decompilation failed for {class_path}\n * {safe}\n */\n"


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

DECOMPILERS: dict[str, Decompiler] = {
    SkeletonDecompiler.name: SkeletonDecompiler(),
}


def get_decompiler(name: str) -> Decompiler:
    try:
        return DECOMPILERS[name]
    except KeyError:
        raise KeyError(
            f"Unknown decompiler {name!r}. Registered engines: {sorted(DECOMPILERS.keys())}"
        ) from None
