"""Minimal JVM class-file reader/writer.

Enough structure to rename classes and members, remap descriptors and
generic signatures, and change access flags.  Method bodies and every
attribute the tools do not touch are carried through as opaque bytes, so
``ClassFile.parse(data).to_bytes() == data`` for compiler-produced input.

The constant pool is only ever appended to: entries are shared by index and
a UTF-8 constant may back both a name and a string literal, so rewriting
one in place could change unrelated code.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass, field
from typing import Any

MAGIC = 0xCAFEBABE

# Constant pool tags.
CONSTANT_UTF8 = 1
CONSTANT_INTEGER = 3
CONSTANT_FLOAT = 4
CONSTANT_LONG = 5
CONSTANT_DOUBLE = 6
CONSTANT_CLASS = 7
CONSTANT_STRING = 8
CONSTANT_FIELDREF = 9
CONSTANT_METHODREF = 10
CONSTANT_INTERFACE_METHODREF = 11
CONSTANT_NAME_AND_TYPE = 12
CONSTANT_METHOD_HANDLE = 15
CONSTANT_METHOD_TYPE = 16
CONSTANT_DYNAMIC = 17
CONSTANT_INVOKE_DYNAMIC = 18
CONSTANT_MODULE = 19
CONSTANT_PACKAGE = 20

# Access flags.
ACC_PUBLIC = 0x0001
ACC_PRIVATE = 0x0002
ACC_PROTECTED = 0x0004
ACC_STATIC = 0x0008
ACC_FINAL = 0x0010
ACC_SYNCHRONIZED = 0x0020
ACC_SUPER = 0x0020
ACC_VOLATILE = 0x0040
ACC_BRIDGE = 0x0040
ACC_TRANSIENT = 0x0080
ACC_VARARGS = 0x0080
ACC_NATIVE = 0x0100
ACC_INTERFACE = 0x0200
ACC_ABSTRACT = 0x0400
ACC_STRICT = 0x0800
ACC_SYNTHETIC = 0x1000
ACC_ANNOTATION = 0x2000
ACC_ENUM = 0x4000

VISIBILITY_MASK = ACC_PUBLIC | ACC_PRIVATE | ACC_PROTECTED

_FIXED_SIZES = {
    CONSTANT_INTEGER: 4,
    CONSTANT_FLOAT: 4,
    CONSTANT_LONG: 8,
    CONSTANT_DOUBLE: 8,
}
_REF_TAGS = {
    CONSTANT_CLASS: 1,
    CONSTANT_STRING: 1,
    CONSTANT_FIELDREF: 2,
    CONSTANT_METHODREF: 2,
    CONSTANT_INTERFACE_METHODREF: 2,
    CONSTANT_NAME_AND_TYPE: 2,
    CONSTANT_METHOD_TYPE: 1,
    CONSTANT_DYNAMIC: 2,
    CONSTANT_INVOKE_DYNAMIC: 2,
    CONSTANT_MODULE: 1,
    CONSTANT_PACKAGE: 1,
}


class ClassFormatError(ValueError):
    """The bytes are not a well-formed class file."""


def is_class_bytes(data: bytes) -> bool:
    return len(data) >= 4 and struct.unpack_from(">I", data)[0] == MAGIC


# ---------------------------------------------------------------------------
# Modified UTF-8
# ---------------------------------------------------------------------------


def decode_modified_utf8(raw: bytes) -> str:
    """Decode JVM modified UTF-8 (NUL as C0 80, supplementary chars as surrogates)."""
    try:
        return raw.replace(b"\xc0\x80", b"\x00").decode("utf-8", "surrogatepass")
    except UnicodeDecodeError as exc:
        raise ClassFormatError(f"Invalid modified UTF-8 constant: {exc}") from exc


def encode_modified_utf8(text: str) -> bytes:
    chars = []
    for ch in text:
        code = ord(ch)
        if code > 0xFFFF:
            code -= 0x10000
            chars.append(chr(0xD800 + (code >> 10)))
            chars.append(chr(0xDC00 + (code & 0x3FF)))
        else:
            chars.append(ch)
    return "".join(chars).encode("utf-8", "surrogatepass").replace(b"\x00", b"\xc0\x80")


# ---------------------------------------------------------------------------
# Structures
# ---------------------------------------------------------------------------


@dataclass
class Constant:
    """One constant-pool entry.

    ``value`` is a ``str`` for UTF-8 entries, raw bytes for numeric entries,
    ``(kind, index)`` for method handles and a tuple of pool indices for
    every other tag.
    """

    tag: int
    value: Any

    @property
    def wide(self) -> bool:
        return self.tag in (CONSTANT_LONG, CONSTANT_DOUBLE)


@dataclass
class Attribute:
    name_index: int
    data: bytes


@dataclass
class Member:
    """A field or method."""

    access_flags: int
    name_index: int
    descriptor_index: int
    attributes: list[Attribute] = field(default_factory=list)


@dataclass
class InnerClassEntry:
    inner_class_index: int
    outer_class_index: int
    inner_name_index: int
    access_flags: int


class _Reader:
    def __init__(self, data: bytes) -> None:
        self.data = data
        self.pos = 0

    def take(self, size: int) -> bytes:
        end = self.pos + size
        if end > len(self.data):
            raise ClassFormatError(f"Truncated class file at offset {self.pos}")
        chunk = self.data[self.pos:end]
        self.pos = end
        return chunk

    def u1(self) -> int:
        return self.take(1)[0]

    def u2(self) -> int:
        return struct.unpack(">H", self.take(2))[0]

    def u4(self) -> int:
        return struct.unpack(">I", self.take(4))[0]


@dataclass
class ClassFile:
    minor_version: int
    major_version: int
    pool: list[Constant | None]
    access_flags: int
    this_class: int
    super_class: int
    interfaces: list[int]
    fields: list[Member]
    methods: list[Member]
    attributes: list[Attribute]
    _lookup: dict[tuple[int, Any], int] | None = field(default=None, repr=False, compare=False)
    _lookup_size: int = field(default=0, repr=False, compare=False)

    # ------------------------------------------------------------------
    # Parsing
    # ------------------------------------------------------------------

    @classmethod
    def parse(cls, data: bytes) -> ClassFile:
        reader = _Reader(data)
        if reader.u4() != MAGIC:
            raise ClassFormatError("Bad magic number")
        minor = reader.u2()
        major = reader.u2()
        pool = cls._parse_pool(reader)
        access = reader.u2()
        this_class = reader.u2()
        super_class = reader.u2()
        interfaces = [reader.u2() for _ in range(reader.u2())]
        fields = [cls._parse_member(reader) for _ in range(reader.u2())]
        methods = [cls._parse_member(reader) for _ in range(reader.u2())]
        attributes = cls._parse_attributes(reader)
        if reader.pos != len(data):
            raise ClassFormatError(f"{len(data) - reader.pos} trailing bytes after class")
        parsed = cls(minor, major, pool, access, this_class, super_class,
                     interfaces, fields, methods, attributes)
        parsed._check_index(this_class, CONSTANT_CLASS)
        return parsed

    @staticmethod
    def _parse_pool(reader: _Reader) -> list[Constant | None]:
        count = reader.u2()
        pool: list[Constant | None] = [None]
        while len(pool) < count:
            tag = reader.u1()
            if tag == CONSTANT_UTF8:
                pool.append(Constant(tag, decode_modified_utf8(reader.take(reader.u2()))))
            elif tag in _FIXED_SIZES:
                constant = Constant(tag, reader.take(_FIXED_SIZES[tag]))
                pool.append(constant)
                if constant.wide:
                    pool.append(None)
            elif tag == CONSTANT_METHOD_HANDLE:
                pool.append(Constant(tag, (reader.u1(), reader.u2())))
            elif tag in _REF_TAGS:
                pool.append(Constant(tag, tuple(reader.u2() for _ in range(_REF_TAGS[tag]))))
            else:
                raise ClassFormatError(f"Unknown constant pool tag {tag} at index {len(pool)}")
        if len(pool) != count:
            raise ClassFormatError("Wide constant overruns the constant pool")
        return pool

    @staticmethod
    def _parse_attributes(reader: _Reader) -> list[Attribute]:
        attributes = []
        for _ in range(reader.u2()):
            name_index = reader.u2()
            attributes.append(Attribute(name_index, reader.take(reader.u4())))
        return attributes

    @classmethod
    def _parse_member(cls, reader: _Reader) -> Member:
        access = reader.u2()
        name_index = reader.u2()
        descriptor_index = reader.u2()
        return Member(access, name_index, descriptor_index, cls._parse_attributes(reader))

    # ------------------------------------------------------------------
    # Writing
    # ------------------------------------------------------------------

    def to_bytes(self) -> bytes:
        if len(self.pool) > 0xFFFF:
            raise ClassFormatError(f"Constant pool too large ({len(self.pool)} entries)")
        out = bytearray()
        out += struct.pack(">IHHH", MAGIC, self.minor_version, self.major_version, len(self.pool))
        for constant in self.pool[1:]:
            if constant is None:
                continue
            out.append(constant.tag)
            if constant.tag == CONSTANT_UTF8:
                raw = encode_modified_utf8(constant.value)
                out += struct.pack(">H", len(raw)) + raw
            elif constant.tag in _FIXED_SIZES:
                out += constant.value
            elif constant.tag == CONSTANT_METHOD_HANDLE:
                out += struct.pack(">BH", *constant.value)
            else:
                out += struct.pack(f">{len(constant.value)}H", *constant.value)
        out += struct.pack(">HHH", self.access_flags, self.this_class, self.super_class)
        out += struct.pack(">H", len(self.interfaces))
        for index in self.interfaces:
            out += struct.pack(">H", index)
        for members in (self.fields, self.methods):
            out += struct.pack(">H", len(members))
            for member in members:
                out += struct.pack(">HHH", member.access_flags, member.name_index, member.descriptor_index)
                out += self._attributes_bytes(member.attributes)
        out += self._attributes_bytes(self.attributes)
        return bytes(out)

    @staticmethod
    def _attributes_bytes(attributes: list[Attribute]) -> bytes:
        out = bytearray(struct.pack(">H", len(attributes)))
        for attribute in attributes:
            out += struct.pack(">HI", attribute.name_index, len(attribute.data))
            out += attribute.data
        return bytes(out)

    # ------------------------------------------------------------------
    # Pool access
    # ------------------------------------------------------------------

    def _check_index(self, index: int, tag: int) -> Constant:
        if not 0 < index < len(self.pool) or self.pool[index] is None:
            raise ClassFormatError(f"Invalid constant pool index {index}")
        constant = self.pool[index]
        if constant.tag != tag:
            raise ClassFormatError(
                f"Constant {index} has tag {constant.tag}, expected {tag}"
            )
        return constant

    def utf8(self, index: int) -> str:
        return self._check_index(index, CONSTANT_UTF8).value

    def class_name(self, index: int) -> str:
        return self.utf8(self._check_index(index, CONSTANT_CLASS).value[0])

    def name_and_type(self, index: int) -> tuple[str, str]:
        name_index, descriptor_index = self._check_index(index, CONSTANT_NAME_AND_TYPE).value
        return self.utf8(name_index), self.utf8(descriptor_index)

    @property
    def name(self) -> str:
        return self.class_name(self.this_class)

    @property
    def super_name(self) -> str | None:
        return self.class_name(self.super_class) if self.super_class else None

    @property
    def interface_names(self) -> list[str]:
        return [self.class_name(index) for index in self.interfaces]

    def member_name(self, member: Member) -> str:
        return self.utf8(member.name_index)

    def member_descriptor(self, member: Member) -> str:
        return self.utf8(member.descriptor_index)

    def find_field(self, name: str, descriptor: str | None = None) -> Member | None:
        return self._find_member(self.fields, name, descriptor)

    def find_method(self, name: str, descriptor: str | None = None) -> Member | None:
        return self._find_member(self.methods, name, descriptor)

    def _find_member(self, members: list[Member], name: str, descriptor: str | None) -> Member | None:
        for member in members:
            if self.member_name(member) != name:
                continue
            if descriptor is None or self.member_descriptor(member) == descriptor:
                return member
        return None

    def attribute(self, attributes: list[Attribute], name: str) -> Attribute | None:
        for attribute in attributes:
            if self.utf8(attribute.name_index) == name:
                return attribute
        return None

    # ------------------------------------------------------------------
    # Pool building (append-only)
    # ------------------------------------------------------------------

    def _append(self, constant: Constant) -> int:
        if self._lookup is None or self._lookup_size != len(self.pool):
            self._lookup = {}
            for index, existing in enumerate(self.pool):
                if existing is not None:
                    self._lookup.setdefault((existing.tag, existing.value), index)
        found = self._lookup.get((constant.tag, constant.value))
        if found is not None:
            existing = self.pool[found]
            if existing is not None and (existing.tag, existing.value) == (constant.tag, constant.value):
                return found
            # An entry was re-pointed since the index was built.
            self._lookup = None
            return self._append(constant)
        self.pool.append(constant)
        index = len(self.pool) - 1
        if constant.wide:
            self.pool.append(None)
        self._lookup[(constant.tag, constant.value)] = index
        self._lookup_size = len(self.pool)
        return index

    def add_utf8(self, text: str) -> int:
        return self._append(Constant(CONSTANT_UTF8, text))

    def add_class(self, internal_name: str) -> int:
        return self._append(Constant(CONSTANT_CLASS, (self.add_utf8(internal_name),)))

    def add_name_and_type(self, name: str, descriptor: str) -> int:
        return self._append(
            Constant(CONSTANT_NAME_AND_TYPE, (self.add_utf8(name), self.add_utf8(descriptor)))
        )

    def add_field(self, access_flags: int, name: str, descriptor: str) -> Member:
        member = Member(access_flags, self.add_utf8(name), self.add_utf8(descriptor))
        self.fields.append(member)
        return member

    def add_method(self, access_flags: int, name: str, descriptor: str) -> Member:
        member = Member(access_flags, self.add_utf8(name), self.add_utf8(descriptor))
        self.methods.append(member)
        return member

    def add_attribute(self, attributes: list[Attribute], name: str, data: bytes) -> Attribute:
        attribute = Attribute(self.add_utf8(name), data)
        attributes.append(attribute)
        return attribute

    @classmethod
    def new(
        cls,
        name: str,
        *,
        super_name: str | None = "java/lang/Object",
        interfaces: list[str] | None = None,
        access_flags: int = ACC_PUBLIC | ACC_SUPER,
        major_version: int = 52,
    ) -> ClassFile:
        """An empty class, mostly for building fixtures and synthetic classes."""
        classfile = cls(0, major_version, [None], access_flags, 0, 0, [], [], [], [])
        classfile.this_class = classfile.add_class(name)
        classfile.super_class = classfile.add_class(super_name) if super_name else 0
        classfile.interfaces = [classfile.add_class(i) for i in interfaces or []]
        return classfile

    # ------------------------------------------------------------------
    # InnerClasses
    # ------------------------------------------------------------------

    def inner_classes(self) -> list[InnerClassEntry]:
        attribute = self.attribute(self.attributes, "InnerClasses")
        if attribute is None:
            return []
        count = struct.unpack_from(">H", attribute.data)[0]
        return [
            InnerClassEntry(*struct.unpack_from(">HHHH", attribute.data, 2 + 8 * i))
            for i in range(count)
        ]

    def set_inner_classes(self, entries: list[InnerClassEntry]) -> None:
        data = struct.pack(">H", len(entries)) + b"".join(
            struct.pack(
                ">HHHH",
                e.inner_class_index,
                e.outer_class_index,
                e.inner_name_index,
                e.access_flags,
            )
            for e in entries
        )
        attribute = self.attribute(self.attributes, "InnerClasses")
        if attribute is None:
            self.add_attribute(self.attributes, "InnerClasses", data)
        else:
            attribute.data = data
