"""Rename classes and members inside class files using a ``MappingSet``.

The constant pool is only appended to.  Class constants are re-pointed in
place (stack map frames and exception tables refer to them by index);
member references get fresh NameAndType entries because one NameAndType
may be shared by references to different owners.
"""

from __future__ import annotations

import logging
import struct
from dataclasses import dataclass, field

from vanillakit.jvm.classfile import (
    CONSTANT_CLASS,
    CONSTANT_DYNAMIC,
    CONSTANT_FIELDREF,
    CONSTANT_INTERFACE_METHODREF,
    CONSTANT_INVOKE_DYNAMIC,
    CONSTANT_METHOD_TYPE,
    CONSTANT_METHODREF,
    CONSTANT_NAME_AND_TYPE,
    Attribute,
    ClassFile,
    ClassFormatError,
)
from vanillakit.jvm.descriptors import (
    method_return_type,
    remap_internal_name,
    remap_signature,
)
from vanillakit.mappings.model import Hierarchy, MappingSet

logger = logging.getLogger(__name__)


@dataclass
class RemappedClass:
    """Outcome of remapping one class file."""

    original_name: str
    name: str
    data: bytes
    # Declared symbols the mapping set does not cover, "owner.name desc" form.
    unmapped: list[str] = field(default_factory=list)
    problems: list[str] = field(default_factory=list)


def build_hierarchy(classes: dict[str, ClassFile]) -> Hierarchy:
    """class name -> [super class, *interfaces] for every parsed class."""
    hierarchy: Hierarchy = {}
    for classfile in classes.values():
        name = classfile.name
        parents = [classfile.super_name] if classfile.super_name else []
        hierarchy[name] = parents + classfile.interface_names
    return hierarchy


class ClassRemapper:
    """Applies one mapping set to many classes sharing one hierarchy.

    Parameters
    ----------
    mappings:
        The mapping set; keys are in the jar's current namespace.
    hierarchy:
        Super types of every class in the jar, used to resolve members
        referenced through a subclass.
    """

    def __init__(self, mappings: MappingSet, hierarchy: Hierarchy | None = None) -> None:
        self.mappings = mappings
        self.hierarchy = hierarchy or {}
        # (owner, name) -> mapped method names, for invokedynamic call sites
        self._by_owner_and_name: dict[tuple[str, str], set[str]] = {}
        for (owner, name, _descriptor), target in mappings.methods.items():
            self._by_owner_and_name.setdefault((owner, name), set()).add(target)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def remap(self, classfile: ClassFile) -> RemappedClass:
        """Rewrite *classfile* in place and return its new bytes and name.

        Raises ``ClassFormatError`` when the constant pool is inconsistent.
        """
        try:
            return self._remap(classfile)
        except (KeyError, struct.error) as exc:
            raise ClassFormatError(f"Dangling constant pool reference in {classfile.name}: {exc}") from exc

    def _remap(self, classfile: ClassFile) -> RemappedClass:
        mappings = self.mappings
        pool = classfile.pool
        this_name = classfile.name

        # Snapshot every original name before anything is re-pointed.
        class_names = {
            index: classfile.utf8(c.value[0])
            for index, c in enumerate(pool)
            if c is not None and c.tag == CONSTANT_CLASS
        }
        name_and_types = {
            index: classfile.name_and_type(index)
            for index, c in enumerate(pool)
            if c is not None and c.tag == CONSTANT_NAME_AND_TYPE
        }
        snapshot = list(enumerate(pool))
        result = RemappedClass(original_name=this_name, name=mappings.map_class(this_name), data=b"")

        # Member references, method types and dynamic call sites.
        for index, constant in snapshot:
            if constant is None:
                continue
            if constant.tag in (CONSTANT_FIELDREF, CONSTANT_METHODREF, CONSTANT_INTERFACE_METHODREF):
                class_index, nat_index = constant.value
                owner = class_names[class_index]
                name, descriptor = name_and_types[nat_index]
                if constant.tag == CONSTANT_FIELDREF:
                    new_name = mappings.map_field(owner, name, self.hierarchy)
                else:
                    new_name = mappings.map_method(owner, name, descriptor, self.hierarchy)
                new_nat = classfile.add_name_and_type(new_name, mappings.map_descriptor(descriptor))
                pool[index].value = (class_index, new_nat)
            elif constant.tag == CONSTANT_METHOD_TYPE:
                descriptor = classfile.utf8(constant.value[0])
                pool[index].value = (classfile.add_utf8(mappings.map_descriptor(descriptor)),)
            elif constant.tag in (CONSTANT_INVOKE_DYNAMIC, CONSTANT_DYNAMIC):
                bootstrap, nat_index = constant.value
                name, descriptor = name_and_types[nat_index]
                if constant.tag == CONSTANT_INVOKE_DYNAMIC:
                    name = self._call_site_name(name, descriptor)
                new_nat = classfile.add_name_and_type(name, mappings.map_descriptor(descriptor))
                pool[index].value = (bootstrap, new_nat)

        for index, original in class_names.items():
            renamed = remap_internal_name(original, mappings.map_class)
            if renamed != original:
                pool[index].value = (classfile.add_utf8(renamed),)

        if mappings.renames and this_name not in mappings.classes:
            result.unmapped.append(this_name)
        self._remap_members(classfile, this_name, result)
        self._remap_signatures(classfile, result)
        self._remap_inner_classes(classfile, class_names)
        self._remap_enclosing_method(classfile, class_names, name_and_types)

        result.data = classfile.to_bytes()
        return result

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _call_site_name(self, name: str, descriptor: str) -> str:
        """Rename the functional-interface method an invokedynamic targets."""
        interface = method_return_type(descriptor)
        if not (interface.startswith("L") and interface.endswith(";")):
            return name
        candidates = self._by_owner_and_name.get((interface[1:-1], name), set())
        return next(iter(candidates)) if len(candidates) == 1 else name

    def _remap_members(self, classfile: ClassFile, owner: str, result: RemappedClass) -> None:
        mappings = self.mappings
        for member in classfile.fields:
            name = classfile.member_name(member)
            descriptor = classfile.member_descriptor(member)
            mapped = mappings.fields.get((owner, name))
            if mapped is None and mappings.renames:
                result.unmapped.append(f"{owner}.{name} {descriptor}")
            member.name_index = classfile.add_utf8(mapped or name)
            member.descriptor_index = classfile.add_utf8(mappings.map_descriptor(descriptor))
        for member in classfile.methods:
            name = classfile.member_name(member)
            descriptor = classfile.member_descriptor(member)
            mapped = mappings.lookup_method(owner, name, descriptor, self.hierarchy)
            if mapped is None and mappings.renames and not name.startswith("<"):
                result.unmapped.append(f"{owner}.{name}{descriptor}")
            member.name_index = classfile.add_utf8(mapped or name)
            member.descriptor_index = classfile.add_utf8(mappings.map_descriptor(descriptor))

    def _remap_signatures(self, classfile: ClassFile, result: RemappedClass) -> None:
        holders: list[list[Attribute]] = [classfile.attributes]
        holders += [m.attributes for m in classfile.fields]
        holders += [m.attributes for m in classfile.methods]
        for attributes in holders:
            attribute = classfile.attribute(attributes, "Signature")
            if attribute is None or len(attribute.data) != 2:
                continue
            signature = classfile.utf8(struct.unpack(">H", attribute.data)[0])
            try:
                remapped = remap_signature(signature, self.mappings.map_class)
            except ValueError as exc:
                result.problems.append(str(exc))
                continue
            attribute.data = struct.pack(">H", classfile.add_utf8(remapped))

    def _remap_inner_classes(self, classfile: ClassFile, class_names: dict[int, str]) -> None:
        entries = classfile.inner_classes()
        if not entries:
            return
        for entry in entries:
            if not entry.inner_name_index or entry.inner_class_index not in class_names:
                continue
            original = class_names[entry.inner_class_index]
            mapped = self.mappings.map_class(original)
            if mapped == original:
                continue
            outer = class_names.get(entry.outer_class_index)
            mapped_outer = self.mappings.map_class(outer) if outer else None
            if mapped_outer and mapped.startswith(mapped_outer + "$"):
                simple = mapped[len(mapped_outer) + 1:]
            else:
                simple = mapped.rsplit("$", 1)[-1].rsplit("/", 1)[-1]
            entry.inner_name_index = classfile.add_utf8(simple)
        classfile.set_inner_classes(entries)

    def _remap_enclosing_method(
        self,
        classfile: ClassFile,
        class_names: dict[int, str],
        name_and_types: dict[int, tuple[str, str]],
    ) -> None:
        attribute = classfile.attribute(classfile.attributes, "EnclosingMethod")
        if attribute is None or len(attribute.data) != 4:
            return
        class_index, nat_index = struct.unpack(">HH", attribute.data)
        if not nat_index or nat_index not in name_and_types:
            return
        owner = class_names.get(class_index, "")
        name, descriptor = name_and_types[nat_index]
        new_nat = classfile.add_name_and_type(
            self.mappings.map_method(owner, name, descriptor, self.hierarchy),
            self.mappings.map_descriptor(descriptor),
        )
        attribute.data = struct.pack(">HH", class_index, new_nat)


def parse_classes(entries: dict[str, bytes]) -> tuple[dict[str, ClassFile], dict[str, str]]:
    """Parse every ``.class`` entry.

    Returns ``({entry path: class}, {entry path: error})``; entries
    that fail to parse are reported rather than raised.
    """
    classes: dict[str, ClassFile] = {}
    failures: dict[str, str] = {}
    for path, data in entries.items():
        if not path.endswith(".class") or path.startswith("META-INF/"):
            continue
        try:
            classfile = ClassFile.parse(data)
        except ClassFormatError as exc:
            logger.warning("Unparseable class %s: %s", path, exc)
            failures[path] = str(exc)
            continue
        classes[path] = classfile
    return classes, failures
