"""AccessWiden stage: relax access modifiers per access-widener definitions."""

from __future__ import annotations

from typing import Any

from vanillakit.core.errors import StageInputError, TargetNotFoundError
from vanillakit.jvm.access_widener import (
    Access,
    TargetKind,
    WidenerEntry,
    apply_access_widener,
    parse_access_widener,
    widen_inner_class_entries,
)
from vanillakit.jvm.archive import read_entries, write_archive
from vanillakit.jvm.classfile import ClassFile, ClassFormatError
from vanillakit.models.reports import Diagnostic, DiagnosticKind
from vanillakit.models.stages import AccessWidenConfig, StageKind
from vanillakit.stages.base import BaseStage, StageContext, StageOutput


class AccessWidenStage(BaseStage):
    """Input: one jar.  Fails if any widener target is missing."""

    kind = StageKind.ACCESS_WIDEN
    config_type = AccessWidenConfig

    def execute(self, inputs: list[bytes], config: Any, context: StageContext) -> StageOutput:
        wideners = [
            parse_access_widener(text, source=f"widener #{i}")
            for i, text in enumerate(config.wideners)
        ]
        for i, widener in enumerate(wideners):
            if config.namespace and widener.namespace != config.namespace:
                raise StageInputError(
                    f"widener #{i} targets namespace {widener.namespace!r} "
                    f"but the jar is in {config.namespace!r}"
                )
        entries_by_owner: dict[str, list[WidenerEntry]] = {}
        for widener in wideners:
            for entry in widener.entries:
                entries_by_owner.setdefault(entry.owner, []).append(entry)

        entries = read_entries(inputs[0], subject="input jar")
        output = dict(entries)
        diagnostics: list[Diagnostic] = []

        # Every class is parsed so that InnerClasses tables can be updated.
        classes: dict[str, tuple[str, ClassFile]] = {}
        for path in sorted(entries):
            if not path.endswith(".class") or path.startswith("META-INF/"):
                continue
            try:
                classfile = ClassFile.parse(entries[path])
            except ClassFormatError as exc:
                diagnostics.append(
                    Diagnostic(
                        kind=DiagnosticKind.MALFORMED_CLASS,
                        subject=path,
                        message=f"Copied without widening: {exc}",
                    )
                )
                continue
            classes[classfile.name] = (path, classfile)

        missing = sorted(set(entries_by_owner) - set(classes))
        if missing:
            raise TargetNotFoundError(f"class {missing[0]}")

        widened_classes: dict[str, Access] = {}
        for owner, owner_entries in entries_by_owner.items():
            apply_access_widener(classes[owner][1], owner_entries)
            for entry in owner_entries:
                if entry.kind is TargetKind.CLASS:
                    previous = widened_classes.get(owner)
                    if previous is not Access.EXTENDABLE:
                        widened_classes[owner] = entry.access

        for name, (path, classfile) in classes.items():
            changed = widen_inner_class_entries(classfile, widened_classes)
            if changed or name in entries_by_owner:
                output[path] = classfile.to_bytes()

        return StageOutput(write_archive(output), diagnostics)
