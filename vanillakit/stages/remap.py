"""Remap stage: apply one mapping layer to every class of a jar.

Inputs are ``[jar, mapping file, ...]``; several mapping files (the client
and server halves of the official mappings) are combined, first
definition wins.  Unmapped symbols pass through unchanged and are reported
as warnings unless full coverage is required.
"""

from __future__ import annotations

import logging
from typing import Any

from vanillakit.core.errors import MappingCoverageError, StructuralConflictError
from vanillakit.jvm.archive import (
    MANIFEST_PATH,
    is_signature_file,
    read_entries,
    strip_manifest_digests,
    write_archive,
)
from vanillakit.jvm.classfile import ClassFormatError
from vanillakit.jvm.decompiler import PARAMETERS_PATH, SymbolDocs
from vanillakit.jvm.remapper import ClassRemapper, build_hierarchy, parse_classes
from vanillakit.mappings import load_mappings, translate_javadoc
from vanillakit.mappings.model import Hierarchy, MappingSet
from vanillakit.models.reports import Diagnostic, DiagnosticKind, Severity
from vanillakit.models.stages import RemapConfig, StageKind
from vanillakit.stages.base import BaseStage, StageContext, StageOutput

logger = logging.getLogger(__name__)

# Individual unmapped-symbol diagnostics; the rest are summarised.
MAX_SYMBOL_DIAGNOSTICS = 100


def _rekey_docs(docs: SymbolDocs, mappings: MappingSet, hierarchy: Hierarchy) -> SymbolDocs:
    """Translate previously recorded docs into the target namespace."""
    parameters: dict[str, dict[str, str]] = {}
    for key, names in docs.parameters.items():
        owner, name, descriptor = key.split(" ")
        new_key = " ".join((
            mappings.map_class(owner),
            mappings.map_method(owner, name, descriptor, hierarchy),
            mappings.map_descriptor(descriptor),
        ))
        parameters[new_key] = dict(names)

    javadoc: dict[str, list[str]] = {}
    for key, lines in docs.javadoc.items():
        parts = key.split(" ")
        kind, owner = parts[0], parts[1]
        if kind == "c":
            new_parts = ["c", mappings.map_class(owner)]
        elif kind == "f":
            new_parts = ["f", mappings.map_class(owner), mappings.map_field(owner, parts[2], hierarchy)]
        else:
            new_parts = [
                "m",
                mappings.map_class(owner),
                mappings.map_method(owner, parts[2], parts[3], hierarchy),
                mappings.map_descriptor(parts[3]),
            ]
        javadoc[" ".join(new_parts)] = list(lines)
    return SymbolDocs(parameters, javadoc)


def _merge_docs(docs: SymbolDocs, mappings: MappingSet) -> None:
    """Add this layer's parameter names and javadoc (they win over older ones)."""
    for key, params in mappings.translate_parameters().items():
        merged = docs.parameters.setdefault(" ".join(key), {})
        merged.update({str(slot): name for slot, name in params.items()})
    for key, lines in translate_javadoc(mappings).items():
        docs.javadoc[" ".join(key)] = list(lines)


class RemapStage(BaseStage):
    """Inputs: ``[jar, mapping file, ...]``."""

    kind = StageKind.REMAP
    config_type = RemapConfig
    min_inputs = 2
    max_inputs = None

    def load(self, data: list[bytes], config: RemapConfig) -> MappingSet:
        combined: MappingSet | None = None
        for blob in data:
            layer = load_mappings(
                config.provider,
                blob,
                source_namespace=config.source_namespace,
                target_namespace=config.target_namespace,
            )
            if combined is None:
                combined = layer
            else:
                combined.update(layer)
        assert combined is not None
        return combined

    def execute(self, inputs: list[bytes], config: Any, context: StageContext) -> StageOutput:
        entries = read_entries(inputs[0], subject="input jar")
        mappings = self.load(inputs[1:], config)
        logger.info(
            "Remapping %s -> %s with %d %s mappings",
            config.source_namespace,
            config.target_namespace,
            len(mappings),
            config.provider,
        )
        diagnostics: list[Diagnostic] = []

        classes, failures = parse_classes(entries)
        for path, reason in sorted(failures.items()):
            diagnostics.append(self._malformed(path, reason))
        hierarchy = build_hierarchy(classes)
        remapper = ClassRemapper(mappings, hierarchy)

        output: dict[str, bytes] = {
            name: data for name, data in entries.items() if name not in classes
        }
        unmapped: list[str] = []
        for path in sorted(classes):
            classfile = classes[path]
            try:
                remapped = remapper.remap(classfile)
            except ClassFormatError as exc:
                diagnostics.append(self._malformed(path, str(exc)))
                output[path] = entries[path]
                continue
            new_path = path
            if path == remapped.original_name + ".class":
                new_path = remapped.name + ".class"
            if new_path in output:
                raise StructuralConflictError(new_path, f"{path} remaps onto an existing entry")
            output[new_path] = remapped.data
            unmapped.extend(remapped.unmapped)
            for problem in remapped.problems:
                diagnostics.append(self._malformed(path, problem))

        if unmapped:
            if config.require_full_coverage:
                raise MappingCoverageError(sorted(unmapped))
            diagnostics.extend(self._unmapped(sorted(unmapped)))

        if config.strip_signatures:
            stripped = sorted(name for name in output if is_signature_file(name))
            for name in stripped:
                del output[name]
            if stripped:
                if MANIFEST_PATH in output:
                    output[MANIFEST_PATH] = strip_manifest_digests(output[MANIFEST_PATH])
                diagnostics.append(
                    Diagnostic(
                        severity=Severity.INFO,
                        kind=DiagnosticKind.SIGNATURE_STRIPPED,
                        subject=", ".join(stripped),
                        message=f"Removed {len(stripped)} jar signature files invalidated by renaming",
                    )
                )

        docs = _rekey_docs(SymbolDocs.from_bytes(entries.get(PARAMETERS_PATH)), mappings, hierarchy)
        _merge_docs(docs, mappings)
        if docs.parameters or docs.javadoc:
            output[PARAMETERS_PATH] = docs.to_bytes()

        return StageOutput(write_archive(output), diagnostics)

    @staticmethod
    def _malformed(path: str, reason: str) -> Diagnostic:
        return Diagnostic(
            kind=DiagnosticKind.MALFORMED_CLASS,
            subject=path,
            message=f"Copied without remapping: {reason}",
        )

    @staticmethod
    def _unmapped(symbols: list[str]) -> list[Diagnostic]:
        logger.warning("%d symbols left unmapped", len(symbols))
        diagnostics = [
            Diagnostic(
                kind=DiagnosticKind.UNMAPPED_SYMBOL,
                subject=symbol,
                message="No mapping; name kept unchanged",
            )
            for symbol in symbols[:MAX_SYMBOL_DIAGNOSTICS]
        ]
        if len(symbols) > MAX_SYMBOL_DIAGNOSTICS:
            diagnostics.append(
                Diagnostic(
                    kind=DiagnosticKind.UNMAPPED_SYMBOL,
                    subject="*",
                    message=f"{len(symbols) - MAX_SYMBOL_DIAGNOSTICS} more unmapped symbols not listed",
                )
            )
        return diagnostics
