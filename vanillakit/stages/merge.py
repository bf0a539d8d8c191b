"""Merge stage: combine client and server jars into one joined jar.

Every path present in either archive appears once in the output.  When
both archives carry a path with different bytes, the client copy wins
unless the path matches one of the ``server_only`` globs.  A path that is
a file on one side and a directory on the other, or a class on one side
and a plain resource on the other, cannot be reconciled.
"""

from __future__ import annotations

import fnmatch
import logging
from typing import Any

from vanillakit.core.errors import StructuralConflictError
from vanillakit.jvm.archive import read_entries, write_archive
from vanillakit.jvm.classfile import is_class_bytes
from vanillakit.models.reports import Diagnostic, DiagnosticKind, Severity
from vanillakit.models.stages import MergeConfig, StageKind
from vanillakit.stages.base import BaseStage, StageContext, StageOutput

logger = logging.getLogger(__name__)


def _directories(names: set[str]) -> set[str]:
    """Every directory implied by *names* (with trailing slash)."""
    dirs = {name for name in names if name.endswith("/")}
    for name in names:
        parts = name.rstrip("/").split("/")[:-1]
        for i in range(1, len(parts) + 1):
            dirs.add("/".join(parts[:i]) + "/")
    return dirs


def _check_shapes(client: dict[str, bytes], server: dict[str, bytes]) -> None:
    client_files = {n for n in client if not n.endswith("/")}
    server_files = {n for n in server if not n.endswith("/")}
    client_dirs = _directories(set(client))
    server_dirs = _directories(set(server))
    for name in sorted(client_files):
        if name + "/" in server_dirs:
            raise StructuralConflictError(name, "file in client jar, directory in server jar")
    for name in sorted(server_files):
        if name + "/" in client_dirs:
            raise StructuralConflictError(name, "file in server jar, directory in client jar")
    for name in sorted(client_files & server_files):
        if client[name] != server[name] and is_class_bytes(client[name]) != is_class_bytes(server[name]):
            side = "client" if is_class_bytes(client[name]) else "server"
            raise StructuralConflictError(name, f"class file only in the {side} jar")


class MergeStage(BaseStage):
    """Inputs: ``[client jar, server jar]``."""

    kind = StageKind.MERGE
    config_type = MergeConfig
    min_inputs = 2
    max_inputs = 2

    def execute(self, inputs: list[bytes], config: Any, context: StageContext) -> StageOutput:
        client = read_entries(inputs[0], subject="client jar")
        server = read_entries(inputs[1], subject="server jar")
        _check_shapes(client, server)

        merged = dict(server)
        overridden = 0
        server_wins = 0
        for name, data in client.items():
            other = server.get(name)
            if other is not None and other != data:
                if any(fnmatch.fnmatchcase(name, pattern) for pattern in config.server_only):
                    server_wins += 1
                    continue
                overridden += 1
            merged[name] = data

        diagnostics = []
        if overridden or server_wins:
            logger.debug(
                "Merged %d differing entries: %d client, %d server",
                overridden + server_wins,
                overridden,
                server_wins,
            )
            diagnostics.append(
                Diagnostic(
                    severity=Severity.INFO,
                    kind=DiagnosticKind.MERGE_OVERRIDE,
                    subject="merged-jar",
                    message=(
                        f"{overridden + server_wins} entries differ between client and server; "
                        f"kept {overridden} client and {server_wins} server copies"
                    ),
                )
            )
        return StageOutput(write_archive(merged), diagnostics)
