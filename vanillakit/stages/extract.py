"""Extract stage: unwrap a bundler-format server jar."""

from __future__ import annotations

import zipfile
from typing import Any

from vanillakit.core.errors import StageInputError
from vanillakit.models.reports import Diagnostic, DiagnosticKind, Severity
from vanillakit.models.stages import ExtractConfig, StageKind
from vanillakit.resolver.bundler import extract_server_jar
from vanillakit.stages.base import BaseStage, StageContext, StageOutput


class ExtractStage(BaseStage):
    """Returns the inner server jar, or the input unchanged if it is plain."""

    kind = StageKind.EXTRACT
    config_type = ExtractConfig

    def execute(self, inputs: list[bytes], config: Any, context: StageContext) -> StageOutput:
        try:
            inner, entry = extract_server_jar(inputs[0])
        except zipfile.BadZipFile as exc:
            raise StageInputError(f"Server jar is not a readable zip archive: {exc}") from exc
        if entry is None:
            return StageOutput(
                inner,
                [
                    Diagnostic(
                        severity=Severity.INFO,
                        kind=DiagnosticKind.PASSTHROUGH,
                        subject="server-jar",
                        message="Server jar is not bundled; passed through unchanged",
                    )
                ],
            )
        return StageOutput(inner)
