"""Transform stages — registry mapping stage kind to stage class.

Usage::

    from vanillakit.stages import STAGE_REGISTRY, get_stage

    stage = get_stage(StageKind.MERGE)
    output = stage.run_stage(spec, [client_bytes, server_bytes], context)
"""

from __future__ import annotations

from vanillakit.models.stages import StageKind
from vanillakit.stages.access_widen import AccessWidenStage
from vanillakit.stages.base import BaseStage, StageContext, StageOutput
from vanillakit.stages.decompile import DecompileStage
from vanillakit.stages.extract import ExtractStage
from vanillakit.stages.merge import MergeStage
from vanillakit.stages.remap import RemapStage

# ---------------------------------------------------------------------------
# Stage registry: stage kind -> stage class
# ---------------------------------------------------------------------------

STAGE_REGISTRY: dict[StageKind, type[BaseStage]] = {
    StageKind.EXTRACT: ExtractStage,
    StageKind.MERGE: MergeStage,
    StageKind.REMAP: RemapStage,
    StageKind.ACCESS_WIDEN: AccessWidenStage,
    StageKind.DECOMPILE: DecompileStage,
}


def get_stage(kind: StageKind | str) -> BaseStage:
    """Instantiate the stage registered for *kind*.

    Raises ``KeyError`` if *kind* is not registered.
    """
    try:
        stage_cls = STAGE_REGISTRY[StageKind(kind)]
    except (KeyError, ValueError):
        raise KeyError(
            f"Unknown stage kind {kind!r}. "
            f"Registered kinds: {sorted(k.value for k in STAGE_REGISTRY)}"
        ) from None
    return stage_cls()


__all__ = [
    "AccessWidenStage",
    "BaseStage",
    "DecompileStage",
    "ExtractStage",
    "MergeStage",
    "RemapStage",
    "STAGE_REGISTRY",
    "StageContext",
    "StageOutput",
    "get_stage",
]
