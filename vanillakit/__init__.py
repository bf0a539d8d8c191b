"""vanillakit: artifact resolution, caching and transform pipeline for game jars.

Resolves a version from the remote version manifest, downloads its jars and
mappings with integrity verification, stores everything in a
content-addressed cache, and runs a Merkle-keyed chain of transforms
(extract, merge, remap, access widen, decompile) that never re-runs a stage
whose inputs and configuration are unchanged.
"""

__version__ = "0.3.0"
__description__ = (
    "Artifact resolution, content-addressed caching and transform pipeline"
)

from vanillakit.config import KitConfig  # noqa: E402
from vanillakit.core.orchestrator import CancelToken, PipelineOrchestrator  # noqa: E402
from vanillakit.models.stages import MappingSelection, PipelineRequest, Platform  # noqa: E402

__all__ = [
    "__version__",
    "CancelToken",
    "KitConfig",
    "MappingSelection",
    "PipelineOrchestrator",
    "PipelineRequest",
    "Platform",
]
