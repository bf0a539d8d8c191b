"""Abstract base stage with an enforced lifecycle.

Every concrete stage inherits from BaseStage and implements only
``execute()``.  The ``run_stage()`` wrapper is **not overridable**; it
enforces the canonical ordering:

    validate inputs -> hash inputs -> execute -> hash output -> attribute diagnostics

Stages are pure: the output is a function of the input bytes and the
output-affecting part of the configuration.  ``fingerprint()`` hashes that
configuration together with the stage's ``revision``, which must be bumped
whenever the implementation starts producing different bytes.
"""

from __future__ import annotations

import abc
import logging
from dataclasses import dataclass, field
from typing import Any, ClassVar, final

from vanillakit.core.errors import StageExecutionError, StageInputError, VanillaKitError
from vanillakit.core.hasher import compute_stage_fingerprint, sha256_hex
from vanillakit.models.reports import Diagnostic
from vanillakit.models.stages import StageKind, StageSpec

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StageContext:
    """Request-level information a stage may use for logging."""

    request_id: str = ""
    version_id: str = ""


@dataclass
class StageOutput:
    """Bytes produced by a stage plus its non-fatal findings."""

    data: bytes
    diagnostics: list[Diagnostic] = field(default_factory=list)


class BaseStage(abc.ABC):
    """Abstract base for all transform stages.

    Subclasses **must** set:
        * ``kind`` -- the ``StageKind`` they implement.
        * ``config_type`` -- the configuration model they accept.

    Subclasses **may** set:
        * ``min_inputs`` / ``max_inputs`` -- accepted input arity.
        * ``revision`` -- implementation revision folded into fingerprints.

    Subclasses **must not** override ``run_stage()`` or ``fingerprint()``.
    """

    kind: ClassVar[StageKind]
    config_type: ClassVar[type]
    revision: ClassVar[int] = 1
    min_inputs: ClassVar[int] = 1
    max_inputs: ClassVar[int | None] = 1

    # ------------------------------------------------------------------
    # Abstract interface
    # ------------------------------------------------------------------

    @abc.abstractmethod
    def execute(self, inputs: list[bytes], config: Any, context: StageContext) -> StageOutput:
        """Transform *inputs* into one output artifact.

        Parameters
        ----------
        inputs:
            Input artifact bytes, ordered like ``StageSpec.input_roles``.
        config:
            The stage configuration (an instance of ``config_type``).
        context:
            Request-level information for logging.

        Returns
        -------
        StageOutput:
            Output bytes plus diagnostics.  Fatal problems are raised as
            ``VanillaKitError`` subclasses instead.
        """
        ...

    # ------------------------------------------------------------------
    # Lifecycle (not overridable)
    # ------------------------------------------------------------------

    @final
    def fingerprint(self, config: Any) -> str:
        """Stable hash over this stage's output-affecting configuration."""
        return compute_stage_fingerprint(
            self.kind.value, self.revision, config.fingerprint_payload()
        )

    @final
    def run_stage(self, spec: StageSpec, inputs: list[bytes], context: StageContext) -> StageOutput:
        """Execute the full stage lifecycle.  **Do not override.**"""
        self._validate(spec, inputs)

        input_hashes = [sha256_hex(data)[:12] for data in inputs]
        logger.info(
            "%s [%s] request=%s inputs=%s",
            self.kind.value,
            spec.stage_id,
            context.request_id,
            input_hashes,
        )

        try:
            output = self.execute(inputs, spec.config, context)
        except VanillaKitError:
            raise
        except Exception as exc:
            logger.error("%s [%s] execution failed: %s", self.kind.value, spec.stage_id, exc)
            raise StageExecutionError(f"Stage {spec.stage_id} failed: {exc}") from exc

        output.diagnostics = [d.for_stage(spec.stage_id) for d in output.diagnostics]
        logger.info(
            "%s [%s] output=%s size=%d diagnostics=%d",
            self.kind.value,
            spec.stage_id,
            sha256_hex(output.data)[:12],
            len(output.data),
            len(output.diagnostics),
        )
        return output

    @final
    def _validate(self, spec: StageSpec, inputs: list[bytes]) -> None:
        if spec.kind != self.kind:
            raise StageInputError(
                f"{type(self).__name__} cannot run a {spec.kind.value!r} stage"
            )
        if not isinstance(spec.config, self.config_type):
            raise StageInputError(
                f"Stage {spec.stage_id} expects {self.config_type.__name__}, "
                f"got {type(spec.config).__name__}"
            )
        if len(inputs) != len(spec.input_roles):
            raise StageInputError(
                f"Stage {spec.stage_id} declares {len(spec.input_roles)} inputs "
                f"but received {len(inputs)}"
            )
        self.check_arity(spec.stage_id, len(inputs))

    @classmethod
    def check_arity(cls, stage_id: str, count: int) -> None:
        """Raise ``StageInputError`` if *count* inputs are not acceptable."""
        too_many = cls.max_inputs is not None and count > cls.max_inputs
        if count < cls.min_inputs or too_many:
            bound = cls.max_inputs if cls.max_inputs is not None else "any"
            raise StageInputError(
                f"Stage {stage_id} ({cls.kind.value}) takes {cls.min_inputs}..{bound} "
                f"inputs, got {count}"
            )

    # ------------------------------------------------------------------
    # Repr
    # ------------------------------------------------------------------

    def __repr__(self) -> str:
        return f"<{type(self).__name__} kind={self.kind.value!r} revision={self.revision}>"
