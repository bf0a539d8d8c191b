"""Deterministic request state machine.

Enforces:
- Valid state transitions only (VALID_TRANSITIONS table)
- No transition out of a terminal state
- Every transition recorded in the request's history
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from vanillakit.models.stages import TERMINAL_STATES, VALID_TRANSITIONS, RequestState

logger = logging.getLogger(__name__)


class InvalidTransitionError(RuntimeError):
    """Raised when a requested state transition is not valid."""


class RequestStateMachine:
    """Tracks one pipeline request through its lifecycle.

    Parameters
    ----------
    request_id:
        Identifier used in log lines and error messages.
    """

    def __init__(self, request_id: str) -> None:
        self.request_id = request_id
        self._state = RequestState.PLANNED
        self._history: list[tuple[RequestState, datetime]] = [
            (RequestState.PLANNED, datetime.now(timezone.utc))
        ]

    @property
    def state(self) -> RequestState:
        return self._state

    @property
    def history(self) -> list[RequestState]:
        """Every state entered so far, in order (including PLANNED)."""
        return [state for state, _ in self._history]

    @property
    def is_terminal(self) -> bool:
        return self._state in TERMINAL_STATES

    def transition(self, target: RequestState, *, detail: str = "") -> None:
        """Move to *target*; raises ``InvalidTransitionError`` if not allowed."""
        allowed = VALID_TRANSITIONS.get(self._state, set())
        if target not in allowed:
            raise InvalidTransitionError(
                f"Cannot transition request {self.request_id} from {self._state.value} "
                f"to {target.value}. Allowed: {sorted(s.value for s in allowed)}"
            )
        logger.debug(
            "request %s: %s -> %s %s",
            self.request_id,
            self._state.value,
            target.value,
            detail,
        )
        self._state = target
        self._history.append((target, datetime.now(timezone.utc)))

    def fail(self, *, detail: str = "") -> None:
        """Enter FAILED unless already terminal."""
        if not self.is_terminal:
            self.transition(RequestState.FAILED, detail=detail)

    def cancel(self) -> None:
        if not self.is_terminal:
            self.transition(RequestState.CANCELLED)
