"""Tenacity retry policy for downloads.

Only ``NetworkError`` (connection resets, timeouts, 5xx and 429 answers) is
retried, with bounded exponential backoff.  4xx answers and integrity
failures surface immediately.

Example::

    policy = create_retry_policy(attempts=5, base_delay=0.5, max_delay=8.0)
    for attempt in policy:
        with attempt:
            fetch_once()
"""

from __future__ import annotations

import logging
from typing import Callable

from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from vanillakit.core.errors import NetworkError

logger = logging.getLogger(__name__)

RetryPolicyFactory = Callable[[], Retrying]


def create_retry_policy(
    attempts: int = 5,
    base_delay: float = 0.5,
    max_delay: float = 8.0,
    *,
    sleep: Callable[[float], None] | None = None,
) -> Retrying:
    """Build a fresh ``Retrying`` for one fetch.

    Parameters
    ----------
    attempts:
        Total attempts including the first one.
    base_delay:
        Delay before the first retry; doubles on every further retry.
    max_delay:
        Upper bound for a single delay.
    sleep:
        Replacement sleep function (tests pass a no-op).
    """
    kwargs = {}
    if sleep is not None:
        kwargs["sleep"] = sleep
    return Retrying(
        stop=stop_after_attempt(attempts),
        wait=wait_exponential(multiplier=base_delay, min=0, max=max_delay),
        retry=retry_if_exception_type(NetworkError),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
        **kwargs,
    )


def retry_policy_factory(
    attempts: int,
    base_delay: float,
    max_delay: float,
    *,
    sleep: Callable[[float], None] | None = None,
) -> RetryPolicyFactory:
    """Return a zero-argument factory producing identical fresh policies."""

    def factory() -> Retrying:
        return create_retry_policy(attempts, base_delay, max_delay, sleep=sleep)

    return factory
