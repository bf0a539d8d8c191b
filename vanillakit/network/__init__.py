"""Downloader backends — registry mapping backend name to implementation.

Usage::

    from vanillakit.network import get_downloader

    downloader = get_downloader("requests", config)
    result = downloader.fetch(url, tmp_path, expected_hash=content_hash)
"""

from __future__ import annotations

from typing import Callable

from vanillakit.config import KitConfig
from vanillakit.network.base import Downloader, raise_for_status
from vanillakit.network.httpx_downloader import HttpxDownloader
from vanillakit.network.requests_downloader import RequestsDownloader
from vanillakit.network.retry import create_retry_policy, retry_policy_factory

# ---------------------------------------------------------------------------
# Backend registry: name -> downloader class
# ---------------------------------------------------------------------------

DOWNLOADER_REGISTRY: dict[str, type] = {
    HttpxDownloader.name: HttpxDownloader,
    RequestsDownloader.name: RequestsDownloader,
}


def get_downloader(
    name: str,
    config: KitConfig | None = None,
    *,
    sleep: Callable[[float], None] | None = None,
) -> Downloader:
    """Instantiate the backend registered as *name* from *config*.

    Raises ``KeyError`` if the name is not registered.
    """
    try:
        cls = DOWNLOADER_REGISTRY[name]
    except KeyError:
        raise KeyError(
            f"Unknown downloader backend {name!r}. "
            f"Registered backends: {sorted(DOWNLOADER_REGISTRY.keys())}"
        ) from None
    config = config or KitConfig()
    return cls(
        user_agent=config.user_agent,
        connect_timeout=config.connect_timeout_seconds,
        read_timeout=config.read_timeout_seconds,
        retry_policy=retry_policy_factory(
            config.retry_attempts,
            config.retry_base_delay_seconds,
            config.retry_max_delay_seconds,
            sleep=sleep,
        ),
    )


__all__ = [
    "Downloader",
    "HttpxDownloader",
    "RequestsDownloader",
    "DOWNLOADER_REGISTRY",
    "get_downloader",
    "create_retry_policy",
    "raise_for_status",
]
