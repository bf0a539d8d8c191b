"""Runtime configuration — env-driven, passed explicitly.

Centralized config using pydantic-settings for environment variable support.
Reads from a .env file and VANILLAKIT_* environment variables.  There is no
module-level singleton: the CLI builds one ``KitConfig`` and hands it to the
orchestrator, which passes the relevant values to the cache, resolver and
downloaders.
"""

from __future__ import annotations

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from vanillakit import __version__

VERSION_MANIFEST_URL = "https://piston-meta.mojang.com/mc/game/version_manifest_v2.json"


class KitConfig(BaseSettings):
    """Configuration with environment variable overrides.

    All settings can be overridden via VANILLAKIT_* environment variables
    or a .env file in the working directory.

    Examples
    --------
    Override via environment::

        export VANILLAKIT_CACHE_ROOT=/data/vanillakit
        export VANILLAKIT_HTTP_BACKEND=requests
        export VANILLAKIT_OFFLINE=true
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="VANILLAKIT_",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Logging
    log_level: str = "INFO"

    # Storage
    cache_root: Path = Path(".vanillakit/cache")

    # Manifests
    manifest_url: str = VERSION_MANIFEST_URL
    manifest_ttl_seconds: float = Field(default=86400.0, ge=0)
    offline: bool = False

    # Network
    http_backend: str = "httpx"
    user_agent: str = f"vanillakit/{__version__}"
    connect_timeout_seconds: float = Field(default=10.0, gt=0)
    read_timeout_seconds: float = Field(default=60.0, gt=0)
    retry_attempts: int = Field(default=5, ge=1)
    retry_base_delay_seconds: float = Field(default=0.5, ge=0)
    retry_max_delay_seconds: float = Field(default=8.0, ge=0)

    # Concurrency
    lock_timeout_seconds: float = Field(default=900.0, gt=0)
    max_parallel_requests: int = Field(default=4, ge=1)

    # Treat cached stage outputs as stale; raw downloads are still reused.
    force_refresh: bool = False
