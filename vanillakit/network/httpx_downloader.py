"""Downloader backed by an ``httpx.Client`` (streaming, HTTP/1.1)."""

from __future__ import annotations

from pathlib import Path

import httpx

from vanillakit.core.errors import NetworkError
from vanillakit.models.artifacts import ContentHash, FetchResult
from vanillakit.network.base import CHUNK_SIZE, DownloadSink, fetch_with_retry, raise_for_status
from vanillakit.network.retry import RetryPolicyFactory


class HttpxDownloader:
    """Streaming downloader using httpx.

    Parameters
    ----------
    user_agent:
        Value of the ``User-Agent`` header sent with every request.
    connect_timeout, read_timeout:
        Per-attempt timeouts in seconds.
    retry_policy:
        Factory of tenacity policies; one fresh policy per fetch.
    client:
        Pre-built client (tests inject one with ``httpx.MockTransport``).
    """

    name = "httpx"

    def __init__(
        self,
        *,
        user_agent: str = "vanillakit",
        connect_timeout: float = 10.0,
        read_timeout: float = 60.0,
        retry_policy: RetryPolicyFactory | None = None,
        client: httpx.Client | None = None,
    ) -> None:
        self._retry_policy = retry_policy
        self._owns_client = client is None
        self._client = client or httpx.Client(
            timeout=httpx.Timeout(read_timeout, connect=connect_timeout),
            follow_redirects=True,
        )
        self._client.headers["User-Agent"] = user_agent

    def _attempt(self, url: str, sink: DownloadSink, offset: int) -> None:
        headers = {"Range": f"bytes={offset}-"} if offset else {}
        try:
            with self._client.stream("GET", url, headers=headers) as response:
                if response.status_code == 416 and offset:
                    sink.discard()
                    raise NetworkError(url, "range not satisfiable, restarting", status_code=416)
                raise_for_status(url, response.status_code)
                sink.begin(resume=offset > 0 and response.status_code == 206)
                for chunk in response.iter_bytes(CHUNK_SIZE):
                    sink.write(chunk)
        except httpx.TransportError as exc:
            raise NetworkError(url, f"{type(exc).__name__}: {exc}") from exc

    def fetch(
        self,
        url: str,
        destination: Path,
        *,
        expected_hash: ContentHash | None = None,
        expected_size: int | None = None,
    ) -> FetchResult:
        return fetch_with_retry(
            url,
            destination,
            self._attempt,
            expected_hash=expected_hash,
            expected_size=expected_size,
            retry_policy=self._retry_policy,
        )

    def close(self) -> None:
        if self._owns_client:
            self._client.close()
