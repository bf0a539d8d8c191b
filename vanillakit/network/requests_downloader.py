"""Downloader backed by a ``requests.Session``."""

from __future__ import annotations

from pathlib import Path

import requests

from vanillakit.core.errors import NetworkError
from vanillakit.models.artifacts import ContentHash, FetchResult
from vanillakit.network.base import CHUNK_SIZE, DownloadSink, fetch_with_retry, raise_for_status
from vanillakit.network.retry import RetryPolicyFactory

_TRANSIENT = (
    requests.exceptions.ConnectionError,
    requests.exceptions.Timeout,
    requests.exceptions.ChunkedEncodingError,
    requests.exceptions.ContentDecodingError,
)


class RequestsDownloader:
    """Streaming downloader using requests; same contract as HttpxDownloader."""

    name = "requests"

    def __init__(
        self,
        *,
        user_agent: str = "vanillakit",
        connect_timeout: float = 10.0,
        read_timeout: float = 60.0,
        retry_policy: RetryPolicyFactory | None = None,
        session: requests.Session | None = None,
    ) -> None:
        self._retry_policy = retry_policy
        self._timeout = (connect_timeout, read_timeout)
        self._owns_session = session is None
        self._session = session or requests.Session()
        self._session.headers["User-Agent"] = user_agent

    def _attempt(self, url: str, sink: DownloadSink, offset: int) -> None:
        headers = {"Range": f"bytes={offset}-"} if offset else {}
        try:
            with self._session.get(
                url, headers=headers, stream=True, timeout=self._timeout
            ) as response:
                if response.status_code == 416 and offset:
                    sink.discard()
                    raise NetworkError(url, "range not satisfiable, restarting", status_code=416)
                raise_for_status(url, response.status_code)
                sink.begin(resume=offset > 0 and response.status_code == 206)
                for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                    if chunk:
                        sink.write(chunk)
        except _TRANSIENT as exc:
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
        if self._owns_session:
            self._session.close()
