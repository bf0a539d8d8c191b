"""Tests for the downloader backends, the shared retry loop and status mapping.

The httpx backend is driven through ``httpx.MockTransport``; the requests
backend through the ``responses`` library.
"""

from __future__ import annotations

import hashlib
from pathlib import Path

import httpx
import pytest
import requests
import responses

from vanillakit.config import KitConfig
from vanillakit.core.errors import AccessError, IntegrityError, NetworkError, NotFoundError
from vanillakit.core.hasher import HashAlgorithm
from vanillakit.models.artifacts import ContentHash
from vanillakit.network import DOWNLOADER_REGISTRY, get_downloader, raise_for_status
from vanillakit.network.httpx_downloader import HttpxDownloader
from vanillakit.network.requests_downloader import RequestsDownloader
from vanillakit.network.retry import create_retry_policy, retry_policy_factory

URL = "https://downloads.example.invalid/client.jar"
PAYLOAD = bytes(range(256)) * 400  # 102400 bytes


def _sha1(data: bytes) -> ContentHash:
    return ContentHash(algorithm=HashAlgorithm.SHA1, digest=hashlib.sha1(data).hexdigest())


def _no_sleep_policy(attempts: int = 3):
    return retry_policy_factory(attempts, 0.0, 0.0, sleep=lambda _seconds: None)


# ---------------------------------------------------------------------------
# Status classification and retry policy
# ---------------------------------------------------------------------------


class TestRaiseForStatus:
    @pytest.mark.parametrize("status", [200, 204, 206])
    def test_success(self, status: int):
        raise_for_status(URL, status)

    @pytest.mark.parametrize("status", [404, 410])
    def test_not_found(self, status: int):
        with pytest.raises(NotFoundError):
            raise_for_status(URL, status)

    @pytest.mark.parametrize("status", [429, 500, 503])
    def test_transient(self, status: int):
        with pytest.raises(NetworkError) as info:
            raise_for_status(URL, status)
        assert info.value.status_code == status

    def test_forbidden(self):
        with pytest.raises(AccessError):
            raise_for_status(URL, 403)


class TestRetryPolicy:
    def test_network_errors_retried_until_exhausted(self):
        calls = []
        with pytest.raises(NetworkError):
            for attempt in create_retry_policy(3, 0.0, 0.0, sleep=lambda _s: None):
                with attempt:
                    calls.append(1)
                    raise NetworkError(URL, "reset")
        assert len(calls) == 3

    def test_other_errors_not_retried(self):
        calls = []
        with pytest.raises(NotFoundError):
            for attempt in create_retry_policy(3, 0.0, 0.0, sleep=lambda _s: None):
                with attempt:
                    calls.append(1)
                    raise NotFoundError(URL)
        assert len(calls) == 1


class TestRegistry:
    def test_backends_registered(self):
        assert set(DOWNLOADER_REGISTRY) == {"httpx", "requests"}

    def test_get_downloader(self, tmp_path: Path):
        config = KitConfig(cache_root=tmp_path, user_agent="test-agent/1")
        downloader = get_downloader("requests", config)
        try:
            assert isinstance(downloader, RequestsDownloader)
        finally:
            downloader.close()

    def test_unknown_backend(self):
        with pytest.raises(KeyError, match="Registered backends"):
            get_downloader("curl")


# ---------------------------------------------------------------------------
# httpx backend
# ---------------------------------------------------------------------------


class _BrokenStream(httpx.SyncByteStream):
    """Yields some bytes, then fails like a reset connection."""

    def __init__(self, data: bytes) -> None:
        self._data = data

    def __iter__(self):
        yield self._data
        raise httpx.ReadError("connection reset by peer")


def _httpx_downloader(handler) -> HttpxDownloader:
    client = httpx.Client(transport=httpx.MockTransport(handler))
    return HttpxDownloader(client=client, retry_policy=_no_sleep_policy(), user_agent="vk-test")


class TestHttpxDownloader:
    def test_fetch_verifies_hash_and_size(self, tmp_path: Path):
        seen_agents = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen_agents.append(request.headers["User-Agent"])
            return httpx.Response(200, content=PAYLOAD)

        dest = tmp_path / "client.jar"
        result = _httpx_downloader(handler).fetch(
            URL, dest, expected_hash=_sha1(PAYLOAD), expected_size=len(PAYLOAD)
        )
        assert dest.read_bytes() == PAYLOAD
        assert result.size == len(PAYLOAD)
        assert result.sha256 == hashlib.sha256(PAYLOAD).hexdigest()
        assert result.verified == _sha1(PAYLOAD)
        assert result.attempts == 1
        assert seen_agents == ["vk-test"]

    def test_transient_status_retried(self, tmp_path: Path):
        answers = iter([503, 200])

        def handler(request: httpx.Request) -> httpx.Response:
            status = next(answers)
            return httpx.Response(status, content=PAYLOAD if status == 200 else b"busy")

        result = _httpx_downloader(handler).fetch(URL, tmp_path / "f", expected_hash=_sha1(PAYLOAD))
        assert result.attempts == 2
        assert (tmp_path / "f").read_bytes() == PAYLOAD

    def test_not_found_not_retried(self, tmp_path: Path):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(1)
            return httpx.Response(404)

        with pytest.raises(NotFoundError):
            _httpx_downloader(handler).fetch(URL, tmp_path / "f")
        assert len(calls) == 1
        assert not (tmp_path / "f").exists()

    def test_hash_mismatch_leaves_no_file(self, tmp_path: Path):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, content=PAYLOAD[:-1] + b"\x00")

        with pytest.raises(IntegrityError):
            _httpx_downloader(handler).fetch(URL, tmp_path / "f", expected_hash=_sha1(PAYLOAD))
        assert not (tmp_path / "f").exists()

    def test_size_mismatch(self, tmp_path: Path):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, content=PAYLOAD)

        with pytest.raises(IntegrityError):
            _httpx_downloader(handler).fetch(URL, tmp_path / "f", expected_size=len(PAYLOAD) + 1)

    def test_interrupted_transfer_resumes_with_range(self, tmp_path: Path):
        ranges: list[str | None] = []

        def handler(request: httpx.Request) -> httpx.Response:
            header = request.headers.get("Range")
            ranges.append(header)
            if header is None:
                return httpx.Response(200, stream=_BrokenStream(PAYLOAD[:70000]))
            offset = int(header.removeprefix("bytes=").rstrip("-"))
            return httpx.Response(206, content=PAYLOAD[offset:])

        result = _httpx_downloader(handler).fetch(URL, tmp_path / "f", expected_hash=_sha1(PAYLOAD))
        assert (tmp_path / "f").read_bytes() == PAYLOAD
        assert result.attempts == 2
        assert ranges[0] is None
        assert ranges[1] is not None and ranges[1] != "bytes=0-"

    def test_server_ignoring_range_restarts(self, tmp_path: Path):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request.headers.get("Range"))
            if len(calls) == 1:
                return httpx.Response(200, stream=_BrokenStream(PAYLOAD[:70000]))
            return httpx.Response(200, content=PAYLOAD)

        _httpx_downloader(handler).fetch(URL, tmp_path / "f", expected_hash=_sha1(PAYLOAD))
        assert (tmp_path / "f").read_bytes() == PAYLOAD

    def test_retries_exhausted(self, tmp_path: Path):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused")

        with pytest.raises(NetworkError):
            _httpx_downloader(handler).fetch(URL, tmp_path / "f")
        assert not (tmp_path / "f").exists()


# ---------------------------------------------------------------------------
# requests backend
# ---------------------------------------------------------------------------


def _requests_downloader() -> RequestsDownloader:
    return RequestsDownloader(retry_policy=_no_sleep_policy(), user_agent="vk-test")


class TestRequestsDownloader:
    @responses.activate
    def test_fetch_success(self, tmp_path: Path):
        responses.add(responses.GET, URL, body=PAYLOAD, status=200)
        result = _requests_downloader().fetch(
            URL, tmp_path / "f", expected_hash=_sha1(PAYLOAD), expected_size=len(PAYLOAD)
        )
        assert (tmp_path / "f").read_bytes() == PAYLOAD
        assert result.verified == _sha1(PAYLOAD)
        assert responses.calls[0].request.headers["User-Agent"] == "vk-test"

    @responses.activate
    def test_server_error_then_success(self, tmp_path: Path):
        responses.add(responses.GET, URL, body=b"oops", status=500)
        responses.add(responses.GET, URL, body=PAYLOAD, status=200)
        result = _requests_downloader().fetch(URL, tmp_path / "f", expected_hash=_sha1(PAYLOAD))
        assert result.attempts == 2
        assert len(responses.calls) == 2

    @responses.activate
    def test_connection_error_retried(self, tmp_path: Path):
        responses.add(responses.GET, URL, body=requests.exceptions.ConnectionError("reset"))
        responses.add(responses.GET, URL, body=PAYLOAD, status=200)
        result = _requests_downloader().fetch(URL, tmp_path / "f")
        assert result.attempts == 2

    @responses.activate
    def test_forbidden(self, tmp_path: Path):
        responses.add(responses.GET, URL, status=403)
        with pytest.raises(AccessError):
            _requests_downloader().fetch(URL, tmp_path / "f")
        assert len(responses.calls) == 1

    @responses.activate
    def test_tampered_body(self, tmp_path: Path):
        responses.add(responses.GET, URL, body=b"not the jar", status=200)
        with pytest.raises(IntegrityError):
            _requests_downloader().fetch(URL, tmp_path / "f", expected_hash=_sha1(PAYLOAD))
        assert not (tmp_path / "f").exists()
