# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Tests for the HTTP transport and response classification."""

from collections.abc import Callable
from unittest.mock import MagicMock, patch

import httpx
import pytest

from s3fetch.config import FetchConfig, ProxyConfig
from s3fetch.transport import (
    HttpTransport,
    S3RequestError,
    build_mounts,
    classify_response,
    region_hint,
)
from s3fetch.types import RequestDescriptor, ResultKind


URL = "https://s3.amazonaws.com/bucket/key.bin"
_BUCKET_REGION = {"x-amz-bucket-region": "eu-west-1"}


def _response(
    status: int, headers: dict[str, str] | None = None
) -> httpx.Response:
    return httpx.Response(
        status, headers=headers, request=httpx.Request("GET", URL)
    )


def _get_request() -> RequestDescriptor:
    return RequestDescriptor.from_url("GET", URL)


def _transport(
    handler: Callable[[httpx.Request], httpx.Response],
) -> HttpTransport:
    return HttpTransport(
        client=httpx.Client(transport=httpx.MockTransport(handler))
    )


class TestClassifyResponse:
    """Tests for classify_response."""

    @pytest.mark.parametrize(
        ("status", "headers", "kind"),
        [
            (200, {}, ResultKind.SUCCESS),
            (206, {}, ResultKind.SUCCESS),
            (400, {}, ResultKind.REGION_MISMATCH),
            (400, _BUCKET_REGION, ResultKind.REGION_MISMATCH),
            (301, _BUCKET_REGION, ResultKind.REGION_MISMATCH),
            (307, {"x-amz-region": "eu-west-1"}, ResultKind.REGION_MISMATCH),
            (301, {"location": "https://other/"}, ResultKind.REDIRECT),
            (302, {"location": "https://other/"}, ResultKind.REDIRECT),
            (307, {"location": "https://other/"}, ResultKind.REDIRECT),
            (301, {}, ResultKind.TRANSIENT_ERROR),
            (408, {}, ResultKind.TRANSIENT_ERROR),
            (429, {}, ResultKind.TRANSIENT_ERROR),
            (500, {}, ResultKind.TRANSIENT_ERROR),
            (503, {}, ResultKind.TRANSIENT_ERROR),
            (403, {}, ResultKind.FATAL_ERROR),
            (404, {}, ResultKind.FATAL_ERROR),
            (405, {}, ResultKind.FATAL_ERROR),
        ],
    )
    def test_status_mapping(
        self, status: int, headers: dict[str, str], kind: ResultKind
    ) -> None:
        """Each status class maps to the expected outcome."""
        assert classify_response(_response(status, headers)).kind is kind

    def test_region_mismatch_carries_hint_and_location(self) -> None:
        """Region hint and redirect target are both reported."""
        result = classify_response(
            _response(
                301,
                {
                    "x-amz-bucket-region": "ap-northeast-1",
                    "location": "https://s3-ap-northeast-1.amazonaws.com/b/k",
                },
            )
        )
        assert result.region_hint == "ap-northeast-1"
        assert result.location == "https://s3-ap-northeast-1.amazonaws.com/b/k"

    def test_error_describes_request(self) -> None:
        """Unsuccessful responses carry an S3RequestError."""
        result = classify_response(_response(404))
        assert isinstance(result.error, S3RequestError)
        assert result.error.status_code == 404
        assert result.error.method == "GET"
        assert result.error.url == URL
        assert str(result.error) == f"GET {URL} failed with HTTP 404 Not Found"

    def test_success_has_no_error(self) -> None:
        """Successful responses carry no error."""
        result = classify_response(_response(200))
        assert result.ok
        assert result.error is None


class TestRegionHint:
    """Tests for region_hint."""

    def test_prefers_bucket_region(self) -> None:
        """x-amz-bucket-region is checked first."""
        headers = httpx.Headers(
            {"x-amz-bucket-region": "eu-west-2", "x-amz-region": "us-west-1"}
        )
        assert region_hint(headers) == "eu-west-2"

    def test_blank_ignored(self) -> None:
        """Blank values are not hints."""
        assert region_hint(httpx.Headers({"x-amz-bucket-region": " "})) is None
        assert region_hint(httpx.Headers()) is None


class TestHttpTransportSend:
    """Tests for HttpTransport.send."""

    def test_success(self) -> None:
        """Headers and method reach the server unchanged."""
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, content=b"payload")

        request = RequestDescriptor.from_url(
            "GET", URL, headers={"authorization": "AWS4-HMAC-SHA256 x"}
        )
        result = _transport(handler).send(request)

        assert result.kind is ResultKind.SUCCESS
        assert result.response is not None
        assert result.response.content == b"payload"
        assert seen[0].method == "GET"
        assert str(seen[0].url) == URL
        assert seen[0].headers["authorization"] == "AWS4-HMAC-SHA256 x"

    def test_redirect_not_followed(self) -> None:
        """Redirects are returned to the caller, never followed."""
        calls: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(str(request.url))
            return httpx.Response(
                307, headers={"location": "https://elsewhere.example/k"}
            )

        result = _transport(handler).send(_get_request())

        assert calls == [URL]
        assert result.kind is ResultKind.REDIRECT
        assert result.location == "https://elsewhere.example/k"

    def test_connect_error_is_transient(self) -> None:
        """Network failures are returned as transient errors."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        result = _transport(handler).send(_get_request())

        assert result.kind is ResultKind.TRANSIENT_ERROR
        assert isinstance(result.error, httpx.ConnectError)
        assert result.response is None

    def test_timeout_is_transient(self) -> None:
        """Timeouts are returned as transient errors."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        result = _transport(handler).send(_get_request())
        assert result.kind is ResultKind.TRANSIENT_ERROR

    def test_unsupported_protocol_is_fatal(self) -> None:
        """A URL the client cannot speak to is not retried."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.UnsupportedProtocol("ftp", request=request)

        result = _transport(handler).send(_get_request())
        assert result.kind is ResultKind.FATAL_ERROR

    def test_streamed_failure_closed(self) -> None:
        """Unsuccessful streamed responses are closed before returning."""
        transport = _transport(lambda request: httpx.Response(500))
        result = transport.send(
            _get_request(), stream=True
        )

        assert result.kind is ResultKind.TRANSIENT_ERROR
        assert result.response is not None
        assert result.response.is_closed

    def test_streamed_success_left_open(self) -> None:
        """Successful streamed responses are left for the caller."""
        transport = _transport(
            lambda request: httpx.Response(200, content=b"x" * 10)
        )
        result = transport.send(
            _get_request(), stream=True
        )

        assert result.response is not None
        assert not result.response.is_closed
        assert result.response.read() == b"x" * 10
        result.response.close()


class TestHttpTransportClient:
    """Tests for HttpTransport client construction."""

    def test_client_options(self) -> None:
        """The client never follows redirects or reads proxy env vars."""
        config = FetchConfig(timeout_seconds=12.0, user_agent="agent/2")
        with patch("s3fetch.transport.httpx.Client") as mock_client_cls:
            HttpTransport(config)

        kwargs = mock_client_cls.call_args.kwargs
        assert kwargs["follow_redirects"] is False
        assert kwargs["trust_env"] is False
        assert kwargs["timeout"] == 12.0
        assert kwargs["headers"] == {"user-agent": "agent/2"}
        assert kwargs["mounts"] == {}

    def test_close(self) -> None:
        """close() and the context manager close the client."""
        client = MagicMock()
        with HttpTransport(client=client):
            pass
        client.close.assert_called_once()


class TestBuildMounts:
    """Tests for build_mounts."""

    def test_no_proxy_configured(self) -> None:
        """Without proxies there are no mounts."""
        assert build_mounts(ProxyConfig()) == {}
        assert build_mounts(ProxyConfig(no_proxy="localhost")) == {}

    def test_proxies_mounted_per_scheme(self) -> None:
        """Each configured scheme gets a proxied transport."""
        mounts = build_mounts(
            ProxyConfig(
                http_proxy="http://proxy:3128", https_proxy="http://proxy:3129"
            )
        )
        assert set(mounts) == {"http://", "https://"}
        assert all(isinstance(t, httpx.HTTPTransport) for t in mounts.values())

    def test_no_proxy_patterns(self) -> None:
        """no_proxy entries bypass the proxy."""
        mounts = build_mounts(
            ProxyConfig(
                https_proxy="http://proxy:3128",
                no_proxy="localhost,10.0.0.0/8,.internal.example,"
                "http://minio:9000",
            )
        )
        assert mounts["all://localhost"] is None
        assert mounts["all://10.0.0.0/8"] is None
        assert mounts["all://*internal.example"] is None
        assert mounts["http://minio:9000"] is None
        assert isinstance(mounts["https://"], httpx.HTTPTransport)
        assert "http://" not in mounts

    def test_no_proxy_wildcard(self) -> None:
        """A bare * disables proxying."""
        assert (
            build_mounts(
                ProxyConfig(https_proxy="http://proxy:3128", no_proxy="*")
            )
            == {}
        )
