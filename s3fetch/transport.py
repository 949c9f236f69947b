# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""HTTP transport for S3 requests.

Wraps an ``httpx.Client`` that never follows redirects on its own and
turns every call into a ``TransportResult`` tagged with the outcome the
fetcher needs to branch on.  Network and HTTP failures are returned, not
raised; the fetcher decides whether to retry and what to surface.
"""

from __future__ import annotations

import ipaddress
import logging
from typing import Self

import httpx

from s3fetch.config import FetchConfig, ProxyConfig
from s3fetch.types import (
    RequestDescriptor,
    ResultKind,
    S3FetchError,
    TransportResult,
)


logger = logging.getLogger(__name__)

#: Response headers S3 uses to name the bucket's real region.
REGION_HINT_HEADERS = ("x-amz-bucket-region", "x-amz-region")

_REDIRECT_STATUSES = frozenset({301, 302, 307})

# Redirects S3 sends when a bucket is addressed through the wrong region
_REGION_REDIRECT_STATUSES = frozenset({301, 307})

_RETRYABLE_CLIENT_STATUSES = frozenset({408, 429})


class S3RequestError(S3FetchError):
    """Raised when S3 answers with an unsuccessful HTTP status.

    Attributes:
        status_code: HTTP status code.
        method: Request method.
        url: Request URL.
        headers: Response headers.
    """

    def __init__(self, response: httpx.Response) -> None:
        self.status_code = response.status_code
        self.method = response.request.method
        self.url = str(response.request.url)
        self.headers = response.headers
        super().__init__(
            f"{self.method} {self.url} failed with HTTP "
            f"{self.status_code} {response.reason_phrase}".rstrip()
        )


def region_hint(headers: httpx.Headers) -> str | None:
    """Region named by S3 response headers, if any."""
    for name in REGION_HINT_HEADERS:
        value = headers.get(name, "").strip()
        if value:
            return value
    return None


def classify_response(response: httpx.Response) -> TransportResult:
    """Map an HTTP response to a tagged transport outcome.

    - 2xx: SUCCESS
    - 400, or 301/307 naming a region: REGION_MISMATCH
    - 301/302/307 with a ``Location``: REDIRECT
    - 408, 429, 5xx and redirects without ``Location``: TRANSIENT_ERROR
    - any other status: FATAL_ERROR

    Args:
        response: Received response.

    Returns:
        TransportResult for the response.
    """
    status = response.status_code
    if response.is_success:
        return TransportResult(ResultKind.SUCCESS, response=response)

    hint = region_hint(response.headers)
    location = response.headers.get("location") or None
    error = S3RequestError(response)

    if status == 400 or (status in _REGION_REDIRECT_STATUSES and hint):
        return TransportResult(
            ResultKind.REGION_MISMATCH,
            response=response,
            location=location,
            region_hint=hint,
            error=error,
        )

    if status in _REDIRECT_STATUSES and location:
        return TransportResult(
            ResultKind.REDIRECT,
            response=response,
            location=location,
            region_hint=hint,
            error=error,
        )

    if (
        status in _REDIRECT_STATUSES
        or status in _RETRYABLE_CLIENT_STATUSES
        or response.is_server_error
    ):
        return TransportResult(
            ResultKind.TRANSIENT_ERROR, response=response, error=error
        )

    return TransportResult(
        ResultKind.FATAL_ERROR, response=response, error=error
    )


def build_mounts(proxy: ProxyConfig) -> dict[str, httpx.BaseTransport | None]:
    """Build ``httpx`` transport mounts for a proxy configuration.

    ``no_proxy`` entries are mounted to the default (direct) transport,
    following the pattern rules ``httpx`` applies to the environment
    variables.

    Args:
        proxy: Proxy settings.

    Returns:
        Mapping of URL pattern to transport.
    """
    mounts: dict[str, httpx.BaseTransport | None] = {}
    if not proxy.enabled:
        return mounts

    no_proxy = proxy.no_proxy_hosts()
    if "*" in no_proxy:
        return mounts

    for host in no_proxy:
        if "://" in host:
            pattern = host
        elif ":" in host and _is_ip(host):
            pattern = f"all://[{host}]"
        elif _is_ip(host) or host == "localhost":
            pattern = f"all://{host}"
        else:
            pattern = f"all://*{host.lstrip('.')}"
        mounts[pattern] = None

    if proxy.http_proxy:
        mounts["http://"] = httpx.HTTPTransport(proxy=proxy.http_proxy)
    if proxy.https_proxy:
        mounts["https://"] = httpx.HTTPTransport(proxy=proxy.https_proxy)
    return mounts


def _is_ip(host: str) -> bool:
    try:
        ipaddress.ip_network(host, strict=False)
    except ValueError:
        return False
    return True


class HttpTransport:
    """Issues HEAD/GET requests without following redirects.

    The underlying ``httpx.Client`` is safe to share between threads; the
    transport holds no per-request state.
    """

    def __init__(
        self,
        config: FetchConfig | None = None,
        *,
        client: httpx.Client | None = None,
    ) -> None:
        """Initialize the transport.

        Args:
            config: Fetch configuration (timeouts, proxy, user agent).
            client: Pre-built client, mainly for tests.  Must not follow
                redirects.
        """
        self.config = config or FetchConfig()
        if client is None:
            client = httpx.Client(
                follow_redirects=False,
                trust_env=False,
                timeout=self.config.timeout_seconds,
                mounts=build_mounts(self.config.proxy),
                headers={"user-agent": self.config.user_agent},
            )
        self._client = client

    def send(
        self, request: RequestDescriptor, *, stream: bool = False
    ) -> TransportResult:
        """Send a request and classify the outcome.

        Args:
            request: Request to send (signed or not).
            stream: If True, a successful response body is left unread
                and the caller must close the response.  Unsuccessful
                streamed responses are closed before returning.

        Returns:
            TransportResult for the call.
        """
        try:
            http_request = self._client.build_request(
                request.method,
                request.url,
                headers=request.headers,
                content=request.body or None,
            )
            response = self._client.send(http_request, stream=stream)
        except httpx.UnsupportedProtocol as e:
            return TransportResult(ResultKind.FATAL_ERROR, error=e)
        except httpx.TransportError as e:
            logger.debug("%s %s failed: %s", request.method, request.url, e)
            return TransportResult(ResultKind.TRANSIENT_ERROR, error=e)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            return TransportResult(ResultKind.FATAL_ERROR, error=e)

        result = classify_response(response)
        if stream and not result.ok:
            response.close()
        logger.debug(
            "%s %s -> %d (%s)",
            request.method,
            request.url,
            response.status_code,
            result.kind.value,
        )
        return result

    def close(self) -> None:
        """Close the underlying client."""
        self._client.close()

    def __enter__(self) -> Self:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
