# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Type definitions shared across s3fetch.

Provides the data model used by the signer, the transport and the fetcher:
Credentials, RequestDescriptor, SigningContext, RegionState,
IntegrityExpectation and the tagged TransportResult.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import BinaryIO

import httpx


ALGORITHM = "AWS4-HMAC-SHA256"
SERVICE = "s3"

# Custom metadata header carrying "algorithm=hexdigest" pairs
DIGEST_HEADER = "x-amz-meta-digest"


class S3FetchError(Exception):
    """Base class for all s3fetch errors."""


@dataclass(frozen=True)
class Credentials:
    """AWS credentials used to sign requests.

    Never mutated after construction, so a single instance can be shared
    between threads.

    Attributes:
        access_key_id: AWS access key ID.
        secret_access_key: AWS secret access key.
        session_token: Optional STS session token.
    """

    access_key_id: str
    secret_access_key: str = field(repr=False)
    session_token: str | None = field(default=None, repr=False)

    def __post_init__(self) -> None:
        if not self.access_key_id:
            raise ValueError("access_key_id is required")
        if not self.secret_access_key:
            raise ValueError("secret_access_key is required")

    @classmethod
    def from_env(
        cls, environ: Mapping[str, str] | None = None
    ) -> Credentials | None:
        """Read credentials from the standard AWS environment variables.

        Args:
            environ: Environment mapping. Defaults to ``os.environ``.

        Returns:
            Credentials, or None if the key pair is not set.
        """
        env = os.environ if environ is None else environ
        key_id = env.get("AWS_ACCESS_KEY_ID", "")
        secret = env.get("AWS_SECRET_ACCESS_KEY", "")
        if not key_id or not secret:
            return None
        return cls(
            access_key_id=key_id,
            secret_access_key=secret,
            session_token=env.get("AWS_SESSION_TOKEN") or None,
        )


@dataclass
class RequestDescriptor:
    """An HTTP request as seen by the signer.

    Signing mutates ``headers`` in place.  Once signed, the method, path,
    query, signed headers and body must not change.

    Attributes:
        method: HTTP method (``HEAD`` or ``GET``).
        scheme: URL scheme.
        host: Host, including a non-default port.
        path: Raw (percent-encoded) URL path, without query.
        query: Raw query string, without the leading ``?``.
        headers: Case-insensitive request headers.
        body: Request body as bytes or a seekable binary stream.
    """

    method: str
    scheme: str
    host: str
    path: str
    query: str = ""
    headers: httpx.Headers = field(default_factory=httpx.Headers)
    body: bytes | BinaryIO = b""

    @classmethod
    def from_url(
        cls,
        method: str,
        url: str,
        headers: Mapping[str, str] | None = None,
        body: bytes | BinaryIO = b"",
    ) -> RequestDescriptor:
        """Build a descriptor from a URL.

        Args:
            method: HTTP method.
            url: Absolute target URL.
            headers: Initial headers.
            body: Request body.

        Returns:
            A new, unsigned RequestDescriptor.
        """
        parsed = httpx.URL(url)
        raw_path = parsed.raw_path.decode("ascii").split("?", 1)[0]
        return cls(
            method=method.upper(),
            scheme=parsed.scheme,
            host=parsed.netloc.decode("ascii"),
            path=raw_path or "/",
            query=parsed.query.decode("ascii"),
            headers=httpx.Headers(headers or {}),
            body=body,
        )

    @property
    def url(self) -> str:
        """Target URL rebuilt from the descriptor fields."""
        url = f"{self.scheme}://{self.host}{self.path}"
        if self.query:
            url = f"{url}?{self.query}"
        return url


@dataclass(frozen=True)
class SigningContext:
    """Per-attempt signing parameters.

    Created fresh for every signing pass; never reused across retries.
    """

    timestamp: str
    date: str
    region: str
    service: str = SERVICE
    algorithm: str = ALGORITHM

    @classmethod
    def create(
        cls, region: str, now: datetime | None = None
    ) -> SigningContext:
        """Derive a signing context from the current UTC time.

        Args:
            region: Region the request is scoped to.
            now: Override for the current time (tests).  Must be
                timezone-aware.

        Returns:
            SigningContext with second-precision timestamp.

        Raises:
            ValueError: If ``now`` is naive.
        """
        if now is None:
            now = datetime.now(UTC)
        elif now.utcoffset() is None:
            # astimezone() would read a naive value as local time
            raise ValueError(f"now must be timezone-aware, got {now!r}")
        now = now.astimezone(UTC).replace(microsecond=0)
        return cls(
            timestamp=now.strftime("%Y%m%dT%H%M%SZ"),
            date=now.strftime("%Y%m%d"),
            region=region,
        )

    @property
    def scope(self) -> str:
        """Credential scope (date/region/service/aws4_request)."""
        return f"{self.date}/{self.region}/{self.service}/aws4_request"


@dataclass
class RegionState:
    """Region knowledge for a single fetch operation.

    Discarded when the operation completes; never shared.
    """

    bucket: str
    known_region: str | None = None
    region_corrected: bool = False


@dataclass(frozen=True)
class IntegrityExpectation:
    """Checksums the stored object is expected to match.

    Attributes:
        expected_md5: MD5 hex digest from the ETag, or None for multipart
            ETags which are not plain MD5 digests.
        digests: Mapping of algorithm name to hex digest from the custom
            digest metadata header.
    """

    expected_md5: str | None
    digests: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_headers(cls, headers: Mapping[str, str]) -> IntegrityExpectation:
        """Parse expectations from HEAD response headers.

        Args:
            headers: Response headers (case-insensitive mapping).

        Returns:
            IntegrityExpectation.
        """
        etag = (headers.get("etag") or "").replace('"', "").strip()
        expected_md5 = etag if etag and "-" not in etag else None
        return cls(
            expected_md5=expected_md5,
            digests=parse_digest_header(headers.get(DIGEST_HEADER)),
        )

    def as_dict(self) -> dict[str, str]:
        """All known digests, keyed by algorithm name."""
        result: dict[str, str] = {}
        if self.expected_md5:
            result["md5"] = self.expected_md5
        result.update(self.digests)
        return result


def parse_digest_header(value: str | None) -> dict[str, str]:
    """Parse a comma-separated ``algorithm=hexdigest`` header value.

    Pairs without ``=`` or with an empty side are skipped.

    Args:
        value: Raw header value, or None.

    Returns:
        Mapping of lower-cased algorithm name to digest.
    """
    digests: dict[str, str] = {}
    if not value:
        return digests
    for pair in value.split(","):
        name, sep, digest = pair.partition("=")
        name = name.strip().lower()
        digest = digest.strip()
        if sep and name and digest:
            digests[name] = digest
    return digests


# ---------------------------------------------------------------------------
# Transport outcomes
# ---------------------------------------------------------------------------


class ResultKind(Enum):
    """Classifies a transport call so the fetcher can branch on it."""

    SUCCESS = "success"
    REDIRECT = "redirect"
    REGION_MISMATCH = "region_mismatch"
    TRANSIENT_ERROR = "transient_error"
    FATAL_ERROR = "fatal_error"


@dataclass(frozen=True)
class TransportResult:
    """Outcome of a single HTTP call.

    Attributes:
        kind: Outcome classification.
        response: The HTTP response, when one was received.
        location: Redirect target (REDIRECT, and REGION_MISMATCH when the
            response also carried one).
        region_hint: Region named by the response headers, if any.
        error: Exception describing the failure (error kinds only).
    """

    kind: ResultKind
    response: httpx.Response | None = None
    location: str | None = None
    region_hint: str | None = None
    error: Exception | None = None

    @property
    def ok(self) -> bool:
        """True if the call succeeded."""
        return self.kind is ResultKind.SUCCESS
