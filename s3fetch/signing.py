# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""AWS Signature Version 4 request signing for S3 reads.

Builds the canonical request, derives the scoped signing key and injects
the ``Authorization`` header plus the ``x-amz-*`` headers it covers.

Every header present on the descriptor at signing time is signed.  Headers
the HTTP client adds afterwards (``user-agent``, ``accept``) are sent but
not covered by the signature, which SigV4 allows.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
from collections.abc import Iterable
from datetime import datetime
from typing import BinaryIO

import httpx

from s3fetch.types import (
    ALGORITHM,
    Credentials,
    RequestDescriptor,
    S3FetchError,
    SigningContext,
)


logger = logging.getLogger(__name__)

_SHA256_EMPTY = hashlib.sha256(b"").hexdigest()

# Payloads streamed from disk are hashed in blocks of this size
_HASH_BLOCK_SIZE = 1024 * 1000


class SigningError(S3FetchError):
    """Raised when a request cannot be signed (programmer error)."""


# ---------------------------------------------------------------------------
# Canonical request construction
# ---------------------------------------------------------------------------


def hash_payload(
    body: bytes | BinaryIO, block_size: int = _HASH_BLOCK_SIZE
) -> str:
    """Hex SHA-256 of a request body.

    Args:
        body: Body bytes, or a seekable binary stream.  Streams are read
            from their current position in blocks and rewound afterwards.
        block_size: Read size for streams.

    Returns:
        Hex-encoded SHA-256 digest.
    """
    if isinstance(body, bytes | bytearray):
        if not body:
            return _SHA256_EMPTY
        return hashlib.sha256(body).hexdigest()

    start = body.tell()
    digest = hashlib.sha256()
    while chunk := body.read(block_size):
        digest.update(chunk)
    body.seek(start)
    return digest.hexdigest()


def canonical_header_value(value: str) -> str:
    """Trim a header value and collapse inner whitespace runs."""
    return " ".join(value.split())


def canonical_headers(
    headers: httpx.Headers | Iterable[tuple[str, str]],
) -> tuple[str, str]:
    """Build the canonical headers block and the signed headers list.

    Names are compared case-insensitively; values of repeated names are
    joined with commas in the order they appear.

    Args:
        headers: Request headers, or an iterable of (name, value) pairs.

    Returns:
        Tuple of (canonical_headers, signed_headers).  The canonical block
        ends with a newline after the last header.
    """
    items = (
        headers.multi_items()
        if isinstance(headers, httpx.Headers)
        else list(headers)
    )

    merged: dict[str, list[str]] = {}
    for name, value in items:
        merged.setdefault(name.lower(), []).append(
            canonical_header_value(value)
        )

    names = sorted(merged)
    block = "".join(f"{name}:{','.join(merged[name])}\n" for name in names)
    return block, ";".join(names)


def build_canonical_request(
    request: RequestDescriptor, payload_hash: str
) -> tuple[str, str]:
    """Build the canonical request string.

    The path and query are used exactly as supplied (already encoded),
    which is what S3 expects.

    Args:
        request: Request to canonicalize.
        payload_hash: Hex SHA-256 of the body.

    Returns:
        Tuple of (canonical_request, signed_headers).
    """
    headers_block, signed_headers = canonical_headers(request.headers)
    canonical = "\n".join(
        [
            request.method,
            request.path or "/",
            request.query,
            headers_block,
            signed_headers,
            payload_hash,
        ]
    )
    return canonical, signed_headers


# ---------------------------------------------------------------------------
# SigV4 signing
# ---------------------------------------------------------------------------


def _hmac_sha256(key: bytes, msg: str) -> bytes:
    return hmac.new(key, msg.encode("utf-8"), hashlib.sha256).digest()


def derive_signing_key(
    secret_key: str, date: str, region: str, service: str
) -> bytes:
    """Derive the SigV4 signing key.

    Args:
        secret_key: AWS secret access key.
        date: Date string (YYYYMMDD).
        region: AWS region.
        service: AWS service name.

    Returns:
        32-byte signing key.
    """
    k_date = _hmac_sha256(("AWS4" + secret_key).encode("utf-8"), date)
    k_region = _hmac_sha256(k_date, region)
    k_service = _hmac_sha256(k_region, service)
    return _hmac_sha256(k_service, "aws4_request")


def build_string_to_sign(
    context: SigningContext, canonical_request: str
) -> str:
    """Build the SigV4 string to sign."""
    return "\n".join(
        [
            context.algorithm,
            context.timestamp,
            context.scope,
            hashlib.sha256(canonical_request.encode("utf-8")).hexdigest(),
        ]
    )


def compute_signature(signing_key: bytes, string_to_sign: str) -> str:
    """Hex HMAC-SHA256 of the string to sign."""
    return hmac.new(
        signing_key, string_to_sign.encode("utf-8"), hashlib.sha256
    ).hexdigest()


def sign_request(
    request: RequestDescriptor,
    region: str,
    credentials: Credentials,
    *,
    now: datetime | None = None,
) -> RequestDescriptor:
    """Sign a request in place.

    Sets ``host``, ``x-amz-date``, ``x-amz-content-sha256``, the optional
    ``x-amz-security-token`` and finally ``Authorization``.  A fresh
    timestamp is taken on every call, so retries must call this again.

    Args:
        request: Request to sign.  Its headers are modified.
        region: Region the signature is scoped to.
        credentials: Credentials to sign with.
        now: Override for the current time (tests, timezone-aware).

    Returns:
        The same descriptor, now signed.

    Raises:
        SigningError: If the descriptor has no method, host or region.
        ValueError: If ``now`` is naive.
    """
    if not request.method:
        raise SigningError("Request has no method")
    if not request.host:
        raise SigningError("Request has no host")
    if not region:
        raise SigningError("Cannot sign without a region")

    context = SigningContext.create(region, now)
    payload_hash = hash_payload(request.body)

    # A descriptor re-signed on retry must not carry the old signature
    request.headers.pop("authorization", None)

    request.headers["host"] = request.host
    request.headers["x-amz-date"] = context.timestamp
    if credentials.session_token:
        request.headers["x-amz-security-token"] = credentials.session_token
    request.headers["x-amz-content-sha256"] = payload_hash

    canonical, signed_headers = build_canonical_request(request, payload_hash)
    string_to_sign = build_string_to_sign(context, canonical)
    signing_key = derive_signing_key(
        credentials.secret_access_key,
        context.date,
        context.region,
        context.service,
    )
    signature = compute_signature(signing_key, string_to_sign)

    request.headers["authorization"] = (
        f"{ALGORITHM} "
        f"Credential={credentials.access_key_id}/{context.scope}, "
        f"SignedHeaders={signed_headers}, "
        f"Signature={signature}"
    )
    logger.debug(
        "Signed %s %s for region %s (signed headers: %s)",
        request.method,
        request.path,
        region,
        signed_headers,
    )
    return request
