# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Fetch and verify single objects from S3-compatible storage.

Requests are signed with AWS Signature Version 4.  Misrouted requests are
recovered by discovering the bucket's region, redirects are followed under
the fetcher's control, and downloads are verified (and optionally
decrypted) in bounded memory.
"""

from s3fetch.config import ConfigError, FetchConfig, ProxyConfig, RetryPolicy
from s3fetch.fetcher import S3Fetcher
from s3fetch.integrity import (
    ChecksumMismatchError,
    DecryptionError,
    decrypt_file,
    normalize_key,
    verify_checksum,
    verify_expectation,
    verify_md5_checksum,
    verify_sha256_checksum,
)
from s3fetch.region import (
    RegionDiscoveryError,
    RegionResolver,
    build_endpoint_url,
)
from s3fetch.signing import SigningError, sign_request
from s3fetch.transport import HttpTransport, S3RequestError
from s3fetch.types import (
    Credentials,
    IntegrityExpectation,
    RequestDescriptor,
    ResultKind,
    S3FetchError,
    TransportResult,
)


__all__ = [
    # fetcher
    "S3Fetcher",
    # config
    "ConfigError",
    "FetchConfig",
    "ProxyConfig",
    "RetryPolicy",
    # types
    "Credentials",
    "IntegrityExpectation",
    "RequestDescriptor",
    "ResultKind",
    "TransportResult",
    # signing
    "sign_request",
    # region
    "RegionResolver",
    "build_endpoint_url",
    # transport
    "HttpTransport",
    # integrity
    "decrypt_file",
    "normalize_key",
    "verify_checksum",
    "verify_expectation",
    "verify_md5_checksum",
    "verify_sha256_checksum",
    # errors
    "S3FetchError",
    "ChecksumMismatchError",
    "DecryptionError",
    "RegionDiscoveryError",
    "S3RequestError",
    "SigningError",
]
