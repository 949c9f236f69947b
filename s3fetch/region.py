# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Bucket region discovery and endpoint URLs."""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING

import httpx

from s3fetch.transport import region_hint
from s3fetch.types import RequestDescriptor, S3FetchError


if TYPE_CHECKING:
    from s3fetch.transport import HttpTransport


logger = logging.getLogger(__name__)

#: Region served by the global endpoint.
GLOBAL_REGION = "us-east-1"

_REGIONAL_HOST_RE = re.compile(
    r"(?:^|\.)s3(?:[.-]dualstack)?[.-]"
    r"(?P<region>[a-z]{2}(?:-[a-z]+)+-\d+)"
    r"\.amazonaws\.com(?:\.cn)?$"
)
_GLOBAL_HOST_RE = re.compile(r"(?:^|\.)s3(?:-external-1)?\.amazonaws\.com$")


class RegionDiscoveryError(S3FetchError):
    """Raised when a bucket's region cannot be determined."""


def build_endpoint_url(bucket: str, region: str) -> str:
    """Path-style endpoint URL for a bucket.

    Args:
        bucket: Bucket name.
        region: Bucket region.

    Returns:
        Bucket URL without a trailing slash.
    """
    if region == GLOBAL_REGION:
        # Virtual-hosted addressing is not supported in us-east-1
        return f"https://s3.amazonaws.com/{bucket}"
    return f"https://s3-{region}.amazonaws.com/{bucket}"


def region_from_location(location: str) -> str | None:
    """Extract the region from an S3 URL or host name.

    Args:
        location: ``Location`` header value, URL or bare host.

    Returns:
        Region name, or None if the host is not a recognized S3 endpoint.
    """
    location = location.strip()
    if not location:
        return None
    if "://" in location:
        try:
            host = httpx.URL(location).host
        except httpx.InvalidURL:
            return None
    else:
        host = location.split("/", 1)[0].split(":", 1)[0]
    host = host.lower()

    m = _REGIONAL_HOST_RE.search(host)
    if m:
        return m.group("region")
    if _GLOBAL_HOST_RE.search(host):
        return GLOBAL_REGION
    return None


class RegionResolver:
    """Finds a bucket's region with an unsigned probe."""

    def __init__(self, transport: HttpTransport) -> None:
        self._transport = transport

    def discover(self, bucket: str) -> str:
        """Determine the region a bucket lives in.

        Sends an unsigned HEAD to the bucket on the global endpoint and
        reads the region from the response's region headers or from the
        host in its ``Location`` header.

        Args:
            bucket: Bucket name.

        Returns:
            Region name.

        Raises:
            RegionDiscoveryError: If no region can be determined.
        """
        probe = RequestDescriptor.from_url(
            "HEAD", build_endpoint_url(bucket, GLOBAL_REGION)
        )
        result = self._transport.send(probe)
        response = result.response
        if response is None:
            logger.error(
                "Region probe for bucket %s failed: %s", bucket, result.error
            )
            raise RegionDiscoveryError(
                f"Could not determine the region of S3 bucket {bucket}: "
                f"{result.error}"
            ) from result.error

        region = region_hint(response.headers)
        location = response.headers.get("location")
        if region is None and location:
            region = region_from_location(location)

        if region is None:
            logger.error(
                "Could not determine the location from head request, "
                "response is HTTP %d",
                response.status_code,
            )
            raise RegionDiscoveryError(
                f"Could not determine the region of S3 bucket {bucket}"
            )

        logger.info(
            "Detected bucket location is %s, region is %s",
            location or "(header)",
            region,
        )
        return region
