# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Fetching S3 objects with region recovery and bounded retries.

``S3Fetcher`` drives every request through the same state machine:

1. Resolve the endpoint.  Without an explicit URL the region is needed,
   and it is discovered when unknown.
2. Probe the target with an unsigned HEAD.  A public endpoint gets one
   unsigned request; its result is final.
3. Otherwise sign with the best known region and send.  Depending on the
   transport outcome:

   - REGION_MISMATCH: take the region from the response headers or
     discover it, rebuild the endpoint and try again.  Allowed once per
     operation and does not use a retry slot.
   - REDIRECT: re-target at the ``Location`` and re-sign.  Uses a retry
     slot but does not wait.
   - TRANSIENT_ERROR: wait the fixed delay and retry, up to the policy's
     retry budget, then raise the last error unchanged.
   - FATAL_ERROR: raise immediately.

A download writes the body inside its attempt; a network error while
reading it is handled as TRANSIENT_ERROR.

No state is kept between operations, so one fetcher can serve several
threads at once.
"""

from __future__ import annotations

import logging
import os
import tempfile
import time
from collections.abc import Callable
from pathlib import Path
from typing import Self

import httpx

from s3fetch.config import FetchConfig
from s3fetch.integrity import (
    ZERO_IV,
    ChecksumMismatchError,
    decrypt_file,
    verify_expectation,
)
from s3fetch.logging import SecretFilter
from s3fetch.region import RegionResolver, build_endpoint_url
from s3fetch.signing import SigningError, sign_request
from s3fetch.transport import HttpTransport
from s3fetch.types import (
    Credentials,
    IntegrityExpectation,
    RegionState,
    RequestDescriptor,
    ResultKind,
    TransportResult,
)


logger = logging.getLogger(__name__)


class S3Fetcher:
    """Reads objects from S3 with SigV4 signing and region recovery.

    Attributes:
        credentials: Credentials for signing, or None for public objects
            only.
        config: Fetch configuration.
    """

    def __init__(
        self,
        credentials: Credentials | None = None,
        config: FetchConfig | None = None,
        *,
        transport: HttpTransport | None = None,
        resolver: RegionResolver | None = None,
    ) -> None:
        """Initialize the fetcher.

        Args:
            credentials: Credentials for signed requests.
            config: Fetch configuration. Defaults to ``FetchConfig()``.
            transport: HTTP transport. Built from ``config`` if omitted
                and closed by ``close()``.
            resolver: Region resolver. Built on ``transport`` if omitted.
        """
        self.credentials = credentials
        self.config = config or FetchConfig()
        self._owns_transport = transport is None
        self._transport = transport or HttpTransport(self.config)
        self._resolver = resolver or RegionResolver(self._transport)

        if credentials is not None:
            SecretFilter.register_secret(credentials.secret_access_key)
            SecretFilter.register_secret(credentials.session_token)

    # -----------------------------------------------------------------------
    # Public operations
    # -----------------------------------------------------------------------

    def head(
        self,
        bucket: str,
        path: str,
        *,
        url: str | None = None,
        region: str | None = None,
    ) -> httpx.Response:
        """Send a HEAD request for an object.

        Args:
            bucket: Bucket name.
            path: Object path, starting with ``/``.
            url: Endpoint base URL for the bucket.  Built from the region
                when omitted.
            region: Bucket region, if known.

        Returns:
            The successful response.

        Raises:
            RegionDiscoveryError: If the region is needed but cannot be
                determined.
            S3RequestError: On an unrecoverable HTTP status.
            httpx.TransportError: If network failures exhaust the retries.
        """
        return self._request("HEAD", bucket, path, url, region, stream=False)

    def get(
        self,
        bucket: str,
        path: str,
        *,
        url: str | None = None,
        region: str | None = None,
    ) -> httpx.Response:
        """Send a GET request for an object.

        The response body is not read; the caller must close the response.
        Raises as ``head`` does.
        """
        return self._request("GET", bucket, path, url, region, stream=True)

    def get_digests(
        self,
        bucket: str,
        path: str,
        *,
        url: str | None = None,
        region: str | None = None,
    ) -> IntegrityExpectation:
        """Read the checksums S3 holds for an object."""
        response = self.head(bucket, path, url=url, region=region)
        return IntegrityExpectation.from_headers(response.headers)

    def get_md5(
        self,
        bucket: str,
        path: str,
        *,
        url: str | None = None,
        region: str | None = None,
    ) -> str | None:
        """MD5 of an object from its ETag (None for multipart uploads)."""
        return self.get_digests(
            bucket, path, url=url, region=region
        ).expected_md5

    def download(
        self,
        bucket: str,
        path: str,
        destination: Path | str,
        *,
        url: str | None = None,
        region: str | None = None,
    ) -> Path:
        """Stream an object into a file.

        The body is written exactly as S3 stores it; a ``Content-Encoding``
        is not undone.  A transfer interrupted by a network error counts
        as a transient failure: the file is rewritten from the start on the
        next attempt.

        Args:
            bucket: Bucket name.
            path: Object path, starting with ``/``.
            destination: File to write.  Overwritten if it exists.
            url: Endpoint base URL for the bucket.
            region: Bucket region, if known.

        Returns:
            Path of the written file.

        Raises:
            As ``head``.  A partially written destination is deleted.
        """
        destination = Path(destination)
        opened = False

        def write_body(response: httpx.Response) -> None:
            nonlocal opened
            opened = True
            with open(destination, "wb") as f:
                for chunk in response.iter_raw(self.config.block_size):
                    f.write(chunk)

        try:
            self._request(
                "GET",
                bucket,
                path,
                url,
                region,
                stream=True,
                consume=write_body,
            )
        except BaseException:
            if opened:
                destination.unlink(missing_ok=True)
            raise
        logger.info("Downloaded s3://%s%s to %s", bucket, path, destination)
        return destination

    def fetch_verified(
        self,
        bucket: str,
        path: str,
        destination_dir: Path | str | None = None,
        *,
        url: str | None = None,
        region: str | None = None,
        decryption_key: str | bytes | None = None,
        iv: bytes = ZERO_IV,
    ) -> Path:
        """Download an object, verify it and optionally decrypt it.

        The object's ETag MD5 and any supported digests from its metadata
        are checked against the downloaded bytes before decryption.

        Args:
            bucket: Bucket name.
            path: Object path, starting with ``/``.
            destination_dir: Directory for the output file.  Defaults to
                the system temporary directory.
            url: Endpoint base URL for the bucket.
            region: Bucket region, if known.
            decryption_key: AES key or passphrase if the object is
                encrypted.
            iv: CBC initialization vector for decryption.

        Returns:
            Path of the verified (and decrypted) file.  The caller owns
            its cleanup.

        Raises:
            ChecksumMismatchError: If the download does not match.  The
                download is deleted.
            DecryptionError: If decryption fails.
        """
        expectation = self.get_digests(bucket, path, url=url, region=region)
        if not expectation.as_dict():
            logger.warning(
                "No checksum available for s3://%s%s, skipping verification",
                bucket,
                path,
            )

        fd, name = tempfile.mkstemp(prefix="s3fetch-", dir=destination_dir)
        os.close(fd)
        download_path = Path(name)
        try:
            self.download(bucket, path, download_path, url=url, region=region)
            failed = verify_expectation(
                expectation, download_path, self.config.block_size
            )
            if failed is not None:
                logger.error(
                    "Checksum %s mismatch for s3://%s%s", failed, bucket, path
                )
                raise ChecksumMismatchError(
                    failed, expectation.as_dict()[failed]
                )
            if decryption_key is None:
                return download_path
            decrypted = decrypt_file(
                decryption_key,
                download_path,
                iv=iv,
                block_size=self.config.block_size,
                directory=destination_dir,
            )
        except BaseException:
            download_path.unlink(missing_ok=True)
            raise

        download_path.unlink()
        return decrypted

    def close(self) -> None:
        """Close the transport if this fetcher created it."""
        if self._owns_transport:
            self._transport.close()

    def __enter__(self) -> Self:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # -----------------------------------------------------------------------
    # State machine
    # -----------------------------------------------------------------------

    def _request(
        self,
        method: str,
        bucket: str,
        path: str,
        url: str | None,
        region: str | None,
        *,
        stream: bool,
        consume: Callable[[httpx.Response], None] | None = None,
    ) -> httpx.Response:
        """Run one operation through the state machine.

        ``consume`` reads a successful response body as part of the
        attempt, so a transfer that breaks off is retried like any other
        transient failure.  The response is closed once it returns.
        """
        state = RegionState(bucket, region or self.config.default_region)
        if url is None:
            url = build_endpoint_url(bucket, self._region_for(state))
        target = f"{url}{path}"

        if self._is_public(target):
            logger.info("Sending unsigned %s to public %s", method, target)
            result = self._transport.send(
                RequestDescriptor.from_url(method, target), stream=stream
            )
            if result.ok:
                result = self._consume(result, consume)
            return self._response_or_raise(result)

        policy = self.config.retry
        retries = 0
        while True:
            logger.info(
                "Trying to download from %s in region %s",
                target,
                state.known_region,
            )
            result = self._send_signed(method, target, state, stream=stream)

            if result.kind is ResultKind.SUCCESS:
                result = self._consume(result, consume)
                if result.ok:
                    return self._response_or_raise(result)
            if result.kind is ResultKind.FATAL_ERROR:
                logger.error("%s %s failed: %s", method, target, result.error)
                return self._response_or_raise(result)

            if (
                result.kind is ResultKind.REGION_MISMATCH
                and not state.region_corrected
            ):
                target = self._correct_region(state, path, result)
                continue

            if retries >= policy.max_retries:
                logger.critical(
                    "%s %s failed after %d attempts: %s",
                    method,
                    target,
                    retries + 1,
                    result.error,
                )
                return self._response_or_raise(result)
            retries += 1

            if result.location and result.kind in (
                ResultKind.REDIRECT,
                ResultKind.REGION_MISMATCH,
            ):
                target = str(httpx.URL(target).join(result.location))
                logger.info("Following redirect to %s", target)
                continue

            logger.warning(
                "Attempt %d/%d failed: %s; retrying in %.0fs",
                retries,
                policy.max_attempts,
                result.error,
                policy.delay_seconds,
            )
            time.sleep(policy.delay_seconds)

    def _region_for(self, state: RegionState) -> str:
        if state.known_region is None:
            state.known_region = self._resolver.discover(state.bucket)
        return state.known_region

    def _is_public(self, target: str) -> bool:
        """True if an unsigned HEAD on the target succeeds."""
        probe = RequestDescriptor.from_url("HEAD", target)
        result = self._transport.send(probe)
        if result.response is not None and result.response.status_code == 200:
            return True
        logger.info(
            "Assuming S3 endpoint is not public (%s)",
            result.error or result.kind.value,
        )
        return False

    def _send_signed(
        self,
        method: str,
        target: str,
        state: RegionState,
        *,
        stream: bool,
    ) -> TransportResult:
        if self.credentials is None:
            raise SigningError(
                f"{target} is not public and no credentials were given"
            )
        request = RequestDescriptor.from_url(method, target)
        sign_request(request, self._region_for(state), self.credentials)
        return self._transport.send(request, stream=stream)

    def _correct_region(
        self, state: RegionState, path: str, result: TransportResult
    ) -> str:
        """Switch to the bucket's real region and return the new target.

        Raises:
            RegionDiscoveryError: If the region cannot be determined.
        """
        state.region_corrected = True
        region = result.region_hint
        if region is None:
            logger.warning(
                "Could not download from S3: %s, trying to determine "
                "bucket region using head request",
                result.error,
            )
            region = self._resolver.discover(state.bucket)

        logger.warning(
            "First download try failed with '%s', retrying", result.error
        )
        state.known_region = region
        target = f"{build_endpoint_url(state.bucket, region)}{path}"
        logger.info(
            "Retrying S3 download with new url %s in region %s", target, region
        )
        return target

    @staticmethod
    def _consume(
        result: TransportResult,
        consume: Callable[[httpx.Response], None] | None,
    ) -> TransportResult:
        if consume is None or result.response is None:
            return result
        response = result.response
        try:
            consume(response)
        except httpx.TransportError as e:
            logger.warning(
                "Transfer from %s interrupted: %s", response.request.url, e
            )
            return TransportResult(ResultKind.TRANSIENT_ERROR, error=e)
        finally:
            response.close()
        return result

    @staticmethod
    def _response_or_raise(result: TransportResult) -> httpx.Response:
        if result.ok and result.response is not None:
            return result.response
        assert result.error is not None
        raise result.error
