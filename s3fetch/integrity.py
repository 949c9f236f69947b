# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Streaming integrity checks and decryption for downloaded objects.

Every pass reads its input in fixed-size blocks so memory use does not
depend on the object size.
"""

from __future__ import annotations

import hashlib
import logging
import os
import tempfile
from pathlib import Path

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from s3fetch.config import DEFAULT_BLOCK_SIZE
from s3fetch.types import IntegrityExpectation, S3FetchError


logger = logging.getLogger(__name__)

BLOCK_SIZE = DEFAULT_BLOCK_SIZE

KEY_SIZE = 32

# CBC initialization vector used when the uploader did not set one
ZERO_IV = bytes(16)

_HASHES = {
    "md5": hashlib.md5,
    "sha256": hashlib.sha256,
}


class DecryptionError(S3FetchError):
    """Raised when an encrypted object cannot be decrypted."""


class ChecksumMismatchError(S3FetchError):
    """Raised when a downloaded object does not match its checksum.

    Attributes:
        algorithm: Digest algorithm that failed.
        expected: Expected hex digest.
    """

    def __init__(self, algorithm: str, expected: str) -> None:
        self.algorithm = algorithm
        self.expected = expected
        super().__init__(
            f"Downloaded object does not match its {algorithm} checksum "
            f"{expected}"
        )


# ---------------------------------------------------------------------------
# Checksums
# ---------------------------------------------------------------------------


def file_digest(
    path: Path | str, algorithm: str = "md5", block_size: int = BLOCK_SIZE
) -> str:
    """Hex digest of a file, read in blocks.

    Args:
        path: File to hash.
        algorithm: ``md5`` or ``sha256``.
        block_size: Read size.

    Returns:
        Hex digest.

    Raises:
        ValueError: If the algorithm is not supported.
    """
    try:
        digest = _HASHES[algorithm.lower()]()
    except KeyError:
        raise ValueError(f"Unsupported digest algorithm: {algorithm}") from None

    with open(path, "rb") as f:
        while buffer := f.read(block_size):
            digest.update(buffer)
    return digest.hexdigest()


def verify_checksum(
    expected: str,
    path: Path | str,
    algorithm: str = "md5",
    block_size: int = BLOCK_SIZE,
) -> bool:
    """Check a file against an expected hex digest.

    Args:
        expected: Expected hex digest.
        path: File to check.
        algorithm: ``md5`` or ``sha256``.
        block_size: Read size.

    Returns:
        True if the digests are equal.
    """
    local = file_digest(path, algorithm, block_size)
    logger.debug("%s provided %s", algorithm, expected)
    logger.debug("%s of local object is %s", algorithm, local)
    return local == expected


def verify_md5_checksum(
    expected: str, path: Path | str, block_size: int = BLOCK_SIZE
) -> bool:
    """Check a file against the MD5 of the remote object."""
    return verify_checksum(expected, path, "md5", block_size)


def verify_sha256_checksum(
    expected: str, path: Path | str, block_size: int = BLOCK_SIZE
) -> bool:
    """Check a file against an expected SHA-256."""
    return verify_checksum(expected, path, "sha256", block_size)


def verify_expectation(
    expectation: IntegrityExpectation,
    path: Path | str,
    block_size: int = BLOCK_SIZE,
) -> str | None:
    """Check a file against every supported digest in an expectation.

    Digests for algorithms this module does not implement are skipped.

    Args:
        expectation: Digests the file must match.
        path: File to check.
        block_size: Read size.

    Returns:
        Name of the first mismatching algorithm, or None if all matched.
    """
    for algorithm, expected in expectation.as_dict().items():
        if algorithm not in _HASHES:
            logger.debug("Skipping unsupported digest %s", algorithm)
            continue
        if not verify_checksum(expected, path, algorithm, block_size):
            return algorithm
    return None


# ---------------------------------------------------------------------------
# Decryption
# ---------------------------------------------------------------------------


def normalize_key(key: str | bytes) -> bytes:
    """Turn a key or passphrase into a 256-bit AES key.

    String passphrases are stripped of surrounding whitespace.  Any key
    that is not exactly 32 bytes is reduced with SHA-256, so the same
    passphrase always yields the same key.

    Args:
        key: Raw key bytes or passphrase.

    Returns:
        32-byte key.
    """
    if isinstance(key, str):
        key = key.strip().encode("utf-8")
    if len(key) != KEY_SIZE:
        key = hashlib.sha256(key).digest()
    return key


def decrypt_file(
    key: str | bytes,
    path: Path | str,
    *,
    iv: bytes = ZERO_IV,
    block_size: int = BLOCK_SIZE,
    directory: Path | str | None = None,
) -> Path:
    """Decrypt an AES-256-CBC (PKCS#7 padded) file into a new file.

    Args:
        key: Key or passphrase (see ``normalize_key``).
        path: Encrypted source file.  Left untouched.
        iv: CBC initialization vector.
        block_size: Read size.
        directory: Where to create the output file.  Defaults to the
            system temporary directory.

    Returns:
        Path of the decrypted file.  The caller owns its cleanup.

    Raises:
        DecryptionError: If the ciphertext is not block aligned or the
            padding is invalid.
    """
    logger.debug("Decrypting S3 file %s", path)
    decryptor = Cipher(
        algorithms.AES(normalize_key(key)), modes.CBC(iv)
    ).decryptor()
    unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()

    fd, out_name = tempfile.mkstemp(prefix="s3fetch-decrypt-", dir=directory)
    out_path = Path(out_name)
    try:
        with os.fdopen(fd, "wb") as out, open(path, "rb") as src:
            while buffer := src.read(block_size):
                out.write(unpadder.update(decryptor.update(buffer)))
            out.write(unpadder.update(decryptor.finalize()))
            out.write(unpadder.finalize())
    except ValueError as e:
        out_path.unlink(missing_ok=True)
        raise DecryptionError(f"Failed to decrypt {path}: {e}") from e
    except BaseException:
        out_path.unlink(missing_ok=True)
        raise
    return out_path
