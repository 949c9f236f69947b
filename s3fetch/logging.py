# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Logging setup and credential redaction.

Library modules log through ``logging.getLogger(__name__)`` and never
install handlers.  An application embedding s3fetch can call
``configure_logging`` once at startup:

    from s3fetch.logging import configure_logging
    configure_logging(level=logging.DEBUG)
"""

import logging
import re
import threading
from typing import Any, ClassVar


REDACTED = "[REDACTED]"

DEFAULT_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


class SecretFilter(logging.Filter):
    """Replaces registered credentials in log records with ``[REDACTED]``.

    The registry is shared by all instances.  ``S3Fetcher`` adds the
    secret access key and session token it is constructed with, which may
    happen from several threads at once: updates are serialized and swap
    in a new immutable snapshot, so ``filter`` never sees a half-built
    registry.
    """

    _lock: ClassVar[threading.Lock] = threading.Lock()
    # Longest first, so a secret that contains another is replaced whole
    _secrets: ClassVar[tuple[str, ...]] = ()
    _pattern: ClassVar[re.Pattern[str] | None] = None

    def filter(self, record: logging.LogRecord) -> bool:
        pattern = SecretFilter._pattern
        if pattern is None:
            return True
        record.msg = pattern.sub(REDACTED, str(record.msg))
        if isinstance(record.args, tuple):
            record.args = tuple(_redact(pattern, arg) for arg in record.args)
        elif isinstance(record.args, dict):
            record.args = {
                key: _redact(pattern, value)
                for key, value in record.args.items()
            }
        return True

    @classmethod
    def register_secret(cls, secret: str | None) -> None:
        """Start redacting ``secret``.  Empty values are ignored."""
        if not secret:
            return
        with cls._lock:
            if secret in cls._secrets:
                return
            secrets = tuple(
                sorted((*cls._secrets, secret), key=len, reverse=True)
            )
            cls._pattern = re.compile("|".join(map(re.escape, secrets)))
            cls._secrets = secrets

    @classmethod
    def clear_secrets(cls) -> None:
        """Forget every registered secret (used by tests)."""
        with cls._lock:
            cls._secrets = ()
            cls._pattern = None


def _redact(pattern: re.Pattern[str], value: Any) -> Any:
    if isinstance(value, str):
        return pattern.sub(REDACTED, value)
    return value


def configure_logging(
    level: int = logging.INFO,
    format_string: str | None = None,
    add_secret_filter: bool = True,
) -> None:
    """Replace the root logger's handlers with a single stderr handler.

    Args:
        level: Root logger level.
        format_string: Record format.  Defaults to ``DEFAULT_FORMAT``.
        add_secret_filter: Attach a ``SecretFilter`` to the handler.
    """
    handler = logging.StreamHandler()
    if add_secret_filter:
        handler.addFilter(SecretFilter())
    logging.basicConfig(
        level=level,
        format=format_string or DEFAULT_FORMAT,
        handlers=[handler],
        force=True,
    )
