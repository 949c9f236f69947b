# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Tests for s3fetch/logging.py."""

import logging
import threading

from s3fetch.fetcher import S3Fetcher
from s3fetch.logging import SecretFilter, configure_logging
from s3fetch.types import Credentials
from tests.fakes import FakeTransport, make_result


def _record(msg: str, args: tuple = ()) -> logging.LogRecord:
    return logging.LogRecord(
        name="s3fetch.test",
        level=logging.INFO,
        pathname="",
        lineno=0,
        msg=msg,
        args=args,
        exc_info=None,
    )


class TestSecretFilter:
    """Tests for SecretFilter class."""

    def test_filter_returns_true(self) -> None:
        """Records are modified, never suppressed."""
        assert SecretFilter().filter(_record("message")) is True

    def test_no_secrets_no_redaction(self) -> None:
        """Without registered secrets, messages pass through unchanged."""
        record = _record("signing with wJalrXUtnFEMI")
        SecretFilter().filter(record)
        assert record.msg == "signing with wJalrXUtnFEMI"

    def test_redacts_registered_secret(self) -> None:
        """Registered secrets are redacted from messages."""
        SecretFilter.register_secret("wJalrXUtnFEMI")
        record = _record("signing with wJalrXUtnFEMI")
        SecretFilter().filter(record)
        assert record.msg == "signing with [REDACTED]"

    def test_redacts_in_args(self) -> None:
        """Secrets in string args are redacted; other args are kept."""
        SecretFilter.register_secret("token-abc")
        record = _record("token %s attempt %d", ("token-abc", 3))
        SecretFilter().filter(record)
        assert record.args == ("[REDACTED]", 3)

    def test_longest_secret_first(self) -> None:
        """A secret containing another secret is redacted whole."""
        SecretFilter.register_secret("abc")
        SecretFilter.register_secret("abcdef")
        record = _record("value abcdef")
        SecretFilter().filter(record)
        assert record.msg == "value [REDACTED]"

    def test_redacts_special_regex_chars(self) -> None:
        """Secrets are matched literally."""
        SecretFilter.register_secret("K7MDENG/bPxR+fi.*")
        record = _record("key K7MDENG/bPxR+fi.*")
        SecretFilter().filter(record)
        assert record.msg == "key [REDACTED]"

    def test_ignores_empty_and_none(self) -> None:
        """Empty values are not registered."""
        SecretFilter.register_secret("")
        SecretFilter.register_secret(None)
        assert len(SecretFilter._secrets) == 0
        assert SecretFilter._pattern is None

    def test_clear_secrets(self) -> None:
        """clear_secrets removes all registered secrets."""
        SecretFilter.register_secret("secret1")
        SecretFilter.clear_secrets()
        assert len(SecretFilter._secrets) == 0
        assert SecretFilter._pattern is None

    def test_redacts_in_mapping_args(self) -> None:
        """Secrets in a mapping argument are redacted too."""
        SecretFilter.register_secret("token-abc")
        record = _record("token %(token)s", ({"token": "token-abc"},))
        SecretFilter().filter(record)
        assert record.args == {"token": "[REDACTED]"}

    def test_concurrent_registration(self) -> None:
        """Secrets registered from many threads at once are all kept."""
        count = 16
        barrier = threading.Barrier(count + 1)
        stop = threading.Event()
        errors: list[BaseException] = []

        def register(n: int) -> None:
            barrier.wait()
            for i in range(20):
                SecretFilter.register_secret(f"secret-{n}-{i}")

        def log_while_registering() -> None:
            barrier.wait()
            while not stop.is_set():
                try:
                    SecretFilter().filter(_record("secret-0-0 %s", ("x",)))
                except BaseException as e:
                    errors.append(e)
                    return

        threads = [
            threading.Thread(target=register, args=(n,)) for n in range(count)
        ]
        reader = threading.Thread(target=log_while_registering)
        reader.start()
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        stop.set()
        reader.join()

        assert errors == []
        assert len(SecretFilter._secrets) == count * 20
        record = _record("secret-7-19 and secret-15-0")
        SecretFilter().filter(record)
        assert record.msg == "[REDACTED] and [REDACTED]"

    def test_fetcher_registers_credentials(self) -> None:
        """Creating a fetcher registers its secret key and session token."""
        creds = Credentials("AKIDEXAMPLE", "secret-key-1", "session-1")
        S3Fetcher(creds, transport=FakeTransport(lambda r: make_result(200)))

        record = _record("secret-key-1 session-1 AKIDEXAMPLE")
        SecretFilter().filter(record)
        assert record.msg == "[REDACTED] [REDACTED] AKIDEXAMPLE"


class TestConfigureLogging:
    """Tests for configure_logging function."""

    def teardown_method(self) -> None:
        """Reset logging after each test."""
        root = logging.getLogger()
        root.handlers.clear()
        root.setLevel(logging.WARNING)

    def test_sets_log_level(self) -> None:
        """The root logger level is set."""
        configure_logging(level=logging.DEBUG)
        assert logging.getLogger().level == logging.DEBUG

    def test_adds_single_stream_handler(self) -> None:
        """Calling twice leaves exactly one stream handler."""
        configure_logging()
        configure_logging()
        root = logging.getLogger()
        assert len(root.handlers) == 1
        assert isinstance(root.handlers[0], logging.StreamHandler)

    def test_custom_format(self) -> None:
        """A custom format string is applied."""
        configure_logging(format_string="%(message)s")
        formatter = logging.getLogger().handlers[0].formatter
        assert formatter is not None
        assert formatter._fmt == "%(message)s"

    def test_secret_filter_toggle(self) -> None:
        """The secret filter is added by default and can be disabled."""
        configure_logging()
        filters = logging.getLogger().handlers[0].filters
        assert any(isinstance(f, SecretFilter) for f in filters)

        configure_logging(add_secret_filter=False)
        filters = logging.getLogger().handlers[0].filters
        assert not any(isinstance(f, SecretFilter) for f in filters)
