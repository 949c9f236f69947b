# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Shared pytest fixtures used across the test modules."""

from collections.abc import Iterator

import pytest

from s3fetch.logging import SecretFilter
from s3fetch.types import Credentials
from tests.vectors import ACCESS_KEY_ID, SECRET_ACCESS_KEY


@pytest.fixture
def credentials() -> Credentials:
    """Documentation example credentials."""
    return Credentials(
        access_key_id=ACCESS_KEY_ID, secret_access_key=SECRET_ACCESS_KEY
    )


@pytest.fixture(autouse=True)
def _clear_secret_filter() -> Iterator[None]:
    """Keep registered secrets from leaking between tests."""
    SecretFilter.clear_secrets()
    yield
    SecretFilter.clear_secrets()
