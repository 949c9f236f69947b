# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Configuration for s3fetch.

Configuration is an explicit value passed to the transport and fetcher at
construction; nothing is read from or written to process-wide state after
that.  It can be built in code or loaded from a YAML file whose default
location follows the XDG Base Directory Specification:

    ``$XDG_CONFIG_HOME/s3fetch/s3fetch.yaml``
    (typically ``~/.config/s3fetch/s3fetch.yaml``)

``!env`` tags resolve values from environment variables::

    region: !env AWS_REGION
    timeout: 30
    block_size: 1024000
    retry:
      max_retries: 5
      delay_seconds: 5
    proxy:
      http: !env http_proxy
      https: !env https_proxy
      no_proxy: !env no_proxy
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from platformdirs import user_config_path


logger = logging.getLogger(__name__)

#: Application name for XDG path resolution.
_APP_NAME = "s3fetch"

#: Read size for streaming passes over downloaded files.
DEFAULT_BLOCK_SIZE = 1024 * 1000


def get_config_path() -> Path:
    """Return the default config file path.

    Returns:
        Path to ``$XDG_CONFIG_HOME/s3fetch/s3fetch.yaml``.
    """
    return user_config_path(_APP_NAME) / "s3fetch.yaml"


class ConfigError(Exception):
    """Base exception for configuration errors."""


# ---------------------------------------------------------------------------
# Configuration values
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ProxyConfig:
    """HTTP proxy settings for the transport.

    Attributes:
        http_proxy: Proxy URL for ``http://`` targets.
        https_proxy: Proxy URL for ``https://`` targets.
        no_proxy: Comma-separated hosts that bypass the proxy.  ``*``
            disables proxying entirely.
    """

    http_proxy: str | None = None
    https_proxy: str | None = None
    no_proxy: str | None = None

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> ProxyConfig:
        """Read the conventional proxy environment variables.

        Lower-case names take precedence over upper-case ones.

        Args:
            environ: Environment mapping. Defaults to ``os.environ``.

        Returns:
            ProxyConfig snapshot of the environment.
        """
        env = os.environ if environ is None else environ

        def _get(name: str) -> str | None:
            return env.get(name) or env.get(name.upper()) or None

        return cls(
            http_proxy=_get("http_proxy"),
            https_proxy=_get("https_proxy"),
            no_proxy=_get("no_proxy"),
        )

    @property
    def enabled(self) -> bool:
        """True if any proxy is configured."""
        return bool(self.http_proxy or self.https_proxy)

    def no_proxy_hosts(self) -> list[str]:
        """Hosts listed in ``no_proxy``, stripped, empty entries dropped."""
        if not self.no_proxy:
            return []
        return [h.strip() for h in self.no_proxy.split(",") if h.strip()]


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded retry policy for transient failures.

    Attributes:
        max_retries: Retries after the initial attempt.
        delay_seconds: Fixed delay before every retry.
    """

    max_retries: int = 5
    delay_seconds: float = 5.0

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError(f"max_retries must be >= 0: {self.max_retries}")
        if self.delay_seconds < 0:
            raise ValueError(
                f"delay_seconds must be >= 0: {self.delay_seconds}"
            )

    @property
    def max_attempts(self) -> int:
        """Total attempts including the initial one."""
        return self.max_retries + 1


@dataclass(frozen=True)
class FetchConfig:
    """Settings for fetching objects.

    Attributes:
        retry: Transient retry policy.
        block_size: Read size for downloads and integrity passes.
        timeout_seconds: Per-request HTTP timeout.
        proxy: Proxy settings for the transport.
        default_region: Region used when the caller supplies none.  When
            also unset, the region is discovered.
        user_agent: User-Agent header sent with every request.
    """

    retry: RetryPolicy = field(default_factory=RetryPolicy)
    block_size: int = DEFAULT_BLOCK_SIZE
    timeout_seconds: float = 60.0
    proxy: ProxyConfig = field(default_factory=ProxyConfig)
    default_region: str | None = None
    user_agent: str = "s3fetch"

    def __post_init__(self) -> None:
        if self.block_size < 1:
            raise ValueError(f"block_size must be >= 1: {self.block_size}")
        if self.timeout_seconds <= 0:
            raise ValueError(
                f"timeout_seconds must be > 0: {self.timeout_seconds}"
            )

    @classmethod
    def from_yaml(cls, config_path: Path | None = None) -> FetchConfig:
        """Load configuration from a YAML file.

        Args:
            config_path: Path to YAML config file.  Defaults to the XDG
                location; a missing default file yields default settings.

        Returns:
            FetchConfig instance.

        Raises:
            ConfigError: If an explicit file is missing or the file is
                malformed.
        """
        explicit = config_path is not None
        if config_path is None:
            config_path = get_config_path()

        if not config_path.exists():
            if explicit:
                raise ConfigError(f"Config file not found: {config_path}")
            logger.debug("No config at %s, using defaults", config_path)
            return cls()

        try:
            with open(config_path) as f:
                raw = yaml.load(f, Loader=_make_loader())
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {config_path}: {e}") from e

        if raw is None:
            raw = {}
        if not isinstance(raw, dict):
            raise ConfigError(
                f"Config file must be a YAML mapping: {config_path}"
            )

        config = cls._from_raw(raw)
        logger.debug("Loaded config from %s", config_path)
        return config

    @classmethod
    def _from_raw(cls, raw: dict) -> FetchConfig:
        """Build config from parsed (but unresolved) YAML dict."""
        retry_raw = _section(raw, "retry")
        proxy_raw = _section(raw, "proxy")

        try:
            return cls(
                retry=RetryPolicy(
                    max_retries=_resolve(
                        retry_raw.get("max_retries"), int, default=5
                    ),
                    delay_seconds=_resolve(
                        retry_raw.get("delay_seconds"), float, default=5.0
                    ),
                ),
                block_size=_resolve(
                    raw.get("block_size"), int, default=DEFAULT_BLOCK_SIZE
                ),
                timeout_seconds=_resolve(
                    raw.get("timeout"), float, default=60.0
                ),
                proxy=ProxyConfig(
                    http_proxy=_resolve(proxy_raw.get("http"), str),
                    https_proxy=_resolve(proxy_raw.get("https"), str),
                    no_proxy=_resolve(proxy_raw.get("no_proxy"), str),
                ),
                default_region=_resolve(raw.get("region"), str),
                user_agent=_resolve(
                    raw.get("user_agent"), str, default="s3fetch"
                ),
            )
        except ValueError as e:
            raise ConfigError(str(e)) from e


# ---------------------------------------------------------------------------
# YAML loading
# ---------------------------------------------------------------------------


class _EnvVar:
    """Placeholder for an unresolved ``!env VAR_NAME`` tag."""

    def __init__(self, var_name: str) -> None:
        self.var_name = var_name


def _env_constructor(loader: yaml.SafeLoader, node: yaml.Node) -> _EnvVar:
    """Handle ``!env VAR_NAME`` in YAML."""
    value = loader.construct_scalar(node)  # type: ignore[arg-type]
    return _EnvVar(str(value))


def _make_loader() -> type[yaml.SafeLoader]:
    """Create a YAML loader that understands ``!env``."""

    class EnvLoader(yaml.SafeLoader):
        pass

    EnvLoader.add_constructor("!env", _env_constructor)
    return EnvLoader


def _section(raw: dict, key: str) -> dict:
    value = raw.get(key)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigError(f"'{key}' must be a YAML mapping")
    return value


def _raw_resolve(value: object) -> str | None:
    """Resolve an ``_EnvVar`` to its string value, or stringify literals.

    Returns None if the value is None or the env var is unset or empty.
    """
    if isinstance(value, _EnvVar):
        return os.environ.get(value.var_name) or None
    if value is None:
        return None
    return str(value)


_MISSING = object()


def _resolve(
    value: object,
    coerce: type[Any],
    *,
    default: object = _MISSING,
) -> Any:
    """Resolve a YAML value, handling ``!env`` tags and type coercion.

    Args:
        value: Raw value from YAML (may be ``_EnvVar``, None, or a
            literal already parsed by PyYAML).
        coerce: Target type (``str``, ``int`` or ``float``).
        default: Default when value is absent.

    Returns:
        The resolved, coerced value, or None when absent without default.

    Raises:
        ConfigError: If the value cannot be coerced.
    """
    if (
        not isinstance(value, _EnvVar)
        and isinstance(value, coerce)
        and not isinstance(value, bool)
    ):
        return value

    resolved = _raw_resolve(value)
    if resolved is None:
        return None if default is _MISSING else default

    try:
        return coerce(resolved)
    except ValueError as e:
        raise ConfigError(
            f"Cannot convert {resolved!r} to {coerce.__name__}"
        ) from e
