"""Config loading for pubkeyd.

Reads a YAML config file, merges it onto defaults and applies environment
overrides. Raises SystemExit on parse errors or a missing ``version`` field.
If no config file is found, returns default values (the OneLogin credentials
can come from the environment alone).

Config search order:
  1. ``config_path`` argument (``--config`` on the command line)
  2. PUBKEYD_CONFIG environment variable
  3. ``.pubkeyd/config.yaml`` (working directory)
  4. ``~/.pubkeyd/config.yaml``
  5. ``/etc/pubkeyd/config.yaml``

Environment variable overrides (take precedence over the file):
  SHARD, CLIENT_ID, CLIENT_SECRET  — OneLogin shard and API credentials
  PUBKEYD_HOST, PUBKEYD_PORT       — HTTP binding
  PUBKEYD_REFRESH_INTERVAL         — seconds between directory refreshes

Example::

    version: 1
    onelogin:
      shard: eu
      client_id: 0123abcd
      client_secret: s3cr3t
      alias_attribute: githubname
    refresh:
      interval_s: 900
    cache:
      ttl_s: 120
    server:
      port: 2020
"""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field
from typing import Any, NoReturn, Optional

import yaml

from pubkeyd.constants import (
    DEFAULT_ALIAS_ATTRIBUTE,
    DEFAULT_DIRECTORY_TIMEOUT_S,
    DEFAULT_GITHUB_BASE_URL,
    DEFAULT_HOST,
    DEFAULT_KEY_CACHE_SWEEP_INTERVAL_S,
    DEFAULT_KEY_CACHE_TTL_S,
    DEFAULT_KEY_FETCH_TIMEOUT_S,
    DEFAULT_ONELOGIN_SHARD,
    DEFAULT_PORT,
    DEFAULT_REFRESH_INTERVAL_S,
)
from pubkeyd.utils.logger import get_logger

logger = get_logger(__name__)

SUPPORTED_CONFIG_VERSION = 1

DEFAULT_CONFIG_PATHS = [
    ".pubkeyd/config.yaml",
    os.path.expanduser("~/.pubkeyd/config.yaml"),
    "/etc/pubkeyd/config.yaml",
]


# ─── Dataclasses ─────────────────────────────────────────────────────────────


@dataclass
class OneLoginConfig:
    """OneLogin directory provider settings.

    client_id / client_secret are required before the provider is built
    (see ``require_credentials``), not at load time.
    """

    shard: str = DEFAULT_ONELOGIN_SHARD
    client_id: str = ""
    client_secret: str = ""
    alias_attribute: str = DEFAULT_ALIAS_ATTRIBUTE
    timeout_s: float = DEFAULT_DIRECTORY_TIMEOUT_S
    base_url: Optional[str] = None


@dataclass
class GitHubConfig:
    base_url: str = DEFAULT_GITHUB_BASE_URL
    timeout_s: float = DEFAULT_KEY_FETCH_TIMEOUT_S


@dataclass
class RefreshConfig:
    interval_s: float = DEFAULT_REFRESH_INTERVAL_S


@dataclass
class CacheConfig:
    ttl_s: float = DEFAULT_KEY_CACHE_TTL_S
    sweep_interval_s: float = DEFAULT_KEY_CACHE_SWEEP_INTERVAL_S


@dataclass
class ServerConfig:
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT


@dataclass
class Config:
    """Root configuration object. Every field has a default."""

    version: int = SUPPORTED_CONFIG_VERSION
    onelogin: OneLoginConfig = field(default_factory=OneLoginConfig)
    github: GitHubConfig = field(default_factory=GitHubConfig)
    refresh: RefreshConfig = field(default_factory=RefreshConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    path: Optional[str] = None

    @classmethod
    def defaults(cls) -> "Config":
        return cls()

    @classmethod
    def from_dict(cls, raw: dict, path: Optional[str] = None) -> "Config":
        """Construct Config from a parsed YAML dict.

        Unknown keys are ignored; missing keys take their defaults.

        Raises:
            SystemExit(1): On a non-positive interval, TTL or timeout, or a
                           non-numeric value where a number is expected.
        """
        onelogin_raw = _section(raw, "onelogin")
        onelogin = OneLoginConfig(
            shard=str(onelogin_raw.get("shard", DEFAULT_ONELOGIN_SHARD)),
            client_id=str(onelogin_raw.get("client_id", "") or ""),
            client_secret=str(onelogin_raw.get("client_secret", "") or ""),
            alias_attribute=str(onelogin_raw.get("alias_attribute", DEFAULT_ALIAS_ATTRIBUTE)),
            timeout_s=_positive(onelogin_raw, "timeout_s", DEFAULT_DIRECTORY_TIMEOUT_S, "onelogin"),
            base_url=onelogin_raw.get("base_url"),
        )

        github_raw = _section(raw, "github")
        github = GitHubConfig(
            base_url=str(github_raw.get("base_url", DEFAULT_GITHUB_BASE_URL)),
            timeout_s=_positive(github_raw, "timeout_s", DEFAULT_KEY_FETCH_TIMEOUT_S, "github"),
        )

        refresh_raw = _section(raw, "refresh")
        refresh = RefreshConfig(
            interval_s=_positive(refresh_raw, "interval_s", DEFAULT_REFRESH_INTERVAL_S, "refresh"),
        )

        cache_raw = _section(raw, "cache")
        cache = CacheConfig(
            ttl_s=_positive(cache_raw, "ttl_s", DEFAULT_KEY_CACHE_TTL_S, "cache"),
            sweep_interval_s=_positive(
                cache_raw, "sweep_interval_s", DEFAULT_KEY_CACHE_SWEEP_INTERVAL_S, "cache"
            ),
        )

        server_raw = _section(raw, "server")
        server = ServerConfig(
            host=str(server_raw.get("host", DEFAULT_HOST)),
            port=int(_positive(server_raw, "port", DEFAULT_PORT, "server")),
        )

        return cls(
            version=raw.get("version", SUPPORTED_CONFIG_VERSION),
            onelogin=onelogin,
            github=github,
            refresh=refresh,
            cache=cache,
            server=server,
            path=path,
        )

    def require_credentials(self) -> None:
        """Exit unless OneLogin credentials are configured.

        Raises:
            SystemExit(1): client_id or client_secret is empty.
        """
        if not self.onelogin.client_id or not self.onelogin.client_secret:
            _fail(
                "CONFIG ERROR: OneLogin client_id and client_secret are required.\n"
                "Set onelogin.client_id / onelogin.client_secret in the config file "
                "or the CLIENT_ID / CLIENT_SECRET environment variables."
            )


def _fail(msg: str) -> NoReturn:
    print(msg, file=sys.stderr)
    raise SystemExit(1)


def _section(raw: dict, name: str) -> dict:
    value = raw.get(name) or {}
    if not isinstance(value, dict):
        _fail(f"CONFIG ERROR: '{name}' must be a mapping, got {type(value).__name__}.")
    return value


def _positive(raw: dict, key: str, default: float, section: str) -> float:
    value: Any = raw.get(key, default)
    try:
        number = float(value)
    except (TypeError, ValueError):
        _fail(f"CONFIG ERROR: {section}.{key} must be a number, got {value!r}.")
    if number <= 0:
        _fail(f"CONFIG ERROR: {section}.{key} must be positive, got {value!r}.")
    return number


# ─── Config loading ───────────────────────────────────────────────────────────


def load_config(config_path: Optional[str] = None) -> Config:
    """Load and validate pubkeyd configuration.

    If no file is found on the search path, returns default Config (not an
    error). If a file is found but invalid, writes the error to stderr and
    raises SystemExit(1). Environment overrides are applied in both cases.

    Raises:
        SystemExit(1): On YAML parse error, missing or unsupported ``version``,
                       invalid values, or an invalid numeric env override.
    """
    search_paths: list[str] = []
    if config_path:
        search_paths.append(config_path)
    env_config = os.environ.get("PUBKEYD_CONFIG")
    if env_config:
        search_paths.append(env_config)
    search_paths.extend(DEFAULT_CONFIG_PATHS)

    found_path: Optional[str] = None
    for candidate in search_paths:
        expanded = os.path.expanduser(candidate)
        if os.path.isfile(expanded):
            found_path = expanded
            break

    if found_path is None:
        logger.info("No config file found — using defaults", searched=search_paths)
        config = Config.defaults()
        _apply_env_overrides(config)
        _warn_on_public_bind(config)
        return config

    logger.info("Loading config", path=found_path)

    try:
        with open(found_path) as fh:
            raw = yaml.safe_load(fh)
    except yaml.YAMLError as exc:
        _fail(
            f"CONFIG ERROR: Failed to parse {found_path}: {exc}\n"
            "pubkeyd refuses to start with an invalid config."
        )
    except OSError as exc:
        _fail(f"CONFIG ERROR: Could not read {found_path}: {exc}")

    if not isinstance(raw, dict):
        if raw is None:
            _fail(
                f"CONFIG ERROR: {found_path} is missing the required 'version' field.\n"
                "Add 'version: 1' to the top of your config file."
            )
        _fail(
            f"CONFIG ERROR: {found_path} is not a valid YAML mapping.\n"
            "The config file must be a YAML dictionary at the top level."
        )

    version = raw.get("version")
    if version is None:
        _fail(
            f"CONFIG ERROR: {found_path} is missing the required 'version' field.\n"
            "Add 'version: 1' to the top of your config file."
        )
    # bool is an int subclass and True == 1, so it is rejected by type first
    if (
        isinstance(version, bool)
        or not isinstance(version, int)
        or version != SUPPORTED_CONFIG_VERSION
    ):
        _fail(
            f"CONFIG ERROR: Unsupported config version: {version!r}. "
            f"Supported version: {SUPPORTED_CONFIG_VERSION}."
        )

    config = Config.from_dict(raw, path=found_path)
    _apply_env_overrides(config)
    _warn_on_public_bind(config)

    logger.info(
        "Config loaded",
        path=found_path,
        version=config.version,
        shard=config.onelogin.shard,
        refresh_interval_s=config.refresh.interval_s,
        cache_ttl_s=config.cache.ttl_s,
    )
    return config


def _apply_env_overrides(config: Config) -> None:
    """Apply environment variable overrides to ``config`` in place.

    Raises:
        SystemExit(1): PUBKEYD_PORT or PUBKEYD_REFRESH_INTERVAL is not a valid number.
    """
    for env_name, attr in (
        ("SHARD", "shard"),
        ("CLIENT_ID", "client_id"),
        ("CLIENT_SECRET", "client_secret"),
    ):
        value = os.environ.get(env_name)
        if value:
            setattr(config.onelogin, attr, value)

    env_host = os.environ.get("PUBKEYD_HOST")
    if env_host:
        config.server.host = env_host

    env_port = os.environ.get("PUBKEYD_PORT")
    if env_port is not None:
        try:
            config.server.port = int(env_port)
        except ValueError:
            _fail(
                f"CONFIG ERROR: PUBKEYD_PORT environment variable is not a valid "
                f"integer: '{env_port}'"
            )

    env_interval = os.environ.get("PUBKEYD_REFRESH_INTERVAL")
    if env_interval is not None:
        config.refresh.interval_s = _positive(
            {"interval_s": env_interval}, "interval_s", DEFAULT_REFRESH_INTERVAL_S,
            "PUBKEYD_REFRESH_INTERVAL",
        )


def _warn_on_public_bind(config: Config) -> None:
    if config.server.host == "0.0.0.0":
        logger.warning(
            "SECURITY WARNING: pubkeyd is configured to bind on 0.0.0.0 (all interfaces). "
            "Key lookups and /refresh are unauthenticated; put an authenticating gate in front "
            "or bind to 127.0.0.1."
        )
