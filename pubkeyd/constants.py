"""Shared constants for pubkeyd.

Every default interval, TTL and timeout lives here so config.py, the core
components and the tests agree on the same numbers.
"""

# ─── Directory refresh ────────────────────────────────────────────────────────

# Seconds between scheduled OneLogin refreshes.
DEFAULT_REFRESH_INTERVAL_S: float = 900.0

# Upper bound on one full directory fetch (token + all user and role pages).
DEFAULT_DIRECTORY_TIMEOUT_S: float = 30.0

# OneLogin shard used when none is configured.
DEFAULT_ONELOGIN_SHARD: str = "us"

# Custom user attribute holding the GitHub username.
DEFAULT_ALIAS_ATTRIBUTE: str = "githubname"

# OneLogin user status meaning "active".
ONELOGIN_ACTIVE_STATUS: int = 1

# ─── Key cache ────────────────────────────────────────────────────────────────

# Lifetime of one alias's cached authorized_keys text.
DEFAULT_KEY_CACHE_TTL_S: float = 120.0

# Interval of the background sweep that drops expired entries.
DEFAULT_KEY_CACHE_SWEEP_INTERVAL_S: float = 600.0

# Upper bound on one GitHub keys fetch.
DEFAULT_KEY_FETCH_TIMEOUT_S: float = 10.0

DEFAULT_GITHUB_BASE_URL: str = "https://github.com"

# ─── HTTP server ──────────────────────────────────────────────────────────────

DEFAULT_HOST: str = "127.0.0.1"
DEFAULT_PORT: int = 2020

# Longest identity or role name accepted at the boundary.
MAX_NAME_LENGTH: int = 256
