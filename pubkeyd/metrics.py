"""Prometheus collectors for pubkeyd.

Collectors are registered once on the default registry at import time and
exposed by ``GET /metrics`` (pubkeyd/api.py).
"""

from __future__ import annotations

from prometheus_client import Counter, Gauge

KNOWN_USERS = Gauge(
    "pubkeyd_known_users",
    "Number of identities with a GitHub alias in the current snapshot.",
)

KNOWN_ROLES = Gauge(
    "pubkeyd_known_roles",
    "Number of roles in the current snapshot.",
)

DIRECTORY_REFRESHES = Counter(
    "pubkeyd_directory_refreshes_total",
    "Number of OneLogin directory refresh cycles, partitioned by outcome.",
    ["outcome"],
)

AUTHORIZED_KEYS_REQUESTS = Counter(
    "pubkeyd_authorized_keys_requests_total",
    "Number of authorized_keys requests, partitioned by status code and HTTP method.",
    ["code", "method"],
)

ROLE_AUTHORIZED_KEYS_REQUESTS = Counter(
    "pubkeyd_role_authorized_keys_requests_total",
    "Number of role_authorized_keys requests, partitioned by status code and HTTP method.",
    ["code", "method"],
)

GITHUB_NAME_REQUESTS = Counter(
    "pubkeyd_github_name_requests_total",
    "Number of github_name requests, partitioned by status code and HTTP method.",
    ["code", "method"],
)

KEY_FETCHES = Counter(
    "pubkeyd_key_fetches_total",
    "Number of GitHub key fetches issued by the key cache, partitioned by outcome.",
    ["outcome"],
)
