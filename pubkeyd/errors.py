"""Error kinds surfaced by the resolution core.

HTTP mapping (rendered as text/plain by the handlers in pubkeyd/main.py):
  NotFoundError            → 404  identity or role unknown in the snapshot
  UpstreamUnavailableError → 503  OneLogin or GitHub failed or timed out
  InvalidInputError        → 400  malformed identity, role or alias
  ServiceStartingError     → 503  request arrived before the first snapshot loaded
"""

from __future__ import annotations


class PubkeydError(Exception):
    """Base class for every error the core raises on purpose."""

    status_code: int = 500
    public_message: str = "500 internal error"

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.public_message)
        self.message = message or self.public_message


class NotFoundError(PubkeydError):
    """The identity or role is not in the current directory snapshot.

    User-facing and expected; logged at info, never as an error.
    """

    status_code = 404
    public_message = "404 not found"


class UpstreamUnavailableError(PubkeydError):
    """A directory or key fetch failed or timed out.

    Never retried inline: the next refresh or the next cache miss is the retry.
    """

    status_code = 503
    public_message = "503 upstream unavailable"


class InvalidInputError(PubkeydError):
    """A name failed validation before any lookup was attempted."""

    status_code = 400
    public_message = "400 invalid name"


class ServiceStartingError(PubkeydError):
    """A key route was hit before the first directory snapshot was loaded."""

    status_code = 503
    public_message = "503 starting"
