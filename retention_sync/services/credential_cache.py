"""
Bearer token cache shared by every API call of a sync run.

The lock guards reads and writes of the cached token only; it is never held
across the authentication call. Two workers that both see an expired token
may both authenticate; the last one to finish wins, and both tokens are
valid for the server.
"""

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 1200
REFRESH_MARGIN_SECONDS = 30


@dataclass(frozen=True)
class CachedToken:
    access_token: str
    expires_at: float


class CredentialCache:
    """
    Caches the bearer token returned by `authenticate`.

    `authenticate` must return an object with `access_token` and `expires_in`
    attributes (expires_in may be 0 or None, in which case the default TTL
    is used). Errors from `authenticate` propagate unchanged.
    """

    def __init__(
        self,
        authenticate: Callable,
        default_ttl: int = DEFAULT_TTL_SECONDS,
        refresh_margin: int = REFRESH_MARGIN_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._authenticate = authenticate
        self._default_ttl = default_ttl
        self._refresh_margin = refresh_margin
        self._clock = clock
        self._lock = threading.Lock()
        self._token: CachedToken | None = None

    def _is_valid(self, token: CachedToken | None, now: float) -> bool:
        return token is not None and now < token.expires_at - self._refresh_margin

    def acquire(self) -> str:
        """Return a token valid for at least the refresh margin, authenticating if needed."""
        with self._lock:
            token = self._token
            if self._is_valid(token, self._clock()):
                return token.access_token

        logger.info("Refreshing access token", extra={"event": "token_refresh"})
        response = self._authenticate()

        expires_in = getattr(response, "expires_in", None) or self._default_ttl
        fresh = CachedToken(
            access_token=response.access_token,
            expires_at=self._clock() + expires_in,
        )

        with self._lock:
            self._token = fresh

        logger.debug(
            f"Access token refreshed, valid for {expires_in}s",
            extra={"event": "token_refreshed"},
        )
        return fresh.access_token

    def invalidate(self) -> None:
        """Drop the cached token so the next acquire() authenticates."""
        with self._lock:
            self._token = None

    @property
    def cached_token(self) -> CachedToken | None:
        with self._lock:
            return self._token
