# retention_sync/services/marketing_cloud/transport.py
"""
HTTP transport for the Marketing Cloud API.

Classifies responses and owns the retry policy:
- Network errors and 5xx responses raise TransientAPIError and are retried
  with exponential backoff (0.1s doubling, capped at 30s, bounded in
  attempts and total elapsed time)
- 4xx responses raise PermanentAPIError straight away
- Bodies that are not valid JSON raise PermanentAPIError
"""

import logging
from typing import Any

import httpx

from retention_sync.logging_config import log_http_call
from retention_sync.services.errors import PermanentAPIError, TransientAPIError
from retention_sync.services.resilience import with_sync_retry

logger = logging.getLogger(__name__)

# Response bodies are truncated to this length in error messages
MAX_ERROR_BODY_LENGTH = 500


class HttpTransport:
    """Thin wrapper over httpx.Client that turns responses into typed errors."""

    DEFAULT_TIMEOUT = 30.0

    def __init__(
        self,
        client: httpx.Client | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        max_attempts: int = 5,
        min_wait: float = 0.1,
        max_wait: float = 30.0,
        max_elapsed: float | None = 300.0,
        sleep=None,
    ):
        """
        Args:
            client: Pre-built httpx client (tests pass one with a MockTransport)
            timeout: Per-request timeout when building the default client
            max_attempts: Attempts per request for transient failures
            min_wait: First backoff delay in seconds
            max_wait: Backoff cap in seconds
            max_elapsed: Retry budget per request in seconds
            sleep: Sleep function for backoff, swapped out in tests
        """
        self.client = client or httpx.Client(
            timeout=timeout,
            headers={"Accept": "application/json"},
        )

        retry_kwargs: dict[str, Any] = {
            "max_attempts": max_attempts,
            "min_wait": min_wait,
            "max_wait": max_wait,
            "max_elapsed": max_elapsed,
            "retry_exceptions": (TransientAPIError,),
        }
        if sleep is not None:
            retry_kwargs["sleep"] = sleep
        self._send_with_retry = with_sync_retry(**retry_kwargs)(self._send_once)

    def close(self) -> None:
        self.client.close()

    def request(
        self,
        method: str,
        url: str,
        *,
        params: dict | None = None,
        json: Any = None,
        data: Any = None,
        headers: dict | None = None,
    ) -> httpx.Response:
        """Send a request and return the response. Raises on any non-2xx outcome."""
        return self._send_with_retry(method, url, params=params, json=json, data=data, headers=headers)

    def request_json(self, method: str, url: str, **kwargs: Any) -> Any:
        """Send a request and decode the JSON body (None for empty bodies)."""
        response = self.request(method, url, **kwargs)
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise PermanentAPIError(
                f"{method} {url} returned invalid JSON: {e}",
                status_code=response.status_code,
                response_body=response.text[:MAX_ERROR_BODY_LENGTH],
            ) from e

    def _send_once(
        self,
        method: str,
        url: str,
        *,
        params: dict | None = None,
        json: Any = None,
        data: Any = None,
        headers: dict | None = None,
    ) -> httpx.Response:
        with log_http_call(method, url) as metrics:
            try:
                response = self.client.request(method, url, params=params, json=json, data=data, headers=headers)
            except httpx.TransportError as e:
                raise TransientAPIError(f"{method} {url} failed: {e}") from e

            metrics["status_code"] = response.status_code

            if response.status_code >= 500:
                raise TransientAPIError(
                    f"{method} {url} failed with status {response.status_code}",
                    status_code=response.status_code,
                    response_body=response.text[:MAX_ERROR_BODY_LENGTH],
                )
            if response.status_code >= 400:
                raise PermanentAPIError(
                    f"{method} {url} failed with status {response.status_code}: "
                    f"{response.text[:MAX_ERROR_BODY_LENGTH]}",
                    status_code=response.status_code,
                    response_body=response.text[:MAX_ERROR_BODY_LENGTH],
                )
            return response
