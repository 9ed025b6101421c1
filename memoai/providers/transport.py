"""
Shared HTTP transport used by every provider.

Sends JSON requests and retries transient failures (network errors, 5xx,
429) with exponential backoff. Client errors other than 429 are returned
immediately. Providers receive the raw response body and decode it
themselves.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Optional

import httpx

from ..context import Context
from ..errors import (
    APIError,
    ContextTooLongError,
    InvalidAPIKeyError,
    LLMError,
    ModelNotFoundError,
    ProviderUnavailableError,
    RateLimitedError,
)
from ..types import DEFAULT_MAX_RETRIES, DEFAULT_TIMEOUT, ProviderConfig

logger = logging.getLogger(__name__)

# Backoff before attempt n (n >= 1) is RETRY_BACKOFF_BASE * 2^(n-1) seconds
RETRY_BACKOFF_BASE = 1.0

_CONTEXT_LENGTH_MARKERS = (
    "context length",
    "context_length",
    "maximum context",
    "prompt is too long",
    "too many tokens",
)


def _extract_error_message(body: bytes) -> str:
    """Pull a human-readable message out of an error body.

    Handles {"error": {"message": ...}}, {"error": "..."} (Ollama) and
    {"message": ...}; falls back to the raw body text.
    """
    text = body.decode("utf-8", errors="replace")
    try:
        data = json.loads(text)
    except ValueError:
        return text
    if not isinstance(data, dict):
        return text

    err = data.get("error")
    message = ""
    if isinstance(err, dict):
        message = err.get("message") or ""
    elif isinstance(err, str):
        message = err
    if not message:
        message = data.get("message") or ""
    return str(message) if message else text


def map_http_error(status_code: int, body: bytes) -> LLMError:
    """Convert an HTTP error status into the matching LLMError."""
    if status_code == 401:
        return InvalidAPIKeyError()
    if status_code == 429:
        return RateLimitedError()
    if status_code in (502, 503, 504):
        return ProviderUnavailableError()

    message = _extract_error_message(body)
    lowered = message.lower()
    if status_code == 404 and "model" in lowered:
        return ModelNotFoundError(message)
    if status_code in (400, 413) and any(m in lowered for m in _CONTEXT_LENGTH_MARKERS):
        return ContextTooLongError(message)
    return APIError(status_code, message)


def _is_terminal(status_code: int) -> bool:
    """Client errors are not retried, except rate limiting."""
    return status_code < 500 and status_code != 429


class HTTPTransport:
    """
    Executes provider HTTP requests with retries.

    One instance is owned by each provider. Pass `client` to share a
    connection pool or to inject a mock transport in tests.
    """

    def __init__(
        self,
        config: ProviderConfig,
        client: Optional[httpx.Client] = None,
        *,
        backoff_base: float = RETRY_BACKOFF_BASE,
    ):
        self.timeout = float(config.timeout or DEFAULT_TIMEOUT)
        self.max_retries = config.max_retries or DEFAULT_MAX_RETRIES
        self.backoff_base = backoff_base
        self._owns_client = client is None
        self._client = client if client is not None else httpx.Client(timeout=self.timeout)

    def _attempt_timeout(self, ctx: Context) -> float:
        remaining = ctx.remaining()
        if remaining is None:
            return self.timeout
        return min(self.timeout, remaining)

    def request(
        self,
        ctx: Context,
        method: str,
        url: str,
        body: Any = None,
        headers: Optional[dict[str, str]] = None,
    ) -> bytes:
        """
        Send a request and return the raw response body.

        Makes up to 1 + max_retries attempts. Backoff waits are cut short
        by cancellation of `ctx`.

        Raises:
            LLMError: The mapped error of the last failed attempt, or
                CancelledError/DeadlineExceededError if `ctx` ended first
        """
        content = None
        if body is not None:
            try:
                content = json.dumps(body).encode("utf-8")
            except (TypeError, ValueError) as e:
                raise LLMError(f"failed to marshal request body: {e}") from e

        request_headers = {"Content-Type": "application/json"}
        if headers:
            request_headers.update(headers)

        attempts = self.max_retries + 1
        last_error: Optional[LLMError] = None
        for attempt in range(attempts):
            if attempt > 0:
                delay = self.backoff_base * (2 ** (attempt - 1))
                logger.info(
                    "%s %s attempt %d failed, retrying in %.1fs: %s",
                    method, url, attempt, delay, last_error,
                )
                ctx.sleep(delay)
            ctx.check()

            try:
                response = self._client.request(
                    method,
                    url,
                    content=content,
                    headers=request_headers,
                    timeout=self._attempt_timeout(ctx),
                )
            except httpx.TimeoutException as e:
                ctx.check()
                last_error = ProviderUnavailableError(f"request timed out: {e}")
                continue
            except httpx.TransportError as e:
                last_error = ProviderUnavailableError(f"request failed: {e}")
                continue

            if response.is_success:
                return response.content

            last_error = map_http_error(response.status_code, response.content)
            if _is_terminal(response.status_code):
                logger.debug("%s %s failed with status %d, not retrying",
                             method, url, response.status_code)
                raise last_error

        logger.warning("%s %s failed after %d attempts: %s", method, url, attempts, last_error)
        raise last_error

    def close(self) -> None:
        """Close the HTTP client if this transport created it."""
        if self._owns_client:
            self._client.close()
