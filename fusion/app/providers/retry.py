"""Retry mechanism with exponential backoff for provider calls.

``RetryPolicy`` decides which failures are transient and how long to wait;
``BackoffClient`` POSTs JSON and applies the policy around every attempt.
"""

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Mapping, Optional

import httpx

from fusion.app.core.logging import get_logger

logger = get_logger(__name__)

RETRIES_EXHAUSTED_MESSAGE = "API request failed after multiple retries."

SleepFunc = Callable[[float], Awaitable[None]]


class RequestError(Exception):
    """An outbound call failed for good.

    Attributes:
        message: Upstream error message, or the retry-exhaustion message
        status_code: Last upstream HTTP status, if a response was received
        attempts: Number of attempts performed
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        attempts: int = 1,
    ):
        self.message = message
        self.status_code = status_code
        self.attempts = attempts
        super().__init__(message)


@dataclass
class RetryPolicy:
    """Configuration for retry behavior with exponential backoff.

    Attributes:
        max_retries: Total number of attempts per call (default: 5)
        base_delay: Delay after the first failed attempt in seconds (default: 1.0)
        max_delay: Upper bound for a single delay in seconds (default: 60.0)
        exponential_base: Growth factor between consecutive delays (default: 2.0)

    Example:
        >>> policy = RetryPolicy()
        >>> [policy.calculate_delay(n) for n in range(5)]
        [1.0, 2.0, 4.0, 8.0, 16.0]
    """

    max_retries: int = 5
    base_delay: float = 1.0
    max_delay: float = 60.0
    exponential_base: float = 2.0

    def calculate_delay(self, attempt: int) -> float:
        """Delay to wait after the given failed attempt (0-indexed).

        delay = min(base_delay * (exponential_base ^ attempt), max_delay)
        """
        delay = self.base_delay * (self.exponential_base**attempt)
        return min(delay, self.max_delay)

    def is_retryable_status(self, status_code: int) -> bool:
        """429 and every 5xx are transient; any other non-2xx is final."""
        return status_code == 429 or status_code >= 500

    def is_retryable(self, exception: Exception) -> bool:
        """Network-level failures (connect, read, timeouts) are transient."""
        return isinstance(exception, httpx.TransportError)


def _upstream_error_message(response: httpx.Response) -> str:
    """Pull ``error.message`` out of an error body, falling back to the status."""
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
    return f"HTTP error! status: {response.status_code}"


class BackoffClient:
    """POST JSON to an endpoint, retrying transient failures with backoff.

    Upstream failures surface as ``RequestError``: a non-retryable status
    fails on the spot with the upstream message, and running out of
    attempts fails with ``RETRIES_EXHAUSTED_MESSAGE``.

    Every retryable failure waits before moving on, the last one included,
    so five failed attempts wait 1, 2, 4, 8 and 16 seconds (31s worst case)
    before the exhaustion error is raised.

    Args:
        http_client: Optional shared client for connection pooling. Without
            one, a short-lived client is created per call.
        policy: Retry policy; defaults to five attempts starting at 1s.
        sleep: Awaitable used after each retryable failure. Tests pass a recorder.
    """

    def __init__(
        self,
        http_client: Optional[httpx.AsyncClient] = None,
        policy: Optional[RetryPolicy] = None,
        sleep: SleepFunc = asyncio.sleep,
        timeout: float = 60.0,
    ):
        self._http_client = http_client
        self.policy = policy or RetryPolicy()
        self._sleep = sleep
        self.timeout = timeout

    @asynccontextmanager
    async def _client_context(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._http_client is not None:
            yield self._http_client
            return
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            yield client

    async def call(
        self,
        url: str,
        payload: Mapping[str, Any],
        max_retries: Optional[int] = None,
        params: Optional[Mapping[str, str]] = None,
    ) -> Dict[str, Any]:
        """Send ``payload`` and return the decoded JSON body.

        Args:
            url: Endpoint URL
            payload: JSON-serializable request body
            max_retries: Total attempts; defaults to ``policy.max_retries``
            params: Query-string parameters (e.g. the provider key)

        Raises:
            RequestError: On a non-retryable status, a non-JSON success body,
                or after every attempt failed transiently.
        """
        attempts = max_retries if max_retries is not None else self.policy.max_retries
        last_status: Optional[int] = None
        last_exception: Optional[Exception] = None

        async with self._client_context() as client:
            for attempt in range(attempts):
                try:
                    response = await client.post(url, json=payload, params=params)
                except Exception as e:
                    if not self.policy.is_retryable(e):
                        raise
                    last_exception = e
                    reason = f"{type(e).__name__}: {e}"
                else:
                    if response.is_success:
                        return self._decode(response, attempt + 1)

                    last_status = response.status_code
                    if not self.policy.is_retryable_status(response.status_code):
                        message = _upstream_error_message(response)
                        logger.debug(
                            f"Non-retryable status {response.status_code}: {message}"
                        )
                        raise RequestError(
                            message, status_code=response.status_code, attempts=attempt + 1
                        )
                    reason = f"status {response.status_code}"

                delay = self.policy.calculate_delay(attempt)
                logger.warning(
                    f"API call failed with {reason}. Backing off {delay:.2f}s "
                    f"(attempt {attempt + 1}/{attempts})..."
                )
                await self._sleep(delay)

        logger.warning(f"Max retries ({attempts}) exceeded for {url}")
        raise RequestError(
            RETRIES_EXHAUSTED_MESSAGE, status_code=last_status, attempts=attempts
        ) from last_exception

    @staticmethod
    def _decode(response: httpx.Response, attempts: int) -> Dict[str, Any]:
        try:
            data = response.json()
        except ValueError as e:
            raise RequestError(
                "Upstream returned a non-JSON response",
                status_code=response.status_code,
                attempts=attempts,
            ) from e
        if not isinstance(data, dict):
            raise RequestError(
                "Upstream returned an unexpected JSON document",
                status_code=response.status_code,
                attempts=attempts,
            )
        return data
