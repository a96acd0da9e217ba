"""Custom exceptions for the fusion application.

Every exception that reaches the HTTP layer derives from ``FusionError`` and
is rendered as ``{"error": exc.public_message}`` with ``exc.status_code``.
``message`` holds the detail that is only ever logged.
"""


class FusionError(Exception):
    """Base class for application exceptions with an HTTP status code."""

    status_code: int = 500
    default_public_message: str = "Internal server error"

    def __init__(self, message: str = "Fusion error", public_message: str | None = None):
        self.message = message
        self.public_message = public_message or self.default_public_message
        super().__init__(message)


class ValidationError(FusionError):
    """Malformed, oversized or missing input.

    The message is user-correctable, so it is also the public message.
    Maps to HTTP 400 Bad Request.
    """

    status_code = 400

    def __init__(self, message: str):
        super().__init__(message, public_message=message)


class RateLimitedError(FusionError):
    """Raised when a client exceeded its window for an endpoint class.

    Maps to HTTP 429 Too Many Requests.
    """

    status_code = 429
    default_public_message = "Too many requests. Please try again later."

    def __init__(self, client_id: str, capability: str, retry_after: int | None = None):
        self.client_id = client_id
        self.capability = capability
        self.retry_after = retry_after
        super().__init__(f"Rate limit exceeded for {client_id} on {capability}")


class ConfigurationError(FusionError):
    """Raised when an operator-side setting such as the provider key is missing.

    Maps to HTTP 500; the detail is never returned to the caller.
    """

    status_code = 500
    default_public_message = "Server configuration error"


class UpstreamError(FusionError):
    """Base for failures talking to the generative provider."""

    status_code = 500


class UpstreamTransportError(UpstreamError):
    """The provider call failed: retries exhausted or a non-retryable status."""


class UpstreamContentError(UpstreamError):
    """The provider answered but the expected field was missing or malformed.

    Never retried.
    """


class CounterStorageError(FusionError):
    """Reading or writing the fusion counter file failed."""

    status_code = 500
