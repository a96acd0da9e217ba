"""Outbound provider clients."""

from fusion.app.providers.gemini import GeminiProvider, build_image_payload, build_text_payload
from fusion.app.providers.retry import (
    RETRIES_EXHAUSTED_MESSAGE,
    BackoffClient,
    RequestError,
    RetryPolicy,
)

__all__ = [
    "GeminiProvider",
    "build_image_payload",
    "build_text_payload",
    "BackoffClient",
    "RequestError",
    "RetryPolicy",
    "RETRIES_EXHAUSTED_MESSAGE",
]
