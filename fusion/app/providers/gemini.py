"""Google Gemini / Imagen REST provider.

Builds the provider-specific request shapes and sends them through the
shared ``BackoffClient``. The API key travels as the ``key`` query parameter.
"""

from typing import Any, Dict, Optional

from fusion.app.providers.retry import BackoffClient


def build_text_payload(
    prompt: str, generation_config: Optional[Dict[str, Any]] = None
) -> Dict[str, Any]:
    """Request body for ``models/<model>:generateContent``."""
    payload: Dict[str, Any] = {
        "contents": [{"role": "user", "parts": [{"text": prompt}]}]
    }
    if generation_config:
        payload["generationConfig"] = generation_config
    return payload


def build_image_payload(prompt: str, sample_count: int = 1) -> Dict[str, Any]:
    """Request body for ``models/<model>:predict`` (Imagen)."""
    return {
        "instances": [{"prompt": prompt}],
        "parameters": {"sampleCount": sample_count},
    }


class GeminiProvider:
    """Gemini text and Imagen image generation over the REST API."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        text_model: str,
        image_model: str,
        backoff: BackoffClient,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.text_model = text_model
        self.image_model = image_model
        self.backoff = backoff

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    def _get_endpoint_url(self, model: str, method: str) -> str:
        return f"{self.base_url}/models/{model}:{method}"

    async def generate_content(
        self,
        prompt: str,
        generation_config: Optional[Dict[str, Any]] = None,
        max_retries: Optional[int] = None,
    ) -> Dict[str, Any]:
        """Send a text prompt and return the raw provider response.

        Raises:
            RequestError: If the call fails after the retry policy gives up
        """
        return await self.backoff.call(
            self._get_endpoint_url(self.text_model, "generateContent"),
            build_text_payload(prompt, generation_config),
            max_retries=max_retries,
            params={"key": self.api_key},
        )

    async def predict_image(
        self, prompt: str, max_retries: Optional[int] = None
    ) -> Dict[str, Any]:
        """Send an image prompt and return the raw provider response.

        Raises:
            RequestError: If the call fails after the retry policy gives up
        """
        return await self.backoff.call(
            self._get_endpoint_url(self.image_model, "predict"),
            build_image_payload(prompt),
            max_retries=max_retries,
            params={"key": self.api_key},
        )
