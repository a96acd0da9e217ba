"""Fusion request handlers.

Every capability follows the same pipeline:

    configured? -> validate/sanitize -> rate check -> provider call -> extract

Failures surface as ``FusionError`` subclasses, which the HTTP layer turns
into ``{"error": ...}`` envelopes. Extraction failures are raised after a
successful call and are never retried.
"""

import json
import re
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

from fusion.app.core.config import Settings
from fusion.app.core.logging import get_log_context, get_logger
from fusion.app.exceptions import (
    ConfigurationError,
    RateLimitedError,
    UpstreamContentError,
    UpstreamTransportError,
    ValidationError,
)
from fusion.app.providers.gemini import GeminiProvider
from fusion.app.providers.retry import RequestError
from fusion.app.services.rate_limit import RateLimiter

logger = get_logger(__name__)

_ANGLE_BRACKETS = re.compile(r"[<>]")


@dataclass(frozen=True)
class Capability:
    """An endpoint class: its rate-limit key and its public failure message."""
    name: str
    failure_message: str


IMAGE = Capability("image", "Failed to generate image. Please try again.")
DESCRIPTION = Capability("description", "Failed to generate description. Please try again.")
SUGGESTION = Capability("suggestion", "Failed to generate suggestions. Please try again.")
LORE = Capability("lore", "Failed to generate lore. Please try again.")

SUGGESTION_PROMPT = (
    "Generate two creative and contrasting items that could be fused together. "
    "Provide the response as a JSON object with keys 'item1' and 'item2'."
)

SUGGESTION_GENERATION_CONFIG: Dict[str, Any] = {
    "responseMimeType": "application/json",
    "responseSchema": {
        "type": "OBJECT",
        "properties": {
            "item1": {"type": "STRING"},
            "item2": {"type": "STRING"},
        },
        "required": ["item1", "item2"],
    },
}


def sanitize(text: str) -> str:
    """Trim and strip ``<``/``>`` before text is embedded in a prompt."""
    return _ANGLE_BRACKETS.sub("", text.strip())


def build_image_prompt(item1: str, item2: str, theme: str = "") -> str:
    theme_clause = f", with a {theme} theme" if theme else ""
    return (
        f'A high-quality, vibrant, and clear image of a fusion between a "{item1}" '
        f'and a "{item2}"{theme_clause}. The final image should be a creative and '
        f"seamless blend of the two concepts."
    )


def build_description_prompt(item1: str, item2: str) -> str:
    return (
        "Write a short, creative, and engaging description for a fantastical object "
        f'that is a fusion of a "{item1}" and a "{item2}".'
    )


def build_lore_prompt(description: str) -> str:
    return (
        f'Based on this description: "{description}", write a short, mythical-sounding '
        "lore or backstory for this creation. Make it sound like a legend."
    )


def extract_text(result: Dict[str, Any]) -> Optional[str]:
    """``candidates[0].content.parts[0].text`` or None when any hop is missing."""
    try:
        text = result["candidates"][0]["content"]["parts"][0]["text"]
    except (KeyError, IndexError, TypeError):
        return None
    return text if isinstance(text, str) else None


def extract_image_data(result: Dict[str, Any]) -> Optional[str]:
    """``predictions[0].bytesBase64Encoded`` or None when any hop is missing."""
    try:
        data = result["predictions"][0]["bytesBase64Encoded"]
    except (KeyError, IndexError, TypeError):
        return None
    return data if isinstance(data, str) and data else None


def parse_suggestion(text: str) -> Dict[str, str]:
    """Parse the JSON suggestion text into ``item1``/``item2``.

    Raises:
        UpstreamContentError: If the text is not a JSON object with both items
    """
    try:
        suggestion = json.loads(text)
    except json.JSONDecodeError as e:
        raise UpstreamContentError(
            f"Could not parse suggestion from API response: {e}",
            public_message=SUGGESTION.failure_message,
        ) from e

    if not isinstance(suggestion, dict):
        raise UpstreamContentError(
            "Invalid suggestion format received",
            public_message=SUGGESTION.failure_message,
        )
    item1, item2 = suggestion.get("item1"), suggestion.get("item2")
    if not (isinstance(item1, str) and item1 and isinstance(item2, str) and item2):
        raise UpstreamContentError(
            "Invalid suggestion format received",
            public_message=SUGGESTION.failure_message,
        )
    return {"item1": item1, "item2": item2}


class FusionService:
    """Capability handlers sharing one provider and one rate limiter."""

    def __init__(self, provider: GeminiProvider, rate_limiter: RateLimiter, settings: Settings):
        self.provider = provider
        self.rate_limiter = rate_limiter
        self.settings = settings

    def _ensure_configured(self) -> None:
        if not self.provider.is_configured:
            raise ConfigurationError("GEMINI_API_KEY is not configured")

    def _validate_items(self, input1: Optional[str], input2: Optional[str]) -> tuple[str, str]:
        if not input1 or not input2:
            raise ValidationError("Both input1 and input2 are required")

        limit = self.settings.max_item_length
        if len(input1) > limit or len(input2) > limit:
            raise ValidationError(f"Input items must be less than {limit} characters each")

        item1, item2 = sanitize(input1), sanitize(input2)
        if not item1 or not item2:
            raise ValidationError("Both input1 and input2 are required")
        return item1, item2

    async def _enforce_rate_limit(self, client_id: str, capability: Capability) -> None:
        result = await self.rate_limiter.check(client_id, capability.name)
        if not result.allowed:
            raise RateLimitedError(client_id, capability.name, retry_after=result.retry_after)

    async def _call_provider(
        self,
        capability: Capability,
        client_id: str,
        call: Callable[[], Awaitable[Dict[str, Any]]],
    ) -> Dict[str, Any]:
        try:
            return await call()
        except RequestError as e:
            logger.error(
                f"Provider call failed after {e.attempts} attempt(s): {e.message}",
                extra=get_log_context(
                    client_id=client_id,
                    capability=capability.name,
                    upstream_status=e.status_code,
                ),
            )
            raise UpstreamTransportError(
                e.message, public_message=capability.failure_message
            ) from e

    async def generate_image(
        self,
        client_id: str,
        input1: Optional[str],
        input2: Optional[str],
        theme: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Generate a fusion image.

        Returns:
            ``{"success": True, "imageData": <base64>, "prompt": <prompt>}``
        """
        self._ensure_configured()
        item1, item2 = self._validate_items(input1, input2)
        if theme and len(theme) > self.settings.max_theme_length:
            raise ValidationError(
                f"Theme must be less than {self.settings.max_theme_length} characters"
            )
        await self._enforce_rate_limit(client_id, IMAGE)

        prompt = build_image_prompt(item1, item2, sanitize(theme) if theme else "")
        result = await self._call_provider(
            IMAGE, client_id, lambda: self.provider.predict_image(prompt)
        )

        image_data = extract_image_data(result)
        if image_data is None:
            raise UpstreamContentError(
                "Image generation failed: No image data received.",
                public_message=IMAGE.failure_message,
            )

        logger.info(
            "Image generated",
            extra=get_log_context(client_id=client_id, capability=IMAGE.name),
        )
        return {"success": True, "imageData": image_data, "prompt": prompt}

    async def generate_description(
        self, client_id: str, input1: Optional[str], input2: Optional[str]
    ) -> Dict[str, Any]:
        """Generate a short description of the fused object."""
        self._ensure_configured()
        item1, item2 = self._validate_items(input1, input2)
        await self._enforce_rate_limit(client_id, DESCRIPTION)

        prompt = build_description_prompt(item1, item2)
        result = await self._call_provider(
            DESCRIPTION, client_id, lambda: self.provider.generate_content(prompt)
        )

        text = extract_text(result)
        if not text or not text.strip():
            raise UpstreamContentError(
                "Could not generate a description.",
                public_message=DESCRIPTION.failure_message,
            )
        return {"success": True, "description": text.strip()}

    async def suggest_ideas(self, client_id: str) -> Dict[str, Any]:
        """Ask the provider for two contrasting items to fuse."""
        self._ensure_configured()
        await self._enforce_rate_limit(client_id, SUGGESTION)

        result = await self._call_provider(
            SUGGESTION,
            client_id,
            lambda: self.provider.generate_content(
                SUGGESTION_PROMPT, generation_config=SUGGESTION_GENERATION_CONFIG
            ),
        )

        text = extract_text(result)
        if not text:
            raise UpstreamContentError(
                "Could not parse suggestion from API response.",
                public_message=SUGGESTION.failure_message,
            )
        return {"success": True, **parse_suggestion(text)}

    async def generate_lore(self, client_id: str, description: Optional[str]) -> Dict[str, Any]:
        """Write legend-style lore for an already generated description."""
        self._ensure_configured()
        if not description or not sanitize(description):
            raise ValidationError("A description is required")
        limit = self.settings.max_lore_description_length
        if len(description) > limit:
            raise ValidationError(f"Description must be less than {limit} characters")
        await self._enforce_rate_limit(client_id, LORE)

        prompt = build_lore_prompt(sanitize(description))
        result = await self._call_provider(
            LORE, client_id, lambda: self.provider.generate_content(prompt)
        )

        text = extract_text(result)
        if not text or not text.strip():
            raise UpstreamContentError(
                "Could not generate lore.", public_message=LORE.failure_message
            )
        return {"success": True, "lore": text.strip()}
