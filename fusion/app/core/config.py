import json
import re
from typing import Annotated, Any

from pydantic import field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


def _parse_cors_origins(raw: Any) -> list[str]:
    if raw is None:
        return []
    if isinstance(raw, list):
        items = [str(v).strip() for v in raw]
        return [v for v in items if v]

    raw = str(raw).strip()
    if not raw or raw == "[]":
        return []
    if raw == "*":
        return ["*"]

    # JSON list is the documented format; bare comma/space separated hosts
    # are tolerated so a sloppy deployment still boots.
    if raw.startswith(("[", '"', "'")):
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError:
            parsed = None
        if isinstance(parsed, list):
            items = [str(v).strip() for v in parsed]
            return [v for v in items if v]
        if isinstance(parsed, str):
            raw = parsed.strip()
            if not raw or raw == "[]":
                return []
            if raw == "*":
                return ["*"]

    origins: list[str] = []
    for part in (p for p in re.split(r"[,\s]+", raw) if p):
        if part == "*":
            return ["*"]
        if "://" in part:
            origins.append(part)
        else:
            origins.append(f"http://{part}")
            origins.append(f"https://{part}")

    return list(dict.fromkeys(origins))


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    All settings can be configured via environment variables or .env file.
    """

    # Debug mode - includes exception messages in 500 responses
    debug: bool = False

    # Gemini / Imagen provider
    gemini_api_key: str = ""
    gemini_base_url: str = "https://generativelanguage.googleapis.com/v1beta"
    gemini_text_model: str = "gemini-2.5-flash-preview-05-20"
    gemini_image_model: str = "imagen-3.0-generate-002"

    # HTTP client connection pool settings
    httpx_connect_timeout: float = 10.0
    httpx_read_timeout: float = 60.0
    httpx_write_timeout: float = 10.0
    httpx_pool_timeout: float = 5.0
    httpx_keepalive_expiry: float = 30.0
    httpx_max_connections: int = 100
    httpx_max_keepalive_connections: int = 20

    # Retry with exponential backoff (1s, 2s, 4s, 8s, 16s)
    retry_max_attempts: int = 5
    retry_base_delay: float = 1.0
    retry_max_delay: float = 60.0

    # Fixed-window rate limiting, per endpoint class
    rate_limit_window_seconds: int = 60
    rate_limit_image_per_window: int = 10
    rate_limit_description_per_window: int = 15
    rate_limit_suggestion_per_window: int = 20
    rate_limit_lore_per_window: int = 15
    rate_limit_sweep_interval_seconds: int = 300  # 0 disables the sweep

    # Input ceilings (characters)
    max_item_length: int = 100
    max_theme_length: int = 50
    max_lore_description_length: int = 2000

    # Request body size limit (bytes)
    max_request_body_bytes: int = 16 * 1024

    # Fusion counter storage
    fusion_count_file: str = "data/fusion-count.json"

    # Logging settings
    log_level: str = "INFO"
    log_format: str = "text"  # text | structured | json

    # Use NoDecode so a bare host like "example.com" doesn't crash JSON parsing
    cors_origins: Annotated[list[str], NoDecode] = ["*"]

    @field_validator("cors_origins", mode="before")
    @classmethod
    def decode_cors_origins(cls, v: Any) -> list[str]:
        return _parse_cors_origins(v)

    @field_validator(
        "rate_limit_image_per_window",
        "rate_limit_description_per_window",
        "rate_limit_suggestion_per_window",
        "rate_limit_lore_per_window",
        "rate_limit_window_seconds",
    )
    @classmethod
    def validate_rate_limit_positive(cls, v: int) -> int:
        """Validate rate limit values are positive."""
        if v < 1:
            raise ValueError("Rate limit values must be at least 1")
        return v

    @field_validator("rate_limit_sweep_interval_seconds")
    @classmethod
    def validate_sweep_interval(cls, v: int) -> int:
        if v < 0:
            raise ValueError("rate_limit_sweep_interval_seconds must be >= 0")
        return v

    @field_validator("retry_max_attempts")
    @classmethod
    def validate_retry_attempts(cls, v: int) -> int:
        """Validate at least one attempt is made."""
        if v < 1:
            raise ValueError("retry_max_attempts must be at least 1")
        return v

    @field_validator(
        "retry_base_delay",
        "retry_max_delay",
        "httpx_connect_timeout",
        "httpx_read_timeout",
    )
    @classmethod
    def validate_positive_seconds(cls, v: float) -> float:
        """Validate timeout and delay values are positive."""
        if v <= 0:
            raise ValueError("Timeout and delay values must be positive")
        return v

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


# Global settings instance
settings = Settings()
