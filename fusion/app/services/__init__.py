"""Services package.

This package provides:
- Fusion capability handlers (image, description, suggestion, lore)
- Per-client fixed-window rate limiting
- The persisted fusion counter
"""

from fusion.app.services.fusion import (
    DESCRIPTION,
    IMAGE,
    LORE,
    SUGGESTION,
    Capability,
    FusionService,
    sanitize,
)
from fusion.app.services.fusion_counter import FusionCounter
from fusion.app.services.rate_limit import (
    FixedWindowRateLimiter,
    RateLimiter,
    RateLimitSweeper,
    resolve_client_id,
)

__all__ = [
    # Handlers
    "Capability",
    "FusionService",
    "IMAGE",
    "DESCRIPTION",
    "SUGGESTION",
    "LORE",
    "sanitize",
    # Counter
    "FusionCounter",
    # Rate limiting
    "FixedWindowRateLimiter",
    "RateLimiter",
    "RateLimitSweeper",
    "resolve_client_id",
]
