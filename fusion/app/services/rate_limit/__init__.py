"""Per-client, per-endpoint-class fixed-window rate limiting."""

from fusion.app.services.rate_limit.limiter import (
    UNKNOWN_CLIENT,
    FixedWindowRateLimiter,
    RateLimiter,
    RateLimitSweeper,
    resolve_client_id,
)
from fusion.app.services.rate_limit.models import (
    ClientWindowState,
    RateLimitResult,
    RateLimitRule,
)

__all__ = [
    # Models
    "ClientWindowState",
    "RateLimitResult",
    "RateLimitRule",
    # Limiters
    "FixedWindowRateLimiter",
    "RateLimiter",
    "RateLimitSweeper",
    "resolve_client_id",
    "UNKNOWN_CLIENT",
]
