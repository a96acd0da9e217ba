"""Rate limiting data models.

This module contains dataclasses for rate limit rules, per-client window
state and check results.
"""

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class RateLimitRule:
    """Threshold and window size for one endpoint class."""
    threshold: int
    window_seconds: float


@dataclass
class ClientWindowState:
    """Fixed-window counter for one client identifier."""
    count: int
    reset_time: float


@dataclass
class RateLimitResult:
    """Result of a rate limit check."""
    allowed: bool
    limit: int
    remaining: int
    reset_time: float
    retry_after: Optional[int] = None
