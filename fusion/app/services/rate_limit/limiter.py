"""Fixed-window rate limiting per client and endpoint class.

Each endpoint class owns an independent ``FixedWindowRateLimiter``. A window
starts on the first request from a client and rolls over once the clock
passes its ``reset_time``; a burst straddling the rollover can therefore
admit up to twice the threshold.
"""

import asyncio
import math
import time
from typing import Callable, Dict, Mapping, Optional

from fusion.app.core.config import Settings
from fusion.app.core.logging import get_logger
from fusion.app.services.rate_limit.models import (
    ClientWindowState,
    RateLimitResult,
    RateLimitRule,
)

logger = get_logger(__name__)

Clock = Callable[[], float]

UNKNOWN_CLIENT = "unknown"


def resolve_client_id(headers: Mapping[str, str]) -> str:
    """Derive the rate-limit key from proxy headers.

    First entry of ``X-Forwarded-For``, then ``X-Real-IP``, then the shared
    ``"unknown"`` bucket.
    """
    forwarded = headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    real_ip = (headers.get("x-real-ip") or "").strip()
    return real_ip or UNKNOWN_CLIENT


class FixedWindowRateLimiter:
    """In-memory fixed-window counter keyed by client identifier.

    The lazy-initialize-or-increment sequence runs under an ``asyncio.Lock``
    so concurrent bursts from one client cannot undercount.
    """

    def __init__(
        self,
        threshold: int,
        window_seconds: float,
        clock: Clock = time.monotonic,
    ):
        self.threshold = threshold
        self.window_seconds = window_seconds
        self._clock = clock
        self._windows: Dict[str, ClientWindowState] = {}
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._windows)

    def get_state(self, client_id: str) -> Optional[ClientWindowState]:
        return self._windows.get(client_id)

    async def check(self, client_id: str) -> RateLimitResult:
        """Count one request from ``client_id`` and report whether it is admitted."""
        async with self._lock:
            now = self._clock()
            state = self._windows.get(client_id)

            if state is None or now > state.reset_time:
                state = ClientWindowState(count=1, reset_time=now + self.window_seconds)
                self._windows[client_id] = state
                return RateLimitResult(
                    allowed=True,
                    limit=self.threshold,
                    remaining=max(0, self.threshold - 1),
                    reset_time=state.reset_time,
                )

            if state.count >= self.threshold:
                return RateLimitResult(
                    allowed=False,
                    limit=self.threshold,
                    remaining=0,
                    reset_time=state.reset_time,
                    retry_after=max(1, math.ceil(state.reset_time - now)),
                )

            state.count += 1
            return RateLimitResult(
                allowed=True,
                limit=self.threshold,
                remaining=self.threshold - state.count,
                reset_time=state.reset_time,
            )

    async def is_rate_limited(self, client_id: str) -> bool:
        result = await self.check(client_id)
        return not result.allowed

    async def cleanup(self) -> int:
        """Drop windows that already rolled over; returns how many were removed.

        An expired window would be replaced on the client's next request
        anyway, so removing it does not change admission decisions.
        """
        async with self._lock:
            now = self._clock()
            expired = [
                client_id
                for client_id, state in self._windows.items()
                if now > state.reset_time
            ]
            for client_id in expired:
                del self._windows[client_id]
            return len(expired)


class RateLimiter:
    """Per-endpoint-class registry of fixed-window limiters.

    Built once at startup and shared by every request handler.
    """

    def __init__(self, rules: Mapping[str, RateLimitRule], clock: Clock = time.monotonic):
        self._limiters: Dict[str, FixedWindowRateLimiter] = {
            endpoint_class: FixedWindowRateLimiter(
                threshold=rule.threshold,
                window_seconds=rule.window_seconds,
                clock=clock,
            )
            for endpoint_class, rule in rules.items()
        }

    @classmethod
    def from_settings(cls, settings: Settings, clock: Clock = time.monotonic) -> "RateLimiter":
        window = settings.rate_limit_window_seconds
        return cls(
            {
                "image": RateLimitRule(settings.rate_limit_image_per_window, window),
                "description": RateLimitRule(settings.rate_limit_description_per_window, window),
                "suggestion": RateLimitRule(settings.rate_limit_suggestion_per_window, window),
                "lore": RateLimitRule(settings.rate_limit_lore_per_window, window),
            },
            clock=clock,
        )

    @property
    def endpoint_classes(self) -> list[str]:
        return list(self._limiters)

    def limiter_for(self, endpoint_class: str) -> FixedWindowRateLimiter:
        try:
            return self._limiters[endpoint_class]
        except KeyError:
            raise ValueError(f"Unknown endpoint class: {endpoint_class}") from None

    async def check(self, client_id: str, endpoint_class: str) -> RateLimitResult:
        result = await self.limiter_for(endpoint_class).check(client_id)
        if not result.allowed:
            logger.warning(
                f"Rate limit exceeded for {endpoint_class}",
                extra={"client_id": client_id, "capability": endpoint_class},
            )
        return result

    async def is_rate_limited(self, client_id: str, endpoint_class: str) -> bool:
        result = await self.check(client_id, endpoint_class)
        return not result.allowed

    async def cleanup(self) -> int:
        """Clean up expired windows across all endpoint classes."""
        removed = 0
        for limiter in self._limiters.values():
            removed += await limiter.cleanup()
        return removed


class RateLimitSweeper:
    """Background task that periodically calls ``RateLimiter.cleanup``.

    Bounds memory in long-running processes where many distinct clients
    pass through once.
    """

    def __init__(self, limiter: RateLimiter, interval_seconds: float):
        self._limiter = limiter
        self._interval = interval_seconds
        self._task: Optional[asyncio.Task] = None
        self._stop_event = asyncio.Event()

    @property
    def running(self) -> bool:
        return self._task is not None

    async def start(self) -> None:
        if self._task is not None:
            logger.debug("Rate limit sweeper already running")
            return

        self._stop_event.clear()
        self._task = asyncio.create_task(self._run())
        logger.info(f"Started rate limit sweeper (interval: {self._interval}s)")

    async def stop(self) -> None:
        if self._task is None:
            return

        self._stop_event.set()
        try:
            await asyncio.wait_for(self._task, timeout=5.0)
        except asyncio.TimeoutError:
            logger.warning("Rate limit sweeper did not stop gracefully, cancelling")
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        finally:
            self._task = None
            logger.info("Stopped rate limit sweeper")

    async def _run(self) -> None:
        while not self._stop_event.is_set():
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self._interval)
            except asyncio.TimeoutError:
                pass
            else:
                break

            try:
                removed = await self._limiter.cleanup()
            except Exception as e:
                logger.error(f"Error during rate limit sweep: {e}")
                continue
            if removed:
                logger.debug(f"Rate limit sweep removed {removed} expired windows")
