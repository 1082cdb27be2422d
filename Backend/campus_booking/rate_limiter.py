"""
Rate Limiting

Fixed-window request counter kept in process memory, keyed by caller
identity (client IP for the booking endpoint).

Booking policy: 5 requests per 60 seconds per IP (see Settings).

A burst straddling two windows can admit up to 2 * max_requests in a
short span. Counters are lost on restart and are not shared between
processes; for multi-instance deployments move this to Redis with TTL keys.

Usage:
    from .rate_limiter import get_rate_limiter

    @router.post("/book")
    async def book(limiter: RateLimiter = Depends(get_rate_limiter)):
        if not limiter.check_rate_limit(ip, 5, 60000):
            ...
"""

import logging
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from .core.config import get_settings

logger = logging.getLogger(__name__)


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class RateLimitRecord:
    count: int
    reset_at: int  # epoch ms


# ────────────────────────────────────────────────────────────────
# In-Memory Rate Limiter
# ────────────────────────────────────────────────────────────────

class RateLimiter:
    """
    Simple in-memory fixed-window rate limiter.

    check_rate_limit() never awaits, so under the asyncio event loop each
    call runs to completion before another request can touch the map.
    """

    def __init__(
        self,
        clock: Callable[[], int] = _now_ms,
        sweep_interval_seconds: int = 300,
    ):
        self.records: Dict[str, RateLimitRecord] = {}
        self.clock = clock
        self.sweep_interval_ms = sweep_interval_seconds * 1000
        self.last_sweep = clock()

    def _sweep_expired(self, now: int) -> None:
        """Drop windows that have already reset to keep memory bounded."""
        if now - self.last_sweep < self.sweep_interval_ms:
            return

        for key in list(self.records.keys()):
            if now > self.records[key].reset_at:
                del self.records[key]

        self.last_sweep = now
        logger.debug(f"Rate limiter sweep: {len(self.records)} keys tracked")

    def check_rate_limit(
        self,
        key: str,
        max_requests: int = 10,
        window_ms: int = 60000,
    ) -> bool:
        """
        Count one request for ``key`` and report whether it is allowed.

        Args:
            key: Caller identity (usually the client IP)
            max_requests: Maximum requests allowed per window
            window_ms: Window length in milliseconds

        Returns:
            True if the request is within the limit
        """
        now = self.clock()
        self._sweep_expired(now)

        record = self.records.get(key)

        if record is None or now > record.reset_at:
            self.records[key] = RateLimitRecord(count=1, reset_at=now + window_ms)
            return True

        if record.count >= max_requests:
            logger.warning(
                f"[RATE_LIMIT] Blocked {key}: {record.count}/{max_requests} "
                f"in {window_ms}ms window"
            )
            return False

        record.count += 1
        return True

    def reset(self, key: Optional[str] = None) -> None:
        if key is None:
            self.records.clear()
        else:
            self.records.pop(key, None)


# Global rate limiter instance
_rate_limiter = RateLimiter(
    sweep_interval_seconds=get_settings().rate_limit_sweep_interval_seconds,
)


def check_rate_limit(key: str, max_requests: int = 10, window_ms: int = 60000) -> bool:
    """Check ``key`` against the process-wide limiter."""
    return _rate_limiter.check_rate_limit(key, max_requests, window_ms)


# ────────────────────────────────────────────────────────────────
# FastAPI Dependencies
# ────────────────────────────────────────────────────────────────

def get_rate_limiter() -> RateLimiter:
    """
    FastAPI dependency returning the process-wide limiter.

    Override in tests with ``app.dependency_overrides[get_rate_limiter]``.
    """
    return _rate_limiter


# ────────────────────────────────────────────────────────────────
# Utility Functions
# ────────────────────────────────────────────────────────────────

def get_rate_limit_stats(limiter: Optional[RateLimiter] = None) -> dict:
    """
    Get current rate limiter statistics.

    Returns:
        Dictionary with tracked key count and the busiest keys
    """
    limiter = limiter or _rate_limiter
    top_keys = sorted(
        limiter.records.items(),
        key=lambda item: item[1].count,
        reverse=True,
    )[:10]

    return {
        "total_tracked_keys": len(limiter.records),
        "top_keys": [
            {"key": key, "request_count": record.count, "reset_at": record.reset_at}
            for key, record in top_keys
        ],
    }


def clear_rate_limits(key: Optional[str] = None, limiter: Optional[RateLimiter] = None):
    """
    Clear rate limits for a specific key or all keys.

    Args:
        key: Key to clear, or None to clear all
    """
    limiter = limiter or _rate_limiter
    limiter.reset(key)
    if key:
        logger.info(f"Cleared rate limits for key: {key}")
    else:
        logger.info("Cleared all rate limits")
