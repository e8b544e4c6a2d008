"""In-memory sliding-window rate limiter.

Best effort only: state lives in this process and is not shared between
workers.
"""

import logging
import time
from collections import deque

from viewer_bot.config import RateLimitConfig

logger = logging.getLogger(__name__)


class SlidingWindowRateLimiter:
    """Allows at most ``max_requests`` per ``window_seconds`` for each client key."""

    def __init__(self, config: RateLimitConfig):
        self._window = config.window_seconds
        self._limit = config.max_requests
        self._hits: dict[str, deque[float]] = {}
        self._last_sweep = float("-inf")

    def _prune(self, hits: deque[float], now: float) -> None:
        cutoff = now - self._window
        while hits and hits[0] <= cutoff:
            hits.popleft()

    def __len__(self) -> int:
        return len(self._hits)

    def _sweep(self, now: float) -> None:
        """Forget clients whose newest hit has left the window."""
        cutoff = now - self._window
        idle = [key for key, hits in self._hits.items() if not hits or hits[-1] <= cutoff]
        for key in idle:
            del self._hits[key]
        self._last_sweep = now

    def hit(self, client_key: str, now: float | None = None) -> bool:
        """Record a request and return True if it is within the limit."""
        if now is None:
            now = time.monotonic()
        if now - self._last_sweep >= self._window:
            self._sweep(now)
        hits = self._hits.setdefault(client_key, deque())
        self._prune(hits, now)
        if len(hits) >= self._limit:
            logger.warning(f"RATE_LIMIT: client={client_key} over {self._limit}/{self._window:.0f}s")
            return False
        hits.append(now)
        return True

    def retry_after(self, client_key: str, now: float | None = None) -> float:
        """Seconds until the oldest hit leaves the window (0 if not limited)."""
        if now is None:
            now = time.monotonic()
        hits = self._hits.get(client_key)
        if not hits:
            return 0.0
        self._prune(hits, now)
        if not hits:
            del self._hits[client_key]
            return 0.0
        if len(hits) < self._limit:
            return 0.0
        return max(0.0, hits[0] + self._window - now)

    def reset(self, client_key: str | None = None) -> None:
        if client_key is None:
            self._hits.clear()
        else:
            self._hits.pop(client_key, None)
