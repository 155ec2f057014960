"""
Per-content-type rate limiting and concurrency gating for provider calls.

Each content type has an independent sliding window of request timestamps
(requests per window) and an independent count of slots currently held
(concurrency). A slot is granted only when both bounds allow it, and the
check and the reservation happen under one lock.
"""

import asyncio
import logging
import threading
import time
from collections import deque
from contextlib import asynccontextmanager
from typing import Callable, Deque, Dict, Optional

from .config import AnalysisConfig
from .constants import ConfigDefaults, ContentType
from .error_handler import RateLimitTimeout


class RateLimiter:
    """
    Sliding-window rate limiter combined with a concurrency gate.

    Constructed explicitly and passed to the analyzers that need it; there is
    no module-level instance.
    """

    def __init__(self,
                 rate_limits: Optional[Dict[ContentType, int]] = None,
                 concurrency_limits: Optional[Dict[ContentType, int]] = None,
                 window_seconds: float = ConfigDefaults.RATE_WINDOW_SECONDS,
                 poll_interval: float = ConfigDefaults.ACQUIRE_POLL_INTERVAL,
                 max_wait: float = ConfigDefaults.ACQUIRE_MAX_WAIT,
                 clock: Callable[[], float] = time.monotonic,
                 logger: Optional[logging.Logger] = None):
        self.rate_limits = dict(rate_limits or ConfigDefaults.RATE_LIMITS)
        self.concurrency_limits = dict(concurrency_limits or ConfigDefaults.CONCURRENCY_LIMITS)
        self.window_seconds = window_seconds
        self.poll_interval = poll_interval
        self.max_wait = max_wait
        self._clock = clock
        self.logger = logger or logging.getLogger(__name__)

        self._lock = threading.Lock()
        self._requests: Dict[ContentType, Deque[float]] = {ct: deque() for ct in ContentType}
        self._active: Dict[ContentType, int] = {ct: 0 for ct in ContentType}

    @classmethod
    def from_config(cls, config: AnalysisConfig, logger: Optional[logging.Logger] = None) -> 'RateLimiter':
        return cls(
            rate_limits=config.rate_limits,
            concurrency_limits=config.concurrency_limits,
            window_seconds=config.rate_window_seconds,
            poll_interval=config.acquire_poll_interval,
            max_wait=config.acquire_max_wait,
            logger=logger
        )

    def _prune(self, content_type: ContentType, now: float) -> None:
        """Drop timestamps that have left the window. Caller holds the lock."""
        window = self._requests[content_type]
        while window and now - window[0] >= self.window_seconds:
            window.popleft()

    def try_acquire(self, content_type: ContentType) -> bool:
        """Reserve a slot if both the rate window and the concurrency bound allow it."""
        with self._lock:
            now = self._clock()
            self._prune(content_type, now)

            if len(self._requests[content_type]) >= self.rate_limits[content_type]:
                return False
            if self._active[content_type] >= self.concurrency_limits[content_type]:
                return False

            self._requests[content_type].append(now)
            self._active[content_type] += 1
            self.logger.debug(
                f"Acquired {content_type.value} slot "
                f"(active={self._active[content_type]}/{self.concurrency_limits[content_type]}, "
                f"window={len(self._requests[content_type])}/{self.rate_limits[content_type]})"
            )
            return True

    async def acquire(self, content_type: ContentType) -> None:
        """
        Wait until a slot is free, then reserve it.

        Polls every poll_interval seconds.

        Raises:
            RateLimitTimeout: no slot became free within max_wait seconds
        """
        start = self._clock()
        while not self.try_acquire(content_type):
            waited = self._clock() - start
            if waited >= self.max_wait:
                self.logger.warning(f"Rate limiter wait exceeded for {content_type.value} after {waited:.0f}s")
                raise RateLimitTimeout(
                    f"Timed out after {self.max_wait:.0f}s waiting for a {content_type.value} rate limit slot"
                )
            await asyncio.sleep(self.poll_interval)

    def release(self, content_type: ContentType) -> None:
        """Give back a slot taken by acquire; the window entry stays until it expires."""
        with self._lock:
            if self._active[content_type] <= 0:
                self.logger.warning(f"Release of {content_type.value} slot without a matching acquire")
                return
            self._active[content_type] -= 1
            self.logger.debug(f"Released {content_type.value} slot (active={self._active[content_type]})")

    @asynccontextmanager
    async def slot(self, content_type: ContentType):
        """Hold one slot for the duration of the block."""
        await self.acquire(content_type)
        try:
            yield
        finally:
            self.release(content_type)

    def active_count(self, content_type: ContentType) -> int:
        with self._lock:
            return self._active[content_type]

    def window_count(self, content_type: ContentType) -> int:
        with self._lock:
            self._prune(content_type, self._clock())
            return len(self._requests[content_type])

    def get_stats(self) -> Dict[str, Dict[str, int]]:
        """Snapshot of slot usage per content type."""
        with self._lock:
            now = self._clock()
            stats = {}
            for content_type in ContentType:
                self._prune(content_type, now)
                stats[content_type.value] = {
                    'active': self._active[content_type],
                    'concurrency_limit': self.concurrency_limits[content_type],
                    'window_requests': len(self._requests[content_type]),
                    'rate_limit': self.rate_limits[content_type],
                }
            return stats
