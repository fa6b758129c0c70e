"""Per-credential rate-limit tracking fed by platform response headers."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class RateLimitSignal:
    consumed: float
    ceiling: float
    reset_at: float | None = None


@dataclass(slots=True)
class RateLimitState:
    consumed: float = 0.0
    ceiling: float | None = None
    reset_at: float | None = None

    @property
    def percent_used(self) -> float:
        if not self.ceiling:
            return 0.0
        return self.consumed / self.ceiling


SignalParser = Callable[[Mapping[str, str]], "RateLimitSignal | None"]


class RateLimitTracker:
    """Rolling quota estimate for one (merchant, platform) pair.

    ``observe`` folds response headers into the state; a missing or malformed
    signal keeps the last known good state. ``should_throttle`` reports how long
    to wait once usage crosses the high-water mark, and ``space_out`` enforces
    the fixed gap between consecutive requests.
    """

    def __init__(
        self,
        parser: SignalParser,
        *,
        high_water: float = 0.9,
        request_interval: float = 0.25,
        default_wait: float = 5.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.parser = parser
        self.high_water = high_water
        self.request_interval = request_interval
        self.default_wait = default_wait
        self.state = RateLimitState()
        self._clock = clock
        self._lock: asyncio.Lock | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._last_request = 0.0

    def observe(self, headers: Mapping[str, str]) -> None:
        try:
            signal = self.parser(headers)
        except (ValueError, TypeError, KeyError, IndexError, AttributeError) as exc:
            logger.debug("Ignoring unparseable rate-limit headers: %s", exc)
            return
        if signal is None or signal.ceiling <= 0:
            return
        consumed = max(signal.consumed, 0.0)
        if consumed > signal.ceiling:
            logger.info("Reported usage %.1f exceeds ceiling %.1f; clamping", consumed, signal.ceiling)
            consumed = signal.ceiling
        self.state.consumed = consumed
        self.state.ceiling = signal.ceiling
        self.state.reset_at = signal.reset_at

    def should_throttle(self) -> float | None:
        if self.state.percent_used < self.high_water:
            return None
        reset_at = self.state.reset_at
        if reset_at is not None:
            remaining = reset_at - self._clock()
            if remaining > 0:
                return remaining
            # The window rolled over since the last signal.
            self.state.consumed = 0.0
            self.state.reset_at = None
            return None
        return self.default_wait

    def _loop_lock(self) -> asyncio.Lock:
        # Trackers outlive a single event loop (each worker task runs its own),
        # and a lock is bound to the loop it was first contended in.
        loop = asyncio.get_running_loop()
        if self._lock is None or self._loop is not loop:
            self._lock = asyncio.Lock()
            self._loop = loop
        return self._lock

    async def space_out(self, sleep: Callable[[float], Awaitable[object]]) -> None:
        async with self._loop_lock():
            elapsed = time.monotonic() - self._last_request
            if elapsed < self.request_interval:
                await sleep(self.request_interval - elapsed)
            self._last_request = time.monotonic()


class TrackerRegistry:
    """Hands out one shared tracker per (merchant, platform)."""

    def __init__(self) -> None:
        self._trackers: dict[tuple[str, str], RateLimitTracker] = {}

    def get(self, merchant_id: str, platform: str, factory: Callable[[], RateLimitTracker]) -> RateLimitTracker:
        key = (merchant_id, platform)
        tracker = self._trackers.get(key)
        if tracker is None:
            tracker = factory()
            self._trackers[key] = tracker
        return tracker
