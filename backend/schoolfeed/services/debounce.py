"""
Adaptive Debounce Scheduler

Coalesces bursts of live change events into one refresh per burst:

    delay = min(max_delay, base_delay + (burst_count - 1) * step_delay)

where burst_count is the number of events seen in the last `burst_window`
seconds, this one included. Events arriving less than `min_event_interval`
after the last completed refresh are dropped outright.
"""

import time
from collections import deque
from typing import Any, Awaitable, Callable, Deque, Optional

from schoolfeed.core.logging_config import logger
from schoolfeed.services.feed_metrics import FeedMetrics
from schoolfeed.services.timers import CancellableTimer


class AdaptiveDebounceScheduler:

    def __init__(
        self,
        refresh: Callable[[], Awaitable[Any]],
        timer: CancellableTimer,
        last_refresh_at: Callable[[], Optional[float]],
        metrics: Optional[FeedMetrics] = None,
        base_delay: float = 0.2,
        step_delay: float = 0.1,
        max_delay: float = 0.8,
        burst_window: float = 5.0,
        min_event_interval: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.refresh = refresh
        self.timer = timer
        self.last_refresh_at = last_refresh_at
        self.metrics = metrics
        self.base_delay = base_delay
        self.step_delay = step_delay
        self.max_delay = max_delay
        self.burst_window = burst_window
        self.min_event_interval = min_event_interval
        self._clock = clock
        self._events: Deque[float] = deque()

    def compute_delay(self, burst_count: int) -> float:
        return min(self.max_delay, self.base_delay + max(burst_count - 1, 0) * self.step_delay)

    @property
    def burst_count(self) -> int:
        return len(self._events)

    def on_event(self, *_: Any) -> Optional[float]:
        """
        Take one change event.

        Returns the delay the coalesced refresh was (re)scheduled with, or
        None when the event fell inside the hard throttle.
        """
        now = self._clock()

        last = self.last_refresh_at()
        if last is not None and now - last < self.min_event_interval:
            logger.debug("[Debounce] event dropped, refresh just completed")
            return None

        while self._events and now - self._events[0] > self.burst_window:
            self._events.popleft()
        self._events.append(now)

        delay = self.compute_delay(len(self._events))
        if self.metrics is not None:
            self.metrics.adaptive_delay = delay

        self.timer.schedule(delay, self.refresh)
        logger.debug(f"[Debounce] refresh in {delay:.2f}s (burst={len(self._events)})")
        return delay

    def cancel(self) -> None:
        self.timer.cancel()

    def reset(self) -> None:
        self.timer.cancel()
        self._events.clear()
