"""
Leading-edge throttle for partial results.

The first call in a window goes through; every call until `interval` seconds have
passed since it is dropped. Nothing is replayed at the trailing edge.
"""

import time
from typing import Any, Awaitable, Callable, Optional

Clock = Callable[[], float]


class LeadingEdgeThrottle:
    def __init__(self, interval: float, clock: Clock = time.monotonic) -> None:
        if interval < 0:
            raise ValueError("interval must be >= 0")
        self.interval = interval
        self._clock = clock
        self._last_fired: Optional[float] = None
        self.fired = 0
        self.dropped = 0

    def try_acquire(self) -> bool:
        now = self._clock()
        if self._last_fired is None or now - self._last_fired >= self.interval:
            self._last_fired = now
            self.fired += 1
            return True
        self.dropped += 1
        return False

    def wrap(self, fn: Callable[..., Awaitable[Any]]) -> Callable[..., Awaitable[None]]:
        """Async callable forwarding to `fn` only when the throttle lets it through."""

        async def throttled(*args: Any, **kwargs: Any) -> None:
            if self.try_acquire():
                await fn(*args, **kwargs)

        return throttled
