"""Per-host minimum-interval throttle shared by every outbound request."""

import asyncio
import random
import time
from typing import Awaitable, Callable, Dict, Optional


class HostThrottle:
    """Spacing state for a single host.

    Each request waits until at least min_interval seconds have passed
    since the previous one was released, plus a random jitter.
    """

    def __init__(self, min_interval: float, jitter: float):
        self.min_interval = min_interval
        self.jitter = jitter
        self.last_request: Optional[float] = None
        self._lock = asyncio.Lock()

    async def acquire(
        self,
        clock: Callable[[], float],
        sleep: Callable[[float], Awaitable[None]],
        rand: Callable[[], float],
    ) -> float:
        """Wait for this host's turn.

        Returns:
            Seconds actually waited
        """
        async with self._lock:
            waited = 0.0
            if self.last_request is not None:
                elapsed = clock() - self.last_request
                if elapsed < self.min_interval:
                    waited = self.min_interval - elapsed + rand() * self.jitter
                    await sleep(waited)
            self.last_request = clock()
            return waited


class HostRateLimiter:
    """Per-hostname rate limiter keyed on the request's hostname.

    One instance is shared by every caller in the process so that the
    checker, the keyword watcher and the cart prober all respect the same
    spacing for a given store.
    """

    def __init__(
        self,
        min_interval_ms: int = 1500,
        jitter_ms: int = 500,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rand: Callable[[], float] = random.random,
    ):
        """Initialize rate limiter.

        Args:
            min_interval_ms: Minimum spacing between requests to one host
            jitter_ms: Upper bound of random extra delay when waiting
            clock: Monotonic clock, injectable for tests
            sleep: Async sleep, injectable for tests
            rand: Uniform [0, 1) source, injectable for tests
        """
        self.min_interval = min_interval_ms / 1000.0
        self.jitter = jitter_ms / 1000.0
        self._clock = clock
        self._sleep = sleep
        self._rand = rand
        self._hosts: Dict[str, HostThrottle] = {}

    def _get_throttle(self, hostname: str) -> HostThrottle:
        if hostname not in self._hosts:
            self._hosts[hostname] = HostThrottle(self.min_interval, self.jitter)
        return self._hosts[hostname]

    async def acquire(self, hostname: str) -> float:
        """Block until a request to hostname is allowed.

        Returns:
            Seconds waited
        """
        throttle = self._get_throttle(hostname.lower())
        return await throttle.acquire(self._clock, self._sleep, self._rand)

    def last_request_at(self, hostname: str) -> Optional[float]:
        throttle = self._hosts.get(hostname.lower())
        return throttle.last_request if throttle else None
