"""Retry policy for the HTTP transport.

Backoff schedules are plain data so they can be unit tested without
timers; RetryPolicy.as_wait() adapts them to a tenacity wait strategy.
"""

from dataclasses import dataclass, field
from typing import Optional, Tuple

import httpx
from tenacity import RetryCallState

from stockwatch.core.exceptions import RateLimitedError, TransientNetworkError


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded retry schedule per failure kind.

    Each tuple lists the delay in seconds before retry 1, 2, ...; its
    length is the retry budget for that kind. A Retry-After header on a
    429 raises the delay to at least that many seconds.
    """

    rate_limited: Tuple[float, ...] = (5.0, 15.0, 45.0)
    server_error: Tuple[float, ...] = (3.0, 8.0)
    transport_error: Tuple[float, ...] = (2.0, 5.0)
    max_retry_after: float = 120.0
    retry_statuses: Tuple[int, ...] = field(default=(502, 503))

    def schedule_for(self, exc: BaseException) -> Tuple[float, ...]:
        if isinstance(exc, RateLimitedError):
            return self.rate_limited
        if isinstance(exc, TransientNetworkError):
            if exc.status_code is not None:
                return self.server_error
            return self.transport_error
        return ()

    def should_retry(self, exc: BaseException, attempt: int) -> bool:
        """Whether a failure on the given 1-based attempt gets another try."""
        return attempt <= len(self.schedule_for(exc))

    def delay_for(self, exc: BaseException, attempt: int) -> float:
        """Delay in seconds before the retry that follows attempt."""
        schedule = self.schedule_for(exc)
        if not schedule:
            return 0.0
        delay = schedule[min(attempt, len(schedule)) - 1]
        if isinstance(exc, RateLimitedError) and exc.retry_after:
            delay = max(delay, min(exc.retry_after, self.max_retry_after))
        return delay

    def as_wait(self):
        """tenacity wait callable driven by this policy."""

        def _wait(retry_state: RetryCallState) -> float:
            exc = retry_state.outcome.exception() if retry_state.outcome else None
            if exc is None:
                return 0.0
            return self.delay_for(exc, retry_state.attempt_number)

        return _wait

    def as_retry(self):
        """tenacity retry predicate driven by this policy."""

        def _retry(retry_state: RetryCallState) -> bool:
            if retry_state.outcome is None or not retry_state.outcome.failed:
                return False
            exc = retry_state.outcome.exception()
            return self.should_retry(exc, retry_state.attempt_number)

        return _retry


# POST requests (cart probing) get a shorter 429 budget and no 5xx retries
DEFAULT_GET_POLICY = RetryPolicy()
DEFAULT_POST_POLICY = RetryPolicy(
    rate_limited=(8.0, 20.0),
    server_error=(),
    transport_error=(),
)


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    """Parse a Retry-After header given in seconds."""
    if not value:
        return None
    try:
        seconds = float(value.strip())
    except ValueError:
        return None
    return seconds if seconds >= 0 else None


def classify_transport_error(url: str, exc: httpx.TransportError) -> TransientNetworkError:
    return TransientNetworkError(url, f"{type(exc).__name__}: {exc}")
