"""Domain events raised by the checker and the keyword watcher.

Subscribers run in registration order; a failing subscriber is logged
and never affects the publisher or other subscribers.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Awaitable, Callable, Dict, List, Optional, Type

import structlog

logger = structlog.get_logger(__name__)


@dataclass
class TargetStateChanged:
    """A target was found in stock after being out of stock (or on a forced re-check)."""

    target: Any
    previous: bool
    current: bool
    cart_url: Optional[str] = None


@dataclass
class TargetPriceDropped:
    target: Any
    old_price: Decimal
    new_price: Decimal


@dataclass
class TargetPriceReached:
    """An in-stock check came in at or below the target's target_price."""

    target: Any
    price: Decimal


@dataclass
class WatchFoundNew:
    watch: Any
    items: List[Any] = field(default_factory=list)


@dataclass
class WatchBackInStock:
    watch: Any
    items: List[Any] = field(default_factory=list)


Handler = Callable[[Any], Awaitable[None]]


class EventDispatcher:
    """In-process async publish/subscribe keyed on event class."""

    def __init__(self):
        self._handlers: Dict[Type, List[Handler]] = {}
        self.logger = logger.bind(service="event_dispatcher")

    def subscribe(self, event_type: Type, handler: Handler) -> None:
        self._handlers.setdefault(event_type, []).append(handler)

    async def publish(self, event: Any) -> int:
        """Deliver event to its subscribers.

        Returns:
            Number of handlers that completed without raising
        """
        delivered = 0
        for handler in self._handlers.get(type(event), []):
            try:
                await handler(event)
                delivered += 1
            except Exception as e:
                self.logger.error(
                    "event_handler_failed",
                    event=type(event).__name__,
                    handler=getattr(handler, "__qualname__", repr(handler)),
                    error=str(e),
                    exc_info=True,
                )
        return delivered
