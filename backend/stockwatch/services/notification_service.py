"""Alert delivery: Telegram notifier, logging fallback and event wiring.

Notifiers never raise to their caller. Delivery failures are logged and
reported as a False return so that a flaky chat API cannot stall a
check pass.
"""

import html
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, List, Optional, Protocol, Sequence, Tuple

import structlog
import telegram.error
from telegram import Bot
from telegram.constants import ParseMode

from stockwatch.config import settings
from stockwatch.core.events import (
    EventDispatcher,
    TargetPriceDropped,
    TargetPriceReached,
    TargetStateChanged,
    WatchBackInStock,
    WatchFoundNew,
)

logger = structlog.get_logger(__name__)

# Discovery alerts list at most this many products
_MAX_LISTED_ITEMS = 10


class Notifier(Protocol):
    async def notify_stock_changed(self, target: Any, cart_url: Optional[str] = None) -> bool: ...

    async def notify_price_dropped(self, target: Any, old_price: Decimal, new_price: Decimal) -> bool: ...

    async def notify_target_price_reached(self, target: Any, price: Decimal) -> bool: ...

    async def notify_discovery(
        self,
        watch: Any,
        new_items: Optional[Sequence[Any]] = None,
        back_in_stock_items: Optional[Sequence[Any]] = None,
    ) -> bool: ...

    async def close(self) -> None: ...


# ---------------------------------------------------------------------------
# Message formatting (HTML parse mode)
# ---------------------------------------------------------------------------


def _fmt_price(price: Optional[Decimal], currency: str = "EUR") -> str:
    if price is None:
        return "N/A"
    return f"{Decimal(price):.2f} {currency}"


def _link(text: str, url: str) -> str:
    return f'<a href="{html.escape(url, quote=True)}">{html.escape(text)}</a>'


def format_stock_alert(target: Any, cart_url: Optional[str] = None) -> str:
    lines = [
        "✅ <b>Back in stock</b>",
        f"📦 {_link(target.name, target.url)}",
        f"💰 {_fmt_price(target.current_price, target.currency)}",
    ]
    if target.max_order_qty:
        lines.append(f"🔢 Max per order: {target.max_order_qty}")
    if cart_url:
        lines.append(f"🛒 {_link('Open cart', cart_url)}")
    return "\n".join(lines)


def format_price_drop(target: Any, old_price: Decimal, new_price: Decimal) -> str:
    pct = (Decimal(old_price) - Decimal(new_price)) / Decimal(old_price) * 100 if old_price else Decimal(0)
    return "\n".join(
        [
            "📉 <b>Price drop</b>",
            f"📦 {_link(target.name, target.url)}",
            f"💰 {_fmt_price(old_price, target.currency)} → {_fmt_price(new_price, target.currency)} (-{pct:.1f}%)",
        ]
    )


def format_target_price(target: Any, price: Decimal) -> str:
    return "\n".join(
        [
            "🎯 <b>Target price reached</b>",
            f"📦 {_link(target.name, target.url)}",
            f"💰 Now {_fmt_price(price, target.currency)}, target {_fmt_price(target.target_price, target.currency)}",
        ]
    )


def _item_lines(items: Sequence[Any]) -> List[str]:
    lines = []
    for item in items[:_MAX_LISTED_ITEMS]:
        stock = "✅" if item.in_stock is True else ("❌" if item.in_stock is False else "❔")
        lines.append(f"{stock} {_link(item.name, item.url)} · {_fmt_price(item.price)}")
    if len(items) > _MAX_LISTED_ITEMS:
        lines.append(f"… and {len(items) - _MAX_LISTED_ITEMS} more")
    return lines


def format_discovery(
    watch: Any,
    new_items: Sequence[Any] = (),
    back_in_stock_items: Sequence[Any] = (),
) -> str:
    keyword = html.escape(watch.keyword)
    lines: List[str] = []
    if new_items:
        lines.append(f"🔎 <b>{len(new_items)} new for “{keyword}”</b>")
        lines.extend(_item_lines(new_items))
    if back_in_stock_items:
        if lines:
            lines.append("")
        lines.append(f"🔁 <b>{len(back_in_stock_items)} back in stock for “{keyword}”</b>")
        lines.extend(_item_lines(back_in_stock_items))
    return "\n".join(lines)


def in_quiet_hours(window: Optional[Tuple[int, int]], hour: int) -> bool:
    """Whether hour falls in a [start, end) window that may wrap midnight."""
    if window is None:
        return False
    start, end = window
    if start == end:
        return False
    if start > end:
        return hour >= start or hour < end
    return start <= hour < end


# ---------------------------------------------------------------------------
# Notifiers
# ---------------------------------------------------------------------------


class TelegramNotifier:
    """Sends alerts to one Telegram chat.

    When the bot token or chat id is missing, every method logs a warning
    once at construction and then returns False without network access.
    """

    def __init__(
        self,
        bot_token: Optional[str] = None,
        chat_id: Optional[str] = None,
        quiet_hours: Optional[Tuple[int, int]] = None,
        bot: Optional[Bot] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        token = bot_token if bot_token is not None else settings.TELEGRAM_BOT_TOKEN
        self.chat_id = chat_id if chat_id is not None else settings.TELEGRAM_CHAT_ID
        self.quiet_hours = quiet_hours
        self._clock = clock
        self._enabled = bool((token or bot is not None) and self.chat_id)
        self._bot: Optional[Bot] = bot or (Bot(token=token) if self._enabled else None)
        self._initialized = bot is not None
        self.logger = logger.bind(service="telegram_notifier")

        if not self._enabled:
            self.logger.warning(
                "telegram_notifier_disabled",
                reason="TELEGRAM_BOT_TOKEN or TELEGRAM_CHAT_ID is not set",
            )

    @property
    def enabled(self) -> bool:
        return self._enabled

    async def send_message(self, text: str) -> bool:
        """Deliver one HTML message to the configured chat."""
        if not self._enabled or not text:
            return False
        if in_quiet_hours(self.quiet_hours, self._clock().hour):
            self.logger.info("telegram_quiet_hours_suppressed")
            return False
        try:
            if not self._initialized:
                await self._bot.initialize()
                self._initialized = True
            await self._bot.send_message(
                chat_id=self.chat_id,
                text=text,
                parse_mode=ParseMode.HTML,
                disable_web_page_preview=True,
            )
            return True
        except telegram.error.TelegramError as exc:
            self.logger.error("telegram_send_failed", chat_id=self.chat_id, error=str(exc))
            return False

    async def notify_stock_changed(self, target: Any, cart_url: Optional[str] = None) -> bool:
        return await self.send_message(format_stock_alert(target, cart_url))

    async def notify_price_dropped(self, target: Any, old_price: Decimal, new_price: Decimal) -> bool:
        return await self.send_message(format_price_drop(target, old_price, new_price))

    async def notify_target_price_reached(self, target: Any, price: Decimal) -> bool:
        return await self.send_message(format_target_price(target, price))

    async def notify_discovery(
        self,
        watch: Any,
        new_items: Optional[Sequence[Any]] = None,
        back_in_stock_items: Optional[Sequence[Any]] = None,
    ) -> bool:
        return await self.send_message(format_discovery(watch, new_items or (), back_in_stock_items or ()))

    async def close(self) -> None:
        if self._bot is not None and self._initialized:
            try:
                await self._bot.shutdown()
            except telegram.error.TelegramError as exc:
                self.logger.warning("telegram_shutdown_failed", error=str(exc))
            self._initialized = False


class LoggingNotifier:
    """Writes alerts to the log instead of a chat; used when Telegram is off."""

    def __init__(self):
        self.logger = logger.bind(service="logging_notifier")

    async def notify_stock_changed(self, target: Any, cart_url: Optional[str] = None) -> bool:
        self.logger.info("alert_back_in_stock", target=target.name, url=target.url, cart_url=cart_url)
        return True

    async def notify_price_dropped(self, target: Any, old_price: Decimal, new_price: Decimal) -> bool:
        self.logger.info("alert_price_drop", target=target.name, old_price=str(old_price), new_price=str(new_price))
        return True

    async def notify_target_price_reached(self, target: Any, price: Decimal) -> bool:
        self.logger.info("alert_target_price", target=target.name, price=str(price))
        return True

    async def notify_discovery(
        self,
        watch: Any,
        new_items: Optional[Sequence[Any]] = None,
        back_in_stock_items: Optional[Sequence[Any]] = None,
    ) -> bool:
        self.logger.info(
            "alert_discovery",
            keyword=watch.keyword,
            new=[i.url for i in new_items or ()],
            back_in_stock=[i.url for i in back_in_stock_items or ()],
        )
        return True

    async def close(self) -> None:
        return None


def build_notifier() -> Notifier:
    """Telegram when configured, otherwise log-only."""
    if settings.TELEGRAM_BOT_TOKEN and settings.TELEGRAM_CHAT_ID:
        return TelegramNotifier(quiet_hours=settings.get_quiet_hours())
    return LoggingNotifier()


# ---------------------------------------------------------------------------
# Event wiring
# ---------------------------------------------------------------------------


class AlertHandler:
    """Subscribes to domain events, applies per-target/watch notification
    flags, sends alerts and logs the ones that went out."""

    def __init__(self, notifier: Notifier, tracking: Any = None):
        self.notifier = notifier
        self.tracking = tracking
        self.logger = logger.bind(service="alert_handler")

    def register(self, dispatcher: EventDispatcher) -> None:
        dispatcher.subscribe(TargetStateChanged, self.on_state_changed)
        dispatcher.subscribe(TargetPriceDropped, self.on_price_dropped)
        dispatcher.subscribe(TargetPriceReached, self.on_price_reached)
        dispatcher.subscribe(WatchFoundNew, self.on_watch_found_new)
        dispatcher.subscribe(WatchBackInStock, self.on_watch_back_in_stock)

    async def on_state_changed(self, event: TargetStateChanged) -> None:
        target = event.target
        if not event.current or not target.notify_on_stock:
            return
        if await self.notifier.notify_stock_changed(target, event.cart_url):
            await self._record(
                "stock_alert",
                f"Back in stock, price {_fmt_price(target.current_price, target.currency)}",
                target_id=target.id,
            )

    async def on_price_dropped(self, event: TargetPriceDropped) -> None:
        target = event.target
        if not target.notify_on_price_drop:
            return
        if await self.notifier.notify_price_dropped(target, event.old_price, event.new_price):
            await self._record(
                "price_drop",
                f"Price dropped from {event.old_price} to {event.new_price}",
                target_id=target.id,
            )

    async def on_price_reached(self, event: TargetPriceReached) -> None:
        target = event.target
        if await self.notifier.notify_target_price_reached(target, event.price):
            await self._record(
                "target_price",
                f"Target price {target.target_price} reached at {event.price}",
                target_id=target.id,
            )

    async def on_watch_found_new(self, event: WatchFoundNew) -> None:
        watch = event.watch
        if not event.items or not watch.notify_new_products:
            return
        if await self.notifier.notify_discovery(watch, new_items=event.items):
            await self._record(
                "keyword_watch",
                f"{len(event.items)} new products for '{watch.keyword}'",
                watch_id=watch.id,
            )

    async def on_watch_back_in_stock(self, event: WatchBackInStock) -> None:
        watch = event.watch
        if not event.items or not watch.notify_in_stock:
            return
        if await self.notifier.notify_discovery(watch, back_in_stock_items=event.items):
            await self._record(
                "keyword_back_in_stock",
                f"{len(event.items)} products back in stock for '{watch.keyword}'",
                watch_id=watch.id,
            )

    async def _record(self, type: str, message: str, target_id=None, watch_id=None) -> None:
        if self.tracking is None:
            return
        await self.tracking.record_notification(type, message, target_id=target_id, watch_id=watch_id)
