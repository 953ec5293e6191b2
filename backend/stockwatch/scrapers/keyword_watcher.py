"""Keyword watches: periodic discovery runs and their bookkeeping."""

import asyncio
import random
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Tuple
from uuid import UUID

import structlog

from stockwatch.config import settings
from stockwatch.core.events import EventDispatcher, WatchBackInStock, WatchFoundNew
from stockwatch.core.exceptions import NotFoundError, StockWatchException
from stockwatch.discovery.orchestrator import DiscoveryOrchestrator
from stockwatch.scrapers.base import DiscoveredProduct
from stockwatch.scrapers.checker import StockChecker, is_due, utcnow
from stockwatch.scrapers.platform import BUILTIN_STORES, PLATFORM_STORE
from stockwatch.services.tracking_service import KEYWORD_INTERVAL_KEY, TrackingService

logger = structlog.get_logger(__name__)

VALID_TARGET_STORES = BUILTIN_STORES + ("custom",)


@dataclass
class WatchResult:
    """Outcome of one watch run."""

    watch_id: UUID
    total: int = 0
    matched: int = 0
    new: int = 0
    back_in_stock: int = 0
    added: int = 0
    skipped: bool = False
    error: Optional[str] = None


def _as_decimal(value: Any) -> Optional[Decimal]:
    if value is None:
        return None
    return Decimal(str(value))


def apply_price_filter(
    products: List[DiscoveredProduct],
    min_price: Any = None,
    max_price: Any = None,
) -> List[DiscoveredProduct]:
    """Drop products priced outside [min_price, max_price]; unpriced ones pass."""
    low, high = _as_decimal(min_price), _as_decimal(max_price)
    kept = []
    for product in products:
        if product.price is not None:
            if low is not None and product.price < low:
                continue
            if high is not None and product.price > high:
                continue
        kept.append(product)
    return kept


def split_new_and_restocked(
    products: List[DiscoveredProduct],
    known_urls: Set[str],
    known_stock: Dict[str, bool],
) -> Tuple[List[DiscoveredProduct], List[DiscoveredProduct]]:
    """(products not seen before, products seen out of stock that are now in stock)."""
    new = [p for p in products if p.url not in known_urls]
    restocked = [p for p in products if p.in_stock is True and known_stock.get(p.url) is False]
    return new, restocked


def next_known_urls(
    known_urls: Set[str],
    tracked_urls: Set[str],
    seen_urls: Set[str],
) -> Set[str]:
    """Known URLs still tracked as targets, plus everything seen this run."""
    return (known_urls & tracked_urls) | seen_urls


class KeywordWatcher:
    """Runs keyword watches one at a time.

    A watch never runs twice concurrently; check_all_watches() walks the
    due watches sequentially with a pause between stores.
    """

    def __init__(
        self,
        tracking: TrackingService,
        orchestrator: DiscoveryOrchestrator,
        checker: StockChecker,
        events: EventDispatcher,
        watch_delay_seconds: Tuple[float, float] = (3.0, 5.0),
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rand: Callable[[float, float], float] = random.uniform,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.tracking = tracking
        self.orchestrator = orchestrator
        self.checker = checker
        self.events = events
        self.watch_delay_seconds = watch_delay_seconds
        self._sleep = sleep
        self._rand = rand
        self._clock = clock
        self._checking_watches: Set[UUID] = set()
        self._running_all = False
        self.logger = logger.bind(service="keyword_watcher")

    @property
    def is_checking(self) -> bool:
        return self._running_all

    async def global_interval(self) -> int:
        value = await self.tracking.get_int_setting(KEYWORD_INTERVAL_KEY, settings.KEYWORD_CHECK_INTERVAL_MINUTES)
        return max(1, value)

    async def check_watch(self, watch_id: UUID) -> WatchResult:
        """Run one watch now.

        Raises:
            NotFoundError: No watch with this id
        """
        watch = await self.tracking.get_watch(watch_id)
        if watch is None:
            raise NotFoundError("KeywordWatch", str(watch_id))
        return await self._guarded(watch)

    async def check_all_watches(self) -> Dict[str, Any]:
        """Run every active, due watch in turn. Never raises."""
        if self._running_all:
            self.logger.info("watch_pass_already_running")
            return {"skipped": True}

        self._running_all = True
        stats: Dict[str, Any] = {"skipped": False, "active": 0, "due": 0, "new": 0, "failed": 0}
        try:
            watches = await self.tracking.list_active_watches()
            interval = await self.global_interval()
            now = self._clock()
            due = [
                w for w in watches
                if is_due(w.last_checked_at, w.check_interval_minutes, interval, now)
            ]
            stats["active"] = len(watches)
            stats["due"] = len(due)
            self.logger.info("watch_pass_started", active=len(watches), due=len(due))

            for position, watch in enumerate(due):
                if position:
                    low, high = self.watch_delay_seconds
                    await self._sleep(self._rand(low, high))
                result = await self._guarded(watch)
                stats["new"] += result.new
                if result.error:
                    stats["failed"] += 1
            self.logger.info("watch_pass_completed", **stats)
        except Exception as e:
            self.logger.error("watch_pass_failed", error=str(e), exc_info=True)
            stats["error"] = str(e)
        finally:
            self._running_all = False
        return stats

    async def _guarded(self, watch: Any) -> WatchResult:
        if watch.id in self._checking_watches:
            self.logger.info("watch_already_running", watch_id=str(watch.id), keyword=watch.keyword)
            return WatchResult(watch_id=watch.id, skipped=True)

        self._checking_watches.add(watch.id)
        try:
            return await self._run_watch(watch)
        except Exception as e:
            self.logger.error("watch_check_failed", watch_id=str(watch.id), keyword=watch.keyword, error=str(e), exc_info=True)
            await self.tracking.touch_watch(watch.id, self._clock())
            return WatchResult(watch_id=watch.id, error=str(e))
        finally:
            self._checking_watches.discard(watch.id)

    async def _run_watch(self, watch: Any) -> WatchResult:
        self.logger.info("watch_check_started", watch_id=str(watch.id), keyword=watch.keyword, store=watch.store_url)
        found = await self.orchestrator.discover(watch)
        matched = apply_price_filter(found, watch.min_price, watch.max_price)

        known_urls = set(watch.known_product_urls or [])
        known_stock = dict(watch.known_stock_map or {})
        new, restocked = split_new_and_restocked(matched, known_urls, known_stock)

        if new:
            await self.events.publish(WatchFoundNew(watch, items=new))
        if restocked:
            await self.events.publish(WatchBackInStock(watch, items=restocked))

        added = await self._auto_add(watch, new) if watch.auto_add_tracking and new else 0

        for product in matched:
            if product.in_stock is not None:
                known_stock[product.url] = product.in_stock
        tracked_urls = await self.tracking.list_target_urls()
        known = next_known_urls(known_urls, tracked_urls, {p.url for p in matched})

        await self.tracking.update_watch_state(
            watch.id,
            known_product_urls=known,
            known_stock_map=known_stock,
            last_found_count=len(matched),
            last_checked_at=self._clock(),
        )

        result = WatchResult(
            watch_id=watch.id,
            total=len(found),
            matched=len(matched),
            new=len(new),
            back_in_stock=len(restocked),
            added=added,
        )
        self.logger.info(
            "watch_checked",
            watch_id=str(watch.id),
            keyword=watch.keyword,
            total=result.total,
            matched=result.matched,
            new=result.new,
            back_in_stock=result.back_in_stock,
            added=result.added,
        )
        return result

    async def _auto_add(self, watch: Any, products: List[DiscoveredProduct]) -> int:
        """Insert untracked products as targets and check each once."""
        store = watch.store_name if watch.store_name in VALID_TARGET_STORES else PLATFORM_STORE
        tracked = await self.tracking.list_target_urls()
        inserted = []
        for product in products:
            if product.url in tracked:
                continue
            target = await self.tracking.insert_target(
                name=product.name,
                url=product.url,
                store=store,
                current_price=product.price,
                in_stock=bool(product.in_stock),
                image_url=product.image_url,
            )
            if target is not None:
                inserted.append(target)

        for target in inserted:
            try:
                await self.checker.check_one(target.id)
            except StockWatchException as e:
                self.logger.warning("auto_added_check_failed", target_id=str(target.id), error=str(e))
        if inserted:
            self.logger.info("watch_targets_added", watch_id=str(watch.id), count=len(inserted))
        return len(inserted)
