"""Check scheduler core: picks due targets and checks them.

A pass selects every target whose effective interval has elapsed, runs
the extractor for each with bounded concurrency and a politeness delay,
persists the outcome and publishes stock / price events. One pass runs
at a time; check_one() serves a single target out-of-band.
"""

import asyncio
import random
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple
from uuid import UUID

import structlog

from stockwatch.config import settings
from stockwatch.core.events import EventDispatcher, TargetPriceDropped, TargetPriceReached, TargetStateChanged
from stockwatch.core.exceptions import NotFoundError
from stockwatch.scrapers.base import SelectorProfile
from stockwatch.scrapers.extractor import EvidenceExtractor
from stockwatch.scrapers.order_limit import OrderLimitProber
from stockwatch.scrapers.platform import (
    PLATFORM_STORE,
    build_cart_url,
    cart_items_for_origin,
    effective_store_name,
    store_origin,
)
from stockwatch.services.tracking_service import (
    CHECK_INTERVAL_KEY,
    LAST_CHECK_AT_KEY,
    TOTAL_CHECKS_KEY,
    TrackingService,
)

logger = structlog.get_logger(__name__)

FALLBACK_PROFILE = "custom"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; treat them as UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def clamp_interval(value: int, maximum: int) -> int:
    return max(1, min(int(value), maximum))


def effective_interval(own_interval: Optional[int], global_interval: int) -> int:
    """Per-item interval if positive, else the global one."""
    if own_interval and own_interval > 0:
        return own_interval
    return global_interval


def is_due(
    last_checked_at: Optional[datetime],
    own_interval: Optional[int],
    global_interval: int,
    now: datetime,
    force: bool = False,
) -> bool:
    """Whether an item with this schedule should be checked at now."""
    if force or last_checked_at is None:
        return True
    elapsed_minutes = (now - ensure_utc(last_checked_at)).total_seconds() / 60.0
    return elapsed_minutes >= effective_interval(own_interval, global_interval)


@dataclass
class CheckOutcome:
    """Result of checking one target."""

    target_id: UUID
    ok: bool
    in_stock: Optional[bool] = None
    price: Optional[Decimal] = None
    came_in_stock: bool = False
    error: Optional[str] = None


class StockChecker:
    """Runs check passes over monitored targets.

    Collaborators are injected; delays, randomness and the clock are
    injectable so passes can be tested without real timers.
    """

    def __init__(
        self,
        tracking: TrackingService,
        extractor: EvidenceExtractor,
        prober: OrderLimitProber,
        events: EventDispatcher,
        concurrency: int = 3,
        jitter_seconds: Tuple[float, float] = (0.8, 2.0),
        price_drop_threshold: Decimal = Decimal("0.05"),
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rand: Callable[[float, float], float] = random.uniform,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.tracking = tracking
        self.extractor = extractor
        self.prober = prober
        self.events = events
        self.concurrency = max(1, concurrency)
        self.jitter_seconds = jitter_seconds
        self.price_drop_threshold = Decimal(str(price_drop_threshold))
        self._sleep = sleep
        self._rand = rand
        self._clock = clock
        self._running = False
        self.last_check_at: Optional[datetime] = None
        self.check_count = 0
        self.logger = logger.bind(service="stock_checker")

    @property
    def is_checking(self) -> bool:
        return self._running

    async def global_interval(self) -> int:
        """Global interval in minutes: app setting, else environment, clamped."""
        value = await self.tracking.get_int_setting(CHECK_INTERVAL_KEY, settings.CHECK_INTERVAL_MINUTES)
        return clamp_interval(value, settings.MAX_CHECK_INTERVAL_MINUTES)

    async def run_due_checks(self, force: bool = False) -> Dict[str, Any]:
        """Check every due target once.

        Never raises. Returns a stats dict; {"skipped": True} when another
        pass is already running.
        """
        if self._running:
            self.logger.info("check_pass_already_running")
            return {"skipped": True}

        self._running = True
        stats: Dict[str, Any] = {"skipped": False, "total": 0, "due": 0, "succeeded": 0, "failed": 0}
        try:
            now = self._clock()
            interval = await self.global_interval()
            targets = await self.tracking.list_targets()
            due = [
                t for t in targets
                if is_due(t.last_checked_at, t.check_interval_minutes, interval, now, force)
            ]
            stats["total"] = len(targets)
            stats["due"] = len(due)
            self.logger.info("check_pass_started", total=len(targets), due=len(due), force=force)

            if due:
                semaphore = asyncio.Semaphore(self.concurrency)
                outcomes = await asyncio.gather(*(self._run_slot(t, force, semaphore) for t in due))
                stats["succeeded"] = sum(1 for o in outcomes if o.ok)
                stats["failed"] = len(outcomes) - stats["succeeded"]

            finished = self._clock()
            self.last_check_at = finished
            self.check_count += 1
            await self.tracking.record_check_run(finished)
            self.logger.info("check_pass_completed", **stats)
        except Exception as e:
            self.logger.error("check_pass_failed", error=str(e), exc_info=True)
            stats["error"] = str(e)
        finally:
            self._running = False
        return stats

    async def check_one(self, target_id: UUID, force: bool = False) -> CheckOutcome:
        """Check a single target immediately, even during a running pass.

        Raises:
            NotFoundError: No target with this id
        """
        target = await self.tracking.get_target(target_id)
        if target is None:
            raise NotFoundError("MonitoredTarget", str(target_id))
        return await self._check_isolated(target, force)

    async def _run_slot(self, target: Any, force: bool, semaphore: asyncio.Semaphore) -> CheckOutcome:
        async with semaphore:
            outcome = await self._check_isolated(target, force)
            low, high = self.jitter_seconds
            await self._sleep(self._rand(low, high))
            return outcome

    async def _check_isolated(self, target: Any, force: bool) -> CheckOutcome:
        try:
            return await self.check_target(target, force_notify=force)
        except Exception as e:
            self.logger.error(
                "target_check_failed",
                target_id=str(target.id),
                url=target.url,
                error=str(e),
                exc_info=True,
            )
            try:
                await self.tracking.update_target(target.id, last_checked_at=self._clock())
            except Exception as update_error:
                self.logger.error("last_checked_update_failed", target_id=str(target.id), error=str(update_error))
            return CheckOutcome(target_id=target.id, ok=False, error=str(e))

    async def _profile_for(self, store: str, overrides: Optional[dict]) -> SelectorProfile:
        row = await self.tracking.get_store_profile(store)
        if row is None and store != FALLBACK_PROFILE:
            row = await self.tracking.get_store_profile(FALLBACK_PROFILE)
        profile = SelectorProfile.from_model(row) if row is not None else SelectorProfile(name=store)
        return profile.with_overrides(overrides)

    async def check_target(self, target: Any, force_notify: bool = False) -> CheckOutcome:
        """Extract, persist and publish events for one target.

        Raises:
            UnsafeUrlError: The target URL failed validation
        """
        now = self._clock()
        store = effective_store_name(target.store, target.url)
        profile = await self._profile_for(store, target.selector_overrides)

        evidence = await self.extractor.extract(target.url, profile)
        if evidence is None:
            self.logger.warning("target_unreadable", target_id=str(target.id), url=target.url)
            await self.tracking.update_target(target.id, last_checked_at=now)
            return CheckOutcome(target_id=target.id, ok=False, error="page could not be fetched")

        if evidence.is_recognized_platform:
            store = PLATFORM_STORE
        if store != target.store:
            self.logger.info("target_reclassified", target_id=str(target.id), old=target.store, new=store)

        was_in_stock = bool(target.in_stock)
        now_in_stock = evidence.in_stock_flag
        old_price = target.current_price
        new_price = evidence.price
        came_in_stock = now_in_stock and (not was_in_stock or force_notify)

        fields: Dict[str, Any] = {"in_stock": now_in_stock, "store": store, "last_checked_at": now}
        if new_price is not None:
            fields["current_price"] = new_price
        if evidence.image_url:
            fields["image_url"] = evidence.image_url
        if evidence.variant_id:
            fields["variant_id"] = evidence.variant_id
        if now_in_stock:
            fields["last_in_stock_at"] = now

        if came_in_stock and store == PLATFORM_STORE and evidence.variant_id:
            fields["max_order_qty"] = await self.prober.probe_limit(
                store_origin(target.url),
                evidence.variant_id,
                evidence.stock_quantity_hint,
            )

        updated = await self.tracking.update_target(target.id, **fields) or target
        await self.tracking.append_history(target.id, now_in_stock, new_price)

        self.logger.info(
            "target_checked",
            target_id=str(target.id),
            in_stock=evidence.in_stock,
            price=str(new_price) if new_price is not None else None,
            store=store,
        )

        # Ambiguous evidence is persisted but never alerts
        if evidence.in_stock is not None:
            await self._publish_events(updated, store, was_in_stock, came_in_stock, old_price, new_price)

        return CheckOutcome(
            target_id=target.id,
            ok=True,
            in_stock=evidence.in_stock,
            price=new_price,
            came_in_stock=came_in_stock,
        )

    async def _publish_events(
        self,
        target: Any,
        store: str,
        was_in_stock: bool,
        came_in_stock: bool,
        old_price: Optional[Decimal],
        new_price: Optional[Decimal],
    ) -> None:
        if came_in_stock:
            cart_url = await self._cart_url(target) if store == PLATFORM_STORE else None
            await self.events.publish(TargetStateChanged(target, previous=was_in_stock, current=True, cart_url=cart_url))

        if new_price is not None and old_price is not None:
            if Decimal(old_price) - new_price >= self.price_drop_threshold:
                await self.events.publish(TargetPriceDropped(target, old_price=Decimal(old_price), new_price=new_price))

        # Target price alerts fire when crossing into the target, not on every check below it
        target_price = target.target_price
        if target.in_stock and new_price is not None and target_price is not None and new_price <= target_price:
            already_below = was_in_stock and old_price is not None and Decimal(old_price) <= target_price
            if not already_below:
                await self.events.publish(TargetPriceReached(target, price=new_price))

    async def _cart_url(self, target: Any) -> Optional[str]:
        """Cart permalink for every in-stock platform target on target's origin."""
        origin = store_origin(target.url)
        in_stock = await self.tracking.list_in_stock_targets(PLATFORM_STORE)
        items = cart_items_for_origin(in_stock, origin)
        return build_cart_url(origin, items)

    async def status(self) -> Dict[str, Any]:
        return {
            "is_checking": self._running,
            "check_count": self.check_count,
            "last_check_at": self.last_check_at.isoformat() if self.last_check_at else None,
            "persisted_last_check_at": await self.tracking.get_setting(LAST_CHECK_AT_KEY),
            "persisted_total_checks": await self.tracking.get_int_setting(TOTAL_CHECKS_KEY, 0),
            "global_interval_minutes": await self.global_interval(),
        }
