"""Tests for the stock checker.

Tests cover:
- Due-time arithmetic
- Check passes against the in-memory database with a mocked extractor
- Stock, price-drop and target-price events
- Order-limit probing on restock and failure isolation
"""

import asyncio
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

import pytest
import pytest_asyncio

from stockwatch.core.events import EventDispatcher, TargetPriceDropped, TargetPriceReached, TargetStateChanged
from stockwatch.core.exceptions import NotFoundError, UnsafeUrlError
from stockwatch.db.seed import seed_store_profiles
from stockwatch.models.monitored_target import MonitoredTarget
from stockwatch.scrapers.base import ScrapeEvidence
from stockwatch.scrapers.checker import CheckOutcome, StockChecker, clamp_interval, effective_interval, is_due
from stockwatch.services.tracking_service import CHECK_INTERVAL_KEY, TOTAL_CHECKS_KEY

SHOP = "https://cards.example.com"
START = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class Clock:
    def __init__(self, now=START):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


async def add_target(session_factory, handle="booster-box", **fields):
    values = {"name": f"Product {handle}", "url": f"{SHOP}/products/{handle}", "store": "shopify"}
    values.update(fields)
    async with session_factory() as db:
        target = MonitoredTarget(**values)
        db.add(target)
        await db.commit()
        await db.refresh(target)
        return target


def evidence(in_stock=True, price="19.99", variant_id="111", platform=True, hint=0):
    return ScrapeEvidence(
        in_stock=in_stock,
        price=Decimal(price) if price is not None else None,
        variant_id=variant_id,
        stock_quantity_hint=hint,
        is_recognized_platform=platform,
    )


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def extractor():
    mock = MagicMock()
    mock.extract = AsyncMock(return_value=evidence())
    return mock


@pytest.fixture
def prober():
    mock = MagicMock()
    mock.probe_limit = AsyncMock(return_value=3)
    return mock


@pytest.fixture
def received():
    return []


@pytest.fixture
def events(received):
    dispatcher = EventDispatcher()

    async def collect(event):
        received.append(event)

    for event_type in (TargetStateChanged, TargetPriceDropped, TargetPriceReached):
        dispatcher.subscribe(event_type, collect)
    return dispatcher


@pytest.fixture
def sleep():
    return AsyncMock()


@pytest_asyncio.fixture
async def checker(tracking, extractor, prober, events, sleep, clock):
    await tracking.set_setting(CHECK_INTERVAL_KEY, 5)
    return StockChecker(
        tracking=tracking,
        extractor=extractor,
        prober=prober,
        events=events,
        concurrency=1,
        jitter_seconds=(0.8, 2.0),
        sleep=sleep,
        rand=lambda low, high: low,
        clock=clock,
    )


# ============================================================================
# TESTS: SCHEDULING ARITHMETIC
# ============================================================================

class TestDueTimes:
    """Test interval selection and due checks."""

    def test_never_checked_is_due(self):
        """A target without last_checked_at is always due."""
        assert is_due(None, 0, 5, START) is True

    def test_recently_checked_not_due(self):
        """Two minutes into a five minute interval is not due."""
        assert is_due(START - timedelta(minutes=2), 0, 5, START) is False
        assert is_due(START - timedelta(minutes=5), 0, 5, START) is True

    def test_own_interval_wins(self):
        """A positive per-target interval replaces the global one."""
        assert is_due(START - timedelta(minutes=2), 1, 5, START) is True
        assert effective_interval(0, 5) == 5
        assert effective_interval(None, 5) == 5
        assert effective_interval(15, 5) == 15

    def test_force(self):
        """force makes everything due."""
        assert is_due(START, 0, 5, START, force=True) is True

    def test_naive_timestamps_are_utc(self):
        """Naive datetimes from SQLite are read as UTC."""
        naive = (START - timedelta(minutes=10)).replace(tzinfo=None)
        assert is_due(naive, 0, 5, START) is True

    def test_clamp_interval(self):
        """The global interval stays within 1..maximum."""
        assert clamp_interval(0, 59) == 1
        assert clamp_interval(500, 59) == 59
        assert clamp_interval(7, 59) == 7


# ============================================================================
# TESTS: CHECK PASSES
# ============================================================================

class TestCheckPass:
    """Test run_due_checks over the database."""

    async def test_first_pass_then_not_due(self, checker, session_factory, tracking, clock, extractor):
        """A new target is checked once, and not again two minutes later."""
        target = await add_target(session_factory)

        stats = await checker.run_due_checks()

        assert stats["due"] == 1
        assert stats["succeeded"] == 1
        saved = await tracking.get_target(target.id)
        assert saved.last_checked_at is not None

        clock.advance(minutes=2)
        stats = await checker.run_due_checks()

        assert stats["due"] == 0
        assert extractor.extract.await_count == 1
        assert await tracking.get_int_setting(TOTAL_CHECKS_KEY, 0) == 2

    async def test_forced_pass_checks_everything(self, checker, session_factory, clock, extractor, sleep):
        """force=True ignores intervals; every slot sleeps its jitter."""
        for handle in ("a", "b", "c"):
            await add_target(session_factory, handle=handle, last_checked_at=START)

        stats = await checker.run_due_checks(force=True)

        assert stats["due"] == 3
        assert extractor.extract.await_count == 3
        assert sleep.await_count == 3
        sleep.assert_awaited_with(0.8)

    async def test_failure_is_isolated(self, checker, session_factory, tracking, extractor):
        """One failing target still gets last_checked_at; the others succeed."""
        bad = await add_target(session_factory, handle="bad")
        await add_target(session_factory, handle="good")

        async def extract(url, profile):
            if url.endswith("/bad"):
                raise UnsafeUrlError(url, "private address")
            return evidence()

        extractor.extract.side_effect = extract

        stats = await checker.run_due_checks()

        assert stats["succeeded"] == 1
        assert stats["failed"] == 1
        assert (await tracking.get_target(bad.id)).last_checked_at is not None

    async def test_unreadable_page(self, checker, session_factory, tracking, extractor):
        """No evidence at all only advances last_checked_at."""
        target = await add_target(session_factory, in_stock=True)
        extractor.extract.return_value = None

        outcome = await checker.check_one(target.id)

        assert outcome.ok is False
        saved = await tracking.get_target(target.id)
        assert saved.in_stock is True
        assert saved.last_checked_at is not None
        assert await tracking.get_history(target.id) == []

    async def test_pass_not_reentrant(self, checker):
        """A pass requested during a pass is skipped."""
        checker._running = True
        assert await checker.run_due_checks() == {"skipped": True}

    async def test_unknown_target(self, checker):
        """check_one raises NotFoundError for unknown ids."""
        with pytest.raises(NotFoundError):
            await checker.check_one(uuid4())

    async def test_status(self, checker, session_factory):
        """status() reports in-memory and persisted counters."""
        await add_target(session_factory)
        await checker.run_due_checks()

        status = await checker.status()

        assert status["is_checking"] is False
        assert status["check_count"] == 1
        assert status["persisted_total_checks"] == 1
        assert status["global_interval_minutes"] == 5
        assert status["last_check_at"] == START.isoformat()


# ============================================================================
# TESTS: STATE CHANGES AND EVENTS
# ============================================================================

class TestCheckEvents:
    """Test what a single check persists and publishes."""

    async def test_restock_probes_and_alerts_with_cart(self, checker, session_factory, tracking, prober, received):
        """Coming into stock probes the limit and alerts with a cart link."""
        target = await add_target(session_factory, in_stock=False)

        outcome = await checker.check_one(target.id)

        assert outcome.came_in_stock is True
        prober.probe_limit.assert_awaited_once_with(SHOP, "111", 0)
        saved = await tracking.get_target(target.id)
        assert saved.in_stock is True
        assert saved.max_order_qty == 3
        assert saved.variant_id == "111"
        assert saved.current_price == Decimal("19.99")

        changes = [e for e in received if isinstance(e, TargetStateChanged)]
        assert len(changes) == 1
        assert changes[0].previous is False
        assert changes[0].cart_url == f"{SHOP}/cart/111:3?return_to=/cart"

        history = await tracking.get_history(target.id)
        assert [(h.in_stock, h.price) for h in history] == [(True, Decimal("19.99"))]

    async def test_still_in_stock_does_not_alert(self, checker, session_factory, prober, received):
        """Staying in stock publishes nothing unless forced."""
        target = await add_target(session_factory, in_stock=True, current_price=Decimal("19.99"))

        await checker.check_one(target.id)
        assert received == []
        prober.probe_limit.assert_not_awaited()

        await checker.check_one(target.id, force=True)
        assert [type(e) for e in received] == [TargetStateChanged]

    async def test_ambiguous_evidence_is_silent(self, checker, session_factory, tracking, extractor, received):
        """Unknown stock is stored as not in stock and raises no event."""
        target = await add_target(session_factory, in_stock=False, current_price=Decimal("30.00"))
        extractor.extract.return_value = evidence(in_stock=None, price="10.00", platform=False)

        outcome = await checker.check_one(target.id)

        assert outcome.in_stock is None
        assert received == []
        saved = await tracking.get_target(target.id)
        assert saved.in_stock is False
        assert saved.current_price == Decimal("10.00")

    async def test_price_drop_threshold(self, checker, session_factory, extractor, received):
        """Drops at or above the threshold alert; tiny ones do not."""
        target = await add_target(session_factory, in_stock=True, current_price=Decimal("20.00"))

        extractor.extract.return_value = evidence(price="19.98")
        await checker.check_one(target.id)
        assert received == []

        extractor.extract.return_value = evidence(price="15.00")
        await checker.check_one(target.id)
        drops = [e for e in received if isinstance(e, TargetPriceDropped)]
        assert len(drops) == 1
        assert drops[0].old_price == Decimal("19.98")
        assert drops[0].new_price == Decimal("15.00")

    async def test_target_price_crossing(self, checker, session_factory, extractor, received):
        """Reaching the target price alerts once, not on every cheaper check."""
        target = await add_target(
            session_factory, in_stock=True, current_price=Decimal("30.00"), target_price=Decimal("25.00")
        )

        extractor.extract.return_value = evidence(price="24.00")
        await checker.check_one(target.id)
        extractor.extract.return_value = evidence(price="23.99")
        await checker.check_one(target.id)

        reached = [e for e in received if isinstance(e, TargetPriceReached)]
        assert len(reached) == 1
        assert reached[0].price == Decimal("24.00")

    async def test_custom_target_reclassified(self, checker, session_factory, tracking, extractor):
        """A custom target on a platform product path is checked and stored as a platform target."""
        await seed_store_profiles(session_factory)
        target = await add_target(
            session_factory,
            store="custom",
            in_stock=True,
            selector_overrides={"price_selectors": [".my-price"]},
        )

        await checker.check_one(target.id)

        profile = extractor.extract.await_args.args[1]
        assert profile.name == "shopify"
        assert profile.price_selectors == (".my-price",)
        assert (await tracking.get_target(target.id)).store == "shopify"

    async def test_builtin_store_moved_on_platform_evidence(self, checker, session_factory, tracking, extractor):
        """URL shape keeps a builtin profile, but platform evidence refiles the target."""
        target = await add_target(
            session_factory, store="amazon", url="https://www.amazon.de/products/booster-box", in_stock=True
        )

        await checker.check_one(target.id)

        assert extractor.extract.await_args.args[1].name == "amazon"
        assert (await tracking.get_target(target.id)).store == "shopify"

    async def test_non_platform_store_is_not_probed(self, checker, session_factory, prober, extractor, received):
        """Restocks on other stores alert without a cart link or probe."""
        target = await add_target(
            session_factory, store="bigbang", url="https://www.bigbang.si/izdelek/123", in_stock=False
        )
        extractor.extract.return_value = evidence(platform=False)

        await checker.check_one(target.id)

        prober.probe_limit.assert_not_awaited()
        assert received[0].cart_url is None


# ============================================================================
# TESTS: CONCURRENCY AND GUARD
# ============================================================================

def stub_targets(count):
    return [
        SimpleNamespace(id=uuid4(), url=f"{SHOP}/products/p{n}", last_checked_at=None, check_interval_minutes=0)
        for n in range(count)
    ]


def stub_tracking(targets):
    tracking = MagicMock()
    tracking.get_int_setting = AsyncMock(return_value=5)
    tracking.list_targets = AsyncMock(return_value=targets)
    tracking.get_target = AsyncMock(side_effect=lambda target_id: next(t for t in targets if t.id == target_id))
    tracking.record_check_run = AsyncMock(return_value=1)
    tracking.update_target = AsyncMock()
    return tracking


def stub_checker(tracking, concurrency):
    return StockChecker(
        tracking=tracking,
        extractor=MagicMock(),
        prober=MagicMock(),
        events=EventDispatcher(),
        concurrency=concurrency,
        sleep=AsyncMock(),
        rand=lambda low, high: low,
        clock=Clock(),
    )


class TestPassConcurrency:
    """Test the worker limit and the re-entrancy guard."""

    async def test_at_most_concurrency_checks_in_flight(self):
        """Five due targets with concurrency 2 never run more than two at once."""
        checker = stub_checker(stub_tracking(stub_targets(5)), concurrency=2)
        in_flight = 0
        peak = 0

        async def slow_check(target, force_notify=False):
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0.01)
            in_flight -= 1
            return CheckOutcome(target_id=target.id, ok=True)

        checker.check_target = slow_check

        stats = await checker.run_due_checks()

        assert stats["succeeded"] == 5
        assert peak == 2

    async def test_check_one_served_during_pass(self):
        """A single-target check runs while a pass holds the guard."""
        targets = stub_targets(2)
        checker = stub_checker(stub_tracking(targets[:1]), concurrency=1)
        checker.tracking.get_target = AsyncMock(return_value=targets[1])
        started = asyncio.Event()
        release = asyncio.Event()

        async def check(target, force_notify=False):
            if target.id == targets[0].id:
                started.set()
                await release.wait()
            return CheckOutcome(target_id=target.id, ok=True)

        checker.check_target = check

        pass_task = asyncio.create_task(checker.run_due_checks())
        await asyncio.wait_for(started.wait(), timeout=1)

        assert checker.is_checking is True
        outcome = await asyncio.wait_for(checker.check_one(targets[1].id), timeout=1)
        assert outcome.ok is True
        assert outcome.target_id == targets[1].id

        release.set()
        stats = await pass_task
        assert stats["succeeded"] == 1
        assert checker.is_checking is False

    async def test_guard_released_after_pass_failure(self):
        """A failing target listing ends the pass and frees the guard."""
        tracking = stub_tracking([])
        tracking.list_targets.side_effect = RuntimeError("database locked")
        checker = stub_checker(tracking, concurrency=2)

        stats = await checker.run_due_checks()

        assert stats["error"] == "database locked"
        assert checker.is_checking is False

        tracking.list_targets.side_effect = None
        tracking.list_targets.return_value = []
        stats = await checker.run_due_checks()

        assert stats["skipped"] is False
        assert "error" not in stats
        tracking.record_check_run.assert_awaited_once()


# ============================================================================
# Run Tests
# ============================================================================

if __name__ == "__main__":
    pytest.main([__file__, "-v", "-s"])
