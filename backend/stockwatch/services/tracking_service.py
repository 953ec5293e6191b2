"""Persistence for targets, watches, history and runtime settings.

Every method opens its own short-lived session from the factory, so the
service can be shared by concurrently running checks. Returned ORM
objects are detached snapshots (the factory uses expire_on_commit=False).
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Set
from uuid import UUID

import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from stockwatch.models.app_setting import AppSetting
from stockwatch.models.keyword_watch import KeywordWatch
from stockwatch.models.monitored_target import MonitoredTarget
from stockwatch.models.notification import NotificationLog
from stockwatch.models.stock_history import StockHistory
from stockwatch.models.store_profile import StoreProfile

logger = structlog.get_logger(__name__)

# app_settings keys
CHECK_INTERVAL_KEY = "check_interval_minutes"
KEYWORD_INTERVAL_KEY = "keyword_check_interval_minutes"
LAST_CHECK_AT_KEY = "last_check_at"
TOTAL_CHECKS_KEY = "total_checks"

_TARGET_MUTABLE_FIELDS = frozenset(
    [
        "in_stock",
        "current_price",
        "image_url",
        "variant_id",
        "store",
        "last_checked_at",
        "last_in_stock_at",
        "max_order_qty",
    ]
)


class TrackingService:
    """Storage contract used by the checker and the keyword watcher."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        """Initialize tracking service.

        Args:
            session_factory: Async session factory for database access
        """
        self.session_factory = session_factory
        self.logger = logger.bind(service="tracking_service")

    # ------------------------------------------------------------------
    # Targets
    # ------------------------------------------------------------------

    async def get_target(self, target_id: UUID) -> Optional[MonitoredTarget]:
        async with self.session_factory() as db:
            return await db.get(MonitoredTarget, target_id)

    async def list_targets(self) -> List[MonitoredTarget]:
        async with self.session_factory() as db:
            result = await db.execute(select(MonitoredTarget).order_by(MonitoredTarget.created_at))
            return list(result.scalars().all())

    async def list_target_urls(self) -> Set[str]:
        async with self.session_factory() as db:
            result = await db.execute(select(MonitoredTarget.url))
            return set(result.scalars().all())

    async def list_in_stock_targets(self, store: str) -> List[MonitoredTarget]:
        async with self.session_factory() as db:
            result = await db.execute(
                select(MonitoredTarget).where(
                    MonitoredTarget.store == store,
                    MonitoredTarget.in_stock.is_(True),
                )
            )
            return list(result.scalars().all())

    async def update_target(self, target_id: UUID, **fields: Any) -> Optional[MonitoredTarget]:
        """Apply checker/prober owned fields to a target.

        Raises:
            ValueError: If a field outside the checker-owned set is passed
        """
        unknown = set(fields) - _TARGET_MUTABLE_FIELDS
        if unknown:
            raise ValueError(f"fields not writable by the checker: {sorted(unknown)}")

        async with self.session_factory() as db:
            target = await db.get(MonitoredTarget, target_id)
            if target is None:
                return None
            for key, value in fields.items():
                setattr(target, key, value)
            await db.commit()
            return target

    async def insert_target(
        self,
        name: str,
        url: str,
        store: str,
        check_interval_minutes: int = 0,
        current_price: Optional[Decimal] = None,
        in_stock: bool = False,
        image_url: Optional[str] = None,
        notify_on_stock: bool = True,
        notify_on_price_drop: bool = True,
    ) -> Optional[MonitoredTarget]:
        """Insert a new target; None if the URL is already tracked."""
        async with self.session_factory() as db:
            target = MonitoredTarget(
                name=name[:500] or url,
                url=url,
                store=store,
                check_interval_minutes=check_interval_minutes,
                current_price=current_price,
                in_stock=in_stock,
                image_url=image_url,
                notify_on_stock=notify_on_stock,
                notify_on_price_drop=notify_on_price_drop,
            )
            db.add(target)
            try:
                await db.commit()
            except IntegrityError:
                await db.rollback()
                self.logger.debug("target_already_tracked", url=url)
                return None
            await db.refresh(target)
            self.logger.info("target_inserted", target_id=str(target.id), url=url, store=store)
            return target

    async def append_history(self, target_id: UUID, in_stock: bool, price: Optional[Decimal]) -> None:
        async with self.session_factory() as db:
            db.add(StockHistory(target_id=target_id, in_stock=in_stock, price=price))
            await db.commit()

    async def get_history(self, target_id: UUID, limit: int = 100) -> List[StockHistory]:
        async with self.session_factory() as db:
            result = await db.execute(
                select(StockHistory)
                .where(StockHistory.target_id == target_id)
                .order_by(StockHistory.checked_at.desc())
                .limit(limit)
            )
            return list(result.scalars().all())

    # ------------------------------------------------------------------
    # Store profiles
    # ------------------------------------------------------------------

    async def get_store_profile(self, name: str) -> Optional[StoreProfile]:
        async with self.session_factory() as db:
            result = await db.execute(select(StoreProfile).where(StoreProfile.name == name))
            return result.scalar_one_or_none()

    # ------------------------------------------------------------------
    # Keyword watches
    # ------------------------------------------------------------------

    async def get_watch(self, watch_id: UUID) -> Optional[KeywordWatch]:
        async with self.session_factory() as db:
            return await db.get(KeywordWatch, watch_id)

    async def list_active_watches(self) -> List[KeywordWatch]:
        async with self.session_factory() as db:
            result = await db.execute(
                select(KeywordWatch)
                .where(KeywordWatch.is_active.is_(True))
                .order_by(KeywordWatch.created_at)
            )
            return list(result.scalars().all())

    async def update_watch_state(
        self,
        watch_id: UUID,
        known_product_urls: Iterable[str],
        known_stock_map: Dict[str, bool],
        last_found_count: int,
        last_checked_at: datetime,
    ) -> Optional[KeywordWatch]:
        async with self.session_factory() as db:
            watch = await db.get(KeywordWatch, watch_id)
            if watch is None:
                return None
            # JSON columns are replaced wholesale so the change is detected
            watch.known_product_urls = sorted(set(known_product_urls))
            watch.known_stock_map = dict(known_stock_map)
            watch.last_found_count = last_found_count
            watch.last_checked_at = last_checked_at
            await db.commit()
            return watch

    async def touch_watch(self, watch_id: UUID, last_checked_at: datetime) -> None:
        async with self.session_factory() as db:
            watch = await db.get(KeywordWatch, watch_id)
            if watch is not None:
                watch.last_checked_at = last_checked_at
                await db.commit()

    # ------------------------------------------------------------------
    # Settings and statistics
    # ------------------------------------------------------------------

    async def get_setting(self, key: str, default: Optional[str] = None) -> Optional[str]:
        async with self.session_factory() as db:
            row = await db.get(AppSetting, key)
            return row.value if row is not None else default

    async def set_setting(self, key: str, value: Any) -> None:
        async with self.session_factory() as db:
            row = await db.get(AppSetting, key)
            if row is None:
                db.add(AppSetting(key=key, value=str(value)))
            else:
                row.value = str(value)
            await db.commit()

    async def get_int_setting(self, key: str, default: int) -> int:
        raw = await self.get_setting(key)
        try:
            return int(raw) if raw is not None else default
        except ValueError:
            self.logger.warning("invalid_int_setting", key=key, value=raw)
            return default

    async def record_check_run(self, finished_at: datetime) -> int:
        """Persist last_check_at and bump total_checks.

        Returns:
            New total_checks value
        """
        total = await self.get_int_setting(TOTAL_CHECKS_KEY, 0) + 1
        await self.set_setting(LAST_CHECK_AT_KEY, finished_at.isoformat())
        await self.set_setting(TOTAL_CHECKS_KEY, total)
        return total

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------

    async def record_notification(
        self,
        type: str,
        message: str,
        target_id: Optional[UUID] = None,
        watch_id: Optional[UUID] = None,
    ) -> None:
        async with self.session_factory() as db:
            db.add(NotificationLog(type=type, message=message, target_id=target_id, watch_id=watch_id))
            await db.commit()
