"""Wiring of the monitoring components.

One MonitorContainer per process holds the shared fetcher, the lazily
started render engine and every service built on them. Nothing here is a
module-level singleton; the API lifespan and the CLI each build their own.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from stockwatch.config import Settings, settings as default_settings
from stockwatch.core.events import EventDispatcher
from stockwatch.discovery.orchestrator import DiscoveryOrchestrator
from stockwatch.scrapers.checker import StockChecker
from stockwatch.scrapers.extractor import EvidenceExtractor
from stockwatch.scrapers.keyword_watcher import KeywordWatcher
from stockwatch.scrapers.order_limit import OrderLimitProber
from stockwatch.scrapers.strategies.rendered import RenderedStrategy
from stockwatch.scrapers.utils.browser_manager import RenderEngine
from stockwatch.scrapers.utils.http_client import RateLimitedFetcher
from stockwatch.scrapers.utils.rate_limiter import HostRateLimiter
from stockwatch.scrapers.utils.url_safety import UrlValidator
from stockwatch.services.notification_service import AlertHandler, Notifier, build_notifier
from stockwatch.services.tracking_service import TrackingService

logger = structlog.get_logger(__name__)


@dataclass
class MonitorContainer:
    """Everything a check pass or a watch run needs."""

    tracking: TrackingService
    fetcher: RateLimitedFetcher
    render_engine: RenderEngine
    events: EventDispatcher
    notifier: Notifier
    checker: StockChecker
    watcher: KeywordWatcher

    @classmethod
    def build(
        cls,
        session_factory: async_sessionmaker[AsyncSession],
        config: Optional[Settings] = None,
        notifier: Optional[Notifier] = None,
    ) -> "MonitorContainer":
        """Construct the component graph from settings.

        Args:
            session_factory: Async session factory for database access
            config: Settings to use, the process settings by default
            notifier: Alert sink, Telegram or log-only by default
        """
        cfg = config or default_settings

        tracking = TrackingService(session_factory)
        fetcher = RateLimitedFetcher(
            rate_limiter=HostRateLimiter(
                min_interval_ms=cfg.MIN_REQUEST_INTERVAL_MS,
                jitter_ms=cfg.REQUEST_JITTER_MS,
            ),
            timeout_ms=cfg.HTTP_TIMEOUT_MS,
            max_content_length=cfg.HTTP_MAX_CONTENT_LENGTH,
        )
        validator = UrlValidator(resolve_dns=cfg.RESOLVE_DNS)
        render_engine = RenderEngine(
            headless=cfg.RENDER_HEADLESS,
            timeout_ms=cfg.RENDER_TIMEOUT_MS,
            settle_ms=cfg.RENDER_SETTLE_MS,
            grace_ms=cfg.RENDER_GRACE_MS,
        )

        events = EventDispatcher()
        notifier = notifier or build_notifier()
        AlertHandler(notifier, tracking).register(events)

        checker = StockChecker(
            tracking=tracking,
            extractor=EvidenceExtractor(fetcher, validator, rendered=RenderedStrategy(render_engine)),
            prober=OrderLimitProber(fetcher, probe_quantity=cfg.ORDER_PROBE_QUANTITY),
            events=events,
            concurrency=cfg.SCRAPE_CONCURRENCY,
            jitter_seconds=(cfg.SCRAPE_JITTER_MIN_SECONDS, cfg.SCRAPE_JITTER_MAX_SECONDS),
            price_drop_threshold=Decimal(str(cfg.PRICE_DROP_THRESHOLD)),
        )
        watcher = KeywordWatcher(
            tracking=tracking,
            orchestrator=DiscoveryOrchestrator(
                fetcher,
                validator,
                page_delay=cfg.DISCOVERY_PAGE_DELAY_SECONDS,
                search_page_delay=cfg.SEARCH_PAGE_DELAY_SECONDS,
            ),
            checker=checker,
            events=events,
            watch_delay_seconds=(cfg.WATCH_DELAY_MIN_SECONDS, cfg.WATCH_DELAY_MAX_SECONDS),
        )

        return cls(
            tracking=tracking,
            fetcher=fetcher,
            render_engine=render_engine,
            events=events,
            notifier=notifier,
            checker=checker,
            watcher=watcher,
        )

    async def close(self) -> None:
        """Release the browser, HTTP client and notifier."""
        await self.render_engine.close()
        await self.fetcher.close()
        await self.notifier.close()
        logger.info("monitor_container_closed")
