"""Evidence extractor: runs the strategies for one target and fuses them.

Order is fixed: platform product JSON, structured data, profile
selectors, then a headless render when the profile demands it or the
static page offered nothing to read.
"""

from typing import Iterable, List, Optional

import structlog
from bs4 import BeautifulSoup

from stockwatch.core.exceptions import RateLimitedError, ScraperError, TransientNetworkError
from stockwatch.scrapers.base import EvidenceSource, ScrapeEvidence, SelectorProfile, SignalReading
from stockwatch.scrapers.platform import has_platform_url_shape, looks_like_platform_html
from stockwatch.scrapers.strategies.platform_api import PlatformApiStrategy
from stockwatch.scrapers.strategies.rendered import RenderedStrategy
from stockwatch.scrapers.strategies.selectors import read_selectors
from stockwatch.scrapers.strategies.structured_data import read_structured_data
from stockwatch.scrapers.utils.http_client import RateLimitedFetcher
from stockwatch.scrapers.utils.normalizer import PriceNormalizer
from stockwatch.scrapers.utils.url_safety import UrlValidator

logger = structlog.get_logger(__name__)


def resolve_evidence(
    readings: Iterable[SignalReading],
    is_recognized_platform: bool = False,
) -> ScrapeEvidence:
    """Fold strategy readings into one ScrapeEvidence.

    in_stock is True if any reading says True, else False if any says
    False, else None. Price, image, variant and quantity come from the
    first reading (by source precedence) that has one.
    """
    ordered: List[SignalReading] = sorted(readings, key=lambda r: r.source)

    verdicts = [r.in_stock for r in ordered if r.in_stock is not None]
    if True in verdicts:
        in_stock: Optional[bool] = True
    elif False in verdicts:
        in_stock = False
    else:
        in_stock = None

    def first(attr: str):
        for reading in ordered:
            value = getattr(reading, attr)
            if value not in (None, ""):
                return value
        return None

    raw_text = first("raw_stock_text")
    if not raw_text and in_stock is not None:
        raw_text = "in stock" if in_stock else "out of stock"

    return ScrapeEvidence(
        in_stock=in_stock,
        price=PriceNormalizer.round_price(first("price")),
        image_url=first("image_url"),
        variant_id=first("variant_id"),
        stock_quantity_hint=first("stock_quantity") or 0,
        raw_stock_text=raw_text or "",
        is_recognized_platform=is_recognized_platform,
        sources=[r.source for r in ordered],
    )


def needs_render(profile: SelectorProfile, readings: Iterable[SignalReading]) -> bool:
    """Render when the profile mandates it or nothing static was readable."""
    if profile.requires_render:
        return True
    readings = list(readings)
    if any(r.in_stock is not None for r in readings):
        return False
    return not any(r.found_indicators for r in readings if r.source != EvidenceSource.PLATFORM_API)


class EvidenceExtractor:
    """Turns (url, profile) into ScrapeEvidence.

    extract() returns None only when the page could not be fetched or
    rendered at all. Finding no signal is not an error: the evidence then
    has in_stock=None.
    """

    def __init__(
        self,
        fetcher: RateLimitedFetcher,
        validator: UrlValidator,
        rendered: Optional[RenderedStrategy] = None,
    ):
        self.fetcher = fetcher
        self.validator = validator
        self.platform = PlatformApiStrategy(fetcher)
        self.rendered = rendered
        self.logger = logger.bind(service="evidence_extractor")

    async def extract(self, url: str, profile: SelectorProfile) -> Optional[ScrapeEvidence]:
        """Extract evidence for a product page.

        Raises:
            UnsafeUrlError: The URL failed validation
        """
        safe_url = await self.validator.normalize(url)
        readings: List[SignalReading] = []
        recognized = False

        if has_platform_url_shape(safe_url) or profile.platform == "shopify":
            platform_reading = await self.platform.read(safe_url)
            if platform_reading is not None:
                recognized = True
                readings.append(platform_reading)
                if platform_reading.decisive:
                    self.logger.debug("platform_verdict_trusted", url=safe_url, in_stock=platform_reading.in_stock)
                    return resolve_evidence(readings, is_recognized_platform=True)

        static_fetched = False
        if not profile.requires_render:
            html = await self._fetch_html(safe_url)
            if html is not None:
                static_fetched = True
                recognized = recognized or looks_like_platform_html(html)
                soup = BeautifulSoup(html, "html.parser")
                readings.append(read_structured_data(soup, safe_url))
                readings.append(read_selectors(soup, profile))

        if self.rendered is not None and needs_render(profile, readings):
            try:
                readings.append(await self.rendered.read(safe_url, profile))
            except ScraperError as e:
                self.logger.warning("render_fallback_failed", url=safe_url, error=e.message)
                if not static_fetched and not readings:
                    return None
        elif not static_fetched and not readings:
            return None

        evidence = resolve_evidence(readings, is_recognized_platform=recognized)
        self.logger.debug(
            "evidence_resolved",
            url=safe_url,
            in_stock=evidence.in_stock,
            price=str(evidence.price) if evidence.price is not None else None,
            sources=[s.name for s in evidence.sources],
        )
        return evidence

    async def _fetch_html(self, url: str) -> Optional[str]:
        try:
            response = await self.fetcher.get(url)
            response.raise_for_status()
        except (TransientNetworkError, RateLimitedError, ScraperError) as e:
            self.logger.warning("page_fetch_failed", url=url, error=e.message)
            return None
        return response.text
