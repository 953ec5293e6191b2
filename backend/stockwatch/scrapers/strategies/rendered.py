"""Headless-render fallback: selectors re-applied to the rendered DOM."""

from typing import Optional

from bs4 import BeautifulSoup

from stockwatch.scrapers.base import EvidenceSource, SelectorProfile, SignalReading
from stockwatch.scrapers.strategies.selectors import read_selectors
from stockwatch.scrapers.strategies.structured_data import read_structured_data
from stockwatch.scrapers.utils.browser_manager import RenderEngine


class RenderedStrategy:
    """Renders the page with JavaScript and reads it like static HTML.

    Structured data found only after rendering fills the gaps the
    selectors leave.
    """

    source = EvidenceSource.RENDERED

    def __init__(self, render_engine: RenderEngine, settle_ms: Optional[int] = None):
        self.render_engine = render_engine
        self.settle_ms = settle_ms

    async def read(self, url: str, profile: SelectorProfile) -> SignalReading:
        """Render url and extract a reading.

        Raises:
            ScraperError: Rendering failed
        """
        html = await self.render_engine.render(url, wait_ms=self.settle_ms)
        return read_rendered_html(html, profile, url)


def read_rendered_html(html: str, profile: SelectorProfile, url: str = "") -> SignalReading:
    soup = BeautifulSoup(html, "html.parser")
    reading = read_selectors(soup, profile, source=EvidenceSource.RENDERED)
    structured = read_structured_data(soup, url)
    if reading.in_stock is None:
        reading.in_stock = structured.in_stock
    if reading.price is None:
        reading.price = structured.price
    if reading.image_url is None:
        reading.image_url = structured.image_url
    reading.found_indicators = reading.found_indicators or structured.found_indicators
    return reading
