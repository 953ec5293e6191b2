"""CSS selector strategy driven by a store profile."""

from typing import Optional

import structlog
from bs4 import BeautifulSoup, Tag

from stockwatch.scrapers.base import EvidenceSource, SelectorProfile, SignalReading
from stockwatch.scrapers.utils.normalizer import PriceNormalizer

logger = structlog.get_logger(__name__)

SOLD_OUT_BUTTON_PHRASES = ("sold out", "out of stock", "razprodano", "ni na zalogi", "unavailable")

SOLD_OUT_BADGES = (
    ".sold-out-badge",
    ".badge--sold-out",
    "[data-sold-out]",
    ".product__sold-out",
    ".sold_out",
)


def _select_first(soup: BeautifulSoup, selector: str) -> Optional[Tag]:
    try:
        return soup.select_one(selector)
    except Exception as e:
        # Profiles are user-editable; a malformed selector only disables itself
        logger.debug("invalid_selector", selector=selector, error=str(e))
        return None


def _element_text(el: Tag) -> str:
    text = el.get_text(" ", strip=True)
    if not text:
        text = el.get("value") or el.get("content") or ""
    return " ".join(text.split())


def is_button_unavailable(button: Tag) -> bool:
    """Disabled, aria-disabled, .disabled, or labelled as sold out."""
    classes = button.get("class") or []
    if button.has_attr("disabled") or button.get("aria-disabled") == "true" or "disabled" in classes:
        return True
    label = _element_text(button).lower()
    return any(phrase in label for phrase in SOLD_OUT_BUTTON_PHRASES)


def read_selectors(
    soup: BeautifulSoup,
    profile: SelectorProfile,
    source: EvidenceSource = EvidenceSource.SELECTOR,
) -> SignalReading:
    """Apply a profile's stock, add-to-cart and price selectors.

    Stock text is matched against out-of-stock phrases before in-stock
    phrases. An unavailable add-to-cart button forces False; an available
    one gives True only if the stock text was inconclusive. Sold-out
    badges give False when nothing else decided.
    """
    reading = SignalReading(source=source)
    out_phrases = [p.lower() for p in profile.out_of_stock_phrases]
    in_phrases = [p.lower() for p in profile.in_stock_phrases]

    for selector in profile.stock_selectors:
        el = _select_first(soup, selector)
        if el is None:
            continue
        text = _element_text(el).lower()
        reading.found_indicators = True
        reading.raw_stock_text = text
        if any(p in text for p in out_phrases):
            reading.in_stock = False
        elif any(p in text for p in in_phrases):
            reading.in_stock = True
        break

    for selector in profile.add_to_cart_selectors:
        button = _select_first(soup, selector)
        if button is None:
            continue
        reading.found_indicators = True
        if is_button_unavailable(button):
            reading.in_stock = False
        elif reading.in_stock is None:
            reading.in_stock = True
        break

    if reading.in_stock is None:
        for selector in SOLD_OUT_BADGES:
            if _select_first(soup, selector) is not None:
                reading.found_indicators = True
                reading.in_stock = False
                break

    for selector in profile.price_selectors:
        el = _select_first(soup, selector)
        if el is None:
            continue
        reading.found_indicators = True
        price = PriceNormalizer.parse_price(_element_text(el))
        if price is not None:
            reading.price = price
            break

    og_image = _select_first(soup, 'meta[property="og:image"]')
    if og_image is not None and og_image.get("content"):
        reading.image_url = og_image["content"]

    return reading
