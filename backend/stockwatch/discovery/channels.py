"""Discovery channels: independent product sources for one keyword.

Each channel fetches sequentially with a delay between pages and never
raises on network trouble; it logs and returns whatever it collected so
far.
"""

import asyncio
import re
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Tuple
from urllib.parse import urljoin, urlparse, urlunparse

import structlog
from bs4 import BeautifulSoup, Tag

from stockwatch.core.exceptions import StockWatchException
from stockwatch.discovery.matching import is_relevant, keyword_tokens
from stockwatch.scrapers.base import DiscoveredProduct
from stockwatch.scrapers.utils.http_client import RateLimitedFetcher
from stockwatch.scrapers.utils.normalizer import PriceNormalizer
from stockwatch.scrapers.utils.url_safety import UrlValidator
from stockwatch.scrapers.utils.user_agents import HTML_ACCEPT

logger = structlog.get_logger(__name__)

SUGGEST_LIMIT = 250
PRODUCTS_PAGE_SIZE = 50
CATALOG_MAX_PAGES = 20
COLLECTION_MAX_PAGES = 3
SEARCH_MAX_PAGES = 10
EXCLUDED_COLLECTIONS = frozenset(["all", "frontpage"])

_CARD_CLASSES = frozenset(["card", "product-card", "grid__item"])
_CARD_TAGS = frozenset(["li", "article"])
_SOLD_OUT_MARKERS = ".sold-out-badge, .badge--sold-out, [data-sold-out]"
_CARD_PRICE = ".price-item, .money, .price, .product-price"
_CARD_TITLE = "[class*=title], [class*=name], h3, h2"
_NEXT_WORDS = ("next", "naslednja")
_PRICE_SHAPE = re.compile(r"\d+[.,]\d{2}")
_COLLECTION_HREF = re.compile(r"/collections/([^/?#]+)")

Sleep = Callable[[float], Awaitable[None]]


def _any_variant_available(variants: Any) -> Optional[bool]:
    if not isinstance(variants, list) or not variants:
        return None
    return any(isinstance(v, dict) and v.get("available") is True for v in variants)


def product_from_catalog_json(origin: str, data: Dict[str, Any], channel: str) -> Optional[DiscoveredProduct]:
    """DiscoveredProduct from one products.json entry."""
    handle = data.get("handle")
    if not handle:
        return None
    variants = data.get("variants") or []
    first = variants[0] if variants and isinstance(variants[0], dict) else {}
    images = data.get("images") or []
    image = images[0].get("src") if images and isinstance(images[0], dict) else None
    return DiscoveredProduct(
        name=(data.get("title") or handle)[:200],
        url=f"{origin}/products/{handle}",
        price=PriceNormalizer.round_price(first.get("price")),
        in_stock=bool(_any_variant_available(variants)),
        image_url=image,
        channel=channel,
    )


class DiscoveryChannel:
    """Base class for a discovery source.

    Subclasses implement _collect(); collect() wraps it so that a fetch
    failure ends the channel early instead of failing the run.
    """

    name = "base"
    # Whether this channel's price/stock/name replace earlier channels' values
    authoritative = True

    def __init__(self, fetcher: RateLimitedFetcher, sleep: Sleep = asyncio.sleep, page_delay: float = 0.6):
        self.fetcher = fetcher
        self._sleep = sleep
        self.page_delay = page_delay
        self.logger = logger.bind(service="discovery", channel=self.name)

    async def collect(self, origin: str, keyword: str, search_url: str) -> List[DiscoveredProduct]:
        products: List[DiscoveredProduct] = []
        try:
            await self._collect(origin, keyword, search_url, products)
        except StockWatchException as e:
            self.logger.warning("channel_failed", origin=origin, error=str(e), collected=len(products))
        self.logger.info("channel_completed", origin=origin, keyword=keyword, found=len(products))
        return products

    async def _collect(
        self,
        origin: str,
        keyword: str,
        search_url: str,
        products: List[DiscoveredProduct],
    ) -> None:
        raise NotImplementedError

    async def _products_pages(
        self,
        base: str,
        max_pages: int,
    ):
        """Yield product batches from a paginated products.json endpoint."""
        for page in range(1, max_pages + 1):
            data = await self.fetcher.get_json(
                base,
                params={"limit": PRODUCTS_PAGE_SIZE, "page": page},
                timeout=12.0,
            )
            batch = data.get("products") if isinstance(data, dict) else None
            if not batch:
                return
            yield batch
            if len(batch) < PRODUCTS_PAGE_SIZE:
                return
            await self._sleep(self.page_delay)


class SuggestChannel(DiscoveryChannel):
    """Channel A: the storefront search-suggest index.

    Fast but least authoritative: prices come in minor units and may be
    the cheapest variant's. Repeated URLs keep the highest price and are
    in stock if any occurrence is.
    """

    name = "suggest"
    authoritative = False

    async def _collect(self, origin, keyword, search_url, products):
        data = await self.fetcher.get_json(
            f"{origin}/search/suggest.json",
            params={
                "q": keyword,
                "resources[type]": "product",
                "resources[limit]": SUGGEST_LIMIT,
            },
            timeout=10.0,
        )
        try:
            results = data["resources"]["results"]["products"]
        except (KeyError, TypeError):
            return
        if not isinstance(results, list):
            return

        index: Dict[str, int] = {}
        for item in results:
            if not isinstance(item, dict) or not item.get("url"):
                continue
            url = _strip_query(_absolute(item["url"], origin + "/"))
            price = PriceNormalizer.from_minor_units(item.get("price"))
            available = _any_variant_available(item.get("variants"))
            if available is None and isinstance(item.get("available"), bool):
                available = item["available"]

            if url in index:
                existing = products[index[url]]
                if price is not None and price > (existing.price or 0):
                    existing.price = price
                if available:
                    existing.in_stock = True
                continue

            index[url] = len(products)
            image = item.get("image")
            products.append(
                DiscoveredProduct(
                    name=(item.get("title") or url)[:200],
                    url=url,
                    price=price,
                    in_stock=available,
                    image_url=image if isinstance(image, str) and image else None,
                    channel=self.name,
                )
            )


class CatalogChannel(DiscoveryChannel):
    """Channel B: page through /collections/all, keeping keyword-token matches."""

    name = "catalog"

    async def _collect(self, origin, keyword, search_url, products):
        tokens = keyword_tokens(keyword)
        seen: Set[str] = set()
        scanned = 0
        async for batch in self._products_pages(f"{origin}/collections/all/products.json", CATALOG_MAX_PAGES):
            scanned += len(batch)
            for data in batch:
                if not isinstance(data, dict):
                    continue
                title = (data.get("title") or "").lower()
                handle = (data.get("handle") or "").lower()
                if not any(t in title or t in handle for t in tokens):
                    continue
                product = product_from_catalog_json(origin, data, self.name)
                if product is None or product.url in seen:
                    continue
                seen.add(product.url)
                products.append(product)
        self.logger.debug("catalog_scanned", origin=origin, scanned=scanned)


class CollectionChannel(DiscoveryChannel):
    """Channel C: collections whose name or handle matches the keyword."""

    name = "collections"

    async def _collect(self, origin, keyword, search_url, products):
        response = await self.fetcher.get(f"{origin}/collections", headers={"Accept": HTML_ACCEPT}, timeout=12.0)
        if not response.ok:
            return
        handles = matching_collections(response.text, keyword)
        self.logger.debug("collections_matched", origin=origin, handles=handles)

        seen: Set[str] = set()
        for handle in handles:
            async for batch in self._products_pages(f"{origin}/collections/{handle}/products.json", COLLECTION_MAX_PAGES):
                for data in batch:
                    if not isinstance(data, dict):
                        continue
                    product = product_from_catalog_json(origin, data, self.name)
                    if product is None or product.url in seen:
                        continue
                    seen.add(product.url)
                    products.append(product)


def matching_collections(html: str, keyword: str) -> List[str]:
    """Collection handles on a /collections page matching keyword tokens."""
    tokens = keyword_tokens(keyword, min_length=3)
    soup = BeautifulSoup(html, "html.parser")
    handles: List[str] = []
    for link in soup.select('a[href*="/collections/"]'):
        match = _COLLECTION_HREF.search(link.get("href") or "")
        if not match:
            continue
        handle = match.group(1)
        if handle.lower() in EXCLUDED_COLLECTIONS or handle in handles:
            continue
        text = f"{link.get_text(' ', strip=True)} {handle}".lower()
        if any(t in text for t in tokens):
            handles.append(handle)
    return handles


class SearchPageChannel(DiscoveryChannel):
    """Channel D: the store's own search results HTML, following "next" links.

    Runs for every store; for non-platform stores it is the only channel.
    """

    name = "search_page"

    def __init__(
        self,
        fetcher: RateLimitedFetcher,
        validator: UrlValidator,
        sleep: Sleep = asyncio.sleep,
        page_delay: float = 0.8,
    ):
        super().__init__(fetcher, sleep=sleep, page_delay=page_delay)
        self.validator = validator

    async def _collect(self, origin, keyword, search_url, products):
        seen: Set[str] = set()
        current: Optional[str] = search_url
        for page in range(SEARCH_MAX_PAGES):
            if page:
                await self._sleep(self.page_delay)
            safe_url = await self.validator.normalize(current)
            response = await self.fetcher.get(safe_url, headers={"Accept": HTML_ACCEPT}, timeout=20.0)
            if not response.ok:
                self.logger.debug("search_page_status", url=safe_url, status=response.status)
                return
            page_products, next_url = parse_search_page(response.text, safe_url, keyword, seen)
            products.extend(page_products)
            if not next_url or next_url == current:
                return
            current = next_url


def _card_for(link: Tag) -> Tag:
    def is_card(tag: Tag) -> bool:
        if tag.name in _CARD_TAGS:
            return True
        return bool(_CARD_CLASSES.intersection(tag.get("class") or []))

    return link.find_parent(is_card) or link


def _absolute(url: str, base: str) -> str:
    if url.startswith("//"):
        return "https:" + url
    return urljoin(base, url)


def _strip_query(url: str) -> str:
    parsed = urlparse(url)
    return urlunparse(parsed._replace(query="", fragment=""))


def _link_title(link: Tag) -> str:
    title = (link.get("title") or "").strip()
    if title:
        return title
    inner = link.select_one(_CARD_TITLE)
    if inner is not None:
        text = inner.get_text(" ", strip=True)
        if text:
            return text
    return re.sub(r"\s+", " ", link.get_text(" ", strip=True))[:150]


def _card_price(card: Tag):
    element = card.select_one(_CARD_PRICE)
    if element is None:
        return None
    text = element.get_text(" ", strip=True)
    if not _PRICE_SHAPE.search(text):
        return None
    return PriceNormalizer.parse_price(text)


def _next_page(soup: BeautifulSoup, page_url: str) -> Optional[str]:
    for link in soup.select('a[href*="page="]'):
        text = link.get_text(" ", strip=True).lower()
        rel = link.get("rel") or []
        if "next" in rel or any(word in text for word in _NEXT_WORDS):
            return _absolute(link["href"], page_url)
    return None


def parse_search_page(
    html: str,
    page_url: str,
    keyword: str,
    seen: Optional[Set[str]] = None,
) -> Tuple[List[DiscoveredProduct], Optional[str]]:
    """Relevant product cards on one search results page plus the next page URL.

    Cards carrying a sold-out badge (or the words "sold out") are reported
    out of stock; otherwise stock is left unknown.
    """
    seen = seen if seen is not None else set()
    soup = BeautifulSoup(html, "html.parser")
    products: List[DiscoveredProduct] = []

    for link in soup.select('a[href*="/products/"]'):
        url = _strip_query(_absolute(link.get("href") or "", page_url))
        if url in seen:
            continue
        name = _link_title(link)
        if not name or not is_relevant(keyword, name, url):
            continue
        seen.add(url)

        card = _card_for(link)
        sold_out = card.select_one(_SOLD_OUT_MARKERS) is not None or "sold out" in card.get_text(" ").lower()
        img = link.find("img")
        image = (img.get("src") or img.get("data-src")) if img is not None else None

        products.append(
            DiscoveredProduct(
                name=name[:200],
                url=url,
                price=_card_price(card),
                in_stock=False if sold_out else None,
                image_url=_absolute(image, page_url) if image else None,
                channel=SearchPageChannel.name,
            )
        )

    return products, _next_page(soup, page_url)
