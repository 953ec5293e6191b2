"""Platform product JSON (/products/<handle>.js) strategy."""

from typing import Any, Mapping, Optional

import structlog

from stockwatch.core.exceptions import RateLimitedError, ScraperError, TransientNetworkError
from stockwatch.scrapers.base import EvidenceSource, SignalReading
from stockwatch.scrapers.platform import collection_handle, product_handle, store_origin
from stockwatch.scrapers.utils.http_client import RateLimitedFetcher
from stockwatch.scrapers.utils.normalizer import PriceNormalizer

logger = structlog.get_logger(__name__)


def is_unambiguously_sold_out(data: Mapping[str, Any]) -> bool:
    """True only when the product JSON leaves no room for doubt.

    Every variant must be unavailable with tracked inventory, a "deny"
    overselling policy and a non-positive quantity, and the product itself
    must not be available. Anything less (e.g. inventory_policy missing or
    "continue") is treated as an ambiguous verdict.
    """
    variants = [v for v in data.get("variants") or [] if isinstance(v, Mapping)]
    if not variants or data.get("available") is True:
        return False
    for variant in variants:
        if variant.get("available") is not False:
            return False
        if not variant.get("inventory_management"):
            return False
        if variant.get("inventory_policy") != "deny":
            return False
        qty = variant.get("inventory_quantity")
        if not isinstance(qty, (int, float)) or qty > 0:
            return False
    return True


def _first_image(data: Mapping[str, Any]) -> Optional[str]:
    image = data.get("featured_image")
    if not image:
        images = data.get("images") or []
        image = images[0] if images else None
    if isinstance(image, Mapping):
        image = image.get("src")
    if not isinstance(image, str) or not image:
        return None
    if image.startswith("//"):
        image = "https:" + image
    return image


def interpret_product_json(data: Mapping[str, Any]) -> SignalReading:
    """Turn a product.js payload into a reading.

    The first available variant (else the first variant) supplies price,
    variant id and stock quantity.
    """
    variants = [v for v in data.get("variants") or [] if isinstance(v, Mapping)]
    any_available = any(v.get("available") is True for v in variants) or data.get("available") is True
    active = next((v for v in variants if v.get("available") is True), variants[0] if variants else None)

    reading = SignalReading(
        source=EvidenceSource.PLATFORM_API,
        in_stock=any_available,
        image_url=_first_image(data),
        found_indicators=True,
    )
    if active is not None:
        reading.price = PriceNormalizer.normalize_minor_units(active.get("price"))
        if active.get("id") is not None:
            reading.variant_id = str(active["id"])
        qty = active.get("inventory_quantity")
        if isinstance(qty, int) and qty > 0:
            reading.stock_quantity = qty

    reading.raw_stock_text = "in stock" if any_available else "out of stock"
    if any_available and reading.variant_id:
        reading.decisive = True
    elif not any_available and is_unambiguously_sold_out(data):
        reading.decisive = True
    return reading


class PlatformApiStrategy:
    """Reads the storefront's public product JSON for platform URLs."""

    source = EvidenceSource.PLATFORM_API

    def __init__(self, fetcher: RateLimitedFetcher, timeout: float = 10.0):
        self.fetcher = fetcher
        self.timeout = timeout
        self.logger = logger.bind(strategy="platform_api")

    async def read(self, url: str) -> Optional[SignalReading]:
        """Fetch and interpret product JSON for url.

        Returns:
            Reading, or None if the URL has no platform shape or the
            endpoint did not answer with product JSON
        """
        origin = store_origin(url)
        handle = product_handle(url)
        try:
            if handle is None:
                collection = collection_handle(url)
                if collection is None:
                    return None
                handle = await self._first_in_collection(origin, collection)
                if handle is None:
                    return None

            data = await self.fetcher.get_json(
                f"{origin}/products/{handle}.js",
                headers={"Referer": url},
                timeout=self.timeout,
            )
        except (TransientNetworkError, RateLimitedError, ScraperError) as e:
            self.logger.warning("product_json_fetch_failed", url=url, error=e.message)
            return None

        if not isinstance(data, Mapping) or not isinstance(data.get("variants"), list):
            self.logger.debug("product_json_missing", url=url, handle=handle)
            return None

        reading = interpret_product_json(data)
        self.logger.debug(
            "product_json_read",
            url=url,
            variants=len(data["variants"]),
            in_stock=reading.in_stock,
            decisive=reading.decisive,
        )
        return reading

    async def _first_in_collection(self, origin: str, collection: str) -> Optional[str]:
        data = await self.fetcher.get_json(
            f"{origin}/collections/{collection}/products.json",
            params={"limit": 1},
            timeout=self.timeout,
        )
        products = data.get("products") if isinstance(data, Mapping) else None
        if not products or not isinstance(products[0], Mapping):
            return None
        return products[0].get("handle")
