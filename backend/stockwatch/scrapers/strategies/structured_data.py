"""JSON-LD Product and Open Graph meta strategy."""

import json
from decimal import Decimal
from typing import Any, Iterator, List, Mapping, Optional
from urllib.parse import urljoin

from bs4 import BeautifulSoup

from stockwatch.scrapers.base import EvidenceSource, SignalReading
from stockwatch.scrapers.utils.normalizer import PriceNormalizer


def _is_product(node: Any) -> bool:
    if not isinstance(node, Mapping):
        return False
    node_type = node.get("@type")
    if isinstance(node_type, list):
        return "Product" in node_type
    return node_type == "Product"


def _iter_products(payload: Any) -> Iterator[Mapping[str, Any]]:
    if isinstance(payload, list):
        for item in payload:
            yield from _iter_products(item)
        return
    if not isinstance(payload, Mapping):
        return
    if _is_product(payload):
        yield payload
    graph = payload.get("@graph")
    if isinstance(graph, list):
        for node in graph:
            if _is_product(node):
                yield node


def _offers(product: Mapping[str, Any]) -> List[Mapping[str, Any]]:
    offers = product.get("offers")
    if isinstance(offers, Mapping):
        nested = offers.get("offers")
        if isinstance(nested, list):
            return [offers] + [o for o in nested if isinstance(o, Mapping)]
        return [offers]
    if isinstance(offers, list):
        return [o for o in offers if isinstance(o, Mapping)]
    return []


def _image(value: Any) -> Optional[str]:
    if isinstance(value, list):
        value = value[0] if value else None
    if isinstance(value, Mapping):
        value = value.get("url")
    return value if isinstance(value, str) and value else None


def read_structured_data(soup: BeautifulSoup, page_url: str = "") -> SignalReading:
    """Read availability, lowest offer price and image from JSON-LD.

    Any offer whose availability contains "instock" makes the product in
    stock; availability present on offers but never "instock" means out of
    stock. og:price:amount / product:price:amount and og:image fill in
    missing price and image.
    """
    reading = SignalReading(source=EvidenceSource.STRUCTURED_DATA)

    for script in soup.find_all("script", attrs={"type": "application/ld+json"}):
        raw = script.string or script.get_text()
        if not raw:
            continue
        try:
            payload = json.loads(raw)
        except ValueError:
            continue

        for product in _iter_products(payload):
            reading.found_indicators = True
            best: Optional[Decimal] = None
            for offer in _offers(product):
                for key in ("price", "lowPrice"):
                    price = PriceNormalizer.round_price(offer.get(key))
                    if price is not None and (best is None or price < best):
                        best = price
                availability = offer.get("availability")
                if isinstance(availability, str):
                    if "instock" in availability.lower():
                        reading.in_stock = True
                    elif reading.in_stock is None:
                        reading.in_stock = False
            if best is not None and reading.price is None:
                reading.price = best
            if reading.image_url is None:
                reading.image_url = _image(product.get("image"))

    if reading.price is None:
        meta = soup.select_one('meta[property="og:price:amount"], meta[property="product:price:amount"]')
        if meta and meta.get("content"):
            reading.price = PriceNormalizer.parse_price(meta["content"])
            reading.found_indicators = reading.found_indicators or reading.price is not None

    if reading.image_url is None:
        og_image = soup.select_one('meta[property="og:image"]')
        if og_image and og_image.get("content"):
            reading.image_url = og_image["content"]

    if reading.image_url and page_url and not reading.image_url.startswith("http"):
        reading.image_url = urljoin(page_url, reading.image_url)

    if reading.in_stock is not None:
        reading.raw_stock_text = "in stock" if reading.in_stock else "out of stock"
    return reading
