"""Keyword relevance, title similarity and cross-channel merging.

All functions here are pure; they never touch the network.

Thresholds:
    FUZZY_MATCH_THRESHOLD: token Jaccard score at or above which two
        differently-addressed products on the same host are the same item.
    SIGNIFICANT_TOKEN_LENGTH: keyword tokens shorter than this are ignored
        by the multi-word relevance rule (set codes such as "ex" still count).
"""

import math
import re
from dataclasses import replace
from typing import Dict, Iterable, List, Optional, Set
from urllib.parse import urlparse

from stockwatch.scrapers.base import DiscoveredProduct
from stockwatch.scrapers.utils.normalizer import canonical_product_url

FUZZY_MATCH_THRESHOLD = 0.9
SIGNIFICANT_TOKEN_LENGTH = 2

_TOKEN = re.compile(r"\w+", re.UNICODE)


def tokenize(text: Optional[str]) -> Set[str]:
    """Lower-cased word tokens of text."""
    if not text:
        return set()
    return set(_TOKEN.findall(text.lower()))


def keyword_tokens(keyword: str, min_length: int = SIGNIFICANT_TOKEN_LENGTH) -> List[str]:
    return [w for w in keyword.lower().split() if len(w) >= min_length]


def is_relevant(keyword: Optional[str], name: Optional[str], url: Optional[str]) -> bool:
    """Whether a product name / URL matches a watch keyword.

    The whole keyword as a substring of the name, or hyphenated in the URL,
    always matches. Multi-word keywords also match when at least half of
    their significant tokens appear in the name or URL. Single-word
    keywords need the substring.
    """
    if not keyword:
        return True
    kw = keyword.lower().strip()
    name_lc = (name or "").lower()
    url_lc = (url or "").lower()

    if kw in name_lc:
        return True
    if re.sub(r"\s+", "-", kw) in url_lc:
        return True

    words = keyword_tokens(kw)
    if not words:
        return True
    if len(words) == 1:
        return False
    matched = [w for w in words if w in name_lc or w in url_lc]
    return len(matched) >= math.ceil(len(words) / 2)


def title_similarity(a: Optional[str], b: Optional[str]) -> float:
    """Jaccard index of the two titles' token sets, 0.0 to 1.0."""
    left, right = tokenize(a), tokenize(b)
    if not left or not right:
        return 0.0
    return len(left & right) / len(left | right)


def _host(url: str) -> str:
    return (urlparse(url).hostname or "").lower()


class ProductMerger:
    """Accumulates channel results into one deduplicated list.

    Entries are keyed by canonical URL; a product under a different URL on
    the same host whose title scores at or above FUZZY_MATCH_THRESHOLD is
    folded into the existing entry. The first channel to report a product
    fixes its identity (URL); channels added with overwrite=True replace
    price, stock and name of an existing entry when they have a value.
    """

    def __init__(self, threshold: float = FUZZY_MATCH_THRESHOLD):
        self.threshold = threshold
        self._entries: List[DiscoveredProduct] = []
        self._by_url: Dict[str, int] = {}

    @property
    def products(self) -> List[DiscoveredProduct]:
        return list(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def _find(self, product: DiscoveredProduct, key: str) -> Optional[int]:
        if key in self._by_url:
            return self._by_url[key]
        host = _host(key)
        for idx, existing in enumerate(self._entries):
            if _host(existing.url) != host:
                continue
            if title_similarity(existing.name, product.name) >= self.threshold:
                return idx
        return None

    def add(self, products: Iterable[DiscoveredProduct], overwrite: bool = False) -> int:
        """Merge one channel's products.

        Returns:
            Number of products that were new to the merged set
        """
        added = 0
        for product in products:
            key = canonical_product_url(product.url)
            idx = self._find(product, key)
            if idx is None:
                self._by_url[key] = len(self._entries)
                self._entries.append(replace(product, url=key))
                added += 1
                continue

            self._by_url.setdefault(key, idx)
            if not overwrite:
                continue
            existing = self._entries[idx]
            changes = {}
            if product.price is not None:
                changes["price"] = product.price
            if product.in_stock is not None:
                changes["in_stock"] = product.in_stock
            if product.name:
                changes["name"] = product.name
            if not existing.image_url and product.image_url:
                changes["image_url"] = product.image_url
            if changes:
                self._entries[idx] = replace(existing, **changes)
        return added


def filter_relevant(keyword: str, products: Iterable[DiscoveredProduct]) -> List[DiscoveredProduct]:
    return [p for p in products if is_relevant(keyword, p.name, p.url)]
