"""Discovery orchestration: run the channels for a watch and merge them."""

import asyncio
from typing import Any, List, Optional, Sequence
from urllib.parse import quote, urlparse

import structlog

from stockwatch.discovery.channels import (
    CatalogChannel,
    CollectionChannel,
    DiscoveryChannel,
    SearchPageChannel,
    SuggestChannel,
)
from stockwatch.discovery.matching import ProductMerger, filter_relevant
from stockwatch.scrapers.base import DiscoveredProduct
from stockwatch.scrapers.platform import PLATFORM_STORE, store_origin
from stockwatch.scrapers.utils.http_client import RateLimitedFetcher
from stockwatch.scrapers.utils.url_safety import UrlValidator

logger = structlog.get_logger(__name__)

KEYWORD_PLACEHOLDER = "{keyword}"

# hostname fragment -> search path template
STORE_FAMILY_SEARCH = (
    ("amazon", "/s?k={keyword}"),
    ("bigbang", "/iskanje?q={keyword}"),
    ("mimovrste", "/iskanje?q={keyword}"),
)
DEFAULT_SEARCH = "/search?options%5Bprefix%5D=last&q={keyword}&type=product"


def build_search_url(store_url: str, keyword: str, template: Optional[str] = None) -> str:
    """Search results URL for a watch.

    An explicit template has its {keyword} placeholder filled; otherwise
    the store family is picked from the hostname, defaulting to the
    platform storefront search.
    """
    encoded = quote(keyword, safe="")
    if template:
        return template.replace(KEYWORD_PLACEHOLDER, encoded)

    base = store_url.rstrip("/")
    hostname = (urlparse(base).hostname or "").lower()
    path = DEFAULT_SEARCH
    for fragment, family_path in STORE_FAMILY_SEARCH:
        if fragment in hostname:
            path = family_path
            break
    return base + path.replace(KEYWORD_PLACEHOLDER, encoded)


class DiscoveryOrchestrator:
    """Runs discovery channels in fixed order and merges their results.

    Platform stores use suggest, catalog, collections and then the search
    page; other stores only the search page. Channels run one after
    another, never concurrently.
    """

    def __init__(
        self,
        fetcher: RateLimitedFetcher,
        validator: UrlValidator,
        sleep=asyncio.sleep,
        page_delay: float = 0.6,
        search_page_delay: float = 0.8,
        platform_channels: Optional[Sequence[DiscoveryChannel]] = None,
        search_channel: Optional[DiscoveryChannel] = None,
    ):
        self.validator = validator
        if platform_channels is None:
            platform_channels = (
                SuggestChannel(fetcher, sleep=sleep, page_delay=page_delay),
                CatalogChannel(fetcher, sleep=sleep, page_delay=page_delay),
                CollectionChannel(fetcher, sleep=sleep, page_delay=page_delay),
            )
        self.platform_channels = list(platform_channels)
        self.search_channel = search_channel or SearchPageChannel(
            fetcher, validator, sleep=sleep, page_delay=search_page_delay
        )
        self.logger = logger.bind(service="discovery_orchestrator")

    def channels_for(self, store_name: str) -> List[DiscoveryChannel]:
        if store_name == PLATFORM_STORE:
            return [*self.platform_channels, self.search_channel]
        return [self.search_channel]

    async def discover(self, watch: Any) -> List[DiscoveredProduct]:
        """Deduplicated, keyword-relevant products for a watch.

        Raises:
            UnsafeUrlError: If the watch's store URL fails validation
        """
        safe_store_url = await self.validator.normalize(watch.store_url)
        origin = store_origin(safe_store_url)
        search_url = build_search_url(safe_store_url, watch.keyword, watch.search_url)

        merger = ProductMerger()
        for channel in self.channels_for(watch.store_name):
            found = await channel.collect(origin, watch.keyword, search_url)
            added = merger.add(found, overwrite=channel.authoritative)
            self.logger.debug("channel_merged", channel=channel.name, found=len(found), added=added, total=len(merger))

        products = filter_relevant(watch.keyword, merger.products)
        self.logger.info(
            "discovery_completed",
            keyword=watch.keyword,
            store=origin,
            merged=len(merger),
            relevant=len(products),
        )
        return products
