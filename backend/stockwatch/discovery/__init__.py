"""Keyword discovery: channels, merging and orchestration."""

from .matching import (
    FUZZY_MATCH_THRESHOLD,
    ProductMerger,
    filter_relevant,
    is_relevant,
    title_similarity,
    tokenize,
)
from .channels import (
    CatalogChannel,
    CollectionChannel,
    DiscoveryChannel,
    SearchPageChannel,
    SuggestChannel,
    parse_search_page,
)
from .orchestrator import DiscoveryOrchestrator, build_search_url

__all__ = [
    # Matching
    "FUZZY_MATCH_THRESHOLD",
    "ProductMerger",
    "filter_relevant",
    "is_relevant",
    "title_similarity",
    "tokenize",
    # Channels
    "CatalogChannel",
    "CollectionChannel",
    "DiscoveryChannel",
    "SearchPageChannel",
    "SuggestChannel",
    "parse_search_page",
    # Orchestration
    "DiscoveryOrchestrator",
    "build_search_url",
]
