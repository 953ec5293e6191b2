"""Scraper utilities for transport, throttling, retries and price parsing."""

from .rate_limiter import HostRateLimiter, HostThrottle
from .retry import RetryPolicy, DEFAULT_GET_POLICY, DEFAULT_POST_POLICY
from .user_agents import get_random_user_agent, browser_headers, USER_AGENTS
from .normalizer import (
    PriceNormalizer,
    canonical_product_url,
    strip_tracking_params,
    TRACKING_PARAMS,
)
from .url_safety import UrlValidator, is_private_address
from .http_client import FetchResponse, RateLimitedFetcher


__all__ = [
    # Rate limiting
    "HostRateLimiter",
    "HostThrottle",
    # Retry
    "RetryPolicy",
    "DEFAULT_GET_POLICY",
    "DEFAULT_POST_POLICY",
    # User agents
    "get_random_user_agent",
    "browser_headers",
    "USER_AGENTS",
    # Normalization
    "PriceNormalizer",
    "canonical_product_url",
    "strip_tracking_params",
    "TRACKING_PARAMS",
    # URL safety
    "UrlValidator",
    "is_private_address",
    # Transport
    "FetchResponse",
    "RateLimitedFetcher",
]
