"""Rate-limited HTTP transport built on httpx.

Every outbound request goes through RateLimitedFetcher: per-host spacing,
User-Agent rotation, a response size cap and bounded retries on 429,
502/503 and transport errors.
"""

import json
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, Optional
from urllib.parse import urlparse

import httpx
import structlog
from tenacity import AsyncRetrying, stop_after_attempt

from stockwatch.core.exceptions import RateLimitedError, ScraperError, TransientNetworkError
from stockwatch.scrapers.utils.rate_limiter import HostRateLimiter
from stockwatch.scrapers.utils.retry import (
    DEFAULT_GET_POLICY,
    DEFAULT_POST_POLICY,
    RetryPolicy,
    classify_transport_error,
    parse_retry_after,
)
from stockwatch.scrapers.utils.user_agents import JSON_ACCEPT, browser_headers

logger = structlog.get_logger(__name__)


@dataclass
class FetchResponse:
    """Decoded response handed to extraction code."""

    status: int
    text: str
    url: str
    headers: Dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    def json(self) -> Any:
        """Parse the body as JSON.

        Raises:
            ValueError: If the body is not valid JSON
        """
        return json.loads(self.text)

    def raise_for_status(self) -> None:
        if not self.ok:
            raise ScraperError(self.url, f"HTTP {self.status}")


class RateLimitedFetcher:
    """Shared async HTTP client with per-host throttling and retries.

    4xx responses other than 429 are returned to the caller untouched;
    platform endpoints use them as signals (422 from cart/add, 404 from
    product.js).
    """

    def __init__(
        self,
        rate_limiter: Optional[HostRateLimiter] = None,
        timeout_ms: int = 15000,
        max_content_length: int = 4 * 1024 * 1024,
        get_policy: RetryPolicy = DEFAULT_GET_POLICY,
        post_policy: RetryPolicy = DEFAULT_POST_POLICY,
        client: Optional[httpx.AsyncClient] = None,
        sleep=None,
    ):
        self.rate_limiter = rate_limiter or HostRateLimiter()
        self.timeout = timeout_ms / 1000.0
        self.max_content_length = max_content_length
        self.get_policy = get_policy
        self.post_policy = post_policy
        self._sleep = sleep
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            follow_redirects=True,
            max_redirects=5,
            timeout=self.timeout,
        )
        self.logger = logger.bind(service="http_fetcher")

    async def get(
        self,
        url: str,
        headers: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> FetchResponse:
        """GET a URL with throttling and retries.

        Raises:
            RateLimitedError: 429 persisted through the retry budget
            TransientNetworkError: 5xx or transport failure persisted
        """
        return await self._request("GET", url, headers, timeout, self.get_policy, params=params)

    async def get_json(
        self,
        url: str,
        headers: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Optional[Any]:
        """GET a JSON endpoint; None on non-2xx or an unparseable body."""
        merged = {"Accept": JSON_ACCEPT}
        merged.update(headers or {})
        response = await self.get(url, headers=merged, timeout=timeout, params=params)
        if not response.ok:
            return None
        try:
            return response.json()
        except ValueError:
            self.logger.debug("json_decode_failed", url=url)
            return None

    async def post(
        self,
        url: str,
        json: Any = None,
        headers: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> FetchResponse:
        """POST JSON with throttling and a short 429 retry budget."""
        return await self._request("POST", url, headers, timeout, self.post_policy, json=json)

    async def _request(
        self,
        method: str,
        url: str,
        headers: Optional[Dict[str, str]],
        timeout: Optional[float],
        policy: RetryPolicy,
        **kwargs,
    ) -> FetchResponse:
        hostname = urlparse(url).hostname or ""
        retry_kwargs = {}
        if self._sleep is not None:
            retry_kwargs["sleep"] = self._sleep

        retrying = AsyncRetrying(
            stop=stop_after_attempt(1 + max(len(policy.rate_limited), len(policy.server_error), len(policy.transport_error))),
            wait=policy.as_wait(),
            retry=policy.as_retry(),
            before_sleep=self._log_retry,
            reraise=True,
            **retry_kwargs,
        )
        async for attempt in retrying:
            with attempt:
                await self.rate_limiter.acquire(hostname)
                return await self._send(method, url, headers, timeout, policy, **kwargs)
        raise ScraperError(url, "retry loop exited without a result")

    async def _send(
        self,
        method: str,
        url: str,
        headers: Optional[Dict[str, str]],
        timeout: Optional[float],
        policy: RetryPolicy,
        **kwargs,
    ) -> FetchResponse:
        merged = browser_headers()
        merged.update(headers or {})
        try:
            response = await self._client.request(
                method,
                url,
                headers=merged,
                timeout=timeout if timeout is not None else self.timeout,
                **kwargs,
            )
        except httpx.TransportError as e:
            raise classify_transport_error(url, e) from e

        if response.status_code == 429:
            raise RateLimitedError(url, parse_retry_after(response.headers.get("retry-after")))
        if response.status_code in policy.retry_statuses:
            raise TransientNetworkError(url, f"HTTP {response.status_code}", status_code=response.status_code)

        body = response.content
        if len(body) > self.max_content_length:
            raise ScraperError(url, f"response exceeds {self.max_content_length} bytes")

        return FetchResponse(
            status=response.status_code,
            text=response.text,
            url=str(response.url),
            headers=dict(response.headers),
        )

    def _log_retry(self, retry_state) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        self.logger.warning(
            "http_retry_scheduled",
            attempt=retry_state.attempt_number,
            delay_seconds=retry_state.next_action.sleep if retry_state.next_action else None,
            error=str(exc),
        )

    @asynccontextmanager
    async def anonymous_session(self) -> AsyncIterator["RateLimitedFetcher"]:
        """Fresh cookie jar sharing this fetcher's host limiter and policies.

        Used for cart probing so the probe never touches another session.
        """
        client = httpx.AsyncClient(follow_redirects=True, max_redirects=5, timeout=self.timeout)
        session = RateLimitedFetcher(
            rate_limiter=self.rate_limiter,
            timeout_ms=int(self.timeout * 1000),
            max_content_length=self.max_content_length,
            get_policy=self.get_policy,
            post_policy=self.post_policy,
            client=client,
            sleep=self._sleep,
        )
        try:
            yield session
        finally:
            await client.aclose()

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()
