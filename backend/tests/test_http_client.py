"""Tests for the rate-limited HTTP transport.

Uses respx to stub httpx; retry sleeps are replaced with an AsyncMock so
no test waits on real backoff.
"""

from unittest.mock import AsyncMock

import httpx
import pytest
import respx

from stockwatch.core.exceptions import RateLimitedError, ScraperError, TransientNetworkError
from stockwatch.scrapers.utils.http_client import RateLimitedFetcher
from stockwatch.scrapers.utils.rate_limiter import HostRateLimiter

PRODUCT_URL = "https://shop.example.com/products/box.js"


@pytest.fixture
def sleep():
    return AsyncMock()


@pytest.fixture
def fetcher(sleep):
    return RateLimitedFetcher(
        rate_limiter=HostRateLimiter(min_interval_ms=0, jitter_ms=0),
        max_content_length=1024,
        sleep=sleep,
    )


# ============================================================================
# TESTS: RESPONSES
# ============================================================================

class TestFetcherResponses:
    """Test plain responses and JSON decoding."""

    @respx.mock
    async def test_get_returns_body(self, fetcher):
        """A 200 response is returned as a FetchResponse."""
        respx.get(PRODUCT_URL).mock(return_value=httpx.Response(200, text="hello"))

        response = await fetcher.get(PRODUCT_URL)

        assert response.ok
        assert response.text == "hello"
        await fetcher.close()

    @respx.mock
    async def test_get_json_parses(self, fetcher):
        """get_json returns decoded JSON for 2xx."""
        respx.get(PRODUCT_URL).mock(return_value=httpx.Response(200, json={"id": 1, "available": True}))

        data = await fetcher.get_json(PRODUCT_URL)

        assert data == {"id": 1, "available": True}
        await fetcher.close()

    @respx.mock
    async def test_get_json_none_on_404(self, fetcher):
        """A 404 is a signal, not an error: get_json gives None."""
        route = respx.get(PRODUCT_URL).mock(return_value=httpx.Response(404, text="missing"))

        assert await fetcher.get_json(PRODUCT_URL) is None
        assert route.call_count == 1
        await fetcher.close()

    @respx.mock
    async def test_get_json_none_on_html(self, fetcher):
        """An HTML body on a JSON endpoint gives None."""
        respx.get(PRODUCT_URL).mock(return_value=httpx.Response(200, text="<html></html>"))

        assert await fetcher.get_json(PRODUCT_URL) is None
        await fetcher.close()

    @respx.mock
    async def test_params_reach_the_request(self, fetcher):
        """Query params are sent with the request."""
        route = respx.route(host="shop.example.com", path="/collections/all/products.json").mock(
            return_value=httpx.Response(200, json={"products": []})
        )

        await fetcher.get_json(
            "https://shop.example.com/collections/all/products.json",
            params={"limit": 50, "page": 2},
        )

        request = route.calls.last.request
        assert request.url.params["limit"] == "50"
        assert request.url.params["page"] == "2"
        await fetcher.close()

    @respx.mock
    async def test_oversized_body_rejected(self, fetcher):
        """Bodies above the size cap raise ScraperError."""
        respx.get(PRODUCT_URL).mock(return_value=httpx.Response(200, text="x" * 4096))

        with pytest.raises(ScraperError):
            await fetcher.get(PRODUCT_URL)
        await fetcher.close()

    @respx.mock
    async def test_client_error_passed_through(self, fetcher):
        """422 from cart/add reaches the caller without retries."""
        route = respx.post("https://shop.example.com/cart/add.js").mock(
            return_value=httpx.Response(422, json={"description": "You can only add 2"})
        )

        response = await fetcher.post("https://shop.example.com/cart/add.js", json={"id": 1, "quantity": 99})

        assert response.status == 422
        assert route.call_count == 1
        await fetcher.close()


# ============================================================================
# TESTS: RETRIES
# ============================================================================

class TestFetcherRetries:
    """Test bounded retries on 429, 5xx and transport errors."""

    @respx.mock
    async def test_429_then_success(self, fetcher, sleep):
        """A single 429 is retried after the first backoff step."""
        route = respx.get(PRODUCT_URL).mock(
            side_effect=[httpx.Response(429), httpx.Response(200, text="ok")]
        )

        response = await fetcher.get(PRODUCT_URL)

        assert response.text == "ok"
        assert route.call_count == 2
        sleep.assert_awaited_once_with(5.0)
        await fetcher.close()

    @respx.mock
    async def test_429_exhausts_budget(self, fetcher, sleep):
        """Persistent 429 gives up after three retries."""
        route = respx.get(PRODUCT_URL).mock(return_value=httpx.Response(429, headers={"Retry-After": "20"}))

        with pytest.raises(RateLimitedError) as exc_info:
            await fetcher.get(PRODUCT_URL)

        assert route.call_count == 4
        assert exc_info.value.retry_after == 20.0
        assert [c.args[0] for c in sleep.await_args_list] == [20.0, 20.0, 45.0]
        await fetcher.close()

    @respx.mock
    async def test_503_exhausts_budget(self, fetcher):
        """503 is retried twice then raised as transient."""
        route = respx.get(PRODUCT_URL).mock(return_value=httpx.Response(503))

        with pytest.raises(TransientNetworkError) as exc_info:
            await fetcher.get(PRODUCT_URL)

        assert route.call_count == 3
        assert exc_info.value.status_code == 503
        await fetcher.close()

    @respx.mock
    async def test_transport_error_retried(self, fetcher):
        """Connection errors are retried then succeed."""
        route = respx.get(PRODUCT_URL).mock(
            side_effect=[httpx.ConnectError("boom"), httpx.Response(200, text="ok")]
        )

        response = await fetcher.get(PRODUCT_URL)

        assert response.ok
        assert route.call_count == 2
        await fetcher.close()

    @respx.mock
    async def test_post_does_not_retry_5xx(self, fetcher):
        """Cart POSTs fail fast on server errors."""
        route = respx.post("https://shop.example.com/cart/add.js").mock(return_value=httpx.Response(502))

        with pytest.raises(TransientNetworkError):
            await fetcher.post("https://shop.example.com/cart/add.js", json={"id": 1})

        assert route.call_count == 1
        await fetcher.close()


# ============================================================================
# TESTS: ANONYMOUS SESSION
# ============================================================================

class TestAnonymousSession:
    """Test the isolated cookie session used for cart probing."""

    async def test_shares_rate_limiter(self, fetcher):
        """The session reuses the parent's host limiter."""
        async with fetcher.anonymous_session() as session:
            assert session.rate_limiter is fetcher.rate_limiter
            assert session._client is not fetcher._client
        await fetcher.close()


# ============================================================================
# Run Tests
# ============================================================================

if __name__ == "__main__":
    pytest.main([__file__, "-v", "-s"])
