"""Tests for per-order limit probing.

A fake cart session stands in for the anonymous HTTP session; it mimics
how a storefront answers /cart/add.js, /cart.js and /cart/clear.js.
"""

from contextlib import asynccontextmanager
from json import dumps
from unittest.mock import MagicMock

import pytest

from stockwatch.core.exceptions import TransientNetworkError
from stockwatch.scrapers.order_limit import (
    OrderLimitProber,
    fallback_limit,
    parse_limit_message,
    rejection_text,
)
from stockwatch.scrapers.utils.http_client import FetchResponse

ORIGIN = "https://cards.example.com"
VARIANT = "4242"


class FakeCartSession:
    """Storefront cart with a per-order limit.

    mode "message": rejects above the limit with "at most N".
    mode "silent_cap": accepts anything but stores at most the limit.
    mode "opaque": rejects above the limit without saying why.
    """

    def __init__(self, limit, mode="message", fail_add=False, title="Booster Box"):
        self.limit = limit
        self.title = title
        self.limit_text = limit
        self.mode = mode
        self.fail_add = fail_add
        self.quantity = 0
        self.adds = []
        self.clears = 0

    async def post(self, url, json=None, headers=None, timeout=None):
        if url.endswith("/cart/clear.js"):
            self.clears += 1
            self.quantity = 0
            return FetchResponse(status=200, text="{}", url=url)

        if self.fail_add:
            raise TransientNetworkError(url, "ConnectError")
        qty = json["items"][0]["quantity"]
        self.adds.append(qty)
        if qty <= self.limit:
            self.quantity = qty
            return FetchResponse(status=200, text=self._added_body(qty), url=url)
        if self.mode == "silent_cap":
            self.quantity = self.limit
            return FetchResponse(status=200, text=self._added_body(self.limit), url=url)
        if self.mode == "message":
            body = {"status": 422, "description": f"You can add at most {self.limit_text} of this item to your cart."}
        else:
            body = {"status": 422, "description": "Cannot add this quantity."}
        return FetchResponse(status=422, text=dumps(body), url=url)

    def _added_body(self, qty):
        item = {"variant_id": int(VARIANT), "quantity": qty, "title": self.title, "product_title": self.title}
        return dumps({"items": [item]})

    async def get_json(self, url, headers=None, timeout=None, params=None):
        items = [{"variant_id": int(VARIANT), "quantity": self.quantity}] if self.quantity else []
        return {"items": items}


def prober_for(session):
    fetcher = MagicMock()

    @asynccontextmanager
    async def anonymous_session():
        yield session

    fetcher.anonymous_session = anonymous_session
    return OrderLimitProber(fetcher, probe_quantity=99, max_search_steps=7)


# ============================================================================
# TESTS: MESSAGE PARSING
# ============================================================================

class TestLimitMessages:
    """Test extraction of N from validation text."""

    @pytest.mark.parametrize(
        "text,expected",
        [
            ("You can add at most 3 of this item", 3),
            ("You can only add 2 to the cart.", 2),
            ("Only 5 left", 5),
            ("Maximum quantity: 4", 4),
            ("max 6 per customer", 6),
            ("Cannot add this quantity", None),
            ("", None),
            (None, None),
        ],
    )
    def test_parse_limit_message(self, text, expected):
        """Known phrasings yield the number; anything else yields None."""
        assert parse_limit_message(text) == expected

    def test_rejection_text(self):
        """Only error fields of rejected adds are read."""
        accepted = FetchResponse(status=200, text=dumps({"items": [{"title": "Max 256"}]}), url=ORIGIN)
        rejected = FetchResponse(status=422, text=dumps({"description": "at most 2", "title": "Max 9"}), url=ORIGIN)
        plain = FetchResponse(status=422, text="Only 4 left", url=ORIGIN)

        assert rejection_text(accepted) == ""
        assert parse_limit_message(rejection_text(rejected)) == 2
        assert parse_limit_message(rejection_text(plain)) == 4

    def test_fallback_limit(self):
        """Fallback is the stock hint capped at 10, else 1."""
        assert fallback_limit(3) == 3
        assert fallback_limit(25) == 10
        assert fallback_limit(0) == 1


# ============================================================================
# TESTS: PROBER
# ============================================================================

class TestOrderLimitProber:
    """Test probing against fake storefront carts."""

    async def test_stated_limit(self):
        """A rejection saying "at most 3" gives 3 and leaves the cart cleared."""
        session = FakeCartSession(limit=3, mode="message")

        limit = await prober_for(session).probe_limit(ORIGIN, VARIANT)

        assert limit == 3
        assert session.adds == [99]
        assert session.clears >= 1
        assert session.quantity == 0

    async def test_silently_capped_cart(self):
        """An accepted add reports the quantity the cart actually kept."""
        session = FakeCartSession(limit=5, mode="silent_cap")

        assert await prober_for(session).probe_limit(ORIGIN, VARIANT) == 5
        assert session.quantity == 0

    async def test_no_limit(self):
        """Accepting the full probe quantity returns it."""
        session = FakeCartSession(limit=500)
        assert await prober_for(session).probe_limit(ORIGIN, VARIANT) == 99

    async def test_binary_search_on_opaque_rejection(self):
        """Unexplained rejections are narrowed down by bisection within the step budget."""
        session = FakeCartSession(limit=4, mode="opaque")

        limit = await prober_for(session).probe_limit(ORIGIN, VARIANT)

        assert limit == 4
        assert len(session.adds) <= 1 + 7
        assert session.quantity == 0

    async def test_product_title_numbers_ignored(self):
        """Numbers in the accepted line item's title are not read as a limit."""
        session = FakeCartSession(limit=500, title="iPhone 15 Pro Max 256GB")

        assert await prober_for(session).probe_limit(ORIGIN, VARIANT) == 99

    async def test_stated_limit_capped_at_request(self):
        """A stated limit above the requested quantity is capped."""
        session = FakeCartSession(limit=3, mode="message")
        session.limit_text = 250

        assert await prober_for(session).probe_limit(ORIGIN, VARIANT) == 99

    async def test_network_failure_falls_back(self):
        """Errors never escape; the stock hint caps the fallback."""
        session = FakeCartSession(limit=3, fail_add=True)

        assert await prober_for(session).probe_limit(ORIGIN, VARIANT, stock_hint=25) == 10
        assert session.clears == 1

    async def test_network_failure_without_hint(self):
        """Without a hint the fallback is a single unit."""
        session = FakeCartSession(limit=3, fail_add=True)
        assert await prober_for(session).probe_limit(ORIGIN, VARIANT) == 1


# ============================================================================
# Run Tests
# ============================================================================

if __name__ == "__main__":
    pytest.main([__file__, "-v", "-s"])
