"""Tests for evidence extraction.

Tests cover:
- Fusion of strategy readings (True beats False beats unknown)
- Platform product JSON interpretation and when it is decisive
- Structured data and selector strategies on static HTML
- EvidenceExtractor ordering with a mocked fetcher
"""

from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest
from bs4 import BeautifulSoup

from stockwatch.core.exceptions import ScraperError
from stockwatch.scrapers.base import EvidenceSource, SelectorProfile, SignalReading
from stockwatch.scrapers.extractor import EvidenceExtractor, needs_render, resolve_evidence
from stockwatch.scrapers.strategies.platform_api import interpret_product_json, is_unambiguously_sold_out
from stockwatch.scrapers.strategies.selectors import read_selectors
from stockwatch.scrapers.strategies.structured_data import read_structured_data
from stockwatch.scrapers.utils.http_client import FetchResponse

PRODUCT_URL = "https://shop.example.com/products/booster-box"

IN_STOCK_LD_HTML = """
<html><head>
<script type="application/ld+json">
{"@context": "https://schema.org", "@type": "Product", "name": "Booster Box",
 "image": ["https://cdn.example.com/box.jpg"],
 "offers": [{"@type": "Offer", "price": "129.90", "availability": "https://schema.org/InStock"}]}
</script>
</head><body><h1>Booster Box</h1></body></html>
"""


def sold_out_variant(**overrides):
    variant = {
        "id": 111,
        "price": 12990,
        "available": False,
        "inventory_management": "shopify",
        "inventory_policy": "deny",
        "inventory_quantity": 0,
    }
    variant.update(overrides)
    return variant


@pytest.fixture
def shop_profile():
    return SelectorProfile(
        name="shopify",
        stock_selectors=(".stock",),
        price_selectors=(".price",),
        add_to_cart_selectors=('button[name="add"]',),
        in_stock_phrases=("in stock", "add to cart"),
        out_of_stock_phrases=("sold out", "out of stock"),
        platform="shopify",
    )


@pytest.fixture
def validator():
    mock = MagicMock()
    mock.normalize = AsyncMock(side_effect=lambda url: url)
    return mock


# ============================================================================
# TESTS: FUSION
# ============================================================================

class TestResolveEvidence:
    """Test how readings fold into one verdict."""

    def test_true_beats_false(self):
        """Any True reading wins over False readings."""
        evidence = resolve_evidence([
            SignalReading(source=EvidenceSource.PLATFORM_API, in_stock=False, price=Decimal("10.00")),
            SignalReading(source=EvidenceSource.SELECTOR, in_stock=True, price=Decimal("9.00")),
        ])
        assert evidence.in_stock is True

    def test_false_beats_unknown(self):
        """False wins when nothing says True."""
        evidence = resolve_evidence([
            SignalReading(source=EvidenceSource.STRUCTURED_DATA),
            SignalReading(source=EvidenceSource.SELECTOR, in_stock=False),
        ])
        assert evidence.in_stock is False
        assert evidence.raw_stock_text == "out of stock"
        assert evidence.in_stock_flag is False

    def test_all_unknown(self):
        """No verdict anywhere gives None, persisted as not in stock."""
        evidence = resolve_evidence([SignalReading(source=EvidenceSource.SELECTOR)])
        assert evidence.in_stock is None
        assert evidence.in_stock_flag is False

    def test_price_taken_by_precedence(self):
        """Price comes from the highest-precedence reading that has one."""
        evidence = resolve_evidence([
            SignalReading(source=EvidenceSource.SELECTOR, price=Decimal("9.00")),
            SignalReading(source=EvidenceSource.STRUCTURED_DATA, price=Decimal("12.50")),
            SignalReading(source=EvidenceSource.PLATFORM_API),
        ])
        assert evidence.price == Decimal("12.50")
        assert evidence.sources == [
            EvidenceSource.PLATFORM_API,
            EvidenceSource.STRUCTURED_DATA,
            EvidenceSource.SELECTOR,
        ]

    def test_needs_render(self, shop_profile):
        """Render only when mandated or when static pages offered nothing."""
        empty = [SignalReading(source=EvidenceSource.SELECTOR)]
        found = [SignalReading(source=EvidenceSource.SELECTOR, found_indicators=True)]
        decided = [SignalReading(source=EvidenceSource.PLATFORM_API, in_stock=False, found_indicators=True)]

        assert needs_render(shop_profile, empty) is True
        assert needs_render(shop_profile, found) is False
        assert needs_render(shop_profile, decided) is False
        assert needs_render(SelectorProfile(name="mimovrste", requires_render=True), found) is True


# ============================================================================
# TESTS: PLATFORM PRODUCT JSON
# ============================================================================

class TestProductJson:
    """Test platform product JSON interpretation."""

    def test_available_variant_is_decisive(self):
        """An available variant with an id is trusted outright."""
        data = {
            "available": True,
            "featured_image": "//cdn.example.com/a.jpg",
            "variants": [sold_out_variant(), sold_out_variant(id=222, available=True, price=1350, inventory_quantity=4)],
        }
        reading = interpret_product_json(data)

        assert reading.in_stock is True
        assert reading.decisive is True
        assert reading.variant_id == "222"
        assert reading.price == Decimal("13.50")
        assert reading.stock_quantity == 4
        assert reading.image_url == "https://cdn.example.com/a.jpg"

    def test_strict_sold_out_is_decisive(self):
        """Tracked, deny-policy, zero-quantity variants prove sold out."""
        data = {"available": False, "variants": [sold_out_variant(), sold_out_variant(id=2)]}

        assert is_unambiguously_sold_out(data) is True
        reading = interpret_product_json(data)
        assert reading.in_stock is False
        assert reading.decisive is True

    @pytest.mark.parametrize(
        "overrides",
        [
            {"inventory_policy": "continue"},
            {"inventory_management": None},
            {"inventory_quantity": None},
            {"inventory_quantity": 3},
        ],
    )
    def test_loose_sold_out_is_not_decisive(self, overrides):
        """Overselling or untracked inventory leaves the verdict open."""
        reading = interpret_product_json({"available": False, "variants": [sold_out_variant(**overrides)]})

        assert reading.in_stock is False
        assert reading.decisive is False


# ============================================================================
# TESTS: STATIC HTML STRATEGIES
# ============================================================================

class TestStaticStrategies:
    """Test structured data and selector reading."""

    def test_structured_data_in_stock(self):
        """JSON-LD InStock offer gives True with the offer price."""
        reading = read_structured_data(BeautifulSoup(IN_STOCK_LD_HTML, "html.parser"), PRODUCT_URL)

        assert reading.in_stock is True
        assert reading.price == Decimal("129.90")
        assert reading.image_url == "https://cdn.example.com/box.jpg"

    def test_structured_data_graph_out_of_stock(self):
        """Products inside @graph are found; OutOfStock gives False."""
        html = """<script type="application/ld+json">
        {"@graph": [{"@type": "WebPage"}, {"@type": "Product",
          "offers": {"price": 20, "availability": "http://schema.org/OutOfStock"}}]}
        </script>"""
        reading = read_structured_data(BeautifulSoup(html, "html.parser"))

        assert reading.in_stock is False
        assert reading.price == Decimal("20.00")

    def test_selectors_disabled_button_is_false(self, shop_profile):
        """A disabled add-to-cart button overrides in-stock text."""
        html = '<div class="stock">In stock</div><button name="add" disabled>Add to cart</button>'
        reading = read_selectors(BeautifulSoup(html, "html.parser"), shop_profile)

        assert reading.in_stock is False
        assert reading.found_indicators is True

    def test_selectors_out_phrase_checked_first(self, shop_profile):
        """Out-of-stock phrases win over in-stock phrases in the same text."""
        html = '<div class="stock">Not in stock: sold out</div><span class="price">13,50 €</span>'
        reading = read_selectors(BeautifulSoup(html, "html.parser"), shop_profile)

        assert reading.in_stock is False
        assert reading.price == Decimal("13.50")

    def test_selectors_sold_out_badge(self, shop_profile):
        """A sold-out badge decides when nothing else did."""
        reading = read_selectors(BeautifulSoup('<span class="badge--sold-out">x</span>', "html.parser"), shop_profile)
        assert reading.in_stock is False


# ============================================================================
# TESTS: EXTRACTOR
# ============================================================================

class TestEvidenceExtractor:
    """Test the strategy pipeline end to end with mocked HTTP."""

    async def test_platform_unavailable_overridden_by_structured_data(self, shop_profile, validator):
        """Non-decisive platform False loses to JSON-LD InStock."""
        fetcher = MagicMock()
        fetcher.get_json = AsyncMock(return_value={
            "available": False,
            "variants": [sold_out_variant(inventory_policy="continue")],
        })
        fetcher.get = AsyncMock(return_value=FetchResponse(status=200, text=IN_STOCK_LD_HTML, url=PRODUCT_URL))

        extractor = EvidenceExtractor(fetcher, validator)
        evidence = await extractor.extract(PRODUCT_URL, shop_profile)

        assert evidence.in_stock is True
        assert evidence.is_recognized_platform is True
        assert evidence.price == Decimal("129.90")
        assert evidence.variant_id == "111"
        fetcher.get.assert_awaited_once()

    async def test_decisive_platform_skips_page_fetch(self, shop_profile, validator):
        """A decisive platform verdict returns without fetching HTML."""
        fetcher = MagicMock()
        fetcher.get_json = AsyncMock(return_value={
            "available": True,
            "variants": [sold_out_variant(available=True, inventory_quantity=2)],
        })
        fetcher.get = AsyncMock()

        evidence = await EvidenceExtractor(fetcher, validator).extract(PRODUCT_URL, shop_profile)

        assert evidence.in_stock is True
        assert evidence.sources == [EvidenceSource.PLATFORM_API]
        fetcher.get.assert_not_awaited()

    async def test_unfetchable_page_returns_none(self, validator):
        """Nothing fetched at all gives None."""
        fetcher = MagicMock()
        fetcher.get = AsyncMock(return_value=FetchResponse(status=500, text="", url="https://a.example.com/item/1"))

        evidence = await EvidenceExtractor(fetcher, validator).extract(
            "https://a.example.com/item/1", SelectorProfile(name="custom")
        )

        assert evidence is None

    async def test_render_fallback_when_static_empty(self, validator):
        """Rendering runs when the static page showed no indicators."""
        fetcher = MagicMock()
        fetcher.get = AsyncMock(return_value=FetchResponse(status=200, text="<html></html>", url="https://a.example.com/item/1"))
        rendered = MagicMock()
        rendered.read = AsyncMock(return_value=SignalReading(
            source=EvidenceSource.RENDERED, in_stock=True, price=Decimal("5.00"), found_indicators=True
        ))

        evidence = await EvidenceExtractor(fetcher, validator, rendered=rendered).extract(
            "https://a.example.com/item/1", SelectorProfile(name="custom")
        )

        assert evidence.in_stock is True
        assert evidence.price == Decimal("5.00")
        rendered.read.assert_awaited_once()

    async def test_render_failure_keeps_static_evidence(self, validator):
        """A failed render still returns whatever static reading exists."""
        fetcher = MagicMock()
        fetcher.get = AsyncMock(return_value=FetchResponse(status=200, text="<html></html>", url="https://a.example.com/item/1"))
        rendered = MagicMock()
        rendered.read = AsyncMock(side_effect=ScraperError("render", "timeout"))

        evidence = await EvidenceExtractor(fetcher, validator, rendered=rendered).extract(
            "https://a.example.com/item/1", SelectorProfile(name="custom")
        )

        assert evidence is not None
        assert evidence.in_stock is None


# ============================================================================
# Run Tests
# ============================================================================

if __name__ == "__main__":
    pytest.main([__file__, "-v", "-s"])
