"""Price parsing and URL canonicalization helpers."""

import re
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Optional, Union
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse

_CENTS = Decimal("0.01")

# Platform JSON sometimes reports integer minor units (1350) and sometimes
# decimal major units ("13.50"); anything above this is taken as minor units.
MINOR_UNIT_THRESHOLD = Decimal("500")

TRACKING_PARAMS = frozenset(
    [
        "_pos",
        "_sid",
        "_ss",
        "_ga",
        "_gl",
        "ref",
        "fbclid",
        "gclid",
        "utm_source",
        "utm_medium",
        "utm_campaign",
        "utm_term",
        "utm_content",
    ]
)

_CURRENCY_SYMBOLS = re.compile(r"[€$£¥₹]")
_EU_THOUSANDS = re.compile(r"\d+\.\d{3},\d{2}")
_EU_DECIMAL = re.compile(r"\d+,\d{2}$")
_US_THOUSANDS = re.compile(r"\d+,\d{3}\.\d{2}")
_NUMBER = re.compile(r"\d+(?:\.\d+)?")


class PriceNormalizer:
    """Turns price text and platform price fields into 2-decimal Decimals."""

    @staticmethod
    def round_price(value: Union[Decimal, float, int, str, None]) -> Optional[Decimal]:
        """Round a numeric value to cents, or None if it is not a number."""
        if value is None or value == "":
            return None
        try:
            return Decimal(str(value)).quantize(_CENTS, rounding=ROUND_HALF_UP)
        except (InvalidOperation, ValueError):
            return None

    @staticmethod
    def parse_price(raw: Optional[str]) -> Optional[Decimal]:
        """Parse a price string in EU or US notation.

        Handles:
        - "1.299,00 €" -> 1299.00
        - "13,50 €" -> 13.50
        - "$1,299.00" -> 1299.00
        - "€ 24.90" -> 24.90

        Returns:
            Decimal price rounded to cents, or None if nothing parseable
        """
        if not raw:
            return None

        cleaned = _CURRENCY_SYMBOLS.sub("", raw).replace("&nbsp;", "")
        cleaned = re.sub(r"\s", "", cleaned)

        if _EU_THOUSANDS.search(cleaned):
            cleaned = cleaned.replace(".", "").replace(",", ".", 1)
        elif _EU_DECIMAL.search(cleaned):
            cleaned = cleaned.replace(",", ".", 1)
        elif _US_THOUSANDS.search(cleaned):
            cleaned = cleaned.replace(",", "")

        match = _NUMBER.search(cleaned)
        if not match:
            return None
        return PriceNormalizer.round_price(match.group(0))

    @staticmethod
    def normalize_minor_units(value: Union[Decimal, float, int, str, None]) -> Optional[Decimal]:
        """Convert a platform price field to major units.

        1350 -> 13.50, "13.50" -> 13.50, 499 -> 499.00.
        """
        price = PriceNormalizer.round_price(value)
        if price is None:
            return None
        if price > MINOR_UNIT_THRESHOLD:
            price = PriceNormalizer.round_price(price / 100)
        return price

    @staticmethod
    def from_minor_units(value: Union[Decimal, float, int, str, None]) -> Optional[Decimal]:
        """Convert a field that is always in minor units (cents)."""
        price = PriceNormalizer.round_price(value)
        if price is None:
            return None
        return PriceNormalizer.round_price(price / 100)


def strip_tracking_params(url: str) -> str:
    """Drop the fragment and known tracking parameters from a URL.

    An empty query string is removed entirely.
    """
    if not url:
        return url

    parsed = urlparse(url)
    kept = [
        (k, v)
        for k, v in parse_qsl(parsed.query, keep_blank_values=True)
        if k not in TRACKING_PARAMS
    ]
    return urlunparse(parsed._replace(query=urlencode(kept), fragment=""))


def canonical_product_url(url: str) -> str:
    """Canonical form used to dedupe discovered products.

    Query and fragment are removed and /collections/<c>/products/<h> is
    collapsed to /products/<h>.
    """
    parsed = urlparse(url)
    path = parsed.path.rstrip("/") or "/"
    match = re.search(r"/products/([^/]+)", path)
    if match:
        path = f"/products/{match.group(1)}"
    return urlunparse(
        (parsed.scheme.lower(), parsed.netloc.lower(), path, "", "", "")
    )
