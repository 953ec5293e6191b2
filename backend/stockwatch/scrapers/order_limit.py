"""Per-order quantity limit discovery through an anonymous cart session."""

import re
from typing import Any, Optional

import structlog

from stockwatch.core.exceptions import StockWatchException
from stockwatch.scrapers.utils.http_client import FetchResponse, RateLimitedFetcher

logger = structlog.get_logger(__name__)

FALLBACK_CAP = 10

_LIMIT_PATTERNS = (
    re.compile(r"at\s+most\s+(\d+)", re.IGNORECASE),
    re.compile(r"only\s+(?:add\s+)?(\d+)", re.IGNORECASE),
    re.compile(r"max(?:imum)?\s*(?:qty|quantity)?\s*(?:of\s+)?[:\-]?\s*(\d+)", re.IGNORECASE),
)


def parse_limit_message(text: Optional[str]) -> Optional[int]:
    """Extract N from cart validation text such as "at most 2" or "maximum: 3"."""
    if not text:
        return None
    for pattern in _LIMIT_PATTERNS:
        match = pattern.search(text)
        if match:
            value = int(match.group(1))
            if value > 0:
                return value
    return None


def fallback_limit(stock_hint: int) -> int:
    """Conservative limit when probing is inconclusive."""
    if stock_hint and stock_hint > 0:
        return min(stock_hint, FALLBACK_CAP)
    return 1


def rejection_text(response: FetchResponse) -> str:
    """Validation text of a rejected add; empty for accepted ones.

    Only the error fields are read so product titles in the body never count.
    """
    if response.ok:
        return ""
    try:
        body = response.json()
    except ValueError:
        return response.text or ""
    if not isinstance(body, dict):
        return ""
    parts = [body.get(key) for key in ("description", "message", "errors")]
    return " ".join(str(part) for part in parts if isinstance(part, (str, int)))


def _cart_quantity(cart: Any, variant_id: str) -> Optional[int]:
    if not isinstance(cart, dict):
        return None
    for item in cart.get("items") or []:
        if isinstance(item, dict) and str(item.get("variant_id")) == str(variant_id):
            qty = item.get("quantity")
            if isinstance(qty, int) and qty > 0:
                return qty
    return None


class OrderLimitProber:
    """Finds the maximum purchasable quantity for a platform variant.

    Adds a high quantity to a throwaway cart and reads the store's answer:
    an explicit "at most N" message, the quantity the cart accepted, or,
    when the rejection says nothing useful, a binary search over add
    attempts. The cart is cleared and the session closed whatever happens.
    """

    def __init__(self, fetcher: RateLimitedFetcher, probe_quantity: int = 99, max_search_steps: int = 7):
        self.fetcher = fetcher
        self.probe_quantity = probe_quantity
        self.max_search_steps = max_search_steps
        self.logger = logger.bind(service="order_limit_prober")

    async def probe_limit(self, store_domain: str, variant_id: str, stock_hint: int = 0) -> int:
        """Return the per-order limit for variant_id on store_domain. Never raises."""
        origin = store_domain.rstrip("/")
        try:
            async with self.fetcher.anonymous_session() as session:
                try:
                    limit = await self._probe(session, origin, variant_id)
                finally:
                    await self._clear(session, origin)
        except (StockWatchException, ValueError) as e:
            self.logger.warning("order_limit_probe_failed", store=origin, variant_id=variant_id, error=str(e))
            limit = None

        if limit is None:
            limit = fallback_limit(stock_hint)
            self.logger.info("order_limit_fallback", store=origin, variant_id=variant_id, limit=limit)
        else:
            self.logger.info("order_limit_detected", store=origin, variant_id=variant_id, limit=limit)
        return limit

    async def _probe(self, session: RateLimitedFetcher, origin: str, variant_id: str) -> Optional[int]:
        response = await self._add(session, origin, variant_id, self.probe_quantity)

        stated = parse_limit_message(rejection_text(response))
        if stated is not None:
            return min(stated, self.probe_quantity)

        if response.ok:
            observed = await self._observed_quantity(session, origin, variant_id)
            if observed is not None:
                return min(observed, self.probe_quantity)
            return self.probe_quantity

        return await self._binary_search(session, origin, variant_id)

    async def _binary_search(self, session: RateLimitedFetcher, origin: str, variant_id: str) -> Optional[int]:
        """Largest quantity the cart accepts, between 1 and probe_quantity - 1."""
        low, high = 0, self.probe_quantity - 1
        for _ in range(self.max_search_steps):
            if low >= high:
                break
            mid = (low + high + 1) // 2
            await self._clear(session, origin)
            response = await self._add(session, origin, variant_id, mid)
            stated = parse_limit_message(rejection_text(response))
            if stated is not None:
                return min(stated, mid)
            if response.ok:
                observed = await self._observed_quantity(session, origin, variant_id)
                if observed is not None and observed < mid:
                    return observed
                low = mid
            else:
                high = mid - 1
        return low or None

    async def _add(self, session: RateLimitedFetcher, origin: str, variant_id: str, quantity: int) -> FetchResponse:
        return await session.post(
            f"{origin}/cart/add.js",
            json={"items": [{"id": int(variant_id), "quantity": quantity}]},
            headers={"Accept": "application/json", "Content-Type": "application/json"},
        )

    async def _observed_quantity(self, session: RateLimitedFetcher, origin: str, variant_id: str) -> Optional[int]:
        cart = await session.get_json(f"{origin}/cart.js")
        return _cart_quantity(cart, variant_id)

    async def _clear(self, session: RateLimitedFetcher, origin: str) -> None:
        try:
            await session.post(f"{origin}/cart/clear.js", json={}, headers={"Accept": "application/json"})
        except StockWatchException as e:
            self.logger.debug("cart_clear_failed", store=origin, error=str(e))
