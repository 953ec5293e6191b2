"""Shopify-style storefront helpers: URL shapes, detection and cart links."""

from typing import Iterable, List, Optional, Sequence, Tuple
from urllib.parse import urlparse

PLATFORM_STORE = "shopify"

# Profiles with their own hand-tuned selectors; URL shape alone never moves
# them, but a check that recognizes platform evidence files the target under
# PLATFORM_STORE
BUILTIN_STORES = ("amazon", "bigbang", "mimovrste", PLATFORM_STORE)

PLATFORM_HTML_MARKERS = ("cdn.shopify.com", "Shopify.theme", "/cart/add")


def _path_parts(url: str) -> List[str]:
    return [p for p in urlparse(url).path.split("/") if p]


def store_origin(url: str) -> str:
    """scheme://host[:port] of a URL."""
    parsed = urlparse(url)
    return f"{parsed.scheme}://{parsed.netloc}"


def product_handle(url: str) -> Optional[str]:
    """Handle from /products/<handle> or /collections/<c>/products/<handle>."""
    parts = _path_parts(url)
    if "products" not in parts:
        return None
    idx = parts.index("products")
    if idx + 1 >= len(parts):
        return None
    handle = parts[idx + 1]
    for suffix in (".js", ".json"):
        if handle.endswith(suffix):
            handle = handle[: -len(suffix)]
    return handle or None


def collection_handle(url: str) -> Optional[str]:
    """Handle of a bare /collections/<c> page (not a product under it)."""
    parts = _path_parts(url)
    if "collections" not in parts or "products" in parts:
        return None
    idx = parts.index("collections")
    if idx + 1 >= len(parts):
        return None
    return parts[idx + 1]


def has_platform_url_shape(url: str) -> bool:
    return product_handle(url) is not None or collection_handle(url) is not None


def product_js_url(url: str) -> Optional[str]:
    handle = product_handle(url)
    if not handle:
        return None
    return f"{store_origin(url)}/products/{handle}.js"


def effective_store_name(store: str, url: str) -> str:
    """Store profile to use for a target.

    Targets filed under a non-builtin profile whose URL has a platform
    product path are treated as platform targets.
    """
    if store in BUILTIN_STORES:
        return store
    if product_handle(url) is not None:
        return PLATFORM_STORE
    return store


def looks_like_platform_html(html: Optional[str]) -> bool:
    if not html:
        return False
    return any(marker in html for marker in PLATFORM_HTML_MARKERS)


def build_cart_url(
    origin: str,
    items: Sequence[Tuple[str, int]],
    checkout: bool = False,
) -> Optional[str]:
    """Permalink that fills a cart with the given (variant_id, quantity) pairs.

    Returns:
        /cart/<v>:<q>,...?return_to=/cart, or ?checkout to go straight to
        checkout; None when there is nothing to add
    """
    parts = [f"{variant}:{max(1, int(qty))}" for variant, qty in items if variant]
    if not parts:
        return None
    suffix = "checkout" if checkout else "return_to=/cart"
    return f"{origin.rstrip('/')}/cart/{','.join(parts)}?{suffix}"


def cart_items_for_origin(targets: Iterable, origin: str) -> List[Tuple[str, int]]:
    """(variant_id, quantity) for in-stock platform targets on one origin.

    Quantity is the target's max_order_qty, at least 1.
    """
    items: List[Tuple[str, int]] = []
    seen = set()
    for target in targets:
        if target.store != PLATFORM_STORE or not target.in_stock or not target.variant_id:
            continue
        if store_origin(target.url) != origin or target.variant_id in seen:
            continue
        seen.add(target.variant_id)
        items.append((target.variant_id, target.max_order_qty or 1))
    return items
