"""Data structures shared by extraction strategies, the checker and discovery.

Every strategy returns a SignalReading tagged with its EvidenceSource;
resolve_evidence() in the extractor folds them into one ScrapeEvidence.
"""

from dataclasses import dataclass, field, replace
from decimal import Decimal
from enum import IntEnum
from typing import Any, Iterable, List, Mapping, Optional, Tuple


class EvidenceSource(IntEnum):
    """Extraction strategies; lower value means higher precedence."""

    PLATFORM_API = 1
    STRUCTURED_DATA = 2
    SELECTOR = 3
    RENDERED = 4


@dataclass
class SignalReading:
    """What a single strategy observed on a page."""

    source: EvidenceSource
    in_stock: Optional[bool] = None
    price: Optional[Decimal] = None
    image_url: Optional[str] = None
    variant_id: Optional[str] = None
    stock_quantity: Optional[int] = None
    raw_stock_text: str = ""
    found_indicators: bool = False  # any stock/price/cart element or field was present
    decisive: bool = False  # trusted outright, later strategies are skipped


@dataclass
class ScrapeEvidence:
    """Resolved stock/price observation for one target."""

    in_stock: Optional[bool]  # None = no source could tell
    price: Optional[Decimal] = None
    image_url: Optional[str] = None
    variant_id: Optional[str] = None
    stock_quantity_hint: int = 0
    raw_stock_text: str = ""
    is_recognized_platform: bool = False
    sources: List[EvidenceSource] = field(default_factory=list)

    def __post_init__(self):
        """Validate data after initialization."""
        if self.price is not None and self.price < 0:
            raise ValueError("price must be a non-negative Decimal")
        if self.stock_quantity_hint is None or self.stock_quantity_hint < 0:
            self.stock_quantity_hint = 0

    @property
    def in_stock_flag(self) -> bool:
        """Persisted form: unknown is stored as not in stock."""
        return self.in_stock is True


def _as_tuple(value: Any) -> Tuple[str, ...]:
    """Accept a list or a comma-separated string of selectors/phrases."""
    if value is None:
        return ()
    if isinstance(value, str):
        items: Iterable[str] = value.split(",")
    else:
        items = value
    return tuple(s.strip() for s in items if s and s.strip())


OVERRIDABLE_FIELDS = (
    "stock_selectors",
    "price_selectors",
    "add_to_cart_selectors",
    "in_stock_phrases",
    "out_of_stock_phrases",
)


@dataclass(frozen=True)
class SelectorProfile:
    """Immutable view of a StoreProfile used during a single check."""

    name: str
    stock_selectors: Tuple[str, ...] = ()
    price_selectors: Tuple[str, ...] = ()
    add_to_cart_selectors: Tuple[str, ...] = ()
    in_stock_phrases: Tuple[str, ...] = ()
    out_of_stock_phrases: Tuple[str, ...] = ()
    requires_render: bool = False
    platform: Optional[str] = None
    base_url: Optional[str] = None

    @classmethod
    def from_model(cls, model: Any) -> "SelectorProfile":
        """Build from a StoreProfile ORM row."""
        return cls(
            name=model.name,
            stock_selectors=_as_tuple(model.stock_selectors),
            price_selectors=_as_tuple(model.price_selectors),
            add_to_cart_selectors=_as_tuple(model.add_to_cart_selectors),
            in_stock_phrases=_as_tuple(model.in_stock_phrases),
            out_of_stock_phrases=_as_tuple(model.out_of_stock_phrases),
            requires_render=bool(model.requires_render),
            platform=model.platform,
            base_url=model.base_url,
        )

    def with_overrides(self, overrides: Optional[Mapping[str, Any]]) -> "SelectorProfile":
        """Replace individual selector/phrase fields with per-target values.

        Unknown keys and empty values are ignored.
        """
        if not overrides:
            return self
        changes = {}
        for key in OVERRIDABLE_FIELDS:
            value = _as_tuple(overrides.get(key))
            if value:
                changes[key] = value
        if "requires_render" in overrides:
            changes["requires_render"] = bool(overrides["requires_render"])
        return replace(self, **changes) if changes else self


@dataclass
class DiscoveredProduct:
    """A product found by keyword discovery during one run."""

    name: str
    url: str
    price: Optional[Decimal] = None
    in_stock: Optional[bool] = None
    image_url: Optional[str] = None
    channel: str = ""

    def __post_init__(self):
        """Validate data after initialization."""
        if not self.url:
            raise ValueError("url is required")
        if self.price is not None and self.price < 0:
            raise ValueError("price must be a non-negative Decimal")
