"""Store profile model: how to read stock and price from one shop family."""

from typing import List, Optional

from sqlalchemy import JSON, Boolean, String
from sqlalchemy.orm import Mapped, mapped_column

from stockwatch.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin


class StoreProfile(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """Selector and phrase configuration for a store family.

    Selector lists are ordered; the first selector that yields a usable
    value wins. Phrase lists are matched case-insensitively against the
    text of the stock element.
    """

    __tablename__ = "store_profiles"

    name: Mapped[str] = mapped_column(String(50), unique=True, nullable=False, comment="Profile identifier, e.g. 'shopify'")
    base_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    # Selectors
    stock_selectors: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)
    price_selectors: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)
    add_to_cart_selectors: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)

    # Locale-specific phrases
    in_stock_phrases: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)
    out_of_stock_phrases: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)

    requires_render: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    platform: Mapped[Optional[str]] = mapped_column(String(30), nullable=True, comment="Platform tag, e.g. 'shopify'")
    locale: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)

    def __repr__(self) -> str:
        return f"<StoreProfile(name={self.name}, platform={self.platform}, requires_render={self.requires_render})>"
