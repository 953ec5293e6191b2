"""Keyword watch model: a saved product search on one store."""

from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional

from sqlalchemy import JSON, Boolean, DateTime, Integer, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from stockwatch.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin


class KeywordWatch(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """Keyword search repeated on a schedule to find new or restocked products.

    known_product_urls and known_stock_map are written only by the
    keyword watcher.
    """

    __tablename__ = "keyword_watches"

    keyword: Mapped[str] = mapped_column(String(200), nullable=False)
    store_url: Mapped[str] = mapped_column(String(2048), nullable=False, comment="Store root URL")
    store_name: Mapped[str] = mapped_column(String(50), nullable=False, default="shopify")
    search_url: Mapped[Optional[str]] = mapped_column(String(2048), nullable=True, comment="Template containing {keyword}")

    check_interval_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=0, comment="0 = inherit global interval")
    min_price: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)
    max_price: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)

    notify_new_products: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    notify_in_stock: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    auto_add_tracking: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    known_product_urls: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)
    known_stock_map: Mapped[Dict[str, bool]] = mapped_column(JSON, nullable=False, default=dict)
    last_checked_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    last_found_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    def __repr__(self) -> str:
        return f"<KeywordWatch(id={self.id}, keyword={self.keyword}, store={self.store_name})>"
