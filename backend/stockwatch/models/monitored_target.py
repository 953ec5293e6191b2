"""Monitored target model: one product page under stock/price watch."""

from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, List, Optional

from sqlalchemy import JSON, Boolean, DateTime, Integer, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from stockwatch.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin

if TYPE_CHECKING:
    from stockwatch.models.stock_history import StockHistory


class MonitoredTarget(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """A product URL checked periodically for stock and price.

    Created and deleted externally. The checker owns the stock, price,
    timestamp, image, variant and store fields; the order-limit prober
    owns max_order_qty.
    """

    __tablename__ = "monitored_targets"

    name: Mapped[str] = mapped_column(String(500), nullable=False)
    url: Mapped[str] = mapped_column(String(2048), unique=True, nullable=False, comment="Normalized product URL")
    store: Mapped[str] = mapped_column(String(50), nullable=False, default="custom", comment="StoreProfile name")

    # Pricing
    target_price: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)
    current_price: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)
    currency: Mapped[str] = mapped_column(String(5), nullable=False, default="EUR")

    # Scheduling
    check_interval_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=0, comment="0 = inherit global interval")
    last_checked_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    last_in_stock_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Observed state
    in_stock: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    image_url: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)
    variant_id: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    max_order_qty: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    # Notification flags
    notify_on_stock: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    notify_on_price_drop: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    # Per-target overrides of StoreProfile fields
    selector_overrides: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)

    history: Mapped[List["StockHistory"]] = relationship(
        back_populates="target",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def __repr__(self) -> str:
        return f"<MonitoredTarget(id={self.id}, name={self.name[:30]}, store={self.store}, in_stock={self.in_stock})>"
