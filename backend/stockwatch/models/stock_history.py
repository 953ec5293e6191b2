"""Append-only stock/price observations per target."""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Optional

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Numeric, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from stockwatch.models.base import Base, UUIDPrimaryKeyMixin

if TYPE_CHECKING:
    from stockwatch.models.monitored_target import MonitoredTarget


class StockHistory(UUIDPrimaryKeyMixin, Base):
    """One row per successful check of a target."""

    __tablename__ = "stock_history"

    target_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("monitored_targets.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    in_stock: Mapped[bool] = mapped_column(Boolean, nullable=False)
    price: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)
    checked_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    __table_args__ = (
        Index("idx_stock_history_target_checked", "target_id", "checked_at"),
    )

    target: Mapped["MonitoredTarget"] = relationship(back_populates="history")

    def __repr__(self) -> str:
        return f"<StockHistory(target_id={self.target_id}, in_stock={self.in_stock}, price={self.price})>"
