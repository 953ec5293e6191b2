"""Log of alerts that were actually delivered."""

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from stockwatch.models.base import Base, UUIDPrimaryKeyMixin


class NotificationLog(UUIDPrimaryKeyMixin, Base):
    """Sent alert record.

    type is one of: stock_alert, price_drop, target_price, keyword_watch,
    keyword_back_in_stock.
    """

    __tablename__ = "notifications"

    target_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        ForeignKey("monitored_targets.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    watch_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        ForeignKey("keyword_watches.id", ondelete="SET NULL"),
        nullable=True,
    )
    type: Mapped[str] = mapped_column(String(30), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    sent_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
