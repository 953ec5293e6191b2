"""Key/value runtime settings and run statistics."""

from sqlalchemy import String, Text
from sqlalchemy.orm import Mapped, mapped_column

from stockwatch.models.base import Base


class AppSetting(Base):
    __tablename__ = "app_settings"

    key: Mapped[str] = mapped_column(String(100), primary_key=True)
    value: Mapped[str] = mapped_column(Text, nullable=False)

    def __repr__(self) -> str:
        return f"<AppSetting({self.key}={self.value})>"
