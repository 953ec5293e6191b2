"""SQLAlchemy models for StockWatch.

All models are imported here so metadata.create_all sees every table.
"""

from stockwatch.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin
from stockwatch.models.store_profile import StoreProfile
from stockwatch.models.monitored_target import MonitoredTarget
from stockwatch.models.stock_history import StockHistory
from stockwatch.models.keyword_watch import KeywordWatch
from stockwatch.models.app_setting import AppSetting
from stockwatch.models.notification import NotificationLog

__all__ = [
    "Base",
    "TimestampMixin",
    "UUIDPrimaryKeyMixin",
    "StoreProfile",
    "MonitoredTarget",
    "StockHistory",
    "KeywordWatch",
    "AppSetting",
    "NotificationLog",
]
