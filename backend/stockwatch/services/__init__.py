"""Services module for persistence and alert delivery.

Services own database access and outbound notifications; the checker and
the keyword watcher use them through their public methods only.
"""

from stockwatch.services.tracking_service import TrackingService
from stockwatch.services.notification_service import (
    AlertHandler,
    LoggingNotifier,
    Notifier,
    TelegramNotifier,
    build_notifier,
)

__all__ = [
    "TrackingService",
    "AlertHandler",
    "LoggingNotifier",
    "Notifier",
    "TelegramNotifier",
    "build_notifier",
]
