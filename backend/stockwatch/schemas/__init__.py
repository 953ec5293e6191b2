"""Pydantic schemas for the StockWatch trigger API."""

from stockwatch.schemas.health import CheckerStatus, HealthCheckResponse, StatusResponse
from stockwatch.schemas.checks import (
    CheckAccepted,
    TargetCheckResponse,
    WatchCheckResponse,
    WatchPassResponse,
)

__all__ = [
    # Health
    "HealthCheckResponse",
    "CheckerStatus",
    "StatusResponse",
    # Checks
    "CheckAccepted",
    "TargetCheckResponse",
    "WatchCheckResponse",
    "WatchPassResponse",
]
