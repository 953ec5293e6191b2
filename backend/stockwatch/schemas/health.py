"""Health and status schemas."""

from datetime import datetime
from typing import Dict, Optional

from pydantic import BaseModel


class HealthCheckResponse(BaseModel):
    """Health check response schema."""

    status: str
    database: str
    scheduler: Optional[str] = None
    services: Dict[str, str] = {}


class CheckerStatus(BaseModel):
    """State of the check scheduler."""

    is_checking: bool
    check_count: int
    last_check_at: Optional[datetime] = None
    persisted_last_check_at: Optional[datetime] = None
    persisted_total_checks: int = 0
    global_interval_minutes: int


class StatusResponse(BaseModel):
    checker: CheckerStatus
    watcher_running: bool
    jobs: Dict[str, Dict[str, Optional[str]]] = {}
