"""Responses of the check trigger endpoints."""

from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import BaseModel


class CheckAccepted(BaseModel):
    """A check pass was scheduled in the background."""

    status: str = "accepted"
    force: bool = False
    already_running: bool = False


class TargetCheckResponse(BaseModel):
    target_id: UUID
    ok: bool
    in_stock: Optional[bool] = None
    price: Optional[Decimal] = None
    came_in_stock: bool = False
    error: Optional[str] = None


class WatchCheckResponse(BaseModel):
    watch_id: UUID
    total: int = 0
    matched: int = 0
    new: int = 0
    back_in_stock: int = 0
    added: int = 0
    skipped: bool = False
    error: Optional[str] = None


class WatchPassResponse(BaseModel):
    """Summary of a check_all_watches run."""

    skipped: bool = False
    active: int = 0
    due: int = 0
    new: int = 0
    failed: int = 0
    error: Optional[str] = None
