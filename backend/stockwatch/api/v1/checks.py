"""Trigger endpoints for stock checks and keyword watches."""

from dataclasses import asdict
from uuid import UUID

import structlog
from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, status

from stockwatch.container import MonitorContainer
from stockwatch.core.exceptions import NotFoundError
from stockwatch.dependencies import get_container
from stockwatch.schemas import (
    CheckAccepted,
    TargetCheckResponse,
    WatchCheckResponse,
    WatchPassResponse,
)

router = APIRouter()
logger = structlog.get_logger(__name__)


@router.post("/checks", response_model=CheckAccepted, status_code=status.HTTP_202_ACCEPTED)
async def run_checks(
    background_tasks: BackgroundTasks,
    force: bool = False,
    container: MonitorContainer = Depends(get_container),
):
    """Start a check pass in the background.

    With force=true every target is checked regardless of its interval
    and in-stock targets re-alert.
    """
    if container.checker.is_checking:
        return CheckAccepted(force=force, already_running=True)
    background_tasks.add_task(container.checker.run_due_checks, force)
    logger.info("check_pass_requested", force=force)
    return CheckAccepted(force=force)


@router.post("/checks/{target_id}", response_model=TargetCheckResponse)
async def check_target(
    target_id: UUID,
    container: MonitorContainer = Depends(get_container),
):
    """Check one target immediately, outside the scheduled pass."""
    try:
        outcome = await container.checker.check_one(target_id)
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)
    return TargetCheckResponse(**asdict(outcome))


@router.post("/watches/check", response_model=WatchPassResponse)
async def check_all_watches(container: MonitorContainer = Depends(get_container)):
    """Run every due keyword watch now."""
    stats = await container.watcher.check_all_watches()
    return WatchPassResponse(**stats)


@router.post("/watches/{watch_id}/check", response_model=WatchCheckResponse)
async def check_watch(
    watch_id: UUID,
    container: MonitorContainer = Depends(get_container),
):
    """Run one keyword watch now."""
    try:
        result = await container.watcher.check_watch(watch_id)
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)
    return WatchCheckResponse(**asdict(result))
