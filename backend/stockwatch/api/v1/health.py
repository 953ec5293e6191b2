"""Health and status endpoints."""

from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from stockwatch.container import MonitorContainer
from stockwatch.dependencies import get_container, get_db, get_scheduler
from stockwatch.schemas import CheckerStatus, HealthCheckResponse, StatusResponse
from stockwatch.scrapers.scheduler import MonitorScheduler

router = APIRouter()


@router.get("/health", response_model=HealthCheckResponse)
async def health_check(
    db: AsyncSession = Depends(get_db),
    scheduler: Optional[MonitorScheduler] = Depends(get_scheduler),
):
    """Return service health status.

    Checks connectivity to the database and whether the background
    scheduler is running. Returns "degraded" when the database is down.
    """
    services = {}

    try:
        result = await db.execute(text("SELECT 1"))
        result.scalar()
        db_status = "ok"
    except Exception as e:
        db_status = f"error: {str(e)}"
    services["database"] = db_status

    if scheduler is None:
        scheduler_status = "disabled"
    else:
        scheduler_status = "ok" if scheduler.is_running() else "stopped"
    services["scheduler"] = scheduler_status

    overall_status = "ok" if db_status == "ok" else "degraded"

    return HealthCheckResponse(
        status=overall_status,
        database=db_status,
        scheduler=scheduler_status,
        services=services,
    )


@router.get("/status", response_model=StatusResponse)
async def monitor_status(
    container: MonitorContainer = Depends(get_container),
    scheduler: Optional[MonitorScheduler] = Depends(get_scheduler),
):
    """Checker guard state, run statistics and scheduled jobs."""
    checker_status = await container.checker.status()
    return StatusResponse(
        checker=CheckerStatus(**checker_status),
        watcher_running=container.watcher.is_checking,
        jobs=scheduler.get_jobs_status() if scheduler else {},
    )
