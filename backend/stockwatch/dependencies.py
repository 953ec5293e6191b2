"""FastAPI dependency injection providers."""

from typing import AsyncGenerator, Optional

from fastapi import HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from stockwatch.container import MonitorContainer
from stockwatch.db.session import async_session_factory
from stockwatch.scrapers.scheduler import MonitorScheduler


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Yield a database session for request-scoped usage.

    The session is automatically committed on success or rolled back on error.
    Always closed after the request completes.
    """
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


def get_container(request: Request) -> MonitorContainer:
    """The MonitorContainer built by the application lifespan.

    Raises 503 while the application is starting up or shutting down.
    """
    container: Optional[MonitorContainer] = getattr(request.app.state, "container", None)
    if container is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Monitor is not running",
        )
    return container


def get_scheduler(request: Request) -> Optional[MonitorScheduler]:
    """Background scheduler, or None when it is disabled (test environment)."""
    return getattr(request.app.state, "scheduler", None)
