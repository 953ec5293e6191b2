"""APScheduler driver for stock checks and keyword watches.

Both jobs fire on a fixed tick; the checker and the watcher decide for
themselves which targets and watches are due.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

import structlog
from apscheduler.job import Job
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from stockwatch.scrapers.checker import StockChecker
from stockwatch.scrapers.keyword_watcher import KeywordWatcher

logger = structlog.get_logger(__name__)

STOCK_JOB_ID = "stock_checks"
KEYWORD_JOB_ID = "keyword_watches"


class MonitorScheduler:
    """Manages the periodic stock-check and keyword-watch jobs.

    This scheduler:
    - Starts and stops the two background jobs
    - Staggers the keyword job half a tick behind the stock job
    - Keeps a failing run from stopping the scheduler
    """

    def __init__(
        self,
        checker: StockChecker,
        watcher: KeywordWatcher,
        tick_seconds: int = 60,
    ):
        """Initialize monitor scheduler.

        Args:
            checker: Stock checker run on every tick
            watcher: Keyword watcher run on every tick
            tick_seconds: Interval between job runs
        """
        self.checker = checker
        self.watcher = watcher
        self.tick_seconds = tick_seconds
        self.scheduler = AsyncIOScheduler(timezone="UTC")
        self.logger = logger.bind(service="monitor_scheduler")

    def start(self) -> None:
        """Register both jobs and start the scheduler."""
        if self.scheduler.running:
            self.logger.warning("scheduler_already_running")
            return

        now = datetime.now(timezone.utc)
        self._add_job(STOCK_JOB_ID, "Stock checks", self._run_stock_checks, now + timedelta(seconds=5))
        self._add_job(
            KEYWORD_JOB_ID,
            "Keyword watches",
            self._run_keyword_watches,
            now + timedelta(seconds=self.tick_seconds // 2),
        )
        self.scheduler.start()
        self.logger.info("scheduler_started", tick_seconds=self.tick_seconds)

    def stop(self) -> None:
        """Stop the scheduler without waiting for a running pass."""
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            self.logger.info("scheduler_stopped")
        else:
            self.logger.warning("scheduler_not_running")

    def _add_job(self, job_id: str, name: str, func, first_run: datetime) -> Job:
        trigger = IntervalTrigger(
            seconds=self.tick_seconds,
            start_date=first_run,
            timezone="UTC",
        )
        job = self.scheduler.add_job(
            func=func,
            trigger=trigger,
            id=job_id,
            name=name,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        self.logger.info(
            "job_added",
            job_id=job_id,
            interval_seconds=self.tick_seconds,
            first_run=first_run.isoformat(),
        )
        return job

    async def _run_stock_checks(self) -> None:
        """Job entry point; exceptions are logged, never propagated."""
        try:
            await self.checker.run_due_checks()
        except Exception as e:
            self.logger.error("stock_job_failed", error=str(e), exc_info=True)

    async def _run_keyword_watches(self) -> None:
        try:
            await self.watcher.check_all_watches()
        except Exception as e:
            self.logger.error("keyword_job_failed", error=str(e), exc_info=True)

    def get_jobs_status(self) -> dict:
        """Next run time and trigger of each registered job."""
        jobs = {}
        for job_id in (STOCK_JOB_ID, KEYWORD_JOB_ID):
            job: Optional[Job] = self.scheduler.get_job(job_id)
            if job:
                jobs[job_id] = {
                    "next_run": job.next_run_time.isoformat() if job.next_run_time else None,
                    "trigger": str(job.trigger),
                }
        return jobs

    def is_running(self) -> bool:
        return self.scheduler.running
