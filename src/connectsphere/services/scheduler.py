"""APScheduler-based maintenance job scheduler."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Coroutine, Optional

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from connectsphere.config import SchedulerServiceConfig
from connectsphere.log import get_logger
from connectsphere.services.base import Service

logger = get_logger(__name__)


class SchedulerService(Service):
    """Runs periodic jobs (cache sweeps, retention cleanup) on the event loop."""

    def __init__(self, config: SchedulerServiceConfig):
        self._config = config
        self._scheduler = AsyncIOScheduler(timezone=config.timezone)

    @property
    def service_name(self) -> str:
        return "scheduler"

    async def start(self) -> None:
        self._scheduler.start()
        self.running = True
        logger.info("scheduler_started", timezone=self._config.timezone, jobs=len(self._scheduler.get_jobs()))

    async def stop(self) -> None:
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
        self.running = False
        # AsyncIOScheduler.shutdown is scheduled onto the loop; let it run.
        await asyncio.sleep(0)
        logger.info("scheduler_stopped")

    async def health_check(self) -> bool:
        return self.running and self._scheduler.running

    def add_interval_job(
        self,
        job_id: str,
        callback: Callable[[], Coroutine[Any, Any, Any]],
        interval: timedelta,
        first_run_after: Optional[timedelta] = None,
    ) -> str:
        """Run ``callback`` every ``interval``; the first run defaults to one interval from now."""
        start_date = datetime.now(timezone.utc) + (first_run_after if first_run_after is not None else interval)
        trigger = IntervalTrigger(seconds=interval.total_seconds(), start_date=start_date)
        self._scheduler.add_job(
            self._guarded(job_id, callback),
            trigger,
            id=job_id,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        logger.info("interval_job_added", job_id=job_id, interval_seconds=interval.total_seconds())
        return job_id

    @staticmethod
    def _guarded(
        job_id: str, callback: Callable[[], Coroutine[Any, Any, Any]]
    ) -> Callable[[], Coroutine[Any, Any, None]]:
        async def _run() -> None:
            try:
                result = await callback()
                logger.debug("job_completed", job_id=job_id, result=result)
            except Exception as e:
                logger.error("job_failed", job_id=job_id, error=str(e))

        return _run

    def remove_job(self, job_id: str) -> bool:
        try:
            self._scheduler.remove_job(job_id)
        except JobLookupError:
            return False
        logger.info("job_removed", job_id=job_id)
        return True

    def list_jobs(self) -> list[dict[str, Any]]:
        """List all scheduled jobs."""
        jobs = []
        for job in self._scheduler.get_jobs():
            jobs.append(
                {
                    "id": job.id,
                    "next_run_time": str(job.next_run_time) if getattr(job, "next_run_time", None) else None,
                    "trigger": str(job.trigger),
                }
            )
        return jobs
