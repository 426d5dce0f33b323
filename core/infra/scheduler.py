"""
Scheduler infrastructure for periodic scrapes and structure checks.

Jobs live in APScheduler's in-memory store; ``main`` registers them again
on every start, so nothing needs to survive a restart.
"""

import logging
from typing import Any, Callable, Dict, Optional

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger
from croniter import croniter


logger = logging.getLogger(__name__)

JOB_DEFAULTS = {
    # a scrape that overruns its slot is not started twice
    "coalesce": True,
    "max_instances": 1,
    "misfire_grace_time": 300,  # seconds
}


class Scheduler:
    """Async wrapper around APScheduler's AsyncIOScheduler."""

    def __init__(self, timezone: str = "UTC"):
        self.timezone = timezone
        self._scheduler = AsyncIOScheduler(job_defaults=dict(JOB_DEFAULTS), timezone=timezone)
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start the scheduler (needs a running event loop)."""
        if self._running:
            return
        self._scheduler.start()
        self._running = True
        logger.info(f"Scheduler running in {self.timezone}")

    async def stop(self) -> None:
        if not self._running:
            return
        self._scheduler.shutdown(wait=False)
        self._running = False
        logger.info("Scheduler shut down")

    def add_interval_job(
        self,
        func: Callable,
        seconds: Optional[float] = None,
        minutes: Optional[float] = None,
        hours: Optional[float] = None,
        job_id: Optional[str] = None,
        **kwargs,
    ) -> None:
        """Run ``func`` every given period; re-adding a job id replaces it."""
        period = {
            unit: value
            for unit, value in (("seconds", seconds), ("minutes", minutes), ("hours", hours))
            if value is not None
        }
        if not period:
            raise ValueError("Interval job needs seconds, minutes or hours")

        self._add(func, IntervalTrigger(timezone=self.timezone, **period), job_id, kwargs)
        logger.info(f"Interval job {job_id or func.__name__} every {period}")

    def add_cron_job(
        self,
        func: Callable,
        cron_expression: str,
        job_id: Optional[str] = None,
        **kwargs,
    ) -> None:
        """Run ``func`` on a 5-field crontab schedule."""
        if not self.validate_cron_expression(cron_expression):
            raise ValueError(f"Invalid cron expression: {cron_expression!r}")

        trigger = CronTrigger.from_crontab(cron_expression, timezone=self.timezone)
        self._add(func, trigger, job_id, kwargs)
        logger.info(f"Cron job {job_id or func.__name__} at '{cron_expression}'")

    def _add(self, func: Callable, trigger: Any, job_id: Optional[str], kwargs: Dict[str, Any]) -> None:
        self._scheduler.add_job(func, trigger=trigger, id=job_id, replace_existing=True, **kwargs)

    @staticmethod
    def validate_cron_expression(cron_expression: str) -> bool:
        # croniter also accepts a seconds field, CronTrigger.from_crontab does not
        if len(cron_expression.split()) != 5 or not croniter.is_valid(cron_expression):
            logger.error(f"Rejected cron expression '{cron_expression}'")
            return False
        return True

    def remove_job(self, job_id: str) -> bool:
        try:
            self._scheduler.remove_job(job_id)
        except JobLookupError:
            logger.debug(f"Job {job_id} not scheduled")
            return False
        logger.info(f"Job {job_id} removed")
        return True

    def list_jobs(self) -> Dict[str, Any]:
        """Scheduled jobs keyed by id, with their next run time."""
        return {
            job.id: {
                "name": job.name,
                "next_run": getattr(job, "next_run_time", None),
                "trigger": str(job.trigger),
            }
            for job in self._scheduler.get_jobs()
        }
