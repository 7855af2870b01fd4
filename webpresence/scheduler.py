"""In-process trigger for the job system, built on APScheduler.

Replaces an external cron: one recurring job runs the periodic scheduling
pass, another polls the queue with processing passes.
"""

import asyncio
import logging
from pathlib import Path
from typing import Any, Callable, Optional

from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.jobstores.sqlalchemy import SQLAlchemyJobStore
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

logger = logging.getLogger(__name__)

SCHEDULE_JOB_ID = "webpresence_schedule_jobs"
PROCESS_JOB_ID = "webpresence_process_jobs"


def run_schedule_pass(config_path: Optional[str] = None) -> int:
    """Scheduler entry point: one periodic scheduling pass."""
    from webpresence.app import WebPresenceApp
    app = WebPresenceApp(config_path=config_path)
    created = app.schedule_jobs()
    logger.info("Scheduled pass created %d jobs", created)
    return created


def run_process_pass(config_path: Optional[str] = None) -> dict[str, int]:
    """Scheduler entry point: one job processing pass in a fresh event loop."""
    from webpresence.app import WebPresenceApp
    app = WebPresenceApp(config_path=config_path)
    stats = asyncio.run(app.process_jobs())
    if stats["total"]:
        logger.info("Processing pass: %s", stats)
    return stats


class TrackerScheduler:
    """Wrapper around APScheduler for the recurring job-system passes.

    Usage::

        sched = TrackerScheduler(job_store_url=None)
        sched.add_job("schedule", run_schedule_pass, cron="0 * * * *")
        sched.add_interval_job("process", run_process_pass, seconds=5)
        sched.start()
    """

    def __init__(
        self,
        job_store_url: Optional[str] = "sqlite:///data/scheduler_jobs.db",
        timezone: str = "UTC",
        max_workers: int = 2,
    ):
        if job_store_url:
            if job_store_url.startswith("sqlite:///"):
                db_path = job_store_url.replace("sqlite:///", "")
                Path(db_path).parent.mkdir(parents=True, exist_ok=True)
            jobstore = SQLAlchemyJobStore(url=job_store_url)
        else:
            jobstore = MemoryJobStore()

        self._scheduler = BackgroundScheduler(
            jobstores={"default": jobstore},
            executors={"default": ThreadPoolExecutor(max_workers=max_workers)},
            job_defaults={
                "coalesce": True,
                "max_instances": 1,
                "misfire_grace_time": 300,
            },
            timezone=timezone,
        )
        self._timezone = timezone
        self._running = False
        logger.info(
            "TrackerScheduler initialized (store=%s, tz=%s, workers=%d)",
            job_store_url or "memory", timezone, max_workers,
        )

    @property
    def is_running(self) -> bool:
        return self._running

    def start(self) -> None:
        if self._running:
            logger.warning("Scheduler is already running.")
            return
        self._scheduler.start()
        self._running = True
        logger.info("Scheduler started.")

    def stop(self, wait: bool = True) -> None:
        if not self._running:
            return
        self._scheduler.shutdown(wait=wait)
        self._running = False
        logger.info("Scheduler stopped.")

    def add_job(
        self,
        job_id: str,
        func: Callable,
        cron: str,
        kwargs: Optional[dict[str, Any]] = None,
    ) -> None:
        """Add or replace a cron-triggered job (5 fields: min hour day month weekday)."""
        parts = cron.strip().split()
        if len(parts) != 5:
            raise ValueError(f"Cron expression must have 5 fields, got {len(parts)}: {cron!r}")

        trigger = CronTrigger(
            minute=parts[0],
            hour=parts[1],
            day=parts[2],
            month=parts[3],
            day_of_week=parts[4],
            timezone=self._timezone,
        )
        self._scheduler.add_job(func, trigger=trigger, id=job_id, kwargs=kwargs or {}, replace_existing=True)
        logger.info("Job added: %s [%s]", job_id, cron)

    def add_interval_job(
        self,
        job_id: str,
        func: Callable,
        seconds: int,
        kwargs: Optional[dict[str, Any]] = None,
    ) -> None:
        """Add or replace a job that runs every *seconds*."""
        if seconds <= 0:
            raise ValueError(f"Interval must be positive, got {seconds}")
        trigger = IntervalTrigger(seconds=seconds, timezone=self._timezone)
        self._scheduler.add_job(func, trigger=trigger, id=job_id, kwargs=kwargs or {}, replace_existing=True)
        logger.info("Job added: %s [every %ds]", job_id, seconds)

    def remove_job(self, job_id: str) -> bool:
        job = self._scheduler.get_job(job_id)
        if job is None:
            logger.warning("Job not found: %s", job_id)
            return False
        self._scheduler.remove_job(job_id)
        logger.info("Job removed: %s", job_id)
        return True

    def list_jobs(self) -> list[dict[str, Any]]:
        return [
            {
                "id": job.id,
                "name": job.name,
                "trigger": str(job.trigger),
                "next_run_time": _iso(getattr(job, "next_run_time", None)),
            }
            for job in self._scheduler.get_jobs()
        ]

    def install_passes(
        self,
        schedule_cron: str = "0 * * * *",
        process_interval_seconds: int = 5,
        config_path: Optional[str] = None,
    ) -> None:
        """Register the scheduling and processing passes."""
        kwargs = {"config_path": config_path}
        self.add_job(SCHEDULE_JOB_ID, run_schedule_pass, cron=schedule_cron, kwargs=kwargs)
        self.add_interval_job(PROCESS_JOB_ID, run_process_pass, seconds=process_interval_seconds, kwargs=kwargs)


def _iso(value) -> Optional[str]:
    return value.isoformat() if value else None
