"""Background runner for the daily invoice processing (APScheduler)."""

import logging
from typing import Callable, Optional

from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from .config import settings

logger = logging.getLogger(__name__)

DAILY_INVOICE_JOB_ID = "daily_invoice_processing"


class SchedulerService:
    def __init__(self, timezone: Optional[str] = None):
        self._scheduler = BackgroundScheduler(
            jobstores={"default": MemoryJobStore()},
            executors={"default": ThreadPoolExecutor(1)},
            job_defaults={
                "coalesce": True,
                "max_instances": 1,
                "misfire_grace_time": 300,
            },
            timezone=timezone or settings.TIMEZONE,
        )
        self._started = False

    def start(self) -> None:
        if not self._started:
            self._scheduler.start()
            self._started = True
            logger.info("Scheduler started")

    def shutdown(self, wait: bool = True) -> None:
        if self._started:
            self._scheduler.shutdown(wait=wait)
            self._started = False
            logger.info("Scheduler stopped")

    def add_daily_job(self, func: Callable, job_id: str, hour: int, minute: int) -> str:
        self._scheduler.add_job(
            func=func,
            trigger=CronTrigger(hour=hour, minute=minute),
            id=job_id,
            name=job_id,
            replace_existing=True,
        )
        logger.info("Job '%s' scheduled daily at %02d:%02d", job_id, hour, minute)
        return job_id

    def get_jobs(self) -> list[dict]:
        return [
            {"id": job.id, "name": job.name, "next_run": job.next_run_time, "trigger": str(job.trigger)}
            for job in self._scheduler.get_jobs()
        ]

    @property
    def is_running(self) -> bool:
        return self._started and self._scheduler.running


_scheduler_instance: Optional[SchedulerService] = None


def get_scheduler() -> SchedulerService:
    global _scheduler_instance
    if _scheduler_instance is None:
        _scheduler_instance = SchedulerService()
    return _scheduler_instance


def start_invoice_scheduler() -> SchedulerService:
    # Imported here: the services import core modules.
    from cardbill.services.invoice_scheduler_service import run_daily

    scheduler = get_scheduler()
    scheduler.add_daily_job(run_daily, DAILY_INVOICE_JOB_ID, settings.SCHEDULER_HOUR, settings.SCHEDULER_MINUTE)
    scheduler.start()
    return scheduler
