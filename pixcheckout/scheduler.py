"""
Interval jobs for checkout polling.

Wraps an APScheduler BackgroundScheduler. Each job runs at most one instance
at a time and missed runs are coalesced, so a slow status check delays the
next tick instead of overlapping it.
"""
import logging

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

logger = logging.getLogger(__name__)


class PollScheduler:

    def __init__(self):
        self._scheduler = BackgroundScheduler(
            job_defaults={
                "coalesce": True,
                "max_instances": 1,
                "misfire_grace_time": 30,
            },
            timezone="UTC",
        )

    @property
    def running(self) -> bool:
        return self._scheduler.running

    def start(self):
        if not self._scheduler.running:
            self._scheduler.start()
            logger.info("Poll scheduler started")

    def shutdown(self, wait: bool = False):
        if self._scheduler.running:
            self._scheduler.shutdown(wait=wait)
            logger.info("Poll scheduler stopped")

    def every(self, job_id: str, func, seconds: float) -> str:
        self._scheduler.add_job(
            func,
            trigger=IntervalTrigger(seconds=seconds),
            id=job_id,
            replace_existing=True,
        )
        logger.debug("Scheduled job %s every %ss", job_id, seconds)
        return job_id

    def cancel(self, job_id: str) -> bool:
        try:
            self._scheduler.remove_job(job_id)
        except JobLookupError:
            logger.debug("Job %s was already removed", job_id)
            return False
        logger.debug("Cancelled job %s", job_id)
        return True

    def job_ids(self) -> list[str]:
        return [job.id for job in self._scheduler.get_jobs()]
