"""
Job supervisor.

Owns the background scheduler for the idle reaper, the retention sweeper
and daily summary generation. The clock and session factory are injected
so jobs can be run synchronously and deterministically via run_job().
Jobs may overlap with request handling; every mutation they make is
idempotent or monotonic.
"""

import logging
from datetime import datetime
from typing import Callable, Dict, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.orm import Session

from ..config import settings
from ..core.clock import utcnow
from ..database import SessionLocal
from . import tasks

logger = logging.getLogger(__name__)

JOB_IDS = ("idle_reaper", "retention_sweeper", "summary_generation")


class JobSupervisor:
    def __init__(
        self,
        session_factory: Callable[[], Session] = SessionLocal,
        clock: Callable[[], datetime] = utcnow,
        scheduler=None,
    ):
        self.session_factory = session_factory
        self.clock = clock
        self.scheduler = scheduler or BackgroundScheduler(timezone="UTC")
        self._jobs: Dict[str, Callable[[Callable[[], Session], datetime], dict]] = {
            "idle_reaper": tasks.reap_idle_sessions,
            "retention_sweeper": tasks.sweep_retention,
            "summary_generation": tasks.generate_daily_summaries,
        }
        self._installed = False

    @property
    def running(self) -> bool:
        return bool(self.scheduler.running)

    def triggers(self) -> dict:
        return {
            "idle_reaper": IntervalTrigger(minutes=settings.IDLE_REAPER_INTERVAL_MINUTES, timezone="UTC"),
            "retention_sweeper": CronTrigger(hour=settings.RETENTION_SWEEP_HOUR, minute=0, timezone="UTC"),
            "summary_generation": CronTrigger(hour=settings.SUMMARY_JOB_HOUR, minute=0, timezone="UTC"),
        }

    def install(self) -> None:
        """Register every job with the scheduler"""
        for job_id, trigger in self.triggers().items():
            self.scheduler.add_job(
                self.run_job,
                trigger=trigger,
                args=[job_id],
                id=job_id,
                replace_existing=True,
                max_instances=1,
                coalesce=True,
            )
        self._installed = True
        logger.info(
            "Job supervisor installed (idle reaper every %dm, retention sweep at %02d:00, summaries at %02d:00 UTC)",
            settings.IDLE_REAPER_INTERVAL_MINUTES,
            settings.RETENTION_SWEEP_HOUR,
            settings.SUMMARY_JOB_HOUR,
        )

    def start(self) -> None:
        if self.running:
            return
        if not self._installed:
            self.install()
        self.scheduler.start()
        logger.info("Job supervisor started")

    def shutdown(self, wait: bool = False) -> None:
        if not self.running:
            return
        self.scheduler.shutdown(wait=wait)
        logger.info("Job supervisor stopped")

    def run_job(self, job_id: str, now: Optional[datetime] = None) -> dict:
        """
        Run one job immediately in the calling thread.

        Raises:
            KeyError: unknown job id
        """
        job = self._jobs[job_id]
        now = now or self.clock()
        try:
            result = job(self.session_factory, now)
        except Exception as e:
            logger.error("Job %s failed: %s", job_id, e)
            return {"job": job_id, "error": str(e)}
        logger.debug("Job %s finished: %s", job_id, result)
        return {"job": job_id, **result}
