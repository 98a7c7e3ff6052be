"""
APScheduler Service
One-shot view timers (post-payment redirect) and idle view cleanup
"""
import logging
import uuid
from datetime import datetime, timedelta
from typing import Callable
from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger
from marketplace.config import settings

logger = logging.getLogger(__name__)


class SchedulerService:
    """Service to manage background scheduler tasks"""

    def __init__(self):
        self.scheduler = AsyncIOScheduler()
        self._setup_jobs()

    def _setup_jobs(self):
        """Setup all background jobs"""
        # Close checkout and feedback views nobody has touched for a while
        self.scheduler.add_job(
            self._purge_idle_views,
            IntervalTrigger(minutes=settings.view_purge_interval_minutes),
            id="purge_idle_views",
            name="Purge idle views",
            replace_existing=True
        )

    def _purge_idle_views(self):
        from marketplace.services.view_registry import get_checkout_registry, get_feedback_registry

        max_idle = timedelta(minutes=settings.view_idle_timeout_minutes)
        try:
            closed = get_checkout_registry().purge_idle(max_idle)
            closed += get_feedback_registry().purge_idle(max_idle)
            if closed:
                logger.info("Closed %d idle views", closed)
        except Exception:
            logger.exception("Error in idle view purge job")

    def schedule_once(self, delay_seconds: float, func: Callable, *args) -> str:
        """
        Run func once after a delay.

        Returns:
            Job id to pass to cancel()
        """
        job_id = f"once-{uuid.uuid4().hex}"
        self.scheduler.add_job(
            func,
            DateTrigger(run_date=datetime.now() + timedelta(seconds=delay_seconds)),
            args=list(args),
            id=job_id,
            misfire_grace_time=None,
        )
        return job_id

    def cancel(self, job_id: str):
        """Cancel a pending one-shot job; jobs that already ran are ignored"""
        try:
            self.scheduler.remove_job(job_id)
        except JobLookupError:
            pass

    def start(self):
        """Start the scheduler"""
        if not self.scheduler.running:
            self.scheduler.start()
            logger.info("Scheduler started")

    def stop(self):
        """Stop the scheduler"""
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")


# Global scheduler instance
_scheduler_service = None


def get_scheduler() -> SchedulerService:
    """Get or create scheduler instance"""
    global _scheduler_service
    if _scheduler_service is None:
        _scheduler_service = SchedulerService()
    return _scheduler_service


def start_scheduler():
    """Start the background scheduler"""
    scheduler = get_scheduler()
    scheduler.start()


def stop_scheduler():
    """Stop the background scheduler"""
    scheduler = get_scheduler()
    scheduler.stop()
