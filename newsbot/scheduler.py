"""
Scheduler for running news cycles on a fixed interval.

Uses APScheduler to run the monitoring cycle every few minutes. A cycle that
is still running when the next tick fires causes that tick to be skipped, so
at most one cycle is ever in flight.
"""

import logging
import threading
from typing import Any, Callable, Optional
from datetime import datetime

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
from apscheduler.events import EVENT_JOB_EXECUTED, EVENT_JOB_ERROR
import pytz

from newsbot.config import Config
from newsbot.utils import utc_now

# Configure module logger
logger = logging.getLogger(__name__)


class Scheduler:
    """
    Interval scheduler for the news cycle.

    Overlap is prevented twice: the APScheduler job runs with
    ``max_instances=1`` and every tick takes a non-blocking lock before
    calling the cycle function.
    """

    def __init__(self):
        self.scheduler: Optional[BackgroundScheduler] = None
        self.cycle_function: Optional[Callable[[], Any]] = None
        self.interval_minutes: Optional[int] = None
        self.is_running = False
        self._execution_lock = threading.Lock()
        self._job_id = "news_cycle"

    def start(
        self,
        cycle_function: Callable[[], Any],
        interval_minutes: Optional[int] = None,
        run_immediately: bool = True
    ) -> bool:
        """
        Start running ``cycle_function`` on an interval.

        Args:
            cycle_function: Callable running one news cycle
            interval_minutes: Minutes between cycles. If None, uses Config.SCAN_INTERVAL_MINUTES
            run_immediately: Fire the first cycle right away instead of after one interval

        Returns:
            True if the scheduler started, False otherwise
        """
        if self.is_running:
            logger.warning("Scheduler is already running")
            return False

        if not callable(cycle_function):
            logger.error("cycle_function must be callable")
            return False

        if interval_minutes is None:
            interval_minutes = Config.SCAN_INTERVAL_MINUTES

        if interval_minutes < 1:
            logger.error(f"Invalid interval_minutes: {interval_minutes}. Must be >= 1")
            return False

        self.cycle_function = cycle_function
        self.interval_minutes = interval_minutes

        try:
            timezone = pytz.timezone(Config.SCHEDULER_TIMEZONE)
            self.scheduler = BackgroundScheduler(timezone=timezone)

            self.scheduler.add_listener(
                self._on_job_event,
                EVENT_JOB_EXECUTED | EVENT_JOB_ERROR
            )

            job_options = {}
            if run_immediately:
                job_options["next_run_time"] = datetime.now(timezone)

            self.scheduler.add_job(
                func=self.run_guarded,
                trigger=IntervalTrigger(minutes=interval_minutes, timezone=timezone),
                id=self._job_id,
                name="News Cycle",
                replace_existing=True,
                max_instances=1,
                coalesce=True,
                **job_options
            )

            self.scheduler.start()
            self.is_running = True

            logger.info(f"Scheduler started with {interval_minutes} minute interval")
            return True

        except Exception as e:
            logger.error(f"Failed to start scheduler: {e}", exc_info=True)
            self.scheduler = None
            self.is_running = False
            return False

    def stop(self, wait: bool = True) -> bool:
        """
        Stop the scheduler.

        Args:
            wait: Whether to wait for a running cycle to complete

        Returns:
            True if the scheduler stopped, False otherwise
        """
        if not self.is_running or not self.scheduler:
            logger.warning("Scheduler is not running")
            return False

        try:
            logger.info("Shutting down news cycle scheduler")
            self.scheduler.shutdown(wait=wait)

            self.is_running = False
            self.scheduler = None

            logger.info("Scheduler stopped")
            return True

        except Exception as e:
            logger.error(f"Error stopping scheduler: {e}", exc_info=True)
            return False

    def run_guarded(self) -> bool:
        """
        Run one cycle unless another is still in progress.

        Exceptions from the cycle are logged and never reach APScheduler.

        Returns:
            True if the cycle ran, False if the tick was skipped
        """
        if not self._execution_lock.acquire(blocking=False):
            logger.warning("Cycle skipped: previous cycle still in progress")
            return False

        start_time = utc_now()

        try:
            if not self.cycle_function:
                logger.error("Cycle function not set")
                return False

            result = self.cycle_function()

            duration = (utc_now() - start_time).total_seconds()
            emitted = getattr(result, "emitted", None)
            if emitted is not None:
                logger.info(f"Scheduled cycle completed in {duration:.2f}s with {emitted} report(s)")
            else:
                logger.info(f"Scheduled cycle completed in {duration:.2f}s")

        except Exception as e:
            duration = (utc_now() - start_time).total_seconds()
            logger.error(f"Scheduled cycle failed after {duration:.2f}s: {e}", exc_info=True)

        finally:
            self._execution_lock.release()

        return True

    def _on_job_event(self, event) -> None:
        if event.exception:
            logger.error(f"Job {event.job_id} raised an exception: {event.exception}")
        else:
            logger.debug(f"Job {event.job_id} executed")

    def get_next_run_time(self) -> Optional[datetime]:
        """Next scheduled run time, or None if the scheduler is not running."""
        if not self.is_running or not self.scheduler:
            return None

        job = self.scheduler.get_job(self._job_id)
        return job.next_run_time if job else None

    def is_cycle_running(self) -> bool:
        return self._execution_lock.locked()

    def get_status(self) -> dict:
        """
        Snapshot of the scheduler for logging and the CLI.
        """
        next_run = self.get_next_run_time()
        return {
            "is_running": self.is_running,
            "cycle_running": self.is_cycle_running(),
            "interval_minutes": self.interval_minutes if self.is_running else None,
            "next_run_time": next_run.isoformat() if next_run else None,
        }
