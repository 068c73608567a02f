import logging
import threading
from datetime import date
from typing import Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.orm import Session

from config import get_settings
from database import session_scope
from rate_limit import get_limiter
from recurrence import RecurringEngine
from schemas import BatchResult


logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# at most one recurring batch per process at a time
_run_lock = threading.Lock()


def run_recurring(
    source: str,
    as_of: Optional[date] = None,
    session: Optional[Session] = None,
) -> Optional[BatchResult]:
    """Run one recurring batch, or return None if another one is in flight.

    Without a ``session`` the batch opens its own through ``session_scope``.
    """
    if not _run_lock.acquire(blocking=False):
        logger.warning(f"scheduler_run: source={source} skipped, batch already running")
        return None
    try:
        logger.info(f"scheduler_run: source={source}")
        if session is not None:
            result = RecurringEngine(session).process_due(as_of)
        else:
            with session_scope() as own_session:
                result = RecurringEngine(own_session).process_due(as_of)
        logger.info(
            f"scheduler_run: source={source} processed={result.processed_count} "
            f"errors={result.error_count} deactivated={result.deactivated_count}"
        )
        return result
    finally:
        _run_lock.release()


class SchedulerManager:
    def __init__(self) -> None:
        settings = get_settings()
        self.settings = settings
        self.scheduler = BackgroundScheduler(timezone=settings.timezone)

    def _run_job(self, source: str = "manual") -> None:
        try:
            run_recurring(source)
        except Exception:
            # next tick retries
            logger.exception(f"scheduler_run: source={source} failed")

    def _sweep_rate_limits(self) -> None:
        removed = get_limiter().sweep()
        if removed:
            logger.info(f"rate_limit_sweep: removed={removed}")

    def start(self) -> None:
        trigger = IntervalTrigger(seconds=self.settings.rate_limit_sweep_secs)
        self.scheduler.add_job(
            self._sweep_rate_limits,
            trigger,
            id="rate_limit_sweep",
            replace_existing=True,
        )

        if self.settings.scheduler_enabled:
            self._add_recurring_jobs()
        else:
            logger.info("Recurring jobs disabled by configuration")

        self.scheduler.start()
        logger.info(
            f"Scheduler started with rate limit sweep every "
            f"{self.settings.rate_limit_sweep_secs}s"
        )

    def _add_recurring_jobs(self) -> None:
        self._run_job("startup")

        hour = self.settings.recurring_hour
        minute = self.settings.recurring_minute
        trigger = CronTrigger(hour=hour, minute=minute)
        self.scheduler.add_job(
            self._run_job,
            trigger,
            args=[f"daily_{hour:02d}:{minute:02d}"],
            id="recurring_daily",
            replace_existing=True,
            misfire_grace_time=3600,
        )

        trigger = IntervalTrigger(hours=1)
        self.scheduler.add_job(
            self._run_job,
            trigger,
            args=["hourly_safety_net"],
            id="recurring_hourly_safety",
            replace_existing=True,
            misfire_grace_time=300,
        )
        logger.info(
            f"Recurring jobs scheduled daily at {hour:02d}:{minute:02d} "
            f"with hourly safety net"
        )

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")
