#!/usr/bin/env python3
"""
scheduler.py - The Timetable

Registers every maintenance job against a cron scheduler in the clinic's
timezone and exposes manual entry points for operational checks.

Each job has a single cron entry. When a scheduled run fails, the job is
requeued once, `retry_after` later, so a transient outage is covered
without operator intervention. Failures are logged and never leave the tick
handler, so one job cannot block the others.

Usage:
    python -m kine_app.jobs.scheduler            # run the scheduler
    python -m kine_app.jobs.scheduler --run purge_archived
"""

import argparse
import json
import logging
import sys
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.date import DateTrigger

from config.settings import (
    ARCHIVE_TIMEOUT_SECONDS,
    JOB_REQUEUE_MINUTES,
    KINE_CHAT_CLEANUP_TIMEOUT_SECONDS,
    MANUAL_LONG_TIMEOUT_SECONDS,
    MANUAL_SHORT_TIMEOUT_SECONDS,
    NOTIFICATIONS_TIMEOUT_SECONDS,
    ORPHAN_ASSETS_TIMEOUT_SECONDS,
    PURGE_TIMEOUT_SECONDS,
    SCHEDULER_ENABLED,
    SCHEDULER_TIMEZONE,
    validate_configuration,
)
from kine_app.errors import UnknownJobError
from kine_app.jobs import JOB_SCHEDULES, setup_job_logging
from kine_app.jobs.archive_programmes import archive_finished_programmes
from kine_app.jobs.clean_kine_chat import clean_kine_chat_history
from kine_app.jobs.executor import RetryingExecutor, get_default_executor
from kine_app.jobs.program_notifications import generate_program_completed_notifications
from kine_app.jobs.purge_archived import purge_archived_programmes
from kine_app.jobs.reap_orphan_assets import reap_orphan_assets

logger = logging.getLogger(__name__)


@dataclass
class ScheduledJob:
    """A job body with its cron expression and time budgets"""
    name: str
    func: Callable[[], Dict[str, Any]]
    cron: str
    timeout_seconds: float
    manual_timeout_seconds: float
    retry_after: Optional[timedelta] = None


def default_jobs() -> List[ScheduledJob]:
    """The production job registry."""
    requeue = timedelta(minutes=JOB_REQUEUE_MINUTES)

    return [
        ScheduledJob(
            name='program_notifications',
            func=generate_program_completed_notifications,
            cron=JOB_SCHEDULES['program_notifications'],
            timeout_seconds=NOTIFICATIONS_TIMEOUT_SECONDS,
            manual_timeout_seconds=MANUAL_SHORT_TIMEOUT_SECONDS,
            retry_after=requeue
        ),
        ScheduledJob(
            name='archive_programmes',
            func=archive_finished_programmes,
            cron=JOB_SCHEDULES['archive_programmes'],
            timeout_seconds=ARCHIVE_TIMEOUT_SECONDS,
            manual_timeout_seconds=MANUAL_SHORT_TIMEOUT_SECONDS,
            retry_after=requeue
        ),
        ScheduledJob(
            name='clean_kine_chat',
            func=clean_kine_chat_history,
            cron=JOB_SCHEDULES['clean_kine_chat'],
            timeout_seconds=KINE_CHAT_CLEANUP_TIMEOUT_SECONDS,
            manual_timeout_seconds=MANUAL_SHORT_TIMEOUT_SECONDS
        ),
        ScheduledJob(
            name='purge_archived',
            func=purge_archived_programmes,
            cron=JOB_SCHEDULES['purge_archived'],
            timeout_seconds=PURGE_TIMEOUT_SECONDS,
            manual_timeout_seconds=MANUAL_LONG_TIMEOUT_SECONDS,
            retry_after=requeue
        ),
        ScheduledJob(
            name='reap_orphan_assets',
            func=reap_orphan_assets,
            cron=JOB_SCHEDULES['reap_orphan_assets'],
            timeout_seconds=ORPHAN_ASSETS_TIMEOUT_SECONDS,
            manual_timeout_seconds=MANUAL_LONG_TIMEOUT_SECONDS,
            retry_after=requeue
        ),
    ]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MaintenanceScheduler:
    """
    Cron registration for the maintenance jobs.

    Args:
        jobs: Job registry
        executor: Timeout/retry wrapper for job bodies
        clock: Returns the current aware datetime
        scheduler: APScheduler instance (a BackgroundScheduler is created on start)
        tz: Timezone the cron expressions are evaluated in
    """

    def __init__(self,
                 jobs: List[ScheduledJob],
                 executor: Optional[RetryingExecutor] = None,
                 clock: Callable[[], datetime] = _utcnow,
                 scheduler=None,
                 tz: str = SCHEDULER_TIMEZONE):
        self.jobs = {job.name: job for job in jobs}
        self.executor = executor or get_default_executor()
        self.clock = clock
        self.timezone = tz
        self._scheduler = scheduler
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    def get_job(self, name: str) -> ScheduledJob:
        try:
            return self.jobs[name]
        except KeyError:
            raise UnknownJobError(f"Unknown job: {name}") from None

    def trigger_for(self, job: ScheduledJob) -> CronTrigger:
        return CronTrigger.from_crontab(job.cron, timezone=self.timezone)

    def next_run_times(self, now: Optional[datetime] = None) -> Dict[str, datetime]:
        """Next cron fire time of every job after `now`."""
        now = now or self.clock()
        return {
            name: self.trigger_for(job).get_next_fire_time(None, now)
            for name, job in self.jobs.items()
        }

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def start(self) -> None:
        """Register every job and start the background scheduler."""
        if self._running:
            logger.warning("Scheduler already running")
            return

        logger.info("🚀 Starting maintenance cron jobs...")
        if self._scheduler is None:
            self._scheduler = BackgroundScheduler(timezone=self.timezone)

        for name, job in self.jobs.items():
            self._scheduler.add_job(
                self.run_job,
                self.trigger_for(job),
                args=[name],
                id=name,
                name=name,
                replace_existing=True,
                coalesce=True,
                max_instances=1,
                misfire_grace_time=300
            )
            logger.info(f"🗓️ {name} scheduled: '{job.cron}' ({self.timezone}), timeout {job.timeout_seconds:g}s")

        self._scheduler.start()
        self._running = True
        logger.info("✅ Maintenance cron jobs configured")

    def stop(self, wait: bool = False) -> None:
        """Stop the background scheduler."""
        if not self._running:
            return
        self._scheduler.shutdown(wait=wait)
        self._running = False
        logger.info("🛑 Maintenance scheduler stopped")

    # -------------------------------------------------------------------------
    # Tick handling
    # -------------------------------------------------------------------------

    def run_job(self, name: str, requeue: bool = True) -> Optional[Dict[str, Any]]:
        """
        Run one scheduled tick of a job.

        Returns:
            The job summary, or None when the run failed
        """
        job = self.get_job(name)
        try:
            return self.executor.execute(name, job.func, job.timeout_seconds)
        except Exception as e:
            logger.error(f"❌ [{self.clock().isoformat()}] Scheduled job {name} failed: {e}")
            if requeue and job.retry_after:
                self._requeue(job)
            return None

    def _requeue(self, job: ScheduledJob) -> Optional[datetime]:
        if not self._running:
            logger.warning(f"Scheduler not running, {job.name} not requeued")
            return None

        run_at = self.clock() + job.retry_after
        self._scheduler.add_job(
            self.run_job,
            DateTrigger(run_date=run_at, timezone=self.timezone),
            args=[job.name],
            kwargs={'requeue': False},
            id=f"{job.name}__requeue",
            name=f"{job.name} (requeue)",
            replace_existing=True
        )
        logger.warning(f"🔁 {job.name} requeued for {run_at.isoformat()}")
        return run_at

    def run_manual(self, name: str) -> Dict[str, Any]:
        """
        Run a job outside the schedule with its manual time budget.

        Raises:
            UnknownJobError: If the job is not registered
            Exception: Whatever the job run raised
        """
        job = self.get_job(name)
        logger.info(f"🧪 Manual test: {name}...")
        try:
            result = self.executor.execute(name, job.func, job.manual_timeout_seconds)
        except Exception as e:
            logger.error(f"❌ Manual test {name} failed: {e}")
            raise
        logger.info(f"✅ Manual test {name} finished: {result}")
        return result


def build_scheduler(**kwargs) -> MaintenanceScheduler:
    """Scheduler over the production job registry."""
    return MaintenanceScheduler(default_jobs(), **kwargs)


# =============================================================================
# Manual test entry points
# =============================================================================

def manual_notifications_test() -> Dict[str, Any]:
    return build_scheduler().run_manual('program_notifications')


def manual_archive_test() -> Dict[str, Any]:
    return build_scheduler().run_manual('archive_programmes')


def manual_cleanup_test() -> Dict[str, Any]:
    """Purge of programmes archived beyond the retention window."""
    return build_scheduler().run_manual('purge_archived')


def manual_orphan_assets_test() -> Dict[str, Any]:
    return build_scheduler().run_manual('reap_orphan_assets')


def manual_kine_chat_cleanup_test() -> Dict[str, Any]:
    return build_scheduler().run_manual('clean_kine_chat')


MANUAL_TESTS = {
    'program_notifications': manual_notifications_test,
    'archive_programmes': manual_archive_test,
    'purge_archived': manual_cleanup_test,
    'reap_orphan_assets': manual_orphan_assets_test,
    'clean_kine_chat': manual_kine_chat_cleanup_test,
}


# =============================================================================
# Worker entry point
# =============================================================================

def main(argv: Optional[List[str]] = None):
    """
    Main entry point for the maintenance worker.
    """
    parser = argparse.ArgumentParser(description="Kiné maintenance worker")
    parser.add_argument('--run', choices=sorted(MANUAL_TESTS), help="Run one job now and exit")
    args = parser.parse_args(argv)

    setup_job_logging('scheduler')

    try:
        validate_configuration()
    except ValueError as e:
        logger.error(str(e))
        sys.exit(1)

    from kine_app.database.session import close_all_connections, health_check
    if not health_check():
        logger.error("Database unreachable, aborting")
        sys.exit(1)

    if args.run:
        try:
            result = MANUAL_TESTS[args.run]()
        except Exception as e:
            logger.error(f"Critical error in manual run: {e}")
            sys.exit(1)
        print(json.dumps(result, indent=2, default=str, ensure_ascii=False))
        close_all_connections()
        return

    if not SCHEDULER_ENABLED:
        logger.info("Scheduler disabled via SCHEDULER_ENABLED")
        return

    scheduler = build_scheduler()
    scheduler.start()
    for name, fire_time in scheduler.next_run_times().items():
        logger.info(f"Next {name}: {fire_time.isoformat()}")

    try:
        while True:
            time.sleep(1)
    except (KeyboardInterrupt, SystemExit):
        logger.info("Shutdown requested")
    finally:
        scheduler.stop()
        close_all_connections()


if __name__ == "__main__":
    main()
