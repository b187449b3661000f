"""
Background Jobs Package for the Kiné Maintenance Worker

This package contains the scheduled maintenance jobs that keep programme,
notification and asset data tidy without any user-facing request.

Job Modules:
-----------
- program_notifications: The "Herald" - Notifies kines of finished programmes
- archive_programmes: The "Archivist" - Archives programmes past their end date
- purge_archived: The "Shredder" - Deletes programmes archived for 6+ months
- reap_orphan_assets: The "Groundskeeper" - Removes unreferenced exercise animations
- clean_kine_chat: The "Janitor" - Trims practitioner chat history
- executor: The "Stopwatch" - Timeout and retry wrapper shared by every job
- scheduler: The "Timetable" - Cron registration and manual entry points

Architecture:
------------
Each job is a plain function that:
1. Opens its own database unit of work (and storage client when needed)
2. Performs its specific task, skipping items that fail individually
3. Returns a summary dict that is logged by the caller

Every job is idempotent over its selection predicate, so a failed or
repeated run is safe: the next run re-evaluates the same rows.
"""

import logging
import sys
from datetime import datetime, timezone
from typing import Dict

from config.settings import LOG_LEVEL


def setup_job_logging(job_name: str) -> logging.Logger:
    """
    Configure root logging to stdout for a job or the scheduler process.

    Args:
        job_name: Logger name to return (e.g. 'archive_programmes')
    """
    logging.basicConfig(
        level=getattr(logging, LOG_LEVEL, logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[logging.StreamHandler(sys.stdout)]
    )
    return logging.getLogger(job_name)


def log_job_summary(job_name: str, stats: Dict, start_time: datetime):
    """Log the counters a job returned, with its wall-clock duration."""
    logger = logging.getLogger(job_name)
    finished_at = datetime.now(timezone.utc)
    elapsed = (finished_at - start_time).total_seconds()

    logger.info(f"📊 {job_name} finished at {finished_at.isoformat()} ({elapsed:.2f}s)")
    for label, value in stats.items():
        logger.info(f"   {label}: {value}")


# Cron expressions, evaluated in SCHEDULER_TIMEZONE
JOB_SCHEDULES = {
    'program_notifications': '5 0 * * *',   # Daily at 00:05
    'archive_programmes': '0 2 * * *',      # Daily at 02:00
    'clean_kine_chat': '30 2 * * *',        # Daily at 02:30
    'purge_archived': '0 3 * * sun',        # Sunday at 03:00
    'reap_orphan_assets': '0 4 * * sun',    # Sunday at 04:00
}

__all__ = [
    'setup_job_logging',
    'log_job_summary',
    'JOB_SCHEDULES'
]
