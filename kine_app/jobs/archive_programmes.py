#!/usr/bin/env python3
"""
archive_programmes.py - The Archivist

Moves finished programmes out of the active list. Programmes whose end date
has passed are flagged as archived with the run instant; their patient chat
history stays attached and is only counted for the report.

Schedule: Daily at 02:00 (Europe/Paris), see scheduler.py
"""

import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from config.settings import PROGRAMME_BATCH_SIZE
from kine_app.database.models import ensure_utc
from kine_app.database.queries import (
    archive_programmes,
    count_chat_sessions,
    get_overdue_unarchived_programmes,
)
from kine_app.database.session import get_db_session
from kine_app.jobs import log_job_summary, setup_job_logging

logger = logging.getLogger(__name__)


def archive_finished_programmes(now: Optional[datetime] = None) -> Dict[str, Any]:
    """
    Archive every unarchived programme whose end date has passed.

    Runs independently of the completion notification job; both select the
    same rows and both are safe to repeat.

    Args:
        now: Reference instant, also written as `archived_at`

    Returns:
        Dict with programs (archived count), messages (chat rows attached to
        them) and details (id, titre, dateFin)
    """
    now = now or datetime.now(timezone.utc)
    logger.info(f"📦 [{now.isoformat()}] Archiving finished programmes...")

    with get_db_session() as session:
        finished = get_overdue_unarchived_programmes(session, now, limit=PROGRAMME_BATCH_SIZE)

        if not finished:
            logger.info("📋 No finished programme to archive")
            return {'programs': 0, 'messages': 0, 'details': []}

        programme_ids = [p.id for p in finished]
        details = [
            {'id': p.id, 'titre': p.titre, 'dateFin': ensure_utc(p.date_fin).isoformat()}
            for p in finished
        ]

        archived_count = archive_programmes(session, programme_ids, now)
        message_count = count_chat_sessions(session, programme_ids)

    logger.info(f"📦 {archived_count} finished programmes archived")
    logger.info(f"💬 {message_count} chat messages archived with them")

    return {
        'programs': archived_count,
        'messages': message_count,
        'details': details
    }


def main():
    """
    Main entry point for a one-off archival run.
    """
    setup_job_logging('archive_programmes')
    start_time = datetime.now(timezone.utc)

    try:
        result = archive_finished_programmes()
        log_job_summary('archive_programmes', {
            'Programmes archived': result['programs'],
            'Chat messages archived': result['messages'],
        }, start_time)

    except Exception as e:
        logger.error(f"Critical error in main execution: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
