#!/usr/bin/env python3
"""
purge_archived.py - The Shredder

Permanently deletes programmes that have been archived for longer than the
retention window, together with their validations, chat history and
notifications. Programmes are deleted one at a time so a single failing row
does not block the rest.

Schedule: Weekly, Sunday 03:00 (Europe/Paris), see scheduler.py
"""

import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from dateutil.relativedelta import relativedelta

from config.settings import ARCHIVE_RETENTION_MONTHS
from kine_app.database.models import ensure_utc
from kine_app.database.queries import (
    count_chat_sessions,
    delete_programme,
    get_programmes_archived_before,
)
from kine_app.database.session import get_db_session
from kine_app.jobs import log_job_summary, setup_job_logging

logger = logging.getLogger(__name__)


def retention_cutoff(now: datetime, months: int = ARCHIVE_RETENTION_MONTHS) -> datetime:
    """Instant before which an archived programme is due for deletion."""
    return now - relativedelta(months=months)


def purge_archived_programmes(now: Optional[datetime] = None) -> Dict[str, Any]:
    """
    Delete programmes archived strictly before `now - ARCHIVE_RETENTION_MONTHS`.

    A programme archived exactly at the cutoff is kept until the next run.

    Args:
        now: Reference instant (defaults to the current UTC time)

    Returns:
        Dict with programs (deleted count), messages (chat rows removed with
        them), failed, and details (id, titre, archivedAt) per deleted programme
    """
    now = now or datetime.now(timezone.utc)
    cutoff = retention_cutoff(now)
    logger.info(f"🗑️ [{now.isoformat()}] Purging programmes archived before {cutoff.isoformat()}...")

    with get_db_session() as session:
        expired = get_programmes_archived_before(session, cutoff)

        if not expired:
            logger.info(f"🧹 No programme archived for more than {ARCHIVE_RETENTION_MONTHS} months")
            return {'programs': 0, 'messages': 0, 'failed': 0, 'details': []}

        message_count = count_chat_sessions(session, [p.id for p in expired])

        deleted_details = []
        failed = 0

        for programme in expired:
            programme_id = programme.id
            titre = programme.titre
            archived_at = ensure_utc(programme.archived_at)

            try:
                with session.begin_nested():
                    delete_programme(session, programme)

                deleted_details.append({
                    'id': programme_id,
                    'titre': titre,
                    'archivedAt': archived_at.isoformat()
                })
                logger.info(f"🗑️ Programme deleted: \"{titre}\" (ID: {programme_id})")

            except Exception as e:
                logger.error(f"❌ Error deleting programme {programme_id}: {e}")
                failed += 1
                continue

    logger.info(
        f"🗑️ Permanent deletion: {len(deleted_details)} programmes and {message_count} messages "
        f"(archived > {ARCHIVE_RETENTION_MONTHS} months), {failed} failures"
    )

    return {
        'programs': len(deleted_details),
        'messages': message_count,
        'failed': failed,
        'details': deleted_details
    }


def main():
    """
    Main entry point for a one-off purge run.
    """
    setup_job_logging('purge_archived')
    start_time = datetime.now(timezone.utc)

    try:
        result = purge_archived_programmes()
        log_job_summary('purge_archived', {
            'Programmes deleted': result['programs'],
            'Chat messages deleted': result['messages'],
            'Failures': result['failed'],
        }, start_time)

    except Exception as e:
        logger.error(f"Critical error in main execution: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
