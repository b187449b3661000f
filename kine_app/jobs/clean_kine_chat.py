#!/usr/bin/env python3
"""
clean_kine_chat.py - The Janitor

Deletes physiotherapist assistant chat history older than the retention
window (five days by default).

Schedule: Daily at 02:30 (Europe/Paris), see scheduler.py
"""

import logging
import sys
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional

from config.settings import KINE_CHAT_RETENTION_DAYS
from kine_app.database.queries import delete_kine_chat_before
from kine_app.database.session import get_db_session
from kine_app.jobs import log_job_summary, setup_job_logging

logger = logging.getLogger(__name__)


def clean_kine_chat_history(now: Optional[datetime] = None,
                            retention_days: int = KINE_CHAT_RETENTION_DAYS) -> Dict[str, int]:
    """
    Delete practitioner chat rows created before `now - retention_days`.

    Returns:
        Dict with the number of deleted rows
    """
    now = now or datetime.now(timezone.utc)
    cutoff = now - timedelta(days=retention_days)
    logger.info(f"💬 [{now.isoformat()}] Cleaning kine chat history older than {retention_days} days...")

    with get_db_session() as session:
        deleted = delete_kine_chat_before(session, cutoff)

    if deleted:
        logger.info(f"🗑️ Kine chat: {deleted} messages deleted (> {retention_days} days)")
    else:
        logger.info(f"ℹ️ No kine chat message older than {retention_days} days")

    return {'deleted': deleted}


def main():
    setup_job_logging('clean_kine_chat')
    start_time = datetime.now(timezone.utc)

    try:
        result = clean_kine_chat_history()
        log_job_summary('clean_kine_chat', {'Messages deleted': result['deleted']}, start_time)

    except Exception as e:
        logger.error(f"Critical error in main execution: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
