#!/usr/bin/env python3
"""
program_notifications.py - The Herald

Tells each physiotherapist when one of their patients' programmes has come
to an end, with the adherence figures for the whole programme. Every
finished programme produces at most one "programme completed" notification,
so the job can run as often as needed.

Schedule: Daily shortly after midnight (Europe/Paris), see scheduler.py
"""

import logging
import math
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from dateutil import tz

from config.settings import PROGRAMME_BATCH_SIZE, SCHEDULER_TIMEZONE
from kine_app.database.models import NotificationType, Programme, ensure_utc
from kine_app.database.queries import (
    count_validated_sessions,
    create_notification,
    find_notification,
    get_overdue_unarchived_programmes,
)
from kine_app.database.session import get_db_session
from kine_app.jobs import log_job_summary, setup_job_logging

logger = logging.getLogger(__name__)

NOTIFICATION_TITLE = "Programme terminé"
TRIGGER_DATE_REACHED = "date_reached"


def compute_adherence(date_debut: datetime, date_fin: datetime, validated_days: int) -> Dict[str, Any]:
    """
    Compute adherence figures for a programme.

    Both bounds are counted, on calendar days in the clinic timezone
    (SCHEDULER_TIMEZONE): a programme running from day D to day D+9 spans
    10 days.

    Args:
        date_debut: Programme start
        date_fin: Programme end
        validated_days: Number of validated session rows

    Returns:
        Dict with totalDays, validatedDays, completionPercentage,
        adherenceRatio and adherenceText
    """
    local_tz = tz.gettz(SCHEDULER_TIMEZONE)
    start_day = ensure_utc(date_debut).astimezone(local_tz).date()
    end_day = ensure_utc(date_fin).astimezone(local_tz).date()

    total_days = max((end_day - start_day).days + 1, 1)
    # Half-up rounding, 62.5 -> 63
    completion_percentage = math.floor(validated_days / total_days * 100 + 0.5)

    return {
        'totalDays': total_days,
        'validatedDays': validated_days,
        'completionPercentage': completion_percentage,
        'adherenceRatio': f"{validated_days}/{total_days}",
        'adherenceText': (
            f"{validated_days}/{total_days} jours complétés, "
            f"{completion_percentage}% d'adhérence"
        ),
    }


def build_notification_metadata(programme: Programme, validated_days: int, now: datetime) -> Dict[str, Any]:
    """Metadata payload stored on a programme completed notification."""
    metadata = compute_adherence(programme.date_debut, programme.date_fin, validated_days)
    metadata.update({
        'programmeStartDate': ensure_utc(programme.date_debut).isoformat(),
        'programmeEndDate': ensure_utc(programme.date_fin).isoformat(),
        'completedAt': now.isoformat(),
        'trigger': TRIGGER_DATE_REACHED,
    })
    return metadata


def generate_program_completed_notifications(now: Optional[datetime] = None) -> Dict[str, Any]:
    """
    Create a "programme completed" notification for every finished programme
    that does not have one yet.

    Candidates are unarchived programmes whose end date has passed, oldest
    first, at most PROGRAMME_BATCH_SIZE per run. A failure on one programme
    is logged and skipped; a failure of the surrounding transaction
    propagates.

    Args:
        now: Reference instant (defaults to the current UTC time)

    Returns:
        Dict with checked, created, skipped, failed and per-programme details
    """
    now = now or datetime.now(timezone.utc)
    stats = {'checked': 0, 'created': 0, 'skipped': 0, 'failed': 0, 'details': []}

    logger.info(f"🔔 [{now.isoformat()}] Checking finished programmes for completion notifications...")

    with get_db_session() as session:
        programmes = get_overdue_unarchived_programmes(session, now, limit=PROGRAMME_BATCH_SIZE)

        if not programmes:
            logger.info("No finished programmes awaiting notification.")
            return stats

        stats['checked'] = len(programmes)
        validated_counts = count_validated_sessions(session, [p.id for p in programmes])

        for programme in programmes:
            patient = programme.patient
            detail = {'programmeId': programme.id, 'titre': programme.titre}

            try:
                with session.begin_nested():
                    existing = find_notification(
                        session,
                        NotificationType.PROGRAM_COMPLETED,
                        patient.kine_id,
                        patient.id,
                        programme.id
                    )
                    if existing:
                        logger.debug(f"Notification already exists for programme {programme.id}, skipping")
                        stats['skipped'] += 1
                        detail['status'] = 'already_notified'
                        stats['details'].append(detail)
                        continue

                    metadata = build_notification_metadata(programme, validated_counts[programme.id], now)
                    message = f'Le programme "{programme.titre}" de {patient.full_name} est terminé'

                    create_notification(
                        session,
                        NotificationType.PROGRAM_COMPLETED,
                        NOTIFICATION_TITLE,
                        message,
                        kine_id=patient.kine_id,
                        patient_id=patient.id,
                        programme_id=programme.id,
                        metadata=metadata
                    )

                stats['created'] += 1
                detail.update({
                    'status': 'created',
                    'patient': patient.full_name,
                    'validatedDays': metadata['validatedDays'],
                    'totalDays': metadata['totalDays'],
                    'completionPercentage': metadata['completionPercentage'],
                })
                stats['details'].append(detail)

                logger.info(
                    f"🎉 PROGRAMME COMPLETED: {patient.full_name} - {programme.titre} - "
                    f"adherence {metadata['adherenceRatio']} ({metadata['completionPercentage']}%)"
                )

            except Exception as e:
                logger.error(f"Error creating completion notification for programme {programme.id}: {e}")
                stats['failed'] += 1
                detail['status'] = 'failed'
                detail['error'] = str(e)
                stats['details'].append(detail)
                continue

    logger.info(
        f"✅ Completion notifications: {stats['created']} created, "
        f"{stats['skipped']} already present, {stats['failed']} failed "
        f"({stats['checked']} programmes checked)"
    )
    return stats


def main():
    """
    Main entry point for a one-off run of the completion notification job.
    """
    setup_job_logging('program_notifications')
    start_time = datetime.now(timezone.utc)

    try:
        stats = generate_program_completed_notifications()
        log_job_summary('program_notifications', {
            'Programmes checked': stats['checked'],
            'Notifications created': stats['created'],
            'Already notified': stats['skipped'],
            'Failures': stats['failed'],
        }, start_time)

    except Exception as e:
        logger.error(f"Critical error in main execution: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
