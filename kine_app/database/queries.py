"""
Database Query Interface for the Kiné Maintenance Worker

This module is the sole interface between the scheduled jobs and the
database. It hides SQLAlchemy details behind small, business-focused
functions.

All functions take a session as the first parameter. They never commit:
the caller's unit of work (`get_db_session()`) owns the transaction, so a
job's reads and writes succeed or roll back together.
"""

import json
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Set

from sqlalchemy import func, asc, desc
from sqlalchemy.orm import Session, joinedload

from .models import (
    ChatKine,
    ChatSession,
    ExerciceModele,
    Notification,
    NotificationType,
    Programme,
    SessionValidation,
)

# Configure logging
logger = logging.getLogger(__name__)


# =============================================================================
# PROGRAMME OPERATIONS
# =============================================================================

def get_overdue_unarchived_programmes(session: Session, now: datetime, limit: int = 100) -> List[Programme]:
    """
    Retrieve programmes whose end date has passed and that are not archived.

    Oldest end dates come first so a backlog drains in order.

    Args:
        session: Database session
        now: Reference instant
        limit: Maximum number of programmes to return

    Returns:
        List of Programme objects with their patient loaded
    """
    return session.query(Programme).options(
        joinedload(Programme.patient)
    ).filter(
        Programme.date_fin <= now,
        Programme.is_archived == False
    ).order_by(
        asc(Programme.date_fin),
        asc(Programme.id)
    ).limit(limit).all()


def count_validated_sessions(session: Session, programme_ids: Sequence[int]) -> Dict[int, int]:
    """
    Count validated session rows for each programme.

    Returns:
        Mapping of programme id to validated row count (missing ids map to 0)
    """
    counts = {programme_id: 0 for programme_id in programme_ids}
    if not programme_ids:
        return counts

    rows = session.query(
        SessionValidation.programme_id,
        func.count(SessionValidation.id)
    ).filter(
        SessionValidation.programme_id.in_(programme_ids),
        SessionValidation.is_validated == True
    ).group_by(SessionValidation.programme_id).all()

    for programme_id, count in rows:
        counts[programme_id] = count
    return counts


def archive_programmes(session: Session, programme_ids: Sequence[int], archived_at: datetime) -> int:
    """
    Bulk-archive programmes.

    Only rows still unarchived are touched, so concurrent runs cannot move an
    existing `archived_at` timestamp.

    Returns:
        Number of rows updated
    """
    if not programme_ids:
        return 0

    return session.query(Programme).filter(
        Programme.id.in_(programme_ids),
        Programme.is_archived == False
    ).update(
        {Programme.is_archived: True, Programme.archived_at: archived_at},
        synchronize_session=False
    )


def get_programmes_archived_before(session: Session, cutoff: datetime) -> List[Programme]:
    """
    Retrieve archived programmes whose archival instant is strictly before cutoff.
    """
    return session.query(Programme).filter(
        Programme.is_archived == True,
        Programme.archived_at < cutoff
    ).order_by(asc(Programme.archived_at)).all()


def get_programme_by_id(session: Session, programme_id: int) -> Optional[Programme]:
    """Retrieve a programme with its patient, or None."""
    return session.query(Programme).options(
        joinedload(Programme.patient)
    ).filter(Programme.id == programme_id).first()


def get_archived_programmes(session: Session) -> List[Programme]:
    """Retrieve every archived programme, most recently archived first."""
    return session.query(Programme).options(
        joinedload(Programme.patient)
    ).filter(
        Programme.is_archived == True
    ).order_by(desc(Programme.archived_at)).all()


def count_programmes(session: Session, archived: bool) -> int:
    """Count programmes by archive state."""
    return session.query(func.count(Programme.id)).filter(
        Programme.is_archived == archived
    ).scalar() or 0


def delete_programme(session: Session, programme: Programme) -> None:
    """
    Permanently delete a programme.

    Validations, chat sessions and notifications attached to the programme
    go with it through the ORM cascade.
    """
    session.delete(programme)
    session.flush()


# =============================================================================
# CHAT OPERATIONS
# =============================================================================

def count_chat_sessions(session: Session, programme_ids: Sequence[int]) -> int:
    """Count patient chat rows attached to any of the given programmes."""
    if not programme_ids:
        return 0

    return session.query(func.count(ChatSession.id)).filter(
        ChatSession.programme_id.in_(programme_ids)
    ).scalar() or 0


def count_chat_sessions_by_archive_state(session: Session) -> Dict[str, int]:
    """
    Count patient chat rows split by the archive state of their programme.

    Returns:
        Dict with total, active and archived counts
    """
    rows = session.query(
        Programme.is_archived,
        func.count(ChatSession.id)
    ).join(
        Programme, ChatSession.programme_id == Programme.id
    ).group_by(Programme.is_archived).all()

    counts = {'active': 0, 'archived': 0}
    for is_archived, count in rows:
        counts['archived' if is_archived else 'active'] = count

    counts['total'] = session.query(func.count(ChatSession.id)).scalar() or 0
    return counts


def count_chat_sessions_by_programme(session: Session, programme_ids: Sequence[int]) -> Dict[int, int]:
    """Per-programme chat row counts (missing ids map to 0)."""
    counts = {programme_id: 0 for programme_id in programme_ids}
    if not programme_ids:
        return counts

    rows = session.query(
        ChatSession.programme_id,
        func.count(ChatSession.id)
    ).filter(
        ChatSession.programme_id.in_(programme_ids)
    ).group_by(ChatSession.programme_id).all()

    for programme_id, count in rows:
        counts[programme_id] = count
    return counts


def delete_kine_chat_before(session: Session, cutoff: datetime) -> int:
    """
    Delete practitioner assistant chat rows created strictly before cutoff.

    Returns:
        Number of rows deleted
    """
    return session.query(ChatKine).filter(
        ChatKine.created_at < cutoff
    ).delete(synchronize_session=False)


# =============================================================================
# NOTIFICATION OPERATIONS
# =============================================================================

def find_notification(session: Session,
                      notification_type: NotificationType,
                      kine_id: int,
                      patient_id: Optional[int],
                      programme_id: Optional[int]) -> Optional[Notification]:
    """
    Find an existing notification of a type for a (kine, patient, programme) triple.
    """
    return session.query(Notification).filter(
        Notification.type == notification_type,
        Notification.kine_id == kine_id,
        Notification.patient_id == patient_id,
        Notification.programme_id == programme_id
    ).first()


def create_notification(session: Session,
                        notification_type: NotificationType,
                        title: str,
                        message: str,
                        kine_id: int,
                        patient_id: Optional[int] = None,
                        programme_id: Optional[int] = None,
                        metadata: Optional[Dict[str, Any]] = None) -> Notification:
    """
    Insert an unread notification.

    Args:
        session: Database session
        notification_type: Kind of notification
        title: Short title shown in the practitioner inbox
        message: Full message text
        kine_id: Owning practitioner
        patient_id: Optional patient the notification is about
        programme_id: Optional programme the notification is about
        metadata: Optional JSON-serializable payload

    Returns:
        The flushed Notification (id assigned)
    """
    notification = Notification(
        type=notification_type,
        title=title,
        message=message,
        kine_id=kine_id,
        patient_id=patient_id,
        programme_id=programme_id,
        metadata_json=json.dumps(metadata, ensure_ascii=False) if metadata else None,
        is_read=False
    )

    session.add(notification)
    session.flush()

    logger.info(f"📢 NOTIFICATION: {notification_type.value} created for kine {kine_id} - {title}")
    return notification


# =============================================================================
# EXERCISE ASSET OPERATIONS
# =============================================================================

def get_referenced_asset_urls(session: Session) -> Set[str]:
    """
    Collect every animation URL still referenced by an exercise template.
    """
    rows = session.query(ExerciceModele.gif_path).filter(
        ExerciceModele.gif_path.isnot(None)
    ).all()

    return {gif_path for (gif_path,) in rows if gif_path}
