"""
Admin API Module - The "Control Room"

HTTP surface for operators: run a maintenance job on demand, inspect the
archived programmes awaiting deletion, archive or delete a single programme
by hand, and read archive statistics. Mounted under /admin/maintenance by
the application factory.
"""

import logging
import math
from datetime import datetime, timezone
from functools import wraps

from dateutil.relativedelta import relativedelta
from flask import Blueprint, jsonify, request

from config.settings import ADMIN_API_TOKEN, ARCHIVE_RETENTION_MONTHS
from kine_app.database.models import ensure_utc
from kine_app.database.queries import (
    count_chat_sessions_by_archive_state,
    count_chat_sessions_by_programme,
    count_programmes,
    delete_programme,
    get_archived_programmes,
    get_programme_by_id,
    get_programmes_archived_before,
)
from kine_app.database.session import get_db_session
from kine_app.jobs.purge_archived import retention_cutoff

logger = logging.getLogger(__name__)

bp = Blueprint('maintenance_admin', __name__)


def validate_admin_token(received_token: str) -> bool:
    """
    Validate the shared admin token.

    Returns:
        True if the token matches, or if no token is configured
    """
    if not ADMIN_API_TOKEN:
        logger.warning("No admin token configured - skipping validation")
        return True

    is_valid = received_token == ADMIN_API_TOKEN
    if not is_valid:
        logger.warning("Invalid admin token received")
    return is_valid


def require_admin_token(view):
    @wraps(view)
    def wrapper(*args, **kwargs):
        if not validate_admin_token(request.headers.get('X-Admin-Token', '')):
            return jsonify({'success': False, 'error': 'Unauthorized'}), 401
        return view(*args, **kwargs)
    return wrapper


@bp.route('/jobs/<job_name>/run', methods=['POST'])
@require_admin_token
def run_job(job_name):
    """Run a maintenance job now through its manual entry point."""
    from kine_app.jobs.scheduler import MANUAL_TESTS

    manual_test = MANUAL_TESTS.get(job_name)
    if manual_test is None:
        return jsonify({'success': False, 'error': f'Unknown job: {job_name}'}), 404

    try:
        result = manual_test()
    except Exception as e:
        logger.error(f"Error running job {job_name} manually: {e}")
        return jsonify({
            'success': False,
            'error': f'Job {job_name} failed',
            'details': str(e)
        }), 500

    return jsonify({
        'success': True,
        'job': job_name,
        'result': result,
        'timestamp': datetime.now(timezone.utc).isoformat()
    })


@bp.route('/programmes/archived', methods=['GET'])
@require_admin_token
def list_archived_programmes():
    """List archived programmes with their scheduled deletion date."""
    now = datetime.now(timezone.utc)

    try:
        with get_db_session() as session:
            programmes = get_archived_programmes(session)
            chat_counts = count_chat_sessions_by_programme(session, [p.id for p in programmes])

            payload = []
            for programme in programmes:
                archived_at = ensure_utc(programme.archived_at)
                will_be_deleted_at = archived_at + relativedelta(months=ARCHIVE_RETENTION_MONTHS)
                payload.append({
                    'id': programme.id,
                    'titre': programme.titre,
                    'patient': programme.patient.full_name,
                    'archivedAt': archived_at.isoformat(),
                    'willBeDeletedAt': will_be_deleted_at.isoformat(),
                    'daysUntilDeletion': math.ceil((will_be_deleted_at - now).total_seconds() / 86400),
                    'chatMessagesCount': chat_counts[programme.id]
                })

    except Exception as e:
        logger.error(f"Error listing archived programmes: {e}")
        return jsonify({
            'success': False,
            'error': 'Error listing archived programmes',
            'details': str(e)
        }), 500

    return jsonify({'success': True, 'count': len(payload), 'programmes': payload})


@bp.route('/programmes/<int:programme_id>/archive', methods=['POST'])
@require_admin_token
def archive_programme(programme_id):
    """Archive a single programme immediately."""
    now = datetime.now(timezone.utc)

    try:
        with get_db_session() as session:
            programme = get_programme_by_id(session, programme_id)

            if programme is None:
                return jsonify({'success': False, 'error': 'Programme not found'}), 404

            if programme.is_archived:
                return jsonify({'success': False, 'error': 'Programme already archived'}), 400

            programme.archive(now)
            chat_count = count_chat_sessions_by_programme(session, [programme.id])[programme.id]

            response = {
                'success': True,
                'message': f'Programme "{programme.titre}" archived',
                'programme': {
                    'id': programme.id,
                    'titre': programme.titre,
                    'patient': programme.patient.full_name,
                    'archivedAt': now.isoformat(),
                    'chatMessagesCount': chat_count
                }
            }

    except Exception as e:
        logger.error(f"Error archiving programme {programme_id}: {e}")
        return jsonify({
            'success': False,
            'error': 'Error archiving programme',
            'details': str(e)
        }), 500

    logger.info(f"📦 Programme {programme_id} archived manually")
    return jsonify(response)


@bp.route('/programmes/<int:programme_id>', methods=['DELETE'])
@require_admin_token
def delete_programme_now(programme_id):
    """Permanently delete a programme and everything attached to it."""
    now = datetime.now(timezone.utc)

    try:
        with get_db_session() as session:
            programme = get_programme_by_id(session, programme_id)

            if programme is None:
                return jsonify({'success': False, 'error': 'Programme not found'}), 404

            chat_count = count_chat_sessions_by_programme(session, [programme.id])[programme.id]
            titre = programme.titre
            patient_name = programme.patient.full_name

            delete_programme(session, programme)

    except Exception as e:
        logger.error(f"Error deleting programme {programme_id}: {e}")
        return jsonify({
            'success': False,
            'error': 'Error deleting programme',
            'details': str(e)
        }), 500

    logger.info(f"🗑️ Programme {programme_id} deleted manually ({chat_count} chat messages)")
    return jsonify({
        'success': True,
        'message': f'Programme "{titre}" permanently deleted',
        'details': {
            'programmeTitle': titre,
            'patient': patient_name,
            'chatMessagesDeleted': chat_count,
            'deletedAt': now.isoformat()
        }
    })


@bp.route('/stats', methods=['GET'])
@require_admin_token
def archive_stats():
    """Programme and chat counts by archive state."""
    now = datetime.now(timezone.utc)

    try:
        with get_db_session() as session:
            chat_counts = count_chat_sessions_by_archive_state(session)
            stats = {
                'activePrograms': count_programmes(session, archived=False),
                'archivedPrograms': count_programmes(session, archived=True),
                'totalChatMessages': chat_counts['total'],
                'activeProgramMessages': chat_counts['active'],
                'archivedProgramMessages': chat_counts['archived'],
                'oldArchivedPrograms': len(get_programmes_archived_before(session, retention_cutoff(now))),
                'timestamp': now.isoformat()
            }

    except Exception as e:
        logger.error(f"Error reading archive statistics: {e}")
        return jsonify({
            'success': False,
            'error': 'Error reading archive statistics',
            'details': str(e)
        }), 500

    return jsonify({'success': True, 'stats': stats})
