"""
Database Package for the Kiné Maintenance Worker

This package provides the database layer used by the scheduled jobs:
- SQLAlchemy models (Programme, Patient, Notification, ...)
- Database session management
- Query interface for all database operations

Usage:
    from kine_app.database import get_db_session, queries

    with get_db_session() as session:
        programmes = queries.get_overdue_unarchived_programmes(session, now)
"""

# Import core session management
from .session import (
    get_db_session,
    get_engine,
    get_session_factory,
    initialize_database,
    health_check,
    close_all_connections
)

# Import all models for easy access
from .models import (
    Base,
    Kine,
    Patient,
    Programme,
    SessionValidation,
    ChatSession,
    ChatKine,
    ExerciceModele,
    Notification,
    NotificationType,
    ensure_utc,
    create_all_tables
)

# Import the queries module (not individual functions to avoid namespace pollution)
from . import queries

__all__ = [
    # Session management
    "get_db_session",
    "get_engine",
    "get_session_factory",
    "initialize_database",
    "health_check",
    "close_all_connections",

    # Models
    "Base",
    "Kine",
    "Patient",
    "Programme",
    "SessionValidation",
    "ChatSession",
    "ChatKine",
    "ExerciceModele",
    "Notification",
    "NotificationType",
    "ensure_utc",
    "create_all_tables",

    # Query interface
    "queries"
]
