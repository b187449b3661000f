"""
Shared fixtures for the maintenance job tests.

Jobs open their own sessions through `get_db_session()`, so tests point the
session factory at a throwaway SQLite database and seed/inspect it through
short-lived sessions of their own.
"""

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker

from kine_app.database import session as db_session_module
from kine_app.database.models import (
    Base,
    ChatKine,
    ChatSession,
    ExerciceModele,
    Kine,
    Notification,
    NotificationType,
    Patient,
    Programme,
    SessionValidation,
)

NOW = datetime(2026, 10, 19, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def engine(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'maintenance.db'}",
        connect_args={"check_same_thread": False}
    )

    # Let SQLAlchemy drive transactions so SAVEPOINTs behave as on PostgreSQL
    @event.listens_for(engine, "connect")
    def _disable_driver_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db_session_factory(engine, monkeypatch):
    factory = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    monkeypatch.setattr(db_session_module, "SessionLocal", factory)
    return factory


class Seeder:
    """Inserts and reads rows through short-lived sessions."""

    def __init__(self, factory):
        self.factory = factory

    def _add_all(self, *objects):
        with self.factory() as session:
            session.add_all(objects)
            session.commit()
        return objects

    def fetch(self, query_fn):
        with self.factory() as session:
            return query_fn(session)

    def patient(self, first_name="Marie", last_name="Dupont"):
        kine = Kine(uid=f"kine-{first_name}-{last_name}", first_name="Paul", last_name="Martin")
        self._add_all(kine)
        patient = Patient(first_name=first_name, last_name=last_name, kine_id=kine.id)
        self._add_all(patient)
        return patient

    def programme(self, patient, titre="Rééducation genou", date_debut=None, date_fin=None,
                  is_archived=False, archived_at=None):
        date_fin = date_fin or NOW - timedelta(days=1)
        date_debut = date_debut or date_fin - timedelta(days=13)
        programme = Programme(
            titre=titre,
            date_debut=date_debut,
            date_fin=date_fin,
            is_archived=is_archived,
            archived_at=archived_at,
            patient_id=patient.id
        )
        self._add_all(programme)
        return programme

    def validations(self, programme, count, validated=True):
        rows = [
            SessionValidation(
                patient_id=programme.patient_id,
                programme_id=programme.id,
                date=programme.date_debut + timedelta(days=i),
                is_validated=validated,
                pain_level=3,
                difficulty_level=4
            )
            for i in range(count)
        ]
        self._add_all(*rows)
        return rows

    def chat_messages(self, programme, count):
        rows = [
            ChatSession(
                patient_id=programme.patient_id,
                programme_id=programme.id,
                message=f"Message {i}",
                role="user"
            )
            for i in range(count)
        ]
        self._add_all(*rows)
        return rows

    def kine_chat(self, kine_id, created_at):
        row = ChatKine(kine_id=kine_id, message="Question", response="Réponse", created_at=created_at)
        self._add_all(row)
        return row

    def exercise(self, gif_path, nom="Squat"):
        row = ExerciceModele(nom=nom, gif_path=gif_path)
        self._add_all(row)
        return row

    def completed_notification(self, patient, programme):
        row = Notification(
            type=NotificationType.PROGRAM_COMPLETED,
            title="Programme terminé",
            message="déjà notifié",
            kine_id=patient.kine_id,
            patient_id=patient.id,
            programme_id=programme.id
        )
        self._add_all(row)
        return row


@pytest.fixture
def seed(db_session_factory):
    return Seeder(db_session_factory)
