"""
Database Models for the Kiné Maintenance Worker

This module defines the subset of the application's PostgreSQL schema that the
scheduled maintenance jobs read and write, using the SQLAlchemy ORM.

The models cover:
- Kines and Patients: ownership, used to attribute notifications
- Programmes: exercise programmes with their archival lifecycle
- SessionValidations: one row per day a patient confirms their exercises
- ChatSessions / ChatKine: patient and practitioner chat history
- ExerciceModeles: exercise templates referencing animation assets
- Notifications: practitioner-facing notifications
"""

import enum
import json
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy import (
    Column, Integer, String, DateTime, Text, Boolean,
    ForeignKey, Enum, Index
)
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func

# Create the declarative base class
Base = declarative_base()


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes read back from the database."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class NotificationType(enum.Enum):
    """Enumeration for practitioner notification kinds"""
    DAILY_VALIDATION = "DAILY_VALIDATION"
    PAIN_ALERT = "PAIN_ALERT"
    PROGRAM_COMPLETED = "PROGRAM_COMPLETED"
    PATIENT_MESSAGE = "PATIENT_MESSAGE"


class Kine(Base):
    """Physiotherapist account owning patients and receiving notifications."""
    __tablename__ = 'kines'

    id = Column(Integer, primary_key=True, autoincrement=True)
    uid = Column(String(128), unique=True, nullable=False, index=True)  # identity provider UID
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    email = Column(String(255), nullable=True)

    created_at = Column(DateTime(timezone=True), default=func.now(), nullable=False)

    patients = relationship("Patient", back_populates="kine", cascade="all, delete-orphan")
    chat_history = relationship("ChatKine", back_populates="kine", cascade="all, delete-orphan")

    def __repr__(self) -> str:
        return f"<Kine(id={self.id}, uid='{self.uid}')>"


class Patient(Base):
    """Patient followed by a single physiotherapist."""
    __tablename__ = 'patients'

    id = Column(Integer, primary_key=True, autoincrement=True)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    kine_id = Column(Integer, ForeignKey('kines.id'), nullable=False, index=True)

    created_at = Column(DateTime(timezone=True), default=func.now(), nullable=False)

    kine = relationship("Kine", back_populates="patients")
    programmes = relationship("Programme", back_populates="patient", cascade="all, delete-orphan")

    def __repr__(self) -> str:
        return f"<Patient(id={self.id}, kine_id={self.kine_id})>"

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"


class Programme(Base):
    """
    Exercise programme assigned to a patient.

    A programme is archived once its end date has passed and is permanently
    deleted after the retention window. `archived_at` is set exactly when
    `is_archived` is true.
    """
    __tablename__ = 'programmes'

    id = Column(Integer, primary_key=True, autoincrement=True)
    titre = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)

    date_debut = Column(DateTime(timezone=True), nullable=False)
    date_fin = Column(DateTime(timezone=True), nullable=False, index=True)

    # Archival lifecycle
    is_archived = Column(Boolean, default=False, nullable=False)
    archived_at = Column(DateTime(timezone=True), nullable=True)

    patient_id = Column(Integer, ForeignKey('patients.id'), nullable=False, index=True)

    created_at = Column(DateTime(timezone=True), default=func.now(), nullable=False)

    # Relationships
    patient = relationship("Patient", back_populates="programmes")
    session_validations = relationship(
        "SessionValidation",
        back_populates="programme",
        cascade="all, delete-orphan"
    )
    chat_sessions = relationship(
        "ChatSession",
        back_populates="programme",
        cascade="all, delete-orphan"
    )
    notifications = relationship(
        "Notification",
        back_populates="programme",
        cascade="all, delete-orphan"
    )

    __table_args__ = (
        Index('idx_programme_archive_scan', 'is_archived', 'date_fin'),
        Index('idx_programme_purge_scan', 'is_archived', 'archived_at'),
    )

    def __repr__(self) -> str:
        return f"<Programme(id={self.id}, titre='{self.titre[:30]}', archived={self.is_archived})>"

    def archive(self, when: datetime) -> None:
        """Mark the programme archived at the given instant."""
        self.is_archived = True
        self.archived_at = when


class SessionValidation(Base):
    """Daily confirmation by a patient that the programme exercises were done."""
    __tablename__ = 'session_validations'

    id = Column(Integer, primary_key=True, autoincrement=True)
    patient_id = Column(Integer, ForeignKey('patients.id'), nullable=False, index=True)
    programme_id = Column(Integer, ForeignKey('programmes.id'), nullable=False, index=True)

    date = Column(DateTime(timezone=True), nullable=False)
    is_validated = Column(Boolean, default=False, nullable=False)
    pain_level = Column(Integer, nullable=True)
    difficulty_level = Column(Integer, nullable=True)
    validated_at = Column(DateTime(timezone=True), nullable=True)

    programme = relationship("Programme", back_populates="session_validations")

    __table_args__ = (
        Index('idx_validation_programme_validated', 'programme_id', 'is_validated'),
    )


class ChatSession(Base):
    """Patient chat message attached to a programme."""
    __tablename__ = 'chat_sessions'

    id = Column(Integer, primary_key=True, autoincrement=True)
    patient_id = Column(Integer, ForeignKey('patients.id'), nullable=False, index=True)
    programme_id = Column(Integer, ForeignKey('programmes.id'), nullable=False, index=True)

    message = Column(Text, nullable=False)
    role = Column(String(20), nullable=False, default='user')

    created_at = Column(DateTime(timezone=True), default=func.now(), nullable=False)

    programme = relationship("Programme", back_populates="chat_sessions")


class ChatKine(Base):
    """Practitioner-side assistant chat history (short retention)."""
    __tablename__ = 'chat_kine'

    id = Column(Integer, primary_key=True, autoincrement=True)
    kine_id = Column(Integer, ForeignKey('kines.id'), nullable=False, index=True)
    message = Column(Text, nullable=False)
    response = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), default=func.now(), nullable=False, index=True)

    kine = relationship("Kine", back_populates="chat_history")


class ExerciceModele(Base):
    """Exercise template; `gif_path` holds the public URL of its animation."""
    __tablename__ = 'exercice_modeles'

    id = Column(Integer, primary_key=True, autoincrement=True)
    nom = Column(String(255), nullable=False)
    gif_path = Column(String(1024), nullable=True)
    kine_id = Column(Integer, ForeignKey('kines.id'), nullable=True, index=True)
    is_public = Column(Boolean, default=False, nullable=False)

    created_at = Column(DateTime(timezone=True), default=func.now(), nullable=False)

    def __repr__(self) -> str:
        return f"<ExerciceModele(id={self.id}, nom='{self.nom}')>"


class Notification(Base):
    """
    Practitioner notification.

    At most one PROGRAM_COMPLETED notification exists per
    (kine, patient, programme); the generator checks before inserting.
    """
    __tablename__ = 'notifications'

    id = Column(Integer, primary_key=True, autoincrement=True)
    type = Column(Enum(NotificationType), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)

    kine_id = Column(Integer, ForeignKey('kines.id'), nullable=False, index=True)
    patient_id = Column(Integer, ForeignKey('patients.id'), nullable=True, index=True)
    programme_id = Column(Integer, ForeignKey('programmes.id'), nullable=True, index=True)

    # "metadata" is reserved on declarative classes
    metadata_json = Column('metadata', Text, nullable=True)

    is_read = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), default=func.now(), nullable=False)

    programme = relationship("Programme", back_populates="notifications")

    __table_args__ = (
        Index('idx_notification_dedup', 'type', 'kine_id', 'patient_id', 'programme_id'),
    )

    def __repr__(self) -> str:
        return f"<Notification(id={self.id}, type={self.type.value}, kine_id={self.kine_id})>"

    @property
    def payload(self) -> Optional[Dict[str, Any]]:
        """Decoded metadata blob"""
        if not self.metadata_json:
            return None
        return json.loads(self.metadata_json)


# Optional: Create all tables (useful for testing)
def create_all_tables(engine):
    """
    Create all tables in the database.

    Note: In production the schema is owned by the main application's migrations.
    """
    Base.metadata.create_all(bind=engine)
