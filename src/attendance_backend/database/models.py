"""
Database Models for Fingerprint Attendance
==========================================
SQLAlchemy ORM models for attendance tracking.

Tables:
- persons: Enrolled people (owners of biometric templates)
- biometric_templates: Enrolled fingerprint rasters, PNG encoded
- attendance_sessions: One check-in/check-out session per person per day
- scan_logs: Immutable audit trail of all scan attempts
- system_config: Configurable system parameters
"""

from datetime import datetime
from enum import Enum

from sqlalchemy import (
    Column, String, Integer, Float, Boolean, DateTime, Date,
    Text, LargeBinary, ForeignKey, UniqueConstraint
)
from sqlalchemy.orm import declarative_base

from .. import config

Base = declarative_base()


class SessionStatus(str, Enum):
    """Attendance session state."""
    OPEN = "OPEN"
    CLOSED = "CLOSED"


class ScanAction(str, Enum):
    """Action requested by the operator before scanning."""
    CHECK_IN = "check-in"
    CHECK_OUT = "check-out"


class ScanOutcomeType(str, Enum):
    """Outcome of a scan attempt as reported to the terminal."""
    MATCH = "MATCH"
    NO_MATCH = "NO_MATCH"
    ERROR = "ERROR"


class SessionResultType(str, Enum):
    """What the session manager did with a MATCH."""
    CREATED = "created"
    CLOSED = "closed"
    REJECTED = "rejected"


class Person(Base):
    """
    Enrolled people.
    Templates reference this table; attendance sessions carry the same
    opaque person_id without a foreign key.
    """
    __tablename__ = 'persons'

    person_id = Column(String(50), primary_key=True, index=True)
    person_name = Column(String(100), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    registered_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    last_seen = Column(DateTime, nullable=True)

    def __repr__(self):
        return f"<Person(id={self.person_id}, name={self.person_name}, active={self.is_active})>"


class BiometricTemplateRecord(Base):
    """
    Enrolled fingerprint raster.
    Immutable once enrolled; roster snapshots are read in id order.
    """
    __tablename__ = 'biometric_templates'

    id = Column(Integer, primary_key=True, autoincrement=True)
    person_id = Column(String(50), ForeignKey('persons.person_id'), nullable=False, index=True)
    image_png = Column(LargeBinary, nullable=False)
    width = Column(Integer, nullable=False)
    height = Column(Integer, nullable=False)
    enrolled_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f"<BiometricTemplate(id={self.id}, person={self.person_id}, size={self.width}x{self.height})>"


class AttendanceSession(Base):
    """
    One attendance session per person per day.

    The unique (person_id, day_key) constraint makes check-in a single
    conditional INSERT: a second session for the same day, open or closed,
    cannot be written.
    Times are stored as naive UTC.
    """
    __tablename__ = 'attendance_sessions'

    id = Column(Integer, primary_key=True, autoincrement=True)
    person_id = Column(String(50), nullable=False, index=True)
    day_key = Column(Date, nullable=False, index=True)
    check_in_time = Column(DateTime, nullable=False)
    check_out_time = Column(DateTime, nullable=True)
    status = Column(String(10), default=SessionStatus.OPEN.value, nullable=False)
    total_hours = Column(Float, nullable=True)
    device_id = Column(String(50), default="default", nullable=False)

    __table_args__ = (
        UniqueConstraint('person_id', 'day_key', name='uq_attendance_person_day'),
    )

    def __repr__(self):
        return f"<AttendanceSession(person={self.person_id}, day={self.day_key}, status={self.status})>"


class ScanLog(Base):
    """
    Immutable audit trail of all scan attempts.
    Every capture delivered to the core is logged here, matched or not.
    """
    __tablename__ = 'scan_logs'

    id = Column(Integer, primary_key=True, autoincrement=True)
    timestamp = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)
    device_id = Column(String(50), default="default", nullable=False)
    action = Column(String(20), nullable=False)  # check-in, check-out
    outcome = Column(String(20), nullable=False)  # MATCH, NO_MATCH, ERROR
    person_id = Column(String(50), nullable=True, index=True)
    score = Column(Float, nullable=True)
    result = Column(String(40), nullable=True)  # created, closed, or error/rejection kind
    message = Column(Text, nullable=True)

    def __repr__(self):
        return f"<ScanLog(id={self.id}, person={self.person_id}, outcome={self.outcome}, result={self.result})>"

    def to_dict(self) -> dict:
        """Convert to dictionary for API response."""
        return {
            "id": self.id,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
            "device_id": self.device_id,
            "action": self.action,
            "outcome": self.outcome,
            "person_id": self.person_id,
            "score": self.score,
            "result": self.result,
            "message": self.message
        }


class SystemConfig(Base):
    """
    System configuration parameters.
    Allows runtime configuration without code changes.
    """
    __tablename__ = 'system_config'

    key = Column(String(100), primary_key=True)
    value = Column(String(500), nullable=False)
    description = Column(Text, nullable=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self):
        return f"<SystemConfig(key={self.key}, value={self.value})>"


# Default configuration values
DEFAULT_CONFIG = {
    "match_threshold": (str(config.MATCH_THRESHOLD), "Minimum best SSIM score accepted as a match"),
    "ssim_block_size": (str(config.SSIM_BLOCK_SIZE), "Edge length in pixels of SSIM comparison blocks"),
}
