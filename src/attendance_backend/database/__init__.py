"""
Database Module for Fingerprint Attendance
==========================================
Provides SQLite-based attendance tracking with:
- Enrolled template storage and roster snapshots
- One check-in/check-out session per person per day
- Scan audit trail
"""

from .models import (
    Person, BiometricTemplateRecord, AttendanceSession, ScanLog, SystemConfig,
    SessionStatus, ScanAction, ScanOutcomeType, SessionResultType
)
from .db_manager import DatabaseManager, get_db_manager, reset_db_manager
from .session_manager import AttendanceSessionManager, SessionRecord, compute_total_hours
from .attendance_service import AttendanceService, ScanOutcome

__all__ = [
    'Person',
    'BiometricTemplateRecord',
    'AttendanceSession',
    'ScanLog',
    'SystemConfig',
    'SessionStatus',
    'ScanAction',
    'ScanOutcomeType',
    'SessionResultType',
    'DatabaseManager',
    'get_db_manager',
    'reset_db_manager',
    'AttendanceSessionManager',
    'SessionRecord',
    'compute_total_hours',
    'AttendanceService',
    'ScanOutcome'
]
