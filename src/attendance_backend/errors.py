"""
Error Taxonomy
==============
Every failure the core can report carries a stable ``kind`` string that is
used verbatim in outcome messages sent back to scanner terminals.

- IncompatibleImage: one comparison received mismatched rasters
- InvalidImage: a capture or template could not be decoded
- SessionConflict: the attendance state machine rejected the request
- StorageUnavailable: the attendance store failed (contention, outage)

A below-threshold match is not an error; see ``MatchResult``.
"""

from datetime import date
from typing import Optional


class AttendanceError(Exception):
    """Base class for all attendance core failures."""

    kind = "error"


class IncompatibleImage(AttendanceError):
    """Raised when two images cannot be compared (shape mismatch, empty)."""

    kind = "incompatible_image"


class InvalidImage(AttendanceError):
    """Raised when image bytes cannot be decoded into a raster."""

    kind = "invalid_image"


class SessionConflict(AttendanceError):
    """
    Base for state machine rejections.

    Rejections are surfaced to the operator as-is. They are never retried
    and never converted into a different action.
    """

    kind = "session_conflict"

    def __init__(self, person_id: str, day_key: date, message: Optional[str] = None, session=None):
        self.person_id = person_id
        self.day_key = day_key
        self.session = session
        super().__init__(message or f"{self.kind} for {person_id} on {day_key.isoformat()}")


class AlreadyCheckedIn(SessionConflict):
    kind = "already_checked_in"


class NoActiveSession(SessionConflict):
    kind = "no_active_session"


class AlreadyCheckedOut(SessionConflict):
    kind = "already_checked_out"


class StorageUnavailable(AttendanceError):
    """Raised when the attendance store cannot complete an operation."""

    kind = "storage_unavailable"
