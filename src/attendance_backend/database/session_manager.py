"""
Attendance Session Manager
==========================
Per-person, per-day check-in/check-out state machine.

States for (person_id, day_key):
    NoSession --check-in--> Open --check-out--> Closed (terminal for the day)

Every transition is a single conditional write so concurrent terminals
cannot break "at most one open session per person per day":
- check-in is one INSERT guarded by the unique (person_id, day_key)
  constraint; losing writers get AlreadyCheckedIn
- check-out is a compare-and-set UPDATE on ``status = 'OPEN'``; a lost race
  reports AlreadyCheckedOut
"""

import logging
from dataclasses import dataclass, replace
from datetime import date, datetime, timezone, tzinfo
from typing import Callable, List, Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from .. import config
from ..errors import AlreadyCheckedIn, AlreadyCheckedOut, NoActiveSession, StorageUnavailable
from .db_manager import DatabaseManager
from .models import AttendanceSession, SessionStatus

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SessionRecord:
    """Attendance session as seen by callers; times are in the reference timezone."""

    id: int
    person_id: str
    day_key: date
    check_in_time: datetime
    status: SessionStatus
    check_out_time: Optional[datetime] = None
    total_hours: Optional[float] = None
    device_id: str = "default"

    @property
    def is_open(self) -> bool:
        return self.status == SessionStatus.OPEN

    def to_dict(self) -> dict:
        """Convert to dictionary for API response."""
        return {
            "id": self.id,
            "person_id": self.person_id,
            "day_key": self.day_key.isoformat(),
            "check_in_time": self.check_in_time.isoformat(),
            "check_out_time": self.check_out_time.isoformat() if self.check_out_time else None,
            "status": self.status.value,
            "total_hours": self.total_hours,
            "device_id": self.device_id
        }


def compute_total_hours(check_in: datetime, check_out: datetime) -> float:
    """Elapsed hours between two instants, rounded to two decimals."""
    # Same-tzinfo arithmetic is wall-clock; UTC keeps DST changes counted
    elapsed = check_out.astimezone(timezone.utc) - check_in.astimezone(timezone.utc)
    return round(elapsed.total_seconds() / 3600, 2)


def session_status(record: Optional[SessionRecord]) -> str:
    """``absent`` (no session), ``present`` (open) or ``completed`` (closed)."""
    if record is None:
        return "absent"
    return "present" if record.is_open else "completed"


def _to_storage(moment: datetime) -> datetime:
    return moment.astimezone(timezone.utc).replace(tzinfo=None)


class AttendanceSessionManager:
    """
    Applies check-in/check-out requests for matched persons.

    Usage:
        manager = AttendanceSessionManager(db_manager)
        session = manager.request_check_in("emp001")
        session = manager.request_check_out("emp001")

    Raises typed SessionConflict subclasses for invalid transitions and
    StorageUnavailable when the database fails. Nothing is retried.
    """

    def __init__(
        self,
        db_manager: DatabaseManager,
        tz: Optional[tzinfo] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Args:
            db_manager: Storage collaborator
            tz: Reference timezone for day boundaries. Defaults to config.REFERENCE_TIMEZONE
            clock: Wall-clock source, used when callers pass no ``now``
        """
        self.db = db_manager
        self.timezone = tz or config.REFERENCE_TIMEZONE
        self._clock = clock or (lambda: datetime.now(self.timezone))

    # ============== Time Handling ==============

    def localize(self, moment: Optional[datetime] = None) -> datetime:
        """Aware datetime in the reference timezone; naive input is read as reference-local."""
        moment = moment or self._clock()
        if moment.tzinfo is None:
            return moment.replace(tzinfo=self.timezone)
        return moment.astimezone(self.timezone)

    def day_key(self, moment: Optional[datetime] = None) -> date:
        """Calendar day of ``moment`` in the reference timezone."""
        return self.localize(moment).date()

    def _from_storage(self, moment: Optional[datetime]) -> Optional[datetime]:
        if moment is None:
            return None
        return moment.replace(tzinfo=timezone.utc).astimezone(self.timezone)

    def _to_record(self, row: AttendanceSession) -> SessionRecord:
        return SessionRecord(
            id=row.id,
            person_id=row.person_id,
            day_key=row.day_key,
            check_in_time=self._from_storage(row.check_in_time),
            check_out_time=self._from_storage(row.check_out_time),
            status=SessionStatus(row.status),
            total_hours=row.total_hours,
            device_id=row.device_id,
        )

    # ============== Transitions ==============

    def request_check_in(
        self,
        person_id: str,
        now: Optional[datetime] = None,
        device_id: str = "default",
    ) -> SessionRecord:
        """
        Open today's session for a person.

        Raises:
            AlreadyCheckedIn: An open session exists for the day
            AlreadyCheckedOut: The day's session is already closed
            StorageUnavailable: The write could not be completed
        """
        now = self.localize(now)
        day = now.date()

        try:
            with self.db.get_session() as session:
                row = AttendanceSession(
                    person_id=person_id,
                    day_key=day,
                    check_in_time=_to_storage(now),
                    status=SessionStatus.OPEN.value,
                    device_id=device_id,
                )
                session.add(row)
                session.commit()
                record = self._to_record(row)
        except IntegrityError:
            existing = self.find_session(person_id, day)
            if existing is None:
                raise StorageUnavailable(f"Conflicting write for {person_id} on {day} could not be resolved")
            if existing.status == SessionStatus.CLOSED:
                raise AlreadyCheckedOut(person_id, day, f"{person_id} already checked out on {day}", session=existing)
            raise AlreadyCheckedIn(person_id, day, f"{person_id} is already checked in on {day}", session=existing)
        except SQLAlchemyError as e:
            raise StorageUnavailable(f"Check-in for {person_id} failed: {e}") from e

        logger.info(f"[ATTENDANCE] Check-in: {person_id} at {now.isoformat()} (session {record.id})")
        return record

    def request_check_out(
        self,
        person_id: str,
        now: Optional[datetime] = None,
    ) -> SessionRecord:
        """
        Close today's open session for a person.

        Raises:
            NoActiveSession: No session exists for the day
            AlreadyCheckedOut: The day's session is already closed
            StorageUnavailable: The write could not be completed
        """
        now = self.localize(now)
        day = now.date()

        existing = self.find_session(person_id, day)
        if existing is None:
            raise NoActiveSession(person_id, day, f"No active check-in for {person_id} on {day}")
        if existing.status == SessionStatus.CLOSED:
            raise AlreadyCheckedOut(person_id, day, f"{person_id} already checked out on {day}", session=existing)

        check_out = now
        if _to_storage(check_out) < _to_storage(existing.check_in_time):
            logger.warning(
                f"[ATTENDANCE] Check-out for {person_id} at {now.isoformat()} precedes check-in "
                f"{existing.check_in_time.isoformat()}, clamping"
            )
            check_out = existing.check_in_time
        total_hours = compute_total_hours(existing.check_in_time, check_out)

        try:
            with self.db.get_session() as session:
                result = session.execute(
                    update(AttendanceSession)
                    .where(
                        AttendanceSession.id == existing.id,
                        AttendanceSession.status == SessionStatus.OPEN.value,
                    )
                    .values(
                        check_out_time=_to_storage(check_out),
                        status=SessionStatus.CLOSED.value,
                        total_hours=total_hours,
                    )
                    .execution_options(synchronize_session=False)
                )
                session.commit()
                updated = result.rowcount
        except SQLAlchemyError as e:
            raise StorageUnavailable(f"Check-out for {person_id} failed: {e}") from e

        if updated == 0:
            # Another terminal closed it between the read and the update
            raise AlreadyCheckedOut(
                person_id, day, f"{person_id} already checked out on {day}",
                session=self.find_session(person_id, day),
            )

        record = replace(existing, check_out_time=check_out, status=SessionStatus.CLOSED, total_hours=total_hours)
        logger.info(f"[ATTENDANCE] Check-out: {person_id} at {check_out.isoformat()} ({total_hours} h)")
        return record

    # ============== Queries ==============

    def find_session(self, person_id: str, day: date) -> Optional[SessionRecord]:
        """The person's session for a day, if any."""
        try:
            with self.db.get_session() as session:
                row = session.query(AttendanceSession).filter_by(person_id=person_id, day_key=day).first()
                return self._to_record(row) if row else None
        except SQLAlchemyError as e:
            raise StorageUnavailable(f"Reading session for {person_id} failed: {e}") from e

    def list_sessions(self, day: date) -> List[SessionRecord]:
        """All sessions of a day, in check-in order."""
        try:
            with self.db.get_session() as session:
                rows = (
                    session.query(AttendanceSession)
                    .filter_by(day_key=day)
                    .order_by(AttendanceSession.check_in_time, AttendanceSession.id)
                    .all()
                )
                return [self._to_record(row) for row in rows]
        except SQLAlchemyError as e:
            raise StorageUnavailable(f"Listing sessions for {day} failed: {e}") from e

    def today_status(self, person_id: str, now: Optional[datetime] = None) -> str:
        """``absent`` (no session), ``present`` (open) or ``completed`` (closed)."""
        return session_status(self.find_session(person_id, self.day_key(now)))
