"""
Attendance Service for Fingerprint Attendance
=============================================
Runs one scan attempt end to end and answers attendance queries.

Flow of a scan:
1. Decode the capture (undecodable -> ERROR)
2. Match it against a roster snapshot (below threshold -> NO_MATCH)
3. Apply the requested action to today's session (conflict -> rejected)
4. Record the attempt in the scan audit trail

Every outcome is returned to the caller as a ScanOutcome; nothing is
retried internally.
"""

import logging
from datetime import date, datetime, time, timezone
from typing import Optional, List

from sqlalchemy.exc import SQLAlchemyError

from ..errors import InvalidImage, SessionConflict, StorageUnavailable
from ..matching.imaging import ImageSource, decode_image
from ..matching.matcher import CandidateMatcher, CaptureSample, MatchResult, Roster
from ..matching.matcher import DEFAULT_THRESHOLD
from ..matching.ssim import DEFAULT_BLOCK_SIZE
from .models import Person, ScanLog, ScanAction, ScanOutcomeType, SessionResultType
from .db_manager import get_db_manager, DatabaseManager
from .session_manager import AttendanceSessionManager, SessionRecord, session_status

# Configure logging
logger = logging.getLogger(__name__)


class ScanOutcome:
    """
    Result of one scan attempt.
    Provides a structured response for terminals and API endpoints.
    """

    def __init__(
        self,
        outcome: ScanOutcomeType,
        action: ScanAction,
        message: str,
        person_id: Optional[str] = None,
        person_name: Optional[str] = None,
        score: Optional[float] = None,
        session_result: Optional[SessionResultType] = None,
        session: Optional[SessionRecord] = None,
        kind: Optional[str] = None,
        log_id: Optional[int] = None
    ):
        self.outcome = outcome
        self.action = action
        self.message = message
        self.person_id = person_id
        self.person_name = person_name
        self.score = score
        self.session_result = session_result
        self.session = session
        self.kind = kind
        self.log_id = log_id

    @property
    def success(self) -> bool:
        """True when the requested action was applied."""
        return self.outcome == ScanOutcomeType.MATCH and self.session_result != SessionResultType.REJECTED

    @classmethod
    def error(cls, action: ScanAction, error: Exception) -> "ScanOutcome":
        return cls(
            outcome=ScanOutcomeType.ERROR,
            action=action,
            message=str(error),
            kind=getattr(error, "kind", "error"),
        )

    def to_dict(self) -> dict:
        """Convert to dictionary for API response."""
        result = {
            "type": "outcome",
            "outcome": self.outcome.value,
            "action": self.action.value,
            "success": self.success,
            "message": self.message
        }

        if self.outcome == ScanOutcomeType.MATCH:
            result["person_id"] = self.person_id
            if self.person_name:
                result["person_name"] = self.person_name
            result["score"] = round(self.score, 4)
            session_result = {"result": self.session_result.value}
            if self.kind:
                session_result["kind"] = self.kind
            if self.session:
                session_result["session"] = self.session.to_dict()
            result["session_result"] = session_result
        elif self.outcome == ScanOutcomeType.NO_MATCH:
            result["best_score"] = round(self.score, 4) if self.score is not None else None
        else:
            result["kind"] = self.kind

        if self.log_id:
            result["log_id"] = self.log_id

        return result


class AttendanceService:
    """
    Main service for handling scan attempts.

    Usage:
        service = AttendanceService()
        outcome = service.process_scan(png_bytes, ScanAction.CHECK_IN, device_id="lobby")
    """

    def __init__(
        self,
        db_manager: Optional[DatabaseManager] = None,
        session_manager: Optional[AttendanceSessionManager] = None
    ):
        """
        Initialize attendance service.

        Args:
            db_manager: Optional DatabaseManager instance. Uses global if not provided.
            session_manager: Optional state machine; built on db_manager if not provided.
        """
        self.db = db_manager or get_db_manager()
        self.sessions = session_manager or AttendanceSessionManager(self.db)
        self._cache_config()

    def _cache_config(self):
        """Cache matching configuration values."""
        self.match_threshold = self.db.get_config_float("match_threshold", DEFAULT_THRESHOLD)
        self.block_size = self.db.get_config_int("ssim_block_size", DEFAULT_BLOCK_SIZE)
        self.matcher = CandidateMatcher(threshold=self.match_threshold, block_size=self.block_size)

        logger.debug(f"Config cached: threshold={self.match_threshold}, block_size={self.block_size}")

    def refresh_config(self):
        """Refresh cached configuration from database."""
        self._cache_config()

    def load_roster(self) -> Roster:
        """Fresh roster snapshot from storage."""
        try:
            return self.db.load_roster()
        except SQLAlchemyError as e:
            raise StorageUnavailable(f"Loading roster failed: {e}") from e

    def process_scan(
        self,
        image: ImageSource,
        action: ScanAction,
        roster: Optional[Roster] = None,
        device_id: str = "default",
        timestamp: Optional[datetime] = None
    ) -> ScanOutcome:
        """
        Handle one captured fingerprint.

        Args:
            image: Captured image (bytes, base64/data URL text or raster)
            action: Requested check-in or check-out
            roster: Roster snapshot delivered by the terminal; loaded from storage if None
            device_id: Scanner terminal identifier
            timestamp: Scan time (defaults to now)

        Returns:
            ScanOutcome with MATCH, NO_MATCH or ERROR
        """
        action = ScanAction(action)
        timestamp = self.sessions.localize(timestamp)

        logger.info(f"[SCAN] {action.value} attempt on {device_id} at {timestamp.isoformat()}")

        try:
            capture = CaptureSample(image=decode_image(image))
            if roster is None:
                roster = self.load_roster()
        except (InvalidImage, StorageUnavailable) as e:
            logger.warning(f"[SCAN] {e.kind}: {e}")
            outcome = ScanOutcome.error(action, e)
            outcome.log_id = self._create_log_entry(outcome, device_id, timestamp)
            return outcome

        result = self.matcher.match(capture, roster)

        if not result.matched:
            outcome = ScanOutcome(
                outcome=ScanOutcomeType.NO_MATCH,
                action=action,
                message="Fingerprint not recognized",
                score=None if result.best_score == float("-inf") else result.best_score
            )
            logger.info(f"[SCAN] NO_MATCH among {len(roster)} templates (best={result.best_score:.4f})")
            outcome.log_id = self._create_log_entry(outcome, device_id, timestamp)
            return outcome

        logger.info(f"[SCAN] MATCH {result.person_id} (score={result.score:.4f})")
        return self.apply_match(result, action, device_id=device_id, timestamp=timestamp)

    def apply_match(
        self,
        result: MatchResult,
        action: ScanAction,
        device_id: str = "default",
        timestamp: Optional[datetime] = None
    ) -> ScanOutcome:
        """
        Apply the requested action for a matched person.

        Conflicts are reported as a MATCH whose session result is
        ``rejected``; a check-out is never turned into a check-in.
        """
        action = ScanAction(action)
        timestamp = self.sessions.localize(timestamp)
        display_name = result.person_name or result.person_id

        try:
            if action == ScanAction.CHECK_IN:
                record = self.sessions.request_check_in(result.person_id, timestamp, device_id=device_id)
                session_result = SessionResultType.CREATED
                message = f"Checked in {display_name} at {record.check_in_time.strftime('%I:%M %p')}"
            else:
                record = self.sessions.request_check_out(result.person_id, timestamp)
                session_result = SessionResultType.CLOSED
                message = f"Checked out {display_name} ({record.total_hours} hrs)"

            outcome = ScanOutcome(
                outcome=ScanOutcomeType.MATCH,
                action=action,
                message=message,
                person_id=result.person_id,
                person_name=result.person_name,
                score=result.score,
                session_result=session_result,
                session=record
            )
            self._update_person_last_seen(result.person_id, timestamp)
            logger.info(f"[ATTENDANCE] SUCCESS: {message}")

        except SessionConflict as e:
            outcome = ScanOutcome(
                outcome=ScanOutcomeType.MATCH,
                action=action,
                message=str(e),
                person_id=result.person_id,
                person_name=result.person_name,
                score=result.score,
                session_result=SessionResultType.REJECTED,
                session=e.session,
                kind=e.kind
            )
            logger.info(f"[ATTENDANCE] REJECTED ({e.kind}): {e}")

        except StorageUnavailable as e:
            logger.error(f"[ATTENDANCE] ERROR: {e}")
            outcome = ScanOutcome.error(action, e)
            outcome.person_id = result.person_id
            outcome.score = result.score

        outcome.log_id = self._create_log_entry(outcome, device_id, timestamp)
        return outcome

    def _create_log_entry(self, outcome: ScanOutcome, device_id: str, timestamp: datetime) -> Optional[int]:
        """Persist an audit entry; a failure here is logged and does not change the outcome."""
        if outcome.outcome == ScanOutcomeType.MATCH:
            result = outcome.kind or outcome.session_result.value
        elif outcome.outcome == ScanOutcomeType.ERROR:
            result = outcome.kind
        else:
            result = None

        try:
            with self.db.get_session() as session:
                log_entry = ScanLog(
                    timestamp=timestamp.astimezone(timezone.utc).replace(tzinfo=None),
                    device_id=device_id,
                    action=outcome.action.value,
                    outcome=outcome.outcome.value,
                    person_id=outcome.person_id,
                    score=outcome.score,
                    result=result,
                    message=outcome.message
                )
                session.add(log_entry)
                session.commit()

                logger.debug(f"Created scan log: id={log_entry.id}, outcome={log_entry.outcome}, result={result}")
                return log_entry.id
        except (SQLAlchemyError, StorageUnavailable) as e:
            logger.error(f"[SCAN] Failed to write audit entry: {e}")
            return None

    def _update_person_last_seen(self, person_id: str, timestamp: datetime):
        """Update person's last_seen timestamp."""
        try:
            with self.db.get_session() as session:
                person = session.query(Person).filter_by(person_id=person_id).first()
                if person:
                    person.last_seen = timestamp.astimezone(timezone.utc).replace(tzinfo=None)
                    session.commit()
        except (SQLAlchemyError, StorageUnavailable) as e:
            logger.error(f"Failed to update last_seen for {person_id}: {e}")

    # ============== Query Methods ==============

    def get_person_today_summary(self, person_id: str, now: Optional[datetime] = None) -> dict:
        """Today's attendance state for a person."""
        day = self.sessions.day_key(now)
        record = self.sessions.find_session(person_id, day)

        return {
            "person_id": person_id,
            "date": day.isoformat(),
            "status": session_status(record),
            "session": record.to_dict() if record else None
        }

    def get_today_logs(self, person_id: Optional[str] = None, limit: int = 100, now: Optional[datetime] = None) -> list:
        """Get today's scan logs, optionally filtered by person."""
        day = self.sessions.day_key(now)
        day_start = datetime.combine(day, time.min, tzinfo=self.sessions.timezone)
        day_start = day_start.astimezone(timezone.utc).replace(tzinfo=None)

        try:
            with self.db.get_session() as session:
                query = session.query(ScanLog).filter(ScanLog.timestamp >= day_start)

                if person_id:
                    query = query.filter(ScanLog.person_id == person_id)

                logs = query.order_by(ScanLog.timestamp.desc(), ScanLog.id.desc()).limit(limit).all()
                return [log.to_dict() for log in logs]
        except SQLAlchemyError as e:
            raise StorageUnavailable(f"Reading scan logs failed: {e}") from e

    def get_daily_report(self, report_date: Optional[date] = None) -> dict:
        """Get attendance report for a specific date."""
        report_date = report_date or self.sessions.day_key()
        records: List[SessionRecord] = self.sessions.list_sessions(report_date)

        try:
            with self.db.get_session() as session:
                total_persons = session.query(Person).filter_by(is_active=True).count()
        except SQLAlchemyError as e:
            raise StorageUnavailable(f"Counting enrolled persons failed: {e}") from e

        present_count = len([r for r in records if r.is_open])
        completed_count = len(records) - present_count
        attended = len(records)

        return {
            "date": report_date.isoformat(),
            "total_enrolled": total_persons,
            "present_count": present_count,
            "completed_count": completed_count,
            "absent_count": max(total_persons - attended, 0),
            "attendance_rate": round(attended / total_persons * 100, 1) if total_persons > 0 else 0,
            "total_hours": round(sum(r.total_hours or 0.0 for r in records), 2),
            "records": [r.to_dict() for r in records]
        }
