import threading
from datetime import date, datetime, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest

from attendance_backend.database import AttendanceSessionManager, SessionStatus, compute_total_hours
from attendance_backend.errors import AlreadyCheckedIn, AlreadyCheckedOut, NoActiveSession, StorageUnavailable

from conftest import UTC, at


def test_check_in_then_check_out_closes_session(sessions):
    opened = sessions.request_check_in("P1", at(9))
    assert opened.status == SessionStatus.OPEN
    assert opened.day_key == date(2024, 3, 4)
    assert opened.check_out_time is None

    closed = sessions.request_check_out("P1", at(17, 30))

    assert closed.status == SessionStatus.CLOSED
    assert closed.id == opened.id
    assert closed.check_out_time == at(17, 30)
    assert closed.total_hours == 8.5
    assert sessions.find_session("P1", date(2024, 3, 4)) == closed


def test_total_hours_rounded_to_two_decimals(sessions):
    sessions.request_check_in("P1", at(9))
    assert sessions.request_check_out("P1", at(9, 20)).total_hours == 0.33
    assert compute_total_hours(at(9), at(9) + timedelta(seconds=1)) == 0.0


def test_second_check_in_is_rejected(sessions):
    sessions.request_check_in("P1", at(9))

    with pytest.raises(AlreadyCheckedIn) as excinfo:
        sessions.request_check_in("P1", at(10))

    assert excinfo.value.session.check_in_time == at(9)
    assert len(sessions.list_sessions(date(2024, 3, 4))) == 1


def test_check_out_without_check_in(sessions):
    with pytest.raises(NoActiveSession):
        sessions.request_check_out("P1", at(17))
    assert sessions.find_session("P1", date(2024, 3, 4)) is None


def test_second_check_out_is_rejected(sessions):
    sessions.request_check_in("P1", at(9))
    sessions.request_check_out("P1", at(17))

    with pytest.raises(AlreadyCheckedOut):
        sessions.request_check_out("P1", at(18))

    assert sessions.find_session("P1", date(2024, 3, 4)).check_out_time == at(17)


def test_closed_day_cannot_be_reopened(sessions):
    sessions.request_check_in("P1", at(9))
    sessions.request_check_out("P1", at(12))

    with pytest.raises(AlreadyCheckedOut):
        sessions.request_check_in("P1", at(13))


def test_new_day_starts_fresh(sessions):
    sessions.request_check_in("P1", at(9))
    sessions.request_check_out("P1", at(17))

    record = sessions.request_check_in("P1", at(9, day=5))

    assert record.is_open
    assert record.day_key == date(2024, 3, 5)


def test_people_are_independent(sessions):
    sessions.request_check_in("P1", at(9))
    sessions.request_check_in("P2", at(9, 5))

    assert [r.person_id for r in sessions.list_sessions(date(2024, 3, 4))] == ["P1", "P2"]


def test_check_out_before_check_in_is_clamped(sessions):
    sessions.request_check_in("P1", at(9))

    record = sessions.request_check_out("P1", at(8, 59))

    assert record.check_out_time == record.check_in_time
    assert record.total_hours == 0.0


def test_day_key_uses_reference_timezone(db_manager):
    new_york = ZoneInfo("America/New_York")
    manager = AttendanceSessionManager(db_manager, tz=new_york)

    # 03:00 UTC on the 5th is 22:00 on the 4th in New York
    record = manager.request_check_in("P1", datetime(2024, 3, 5, 3, 0, tzinfo=timezone.utc))

    assert record.day_key == date(2024, 3, 4)
    assert record.check_in_time.tzinfo is not None
    assert record.check_in_time.hour == 22

    # Naive input is read as New York local time
    closed = manager.request_check_out("P1", datetime(2024, 3, 4, 23, 30))
    assert closed.total_hours == 1.5


def test_today_status(db_manager):
    now = at(12)
    manager = AttendanceSessionManager(db_manager, tz=UTC, clock=lambda: now)

    assert manager.today_status("P1") == "absent"
    manager.request_check_in("P1")
    assert manager.today_status("P1") == "present"
    manager.request_check_out("P1")
    assert manager.today_status("P1") == "completed"


def test_concurrent_check_ins_open_exactly_one_session(sessions):
    workers = 8
    barrier = threading.Barrier(workers)
    results = []
    lock = threading.Lock()

    def attempt():
        barrier.wait()
        try:
            outcome = sessions.request_check_in("P1", at(9))
        except AlreadyCheckedIn as e:
            outcome = e
        with lock:
            results.append(outcome)

    threads = [threading.Thread(target=attempt) for _ in range(workers)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    rejected = [r for r in results if isinstance(r, AlreadyCheckedIn)]
    assert len(results) == workers
    assert len(rejected) == workers - 1
    stored = sessions.list_sessions(date(2024, 3, 4))
    assert len(stored) == 1
    assert stored[0].is_open


def test_concurrent_check_outs_close_once(sessions):
    sessions.request_check_in("P1", at(9))
    workers = 4
    barrier = threading.Barrier(workers)
    results = []
    lock = threading.Lock()

    def attempt():
        barrier.wait()
        try:
            outcome = sessions.request_check_out("P1", at(17))
        except AlreadyCheckedOut as e:
            outcome = e
        with lock:
            results.append(outcome)

    threads = [threading.Thread(target=attempt) for _ in range(workers)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    closed = [r for r in results if not isinstance(r, AlreadyCheckedOut)]
    assert len(closed) == 1
    assert closed[0].total_hours == 8.0


def test_storage_failure_is_reported(broken_db_manager):
    manager = AttendanceSessionManager(broken_db_manager, tz=UTC)

    with pytest.raises(StorageUnavailable):
        manager.request_check_in("P1", at(9))
    with pytest.raises(StorageUnavailable):
        manager.request_check_out("P1", at(17))


def test_hours_count_real_time_when_clocks_spring_forward(db_manager):
    manager = AttendanceSessionManager(db_manager, tz=ZoneInfo("America/New_York"))

    # 01:00 EST to 04:00 EDT is two elapsed hours
    manager.request_check_in("P1", datetime(2026, 3, 8, 6, 0, tzinfo=timezone.utc))
    record = manager.request_check_out("P1", datetime(2026, 3, 8, 8, 0, tzinfo=timezone.utc))

    assert record.total_hours == 2.0
    assert record.check_out_time == datetime(2026, 3, 8, 8, 0, tzinfo=timezone.utc)


def test_check_out_in_repeated_hour_is_not_clamped(db_manager):
    manager = AttendanceSessionManager(db_manager, tz=ZoneInfo("America/New_York"))

    # 01:30 EDT, then 01:10 EST forty minutes later
    manager.request_check_in("P1", datetime(2026, 11, 1, 5, 30, tzinfo=timezone.utc))
    record = manager.request_check_out("P1", datetime(2026, 11, 1, 6, 10, tzinfo=timezone.utc))

    assert record.total_hours == 0.67
    assert record.check_out_time == datetime(2026, 11, 1, 6, 10, tzinfo=timezone.utc)
    stored = manager.find_session("P1", date(2026, 11, 1))
    assert stored.check_out_time == datetime(2026, 11, 1, 6, 10, tzinfo=timezone.utc)
