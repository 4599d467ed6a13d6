from datetime import datetime
from zoneinfo import ZoneInfo

import numpy as np
import pytest

from attendance_backend.database import AttendanceService, AttendanceSessionManager, DatabaseManager
from attendance_backend.matching.imaging import encode_png

UTC = ZoneInfo("UTC")


def make_print(seed: int, shape=(48, 40)) -> np.ndarray:
    """Deterministic noise raster standing in for a fingerprint scan."""
    rng = np.random.default_rng(seed)
    return rng.integers(0, 256, size=shape).astype(np.float64)


def png_of(pixels: np.ndarray) -> bytes:
    return encode_png(pixels)


def at(hour: int, minute: int = 0, day: int = 4) -> datetime:
    return datetime(2024, 3, day, hour, minute, tzinfo=UTC)


@pytest.fixture()
def db_manager(tmp_path):
    db = DatabaseManager(tmp_path / "attendance_test.db")
    assert db.initialize()
    yield db
    db.close()


@pytest.fixture()
def broken_db_manager(tmp_path):
    # Parent of the database path is a regular file, so initialization fails
    blocker = tmp_path / "not_a_directory"
    blocker.write_text("")
    return DatabaseManager(blocker / "attendance.db")


@pytest.fixture()
def sessions(db_manager):
    return AttendanceSessionManager(db_manager, tz=UTC)


@pytest.fixture()
def service(db_manager, sessions):
    return AttendanceService(db_manager, session_manager=sessions)
