"""
Deployment Configuration
========================
Values read once from the environment at import time.

Runtime tunables (match threshold, SSIM block size) are also seeded into the
``system_config`` table so they can be changed without a redeploy; the
values here are the defaults used for seeding.
"""

import os
from pathlib import Path
from zoneinfo import ZoneInfo

PACKAGE_DIR = Path(__file__).parent

# ============== Storage ==============
DATABASE_PATH = Path(os.environ.get("ATTENDANCE_DB_PATH", PACKAGE_DIR / "database" / "attendance.db"))

# ============== Matching ==============
# Acceptance threshold for the best SSIM score. No calibration data backs a
# different value, keep 0.36 unless re-measured on real captures.
MATCH_THRESHOLD = float(os.environ.get("MATCH_THRESHOLD", "0.36"))
SSIM_BLOCK_SIZE = int(os.environ.get("SSIM_BLOCK_SIZE", "8"))

# ============== Attendance ==============
# Day boundaries for "one open session per person per day" are computed in
# this timezone for every terminal of the deployment.
TIMEZONE_NAME = os.environ.get("ATTENDANCE_TIMEZONE", "UTC")
REFERENCE_TIMEZONE = ZoneInfo(TIMEZONE_NAME)

# ============== Logging ==============
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# ============== API ==============
API_HOST = os.environ.get("API_HOST", "0.0.0.0")
API_PORT = int(os.environ.get("API_PORT", "8000"))
