"""
Fingerprint Attendance Backend
==============================
Matches captured fingerprint images against enrolled templates and keeps
per-day check-in/check-out sessions consistent under concurrent scans.

Layers:
- matching: image decoding, block-wise SSIM scorer, candidate matcher
- database: SQLAlchemy storage, session state machine, attendance service
- transport: message-passing adapter for scanner terminals
- main: FastAPI HTTP/WebSocket surface
- register_templates: command-line template seeding
"""

__version__ = "1.0.0"
