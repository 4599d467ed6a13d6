"""
Scanner Gateway
===============
Terminal-side client for the Fingerprint Attendance backend.
"""

from .backend_client import AttendanceClient, get_client, close_client

__all__ = ['AttendanceClient', 'get_client', 'close_client']
