"""
Backend Client for Fingerprint Attendance API
=============================================
Client module a scanner terminal uses to deliver captures to the backend.
"""

import aiohttp
import asyncio
import logging
import os
from typing import Optional, Dict, Any

logger = logging.getLogger(__name__)

BACKEND_URL = os.environ.get("BACKEND_URL", "http://localhost:8000")
REQUEST_TIMEOUT_SECONDS = 30


class AttendanceClient:
    """
    Async client for communicating with the Fingerprint Attendance Backend.

    One client serves one scanner terminal; submitted captures are
    serialized so the terminal has at most one scan in flight.
    """

    def __init__(self, backend_url: str = BACKEND_URL, device_id: str = "default"):
        self.backend_url = backend_url.rstrip('/')
        self.device_id = device_id
        self.session: Optional[aiohttp.ClientSession] = None
        self._lock = asyncio.Lock()

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create aiohttp session."""
        if self.session is None or self.session.closed:
            self.session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=REQUEST_TIMEOUT_SECONDS)
            )
        return self.session

    async def close(self):
        """Close the client session."""
        if self.session and not self.session.closed:
            await self.session.close()

    async def health_check(self) -> Dict[str, Any]:
        """Check backend health status."""
        try:
            session = await self._get_session()
            async with session.get(f"{self.backend_url}/") as response:
                if response.status == 200:
                    return await response.json()
                return {"status": "error", "code": response.status}
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error(f"Health check failed: {e}")
            return {"status": "offline", "error": str(e)}

    async def submit_capture(
        self,
        image_bytes: bytes,
        action: str = "check-in",
        device_id: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Send a captured fingerprint for one scan attempt.

        Args:
            image_bytes: PNG/BMP encoded fingerprint image
            action: "check-in" or "check-out"
            device_id: Terminal identifier, defaults to the client's

        Returns:
            Outcome message from the backend, or an ERROR outcome describing
            the transport failure
        """
        device_id = device_id or self.device_id

        async with self._lock:  # One scan in flight per terminal
            try:
                session = await self._get_session()

                data = aiohttp.FormData()
                data.add_field(
                    'image',
                    image_bytes,
                    filename='capture.png',
                    content_type='image/png'
                )

                async with session.post(
                    f"{self.backend_url}/scan",
                    data=data,
                    params={"action": action, "device_id": device_id}
                ) as response:
                    if response.status == 200:
                        result = await response.json()
                        logger.info(f"[{device_id}] {result.get('outcome')}: {result.get('message', 'Unknown')}")
                        return result
                    else:
                        error_text = await response.text()
                        logger.error(f"[{device_id}] Scan failed: {response.status} - {error_text}")
                        return _transport_error(action, f"Backend error: {response.status}", error_text)

            except asyncio.TimeoutError:
                logger.error(f"[{device_id}] Scan request timed out")
                return _transport_error(action, "Request timed out", "Timeout")
            except aiohttp.ClientError as e:
                logger.error(f"[{device_id}] Connection error: {e}")
                return _transport_error(action, "Connection failed", str(e))

    async def list_roster(self) -> Dict[str, Any]:
        """Get enrolled persons (ids and names only)."""
        try:
            session = await self._get_session()
            async with session.get(f"{self.backend_url}/roster") as response:
                if response.status == 200:
                    return await response.json()
                return {"persons": [], "count": 0, "error": f"Backend error: {response.status}"}
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error(f"List roster error: {e}")
            return {"persons": [], "count": 0, "error": str(e)}


def _transport_error(action: str, message: str, error: str) -> Dict[str, Any]:
    return {
        "type": "outcome",
        "outcome": "ERROR",
        "action": action,
        "success": False,
        "kind": "transport",
        "message": message,
        "error": error
    }


# Global client instance
_client: Optional[AttendanceClient] = None


def get_client(backend_url: str = BACKEND_URL, device_id: str = "default") -> AttendanceClient:
    """Get or create global client instance."""
    global _client
    if _client is None:
        _client = AttendanceClient(backend_url, device_id=device_id)
    return _client


async def close_client():
    """Close global client instance."""
    global _client
    if _client:
        await _client.close()
        _client = None
