"""
Scanner Transport
=================
Message-passing boundary between a scanner terminal and the attendance core.

Inbound messages (JSON objects):
- ``{"roster": [{"personId": ..., "templateImage": ...}, ...], "action": ...}``
  replaces the roster snapshot used for this terminal's scans
- ``{"capture": <image>, "action": "check-in" | "check-out"}``
  runs one scan

Outbound messages:
- ``{"type": "roster", "count": n, "skipped": k}`` after a roster update
- ``{"type": "outcome", "outcome": "MATCH" | "NO_MATCH" | "ERROR", ...}``
  after a capture (see ScanOutcome.to_dict)

The core never starts acquisition; it only reacts to delivered samples.
A capture that arrives before any roster is matched against a fresh
snapshot loaded from storage.
"""

import asyncio
import logging
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .database.attendance_service import AttendanceService
from .database.models import ScanAction, ScanOutcomeType
from .errors import InvalidImage
from .matching.imaging import decode_image
from .matching.matcher import BiometricTemplate

logger = logging.getLogger(__name__)


# ============== Message Models ==============
class RosterEntry(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    person_id: str = Field(..., alias="personId", min_length=1)
    template_image: str = Field(..., alias="templateImage", description="Base64 or data URL encoded image")
    person_name: Optional[str] = Field(None, alias="personName")


class RosterMessage(BaseModel):
    roster: List[RosterEntry]
    action: Optional[ScanAction] = None


class CaptureMessage(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    capture: str = Field(..., description="Base64 or data URL encoded image")
    action: Optional[ScanAction] = None
    device_id: Optional[str] = Field(None, alias="deviceId")


def error_message(kind: str, message: str) -> dict:
    return {
        "type": "outcome",
        "outcome": ScanOutcomeType.ERROR.value,
        "success": False,
        "kind": kind,
        "message": message
    }


class ScannerSession:
    """
    Conversation state of one scanner terminal.

    Holds the roster snapshot and the operator's selected action between
    messages. One terminal handles one capture at a time.
    """

    def __init__(
        self,
        service: AttendanceService,
        device_id: str = "default",
        action: Optional[ScanAction] = None
    ):
        self.service = service
        self.device_id = device_id
        self.action = ScanAction(action) if action else None
        self.roster: Optional[List[BiometricTemplate]] = None

    def handle_message(self, message: dict) -> dict:
        """Dispatch one inbound message and return the reply."""
        if not isinstance(message, dict):
            return error_message("invalid_message", "Message must be a JSON object")

        try:
            if "roster" in message:
                return self._on_roster(RosterMessage.model_validate(message))
            if "capture" in message:
                return self._on_capture(CaptureMessage.model_validate(message))
        except ValidationError as e:
            logger.warning(f"[{self.device_id}] Invalid message: {e.error_count()} errors")
            return error_message("invalid_message", f"Invalid message: {e.errors()[0]['msg']}")

        return error_message("invalid_message", "Expected a roster or capture message")

    async def handle_message_async(self, message: dict) -> dict:
        """Run ``handle_message`` in a worker thread; matching is CPU-bound."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self.handle_message, message)

    def reset(self):
        """Forget the delivered roster; later captures use fresh snapshots from storage."""
        self.roster = None

    def _on_roster(self, message: RosterMessage) -> dict:
        roster = []
        skipped = 0
        for entry in message.roster:
            try:
                image = decode_image(entry.template_image)
            except InvalidImage as e:
                logger.warning(f"[{self.device_id}] Skipping roster entry {entry.person_id}: {e}")
                skipped += 1
                continue
            roster.append(BiometricTemplate(person_id=entry.person_id, image=image, person_name=entry.person_name))

        self.roster = roster
        if message.action:
            self.action = message.action

        logger.info(f"[{self.device_id}] Received roster: {len(roster)} templates ({skipped} skipped)")
        return {"type": "roster", "count": len(roster), "skipped": skipped}

    def _on_capture(self, message: CaptureMessage) -> dict:
        action = message.action or self.action
        if action is None:
            return error_message("invalid_message", "No action selected for this capture")

        outcome = self.service.process_scan(
            message.capture,
            action,
            roster=self.roster,
            device_id=message.device_id or self.device_id
        )
        return outcome.to_dict()
