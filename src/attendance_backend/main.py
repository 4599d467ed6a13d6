"""
Fingerprint Attendance Backend
==============================
Flow:
1. Scanner terminal delivers a captured fingerprint (HTTP upload or WebSocket message)
2. Capture is scored against every enrolled template with block-wise SSIM
3. Best candidate is accepted if its score reaches the match threshold
4. Requested check-in/check-out is applied to today's attendance session
5. Outcome is returned to the terminal
"""

import json
import logging
from datetime import date as date_type
from typing import Optional, Dict, Any

from fastapi import FastAPI, File, UploadFile, HTTPException, Query, WebSocket, WebSocketDisconnect
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from . import __version__, config
from .database import AttendanceService, ScanAction, get_db_manager, reset_db_manager
from .errors import StorageUnavailable
from .transport import ScannerSession, error_message

# Configure logging
logging.basicConfig(
    level=config.LOG_LEVEL,
    format=config.LOG_FORMAT
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Fingerprint Attendance API",
    description="Fingerprint matching with block-wise SSIM and per-day attendance sessions",
    version=__version__
)

# CORS middleware for scanner terminals served from other origins
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ============== Response Models ==============
class SessionResult(BaseModel):
    result: str = Field(..., description="created, closed, or rejected")
    kind: Optional[str] = Field(None, description="Rejection kind when result is rejected")
    session: Optional[Dict[str, Any]] = Field(None, description="Attendance session after the attempt")


class ScanResponse(BaseModel):
    type: str = "outcome"
    outcome: str = Field(..., description="MATCH, NO_MATCH, or ERROR")
    action: str = Field(..., description="check-in or check-out")
    success: bool
    message: str = Field(..., description="Human-readable status message")
    person_id: Optional[str] = None
    person_name: Optional[str] = None
    score: Optional[float] = Field(None, description="Score of the matched template")
    best_score: Optional[float] = Field(None, description="Best score when no template matched")
    session_result: Optional[SessionResult] = None
    kind: Optional[str] = Field(None, description="Error kind for ERROR outcomes")
    log_id: Optional[int] = None


# ============== Global Service Instance ==============
attendance_service: Optional[AttendanceService] = None


def get_service() -> AttendanceService:
    if attendance_service is None:
        raise HTTPException(status_code=503, detail="Attendance database not available")
    return attendance_service


@app.on_event("startup")
async def startup_event():
    """Initialize database and service on startup."""
    global attendance_service

    logger.info("=" * 60)
    logger.info("Starting Fingerprint Attendance Backend")
    logger.info("=" * 60)

    try:
        db_manager = get_db_manager()
        attendance_service = AttendanceService(db_manager)
        stats = db_manager.get_stats()
        logger.info(f"Database: ✓ Initialized ({stats['total_persons']} persons, {stats['total_templates']} templates)")
    except StorageUnavailable as e:
        logger.error(f"Database initialization failed: {e}")
        attendance_service = None

    logger.info("-" * 60)
    logger.info(f"Match threshold: {attendance_service.match_threshold if attendance_service else config.MATCH_THRESHOLD}")
    logger.info(f"Reference timezone: {config.TIMEZONE_NAME}")
    logger.info(f"Attendance DB: {'✓ Ready' if attendance_service else '✗ Disabled'}")
    logger.info("=" * 60)


@app.on_event("shutdown")
async def shutdown_event():
    """Release the database connection pool."""
    global attendance_service

    attendance_service = None
    reset_db_manager()
    logger.info("Fingerprint Attendance Backend stopped")


@app.get("/")
async def root():
    """Health check endpoint."""
    service = attendance_service
    enrolled_templates = 0
    if service:
        try:
            enrolled_templates = service.db.get_stats()["total_templates"]
        except StorageUnavailable as e:
            logger.error(f"Health check could not read the database: {e}")
            service = None

    return {
        "status": "online",
        "service": "Fingerprint Attendance API",
        "attendance_database": service is not None,
        "enrolled_templates": enrolled_templates,
        "match_threshold": service.match_threshold if service else config.MATCH_THRESHOLD,
        "ssim_block_size": service.block_size if service else config.SSIM_BLOCK_SIZE,
        "timezone": config.TIMEZONE_NAME
    }


@app.get("/roster")
async def list_roster():
    """List enrolled persons (ids and names only)."""
    service = get_service()

    try:
        persons = service.db.list_enrolled()
        return {"persons": persons, "count": len(persons)}
    except StorageUnavailable as e:
        logger.error(f"Error listing roster: {e}")
        raise HTTPException(status_code=503, detail=str(e))


@app.post("/scan", response_model=ScanResponse, response_model_exclude_none=True)
async def scan(
    action: str = Query(..., description="check-in or check-out"),
    device_id: str = Query("default", description="Scanner terminal identifier"),
    image: UploadFile = File(...)
):
    """
    One scan attempt against a fresh roster snapshot.

    Always answers 200 with a typed outcome: NO_MATCH for unrecognized
    fingerprints, MATCH with a rejected session result for state conflicts,
    ERROR for undecodable images or storage failures.
    """
    service = get_service()

    try:
        scan_action = ScanAction(action)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid action. Use check-in or check-out")

    contents = await image.read()
    if not contents:
        raise HTTPException(status_code=400, detail="Empty image upload")

    logger.info(f"Received capture from {device_id}: {len(contents)} bytes")

    outcome = await run_in_threadpool(service.process_scan, contents, scan_action, None, device_id)
    return outcome.to_dict()


@app.websocket("/ws/scanner")
async def scanner_socket(websocket: WebSocket, device_id: str = "default"):
    """Message-passing channel for one scanner terminal (see transport module)."""
    await websocket.accept()

    if attendance_service is None:
        await websocket.send_json(error_message(StorageUnavailable.kind, "Attendance database not available"))
        await websocket.close()
        return

    session = ScannerSession(attendance_service, device_id=device_id)
    logger.info(f"Scanner connected: {device_id}")

    try:
        while True:
            frame = await websocket.receive()
            if frame["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(frame.get("code", 1000))

            text = frame.get("text")
            if text is None:
                await websocket.send_json(error_message("invalid_message", "Messages must be JSON text frames"))
                continue
            try:
                message = json.loads(text)
            except ValueError:
                await websocket.send_json(error_message("invalid_message", "Message is not valid JSON"))
                continue
            reply = await session.handle_message_async(message)
            await websocket.send_json(reply)
    except WebSocketDisconnect:
        logger.info(f"Scanner disconnected: {device_id}")


# ============== Attendance Endpoints ==============

@app.get("/attendance/today")
async def get_today_attendance(person_id: Optional[str] = Query(None, description="Filter by person ID")):
    """Get today's scan logs."""
    service = get_service()

    try:
        logs = service.get_today_logs(person_id=person_id)
        return {
            "success": True,
            "date": service.sessions.day_key().isoformat(),
            "logs": logs,
            "count": len(logs)
        }
    except StorageUnavailable as e:
        logger.error(f"Error getting today's attendance: {e}")
        raise HTTPException(status_code=503, detail=str(e))


@app.get("/attendance/daily-report")
async def get_daily_report(date: Optional[str] = Query(None, description="Date in YYYY-MM-DD format")):
    """Get daily attendance report with summary."""
    service = get_service()

    report_date = None
    if date:
        try:
            report_date = date_type.fromisoformat(date)
        except ValueError:
            raise HTTPException(status_code=400, detail="Invalid date format. Use YYYY-MM-DD")

    try:
        report = service.get_daily_report(report_date)
        return {"success": True, "report": report}
    except StorageUnavailable as e:
        logger.error(f"Error getting daily report: {e}")
        raise HTTPException(status_code=503, detail=str(e))


@app.get("/attendance/person/{person_id}")
async def get_person_attendance(person_id: str):
    """Get today's attendance state for a specific person."""
    service = get_service()

    try:
        summary = service.get_person_today_summary(person_id)
        return {"success": True, "person_id": person_id, "summary": summary}
    except StorageUnavailable as e:
        logger.error(f"Error getting person attendance: {e}")
        raise HTTPException(status_code=503, detail=str(e))


@app.get("/attendance/stats")
async def get_attendance_stats():
    """Get attendance database statistics."""
    if not attendance_service:
        return {
            "success": False,
            "database_available": False,
            "message": "Attendance database not available"
        }

    try:
        stats = attendance_service.db.get_stats()
        return {"success": True, "database_available": True, "stats": stats}
    except StorageUnavailable as e:
        logger.error(f"Error getting attendance stats: {e}")
        raise HTTPException(status_code=503, detail=str(e))


def run():
    """Serve the API with uvicorn."""
    import uvicorn
    uvicorn.run(app, host=config.API_HOST, port=config.API_PORT)


if __name__ == "__main__":
    run()
