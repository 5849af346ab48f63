"""
HTTP surface of the attendance integrity engine.
"""
import time
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from anomaly.fingerprint import generate_device_fingerprint
from attendance.models import LocationReading
from attendance_integration import AttendanceIntegrityService
from sensors.signals import ReportedSignalScanner
from utils.config import Config, config
from utils.errors import (ConfigurationError, DuplicateEvent, IntegrityError, LocationUnavailable,
                          NoCheckInError, RateLimited, StorageError, ValidationFailed)
from utils.logger import logger

# Most specific first; the first isinstance match wins
ERROR_STATUS_CODES = [
    (DuplicateEvent, 409),
    (NoCheckInError, 404),
    (ValidationFailed, 422),
    (RateLimited, 429),
    (LocationUnavailable, 503),
    (StorageError, 503),
    (ConfigurationError, 500),
]


class LocationPayload(BaseModel):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    accuracy_meters: float = Field(..., ge=0)
    captured_at: Optional[datetime] = Field(None, description="When the fix was taken (defaults to now)")


class SignalPayload(BaseModel):
    """Identifiers reported by the device agent. Omitted channels count as unavailable."""
    wifi: Optional[List[str]] = None
    bluetooth: Optional[List[str]] = None
    cellular: Optional[List[str]] = None


class AttendanceRequest(BaseModel):
    location: LocationPayload
    signals: Optional[SignalPayload] = None
    device: Optional[Dict[str, Any]] = Field(None, description="Device characteristics for the fingerprint")


def status_code_for(error: IntegrityError) -> int:
    for error_type, status_code in ERROR_STATUS_CODES:
        if isinstance(error, error_type):
            return status_code
    return 500


def create_app(service: AttendanceIntegrityService, settings: Config = None) -> FastAPI:
    """Build the FastAPI application around one service instance."""
    settings = settings or config

    app = FastAPI(
        title="Attendance Integrity API",
        description="REST API for validating self-service attendance check-ins",
        version="1.0.0"
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.api.cors_origins),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(IntegrityError)
    async def integrity_error_handler(request, exc: IntegrityError):
        status_code = status_code_for(exc)
        if status_code >= 500:
            logger.error(f"{request.url.path} failed: {exc}")
        headers = None
        if isinstance(exc, RateLimited):
            headers = {"Retry-After": str(max(1, -(-exc.retry_after_ms // 1000)))}
        return JSONResponse(status_code=status_code, content=exc.to_dict(), headers=headers)

    def current_subject(subject_id: Optional[str] = Header(None, alias=settings.api.subject_header)) -> str:
        if not subject_id:
            raise HTTPException(status_code=401, detail=f"Missing {settings.api.subject_header} header")
        return subject_id

    def to_reading(payload: LocationPayload) -> LocationReading:
        captured_at = payload.captured_at or service.now()
        if captured_at.tzinfo is None:
            captured_at = captured_at.replace(tzinfo=timezone.utc)
        return LocationReading(
            latitude=payload.latitude,
            longitude=payload.longitude,
            accuracy_meters=payload.accuracy_meters,
            captured_at=captured_at
        )

    def to_scanner(payload: Optional[SignalPayload]) -> Optional[ReportedSignalScanner]:
        if payload is None:
            return None
        return ReportedSignalScanner(wifi=payload.wifi, bluetooth=payload.bluetooth, cellular=payload.cellular)

    @app.get("/health")
    async def health_check():
        return {"status": "healthy", "timestamp": time.time()}

    @app.post("/api/attendance/validate")
    async def validate_check_in(request: AttendanceRequest, subject_id: str = Depends(current_subject)):
        decision = service.validate_check_in(subject_id, to_reading(request.location), to_scanner(request.signals))
        return decision.to_dict()

    @app.post("/api/attendance/check-in", status_code=201)
    async def check_in(request: AttendanceRequest, subject_id: str = Depends(current_subject)):
        fingerprint = None
        if request.device:
            fingerprint = generate_device_fingerprint(request.device, issued_at=service.now())
        event = service.record_event(subject_id, to_reading(request.location), fingerprint,
                                     to_scanner(request.signals))
        return event.to_dict()

    @app.post("/api/attendance/check-out")
    async def check_out(request: AttendanceRequest, subject_id: str = Depends(current_subject)):
        event = service.record_check_out(subject_id, to_reading(request.location), to_scanner(request.signals))
        return event.to_dict()

    @app.get("/api/attendance/daily")
    async def daily_attendance(day: Optional[date] = Query(None, alias="date")):
        records = service.get_daily_attendance(day)
        return {"date": (day or service.now().date()).isoformat(), "records": records, "total": len(records)}

    @app.get("/api/attendance/{subject_id}/pattern")
    async def attendance_pattern(subject_id: str, window_days: Optional[int] = Query(None, ge=1, le=365)):
        return service.analyze_pattern(subject_id, window_days).to_dict()

    @app.get("/api/zones")
    async def list_zones():
        return {"zones": [zone.to_dict() for zone in service.zones.all()]}

    @app.get("/api/status")
    async def get_status():
        return service.get_system_status()

    return app
