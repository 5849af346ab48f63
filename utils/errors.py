"""
Exception hierarchy for the attendance integrity engine.
Every failure a caller can act on carries enough structured detail to render
a specific message.
"""
from typing import Any, Dict, List, Optional


class IntegrityError(Exception):
    """Base class for all attendance integrity errors."""

    retryable = False

    def to_dict(self) -> Dict[str, Any]:
        return {'error': type(self).__name__, 'message': str(self), 'retryable': self.retryable}


class ConfigurationError(IntegrityError):
    """Raised when the engine is missing required configuration (e.g. no active zone)."""


class LocationUnavailable(IntegrityError):
    """Sensor timeout, permission denied or a stale reading."""

    def __init__(self, message: str, cause: Optional[str] = None):
        super().__init__(message)
        self.cause = cause

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data['cause'] = self.cause
        return data


class ChannelUnavailable(IntegrityError):
    """An auxiliary signal source failed. Absorbed by the geofence validator."""

    def __init__(self, channel: str, message: str = ""):
        super().__init__(message or f"Signal channel unavailable: {channel}")
        self.channel = channel


class ValidationFailed(IntegrityError):
    """Geofence or spoofing guard rejected the reading."""

    def __init__(self, message: str, risks: List[str] = None, reasons: List[str] = None,
                 geofence: Any = None, spoofing: Any = None):
        super().__init__(message)
        self.risks = list(risks or [])
        self.reasons = list(reasons or [])
        self.geofence = geofence
        self.spoofing = spoofing

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data['risks'] = self.risks
        data['reasons'] = self.reasons
        if self.geofence is not None:
            data['geofence'] = self.geofence.to_dict()
        if self.spoofing is not None:
            data['spoofing'] = self.spoofing.to_dict()
        return data


class RateLimited(IntegrityError):
    """Too many attempts or an attempt made too soon after the previous one."""

    def __init__(self, reason: str, retry_after_ms: int = 0):
        super().__init__(reason)
        self.reason = reason
        self.retry_after_ms = retry_after_ms

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data['reason'] = self.reason
        data['retry_after_ms'] = self.retry_after_ms
        return data


class DuplicateEvent(IntegrityError):
    """The subject already has an attendance event (or check-out) for the date."""

    def __init__(self, subject_id: str, date: Any, message: str = ""):
        super().__init__(message or f"Attendance already recorded for {subject_id} on {date}")
        self.subject_id = subject_id
        self.date = date

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data['subject_id'] = self.subject_id
        data['date'] = str(self.date)
        return data


class NoCheckInError(IntegrityError):
    """Check-out attempted without a check-in for the date."""

    def __init__(self, subject_id: str, date: Any):
        super().__init__(f"No check-in found for {subject_id} on {date}")
        self.subject_id = subject_id
        self.date = date


class StorageError(IntegrityError):
    """The attendance store failed. Callers may retry."""

    retryable = True
