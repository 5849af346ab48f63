"""
Record types shared by the sensors, the geofence validator, the spoofing guard,
the pattern analyzer and the attendance store.
"""
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class LocationReading:
    """A single location fix reported by the device sensor."""
    latitude: float
    longitude: float
    accuracy_meters: float
    captured_at: datetime

    @property
    def timestamp_ms(self) -> int:
        return int(self.captured_at.timestamp() * 1000)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'latitude': self.latitude,
            'longitude': self.longitude,
            'accuracy_meters': self.accuracy_meters,
            'captured_at': self.captured_at.isoformat()
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LocationReading":
        captured_at = data['captured_at']
        if isinstance(captured_at, str):
            captured_at = datetime.fromisoformat(captured_at)
        return cls(
            latitude=float(data['latitude']),
            longitude=float(data['longitude']),
            accuracy_meters=float(data['accuracy_meters']),
            captured_at=captured_at
        )


@dataclass(frozen=True)
class DeviceFingerprint:
    """Heuristic device identifier. Never a credential."""
    value: str
    issued_at: datetime


STATUS_PRESENT = "present"
STATUS_LATE = "late"


@dataclass
class AttendanceEvent:
    """One logical attendance record per subject per calendar date."""
    subject_id: str
    date: date
    check_in_at: datetime
    location: LocationReading
    device_fingerprint: Optional[str] = None
    validation_metadata: Dict[str, Any] = field(default_factory=dict)
    status: str = STATUS_PRESENT
    zone_id: Optional[str] = None
    check_out_at: Optional[datetime] = None
    check_out_location: Optional[LocationReading] = None
    event_id: Optional[int] = None

    @property
    def is_late(self) -> bool:
        return self.status == STATUS_LATE

    @property
    def check_in_minutes(self) -> int:
        """Check-in time of day as minutes since midnight."""
        return self.check_in_at.hour * 60 + self.check_in_at.minute

    def to_dict(self) -> Dict[str, Any]:
        return {
            'event_id': self.event_id,
            'subject_id': self.subject_id,
            'date': self.date.isoformat(),
            'check_in_at': self.check_in_at.isoformat(),
            'check_out_at': self.check_out_at.isoformat() if self.check_out_at else None,
            'status': self.status,
            'zone_id': self.zone_id,
            'location': self.location.to_dict(),
            'check_out_location': self.check_out_location.to_dict() if self.check_out_location else None,
            'device_fingerprint': self.device_fingerprint,
            'validation_metadata': self.validation_metadata
        }
