import os
import tempfile
from datetime import datetime, timedelta, timezone

# Keep log files of the test run out of the working tree
os.environ.setdefault("INTEGRITY_OUTPUT_DIR", tempfile.mkdtemp(prefix="integrity_test_"))

import pytest

from attendance.attendance_system import AttendanceStore
from attendance.models import LocationReading
from attendance.schedule import ScheduleBook
from attendance_integration import AttendanceIntegrityService
from geofence.zones import REFERENCE_ZONE, AttendanceZone, ZoneRegistry
from sensors.signals import SignalChannel, StaticSignalScanner
from utils.config import Config

ZONE_LAT = -6.9174639
ZONE_LON = 110.2024914

# Monday 2024-01-08 06:30 UTC
START = datetime(2024, 1, 8, 6, 30, tzinfo=timezone.utc)


class FakeClock:
    """Millisecond clock that only moves when told to."""

    def __init__(self, start: datetime = START):
        self.ms = int(start.timestamp() * 1000)

    def __call__(self) -> int:
        return self.ms

    def advance(self, seconds: float = 0, minutes: float = 0, days: float = 0):
        self.ms += int((seconds + minutes * 60 + days * 86400) * 1000)

    def now(self) -> datetime:
        return datetime.fromtimestamp(self.ms / 1000, tz=timezone.utc)


def make_reading(latitude=ZONE_LAT, longitude=ZONE_LON, accuracy=8.0, at=None) -> LocationReading:
    return LocationReading(
        latitude=latitude,
        longitude=longitude,
        accuracy_meters=accuracy,
        captured_at=at or START
    )


@pytest.fixture
def settings():
    settings = Config(load_environment=False, create_directories=False)
    settings.attendance.timezone = "UTC"
    return settings


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def zones():
    return ZoneRegistry([AttendanceZone(**REFERENCE_ZONE.to_dict())])


@pytest.fixture
def store(tmp_path):
    return AttendanceStore(str(tmp_path / "attendance.db"))


@pytest.fixture
def school_scanner():
    """Every known identifier of the reference site is in range."""
    return StaticSignalScanner({
        SignalChannel.WIFI: list(REFERENCE_ZONE.wifi_networks),
        SignalChannel.BLUETOOTH: list(REFERENCE_ZONE.bluetooth_devices),
        SignalChannel.CELLULAR: list(REFERENCE_ZONE.cell_towers)
    })


@pytest.fixture
def service(store, zones, settings, clock):
    return AttendanceIntegrityService(
        store=store,
        zones=zones,
        schedules=ScheduleBook.school_week(),
        settings=settings,
        clock=clock,
        identity_provider=lambda: "student-001"
    )
