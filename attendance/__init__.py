"""
Attendance records, schedules and storage for the integrity engine.

This module provides:
- LocationReading / AttendanceEvent record types
- Per-weekday schedules with late detection
- SQLite storage with one event per subject per date
"""

from .models import AttendanceEvent, DeviceFingerprint, LocationReading, STATUS_LATE, STATUS_PRESENT
from .schedule import AttendanceSchedule, ScheduleBook
from .attendance_system import AttendanceStore

__all__ = [
    'AttendanceEvent',
    'DeviceFingerprint',
    'LocationReading',
    'STATUS_LATE',
    'STATUS_PRESENT',
    'AttendanceSchedule',
    'ScheduleBook',
    'AttendanceStore'
]
