"""
Device location sensor port and the bounded read used before every check-in.
"""
import math
import time
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from datetime import datetime, timezone
from typing import Optional

from attendance.models import LocationReading
from utils.errors import LocationUnavailable
from utils.geo import is_finite_coordinate
from utils.logger import logger


class LocationSensor(ABC):
    """Source of location fixes. May be slow or denied by the user."""

    @abstractmethod
    def get_current_location(self) -> LocationReading:
        """
        Raises:
            LocationUnavailable: permission denied or no fix available
        """


class ReportedLocationSensor(LocationSensor):
    """A fix already taken by the device client and submitted with the request."""

    def __init__(self, reading: LocationReading):
        self.reading = reading

    def get_current_location(self) -> LocationReading:
        return self.reading


class StaticLocationSensor(LocationSensor):
    """Deterministic sensor returning a fixed reading, optionally after a delay."""

    def __init__(self, reading: LocationReading, delay_seconds: float = 0.0):
        self.reading = reading
        self.delay_seconds = delay_seconds
        self.calls = 0

    def get_current_location(self) -> LocationReading:
        self.calls += 1
        if self.delay_seconds > 0:
            time.sleep(self.delay_seconds)
        return self.reading


class DeniedLocationSensor(LocationSensor):
    """Sensor whose permission was refused by the user."""

    def get_current_location(self) -> LocationReading:
        raise LocationUnavailable("Location permission denied", cause="permission_denied")


def validate_reading(reading: LocationReading, max_staleness_ms: int,
                     now: Optional[datetime] = None,
                     max_clock_skew_ms: Optional[int] = None) -> LocationReading:
    """
    Reject readings with invalid coordinates, older than the staleness bound,
    or stamped further in the future than max_clock_skew_ms (unchecked when None).
    """
    if not is_finite_coordinate(reading.latitude, reading.longitude):
        raise LocationUnavailable(
            f"Invalid coordinates: ({reading.latitude}, {reading.longitude})", cause="invalid_reading"
        )

    if not math.isfinite(reading.accuracy_meters) or reading.accuracy_meters < 0:
        raise LocationUnavailable(f"Invalid accuracy: {reading.accuracy_meters}", cause="invalid_reading")

    now = now or datetime.now(timezone.utc)
    captured_at = reading.captured_at
    if captured_at.tzinfo is None:
        # naive timestamps are taken as UTC
        captured_at = captured_at.replace(tzinfo=timezone.utc)
    age_ms = (now - captured_at).total_seconds() * 1000
    if age_ms > max_staleness_ms:
        raise LocationUnavailable(
            f"Location reading is stale ({age_ms / 1000:.1f}s old, limit {max_staleness_ms / 1000:.1f}s)",
            cause="stale"
        )
    if max_clock_skew_ms is not None and -age_ms > max_clock_skew_ms:
        raise LocationUnavailable(
            f"Location reading is dated {-age_ms / 1000:.1f}s in the future "
            f"(allowed skew {max_clock_skew_ms / 1000:.1f}s)",
            cause="future"
        )

    return reading


def read_location(sensor: LocationSensor, timeout_ms: int, max_staleness_ms: int,
                  now: Optional[datetime] = None,
                  max_clock_skew_ms: Optional[int] = None) -> LocationReading:
    """
    Read the sensor within timeout_ms and check the fix.

    Args:
        sensor: Location sensor to query
        timeout_ms: Maximum wait for the sensor
        max_staleness_ms: Maximum age of the returned fix
        now: Reference time for the staleness check (defaults to current UTC time)
        max_clock_skew_ms: How far ahead of now the fix may be dated

    Returns:
        A fresh, valid LocationReading

    Raises:
        LocationUnavailable: timeout, permission denied, stale, future-dated or invalid reading
    """
    executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="location-sensor")
    try:
        future = executor.submit(sensor.get_current_location)
        reading = future.result(timeout=timeout_ms / 1000)
    except FutureTimeout as e:
        logger.warning(f"Location sensor timed out after {timeout_ms} ms")
        raise LocationUnavailable(f"Location sensor timed out after {timeout_ms} ms", cause="timeout") from e
    except LocationUnavailable:
        raise
    except Exception as e:
        logger.error(f"Location sensor failed: {e}")
        raise LocationUnavailable(f"Location sensor failed: {e}", cause="sensor_error") from e
    finally:
        executor.shutdown(wait=False)

    return validate_reading(reading, max_staleness_ms, now, max_clock_skew_ms)
