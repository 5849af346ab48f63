from datetime import datetime, timedelta, timezone

import pytest

from conftest import START, make_reading
from sensors.location import (DeniedLocationSensor, LocationSensor, ReportedLocationSensor,
                              StaticLocationSensor, read_location, validate_reading)
from sensors.signals import ReportedSignalScanner, SignalChannel, UnavailableSignalScanner
from utils.errors import ChannelUnavailable, LocationUnavailable


class CrashingSensor(LocationSensor):
    def get_current_location(self):
        raise RuntimeError("GPS chip not responding")


def test_read_returns_fresh_reading():
    reading = make_reading(at=START)
    assert read_location(StaticLocationSensor(reading), 15000, 60000, now=START + timedelta(seconds=5)) == reading


def test_reported_reading_passes_through():
    reading = make_reading(at=START)
    assert read_location(ReportedLocationSensor(reading), 15000, 60000, now=START) == reading


def test_permission_denied():
    with pytest.raises(LocationUnavailable) as excinfo:
        read_location(DeniedLocationSensor(), 15000, 60000, now=START)
    assert excinfo.value.cause == "permission_denied"


def test_slow_sensor_times_out():
    sensor = StaticLocationSensor(make_reading(at=START), delay_seconds=0.5)
    with pytest.raises(LocationUnavailable) as excinfo:
        read_location(sensor, timeout_ms=50, max_staleness_ms=60000, now=START)
    assert excinfo.value.cause == "timeout"


def test_sensor_failure_is_location_unavailable():
    with pytest.raises(LocationUnavailable) as excinfo:
        read_location(CrashingSensor(), 15000, 60000, now=START)
    assert excinfo.value.cause == "sensor_error"


def test_stale_reading_rejected():
    with pytest.raises(LocationUnavailable) as excinfo:
        validate_reading(make_reading(at=START), 60000, now=START + timedelta(seconds=61))
    assert excinfo.value.cause == "stale"


def test_future_dated_reading_rejected_beyond_skew():
    reading = make_reading(at=START + timedelta(seconds=10))
    assert validate_reading(reading, 60000, now=START) == reading
    with pytest.raises(LocationUnavailable) as excinfo:
        validate_reading(reading, 60000, now=START, max_clock_skew_ms=5000)
    assert excinfo.value.cause == "future"
    assert validate_reading(reading, 60000, now=START, max_clock_skew_ms=10000) == reading


def test_read_location_applies_clock_skew():
    sensor = ReportedLocationSensor(make_reading(at=START + timedelta(hours=1)))
    with pytest.raises(LocationUnavailable) as excinfo:
        read_location(sensor, 15000, 60000, now=START, max_clock_skew_ms=5000)
    assert excinfo.value.cause == "future"


def test_naive_timestamp_taken_as_utc():
    naive = make_reading(at=datetime(2024, 1, 8, 6, 30))
    assert validate_reading(naive, 60000, now=START + timedelta(seconds=30)) == naive


@pytest.mark.parametrize("latitude,longitude,accuracy", [
    (float('nan'), 110.2, 8.0),
    (95.0, 110.2, 8.0),
    (-6.9, float('inf'), 8.0),
    (-6.9, 110.2, -1.0),
    (-6.9, 110.2, float('nan')),
])
def test_invalid_readings_rejected(latitude, longitude, accuracy):
    reading = make_reading(latitude=latitude, longitude=longitude, accuracy=accuracy, at=START)
    with pytest.raises(LocationUnavailable) as excinfo:
        validate_reading(reading, 60000, now=START)
    assert excinfo.value.cause == "invalid_reading"


def test_reported_scanner_channels():
    scanner = ReportedSignalScanner(wifi=["SMKN1KENDAL-SISWA"], cellular=[])
    assert scanner.scan(SignalChannel.WIFI) == ["SMKN1KENDAL-SISWA"]
    assert scanner.scan(SignalChannel.CELLULAR) == []
    with pytest.raises(ChannelUnavailable) as excinfo:
        scanner.scan(SignalChannel.BLUETOOTH)
    assert excinfo.value.channel == "bluetooth"


def test_unavailable_scanner():
    for channel in SignalChannel:
        with pytest.raises(ChannelUnavailable):
            UnavailableSignalScanner().scan(channel)


def test_reading_dict_round_trip_keeps_timezone():
    reading = make_reading(at=datetime(2024, 1, 8, 6, 30, tzinfo=timezone(timedelta(hours=7))))
    assert type(reading).from_dict(reading.to_dict()) == reading
