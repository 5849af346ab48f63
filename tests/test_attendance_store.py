import threading
from datetime import date, datetime, timedelta, timezone

import pytest

from attendance.attendance_system import AttendanceStore
from attendance.models import STATUS_LATE, AttendanceEvent, LocationReading
from conftest import ZONE_LAT, ZONE_LON
from utils.errors import DuplicateEvent, NoCheckInError, StorageError

DAY = date(2024, 1, 8)


def make_event(subject_id="s1", day=DAY, hour=6, minute=30, **kwargs):
    at = datetime(day.year, day.month, day.day, hour, minute, tzinfo=timezone.utc)
    return AttendanceEvent(
        subject_id=subject_id,
        date=day,
        check_in_at=at,
        location=LocationReading(ZONE_LAT, ZONE_LON, 8.0, at),
        **kwargs
    )


def test_save_and_get_event(store):
    saved = store.save_event(make_event(device_fingerprint="abc", zone_id="smkn1-kendal",
                                        validation_metadata={'geofence': {'overall': {'score': 100}}}))
    assert saved.event_id is not None

    loaded = store.get_event("s1", DAY)
    assert loaded.event_id == saved.event_id
    assert loaded.check_in_at == saved.check_in_at
    assert loaded.location == saved.location
    assert loaded.device_fingerprint == "abc"
    assert loaded.zone_id == "smkn1-kendal"
    assert loaded.validation_metadata == {'geofence': {'overall': {'score': 100}}}
    assert loaded.check_out_at is None


def test_get_missing_event(store):
    assert store.get_event("nobody", DAY) is None


def test_second_event_same_day_is_duplicate(store):
    store.save_event(make_event())
    with pytest.raises(DuplicateEvent) as excinfo:
        store.save_event(make_event(hour=7))
    assert excinfo.value.subject_id == "s1"
    assert excinfo.value.date == DAY


def test_same_subject_different_days(store):
    store.save_event(make_event())
    store.save_event(make_event(day=DAY + timedelta(days=1)))
    assert len(store.load_history("s1", DAY)) == 2


def test_concurrent_inserts_accept_exactly_one(store):
    results = []
    barrier = threading.Barrier(5)

    def attempt(minute):
        barrier.wait()
        try:
            store.save_event(make_event(minute=minute))
            results.append("saved")
        except DuplicateEvent:
            results.append("duplicate")

    threads = [threading.Thread(target=attempt, args=(i,)) for i in range(5)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert results.count("saved") == 1
    assert results.count("duplicate") == 4


def test_record_check_out(store):
    store.save_event(make_event())
    at = datetime(2024, 1, 8, 14, 5, tzinfo=timezone.utc)
    updated = store.record_check_out("s1", DAY, at, LocationReading(ZONE_LAT, ZONE_LON, 9.0, at))
    assert updated.check_out_at == at
    assert updated.check_out_location.accuracy_meters == 9.0


def test_check_out_twice_is_duplicate(store):
    store.save_event(make_event())
    at = datetime(2024, 1, 8, 14, 5, tzinfo=timezone.utc)
    reading = LocationReading(ZONE_LAT, ZONE_LON, 9.0, at)
    store.record_check_out("s1", DAY, at, reading)
    with pytest.raises(DuplicateEvent):
        store.record_check_out("s1", DAY, at + timedelta(minutes=5), reading)
    assert store.get_event("s1", DAY).check_out_at == at


def test_check_out_without_check_in(store):
    at = datetime(2024, 1, 8, 14, 5, tzinfo=timezone.utc)
    with pytest.raises(NoCheckInError):
        store.record_check_out("s1", DAY, at, LocationReading(ZONE_LAT, ZONE_LON, 9.0, at))


def test_load_history_window_and_order(store):
    for offset in (3, 0, 2, 1, 10):
        store.save_event(make_event(day=DAY + timedelta(days=offset)))
    store.save_event(make_event(subject_id="s2"))

    history = store.load_history("s1", DAY + timedelta(days=1), DAY + timedelta(days=3))
    assert [event.date for event in history] == [DAY + timedelta(days=i) for i in (1, 2, 3)]
    assert len(store.load_history("s1", DAY)) == 5


def test_daily_attendance(store):
    store.save_event(make_event(subject_id="s2", hour=7, status=STATUS_LATE))
    store.save_event(make_event(subject_id="s1", hour=6))
    rows = store.get_daily_attendance(DAY)
    assert [row['subject_id'] for row in rows] == ["s1", "s2"]
    assert rows[1]['status'] == STATUS_LATE
    assert store.get_daily_attendance("2024-01-08") == rows


def test_delete_older_than(store):
    store.save_event(make_event(day=DAY - timedelta(days=400)))
    store.save_event(make_event(day=DAY))
    assert store.delete_older_than(365, today=DAY) == 1
    assert len(store.load_history("s1", DAY - timedelta(days=1000))) == 1


def test_in_memory_store():
    store = AttendanceStore(":memory:")
    store.save_event(make_event())
    with pytest.raises(DuplicateEvent):
        store.save_event(make_event())
    assert store.get_event("s1", DAY) is not None


def test_status_constraint_is_enforced(store):
    with pytest.raises(StorageError):
        store.save_event(make_event(status="absent"))


def test_unopenable_database_is_storage_error(tmp_path):
    with pytest.raises(StorageError) as excinfo:
        AttendanceStore(str(tmp_path / "missing-dir" / "attendance.db"))
    assert excinfo.value.retryable
