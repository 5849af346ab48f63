from datetime import datetime, timedelta, timezone

import pytest

from anomaly.fingerprint import generate_device_fingerprint
from anomaly.pattern_analyzer import RiskLevel
from anomaly.rate_limiter import REASON_TOO_SOON
from anomaly.spoofing_guard import REASON_SUSPICIOUS_PATTERN, REASON_TELEPORTATION
from attendance.models import STATUS_LATE, STATUS_PRESENT
from attendance.schedule import ScheduleBook
from attendance_integration import REASON_NO_SCHEDULE, REASON_OUTSIDE_CHECK_IN_WINDOW, AttendanceIntegrityService
from conftest import START, make_reading
from geofence.validator import RISK_NO_WIFI
from geofence.zones import ZoneRegistry
from sensors.location import DeniedLocationSensor, StaticLocationSensor
from utils.errors import (ConfigurationError, DuplicateEvent, LocationUnavailable, NoCheckInError, RateLimited,
                          ValidationFailed)
from utils.logger import logger

FAR_LAT = -6.8274639


def test_check_in_from_zone_center_is_accepted(service, clock, school_scanner):
    reading = make_reading(accuracy=8.0, at=clock.now())
    decision = service.validate_check_in("student-001", reading, school_scanner)
    assert decision.accepted
    assert decision.geofence.overall.score >= 70
    assert decision.spoofing.confidence == 100
    assert decision.guard_reasons == []


def test_record_event_saves_check_in(service, clock, school_scanner, store):
    event = service.record_event("student-001", make_reading(at=clock.now()), "device-a", school_scanner)
    assert event.event_id is not None
    assert event.date == START.date()
    assert event.check_in_at == START
    assert event.status == STATUS_PRESENT
    assert event.zone_id == "smkn1-kendal"
    assert event.device_fingerprint == "device-a"
    assert event.validation_metadata['geofence']['overall']['score'] == 100
    assert store.get_event("student-001", START.date()).event_id == event.event_id


def test_second_check_in_same_day_is_duplicate(service, clock, school_scanner):
    service.record_event("student-001", make_reading(at=clock.now()), scanner=school_scanner)

    clock.advance(minutes=5)
    with pytest.raises(DuplicateEvent):
        service.record_event("student-001", make_reading(at=clock.now()), scanner=school_scanner)

    clock.advance(minutes=5)
    with pytest.raises(DuplicateEvent):
        service.record_event("student-001", make_reading(latitude=0.0, longitude=0.0, at=clock.now()))


def test_duplicate_check_does_not_consume_rate_limit(service, clock, school_scanner):
    service.record_event("student-001", make_reading(at=clock.now()), scanner=school_scanner)
    for _ in range(10):
        with pytest.raises(DuplicateEvent):
            service.record_event("student-001", make_reading(at=clock.now()), scanner=school_scanner)
    assert service.guard.rate_limiter.get_state("student-001").attempt_count == 1


def test_gps_alone_fails_validation(service, clock):
    with pytest.raises(ValidationFailed) as excinfo:
        service.record_event("student-001", make_reading(at=clock.now()))
    error = excinfo.value
    assert error.geofence.overall.score == 40
    assert RISK_NO_WIFI in error.risks
    assert error.to_dict()['geofence']['overall']['is_valid'] is False
    assert service.store.get_event("student-001", START.date()) is None


def test_spoofed_reading_fails_validation(service, clock, school_scanner):
    service.validate_check_in("student-001", make_reading(at=clock.now()), school_scanner)
    clock.advance(seconds=40)
    # jump back from 10 km away within one second, with a too-perfect fix
    service.guard.check_location("student-001", make_reading(latitude=FAR_LAT, at=clock.now()))
    clock.advance(seconds=1)
    with pytest.raises(ValidationFailed) as excinfo:
        service.record_event("student-001", make_reading(accuracy=2.0, at=clock.now()), scanner=school_scanner)
    assert excinfo.value.spoofing.confidence == 40
    assert excinfo.value.geofence.overall.is_valid


def test_attempt_too_soon_is_rate_limited(service, clock, school_scanner):
    service.validate_check_in("student-001", make_reading(at=clock.now()))
    clock.advance(seconds=10)
    with pytest.raises(RateLimited) as excinfo:
        service.record_event("student-001", make_reading(at=clock.now()), scanner=school_scanner)
    assert excinfo.value.reason == REASON_TOO_SOON
    assert excinfo.value.retry_after_ms == 20000


def test_rate_limited_decision_skips_guard_and_geofence(service, clock):
    service.validate_check_in("student-001", make_reading(at=clock.now()))
    clock.advance(seconds=1)
    decision = service.validate_check_in("student-001", make_reading(at=clock.now()))
    assert not decision.accepted
    assert decision.rate_limited
    assert decision.geofence is None
    assert decision.spoofing is None
    assert decision.guard_reasons == [REASON_TOO_SOON]
    assert len(service.guard.get_history("student-001")) == 1
    assert decision.to_dict()['geofence'] is None


def test_late_check_in(service, clock, school_scanner):
    clock.advance(minutes=90)
    event = service.record_event("student-001", make_reading(at=clock.now()), scanner=school_scanner)
    assert event.status == STATUS_LATE


def test_check_in_window_enforced(service, settings, clock, school_scanner):
    settings.attendance.enforce_windows = True
    clock.advance(minutes=120)
    with pytest.raises(ValidationFailed) as excinfo:
        service.record_event("student-001", make_reading(at=clock.now()), scanner=school_scanner)
    assert excinfo.value.reasons == [REASON_OUTSIDE_CHECK_IN_WINDOW]


def test_no_schedule_rejected_when_windows_enforced(service, settings, clock, school_scanner):
    settings.attendance.enforce_windows = True
    clock.advance(days=5)
    with pytest.raises(ValidationFailed) as excinfo:
        service.record_event("student-001", make_reading(at=clock.now()), scanner=school_scanner)
    assert excinfo.value.reasons == [REASON_NO_SCHEDULE]


def test_weekend_check_in_without_enforcement(service, clock, school_scanner):
    clock.advance(days=5)
    event = service.record_event("student-001", make_reading(at=clock.now()), scanner=school_scanner)
    assert event.status == STATUS_PRESENT
    assert event.validation_metadata['schedule'] is None


def test_check_out(service, clock, school_scanner):
    service.record_event("student-001", make_reading(at=clock.now()), scanner=school_scanner)
    clock.advance(minutes=8 * 60)
    event = service.record_check_out("student-001", make_reading(at=clock.now()), school_scanner)
    assert event.check_out_at == clock.now()
    assert event.check_out_location.captured_at == clock.now()


def test_check_out_twice(service, clock, school_scanner):
    service.record_event("student-001", make_reading(at=clock.now()), scanner=school_scanner)
    clock.advance(minutes=8 * 60)
    service.record_check_out("student-001", make_reading(at=clock.now()), school_scanner)
    clock.advance(minutes=10)
    with pytest.raises(DuplicateEvent):
        service.record_check_out("student-001", make_reading(at=clock.now()), school_scanner)


def test_check_out_without_check_in(service, clock, school_scanner):
    with pytest.raises(NoCheckInError):
        service.record_check_out("student-001", make_reading(at=clock.now()), school_scanner)


def test_check_in_from_sensor(service, clock, school_scanner):
    sensor = StaticLocationSensor(make_reading(at=clock.now() - timedelta(seconds=5)))
    event = service.check_in_from_sensor("student-001", sensor, scanner=school_scanner)
    assert sensor.calls == 1
    assert event.location == sensor.reading


def test_stale_sensor_reading(service, clock, school_scanner):
    sensor = StaticLocationSensor(make_reading(at=clock.now() - timedelta(minutes=2)))
    with pytest.raises(LocationUnavailable) as excinfo:
        service.check_in_from_sensor("student-001", sensor, scanner=school_scanner)
    assert excinfo.value.cause == "stale"


def test_denied_sensor(service, school_scanner):
    with pytest.raises(LocationUnavailable):
        service.check_in_from_sensor("student-001", DeniedLocationSensor(), scanner=school_scanner)


def test_device_fingerprint_is_stored(service, clock, school_scanner):
    fingerprint = generate_device_fingerprint({'user_agent': 'test-agent'}, issued_at=clock.now())
    event = service.record_event("student-001", make_reading(at=clock.now()), fingerprint, school_scanner)
    assert event.device_fingerprint == fingerprint.value
    assert event.validation_metadata['fingerprint_issued_at'] == clock.now().isoformat()


def test_zone_centers_flagged_when_enabled(store, zones, settings, clock, school_scanner):
    settings.guard.flag_zone_centers = True
    service = AttendanceIntegrityService(store=store, zones=zones, settings=settings, clock=clock)
    decision = service.validate_check_in("student-001", make_reading(at=clock.now()), school_scanner)
    assert decision.guard_reasons == [REASON_SUSPICIOUS_PATTERN]
    assert decision.spoofing.confidence == 70
    assert decision.accepted


def test_no_active_zone(store, settings, clock):
    service = AttendanceIntegrityService(store=store, zones=ZoneRegistry(), settings=settings, clock=clock)
    with pytest.raises(ConfigurationError):
        service.validate_check_in("student-001", make_reading(at=clock.now()))


def test_analyze_pattern(service, clock, school_scanner):
    for _ in range(5):
        service.record_event("student-001", make_reading(at=clock.now()), "device-a", school_scanner)
        clock.advance(days=1)

    analysis = service.analyze_pattern("student-001", window_days=6)
    assert analysis.event_count == 5
    assert analysis.time.average_check_in == "06:30:00"
    assert analysis.overall_risk.level is RiskLevel.LOW

    default_window = service.analyze_pattern("student-001")
    assert default_window.window_days == 30
    assert default_window.behavior.is_abnormal


def test_current_identity(service, store, settings):
    assert service.current_identity() == "student-001"
    with pytest.raises(ConfigurationError):
        AttendanceIntegrityService(store=store, settings=settings).current_identity()


def test_cleanup_old_records(service, clock, school_scanner):
    service.record_event("student-001", make_reading(at=clock.now()), scanner=school_scanner)
    clock.advance(days=400)
    assert service.cleanup_old_records() == 1


def test_decisions_are_logged(service, clock, school_scanner):
    service.record_event("logged-student", make_reading(at=clock.now()), scanner=school_scanner)
    events = [e for e in logger.get_recent_attendance_events() if e['subject_id'] == "logged-student"]
    assert [e['event_type'] for e in events] == ["VALIDATED", "CHECK_IN_RECORDED"]


def test_local_timezone_sets_the_date(store, zones, settings, school_scanner):
    settings.attendance.timezone = "Asia/Jakarta"
    # 23:30 UTC on Sunday is 06:30 on Monday in Jakarta
    sunday_night = datetime(2024, 1, 7, 23, 30, tzinfo=timezone.utc)
    service = AttendanceIntegrityService(store=store, zones=zones, schedules=ScheduleBook(), settings=settings,
                                         clock=lambda: int(sunday_night.timestamp() * 1000))
    event = service.record_event("student-001", make_reading(at=sunday_night), scanner=school_scanner)
    assert event.date.isoformat() == "2024-01-08"
    assert event.check_in_minutes == 390


@pytest.mark.parametrize("latitude, longitude, accuracy", [
    (float('nan'), 110.2024914, 8.0),
    (-6.9174639, float('inf'), 8.0),
    (-6.9174639, 110.2024914, float('nan')),
])
def test_invalid_reading_never_reaches_guard(service, clock, school_scanner, latitude, longitude, accuracy):
    with pytest.raises(LocationUnavailable) as excinfo:
        service.validate_check_in("student-001",
                                  make_reading(latitude=latitude, longitude=longitude, accuracy=accuracy,
                                               at=clock.now()),
                                  school_scanner)
    assert excinfo.value.cause == "invalid_reading"
    assert service.guard.get_history("student-001") == []
    assert service.guard.rate_limiter.get_state("student-001").attempt_count == 0

    clock.advance(seconds=31)
    decision = service.validate_check_in("student-001", make_reading(at=clock.now()), school_scanner)
    assert decision.accepted
    assert decision.spoofing.implied_speed_mps is None


def test_stale_reading_is_rejected_before_validation(service, clock, school_scanner):
    with pytest.raises(LocationUnavailable) as excinfo:
        service.record_event("student-001", make_reading(at=clock.now() - timedelta(days=3)), scanner=school_scanner)
    assert excinfo.value.cause == "stale"
    assert service.store.get_event("student-001", clock.now().date()) is None


def test_future_dated_reading_cannot_hide_a_jump(service, clock, school_scanner):
    service.validate_check_in("student-001", make_reading(latitude=FAR_LAT, at=clock.now()))
    clock.advance(seconds=31)
    with pytest.raises(LocationUnavailable) as excinfo:
        service.validate_check_in("student-001", make_reading(at=clock.now() + timedelta(days=1)), school_scanner)
    assert excinfo.value.cause == "future"
    assert len(service.guard.get_history("student-001")) == 1

    decision = service.validate_check_in("student-001", make_reading(at=clock.now() + timedelta(seconds=2)),
                                         school_scanner)
    assert REASON_TELEPORTATION in decision.guard_reasons
    assert decision.spoofing.implied_speed_mps > 50


def test_system_status_includes_recent_decisions(service, clock, school_scanner):
    service.record_event("status-student", make_reading(at=clock.now()), scanner=school_scanner)
    status = service.get_system_status()
    assert status['recent_decisions']['subject_check_in_counts']['status-student'] == 1
