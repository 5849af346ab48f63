"""
Attendance Integrity Service
============================

Wires the geofence validator, the spoofing guard, the pattern analyzer and
the attendance store into the operations the surrounding application calls.

Features:
- Check-in validation (rate limit, fake-GPS plausibility, multi-signal geofence)
- Atomic one-event-per-day check-in and conditional check-out
- Sensor read with timeout and staleness bound
- Longitudinal pattern analysis over the stored history
"""
import datetime
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from anomaly.pattern_analyzer import PatternAnalysis, PatternAnalyzer
from anomaly.rate_limiter import RateLimitDecision, system_clock_ms
from anomaly.spoofing_guard import SpoofingCheck, SpoofingGuard
from attendance.attendance_system import AttendanceStore
from attendance.models import AttendanceEvent, DeviceFingerprint, LocationReading
from attendance.schedule import ScheduleBook
from geofence.validator import GeofenceValidation, GeofenceValidator
from geofence.zones import ZoneRegistry
from sensors.location import LocationSensor, read_location, validate_reading
from sensors.signals import SignalScanner
from utils.config import Config, config
from utils.errors import (ConfigurationError, DuplicateEvent, LocationUnavailable, NoCheckInError,
                          RateLimited, ValidationFailed)
from utils.logger import logger

REASON_OUTSIDE_CHECK_IN_WINDOW = "outside check-in window"
REASON_OUTSIDE_CHECK_OUT_WINDOW = "outside check-out window"
REASON_NO_SCHEDULE = "no attendance schedule for today"


@dataclass
class CheckInDecision:
    """Verdict for one attempt. geofence and spoofing are None when the attempt was rate limited."""
    accepted: bool
    geofence: Optional[GeofenceValidation]
    guard_reasons: List[str] = field(default_factory=list)
    spoofing: Optional[SpoofingCheck] = None
    rate_limit: Optional[RateLimitDecision] = None

    @property
    def rate_limited(self) -> bool:
        return self.rate_limit is not None and not self.rate_limit.allowed

    def to_dict(self) -> Dict:
        return {
            'accepted': self.accepted,
            'geofence': self.geofence.to_dict() if self.geofence else None,
            'guard_reasons': list(self.guard_reasons),
            'spoofing': self.spoofing.to_dict() if self.spoofing else None,
            'rate_limit': self.rate_limit.to_dict() if self.rate_limit else None
        }


def _resolve_timezone(name: str) -> datetime.tzinfo:
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        logger.warning(f"Unknown attendance timezone {name!r} ({e}), using UTC")
        return datetime.timezone.utc


class AttendanceIntegrityService:
    """
    Self-service attendance integrity engine.

    Per-subject state lives in the guard's keyed maps and in the store.
    """

    def __init__(self, store: AttendanceStore = None, zones: ZoneRegistry = None,
                 schedules: ScheduleBook = None, settings: Config = None,
                 clock: Callable[[], int] = None,
                 identity_provider: Callable[[], str] = None):
        """
        Initialize the service.

        Args:
            store: Attendance store (defaults to the configured SQLite file)
            zones: Zone registry (defaults to the configured zones file or the reference site)
            schedules: Weekday schedules used for late status and window enforcement
            settings: Configuration (defaults to the global config)
            clock: Milliseconds since the epoch; drives rate limiting and event timestamps
            identity_provider: Returns the subject id of the current session
        """
        self.settings = settings or config
        self.clock = clock or system_clock_ms
        self.identity_provider = identity_provider
        self.tz = _resolve_timezone(self.settings.attendance.timezone)

        self.zones = zones if zones is not None else ZoneRegistry.from_config(self.settings.attendance.zones_file)
        self.store = store if store is not None else AttendanceStore(self.settings.attendance.db_path)
        self.schedules = schedules if schedules is not None else ScheduleBook.school_week()

        reference_points = self.zones.reference_points() if self.settings.guard.flag_zone_centers else ()
        self.validator = GeofenceValidator(self.zones, self.settings.geofence)
        self.guard = SpoofingGuard(self.settings.guard, reference_points=reference_points, clock=self.clock)
        self.analyzer = PatternAnalyzer(self.settings.pattern)

        logger.info(f"Attendance integrity service initialized with {len(self.zones)} zone(s)")

    def now(self) -> datetime.datetime:
        """Current local time in the attendance timezone."""
        return datetime.datetime.fromtimestamp(self.clock() / 1000, tz=self.tz)

    def current_identity(self) -> str:
        if self.identity_provider is None:
            raise ConfigurationError("No identity provider configured")
        return self.identity_provider()

    def check_reading(self, subject_id: str, reading: LocationReading) -> LocationReading:
        """Reject readings the engine cannot trust, with the service clock as reference."""
        try:
            return validate_reading(
                reading,
                max_staleness_ms=self.settings.sensor.max_staleness_ms,
                now=self.now(),
                max_clock_skew_ms=self.settings.sensor.max_clock_skew_ms
            )
        except LocationUnavailable as e:
            logger.log_attendance_event(subject_id, "REJECTED", details={'reason': 'location unavailable',
                                                                         'cause': e.cause})
            raise

    def validate_check_in(self, subject_id: str, reading: LocationReading,
                          scanner: Optional[SignalScanner] = None) -> CheckInDecision:
        """
        Decide whether a reading may be accepted, without recording anything.

        The reading itself is checked first, against the service clock. An invalid,
        stale or future-dated reading raises LocationUnavailable and never reaches
        the rate limiter or the guard history. The rate limiter is consulted next;
        a rejected attempt runs neither the spoofing guard nor the geofence validator.

        Raises:
            LocationUnavailable: non-finite coordinates, bad accuracy, stale or future-dated reading
        """
        self.check_reading(subject_id, reading)

        rate_limit = self.guard.check_rate_limit(subject_id)
        if not rate_limit.allowed:
            logger.log_attendance_event(subject_id, "RATE_LIMITED", details=rate_limit.to_dict())
            return CheckInDecision(
                accepted=False,
                geofence=None,
                guard_reasons=[rate_limit.reason],
                rate_limit=rate_limit
            )

        spoofing = self.guard.check_location(subject_id, reading)
        geofence = self.validator.validate(reading, scanner)
        accepted = spoofing.is_valid and geofence.overall.is_valid

        logger.log_attendance_event(
            subject_id,
            "VALIDATED" if accepted else "REJECTED",
            details={
                'geofence_score': geofence.overall.score,
                'guard_confidence': spoofing.confidence,
                'risks': geofence.overall.risks,
                'guard_reasons': spoofing.reasons
            },
            confidence=geofence.overall.score
        )

        return CheckInDecision(
            accepted=accepted,
            geofence=geofence,
            guard_reasons=list(spoofing.reasons),
            spoofing=spoofing,
            rate_limit=rate_limit
        )

    def record_event(self, subject_id: str, reading: LocationReading,
                     fingerprint: Union[DeviceFingerprint, str, None] = None,
                     scanner: Optional[SignalScanner] = None) -> AttendanceEvent:
        """
        Validate and record today's check-in.

        Raises:
            DuplicateEvent: the subject already checked in today
            LocationUnavailable: the reading is invalid, stale or future-dated
            RateLimited: too many attempts or too soon
            ValidationFailed: guard or geofence rejected the reading, or outside the check-in window
            StorageError: the store failed
        """
        now = self.now()
        today = now.date()

        if self.store.get_event(subject_id, today) is not None:
            logger.log_attendance_event(subject_id, "REJECTED", details={'reason': 'duplicate', 'date': today})
            raise DuplicateEvent(subject_id, today)

        decision = self.validate_check_in(subject_id, reading, scanner)
        self._raise_for_decision(subject_id, decision)

        schedule = self.schedules.for_date(today)
        if self.settings.attendance.enforce_windows:
            if schedule is None:
                self._reject_window(subject_id, REASON_NO_SCHEDULE, decision)
            if not schedule.can_check_in(now):
                self._reject_window(subject_id, REASON_OUTSIDE_CHECK_IN_WINDOW, decision)

        metadata = {
            'geofence': decision.geofence.to_dict(),
            'spoofing': decision.spoofing.to_dict(),
            'schedule': schedule.name if schedule else None
        }
        fingerprint_value = fingerprint
        if isinstance(fingerprint, DeviceFingerprint):
            fingerprint_value = fingerprint.value
            metadata['fingerprint_issued_at'] = fingerprint.issued_at.isoformat()

        event = AttendanceEvent(
            subject_id=subject_id,
            date=today,
            check_in_at=now,
            location=reading,
            device_fingerprint=fingerprint_value or None,
            validation_metadata=metadata,
            status=self.schedules.status_for(now),
            zone_id=decision.geofence.gps.zone_id
        )

        saved = self.store.save_event(event)
        logger.log_attendance_event(
            subject_id,
            "CHECK_IN_RECORDED",
            details={'date': today, 'status': saved.status, 'zone_id': saved.zone_id},
            confidence=decision.geofence.overall.score
        )
        return saved

    def record_check_out(self, subject_id: str, reading: LocationReading,
                         scanner: Optional[SignalScanner] = None) -> AttendanceEvent:
        """
        Validate the reading and set the check-out of today's event.

        Raises:
            NoCheckInError: no check-in today
            DuplicateEvent: already checked out today
            LocationUnavailable, RateLimited, ValidationFailed, StorageError: as for record_event
        """
        now = self.now()
        today = now.date()

        existing = self.store.get_event(subject_id, today)
        if existing is None:
            logger.log_attendance_event(subject_id, "REJECTED", details={'reason': 'no check-in', 'date': today})
            raise NoCheckInError(subject_id, today)
        if existing.check_out_at is not None:
            logger.log_attendance_event(subject_id, "REJECTED", details={'reason': 'duplicate check-out',
                                                                         'date': today})
            raise DuplicateEvent(subject_id, today, f"Check-out already recorded for {subject_id} on {today}")

        decision = self.validate_check_in(subject_id, reading, scanner)
        self._raise_for_decision(subject_id, decision)

        if self.settings.attendance.enforce_windows:
            schedule = self.schedules.for_date(today)
            if schedule is None:
                self._reject_window(subject_id, REASON_NO_SCHEDULE, decision)
            if not schedule.can_check_out(now):
                self._reject_window(subject_id, REASON_OUTSIDE_CHECK_OUT_WINDOW, decision)

        updated = self.store.record_check_out(subject_id, today, now, reading)
        logger.log_attendance_event(
            subject_id,
            "CHECK_OUT_RECORDED",
            details={'date': today, 'zone_id': decision.geofence.gps.zone_id},
            confidence=decision.geofence.overall.score
        )
        return updated

    def check_in_from_sensor(self, subject_id: str, sensor: LocationSensor,
                             fingerprint: Union[DeviceFingerprint, str, None] = None,
                             scanner: Optional[SignalScanner] = None) -> AttendanceEvent:
        """Read the location sensor within the configured bounds, then record the check-in."""
        try:
            reading = read_location(
                sensor,
                timeout_ms=self.settings.sensor.timeout_ms,
                max_staleness_ms=self.settings.sensor.max_staleness_ms,
                now=self.now(),
                max_clock_skew_ms=self.settings.sensor.max_clock_skew_ms
            )
        except LocationUnavailable as e:
            logger.log_attendance_event(subject_id, "REJECTED", details={'reason': 'location unavailable',
                                                                         'cause': e.cause})
            raise

        return self.record_event(subject_id, reading, fingerprint, scanner)

    def analyze_pattern(self, subject_id: str, window_days: Optional[int] = None) -> PatternAnalysis:
        """Score the subject's recent history for spoofing or proxy attendance."""
        analysis = self.analyzer.analyze_subject(subject_id, self.store, window_days, today=self.now().date())
        logger.log_attendance_event(
            subject_id,
            "PATTERN_ANALYZED",
            details={
                'risk_level': analysis.overall_risk.level.value,
                'abnormal': [pattern.value for pattern in analysis.abnormal_patterns()]
            },
            confidence=analysis.overall_risk.score
        )
        return analysis

    def get_daily_attendance(self, day: Optional[datetime.date] = None) -> List[Dict]:
        return self.store.get_daily_attendance(day or self.now().date())

    def cleanup_old_records(self) -> int:
        """Apply the configured retention period to the store."""
        return self.store.delete_older_than(self.settings.attendance.retention_days, today=self.now().date())

    def get_system_status(self) -> Dict:
        return {
            'zones': len(self.zones),
            'active_zones': len(self.zones.active_zones()),
            'schedules': len(self.schedules),
            'enforce_windows': self.settings.attendance.enforce_windows,
            'validator_stats': self.validator.get_validation_statistics(),
            'guard_stats': self.guard.get_guard_statistics(),
            'analyzer_stats': self.analyzer.get_analysis_statistics(),
            'recent_decisions': logger.get_attendance_summary(),
            'timestamp': self.now().isoformat()
        }

    def _raise_for_decision(self, subject_id: str, decision: CheckInDecision):
        if decision.rate_limited:
            raise RateLimited(decision.rate_limit.reason, decision.rate_limit.retry_after_ms)

        if not decision.accepted:
            raise ValidationFailed(
                f"Location validation failed for {subject_id} "
                f"(geofence score {decision.geofence.overall.score}, "
                f"guard confidence {decision.spoofing.confidence})",
                risks=decision.geofence.overall.risks,
                reasons=decision.guard_reasons,
                geofence=decision.geofence,
                spoofing=decision.spoofing
            )

    def _reject_window(self, subject_id: str, reason: str, decision: CheckInDecision):
        logger.log_attendance_event(subject_id, "REJECTED", details={'reason': reason})
        raise ValidationFailed(
            f"Attendance rejected for {subject_id}: {reason}",
            risks=decision.geofence.overall.risks,
            reasons=[reason],
            geofence=decision.geofence,
            spoofing=decision.spoofing
        )
