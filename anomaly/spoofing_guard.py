"""
Spoofing guard: fake-GPS plausibility checks and attempt throttling, with per-subject state.
"""
import threading
from collections import deque
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional, Tuple

import numpy as np

from anomaly.rate_limiter import RateLimitDecision, RateLimiter
from attendance.models import LocationReading
from utils.config import GuardConfig, config
from utils.geo import haversine_distance
from utils.logger import logger

REASON_TOO_PRECISE = "GPS accuracy suspiciously precise (possible fake GPS)"
REASON_TELEPORTATION = "Implausible location jump (teleportation)"
REASON_SUSPICIOUS_PATTERN = "Suspicious location pattern detected"


class LocationHistory:
    """Most recent readings of one subject; the oldest is evicted beyond capacity."""

    def __init__(self, capacity: int = 10, readings: Iterable[LocationReading] = ()):
        self._readings = deque(readings, maxlen=capacity)

    @property
    def capacity(self) -> int:
        return self._readings.maxlen

    def append(self, reading: LocationReading):
        self._readings.append(reading)

    def newest(self) -> Optional[LocationReading]:
        return self._readings[-1] if self._readings else None

    def readings(self) -> List[LocationReading]:
        return list(self._readings)

    def __len__(self):
        return len(self._readings)

    def __iter__(self):
        return iter(list(self._readings))


@dataclass(frozen=True)
class SpoofingCheck:
    """Outcome of one plausibility check."""
    is_valid: bool
    confidence: int
    reasons: List[str] = field(default_factory=list)
    implied_speed_mps: Optional[float] = None

    def to_dict(self) -> Dict:
        speed = self.implied_speed_mps
        return {
            'is_valid': self.is_valid,
            'confidence': self.confidence,
            'reasons': list(self.reasons),
            'implied_speed_mps': None if speed is None or speed == float('inf') else round(speed, 2)
        }


def format_coordinate(value: float) -> str:
    """Shortest positional (never scientific) rendering of a coordinate."""
    return np.format_float_positional(value, trim='-')


def implied_speed(previous: LocationReading, current: LocationReading) -> float:
    """Speed in m/s between two readings; zero distance is never movement."""
    distance = haversine_distance(previous.latitude, previous.longitude,
                                  current.latitude, current.longitude)
    if distance == 0:
        return 0.0
    elapsed = (current.captured_at - previous.captured_at).total_seconds()
    if elapsed <= 0:
        return float('inf')
    return distance / elapsed


class SpoofingGuard:
    """Per-subject location plausibility and rate limiting."""

    def __init__(self, settings: GuardConfig = None,
                 reference_points: Iterable[Tuple[float, float]] = (),
                 clock: Callable[[], int] = None,
                 rate_limiter: RateLimiter = None):
        self.settings = settings or config.guard
        self.reference_points: List[Tuple[float, float]] = list(self.settings.reference_points)
        for point in reference_points:
            self.add_reference_point(*point)

        self.rate_limiter = rate_limiter or RateLimiter(self.settings, clock)
        self._histories: Dict[str, LocationHistory] = {}
        self._lock = threading.Lock()

        # Performance metrics
        self.total_checks = 0
        self.rejected_checks = 0
        self.teleport_detections = 0

        logger.debug("Spoofing guard initialized")

    def add_reference_point(self, latitude: float, longitude: float):
        point = (float(latitude), float(longitude))
        if point not in self.reference_points:
            self.reference_points.append(point)

    def check_location(self, subject_id: str, reading: LocationReading) -> SpoofingCheck:
        """
        Check a reading against the subject's recent history.

        The reading is appended to the history whether or not it passes.
        """
        with self._lock:
            history = self._histories.get(subject_id)
            if history is None:
                history = LocationHistory(self.settings.history_size)
                self._histories[subject_id] = history
            result = self.evaluate_location(reading, history)

            self.total_checks += 1
            if not result.is_valid:
                self.rejected_checks += 1
            if REASON_TELEPORTATION in result.reasons:
                self.teleport_detections += 1

        if result.reasons:
            logger.info(f"Spoofing check for {subject_id}: confidence={result.confidence}, "
                        f"reasons={result.reasons}")
        return result

    def evaluate_location(self, reading: LocationReading, history: LocationHistory) -> SpoofingCheck:
        """Score one reading against an explicit history buffer, then append it."""
        confidence = 100
        reasons = []
        speed = None

        # Too-perfect accuracy is characteristic of emulated GPS
        if reading.accuracy_meters < self.settings.suspicious_accuracy_meters:
            confidence -= self.settings.accuracy_penalty
            reasons.append(REASON_TOO_PRECISE)

        previous = history.newest()
        if previous is not None:
            speed = implied_speed(previous, reading)
            if speed > self.settings.max_speed_mps:
                confidence -= self.settings.teleport_penalty
                reasons.append(REASON_TELEPORTATION)

        if self.is_suspicious_pattern(reading.latitude, reading.longitude):
            confidence -= self.settings.suspicious_pattern_penalty
            reasons.append(REASON_SUSPICIOUS_PATTERN)

        history.append(reading)

        return SpoofingCheck(
            is_valid=confidence >= self.settings.min_confidence,
            confidence=confidence,
            reasons=reasons,
            implied_speed_mps=speed
        )

    def is_suspicious_pattern(self, latitude: float, longitude: float) -> bool:
        """Zero runs in the typed coordinates, or an exact hit on a reference point."""
        zero_run = "0" * self.settings.zero_run_length
        if zero_run in format_coordinate(latitude) or zero_run in format_coordinate(longitude):
            return True

        for ref_lat, ref_lon in self.reference_points:
            if haversine_distance(latitude, longitude, ref_lat, ref_lon) < self.settings.suspicious_radius_meters:
                return True

        return False

    def check_rate_limit(self, subject_id: str, now_ms: Optional[int] = None) -> RateLimitDecision:
        return self.rate_limiter.check(subject_id, now_ms)

    def get_history(self, subject_id: str) -> List[LocationReading]:
        with self._lock:
            history = self._histories.get(subject_id)
            return history.readings() if history else []

    def reset(self, subject_id: str):
        """Forget both the location history and the rate limit state of a subject."""
        with self._lock:
            self._histories.pop(subject_id, None)
        self.rate_limiter.reset(subject_id)
        logger.info(f"Spoofing guard state reset for {subject_id}")

    def get_guard_statistics(self) -> Dict:
        with self._lock:
            return {
                'total_checks': self.total_checks,
                'rejected_checks': self.rejected_checks,
                'teleport_detections': self.teleport_detections,
                'tracked_subjects': len(self._histories),
                'rate_limited_subjects': len(self.rate_limiter),
                'reference_points': len(self.reference_points)
            }
