"""
Longitudinal attendance pattern analysis.
Scores a window of one subject's attendance history for signs of spoofing or proxy attendance
using simple statistics: time-of-day spread, location clustering, device counts and behavior rates.
"""
import datetime
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from attendance.models import AttendanceEvent
from utils.config import PatternConfig, config
from utils.geo import haversine_distance
from utils.logger import logger


class PatternType(Enum):
    """Independent anomaly signals computed over the history window."""
    TIME = "time"
    LOCATION = "location"
    DEVICE = "device"
    BEHAVIOR = "behavior"


class RiskLevel(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


RECOMMENDATIONS = {
    PatternType.TIME: "Inconsistent check-in time pattern - needs further monitoring",
    PatternType.LOCATION: "Check-in locations vary - manual verification required",
    PatternType.DEVICE: "Multiple devices used - possible proxy attendance",
    PatternType.BEHAVIOR: "Abnormal attendance pattern - counseling or disciplinary follow-up required",
}
NORMAL_RECOMMENDATION = "Normal attendance pattern - no special action required"


@dataclass
class TimePattern:
    average_check_in: str = "00:00:00"
    mean_minutes: float = 0.0
    stddev_minutes: float = 0.0
    sample_count: int = 0
    is_abnormal: bool = False
    confidence: float = 0.0


@dataclass
class LocationCluster:
    latitude: float
    longitude: float
    count: int = 1


@dataclass
class LocationPattern:
    clusters: List[LocationCluster] = field(default_factory=list)
    spread_meters: float = 0.0
    sample_count: int = 0
    is_abnormal: bool = False
    confidence: float = 0.0

    @property
    def cluster_count(self) -> int:
        return len(self.clusters)


@dataclass
class DevicePattern:
    fingerprints: List[str] = field(default_factory=list)
    sample_count: int = 0
    is_abnormal: bool = False
    confidence: float = 0.0

    @property
    def unique_devices(self) -> int:
        return len(self.fingerprints)


@dataclass
class BehaviorPattern:
    attendance_rate: float = 0.0
    late_frequency: float = 0.0
    weekday_pattern: List[int] = field(default_factory=lambda: [0] * 7)
    total_days: int = 0
    late_days: int = 0
    is_abnormal: bool = False
    confidence: float = 0.0


@dataclass
class OverallRisk:
    score: float
    level: RiskLevel
    recommendations: List[str]


@dataclass
class PatternAnalysis:
    """Fresh result of one analysis call. Never persisted by the engine."""
    subject_id: str
    window_days: int
    event_count: int
    time: TimePattern
    location: LocationPattern
    device: DevicePattern
    behavior: BehaviorPattern
    overall_risk: OverallRisk

    def abnormal_patterns(self) -> List[PatternType]:
        flags = [
            (PatternType.TIME, self.time.is_abnormal),
            (PatternType.LOCATION, self.location.is_abnormal),
            (PatternType.DEVICE, self.device.is_abnormal),
            (PatternType.BEHAVIOR, self.behavior.is_abnormal),
        ]
        return [pattern for pattern, abnormal in flags if abnormal]

    def to_dict(self) -> Dict:
        return {
            'subject_id': self.subject_id,
            'window_days': self.window_days,
            'event_count': self.event_count,
            'patterns': {
                'time': {
                    'average_check_in': self.time.average_check_in,
                    'mean_minutes': round(self.time.mean_minutes, 2),
                    'stddev_minutes': round(self.time.stddev_minutes, 2),
                    'sample_count': self.time.sample_count,
                    'is_abnormal': self.time.is_abnormal,
                    'confidence': self.time.confidence
                },
                'location': {
                    'clusters': [
                        {'latitude': c.latitude, 'longitude': c.longitude, 'count': c.count}
                        for c in self.location.clusters
                    ],
                    'cluster_count': self.location.cluster_count,
                    'spread_meters': round(self.location.spread_meters, 2),
                    'sample_count': self.location.sample_count,
                    'is_abnormal': self.location.is_abnormal,
                    'confidence': self.location.confidence
                },
                'device': {
                    'fingerprints': list(self.device.fingerprints),
                    'unique_devices': self.device.unique_devices,
                    'sample_count': self.device.sample_count,
                    'is_abnormal': self.device.is_abnormal,
                    'confidence': self.device.confidence
                },
                'behavior': {
                    'attendance_rate': round(self.behavior.attendance_rate, 2),
                    'late_frequency': round(self.behavior.late_frequency, 2),
                    'weekday_pattern': list(self.behavior.weekday_pattern),
                    'total_days': self.behavior.total_days,
                    'late_days': self.behavior.late_days,
                    'is_abnormal': self.behavior.is_abnormal,
                    'confidence': self.behavior.confidence
                }
            },
            'overall_risk': {
                'score': self.overall_risk.score,
                'level': self.overall_risk.level.value,
                'recommendations': list(self.overall_risk.recommendations)
            }
        }


def minutes_to_time(minutes: float) -> str:
    total = int(round(minutes))
    hours, mins = divmod(total, 60)
    return f"{hours:02d}:{mins:02d}:00"


def cluster_locations(points: Sequence[Tuple[float, float]], radius_meters: float) -> List[LocationCluster]:
    """
    Greedy single-linkage grouping.

    Each point joins the first cluster whose reference point lies within radius_meters,
    otherwise it starts a new cluster. A cluster's reference point stays at its first
    member. Clusters are returned largest first.
    """
    clusters: List[LocationCluster] = []
    for lat, lon in points:
        for cluster in clusters:
            if haversine_distance(lat, lon, cluster.latitude, cluster.longitude) <= radius_meters:
                cluster.count += 1
                break
        else:
            clusters.append(LocationCluster(latitude=lat, longitude=lon))

    # stable sort keeps first-seen order among equal counts
    return sorted(clusters, key=lambda c: c.count, reverse=True)


def location_spread(points: Sequence[Tuple[float, float]]) -> float:
    """Root-mean-square distance (meters) of the points to their mean coordinate."""
    if len(points) < 2:
        return 0.0

    coords = np.asarray(points, dtype=float)
    center_lat, center_lon = coords.mean(axis=0)
    distances = np.array([haversine_distance(lat, lon, center_lat, center_lon) for lat, lon in coords])
    return float(np.sqrt(np.mean(distances ** 2)))


class PatternAnalyzer:
    """Computes the four sub-pattern signals and the aggregate risk."""

    def __init__(self, settings: PatternConfig = None):
        self.settings = settings or config.pattern

        # Performance metrics
        self.total_analyses = 0
        self.risk_level_counts = {level.value: 0 for level in RiskLevel}

    def analyze(self, subject_id: str, events: Sequence[AttendanceEvent],
                window_days: Optional[int] = None) -> PatternAnalysis:
        """
        Analyze an already-loaded history window.

        Args:
            subject_id: Subject the events belong to
            events: Attendance events inside the window
            window_days: Window length used as the attendance-rate denominator

        Returns:
            PatternAnalysis with the sub-pattern results and the overall risk
        """
        window_days = window_days or self.settings.window_days
        events = [event for event in events if event.subject_id == subject_id]

        time_pattern = self.analyze_time_pattern(events)
        location_pattern = self.analyze_location_pattern(events)
        device_pattern = self.analyze_device_pattern(events)
        behavior_pattern = self.analyze_behavior_pattern(events, window_days)

        analysis = PatternAnalysis(
            subject_id=subject_id,
            window_days=window_days,
            event_count=len(events),
            time=time_pattern,
            location=location_pattern,
            device=device_pattern,
            behavior=behavior_pattern,
            overall_risk=OverallRisk(score=0.0, level=RiskLevel.LOW, recommendations=[])
        )
        analysis.overall_risk = self.calculate_overall_risk(analysis)

        self.total_analyses += 1
        self.risk_level_counts[analysis.overall_risk.level.value] += 1

        if analysis.overall_risk.level is not RiskLevel.LOW:
            logger.info(f"Pattern risk for {subject_id}: {analysis.overall_risk.level.value} "
                        f"(score: {analysis.overall_risk.score:.0f})")
        return analysis

    def analyze_subject(self, subject_id: str, store, window_days: Optional[int] = None,
                        today: Optional[datetime.date] = None) -> PatternAnalysis:
        """Load the window_days ending today (inclusive) from the store, then analyze it."""
        window_days = window_days or self.settings.window_days
        today = today or datetime.date.today()
        since = today - datetime.timedelta(days=window_days - 1)
        events = store.load_history(subject_id, since, today)
        return self.analyze(subject_id, events, window_days)

    def analyze_time_pattern(self, events: Sequence[AttendanceEvent]) -> TimePattern:
        minutes = [event.check_in_minutes for event in events if event.check_in_at is not None]
        if not minutes:
            return TimePattern()

        values = np.asarray(minutes, dtype=float)
        mean = float(values.mean())
        stddev = float(values.std())

        return TimePattern(
            average_check_in=minutes_to_time(mean),
            mean_minutes=mean,
            stddev_minutes=stddev,
            sample_count=len(minutes),
            is_abnormal=stddev > self.settings.time_stddev_minutes,
            confidence=float(min(100, len(minutes) * 10))
        )

    def analyze_location_pattern(self, events: Sequence[AttendanceEvent]) -> LocationPattern:
        points = [(event.location.latitude, event.location.longitude)
                  for event in events if event.location is not None]
        if not points:
            return LocationPattern()

        clusters = cluster_locations(points, self.settings.cluster_radius_meters)
        spread = location_spread(points)

        return LocationPattern(
            clusters=clusters,
            spread_meters=spread,
            sample_count=len(points),
            is_abnormal=len(clusters) > self.settings.max_clusters or spread > self.settings.location_spread_meters,
            confidence=float(min(100, len(points) * 5))
        )

    def analyze_device_pattern(self, events: Sequence[AttendanceEvent]) -> DevicePattern:
        fingerprints = [event.device_fingerprint for event in events if event.device_fingerprint]
        if not fingerprints:
            return DevicePattern()

        unique = list(dict.fromkeys(fingerprints))
        return DevicePattern(
            fingerprints=unique,
            sample_count=len(fingerprints),
            is_abnormal=len(unique) > self.settings.max_devices,
            confidence=float(min(100, len(fingerprints) * 3))
        )

    def analyze_behavior_pattern(self, events: Sequence[AttendanceEvent], window_days: int) -> BehaviorPattern:
        if not events:
            return BehaviorPattern()

        total_days = len(events)
        late_days = sum(1 for event in events if event.is_late)
        attendance_rate = total_days / window_days * 100
        late_frequency = late_days / total_days * 100

        weekday_pattern = [0] * 7
        for event in events:
            weekday_pattern[event.date.weekday()] += 1

        return BehaviorPattern(
            attendance_rate=attendance_rate,
            late_frequency=late_frequency,
            weekday_pattern=weekday_pattern,
            total_days=total_days,
            late_days=late_days,
            is_abnormal=(attendance_rate < self.settings.min_attendance_rate or
                         late_frequency > self.settings.max_late_frequency),
            confidence=float(min(100, total_days * 5))
        )

    def calculate_overall_risk(self, analysis: PatternAnalysis) -> OverallRisk:
        abnormal = analysis.abnormal_patterns()
        score = len(abnormal) / len(PatternType) * 100

        if score < self.settings.low_risk_below:
            level = RiskLevel.LOW
        elif score < self.settings.medium_risk_below:
            level = RiskLevel.MEDIUM
        else:
            level = RiskLevel.HIGH

        recommendations = [RECOMMENDATIONS[pattern] for pattern in abnormal]
        if not recommendations:
            recommendations.append(NORMAL_RECOMMENDATION)

        return OverallRisk(score=score, level=level, recommendations=recommendations)

    def get_analysis_statistics(self) -> Dict:
        return {
            'total_analyses': self.total_analyses,
            'risk_level_counts': dict(self.risk_level_counts),
            'window_days': self.settings.window_days
        }
