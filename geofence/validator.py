"""
Multi-signal geofence validator.
Combines a GPS fix with Wi-Fi, Bluetooth and cellular corroboration into one confidence score.
"""
import math
import threading
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from attendance.models import LocationReading
from geofence.zones import AttendanceZone, ZoneRegistry
from sensors.signals import SignalChannel, SignalScanner, UnavailableSignalScanner
from utils.config import GeofenceConfig, config
from utils.errors import ChannelUnavailable
from utils.logger import logger

RISK_GPS_OUTSIDE = "GPS location outside the attendance zone"
RISK_GPS_TOO_PRECISE = "GPS accuracy suspiciously precise (possible fake GPS)"
RISK_NO_WIFI = "No known Wi-Fi network detected"
RISK_NO_BLUETOOTH = "No known Bluetooth device detected"
RISK_NO_CELLULAR = "Cellular towers do not match the attendance zone"
RISK_LOW_SCORE = "Low location validation score"


@dataclass(frozen=True)
class GpsScore:
    is_valid: bool
    distance_meters: float
    accuracy_meters: float
    confidence: float
    zone_id: Optional[str] = None

    def to_dict(self) -> Dict:
        return {
            'is_valid': self.is_valid,
            'distance_meters': round(self.distance_meters, 2),
            'accuracy_meters': self.accuracy_meters,
            'confidence': self.confidence,
            'zone_id': self.zone_id
        }


@dataclass(frozen=True)
class SignalScore:
    channel: SignalChannel
    confidence: float
    matched: int
    identifiers: List[str] = field(default_factory=list)
    available: bool = True

    def to_dict(self) -> Dict:
        return {
            'confidence': self.confidence,
            'matched': self.matched,
            'identifiers': list(self.identifiers),
            'available': self.available
        }


@dataclass(frozen=True)
class OverallScore:
    score: int
    is_valid: bool
    risks: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict:
        return {'score': self.score, 'is_valid': self.is_valid, 'risks': list(self.risks)}


@dataclass(frozen=True)
class GeofenceValidation:
    """Per-signal sub-scores plus the combined verdict."""
    gps: GpsScore
    wifi: SignalScore
    bluetooth: SignalScore
    cellular: SignalScore
    overall: OverallScore

    def to_dict(self) -> Dict:
        return {
            'gps': self.gps.to_dict(),
            'wifi': self.wifi.to_dict(),
            'bluetooth': self.bluetooth.to_dict(),
            'cellular': self.cellular.to_dict(),
            'overall': self.overall.to_dict()
        }


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


class GeofenceValidator:
    """Decides whether a reading plausibly places the subject inside a registered zone."""

    def __init__(self, zones: ZoneRegistry, settings: GeofenceConfig = None):
        self.zones = zones
        self.settings = settings or config.geofence

        # Performance metrics
        self._stats_lock = threading.Lock()
        self.total_validations = 0
        self.valid_validations = 0
        self.channel_failures = {channel.value: 0 for channel in SignalChannel}

    def validate(self, reading: LocationReading,
                 scanner: Optional[SignalScanner] = None) -> GeofenceValidation:
        """
        Score a reading against the zone containing it (or the nearest active zone).

        Args:
            reading: Location fix to validate
            scanner: Auxiliary signal scanner; None means no agent is attached

        Returns:
            A fresh GeofenceValidation

        Raises:
            ConfigurationError: no active zone is registered
        """
        scanner = scanner or UnavailableSignalScanner()

        zone, distance = self._resolve_zone(reading)
        gps = self.score_gps(reading, zone, distance)
        wifi = self.score_channel(scanner, SignalChannel.WIFI, zone)
        bluetooth = self.score_channel(scanner, SignalChannel.BLUETOOTH, zone)
        cellular = self.score_channel(scanner, SignalChannel.CELLULAR, zone)

        score = self.calculate_overall_score(gps.confidence, wifi.confidence,
                                             bluetooth.confidence, cellular.confidence)
        risks = self.identify_risks(gps, wifi, bluetooth, cellular, score)
        overall = OverallScore(score=score, is_valid=score >= self.settings.min_valid_score, risks=risks)

        with self._stats_lock:
            self.total_validations += 1
            if overall.is_valid:
                self.valid_validations += 1

        logger.debug(f"Geofence validation for zone {zone.zone_id}: score={score}, risks={len(risks)}")
        return GeofenceValidation(gps=gps, wifi=wifi, bluetooth=bluetooth, cellular=cellular, overall=overall)

    def _resolve_zone(self, reading: LocationReading):
        zone = self.zones.find_containing(reading.latitude, reading.longitude)
        if zone is not None:
            return zone, zone.distance_to(reading.latitude, reading.longitude)
        return self.zones.nearest(reading.latitude, reading.longitude)

    def score_gps(self, reading: LocationReading, zone: AttendanceZone, distance: float) -> GpsScore:
        """Full confidence inside the radius, then one point lost per meter of overshoot."""
        is_valid = distance <= zone.radius_meters
        if is_valid:
            confidence = 100.0
        else:
            confidence = max(0.0, 100.0 - (distance - zone.radius_meters))

        return GpsScore(
            is_valid=is_valid,
            distance_meters=distance,
            accuracy_meters=reading.accuracy_meters,
            confidence=confidence,
            zone_id=zone.zone_id
        )

    def score_channel(self, scanner: SignalScanner, channel: SignalChannel,
                      zone: AttendanceZone) -> SignalScore:
        """Count observed identifiers matching the zone's known-good set."""
        try:
            observed = list(dict.fromkeys(scanner.scan(channel)))
        except ChannelUnavailable as e:
            logger.warning(f"{channel.value} scan unavailable: {e}")
            return self._unavailable(channel)
        except Exception as e:
            # a broken scanner is treated exactly like an unavailable channel
            logger.warning(f"{channel.value} scan failed: {e}")
            return self._unavailable(channel)

        if channel is SignalChannel.WIFI:
            known, weight = zone.wifi_networks, self.settings.wifi_match_weight
            matched = sum(1 for network in observed if any(name in network for name in known))
        elif channel is SignalChannel.BLUETOOTH:
            known, weight = zone.bluetooth_devices, self.settings.bluetooth_match_weight
            matched = sum(1 for device in observed if any(name in device for name in known))
        else:
            known, weight = zone.cell_towers, self.settings.cellular_match_weight
            matched = sum(1 for tower in observed if tower in known)

        return SignalScore(
            channel=channel,
            confidence=float(min(100, matched * weight)),
            matched=matched,
            identifiers=observed
        )

    def _unavailable(self, channel: SignalChannel) -> SignalScore:
        with self._stats_lock:
            self.channel_failures[channel.value] += 1
        return SignalScore(channel=channel, confidence=0.0, matched=0, identifiers=[], available=False)

    def calculate_overall_score(self, gps: float, wifi: float, bluetooth: float, cellular: float) -> int:
        weighted = (gps * self.settings.gps_weight +
                    wifi * self.settings.wifi_weight +
                    bluetooth * self.settings.bluetooth_weight +
                    cellular * self.settings.cellular_weight)
        return _round_half_up(weighted)

    def identify_risks(self, gps: GpsScore, wifi: SignalScore, bluetooth: SignalScore,
                       cellular: SignalScore, score: int) -> List[str]:
        """One finding per triggered condition, in a fixed insertion order."""
        risks = []

        if not gps.is_valid:
            risks.append(RISK_GPS_OUTSIDE)

        if gps.accuracy_meters < self.settings.suspicious_accuracy_meters:
            risks.append(RISK_GPS_TOO_PRECISE)

        if wifi.matched == 0:
            risks.append(RISK_NO_WIFI)

        if bluetooth.matched == 0:
            risks.append(RISK_NO_BLUETOOTH)

        if cellular.matched == 0:
            risks.append(RISK_NO_CELLULAR)

        if score < self.settings.low_score_threshold:
            risks.append(RISK_LOW_SCORE)

        return risks

    def get_validation_statistics(self) -> Dict:
        with self._stats_lock:
            return {
                'total_validations': self.total_validations,
                'valid_validations': self.valid_validations,
                'channel_failures': dict(self.channel_failures),
                'registered_zones': len(self.zones)
            }
