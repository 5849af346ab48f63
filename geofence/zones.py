"""
Registered attendance zones (geofences) and their known-good auxiliary identifiers.
"""
import json
from dataclasses import dataclass, field, asdict
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from utils.errors import ConfigurationError
from utils.geo import haversine_distance, is_within_radius
from utils.logger import logger


@dataclass
class AttendanceZone:
    """A geofence: centre, radius and the infrastructure expected inside it."""
    zone_id: str
    name: str
    latitude: float
    longitude: float
    radius_meters: float = 100.0
    is_active: bool = True
    wifi_networks: List[str] = field(default_factory=list)
    bluetooth_devices: List[str] = field(default_factory=list)
    cell_towers: List[str] = field(default_factory=list)

    def distance_to(self, latitude: float, longitude: float) -> float:
        return haversine_distance(latitude, longitude, self.latitude, self.longitude)

    def contains(self, latitude: float, longitude: float) -> bool:
        return is_within_radius(latitude, longitude, self.latitude, self.longitude, self.radius_meters)

    def to_dict(self) -> Dict:
        return asdict(self)


# Reference site (SMKN 1 Kendal) used when no zones file is configured
REFERENCE_ZONE = AttendanceZone(
    zone_id="smkn1-kendal",
    name="SMKN 1 Kendal",
    latitude=-6.9174639,
    longitude=110.2024914,
    radius_meters=100.0,
    wifi_networks=['SMKN1KENDAL-STAFF', 'SMKN1KENDAL-SISWA', 'SMKN1KENDAL-GUEST', 'SMKN1KENDAL-LAB'],
    bluetooth_devices=['SMKN1-PRINTER-01', 'SMKN1-SPEAKER-AULA', 'SMKN1-PROYEKTOR-01'],
    cell_towers=['510-10-12345', '510-10-12346', '510-10-12347']
)


class ZoneRegistry:
    """In-memory registry of attendance zones."""

    def __init__(self, zones: List[AttendanceZone] = None):
        self._zones: Dict[str, AttendanceZone] = {}
        for zone in zones or []:
            self.add(zone)

    def add(self, zone: AttendanceZone):
        if zone.radius_meters <= 0:
            raise ConfigurationError(f"Zone {zone.zone_id} must have a positive radius")
        self._zones[zone.zone_id] = zone

    def remove(self, zone_id: str) -> bool:
        return self._zones.pop(zone_id, None) is not None

    def get(self, zone_id: str) -> Optional[AttendanceZone]:
        return self._zones.get(zone_id)

    def all(self) -> List[AttendanceZone]:
        return list(self._zones.values())

    def active_zones(self) -> List[AttendanceZone]:
        return [zone for zone in self._zones.values() if zone.is_active]

    def find_containing(self, latitude: float, longitude: float) -> Optional[AttendanceZone]:
        """First active zone whose radius contains the point."""
        for zone in self.active_zones():
            if zone.contains(latitude, longitude):
                return zone
        return None

    def nearest(self, latitude: float, longitude: float) -> Tuple[AttendanceZone, float]:
        """Closest active zone and its distance in meters."""
        zones = self.active_zones()
        if not zones:
            raise ConfigurationError("No active attendance zone is registered")
        distances = [(zone, zone.distance_to(latitude, longitude)) for zone in zones]
        return min(distances, key=lambda item: item[1])

    def reference_points(self) -> List[Tuple[float, float]]:
        """Exact published centres of every registered zone."""
        return [(zone.latitude, zone.longitude) for zone in self._zones.values()]

    def __len__(self):
        return len(self._zones)

    @classmethod
    def from_file(cls, path: str) -> "ZoneRegistry":
        """Load zones from a JSON file: a list of zone objects, or {"zones": [...]}."""
        try:
            with open(path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Failed to load zones file {path}: {e}")
            raise ConfigurationError(f"Could not load zones from {path}: {e}") from e

        entries = data.get('zones', []) if isinstance(data, dict) else data
        try:
            zones = [AttendanceZone(**entry) for entry in entries]
        except TypeError as e:
            raise ConfigurationError(f"Invalid zone entry in {path}: {e}") from e

        logger.info(f"Loaded {len(zones)} attendance zones from {path}")
        return cls(zones)

    @classmethod
    def from_config(cls, zones_file: str = "") -> "ZoneRegistry":
        if zones_file and Path(zones_file).exists():
            return cls.from_file(zones_file)
        if zones_file:
            logger.warning(f"Zones file not found: {zones_file}, using reference zone")
        return cls([AttendanceZone(**REFERENCE_ZONE.to_dict())])
