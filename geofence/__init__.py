"""Geofence module: registered zones and the multi-signal validator."""
from .zones import AttendanceZone, ZoneRegistry, REFERENCE_ZONE
from .validator import GeofenceValidator, GeofenceValidation, GpsScore, SignalScore, OverallScore
__all__ = ['AttendanceZone', 'ZoneRegistry', 'REFERENCE_ZONE',
           'GeofenceValidator', 'GeofenceValidation', 'GpsScore', 'SignalScore', 'OverallScore']
