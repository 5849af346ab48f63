"""Device sensor ports: location fix and auxiliary signal scans."""
from .location import (LocationSensor, ReportedLocationSensor, StaticLocationSensor, DeniedLocationSensor,
                       read_location, validate_reading)
from .signals import (SignalChannel, SignalScanner, StaticSignalScanner, ReportedSignalScanner,
                      UnavailableSignalScanner)
__all__ = ['LocationSensor', 'ReportedLocationSensor', 'StaticLocationSensor', 'DeniedLocationSensor',
           'read_location', 'validate_reading',
           'SignalChannel', 'SignalScanner', 'StaticSignalScanner', 'ReportedSignalScanner',
           'UnavailableSignalScanner']
