"""
Configuration settings for the attendance integrity engine.
Every threshold is a configurable default, overridable from environment variables.
"""
import os
import logging
from dataclasses import dataclass, asdict
from typing import Tuple
from pathlib import Path

# Configure logging for config module
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

@dataclass
class GeofenceConfig:
    """Multi-signal geofence scoring configuration."""
    gps_weight: float = 0.40
    wifi_weight: float = 0.25
    bluetooth_weight: float = 0.20
    cellular_weight: float = 0.15
    wifi_match_weight: int = 25  # up to 4 networks
    bluetooth_match_weight: int = 33  # up to 3 devices
    cellular_match_weight: int = 33  # up to 3 towers
    min_valid_score: int = 70
    low_score_threshold: int = 50
    suspicious_accuracy_meters: float = 5.0

@dataclass
class GuardConfig:
    """Spoofing guard and rate limiter configuration."""
    history_size: int = 10
    suspicious_accuracy_meters: float = 5.0
    accuracy_penalty: int = 20
    max_speed_mps: float = 50.0  # ~180 km/h
    teleport_penalty: int = 40
    suspicious_pattern_penalty: int = 30
    suspicious_radius_meters: float = 1.0
    zero_run_length: int = 5
    min_confidence: int = 60
    reference_points: Tuple[Tuple[float, float], ...] = ((0.0, 0.0),)
    flag_zone_centers: bool = False  # treat exact zone centres as suspicious

    # Rate limiting
    rate_window_ms: int = 3600000  # 1 hour
    max_attempts: int = 5
    min_interval_ms: int = 30000  # 30 seconds

@dataclass
class PatternConfig:
    """Longitudinal pattern analysis configuration."""
    window_days: int = 30
    time_stddev_minutes: float = 30.0
    cluster_radius_meters: float = 10.0
    max_clusters: int = 3
    location_spread_meters: float = 50.0
    max_devices: int = 2
    min_attendance_rate: float = 80.0
    max_late_frequency: float = 20.0
    low_risk_below: float = 30.0
    medium_risk_below: float = 70.0

@dataclass
class SensorConfig:
    """Device location sensor configuration."""
    timeout_ms: int = 15000
    max_staleness_ms: int = 60000
    max_clock_skew_ms: int = 5000

@dataclass
class AttendanceConfig:
    """Attendance storage and schedule configuration."""
    db_path: str = "attendance.db"
    zones_file: str = ""
    enforce_windows: bool = False
    retention_days: int = 365
    timezone: str = "Asia/Jakarta"

@dataclass
class LoggingConfig:
    """Logging configuration."""
    log_level: str = "INFO"
    output_dir: str = "integrity_output"
    attendance_log_file: str = "integrity_output/logs/attendance.log"
    enable_attendance_log: bool = True
    max_recent_events: int = 1000

@dataclass
class ApiConfig:
    """HTTP API configuration."""
    host: str = "0.0.0.0"
    port: int = 8080
    subject_header: str = "X-Subject-Id"
    cors_origins: Tuple[str, ...] = ("*",)

class Config:
    """Main configuration class with proper error handling and validation."""

    def __init__(self, load_environment: bool = True, create_directories: bool = True):
        self.geofence = GeofenceConfig()
        self.guard = GuardConfig()
        self.pattern = PatternConfig()
        self.sensor = SensorConfig()
        self.attendance = AttendanceConfig()
        self.logging = LoggingConfig()
        self.api = ApiConfig()

        if load_environment:
            self._load_environment_variables()

        self._validate_configuration()

        if create_directories:
            self._create_directories()

    def _load_environment_variables(self):
        """Load configuration from environment variables, keeping defaults on malformed values."""
        numeric_overrides = [
            ("GEOFENCE_MIN_SCORE", self.geofence, "min_valid_score", int),
            ("GEOFENCE_LOW_SCORE", self.geofence, "low_score_threshold", int),
            ("GUARD_HISTORY_SIZE", self.guard, "history_size", int),
            ("GUARD_MAX_SPEED_MPS", self.guard, "max_speed_mps", float),
            ("GUARD_MIN_CONFIDENCE", self.guard, "min_confidence", int),
            ("RATE_LIMIT_WINDOW_MS", self.guard, "rate_window_ms", int),
            ("RATE_LIMIT_MAX_ATTEMPTS", self.guard, "max_attempts", int),
            ("RATE_LIMIT_MIN_INTERVAL_MS", self.guard, "min_interval_ms", int),
            ("PATTERN_WINDOW_DAYS", self.pattern, "window_days", int),
            ("PATTERN_TIME_STDDEV_MINUTES", self.pattern, "time_stddev_minutes", float),
            ("PATTERN_CLUSTER_RADIUS_METERS", self.pattern, "cluster_radius_meters", float),
            ("PATTERN_MIN_ATTENDANCE_RATE", self.pattern, "min_attendance_rate", float),
            ("PATTERN_MAX_LATE_FREQUENCY", self.pattern, "max_late_frequency", float),
            ("SENSOR_TIMEOUT_MS", self.sensor, "timeout_ms", int),
            ("SENSOR_MAX_STALENESS_MS", self.sensor, "max_staleness_ms", int),
            ("SENSOR_MAX_CLOCK_SKEW_MS", self.sensor, "max_clock_skew_ms", int),
            ("RETENTION_DAYS", self.attendance, "retention_days", int),
            ("API_PORT", self.api, "port", int),
        ]

        for env_name, section, attr, cast in numeric_overrides:
            raw = os.getenv(env_name)
            if raw is None or raw == "":
                continue
            try:
                setattr(section, attr, cast(raw))
            except ValueError:
                logger.warning(f"Invalid value for {env_name}: {raw!r}, using default {getattr(section, attr)}")

        self.attendance.db_path = os.getenv("ATTENDANCE_DB", self.attendance.db_path)
        self.attendance.zones_file = os.getenv("ZONES_FILE", self.attendance.zones_file)
        self.attendance.timezone = os.getenv("ATTENDANCE_TIMEZONE", self.attendance.timezone)
        self.attendance.enforce_windows = os.getenv("ENFORCE_WINDOWS", "false").lower() == "true"
        self.guard.flag_zone_centers = os.getenv("GUARD_FLAG_ZONE_CENTERS", "false").lower() == "true"
        self.api.host = os.getenv("API_HOST", self.api.host)

        output_dir = os.getenv("INTEGRITY_OUTPUT_DIR")
        if output_dir:
            self.logging.output_dir = output_dir
            self.logging.attendance_log_file = os.path.join(output_dir, "logs", "attendance.log")

        # Logging
        log_level = os.getenv("LOG_LEVEL", self.logging.log_level).upper()
        if log_level in ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]:
            self.logging.log_level = log_level
        else:
            logger.warning(f"Invalid log level: {log_level}, using default")

    def _validate_configuration(self):
        """Validate configuration values."""
        errors = []

        weights = (self.geofence.gps_weight + self.geofence.wifi_weight +
                   self.geofence.bluetooth_weight + self.geofence.cellular_weight)
        if abs(weights - 1.0) > 1e-6:
            errors.append("Geofence signal weights must sum to 1.0")

        if not 0 <= self.geofence.min_valid_score <= 100:
            errors.append("Geofence minimum score must be between 0 and 100")

        if not 0 <= self.guard.min_confidence <= 100:
            errors.append("Guard minimum confidence must be between 0 and 100")

        if self.guard.history_size < 1:
            errors.append("Location history size must be positive")

        if self.guard.max_speed_mps <= 0:
            errors.append("Maximum plausible speed must be positive")

        if self.guard.max_attempts < 1:
            errors.append("Rate limit attempts must be positive")

        if self.guard.min_interval_ms < 0 or self.guard.rate_window_ms <= 0:
            errors.append("Rate limit intervals must be non-negative and the window positive")

        if self.pattern.window_days < 1:
            errors.append("Pattern window must be at least one day")

        if self.pattern.cluster_radius_meters <= 0:
            errors.append("Cluster radius must be positive")

        if not self.pattern.low_risk_below <= self.pattern.medium_risk_below:
            errors.append("Low risk cutoff must not exceed medium risk cutoff")

        if self.sensor.timeout_ms <= 0 or self.sensor.max_staleness_ms < 0 or self.sensor.max_clock_skew_ms < 0:
            errors.append("Sensor timeout must be positive, staleness and clock skew non-negative")

        if self.attendance.retention_days < 1:
            errors.append("Retention days must be positive")

        if not 0 < self.api.port < 65536:
            errors.append("API port must be between 1 and 65535")

        if errors:
            error_msg = "Configuration validation errors:\n" + "\n".join(f"- {error}" for error in errors)
            logger.error(error_msg)
            raise ValueError(error_msg)

        logger.debug("Configuration validation passed")

    def _create_directories(self):
        """Create required directories if they don't exist."""
        directories = [
            self.logging.output_dir,
            os.path.join(self.logging.output_dir, "logs"),
            os.path.dirname(self.logging.attendance_log_file),
        ]

        db_dir = os.path.dirname(self.attendance.db_path)
        if db_dir:
            directories.append(db_dir)

        for directory in directories:
            if not directory:
                continue
            try:
                Path(directory).mkdir(parents=True, exist_ok=True)
                logger.debug(f"Created/verified directory: {directory}")
            except OSError as e:
                logger.warning(f"Could not create directory {directory}: {e}")

    def get_effective_config(self) -> dict:
        """Get complete effective configuration as dictionary."""
        return {
            'geofence': asdict(self.geofence),
            'guard': asdict(self.guard),
            'pattern': asdict(self.pattern),
            'sensor': asdict(self.sensor),
            'attendance': asdict(self.attendance),
            'logging': asdict(self.logging),
            'api': asdict(self.api),
        }

# Global configuration instance with error handling
try:
    config = Config()
    logger.debug("Configuration initialized successfully")
except ValueError as e:
    logger.error(f"Failed to initialize configuration: {e}")
    config = Config(load_environment=False)
    logger.warning("Using fallback configuration")
