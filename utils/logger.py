"""
Logging utilities for the attendance integrity engine.
Includes a dedicated attendance decision log and an in-memory buffer of recent decisions.
"""
import logging
import json
import queue
import threading
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional

class IntegrityLogger:
    """Logger for check-in decisions and pattern analyses with proper error handling."""

    def __init__(self, name: str = "integrity"):
        self.logger = logging.getLogger(name)
        self._setup_logger()

        # Attendance-specific logging
        self.attendance_logger = self._setup_attendance_logger()
        self.attendance_events = []
        self.max_attendance_events = self._max_recent_events()
        self._events_lock = threading.Lock()

        # Async logging queue for performance
        self.log_queue = queue.Queue(maxsize=1000)
        self.log_worker_thread = threading.Thread(target=self._log_worker, daemon=True)
        self.log_worker_thread.start()

        self.logger.debug("Integrity logger initialized successfully")

    @staticmethod
    def _max_recent_events() -> int:
        try:
            from utils.config import config
            return config.logging.max_recent_events
        except ImportError:
            return 1000

    def _setup_logger(self):
        """Setup logging handlers with proper error handling."""
        # Import config here to avoid circular imports
        try:
            from utils.config import config
            log_level = getattr(logging, config.logging.log_level.upper(), logging.INFO)
            output_dir = config.logging.output_dir
        except ImportError:
            log_level = logging.INFO
            output_dir = "integrity_output"

        # Clear existing handlers to avoid duplicates
        self.logger.handlers.clear()
        self.logger.setLevel(log_level)

        formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        )

        console_handler = logging.StreamHandler()
        console_handler.setFormatter(formatter)
        console_handler.setLevel(log_level)
        self.logger.addHandler(console_handler)

        try:
            log_dir = Path(output_dir) / "logs"
            log_dir.mkdir(parents=True, exist_ok=True)

            file_handler = logging.FileHandler(log_dir / "integrity.log", encoding='utf-8')
            file_handler.setFormatter(formatter)
            file_handler.setLevel(log_level)
            self.logger.addHandler(file_handler)
        except OSError as e:
            self.logger.warning(f"Could not setup file logging: {e}")

        # Prevent propagation to root logger
        self.logger.propagate = False

    def _setup_attendance_logger(self) -> Optional[logging.Logger]:
        """Setup separate logger for attendance decisions."""
        try:
            from utils.config import config
            if not config.logging.enable_attendance_log:
                return None
            log_file = config.logging.attendance_log_file
        except ImportError:
            log_file = "integrity_output/logs/attendance.log"

        attendance_logger = logging.getLogger("integrity.attendance")
        attendance_logger.handlers.clear()
        attendance_logger.setLevel(logging.INFO)
        attendance_logger.propagate = False

        formatter = logging.Formatter(
            '%(asctime)s - ATTENDANCE - %(levelname)s - %(message)s'
        )

        try:
            log_file_path = Path(log_file)
            log_file_path.parent.mkdir(parents=True, exist_ok=True)

            attendance_file_handler = logging.FileHandler(log_file_path, encoding='utf-8')
            attendance_file_handler.setFormatter(formatter)
            attendance_logger.addHandler(attendance_file_handler)
        except OSError as e:
            self.logger.warning(f"Could not setup attendance file logging: {e}")

        return attendance_logger

    def set_level(self, level: str):
        """Change the level of the main logger and its handlers."""
        log_level = getattr(logging, level.upper(), logging.INFO)
        self.logger.setLevel(log_level)
        for handler in self.logger.handlers:
            handler.setLevel(log_level)

    def _log_worker(self):
        """Background worker for async logging."""
        while True:
            try:
                log_entry = self.log_queue.get(timeout=1.0)
            except queue.Empty:
                continue
            if log_entry is None:  # Shutdown signal
                break
            level, message, kwargs = log_entry
            getattr(self.logger, level)(message, **kwargs)

    def _async_log(self, level: str, message: str, **kwargs):
        """Add log entry to async queue."""
        try:
            self.log_queue.put_nowait((level, message, kwargs))
        except queue.Full:
            # If queue is full, log synchronously
            getattr(self.logger, level)(message, **kwargs)

    def debug(self, message: str, **kwargs):
        self._async_log('debug', message, **kwargs)

    def info(self, message: str, **kwargs):
        self._async_log('info', message, **kwargs)

    def warning(self, message: str, **kwargs):
        self._async_log('warning', message, **kwargs)

    def error(self, message: str, **kwargs):
        """Log error message synchronously for immediate visibility."""
        self.logger.error(message, **kwargs)

    def critical(self, message: str, **kwargs):
        self.logger.critical(message, **kwargs)

    def log_attendance_event(self, subject_id: str, event_type: str = "CHECK_IN",
                             details: Dict = None, confidence: float = 0.0):
        """Record a check-in/check-out/analysis decision for a subject."""
        timestamp = datetime.now()
        event_details = details or {}

        attendance_event = {
            'timestamp': timestamp.isoformat(),
            'subject_id': subject_id,
            'event_type': event_type,
            'confidence': confidence,
            'details': event_details
        }

        # Thread-safe addition to events list
        with self._events_lock:
            self.attendance_events.append(attendance_event)
            if len(self.attendance_events) > self.max_attendance_events:
                self.attendance_events = self.attendance_events[-self.max_attendance_events:]

        message = f"Subject: {subject_id} | Event: {event_type} | Confidence: {confidence:.2f}"
        if event_details:
            message += f" | Details: {json.dumps(event_details, default=str)}"

        if self.attendance_logger:
            self.attendance_logger.info(message)

        # Also log rejections and recorded events to main log
        if event_type in ("CHECK_IN_RECORDED", "CHECK_OUT_RECORDED", "REJECTED", "RATE_LIMITED"):
            self.info(f"ATTENDANCE - {message}")

    def get_recent_attendance_events(self, hours: int = 24) -> List[Dict]:
        """Get recent attendance decisions within specified hours."""
        cutoff_time = datetime.now().timestamp() - (hours * 3600)

        with self._events_lock:
            return [
                event.copy() for event in self.attendance_events
                if datetime.fromisoformat(event['timestamp']).timestamp() >= cutoff_time
            ]

    def get_attendance_summary(self, hours: int = 24) -> Dict:
        """Get decision counts per subject and per event type for the period."""
        recent_events = self.get_recent_attendance_events(hours)

        subject_counts = {}
        event_types = {}

        for event in recent_events:
            subject_id = event['subject_id']
            event_type = event['event_type']

            if subject_id not in subject_counts:
                subject_counts[subject_id] = 0
            if event_type == "CHECK_IN_RECORDED":
                subject_counts[subject_id] += 1

            event_types[event_type] = event_types.get(event_type, 0) + 1

        return {
            'time_period_hours': hours,
            'total_events': len(recent_events),
            'unique_subjects': len(subject_counts),
            'subject_check_in_counts': subject_counts,
            'event_type_counts': event_types,
            'last_updated': datetime.now().isoformat()
        }

    def shutdown(self):
        """Graceful shutdown of logging system."""
        self.info("Shutting down integrity logger")

        # Signal log worker to stop
        self.log_queue.put(None)

        if self.log_worker_thread.is_alive():
            self.log_worker_thread.join(timeout=5.0)

        for handler in self.logger.handlers:
            handler.flush()

# Global logger instance; file handler failures degrade to console-only logging
logger = IntegrityLogger()
