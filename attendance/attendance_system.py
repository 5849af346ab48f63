import json
import sqlite3
import datetime
import threading
from contextlib import contextmanager
from typing import Dict, List, Optional

from attendance.models import AttendanceEvent, LocationReading
from utils.errors import DuplicateEvent, NoCheckInError, StorageError
from utils.logger import logger

_EVENT_COLUMNS = '''
    id, subject_id, date, check_in_at,
    check_in_latitude, check_in_longitude, check_in_accuracy, check_in_captured_at,
    check_out_at, check_out_latitude, check_out_longitude, check_out_accuracy, check_out_captured_at,
    zone_id, status, device_fingerprint, validation_metadata
'''


class AttendanceStore:
    """SQLite store of self-service attendance events, one row per subject per date."""

    def __init__(self, db_path: str = "attendance.db"):
        self.db_path = db_path
        self._memory_conn: Optional[sqlite3.Connection] = None
        self._memory_lock = threading.Lock()
        if db_path == ":memory:":
            self._memory_conn = sqlite3.connect(":memory:", check_same_thread=False)
        self.init_database()

    @contextmanager
    def _connection(self):
        """Yield a connection; the `with conn` block commits or rolls back."""
        if self._memory_conn is not None:
            with self._memory_lock:
                yield self._memory_conn
            return

        conn = sqlite3.connect(self.db_path, timeout=10)
        try:
            yield conn
        finally:
            conn.close()

    def init_database(self):
        """Initialize SQLite database with the attendance table."""
        try:
            with self._connection() as conn, conn:
                conn.execute('''
                    CREATE TABLE IF NOT EXISTS self_attendance (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        subject_id TEXT NOT NULL,
                        date DATE NOT NULL,
                        check_in_at TEXT NOT NULL,
                        check_in_latitude REAL NOT NULL,
                        check_in_longitude REAL NOT NULL,
                        check_in_accuracy REAL,
                        check_in_captured_at TEXT,
                        check_out_at TEXT,
                        check_out_latitude REAL,
                        check_out_longitude REAL,
                        check_out_accuracy REAL,
                        check_out_captured_at TEXT,
                        zone_id TEXT,
                        status TEXT NOT NULL DEFAULT 'present' CHECK (status IN ('present', 'late')),
                        device_fingerprint TEXT,
                        validation_metadata TEXT,
                        created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
                        updated_at DATETIME DEFAULT CURRENT_TIMESTAMP,
                        UNIQUE(subject_id, date)
                    )
                ''')
            logger.debug(f"Attendance database initialized: {self.db_path}")
        except sqlite3.Error as e:
            logger.error(f"Error initializing attendance database: {e}")
            raise StorageError(f"Could not initialize attendance database: {e}") from e

    def save_event(self, event: AttendanceEvent) -> AttendanceEvent:
        """
        Insert an event. The UNIQUE(subject_id, date) constraint makes this an
        atomic insert-if-absent: a concurrent second insert raises DuplicateEvent.
        """
        try:
            with self._connection() as conn, conn:
                cursor = conn.execute('''
                    INSERT INTO self_attendance
                    (subject_id, date, check_in_at,
                     check_in_latitude, check_in_longitude, check_in_accuracy, check_in_captured_at,
                     zone_id, status, device_fingerprint, validation_metadata)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ''', (
                    event.subject_id,
                    event.date.isoformat(),
                    event.check_in_at.isoformat(),
                    event.location.latitude,
                    event.location.longitude,
                    event.location.accuracy_meters,
                    event.location.captured_at.isoformat(),
                    event.zone_id,
                    event.status,
                    event.device_fingerprint,
                    json.dumps(event.validation_metadata, default=str)
                ))
                event.event_id = cursor.lastrowid
        except sqlite3.IntegrityError as e:
            if "UNIQUE" not in str(e):
                logger.error(f"Rejected attendance row for {event.subject_id}: {e}")
                raise StorageError(f"Invalid attendance event: {e}") from e
            logger.warning(f"Duplicate attendance for {event.subject_id} on {event.date}")
            raise DuplicateEvent(event.subject_id, event.date) from e
        except sqlite3.Error as e:
            logger.error(f"Error saving attendance event: {e}")
            raise StorageError(f"Could not save attendance event: {e}") from e

        logger.info(f"Saved check-in for {event.subject_id} on {event.date} (status: {event.status})")
        return event

    def get_event(self, subject_id: str, day: datetime.date) -> Optional[AttendanceEvent]:
        """Get the event for a subject on a date, if any."""
        try:
            with self._connection() as conn:
                row = conn.execute(
                    f'SELECT {_EVENT_COLUMNS} FROM self_attendance WHERE subject_id = ? AND date = ?',
                    (subject_id, day.isoformat())
                ).fetchone()
        except sqlite3.Error as e:
            logger.error(f"Error reading attendance event: {e}")
            raise StorageError(f"Could not read attendance event: {e}") from e

        return self._row_to_event(row) if row else None

    def record_check_out(self, subject_id: str, day: datetime.date, at: datetime.datetime,
                         location: LocationReading) -> AttendanceEvent:
        """Set the check-out of the day's event with a conditional update."""
        try:
            with self._connection() as conn, conn:
                cursor = conn.execute('''
                    UPDATE self_attendance
                    SET check_out_at = ?, check_out_latitude = ?, check_out_longitude = ?,
                        check_out_accuracy = ?, check_out_captured_at = ?,
                        updated_at = CURRENT_TIMESTAMP
                    WHERE subject_id = ? AND date = ? AND check_out_at IS NULL
                ''', (
                    at.isoformat(),
                    location.latitude,
                    location.longitude,
                    location.accuracy_meters,
                    location.captured_at.isoformat(),
                    subject_id,
                    day.isoformat()
                ))
                updated = cursor.rowcount
        except sqlite3.Error as e:
            logger.error(f"Error recording check-out: {e}")
            raise StorageError(f"Could not record check-out: {e}") from e

        event = self.get_event(subject_id, day)
        if not updated:
            if event is None:
                raise NoCheckInError(subject_id, day)
            raise DuplicateEvent(subject_id, day, f"Check-out already recorded for {subject_id} on {day}")

        logger.info(f"Recorded check-out for {subject_id} on {day}")
        return event

    def load_history(self, subject_id: str, since_date: datetime.date,
                     until_date: Optional[datetime.date] = None) -> List[AttendanceEvent]:
        """Get events for a subject from since_date (inclusive), oldest first."""
        query = f'SELECT {_EVENT_COLUMNS} FROM self_attendance WHERE subject_id = ? AND date >= ?'
        params = [subject_id, since_date.isoformat()]
        if until_date is not None:
            query += ' AND date <= ?'
            params.append(until_date.isoformat())
        query += ' ORDER BY date ASC'

        try:
            with self._connection() as conn:
                rows = conn.execute(query, params).fetchall()
        except sqlite3.Error as e:
            logger.error(f"Error loading attendance history: {e}")
            raise StorageError(f"Could not load attendance history: {e}") from e

        return [self._row_to_event(row) for row in rows]

    def get_daily_attendance(self, day: Optional[datetime.date] = None) -> List[Dict]:
        """Get the attendance summary for one date."""
        if not day:
            day = datetime.date.today()
        elif isinstance(day, str):
            day = datetime.datetime.strptime(day, '%Y-%m-%d').date()

        try:
            with self._connection() as conn:
                rows = conn.execute('''
                    SELECT subject_id, check_in_at, check_out_at, status, zone_id
                    FROM self_attendance
                    WHERE date = ?
                    ORDER BY check_in_at
                ''', (day.isoformat(),)).fetchall()
        except sqlite3.Error as e:
            logger.error(f"Error getting daily attendance: {e}")
            raise StorageError(f"Could not read daily attendance: {e}") from e

        return [
            {
                "subject_id": row[0],
                "check_in_at": row[1],
                "check_out_at": row[2],
                "status": row[3],
                "zone_id": row[4]
            }
            for row in rows
        ]

    def delete_older_than(self, days: int, today: Optional[datetime.date] = None) -> int:
        """Remove events older than the retention period. Returns rows deleted."""
        cutoff = (today or datetime.date.today()) - datetime.timedelta(days=days)
        try:
            with self._connection() as conn, conn:
                deleted = conn.execute('DELETE FROM self_attendance WHERE date < ?',
                                       (cutoff.isoformat(),)).rowcount
        except sqlite3.Error as e:
            logger.error(f"Error cleaning up attendance data: {e}")
            raise StorageError(f"Could not clean up attendance data: {e}") from e

        if deleted:
            logger.info(f"Cleaned up {deleted} attendance events older than {cutoff}")
        return deleted

    @staticmethod
    def _row_to_event(row) -> AttendanceEvent:
        (event_id, subject_id, day, check_in_at,
         in_lat, in_lon, in_acc, in_captured,
         check_out_at, out_lat, out_lon, out_acc, out_captured,
         zone_id, status, fingerprint, metadata) = row

        check_in_time = datetime.datetime.fromisoformat(check_in_at)
        location = LocationReading(
            latitude=in_lat,
            longitude=in_lon,
            accuracy_meters=in_acc if in_acc is not None else 0.0,
            captured_at=datetime.datetime.fromisoformat(in_captured) if in_captured else check_in_time
        )

        check_out_location = None
        check_out_time = None
        if check_out_at:
            check_out_time = datetime.datetime.fromisoformat(check_out_at)
            check_out_location = LocationReading(
                latitude=out_lat,
                longitude=out_lon,
                accuracy_meters=out_acc if out_acc is not None else 0.0,
                captured_at=datetime.datetime.fromisoformat(out_captured) if out_captured else check_out_time
            )

        return AttendanceEvent(
            event_id=event_id,
            subject_id=subject_id,
            date=datetime.date.fromisoformat(day),
            check_in_at=check_in_time,
            check_out_at=check_out_time,
            location=location,
            check_out_location=check_out_location,
            zone_id=zone_id,
            status=status,
            device_fingerprint=fingerprint,
            validation_metadata=json.loads(metadata) if metadata else {}
        )
