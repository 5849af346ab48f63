"""
Per-weekday attendance schedules: check-in and check-out windows plus the late threshold.
"""
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Dict, Iterable, Optional

from attendance.models import STATUS_LATE, STATUS_PRESENT


@dataclass(frozen=True)
class AttendanceSchedule:
    """Schedule for one weekday (0 = Monday)."""
    name: str
    day_of_week: int
    check_in_start: time
    check_in_end: time
    check_out_start: time
    check_out_end: time
    late_threshold_minutes: int = 0

    @property
    def late_after(self) -> time:
        """Latest check-in time still counted as on time."""
        cutoff = datetime.combine(date.min, self.check_in_end) + timedelta(minutes=self.late_threshold_minutes)
        return cutoff.time()

    def can_check_in(self, moment: datetime) -> bool:
        return self.check_in_start <= moment.time() <= self.late_after

    def can_check_out(self, moment: datetime) -> bool:
        return self.check_out_start <= moment.time() <= self.check_out_end

    def is_late(self, check_in_at: datetime) -> bool:
        return check_in_at.time() > self.late_after


class ScheduleBook:
    """Lookup of schedules by weekday."""

    def __init__(self, schedules: Iterable[AttendanceSchedule] = ()):
        self._by_weekday: Dict[int, AttendanceSchedule] = {}
        for schedule in schedules:
            self.add(schedule)

    def add(self, schedule: AttendanceSchedule):
        if not 0 <= schedule.day_of_week <= 6:
            raise ValueError(f"day_of_week must be 0-6, got {schedule.day_of_week}")
        self._by_weekday[schedule.day_of_week] = schedule

    def for_date(self, day: date) -> Optional[AttendanceSchedule]:
        return self._by_weekday.get(day.weekday())

    def status_for(self, check_in_at: datetime) -> str:
        """present, or late when check-in falls after the day's late cutoff."""
        schedule = self.for_date(check_in_at.date())
        if schedule and schedule.is_late(check_in_at):
            return STATUS_LATE
        return STATUS_PRESENT

    def __len__(self):
        return len(self._by_weekday)

    @classmethod
    def school_week(cls, check_in_start: time = time(6, 0), check_in_end: time = time(7, 15),
                    check_out_start: time = time(14, 0), check_out_end: time = time(17, 0),
                    late_threshold_minutes: int = 0) -> "ScheduleBook":
        """Same schedule Monday to Friday."""
        return cls(
            AttendanceSchedule(
                name=f"weekday-{day}",
                day_of_week=day,
                check_in_start=check_in_start,
                check_in_end=check_in_end,
                check_out_start=check_out_start,
                check_out_end=check_out_end,
                late_threshold_minutes=late_threshold_minutes
            )
            for day in range(5)
        )
