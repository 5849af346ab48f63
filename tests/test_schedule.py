from datetime import date, datetime, time

import pytest

from attendance.models import STATUS_LATE, STATUS_PRESENT
from attendance.schedule import AttendanceSchedule, ScheduleBook

MONDAY = date(2024, 1, 8)
SATURDAY = date(2024, 1, 13)


def at(day, hour, minute):
    return datetime(day.year, day.month, day.day, hour, minute)


@pytest.fixture
def book():
    return ScheduleBook.school_week(late_threshold_minutes=10)


def test_school_week_covers_monday_to_friday(book):
    assert len(book) == 5
    assert book.for_date(MONDAY).day_of_week == 0
    assert book.for_date(SATURDAY) is None


def test_late_cutoff_includes_threshold(book):
    schedule = book.for_date(MONDAY)
    assert schedule.late_after == time(7, 25)
    assert not schedule.is_late(at(MONDAY, 7, 25))
    assert schedule.is_late(at(MONDAY, 7, 26))


def test_status_for(book):
    assert book.status_for(at(MONDAY, 6, 45)) == STATUS_PRESENT
    assert book.status_for(at(MONDAY, 8, 0)) == STATUS_LATE
    assert book.status_for(at(SATURDAY, 11, 0)) == STATUS_PRESENT


def test_windows(book):
    schedule = book.for_date(MONDAY)
    assert schedule.can_check_in(at(MONDAY, 6, 0))
    assert not schedule.can_check_in(at(MONDAY, 5, 59))
    assert not schedule.can_check_in(at(MONDAY, 9, 0))
    assert schedule.can_check_out(at(MONDAY, 15, 0))
    assert not schedule.can_check_out(at(MONDAY, 13, 0))


def test_add_replaces_weekday_schedule(book):
    book.add(AttendanceSchedule("monday-short", 0, time(7, 0), time(8, 0), time(11, 0), time(12, 0)))
    assert book.for_date(MONDAY).name == "monday-short"
    assert len(book) == 5


def test_invalid_weekday():
    with pytest.raises(ValueError):
        ScheduleBook([AttendanceSchedule("bad", 7, time(6, 0), time(7, 0), time(14, 0), time(15, 0))])
