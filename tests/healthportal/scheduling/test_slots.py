from datetime import date, time
from types import SimpleNamespace

import pytest

from healthportal.scheduling.errors import InvalidAvailability, InvalidTimeFormat
from healthportal.scheduling.slots import (
    day_of_week,
    generate_slots,
    normalize_clock,
    parse_clock,
    slots_for_date,
)


def _window(day: str, start: str, end: str, is_active: bool = True) -> SimpleNamespace:
    return SimpleNamespace(day_of_week=day, start_time=start, end_time=end, is_active=is_active)


def test_generate_slots_full_working_day() -> None:
    slots = generate_slots('09:00', '17:00', 30)

    assert len(slots) == 16
    assert slots[0] == '09:00'
    assert slots[-1] == '16:30'
    assert slots == generate_slots('09:00', '17:00', 30)


def test_generate_slots_keeps_last_start_before_window_end() -> None:
    assert generate_slots('09:00', '10:10', 30) == ['09:00', '09:30', '10:00']


def test_generate_slots_accepts_unpadded_hours() -> None:
    assert generate_slots('9:00', '10:00') == ['09:00', '09:30']


@pytest.mark.parametrize(
    ('start', 'end', 'increment', 'error'),
    [
        ('10:00', '09:00', 30, InvalidAvailability),
        ('09:00', '09:00', 30, InvalidAvailability),
        ('09:00', '10:00', 0, ValueError),
        ('09:00', '09:20', 30, ValueError),
        ('9am', '10:00', 30, InvalidTimeFormat),
        ('09:00', '24:00', 30, InvalidTimeFormat),
    ],
)
def test_generate_slots_rejects_invalid_input(start: str, end: str, increment: int, error: type) -> None:
    with pytest.raises(error):
        generate_slots(start, end, increment)


def test_parse_and_normalize_clock() -> None:
    assert parse_clock(' 7:05 ') == time(7, 5)
    assert normalize_clock('7:05') == '07:05'

    with pytest.raises(InvalidTimeFormat):
        parse_clock('07:60')


def test_day_of_week_uses_monday_first_names() -> None:
    assert day_of_week(date(2030, 1, 7)) == 'monday'
    assert day_of_week(date(2030, 1, 13)) == 'sunday'


def test_slots_for_date_unions_and_dedupes_overlapping_windows() -> None:
    windows = [
        _window('monday', '09:00', '10:00'),
        _window('monday', '09:30', '11:00'),
        _window('monday', '08:00', '08:30'),
        _window('tuesday', '12:00', '13:00'),
    ]

    assert slots_for_date(windows, date(2030, 1, 7), 30) == ['08:00', '09:00', '09:30', '10:00', '10:30']


def test_slots_for_date_skips_inactive_and_too_short_windows() -> None:
    windows = [
        _window('monday', '09:00', '10:00', is_active=False),
        _window('monday', '13:00', '13:15'),
        _window('monday', '14:00', '14:30'),
    ]

    assert slots_for_date(windows, date(2030, 1, 7), 30) == ['14:00']


def test_slots_for_date_without_windows_is_empty() -> None:
    assert slots_for_date([], date(2030, 1, 7), 30) == []
