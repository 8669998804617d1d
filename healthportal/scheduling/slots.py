"""Slot generation from weekly availability windows."""

import logging
import re
from datetime import date, time
from typing import Iterable

from healthportal.core import config
from healthportal.models.availability import DAYS_OF_WEEK
from healthportal.scheduling.errors import InvalidAvailability, InvalidTimeFormat

logger = logging.getLogger(__name__)

CLOCK_PATTERN = re.compile(r'^([0-1]?[0-9]|2[0-3]):([0-5][0-9])$')


def parse_clock(value: str) -> time:
    if not isinstance(value, str):
        raise InvalidTimeFormat(f'Time must be a string in HH:MM format, got {value!r}.')

    match = CLOCK_PATTERN.match(value.strip())
    if not match:
        raise InvalidTimeFormat(f'Time must be in 24-hour HH:MM format, got {value!r}.')

    return time(int(match.group(1)), int(match.group(2)))


def format_clock(value: time) -> str:
    return f'{value.hour:02d}:{value.minute:02d}'


def normalize_clock(value: str) -> str:
    return format_clock(parse_clock(value))


def clock_minutes(value: str) -> int:
    parsed = parse_clock(value)
    return parsed.hour * 60 + parsed.minute


def day_of_week(day: date) -> str:
    return DAYS_OF_WEEK[day.weekday()]


def generate_slots(start_time: str, end_time: str, increment_minutes: int = 30) -> list[str]:
    """Expand a window into slot start times.

    Slots start at ``start_time`` and advance by ``increment_minutes`` while the
    slot start is strictly before ``end_time``. The last slot may therefore run
    past ``end_time`` when the window length is not a multiple of the increment.
    """
    current = clock_minutes(start_time)
    end = clock_minutes(end_time)

    if current >= end:
        raise InvalidAvailability(f'Start time {start_time} must be before end time {end_time}.')
    if increment_minutes <= 0:
        raise ValueError('Slot increment must be a positive number of minutes.')
    if increment_minutes > end - current:
        raise ValueError(
            f'Slot increment of {increment_minutes} minutes does not fit in window {start_time}-{end_time}.'
        )

    slots: list[str] = []
    while current < end:
        slots.append(f'{current // 60:02d}:{current % 60:02d}')
        current += increment_minutes

    return slots


def slots_for_date(windows: Iterable, requested_date: date, increment_minutes: int | None = None) -> list[str]:
    """Union of the slots of every active window falling on ``requested_date``, sorted and deduplicated."""
    increment = increment_minutes or config.SLOT_INCREMENT_MINUTES
    weekday = day_of_week(requested_date)

    slot_starts: set[str] = set()
    for window in windows:
        if window.day_of_week != weekday or not window.is_active:
            continue

        if clock_minutes(window.end_time) - clock_minutes(window.start_time) < increment:
            logger.debug(
                'Skipping window %s-%s on %s: shorter than the %d minute slot increment.',
                window.start_time,
                window.end_time,
                weekday,
                increment,
            )
            continue

        slot_starts.update(generate_slots(window.start_time, window.end_time, increment))

    return sorted(slot_starts, key=clock_minutes)
