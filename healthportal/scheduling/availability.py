"""Weekly availability store for doctors."""

import logging
from typing import Any, Iterable, Mapping

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from healthportal.models.availability import DAYS_OF_WEEK, AvailabilityWindow
from healthportal.scheduling.errors import InvalidAvailability, InvalidTimeFormat, StoreUnavailable
from healthportal.scheduling.slots import clock_minutes, normalize_clock

logger = logging.getLogger(__name__)


def validate_window(window: Mapping[str, Any], position: int = 0) -> dict[str, Any]:
    """Validate one window and return it normalized.

    Day names are lowercased and times zero padded so ``9:00`` is stored as ``09:00``.
    """
    day = str(window.get('day_of_week') or '').strip().lower()
    if day not in DAYS_OF_WEEK:
        raise InvalidAvailability(f'Window {position + 1}: day of week must be one of {", ".join(DAYS_OF_WEEK)}.')

    try:
        start_time = normalize_clock(window.get('start_time'))
        end_time = normalize_clock(window.get('end_time'))
    except InvalidTimeFormat as exc:
        raise InvalidAvailability(f'Window {position + 1}: {exc}') from exc

    if clock_minutes(start_time) >= clock_minutes(end_time):
        raise InvalidAvailability(f'Window {position + 1}: start time must be before end time.')

    is_active = window.get('is_active')
    return {
        'day_of_week': day,
        'start_time': start_time,
        'end_time': end_time,
        'is_active': True if is_active is None else bool(is_active),
    }


def get_availability(db: Session, doctor_id: int) -> list[AvailabilityWindow]:
    windows = db.query(AvailabilityWindow).filter(AvailabilityWindow.doctor_id == doctor_id).all()
    return sorted(windows, key=lambda window: (DAYS_OF_WEEK.index(window.day_of_week), window.start_time))


def set_availability(
    db: Session,
    doctor_id: int,
    windows: Iterable[Mapping[str, Any]],
) -> list[AvailabilityWindow]:
    """Replace every window of a doctor.

    All windows are validated before anything is written, so one bad window
    leaves the stored availability untouched.
    """
    normalized = [validate_window(window, position) for position, window in enumerate(windows)]

    try:
        db.query(AvailabilityWindow).filter(
            AvailabilityWindow.doctor_id == doctor_id,
        ).delete(synchronize_session=False)

        stored = [AvailabilityWindow(doctor_id=doctor_id, **window) for window in normalized]
        db.add_all(stored)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception('Failed to replace availability for doctor %s.', doctor_id)
        raise StoreUnavailable('Availability store unavailable.') from exc

    logger.info('Stored %d availability windows for doctor %s.', len(stored), doctor_id)
    return get_availability(db, doctor_id)
