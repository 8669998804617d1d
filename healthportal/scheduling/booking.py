"""Race-safe appointment booking.

Every booking runs "read the doctor's calendar, detect overlap, insert" inside
one transaction opened at the configured isolation level. If two requests race
for the same interval the store lets at most one of them commit; the loser
either sees the winner's row and reports a conflict, or is aborted by the store
and, after one fresh retry, reports the same conflict.
"""

import logging
from datetime import date, datetime, timedelta
from typing import Callable

from pydantic import BaseModel, field_validator
from sqlalchemy.exc import DBAPIError, IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from healthportal.core import config
from healthportal.database import IMMEDIATE_TRANSACTION_OPTION
from healthportal.models.appointment import PENDING, Appointment
from healthportal.scheduling.conflicts import find_conflicts
from healthportal.scheduling.errors import (
    ConcurrentBookingAbort,
    InvalidStatusTransition,
    SchedulingError,
    SlotUnavailable,
    StaleReservation,
    StoreUnavailable,
)
from healthportal.scheduling.reservations import find_overlapping_candidates
from healthportal.scheduling.slots import normalize_clock, parse_clock
from healthportal.scheduling.transitions import ensure_version, is_terminal

logger = logging.getLogger(__name__)

SERIALIZATION_FAILURE_CODES = frozenset({'40001', '40P01'})
UNIQUE_VIOLATION_CODE = '23505'


class BookingDraft(BaseModel):
    patient_id: int
    doctor_id: int
    appointment_date: date
    appointment_time: str
    reason: str
    duration_minutes: int = config.DEFAULT_APPOINTMENT_DURATION_MINUTES

    @field_validator('appointment_time')
    @classmethod
    def validate_appointment_time(cls, value: str) -> str:
        return normalize_clock(value)

    @field_validator('duration_minutes')
    @classmethod
    def validate_duration(cls, value: int) -> int:
        if value <= 0 or value > config.MAX_APPOINTMENT_DURATION_MINUTES:
            raise ValueError(
                f'Duration must be between 1 and {config.MAX_APPOINTMENT_DURATION_MINUTES} minutes.'
            )
        return value

    @property
    def scheduled_at(self) -> datetime:
        return datetime.combine(self.appointment_date, parse_clock(self.appointment_time))

    @property
    def ends_at(self) -> datetime:
        return self.scheduled_at + timedelta(minutes=self.duration_minutes)


def _sqlstate(exc: DBAPIError) -> str | None:
    original = exc.orig
    return getattr(original, 'pgcode', None) or getattr(original, 'sqlstate', None)


def is_serialization_failure(exc: DBAPIError) -> bool:
    return _sqlstate(exc) in SERIALIZATION_FAILURE_CODES


def is_unique_violation(exc: IntegrityError) -> bool:
    return _sqlstate(exc) == UNIQUE_VIOLATION_CODE or 'UNIQUE constraint failed' in str(exc.orig)


def _ensure_slot_free(
    session: Session,
    doctor_id: int,
    scheduled_at: datetime,
    duration_minutes: int,
    exclude_id: int | None = None,
) -> None:
    ends_at = scheduled_at + timedelta(minutes=duration_minutes)
    candidates = find_overlapping_candidates(session, doctor_id, scheduled_at, ends_at, exclude_id=exclude_id)
    conflicts = find_conflicts(doctor_id, scheduled_at, duration_minutes, candidates, exclude_id)

    if conflicts:
        logger.warning(
            'Doctor %s already has appointment(s) %s overlapping %s.',
            doctor_id,
            [conflict.id for conflict in conflicts],
            scheduled_at.isoformat(),
        )
        raise SlotUnavailable()


def _attempt(session_factory: sessionmaker, work: Callable[[Session], Appointment]) -> Appointment:
    with session_factory() as session:
        try:
            with session.begin():
                session.connection(
                    execution_options={
                        'isolation_level': config.BOOKING_ISOLATION_LEVEL,
                        IMMEDIATE_TRANSACTION_OPTION: True,
                    }
                )
                appointment = work(session)
            session.refresh(appointment)
            return appointment
        except SchedulingError:
            raise
        except IntegrityError as exc:
            if is_unique_violation(exc):
                raise SlotUnavailable() from exc
            logger.exception('Booking transaction rejected by the reservation store.')
            raise StoreUnavailable('Reservation store rejected the booking.') from exc
        except StaleDataError as exc:
            raise StaleReservation('Appointment was modified by another request. Reload and try again.') from exc
        except DBAPIError as exc:
            if is_serialization_failure(exc):
                raise ConcurrentBookingAbort(str(exc.orig)) from exc
            logger.exception('Booking transaction failed.')
            raise StoreUnavailable('Reservation store unavailable.') from exc
        except SQLAlchemyError as exc:
            logger.exception('Booking transaction failed.')
            raise StoreUnavailable('Reservation store unavailable.') from exc


def run_booking_transaction(
    session_factory: sessionmaker,
    work: Callable[[Session], Appointment],
    description: str,
) -> Appointment:
    """Run ``work`` in a fresh transactional scope, retrying store aborts.

    Each retry opens a new session and re-runs ``work`` from scratch, so a
    conflict check is never reused across attempts. Overlap conflicts are not
    retried.
    """
    attempts = max(1, config.BOOKING_MAX_ATTEMPTS)

    for attempt in range(1, attempts + 1):
        try:
            return _attempt(session_factory, work)
        except ConcurrentBookingAbort as exc:
            if attempt < attempts:
                logger.warning(
                    'Concurrent write aborted %s (attempt %d of %d); retrying with a fresh read.',
                    description,
                    attempt,
                    attempts,
                )
                continue
            logger.warning('Concurrent write aborted %s after %d attempts.', description, attempts)
            raise SlotUnavailable() from exc

    raise SlotUnavailable()


def book_appointment(session_factory: sessionmaker, draft: BookingDraft) -> Appointment:
    """Reserve the draft's interval for the patient or raise ``SlotUnavailable``."""

    def work(session: Session) -> Appointment:
        _ensure_slot_free(session, draft.doctor_id, draft.scheduled_at, draft.duration_minutes)

        appointment = Appointment(
            patient_id=draft.patient_id,
            doctor_id=draft.doctor_id,
            appointment_date=draft.appointment_date,
            appointment_time=draft.appointment_time,
            scheduled_at=draft.scheduled_at,
            duration_minutes=draft.duration_minutes,
            reason=draft.reason,
            status=PENDING,
        )
        session.add(appointment)
        return appointment

    appointment = run_booking_transaction(
        session_factory,
        work,
        f'booking for doctor {draft.doctor_id} at {draft.scheduled_at.isoformat()}',
    )
    logger.info(
        'Booked appointment %s for patient %s with doctor %s at %s.',
        appointment.id,
        appointment.patient_id,
        appointment.doctor_id,
        appointment.scheduled_at.isoformat(),
    )
    return appointment


def reschedule_appointment(
    session_factory: sessionmaker,
    appointment_id: int,
    appointment_date: date,
    appointment_time: str,
    expected_version: int | None = None,
) -> Appointment:
    """Move an active appointment to a new start time.

    The appointment is excluded from its own conflict check and goes back to
    ``pending`` so the doctor confirms the new time.
    """
    normalized_time = normalize_clock(appointment_time)
    scheduled_at = datetime.combine(appointment_date, parse_clock(normalized_time))

    def work(session: Session) -> Appointment:
        appointment = session.get(Appointment, appointment_id)
        if appointment is None:
            raise StaleReservation('Appointment no longer exists.')

        ensure_version(appointment, expected_version)
        if is_terminal(appointment.status):
            raise InvalidStatusTransition(f'A {appointment.status} appointment cannot be rescheduled.')

        _ensure_slot_free(
            session,
            appointment.doctor_id,
            scheduled_at,
            appointment.duration_minutes,
            exclude_id=appointment.id,
        )

        appointment.appointment_date = appointment_date
        appointment.appointment_time = normalized_time
        appointment.scheduled_at = scheduled_at
        appointment.status = PENDING
        return appointment

    appointment = run_booking_transaction(
        session_factory,
        work,
        f'reschedule of appointment {appointment_id} to {scheduled_at.isoformat()}',
    )
    logger.info('Rescheduled appointment %s to %s.', appointment.id, appointment.scheduled_at.isoformat())
    return appointment
