"""Reservation store queries and version-checked saves."""

import logging
from datetime import date, datetime, time, timedelta

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from healthportal.core import config
from healthportal.models.appointment import INACTIVE_STATUSES, Appointment
from healthportal.scheduling.errors import StaleReservation, StoreUnavailable

logger = logging.getLogger(__name__)


def find_overlapping_candidates(
    db: Session,
    doctor_id: int,
    range_start: datetime,
    range_end: datetime,
    exclude_id: int | None = None,
) -> list[Appointment]:
    """Active appointments of a doctor that could overlap ``[range_start, range_end)``.

    Appointments are stored by start instant only, so the lower bound is widened
    by the longest allowed appointment. The result may contain appointments that
    do not actually overlap; run the conflict detector over it.
    """
    earliest_start = range_start - timedelta(minutes=config.MAX_APPOINTMENT_DURATION_MINUTES)

    query = db.query(Appointment).filter(
        Appointment.doctor_id == doctor_id,
        Appointment.status.not_in(INACTIVE_STATUSES),
        Appointment.scheduled_at < range_end,
        Appointment.scheduled_at > earliest_start,
    )
    if exclude_id is not None:
        query = query.filter(Appointment.id != exclude_id)

    return query.order_by(Appointment.scheduled_at.asc()).all()


def list_active_for_day(db: Session, doctor_id: int, day: date) -> list[Appointment]:
    day_start = datetime.combine(day, time.min)
    return find_overlapping_candidates(db, doctor_id, day_start, day_start + timedelta(days=1))


def list_for_patient(db: Session, patient_id: int) -> list[Appointment]:
    return db.query(Appointment).filter(
        Appointment.patient_id == patient_id,
    ).order_by(Appointment.scheduled_at.desc()).all()


def list_for_doctor(db: Session, doctor_id: int) -> list[Appointment]:
    return db.query(Appointment).filter(
        Appointment.doctor_id == doctor_id,
    ).order_by(Appointment.scheduled_at.desc()).all()


def get_reservation(db: Session, appointment_id: int) -> Appointment | None:
    return db.get(Appointment, appointment_id)


def save_reservation(db: Session, appointment: Appointment) -> Appointment:
    """Commit changes to an existing appointment.

    The ORM guards the UPDATE with the version the appointment was read at, so a
    concurrent writer makes this fail instead of being silently overwritten.
    """
    try:
        db.commit()
    except StaleDataError as exc:
        db.rollback()
        logger.warning('Appointment %s was modified concurrently; update rejected.', appointment.id)
        raise StaleReservation('Appointment was modified by another request. Reload and try again.') from exc
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception('Failed to save appointment %s.', appointment.id)
        raise StoreUnavailable('Reservation store unavailable.') from exc

    db.refresh(appointment)
    return appointment
