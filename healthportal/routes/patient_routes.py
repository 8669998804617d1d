import logging
from datetime import date, datetime

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import AliasChoices, Field, ValidationError, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from healthportal.auth.dependencies import Principal, require_role
from healthportal.core import config
from healthportal.models.appointment import CANCELLED
from healthportal.models.user import PATIENT_ROLE
from healthportal.routes.doctor_routes import compute_available_slots, get_active_doctor
from healthportal.routes.schemas import (
    AppointmentResponse,
    CamelModel,
    database_unavailable,
    ensure_database_ready,
    get_db,
    get_session_factory,
)
from healthportal.scheduling.booking import BookingDraft, book_appointment, reschedule_appointment
from healthportal.scheduling.errors import (
    InvalidStatusTransition,
    InvalidTimeFormat,
    SlotUnavailable,
    StaleReservation,
    StoreUnavailable,
)
from healthportal.scheduling.reservations import get_reservation, list_for_patient, save_reservation
from healthportal.scheduling.slots import normalize_clock, parse_clock
from healthportal.scheduling.transitions import apply_status_change, ensure_version

router = APIRouter(tags=['patients'])

logger = logging.getLogger(__name__)


class CreateAppointmentRequest(CamelModel):
    doctor_id: int
    appointment_date: date
    appointment_time: str
    reason: str = Field(validation_alias=AliasChoices('reason', 'reasonForVisit'))

    @field_validator('appointment_time')
    @classmethod
    def validate_appointment_time(cls, value: str) -> str:
        return normalize_clock(value)

    @field_validator('reason')
    @classmethod
    def validate_reason(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError('Reason for visit is required.')
        if len(normalized) > config.MAX_REASON_LENGTH:
            raise ValueError(f'Reason must be {config.MAX_REASON_LENGTH} characters or fewer.')
        return normalized


class RescheduleAppointmentRequest(CamelModel):
    appointment_date: date
    appointment_time: str
    version: int | None = None

    @field_validator('appointment_time')
    @classmethod
    def validate_appointment_time(cls, value: str) -> str:
        return normalize_clock(value)


def ensure_future_start(appointment_date: date, appointment_time: str) -> None:
    if datetime.combine(appointment_date, parse_clock(appointment_time)) <= datetime.now():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='Appointments must be scheduled in the future.',
        )


def ensure_published_slot(db: Session, doctor_id: int, appointment_date: date, appointment_time: str) -> None:
    if not config.BOOKING_REQUIRE_PUBLISHED_SLOT:
        return

    published = compute_available_slots(db, doctor_id, appointment_date)
    if appointment_time not in published.slots:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Requested time is not one of the doctor's available slots.",
        )


def normalize_cancellation_reason(cancellation_reason: str | None) -> str | None:
    reason = cancellation_reason.strip() if cancellation_reason else None
    if reason and len(reason) > config.MAX_NOTES_LENGTH:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f'Cancellation reason must be {config.MAX_NOTES_LENGTH} characters or fewer.',
        )
    return reason or None


def get_owned_appointment(db: Session, appointment_id: int, principal: Principal):
    appointment = get_reservation(db, appointment_id)
    if not appointment:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail='Appointment not found.',
        )

    if appointment.patient_id != principal.user_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail='Access denied',
        )

    return appointment


@router.get('/appointments/me', response_model=list[AppointmentResponse])
def list_my_appointments(
    principal: Principal = Depends(require_role(PATIENT_ROLE)),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        appointments = list_for_patient(db, principal.user_id)
        return [AppointmentResponse.model_validate(appointment) for appointment in appointments]
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.post('/appointments', response_model=AppointmentResponse, status_code=status.HTTP_201_CREATED)
def create_appointment(
    data: CreateAppointmentRequest,
    principal: Principal = Depends(require_role(PATIENT_ROLE)),
    db: Session = Depends(get_db),
    session_factory: sessionmaker = Depends(get_session_factory),
):
    ensure_database_ready()
    ensure_future_start(data.appointment_date, data.appointment_time)

    try:
        if not get_active_doctor(db, data.doctor_id):
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail='Doctor not found or inactive',
            )

        ensure_published_slot(db, data.doctor_id, data.appointment_date, data.appointment_time)
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc

    try:
        draft = BookingDraft(
            patient_id=principal.user_id,
            doctor_id=data.doctor_id,
            appointment_date=data.appointment_date,
            appointment_time=data.appointment_time,
            reason=data.reason,
        )
        appointment = book_appointment(session_factory, draft)
    except ValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except SlotUnavailable as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    except StoreUnavailable as exc:
        logger.warning('Booking outcome unknown for patient %s: %s', principal.user_id, exc)
        raise database_unavailable() from exc

    return AppointmentResponse.model_validate(appointment)


@router.delete('/appointments/{appointment_id}', response_model=AppointmentResponse)
def cancel_my_appointment(
    appointment_id: int,
    cancellation_reason: str | None = Query(default=None, alias='cancellationReason'),
    principal: Principal = Depends(require_role(PATIENT_ROLE)),
    db: Session = Depends(get_db),
):
    ensure_database_ready()
    reason = normalize_cancellation_reason(cancellation_reason)

    try:
        appointment = get_owned_appointment(db, appointment_id, principal)
        apply_status_change(appointment, CANCELLED, PATIENT_ROLE, reason)
        save_reservation(db, appointment)
        return AppointmentResponse.model_validate(appointment)
    except (InvalidStatusTransition, StaleReservation) as exc:
        db.rollback()
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    except StoreUnavailable as exc:
        raise database_unavailable() from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc


@router.put('/appointments/{appointment_id}/reschedule', response_model=AppointmentResponse)
def reschedule_my_appointment(
    appointment_id: int,
    data: RescheduleAppointmentRequest,
    principal: Principal = Depends(require_role(PATIENT_ROLE)),
    db: Session = Depends(get_db),
    session_factory: sessionmaker = Depends(get_session_factory),
):
    ensure_database_ready()
    ensure_future_start(data.appointment_date, data.appointment_time)

    try:
        appointment = get_owned_appointment(db, appointment_id, principal)
        ensure_version(appointment, data.version)
        ensure_published_slot(db, appointment.doctor_id, data.appointment_date, data.appointment_time)
        db.rollback()
    except StaleReservation as exc:
        db.rollback()
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc

    try:
        appointment = reschedule_appointment(
            session_factory,
            appointment_id,
            data.appointment_date,
            data.appointment_time,
            expected_version=data.version,
        )
    except InvalidTimeFormat as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except (SlotUnavailable, InvalidStatusTransition, StaleReservation) as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    except StoreUnavailable as exc:
        raise database_unavailable() from exc

    return AppointmentResponse.model_validate(appointment)
