from datetime import date, datetime

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import AliasChoices, Field, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from healthportal.auth.dependencies import Principal, require_role
from healthportal.core import config
from healthportal.models.appointment import APPOINTMENT_STATUSES, CANCELLED
from healthportal.models.user import DOCTOR_ROLE, User
from healthportal.routes.schemas import (
    AppointmentResponse,
    AvailabilityWindowResponse,
    CamelModel,
    DoctorResponse,
    database_unavailable,
    ensure_database_ready,
    get_db,
)
from healthportal.scheduling.availability import get_availability, set_availability
from healthportal.scheduling.conflicts import has_conflict
from healthportal.scheduling.errors import (
    InvalidAvailability,
    InvalidStatusTransition,
    StaleReservation,
    StoreUnavailable,
)
from healthportal.scheduling.reservations import (
    get_reservation,
    list_active_for_day,
    list_for_doctor,
    save_reservation,
)
from healthportal.scheduling.slots import parse_clock, slots_for_date
from healthportal.scheduling.transitions import apply_status_change, ensure_version

router = APIRouter(tags=['doctors'])


class AvailabilityWindowPayload(CamelModel):
    day_of_week: str
    start_time: str
    end_time: str
    is_active: bool = True


class SetAvailabilityRequest(CamelModel):
    windows: list[AvailabilityWindowPayload] = Field(validation_alias=AliasChoices('windows', 'slots'))


class AvailabilityResponse(CamelModel):
    doctor_id: int
    windows: list[AvailabilityWindowResponse]


class AvailableSlotsResponse(CamelModel):
    doctor_id: int
    slots: list[str]
    booked_slots: list[str]


class UpdateAppointmentRequest(CamelModel):
    status: str | None = None
    notes: str | None = None
    cancellation_reason: str | None = None
    version: int | None = None

    @field_validator('status')
    @classmethod
    def validate_status(cls, value: str | None) -> str | None:
        if value is None:
            return None

        normalized = value.strip().lower()
        if normalized not in APPOINTMENT_STATUSES:
            raise ValueError('Invalid status')

        return normalized

    @field_validator('notes', 'cancellation_reason')
    @classmethod
    def validate_free_text(cls, value: str | None) -> str | None:
        if value is None:
            return None

        normalized = value.strip()
        if len(normalized) > config.MAX_NOTES_LENGTH:
            raise ValueError(f'Must be {config.MAX_NOTES_LENGTH} characters or fewer.')

        return normalized


def get_active_doctor(db: Session, doctor_id: int) -> User | None:
    return db.query(User).filter(
        User.id == doctor_id,
        User.role == DOCTOR_ROLE,
        User.is_active.is_(True),
    ).first()


def compute_available_slots(db: Session, doctor_id: int, requested_date: date) -> AvailableSlotsResponse:
    windows = get_availability(db, doctor_id)
    candidate_slots = slots_for_date(windows, requested_date, config.SLOT_INCREMENT_MINUTES)
    reserved = list_active_for_day(db, doctor_id, requested_date)

    booked_slots = sorted({
        appointment.appointment_time
        for appointment in reserved
        if appointment.appointment_date == requested_date
    })
    open_slots = [
        slot
        for slot in candidate_slots
        if not has_conflict(
            doctor_id,
            datetime.combine(requested_date, parse_clock(slot)),
            config.DEFAULT_APPOINTMENT_DURATION_MINUTES,
            reserved,
        )
    ]

    return AvailableSlotsResponse(doctor_id=doctor_id, slots=open_slots, booked_slots=booked_slots)


@router.get('', response_model=list[DoctorResponse])
def list_doctors(db: Session = Depends(get_db)):
    try:
        doctors = db.query(User).filter(
            User.role == DOCTOR_ROLE,
            User.is_active.is_(True),
        ).order_by(User.full_name.asc()).all()

        return [DoctorResponse.model_validate(doctor) for doctor in doctors]
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.get('/appointments/me', response_model=list[AppointmentResponse])
def list_my_appointments(
    principal: Principal = Depends(require_role(DOCTOR_ROLE)),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        appointments = list_for_doctor(db, principal.user_id)
        return [AppointmentResponse.model_validate(appointment) for appointment in appointments]
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.put('/appointments/{appointment_id}', response_model=AppointmentResponse)
def update_appointment(
    appointment_id: int,
    data: UpdateAppointmentRequest,
    principal: Principal = Depends(require_role(DOCTOR_ROLE)),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        appointment = get_reservation(db, appointment_id)
        if not appointment:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail='Appointment not found.',
            )

        if appointment.doctor_id != principal.user_id:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail='Access denied',
            )

        if data.cancellation_reason and (data.status != CANCELLED or appointment.status == CANCELLED):
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail='Cancellation reason can only be set when cancelling an appointment.',
            )

        ensure_version(appointment, data.version)
        if data.status:
            apply_status_change(appointment, data.status, DOCTOR_ROLE, data.cancellation_reason)
        if data.notes is not None:
            appointment.notes = data.notes or None

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


@router.get('/availability/me', response_model=AvailabilityResponse)
def get_my_availability(
    principal: Principal = Depends(require_role(DOCTOR_ROLE)),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        windows = get_availability(db, principal.user_id)
        return AvailabilityResponse(
            doctor_id=principal.user_id,
            windows=[AvailabilityWindowResponse.model_validate(window) for window in windows],
        )
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.post('/availability', response_model=AvailabilityResponse)
def set_my_availability(
    data: SetAvailabilityRequest,
    principal: Principal = Depends(require_role(DOCTOR_ROLE)),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        windows = set_availability(
            db,
            principal.user_id,
            [window.model_dump() for window in data.windows],
        )
        return AvailabilityResponse(
            doctor_id=principal.user_id,
            windows=[AvailabilityWindowResponse.model_validate(window) for window in windows],
        )
    except InvalidAvailability as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except StoreUnavailable as exc:
        raise database_unavailable() from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc


@router.get('/{doctor_id}', response_model=DoctorResponse)
def get_doctor(doctor_id: int, db: Session = Depends(get_db)):
    try:
        doctor = get_active_doctor(db, doctor_id)
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc

    if not doctor:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail='Doctor not found.',
        )

    return DoctorResponse.model_validate(doctor)


@router.get('/{doctor_id}/availability', response_model=AvailabilityResponse)
def get_doctor_availability(doctor_id: int, db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        windows = get_availability(db, doctor_id)
        return AvailabilityResponse(
            doctor_id=doctor_id,
            windows=[AvailabilityWindowResponse.model_validate(window) for window in windows],
        )
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.get('/{doctor_id}/available-slots', response_model=AvailableSlotsResponse)
def list_available_slots(
    doctor_id: int,
    date: date = Query(...),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        return compute_available_slots(db, doctor_id, date)
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc
