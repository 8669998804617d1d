from datetime import date, datetime

from fastapi import HTTPException, status
from pydantic import BaseModel
from pydantic.alias_generators import to_camel
from sqlalchemy.exc import SQLAlchemyError

from healthportal.database import SessionLocal, ensure_appointment_schema, ensure_availability_schema

DATABASE_UNAVAILABLE_DETAIL = 'Database unavailable. Verify DATABASE_URL and database credentials.'


class CamelModel(BaseModel):
    class Config:
        alias_generator = to_camel
        populate_by_name = True
        from_attributes = True


class AppointmentResponse(CamelModel):
    id: int
    patient_id: int
    doctor_id: int
    appointment_date: date
    appointment_time: str
    scheduled_at: datetime
    duration_minutes: int
    reason: str
    status: str
    notes: str | None = None
    cancellation_reason: str | None = None
    version: int


class AvailabilityWindowResponse(CamelModel):
    id: int
    day_of_week: str
    start_time: str
    end_time: str
    is_active: bool


class DoctorResponse(CamelModel):
    id: int
    email: str
    full_name: str
    specialization: str | None = None


def ensure_database_ready() -> None:
    try:
        ensure_availability_schema()
        ensure_appointment_schema()
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE_DETAIL,
        ) from exc


def database_unavailable() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail=DATABASE_UNAVAILABLE_DETAIL,
    )


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_session_factory():
    return SessionLocal
