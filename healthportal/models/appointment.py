"""Appointment model definitions."""

from datetime import timedelta

from sqlalchemy import Column, Date, DateTime, ForeignKey, Index, Integer, String, func, text
from healthportal.database import Base

PENDING = "pending"
CONFIRMED = "confirmed"
COMPLETED = "completed"
CANCELLED = "cancelled"
NO_SHOW = "no-show"

APPOINTMENT_STATUSES = (PENDING, CONFIRMED, COMPLETED, CANCELLED, NO_SHOW)
# Appointments in these states no longer hold their time slot.
INACTIVE_STATUSES = frozenset({CANCELLED, NO_SHOW})

_ACTIVE_STATUS_CLAUSE = text("status NOT IN ('cancelled', 'no-show')")


def _next_version(current: int | None) -> int:
    return 0 if current is None else current + 1


class Appointment(Base):
    """Represents a booked appointment between a patient and a doctor."""
    __tablename__ = "appointments"

    id = Column(Integer, primary_key=True)
    patient_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    doctor_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    appointment_date = Column(Date, nullable=False)
    appointment_time = Column(String(5), nullable=False)
    scheduled_at = Column(DateTime, nullable=False)
    duration_minutes = Column(Integer, nullable=False, default=30)
    reason = Column(String, nullable=False)
    status = Column(String, nullable=False, default=PENDING)
    notes = Column(String)
    cancellation_reason = Column(String)
    version = Column(Integer, nullable=False)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        Index("idx_appointments_doctor_scheduled", "doctor_id", "scheduled_at"),
        Index("idx_appointments_patient_scheduled", "patient_id", "scheduled_at"),
        Index(
            "uq_appointments_doctor_active_start",
            "doctor_id",
            "scheduled_at",
            unique=True,
            postgresql_where=_ACTIVE_STATUS_CLAUSE,
            sqlite_where=_ACTIVE_STATUS_CLAUSE,
        ),
    )

    __mapper_args__ = {
        "version_id_col": version,
        "version_id_generator": _next_version,
    }

    @property
    def ends_at(self):
        return self.scheduled_at + timedelta(minutes=self.duration_minutes)

    @property
    def is_active(self) -> bool:
        return self.status not in INACTIVE_STATUSES
