"""Availability model definitions."""

from sqlalchemy import Boolean, Column, ForeignKey, Integer, String
from healthportal.database import Base

DAYS_OF_WEEK = (
    "monday",
    "tuesday",
    "wednesday",
    "thursday",
    "friday",
    "saturday",
    "sunday",
)


class AvailabilityWindow(Base):
    """A recurring weekly interval during which a doctor takes appointments."""
    __tablename__ = "availability_windows"

    id = Column(Integer, primary_key=True)
    doctor_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    day_of_week = Column(String, nullable=False)
    start_time = Column(String(5), nullable=False)  # HH:MM, 24h
    end_time = Column(String(5), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
