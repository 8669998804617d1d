"""User model definitions."""

from sqlalchemy import Boolean, Column, Integer, String
from healthportal.database import Base

PATIENT_ROLE = "patient"
DOCTOR_ROLE = "doctor"
USER_ROLES = (PATIENT_ROLE, DOCTOR_ROLE)


class User(Base):
    """Represents a portal user, either a patient or a doctor."""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, index=True, nullable=False)
    full_name = Column(String, nullable=False, default="")
    role = Column(String, nullable=False)  # patient/doctor
    specialization = Column(String)
    is_active = Column(Boolean, nullable=False, default=True)
