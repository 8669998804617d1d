import os
from datetime import date, timedelta

os.environ.setdefault('DATABASE_URL', 'sqlite:///./test.db')

import pytest  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402

from healthportal.database import Base, build_engine  # noqa: E402
from healthportal.models.appointment import Appointment  # noqa: E402
from healthportal.models.availability import AvailabilityWindow  # noqa: E402
from healthportal.models.user import DOCTOR_ROLE, PATIENT_ROLE, User  # noqa: E402


def upcoming_monday() -> date:
    today = date.today()
    return today + timedelta(days=(7 - today.weekday()) % 7 or 7)


@pytest.fixture
def session_factory(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'scheduling.db'}")
    Base.metadata.create_all(bind=engine, tables=[User.__table__, AvailabilityWindow.__table__, Appointment.__table__])
    factory = sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)

    try:
        yield factory
    finally:
        engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def make_user(db):
    def _make_user(email: str, role: str, full_name: str = '', is_active: bool = True) -> User:
        user = User(email=email, full_name=full_name or email.split('@')[0], role=role, is_active=is_active)
        db.add(user)
        db.commit()
        return user

    return _make_user


@pytest.fixture
def doctor(make_user) -> User:
    return make_user('house@clinic.example', DOCTOR_ROLE, full_name='Gregory House')


@pytest.fixture
def patient(make_user) -> User:
    return make_user('alice@example.com', PATIENT_ROLE)


@pytest.fixture
def other_patient(make_user) -> User:
    return make_user('bob@example.com', PATIENT_ROLE)


@pytest.fixture
def monday() -> date:
    return upcoming_monday()
