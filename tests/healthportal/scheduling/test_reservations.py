from datetime import datetime, time, timedelta

import pytest

from healthportal.models.appointment import Appointment
from healthportal.scheduling.booking import BookingDraft, book_appointment
from healthportal.scheduling.errors import StaleReservation
from healthportal.scheduling.reservations import (
    find_overlapping_candidates,
    list_active_for_day,
    list_for_patient,
    save_reservation,
)


def _book(session_factory, patient_id: int, doctor_id: int, day, appointment_time: str, duration: int = 30):
    return book_appointment(
        session_factory,
        BookingDraft(
            patient_id=patient_id,
            doctor_id=doctor_id,
            appointment_date=day,
            appointment_time=appointment_time,
            reason='Follow-up',
            duration_minutes=duration,
        ),
    )


def test_find_overlapping_candidates_includes_long_appointments_started_earlier(
    session_factory, db, doctor, patient, monday
) -> None:
    long_visit = _book(session_factory, patient.id, doctor.id, monday, '08:00', duration=120)
    _book(session_factory, patient.id, doctor.id, monday, '13:00')

    start = datetime.combine(monday, time(9, 30))
    candidates = find_overlapping_candidates(db, doctor.id, start, start + timedelta(minutes=30))

    assert [appointment.id for appointment in candidates] == [long_visit.id]


def test_find_overlapping_candidates_skips_cancelled_and_excluded(session_factory, db, doctor, patient, monday) -> None:
    cancelled = _book(session_factory, patient.id, doctor.id, monday, '09:00')
    stored = db.get(Appointment, cancelled.id)
    stored.status = 'cancelled'
    db.commit()
    kept = _book(session_factory, patient.id, doctor.id, monday, '09:30')

    day_start = datetime.combine(monday, time.min)
    day_end = day_start + timedelta(days=1)

    assert [a.id for a in find_overlapping_candidates(db, doctor.id, day_start, day_end)] == [kept.id]
    assert find_overlapping_candidates(db, doctor.id, day_start, day_end, exclude_id=kept.id) == []


def test_list_active_for_day_and_patient_listing(session_factory, db, doctor, patient, monday) -> None:
    first = _book(session_factory, patient.id, doctor.id, monday, '09:00')
    second = _book(session_factory, patient.id, doctor.id, monday + timedelta(days=1), '09:00')

    assert [a.id for a in list_active_for_day(db, doctor.id, monday)] == [first.id]
    assert [a.id for a in list_for_patient(db, patient.id)] == [second.id, first.id]


def test_save_reservation_increments_version(session_factory, db, doctor, patient, monday) -> None:
    appointment = _book(session_factory, patient.id, doctor.id, monday, '09:00')

    stored = db.get(Appointment, appointment.id)
    stored.notes = 'Bring previous lab results.'
    save_reservation(db, stored)

    assert stored.version == 1


def test_save_reservation_rejects_concurrent_update(session_factory, doctor, patient, monday) -> None:
    appointment = _book(session_factory, patient.id, doctor.id, monday, '09:00')

    first_session = session_factory()
    second_session = session_factory()
    try:
        first_copy = first_session.get(Appointment, appointment.id)
        second_copy = second_session.get(Appointment, appointment.id)

        first_copy.status = 'confirmed'
        save_reservation(first_session, first_copy)

        second_copy.status = 'cancelled'
        with pytest.raises(StaleReservation):
            save_reservation(second_session, second_copy)
    finally:
        first_session.close()
        second_session.close()

    with session_factory() as session:
        assert session.get(Appointment, appointment.id).status == 'confirmed'
