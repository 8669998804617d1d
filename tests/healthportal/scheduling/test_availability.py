import pytest

from healthportal.scheduling.availability import get_availability, set_availability, validate_window
from healthportal.scheduling.errors import InvalidAvailability


def _window(day: str, start: str, end: str, is_active: bool = True) -> dict:
    return {'day_of_week': day, 'start_time': start, 'end_time': end, 'is_active': is_active}


def test_get_availability_is_empty_when_nothing_configured(db, doctor) -> None:
    assert get_availability(db, doctor.id) == []


def test_set_availability_normalizes_and_orders_windows(db, doctor) -> None:
    stored = set_availability(
        db,
        doctor.id,
        [
            _window('Wednesday', '13:00', '17:00'),
            _window('monday', '9:00', '12:00'),
        ],
    )

    assert [(window.day_of_week, window.start_time, window.end_time) for window in stored] == [
        ('monday', '09:00', '12:00'),
        ('wednesday', '13:00', '17:00'),
    ]


def test_set_availability_replaces_existing_windows(db, doctor) -> None:
    set_availability(db, doctor.id, [_window('monday', '09:00', '12:00'), _window('tuesday', '09:00', '12:00')])

    stored = set_availability(db, doctor.id, [_window('friday', '08:00', '10:00', is_active=False)])

    assert len(stored) == 1
    assert stored[0].day_of_week == 'friday'
    assert stored[0].is_active is False
    assert len(get_availability(db, doctor.id)) == 1


def test_set_availability_with_one_invalid_window_changes_nothing(db, doctor) -> None:
    original = set_availability(db, doctor.id, [_window('monday', '09:00', '10:00')])

    with pytest.raises(InvalidAvailability):
        set_availability(
            db,
            doctor.id,
            [
                _window('monday', '09:00', '12:00'),
                _window('tuesday', '09:00', '12:00'),
                _window('wednesday', '14:00', '13:00'),
                _window('thursday', '09:00', '12:00'),
                _window('friday', '09:00', '12:00'),
            ],
        )

    db.expire_all()
    remaining = get_availability(db, doctor.id)
    assert [(window.id, window.day_of_week, window.start_time) for window in remaining] == [
        (original[0].id, 'monday', '09:00'),
    ]


def test_set_availability_does_not_touch_other_doctors(db, doctor, make_user) -> None:
    colleague = make_user('wilson@clinic.example', 'doctor')
    set_availability(db, colleague.id, [_window('monday', '09:00', '10:00')])

    set_availability(db, doctor.id, [])

    assert len(get_availability(db, colleague.id)) == 1
    assert get_availability(db, doctor.id) == []


@pytest.mark.parametrize(
    'window',
    [
        {'day_of_week': 'funday', 'start_time': '09:00', 'end_time': '10:00'},
        {'day_of_week': 'monday', 'start_time': '9', 'end_time': '10:00'},
        {'day_of_week': 'monday', 'start_time': '09:00', 'end_time': '25:00'},
        {'day_of_week': 'monday', 'start_time': '10:00', 'end_time': '10:00'},
        {'day_of_week': 'monday', 'end_time': '10:00'},
    ],
)
def test_validate_window_rejects_malformed_windows(window: dict) -> None:
    with pytest.raises(InvalidAvailability):
        validate_window(window)


def test_validate_window_defaults_to_active() -> None:
    assert validate_window({'day_of_week': 'MONDAY', 'start_time': '9:30', 'end_time': '10:00'}) == {
        'day_of_week': 'monday',
        'start_time': '09:30',
        'end_time': '10:00',
        'is_active': True,
    }
