"""Appointment status lifecycle."""

from healthportal.models.appointment import (
    APPOINTMENT_STATUSES,
    CANCELLED,
    COMPLETED,
    CONFIRMED,
    NO_SHOW,
    PENDING,
    Appointment,
)
from healthportal.models.user import DOCTOR_ROLE, PATIENT_ROLE
from healthportal.scheduling.errors import InvalidStatusTransition, StaleReservation

ALLOWED_TRANSITIONS = {
    PENDING: frozenset({CONFIRMED, CANCELLED, NO_SHOW}),
    CONFIRMED: frozenset({COMPLETED, CANCELLED, NO_SHOW}),
    COMPLETED: frozenset(),
    CANCELLED: frozenset(),
    NO_SHOW: frozenset(),
}

ROLE_TARGET_STATUSES = {
    DOCTOR_ROLE: frozenset(APPOINTMENT_STATUSES),
    PATIENT_ROLE: frozenset({CANCELLED}),
}


def is_terminal(status: str) -> bool:
    return not ALLOWED_TRANSITIONS.get(status)


def ensure_transition_allowed(current: str, target: str, role: str) -> None:
    if target not in APPOINTMENT_STATUSES:
        raise InvalidStatusTransition(f'Unknown appointment status: {target}.')

    if target not in ROLE_TARGET_STATUSES.get(role, frozenset()):
        raise InvalidStatusTransition(f'A {role} cannot set an appointment to {target}.')

    if target not in ALLOWED_TRANSITIONS.get(current, frozenset()):
        raise InvalidStatusTransition(f'Appointment cannot move from {current} to {target}.')


def ensure_version(appointment: Appointment, expected_version: int | None) -> None:
    if expected_version is not None and appointment.version != expected_version:
        raise StaleReservation('Appointment was modified by another request. Reload and try again.')


def apply_status_change(
    appointment: Appointment,
    target: str,
    role: str,
    cancellation_reason: str | None = None,
) -> Appointment:
    """Move an appointment to ``target`` in memory; the caller persists it.

    Re-applying the current status is a no-op. Status changes never re-run
    conflict detection.
    """
    if target == appointment.status:
        return appointment

    ensure_transition_allowed(appointment.status, target, role)
    appointment.status = target
    if target == CANCELLED and cancellation_reason:
        appointment.cancellation_reason = cancellation_reason

    return appointment
