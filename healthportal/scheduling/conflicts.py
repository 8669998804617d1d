"""Overlap detection between a candidate interval and existing reservations."""

from datetime import datetime, timedelta
from typing import Iterable

from healthportal.models.appointment import Appointment


def intervals_overlap(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    # Half-open intervals: [a_start, a_end) and [b_start, b_end).
    return a_start < b_end and b_start < a_end


def blocking_reservations(
    provider_id: int,
    existing_reservations: Iterable[Appointment],
    exclude_reservation_id: int | None = None,
) -> list[Appointment]:
    return [
        reservation
        for reservation in existing_reservations
        if reservation.doctor_id == provider_id
        and reservation.is_active
        and (exclude_reservation_id is None or reservation.id != exclude_reservation_id)
    ]


def find_conflicts(
    provider_id: int,
    candidate_start: datetime,
    candidate_duration_minutes: int,
    existing_reservations: Iterable[Appointment],
    exclude_reservation_id: int | None = None,
) -> list[Appointment]:
    candidate_end = candidate_start + timedelta(minutes=candidate_duration_minutes)

    return [
        reservation
        for reservation in blocking_reservations(provider_id, existing_reservations, exclude_reservation_id)
        if intervals_overlap(
            candidate_start,
            candidate_end,
            reservation.scheduled_at,
            reservation.ends_at,
        )
    ]


def has_conflict(
    provider_id: int,
    candidate_start: datetime,
    candidate_duration_minutes: int,
    existing_reservations: Iterable[Appointment],
    exclude_reservation_id: int | None = None,
) -> bool:
    """Return True when the candidate overlaps any active reservation of the provider."""
    return bool(
        find_conflicts(
            provider_id,
            candidate_start,
            candidate_duration_minutes,
            existing_reservations,
            exclude_reservation_id,
        )
    )
