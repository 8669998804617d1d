"""Exceptions raised by the availability and booking engine."""

SLOT_UNAVAILABLE_MESSAGE = 'Time slot is no longer available'


class SchedulingError(Exception):
    """Base exception for scheduling operations."""


class InvalidTimeFormat(SchedulingError, ValueError):
    """Raised when a time-of-day is not a 24-hour HH:MM string."""


class InvalidAvailability(SchedulingError, ValueError):
    """Raised when an availability window fails validation."""


class SlotUnavailable(SchedulingError):
    """Raised when the requested interval overlaps an active reservation."""

    def __init__(self, message: str = SLOT_UNAVAILABLE_MESSAGE):
        super().__init__(message)


class ConcurrentBookingAbort(SchedulingError):
    """Raised when the store aborts a booking transaction due to a concurrent writer."""


class InvalidStatusTransition(SchedulingError):
    """Raised when an appointment cannot move to the requested status."""


class StaleReservation(SchedulingError):
    """Raised when an appointment changed since the caller read it."""


class StoreUnavailable(SchedulingError):
    """Raised for transient store faults such as timeouts or lost connections."""
