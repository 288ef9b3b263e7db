"""Typed failures raised by the booking engine."""


class BookingError(Exception):
    """Base class for every failure the engine reports to its callers."""

    code = 'booking_error'

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class SlotConflict(BookingError):
    """The requested window overlaps an existing non-cancelled appointment."""

    code = 'slot_conflict'


class InvalidTransition(BookingError):
    """The appointment lifecycle does not allow the requested change."""

    code = 'invalid_transition'


class NotFound(BookingError):
    code = 'not_found'


class ValidationError(BookingError):
    """Malformed interval, or a window outside the provider's working hours."""

    code = 'validation_error'


class ExternalCalendarUnavailable(BookingError):
    """Raised by calendar adapters; the engine degrades instead of failing."""

    code = 'external_calendar_unavailable'


class TransientError(BookingError):
    """The ledger kept failing after bounded retries. Safe to retry later."""

    code = 'transient_error'
