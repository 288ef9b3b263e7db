from enum import Enum

from booking_engine.core.errors import InvalidTransition


class AppointmentStatus(str, Enum):
    SCHEDULED = 'SCHEDULED'
    CANCELLED = 'CANCELLED'
    NO_SHOW = 'NO_SHOW'
    COMPLETED = 'COMPLETED'


TERMINAL_STATUSES = frozenset({
    AppointmentStatus.CANCELLED,
    AppointmentStatus.NO_SHOW,
    AppointmentStatus.COMPLETED,
})

# Statuses that still hold the provider's time.
BLOCKING_STATUSES = frozenset({
    AppointmentStatus.SCHEDULED,
    AppointmentStatus.COMPLETED,
})

ALLOWED_TRANSITIONS: dict[AppointmentStatus, frozenset[AppointmentStatus]] = {
    AppointmentStatus.SCHEDULED: frozenset(TERMINAL_STATUSES),
    AppointmentStatus.CANCELLED: frozenset(),
    AppointmentStatus.NO_SHOW: frozenset(),
    AppointmentStatus.COMPLETED: frozenset(),
}


def is_terminal(status: AppointmentStatus | str) -> bool:
    return AppointmentStatus(status) in TERMINAL_STATUSES


def ensure_transition(current: AppointmentStatus | str, target: AppointmentStatus | str) -> AppointmentStatus:
    current_status = AppointmentStatus(current)
    target_status = AppointmentStatus(target)

    if target_status not in ALLOWED_TRANSITIONS[current_status]:
        raise InvalidTransition(
            f'Cannot move an appointment from {current_status.value} to {target_status.value}.'
        )

    return target_status


def ensure_mutable(current: AppointmentStatus | str) -> None:
    """Details and time window may only change while the appointment is scheduled."""
    if AppointmentStatus(current) is not AppointmentStatus.SCHEDULED:
        raise InvalidTransition(
            f'Appointment is {AppointmentStatus(current).value} and can no longer be changed.'
        )
