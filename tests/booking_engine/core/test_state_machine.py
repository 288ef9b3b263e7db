import pytest

from booking_engine.core.errors import InvalidTransition
from booking_engine.core.state_machine import (
    TERMINAL_STATUSES,
    AppointmentStatus,
    ensure_mutable,
    ensure_transition,
    is_terminal,
)


@pytest.mark.parametrize('target', sorted(TERMINAL_STATUSES))
def test_scheduled_can_move_to_every_terminal_status(target: AppointmentStatus) -> None:
    assert ensure_transition(AppointmentStatus.SCHEDULED, target) is target


@pytest.mark.parametrize('current', sorted(TERMINAL_STATUSES))
@pytest.mark.parametrize('target', list(AppointmentStatus))
def test_terminal_statuses_reject_every_transition(current: AppointmentStatus, target: AppointmentStatus) -> None:
    with pytest.raises(InvalidTransition):
        ensure_transition(current, target)


def test_nothing_returns_to_scheduled() -> None:
    with pytest.raises(InvalidTransition):
        ensure_transition(AppointmentStatus.SCHEDULED, AppointmentStatus.SCHEDULED)


def test_transition_accepts_stored_string_values() -> None:
    assert ensure_transition('SCHEDULED', 'CANCELLED') is AppointmentStatus.CANCELLED


def test_is_terminal() -> None:
    assert not is_terminal(AppointmentStatus.SCHEDULED)
    assert is_terminal('NO_SHOW')


def test_only_scheduled_appointments_are_mutable() -> None:
    ensure_mutable(AppointmentStatus.SCHEDULED)

    with pytest.raises(InvalidTransition):
        ensure_mutable(AppointmentStatus.COMPLETED)
