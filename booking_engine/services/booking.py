"""Create, reschedule and close out appointments.

This is the only writer of appointment rows. Conflict checks and the write
that follows them run inside one transaction while the provider's conflict
guard is held; the external calendar is never consulted there.
"""

import logging
from datetime import datetime
from typing import Callable

from sqlalchemy.orm import Session

from booking_engine.core import config, errors
from booking_engine.core.intervals import Interval, to_utc
from booking_engine.core.state_machine import (
    AppointmentStatus,
    ensure_mutable,
    ensure_transition,
)
from booking_engine.database import utc_now
from booking_engine.models.appointment import Appointment
from booking_engine.services import ledger
from booking_engine.services.calendar_mirror import CalendarMirror
from booking_engine.services.conflict_guard import ProviderConflictGuard
from booking_engine.services.working_hours import WorkingHoursDirectory

logger = logging.getLogger(__name__)


class BookingService:
    def __init__(
        self,
        session_factory: Callable[[], Session],
        working_hours: WorkingHoursDirectory,
        calendar_mirror: CalendarMirror,
        guard: ProviderConflictGuard | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._session_factory = session_factory
        self._working_hours = working_hours
        self._mirror = calendar_mirror
        self._guard = guard or ProviderConflictGuard()
        self._clock = clock

    def create(
        self,
        provider_id: str,
        requester_id: str,
        start: datetime,
        end: datetime,
        title: str,
        notes: str | None = None,
    ) -> Appointment:
        window = self._validated_window(provider_id, start, end)
        title = _clean_title(title)
        notes = _clean_notes(notes)

        def _book() -> Appointment:
            with self._session_factory() as db:
                with self._guard.hold(provider_id, db):
                    if ledger.find_overlapping(db, provider_id, window.start, window.end):
                        raise errors.SlotConflict('This time slot is no longer available.')

                    appointment = ledger.insert(
                        db,
                        Appointment(
                            provider_id=provider_id,
                            requester_id=requester_id,
                            start_time=window.start,
                            end_time=window.end,
                            status=AppointmentStatus.SCHEDULED.value,
                            title=title,
                            notes=notes,
                        ),
                    )
                    db.commit()
                    return appointment

        appointment = ledger.run_with_retry(_book)
        logger.info(
            'Appointment booked',
            extra={'appointment_id': appointment.id, 'provider_id': provider_id},
        )
        self._mirror.mirror_created(appointment.id)
        return appointment

    def reschedule(self, appointment_id: str, new_start: datetime, new_end: datetime) -> Appointment:
        with self._session_factory() as db:
            existing = ledger.get_appointment(db, appointment_id)
        if existing is None or existing.status != AppointmentStatus.SCHEDULED.value:
            raise errors.NotFound('No scheduled appointment with that id.')

        provider_id = existing.provider_id
        window = self._validated_window(provider_id, new_start, new_end)

        def _move() -> Appointment:
            with self._session_factory() as db:
                with self._guard.hold(provider_id, db):
                    current = ledger.get_appointment(db, appointment_id)
                    if current is None or current.status != AppointmentStatus.SCHEDULED.value:
                        raise errors.NotFound('No scheduled appointment with that id.')

                    if ledger.find_overlapping(
                        db, provider_id, window.start, window.end, exclude_id=appointment_id
                    ):
                        raise errors.SlotConflict('This time slot is no longer available.')

                    appointment = ledger.update_window(db, appointment_id, window.start, window.end)
                    db.commit()
                    return appointment

        appointment = ledger.run_with_retry(_move)
        logger.info(
            'Appointment rescheduled',
            extra={'appointment_id': appointment_id, 'provider_id': provider_id},
        )
        self._mirror.mirror_updated(appointment_id)
        return appointment

    def cancel(self, appointment_id: str) -> Appointment:
        def _cancel() -> tuple[Appointment, bool]:
            with self._session_factory() as db:
                appointment = ledger.require_appointment(db, appointment_id)
                with self._guard.hold(appointment.provider_id, db):
                    db.refresh(appointment)
                    if appointment.status == AppointmentStatus.CANCELLED.value:
                        return appointment, False

                    ensure_transition(appointment.status, AppointmentStatus.CANCELLED)
                    appointment = ledger.update_status(db, appointment_id, AppointmentStatus.CANCELLED)
                    db.commit()
                    return appointment, True

        appointment, changed = ledger.run_with_retry(_cancel)
        if changed:
            logger.info('Appointment cancelled', extra={'appointment_id': appointment_id})
            self._mirror.mirror_cancelled(appointment_id)
        return appointment

    def mark_no_show(self, appointment_id: str) -> Appointment:
        return self._close_out(appointment_id, AppointmentStatus.NO_SHOW)

    def complete(self, appointment_id: str) -> Appointment:
        return self._close_out(appointment_id, AppointmentStatus.COMPLETED)

    def update_details(
        self,
        appointment_id: str,
        title: str | None = None,
        notes: str | None = None,
    ) -> Appointment:
        title = _clean_title(title) if title is not None else None
        notes = _clean_notes(notes) if notes is not None else None

        def _update() -> Appointment:
            with self._session_factory() as db:
                appointment = ledger.require_appointment(db, appointment_id)
                with self._guard.hold(appointment.provider_id, db):
                    db.refresh(appointment)
                    ensure_mutable(appointment.status)
                    appointment = ledger.update_details(db, appointment_id, title=title, notes=notes)
                    db.commit()
                    return appointment

        appointment = ledger.run_with_retry(_update)
        self._mirror.mirror_updated(appointment_id)
        return appointment

    def get(self, appointment_id: str) -> Appointment:
        with self._session_factory() as db:
            return ledger.require_appointment(db, appointment_id)

    def list_for_provider(
        self,
        provider_id: str,
        start: datetime | None = None,
        end: datetime | None = None,
        status: AppointmentStatus | None = None,
    ) -> list[Appointment]:
        with self._session_factory() as db:
            return ledger.list_appointments(
                db,
                provider_id=provider_id,
                start=self._normalize(start),
                end=self._normalize(end),
                status=status,
            )

    def list_for_requester(
        self,
        requester_id: str,
        start: datetime | None = None,
        end: datetime | None = None,
        status: AppointmentStatus | None = None,
    ) -> list[Appointment]:
        with self._session_factory() as db:
            return ledger.list_appointments(
                db,
                requester_id=requester_id,
                start=self._normalize(start),
                end=self._normalize(end),
                status=status,
            )

    def _close_out(self, appointment_id: str, target: AppointmentStatus) -> Appointment:
        def _transition() -> Appointment:
            with self._session_factory() as db:
                appointment = ledger.require_appointment(db, appointment_id)
                with self._guard.hold(appointment.provider_id, db):
                    db.refresh(appointment)
                    ensure_transition(appointment.status, target)

                    now = self._clock()
                    if target is AppointmentStatus.COMPLETED and appointment.end_time > now:
                        raise errors.InvalidTransition('An appointment can only be completed after it ends.')
                    if target is AppointmentStatus.NO_SHOW and appointment.start_time > now:
                        raise errors.InvalidTransition(
                            'An appointment can only be marked as a no-show after it starts.'
                        )

                    appointment = ledger.update_status(db, appointment_id, target)
                    db.commit()
                    return appointment

        appointment = ledger.run_with_retry(_transition)
        logger.info(
            'Appointment closed out',
            extra={'appointment_id': appointment_id, 'status': target.value},
        )
        return appointment

    def _normalize(self, value: datetime | None) -> datetime | None:
        if value is None:
            return None
        return to_utc(value, self._working_hours.timezone)

    def _validated_window(self, provider_id: str, start: datetime, end: datetime) -> Interval:
        start_utc = self._normalize(start)
        end_utc = self._normalize(end)
        if end_utc <= start_utc:
            raise errors.ValidationError('Appointment end must be after its start.')

        window = Interval(start_utc, end_utc)
        if not self._working_hours.is_within_working_hours(provider_id, window):
            raise errors.ValidationError("Appointment is outside the provider's working hours.")
        return window


def _clean_title(title: str) -> str:
    normalized = (title or '').strip()
    if not normalized:
        raise errors.ValidationError('Appointment title is required.')
    if len(normalized) > 255:
        raise errors.ValidationError('Appointment title must be 255 characters or fewer.')
    return normalized


def _clean_notes(notes: str | None) -> str | None:
    if notes is None:
        return None
    normalized = notes.strip()
    if not normalized:
        return None
    if len(normalized) > config.MAX_NOTES_LENGTH:
        raise errors.ValidationError(f'Notes must be {config.MAX_NOTES_LENGTH} characters or fewer.')
    return normalized
