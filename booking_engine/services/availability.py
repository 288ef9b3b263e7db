"""Free-slot computation for a provider.

Availability reads take no lock. The answer is only valid until the next
write to either busy source; the booking service re-checks the ledger before
committing anything.
"""

import logging
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Callable
from zoneinfo import ZoneInfo

from sqlalchemy.orm import Session

from booking_engine.core import config
from booking_engine.core.errors import ValidationError
from booking_engine.core.intervals import (
    BusyInterval,
    BusySource,
    Interval,
    Slot,
    contains,
    merge_sorted,
    subtract,
    to_utc,
)
from booking_engine.services import ledger
from booking_engine.services.calendar_sync import CalendarSyncAdapter
from booking_engine.services.working_hours import WorkingHoursDirectory

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AvailabilityResult:
    slots: list[Slot] = field(default_factory=list)
    degraded: bool = False

    @property
    def available_slots(self) -> list[Slot]:
        return [slot for slot in self.slots if slot.available]


def generate_slots(
    window: Interval,
    busy: list[Interval],
    duration: timedelta,
    step: timedelta,
) -> list[Slot]:
    """Walk ``window`` in ``step`` increments, one ``duration``-long slot per point."""
    merged = merge_sorted(sorted(busy, key=lambda interval: interval.start))
    free_gaps = subtract(window, merged)

    slots: list[Slot] = []
    current_start = window.start
    while current_start + duration <= window.end:
        candidate = Interval(current_start, current_start + duration)
        is_available = any(contains(gap, candidate) for gap in free_gaps)
        slots.append(Slot(start=candidate.start, end=candidate.end, available=is_available))
        current_start += step

    return slots


class AvailabilityCalculator:
    def __init__(
        self,
        calendar: CalendarSyncAdapter,
        session_factory: Callable[[], Session],
        working_hours: WorkingHoursDirectory | None = None,
        external_timeout: float | None = None,
    ) -> None:
        self._calendar = calendar
        self._session_factory = session_factory
        self._working_hours = working_hours
        self._external_timeout = (
            config.EXTERNAL_CALENDAR_TIMEOUT_SECONDS if external_timeout is None else external_timeout
        )
        self._fetch_executor = ThreadPoolExecutor(max_workers=4, thread_name_prefix='calendar-fetch')

    def get_availability(
        self,
        provider_id: str,
        start: datetime,
        end: datetime,
        duration_minutes: int,
        step_minutes: int | None = None,
    ) -> AvailabilityResult:
        """Slots across ``[start, end)`` with no regard for working hours."""
        window = self._normalized_window(start, end)
        duration, step = _slot_lengths(duration_minutes, step_minutes)

        external_busy, degraded = self._fetch_external_busy(provider_id, window)
        busy = external_busy + self._local_busy(provider_id, window)

        return AvailabilityResult(slots=generate_slots(window, busy, duration, step), degraded=degraded)

    def get_bounded_availability(
        self,
        provider_id: str,
        start: datetime,
        end: datetime,
        duration_minutes: int,
        step_minutes: int | None = None,
    ) -> AvailabilityResult:
        """Like ``get_availability``, clipped to the working hours of every local day the window touches."""
        directory = self._require_working_hours()
        window = self._normalized_window(start, end)
        duration, step = _slot_lengths(duration_minutes, step_minutes)

        first_day = directory.local_date(window.start)
        last_day = directory.local_date(window.end - timedelta(microseconds=1))
        hours: list[Interval] = []
        day = first_day
        while day <= last_day:
            for working in directory.get_working_hours(provider_id, day):
                clipped_start = max(working.start, window.start)
                clipped_end = min(working.end, window.end)
                if clipped_start < clipped_end:
                    hours.append(Interval(clipped_start, clipped_end))
            day += timedelta(days=1)

        return self._slots_within(provider_id, hours, duration, step)

    def get_day_availability(
        self,
        provider_id: str,
        day: date,
        duration_minutes: int,
        step_minutes: int | None = None,
    ) -> AvailabilityResult:
        """Availability for one local day, bounded to the provider's working hours."""
        directory = self._require_working_hours()
        duration, step = _slot_lengths(duration_minutes, step_minutes)
        return self._slots_within(provider_id, directory.get_working_hours(provider_id, day), duration, step)

    def shutdown(self) -> None:
        self._fetch_executor.shutdown(wait=False, cancel_futures=True)

    def _slots_within(
        self,
        provider_id: str,
        hours: list[Interval],
        duration: timedelta,
        step: timedelta,
    ) -> AvailabilityResult:
        if not hours:
            return AvailabilityResult()

        span = Interval(hours[0].start, hours[-1].end)
        external_busy, degraded = self._fetch_external_busy(provider_id, span)
        busy = external_busy + self._local_busy(provider_id, span)

        slots: list[Slot] = []
        for window in hours:
            slots.extend(generate_slots(window, busy, duration, step))

        return AvailabilityResult(slots=slots, degraded=degraded)

    def _require_working_hours(self) -> WorkingHoursDirectory:
        if self._working_hours is None:
            raise RuntimeError('Working-hours availability needs a working-hours directory.')
        return self._working_hours

    def _normalized_window(self, start: datetime, end: datetime) -> Interval:
        tz = self._working_hours.timezone if self._working_hours is not None else ZoneInfo(config.BUSINESS_TIMEZONE)
        return Interval(to_utc(start, tz), to_utc(end, tz))

    def _local_busy(self, provider_id: str, window: Interval) -> list[BusyInterval]:
        with self._session_factory() as db:
            appointments = ledger.find_overlapping(db, provider_id, window.start, window.end)

        return [
            BusyInterval(appointment.start_time, appointment.end_time, BusySource.LOCAL)
            for appointment in appointments
        ]

    def _fetch_external_busy(self, provider_id: str, window: Interval) -> tuple[list[BusyInterval], bool]:
        future = self._fetch_executor.submit(self._calendar.fetch_busy, provider_id, window.start, window.end)
        try:
            return list(future.result(timeout=self._external_timeout)), False
        except FutureTimeoutError:
            future.cancel()
            logger.warning(
                'External calendar timed out; serving local availability only',
                extra={'provider_id': provider_id, 'timeout_seconds': self._external_timeout},
            )
        except Exception as exc:
            logger.warning(
                'External calendar unavailable; serving local availability only',
                extra={'provider_id': provider_id, 'error': str(exc)},
            )

        return [], True


def _slot_lengths(duration_minutes: int, step_minutes: int | None) -> tuple[timedelta, timedelta]:
    if duration_minutes <= 0:
        raise ValidationError('Slot duration must be a positive number of minutes.')
    if step_minutes is not None and step_minutes <= 0:
        raise ValidationError('Slot step must be a positive number of minutes.')

    return timedelta(minutes=duration_minutes), timedelta(minutes=step_minutes or duration_minutes)
