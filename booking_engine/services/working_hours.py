from datetime import date, datetime, time
from typing import Callable
from zoneinfo import ZoneInfo

from sqlalchemy.orm import Session

from booking_engine.core import config
from booking_engine.core.intervals import Interval, contains, merge_sorted, to_utc
from booking_engine.models.working_hours import WorkingHours

DEFAULT_WORKDAYS = frozenset(range(5))


class WorkingHoursDirectory:
    """Resolves a provider's working windows for a calendar day.

    Providers without configured rows work the default weekday hours.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        timezone_name: str | None = None,
        default_start: time | None = None,
        default_end: time | None = None,
        default_workdays: frozenset[int] = DEFAULT_WORKDAYS,
    ) -> None:
        self._session_factory = session_factory
        self._tz = ZoneInfo(timezone_name or config.BUSINESS_TIMEZONE)
        self._default_start = default_start or time(config.WORKDAY_START_HOUR, 0)
        self._default_end = default_end or time(config.WORKDAY_END_HOUR, 0)
        self._default_workdays = default_workdays

    @property
    def timezone(self) -> ZoneInfo:
        return self._tz

    def local_date(self, value: datetime) -> date:
        return to_utc(value, self._tz).astimezone(self._tz).date()

    def get_working_hours(self, provider_id: str, day: date) -> list[Interval]:
        with self._session_factory() as db:
            configured = db.query(WorkingHours).filter(WorkingHours.provider_id == provider_id).all()

        if configured:
            windows = [(row.start, row.end) for row in configured if row.weekday == day.weekday()]
        elif day.weekday() in self._default_workdays:
            windows = [(self._default_start, self._default_end)]
        else:
            windows = []

        intervals = [
            Interval(
                to_utc(datetime.combine(day, start), self._tz),
                to_utc(datetime.combine(day, end), self._tz),
            )
            for start, end in windows
            if start < end
        ]
        return merge_sorted(sorted(intervals, key=lambda interval: interval.start))

    def is_within_working_hours(self, provider_id: str, window: Interval) -> bool:
        day = self.local_date(window.start)
        return any(contains(hours, window) for hours in self.get_working_hours(provider_id, day))
