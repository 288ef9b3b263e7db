"""Half-open time interval helpers.

Every interval is ``[start, end)``: two back-to-back intervals touch but do
not overlap. All datetimes handled here are timezone-aware UTC values.
"""

from dataclasses import dataclass
from datetime import datetime, timezone, tzinfo
from enum import Enum
from typing import Iterable

from booking_engine.core.errors import ValidationError


class BusySource(str, Enum):
    EXTERNAL = 'EXTERNAL'
    LOCAL = 'LOCAL'


@dataclass(frozen=True)
class Interval:
    start: datetime
    end: datetime

    def __post_init__(self) -> None:
        if self.start >= self.end:
            raise ValidationError('Interval start must be before its end.')

    @property
    def duration_minutes(self) -> int:
        return int((self.end - self.start).total_seconds() // 60)


@dataclass(frozen=True)
class BusyInterval(Interval):
    source: BusySource = BusySource.LOCAL


@dataclass(frozen=True)
class Slot:
    start: datetime
    end: datetime
    available: bool


def to_utc(value: datetime, assumed_tz: tzinfo = timezone.utc) -> datetime:
    """Normalize ``value`` to aware UTC; naive values are read in ``assumed_tz``."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=assumed_tz)
    return value.astimezone(timezone.utc)


def overlaps(a: Interval, b: Interval) -> bool:
    if a.start >= a.end or b.start >= b.end:
        return False
    return a.start < b.end and b.start < a.end


def contains(outer: Interval, inner: Interval) -> bool:
    return outer.start <= inner.start and inner.end <= outer.end


def merge_sorted(intervals: Iterable[Interval]) -> list[Interval]:
    """Collapse start-sorted intervals into the minimal non-overlapping cover.

    Touching intervals (``next.start == current.end``) are merged as well.
    """
    merged: list[Interval] = []
    current_start = None
    current_end = None

    for interval in intervals:
        if current_start is None:
            current_start, current_end = interval.start, interval.end
            continue

        if interval.start <= current_end:
            current_end = max(current_end, interval.end)
        else:
            merged.append(Interval(current_start, current_end))
            current_start, current_end = interval.start, interval.end

    if current_start is not None:
        merged.append(Interval(current_start, current_end))

    return merged


def subtract(window: Interval, busy_merged: Iterable[Interval]) -> list[Interval]:
    """Return the free gaps of ``window`` not covered by ``busy_merged``."""
    gaps: list[Interval] = []
    cursor = window.start

    for busy in busy_merged:
        if busy.end <= cursor:
            continue
        if busy.start >= window.end:
            break
        if busy.start > cursor:
            gaps.append(Interval(cursor, busy.start))
        cursor = max(cursor, busy.end)
        if cursor >= window.end:
            break

    if cursor < window.end:
        gaps.append(Interval(cursor, window.end))

    return gaps
