import logging
from functools import lru_cache

from booking_engine.core import config
from booking_engine.database import SessionLocal
from booking_engine.services.availability import AvailabilityCalculator
from booking_engine.services.booking import BookingService
from booking_engine.services.calendar_mirror import CalendarMirror
from booking_engine.services.calendar_sync import (
    CalendarSyncAdapter,
    GoogleCalendarAdapter,
    NullCalendarAdapter,
)
from booking_engine.services.conflict_guard import ProviderConflictGuard
from booking_engine.services.working_hours import WorkingHoursDirectory

logger = logging.getLogger(__name__)


@lru_cache
def get_calendar_adapter() -> CalendarSyncAdapter:
    if config.CALENDAR_PROVIDER == "google":
        if not config.GOOGLE_CLIENT_ID or not config.GOOGLE_CLIENT_SECRET:
            logger.warning("Google Calendar selected without OAuth client credentials; token refresh will fail")
        return GoogleCalendarAdapter(session_factory=SessionLocal)
    return NullCalendarAdapter()


@lru_cache
def get_working_hours() -> WorkingHoursDirectory:
    return WorkingHoursDirectory(session_factory=SessionLocal)


@lru_cache
def get_calendar_mirror() -> CalendarMirror:
    return CalendarMirror(adapter=get_calendar_adapter(), session_factory=SessionLocal)


@lru_cache
def get_conflict_guard() -> ProviderConflictGuard:
    return ProviderConflictGuard()


@lru_cache
def get_availability_calculator() -> AvailabilityCalculator:
    return AvailabilityCalculator(
        calendar=get_calendar_adapter(),
        session_factory=SessionLocal,
        working_hours=get_working_hours(),
    )


@lru_cache
def get_booking_service() -> BookingService:
    return BookingService(
        session_factory=SessionLocal,
        working_hours=get_working_hours(),
        calendar_mirror=get_calendar_mirror(),
        guard=get_conflict_guard(),
    )
