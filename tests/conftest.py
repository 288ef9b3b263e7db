import os
import threading
from datetime import datetime, time, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

os.environ.setdefault('DATABASE_URL', 'sqlite:///:memory:')
os.environ.setdefault('BUSINESS_TIMEZONE', 'UTC')
os.environ.setdefault('JWT_SECRET_KEY', 'test-secret-key-that-is-long-enough-for-hs256')

from booking_engine.core.errors import ExternalCalendarUnavailable  # noqa: E402
from booking_engine.core.intervals import BusyInterval, BusySource  # noqa: E402
from booking_engine.database import Base  # noqa: E402
from booking_engine.models import appointment, calendar_credential, working_hours  # noqa: E402,F401
from booking_engine.services.booking import BookingService  # noqa: E402
from booking_engine.services.calendar_mirror import CalendarMirror  # noqa: E402
from booking_engine.services.calendar_sync import CalendarSyncAdapter  # noqa: E402
from booking_engine.services.conflict_guard import ProviderConflictGuard  # noqa: E402
from booking_engine.services.working_hours import WorkingHoursDirectory  # noqa: E402

FIXED_NOW = datetime(2026, 1, 1, 8, 0, tzinfo=timezone.utc)


class FakeCalendarAdapter(CalendarSyncAdapter):
    def __init__(self) -> None:
        self.busy: list[tuple[datetime, datetime]] = []
        self.fail_fetch = False
        self.fail_mirror = False
        self.fetch_delay: float = 0.0
        self.created: list[str] = []
        self.updated: list[str] = []
        self.deleted: list[str] = []
        self._lock = threading.Lock()
        self._counter = 0

    def fetch_busy(self, provider_id, start, end):
        if self.fetch_delay:
            threading.Event().wait(self.fetch_delay)
        if self.fail_fetch:
            raise ExternalCalendarUnavailable('calendar is down')
        return [BusyInterval(busy_start, busy_end, BusySource.EXTERNAL) for busy_start, busy_end in self.busy]

    def mirror_create(self, appointment):
        if self.fail_mirror:
            raise ExternalCalendarUnavailable('calendar is down')
        with self._lock:
            self._counter += 1
            external_ref = f'evt-{self._counter}'
        self.created.append(appointment.id)
        return external_ref

    def mirror_update(self, appointment):
        if self.fail_mirror:
            raise ExternalCalendarUnavailable('calendar is down')
        self.updated.append(appointment.id)

    def mirror_delete(self, provider_id, external_ref):
        if self.fail_mirror:
            raise ExternalCalendarUnavailable('calendar is down')
        self.deleted.append(external_ref)


@pytest.fixture
def session_factory(tmp_path):
    engine = create_engine(
        f'sqlite:///{tmp_path / "booking.db"}',
        connect_args={'check_same_thread': False, 'timeout': 15},
    )
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)
    try:
        yield factory
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def fake_calendar() -> FakeCalendarAdapter:
    return FakeCalendarAdapter()


@pytest.fixture
def working_hours_directory(session_factory) -> WorkingHoursDirectory:
    return WorkingHoursDirectory(
        session_factory=session_factory,
        timezone_name='UTC',
        default_start=time(9, 0),
        default_end=time(17, 0),
    )


@pytest.fixture
def calendar_mirror(fake_calendar, session_factory):
    mirror = CalendarMirror(adapter=fake_calendar, session_factory=session_factory, max_workers=1)
    try:
        yield mirror
    finally:
        mirror.shutdown()


@pytest.fixture
def booking_service(session_factory, working_hours_directory, calendar_mirror) -> BookingService:
    return BookingService(
        session_factory=session_factory,
        working_hours=working_hours_directory,
        calendar_mirror=calendar_mirror,
        guard=ProviderConflictGuard(),
        clock=lambda: FIXED_NOW,
    )
