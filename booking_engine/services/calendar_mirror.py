import logging
from concurrent.futures import Future, ThreadPoolExecutor, wait
from threading import Lock
from typing import Callable

from sqlalchemy.orm import Session

from booking_engine.core import config
from booking_engine.core.errors import BookingError
from booking_engine.core.state_machine import AppointmentStatus
from booking_engine.services import ledger
from booking_engine.services.calendar_sync import CalendarSyncAdapter

logger = logging.getLogger(__name__)


class CalendarMirror:
    """Copies committed bookings to the external calendar in the background.

    Tasks only carry an appointment id and re-read the row when they run, so
    a task always mirrors the latest committed state. With a single worker
    (the default) tasks run in submission order.
    """

    def __init__(
        self,
        adapter: CalendarSyncAdapter,
        session_factory: Callable[[], Session],
        max_workers: int | None = None,
    ) -> None:
        self._adapter = adapter
        self._session_factory = session_factory
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers or config.MIRROR_WORKERS,
            thread_name_prefix='calendar-mirror',
        )
        self._pending: set[Future] = set()
        self._pending_lock = Lock()

    @property
    def adapter(self) -> CalendarSyncAdapter:
        return self._adapter

    def mirror_created(self, appointment_id: str) -> Future:
        return self._submit(self._create, appointment_id)

    def mirror_updated(self, appointment_id: str) -> Future:
        return self._submit(self._update, appointment_id)

    def mirror_cancelled(self, appointment_id: str) -> Future:
        return self._submit(self._delete, appointment_id)

    def flush(self, timeout: float | None = None) -> None:
        """Block until every task submitted so far has finished."""
        with self._pending_lock:
            pending = set(self._pending)
        wait(pending, timeout=timeout)

    def shutdown(self) -> None:
        self._executor.shutdown(wait=True)

    def _submit(self, task: Callable[[str], None], appointment_id: str) -> Future:
        future = self._executor.submit(self._run, task, appointment_id)
        with self._pending_lock:
            self._pending.add(future)
        future.add_done_callback(self._forget)
        return future

    def _forget(self, future: Future) -> None:
        with self._pending_lock:
            self._pending.discard(future)

    def _run(self, task: Callable[[str], None], appointment_id: str) -> None:
        try:
            task(appointment_id)
        except BookingError as exc:
            logger.warning(
                'Calendar mirroring failed; local booking is unaffected',
                extra={'appointment_id': appointment_id, 'task': task.__name__, 'error': exc.message},
            )
        except Exception:
            logger.exception(
                'Unexpected calendar mirroring error',
                extra={'appointment_id': appointment_id, 'task': task.__name__},
            )

    def _create(self, appointment_id: str) -> None:
        with self._session_factory() as db:
            appointment = ledger.require_appointment(db, appointment_id)
        if appointment.external_event_ref:
            return

        external_ref = self._adapter.mirror_create(appointment)
        if not external_ref:
            return

        with self._session_factory() as db:
            current = ledger.set_external_event_ref(db, appointment_id, external_ref)
            db.commit()

        # Cancelled while the remote event was being created.
        if current.status == AppointmentStatus.CANCELLED.value:
            self._adapter.mirror_delete(current.provider_id, external_ref)
            with self._session_factory() as db:
                ledger.set_external_event_ref(db, appointment_id, None)
                db.commit()

    def _update(self, appointment_id: str) -> None:
        with self._session_factory() as db:
            appointment = ledger.require_appointment(db, appointment_id)
        if appointment.external_event_ref:
            self._adapter.mirror_update(appointment)

    def _delete(self, appointment_id: str) -> None:
        with self._session_factory() as db:
            appointment = ledger.require_appointment(db, appointment_id)
        if not appointment.external_event_ref:
            return

        self._adapter.mirror_delete(appointment.provider_id, appointment.external_event_ref)
        with self._session_factory() as db:
            ledger.set_external_event_ref(db, appointment_id, None)
            db.commit()
