"""Query and write helpers for the local appointment ledger.

Every function takes the caller's session so check-then-write sequences can
share one transaction under the provider conflict guard.
"""

import logging
import time
from datetime import datetime
from typing import Callable, TypeVar

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from booking_engine.core import config, errors
from booking_engine.core.state_machine import BLOCKING_STATUSES, AppointmentStatus
from booking_engine.models.appointment import Appointment

logger = logging.getLogger(__name__)

T = TypeVar('T')

_BLOCKING_STATUS_VALUES = [status.value for status in BLOCKING_STATUSES]


def find_overlapping(
    db: Session,
    provider_id: str,
    start: datetime,
    end: datetime,
    exclude_id: str | None = None,
) -> list[Appointment]:
    query = db.query(Appointment).filter(
        Appointment.provider_id == provider_id,
        Appointment.status.in_(_BLOCKING_STATUS_VALUES),
        Appointment.start_time < end,
        Appointment.end_time > start,
    )
    if exclude_id is not None:
        query = query.filter(Appointment.id != exclude_id)

    return query.order_by(Appointment.start_time.asc()).all()


def get_appointment(db: Session, appointment_id: str) -> Appointment | None:
    return db.query(Appointment).filter(Appointment.id == appointment_id).first()


def require_appointment(db: Session, appointment_id: str) -> Appointment:
    appointment = get_appointment(db, appointment_id)
    if appointment is None:
        raise errors.NotFound('Appointment not found.')
    return appointment


def list_appointments(
    db: Session,
    provider_id: str | None = None,
    requester_id: str | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    status: AppointmentStatus | None = None,
) -> list[Appointment]:
    query = db.query(Appointment)
    if provider_id is not None:
        query = query.filter(Appointment.provider_id == provider_id)
    if requester_id is not None:
        query = query.filter(Appointment.requester_id == requester_id)
    if start is not None:
        query = query.filter(Appointment.start_time >= start)
    if end is not None:
        query = query.filter(Appointment.end_time <= end)
    if status is not None:
        query = query.filter(Appointment.status == AppointmentStatus(status).value)

    return query.order_by(Appointment.start_time.asc()).all()


def insert(db: Session, appointment: Appointment) -> Appointment:
    db.add(appointment)
    db.flush()
    return appointment


def update_status(db: Session, appointment_id: str, status: AppointmentStatus) -> Appointment:
    appointment = require_appointment(db, appointment_id)
    appointment.status = AppointmentStatus(status).value
    db.flush()
    return appointment


def update_window(db: Session, appointment_id: str, start: datetime, end: datetime) -> Appointment:
    appointment = require_appointment(db, appointment_id)
    appointment.start_time = start
    appointment.end_time = end
    db.flush()
    return appointment


def update_details(
    db: Session,
    appointment_id: str,
    title: str | None = None,
    notes: str | None = None,
) -> Appointment:
    appointment = require_appointment(db, appointment_id)
    if title is not None:
        appointment.title = title
    if notes is not None:
        appointment.notes = notes
    db.flush()
    return appointment


def set_external_event_ref(db: Session, appointment_id: str, external_ref: str | None) -> Appointment:
    appointment = require_appointment(db, appointment_id)
    appointment.external_event_ref = external_ref
    db.flush()
    return appointment


def run_with_retry(
    operation: Callable[[], T],
    max_retries: int | None = None,
    base_delay: float | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Run ``operation`` again on storage contention, with exponential backoff.

    Only ``OperationalError`` (locks, dropped connections, serialization
    failures) is retried; every other exception propagates unchanged.
    """
    retries = config.LEDGER_MAX_RETRIES if max_retries is None else max_retries
    delay = config.LEDGER_RETRY_BASE_DELAY_SECONDS if base_delay is None else base_delay

    for attempt in range(retries + 1):
        try:
            return operation()
        except OperationalError as exc:
            if attempt >= retries:
                logger.error(
                    'Ledger write failed after retries',
                    extra={'attempts': attempt + 1, 'error': str(exc)},
                )
                raise errors.TransientError('The appointment ledger is busy. Please retry.') from exc

            backoff = delay * (2 ** attempt)
            logger.warning(
                'Ledger write failed, retrying in %.2fs (attempt %d/%d)',
                backoff,
                attempt + 1,
                retries,
            )
            sleep(backoff)

    raise AssertionError('unreachable')
