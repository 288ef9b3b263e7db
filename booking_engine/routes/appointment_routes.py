from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, field_validator
from sqlalchemy.exc import SQLAlchemyError

from booking_engine.auth.dependencies import (
    Caller,
    ensure_party,
    ensure_provider,
    get_current_caller,
)
from booking_engine.core import config
from booking_engine.core.errors import BookingError
from booking_engine.core.state_machine import AppointmentStatus
from booking_engine.models.appointment import Appointment
from booking_engine.routes.http_errors import database_unavailable, to_http_exception
from booking_engine.services.booking import BookingService
from booking_engine.wiring import get_booking_service

router = APIRouter(tags=['appointments'])


def _normalize_notes(value: str | None) -> str | None:
    if value is None:
        return None

    normalized = value.strip()
    if not normalized:
        return None

    if len(normalized) > config.MAX_NOTES_LENGTH:
        raise ValueError(f'Notes must be {config.MAX_NOTES_LENGTH} characters or fewer.')

    return normalized


class CreateAppointmentRequest(BaseModel):
    provider_id: str
    start_time: datetime
    end_time: datetime
    title: str
    notes: str | None = None

    @field_validator('provider_id')
    @classmethod
    def validate_provider_id(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError('Provider is required.')
        return normalized

    @field_validator('title')
    @classmethod
    def validate_title(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError('Title is required.')
        return normalized

    @field_validator('notes')
    @classmethod
    def validate_notes(cls, value: str | None) -> str | None:
        return _normalize_notes(value)


class RescheduleAppointmentRequest(BaseModel):
    start_time: datetime
    end_time: datetime


class UpdateAppointmentRequest(BaseModel):
    title: str | None = None
    notes: str | None = None

    @field_validator('title')
    @classmethod
    def validate_title(cls, value: str | None) -> str | None:
        if value is None:
            return None
        normalized = value.strip()
        if not normalized:
            raise ValueError('Title cannot be blank.')
        return normalized

    @field_validator('notes')
    @classmethod
    def validate_notes(cls, value: str | None) -> str | None:
        return _normalize_notes(value)


class AppointmentResponse(BaseModel):
    id: str
    provider_id: str
    requester_id: str
    start_time: datetime
    end_time: datetime
    status: AppointmentStatus
    title: str
    notes: str | None = None
    external_event_ref: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    class Config:
        from_attributes = True


def _load_for_caller(service: BookingService, appointment_id: str, caller: Caller) -> Appointment:
    try:
        appointment = service.get(appointment_id)
    except BookingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc

    ensure_party(caller, appointment)
    return appointment


def _run(operation, *args, **kwargs) -> Appointment:
    try:
        return operation(*args, **kwargs)
    except BookingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.post('', response_model=AppointmentResponse, status_code=status.HTTP_201_CREATED)
def create_appointment(
    data: CreateAppointmentRequest,
    caller: Caller = Depends(get_current_caller),
    service: BookingService = Depends(get_booking_service),
):
    if not caller.is_requester:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={'code': 'forbidden', 'message': 'Only patients can book appointments.'},
        )

    return _run(
        service.create,
        provider_id=data.provider_id,
        requester_id=caller.subject,
        start=data.start_time,
        end=data.end_time,
        title=data.title,
        notes=data.notes,
    )


@router.get('', response_model=list[AppointmentResponse])
def list_my_appointments(
    start: datetime | None = Query(default=None),
    end: datetime | None = Query(default=None),
    appointment_status: AppointmentStatus | None = Query(default=None, alias='status'),
    caller: Caller = Depends(get_current_caller),
    service: BookingService = Depends(get_booking_service),
):
    lister = service.list_for_provider if caller.is_provider else service.list_for_requester
    try:
        return lister(caller.subject, start=start, end=end, status=appointment_status)
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.get('/{appointment_id}', response_model=AppointmentResponse)
def get_appointment(
    appointment_id: str,
    caller: Caller = Depends(get_current_caller),
    service: BookingService = Depends(get_booking_service),
):
    return _load_for_caller(service, appointment_id, caller)


@router.patch('/{appointment_id}', response_model=AppointmentResponse)
def update_appointment(
    appointment_id: str,
    data: UpdateAppointmentRequest,
    caller: Caller = Depends(get_current_caller),
    service: BookingService = Depends(get_booking_service),
):
    _load_for_caller(service, appointment_id, caller)
    return _run(service.update_details, appointment_id, title=data.title, notes=data.notes)


@router.patch('/{appointment_id}/reschedule', response_model=AppointmentResponse)
def reschedule_appointment(
    appointment_id: str,
    data: RescheduleAppointmentRequest,
    caller: Caller = Depends(get_current_caller),
    service: BookingService = Depends(get_booking_service),
):
    _load_for_caller(service, appointment_id, caller)
    return _run(service.reschedule, appointment_id, data.start_time, data.end_time)


@router.post('/{appointment_id}/cancel', response_model=AppointmentResponse)
def cancel_appointment(
    appointment_id: str,
    caller: Caller = Depends(get_current_caller),
    service: BookingService = Depends(get_booking_service),
):
    _load_for_caller(service, appointment_id, caller)
    return _run(service.cancel, appointment_id)


@router.post('/{appointment_id}/no-show', response_model=AppointmentResponse)
def mark_no_show(
    appointment_id: str,
    caller: Caller = Depends(get_current_caller),
    service: BookingService = Depends(get_booking_service),
):
    appointment = _load_for_caller(service, appointment_id, caller)
    ensure_provider(caller, appointment)
    return _run(service.mark_no_show, appointment_id)


@router.post('/{appointment_id}/complete', response_model=AppointmentResponse)
def complete_appointment(
    appointment_id: str,
    caller: Caller = Depends(get_current_caller),
    service: BookingService = Depends(get_booking_service),
):
    appointment = _load_for_caller(service, appointment_id, caller)
    ensure_provider(caller, appointment)
    return _run(service.complete, appointment_id)
