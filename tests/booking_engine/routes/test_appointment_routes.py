from datetime import datetime, timezone

import pytest
from fastapi import HTTPException
from fastapi.testclient import TestClient
from pydantic import ValidationError

from booking_engine.auth.dependencies import Caller
from booking_engine.auth.jwt_handler import create_access_token
from booking_engine.core.state_machine import AppointmentStatus
from booking_engine.main import app
from booking_engine.routes.appointment_routes import (
    CreateAppointmentRequest,
    RescheduleAppointmentRequest,
    UpdateAppointmentRequest,
    cancel_appointment,
    complete_appointment,
    create_appointment,
    get_appointment,
    list_my_appointments,
    mark_no_show,
    reschedule_appointment,
    update_appointment,
)
from booking_engine.wiring import get_booking_service

PATIENT = Caller(subject='patient-1', role='patient')
OTHER_PATIENT = Caller(subject='patient-2', role='patient')
DOCTOR = Caller(subject='dr-1', role='doctor')
OTHER_DOCTOR = Caller(subject='dr-2', role='doctor')


def _at(hour: int, minute: int = 0) -> datetime:
    return datetime(2026, 1, 5, hour, minute, tzinfo=timezone.utc)


def _book(service, start: datetime = None, end: datetime = None):
    request = CreateAppointmentRequest(
        provider_id='dr-1',
        start_time=start or _at(9),
        end_time=end or _at(9, 30),
        title='Check-up',
    )
    return create_appointment(request, caller=PATIENT, service=service)


def test_create_appointment_request_normalizes_fields() -> None:
    request = CreateAppointmentRequest(
        provider_id=' dr-1 ',
        start_time=_at(9),
        end_time=_at(9, 30),
        title=' Check-up ',
        notes='   ',
    )

    assert request.provider_id == 'dr-1'
    assert request.title == 'Check-up'
    assert request.notes is None


def test_create_appointment_request_rejects_blank_title() -> None:
    with pytest.raises(ValidationError):
        CreateAppointmentRequest(provider_id='dr-1', start_time=_at(9), end_time=_at(9, 30), title='  ')


def test_update_appointment_request_rejects_blank_title() -> None:
    with pytest.raises(ValidationError):
        UpdateAppointmentRequest(title=' ')


def test_create_appointment_books_for_the_calling_patient(booking_service) -> None:
    appointment = _book(booking_service)

    assert appointment.requester_id == 'patient-1'
    assert appointment.status == AppointmentStatus.SCHEDULED.value


def test_create_appointment_rejects_providers(booking_service) -> None:
    request = CreateAppointmentRequest(provider_id='dr-1', start_time=_at(9), end_time=_at(9, 30), title='Block')

    with pytest.raises(HTTPException) as exception_info:
        create_appointment(request, caller=DOCTOR, service=booking_service)

    assert exception_info.value.status_code == 403
    assert exception_info.value.detail['code'] == 'forbidden'


def test_create_appointment_maps_conflicts_to_409(booking_service) -> None:
    _book(booking_service)

    with pytest.raises(HTTPException) as exception_info:
        _book(booking_service, _at(9, 15), _at(9, 45))

    assert exception_info.value.status_code == 409
    assert exception_info.value.detail['code'] == 'slot_conflict'


def test_create_appointment_maps_validation_errors_to_400(booking_service) -> None:
    with pytest.raises(HTTPException) as exception_info:
        _book(booking_service, _at(18), _at(18, 30))

    assert exception_info.value.status_code == 400
    assert exception_info.value.detail['code'] == 'validation_error'


def test_get_appointment_is_limited_to_its_parties(booking_service) -> None:
    appointment = _book(booking_service)

    assert get_appointment(appointment.id, caller=PATIENT, service=booking_service).id == appointment.id
    assert get_appointment(appointment.id, caller=DOCTOR, service=booking_service).id == appointment.id

    for outsider in (OTHER_PATIENT, OTHER_DOCTOR):
        with pytest.raises(HTTPException) as exception_info:
            get_appointment(appointment.id, caller=outsider, service=booking_service)
        assert exception_info.value.status_code == 403


def test_get_appointment_returns_not_found_when_missing(booking_service) -> None:
    with pytest.raises(HTTPException) as exception_info:
        get_appointment('missing', caller=PATIENT, service=booking_service)

    assert exception_info.value.status_code == 404
    assert exception_info.value.detail['code'] == 'not_found'


def test_list_my_appointments_uses_the_callers_role(booking_service) -> None:
    appointment = _book(booking_service)

    as_patient = list_my_appointments(None, None, None, caller=PATIENT, service=booking_service)
    as_doctor = list_my_appointments(None, None, None, caller=DOCTOR, service=booking_service)
    as_stranger = list_my_appointments(None, None, None, caller=OTHER_PATIENT, service=booking_service)

    assert [row.id for row in as_patient] == [appointment.id]
    assert [row.id for row in as_doctor] == [appointment.id]
    assert as_stranger == []


def test_reschedule_and_update_by_the_patient(booking_service) -> None:
    appointment = _book(booking_service)

    moved = reschedule_appointment(
        appointment.id,
        RescheduleAppointmentRequest(start_time=_at(10), end_time=_at(10, 30)),
        caller=PATIENT,
        service=booking_service,
    )
    updated = update_appointment(
        appointment.id,
        UpdateAppointmentRequest(notes='Bring lab results'),
        caller=PATIENT,
        service=booking_service,
    )

    assert moved.start_time == _at(10)
    assert updated.notes == 'Bring lab results'
    assert updated.title == 'Check-up'


def test_cancel_twice_returns_the_cancelled_appointment(booking_service) -> None:
    appointment = _book(booking_service)

    first = cancel_appointment(appointment.id, caller=PATIENT, service=booking_service)
    second = cancel_appointment(appointment.id, caller=DOCTOR, service=booking_service)

    assert first.status == second.status == AppointmentStatus.CANCELLED.value


def test_close_out_is_reserved_for_the_provider(booking_service) -> None:
    appointment = _book(booking_service)

    with pytest.raises(HTTPException) as exception_info:
        complete_appointment(appointment.id, caller=PATIENT, service=booking_service)
    assert exception_info.value.status_code == 403

    with pytest.raises(HTTPException) as exception_info:
        mark_no_show(appointment.id, caller=PATIENT, service=booking_service)
    assert exception_info.value.status_code == 403


def test_close_out_before_the_visit_is_an_invalid_transition(booking_service) -> None:
    appointment = _book(booking_service)

    with pytest.raises(HTTPException) as exception_info:
        complete_appointment(appointment.id, caller=DOCTOR, service=booking_service)

    assert exception_info.value.status_code == 409
    assert exception_info.value.detail['code'] == 'invalid_transition'


@pytest.fixture
def client(booking_service):
    app.dependency_overrides[get_booking_service] = lambda: booking_service
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def _auth(subject: str, role: str) -> dict:
    return {'Authorization': f'Bearer {create_access_token(subject, role)}'}


def test_booking_over_http(client) -> None:
    payload = {
        'provider_id': 'dr-1',
        'start_time': '2026-01-05T09:00:00Z',
        'end_time': '2026-01-05T09:30:00Z',
        'title': 'Check-up',
    }

    created = client.post('/appointments', json=payload, headers=_auth('patient-1', 'patient'))
    conflict = client.post('/appointments', json=payload, headers=_auth('patient-2', 'patient'))

    assert created.status_code == 201
    assert created.json()['status'] == 'SCHEDULED'
    assert conflict.status_code == 409
    assert conflict.json()['detail']['code'] == 'slot_conflict'

    listed = client.get('/appointments', headers=_auth('dr-1', 'doctor'))
    assert [row['id'] for row in listed.json()] == [created.json()['id']]


def test_requests_need_a_valid_token(client) -> None:
    missing = client.get('/appointments')
    invalid = client.get('/appointments', headers={'Authorization': 'Bearer not-a-token'})
    unknown_role = client.get('/appointments', headers=_auth('someone', 'admin'))

    assert missing.status_code in (401, 403)
    assert invalid.status_code == 401
    assert unknown_role.status_code == 403
