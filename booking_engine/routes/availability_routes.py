from datetime import date, datetime
from zoneinfo import ZoneInfo

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError

from booking_engine.auth.dependencies import Caller, get_current_caller
from booking_engine.core import config
from booking_engine.core.errors import BookingError
from booking_engine.core.intervals import to_utc
from booking_engine.routes.http_errors import database_unavailable, to_http_exception
from booking_engine.services.availability import AvailabilityCalculator, AvailabilityResult
from booking_engine.wiring import get_availability_calculator

router = APIRouter(tags=['availability'])

MAX_SLOT_MINUTES = 8 * 60


class SlotResponse(BaseModel):
    start_time: datetime
    end_time: datetime
    available: bool


class AvailabilityResponse(BaseModel):
    provider_id: str
    duration_minutes: int
    step_minutes: int
    degraded: bool
    slots: list[SlotResponse]


def build_availability_response(
    provider_id: str,
    result: AvailabilityResult,
    duration_minutes: int,
    step_minutes: int | None,
) -> AvailabilityResponse:
    return AvailabilityResponse(
        provider_id=provider_id,
        duration_minutes=duration_minutes,
        step_minutes=step_minutes or duration_minutes,
        degraded=result.degraded,
        slots=[
            SlotResponse(start_time=slot.start, end_time=slot.end, available=slot.available)
            for slot in result.slots
        ],
    )


@router.get('/providers/{provider_id}/slots', response_model=AvailabilityResponse)
def get_day_slots(
    provider_id: str,
    day: date = Query(..., alias='date'),
    duration: int = Query(default=config.DEFAULT_SLOT_DURATION_MINUTES, ge=1, le=MAX_SLOT_MINUTES),
    step: int | None = Query(default=None, ge=1, le=MAX_SLOT_MINUTES),
    caller: Caller = Depends(get_current_caller),
    calculator: AvailabilityCalculator = Depends(get_availability_calculator),
):
    del caller

    try:
        result = calculator.get_day_availability(provider_id, day, duration, step)
    except BookingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc

    return build_availability_response(provider_id, result, duration, step)


@router.get('/providers/{provider_id}/window', response_model=AvailabilityResponse)
def get_window_slots(
    provider_id: str,
    start: datetime = Query(...),
    end: datetime = Query(...),
    duration: int = Query(default=config.DEFAULT_SLOT_DURATION_MINUTES, ge=1, le=MAX_SLOT_MINUTES),
    step: int | None = Query(default=None, ge=1, le=MAX_SLOT_MINUTES),
    caller: Caller = Depends(get_current_caller),
    calculator: AvailabilityCalculator = Depends(get_availability_calculator),
):
    del caller

    business_tz = ZoneInfo(config.BUSINESS_TIMEZONE)
    window_start = to_utc(start, business_tz)
    window_end = to_utc(end, business_tz)
    if window_end <= window_start:
        raise HTTPException(
            status_code=400,
            detail={'code': 'validation_error', 'message': 'Window end must be after its start.'},
        )

    try:
        result = calculator.get_bounded_availability(provider_id, window_start, window_end, duration, step)
    except BookingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc

    return build_availability_response(provider_id, result, duration, step)
