from fastapi import HTTPException, status

from booking_engine.core import errors

_STATUS_BY_ERROR: list[tuple[type[errors.BookingError], int]] = [
    (errors.SlotConflict, status.HTTP_409_CONFLICT),
    (errors.InvalidTransition, status.HTTP_409_CONFLICT),
    (errors.NotFound, status.HTTP_404_NOT_FOUND),
    (errors.ValidationError, status.HTTP_400_BAD_REQUEST),
    (errors.TransientError, status.HTTP_503_SERVICE_UNAVAILABLE),
    (errors.ExternalCalendarUnavailable, status.HTTP_502_BAD_GATEWAY),
]


def database_unavailable() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail={
            'code': 'database_unavailable',
            'message': 'Database unavailable. Verify DATABASE_URL and database credentials.',
        },
    )


def to_http_exception(exc: errors.BookingError) -> HTTPException:
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    for error_type, mapped_status in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            status_code = mapped_status
            break

    return HTTPException(status_code=status_code, detail={'code': exc.code, 'message': exc.message})
