from dataclasses import dataclass

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from booking_engine.auth import jwt_handler
from booking_engine.models.appointment import Appointment

PROVIDER_ROLE = "doctor"
REQUESTER_ROLE = "patient"
KNOWN_ROLES = {PROVIDER_ROLE, REQUESTER_ROLE}

security = HTTPBearer()


@dataclass(frozen=True)
class Caller:
    subject: str
    role: str

    @property
    def is_provider(self) -> bool:
        return self.role == PROVIDER_ROLE

    @property
    def is_requester(self) -> bool:
        return self.role == REQUESTER_ROLE


def get_current_caller(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> Caller:
    token = credentials.credentials
    try:
        payload = jwt_handler.decode_access_token(token)
    except Exception as exc:
        raise HTTPException(status_code=401, detail="Invalid token") from exc

    subject = payload.get("sub")
    if not subject:
        raise HTTPException(status_code=401, detail="Invalid token subject")

    role = str(payload.get("role", "")).strip().lower()
    if role not in KNOWN_ROLES:
        raise HTTPException(status_code=403, detail=_forbidden("Unknown caller role."))

    return Caller(subject=subject, role=role)


def ensure_party(caller: Caller, appointment: Appointment) -> None:
    """Only the appointment's own provider or requester may act on it."""
    if caller.is_provider and appointment.provider_id == caller.subject:
        return
    if caller.is_requester and appointment.requester_id == caller.subject:
        return
    raise HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail=_forbidden("You do not have permission to access this appointment."),
    )


def ensure_provider(caller: Caller, appointment: Appointment) -> None:
    if caller.is_provider and appointment.provider_id == caller.subject:
        return
    raise HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail=_forbidden("Only the appointment's provider can do this."),
    )


def _forbidden(message: str) -> dict:
    return {"code": "forbidden", "message": message}
