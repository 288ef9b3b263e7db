"""Boundary to the provider's external calendar.

The engine only needs two things from it: busy time for a range, and a
best-effort copy of local bookings. Adapters raise
``ExternalCalendarUnavailable`` for every failure; callers decide how to
degrade.
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Callable

import httpx
from sqlalchemy.orm import Session

from booking_engine.core import config
from booking_engine.core.errors import ExternalCalendarUnavailable
from booking_engine.core.intervals import BusyInterval, BusySource
from booking_engine.database import utc_now
from booking_engine.models.appointment import Appointment
from booking_engine.models.calendar_credential import CalendarCredential

logger = logging.getLogger(__name__)

GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_CALENDAR_API = "https://www.googleapis.com/calendar/v3"
TOKEN_REFRESH_MARGIN = timedelta(minutes=5)
GONE_STATUS_CODES = {404, 410}


class CalendarSyncAdapter(ABC):
    @abstractmethod
    def fetch_busy(self, provider_id: str, start: datetime, end: datetime) -> list[BusyInterval]:
        """Busy intervals from the external calendar overlapping ``[start, end)``."""
        raise NotImplementedError

    @abstractmethod
    def mirror_create(self, appointment: Appointment) -> str | None:
        """Create a remote event. Returns its reference, or None when not connected."""
        raise NotImplementedError

    @abstractmethod
    def mirror_update(self, appointment: Appointment) -> None:
        raise NotImplementedError

    @abstractmethod
    def mirror_delete(self, provider_id: str, external_ref: str) -> None:
        raise NotImplementedError


class NullCalendarAdapter(CalendarSyncAdapter):
    """Used when no external calendar is configured."""

    def fetch_busy(self, provider_id: str, start: datetime, end: datetime) -> list[BusyInterval]:
        return []

    def mirror_create(self, appointment: Appointment) -> str | None:
        return None

    def mirror_update(self, appointment: Appointment) -> None:
        return None

    def mirror_delete(self, provider_id: str, external_ref: str) -> None:
        return None


def _google_rfc3339(value: datetime) -> str:
    normalized = value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)
    return normalized.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def _parse_google_datetime(value: str) -> datetime:
    normalized = value.strip()
    if normalized.endswith("Z"):
        normalized = f"{normalized[:-1]}+00:00"
    try:
        parsed = datetime.fromisoformat(normalized)
    except ValueError as exc:
        raise ExternalCalendarUnavailable(f"Google Calendar returned an invalid dateTime: {value}") from exc
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


class GoogleCalendarAdapter(CalendarSyncAdapter):
    """Google Calendar v3 over plain REST.

    Providers without a stored ``CalendarCredential`` are treated as not
    connected: no external busy time, nothing mirrored.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        client: httpx.Client | None = None,
        client_id: str | None = None,
        client_secret: str | None = None,
        timezone_name: str | None = None,
        base_url: str = GOOGLE_CALENDAR_API,
        token_url: str = GOOGLE_TOKEN_URL,
    ) -> None:
        self._session_factory = session_factory
        self._client = client or httpx.Client(timeout=config.EXTERNAL_CALENDAR_TIMEOUT_SECONDS)
        self._client_id = client_id if client_id is not None else config.GOOGLE_CLIENT_ID
        self._client_secret = client_secret if client_secret is not None else config.GOOGLE_CLIENT_SECRET
        self._timezone_name = timezone_name or config.GOOGLE_CALENDAR_TIMEZONE
        self._base_url = base_url.rstrip("/")
        self._token_url = token_url

    def fetch_busy(self, provider_id: str, start: datetime, end: datetime) -> list[BusyInterval]:
        credential = self._load_credential(provider_id)
        if credential is None:
            return []

        payload = self._request(
            credential,
            "POST",
            "/freeBusy",
            json={
                "timeMin": _google_rfc3339(start),
                "timeMax": _google_rfc3339(end),
                "timeZone": self._timezone_name,
                "items": [{"id": credential.calendar_id}],
            },
        )

        calendars_payload = payload.get("calendars") if isinstance(payload, dict) else None
        if not isinstance(calendars_payload, dict):
            raise ExternalCalendarUnavailable("Google Calendar freeBusy response missing calendars object")

        calendar_payload = calendars_payload.get(credential.calendar_id)
        if calendar_payload is None and len(calendars_payload) == 1:
            calendar_payload = next(iter(calendars_payload.values()))
        if not isinstance(calendar_payload, dict):
            raise ExternalCalendarUnavailable("Google Calendar freeBusy response missing the requested calendar")
        if calendar_payload.get("errors"):
            raise ExternalCalendarUnavailable(f"Google Calendar freeBusy errors: {calendar_payload['errors']}")

        busy: list[BusyInterval] = []
        for window in calendar_payload.get("busy") or []:
            if not isinstance(window, dict):
                continue
            start_raw = window.get("start")
            end_raw = window.get("end")
            if not isinstance(start_raw, str) or not isinstance(end_raw, str):
                raise ExternalCalendarUnavailable("Google Calendar freeBusy busy windows must include start/end")

            busy_start = _parse_google_datetime(start_raw)
            busy_end = _parse_google_datetime(end_raw)
            if busy_end <= busy_start:
                continue
            busy.append(BusyInterval(busy_start, busy_end, BusySource.EXTERNAL))

        return busy

    def mirror_create(self, appointment: Appointment) -> str | None:
        credential = self._load_credential(appointment.provider_id)
        if credential is None:
            return None

        payload = self._request(
            credential,
            "POST",
            f"/calendars/{credential.calendar_id}/events",
            params={"sendUpdates": "all"},
            json=self._event_body(appointment, with_reminders=True),
        )
        event_id = payload.get("id") if isinstance(payload, dict) else None
        if not event_id:
            raise ExternalCalendarUnavailable("No event ID returned from Google Calendar")

        logger.info(
            "Calendar event created",
            extra={"appointment_id": appointment.id, "event_id": event_id},
        )
        return str(event_id)

    def mirror_update(self, appointment: Appointment) -> None:
        if not appointment.external_event_ref:
            return
        credential = self._load_credential(appointment.provider_id)
        if credential is None:
            return

        self._request(
            credential,
            "PUT",
            f"/calendars/{credential.calendar_id}/events/{appointment.external_event_ref}",
            params={"sendUpdates": "all"},
            json=self._event_body(appointment, with_reminders=False),
        )

    def mirror_delete(self, provider_id: str, external_ref: str) -> None:
        credential = self._load_credential(provider_id)
        if credential is None:
            return

        self._request(
            credential,
            "DELETE",
            f"/calendars/{credential.calendar_id}/events/{external_ref}",
            params={"sendUpdates": "all"},
            allow_gone=True,
        )

    def _event_body(self, appointment: Appointment, with_reminders: bool) -> dict:
        body = {
            "summary": appointment.title,
            "description": appointment.notes or "",
            "start": {"dateTime": _google_rfc3339(appointment.start_time), "timeZone": self._timezone_name},
            "end": {"dateTime": _google_rfc3339(appointment.end_time), "timeZone": self._timezone_name},
            "extendedProperties": {"private": {"appointmentId": appointment.id}},
        }
        if with_reminders:
            body["reminders"] = {
                "useDefault": False,
                "overrides": [
                    {"method": "email", "minutes": 24 * 60},
                    {"method": "popup", "minutes": 30},
                ],
            }
        return body

    def _load_credential(self, provider_id: str) -> CalendarCredential | None:
        with self._session_factory() as db:
            return db.query(CalendarCredential).filter(CalendarCredential.provider_id == provider_id).first()

    def _access_token(self, credential: CalendarCredential) -> str:
        if credential.expires_at is None or credential.expires_at > utc_now() + TOKEN_REFRESH_MARGIN:
            return credential.access_token

        if not credential.refresh_token:
            raise ExternalCalendarUnavailable("Google Calendar token expired and no refresh token is stored")

        try:
            response = self._client.post(
                self._token_url,
                data={
                    "client_id": self._client_id,
                    "client_secret": self._client_secret,
                    "refresh_token": credential.refresh_token,
                    "grant_type": "refresh_token",
                },
            )
            response.raise_for_status()
            tokens = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise ExternalCalendarUnavailable(f"Google Calendar token refresh failed: {exc}") from exc

        access_token = tokens.get("access_token")
        if not access_token:
            raise ExternalCalendarUnavailable("No access token in refresh response")

        expires_at = utc_now() + timedelta(seconds=int(tokens.get("expires_in", 3600)))
        with self._session_factory() as db:
            stored = db.query(CalendarCredential).filter(CalendarCredential.id == credential.id).first()
            if stored is not None:
                stored.access_token = access_token
                stored.expires_at = expires_at
                db.commit()

        credential.access_token = access_token
        credential.expires_at = expires_at
        logger.info("Google Calendar token refreshed", extra={"provider_id": credential.provider_id})
        return access_token

    def _request(
        self,
        credential: CalendarCredential,
        method: str,
        path: str,
        params: dict | None = None,
        json: dict | None = None,
        allow_gone: bool = False,
    ) -> dict:
        headers = {"Authorization": f"Bearer {self._access_token(credential)}"}
        try:
            response = self._client.request(
                method,
                f"{self._base_url}{path}",
                params=params,
                json=json,
                headers=headers,
            )
            if allow_gone and response.status_code in GONE_STATUS_CODES:
                return {}
            response.raise_for_status()
            if not response.content:
                return {}
            return response.json()
        except httpx.HTTPError as exc:
            raise ExternalCalendarUnavailable(f"Google Calendar request failed: {exc}") from exc
        except ValueError as exc:
            raise ExternalCalendarUnavailable("Google Calendar returned a malformed response") from exc
