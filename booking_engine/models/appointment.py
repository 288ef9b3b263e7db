"""Appointment model definitions."""

import uuid

from sqlalchemy import Column, Index, String, Text

from booking_engine.core.intervals import Interval
from booking_engine.core.state_machine import AppointmentStatus
from booking_engine.database import Base, UtcDateTime, utc_now


def _new_appointment_id() -> str:
    return uuid.uuid4().hex


class Appointment(Base):
    """One scheduled encounter between a provider and a requester.

    Rows are never deleted; cancelling only changes ``status``.
    """
    __tablename__ = "appointments"
    __table_args__ = (
        Index("idx_appointments_provider_window", "provider_id", "start_time", "end_time"),
        Index("idx_appointments_requester_start", "requester_id", "start_time"),
    )

    id = Column(String(32), primary_key=True, default=_new_appointment_id)
    provider_id = Column(String(64), nullable=False)
    requester_id = Column(String(64), nullable=False)
    start_time = Column(UtcDateTime, nullable=False)
    end_time = Column(UtcDateTime, nullable=False)
    status = Column(String(16), nullable=False, default=AppointmentStatus.SCHEDULED.value)
    title = Column(String(255), nullable=False, default="")
    notes = Column(Text)
    external_event_ref = Column(String(255))
    created_at = Column(UtcDateTime, default=utc_now)
    updated_at = Column(UtcDateTime, default=utc_now, onupdate=utc_now)

    @property
    def window(self) -> Interval:
        return Interval(self.start_time, self.end_time)

    def __repr__(self) -> str:
        return f"<Appointment {self.id} {self.provider_id} {self.start_time}-{self.end_time} {self.status}>"
