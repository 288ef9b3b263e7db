"""External calendar credential model definitions."""

from sqlalchemy import Column, Integer, String, Text

from booking_engine.database import Base, UtcDateTime, utc_now


class CalendarCredential(Base):
    """OAuth credentials linking a provider to their external calendar."""
    __tablename__ = "calendar_credentials"

    id = Column(Integer, primary_key=True)
    provider_id = Column(String(64), unique=True, index=True, nullable=False)
    calendar_id = Column(String(255), nullable=False, default="primary")
    access_token = Column(Text, nullable=False)
    refresh_token = Column(Text)
    expires_at = Column(UtcDateTime)
    updated_at = Column(UtcDateTime, default=utc_now, onupdate=utc_now)
