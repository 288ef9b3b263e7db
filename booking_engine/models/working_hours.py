"""Provider working-hours model definitions."""

from sqlalchemy import Column, Integer, String, Time

from booking_engine.database import Base


class WorkingHours(Base):
    """A weekly working window for a provider, in the business time zone."""
    __tablename__ = "working_hours"

    id = Column(Integer, primary_key=True)
    provider_id = Column(String(64), nullable=False, index=True)
    weekday = Column(Integer, nullable=False)  # 0 = Monday
    start = Column(Time, nullable=False)
    end = Column(Time, nullable=False)
