"""Provider calendar model definitions."""

from sqlalchemy import Boolean, Column, Date, DateTime, Integer, String, Time, func

from scheduling.database import Base


class AvailabilityWindow(Base):
    """A dated block of time the provider opens (or closes) for booking."""
    __tablename__ = "availability_windows"

    id = Column(Integer, primary_key=True)
    provider_id = Column(String, nullable=False, index=True)
    date = Column(Date, nullable=False, index=True)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    is_open = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, server_default=func.now())


class WeeklyAvailability(Base):
    """A recurring opening, repeated on every matching weekday."""
    __tablename__ = "weekly_availability"

    id = Column(Integer, primary_key=True)
    provider_id = Column(String, nullable=False, index=True)
    day_of_week = Column(Integer, nullable=False)  # 0 = Monday
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)


class CalendarException(Base):
    """A one-off override: blocked time, vacation, or an extra opening."""
    __tablename__ = "calendar_exceptions"

    id = Column(Integer, primary_key=True)
    provider_id = Column(String, nullable=False, index=True)
    date = Column(Date, nullable=False, index=True)
    start_time = Column(Time, nullable=True)
    end_time = Column(Time, nullable=True)
    kind = Column(String, nullable=False)
    reason = Column(String, nullable=True)
    created_at = Column(DateTime, server_default=func.now())
