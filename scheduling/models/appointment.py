"""Appointment model definitions."""

from datetime import datetime

from sqlalchemy import (
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Time,
    UniqueConstraint,
)

from scheduling.database import Base
from scheduling.engine.types import AppointmentStatus, LocationMode, Party


class Appointment(Base):
    """Represents a booking between a provider and a requester."""
    __tablename__ = "appointments"

    id = Column(Integer, primary_key=True)
    provider_id = Column(String, nullable=False, index=True)
    requester_id = Column(String, nullable=False)
    appointment_date = Column(Date, nullable=False)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    status = Column(String, nullable=False, default=AppointmentStatus.PENDING.value)
    location_mode = Column(String, nullable=False, default=LocationMode.ON_SITE.value)
    address = Column(String, nullable=True)
    note = Column(String, nullable=True)
    price = Column(Numeric(10, 2), nullable=False)
    created_at = Column(DateTime, nullable=False)
    status_changed_at = Column(DateTime, nullable=False)

    proposed_by = Column(String, nullable=False, default=Party.REQUESTER.value)
    cancelled_by = Column(String, nullable=True)
    cancellation_fee = Column(Numeric(10, 2), nullable=True)

    pin_code = Column(String(4), nullable=True)
    pin_expires_at = Column(DateTime, nullable=True)
    pin_attempts = Column(Integer, nullable=False, default=0)
    pin_locked_until = Column(DateTime, nullable=True)
    started_at = Column(DateTime, nullable=True)

    @property
    def start_at(self) -> datetime:
        return datetime.combine(self.appointment_date, self.start_time)

    @property
    def end_at(self) -> datetime:
        return datetime.combine(self.appointment_date, self.end_time)

    @property
    def status_enum(self) -> AppointmentStatus:
        return AppointmentStatus(self.status)


class SlotClaim(Base):
    """One claimed grid unit of a provider's day.

    The unique constraint is the storage-level exclusion that lets only one
    of two racing bookings hold any given unit.
    """
    __tablename__ = "slot_claims"
    __table_args__ = (
        UniqueConstraint("provider_id", "claim_date", "unit_start", name="uq_slot_claims_unit"),
    )

    id = Column(Integer, primary_key=True)
    provider_id = Column(String, nullable=False)
    claim_date = Column(Date, nullable=False)
    unit_start = Column(Time, nullable=False)
    appointment_id = Column(Integer, ForeignKey("appointments.id"), nullable=False, index=True)


class NoShowReport(Base):
    """A requester's report that the provider did not show up."""
    __tablename__ = "no_show_reports"

    id = Column(Integer, primary_key=True)
    appointment_id = Column(Integer, ForeignKey("appointments.id"), nullable=False, unique=True)
    provider_id = Column(String, nullable=False, index=True)
    reporter_id = Column(String, nullable=False)
    description = Column(String, nullable=True)
    created_at = Column(DateTime, nullable=False)
