"""Value types shared by the scheduling engine.

Everything here is plain data: civil dates and times in the provider's local
calendar, half-open ``[start, end)`` intervals, and the closed vocabularies used
by the models and the policies.
"""

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from enum import Enum
from typing import Optional


class AppointmentStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    CANCELLED = "cancelled"
    COMPLETED = "completed"
    NO_SHOW = "no_show"


BLOCKING_STATUSES = frozenset({AppointmentStatus.PENDING, AppointmentStatus.ACCEPTED})


class LocationMode(str, Enum):
    ON_SITE = "on_site"
    PROVIDER_SITE = "provider_site"
    REMOTE = "remote"


class ExceptionKind(str, Enum):
    BLOCKED = "blocked"
    AVAILABLE = "available"
    VACATION = "vacation"


CLOSING_EXCEPTION_KINDS = frozenset({ExceptionKind.BLOCKED, ExceptionKind.VACATION})


class Party(str, Enum):
    REQUESTER = "requester"
    PROVIDER = "provider"


@dataclass(frozen=True)
class TimeRange:
    """A half-open ``[start, end)`` civil interval on one date."""

    start: datetime
    end: datetime
    source_id: Optional[int] = None

    def overlaps(self, other_start: datetime, other_end: datetime) -> bool:
        return self.start < other_end and self.end > other_start


@dataclass(frozen=True)
class Slot:
    """A bookable unit carved from an open range. Never persisted."""

    date: date
    start_time: time
    end_time: time
    window_id: Optional[int] = None

    @property
    def start(self) -> datetime:
        return datetime.combine(self.date, self.start_time)

    @property
    def end(self) -> datetime:
        return datetime.combine(self.date, self.end_time)

    @property
    def duration(self) -> timedelta:
        return self.end - self.start


def overlaps(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    return a_start < b_end and a_end > b_start
