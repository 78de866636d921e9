"""Time-relative booking policies.

All functions are pure: they take "now" as an argument and never read a
clock, so the boundaries can be tested to the second.
"""

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Optional

from scheduling.core import config
from scheduling.engine.types import AppointmentStatus, LocationMode


@dataclass(frozen=True)
class CancellationDecision:
    allowed: bool
    penalty_fraction: float
    hours_until_start: float


def evaluate_cancellation(
    start_at: datetime,
    now: datetime,
    free_window_hours: Optional[float] = None,
    late_penalty: Optional[float] = None,
) -> CancellationDecision:
    """Cancellation is always allowed; inside the free window it costs a penalty."""
    free_window = timedelta(
        hours=config.CANCELLATION_FREE_WINDOW_HOURS if free_window_hours is None else free_window_hours
    )
    penalty = config.LATE_CANCELLATION_PENALTY if late_penalty is None else late_penalty
    remaining = start_at - now

    return CancellationDecision(
        allowed=True,
        penalty_fraction=0.0 if remaining >= free_window else penalty,
        hours_until_start=max(0.0, remaining.total_seconds() / 3600),
    )


def is_joinable(
    appointment_date: date,
    start_time: time,
    end_time: time,
    now: datetime,
    location_mode: LocationMode,
    status: AppointmentStatus,
    lead_minutes: Optional[int] = None,
) -> bool:
    if LocationMode(location_mode) != LocationMode.REMOTE:
        return False
    if AppointmentStatus(status) != AppointmentStatus.ACCEPTED:
        return False
    if now.date() != appointment_date:
        return False

    lead = timedelta(minutes=config.JOIN_WINDOW_LEAD_MINUTES if lead_minutes is None else lead_minutes)
    start_at = datetime.combine(appointment_date, start_time)
    end_at = datetime.combine(appointment_date, end_time)
    return start_at - lead <= now <= end_at


def may_report_no_show(status: AppointmentStatus, end_at: datetime, now: datetime) -> bool:
    return AppointmentStatus(status) == AppointmentStatus.ACCEPTED and now > end_at


def crosses_suspension_threshold(previous_count: int, new_count: int, threshold: Optional[int] = None) -> bool:
    threshold = config.NO_SHOW_SUSPENSION_THRESHOLD if threshold is None else threshold
    return previous_count < threshold <= new_count
