"""
Slot generation.

Turns a provider's calendar for one date into the ordered list of bookable
slots:

  open ranges   = weekly template + open dated windows + "available" exceptions
  closed ranges = timed "blocked"/"vacation" exceptions + closed dated windows
  slots         = fixed-size walk over (open - closed), skipping anything that
                  overlaps a blocking appointment or has already ended

A whole-day "blocked"/"vacation" exception empties the date. Dates in the
past or beyond the booking horizon yield an empty list, never an error.
"""

from datetime import date, datetime, time, timedelta
from typing import Iterable, Optional

from scheduling.core import config
from scheduling.engine.types import (
    CLOSING_EXCEPTION_KINDS,
    ExceptionKind,
    Slot,
    TimeRange,
    overlaps,
)


def is_within_horizon(target_date: date, now: datetime, horizon_days: Optional[int] = None) -> bool:
    horizon_days = config.BOOKING_HORIZON_DAYS if horizon_days is None else horizon_days
    today = now.date()
    return today <= target_date <= today + timedelta(days=horizon_days)


def _to_range(target_date: date, row, source_id: Optional[int] = None) -> Optional[TimeRange]:
    start = datetime.combine(target_date, row.start_time)
    end = datetime.combine(target_date, row.end_time)
    if end <= start:
        return None
    return TimeRange(start=start, end=end, source_id=source_id)


def open_ranges(target_date: date, windows: Iterable, weekly: Iterable, exceptions: Iterable) -> list[TimeRange]:
    ranges: list[TimeRange] = []

    for template in weekly:
        if template.day_of_week == target_date.weekday():
            ranges.append(_to_range(target_date, template))

    for window in windows:
        if window.date == target_date and window.is_open:
            ranges.append(_to_range(target_date, window, source_id=window.id))

    for exception in exceptions:
        if (
            exception.date == target_date
            and ExceptionKind(exception.kind) == ExceptionKind.AVAILABLE
            and exception.start_time is not None
            and exception.end_time is not None
        ):
            ranges.append(_to_range(target_date, exception))

    return merge_ranges([r for r in ranges if r is not None])


def closed_ranges(target_date: date, windows: Iterable, exceptions: Iterable) -> list[TimeRange]:
    ranges: list[TimeRange] = []

    for window in windows:
        if window.date == target_date and not window.is_open:
            ranges.append(_to_range(target_date, window))

    for exception in exceptions:
        if exception.date != target_date or ExceptionKind(exception.kind) not in CLOSING_EXCEPTION_KINDS:
            continue
        if exception.start_time is None or exception.end_time is None:
            continue
        ranges.append(_to_range(target_date, exception))

    return [r for r in ranges if r is not None]


def is_day_closed(target_date: date, exceptions: Iterable) -> bool:
    return any(
        exception.date == target_date
        and ExceptionKind(exception.kind) in CLOSING_EXCEPTION_KINDS
        and (exception.start_time is None or exception.end_time is None)
        for exception in exceptions
    )


def merge_ranges(ranges: list[TimeRange]) -> list[TimeRange]:
    merged: list[TimeRange] = []
    for current in sorted(ranges, key=lambda r: (r.start, r.end)):
        if merged and current.start <= merged[-1].end:
            last = merged[-1]
            if current.end > last.end:
                merged[-1] = TimeRange(start=last.start, end=current.end, source_id=last.source_id)
            continue
        merged.append(current)
    return merged


def subtract_ranges(ranges: list[TimeRange], removals: list[TimeRange]) -> list[TimeRange]:
    remaining = list(ranges)
    for removal in removals:
        next_remaining: list[TimeRange] = []
        for piece in remaining:
            if not piece.overlaps(removal.start, removal.end):
                next_remaining.append(piece)
                continue
            if piece.start < removal.start:
                next_remaining.append(TimeRange(piece.start, removal.start, piece.source_id))
            if removal.end < piece.end:
                next_remaining.append(TimeRange(removal.end, piece.end, piece.source_id))
        remaining = next_remaining
    return sorted(remaining, key=lambda r: r.start)


def generate_slots(
    target_date: date,
    windows: Iterable,
    weekly: Iterable,
    exceptions: Iterable,
    busy: Iterable[tuple[datetime, datetime]],
    now: datetime,
    slot_minutes: Optional[int] = None,
    horizon_days: Optional[int] = None,
) -> list[Slot]:
    """Expand one date of a provider's calendar into bookable slots.

    Args:
        target_date: The civil date to expand.
        windows: Dated availability windows (``date``, ``start_time``,
            ``end_time``, ``is_open``, ``id``).
        weekly: Weekly template rows (``day_of_week``, ``start_time``, ``end_time``).
        exceptions: Calendar exceptions (``date``, ``kind``, optional times).
        busy: ``(start, end)`` intervals of blocking appointments.
        now: Current civil time.
        slot_minutes: Slot length; defaults to ``SLOT_DURATION_MINUTES``.
        horizon_days: Booking horizon; defaults to ``BOOKING_HORIZON_DAYS``.

    Returns:
        Non-overlapping slots ordered by start time.
    """
    if not is_within_horizon(target_date, now, horizon_days):
        return []

    windows = list(windows)
    exceptions = list(exceptions)
    if is_day_closed(target_date, exceptions):
        return []

    ranges = subtract_ranges(
        open_ranges(target_date, windows, weekly, exceptions),
        closed_ranges(target_date, windows, exceptions),
    )

    step = timedelta(minutes=slot_minutes or config.SLOT_DURATION_MINUTES)
    busy = list(busy)
    slots: list[Slot] = []

    for open_range in ranges:
        current = open_range.start
        while current + step <= open_range.end:
            candidate_end = current + step
            taken = any(overlaps(current, candidate_end, busy_start, busy_end) for busy_start, busy_end in busy)
            if not taken and candidate_end > now:
                slots.append(
                    Slot(
                        date=target_date,
                        start_time=current.time(),
                        end_time=candidate_end.time(),
                        window_id=open_range.source_id,
                    )
                )
            current = candidate_end

    return sorted(slots, key=lambda slot: slot.start)


def offered_slot_set(
    target_date: date,
    windows: Iterable,
    weekly: Iterable,
    exceptions: Iterable,
    now: datetime,
    slot_minutes: Optional[int] = None,
) -> set[tuple[time, time]]:
    """Start/end pairs the calendar offers on ``target_date``, ignoring bookings."""
    return {
        (slot.start_time, slot.end_time)
        for slot in generate_slots(target_date, windows, weekly, exceptions, [], now, slot_minutes)
    }
