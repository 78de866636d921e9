from datetime import date, time

from scheduling.core.errors import ValidationError
from scheduling.engine.types import Slot


def ensure_contiguous(slots: list[Slot]) -> list[Slot]:
    """Return ``slots`` ordered by start, or raise if they do not form one run.

    A run is contiguous when every slot is on the same date, has a positive
    length, and starts exactly where the previous one ended.
    """
    if not slots:
        raise ValidationError('At least one slot must be selected.')

    ordered = sorted(slots, key=lambda slot: slot.start)
    first_date = ordered[0].date

    for slot in ordered:
        if slot.date != first_date:
            raise ValidationError('Selected slots must all be on the same date.')
        if slot.end <= slot.start:
            raise ValidationError('Slot end time must be after its start time.')

    for previous, current in zip(ordered, ordered[1:]):
        if current.start != previous.end:
            raise ValidationError('Selected slots must be contiguous.')

    return ordered


def merged_interval(slots: list[Slot]) -> tuple[date, time, time]:
    ordered = ensure_contiguous(slots)
    return ordered[0].date, ordered[0].start_time, ordered[-1].end_time


def expand_selection(offered: list[Slot], selected_starts: list[time]) -> list[Slot]:
    """Fill every offered slot between the earliest and latest selected start.

    Mirrors the click-to-extend picker: choosing 09:00 and 11:00 selects
    09:00, 10:00 and 11:00. Raises when a start is not offered or when the
    offered slots in between leave a gap.
    """
    if not selected_starts:
        return []

    by_start = {slot.start_time: slot for slot in offered}
    missing = [start for start in selected_starts if start not in by_start]
    if missing:
        raise ValidationError(f'Slot starting at {missing[0].strftime("%H:%M")} is not offered.')

    first, last = min(selected_starts), max(selected_starts)
    run = sorted(
        (slot for slot in offered if first <= slot.start_time <= last),
        key=lambda slot: slot.start,
    )
    return ensure_contiguous(run)
