"""Overlap detection and the commit-time critical section.

Listing slots reads without locking and may be slightly stale. Committing a
booking re-runs the overlap check under ``provider_day_lock`` and then claims
every grid unit of the interval; the unique constraint on claims settles any
race the in-process lock cannot see (other workers, other hosts).
"""

import logging
from contextlib import contextmanager
from datetime import date, datetime, time, timedelta
from threading import Lock
from typing import Iterable, Iterator, Optional

from scheduling.core import config
from scheduling.core.errors import ConflictError, TransientStorageError, ValidationError
from scheduling.engine.types import overlaps

logger = logging.getLogger(__name__)


class _LockRegistry:
    """Per-key locks, dropped as soon as nobody is waiting on or holding them."""

    def __init__(self) -> None:
        self._guard = Lock()
        self._entries: dict = {}

    def __contains__(self, key) -> bool:
        with self._guard:
            return key in self._entries

    def __len__(self) -> int:
        with self._guard:
            return len(self._entries)

    @contextmanager
    def checkout(self, key) -> Iterator[Lock]:
        with self._guard:
            entry = self._entries.setdefault(key, [Lock(), 0])
            entry[1] += 1
        try:
            yield entry[0]
        finally:
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._entries[key]


_day_locks = _LockRegistry()
_provider_locks = _LockRegistry()


def find_conflicts(
    start: datetime,
    end: datetime,
    busy: Iterable[tuple[datetime, datetime]],
) -> list[tuple[datetime, datetime]]:
    return [(busy_start, busy_end) for busy_start, busy_end in busy if overlaps(start, end, busy_start, busy_end)]


def ensure_interval_free(
    provider_id: str,
    start: datetime,
    end: datetime,
    busy: Iterable[tuple[datetime, datetime]],
) -> None:
    if end <= start:
        raise ValidationError('Booking end time must be after its start time.')

    conflicts = find_conflicts(start, end, busy)
    if conflicts:
        logger.warning(
            'Conflict for provider %s on %s-%s: overlaps %d blocking booking(s)',
            provider_id,
            start,
            end,
            len(conflicts),
        )
        raise ConflictError()


def claim_units(
    claim_date: date,
    start_time: time,
    end_time: time,
    granularity_minutes: Optional[int] = None,
) -> list[time]:
    """Grid unit starts covered by ``[start_time, end_time)``.

    The grid is anchored at midnight; a misaligned start is floored so that
    two overlapping intervals always share at least one unit.
    """
    granularity = timedelta(minutes=granularity_minutes or config.CLAIM_GRANULARITY_MINUTES)
    day_start = datetime.combine(claim_date, time(0, 0))
    start = datetime.combine(claim_date, start_time)
    end = datetime.combine(claim_date, end_time)

    offset = (start - day_start) % granularity
    current = start - offset
    units: list[time] = []
    while current < end:
        units.append(current.time())
        current += granularity
    return units


@contextmanager
def provider_day_lock(provider_id: str, booking_date: date, timeout: Optional[float] = None) -> Iterator[None]:
    """Exclusive section for commits touching one provider's day.

    Fails closed: if the lock cannot be taken within ``timeout`` seconds the
    caller sees a ``TransientStorageError`` rather than proceeding unguarded.
    """
    wait = config.BOOKING_COMMIT_TIMEOUT_SECONDS if timeout is None else timeout
    with _day_locks.checkout((provider_id, booking_date)) as lock:
        if not lock.acquire(timeout=wait):
            logger.warning('Timed out waiting for booking lock on %s/%s', provider_id, booking_date)
            raise TransientStorageError('Another booking for this time is being processed. Please try again.')
        try:
            yield
        finally:
            lock.release()


@contextmanager
def provider_lock(provider_id: str) -> Iterator[None]:
    with _provider_locks.checkout(provider_id) as lock, lock:
        yield
