import os
import threading
from datetime import date, datetime, time

import pytest

os.environ.setdefault('DATABASE_URL', 'sqlite:///./test.db')

from scheduling.core.errors import ConflictError, TransientStorageError, ValidationError  # noqa: E402
from scheduling.engine import conflicts  # noqa: E402
from scheduling.engine.conflicts import (  # noqa: E402
    claim_units,
    ensure_interval_free,
    find_conflicts,
    provider_day_lock,
    provider_lock,
)

MONDAY = date(2026, 3, 2)
BUSY = [(datetime(2026, 3, 2, 10, 0), datetime(2026, 3, 2, 11, 0))]


def test_find_conflicts_uses_half_open_intervals() -> None:
    assert find_conflicts(datetime(2026, 3, 2, 9, 0), datetime(2026, 3, 2, 10, 0), BUSY) == []
    assert find_conflicts(datetime(2026, 3, 2, 11, 0), datetime(2026, 3, 2, 12, 0), BUSY) == []
    assert find_conflicts(datetime(2026, 3, 2, 10, 30), datetime(2026, 3, 2, 11, 30), BUSY) == BUSY


def test_ensure_interval_free_raises_conflict_on_overlap() -> None:
    with pytest.raises(ConflictError) as exception_info:
        ensure_interval_free('p-1', datetime(2026, 3, 2, 9, 30), datetime(2026, 3, 2, 10, 30), BUSY)

    assert exception_info.value.message == 'Slot no longer available.'


def test_ensure_interval_free_rejects_empty_interval() -> None:
    with pytest.raises(ValidationError):
        ensure_interval_free('p-1', datetime(2026, 3, 2, 9, 0), datetime(2026, 3, 2, 9, 0), [])


def test_claim_units_covers_interval_on_quarter_hour_grid() -> None:
    assert claim_units(MONDAY, time(9, 0), time(10, 0)) == [time(9, 0), time(9, 15), time(9, 30), time(9, 45)]


def test_claim_units_floors_misaligned_start() -> None:
    assert claim_units(MONDAY, time(9, 10), time(9, 40)) == [time(9, 0), time(9, 15), time(9, 30)]


def test_overlapping_intervals_share_a_claim_unit() -> None:
    first = set(claim_units(MONDAY, time(9, 0), time(11, 0)))
    second = set(claim_units(MONDAY, time(10, 0), time(12, 0)))
    adjacent = set(claim_units(MONDAY, time(11, 0), time(12, 0)))

    assert first & second
    assert not first & adjacent


def test_provider_day_lock_fails_closed_on_timeout() -> None:
    held = threading.Event()
    release = threading.Event()

    def hold_lock() -> None:
        with provider_day_lock('p-lock', MONDAY):
            held.set()
            release.wait(timeout=5)

    worker = threading.Thread(target=hold_lock)
    worker.start()
    try:
        assert held.wait(timeout=5)
        with pytest.raises(TransientStorageError):
            with provider_day_lock('p-lock', MONDAY, timeout=0.05):
                pass
    finally:
        release.set()
        worker.join()

    with provider_day_lock('p-lock', MONDAY, timeout=0.05):
        pass


def test_provider_day_lock_is_per_provider_and_date() -> None:
    with provider_day_lock('p-a', MONDAY, timeout=0.05):
        with provider_day_lock('p-b', MONDAY, timeout=0.05):
            with provider_day_lock('p-a', date(2026, 3, 3), timeout=0.05):
                pass


def test_lock_entries_are_dropped_once_released() -> None:
    with provider_day_lock('p-evict', MONDAY, timeout=0.05):
        assert ('p-evict', MONDAY) in conflicts._day_locks
    with provider_lock('p-evict'):
        assert 'p-evict' in conflicts._provider_locks

    assert ('p-evict', MONDAY) not in conflicts._day_locks
    assert 'p-evict' not in conflicts._provider_locks


def test_timed_out_waiter_does_not_leak_lock_entry() -> None:
    held = threading.Event()
    release = threading.Event()

    def hold_lock() -> None:
        with provider_day_lock('p-waiter', MONDAY):
            held.set()
            release.wait(timeout=5)

    worker = threading.Thread(target=hold_lock)
    worker.start()
    try:
        assert held.wait(timeout=5)
        with pytest.raises(TransientStorageError):
            with provider_day_lock('p-waiter', MONDAY, timeout=0.05):
                pass
        assert ('p-waiter', MONDAY) in conflicts._day_locks
    finally:
        release.set()
        worker.join()

    assert ('p-waiter', MONDAY) not in conflicts._day_locks
