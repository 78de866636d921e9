import os
from datetime import date, datetime, time

import pytest

os.environ.setdefault('DATABASE_URL', 'sqlite:///./test.db')

from scheduling.engine.policies import (  # noqa: E402
    crosses_suspension_threshold,
    evaluate_cancellation,
    is_joinable,
    may_report_no_show,
)
from scheduling.engine.types import AppointmentStatus, LocationMode  # noqa: E402

START = datetime(2026, 3, 4, 10, 0)


@pytest.mark.parametrize(
    ('now', 'penalty'),
    [
        (datetime(2026, 3, 2, 10, 0), 0.0),
        (datetime(2026, 3, 1, 9, 0), 0.0),
        (datetime(2026, 3, 2, 10, 1), 0.5),
        (datetime(2026, 3, 4, 9, 0), 0.5),
        (datetime(2026, 3, 4, 11, 0), 0.5),
    ],
)
def test_evaluate_cancellation_penalty_boundary(now: datetime, penalty: float) -> None:
    decision = evaluate_cancellation(START, now)

    assert decision.allowed is True
    assert decision.penalty_fraction == penalty


def test_evaluate_cancellation_reports_hours_until_start() -> None:
    decision = evaluate_cancellation(START, datetime(2026, 3, 3, 22, 0))

    assert decision.hours_until_start == 12.0


def test_evaluate_cancellation_uses_overrides() -> None:
    decision = evaluate_cancellation(START, datetime(2026, 3, 4, 8, 0), free_window_hours=1, late_penalty=0.25)

    assert decision.penalty_fraction == 0.0


@pytest.mark.parametrize(
    ('now', 'expected'),
    [
        (datetime(2026, 3, 4, 9, 44), False),
        (datetime(2026, 3, 4, 9, 45), True),
        (datetime(2026, 3, 4, 10, 30), True),
        (datetime(2026, 3, 4, 11, 0), True),
        (datetime(2026, 3, 4, 11, 0, 1), False),
        (datetime(2026, 3, 3, 10, 30), False),
    ],
)
def test_is_joinable_window_boundaries(now: datetime, expected: bool) -> None:
    joinable = is_joinable(
        date(2026, 3, 4),
        time(10, 0),
        time(11, 0),
        now,
        LocationMode.REMOTE,
        AppointmentStatus.ACCEPTED,
    )

    assert joinable is expected


@pytest.mark.parametrize(
    ('location_mode', 'status'),
    [
        (LocationMode.ON_SITE, AppointmentStatus.ACCEPTED),
        (LocationMode.PROVIDER_SITE, AppointmentStatus.ACCEPTED),
        (LocationMode.REMOTE, AppointmentStatus.PENDING),
        (LocationMode.REMOTE, AppointmentStatus.CANCELLED),
    ],
)
def test_is_joinable_requires_remote_accepted(location_mode: LocationMode, status: AppointmentStatus) -> None:
    joinable = is_joinable(date(2026, 3, 4), time(10, 0), time(11, 0), datetime(2026, 3, 4, 10, 15), location_mode, status)

    assert joinable is False


def test_may_report_no_show_only_after_end() -> None:
    end_at = datetime(2026, 3, 4, 14, 0)

    assert may_report_no_show(AppointmentStatus.ACCEPTED, end_at, datetime(2026, 3, 4, 14, 5))
    assert not may_report_no_show(AppointmentStatus.ACCEPTED, end_at, end_at)
    assert not may_report_no_show(AppointmentStatus.PENDING, end_at, datetime(2026, 3, 4, 14, 5))
    assert not may_report_no_show(AppointmentStatus.COMPLETED, end_at, datetime(2026, 3, 4, 14, 5))


def test_crosses_suspension_threshold_fires_once() -> None:
    assert not crosses_suspension_threshold(1, 2)
    assert crosses_suspension_threshold(2, 3)
    assert not crosses_suspension_threshold(3, 4)
    assert crosses_suspension_threshold(0, 1, threshold=1)
