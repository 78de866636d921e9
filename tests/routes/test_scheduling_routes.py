import os
from datetime import date, datetime, time, timedelta
from decimal import Decimal

import pytest
from fastapi import HTTPException
from pydantic import ValidationError

os.environ.setdefault('DATABASE_URL', 'sqlite:///./test.db')

from scheduling.core.errors import PinLockedError, TransientStorageError  # noqa: E402
from scheduling.routes.appointment_routes import (  # noqa: E402
    CancelBookingRequest,
    CreateBookingRequest,
    ReportNoShowRequest,
    ValidatePinRequest,
    cancel_appointment,
    confirm_appointment,
    create_appointment,
    joinable,
    read_appointment,
    report_no_show,
    validate_pin,
)
from scheduling.routes.availability_routes import (  # noqa: E402
    CreateExceptionRequest,
    CreateWindowRequest,
    PriceEstimateRequest,
    ProviderProfileRequest,
    create_exception,
    create_window,
    list_dates,
    list_slots,
    price_estimate,
    upsert_provider,
)
from scheduling.routes.dependencies import to_http_exception  # noqa: E402
from scheduling.services.collaborators import default_payment_initiator, default_provider_management  # noqa: E402

PROVIDER = 'p-1'
MONDAY = date(2026, 3, 2)


@pytest.fixture(autouse=True)
def database_ready(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr('scheduling.routes.availability_routes.ensure_database_ready', lambda: None)
    monkeypatch.setattr('scheduling.routes.appointment_routes.ensure_database_ready', lambda: None)


@pytest.fixture
def open_calendar(scheduling_db, clock):
    upsert_provider(provider_id=PROVIDER, data=ProviderProfileRequest(hourly_rate=Decimal('40')), db=scheduling_db)
    create_window(
        data=CreateWindowRequest(provider_id=PROVIDER, date=MONDAY, start_time=time(9, 0), end_time=time(12, 0)),
        db=scheduling_db,
        clock=clock,
    )
    return scheduling_db


def booking_request(start_hour: int = 10, end_hour: int = 11, **overrides) -> CreateBookingRequest:
    payload = {
        'provider_id': PROVIDER,
        'requester_id': 'r-1',
        'date': MONDAY,
        'slots': [{'start_time': time(hour, 0), 'end_time': time(hour + 1, 0)} for hour in range(start_hour, end_hour)],
        'location_mode': 'remote',
    }
    payload.update(overrides)
    return CreateBookingRequest(**payload)


def create(db, clock, request: CreateBookingRequest | None = None):
    return create_appointment(
        data=request or booking_request(),
        db=db,
        clock=clock,
        payments=default_payment_initiator,
    )


def test_create_booking_request_normalizes_note_and_ids() -> None:
    request = booking_request(provider_id=' p-1 ', requester_id=' r-1 ', note='   ')

    assert request.provider_id == 'p-1'
    assert request.requester_id == 'r-1'
    assert request.note is None


@pytest.mark.parametrize(
    'overrides',
    [
        {'provider_id': '   '},
        {'location_mode': 'home'},
        {'note': 'x' * 601},
    ],
)
def test_create_booking_request_rejects_bad_payload(overrides: dict) -> None:
    with pytest.raises(ValidationError):
        booking_request(**overrides)


def test_create_window_request_rejects_blank_provider() -> None:
    with pytest.raises(ValidationError):
        CreateWindowRequest(provider_id='  ', date=MONDAY, start_time=time(9, 0), end_time=time(10, 0))


def test_create_exception_request_trims_reason() -> None:
    request = CreateExceptionRequest(provider_id='p-1', date=MONDAY, kind='vacation', reason='  Away  ')

    assert request.reason == 'Away'


def test_list_slots_route_returns_durations(open_calendar, clock) -> None:
    slots = list_slots(provider_id=PROVIDER, slot_date=MONDAY, db=open_calendar, clock=clock)

    assert [(s.start_time, s.duration_minutes) for s in slots] == [
        (time(9, 0), 60),
        (time(10, 0), 60),
        (time(11, 0), 60),
    ]


def test_list_dates_route_defaults_to_today(open_calendar, clock) -> None:
    assert list_dates(provider_id=PROVIDER, start=None, days=7, db=open_calendar, clock=clock) == [MONDAY]


def test_create_appointment_route_returns_pending_booking(open_calendar, clock) -> None:
    response = create(open_calendar, clock)

    assert response.status == 'pending'
    assert response.price == Decimal('40.00')
    assert (response.start_time, response.end_time) == (time(10, 0), time(11, 0))


def test_create_appointment_route_records_provider_proposal(open_calendar, clock) -> None:
    response = create(open_calendar, clock, booking_request(proposed_by='provider'))

    assert response.proposed_by == 'provider'
    assert response.status == 'pending'
    assert create(open_calendar, clock, booking_request(9, 10)).proposed_by == 'requester'


def test_create_appointment_route_maps_conflict_to_409(open_calendar, clock) -> None:
    create(open_calendar, clock)

    with pytest.raises(HTTPException) as exception_info:
        create(open_calendar, clock, booking_request(requester_id='r-2'))

    assert exception_info.value.status_code == 409
    assert exception_info.value.detail == 'Slot no longer available.'


def test_create_appointment_route_maps_validation_to_400(open_calendar, clock) -> None:
    with pytest.raises(HTTPException) as exception_info:
        create(open_calendar, clock, booking_request(provider_id='ghost'))

    assert exception_info.value.status_code == 400


def test_read_appointment_route_maps_missing_to_404(scheduling_db, clock) -> None:
    with pytest.raises(HTTPException) as exception_info:
        read_appointment(appointment_id=42, db=scheduling_db, clock=clock)

    assert exception_info.value.status_code == 404


def test_confirm_route_returns_session_pin(open_calendar, clock) -> None:
    created = create(open_calendar, clock)

    confirmed = confirm_appointment(appointment_id=created.id, db=open_calendar, clock=clock)

    assert confirmed.status == 'accepted'
    assert len(confirmed.session_pin) == 4


def test_read_route_reports_lazily_completed_status(open_calendar, clock) -> None:
    created = create(open_calendar, clock)
    confirm_appointment(appointment_id=created.id, db=open_calendar, clock=clock)
    clock.current = datetime(2026, 3, 5, 12, 0)

    assert read_appointment(appointment_id=created.id, db=open_calendar, clock=clock).status == 'completed'


def test_cancel_route_returns_penalty(open_calendar, clock) -> None:
    created = create(open_calendar, clock)
    confirm_appointment(appointment_id=created.id, db=open_calendar, clock=clock)

    response = cancel_appointment(
        appointment_id=created.id,
        data=CancelBookingRequest(initiator='requester'),
        db=open_calendar,
        clock=clock,
    )

    assert response.appointment.status == 'cancelled'
    assert response.penalty_fraction == 0.5
    assert response.cancellation_fee == Decimal('20.00')


def test_cancel_route_maps_invalid_transition_to_400(open_calendar, clock) -> None:
    created = create(open_calendar, clock)
    request = CancelBookingRequest(initiator='provider')
    cancel_appointment(appointment_id=created.id, data=request, db=open_calendar, clock=clock)

    with pytest.raises(HTTPException) as exception_info:
        cancel_appointment(appointment_id=created.id, data=request, db=open_calendar, clock=clock)

    assert exception_info.value.status_code == 400
    assert exception_info.value.detail.startswith('Cannot cancel an appointment that is cancelled.')


def test_validate_pin_route_locks_after_three_wrong_attempts(open_calendar, clock) -> None:
    created = create(open_calendar, clock)
    pin = confirm_appointment(appointment_id=created.id, db=open_calendar, clock=clock).session_pin
    wrong = '5678' if pin != '5678' else '5679'
    clock.current = datetime(2026, 3, 2, 10, 0)

    for expected_left in (2, 1, 3):
        response = validate_pin(
            appointment_id=created.id,
            data=ValidatePinRequest(pin_code=wrong),
            db=open_calendar,
            clock=clock,
        )
        assert (response.valid, response.attempts_left) == (False, expected_left)

    with pytest.raises(HTTPException) as exception_info:
        validate_pin(appointment_id=created.id, data=ValidatePinRequest(pin_code=pin), db=open_calendar, clock=clock)

    assert exception_info.value.status_code == 429
    assert exception_info.value.headers == {'X-Locked-Until': '2026-03-02T10:10:00'}


def test_joinable_route(open_calendar, clock) -> None:
    created = create(open_calendar, clock)
    confirm_appointment(appointment_id=created.id, db=open_calendar, clock=clock)
    clock.current = datetime(2026, 3, 2, 9, 50)

    assert joinable(appointment_id=created.id, db=open_calendar, clock=clock).joinable is True


def test_report_no_show_route(open_calendar, clock) -> None:
    created = create(open_calendar, clock)
    confirm_appointment(appointment_id=created.id, db=open_calendar, clock=clock)
    clock.current = datetime(2026, 3, 2, 11, 5)

    response = report_no_show(
        appointment_id=created.id,
        data=ReportNoShowRequest(reporter_id='r-1', description='Nobody came.'),
        db=open_calendar,
        clock=clock,
        provider_management=default_provider_management,
    )

    assert (response.accepted, response.provider_suspended, response.no_show_count) == (True, False, 1)


def test_create_exception_route_closes_the_day(open_calendar, clock) -> None:
    create_exception(
        data=CreateExceptionRequest(provider_id=PROVIDER, date=MONDAY, kind='vacation'),
        db=open_calendar,
    )

    assert list_slots(provider_id=PROVIDER, slot_date=MONDAY, db=open_calendar, clock=clock) == []


def test_price_estimate_with_explicit_rate() -> None:
    request = PriceEstimateRequest(
        slots=[
            {'date': MONDAY, 'start_time': time(9, 0), 'end_time': time(10, 0)},
            {'date': MONDAY, 'start_time': time(10, 0), 'end_time': time(11, 0)},
        ],
        hourly_rate=Decimal('40'),
    )

    response = price_estimate(data=request, db=None)

    assert (response.duration_minutes, response.price) == (120, Decimal('80.00'))


def test_price_estimate_requires_rate_or_provider() -> None:
    request = PriceEstimateRequest(slots=[{'date': MONDAY, 'start_time': time(9, 0), 'end_time': time(10, 0)}])

    with pytest.raises(HTTPException) as exception_info:
        price_estimate(data=request, db=None)

    assert exception_info.value.status_code == 400


def test_price_estimate_rejects_gap_with_400() -> None:
    request = PriceEstimateRequest(
        slots=[
            {'date': MONDAY, 'start_time': time(9, 0), 'end_time': time(10, 0)},
            {'date': MONDAY, 'start_time': time(11, 0), 'end_time': time(12, 0)},
        ],
        hourly_rate=Decimal('40'),
    )

    with pytest.raises(HTTPException) as exception_info:
        price_estimate(data=request, db=None)

    assert exception_info.value.status_code == 400
    assert exception_info.value.detail == 'Selected slots must be contiguous.'


@pytest.mark.parametrize(
    ('error', 'status_code'),
    [
        (TransientStorageError('Booking store unavailable. Please retry.'), 503),
        (PinLockedError('Too many attempts. Try again later.', datetime(2026, 3, 2, 10, 0) + timedelta(minutes=10)), 429),
    ],
)
def test_to_http_exception_status_codes(error, status_code: int) -> None:
    assert to_http_exception(error).status_code == status_code


def test_app_registers_scheduling_routers() -> None:
    from scheduling.main import app, root

    paths = {route.path for route in app.routes}

    assert root() == {'status': 'Scheduling API Running'}
    assert {'/appointments', '/appointments/{appointment_id}/no-show', '/availability/slots'} <= paths
