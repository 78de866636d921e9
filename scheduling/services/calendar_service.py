import logging
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from typing import Optional

from sqlalchemy.orm import Session

from scheduling.core import config
from scheduling.core.clock import Clock, system_clock
from scheduling.core.errors import NotFoundError, ValidationError
from scheduling.engine.types import ExceptionKind, overlaps
from scheduling.models.calendar import AvailabilityWindow, CalendarException, WeeklyAvailability
from scheduling.models.provider import ProviderProfile
from scheduling.services.storage import storage_guard

logger = logging.getLogger(__name__)


def validate_time_range(start_time: time, end_time: time) -> None:
    if end_time <= start_time:
        raise ValidationError('End time must be after start time.')

    for value in (start_time, end_time):
        if value.second or value.microsecond or value.minute % config.CLAIM_GRANULARITY_MINUTES != 0:
            raise ValidationError(f'Times must be on {config.CLAIM_GRANULARITY_MINUTES}-minute boundaries.')


def get_provider_profile(db: Session, provider_id: str) -> ProviderProfile:
    profile = db.query(ProviderProfile).filter(ProviderProfile.provider_id == provider_id).first()
    if profile is None:
        raise ValidationError(f'Unknown provider: {provider_id}.')
    return profile


def upsert_provider_profile(db: Session, provider_id: str, hourly_rate: Decimal) -> ProviderProfile:
    if hourly_rate < 0:
        raise ValidationError('Hourly rate cannot be negative.')

    with storage_guard(db, 'save provider profile'):
        profile = db.query(ProviderProfile).filter(ProviderProfile.provider_id == provider_id).first()
        if profile is None:
            profile = ProviderProfile(provider_id=provider_id, hourly_rate=hourly_rate, no_show_count=0)
            db.add(profile)
        else:
            profile.hourly_rate = hourly_rate
        db.commit()
        db.refresh(profile)
        return profile


def add_availability_window(
    db: Session,
    provider_id: str,
    window_date: date,
    start_time: time,
    end_time: time,
    is_open: bool = True,
    clock: Clock = system_clock,
) -> AvailabilityWindow:
    validate_time_range(start_time, end_time)
    get_provider_profile(db, provider_id)
    if window_date < clock.now().date():
        raise ValidationError('Availability cannot be added in the past.')

    with storage_guard(db, 'add availability window'):
        new_start = datetime.combine(window_date, start_time)
        new_end = datetime.combine(window_date, end_time)
        existing = db.query(AvailabilityWindow).filter(
            AvailabilityWindow.provider_id == provider_id,
            AvailabilityWindow.date == window_date,
        ).all()
        for window in existing:
            if overlaps(
                new_start,
                new_end,
                datetime.combine(window_date, window.start_time),
                datetime.combine(window_date, window.end_time),
            ):
                raise ValidationError('This window overlaps an existing window on the same date.')

        window = AvailabilityWindow(
            provider_id=provider_id,
            date=window_date,
            start_time=start_time,
            end_time=end_time,
            is_open=is_open,
        )
        db.add(window)
        db.commit()
        db.refresh(window)
        logger.info('Provider %s added window %s %s-%s', provider_id, window_date, start_time, end_time)
        return window


def remove_availability_window(db: Session, provider_id: str, window_id: int) -> None:
    with storage_guard(db, 'remove availability window'):
        window = db.query(AvailabilityWindow).filter(
            AvailabilityWindow.id == window_id,
            AvailabilityWindow.provider_id == provider_id,
        ).first()
        if window is None:
            raise NotFoundError('Availability window not found.')
        db.delete(window)
        db.commit()


def add_weekly_availability(
    db: Session,
    provider_id: str,
    day_of_week: int,
    start_time: time,
    end_time: time,
) -> WeeklyAvailability:
    if not 0 <= day_of_week <= 6:
        raise ValidationError('day_of_week must be between 0 (Monday) and 6 (Sunday).')
    validate_time_range(start_time, end_time)
    get_provider_profile(db, provider_id)

    with storage_guard(db, 'add weekly availability'):
        existing = db.query(WeeklyAvailability).filter(
            WeeklyAvailability.provider_id == provider_id,
            WeeklyAvailability.day_of_week == day_of_week,
        ).all()
        for template in existing:
            if start_time < template.end_time and end_time > template.start_time:
                raise ValidationError('This opening overlaps an existing weekly opening.')

        template = WeeklyAvailability(
            provider_id=provider_id,
            day_of_week=day_of_week,
            start_time=start_time,
            end_time=end_time,
        )
        db.add(template)
        db.commit()
        db.refresh(template)
        return template


def remove_weekly_availability(db: Session, provider_id: str, template_id: int) -> None:
    with storage_guard(db, 'remove weekly availability'):
        template = db.query(WeeklyAvailability).filter(
            WeeklyAvailability.id == template_id,
            WeeklyAvailability.provider_id == provider_id,
        ).first()
        if template is None:
            raise NotFoundError('Weekly opening not found.')
        db.delete(template)
        db.commit()


def add_calendar_exception(
    db: Session,
    provider_id: str,
    exception_date: date,
    kind: ExceptionKind,
    start_time: Optional[time] = None,
    end_time: Optional[time] = None,
    reason: Optional[str] = None,
) -> CalendarException:
    try:
        kind = ExceptionKind(kind)
    except ValueError:
        raise ValidationError(f'Unknown exception kind: {kind}.') from None
    if (start_time is None) != (end_time is None):
        raise ValidationError('Give both a start and an end time, or neither for a whole day.')
    if start_time is not None:
        validate_time_range(start_time, end_time)
    elif kind == ExceptionKind.AVAILABLE:
        raise ValidationError('An extra opening needs a start and an end time.')
    get_provider_profile(db, provider_id)

    with storage_guard(db, 'add calendar exception'):
        exception = CalendarException(
            provider_id=provider_id,
            date=exception_date,
            start_time=start_time,
            end_time=end_time,
            kind=kind.value,
            reason=(reason or '').strip() or None,
        )
        db.add(exception)
        db.commit()
        db.refresh(exception)
        logger.info('Provider %s added %s exception on %s', provider_id, kind.value, exception_date)
        return exception


def remove_calendar_exception(db: Session, provider_id: str, exception_id: int) -> None:
    with storage_guard(db, 'remove calendar exception'):
        exception = db.query(CalendarException).filter(
            CalendarException.id == exception_id,
            CalendarException.provider_id == provider_id,
        ).first()
        if exception is None:
            raise NotFoundError('Calendar exception not found.')
        db.delete(exception)
        db.commit()


def list_calendar_exceptions(
    db: Session,
    provider_id: str,
    include_past: bool = False,
    clock: Clock = system_clock,
) -> list[CalendarException]:
    with storage_guard(db, 'list calendar exceptions'):
        query = db.query(CalendarException).filter(CalendarException.provider_id == provider_id)
        if not include_past:
            query = query.filter(CalendarException.date >= clock.now().date())
        return query.order_by(CalendarException.date.asc(), CalendarException.start_time.asc()).all()


def load_calendar(db: Session, provider_id: str, target_date: date):
    windows = db.query(AvailabilityWindow).filter(
        AvailabilityWindow.provider_id == provider_id,
        AvailabilityWindow.date == target_date,
    ).all()
    weekly = db.query(WeeklyAvailability).filter(
        WeeklyAvailability.provider_id == provider_id,
        WeeklyAvailability.day_of_week == target_date.weekday(),
    ).all()
    exceptions = db.query(CalendarException).filter(
        CalendarException.provider_id == provider_id,
        CalendarException.date == target_date,
    ).all()
    return windows, weekly, exceptions


def iterate_dates(start_date: date, end_date: date):
    current = start_date
    while current <= end_date:
        yield current
        current += timedelta(days=1)
