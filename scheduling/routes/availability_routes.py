from datetime import date, time, timedelta
from decimal import Decimal

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field, field_validator
from sqlalchemy.orm import Session

from scheduling.core import config
from scheduling.core.errors import SchedulingError
from scheduling.engine.pricing import estimate_price
from scheduling.engine.types import ExceptionKind, Slot
from scheduling.routes.dependencies import ensure_database_ready, get_clock, get_db, to_http_exception
from scheduling.services import booking_service, calendar_service

router = APIRouter(tags=['availability'])

MAX_DATE_RANGE_DAYS = 31


def _normalize_provider_id(value: str) -> str:
    normalized = value.strip()
    if not normalized:
        raise ValueError('Provider is required.')
    return normalized


class ProviderProfileRequest(BaseModel):
    hourly_rate: Decimal = Field(ge=0)


class ProviderProfileResponse(BaseModel):
    provider_id: str
    hourly_rate: Decimal
    no_show_count: int
    is_suspended: bool

    class Config:
        from_attributes = True


class CreateWindowRequest(BaseModel):
    provider_id: str
    date: date
    start_time: time
    end_time: time
    is_open: bool = True

    @field_validator('provider_id')
    @classmethod
    def validate_provider_id(cls, value: str) -> str:
        return _normalize_provider_id(value)


class WindowResponse(BaseModel):
    id: int
    provider_id: str
    date: date
    start_time: time
    end_time: time
    is_open: bool

    class Config:
        from_attributes = True


class CreateWeeklyRequest(BaseModel):
    provider_id: str
    day_of_week: int = Field(ge=0, le=6)
    start_time: time
    end_time: time

    @field_validator('provider_id')
    @classmethod
    def validate_provider_id(cls, value: str) -> str:
        return _normalize_provider_id(value)


class WeeklyResponse(BaseModel):
    id: int
    provider_id: str
    day_of_week: int
    start_time: time
    end_time: time

    class Config:
        from_attributes = True


class CreateExceptionRequest(BaseModel):
    provider_id: str
    date: date
    kind: ExceptionKind
    start_time: time | None = None
    end_time: time | None = None
    reason: str | None = None

    @field_validator('provider_id')
    @classmethod
    def validate_provider_id(cls, value: str) -> str:
        return _normalize_provider_id(value)

    @field_validator('reason')
    @classmethod
    def validate_reason(cls, value: str | None) -> str | None:
        if value is None:
            return None
        normalized = value.strip()
        if len(normalized) > config.MAX_NOTE_LENGTH:
            raise ValueError(f'Reason must be {config.MAX_NOTE_LENGTH} characters or fewer.')
        return normalized or None


class ExceptionResponse(BaseModel):
    id: int
    provider_id: str
    date: date
    start_time: time | None = None
    end_time: time | None = None
    kind: str
    reason: str | None = None

    class Config:
        from_attributes = True


class SlotPayload(BaseModel):
    date: date
    start_time: time
    end_time: time

    def to_slot(self) -> Slot:
        return Slot(date=self.date, start_time=self.start_time, end_time=self.end_time)


class SlotResponse(BaseModel):
    date: date
    start_time: time
    end_time: time
    duration_minutes: int
    window_id: int | None = None


class PriceEstimateRequest(BaseModel):
    slots: list[SlotPayload]
    hourly_rate: Decimal | None = Field(default=None, ge=0)
    provider_id: str | None = None


class PriceEstimateResponse(BaseModel):
    duration_minutes: int
    price: Decimal


def to_slot_response(slot: Slot) -> SlotResponse:
    return SlotResponse(
        date=slot.date,
        start_time=slot.start_time,
        end_time=slot.end_time,
        duration_minutes=int(slot.duration.total_seconds() // 60),
        window_id=slot.window_id,
    )


def to_profile_response(profile) -> ProviderProfileResponse:
    return ProviderProfileResponse(
        provider_id=profile.provider_id,
        hourly_rate=profile.hourly_rate,
        no_show_count=profile.no_show_count or 0,
        is_suspended=profile.is_suspended,
    )


@router.put('/providers/{provider_id}', response_model=ProviderProfileResponse)
def upsert_provider(provider_id: str, data: ProviderProfileRequest, db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        profile = calendar_service.upsert_provider_profile(db, provider_id.strip(), data.hourly_rate)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc

    return to_profile_response(profile)


@router.post('/windows', response_model=WindowResponse, status_code=status.HTTP_201_CREATED)
def create_window(data: CreateWindowRequest, db: Session = Depends(get_db), clock=Depends(get_clock)):
    ensure_database_ready()

    try:
        return calendar_service.add_availability_window(
            db,
            data.provider_id,
            data.date,
            data.start_time,
            data.end_time,
            is_open=data.is_open,
            clock=clock,
        )
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc


@router.delete('/windows/{window_id}', status_code=status.HTTP_204_NO_CONTENT)
def delete_window(window_id: int, provider_id: str = Query(...), db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        calendar_service.remove_availability_window(db, provider_id.strip(), window_id)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc


@router.post('/weekly', response_model=WeeklyResponse, status_code=status.HTTP_201_CREATED)
def create_weekly(data: CreateWeeklyRequest, db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        return calendar_service.add_weekly_availability(
            db,
            data.provider_id,
            data.day_of_week,
            data.start_time,
            data.end_time,
        )
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc


@router.delete('/weekly/{template_id}', status_code=status.HTTP_204_NO_CONTENT)
def delete_weekly(template_id: int, provider_id: str = Query(...), db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        calendar_service.remove_weekly_availability(db, provider_id.strip(), template_id)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc


@router.post('/exceptions', response_model=ExceptionResponse, status_code=status.HTTP_201_CREATED)
def create_exception(data: CreateExceptionRequest, db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        return calendar_service.add_calendar_exception(
            db,
            data.provider_id,
            data.date,
            data.kind,
            start_time=data.start_time,
            end_time=data.end_time,
            reason=data.reason,
        )
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc


@router.delete('/exceptions/{exception_id}', status_code=status.HTTP_204_NO_CONTENT)
def delete_exception(exception_id: int, provider_id: str = Query(...), db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        calendar_service.remove_calendar_exception(db, provider_id.strip(), exception_id)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc


@router.get('/exceptions', response_model=list[ExceptionResponse])
def list_exceptions(
    provider_id: str = Query(...),
    include_past: bool = Query(default=False),
    db: Session = Depends(get_db),
    clock=Depends(get_clock),
):
    ensure_database_ready()

    try:
        return calendar_service.list_calendar_exceptions(
            db,
            provider_id.strip(),
            include_past=include_past,
            clock=clock,
        )
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc


@router.get('/slots', response_model=list[SlotResponse])
def list_slots(
    provider_id: str = Query(...),
    slot_date: date = Query(..., alias='date'),
    db: Session = Depends(get_db),
    clock=Depends(get_clock),
):
    ensure_database_ready()

    try:
        slots = booking_service.list_bookable_slots(db, provider_id.strip(), slot_date, clock=clock)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc

    return [to_slot_response(slot) for slot in slots]


@router.get('/dates', response_model=list[date])
def list_dates(
    provider_id: str = Query(...),
    start: date | None = Query(default=None),
    days: int = Query(default=14, ge=1, le=MAX_DATE_RANGE_DAYS),
    db: Session = Depends(get_db),
    clock=Depends(get_clock),
):
    ensure_database_ready()

    start_date = start or clock.now().date()
    end_date = start_date + timedelta(days=days - 1)

    try:
        return booking_service.list_bookable_dates(db, provider_id.strip(), start_date, end_date, clock=clock)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc


@router.post('/price-estimate', response_model=PriceEstimateResponse)
def price_estimate(data: PriceEstimateRequest, db: Session = Depends(get_db)):
    slots = [payload.to_slot() for payload in data.slots]

    try:
        if data.hourly_rate is not None:
            estimate = estimate_price(slots, data.hourly_rate)
        elif data.provider_id:
            ensure_database_ready()
            estimate = booking_service.quote_booking(db, data.provider_id.strip(), slots)
        else:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail='Either hourly_rate or provider_id is required.',
            )
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc

    return PriceEstimateResponse(
        duration_minutes=int(estimate.duration.total_seconds() // 60),
        price=estimate.price,
    )
