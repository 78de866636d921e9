from datetime import date, datetime, time
from decimal import Decimal

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, field_validator
from sqlalchemy.orm import Session

from scheduling.core import config
from scheduling.core.errors import SchedulingError
from scheduling.engine.types import LocationMode, Party, Slot
from scheduling.models.appointment import Appointment
from scheduling.routes.dependencies import (
    ensure_database_ready,
    get_clock,
    get_db,
    get_payment_initiator,
    get_provider_management,
    to_http_exception,
)
from scheduling.services import booking_service

router = APIRouter(tags=['appointments'])


class SelectedSlot(BaseModel):
    start_time: time
    end_time: time


class CreateBookingRequest(BaseModel):
    provider_id: str
    requester_id: str
    date: date
    slots: list[SelectedSlot]
    location_mode: LocationMode
    address: str | None = None
    note: str | None = None
    proposed_by: Party = Party.REQUESTER

    @field_validator('provider_id', 'requester_id')
    @classmethod
    def validate_party_id(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError('Provider and requester are required.')
        return normalized

    @field_validator('note')
    @classmethod
    def validate_note(cls, value: str | None) -> str | None:
        if value is None:
            return None

        normalized = value.strip()
        if not normalized:
            return None

        if len(normalized) > config.MAX_NOTE_LENGTH:
            raise ValueError(f'Notes must be {config.MAX_NOTE_LENGTH} characters or fewer.')

        return normalized

    def to_slots(self) -> list[Slot]:
        return [Slot(date=self.date, start_time=s.start_time, end_time=s.end_time) for s in self.slots]


class AppointmentResponse(BaseModel):
    id: int
    provider_id: str
    requester_id: str
    date: date
    start_time: time
    end_time: time
    status: str
    location_mode: str
    address: str | None = None
    note: str | None = None
    price: Decimal
    proposed_by: str
    created_at: datetime
    status_changed_at: datetime
    cancelled_by: str | None = None
    cancellation_fee: Decimal | None = None
    started_at: datetime | None = None


class ConfirmBookingResponse(AppointmentResponse):
    session_pin: str


class CancelBookingRequest(BaseModel):
    initiator: Party


class CancelBookingResponse(BaseModel):
    appointment: AppointmentResponse
    penalty_fraction: float
    cancellation_fee: Decimal


class ValidatePinRequest(BaseModel):
    pin_code: str


class ValidatePinResponse(BaseModel):
    valid: bool
    attempts_left: int
    started_at: datetime | None = None


class JoinableResponse(BaseModel):
    joinable: bool


class ReportNoShowRequest(BaseModel):
    reporter_id: str
    description: str | None = None

    @field_validator('description')
    @classmethod
    def validate_description(cls, value: str | None) -> str | None:
        if value is not None and len(value.strip()) > config.MAX_NOTE_LENGTH:
            raise ValueError(f'Description must be {config.MAX_NOTE_LENGTH} characters or fewer.')
        return value


class ReportNoShowResponse(BaseModel):
    accepted: bool
    provider_suspended: bool
    no_show_count: int


def to_appointment_response(appointment: Appointment, now: datetime) -> AppointmentResponse:
    return AppointmentResponse(
        id=appointment.id,
        provider_id=appointment.provider_id,
        requester_id=appointment.requester_id,
        date=appointment.appointment_date,
        start_time=appointment.start_time,
        end_time=appointment.end_time,
        status=booking_service.view_status(appointment, now).value,
        location_mode=appointment.location_mode,
        address=appointment.address,
        note=appointment.note,
        price=appointment.price,
        proposed_by=appointment.proposed_by,
        created_at=appointment.created_at,
        status_changed_at=appointment.status_changed_at,
        cancelled_by=appointment.cancelled_by,
        cancellation_fee=appointment.cancellation_fee,
        started_at=appointment.started_at,
    )


@router.post('', response_model=AppointmentResponse, status_code=status.HTTP_201_CREATED)
def create_appointment(
    data: CreateBookingRequest,
    db: Session = Depends(get_db),
    clock=Depends(get_clock),
    payments=Depends(get_payment_initiator),
):
    ensure_database_ready()

    try:
        appointment = booking_service.create_booking(
            db,
            data.provider_id,
            data.requester_id,
            data.to_slots(),
            data.location_mode,
            address=data.address,
            note=data.note,
            clock=clock,
            payments=payments,
            proposed_by=data.proposed_by,
        )
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc

    return to_appointment_response(appointment, clock.now())


@router.get('/{appointment_id}', response_model=AppointmentResponse)
def read_appointment(appointment_id: int, db: Session = Depends(get_db), clock=Depends(get_clock)):
    ensure_database_ready()

    try:
        appointment = booking_service.get_appointment(db, appointment_id)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc

    return to_appointment_response(appointment, clock.now())


@router.post('/{appointment_id}/confirm', response_model=ConfirmBookingResponse)
def confirm_appointment(appointment_id: int, db: Session = Depends(get_db), clock=Depends(get_clock)):
    ensure_database_ready()

    try:
        appointment = booking_service.confirm_booking(db, appointment_id, clock=clock)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc

    response = to_appointment_response(appointment, clock.now())
    return ConfirmBookingResponse(**response.model_dump(), session_pin=appointment.pin_code)


@router.post('/{appointment_id}/reject', response_model=AppointmentResponse)
def reject_appointment(appointment_id: int, db: Session = Depends(get_db), clock=Depends(get_clock)):
    ensure_database_ready()

    try:
        appointment = booking_service.reject_booking(db, appointment_id, clock=clock)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc

    return to_appointment_response(appointment, clock.now())


@router.post('/{appointment_id}/cancel', response_model=CancelBookingResponse)
def cancel_appointment(
    appointment_id: int,
    data: CancelBookingRequest,
    db: Session = Depends(get_db),
    clock=Depends(get_clock),
):
    ensure_database_ready()

    try:
        outcome = booking_service.cancel_booking(db, appointment_id, data.initiator, clock=clock)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc

    return CancelBookingResponse(
        appointment=to_appointment_response(outcome.appointment, clock.now()),
        penalty_fraction=outcome.penalty_fraction,
        cancellation_fee=outcome.cancellation_fee,
    )


@router.post('/{appointment_id}/complete', response_model=AppointmentResponse)
def complete_appointment(appointment_id: int, db: Session = Depends(get_db), clock=Depends(get_clock)):
    ensure_database_ready()

    try:
        appointment = booking_service.complete_booking(db, appointment_id, clock=clock)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc

    return to_appointment_response(appointment, clock.now())


@router.post('/{appointment_id}/validate-pin', response_model=ValidatePinResponse)
def validate_pin(
    appointment_id: int,
    data: ValidatePinRequest,
    db: Session = Depends(get_db),
    clock=Depends(get_clock),
):
    ensure_database_ready()

    try:
        outcome = booking_service.validate_session_pin(db, appointment_id, data.pin_code, clock=clock)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc

    return ValidatePinResponse(
        valid=outcome.valid,
        attempts_left=outcome.attempts_left,
        started_at=outcome.appointment.started_at,
    )


@router.get('/{appointment_id}/joinable', response_model=JoinableResponse)
def joinable(appointment_id: int, db: Session = Depends(get_db), clock=Depends(get_clock)):
    ensure_database_ready()

    try:
        return JoinableResponse(joinable=booking_service.is_joinable(db, appointment_id, clock=clock))
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc


@router.post('/{appointment_id}/no-show', response_model=ReportNoShowResponse)
def report_no_show(
    appointment_id: int,
    data: ReportNoShowRequest,
    db: Session = Depends(get_db),
    clock=Depends(get_clock),
    provider_management=Depends(get_provider_management),
):
    ensure_database_ready()

    try:
        outcome = booking_service.report_no_show(
            db,
            appointment_id,
            data.reporter_id,
            description=data.description,
            clock=clock,
            provider_management=provider_management,
        )
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc

    return ReportNoShowResponse(
        accepted=outcome.accepted,
        provider_suspended=outcome.provider_suspended,
        no_show_count=outcome.no_show_count,
    )
