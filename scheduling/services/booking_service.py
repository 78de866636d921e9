"""
Booking operations.

Each function is one request-sized unit of work against a SQLAlchemy session:
it reads what it needs, applies the engine's rules, and commits or rolls back.
Domain failures surface as ``scheduling.core.errors`` exceptions; storage
failures are rolled back and re-raised as ``TransientStorageError``.

Listing is read-only and unlocked. ``create_booking`` is the only operation
that needs mutual exclusion: it re-checks overlaps under a per-(provider, date)
lock and claims the interval's grid units, which a unique constraint keeps
exclusive across processes.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from scheduling.core import config
from scheduling.core.clock import Clock, system_clock
from scheduling.core.errors import (
    ConflictError,
    NotFoundError,
    PolicyViolation,
    ValidationError,
)
from scheduling.engine import pin as session_pin
from scheduling.engine import policies
from scheduling.engine.conflicts import claim_units, ensure_interval_free, provider_day_lock, provider_lock
from scheduling.engine.pricing import PriceEstimate, estimate_price
from scheduling.engine.selection import ensure_contiguous
from scheduling.engine.slots import generate_slots, offered_slot_set
from scheduling.engine.state_machine import BookingEvent, apply_event, effective_status
from scheduling.engine.types import (
    AppointmentStatus,
    BLOCKING_STATUSES,
    LocationMode,
    Party,
    Slot,
)
from scheduling.models.appointment import Appointment, NoShowReport, SlotClaim
from scheduling.models.provider import ProviderProfile
from scheduling.services.calendar_service import get_provider_profile, iterate_dates, load_calendar
from scheduling.services.collaborators import (
    PaymentInitiator,
    ProviderManagement,
    default_payment_initiator,
    default_provider_management,
)
from scheduling.services.storage import storage_guard

logger = logging.getLogger(__name__)


@dataclass
class CancellationOutcome:
    appointment: Appointment
    penalty_fraction: float
    cancellation_fee: Decimal


@dataclass
class NoShowOutcome:
    accepted: bool
    provider_suspended: bool
    no_show_count: int


@dataclass
class PinCheckOutcome:
    valid: bool
    attempts_left: int
    appointment: Appointment


def _blocking_intervals(db: Session, provider_id: str, target_date: date) -> list[tuple[datetime, datetime]]:
    rows = db.query(Appointment.appointment_date, Appointment.start_time, Appointment.end_time).filter(
        Appointment.provider_id == provider_id,
        Appointment.appointment_date == target_date,
        Appointment.status.in_([status.value for status in BLOCKING_STATUSES]),
    ).all()
    return [
        (datetime.combine(row_date, start_time), datetime.combine(row_date, end_time))
        for row_date, start_time, end_time in rows
    ]


def _get_appointment(db: Session, appointment_id: int, lock: bool = False) -> Appointment:
    query = db.query(Appointment).filter(Appointment.id == appointment_id)
    if lock:
        query = query.with_for_update()
    appointment = query.first()
    if appointment is None:
        raise NotFoundError('Appointment not found.')
    return appointment


def _settle_lazy_completion(appointment: Appointment, now: datetime) -> None:
    current = appointment.status_enum
    if effective_status(current, appointment.end_at, now) != current:
        apply_event(appointment, BookingEvent.COMPLETE, now)


def _release_claims(db: Session, appointment_id: int) -> None:
    db.query(SlotClaim).filter(SlotClaim.appointment_id == appointment_id).delete(synchronize_session=False)


def view_status(appointment: Appointment, now: datetime) -> AppointmentStatus:
    """The status a reader should see right now, without writing anything."""
    return effective_status(appointment.status_enum, appointment.end_at, now)


def list_bookable_slots(
    db: Session,
    provider_id: str,
    target_date: date,
    clock: Clock = system_clock,
) -> list[Slot]:
    with storage_guard(db, 'list bookable slots'):
        profile = get_provider_profile(db, provider_id)
        if profile.is_suspended:
            return []

        windows, weekly, exceptions = load_calendar(db, provider_id, target_date)
        busy = _blocking_intervals(db, provider_id, target_date)
        return generate_slots(target_date, windows, weekly, exceptions, busy, clock.now())


def list_bookable_dates(
    db: Session,
    provider_id: str,
    start_date: date,
    end_date: date,
    clock: Clock = system_clock,
) -> list[date]:
    """Dates in ``[start_date, end_date]`` with at least one bookable slot.

    Uses the same generator as ``list_bookable_slots`` so a clickable date
    always has slots and a date with slots is always clickable.
    """
    if end_date < start_date:
        raise ValidationError('End date must not be before start date.')

    return [
        current
        for current in iterate_dates(start_date, end_date)
        if list_bookable_slots(db, provider_id, current, clock=clock)
    ]


def quote_booking(db: Session, provider_id: str, slots: list[Slot]) -> PriceEstimate:
    with storage_guard(db, 'quote booking'):
        profile = get_provider_profile(db, provider_id)
    return estimate_price(slots, profile.hourly_rate)


def create_booking(
    db: Session,
    provider_id: str,
    requester_id: str,
    slots: list[Slot],
    location_mode: LocationMode,
    address: Optional[str] = None,
    note: Optional[str] = None,
    clock: Clock = system_clock,
    payments: PaymentInitiator = default_payment_initiator,
    proposed_by: Party = Party.REQUESTER,
) -> Appointment:
    """Book a contiguous run of slots as one pending appointment.

    A provider may also propose the booking on the requester's behalf
    (``proposed_by=Party.PROVIDER``); it goes through the same checks and
    waits in ``pending`` like any other request.

    Raises:
        ValidationError: Bad selection, unknown or suspended provider, or
            slots the calendar does not offer.
        ConflictError: Another blocking booking already holds part of the interval.
        TransientStorageError: The store failed; nothing was committed.
    """
    try:
        location_mode = LocationMode(location_mode)
    except ValueError:
        raise ValidationError(f'Unknown location mode: {location_mode}.') from None
    try:
        proposed_by = Party(proposed_by)
    except ValueError:
        raise ValidationError(f'Unknown proposing party: {proposed_by}.') from None

    requester_id = (requester_id or '').strip()
    if not requester_id:
        raise ValidationError('Requester is required.')
    if note is not None and len(note) > config.MAX_NOTE_LENGTH:
        raise ValidationError(f'Notes must be {config.MAX_NOTE_LENGTH} characters or fewer.')

    ordered = ensure_contiguous(slots)
    booking_date = ordered[0].date
    start_time, end_time = ordered[0].start_time, ordered[-1].end_time
    now = clock.now()

    with storage_guard(db, 'create booking'):
        profile = get_provider_profile(db, provider_id)
        if profile.is_suspended:
            raise ValidationError('This provider is not accepting bookings.')

        windows, weekly, exceptions = load_calendar(db, provider_id, booking_date)
        offered = offered_slot_set(booking_date, windows, weekly, exceptions, now)
        for slot in ordered:
            if (slot.start_time, slot.end_time) not in offered:
                raise ValidationError(
                    f'Slot {slot.start_time.strftime("%H:%M")}-{slot.end_time.strftime("%H:%M")} '
                    f'is not offered on {booking_date.isoformat()}.'
                )

        price = estimate_price(ordered, profile.hourly_rate).price

        with provider_day_lock(provider_id, booking_date):
            busy = _blocking_intervals(db, provider_id, booking_date)
            ensure_interval_free(
                provider_id,
                datetime.combine(booking_date, start_time),
                datetime.combine(booking_date, end_time),
                busy,
            )

            appointment = Appointment(
                provider_id=provider_id,
                requester_id=requester_id,
                appointment_date=booking_date,
                start_time=start_time,
                end_time=end_time,
                status=AppointmentStatus.PENDING.value,
                location_mode=location_mode.value,
                address=(address or '').strip() or None,
                note=(note or '').strip() or None,
                price=price,
                proposed_by=proposed_by.value,
                created_at=now,
                status_changed_at=now,
                pin_attempts=0,
            )
            try:
                db.add(appointment)
                db.flush()
                for unit_start in claim_units(booking_date, start_time, end_time):
                    db.add(
                        SlotClaim(
                            provider_id=provider_id,
                            claim_date=booking_date,
                            unit_start=unit_start,
                            appointment_id=appointment.id,
                        )
                    )
                db.commit()
            except IntegrityError as exc:
                db.rollback()
                logger.warning(
                    'Claim collision for provider %s on %s %s-%s',
                    provider_id,
                    booking_date,
                    start_time,
                    end_time,
                )
                raise ConflictError() from exc

        db.refresh(appointment)

    logger.info(
        'Appointment %s proposed by %s for provider %s on %s %s-%s',
        appointment.id,
        proposed_by.value,
        provider_id,
        booking_date,
        start_time,
        end_time,
    )

    try:
        payments.initiate_payment(appointment)
    except Exception:
        # The booking stays pending; it can be confirmed or cancelled later.
        logger.exception('Payment initiation failed for appointment %s', appointment.id)

    return appointment


def get_appointment(db: Session, appointment_id: int) -> Appointment:
    with storage_guard(db, 'load appointment'):
        return _get_appointment(db, appointment_id)


def confirm_booking(db: Session, appointment_id: int, clock: Clock = system_clock) -> Appointment:
    now = clock.now()
    with storage_guard(db, 'confirm booking'):
        appointment = _get_appointment(db, appointment_id, lock=True)
        apply_event(appointment, BookingEvent.CONFIRM, now)
        session_pin.issue_session_pin(appointment)
        db.commit()
        db.refresh(appointment)
        return appointment


def reject_booking(db: Session, appointment_id: int, clock: Clock = system_clock) -> Appointment:
    now = clock.now()
    with storage_guard(db, 'reject booking'):
        appointment = _get_appointment(db, appointment_id, lock=True)
        apply_event(appointment, BookingEvent.REJECT, now)
        _release_claims(db, appointment.id)
        db.commit()
        db.refresh(appointment)
        return appointment


def cancel_booking(
    db: Session,
    appointment_id: int,
    initiator: Party,
    clock: Clock = system_clock,
) -> CancellationOutcome:
    """Cancel a pending or accepted appointment.

    A requester cancelling an accepted appointment inside the free window pays
    the late-cancellation penalty. Provider cancellations and withdrawals of
    unconfirmed requests are free.
    """
    try:
        initiator = Party(initiator)
    except ValueError:
        raise ValidationError(f'Unknown cancelling party: {initiator}.') from None

    now = clock.now()
    with storage_guard(db, 'cancel booking'):
        appointment = _get_appointment(db, appointment_id, lock=True)
        _settle_lazy_completion(appointment, now)
        previous = appointment.status_enum
        if previous == AppointmentStatus.ACCEPTED and now >= appointment.end_at:
            raise PolicyViolation('A session that has already ended cannot be cancelled.')

        decision = policies.evaluate_cancellation(appointment.start_at, now)
        charged = previous == AppointmentStatus.ACCEPTED and initiator == Party.REQUESTER
        penalty_fraction = decision.penalty_fraction if charged else 0.0

        apply_event(appointment, BookingEvent.CANCEL, now)
        fee = (Decimal(appointment.price) * Decimal(str(penalty_fraction))).quantize(Decimal('0.01'))
        appointment.cancelled_by = initiator.value
        appointment.cancellation_fee = fee
        _release_claims(db, appointment.id)
        db.commit()
        db.refresh(appointment)

    logger.info(
        'Appointment %s cancelled by %s, penalty %.2f',
        appointment.id,
        initiator.value,
        penalty_fraction,
    )
    return CancellationOutcome(
        appointment=appointment,
        penalty_fraction=penalty_fraction,
        cancellation_fee=fee,
    )


def complete_booking(db: Session, appointment_id: int, clock: Clock = system_clock) -> Appointment:
    now = clock.now()
    with storage_guard(db, 'complete booking'):
        appointment = _get_appointment(db, appointment_id, lock=True)
        if appointment.status_enum == AppointmentStatus.ACCEPTED:
            if appointment.started_at is None and now < appointment.end_at:
                raise PolicyViolation('A session can only be completed once it has started or ended.')
        apply_event(appointment, BookingEvent.COMPLETE, now)
        _release_claims(db, appointment.id)
        db.commit()
        db.refresh(appointment)
        return appointment


def validate_session_pin(
    db: Session,
    appointment_id: int,
    pin_code: str,
    clock: Clock = system_clock,
) -> PinCheckOutcome:
    now = clock.now()
    with storage_guard(db, 'validate session pin'):
        appointment = _get_appointment(db, appointment_id, lock=True)
        _settle_lazy_completion(appointment, now)
        try:
            valid = session_pin.check_session_pin(appointment, pin_code, now)
        finally:
            # Failed attempts and lockouts must survive a rejected check.
            db.commit()
        db.refresh(appointment)
        return PinCheckOutcome(
            valid=valid,
            attempts_left=session_pin.attempts_left(appointment),
            appointment=appointment,
        )


def is_joinable(db: Session, appointment_id: int, clock: Clock = system_clock) -> bool:
    now = clock.now()
    appointment = get_appointment(db, appointment_id)
    return policies.is_joinable(
        appointment.appointment_date,
        appointment.start_time,
        appointment.end_time,
        now,
        LocationMode(appointment.location_mode),
        view_status(appointment, now),
    )


def report_no_show(
    db: Session,
    appointment_id: int,
    reporter_id: str,
    description: Optional[str] = None,
    clock: Clock = system_clock,
    provider_management: ProviderManagement = default_provider_management,
) -> NoShowOutcome:
    """File a no-show against the provider of an ended, accepted appointment.

    Report insertion, the status change, the recount and any suspension are
    committed together under a per-provider lock; the unique report per
    appointment stops a second report from counting twice.

    Raises:
        PolicyViolation: Wrong reporter, appointment not eligible, or already reported.
    """
    now = clock.now()
    appointment = get_appointment(db, appointment_id)
    provider_id = appointment.provider_id
    newly_suspended = False

    with provider_lock(provider_id):
        with storage_guard(db, 'report no-show'):
            appointment = _get_appointment(db, appointment_id, lock=True)
            if appointment.requester_id != (reporter_id or '').strip():
                raise PolicyViolation('Only the requester who booked this appointment can report a no-show.')

            status = view_status(appointment, now)
            if not policies.may_report_no_show(status, appointment.end_at, now):
                if status == AppointmentStatus.ACCEPTED:
                    raise PolicyViolation('A no-show can only be reported after the session has ended.')
                raise PolicyViolation(f'This appointment is {status.value} and cannot be reported.')

            profile = db.query(ProviderProfile).filter(ProviderProfile.provider_id == provider_id).with_for_update().first()
            previous_count = profile.no_show_count if profile is not None else 0

            try:
                db.add(
                    NoShowReport(
                        appointment_id=appointment.id,
                        provider_id=provider_id,
                        reporter_id=appointment.requester_id,
                        description=(description or '').strip() or None,
                        created_at=now,
                    )
                )
                apply_event(appointment, BookingEvent.REPORT_NO_SHOW, now)
                _release_claims(db, appointment.id)
                db.flush()
            except IntegrityError as exc:
                db.rollback()
                raise PolicyViolation('A no-show has already been reported for this appointment.') from exc

            no_show_count = db.query(func.count(NoShowReport.id)).filter(
                NoShowReport.provider_id == provider_id,
            ).scalar()

            suspended = False
            if profile is not None:
                profile.no_show_count = no_show_count
                if profile.suspended_at is None and policies.crosses_suspension_threshold(previous_count, no_show_count):
                    profile.suspended_at = now
                    newly_suspended = True
                suspended = profile.suspended_at is not None

            db.commit()

    logger.info('No-show reported for appointment %s; provider %s now has %d', appointment_id, provider_id, no_show_count)

    if newly_suspended:
        try:
            provider_management.suspend_provider(provider_id, no_show_count)
        except Exception:
            # The suspension is recorded locally; the collaborator can be re-synced.
            logger.exception('Provider management failed to suspend provider %s', provider_id)

    return NoShowOutcome(accepted=True, provider_suspended=suspended, no_show_count=no_show_count)


def complete_elapsed_appointments(db: Session, clock: Clock = system_clock) -> int:
    """Persist lazy completions. Optional; reads are correct without it."""
    now = clock.now()
    with storage_guard(db, 'complete elapsed appointments'):
        candidates = db.query(Appointment).filter(
            Appointment.status == AppointmentStatus.ACCEPTED.value,
            Appointment.appointment_date <= now.date(),
        ).all()
        completed = 0
        for appointment in candidates:
            if view_status(appointment, now) == AppointmentStatus.COMPLETED:
                apply_event(appointment, BookingEvent.COMPLETE, now)
                _release_claims(db, appointment.id)
                completed += 1
        db.commit()
        return completed
