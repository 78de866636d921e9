"""Session check-in PIN.

The requester receives a four-digit PIN when the booking is confirmed and
hands it to the provider at the start of the session. Entering it marks the
session as started.
"""

import secrets
from datetime import datetime, timedelta
from typing import Optional

from scheduling.core import config
from scheduling.core.errors import PinLockedError, PolicyViolation, ValidationError
from scheduling.engine.types import AppointmentStatus

FORBIDDEN_PINS = frozenset(
    {
        '0000', '1111', '2222', '3333', '4444',
        '5555', '6666', '7777', '8888', '9999',
        '1234', '4321', '0123', '9876',
    }
)


def generate_session_pin() -> str:
    while True:
        pin = f'{1000 + secrets.randbelow(9000)}'
        if pin not in FORBIDDEN_PINS:
            return pin


def pin_expiry(start_at: datetime, ttl_hours: Optional[float] = None) -> datetime:
    return start_at + timedelta(hours=config.SESSION_PIN_TTL_HOURS if ttl_hours is None else ttl_hours)


def issue_session_pin(appointment) -> str:
    pin = generate_session_pin()
    appointment.pin_code = pin
    appointment.pin_expires_at = pin_expiry(appointment.start_at)
    appointment.pin_attempts = 0
    appointment.pin_locked_until = None
    return pin


def check_session_pin(appointment, pin_code: str, now: datetime) -> bool:
    """Validate ``pin_code`` against the appointment, recording the attempt.

    Returns True and stamps ``started_at`` on success. Returns False after
    recording a wrong attempt; the attempt that reaches the limit locks
    further tries for ``SESSION_PIN_LOCK_MINUTES``.

    Raises:
        ValidationError: The PIN is not four digits.
        PolicyViolation: Wrong status, already started, no PIN, or expired.
        PinLockedError: Attempts are locked.
    """
    pin_code = (pin_code or '').strip()
    if len(pin_code) != 4 or not pin_code.isdigit():
        raise ValidationError('PIN must be exactly 4 digits.')

    if AppointmentStatus(appointment.status) != AppointmentStatus.ACCEPTED:
        raise PolicyViolation('Only accepted appointments can be started.')
    if appointment.started_at is not None:
        raise PolicyViolation('This session has already been started.')
    if not appointment.pin_code:
        raise PolicyViolation('No PIN was issued for this appointment.')
    if appointment.pin_expires_at is not None and now > appointment.pin_expires_at:
        raise PolicyViolation('The session PIN has expired.')
    if appointment.pin_locked_until is not None and now < appointment.pin_locked_until:
        raise PinLockedError('Too many attempts. Try again later.', appointment.pin_locked_until)

    if not secrets.compare_digest(pin_code, appointment.pin_code):
        attempts = (appointment.pin_attempts or 0) + 1
        appointment.pin_attempts = attempts
        if attempts >= config.SESSION_PIN_MAX_ATTEMPTS:
            appointment.pin_locked_until = now + timedelta(minutes=config.SESSION_PIN_LOCK_MINUTES)
            appointment.pin_attempts = 0
        return False

    appointment.started_at = now
    appointment.pin_attempts = 0
    appointment.pin_locked_until = None
    return True


def attempts_left(appointment) -> int:
    return max(0, config.SESSION_PIN_MAX_ATTEMPTS - (appointment.pin_attempts or 0))
