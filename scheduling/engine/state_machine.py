"""
Booking lifecycle state machine.

Every legal move is listed in TRANSITIONS. Anything else raises
InvalidTransitionError naming the events still allowed, so a caller can never
cancel a completed appointment or revive a rejected one.

    pending ──confirm──▶ accepted ──complete──▶ completed
       │                   │ └────report_no_show──▶ no_show
       ├──reject──▶ rejected
       └──cancel──▶ cancelled ◀──cancel──┘

The appointment record is the only state; the machine reads and writes its
``status`` and ``status_changed_at`` attributes.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional

from scheduling.core import config
from scheduling.core.errors import InvalidTransitionError
from scheduling.engine.types import AppointmentStatus

logger = logging.getLogger(__name__)


class BookingEvent(str, Enum):
    CONFIRM = "confirm"
    REJECT = "reject"
    CANCEL = "cancel"
    COMPLETE = "complete"
    REPORT_NO_SHOW = "report_no_show"


@dataclass(frozen=True)
class Transition:
    from_status: AppointmentStatus
    to_status: AppointmentStatus
    event: BookingEvent


TRANSITIONS: list[Transition] = [
    Transition(AppointmentStatus.PENDING, AppointmentStatus.ACCEPTED, BookingEvent.CONFIRM),
    Transition(AppointmentStatus.PENDING, AppointmentStatus.REJECTED, BookingEvent.REJECT),
    Transition(AppointmentStatus.PENDING, AppointmentStatus.CANCELLED, BookingEvent.CANCEL),
    Transition(AppointmentStatus.ACCEPTED, AppointmentStatus.CANCELLED, BookingEvent.CANCEL),
    Transition(AppointmentStatus.ACCEPTED, AppointmentStatus.COMPLETED, BookingEvent.COMPLETE),
    Transition(AppointmentStatus.ACCEPTED, AppointmentStatus.NO_SHOW, BookingEvent.REPORT_NO_SHOW),
]

TERMINAL_STATUSES = frozenset(
    {
        AppointmentStatus.REJECTED,
        AppointmentStatus.CANCELLED,
        AppointmentStatus.COMPLETED,
        AppointmentStatus.NO_SHOW,
    }
)

INITIAL_STATUS = AppointmentStatus.PENDING


def is_terminal(status: AppointmentStatus) -> bool:
    return status in TERMINAL_STATUSES


def allowed_events(status: AppointmentStatus) -> list[BookingEvent]:
    return [t.event for t in TRANSITIONS if t.from_status == status]


def next_status(status: AppointmentStatus, event: BookingEvent) -> AppointmentStatus:
    for t in TRANSITIONS:
        if t.from_status == status and t.event == event:
            return t.to_status

    allowed = ', '.join(e.value for e in allowed_events(status)) or 'none'
    raise InvalidTransitionError(
        f"Cannot {event.value.replace('_', ' ')} an appointment that is {status.value}. "
        f"Allowed: {allowed}."
    )


def apply_event(appointment, event: BookingEvent, now: datetime) -> AppointmentStatus:
    """Move ``appointment`` along ``event`` and stamp the change.

    Raises:
        InvalidTransitionError: If ``event`` is not legal from the current status.
    """
    current = AppointmentStatus(appointment.status)
    target = next_status(current, event)
    appointment.status = target.value
    appointment.status_changed_at = now
    logger.info(
        'Appointment %s: %s -> %s (%s)',
        getattr(appointment, 'id', None),
        current.value,
        target.value,
        event.value,
    )
    return target


def effective_status(
    status: AppointmentStatus,
    end_at: datetime,
    now: datetime,
    grace_hours: Optional[float] = None,
) -> AppointmentStatus:
    """Status as of ``now`` with lazy completion applied.

    An accepted appointment reads as completed once its end time plus the
    grace period has passed without a no-show report. The grace period is
    the window during which a no-show may still be filed.
    """
    grace = timedelta(hours=config.COMPLETION_GRACE_HOURS if grace_hours is None else grace_hours)
    if status == AppointmentStatus.ACCEPTED and now > end_at + grace:
        return AppointmentStatus.COMPLETED
    return status
