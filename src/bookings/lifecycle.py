"""
Booking lifecycle rules.

Transition legality lives in one table keyed by (from-status, event). The
derived properties are pure functions of a booking and an explicit ``now`` so
they can be evaluated against any clock.
"""
from datetime import datetime, timedelta
from enum import Enum
from typing import Dict, Tuple

from src.config import settings
from src.bookings.exceptions import StateConflictError
from src.bookings.schemas import BookingStatus


class LifecycleEvent(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"
    CANCEL = "cancel"
    COMPLETE = "complete"


TRANSITIONS: Dict[Tuple[BookingStatus, LifecycleEvent], BookingStatus] = {
    (BookingStatus.PENDING, LifecycleEvent.APPROVE): BookingStatus.APPROVED,
    (BookingStatus.PENDING, LifecycleEvent.REJECT): BookingStatus.REJECTED,
    (BookingStatus.PENDING, LifecycleEvent.CANCEL): BookingStatus.CANCELLED,
    (BookingStatus.APPROVED, LifecycleEvent.CANCEL): BookingStatus.CANCELLED,
    (BookingStatus.APPROVED, LifecycleEvent.COMPLETE): BookingStatus.COMPLETED,
}

TERMINAL_STATUSES = frozenset({
    BookingStatus.COMPLETED,
    BookingStatus.CANCELLED,
    BookingStatus.REJECTED,
})

ACTIVE_STATUSES = (BookingStatus.PENDING, BookingStatus.APPROVED)

# Target status -> event that produces it
_EVENT_FOR_TARGET = {target: event for (_, event), target in TRANSITIONS.items()}


def event_for_target(target: BookingStatus) -> LifecycleEvent:
    event = _EVENT_FOR_TARGET.get(BookingStatus(target))
    if event is None:
        raise StateConflictError(f"Bookings cannot be moved to status {BookingStatus(target).value}")
    return event


def next_status(current: BookingStatus, event: LifecycleEvent) -> BookingStatus:
    """Resolve a transition or raise StateConflictError"""
    current = BookingStatus(current)
    target = TRANSITIONS.get((current, event))
    if target is not None:
        return target

    if current in TERMINAL_STATUSES:
        raise StateConflictError(
            f"Booking is already {current.value} and cannot be changed"
        )
    raise StateConflictError(
        f"Cannot {event.value} a booking with status {current.value}"
    )


def can_transition(current: BookingStatus, event: LifecycleEvent) -> bool:
    return (BookingStatus(current), event) in TRANSITIONS


# Derived properties

def is_within_booking_window(booking, now: datetime) -> bool:
    today = now.date()
    return today <= booking.booking_date <= today + timedelta(days=settings.BOOKING_WINDOW_DAYS)


def can_be_modified(booking, now: datetime) -> bool:
    if BookingStatus(booking.status) != BookingStatus.PENDING:
        return False
    return booking.start_time - now >= timedelta(hours=settings.MODIFICATION_CUTOFF_HOURS)


def can_be_cancelled(booking) -> bool:
    return BookingStatus(booking.status) in ACTIVE_STATUSES


def is_active(booking, now: datetime) -> bool:
    return (
        BookingStatus(booking.status) == BookingStatus.APPROVED
        and booking.start_time <= now <= booking.end_time
    )


def duration_minutes(booking) -> int:
    return int((booking.end_time - booking.start_time).total_seconds() // 60)


def intervals_overlap(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    """Half-open [start, end) overlap; back-to-back intervals do not overlap"""
    return a_start < b_end and a_end > b_start
