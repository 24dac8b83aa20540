"""
Booking tab classification and status transitions

    status     paid   tab
    pending    no     Requests
    pending    yes    Upcoming (paid, awaiting completion)
    accepted   any    Upcoming
    paid       any    Upcoming
    completed  -      Completed
    declined   -      (none)
    cancelled  -      (none)
"""
import enum
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Dict, FrozenSet, Iterable, List, Optional
from zoneinfo import ZoneInfo

from portal.config import settings
from portal.exceptions import PreconditionError
from portal.schemas.records import Booking, BookingStatus, BookingTab, TERMINAL_STATUSES


class CompletionWindow(str, enum.Enum):
    """When an appointment may be marked completed"""
    SAME_DAY = "same-day"
    ON_OR_AFTER = "on-or-after"


@dataclass(frozen=True)
class CompletionPolicy:
    window: CompletionWindow = CompletionWindow.ON_OR_AFTER
    require_payment: bool = False
    timezone: str = "UTC"

    @classmethod
    def from_settings(cls) -> "CompletionPolicy":
        return cls(
            window=CompletionWindow(settings.COMPLETION_WINDOW_POLICY),
            require_payment=settings.REQUIRE_PAYMENT_BEFORE_COMPLETION,
            timezone=settings.PORTAL_TIMEZONE,
        )

    def local_date(self, moment: datetime) -> date:
        zone = timezone.utc if self.timezone == "UTC" else ZoneInfo(self.timezone)
        return moment.astimezone(zone).date()

    def date_allows_completion(self, booking: Booking, now: datetime) -> bool:
        if booking.date is None:
            return False
        today = self.local_date(now)
        appointment_day = self.local_date(booking.date)
        if self.window is CompletionWindow.SAME_DAY:
            return today == appointment_day
        return today >= appointment_day


def classify(booking: Booking) -> Optional[BookingTab]:
    """Tab a booking belongs to, or None for declined/cancelled"""
    if booking.status is BookingStatus.PENDING:
        return BookingTab.UPCOMING if booking.paid else BookingTab.REQUESTS
    if booking.status in (BookingStatus.ACCEPTED, BookingStatus.PAID):
        return BookingTab.UPCOMING
    if booking.status is BookingStatus.COMPLETED:
        return BookingTab.COMPLETED
    return None


def is_paid_awaiting_completion(booking: Booking) -> bool:
    return booking.status is BookingStatus.PENDING and booking.paid


def partition(bookings: Iterable[Booking]) -> Dict[BookingTab, List[Booking]]:
    tabs: Dict[BookingTab, List[Booking]] = {tab: [] for tab in BookingTab}
    for booking in bookings:
        tab = classify(booking)
        if tab is not None:
            tabs[tab].append(booking)
    return tabs


class BookingAction(str, enum.Enum):
    """Consultant-initiated booking commands"""
    ACCEPT = "accept"
    DECLINE = "decline"
    COMPLETE = "complete"
    CANCEL = "cancel"


@dataclass(frozen=True)
class Transition:
    sources: FrozenSet[BookingStatus]
    target: BookingStatus
    timestamp_field: str
    needs_confirmation: bool = False
    # pending bookings are accepted as a source only when already paid
    paid_pending_allowed: bool = False


TRANSITIONS: Dict[BookingAction, Transition] = {
    BookingAction.ACCEPT: Transition(
        sources=frozenset({BookingStatus.PENDING}),
        target=BookingStatus.ACCEPTED,
        timestamp_field="updatedAt",
    ),
    BookingAction.DECLINE: Transition(
        sources=frozenset({BookingStatus.PENDING}),
        target=BookingStatus.DECLINED,
        timestamp_field="updatedAt",
        needs_confirmation=True,
    ),
    BookingAction.COMPLETE: Transition(
        sources=frozenset({BookingStatus.ACCEPTED, BookingStatus.PAID}),
        target=BookingStatus.COMPLETED,
        timestamp_field="completedAt",
        paid_pending_allowed=True,
    ),
    BookingAction.CANCEL: Transition(
        sources=frozenset({BookingStatus.ACCEPTED, BookingStatus.PAID}),
        target=BookingStatus.CANCELLED,
        timestamp_field="cancelledAt",
        needs_confirmation=True,
        paid_pending_allowed=True,
    ),
}


def can_mark_done(booking: Booking, now: datetime, policy: CompletionPolicy) -> bool:
    """Whether the complete action would pass its guards right now"""
    try:
        check_transition(booking, BookingAction.COMPLETE, now=now, policy=policy, confirmed=True)
    except PreconditionError:
        return False
    return True


def check_transition(
    booking: Booking,
    action: BookingAction,
    *,
    now: datetime,
    policy: CompletionPolicy,
    confirmed: bool = False
) -> Transition:
    """
    Validate ``action`` against the booking's current state

    Raises PreconditionError when the action is not allowed; nothing has
    been written at that point.
    """
    transition = TRANSITIONS[action]

    if booking.status in TERMINAL_STATUSES:
        raise PreconditionError(f"This booking is already {booking.status.value}.")

    allowed = booking.status in transition.sources or (
        transition.paid_pending_allowed and is_paid_awaiting_completion(booking)
    )
    if not allowed:
        raise PreconditionError(f"Cannot {action.value} a booking that is {booking.status.value}.")

    if action is BookingAction.COMPLETE:
        if booking.date is None:
            raise PreconditionError("Cannot mark as done: the appointment has no date.")
        if not policy.date_allows_completion(booking, now):
            if policy.window is CompletionWindow.SAME_DAY:
                raise PreconditionError("Appointments can only be marked as completed on the appointment day.")
            raise PreconditionError("Cannot mark this appointment as completed before the appointment date.")
        if policy.require_payment and not booking.paid:
            raise PreconditionError("Cannot mark as done: the appointment has not been paid.")

    if transition.needs_confirmation and not confirmed:
        raise PreconditionError(f"Please confirm before you {action.value} this booking.")

    return transition
