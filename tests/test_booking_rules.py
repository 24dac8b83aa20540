from datetime import timedelta

import pytest

from portal.exceptions import PreconditionError
from portal.schemas.records import Booking, BookingStatus, BookingTab, parse_timestamp
from portal.services.booking_rules import (
    BookingAction,
    CompletionPolicy,
    CompletionWindow,
    can_mark_done,
    check_transition,
    classify,
    partition,
)
from portal.store.base import Document
from tests.factories import NOW, booking_doc

ON_OR_AFTER = CompletionPolicy()
SAME_DAY_PAID = CompletionPolicy(window=CompletionWindow.SAME_DAY, require_payment=True)


def make(status, paid=False, date=NOW, booking_id="b1"):
    return Booking(id=booking_id, status=BookingStatus(status), paid=paid, date=date)


@pytest.mark.parametrize("status, paid, tab", [
    ("pending", False, BookingTab.REQUESTS),
    ("pending", True, BookingTab.UPCOMING),
    ("accepted", False, BookingTab.UPCOMING),
    ("accepted", True, BookingTab.UPCOMING),
    ("paid", False, BookingTab.UPCOMING),
    ("completed", True, BookingTab.COMPLETED),
    ("declined", False, None),
    ("cancelled", True, None),
])
def test_classify(status, paid, tab):
    assert classify(make(status, paid)) is tab


def test_tabs_partition_bookings():
    bookings = [
        make(status, paid, booking_id=f"{status}-{paid}")
        for status in BookingStatus
        for paid in (False, True)
    ]

    tabs = partition(bookings)
    listed = [b.id for items in tabs.values() for b in items]

    assert len(listed) == len(set(listed))
    excluded = {b.id for b in bookings if b.status in (BookingStatus.DECLINED, BookingStatus.CANCELLED)}
    assert set(listed) == {b.id for b in bookings} - excluded


def test_accept_pending():
    transition = check_transition(make("pending"), BookingAction.ACCEPT, now=NOW, policy=ON_OR_AFTER)

    assert transition.target is BookingStatus.ACCEPTED
    assert transition.timestamp_field == "updatedAt"


def test_decline_and_cancel_need_confirmation():
    with pytest.raises(PreconditionError):
        check_transition(make("pending"), BookingAction.DECLINE, now=NOW, policy=ON_OR_AFTER)
    with pytest.raises(PreconditionError):
        check_transition(make("accepted"), BookingAction.CANCEL, now=NOW, policy=ON_OR_AFTER)

    assert check_transition(
        make("accepted"), BookingAction.CANCEL, now=NOW, policy=ON_OR_AFTER, confirmed=True
    ).timestamp_field == "cancelledAt"


@pytest.mark.parametrize("status", ["completed", "declined", "cancelled"])
@pytest.mark.parametrize("action", list(BookingAction))
def test_terminal_states_allow_nothing(status, action):
    with pytest.raises(PreconditionError):
        check_transition(make(status, paid=True), action, now=NOW, policy=ON_OR_AFTER, confirmed=True)


def test_unpaid_pending_cannot_be_completed():
    with pytest.raises(PreconditionError):
        check_transition(make("pending"), BookingAction.COMPLETE, now=NOW, policy=ON_OR_AFTER)


def test_paid_pending_can_be_completed():
    transition = check_transition(make("pending", paid=True), BookingAction.COMPLETE, now=NOW, policy=ON_OR_AFTER)

    assert transition.target is BookingStatus.COMPLETED


def test_mark_done_rejected_before_appointment_date():
    future = make("accepted", date=NOW + timedelta(days=1))

    with pytest.raises(PreconditionError):
        check_transition(future, BookingAction.COMPLETE, now=NOW, policy=ON_OR_AFTER)
    assert not can_mark_done(future, NOW, ON_OR_AFTER)


def test_on_or_after_allows_past_appointments():
    assert can_mark_done(make("accepted", date=NOW - timedelta(days=3)), NOW, ON_OR_AFTER)
    assert can_mark_done(make("accepted", date=NOW), NOW, ON_OR_AFTER)


def test_same_day_policy_rejects_past_appointments():
    past = make("paid", paid=True, date=NOW - timedelta(days=1))

    assert not can_mark_done(past, NOW, SAME_DAY_PAID)
    assert can_mark_done(make("paid", paid=True, date=NOW), NOW, SAME_DAY_PAID)


def test_payment_required_policy():
    assert not can_mark_done(make("accepted", paid=False), NOW, SAME_DAY_PAID)
    assert can_mark_done(make("accepted", paid=False), NOW, ON_OR_AFTER)


def test_missing_date_cannot_be_completed():
    assert not can_mark_done(make("accepted", date=None), NOW, ON_OR_AFTER)


def test_completion_day_uses_portal_timezone():
    # 23:30 UTC on the 14th is already the 15th in Manila
    appointment = make("accepted", date=NOW.replace(day=15, hour=1))
    late_evening_utc = NOW.replace(day=14, hour=23, minute=30)

    assert not can_mark_done(appointment, late_evening_utc, CompletionPolicy())
    assert can_mark_done(appointment, late_evening_utc, CompletionPolicy(timezone="Asia/Manila"))


def test_booking_normalization():
    doc = Document("b1", booking_doc(
        date="2026-10-19T09:00:00Z",
        amount="1500",
        userName="Ana Reyes",
        rating=None,
    ))

    booking = Booking.from_document(doc)

    assert booking.date == parse_timestamp("2026-10-19T09:00:00+00:00")
    assert booking.raw_date == "2026-10-19T09:00:00Z"
    assert booking.amount == 1500
    assert booking.full_name == "Ana Reyes"
    assert booking.consultant_id == "consultant-1"


@pytest.mark.parametrize("value", [
    {"seconds": 1760522400, "nanoseconds": 0},
    1760522400000,
    1760522400,
    "2025-10-15T10:00:00Z",
])
def test_parse_timestamp_formats(value):
    assert parse_timestamp(value) == parse_timestamp("2025-10-15T10:00:00+00:00")


def test_parse_timestamp_rejects_garbage():
    assert parse_timestamp("next tuesday") is None
    assert parse_timestamp(True) is None
    assert parse_timestamp(None) is None
