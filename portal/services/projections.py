"""
View projection

Pure functions mapping aggregated state to what each screen shows. Nothing
here touches the store.
"""
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from portal.config import settings
from portal.schemas.records import Booking, BookingStatus, BookingTab, Chat, Message
from portal.schemas.views import BookingRow, InboxRow, MessageRow, StatCard
from portal.services.booking_rules import (
    CompletionPolicy,
    can_mark_done,
    is_paid_awaiting_completion,
    partition,
)

TAB_TITLES = {
    BookingTab.REQUESTS: "Pending Appointments",
    BookingTab.UPCOMING: "Upcoming Appointments",
    BookingTab.COMPLETED: "Completed Appointments",
}

EMPTY_TAB_MESSAGES = {
    BookingTab.REQUESTS: "No pending appointments.",
    BookingTab.UPCOMING: "No upcoming appointments.",
    BookingTab.COMPLETED: "No completed appointments.",
}

PAID_BADGE = "Paid – Needs Completion"
ACCEPTED_BADGE = "Accepted"
NO_MESSAGES = "No messages yet"


def format_amount(amount: int, symbol: Optional[str] = None) -> str:
    """Amounts are stored in the smallest currency unit"""
    symbol = settings.CURRENCY_SYMBOL if symbol is None else symbol
    return f"{symbol}{amount / 100:.2f}"


def format_booking_date(booking: Booking) -> str:
    if booking.date is not None:
        return booking.date.strftime("%a, %b %d, %Y").replace(" 0", " ")
    if booking.raw_date:
        return booking.raw_date
    return "Date TBD"


def format_time(moment: Optional[datetime]) -> Optional[str]:
    if moment is None:
        return None
    return moment.strftime("%I:%M %p")


def format_rating(value: float) -> str:
    return f"{value:.1f}"


# ============================================================================
# DASHBOARD
# ============================================================================

def dashboard_cards(patients: int, pending: int, unread: int, rating: str) -> List[StatCard]:
    return [
        StatCard(title="Active Patients", value=str(patients), subtitle="Under your care"),
        StatCard(title="Pending Appointments", value=str(pending), subtitle="Awaiting confirmation"),
        StatCard(title="New Messages", value=str(unread), subtitle="Unread messages"),
        StatCard(title="Average Rating", value=rating, subtitle="Client feedback"),
    ]


# ============================================================================
# BOOKINGS
# ============================================================================

def booking_badge(booking: Booking) -> Optional[str]:
    if is_paid_awaiting_completion(booking):
        return PAID_BADGE
    if booking.status is BookingStatus.ACCEPTED:
        return ACCEPTED_BADGE
    return None


def booking_row(
    booking: Booking,
    tab: BookingTab,
    now: datetime,
    policy: CompletionPolicy,
    busy_id: Optional[str] = None
) -> BookingRow:
    return BookingRow(
        id=booking.id,
        full_name=booking.full_name or booking.user_id or "Unknown",
        status=booking.status,
        paid=booking.paid,
        date_label=format_booking_date(booking),
        amount_label=format_amount(booking.amount),
        hour=booking.hour,
        platform=booking.platform,
        badge=booking_badge(booking) if tab is BookingTab.UPCOMING else None,
        highlight=tab is BookingTab.UPCOMING and booking.paid,
        can_mark_done=tab is BookingTab.UPCOMING and can_mark_done(booking, now, policy),
        busy=booking.id == busy_id,
    )


def booking_rows(
    bookings: Iterable[Booking],
    tab: BookingTab,
    now: datetime,
    policy: CompletionPolicy,
    busy_id: Optional[str] = None
) -> List[BookingRow]:
    return [booking_row(b, tab, now, policy, busy_id) for b in partition(bookings)[tab]]


def tab_counts(bookings: Iterable[Booking]) -> Dict[str, int]:
    return {tab.value: len(items) for tab, items in partition(bookings).items()}


# ============================================================================
# CHAT
# ============================================================================

def inbox_row(
    chat: Chat,
    last: Optional[Message],
    unread_count: int,
    selected_chat_id: Optional[str] = None
) -> InboxRow:
    return InboxRow(
        chat_id=chat.id,
        parent_name=chat.parent_name or "Unknown",
        last_text=last.text if last else NO_MESSAGES,
        last_time=format_time(last.created_at) if last else None,
        unread_count=unread_count,
        has_unread=unread_count > 0,
        active=chat.id == selected_chat_id,
    )


def message_rows(messages: Iterable[Message], consultant_id: str) -> List[MessageRow]:
    return [
        MessageRow(
            id=message.id,
            text=message.text,
            time=format_time(message.created_at),
            is_mine=message.sender_id == consultant_id,
            pending=message.pending,
        )
        for message in messages
    ]
