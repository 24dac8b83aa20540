"""
Aggregation engine

Live counters derived from one or more store subscriptions. Every aggregate
is recomputed from the latest snapshot of each contributing subscription
whenever any of them fires; arrival order between subscriptions does not
matter.
"""
import logging
from functools import partial
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from portal.config import settings
from portal.schemas.records import BookingStatus, Chat, Message
from portal.store.base import Document, DocumentStore, Query, Subscription, SubscriptionSet

logger = logging.getLogger(__name__)

ChangeCallback = Callable[[], None]


# ============================================================================
# QUERIES
# ============================================================================

def clients_query(consultant_id: str) -> Query:
    return Query("clients").where("consultantId", "==", consultant_id)


def bookings_query(consultant_id: str, statuses=None) -> Query:
    query = Query("bookings").where(settings.BOOKING_OWNER_FIELD, "==", consultant_id)
    if statuses is not None:
        query = query.where("status", "in", [BookingStatus(s).value for s in statuses])
    return query


def pending_bookings_query(consultant_id: str) -> Query:
    return Query("bookings").where(
        settings.BOOKING_OWNER_FIELD, "==", consultant_id
    ).where("status", "==", BookingStatus.PENDING.value)


def rated_bookings_query(consultant_id: str) -> Query:
    return Query("bookings").where(
        settings.BOOKING_OWNER_FIELD, "==", consultant_id
    ).where("rating", "not-null")


def chats_query(consultant_id: str) -> Query:
    return Query("chats").where("doctorUid", "==", consultant_id).order("createdAt", descending=True)


def messages_collection(chat_id: str) -> str:
    return f"chats/{chat_id}/messages"


def messages_query(chat_id: str, descending: bool = False) -> Query:
    return Query(messages_collection(chat_id)).order("createdAt", descending=descending)


# ============================================================================
# UNREAD RULE
# ============================================================================

def is_unread(message: Message, chat: Chat, consultant_id: str) -> bool:
    """
    A message is unread while it was written by the counterpart, is not
    flagged as seen, and was created after the chat was last seen.
    """
    if message.seen_by_doctor or message.sender_id == consultant_id:
        return False
    if chat.last_seen_by_doctor is None:
        return True
    return message.created_at is not None and message.created_at > chat.last_seen_by_doctor


def count_unread(chat: Chat, messages: Iterable[Message], consultant_id: str) -> int:
    return sum(1 for message in messages if is_unread(message, chat, consultant_id))


def mean_rating(documents: Iterable[Document]) -> Tuple[float, int]:
    """Arithmetic mean of the numeric ratings and how many there were"""
    ratings = []
    for doc in documents:
        try:
            ratings.append(float(doc.get("rating")))
        except (TypeError, ValueError):
            logger.warning(f"Ignoring non-numeric rating on booking {doc.id}")
    return (sum(ratings) / len(ratings) if ratings else 0.0), len(ratings)


# ============================================================================
# AGGREGATES
# ============================================================================

class LiveCount:
    """Number of documents matching a live query"""

    def __init__(
        self,
        store: DocumentStore,
        query: Query,
        on_change: ChangeCallback,
        on_error=None
    ):
        self.value = 0
        self.ready = False
        self._store = store
        self._query = query
        self._on_change = on_change
        self._on_error = on_error
        self._subscription: Optional[Subscription] = None

    def start(self) -> "LiveCount":
        self._subscription = self._store.subscribe(self._query, self._on_snapshot, self._on_error)
        return self

    def _on_snapshot(self, documents: List[Document]) -> None:
        self.value = len(documents)
        self.ready = True
        self._on_change()

    def cancel(self) -> None:
        if self._subscription is not None:
            self._subscription.cancel()


class AverageRating:
    """Mean rating over the consultant's rated bookings (0 when none)"""

    def __init__(self, store: DocumentStore, consultant_id: str, on_change: ChangeCallback, on_error=None):
        self.value = 0.0
        self.count = 0
        self.ready = False
        self._store = store
        self._query = rated_bookings_query(consultant_id)
        self._on_change = on_change
        self._on_error = on_error
        self._subscription: Optional[Subscription] = None

    def start(self) -> "AverageRating":
        self._subscription = self._store.subscribe(self._query, self._on_snapshot, self._on_error)
        return self

    def _on_snapshot(self, documents: List[Document]) -> None:
        self.value, self.count = mean_rating(documents)
        self.ready = True
        self._on_change()

    @property
    def formatted(self) -> str:
        return f"{self.value:.1f}"

    def cancel(self) -> None:
        if self._subscription is not None:
            self._subscription.cancel()


class UnreadMessageTracker:
    """
    Unread counts across all chats of a consultant

    Holds one subscription on the chat set and one nested subscription per
    chat on its messages. When chats are added or removed, all nested
    subscriptions are torn down and reopened for the new set; a message
    snapshot for a chat that is no longer in the set is ignored.
    """

    def __init__(
        self,
        store: DocumentStore,
        consultant_id: str,
        on_change: ChangeCallback,
        on_error=None
    ):
        self.consultant_id = consultant_id
        self.chats: Dict[str, Chat] = {}
        self.messages: Dict[str, List[Message]] = {}
        self.unread: Dict[str, int] = {}
        self.total = 0
        self.ready = False
        self._store = store
        self._on_change = on_change
        self._on_error = on_error
        self._chat_subscription: Optional[Subscription] = None
        self._message_subscriptions = SubscriptionSet()
        self._reopening = False
        self._cancelled = False

    def start(self) -> "UnreadMessageTracker":
        self._chat_subscription = self._store.subscribe(
            chats_query(self.consultant_id), self._on_chats, self._on_error
        )
        return self

    @property
    def open_message_subscriptions(self) -> int:
        return len(self._message_subscriptions)

    def _on_chats(self, documents: List[Document]) -> None:
        if self._cancelled:
            return
        chats = {doc.id: Chat.from_document(doc) for doc in documents}
        membership_changed = set(chats) != set(self.chats)
        self.chats = chats
        if membership_changed:
            self._reopen_message_subscriptions()
        self.ready = True
        self._recompute()

    def _reopen_message_subscriptions(self) -> None:
        self._message_subscriptions.cancel_all()
        self.messages = {}
        self._reopening = True
        try:
            for chat_id in self.chats:
                self._message_subscriptions.add(self._store.subscribe(
                    messages_query(chat_id),
                    partial(self._on_messages, chat_id),
                    self._on_error
                ))
        finally:
            self._reopening = False

    def _on_messages(self, chat_id: str, documents: List[Document]) -> None:
        if self._cancelled or chat_id not in self.chats:
            return
        self.messages[chat_id] = [Message.from_document(doc, chat_id) for doc in documents]
        if not self._reopening:
            self._recompute()

    def _recompute(self) -> None:
        self.unread = {
            chat_id: count_unread(chat, self.messages.get(chat_id, []), self.consultant_id)
            for chat_id, chat in self.chats.items()
        }
        self.total = sum(self.unread.values())
        self._on_change()

    def last_message(self, chat_id: str) -> Optional[Message]:
        messages = self.messages.get(chat_id)
        return messages[-1] if messages else None

    def cancel(self) -> None:
        self._cancelled = True
        if self._chat_subscription is not None:
            self._chat_subscription.cancel()
        self._message_subscriptions.cancel_all()
