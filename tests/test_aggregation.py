from datetime import timedelta

from portal.schemas.records import Chat, Message
from portal.services.aggregation import (
    AverageRating,
    LiveCount,
    UnreadMessageTracker,
    clients_query,
    is_unread,
    pending_bookings_query,
)
from tests.factories import CONSULTANT_ID, NOW, booking_doc, chat_doc, message_doc

T0 = NOW - timedelta(hours=10)


def at(hours):
    return T0 + timedelta(hours=hours)


class Changes:
    def __init__(self):
        self.count = 0

    def __call__(self):
        self.count += 1


def test_unread_rule():
    chat = Chat(id="c1", last_seen_by_doctor=at(5))

    def message(sender, hours, seen=False):
        return Message(id="m", chat_id="c1", sender_id=sender, created_at=at(hours), seen_by_doctor=seen)

    assert is_unread(message("parent", 6), chat, CONSULTANT_ID)
    assert not is_unread(message("parent", 3), chat, CONSULTANT_ID)
    assert not is_unread(message(CONSULTANT_ID, 6), chat, CONSULTANT_ID)
    assert not is_unread(message("parent", 6, seen=True), chat, CONSULTANT_ID)
    assert is_unread(message("parent", 1), Chat(id="c1"), CONSULTANT_ID)


async def test_unread_total_across_chats(store):
    await store.set("chats", "A", chat_doc(parent_uid="parent-a", last_seen=at(0)))
    await store.set("chats/A/messages", "a1", message_doc("hi", "parent-a", at(1)))
    await store.set("chats/A/messages", "a2", message_doc("there?", "parent-a", at(2)))
    await store.set("chats", "B", chat_doc(parent_uid="parent-b", last_seen=at(5)))
    await store.set("chats/B/messages", "b1", message_doc("old", "parent-b", at(3)))
    await store.set("chats/B/messages", "b2", message_doc("reply", CONSULTANT_ID, at(6)))

    tracker = UnreadMessageTracker(store, CONSULTANT_ID, Changes()).start()

    assert tracker.total == 2
    assert tracker.unread == {"A": 2, "B": 0}
    assert tracker.last_message("B").text == "reply"


async def test_unread_total_follows_new_messages_and_seen_updates(store):
    await store.set("chats", "A", chat_doc(last_seen=at(0)))
    tracker = UnreadMessageTracker(store, CONSULTANT_ID, Changes()).start()
    assert tracker.total == 0

    await store.set("chats/A/messages", "a1", message_doc("hi", "parent-1", at(1)))
    assert tracker.total == 1

    await store.update("chats", "A", {"lastSeenByDoctor": at(2)})
    assert tracker.total == 0


async def test_nested_subscriptions_follow_chat_set(store):
    await store.set("chats", "A", chat_doc())
    tracker = UnreadMessageTracker(store, CONSULTANT_ID, Changes()).start()
    assert tracker.open_message_subscriptions == 1

    await store.set("chats", "B", chat_doc(parent_uid="parent-2"))
    assert tracker.open_message_subscriptions == 2
    assert store.active_subscriptions("chats/A/messages") == 1

    await store.delete("chats", "A")
    assert tracker.open_message_subscriptions == 1
    assert store.active_subscriptions("chats/A/messages") == 0
    assert set(tracker.chats) == {"B"}


async def test_messages_of_removed_chat_are_ignored(store):
    await store.set("chats", "A", chat_doc(last_seen=at(0)))
    tracker = UnreadMessageTracker(store, CONSULTANT_ID, Changes()).start()

    # a snapshot that belongs to a chat no longer in the set
    tracker._on_messages("gone", [])
    await store.delete("chats", "A")
    await store.set("chats/A/messages", "a1", message_doc("late", "parent-1", at(1)))

    assert tracker.total == 0
    assert "gone" not in tracker.messages
    assert "A" not in tracker.messages


async def test_cancel_stops_all_updates(store):
    await store.set("chats", "A", chat_doc(last_seen=at(0)))
    changes = Changes()
    tracker = UnreadMessageTracker(store, CONSULTANT_ID, changes).start()
    seen = changes.count

    tracker.cancel()
    await store.set("chats/A/messages", "a1", message_doc("hi", "parent-1", at(1)))
    await store.set("chats", "B", chat_doc())

    assert changes.count == seen
    assert tracker.total == 0
    assert store.active_subscriptions() == 0


async def test_live_counts(store):
    await store.set("clients", "k1", {"consultantId": CONSULTANT_ID})
    await store.set("clients", "k2", {"consultantId": "someone-else"})
    patients = LiveCount(store, clients_query(CONSULTANT_ID), Changes()).start()
    pending = LiveCount(store, pending_bookings_query(CONSULTANT_ID), Changes()).start()

    await store.set("bookings", "b1", booking_doc(status="pending"))
    await store.set("bookings", "b2", booking_doc(status="accepted"))

    assert patients.value == 1
    assert pending.value == 1
    assert patients.ready and pending.ready


async def test_average_rating(store):
    rating = AverageRating(store, CONSULTANT_ID, Changes()).start()
    assert rating.formatted == "0.0"

    await store.set("bookings", "b1", booking_doc(status="completed", rating=5))
    await store.set("bookings", "b2", booking_doc(status="completed", rating=4))
    await store.set("bookings", "b3", booking_doc(status="completed", rating=4))
    await store.set("bookings", "b4", booking_doc(status="completed"))

    assert rating.count == 3
    assert rating.formatted == "4.3"
