"""
Live views

A view owns the Derived View State of one mounted screen together with every
subscription feeding it. Listeners receive a fresh state model after each
change. ``close()`` cancels all subscriptions and pending work; after it
returns the view never publishes again.
"""
import asyncio
import logging
from datetime import datetime
from functools import partial
from typing import Awaitable, Callable, Dict, List, Optional, Sequence, Set

from pydantic import BaseModel

from portal.config import settings
from portal.exceptions import NotFoundError, PortalError, PreconditionError, SubscriptionError
from portal.schemas.records import (
    Booking,
    BookingStatus,
    BookingTab,
    Chat,
    ConsultantProfile,
    Message,
    normalize_bookings,
)
from portal.schemas.views import BookingsState, ChatInboxState, DashboardState
from portal.services.aggregation import (
    AverageRating,
    LiveCount,
    UnreadMessageTracker,
    bookings_query,
    chats_query,
    clients_query,
    count_unread,
    mean_rating,
    messages_query,
    pending_bookings_query,
    rated_bookings_query,
)
from portal.services.booking_rules import BookingAction, CompletionPolicy
from portal.services.commands import BookingCommands, ChatCommands, Clock, guarded_read, utcnow
from portal.services.email_service import notify_new_booking_requests
from portal.services.enrichment import NameResolver
from portal.services.projections import (
    EMPTY_TAB_MESSAGES,
    TAB_TITLES,
    booking_rows,
    dashboard_cards,
    format_rating,
    inbox_row,
    message_rows,
    tab_counts,
)
from portal.store.base import DocumentStore, Subscription, SubscriptionSet, new_document_id

logger = logging.getLogger(__name__)

StateListener = Callable[[BaseModel], None]
Notifier = Callable[[str, str, Sequence[Booking]], Awaitable[bool]]


class LiveView:
    """Base class for the dashboard, booking and chat views"""

    name = "view"

    def __init__(
        self,
        store: DocumentStore,
        consultant_id: str,
        timeout: Optional[float] = None,
        clock: Optional[Clock] = None
    ):
        self.store = store
        self.consultant_id = consultant_id
        self.timeout = timeout if timeout is not None else settings.STORE_TIMEOUT_SECONDS
        self.clock = clock or utcnow
        self.subscriptions = SubscriptionSet()
        self.errors: List[str] = []
        self.closed = False
        self._started = False
        self._starting = False
        self._listeners: List[StateListener] = []
        self._tasks: Set[asyncio.Future] = set()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def _open(self) -> None:
        raise NotImplementedError

    def snapshot(self) -> BaseModel:
        raise NotImplementedError

    def start(self) -> "LiveView":
        """Open subscriptions; initial snapshots are folded into one publish"""
        if self._started or self.closed:
            return self
        self._started = True
        self._starting = True
        try:
            self._open()
        finally:
            self._starting = False
        logger.info(f"{self.name} view opened for {self.consultant_id}")
        self._publish()
        return self

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self.subscriptions.cancel_all()
        for task in list(self._tasks):
            task.cancel()
        self._listeners.clear()
        logger.info(f"{self.name} view closed for {self.consultant_id}")

    async def __aenter__(self):
        return self.start()

    async def __aexit__(self, exc_type, exc, tb):
        self.close()

    # ------------------------------------------------------------------
    # Publishing
    # ------------------------------------------------------------------

    def add_listener(self, listener: StateListener) -> None:
        self._listeners.append(listener)

    def _publish(self) -> None:
        if self.closed or self._starting:
            return
        self._emit(self.snapshot())

    def _emit(self, state: BaseModel) -> None:
        if self.closed:
            return
        for listener in list(self._listeners):
            try:
                listener(state)
            except Exception:
                logger.exception(f"{self.name} view listener raised")

    def _on_error(self, error: SubscriptionError) -> None:
        self.errors.append(error.message)
        self._publish()

    def _record_failure(self, error: PortalError) -> None:
        self.errors.append(error.message)

    # ------------------------------------------------------------------
    # Background work
    # ------------------------------------------------------------------

    def _spawn(self, coro: Awaitable) -> asyncio.Future:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Future) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"{self.name} view task failed: {task.exception()}")

    async def wait_idle(self) -> None:
        """Wait until background ingestion (enrichment, notification) has settled"""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


# ============================================================================
# DASHBOARD
# ============================================================================

class DashboardView(LiveView):
    """Patients, pending appointments, unread messages and average rating"""

    name = "dashboard"

    def __init__(self, store: DocumentStore, consultant_id: str, timeout: Optional[float] = None, clock: Optional[Clock] = None):
        super().__init__(store, consultant_id, timeout, clock)
        self.patients: Optional[LiveCount] = None
        self.pending: Optional[LiveCount] = None
        self.unread: Optional[UnreadMessageTracker] = None
        self.rating: Optional[AverageRating] = None
        self.last_updated: Optional[datetime] = None

    def _open(self) -> None:
        self.patients = self.subscriptions.add(
            LiveCount(self.store, clients_query(self.consultant_id), self._changed, self._on_error).start()
        )
        self.pending = self.subscriptions.add(
            LiveCount(self.store, pending_bookings_query(self.consultant_id), self._changed, self._on_error).start()
        )
        self.unread = self.subscriptions.add(
            UnreadMessageTracker(self.store, self.consultant_id, self._changed, self._on_error).start()
        )
        self.rating = self.subscriptions.add(
            AverageRating(self.store, self.consultant_id, self._changed, self._on_error).start()
        )

    def _changed(self) -> None:
        self.last_updated = self.clock()
        self._publish()

    def snapshot(self) -> DashboardState:
        aggregates = [self.patients, self.pending, self.unread, self.rating]
        if any(aggregate is None for aggregate in aggregates):
            return DashboardState(errors=list(self.errors), last_updated=self.last_updated)
        return self._state(
            self.patients.value,
            self.pending.value,
            self.unread.total,
            self.rating.formatted,
            loading=not all(aggregate.ready for aggregate in aggregates)
        )

    def _state(self, patients: int, pending: int, unread: int, rating: str, loading: bool = False) -> DashboardState:
        return DashboardState(
            patients=patients,
            pending_appointments=pending,
            unread_messages=unread,
            average_rating=rating,
            cards=dashboard_cards(patients, pending, unread, rating),
            loading=loading,
            errors=list(self.errors),
            last_updated=self.last_updated,
        )

    async def refresh(self) -> DashboardState:
        """Re-derive every counter with one-shot reads"""
        try:
            state = await guarded_read(self._recount(), self.timeout, "refresh the dashboard")
        except PortalError as e:
            self._record_failure(e)
            self._publish()
            raise
        logger.debug(f"Dashboard refreshed for {self.consultant_id}")
        self._emit(state)
        return state

    async def _recount(self) -> DashboardState:
        patients = len(await self.store.fetch(clients_query(self.consultant_id)))
        pending = len(await self.store.fetch(pending_bookings_query(self.consultant_id)))
        rating, _ = mean_rating(await self.store.fetch(rated_bookings_query(self.consultant_id)))

        unread = 0
        for doc in await self.store.fetch(chats_query(self.consultant_id)):
            chat = Chat.from_document(doc)
            messages = [
                Message.from_document(message, chat.id)
                for message in await self.store.fetch(messages_query(chat.id))
            ]
            unread += count_unread(chat, messages, self.consultant_id)

        self.last_updated = self.clock()
        return self._state(patients, pending, unread, format_rating(rating))


# ============================================================================
# BOOKING REQUESTS
# ============================================================================

TIMESTAMP_ATTRIBUTES = {
    "updatedAt": "updated_at",
    "completedAt": "completed_at",
    "cancelledAt": "cancelled_at",
}


class BookingRequestsView(LiveView):
    """
    Booking tabs with accept / decline / mark-done / cancel

    Commands update the local list immediately. The optimistic copy stays in
    place until the store echoes the new status, and is dropped again if the
    write fails.
    """

    name = "bookings"

    def __init__(
        self,
        store: DocumentStore,
        consultant_id: str,
        notifier: Optional[Notifier] = None,
        notify: bool = True,
        policy: Optional[CompletionPolicy] = None,
        timeout: Optional[float] = None,
        clock: Optional[Clock] = None
    ):
        super().__init__(store, consultant_id, timeout, clock)
        self.commands = BookingCommands(store, policy, self.timeout, self.clock)
        self.resolver = NameResolver(store, timeout=self.timeout)
        self.bookings: List[Booking] = []
        self.active_tab = BookingTab.REQUESTS
        self.busy_id: Optional[str] = None
        self.loading = True
        self.notify = notify
        self._notifier = notifier or notify_new_booking_requests
        self._notified: Set[str] = set()
        self._notifying: Set[str] = set()
        self._overrides: Dict[str, Booking] = {}
        self._generation = 0

    @property
    def policy(self) -> CompletionPolicy:
        return self.commands.policy

    def _open(self) -> None:
        self.subscriptions.add(self.store.subscribe(
            bookings_query(self.consultant_id, statuses=list(BookingStatus)),
            self._on_snapshot,
            self._on_error
        ))

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------

    def _on_snapshot(self, documents) -> None:
        self._generation += 1
        self._spawn(self._ingest(self._generation, documents))

    async def _ingest(self, generation: int, documents) -> None:
        bookings = normalize_bookings(documents, settings.BOOKING_OWNER_FIELD)
        bookings = await self.resolver.enrich(bookings, "user_id", "full_name")
        if self.closed or generation != self._generation:
            return

        self.bookings = bookings
        stored = {booking.id: booking for booking in bookings}
        for booking_id, override in list(self._overrides.items()):
            current = stored.get(booking_id)
            if current is None or current.status is override.status:
                del self._overrides[booking_id]
        self.loading = False
        self._publish()

        if self.notify:
            await self._notify_new_pending(bookings)

    async def _notify_new_pending(self, bookings: List[Booking]) -> None:
        new_pending = [
            booking for booking in bookings
            if booking.status is BookingStatus.PENDING
            and booking.id not in self._notified
            and booking.id not in self._notifying
        ]
        if not new_pending:
            return

        profile_doc = await self.store.get("consultants", self.consultant_id)
        if profile_doc is None:
            return
        profile = ConsultantProfile.from_document(profile_doc)
        if not profile.email:
            logger.warning(f"Consultant {self.consultant_id} has no email; skipping booking notification")
            return

        ids = {booking.id for booking in new_pending}
        self._notifying |= ids
        try:
            sent = await self._notifier(profile.email, profile.name, new_pending)
        except Exception as e:
            logger.error(f"Booking notification for {self.consultant_id} failed: {e}")
            sent = False
        finally:
            self._notifying -= ids
        if sent:
            self._notified |= ids

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    def current_bookings(self) -> List[Booking]:
        return [self._overrides.get(booking.id, booking) for booking in self.bookings]

    def find(self, booking_id: str) -> Booking:
        for booking in self.current_bookings():
            if booking.id == booking_id:
                return booking
        raise NotFoundError("Booking not found.")

    def set_tab(self, tab) -> None:
        self.active_tab = BookingTab(tab)
        self._publish()

    def snapshot(self) -> BookingsState:
        bookings = self.current_bookings()
        rows = booking_rows(bookings, self.active_tab, self.clock(), self.policy, self.busy_id)
        return BookingsState(
            active_tab=self.active_tab,
            title=TAB_TITLES[self.active_tab],
            rows=rows,
            empty_message=None if rows else EMPTY_TAB_MESSAGES[self.active_tab],
            counts=tab_counts(bookings),
            busy_id=self.busy_id,
            loading=self.loading,
            errors=list(self.errors),
        )

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def run(self, booking_id: str, action: BookingAction, confirmed: bool = False) -> Booking:
        if self.busy_id == booking_id:
            raise PreconditionError("This booking is already being updated.")
        booking = self.find(booking_id)
        # Guards run before anything changes locally
        transition, changes = self.commands.plan(booking, action, confirmed)

        optimistic = booking.model_copy(update={
            "status": transition.target,
            TIMESTAMP_ATTRIBUTES[transition.timestamp_field]: changes[transition.timestamp_field],
        })
        previous_override = self._overrides.get(booking_id)
        previous_tab = self.active_tab
        self._overrides[booking_id] = optimistic
        self.busy_id = booking_id
        if action is BookingAction.ACCEPT:
            self.active_tab = BookingTab.UPCOMING
        self._publish()

        try:
            await self.commands.write(booking, action, changes)
        except PortalError as e:
            if previous_override is None:
                self._overrides.pop(booking_id, None)
            else:
                self._overrides[booking_id] = previous_override
            self.active_tab = previous_tab
            self._record_failure(e)
            raise
        finally:
            if self.busy_id == booking_id:
                self.busy_id = None
            self._publish()
        return optimistic

    async def accept(self, booking_id: str) -> Booking:
        return await self.run(booking_id, BookingAction.ACCEPT)

    async def decline(self, booking_id: str, confirmed: bool = False) -> Booking:
        return await self.run(booking_id, BookingAction.DECLINE, confirmed)

    async def mark_done(self, booking_id: str) -> Booking:
        return await self.run(booking_id, BookingAction.COMPLETE, confirmed=True)

    async def cancel(self, booking_id: str, confirmed: bool = False) -> Booking:
        return await self.run(booking_id, BookingAction.CANCEL, confirmed)


# ============================================================================
# CHAT INBOX
# ============================================================================

class ChatInboxView(LiveView):
    """Conversation list with unread markers plus the selected thread"""

    name = "chats"

    def __init__(
        self,
        store: DocumentStore,
        consultant_id: str,
        consultant_name: Optional[str] = None,
        timeout: Optional[float] = None,
        clock: Optional[Clock] = None
    ):
        super().__init__(store, consultant_id, timeout, clock)
        self.consultant_name = consultant_name
        self.commands = ChatCommands(store, self.timeout, self.clock)
        self.resolver = NameResolver(store, timeout=self.timeout)
        self.tracker: Optional[UnreadMessageTracker] = None
        self.selected_chat_id: Optional[str] = None
        self.messages: List[Message] = []
        self.loading_messages = False
        self._selection: Optional[Subscription] = None
        self._pending: Dict[str, Message] = {}
        self._seen: Set[str] = set()
        self._requested_names: Set[str] = set()

    def _open(self) -> None:
        self.tracker = UnreadMessageTracker(self.store, self.consultant_id, self._on_chats_changed, self._on_error)
        self.subscriptions.add(self.tracker)
        self.tracker.start()

    def _on_chats_changed(self) -> None:
        if self.selected_chat_id is not None and self.selected_chat_id not in self.tracker.chats:
            self._close_selection()
        unnamed = {
            chat.parent_uid for chat in self.tracker.chats.values()
            if not chat.parent_name and chat.parent_uid and chat.parent_uid not in self._requested_names
        }
        if unnamed:
            self._requested_names |= unnamed
            self._spawn(self._resolve_names(unnamed))
        self._publish()

    async def _resolve_names(self, user_ids) -> None:
        await self.resolver.resolve(user_ids)
        self._publish()

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    def chat(self, chat_id: str) -> Chat:
        chat = self.tracker.chats.get(chat_id) if self.tracker else None
        if chat is None:
            raise NotFoundError("Conversation not found.")
        if chat.parent_name:
            return chat
        return chat.model_copy(update={"parent_name": self.resolver.name_for(chat.parent_uid)})

    def unread_count(self, chat_id: str) -> int:
        if chat_id in self._seen:
            return 0
        return self.tracker.unread.get(chat_id, 0)

    def snapshot(self) -> ChatInboxState:
        if self.tracker is None:
            return ChatInboxState(errors=list(self.errors))

        conversations = [
            inbox_row(
                self.chat(chat_id),
                self.tracker.last_message(chat_id),
                self.unread_count(chat_id),
                self.selected_chat_id
            )
            for chat_id in self.tracker.chats
        ]

        selected = None
        if self.selected_chat_id in self.tracker.chats:
            selected = self.chat(self.selected_chat_id)
        thread = self.messages + [m for m in self._pending.values() if m.chat_id == self.selected_chat_id]

        return ChatInboxState(
            conversations=conversations,
            unread_total=sum(row.unread_count for row in conversations),
            selected_chat_id=self.selected_chat_id,
            selected_name=selected.parent_name if selected else None,
            selected_seen=bool(selected and (selected.seen_by_doctor or selected.id in self._seen)),
            messages=message_rows(thread, self.consultant_id),
            loading_conversations=not self.tracker.ready,
            loading_messages=self.loading_messages,
            errors=list(self.errors),
        )

    # ------------------------------------------------------------------
    # Selection
    # ------------------------------------------------------------------

    async def select(self, chat_id: str) -> None:
        """Open a conversation and mark it as seen"""
        self.chat(chat_id)
        self._close_selection()
        self.selected_chat_id = chat_id
        self.loading_messages = True
        self._selection = self.subscriptions.add(self.store.subscribe(
            messages_query(chat_id),
            partial(self._on_selected_messages, chat_id),
            self._on_error
        ))
        self._publish()
        await self.mark_seen(chat_id)

    def deselect(self) -> None:
        self._close_selection()
        self._publish()

    def _close_selection(self) -> None:
        if self._selection is not None:
            self.subscriptions.discard(self._selection)
            self._selection = None
        self.selected_chat_id = None
        self.messages = []
        self.loading_messages = False

    def _on_selected_messages(self, chat_id: str, documents) -> None:
        if chat_id != self.selected_chat_id:
            return
        self.messages = [Message.from_document(doc, chat_id) for doc in documents]
        self.loading_messages = False
        self._publish()

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def mark_seen(self, chat_id: str) -> None:
        self._seen.add(chat_id)
        self._publish()
        try:
            await self.commands.mark_seen(chat_id)
        except PortalError as e:
            self._record_failure(e)
            raise
        finally:
            self._seen.discard(chat_id)
            self._publish()

    async def send(self, text: str) -> Message:
        """Send ``text`` in the selected conversation"""
        chat_id = self.selected_chat_id
        if chat_id is None:
            raise PreconditionError("Select a conversation first.")
        if not text or not text.strip():
            raise PreconditionError("Cannot send an empty message.")

        created_at = self.clock()
        local = Message(
            id=f"local-{new_document_id()}",
            chat_id=chat_id,
            text=text,
            sender_id=self.consultant_id,
            sender_name=self.consultant_name,
            created_at=created_at,
            seen_by_doctor=True,
            pending=True,
        )
        self._pending[local.id] = local
        self._publish()

        try:
            await self.commands.mark_seen(chat_id)
            document = await self.commands.send_message(
                chat_id, self.consultant_id, self.consultant_name, text, created_at=created_at
            )
        except PortalError as e:
            self._record_failure(e)
            raise
        finally:
            self._pending.pop(local.id, None)
            self._publish()
        return Message.from_document(document, chat_id)
