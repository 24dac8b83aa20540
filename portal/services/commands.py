"""
Mutation commands

Each command validates its preconditions, then performs exactly one write
to the store, bounded by ``STORE_TIMEOUT_SECONDS``. Booking status changes
are compare-and-swap writes: they only land if the stored status is still
the one the command was planned against.
"""
import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple, TypeVar

from portal.config import settings
from portal.exceptions import (
    ConflictError,
    MutationError,
    PortalError,
    PreconditionError,
    StoreTimeoutError,
    SubscriptionError,
)
from portal.schemas.records import Booking
from portal.services.aggregation import messages_collection
from portal.services.booking_rules import (
    BookingAction,
    CompletionPolicy,
    Transition,
    check_transition,
)
from portal.store.base import SERVER_TIMESTAMP, Document, DocumentStore

logger = logging.getLogger(__name__)

T = TypeVar("T")

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


async def guarded_write(operation: Awaitable[T], timeout: float, description: str) -> T:
    """
    Await a store write, converting every failure into a PortalError

    Timeouts become StoreTimeoutError, compare-and-swap mismatches
    ConflictError, anything else MutationError.
    """
    try:
        return await asyncio.wait_for(operation, timeout=timeout)
    except asyncio.TimeoutError:
        logger.error(f"Timed out trying to {description}")
        raise StoreTimeoutError(f"Timed out trying to {description}. Please try again.")
    except ConflictError as e:
        logger.warning(f"Conflict trying to {description}: {e.message}")
        raise ConflictError(f"Could not {description}: it was changed elsewhere. Refresh and try again.") from e
    except PortalError:
        raise
    except Exception as e:
        logger.error(f"Failed to {description}: {e}")
        raise MutationError(f"Failed to {description}. Please try again.") from e


async def guarded_read(operation: Awaitable[T], timeout: float, description: str) -> T:
    """Await one-shot reads; timeouts become StoreTimeoutError, other failures SubscriptionError"""
    try:
        return await asyncio.wait_for(operation, timeout=timeout)
    except asyncio.TimeoutError:
        logger.error(f"Timed out trying to {description}")
        raise StoreTimeoutError(f"Timed out trying to {description}. Please try again.")
    except PortalError:
        raise
    except Exception as e:
        logger.error(f"Failed to {description}: {e}")
        raise SubscriptionError(f"Failed to {description}. Please try again.") from e


class BookingCommands:
    """accept / decline / complete / cancel"""

    collection = "bookings"

    def __init__(
        self,
        store: DocumentStore,
        policy: Optional[CompletionPolicy] = None,
        timeout: Optional[float] = None,
        clock: Optional[Clock] = None
    ):
        self._store = store
        self.policy = policy or CompletionPolicy.from_settings()
        self._timeout = timeout if timeout is not None else settings.STORE_TIMEOUT_SECONDS
        self._clock = clock or utcnow

    def now(self) -> datetime:
        return self._clock()

    def plan(
        self,
        booking: Booking,
        action: BookingAction,
        confirmed: bool = False
    ) -> Tuple[Transition, Dict[str, Any]]:
        """Check guards and build the field changes without writing anything"""
        now = self.now()
        transition = check_transition(booking, action, now=now, policy=self.policy, confirmed=confirmed)
        changes = {
            "status": transition.target.value,
            transition.timestamp_field: now,
        }
        return transition, changes

    async def write(self, booking: Booking, action: BookingAction, changes: Dict[str, Any]) -> Document:
        document = await guarded_write(
            self._store.update(
                self.collection,
                booking.id,
                changes,
                expected={"status": booking.status.value}
            ),
            self._timeout,
            f"{action.value} booking"
        )
        logger.info(f"Booking {booking.id}: {booking.status.value} -> {changes['status']}")
        return document

    async def execute(self, booking: Booking, action: BookingAction, confirmed: bool = False) -> Dict[str, Any]:
        _, changes = self.plan(booking, action, confirmed)
        await self.write(booking, action, changes)
        return changes

    async def accept(self, booking: Booking) -> Dict[str, Any]:
        return await self.execute(booking, BookingAction.ACCEPT)

    async def decline(self, booking: Booking, confirmed: bool = False) -> Dict[str, Any]:
        return await self.execute(booking, BookingAction.DECLINE, confirmed)

    async def complete(self, booking: Booking) -> Dict[str, Any]:
        return await self.execute(booking, BookingAction.COMPLETE, confirmed=True)

    async def cancel(self, booking: Booking, confirmed: bool = False) -> Dict[str, Any]:
        return await self.execute(booking, BookingAction.CANCEL, confirmed)


class ChatCommands:
    """mark-chat-seen / send-message"""

    def __init__(self, store: DocumentStore, timeout: Optional[float] = None, clock: Optional[Clock] = None):
        self._store = store
        self._timeout = timeout if timeout is not None else settings.STORE_TIMEOUT_SECONDS
        self._clock = clock or utcnow

    def now(self) -> datetime:
        return self._clock()

    async def mark_seen(self, chat_id: str) -> Document:
        document = await guarded_write(
            self._store.update("chats", chat_id, {
                "seenByDoctor": True,
                "lastSeenByDoctor": SERVER_TIMESTAMP,
            }),
            self._timeout,
            "mark the conversation as seen"
        )
        logger.debug(f"Chat {chat_id} marked as seen")
        return document

    async def send_message(
        self,
        chat_id: str,
        sender_id: str,
        sender_name: Optional[str],
        text: str,
        created_at: Optional[datetime] = None
    ) -> Document:
        if not text or not text.strip():
            raise PreconditionError("Cannot send an empty message.")
        document = await guarded_write(
            self._store.add(messages_collection(chat_id), {
                "text": text,
                "user": {
                    "_id": sender_id,
                    "name": sender_name or "Doctor",
                },
                "createdAt": created_at or self.now(),
                "seenByDoctor": True,
            }),
            self._timeout,
            "send the message"
        )
        logger.info(f"Message {document.id} sent in chat {chat_id}")
        return document
