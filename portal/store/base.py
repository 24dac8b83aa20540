"""
Live query primitives shared by every document store backend

A store holds documents grouped in collections (``bookings``,
``chats/{id}/messages``...). Consumers either read once (``get``/``fetch``)
or subscribe to a query and receive the complete matching set every time it
changes.
"""
import abc
import asyncio
import logging
import uuid
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Protocol, Tuple

from portal.exceptions import ConflictError, NotFoundError, SubscriptionError

logger = logging.getLogger(__name__)


class _ServerTimestamp:
    """Placeholder resolved to the store clock at write time"""

    def __repr__(self):
        return "SERVER_TIMESTAMP"


SERVER_TIMESTAMP = _ServerTimestamp()

SnapshotCallback = Callable[[List["Document"]], None]
ErrorCallback = Callable[[SubscriptionError], None]


def get_field(data: Dict[str, Any], path: str, default: Any = None) -> Any:
    """Read a possibly dotted field path (``user._id``) from a document body"""
    value: Any = data
    for part in path.split("."):
        if not isinstance(value, dict) or part not in value:
            return default
        value = value[part]
    return value


def new_document_id() -> str:
    return uuid.uuid4().hex[:20]


def _sort_key(value: Any):
    if value is None:
        return (0, 0)
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return (1, value.timestamp())
    return (1, value)


class FilterOp(str, Enum):
    """Supported filter operators"""
    EQ = "=="
    IN = "in"
    NOT_NULL = "not-null"


@dataclass(frozen=True)
class FieldFilter:
    field: str
    op: FilterOp
    value: Any = None

    def matches(self, data: Dict[str, Any]) -> bool:
        actual = get_field(data, self.field)
        if self.op is FilterOp.EQ:
            return actual == self.value
        if self.op is FilterOp.IN:
            return actual in self.value
        return actual is not None


@dataclass(frozen=True)
class Document:
    """One stored record: its id plus a copy of its body"""
    id: str
    data: Dict[str, Any]

    def get(self, path: str, default: Any = None) -> Any:
        return get_field(self.data, path, default)


@dataclass(frozen=True)
class Query:
    """
    Conjunctive query over one collection

    Built fluently:
        Query("bookings").where("consultantId", "==", uid).where("status", "in", ["pending"])
    """
    collection: str
    filters: Tuple[FieldFilter, ...] = ()
    order_by: Optional[str] = None
    descending: bool = False

    def where(self, field: str, op: str, value: Any = None) -> "Query":
        op = FilterOp(op)
        if op is FilterOp.IN:
            value = tuple(value)
        return replace(self, filters=self.filters + (FieldFilter(field, op, value),))

    def order(self, field: str, descending: bool = False) -> "Query":
        return replace(self, order_by=field, descending=descending)

    def matches(self, document: Document) -> bool:
        return all(f.matches(document.data) for f in self.filters)

    def apply(self, documents: Iterable[Document]) -> List[Document]:
        matched = [doc for doc in documents if self.matches(doc)]
        if self.order_by:
            matched.sort(key=lambda doc: _sort_key(doc.get(self.order_by)), reverse=self.descending)
        else:
            matched.sort(key=lambda doc: doc.id)
        return matched


class Cancellable(Protocol):
    def cancel(self) -> None:
        ...


class Subscription:
    """
    Handle for one live query

    Delivery stops as soon as ``cancel()`` returns; calling it again is a no-op.
    """

    def __init__(
        self,
        store: "DocumentStore",
        query: Query,
        on_snapshot: SnapshotCallback,
        on_error: Optional[ErrorCallback] = None
    ):
        self.query = query
        self.active = True
        self._store = store
        self._on_snapshot = on_snapshot
        self._on_error = on_error
        self._last: Optional[List[Document]] = None

    def deliver(self, documents: List[Document]) -> None:
        if not self.active or documents == self._last:
            return
        self._last = documents
        try:
            self._on_snapshot(list(documents))
        except Exception:
            logger.exception(f"Snapshot listener on '{self.query.collection}' raised")

    def fail(self, exc: Exception) -> None:
        if not self.active:
            return
        logger.error(f"Live query on '{self.query.collection}' failed: {exc}")
        self.cancel()
        if self._on_error is not None:
            self._on_error(SubscriptionError(f"Live updates for {self.query.collection} are unavailable: {exc}"))

    def cancel(self) -> None:
        if not self.active:
            return
        self.active = False
        self._store._detach(self)

    def __repr__(self):
        state = "active" if self.active else "cancelled"
        return f"<Subscription {self.query.collection} ({state})>"


class SubscriptionSet:
    """Subscriptions owned by one view; ``cancel_all()`` tears them down together"""

    def __init__(self):
        self._members: List[Cancellable] = []

    def add(self, member):
        self._members.append(member)
        return member

    def discard(self, member: Cancellable) -> None:
        if member in self._members:
            self._members.remove(member)
        member.cancel()

    def cancel_all(self) -> None:
        members, self._members = self._members, []
        for member in members:
            member.cancel()

    def __len__(self):
        return len(self._members)


class DocumentStore(abc.ABC):
    """
    Base class for document store backends

    Backends implement the synchronous primitives (``_scan``, ``_read``,
    ``_put``, ``_patch``, ``_remove``); this class layers the async read/write
    API and snapshot fan-out to live subscriptions on top. Backends whose
    primitives block override ``_run`` to move them off the event loop.
    """

    def __init__(self, clock: Optional[Callable[[], datetime]] = None):
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._subscriptions: Dict[str, List[Subscription]] = {}

    # ------------------------------------------------------------------
    # Backend primitives
    # ------------------------------------------------------------------

    @abc.abstractmethod
    def _scan(self, collection: str) -> List[Document]:
        ...

    @abc.abstractmethod
    def _read(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        ...

    @abc.abstractmethod
    def _put(self, collection: str, doc_id: str, data: Dict[str, Any]) -> None:
        ...

    @abc.abstractmethod
    def _patch(
        self,
        collection: str,
        doc_id: str,
        changes: Dict[str, Any],
        expected: Optional[Dict[str, Any]]
    ) -> Dict[str, Any]:
        """Apply ``changes`` atomically if every ``expected`` field still matches"""

    @abc.abstractmethod
    def _remove(self, collection: str, doc_id: str) -> bool:
        ...

    async def _run(self, operation: Callable[..., Any], *args: Any) -> Any:
        """Execute one backend primitive"""
        return operation(*args)

    async def _write(self, collection: str, operation: Callable[..., Any], *args: Any) -> Any:
        """
        Execute a write primitive, then refresh the collection's subscriptions

        A caller that gives up (timeout, cancellation) does not stop a write
        already handed to the backend; if it lands later the subscriptions
        are still refreshed.
        """
        task = asyncio.ensure_future(self._run(operation, *args))
        try:
            result = await asyncio.shield(task)
        except asyncio.CancelledError:
            task.add_done_callback(lambda done: self._settle_late(collection, done))
            raise
        self._notify(collection)
        return result

    def _settle_late(self, collection: str, task: "asyncio.Future") -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Abandoned write to '{collection}' failed: {error}")
            return
        self._notify(collection)

    # ------------------------------------------------------------------
    # Live queries
    # ------------------------------------------------------------------

    def subscribe(
        self,
        query: Query,
        on_snapshot: SnapshotCallback,
        on_error: Optional[ErrorCallback] = None
    ) -> Subscription:
        """Open a live query; the current matching set is delivered immediately"""
        subscription = Subscription(self, query, on_snapshot, on_error)
        self._subscriptions.setdefault(query.collection, []).append(subscription)
        logger.debug(f"Subscribed to '{query.collection}'")
        self._refresh(subscription)
        return subscription

    def active_subscriptions(self, collection: Optional[str] = None) -> int:
        if collection is not None:
            return len(self._subscriptions.get(collection, []))
        return sum(len(subs) for subs in self._subscriptions.values())

    def _refresh(self, subscription: Subscription) -> None:
        try:
            documents = subscription.query.apply(self._scan(subscription.query.collection))
        except Exception as e:
            subscription.fail(e)
            return
        subscription.deliver(documents)

    def _notify(self, collection: str) -> None:
        for subscription in list(self._subscriptions.get(collection, [])):
            self._refresh(subscription)

    def _detach(self, subscription: Subscription) -> None:
        subscriptions = self._subscriptions.get(subscription.query.collection, [])
        if subscription in subscriptions:
            subscriptions.remove(subscription)
        if not subscriptions:
            self._subscriptions.pop(subscription.query.collection, None)

    # ------------------------------------------------------------------
    # One-shot reads
    # ------------------------------------------------------------------

    async def get(self, collection: str, doc_id: str) -> Optional[Document]:
        data = await self._run(self._read, collection, doc_id)
        if data is None:
            return None
        return Document(doc_id, data)

    async def fetch(self, query: Query) -> List[Document]:
        return query.apply(await self._run(self._scan, query.collection))

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def now(self) -> datetime:
        return self._clock()

    def _resolve(self, value: Any) -> Any:
        if value is SERVER_TIMESTAMP:
            return self.now()
        if isinstance(value, dict):
            return {key: self._resolve(item) for key, item in value.items()}
        if isinstance(value, list):
            return [self._resolve(item) for item in value]
        return value

    @staticmethod
    def _check_expected(
        collection: str,
        doc_id: str,
        current: Dict[str, Any],
        expected: Optional[Dict[str, Any]]
    ) -> None:
        for field, value in (expected or {}).items():
            actual = get_field(current, field)
            if actual != value:
                raise ConflictError(
                    f"{collection}/{doc_id} changed: expected {field}={value!r}, found {actual!r}"
                )

    async def add(self, collection: str, data: Dict[str, Any]) -> Document:
        doc_id = new_document_id()
        body = self._resolve(data)
        await self._write(collection, self._put, collection, doc_id, body)
        return Document(doc_id, body)

    async def set(self, collection: str, doc_id: str, data: Dict[str, Any]) -> Document:
        body = self._resolve(data)
        await self._write(collection, self._put, collection, doc_id, body)
        return Document(doc_id, body)

    async def update(
        self,
        collection: str,
        doc_id: str,
        changes: Dict[str, Any],
        expected: Optional[Dict[str, Any]] = None
    ) -> Document:
        """
        Merge ``changes`` into an existing document

        With ``expected`` the write is a compare-and-swap: it only happens if
        every listed field still holds the given value, otherwise
        ``ConflictError`` is raised and nothing is written.
        """
        body = await self._write(collection, self._patch, collection, doc_id, self._resolve(changes), expected)
        return Document(doc_id, body)

    async def delete(self, collection: str, doc_id: str) -> None:
        if not await self._write(collection, self._remove, collection, doc_id):
            raise NotFoundError(f"{collection}/{doc_id} does not exist")
