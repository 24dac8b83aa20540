"""
SQLAlchemy-backed document store

Documents live in a single ``documents`` table keyed by (collection, id)
with a JSON body. Live queries are fed by the writes that go through this
store instance. One-shot reads and writes run in a worker thread so a slow
database never stalls the event loop and callers can bound them with a
timeout.
"""
import asyncio
import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.orm import Session

from portal.db.session import SessionLocal
from portal.exceptions import NotFoundError
from portal.models.document import StoredDocument
from portal.store.base import Document, DocumentStore

logger = logging.getLogger(__name__)

_TIMESTAMP_KEY = "$timestamp"


def encode_value(value: Any) -> Any:
    """Make a document body JSON-safe (datetimes become tagged ISO strings)"""
    if isinstance(value, datetime):
        return {_TIMESTAMP_KEY: value.isoformat()}
    if isinstance(value, dict):
        return {key: encode_value(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [encode_value(item) for item in value]
    return value


def decode_value(value: Any) -> Any:
    if isinstance(value, dict):
        if set(value) == {_TIMESTAMP_KEY}:
            return datetime.fromisoformat(value[_TIMESTAMP_KEY])
        return {key: decode_value(item) for key, item in value.items()}
    if isinstance(value, list):
        return [decode_value(item) for item in value]
    return value


class SqlDocumentStore(DocumentStore):
    """Document store persisted through SQLAlchemy"""

    def __init__(self, session_factory=SessionLocal, clock=None):
        super().__init__(clock)
        self._session_factory = session_factory

    async def _run(self, operation: Callable[..., Any], *args: Any) -> Any:
        return await asyncio.to_thread(operation, *args)

    def _row(self, db: Session, collection: str, doc_id: str, lock: bool = False) -> Optional[StoredDocument]:
        query = db.query(StoredDocument).filter(
            StoredDocument.collection == collection,
            StoredDocument.doc_id == doc_id
        )
        if lock:
            query = query.with_for_update()
        return query.first()

    def _scan(self, collection: str) -> List[Document]:
        db = self._session_factory()
        try:
            rows = db.query(StoredDocument).filter(StoredDocument.collection == collection).all()
            return [Document(row.doc_id, decode_value(row.data)) for row in rows]
        finally:
            db.close()

    def _read(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        db = self._session_factory()
        try:
            row = self._row(db, collection, doc_id)
            return decode_value(row.data) if row else None
        finally:
            db.close()

    def _put(self, collection: str, doc_id: str, data: Dict[str, Any]) -> None:
        db = self._session_factory()
        try:
            row = self._row(db, collection, doc_id)
            if row is None:
                db.add(StoredDocument(collection=collection, doc_id=doc_id, data=encode_value(data)))
            else:
                row.data = encode_value(data)
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def _patch(self, collection, doc_id, changes, expected):
        db = self._session_factory()
        try:
            row = self._row(db, collection, doc_id, lock=True)
            if row is None:
                raise NotFoundError(f"{collection}/{doc_id} does not exist")
            current = decode_value(row.data)
            self._check_expected(collection, doc_id, current, expected)
            current.update(changes)
            row.data = encode_value(current)
            db.commit()
            return current
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def _remove(self, collection: str, doc_id: str) -> bool:
        db = self._session_factory()
        try:
            row = self._row(db, collection, doc_id)
            if row is None:
                return False
            db.delete(row)
            db.commit()
            return True
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()
