"""
In-process document store

Used for local development (``STORE_BACKEND=memory``) and tests. Every read
hands out deep copies so callers can never mutate stored state.
"""
import copy
from typing import Any, Dict, List, Optional

from portal.exceptions import NotFoundError
from portal.store.base import Document, DocumentStore


class InMemoryDocumentStore(DocumentStore):
    """Document store kept in a dict of collections"""

    def __init__(self, clock=None):
        super().__init__(clock)
        self._collections: Dict[str, Dict[str, Dict[str, Any]]] = {}

    def _scan(self, collection: str) -> List[Document]:
        return [
            Document(doc_id, copy.deepcopy(data))
            for doc_id, data in self._collections.get(collection, {}).items()
        ]

    def _read(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        data = self._collections.get(collection, {}).get(doc_id)
        return copy.deepcopy(data) if data is not None else None

    def _put(self, collection: str, doc_id: str, data: Dict[str, Any]) -> None:
        self._collections.setdefault(collection, {})[doc_id] = copy.deepcopy(data)

    def _patch(self, collection, doc_id, changes, expected):
        current = self._collections.get(collection, {}).get(doc_id)
        if current is None:
            raise NotFoundError(f"{collection}/{doc_id} does not exist")
        self._check_expected(collection, doc_id, current, expected)
        current.update(copy.deepcopy(changes))
        return copy.deepcopy(current)

    def _remove(self, collection: str, doc_id: str) -> bool:
        return self._collections.get(collection, {}).pop(doc_id, None) is not None
