"""
Record enrichment

Fills in display names on records that only carry a foreign user id. Lookups
are memoized per resolver: each distinct id is fetched at most once (also
across overlapping passes) and a failed lookup falls back to the raw id
without failing the batch.
"""
import asyncio
import logging
from typing import Dict, Iterable, List, Optional, TypeVar

from pydantic import BaseModel

from portal.config import settings
from portal.exceptions import LookupFailure
from portal.schemas.records import resolve_display_name
from portal.store.base import DocumentStore

logger = logging.getLogger(__name__)

RecordT = TypeVar("RecordT", bound=BaseModel)


class NameResolver:
    """Resolves user ids to display names for one view"""

    def __init__(
        self,
        store: DocumentStore,
        collection: str = "users",
        timeout: Optional[float] = None,
        unknown_label: str = "Unknown"
    ):
        self._store = store
        self._collection = collection
        self._timeout = timeout if timeout is not None else settings.STORE_TIMEOUT_SECONDS
        self._unknown_label = unknown_label
        self._names: Dict[str, Optional[str]] = {}
        self._inflight: Dict[str, "asyncio.Task[None]"] = {}
        self.lookups = 0

    async def _fetch_name(self, user_id: str) -> Optional[str]:
        try:
            doc = await asyncio.wait_for(
                self._store.get(self._collection, user_id),
                timeout=self._timeout
            )
        except asyncio.TimeoutError:
            raise LookupFailure(f"Timed out looking up {self._collection}/{user_id}")
        except Exception as e:
            raise LookupFailure(f"Lookup of {self._collection}/{user_id} failed: {e}")
        return resolve_display_name(doc.data) if doc else None

    async def _lookup(self, user_id: str) -> None:
        self.lookups += 1
        try:
            self._names[user_id] = await self._fetch_name(user_id)
        except LookupFailure as e:
            # Not cached: the next pass tries again
            logger.warning(f"{e}; falling back to identifier")
        finally:
            self._inflight.pop(user_id, None)

    async def resolve(self, user_ids: Iterable[Optional[str]]) -> Dict[str, Optional[str]]:
        """Resolve a batch of ids; returns id -> name (None when unresolved)"""
        wanted = list(dict.fromkeys(uid for uid in user_ids if uid))
        pending = []
        for user_id in wanted:
            if user_id in self._names:
                continue
            task = self._inflight.get(user_id)
            if task is None:
                task = asyncio.ensure_future(self._lookup(user_id))
                self._inflight[user_id] = task
            pending.append(task)
        if pending:
            await asyncio.gather(*pending)
        return {user_id: self._names.get(user_id) for user_id in wanted}

    def name_for(self, user_id: Optional[str]) -> str:
        if user_id and self._names.get(user_id):
            return self._names[user_id]
        return user_id or self._unknown_label

    async def enrich(self, records: List[RecordT], id_field: str, name_field: str) -> List[RecordT]:
        """
        Return copies of ``records`` with ``name_field`` filled in

        Records that already carry a name are returned untouched.
        """
        await self.resolve(
            getattr(record, id_field) for record in records if not getattr(record, name_field)
        )
        enriched = []
        for record in records:
            if getattr(record, name_field):
                enriched.append(record)
            else:
                enriched.append(record.model_copy(update={name_field: self.name_for(getattr(record, id_field))}))
        return enriched
