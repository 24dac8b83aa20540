"""Document store package"""
import logging

from portal.config import settings
from portal.store.base import (
    SERVER_TIMESTAMP,
    Document,
    DocumentStore,
    Query,
    Subscription,
    SubscriptionSet,
)
from portal.store.memory import InMemoryDocumentStore

logger = logging.getLogger(__name__)


def build_store() -> DocumentStore:
    """Create the store selected by ``STORE_BACKEND``"""
    if settings.STORE_BACKEND == "memory":
        logger.info("Using in-memory document store")
        return InMemoryDocumentStore()

    from portal.db.session import init_db
    from portal.store.sql import SqlDocumentStore

    init_db()
    logger.info("Using SQL document store")
    return SqlDocumentStore()


__all__ = [
    "SERVER_TIMESTAMP",
    "Document",
    "DocumentStore",
    "Query",
    "Subscription",
    "SubscriptionSet",
    "InMemoryDocumentStore",
    "build_store",
]
