"""Database models for the consultant portal"""
from portal.models.base import Base, TimestampMixin
from portal.models.document import StoredDocument

__all__ = [
    "Base",
    "TimestampMixin",
    "StoredDocument",
]
