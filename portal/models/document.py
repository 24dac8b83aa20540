"""Stored document model backing the SQL document store"""
from sqlalchemy import Column, String, JSON, Index

from portal.models.base import Base, TimestampMixin


class StoredDocument(Base, TimestampMixin):
    """One document of one collection (``bookings``, ``chats/{id}/messages``...)"""
    __tablename__ = "documents"

    collection = Column(String(255), primary_key=True)
    doc_id = Column(String(128), primary_key=True)

    # Document body; datetimes are encoded as {"$timestamp": iso}
    data = Column(JSON, nullable=False, default=dict)

    __table_args__ = (
        Index('idx_documents_collection', 'collection'),
    )

    def __repr__(self):
        return f"<StoredDocument {self.collection}/{self.doc_id}>"
