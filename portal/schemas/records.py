"""
Normalized records

Stored documents come in inconsistent shapes (optional fields, several
spellings of the same name field, dates as timestamps or ISO strings). Each
record type has one ``from_document`` constructor applied once at ingestion;
everything downstream reads typed attributes only.
"""
import enum
import logging
from datetime import date, datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from pydantic import BaseModel, Field

from portal.store.base import Document

logger = logging.getLogger(__name__)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Convert a stored date value to an aware datetime

    Accepts datetimes, dates, epoch numbers (seconds or milliseconds),
    exported timestamps ({"seconds": ...}) and ISO strings. Returns None for
    anything unparseable.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    if isinstance(value, dict):
        seconds = value.get("seconds", value.get("_seconds"))
        if seconds is None:
            return None
        nanos = value.get("nanoseconds", value.get("_nanoseconds", 0)) or 0
        return datetime.fromtimestamp(seconds + nanos / 1e9, tz=timezone.utc)
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        # JS Date.getTime() values are milliseconds
        seconds = value / 1000 if value > 1e11 else value
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    if isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.replace('Z', '+00:00'))
        except ValueError:
            return None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return None


def resolve_display_name(data: Optional[Dict[str, Any]]) -> Optional[str]:
    """
    Best-effort display name of a user document

    Priority: fullName, name, firstName + lastName, displayName.
    """
    if not data:
        return None
    for candidate in (
        data.get("fullName"),
        data.get("name"),
        " ".join(part for part in (data.get("firstName"), data.get("lastName")) if part),
        data.get("displayName"),
    ):
        if candidate and str(candidate).strip():
            return str(candidate).strip()
    return None


class BookingStatus(str, enum.Enum):
    """Booking status"""
    PENDING = "pending"
    ACCEPTED = "accepted"
    PAID = "paid"
    COMPLETED = "completed"
    DECLINED = "declined"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = frozenset({
    BookingStatus.COMPLETED,
    BookingStatus.DECLINED,
    BookingStatus.CANCELLED,
})


class BookingTab(str, enum.Enum):
    """Booking list tabs"""
    REQUESTS = "requests"
    UPCOMING = "upcoming"
    COMPLETED = "completed"


class Booking(BaseModel):
    """Requested or scheduled consultation"""
    id: str
    user_id: Optional[str] = None
    consultant_id: Optional[str] = None
    date: Optional[datetime] = None
    raw_date: Optional[str] = None
    hour: Optional[str] = None
    platform: Optional[str] = None
    amount: int = 0  # smallest currency unit
    paid: bool = False
    status: BookingStatus
    rating: Optional[float] = None
    full_name: Optional[str] = None
    updated_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None

    @classmethod
    def from_document(cls, doc: Document, owner_field: str = "consultantId") -> "Booking":
        data = doc.data
        raw_date = data.get("date")
        try:
            amount = int(data.get("amount") or 0)
        except (TypeError, ValueError):
            amount = 0
        try:
            rating = float(data["rating"]) if data.get("rating") is not None else None
        except (TypeError, ValueError):
            rating = None
        return cls(
            id=doc.id,
            user_id=data.get("userId"),
            consultant_id=data.get(owner_field) or data.get("consultantId") or data.get("doctorId"),
            date=parse_timestamp(raw_date),
            raw_date=raw_date if isinstance(raw_date, str) else None,
            hour=data.get("hour"),
            platform=data.get("platform"),
            amount=amount,
            paid=bool(data.get("paid") or False),
            status=BookingStatus(data.get("status")),
            rating=rating,
            full_name=data.get("fullName") or data.get("userName") or data.get("clientName") or None,
            updated_at=parse_timestamp(data.get("updatedAt")),
            completed_at=parse_timestamp(data.get("completedAt")),
            cancelled_at=parse_timestamp(data.get("cancelledAt")),
        )


def normalize_bookings(docs: Iterable[Document], owner_field: str = "consultantId") -> List[Booking]:
    """Normalize a snapshot, skipping documents that are not valid bookings"""
    bookings = []
    for doc in docs:
        try:
            bookings.append(Booking.from_document(doc, owner_field))
        except ValueError as e:
            logger.warning(f"Skipping malformed booking {doc.id}: {e}")
    return bookings


class Chat(BaseModel):
    """Conversation between the consultant and one counterpart"""
    id: str
    consultant_id: Optional[str] = None
    parent_uid: Optional[str] = None
    parent_name: Optional[str] = None
    seen_by_doctor: bool = False
    last_seen_by_doctor: Optional[datetime] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_document(cls, doc: Document) -> "Chat":
        data = doc.data
        return cls(
            id=doc.id,
            consultant_id=data.get("doctorUid") or data.get("consultantId"),
            parent_uid=data.get("parentUid"),
            parent_name=data.get("parentName"),
            seen_by_doctor=bool(data.get("seenByDoctor") or False),
            last_seen_by_doctor=parse_timestamp(data.get("lastSeenByDoctor")),
            created_at=parse_timestamp(data.get("createdAt")),
        )


class Message(BaseModel):
    """Single chat entry"""
    id: str
    chat_id: str
    text: str = ""
    sender_id: Optional[str] = None
    sender_name: Optional[str] = None
    created_at: Optional[datetime] = None
    seen_by_doctor: bool = False
    pending: bool = False  # optimistic local copy not yet echoed by the store

    @classmethod
    def from_document(cls, doc: Document, chat_id: str) -> "Message":
        data = doc.data
        user = data.get("user") or {}
        return cls(
            id=doc.id,
            chat_id=chat_id,
            text=data.get("text") or "",
            sender_id=user.get("_id"),
            sender_name=user.get("name"),
            created_at=parse_timestamp(data.get("createdAt")),
            seen_by_doctor=bool(data.get("seenByDoctor") or False),
        )


class ConsultantProfile(BaseModel):
    """Consultant profile document"""
    id: str
    email: str = ""
    name: str = ""
    specialty: str = ""
    contact_info: str = ""
    birth_center_address: str = ""
    available_days: List[str] = Field(default_factory=list)
    consultation_hours: List[str] = Field(default_factory=list)
    platform: List[str] = Field(default_factory=list)
    profile_photo: str = ""
    unavailable_note: str = ""
    clinic_id: Optional[str] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_document(cls, doc: Document) -> "ConsultantProfile":
        data = doc.data
        return cls(
            id=doc.id,
            email=data.get("email") or "",
            name=data.get("name") or "",
            specialty=data.get("specialty") or "",
            contact_info=data.get("contactInfo") or "",
            birth_center_address=data.get("birthCenterAddress") or "",
            available_days=list(data.get("availableDays") or []),
            consultation_hours=list(data.get("consultationHours") or []),
            platform=list(data.get("platform") or []),
            profile_photo=data.get("profilePhoto") or "",
            unavailable_note=data.get("unavailableNote") or "",
            clinic_id=data.get("clinicId"),
            updated_at=parse_timestamp(data.get("updatedAt")),
        )
