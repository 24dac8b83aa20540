"""View state schemas pushed to the portal frontend"""
from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import datetime

from portal.schemas.records import BookingStatus, BookingTab


class StatCard(BaseModel):
    """One dashboard tile"""
    title: str
    value: str
    subtitle: Optional[str] = None


class DashboardState(BaseModel):
    """Dashboard counters"""
    patients: int = 0
    pending_appointments: int = 0
    unread_messages: int = 0
    average_rating: str = "0.0"
    cards: List[StatCard] = Field(default_factory=list)
    loading: bool = True
    errors: List[str] = Field(default_factory=list)
    last_updated: Optional[datetime] = None


class BookingRow(BaseModel):
    """Booking as listed in a tab"""
    id: str
    full_name: str
    status: BookingStatus
    paid: bool
    date_label: str
    amount_label: str
    hour: Optional[str] = None
    platform: Optional[str] = None
    badge: Optional[str] = None
    highlight: bool = False
    can_mark_done: bool = False
    busy: bool = False


class BookingsState(BaseModel):
    """Booking requests screen"""
    active_tab: BookingTab = BookingTab.REQUESTS
    title: str
    rows: List[BookingRow] = Field(default_factory=list)
    empty_message: Optional[str] = None
    counts: dict = Field(default_factory=dict)
    busy_id: Optional[str] = None
    loading: bool = True
    errors: List[str] = Field(default_factory=list)


class InboxRow(BaseModel):
    """Conversation entry in the inbox list"""
    chat_id: str
    parent_name: str
    last_text: str
    last_time: Optional[str] = None
    unread_count: int = 0
    has_unread: bool = False
    active: bool = False


class MessageRow(BaseModel):
    id: str
    text: str
    time: Optional[str] = None
    is_mine: bool = False
    pending: bool = False


class ChatInboxState(BaseModel):
    """Chat inbox screen"""
    conversations: List[InboxRow] = Field(default_factory=list)
    unread_total: int = 0
    selected_chat_id: Optional[str] = None
    selected_name: Optional[str] = None
    selected_seen: bool = False
    messages: List[MessageRow] = Field(default_factory=list)
    loading_conversations: bool = True
    loading_messages: bool = False
    errors: List[str] = Field(default_factory=list)
