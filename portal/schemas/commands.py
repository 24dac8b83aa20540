"""Request bodies for portal commands"""
from pydantic import BaseModel, Field


class BookingConfirmation(BaseModel):
    """Decline and cancel are irreversible and must be confirmed"""
    confirmed: bool = False


class MessageCreate(BaseModel):
    text: str = Field(..., max_length=5000)
