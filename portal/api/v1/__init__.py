# API v1 routers
# This file ensures all routers are properly exported

from . import (
    dashboard,
    bookings,
    chats,
    profile
)

__all__ = [
    "dashboard",
    "bookings",
    "chats",
    "profile"
]
