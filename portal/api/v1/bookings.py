"""Consultation booking endpoints"""
from fastapi import APIRouter, Depends, Query, Request, Response, WebSocket
from typing import Optional
import logging

from portal.api.v1.live import authenticate_websocket, serve_view, unknown_action
from portal.config import settings
from portal.dependencies.auth import get_current_consultant, get_store, get_ws_store
from portal.exceptions import NotFoundError, PreconditionError
from portal.middleware.rate_limit import limiter
from portal.schemas.commands import BookingConfirmation
from portal.schemas.records import Booking, BookingTab, ConsultantProfile
from portal.schemas.views import BookingsState
from portal.services.booking_rules import BookingAction
from portal.services.commands import BookingCommands
from portal.services.views import BookingRequestsView
from portal.store.base import DocumentStore

logger = logging.getLogger(__name__)

router = APIRouter()


async def get_owned_booking(store: DocumentStore, booking_id: str, consultant_id: str) -> Booking:
    """Load a booking, hiding bookings of other consultants"""
    doc = await store.get("bookings", booking_id)
    if doc is None:
        raise NotFoundError("Booking not found.")
    try:
        booking = Booking.from_document(doc, settings.BOOKING_OWNER_FIELD)
    except ValueError:
        raise PreconditionError("This booking has an unknown status and cannot be changed.")
    if booking.consultant_id != consultant_id:
        raise NotFoundError("Booking not found.")
    return booking


async def run_booking_command(
    store: DocumentStore,
    booking_id: str,
    consultant_id: str,
    action: BookingAction,
    confirmed: bool = False
) -> Booking:
    booking = await get_owned_booking(store, booking_id, consultant_id)
    await BookingCommands(store).execute(booking, action, confirmed)
    return await get_owned_booking(store, booking_id, consultant_id)


@router.get("", response_model=BookingsState)
async def list_bookings(
    tab: BookingTab = Query(BookingTab.REQUESTS),
    current_consultant: ConsultantProfile = Depends(get_current_consultant),
    store: DocumentStore = Depends(get_store)
):
    """
    Bookings of one tab: requests, upcoming or completed
    """
    async with BookingRequestsView(store, current_consultant.id, notify=False) as view:
        await view.wait_idle()
        view.set_tab(tab)
        return view.snapshot()


@router.post("/{booking_id}/accept", response_model=Booking)
@limiter.limit("30/minute")
async def accept_booking(
    request: Request,
    response: Response,
    booking_id: str,
    current_consultant: ConsultantProfile = Depends(get_current_consultant),
    store: DocumentStore = Depends(get_store)
):
    """Accept a pending booking request"""
    return await run_booking_command(store, booking_id, current_consultant.id, BookingAction.ACCEPT)


@router.post("/{booking_id}/decline", response_model=Booking)
@limiter.limit("30/minute")
async def decline_booking(
    request: Request,
    response: Response,
    booking_id: str,
    confirmation: Optional[BookingConfirmation] = None,
    current_consultant: ConsultantProfile = Depends(get_current_consultant),
    store: DocumentStore = Depends(get_store)
):
    """Decline a pending booking request (requires {"confirmed": true})"""
    confirmed = confirmation.confirmed if confirmation else False
    return await run_booking_command(store, booking_id, current_consultant.id, BookingAction.DECLINE, confirmed)


@router.post("/{booking_id}/complete", response_model=Booking)
@limiter.limit("30/minute")
async def complete_booking(
    request: Request,
    response: Response,
    booking_id: str,
    current_consultant: ConsultantProfile = Depends(get_current_consultant),
    store: DocumentStore = Depends(get_store)
):
    """Mark an upcoming appointment as done"""
    return await run_booking_command(store, booking_id, current_consultant.id, BookingAction.COMPLETE, True)


@router.post("/{booking_id}/cancel", response_model=Booking)
@limiter.limit("30/minute")
async def cancel_booking(
    request: Request,
    response: Response,
    booking_id: str,
    confirmation: Optional[BookingConfirmation] = None,
    current_consultant: ConsultantProfile = Depends(get_current_consultant),
    store: DocumentStore = Depends(get_store)
):
    """Cancel an upcoming appointment (requires {"confirmed": true})"""
    confirmed = confirmation.confirmed if confirmation else False
    return await run_booking_command(store, booking_id, current_consultant.id, BookingAction.CANCEL, confirmed)


@router.websocket("/live")
async def bookings_live(websocket: WebSocket):
    """
    Live booking tabs

    Client frames:
        {"action": "tab", "tab": "upcoming"}
        {"action": "accept" | "complete", "booking_id": "..."}
        {"action": "decline" | "cancel", "booking_id": "...", "confirmed": true}
    """
    consultant = await authenticate_websocket(websocket)
    if consultant is None:
        return

    view = BookingRequestsView(get_ws_store(websocket), consultant.id)

    async def handle(frame):
        action = frame.get("action")
        if action == "tab":
            try:
                view.set_tab(frame.get("tab"))
            except ValueError:
                raise PreconditionError(f"Unknown tab: {frame.get('tab')!r}")
            return

        try:
            booking_action = BookingAction(action)
        except ValueError:
            raise unknown_action(frame)
        booking_id = frame.get("booking_id")
        if not booking_id:
            raise PreconditionError("booking_id is required.")
        await view.run(str(booking_id), booking_action, bool(frame.get("confirmed", False)))

    await serve_view(websocket, view, handle)
