"""Chat inbox endpoints"""
from fastapi import APIRouter, Depends, WebSocket, status
from typing import List
import logging

from portal.api.v1.live import authenticate_websocket, serve_view, unknown_action
from portal.dependencies.auth import get_current_consultant, get_store, get_ws_store
from portal.exceptions import NotFoundError, PreconditionError
from portal.schemas.commands import MessageCreate
from portal.schemas.records import Chat, ConsultantProfile, Message
from portal.schemas.views import ChatInboxState, MessageRow
from portal.services.aggregation import messages_query
from portal.services.commands import ChatCommands
from portal.services.projections import message_rows
from portal.services.views import ChatInboxView
from portal.store.base import DocumentStore

logger = logging.getLogger(__name__)

router = APIRouter()


async def get_owned_chat(store: DocumentStore, chat_id: str, consultant_id: str) -> Chat:
    doc = await store.get("chats", chat_id)
    if doc is None:
        raise NotFoundError("Conversation not found.")
    chat = Chat.from_document(doc)
    if chat.consultant_id != consultant_id:
        raise NotFoundError("Conversation not found.")
    return chat


@router.get("", response_model=ChatInboxState)
async def list_conversations(
    current_consultant: ConsultantProfile = Depends(get_current_consultant),
    store: DocumentStore = Depends(get_store)
):
    """
    Conversations with last message and unread markers, newest first
    """
    async with ChatInboxView(store, current_consultant.id, current_consultant.name) as view:
        await view.wait_idle()
        return view.snapshot()


@router.get("/{chat_id}/messages", response_model=List[MessageRow])
async def list_messages(
    chat_id: str,
    current_consultant: ConsultantProfile = Depends(get_current_consultant),
    store: DocumentStore = Depends(get_store)
):
    """Messages of one conversation, oldest first"""
    chat = await get_owned_chat(store, chat_id, current_consultant.id)
    documents = await store.fetch(messages_query(chat.id))
    return message_rows(
        [Message.from_document(doc, chat.id) for doc in documents],
        current_consultant.id
    )


@router.post("/{chat_id}/seen", response_model=Chat)
async def mark_conversation_seen(
    chat_id: str,
    current_consultant: ConsultantProfile = Depends(get_current_consultant),
    store: DocumentStore = Depends(get_store)
):
    """Mark a conversation as seen by the consultant"""
    await get_owned_chat(store, chat_id, current_consultant.id)
    document = await ChatCommands(store).mark_seen(chat_id)
    return Chat.from_document(document)


@router.post("/{chat_id}/messages", response_model=Message, status_code=status.HTTP_201_CREATED)
async def send_message(
    chat_id: str,
    message: MessageCreate,
    current_consultant: ConsultantProfile = Depends(get_current_consultant),
    store: DocumentStore = Depends(get_store)
):
    """Send a message in a conversation; the conversation is marked as seen first"""
    await get_owned_chat(store, chat_id, current_consultant.id)
    if not message.text.strip():
        raise PreconditionError("Cannot send an empty message.")

    commands = ChatCommands(store)
    await commands.mark_seen(chat_id)
    document = await commands.send_message(
        chat_id,
        current_consultant.id,
        current_consultant.name,
        message.text
    )
    return Message.from_document(document, chat_id)


@router.websocket("/live")
async def chats_live(websocket: WebSocket):
    """
    Live chat inbox

    Client frames:
        {"action": "select", "chat_id": "..."}
        {"action": "deselect"}
        {"action": "send", "text": "..."}
    """
    consultant = await authenticate_websocket(websocket)
    if consultant is None:
        return

    view = ChatInboxView(get_ws_store(websocket), consultant.id, consultant.name)

    async def handle(frame):
        action = frame.get("action")
        if action == "select":
            if not frame.get("chat_id"):
                raise PreconditionError("chat_id is required.")
            await view.select(str(frame["chat_id"]))
        elif action == "deselect":
            view.deselect()
        elif action == "send":
            await view.send(str(frame.get("text") or ""))
        else:
            raise unknown_action(frame)

    await serve_view(websocket, view, handle)
