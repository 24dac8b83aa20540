"""
Authentication dependencies for FastAPI
"""
from fastapi import Depends, HTTPException, Request, WebSocket, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from typing import Optional

from portal.schemas.records import ConsultantProfile
from portal.store.base import DocumentStore
from portal.utils.auth import decode_access_token

security = HTTPBearer(auto_error=False)  # Don't auto-raise error, check cookie first


def get_store(request: Request) -> DocumentStore:
    """Document store created at startup"""
    return request.app.state.store


def get_ws_store(websocket: WebSocket) -> DocumentStore:
    return websocket.app.state.store


async def load_consultant(store: DocumentStore, token: Optional[str]) -> Optional[ConsultantProfile]:
    """
    Resolve a token to the consultant it was issued for

    Returns None when the token is missing, invalid or expired, or when no
    ``consultants/{sub}`` profile exists.
    """
    if not token:
        return None

    payload = decode_access_token(token)
    if payload is None:
        return None

    consultant_id: Optional[str] = payload.get("sub")
    if not consultant_id:
        return None

    doc = await store.get("consultants", consultant_id)
    if doc is None:
        return None
    return ConsultantProfile.from_document(doc)


async def get_current_consultant(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    store: DocumentStore = Depends(get_store)
) -> ConsultantProfile:
    """
    Get current consultant from the identity provider's token
    Supports both Authorization header and httpOnly cookie
    """
    # Try to get token from Authorization header first
    if credentials:
        token = credentials.credentials
    else:
        # Fallback to httpOnly cookie
        token = request.cookies.get("access_token")

    consultant = await load_consultant(store, token)
    if consultant is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return consultant


async def get_ws_consultant(websocket: WebSocket) -> Optional[ConsultantProfile]:
    """
    Consultant for a WebSocket handshake

    Browsers cannot set headers on WebSocket requests, so the token may also
    come as ``?token=`` or the ``access_token`` cookie.
    """
    token = None
    authorization = websocket.headers.get("authorization", "")
    if authorization.lower().startswith("bearer "):
        token = authorization[7:]
    token = token or websocket.query_params.get("token") or websocket.cookies.get("access_token")
    return await load_consultant(get_ws_store(websocket), token)
