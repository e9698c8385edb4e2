# file: controllers/notification.py

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, WebSocket, WebSocketDisconnect, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.database.connection import AsyncSessionLocal, get_db
from app.database.models import User
from app.models.schedule import TokenRegistration, TokenRegistryResponse
from app.services import schedule_store
from app.services.fallback_poller import ClientFallbackPoller
from app.services.firebase_auth import decode_firebase_token, get_current_user
from app.services.notification_dispatcher import PERMISSION_STATES, LocalAlertChannel

logger = logging.getLogger(__name__)

router = APIRouter()


def get_session_factory():
    return AsyncSessionLocal


@router.get("/tokens", response_model=TokenRegistryResponse)
async def get_push_tokens(
        current_user: User = Depends(get_current_user),
        db: AsyncSession = Depends(get_db),
):
    return TokenRegistryResponse(tokens=await schedule_store.get_user_tokens(db, current_user.id))


@router.post("/tokens", response_model=TokenRegistryResponse)
async def register_push_token(
        registration: TokenRegistration,
        current_user: User = Depends(get_current_user),
        db: AsyncSession = Depends(get_db),
):
    """
    Adds a device token to the current user's push registry. Registering the
    same token twice is a no-op.
    """
    tokens = await schedule_store.add_token(db, current_user.id, registration.token)
    return TokenRegistryResponse(tokens=tokens)


@router.websocket("/ws")
async def notification_session(
        websocket: WebSocket,
        token: Optional[str] = None,
        permission: str = "default",
        session_factory=Depends(get_session_factory),
):
    """
    Session channel for the client fallback poller.

    Server -> client: {"type": "permission_request"} and
    {"type": "notification", "reminder_id", "title", "body", "sent_at"}.
    Client -> server: {"type": "permission", "state": "granted"|"denied"|"unsupported"}.
    The poller lives exactly as long as this socket.
    """
    try:
        decoded_token = decode_firebase_token(token)
    except HTTPException:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    async with session_factory() as db:
        user = await schedule_store.get_or_create_user(db, decoded_token['uid'], decoded_token.get('email'))
        user_id = user.id

    await websocket.accept()
    if permission not in PERMISSION_STATES or permission == "prompted":
        permission = "default"
    channel = LocalAlertChannel(websocket.send_json, permission=permission)
    poller = ClientFallbackPoller(user_id, channel, session_factory=session_factory)
    try:
        await poller.start()
        while True:
            message = await websocket.receive_json()
            if message.get("type") == "permission":
                try:
                    channel.resolve_permission(message.get("state"))
                except ValueError:
                    logger.warning("Ignoring unknown permission state %r from user %s", message.get("state"), user_id)
    except WebSocketDisconnect:
        logger.info("Notification session closed for user %s", user_id)
    finally:
        await poller.stop()
