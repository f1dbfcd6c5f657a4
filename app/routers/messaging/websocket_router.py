# app/routers/messaging/websocket_router.py
from uuid import UUID
from fastapi import APIRouter, WebSocket, WebSocketDisconnect, Depends, Query
from pydantic import ValidationError as PydanticValidationError
import asyncio
import json
import logging

from ...core.change_feed import ChangeFeed
from ...core.config import settings
from ...core.exceptions import MessagingException
from ...schemas.messaging_schemas import SendMessageRequest
from ...services.chat.participants import ParticipantDirectory
from ...services.chat.session import MessagingSession
from ...services.chat.websocket_manager import websocket_manager
from .dependencies import get_change_feed, get_participant_directory, get_session_factory

logger = logging.getLogger(__name__)
router = APIRouter()

UNAUTHORIZED_CLOSE_CODE = 4401


def _key(frame: dict) -> UUID:
    value = frame.get("key")
    if not value:
        raise ValueError("key is required")
    return UUID(str(value))


def _history_limit(frame: dict) -> int:
    """Requested page size, capped at the configured history limit"""
    limit = frame.get("limit")
    if limit is None:
        return settings.message_history_limit
    if isinstance(limit, bool) or not isinstance(limit, int) or limit < 1:
        raise ValueError("limit must be a positive integer")
    return min(limit, settings.message_history_limit)


async def _keep_alive(session: MessagingSession):
    """Refresh last_seen while the socket stays open"""
    while True:
        await asyncio.sleep(settings.presence_heartbeat_seconds)
        await session.heartbeat()


async def _handle_frame(session: MessagingSession, frame: dict):
    """Run one client frame; replies go back through the session's own socket"""
    if not isinstance(frame, dict):
        raise ValueError("frame must be an object")
    frame_type = frame.get("type")

    if frame_type == "typing":
        await session.keystroke(_key(frame))

    elif frame_type == "stop_typing":
        await session.stop_typing(_key(frame))

    elif frame_type == "send_message":
        request = SendMessageRequest.model_validate(frame)
        message = await session.send_message(request)
        await session.push({
            "type": "message_sent",
            "message": message.model_dump(mode="json")
        })

    elif frame_type == "mark_read":
        key = _key(frame)
        count = await session.mark_read(key)
        await session.push({
            "type": "messages_read",
            "key": str(key),
            "count": count
        })

    elif frame_type == "open_conversation":
        key = _key(frame)
        history = await session.history(key, _history_limit(frame))
        await session.push({
            "type": "history",
            "key": str(key),
            "messages": [m.model_dump(mode="json") for m in history]
        })

        count = await session.mark_read(key)
        await session.push({
            "type": "messages_read",
            "key": str(key),
            "count": count
        })

    elif frame_type == "heartbeat":
        await session.heartbeat()

    else:
        await session.push({
            "type": "error",
            "message": f"Unknown message type: {frame_type}"
        })


@router.websocket("/ws/messaging")
async def websocket_endpoint(
    websocket: WebSocket,
    token: str = Query(...),
    directory: ParticipantDirectory = Depends(get_participant_directory),
    feed: ChangeFeed = Depends(get_change_feed),
    session_factory=Depends(get_session_factory)
):
    """WebSocket endpoint for real-time messaging"""
    participant = await directory.resolve_current_participant(token)
    if participant is None:
        await websocket.close(code=UNAUTHORIZED_CLOSE_CODE)
        return

    await websocket_manager.connect(websocket, participant)

    async def push(frame: dict):
        await websocket_manager.send_personal_message(frame, participant.participant_id, websocket)

    session = MessagingSession(
        participant, directory, session_factory, feed, push,
        typing_ttl=settings.typing_ttl_seconds,
    )
    keep_alive = None

    try:
        await session.start()
        keep_alive = asyncio.create_task(_keep_alive(session))

        while True:
            # Receive frame from client
            data = await websocket.receive_text()
            try:
                frame = json.loads(data)
                await _handle_frame(session, frame)
            except MessagingException as e:
                await session.push({
                    "type": "error",
                    "message": e.message,
                    "status_code": e.status_code
                })
            except (PydanticValidationError, ValueError) as e:
                # json.JSONDecodeError is a ValueError
                await session.push({
                    "type": "error",
                    "message": f"Invalid frame: {e}"
                })

    except WebSocketDisconnect:
        logger.info(f"Participant {participant.participant_id} disconnected from messaging")
    finally:
        if keep_alive is not None:
            keep_alive.cancel()
        await session.close()
        websocket_manager.disconnect(participant.participant_id, websocket)
