"""
WebSocket endpoint for real-time events.

Clients connect to `/ws?token=<jwt>` and exchange `{"event", "data"}` JSON
frames. Every connection is registered on the user's personal channel;
topic rooms are joined explicitly.
"""

import json
import logging
from typing import Any, Awaitable, Callable, Dict, Optional

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect

from app.core.security import verify_access_token
from app.exceptions import AppError, ValidationError
from app.models.common_chat import CommonChatMessageCreate
from app.models.status_enums import MessageType
from app.models.user import UserSummary
from app.services.common_chat_service import common_chat_service
from app.services.connection_manager import COMMON_CHAT_ROOM, connection_manager, topic_room
from app.services.message_service import message_service
from app.services.user_service import user_service
from app.utils.document_utils import utcnow

router = APIRouter()
logger = logging.getLogger(__name__)

# Application-defined close code for rejected credentials
WS_CLOSE_UNAUTHORIZED = 4401

Handler = Callable[[WebSocket, dict, dict], Awaitable[None]]


async def authenticate_websocket(token: Optional[str]) -> Optional[dict]:
    if not token:
        return None
    payload = verify_access_token(token)
    if payload is None:
        return None
    return await user_service.get_active_user(str(payload["user_id"]))


async def handle_send_direct_message(websocket: WebSocket, user: dict, data: dict) -> None:
    if not data.get("receiver_id") or not data.get("content"):
        raise ValidationError("Missing required fields")
    # The service emits directMessage to both parties
    await message_service.send_message(
        str(user["_id"]), data["receiver_id"], data["content"], data.get("listing_id")
    )


async def handle_mark_as_read(websocket: WebSocket, user: dict, data: dict) -> None:
    if not data.get("message_id"):
        raise ValidationError("Message ID is required")
    await message_service.mark_as_read(data["message_id"], str(user["_id"]))


async def handle_typing(websocket: WebSocket, user: dict, data: dict) -> None:
    if not data.get("receiver_id"):
        raise ValidationError("Receiver ID is required")
    await connection_manager.emit_to_user(
        data["receiver_id"],
        "typing",
        {"user_id": str(user["_id"]), "full_name": user.get("full_name"), "is_typing": bool(data.get("is_typing"))},
    )


async def handle_join_common_chat(websocket: WebSocket, user: dict, data: dict) -> None:
    connection_manager.join_room(websocket, COMMON_CHAT_ROOM)
    await connection_manager.send_personal(websocket, "joinedCommonChat", {})


async def handle_leave_common_chat(websocket: WebSocket, user: dict, data: dict) -> None:
    connection_manager.leave_room(websocket, COMMON_CHAT_ROOM)
    await connection_manager.send_personal(websocket, "leftCommonChat", {})


async def handle_send_common_chat_message(websocket: WebSocket, user: dict, data: dict) -> None:
    if not data.get("content"):
        raise ValidationError("Message content is required")
    message = CommonChatMessageCreate(
        message_type=data.get("message_type") or MessageType.TEXT.value,
        content=data["content"],
        is_anonymous=bool(data.get("is_anonymous", False)),
        reply_to=data.get("reply_to"),
    )
    await common_chat_service.send_message(user, message)


async def handle_vote_on_poll(websocket: WebSocket, user: dict, data: dict) -> None:
    if not data.get("message_id"):
        raise ValidationError("Message ID is required")
    # The service publishes pollUpdated to the common chat room
    await common_chat_service.vote_on_poll(data["message_id"], str(user["_id"]), data.get("option_index"))


async def handle_add_reaction(websocket: WebSocket, user: dict, data: dict) -> None:
    if not data.get("message_id"):
        raise ValidationError("Message ID is required")
    await common_chat_service.add_reaction(data["message_id"], str(user["_id"]), data.get("reaction"))


def _positive_int(data: dict, key: str, default: int, maximum: int) -> int:
    value = data.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise ValidationError(f"{key} must be a positive integer")
    return min(value, maximum)


async def handle_get_recent_messages(websocket: WebSocket, user: dict, data: dict) -> None:
    messages = await common_chat_service.get_recent_messages(
        _positive_int(data, "limit", 50, 100), data.get("before")
    )
    await connection_manager.send_personal(websocket, "recentMessages", {"messages": messages})


async def handle_get_conversation(websocket: WebSocket, user: dict, data: dict) -> None:
    if not data.get("other_user_id"):
        raise ValidationError("Other user ID is required")
    conversation = await message_service.get_conversation(
        str(user["_id"]),
        data["other_user_id"],
        _positive_int(data, "page", 1, 10_000),
        _positive_int(data, "limit", 50, 100),
    )
    await connection_manager.send_personal(websocket, "conversation", conversation)


def _room_id(data: dict) -> str:
    room_id = data.get("room_id")
    if not room_id:
        raise ValidationError("Room ID is required")
    return str(room_id)


async def handle_join_room(websocket: WebSocket, user: dict, data: dict) -> None:
    room_id = _room_id(data)
    connection_manager.join_room(websocket, topic_room(room_id))
    await connection_manager.send_personal(websocket, "joinedRoom", {"room_id": room_id})


async def handle_leave_room(websocket: WebSocket, user: dict, data: dict) -> None:
    room_id = _room_id(data)
    connection_manager.leave_room(websocket, topic_room(room_id))
    await connection_manager.send_personal(websocket, "leftRoom", {"room_id": room_id})


async def handle_send_room_message(websocket: WebSocket, user: dict, data: dict) -> None:
    room_id = _room_id(data)
    content = (data.get("content") or "").strip()
    if not content:
        raise ValidationError("Room ID and content are required")
    await connection_manager.emit_to_room(
        topic_room(room_id),
        "roomMessage",
        {
            "room_id": room_id,
            "content": content,
            "sender": UserSummary.from_db_doc(user).model_dump(),
            "created_at": utcnow(),
        },
    )


HANDLERS: Dict[str, Handler] = {
    "sendDirectMessage": handle_send_direct_message,
    "markAsRead": handle_mark_as_read,
    "typing": handle_typing,
    "joinCommonChat": handle_join_common_chat,
    "leaveCommonChat": handle_leave_common_chat,
    "sendCommonChatMessage": handle_send_common_chat_message,
    "voteOnPoll": handle_vote_on_poll,
    "addReaction": handle_add_reaction,
    "getRecentMessages": handle_get_recent_messages,
    "getConversation": handle_get_conversation,
    "joinRoom": handle_join_room,
    "leaveRoom": handle_leave_room,
    "sendRoomMessage": handle_send_room_message,
}


async def dispatch(websocket: WebSocket, user: dict, frame: Any) -> None:
    """Run the handler for one inbound frame; failures go back as an error event"""
    if not isinstance(frame, dict) or not isinstance(frame.get("event"), str):
        await connection_manager.send_personal(websocket, "error", {"message": "Invalid frame"})
        return

    event = frame["event"]
    handler = HANDLERS.get(event)
    if handler is None:
        await connection_manager.send_personal(websocket, "error", {"message": f"Unknown event: {event}"})
        return

    data = frame.get("data") or {}
    if not isinstance(data, dict):
        await connection_manager.send_personal(websocket, "error", {"message": "Event data must be an object"})
        return

    try:
        await handler(websocket, user, data)
    except AppError as e:
        await connection_manager.send_personal(websocket, "error", {"event": event, "message": e.message})
    except Exception as e:
        logger.error("WebSocket handler %s failed for user %s: %s", event, user["_id"], e, exc_info=True)
        await connection_manager.send_personal(websocket, "error", {"event": event, "message": "Failed to process event"})


@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket, token: Optional[str] = Query(None)):
    # Accept first so the close code reaches the client
    await websocket.accept()
    user = await authenticate_websocket(token)
    if user is None:
        await websocket.close(code=WS_CLOSE_UNAUTHORIZED)
        return

    await connection_manager.connect(websocket, str(user["_id"]), accept=False)
    try:
        while True:
            raw = await websocket.receive_text()
            try:
                frame = json.loads(raw)
            except json.JSONDecodeError:
                await connection_manager.send_personal(websocket, "error", {"message": "Invalid JSON"})
                continue
            await dispatch(websocket, user, frame)
    except WebSocketDisconnect:
        pass
    finally:
        connection_manager.disconnect(websocket)
