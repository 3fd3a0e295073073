"""
Connection manager for real-time notifications.

Keeps track of authenticated WebSocket connections per user and per named
room, and fans events out to them. Delivery is best effort: a recipient that
is not connected simply does not get the event.
"""

import logging
from collections import defaultdict
from typing import Any, Dict, Iterable, Optional, Set

from fastapi import WebSocket
from fastapi.encoders import jsonable_encoder

from app.utils.document_utils import serialize_value

logger = logging.getLogger(__name__)

COMMON_CHAT_ROOM = "common_chat"


def topic_room(room_id: Any) -> str:
    return f"room_{room_id}"


class ConnectionManager:
    """Registry of live WebSocket connections"""

    def __init__(self) -> None:
        self._user_connections: Dict[str, Set[WebSocket]] = defaultdict(set)
        self._rooms: Dict[str, Set[WebSocket]] = defaultdict(set)
        self._connection_users: Dict[WebSocket, str] = {}

    async def connect(self, websocket: WebSocket, user_id: str, accept: bool = True) -> None:
        """Register a connection on the user's personal channel"""
        if accept:
            await websocket.accept()
        user_key = str(user_id)
        self._user_connections[user_key].add(websocket)
        self._connection_users[websocket] = user_key
        logger.info("User %s connected (%d active connections)", user_key, self.active_connections)

    def disconnect(self, websocket: WebSocket) -> Optional[str]:
        """Remove a connection from its user channel and every room"""
        user_key = self._connection_users.pop(websocket, None)
        if user_key is not None:
            connections = self._user_connections.get(user_key)
            if connections is not None:
                connections.discard(websocket)
                if not connections:
                    del self._user_connections[user_key]
        for room in list(self._rooms):
            members = self._rooms[room]
            members.discard(websocket)
            if not members:
                del self._rooms[room]
        if user_key is not None:
            logger.info("User %s disconnected", user_key)
        return user_key

    def join_room(self, websocket: WebSocket, room: str) -> None:
        self._rooms[room].add(websocket)

    def leave_room(self, websocket: WebSocket, room: str) -> None:
        members = self._rooms.get(room)
        if members is None:
            return
        members.discard(websocket)
        if not members:
            del self._rooms[room]

    def is_online(self, user_id: Any) -> bool:
        return bool(self._user_connections.get(str(user_id)))

    def room_members(self, room: str) -> Set[WebSocket]:
        return set(self._rooms.get(room, set()))

    @property
    def active_connections(self) -> int:
        return len(self._connection_users)

    @property
    def online_users(self) -> Set[str]:
        return set(self._user_connections)

    async def send_personal(self, websocket: WebSocket, event: str, data: Any = None) -> bool:
        """Send one event frame; a failing socket is deregistered"""
        frame = {"event": event, "data": jsonable_encoder(serialize_value(data))}
        try:
            await websocket.send_json(frame)
            return True
        except Exception as e:
            logger.warning("Dropping connection after failed send of %s: %s", event, e)
            self.disconnect(websocket)
            return False

    async def _send_many(self, connections: Iterable[WebSocket], event: str, data: Any) -> int:
        delivered = 0
        for websocket in list(connections):
            if await self.send_personal(websocket, event, data):
                delivered += 1
        return delivered

    async def emit_to_user(self, user_id: Any, event: str, data: Any = None) -> int:
        """Send an event to every connection of a user, returns deliveries"""
        connections = self._user_connections.get(str(user_id), set())
        if not connections:
            logger.debug("User %s offline, %s not delivered", user_id, event)
            return 0
        return await self._send_many(connections, event, data)

    async def emit_to_users(self, user_ids: Iterable[Any], event: str, data: Any = None) -> int:
        delivered = 0
        for user_id in {str(uid) for uid in user_ids}:
            delivered += await self.emit_to_user(user_id, event, data)
        return delivered

    async def emit_to_room(
        self, room: str, event: str, data: Any = None, exclude: Optional[WebSocket] = None
    ) -> int:
        members = [ws for ws in self._rooms.get(room, set()) if ws is not exclude]
        return await self._send_many(members, event, data)

    async def broadcast(self, event: str, data: Any = None) -> int:
        return await self._send_many(list(self._connection_users), event, data)


# Global instance
connection_manager = ConnectionManager()
