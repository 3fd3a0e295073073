from fastapi import APIRouter

from app.api.v1.endpoints import (
    ai, aliases, attendance, auth, common_chat, events, friends, matches, messages, realtime, rooms, users
)

api_router = APIRouter()
api_router.include_router(
    auth.router, prefix="/auth", tags=["auth"]
)
api_router.include_router(
    users.router, prefix="/users", tags=["users"]
)
api_router.include_router(
    rooms.router, prefix="/rooms", tags=["rooms"]
)
api_router.include_router(
    matches.router, prefix="/matches", tags=["matches"]
)
api_router.include_router(
    messages.router, prefix="/messages", tags=["messages"]
)
api_router.include_router(
    common_chat.router, prefix="/common-chat", tags=["common-chat"]
)
api_router.include_router(
    events.router, prefix="/events", tags=["events"]
)
api_router.include_router(
    attendance.router, prefix="/attendance", tags=["attendance"]
)
api_router.include_router(
    friends.router, prefix="/friends", tags=["friends"]
)
api_router.include_router(
    ai.router, prefix="/ai", tags=["ai"]
)
api_router.include_router(
    aliases.router, tags=["aliases"]
)
api_router.include_router(
    realtime.router, tags=["realtime"]
)
