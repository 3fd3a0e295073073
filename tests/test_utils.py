"""
Test utilities for generating test data
"""
import random
import string
from datetime import timedelta
from typing import Any, Dict, Iterable, Optional
from unittest.mock import AsyncMock, MagicMock

from bson import ObjectId

from app.utils.document_utils import utcnow


def make_cursor(docs: Iterable[dict]) -> MagicMock:
    """Async cursor mock; sort/skip/limit chain back to the cursor"""
    cursor = MagicMock()
    cursor.sort.return_value = cursor
    cursor.skip.return_value = cursor
    cursor.limit.return_value = cursor
    cursor.__aiter__.return_value = list(docs)
    return cursor


def make_websocket() -> AsyncMock:
    """WebSocket mock recording sent frames"""
    websocket = AsyncMock()
    websocket.send_json = AsyncMock()
    return websocket


def generate_random_name(length: int = 8) -> str:
    return "".join(random.choices(string.ascii_lowercase, k=length))


def generate_test_room(hostel_name: str = None, room_type: str = "Single", **overrides) -> Dict[str, Any]:
    """Generate a room with random values"""
    room = {
        "hostel_name": hostel_name or f"Hostel {random.choice('ABCDEF')}",
        "room_number": str(random.randint(100, 499)),
        "block": random.choice(["A", "B", "C"]),
        "room_type": room_type,
        "floor": random.randint(0, 4),
        "amenities": ["WiFi"],
    }
    room.update(overrides)
    return room


def generate_test_user(
    user_id: ObjectId = None,
    gender: str = "Male",
    current_room: Optional[dict] = None,
    is_active: bool = True,
    **overrides,
) -> Dict[str, Any]:
    """Generate a user document with random values"""
    name = generate_random_name()
    user = {
        "_id": user_id or ObjectId(),
        "email": f"{name}@example.com",
        "password_hash": "not-a-real-hash",
        "full_name": name.title(),
        "username": name,
        "gender": gender,
        "profile_picture": None,
        "current_room": current_room if current_room is not None else generate_test_room(),
        "exchange_preferences": {},
        "friends": [],
        "is_active": is_active,
        "created_at": utcnow(),
    }
    user.update(overrides)
    return user


def generate_test_listing(
    listing_id: ObjectId = None,
    listed_by: ObjectId = None,
    status: str = "Open",
    is_active: bool = True,
    gender_preference: str = "Male",
    days_left: int = 30,
    **overrides,
) -> Dict[str, Any]:
    """Generate a room listing document with random values"""
    now = utcnow()
    listing = {
        "_id": listing_id or ObjectId(),
        "title": "Single in Hostel A - Exchange",
        "description": "Quiet room near the library",
        "listed_by": listed_by or ObjectId(),
        "current_room": generate_test_room(rent=random.randint(3000, 9000)),
        "desired_room": {},
        "status": status,
        "urgency": "Medium",
        "available_from": now,
        "available_till": now + timedelta(days=days_left),
        "interested_users": [],
        "views": 0,
        "is_active": is_active,
        "tags": ["Exchange"],
        "gender_preference": gender_preference,
        "created_at": now,
        "updated_at": now,
    }
    listing.update(overrides)
    return listing


def generate_test_match_request(
    request_id: ObjectId = None,
    requester_id: ObjectId = None,
    listing_id: ObjectId = None,
    status: str = "Pending",
    approvals: list = None,
    swap_details: dict = None,
    version: int = 0,
    **overrides,
) -> Dict[str, Any]:
    """Generate a match request document"""
    now = utcnow()
    request = {
        "_id": request_id or ObjectId(),
        "requester_id": requester_id or ObjectId(),
        "listing_id": listing_id or ObjectId(),
        "message": "I would like to swap rooms with you",
        "status": status,
        "approvals": approvals or [],
        "swap_details": swap_details or {"completed": False, "swap_state": "none"},
        "priority": "Medium",
        "expires_at": now + timedelta(days=7),
        "is_active": True,
        "version": version,
        "created_at": now,
        "updated_at": now,
    }
    request.update(overrides)
    return request
