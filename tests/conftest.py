"""
Pytest configuration and fixtures for testing
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from app.services.connection_manager import ConnectionManager


@pytest.fixture
def mock_db():
    """Mock database whose collections answer awaited calls"""
    db = MagicMock()
    for name in (
        "users",
        "room_listings",
        "match_requests",
        "direct_messages",
        "common_chat_messages",
        "events",
        "courses",
        "friend_requests",
    ):
        collection = getattr(db, name)
        collection.find_one = AsyncMock(return_value=None)
        collection.find_one_and_update = AsyncMock(return_value=None)
        collection.insert_one = AsyncMock()
        collection.update_one = AsyncMock()
        collection.update_many = AsyncMock()
        collection.count_documents = AsyncMock(return_value=0)
    return db


@pytest.fixture
def mock_mongodb(mock_db):
    """Stand-in for the global mongodb handle, returning mock_db"""
    handle = MagicMock()
    handle.get_database.return_value = mock_db
    return handle


@pytest.fixture
def manager():
    """Fresh connection manager"""
    return ConnectionManager()
