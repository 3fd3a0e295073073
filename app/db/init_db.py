import logging

from pymongo import ASCENDING, DESCENDING

from app.db.mongodb import mongodb

logger = logging.getLogger(__name__)


async def init_database():
    """Initialize database with collections and indexes"""
    try:
        db = mongodb.get_database()

        # Users
        await db.users.create_index("email", unique=True)
        await db.users.create_index("username", unique=True, sparse=True)
        await db.users.create_index([("gender", ASCENDING), ("is_active", ASCENDING)])

        # Room listings
        await db.room_listings.create_index("listed_by")
        await db.room_listings.create_index([("is_active", ASCENDING), ("status", ASCENDING)])
        await db.room_listings.create_index("current_room.hostel_name")
        await db.room_listings.create_index("available_till")
        await db.room_listings.create_index([("created_at", DESCENDING)])

        # Match requests: one per requester and listing
        await db.match_requests.create_index([("requester_id", ASCENDING), ("listing_id", ASCENDING)], unique=True)
        await db.match_requests.create_index([("listing_id", ASCENDING), ("status", ASCENDING)])
        await db.match_requests.create_index("swap_details.swap_state")
        await db.match_requests.create_index("expires_at")

        # Direct messages
        await db.direct_messages.create_index([("sender_id", ASCENDING), ("receiver_id", ASCENDING), ("created_at", DESCENDING)])
        await db.direct_messages.create_index([("receiver_id", ASCENDING), ("is_read", ASCENDING)])

        # Common chat
        await db.common_chat_messages.create_index([("created_at", DESCENDING)])
        await db.common_chat_messages.create_index("is_pinned")

        # Events
        await db.events.create_index([("status", ASCENDING), ("start_date", ASCENDING)])
        await db.events.create_index("submitted_by")
        await db.events.create_index("registered_users.user_id")

        # Courses
        await db.courses.create_index([("user_id", ASCENDING), ("course_code", ASCENDING), ("is_active", ASCENDING)])

        # Friend requests
        await db.friend_requests.create_index([("sender_id", ASCENDING), ("receiver_id", ASCENDING), ("status", ASCENDING)])
        await db.friend_requests.create_index([("receiver_id", ASCENDING), ("status", ASCENDING)])

        # Room update requests
        await db.room_update_requests.create_index([("user_id", ASCENDING), ("status", ASCENDING)])

        logger.info("Database indexes created successfully")

    except Exception as e:
        logger.error("Error initializing database: %s", e)
        raise
