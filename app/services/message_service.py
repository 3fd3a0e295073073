"""
Direct message service.

Conversations between two users, read receipts, edits, soft deletes and
the sync endpoints clients use to catch up after being offline.
"""

import logging
import re
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from pymongo import ReturnDocument

from app.db.mongodb import mongodb
from app.exceptions import AuthorizationError, NotFoundError, ValidationError
from app.models.user import USER_SUMMARY_PROJECTION, UserSummary
from app.services.connection_manager import connection_manager
from app.utils.document_utils import as_utc, parse_object_id, serialize_doc, to_object_id, utcnow

logger = logging.getLogger(__name__)

MAX_MESSAGE_LENGTH = 1000
EDIT_WINDOW = timedelta(hours=24)
SYNC_LIMIT = 500


class MessageService:
    """Service for direct messages between users"""

    async def _get_db(self):
        """Get database instance"""
        if mongodb.client is None:
            await mongodb.connect_to_mongo()
        return mongodb.get_database()

    async def _get_message_doc(self, message_id: str) -> dict:
        db = await self._get_db()
        message = await db.direct_messages.find_one(
            {"_id": to_object_id(message_id, "Message"), "is_deleted": {"$ne": True}}
        )
        if not message:
            raise NotFoundError("Message not found")
        return message

    async def _user_cards(self, user_ids: List[Any]) -> Dict[str, dict]:
        db = await self._get_db()
        cards = {}
        if user_ids:
            async for user in db.users.find({"_id": {"$in": list(set(user_ids))}}, USER_SUMMARY_PROJECTION):
                cards[str(user["_id"])] = UserSummary.from_db_doc(user).model_dump()
        return cards

    async def _serialize(self, messages: List[dict]) -> List[dict]:
        ids = [m["sender_id"] for m in messages] + [m["receiver_id"] for m in messages]
        cards = await self._user_cards(ids)
        result = []
        for message in messages:
            item = serialize_doc(message)
            item["sender"] = cards.get(str(message["sender_id"]))
            item["receiver"] = cards.get(str(message["receiver_id"]))
            result.append(item)
        return result

    @staticmethod
    def _between(user_id, other_id) -> Dict[str, Any]:
        return {
            "$or": [
                {"sender_id": user_id, "receiver_id": other_id},
                {"sender_id": other_id, "receiver_id": user_id},
            ],
            "is_deleted": {"$ne": True},
        }

    async def get_conversations(self, user_id: str, page: int = 1, limit: int = 20) -> List[dict]:
        """Latest message and unread count per conversation partner"""
        db = await self._get_db()
        object_id = to_object_id(user_id, "User")
        pipeline = [
            {"$match": {"$or": [{"sender_id": object_id}, {"receiver_id": object_id}], "is_deleted": {"$ne": True}}},
            {
                "$addFields": {
                    "partner_id": {"$cond": [{"$eq": ["$sender_id", object_id]}, "$receiver_id", "$sender_id"]}
                }
            },
            {"$sort": {"created_at": -1}},
            {
                "$group": {
                    "_id": "$partner_id",
                    "last_message": {"$first": "$$ROOT"},
                    "unread_count": {
                        "$sum": {
                            "$cond": [
                                {"$and": [{"$eq": ["$receiver_id", object_id]}, {"$eq": ["$is_read", False]}]},
                                1,
                                0,
                            ]
                        }
                    },
                }
            },
            {"$lookup": {"from": "users", "localField": "_id", "foreignField": "_id", "as": "partner"}},
            {"$unwind": "$partner"},
            {"$match": {"partner.is_active": True}},
            {"$sort": {"last_message.created_at": -1}},
            {"$skip": (page - 1) * limit},
            {"$limit": limit},
        ]

        conversations = []
        async for row in db.direct_messages.aggregate(pipeline):
            conversations.append(
                {
                    "partner_id": str(row["_id"]),
                    "partner": UserSummary.from_db_doc(row["partner"]).model_dump(),
                    "last_message": serialize_doc(row["last_message"], exclude=("partner_id",)),
                    "unread_count": row["unread_count"],
                }
            )
        return conversations

    async def get_conversation(self, user_id: str, other_user_id: str, page: int = 1, limit: int = 50) -> dict:
        """Messages with another user, oldest first; incoming ones are marked read"""
        db = await self._get_db()
        object_id = to_object_id(user_id, "User")
        other_id = to_object_id(other_user_id, "User")
        other = await db.users.find_one({"_id": other_id}, USER_SUMMARY_PROJECTION)
        if not other:
            raise NotFoundError("User not found")

        cursor = (
            db.direct_messages.find(self._between(object_id, other_id))
            .sort("created_at", -1)
            .skip((page - 1) * limit)
            .limit(limit)
        )
        messages = [message async for message in cursor]
        messages.reverse()

        result = await db.direct_messages.update_many(
            {"sender_id": other_id, "receiver_id": object_id, "is_read": False},
            {"$set": {"is_read": True, "read_at": utcnow()}},
        )
        if result.modified_count:
            await connection_manager.emit_to_user(
                str(other_id), "messagesRead", {"reader_id": str(object_id), "count": result.modified_count}
            )

        return {
            "messages": await self._serialize(messages),
            "other_user": UserSummary.from_db_doc(other).model_dump(),
            "page": page,
            "has_more": len(messages) == limit,
        }

    async def send_message(
        self, sender_id: str, receiver_id: str, content: Optional[str], listing_id: Optional[str] = None
    ) -> dict:
        if not receiver_id or not content or not content.strip():
            raise ValidationError("Receiver and message are required")
        content = content.strip()
        if len(content) > MAX_MESSAGE_LENGTH:
            raise ValidationError(f"Message cannot exceed {MAX_MESSAGE_LENGTH} characters")
        if str(sender_id) == str(receiver_id):
            raise ValidationError("You cannot send a message to yourself")

        db = await self._get_db()
        receiver = await db.users.find_one({"_id": parse_object_id(receiver_id, "receiver id")})
        if not receiver:
            raise NotFoundError("Receiver not found")
        if not receiver.get("is_active", True):
            raise ValidationError("Cannot send message to an inactive user")

        now = utcnow()
        message = {
            "sender_id": to_object_id(sender_id, "User"),
            "receiver_id": receiver["_id"],
            "message": content,
            "listing_id": parse_object_id(listing_id, "listing id") if listing_id else None,
            "is_read": False,
            "read_at": None,
            "is_edited": False,
            "edited_at": None,
            "is_deleted": False,
            "created_at": now,
            "updated_at": now,
        }
        result = await db.direct_messages.insert_one(message)
        message["_id"] = result.inserted_id

        payload = (await self._serialize([message]))[0]
        await connection_manager.emit_to_users([sender_id, receiver["_id"]], "directMessage", payload)
        await connection_manager.emit_to_user(str(receiver["_id"]), "newMessage", payload)
        return payload

    async def mark_as_read(self, message_id: str, user_id: str) -> dict:
        message = await self._get_message_doc(message_id)
        if str(message["receiver_id"]) != str(user_id):
            raise AuthorizationError("You can only mark messages sent to you as read")

        db = await self._get_db()
        updated = await db.direct_messages.find_one_and_update(
            {"_id": message["_id"]},
            {"$set": {"is_read": True, "read_at": message.get("read_at") or utcnow()}},
            return_document=ReturnDocument.AFTER,
        )
        await connection_manager.emit_to_user(
            str(message["sender_id"]), "messageRead", {"message_id": str(message["_id"]), "reader_id": str(user_id)}
        )
        return serialize_doc(updated)

    async def mark_all_as_read(self, user_id: str, other_user_id: str) -> int:
        db = await self._get_db()
        result = await db.direct_messages.update_many(
            {
                "sender_id": to_object_id(other_user_id, "User"),
                "receiver_id": to_object_id(user_id, "User"),
                "is_read": False,
            },
            {"$set": {"is_read": True, "read_at": utcnow()}},
        )
        return result.modified_count

    async def edit_message(self, message_id: str, user_id: str, content: str) -> dict:
        message = await self._get_message_doc(message_id)
        if str(message["sender_id"]) != str(user_id):
            raise AuthorizationError("You can only edit your own messages")
        if not content or not content.strip():
            raise ValidationError("Message cannot be empty")
        if len(content.strip()) > MAX_MESSAGE_LENGTH:
            raise ValidationError(f"Message cannot exceed {MAX_MESSAGE_LENGTH} characters")
        if utcnow() - as_utc(message["created_at"]) > EDIT_WINDOW:
            raise ValidationError("Messages can only be edited within 24 hours")

        db = await self._get_db()
        now = utcnow()
        updated = await db.direct_messages.find_one_and_update(
            {"_id": message["_id"]},
            {"$set": {"message": content.strip(), "is_edited": True, "edited_at": now, "updated_at": now}},
            return_document=ReturnDocument.AFTER,
        )
        payload = (await self._serialize([updated]))[0]
        await connection_manager.emit_to_user(str(message["receiver_id"]), "messageEdited", payload)
        return payload

    async def delete_message(self, message_id: str, user_id: str) -> None:
        message = await self._get_message_doc(message_id)
        if str(message["sender_id"]) != str(user_id):
            raise AuthorizationError("You can only delete your own messages")

        db = await self._get_db()
        await db.direct_messages.update_one(
            {"_id": message["_id"]}, {"$set": {"is_deleted": True, "deleted_at": utcnow()}}
        )
        await connection_manager.emit_to_user(
            str(message["receiver_id"]), "messageDeleted", {"message_id": str(message["_id"])}
        )

    async def search_messages(self, user_id: str, query: str, limit: int = 50) -> List[dict]:
        if not query or len(query.strip()) < 2:
            raise ValidationError("Search query must be at least 2 characters long")
        db = await self._get_db()
        object_id = to_object_id(user_id, "User")
        cursor = (
            db.direct_messages.find(
                {
                    "$or": [{"sender_id": object_id}, {"receiver_id": object_id}],
                    "is_deleted": {"$ne": True},
                    "message": {"$regex": re.escape(query.strip()), "$options": "i"},
                }
            )
            .sort("created_at", -1)
            .limit(limit)
        )
        return await self._serialize([message async for message in cursor])

    async def get_unread_count(self, user_id: str) -> int:
        db = await self._get_db()
        return await db.direct_messages.count_documents(
            {"receiver_id": to_object_id(user_id, "User"), "is_read": False, "is_deleted": {"$ne": True}}
        )

    async def sync_conversation(
        self, user_id: str, other_user_id: Optional[str], last_sync_timestamp: Optional[datetime] = None
    ) -> dict:
        """Messages exchanged with another user since the client's last sync"""
        if not other_user_id:
            raise ValidationError("Other user ID is required")
        db = await self._get_db()
        other = await db.users.find_one({"_id": to_object_id(other_user_id, "Other user")}, USER_SUMMARY_PROJECTION)
        if not other:
            raise NotFoundError("Other user not found")

        query = self._between(to_object_id(user_id, "User"), other["_id"])
        if last_sync_timestamp:
            query["created_at"] = {"$gt": as_utc(last_sync_timestamp)}

        cursor = db.direct_messages.find(query).sort("created_at", 1).limit(SYNC_LIMIT)
        messages = [message async for message in cursor]
        return {
            "messages": await self._serialize(messages),
            "sync_timestamp": utcnow().isoformat(),
            "other_user": UserSummary.from_db_doc(other).model_dump(),
        }

    async def get_sync_status(self, user_id: str) -> dict:
        db = await self._get_db()
        object_id = to_object_id(user_id, "User")
        last = await db.direct_messages.find_one(
            {"$or": [{"sender_id": object_id}, {"receiver_id": object_id}], "is_deleted": {"$ne": True}},
            {"created_at": 1},
            sort=[("created_at", -1)],
        )
        return {
            "last_activity": as_utc(last["created_at"]).isoformat() if last else None,
            "server_time": utcnow().isoformat(),
            "unread_count": await self.get_unread_count(user_id),
            "user_id": str(user_id),
        }


message_service = MessageService()
