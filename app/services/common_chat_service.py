"""
Common chat service for the hostel-wide chat room.

Supports text, image and poll messages, anonymous posting, reactions,
pinning and editing. Every change is pushed to the common chat room.
"""

import logging
import random
import re
from datetime import timedelta
from typing import List, Optional

from pymongo import ReturnDocument

from app.db.mongodb import mongodb
from app.exceptions import AuthorizationError, NotFoundError, ValidationError
from app.models.common_chat import (
    ALLOWED_REACTIONS,
    MAX_POLL_OPTIONS,
    MIN_POLL_OPTIONS,
    CommonChatMessageCreate,
)
from app.models.status_enums import MessageType
from app.models.user import USER_SUMMARY_PROJECTION, UserSummary
from app.services.connection_manager import COMMON_CHAT_ROOM, connection_manager
from app.utils.document_utils import as_utc, contains_id, serialize_doc, serialize_value, to_object_id, utcnow

logger = logging.getLogger(__name__)

MAX_TEXT_LENGTH = 1000
MAX_CAPTION_LENGTH = 200
MAX_QUESTION_LENGTH = 200
POLL_LIFETIME = timedelta(days=7)
EDIT_WINDOW = timedelta(hours=1)
MAX_PINNED = 10


class CommonChatService:
    """Service for the common chat room"""

    async def _get_db(self):
        """Get database instance"""
        if mongodb.client is None:
            await mongodb.connect_to_mongo()
        return mongodb.get_database()

    async def _get_message_doc(self, message_id: str) -> dict:
        db = await self._get_db()
        message = await db.common_chat_messages.find_one({"_id": to_object_id(message_id, "Message")})
        if not message:
            raise NotFoundError("Message not found")
        return message

    async def _serialize(self, messages: List[dict]) -> List[dict]:
        """Attach sender cards; anonymous messages never expose their sender"""
        db = await self._get_db()
        sender_ids = list({m["sender_id"] for m in messages if m.get("sender_id") and not m.get("is_anonymous")})
        cards = {}
        if sender_ids:
            async for user in db.users.find({"_id": {"$in": sender_ids}}, USER_SUMMARY_PROJECTION):
                cards[str(user["_id"])] = UserSummary.from_db_doc(user).model_dump()

        result = []
        for message in messages:
            item = serialize_doc(message, exclude=("sender_id",) if message.get("is_anonymous") else ())
            item["sender"] = None if message.get("is_anonymous") else cards.get(str(message.get("sender_id")))
            result.append(item)
        return result

    async def _publish(self, event: str, message: dict) -> dict:
        payload = (await self._serialize([message]))[0]
        await connection_manager.emit_to_room(COMMON_CHAT_ROOM, event, payload)
        return payload

    async def get_recent_messages(self, limit: int = 50, before: Optional[str] = None) -> List[dict]:
        """Pinned messages first, then recent ones oldest to newest"""
        db = await self._get_db()
        query = {"is_deleted": {"$ne": True}}
        if before:
            query["_id"] = {"$lt": to_object_id(before, "Message")}

        cursor = db.common_chat_messages.find(query).sort([("is_pinned", -1), ("created_at", -1)]).limit(limit)
        messages = [message async for message in cursor]
        pinned = [m for m in messages if m.get("is_pinned")]
        regular = [m for m in messages if not m.get("is_pinned")]
        regular.reverse()
        return await self._serialize(pinned + regular)

    async def send_message(self, user: dict, data: CommonChatMessageCreate) -> dict:
        if not data.message_type or not data.content:
            raise ValidationError("Message type and content are required")
        if data.message_type not in [t.value for t in MessageType]:
            raise ValidationError("Invalid message type")

        now = utcnow()
        message = {
            "message_type": data.message_type,
            "content": data.content,
            "is_anonymous": data.is_anonymous,
            "sender_id": user["_id"],
            "sender_name": f"Anonymous{random.randint(0, 999)}" if data.is_anonymous else user.get("full_name"),
            "reactions": [],
            "reply_to": None,
            "is_pinned": False,
            "is_edited": False,
            "is_deleted": False,
            "created_at": now,
            "updated_at": now,
        }

        if data.message_type == MessageType.POLL.value:
            options = data.poll_options or []
            if not data.poll_question or len(options) < MIN_POLL_OPTIONS:
                raise ValidationError(f"Poll requires a question and at least {MIN_POLL_OPTIONS} options")
            if len(options) > MAX_POLL_OPTIONS:
                raise ValidationError(f"Poll cannot have more than {MAX_POLL_OPTIONS} options")
            if len(data.poll_question) > MAX_QUESTION_LENGTH:
                raise ValidationError(f"Poll question cannot exceed {MAX_QUESTION_LENGTH} characters")
            message["poll"] = {
                "question": data.poll_question.strip(),
                "options": [{"text": option.strip(), "votes": [], "vote_count": 0} for option in options],
                "allow_multiple_votes": data.allow_multiple_votes,
                "expires_at": now + POLL_LIFETIME,
            }
        elif data.message_type == MessageType.IMAGE.value:
            message["image_url"] = data.content
            if data.image_caption:
                if len(data.image_caption) > MAX_CAPTION_LENGTH:
                    raise ValidationError(f"Image caption cannot exceed {MAX_CAPTION_LENGTH} characters")
                message["image_caption"] = data.image_caption.strip()
        else:
            if not data.content.strip():
                raise ValidationError("Text message cannot be empty")
            if len(data.content) > MAX_TEXT_LENGTH:
                raise ValidationError(f"Text message cannot exceed {MAX_TEXT_LENGTH} characters")
            message["content"] = data.content.strip()

        db = await self._get_db()
        if data.reply_to:
            reply = await db.common_chat_messages.find_one({"_id": to_object_id(data.reply_to, "Reply message")})
            if not reply:
                raise NotFoundError("Reply message not found")
            message["reply_to"] = reply["_id"]

        result = await db.common_chat_messages.insert_one(message)
        message["_id"] = result.inserted_id
        logger.info("Common chat %s message %s posted", data.message_type, result.inserted_id)
        return await self._publish("commonChatMessage", message)

    async def vote_on_poll(self, message_id: str, user_id: str, option_index) -> dict:
        """Toggle the user's vote on a poll option"""
        if isinstance(option_index, bool) or not isinstance(option_index, int) or option_index < 0:
            raise ValidationError("Valid option index is required")

        message = await self._get_message_doc(message_id)
        if message.get("message_type") != MessageType.POLL.value or not message.get("poll"):
            raise ValidationError("Message is not a poll")
        if message.get("is_deleted"):
            raise ValidationError("Cannot vote on a deleted message")
        poll = message["poll"]
        if option_index >= len(poll["options"]):
            raise ValidationError("Invalid option index")
        expires_at = as_utc(poll.get("expires_at"))
        if expires_at and expires_at < utcnow():
            raise ValidationError("This poll has expired")

        user_oid = to_object_id(user_id, "User")
        options = poll["options"]
        already_voted = contains_id(options[option_index].get("votes", []), user_oid)
        for index, option in enumerate(options):
            votes = [v for v in option.get("votes", []) if str(v) != str(user_oid)]
            if index == option_index and not already_voted:
                votes.append(user_oid)
            elif index != option_index and poll.get("allow_multiple_votes"):
                votes = option.get("votes", [])
            option["votes"] = votes
            option["vote_count"] = len(votes)

        db = await self._get_db()
        updated = await db.common_chat_messages.find_one_and_update(
            {"_id": message["_id"]},
            {"$set": {"poll.options": options, "updated_at": utcnow()}},
            return_document=ReturnDocument.AFTER,
        )
        return await self._publish("pollUpdated", updated)

    async def add_reaction(self, message_id: str, user_id: str, reaction: Optional[str]) -> dict:
        if not reaction or not isinstance(reaction, str):
            raise ValidationError("Reaction is required")
        if reaction not in ALLOWED_REACTIONS:
            raise ValidationError("Invalid reaction")

        message = await self._get_message_doc(message_id)
        if message.get("is_deleted"):
            raise ValidationError("Cannot react to deleted message")

        user_oid = to_object_id(user_id, "User")
        reactions = [r for r in message.get("reactions", []) if str(r.get("user_id")) != str(user_oid)]
        reactions.append({"user_id": user_oid, "reaction": reaction, "created_at": utcnow()})
        return await self._save_reactions(message, reactions)

    async def remove_reaction(self, message_id: str, user_id: str) -> dict:
        message = await self._get_message_doc(message_id)
        reactions = [r for r in message.get("reactions", []) if str(r.get("user_id")) != str(user_id)]
        return await self._save_reactions(message, reactions)

    async def _save_reactions(self, message: dict, reactions: List[dict]) -> dict:
        db = await self._get_db()
        await db.common_chat_messages.update_one({"_id": message["_id"]}, {"$set": {"reactions": reactions}})
        payload = {"message_id": str(message["_id"]), "reactions": serialize_value(reactions)}
        await connection_manager.emit_to_room(COMMON_CHAT_ROOM, "reactionUpdated", payload)
        return payload

    async def edit_message(self, message_id: str, user_id: str, content: str) -> dict:
        message = await self._get_message_doc(message_id)
        if message.get("is_deleted"):
            raise NotFoundError("Message not found")
        if message.get("is_anonymous") or str(message.get("sender_id")) != str(user_id):
            raise AuthorizationError("You can only edit your own messages")
        if message.get("message_type") != MessageType.TEXT.value:
            raise ValidationError("Only text messages can be edited")
        if utcnow() - as_utc(message["created_at"]) > EDIT_WINDOW:
            raise ValidationError("Messages can only be edited within 1 hour")
        if not content or not content.strip():
            raise ValidationError("Text message cannot be empty")
        if len(content) > MAX_TEXT_LENGTH:
            raise ValidationError(f"Text message cannot exceed {MAX_TEXT_LENGTH} characters")

        db = await self._get_db()
        now = utcnow()
        updated = await db.common_chat_messages.find_one_and_update(
            {"_id": message["_id"]},
            {"$set": {"content": content.strip(), "is_edited": True, "edited_at": now, "updated_at": now}},
            return_document=ReturnDocument.AFTER,
        )
        return await self._publish("commonChatMessageEdited", updated)

    async def delete_message(self, message_id: str, user_id: str) -> None:
        message = await self._get_message_doc(message_id)
        if str(message.get("sender_id")) != str(user_id):
            raise AuthorizationError("You can only delete your own messages")

        db = await self._get_db()
        await db.common_chat_messages.update_one(
            {"_id": message["_id"]}, {"$set": {"is_deleted": True, "is_pinned": False, "deleted_at": utcnow()}}
        )
        await connection_manager.emit_to_room(
            COMMON_CHAT_ROOM, "commonChatMessageDeleted", {"message_id": str(message["_id"])}
        )

    async def toggle_pin(self, message_id: str, user_id: str) -> dict:
        message = await self._get_message_doc(message_id)
        if message.get("is_deleted"):
            raise NotFoundError("Message not found")
        if str(message.get("sender_id")) != str(user_id):
            raise AuthorizationError("You can only pin your own messages")

        db = await self._get_db()
        updated = await db.common_chat_messages.find_one_and_update(
            {"_id": message["_id"]},
            {"$set": {"is_pinned": not message.get("is_pinned", False), "updated_at": utcnow()}},
            return_document=ReturnDocument.AFTER,
        )
        return await self._publish("commonChatMessagePinned", updated)

    async def get_pinned_messages(self) -> List[dict]:
        db = await self._get_db()
        cursor = (
            db.common_chat_messages.find({"is_pinned": True, "is_deleted": {"$ne": True}})
            .sort("created_at", -1)
            .limit(MAX_PINNED)
        )
        return await self._serialize([message async for message in cursor])

    async def search_messages(self, query: str, limit: int = 50) -> List[dict]:
        if not query or len(query.strip()) < 2:
            raise ValidationError("Search query must be at least 2 characters long")
        db = await self._get_db()
        pattern = {"$regex": re.escape(query.strip()), "$options": "i"}
        cursor = (
            db.common_chat_messages.find(
                {"is_deleted": {"$ne": True}, "$or": [{"content": pattern}, {"poll.question": pattern}]}
            )
            .sort("created_at", -1)
            .limit(limit)
        )
        return await self._serialize([message async for message in cursor])


common_chat_service = CommonChatService()
