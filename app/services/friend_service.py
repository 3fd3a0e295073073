"""
Friend list and friend request service.
"""

import logging
import re
from typing import Any, Dict, List, Optional, Tuple

from pymongo import ReturnDocument

from app.db.mongodb import mongodb
from app.exceptions import AuthorizationError, ConflictError, NotFoundError, ValidationError
from app.models.response import Pagination
from app.models.status_enums import FriendRequestStatus
from app.models.user import USER_SUMMARY_PROJECTION, UserSummary
from app.services.connection_manager import connection_manager
from app.utils.document_utils import contains_id, parse_object_id, serialize_doc, to_object_id, utcnow

logger = logging.getLogger(__name__)

MAX_MESSAGE_LENGTH = 200
FRIEND_PROJECTION = {**USER_SUMMARY_PROJECTION, "bio": 1, "current_room": 1}


class FriendService:
    """Service for managing friendships"""

    async def _get_db(self):
        """Get database instance"""
        if mongodb.client is None:
            await mongodb.connect_to_mongo()
        return mongodb.get_database()

    async def _user_cards(self, user_ids: List[Any]) -> Dict[str, dict]:
        db = await self._get_db()
        cards = {}
        if user_ids:
            async for user in db.users.find({"_id": {"$in": list(user_ids)}}, USER_SUMMARY_PROJECTION):
                cards[str(user["_id"])] = UserSummary.from_db_doc(user).model_dump()
        return cards

    async def _serialize_requests(self, requests: List[dict], user_id: str) -> List[dict]:
        ids = {r["sender_id"] for r in requests} | {r["receiver_id"] for r in requests}
        cards = await self._user_cards(list(ids))
        result = []
        for request in requests:
            item = serialize_doc(request)
            item["sender"] = cards.get(str(request["sender_id"]))
            item["receiver"] = cards.get(str(request["receiver_id"]))
            item["is_sent_by_me"] = str(request["sender_id"]) == str(user_id)
            item["is_received_by_me"] = str(request["receiver_id"]) == str(user_id)
            result.append(item)
        return result

    async def list_friends(
        self, user: dict, search: Optional[str] = None, page: int = 1, limit: int = 20
    ) -> Tuple[List[dict], Pagination]:
        db = await self._get_db()
        query: Dict[str, Any] = {"_id": {"$in": user.get("friends", [])}, "is_active": True}
        if search:
            pattern = {"$regex": re.escape(search), "$options": "i"}
            query["$or"] = [{"full_name": pattern}, {"username": pattern}]

        total = await db.users.count_documents(query)
        cursor = db.users.find(query, FRIEND_PROJECTION).sort("full_name", 1).skip((page - 1) * limit).limit(limit)
        friends = [serialize_doc(friend) async for friend in cursor]
        return friends, Pagination.build(page, limit, total)

    async def list_requests(
        self,
        user_id: str,
        request_type: str = "all",
        status: Optional[str] = None,
        page: int = 1,
        limit: int = 20,
    ) -> Tuple[List[dict], Pagination]:
        db = await self._get_db()
        user_oid = to_object_id(user_id, "User")
        if request_type == "sent":
            query: Dict[str, Any] = {"sender_id": user_oid}
        elif request_type == "received":
            query = {"receiver_id": user_oid}
        else:
            query = {"$or": [{"sender_id": user_oid}, {"receiver_id": user_oid}]}
        if status in [s.value for s in FriendRequestStatus]:
            query["status"] = status

        total = await db.friend_requests.count_documents(query)
        cursor = db.friend_requests.find(query).sort("created_at", -1).skip((page - 1) * limit).limit(limit)
        requests = [request async for request in cursor]
        return await self._serialize_requests(requests, user_id), Pagination.build(page, limit, total)

    async def send_request(self, user: dict, receiver_id: Optional[str], message: Optional[str] = "") -> dict:
        if not receiver_id:
            raise ValidationError("Target user ID is required")
        message = (message or "").strip()
        if len(message) > MAX_MESSAGE_LENGTH:
            raise ValidationError(f"Message cannot exceed {MAX_MESSAGE_LENGTH} characters")

        db = await self._get_db()
        receiver_oid = parse_object_id(receiver_id, "receiver_id")
        if str(receiver_oid) == str(user["_id"]):
            raise ValidationError("Cannot send friend request to yourself")
        target = await db.users.find_one({"_id": receiver_oid})
        if not target:
            raise NotFoundError("User not found")
        if not target.get("is_active", True):
            raise ValidationError("Cannot send friend request to inactive user")
        if contains_id(user.get("friends", []), receiver_oid):
            raise ConflictError("You are already friends with this user")

        existing = await db.friend_requests.find_one(
            {
                "$or": [
                    {"sender_id": user["_id"], "receiver_id": receiver_oid},
                    {"sender_id": receiver_oid, "receiver_id": user["_id"]},
                ],
                "status": FriendRequestStatus.PENDING.value,
            }
        )
        if existing:
            raise ConflictError("Friend request already exists between you and this user")

        now = utcnow()
        request = {
            "sender_id": user["_id"],
            "receiver_id": receiver_oid,
            "message": message,
            "status": FriendRequestStatus.PENDING.value,
            "created_at": now,
            "updated_at": now,
        }
        result = await db.friend_requests.insert_one(request)
        request["_id"] = result.inserted_id
        logger.info("Friend request %s sent from %s to %s", result.inserted_id, user["_id"], receiver_oid)

        payload = (await self._serialize_requests([request], str(user["_id"])))[0]
        await connection_manager.emit_to_user(
            str(receiver_oid),
            "friendRequestReceived",
            {"request": payload, "message": f"{user.get('full_name')} sent you a friend request"},
        )
        return payload

    async def respond(self, request_id: str, user: dict, action: str, response_message: Optional[str] = "") -> dict:
        if action not in ("accept", "reject"):
            raise ValidationError("Action must be either accept or reject")
        response_message = (response_message or "").strip()
        if len(response_message) > MAX_MESSAGE_LENGTH:
            raise ValidationError(f"Response message cannot exceed {MAX_MESSAGE_LENGTH} characters")

        db = await self._get_db()
        request = await db.friend_requests.find_one({"_id": to_object_id(request_id, "Friend request")})
        if not request:
            raise NotFoundError("Friend request not found")
        if str(request["receiver_id"]) != str(user["_id"]):
            raise AuthorizationError("You can only respond to requests sent to you")

        status = FriendRequestStatus.ACCEPTED if action == "accept" else FriendRequestStatus.REJECTED
        now = utcnow()
        updated = await db.friend_requests.find_one_and_update(
            {"_id": request["_id"], "status": FriendRequestStatus.PENDING.value},
            {"$set": {"status": status.value, "response_message": response_message, "responded_at": now,
                      "updated_at": now}},
            return_document=ReturnDocument.AFTER,
        )
        if updated is None:
            raise ValidationError("This friend request has already been handled")

        sender_id = request["sender_id"]
        if status == FriendRequestStatus.ACCEPTED:
            await db.users.update_one({"_id": sender_id}, {"$addToSet": {"friends": user["_id"]}})
            await db.users.update_one({"_id": user["_id"]}, {"$addToSet": {"friends": sender_id}})
            event, verb = "friendRequestAccepted", "accepted"
        else:
            event, verb = "friendRequestRejected", "declined"

        payload = (await self._serialize_requests([updated], str(user["_id"])))[0]
        await connection_manager.emit_to_user(
            str(sender_id), event, {"request": payload, "message": f"{user.get('full_name')} {verb} your friend request"}
        )
        logger.info("Friend request %s %s", request_id, status.value)
        return payload

    async def remove_friend(self, user: dict, friend_id: str) -> None:
        db = await self._get_db()
        friend_oid = to_object_id(friend_id, "User")
        if not await db.users.find_one({"_id": friend_oid}, {"_id": 1}):
            raise NotFoundError("User not found")
        if not contains_id(user.get("friends", []), friend_oid):
            raise ValidationError("You are not friends with this user")

        await db.users.update_one({"_id": user["_id"]}, {"$pull": {"friends": friend_oid}})
        await db.users.update_one({"_id": friend_oid}, {"$pull": {"friends": user["_id"]}})
        await connection_manager.emit_to_user(
            str(friend_oid),
            "friendRemoved",
            {
                "removed_by": UserSummary.from_db_doc(user).model_dump(),
                "message": f"{user.get('full_name')} removed you from their friends list",
            },
        )

    async def get_suggestions(self, user: dict, page: int = 1, limit: int = 10) -> Tuple[List[dict], dict]:
        """Same-gender users ranked by number of mutual friends"""
        db = await self._get_db()
        friend_ids = list(user.get("friends", []))
        exclude = friend_ids + [user["_id"]]
        async for request in db.friend_requests.find(
            {
                "$or": [{"sender_id": user["_id"]}, {"receiver_id": user["_id"]}],
                "status": FriendRequestStatus.PENDING.value,
            }
        ):
            other = request["receiver_id"] if request["sender_id"] == user["_id"] else request["sender_id"]
            exclude.append(other)

        pipeline = [
            {"$match": {"_id": {"$nin": exclude}, "is_active": True, "gender": user.get("gender")}},
            {"$addFields": {"mutual_friends_count": {"$size": {"$setIntersection": [{"$ifNull": ["$friends", []]}, friend_ids]}}}},
            {"$sort": {"mutual_friends_count": -1, "created_at": -1}},
            {"$skip": (page - 1) * limit},
            {"$limit": limit},
            {"$project": {**USER_SUMMARY_PROJECTION, "bio": 1, "mutual_friends_count": 1}},
        ]
        suggestions = [serialize_doc(doc) async for doc in db.users.aggregate(pipeline)]
        return suggestions, {"current_page": page, "has_more": len(suggestions) == limit}

    async def get_mutual_friends(self, user: dict, other_user_id: str) -> dict:
        if str(user["_id"]) == str(other_user_id):
            raise ValidationError("Cannot get mutual friends with yourself")
        db = await self._get_db()
        other = await db.users.find_one({"_id": to_object_id(other_user_id, "User")}, {"friends": 1})
        if not other:
            raise NotFoundError("User not found")

        own = {str(friend_id) for friend_id in user.get("friends", [])}
        mutual_ids = [friend_id for friend_id in other.get("friends", []) if str(friend_id) in own]
        cards = await self._user_cards(mutual_ids)
        mutual = [cards[str(friend_id)] for friend_id in mutual_ids if str(friend_id) in cards]
        return {"mutual_friends": mutual, "count": len(mutual)}


friend_service = FriendService()
