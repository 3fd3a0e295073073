"""
Event service: submissions, moderation state, registration, likes and comments.
"""

import logging
import re
from datetime import timedelta
from typing import Any, Dict, List, Optional, Tuple

from pymongo import ReturnDocument

from app.db.mongodb import mongodb
from app.exceptions import NotFoundError, ValidationError
from app.models.event import EventCreate
from app.models.response import Pagination
from app.models.status_enums import EventStatus, EventType
from app.models.user import USER_SUMMARY_PROJECTION, UserSummary
from app.services.connection_manager import connection_manager
from app.utils.document_utils import as_utc, contains_id, serialize_doc, to_object_id, utcnow

logger = logging.getLogger(__name__)

MAX_COMMENT_LENGTH = 300
DEFAULT_DEADLINE_OFFSET = timedelta(hours=24)


def registered_ids(event: dict) -> List[str]:
    return [str(entry.get("user_id")) for entry in event.get("registered_users", [])]


def can_register(event: dict) -> bool:
    """Registration is open while approved, before deadline and start, and below capacity"""
    now = utcnow()
    deadline = as_utc(event.get("registration_deadline"))
    if deadline and now > deadline:
        return False
    start = as_utc(event.get("start_date"))
    if start and now >= start:
        return False
    max_participants = event.get("max_participants", 0)
    if max_participants > 0 and len(event.get("registered_users", [])) >= max_participants:
        return False
    return event.get("status") == EventStatus.APPROVED.value


def event_phase(event: dict) -> str:
    now = utcnow()
    start = as_utc(event.get("start_date"))
    end = as_utc(event.get("end_date"))
    if start and now < start:
        return "upcoming"
    if end and now <= end:
        return "ongoing"
    return "completed"


class EventService:
    """Service for hostel events"""

    async def _get_db(self):
        """Get database instance"""
        if mongodb.client is None:
            await mongodb.connect_to_mongo()
        return mongodb.get_database()

    async def _get_event_doc(self, event_id: str) -> dict:
        db = await self._get_db()
        event = await db.events.find_one({"_id": to_object_id(event_id, "Event")})
        if not event:
            raise NotFoundError("Event not found")
        return event

    async def _serialize(self, events: List[dict], user_id: Optional[str] = None) -> List[dict]:
        db = await self._get_db()
        submitter_ids = list({e["submitted_by"] for e in events if e.get("submitted_by")})
        cards = {}
        if submitter_ids:
            async for user in db.users.find({"_id": {"$in": submitter_ids}}, USER_SUMMARY_PROJECTION):
                cards[str(user["_id"])] = UserSummary.from_db_doc(user).model_dump()

        result = []
        for event in events:
            item = serialize_doc(event)
            max_participants = event.get("max_participants", 0)
            count = len(event.get("registered_users", []))
            item["submitted_by"] = cards.get(str(event.get("submitted_by")), item.get("submitted_by"))
            item["registration_count"] = count
            item["available_spots"] = "Unlimited" if max_participants == 0 else max(0, max_participants - count)
            item["event_status"] = event_phase(event)
            item["can_register"] = can_register(event)
            item["is_registered"] = bool(user_id) and str(user_id) in registered_ids(event)
            item["is_liked"] = bool(user_id) and contains_id(event.get("likes", []), user_id)
            result.append(item)
        return result

    async def list_events(
        self,
        user_id: Optional[str] = None,
        event_type: Optional[str] = None,
        upcoming: bool = True,
        featured: bool = False,
        search: Optional[str] = None,
        page: int = 1,
        limit: int = 20,
    ) -> Tuple[List[dict], Pagination]:
        db = await self._get_db()
        query: Dict[str, Any] = {"status": EventStatus.APPROVED.value}
        if event_type:
            query["event_type"] = event_type
        if featured:
            query["is_featured"] = True
        if search:
            pattern = {"$regex": re.escape(search), "$options": "i"}
            query["$or"] = [{"title": pattern}, {"description": pattern}, {"organizer.name": pattern}]
        if upcoming:
            query["start_date"] = {"$gte": utcnow()}

        total = await db.events.count_documents(query)
        cursor = (
            db.events.find(query)
            .sort([("is_featured", -1), ("start_date", 1)])
            .skip((page - 1) * limit)
            .limit(limit)
        )
        events = [event async for event in cursor]
        return await self._serialize(events, user_id), Pagination.build(page, limit, total)

    async def get_event(self, event_id: str, user_id: Optional[str] = None) -> dict:
        db = await self._get_db()
        event = await db.events.find_one_and_update(
            {"_id": to_object_id(event_id, "Event")}, {"$inc": {"views": 1}}, return_document=ReturnDocument.AFTER
        )
        if not event:
            raise NotFoundError("Event not found")
        is_submitter = user_id and str(event.get("submitted_by")) == str(user_id)
        if event.get("status") != EventStatus.APPROVED.value and not is_submitter:
            raise NotFoundError("Event not found")
        return (await self._serialize([event], user_id))[0]

    async def submit_event(self, user_id: str, data: EventCreate, image_url: Optional[str] = None) -> dict:
        """Submit an event for moderation"""
        missing = [
            name
            for name in ("title", "description", "event_type", "start_date", "end_date", "venue", "organizer")
            if not getattr(data, name)
        ]
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")
        if data.event_type not in [t.value for t in EventType]:
            raise ValidationError("Invalid event type")

        now = utcnow()
        start = as_utc(data.start_date)
        end = as_utc(data.end_date)
        if start < now:
            raise ValidationError("Event start date cannot be in the past")
        if end < start:
            raise ValidationError("Event end date cannot be before start date")
        if data.max_participants < 0:
            raise ValidationError("Maximum participants cannot be negative")

        deadline = as_utc(data.registration_deadline) if data.registration_deadline else start - DEFAULT_DEADLINE_OFFSET
        if deadline > start:
            raise ValidationError("Registration deadline must be before the event starts")

        event = {
            "title": data.title.strip(),
            "description": data.description.strip(),
            "event_type": data.event_type,
            "start_date": start,
            "end_date": end,
            "venue": data.venue.strip(),
            "organizer": data.organizer.model_dump(),
            "max_participants": data.max_participants,
            "registration_deadline": deadline,
            "registered_users": [],
            "likes": [],
            "comments": [],
            "image_url": image_url or data.image_url,
            "tags": data.tags,
            "is_featured": False,
            "views": 0,
            "status": EventStatus.PENDING.value,
            "submitted_by": to_object_id(user_id, "User"),
            "created_at": now,
            "updated_at": now,
        }
        db = await self._get_db()
        result = await db.events.insert_one(event)
        event["_id"] = result.inserted_id
        logger.info("Event %s submitted by %s", result.inserted_id, user_id)

        payload = (await self._serialize([event], user_id))[0]
        await connection_manager.broadcast("eventSubmitted", {"event": payload})
        return payload

    async def toggle_registration(self, event_id: str, user: dict) -> dict:
        event = await self._get_event_doc(event_id)
        user_id = user["_id"]
        db = await self._get_db()

        if str(user_id) in registered_ids(event):
            updated = await db.events.find_one_and_update(
                {"_id": event["_id"]},
                {"$pull": {"registered_users": {"user_id": user_id}}},
                return_document=ReturnDocument.AFTER,
            )
            return {"is_registered": False, "registration_count": len(updated.get("registered_users", []))}

        if not can_register(event):
            raise ValidationError("Registration is not available for this event")

        # Capacity is re-checked in the update filter so concurrent registrations cannot overfill
        capacity_filter: Dict[str, Any] = {"_id": event["_id"], "registered_users.user_id": {"$ne": user_id}}
        max_participants = event.get("max_participants", 0)
        if max_participants > 0:
            capacity_filter[f"registered_users.{max_participants - 1}"] = {"$exists": False}
        updated = await db.events.find_one_and_update(
            capacity_filter,
            {"$push": {"registered_users": {"user_id": user_id, "registered_at": utcnow()}}},
            return_document=ReturnDocument.AFTER,
        )
        if updated is None:
            raise ValidationError("Registration is not available for this event")

        if event.get("submitted_by") and str(event["submitted_by"]) != str(user_id):
            await connection_manager.emit_to_user(
                str(event["submitted_by"]),
                "eventRegistration",
                {
                    "event_id": str(event["_id"]),
                    "event_title": event.get("title"),
                    "user": UserSummary.from_db_doc(user).model_dump(),
                },
            )
        return {"is_registered": True, "registration_count": len(updated.get("registered_users", []))}

    async def toggle_like(self, event_id: str, user_id: str) -> dict:
        event = await self._get_event_doc(event_id)
        user_oid = to_object_id(user_id, "User")
        liked = contains_id(event.get("likes", []), user_oid)
        db = await self._get_db()
        updated = await db.events.find_one_and_update(
            {"_id": event["_id"]},
            {"$pull" if liked else "$addToSet": {"likes": user_oid}},
            return_document=ReturnDocument.AFTER,
        )
        return {"is_liked": not liked, "like_count": len(updated.get("likes", []))}

    async def add_comment(self, event_id: str, user: dict, text: str) -> dict:
        if not text or not text.strip():
            raise ValidationError("Comment text is required")
        if len(text) > MAX_COMMENT_LENGTH:
            raise ValidationError(f"Comment cannot exceed {MAX_COMMENT_LENGTH} characters")

        event = await self._get_event_doc(event_id)
        comment = {"user_id": user["_id"], "text": text.strip(), "created_at": utcnow()}
        db = await self._get_db()
        await db.events.update_one({"_id": event["_id"]}, {"$push": {"comments": comment}})

        result = serialize_doc(comment)
        result["user"] = UserSummary.from_db_doc(user).model_dump()
        return result

    async def get_user_events(self, user_id: str, viewer_id: Optional[str] = None) -> List[dict]:
        """Events submitted by a user; others only see the approved ones"""
        db = await self._get_db()
        query: Dict[str, Any] = {"submitted_by": to_object_id(user_id, "User")}
        if str(viewer_id) != str(user_id):
            query["status"] = EventStatus.APPROVED.value
        cursor = db.events.find(query).sort("start_date", -1)
        return await self._serialize([event async for event in cursor], viewer_id)

    async def get_registered_events(self, user_id: str) -> List[dict]:
        db = await self._get_db()
        cursor = db.events.find({"registered_users.user_id": to_object_id(user_id, "User")}).sort("start_date", 1)
        return await self._serialize([event async for event in cursor], user_id)


event_service = EventService()
