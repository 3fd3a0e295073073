"""
Room listing service.

This module provides listing search, trending ranking, creation with proof
upload, interest toggling and owner-side management of room listings.
"""

import logging
import re
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

from pymongo import ReturnDocument

from app.db.mongodb import mongodb
from app.exceptions import AuthorizationError, ConflictError, NotFoundError, ValidationError
from app.models.response import Pagination
from app.models.room_listing import DesiredRoom, ListingRoom, RoomListingResponse, RoomListingUpdate
from app.models.status_enums import GenderPreference, ListingStatus, Urgency
from app.models.user import USER_SUMMARY_PROJECTION, UserSummary
from app.utils.document_utils import as_utc, contains_id, to_object_id, utcnow

logger = logging.getLogger(__name__)

LISTING_TYPE_BIDDING = "Bidding"
DEFAULT_LISTING_TYPE = "Exchange"

# Trending score weights
INTEREST_WEIGHT = 2
VIEWS_WEIGHT = 0.1
ACTIVE_REQUEST_WEIGHT = 5
COMPLETED_SWAP_WEIGHT = 10


def gender_allows(listing: dict, gender: Optional[str]) -> bool:
    """A listing is open to a user of the same gender or to anyone when Mixed"""
    preference = listing.get("gender_preference")
    if not preference or preference == GenderPreference.MIXED.value:
        return True
    return preference == gender


def is_listing_available(listing: dict, now: Optional[datetime] = None) -> bool:
    now = now or utcnow()
    if not listing.get("is_active", True):
        return False
    if listing.get("status") == ListingStatus.CLOSED.value:
        return False
    available_till = as_utc(listing.get("available_till"))
    return available_till is None or available_till >= now


class RoomListingService:
    """Service for managing room listings"""

    async def _get_db(self):
        """Get database instance"""
        if mongodb.client is None:
            await mongodb.connect_to_mongo()
        return mongodb.get_database()

    async def _owner_cards(self, listings: List[dict]) -> Dict[str, dict]:
        db = await self._get_db()
        owner_ids = list({listing["listed_by"] for listing in listings if listing.get("listed_by")})
        if not owner_ids:
            return {}
        cards = {}
        async for user in db.users.find({"_id": {"$in": owner_ids}}, USER_SUMMARY_PROJECTION):
            cards[str(user["_id"])] = UserSummary.from_db_doc(user).model_dump()
        return cards

    async def _to_responses(self, listings: List[dict], user_id: Optional[str] = None) -> List[RoomListingResponse]:
        cards = await self._owner_cards(listings)
        return [
            RoomListingResponse.from_db_doc(listing, owner=cards.get(str(listing.get("listed_by"))), user_id=user_id)
            for listing in listings
        ]

    def _availability_filter(self, gender: Optional[str] = None) -> Dict[str, Any]:
        query: Dict[str, Any] = {
            "is_active": True,
            "status": {"$ne": ListingStatus.CLOSED.value},
            "available_till": {"$gte": utcnow()},
        }
        if gender:
            query["gender_preference"] = {"$in": [gender, GenderPreference.MIXED.value]}
        return query

    async def get_listing_doc(self, listing_id: str) -> dict:
        db = await self._get_db()
        listing = await db.room_listings.find_one({"_id": to_object_id(listing_id, "Listing")})
        if not listing:
            raise NotFoundError("Listing not found")
        return listing

    async def list_listings(
        self,
        user: Optional[dict] = None,
        hostel: Optional[str] = None,
        room_type: Optional[str] = None,
        urgency: Optional[str] = None,
        min_budget: Optional[float] = None,
        max_budget: Optional[float] = None,
        search: Optional[str] = None,
        page: int = 1,
        limit: int = 20,
    ) -> Tuple[List[RoomListingResponse], Pagination]:
        """Search available listings visible to the (optional) user"""
        db = await self._get_db()
        query = self._availability_filter(user.get("gender") if user else None)

        if hostel:
            query["current_room.hostel_name"] = {"$regex": re.escape(hostel), "$options": "i"}
        if room_type:
            query["current_room.room_type"] = room_type
        if urgency:
            query["urgency"] = urgency
        if min_budget is not None or max_budget is not None:
            rent: Dict[str, float] = {}
            if min_budget is not None:
                rent["$gte"] = min_budget
            if max_budget is not None:
                rent["$lte"] = max_budget
            query["current_room.rent"] = rent
        if search:
            pattern = {"$regex": re.escape(search), "$options": "i"}
            query["$or"] = [
                {"title": pattern},
                {"description": pattern},
                {"current_room.hostel_name": pattern},
                {"current_room.block": pattern},
            ]

        total = await db.room_listings.count_documents(query)
        cursor = db.room_listings.find(query).sort("created_at", -1).skip((page - 1) * limit).limit(limit)
        listings = [listing async for listing in cursor]

        user_id = str(user["_id"]) if user else None
        return await self._to_responses(listings, user_id), Pagination.build(page, limit, total)

    async def get_trending(self, user: Optional[dict] = None, limit: int = 20) -> List[RoomListingResponse]:
        """Rank available listings by interest, views, requests and completed swaps"""
        db = await self._get_db()
        pipeline = [
            {"$match": self._availability_filter(user.get("gender") if user else None)},
            {
                "$lookup": {
                    "from": "match_requests",
                    "localField": "_id",
                    "foreignField": "listing_id",
                    "as": "requests",
                }
            },
            {
                "$addFields": {
                    "active_requests": {
                        "$size": {"$filter": {"input": "$requests", "cond": {"$eq": ["$$this.is_active", True]}}}
                    },
                    "completed_swaps": {
                        "$size": {
                            "$filter": {"input": "$requests", "cond": {"$eq": ["$$this.swap_details.completed", True]}}
                        }
                    },
                }
            },
            {
                "$addFields": {
                    "trending_score": {
                        "$add": [
                            {"$multiply": [{"$size": {"$ifNull": ["$interested_users", []]}}, INTEREST_WEIGHT]},
                            {"$multiply": [{"$ifNull": ["$views", 0]}, VIEWS_WEIGHT]},
                            {"$multiply": ["$active_requests", ACTIVE_REQUEST_WEIGHT]},
                            {"$multiply": ["$completed_swaps", COMPLETED_SWAP_WEIGHT]},
                        ]
                    }
                }
            },
            {"$project": {"requests": 0}},
            {"$sort": {"trending_score": -1, "created_at": -1}},
            {"$limit": limit},
        ]
        listings = [listing async for listing in db.room_listings.aggregate(pipeline)]
        return await self._to_responses(listings, str(user["_id"]) if user else None)

    async def get_listing(self, listing_id: str, user: Optional[dict] = None) -> RoomListingResponse:
        """Fetch one listing and count the view"""
        db = await self._get_db()
        listing = await db.room_listings.find_one_and_update(
            {"_id": to_object_id(listing_id, "Listing")},
            {"$inc": {"views": 1}},
            return_document=ReturnDocument.AFTER,
        )
        if not listing or not listing.get("is_active", True):
            raise NotFoundError("Listing not found")
        responses = await self._to_responses([listing], str(user["_id"]) if user else None)
        return responses[0]

    async def create_listing(
        self,
        user: dict,
        room: ListingRoom,
        description: str,
        proof_file: Optional[str],
        listing_type: str = DEFAULT_LISTING_TYPE,
        desired_room: Optional[DesiredRoom] = None,
        urgency: Urgency = Urgency.MEDIUM,
    ) -> RoomListingResponse:
        if not description or not description.strip():
            raise ValidationError("Missing required fields: description")
        if len(description) > 1000:
            raise ValidationError("Description cannot exceed 1000 characters")
        if not proof_file:
            raise ValidationError("Room proof file is required")

        db = await self._get_db()
        existing = await db.room_listings.find_one(
            {
                "listed_by": user["_id"],
                "is_active": True,
                "status": {"$in": [ListingStatus.OPEN.value, ListingStatus.BIDDING.value]},
            }
        )
        if existing:
            raise ConflictError("You already have an active listing. Please close it before creating a new one.")

        now = utcnow()
        listing_type = listing_type or DEFAULT_LISTING_TYPE
        title = f"{room.room_type.value} in {room.hostel_name} - {listing_type}"
        listing = {
            "title": title[:100],
            "description": description.strip(),
            "listed_by": user["_id"],
            "current_room": room.model_dump(mode="json"),
            "desired_room": (desired_room or DesiredRoom()).model_dump(mode="json"),
            "status": ListingStatus.BIDDING.value if listing_type == LISTING_TYPE_BIDDING else ListingStatus.OPEN.value,
            "urgency": urgency.value,
            "available_from": now + timedelta(days=1),
            "available_till": now + timedelta(days=30),
            "room_proof_file": proof_file,
            "interested_users": [],
            "interest_count": 0,
            "views": 0,
            "is_active": True,
            "tags": [listing_type],
            "gender_preference": user.get("gender"),
            "created_at": now,
            "updated_at": now,
        }
        result = await db.room_listings.insert_one(listing)
        listing["_id"] = result.inserted_id
        logger.info("Listing %s created by user %s", result.inserted_id, user["_id"])

        return RoomListingResponse.from_db_doc(listing, owner=UserSummary.from_db_doc(user).model_dump())

    async def toggle_interest(self, listing_id: str, user: dict) -> dict:
        """Add or remove the user from the listing's interested users"""
        listing = await self.get_listing_doc(listing_id)
        if not is_listing_available(listing):
            raise ValidationError("Listing is not active")
        if str(listing.get("listed_by")) == str(user["_id"]):
            raise ValidationError("You cannot show interest in your own listing")
        if not gender_allows(listing, user.get("gender")):
            raise AuthorizationError("This listing is not available for your gender")

        db = await self._get_db()
        interested = contains_id(listing.get("interested_users", []), user["_id"])
        operator = "$pull" if interested else "$addToSet"
        updated = await db.room_listings.find_one_and_update(
            {"_id": listing["_id"]},
            {operator: {"interested_users": user["_id"]}, "$set": {"updated_at": utcnow()}},
            return_document=ReturnDocument.AFTER,
        )
        interest_count = len(updated.get("interested_users", []))
        await db.room_listings.update_one({"_id": listing["_id"]}, {"$set": {"interest_count": interest_count}})

        return {"is_interested": not interested, "interest_count": interest_count}

    async def update_listing(self, listing_id: str, user_id: str, update: RoomListingUpdate) -> RoomListingResponse:
        listing = await self.get_listing_doc(listing_id)
        if str(listing.get("listed_by")) != str(user_id):
            raise AuthorizationError("You can only update your own listings")
        if not listing.get("is_active", True):
            raise ValidationError("Cannot update an inactive listing")

        values = update.model_dump(mode="json", exclude_none=True)
        if "available_till" in values:
            try:
                available_till = as_utc(datetime.fromisoformat(values["available_till"]))
            except ValueError as e:
                raise ValidationError("Invalid available till date") from e
            if available_till <= utcnow():
                raise ValidationError("Available till date must be in the future")
            values["available_till"] = available_till
        if not values:
            raise ValidationError("No valid fields to update")

        values["updated_at"] = utcnow()
        db = await self._get_db()
        updated = await db.room_listings.find_one_and_update(
            {"_id": listing["_id"]}, {"$set": values}, return_document=ReturnDocument.AFTER
        )
        responses = await self._to_responses([updated], str(user_id))
        return responses[0]

    async def delete_listing(self, listing_id: str, user_id: str) -> None:
        """Soft delete a listing owned by the user"""
        listing = await self.get_listing_doc(listing_id)
        if str(listing.get("listed_by")) != str(user_id):
            raise AuthorizationError("You can only delete your own listings")

        db = await self._get_db()
        now = utcnow()
        await db.room_listings.update_one(
            {"_id": listing["_id"]},
            {"$set": {"is_active": False, "status": ListingStatus.CLOSED.value, "updated_at": now}},
        )
        # Open requests against a removed listing can no longer be acted on
        await db.match_requests.update_many(
            {"listing_id": listing["_id"], "swap_details.completed": {"$ne": True}},
            {"$set": {"is_active": False, "updated_at": now}},
        )
        logger.info("Listing %s deleted by user %s", listing_id, user_id)

    async def get_my_listings(self, user_id: str) -> List[RoomListingResponse]:
        db = await self._get_db()
        cursor = db.room_listings.find({"listed_by": to_object_id(user_id, "User")}).sort("created_at", -1)
        listings = [listing async for listing in cursor]
        return await self._to_responses(listings, str(user_id))


room_listing_service = RoomListingService()
