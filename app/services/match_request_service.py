"""
Match request service for room exchanges.

This module implements the request lifecycle (create, respond, withdraw),
the dual-approval workflow and the room swap that completes an exchange.

Approval writes are compare-and-swap updates on the request's `version`
field, so two parties approving at the same time cannot overwrite each
other's entries. The approval write that completes the approval set also
claims the swap (`swap_state: in_progress`) in the same update. The swap
itself is keyed by the request id: room snapshots are stored on the request
before any user is touched, and every user write is guarded by the list of
swaps already applied to that user, so an interrupted swap can be resumed
without swapping twice.
"""

import logging
from datetime import timedelta
from typing import Any, Dict, List, Optional, Tuple

from bson import ObjectId
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from app.core.config import settings
from app.db.mongodb import mongodb
from app.exceptions import AuthorizationError, ConflictError, NotFoundError, ValidationError
from app.models.match_request import (
    MatchRequestCreate,
    MatchRequestResponse,
    SwapArrangement,
    compute_approval_status,
    replace_approval,
)
from app.models.response import Pagination
from app.models.status_enums import ApprovalStatus, ListingStatus, RequestStatus, SwapState
from app.models.user import USER_SUMMARY_PROJECTION, UserSummary
from app.services.connection_manager import connection_manager
from app.services.room_listing_service import gender_allows, is_listing_available
from app.utils.document_utils import as_utc, to_object_id, utcnow

logger = logging.getLogger(__name__)

MIN_MESSAGE_LENGTH = 10
MAX_MESSAGE_LENGTH = 500
OPEN_STATUSES = [RequestStatus.PENDING.value, RequestStatus.ACCEPTED.value]


def required_parties(request: dict, listing: dict) -> List[str]:
    """Users whose approval completes the exchange: requester and listing owner"""
    return [str(request["requester_id"]), str(listing["listed_by"])]


def is_expired(request: dict) -> bool:
    expires_at = as_utc(request.get("expires_at"))
    return (
        request.get("status") == RequestStatus.PENDING.value
        and expires_at is not None
        and expires_at < utcnow()
    )


def _version_filter(request: dict) -> Any:
    if "version" in request:
        return request["version"]
    return {"$exists": False}


class MatchRequestService:
    """Service for match requests and room swaps"""

    async def _get_db(self):
        """Get database instance"""
        if mongodb.client is None:
            await mongodb.connect_to_mongo()
        return mongodb.get_database()

    async def _get_request_doc(self, request_id: str) -> dict:
        db = await self._get_db()
        request = await db.match_requests.find_one({"_id": to_object_id(request_id, "Match request")})
        if not request:
            raise NotFoundError("Match request not found")
        return request

    async def _get_listing_doc(self, listing_id: ObjectId) -> dict:
        db = await self._get_db()
        listing = await db.room_listings.find_one({"_id": listing_id})
        if not listing:
            raise NotFoundError("Listing not found")
        return listing

    async def _owned_listing_ids(self, user_id: ObjectId) -> List[ObjectId]:
        db = await self._get_db()
        return [listing["_id"] async for listing in db.room_listings.find({"listed_by": user_id}, {"_id": 1})]

    async def _build_responses(self, requests: List[dict], user_id: Optional[str] = None) -> List[MatchRequestResponse]:
        """Attach listing and requester details to request documents"""
        db = await self._get_db()
        listing_ids = list({request["listing_id"] for request in requests})
        requester_ids = list({request["requester_id"] for request in requests})

        listings = {}
        if listing_ids:
            async for listing in db.room_listings.find({"_id": {"$in": listing_ids}}):
                listings[listing["_id"]] = listing
        requesters = {}
        if requester_ids:
            async for user in db.users.find({"_id": {"$in": requester_ids}}, USER_SUMMARY_PROJECTION):
                requesters[user["_id"]] = UserSummary.from_db_doc(user).model_dump()

        return [
            MatchRequestResponse.from_db_doc(
                request,
                listing=listings.get(request["listing_id"]),
                requester=requesters.get(request["requester_id"]),
                user_id=user_id,
            )
            for request in requests
        ]

    async def _notify(self, user_id: Any, event: str, data: Dict[str, Any]) -> None:
        await connection_manager.emit_to_user(str(user_id), event, data)

    async def create_request(self, user: dict, data: MatchRequestCreate) -> MatchRequestResponse:
        """Send a match request for a listing"""
        if not data.listing_id or not data.message:
            raise ValidationError("Listing ID and message are required")
        message = data.message.strip()
        if len(message) < MIN_MESSAGE_LENGTH:
            raise ValidationError(f"Message must be at least {MIN_MESSAGE_LENGTH} characters long")
        if len(message) > MAX_MESSAGE_LENGTH:
            raise ValidationError(f"Message cannot exceed {MAX_MESSAGE_LENGTH} characters")

        listing = await self._get_listing_doc(to_object_id(data.listing_id, "Listing"))
        if not is_listing_available(listing):
            raise ValidationError("This listing is no longer available")
        if str(listing["listed_by"]) == str(user["_id"]):
            raise ValidationError("You cannot send a request to your own listing")

        db = await self._get_db()
        existing = await db.match_requests.find_one({"requester_id": user["_id"], "listing_id": listing["_id"]})
        if existing and existing.get("is_active", True) and existing.get("status") in OPEN_STATUSES and not is_expired(existing):
            raise ConflictError("You already have an active request for this listing")

        if not gender_allows(listing, user.get("gender")):
            raise AuthorizationError("This listing is not available for your gender")

        now = utcnow()
        fields = {
            "requester_id": user["_id"],
            "listing_id": listing["_id"],
            "message": message,
            "status": RequestStatus.PENDING.value,
            "approvals": [],
            "swap_details": {"completed": False, "swap_state": SwapState.NONE.value},
            "priority": data.priority.value,
            "expires_at": now + timedelta(days=settings.MATCH_REQUEST_TTL_DAYS),
            "is_active": True,
            "response_message": None,
            "responded_at": None,
            "updated_at": now,
        }

        try:
            if existing:
                # A finished request for the same pair is reopened in place
                request = await db.match_requests.find_one_and_update(
                    {"_id": existing["_id"], "version": _version_filter(existing)},
                    {"$set": fields, "$inc": {"version": 1}},
                    return_document=ReturnDocument.AFTER,
                )
                if request is None:
                    raise ConflictError("You already have an active request for this listing")
            else:
                request = {**fields, "version": 0, "created_at": now}
                result = await db.match_requests.insert_one(request)
                request["_id"] = result.inserted_id
        except DuplicateKeyError as e:
            raise ConflictError("You already have an active request for this listing") from e

        logger.info("Match request %s created by %s for listing %s", request["_id"], user["_id"], listing["_id"])
        response = (await self._build_responses([request], str(user["_id"])))[0]

        await self._notify(
            listing["listed_by"],
            "newMatchRequest",
            {
                "request": response.model_dump(),
                "message": f"{user.get('full_name', 'Someone')} sent a request for your listing",
            },
        )
        return response

    async def list_requests(
        self,
        user_id: str,
        request_type: str = "all",
        status: Optional[str] = None,
        page: int = 1,
        limit: int = 20,
    ) -> Tuple[List[MatchRequestResponse], Pagination]:
        """List requests sent by or received by the user"""
        db = await self._get_db()
        object_id = to_object_id(user_id, "User")

        sent = {"requester_id": object_id}
        received = {"listing_id": {"$in": await self._owned_listing_ids(object_id)}, "requester_id": {"$ne": object_id}}
        if request_type == "sent":
            scope = sent
        elif request_type == "received":
            scope = received
        elif request_type == "all":
            scope = {"$or": [sent, received]}
        else:
            raise ValidationError("Type must be one of: sent, received, all")

        query: Dict[str, Any] = {
            "$and": [
                scope,
                {"is_active": True},
                {"$nor": [{"status": RequestStatus.PENDING.value, "expires_at": {"$lt": utcnow()}}]},
            ]
        }
        if status:
            if status not in [s.value for s in RequestStatus]:
                raise ValidationError("Invalid status filter")
            query["$and"].append({"status": status})

        total = await db.match_requests.count_documents(query)
        cursor = db.match_requests.find(query).sort("created_at", -1).skip((page - 1) * limit).limit(limit)
        requests = [request async for request in cursor]

        return await self._build_responses(requests, str(user_id)), Pagination.build(page, limit, total)

    async def get_request(self, request_id: str, user_id: str) -> MatchRequestResponse:
        request = await self._get_request_doc(request_id)
        listing = await self._get_listing_doc(request["listing_id"])
        if str(user_id) not in required_parties(request, listing):
            raise AuthorizationError("You are not authorized to view this request")
        return (await self._build_responses([request], str(user_id)))[0]

    async def update_status(
        self, request_id: str, user_id: str, status: Optional[str], response_message: Optional[str] = None
    ) -> MatchRequestResponse:
        """Owner accepts or rejects, requester withdraws"""
        valid_statuses = [s.value for s in RequestStatus]
        if status not in valid_statuses:
            raise ValidationError(f"Status must be one of: {', '.join(valid_statuses)}")

        request = await self._get_request_doc(request_id)
        listing = await self._get_listing_doc(request["listing_id"])
        is_requester = str(request["requester_id"]) == str(user_id)
        is_owner = str(listing["listed_by"]) == str(user_id)
        if not is_requester and not is_owner:
            raise AuthorizationError("You are not authorized to update this request")

        current = request.get("status")
        swap_details = request.get("swap_details") or {}
        if swap_details.get("completed") or swap_details.get("swap_state") == SwapState.IN_PROGRESS.value:
            raise ValidationError("This exchange has already been completed")

        if is_requester:
            if status != RequestStatus.WITHDRAWN.value:
                raise ValidationError("Requester can only withdraw the request")
            if current not in OPEN_STATUSES:
                raise ValidationError(f"Cannot withdraw a request that is {current}")
        else:
            if status not in (RequestStatus.ACCEPTED.value, RequestStatus.REJECTED.value):
                raise ValidationError("Listing owner can only accept or reject the request")
            if current != RequestStatus.PENDING.value:
                raise ValidationError(f"Cannot respond to a request that is {current}")
            if is_expired(request):
                raise ValidationError("This request has expired")

        now = utcnow()
        values: Dict[str, Any] = {
            "status": status,
            "response_message": response_message,
            "responded_at": now,
            "updated_at": now,
        }
        if status == RequestStatus.WITHDRAWN.value:
            values["is_active"] = False

        db = await self._get_db()
        updated = await db.match_requests.find_one_and_update(
            {"_id": request["_id"], "status": current, "version": _version_filter(request)},
            {"$set": values, "$inc": {"version": 1}},
            return_document=ReturnDocument.AFTER,
        )
        if updated is None:
            raise ConflictError("The request was modified by someone else, please retry")

        logger.info("Match request %s moved %s -> %s by %s", request_id, current, status, user_id)
        response = (await self._build_responses([updated], str(user_id)))[0]

        counterparty = listing["listed_by"] if is_requester else request["requester_id"]
        await self._notify(
            counterparty,
            "requestStatusUpdate",
            {"request": response.model_dump(), "status": status, "response_message": response_message},
        )
        return response

    async def approve(
        self,
        request_id: str,
        user_id: str,
        approved: Any,
        comments: str = "",
        swap_details: Optional[SwapArrangement] = None,
    ) -> Tuple[MatchRequestResponse, bool]:
        """
        Record a party's approval of an accepted request.

        An affirmative approval may carry the agreed arrangement (date,
        meeting point, notes), which is merged into `swap_details`.

        Returns the updated request and whether the swap completed during
        this call.
        """
        if not isinstance(approved, bool):
            raise ValidationError("Approval status must be true or false")

        db = await self._get_db()
        for attempt in range(settings.APPROVAL_MAX_RETRIES + 1):
            request = await self._get_request_doc(request_id)
            listing = await self._get_listing_doc(request["listing_id"])
            parties = required_parties(request, listing)
            if str(user_id) not in parties:
                raise AuthorizationError("You are not authorized to approve this request")

            current_swap = request.get("swap_details") or {}
            if current_swap.get("completed"):
                # Replayed approval on a finished exchange
                return (await self._build_responses([request], str(user_id)))[0], False
            if current_swap.get("swap_state") == SwapState.IN_PROGRESS.value:
                completed = await self.execute_swap(request["_id"])
                request = await self._get_request_doc(request_id)
                return (await self._build_responses([request], str(user_id)))[0], completed

            if request.get("status") != RequestStatus.ACCEPTED.value:
                raise ValidationError("Request must be accepted before it can be approved")
            if not is_listing_available(listing):
                raise ValidationError("This listing is no longer available")

            now = utcnow()
            approvals = replace_approval(
                request.get("approvals", []),
                {"user_id": ObjectId(str(user_id)), "approved": approved, "comments": comments, "approved_at": now},
            )
            outcome = compute_approval_status(approvals, parties)

            values: Dict[str, Any] = {"approvals": approvals, "updated_at": now}
            if approved and swap_details is not None:
                for field, value in swap_details.model_dump(exclude_none=True).items():
                    values[f"swap_details.{field}"] = value
            if outcome == ApprovalStatus.REJECTED:
                values["status"] = RequestStatus.REJECTED.value
            elif outcome == ApprovalStatus.APPROVED:
                values["swap_details.swap_state"] = SwapState.IN_PROGRESS.value

            updated = await db.match_requests.find_one_and_update(
                {"_id": request["_id"], "status": RequestStatus.ACCEPTED.value, "version": _version_filter(request)},
                {"$set": values, "$inc": {"version": 1}},
                return_document=ReturnDocument.AFTER,
            )
            if updated is not None:
                break
            logger.warning("Approval on request %s lost a concurrent update (attempt %d)", request_id, attempt + 1)
        else:
            raise ConflictError("The request is being updated concurrently, please retry")

        logger.info("User %s %s request %s (%s)", user_id, "approved" if approved else "declined", request_id, outcome.value)

        swap_completed = False
        if outcome == ApprovalStatus.APPROVED:
            swap_completed = await self.execute_swap(updated["_id"])
            updated = await self._get_request_doc(request_id)

        response = (await self._build_responses([updated], str(user_id)))[0]
        counterparty = next(party for party in parties if party != str(user_id))
        await self._notify(
            counterparty,
            "requestApproved" if approved else "requestRejected",
            {"request": response.model_dump(), "approved": approved, "comments": comments},
        )
        return response, swap_completed

    async def execute_swap(self, request_id: ObjectId) -> bool:
        """
        Swap the current rooms of both parties for a fully approved request.

        Safe to call repeatedly: returns True once the swap is complete and
        False when it could not finish (the request stays in progress and
        is picked up again by the next call).
        """
        db = await self._get_db()
        try:
            request = await db.match_requests.find_one({"_id": request_id})
            if request is None:
                raise NotFoundError("Match request not found")
            swap_details = request.get("swap_details") or {}
            if swap_details.get("completed"):
                return True
            if swap_details.get("swap_state") != SwapState.IN_PROGRESS.value:
                logger.warning("Swap for request %s was not claimed, skipping", request_id)
                return False

            listing = await self._get_listing_doc(request["listing_id"])
            requester_id = request["requester_id"]
            owner_id = listing["listed_by"]

            if "requester_room" not in swap_details:
                requester = await db.users.find_one({"_id": requester_id}, {"current_room": 1})
                owner = await db.users.find_one({"_id": owner_id}, {"current_room": 1})
                if requester is None or owner is None:
                    raise NotFoundError("Exchange party no longer exists")
                await db.match_requests.update_one(
                    {"_id": request_id, "swap_details.requester_room": {"$exists": False}},
                    {
                        "$set": {
                            "swap_details.requester_room": requester.get("current_room"),
                            "swap_details.owner_room": owner.get("current_room"),
                        }
                    },
                )
                request = await db.match_requests.find_one({"_id": request_id})
                swap_details = request["swap_details"]

            now = utcnow()
            for party_id, new_room in (
                (requester_id, swap_details.get("owner_room")),
                (owner_id, swap_details.get("requester_room")),
            ):
                await db.users.update_one(
                    {"_id": party_id, "applied_swap_ids": {"$ne": request_id}},
                    {
                        "$set": {"current_room": new_room, "updated_at": now},
                        "$push": {"applied_swap_ids": request_id},
                    },
                )

            await db.room_listings.update_one(
                {"_id": listing["_id"]},
                {"$set": {"status": ListingStatus.CLOSED.value, "is_active": False, "updated_at": now}},
            )
            await db.match_requests.update_one(
                {"_id": request_id, "swap_details.swap_state": SwapState.IN_PROGRESS.value},
                {
                    "$set": {
                        "swap_details.swap_state": SwapState.COMPLETED.value,
                        "swap_details.completed": True,
                        "swap_details.completed_at": now,
                        "updated_at": now,
                    }
                },
            )
        except Exception as e:
            logger.error("Room swap for request %s did not finish and will be resumed: %s", request_id, e, exc_info=True)
            return False

        logger.info("Room swap completed for request %s", request_id)
        await self._notify(
            requester_id,
            "exchangeCompleted",
            {"request_id": str(request_id), "message": "Your room exchange has been completed!", "new_room": swap_details.get("owner_room")},
        )
        await self._notify(
            owner_id,
            "exchangeCompleted",
            {"request_id": str(request_id), "message": "Your room exchange has been completed!", "new_room": swap_details.get("requester_room")},
        )
        return True

    async def resume_pending_swaps(self) -> int:
        """Finish swaps left in progress by an interrupted process"""
        db = await self._get_db()
        resumed = 0
        cursor = db.match_requests.find({"swap_details.swap_state": SwapState.IN_PROGRESS.value}, {"_id": 1})
        async for request in cursor:
            if await self.execute_swap(request["_id"]):
                resumed += 1
        if resumed:
            logger.info("Resumed %d interrupted room swaps", resumed)
        return resumed

    async def get_history(self, user_id: str) -> List[MatchRequestResponse]:
        """Completed exchanges the user took part in"""
        db = await self._get_db()
        object_id = to_object_id(user_id, "User")
        query = {
            "$or": [{"requester_id": object_id}, {"listing_id": {"$in": await self._owned_listing_ids(object_id)}}],
            "swap_details.completed": True,
        }
        cursor = db.match_requests.find(query).sort("swap_details.completed_at", -1)
        requests = [request async for request in cursor]
        return await self._build_responses(requests, str(user_id))

    async def _count_by_status(self, match: Dict[str, Any]) -> Dict[str, int]:
        db = await self._get_db()
        stats = {"total": 0, **{status.value.lower(): 0 for status in RequestStatus}}
        pipeline = [{"$match": match}, {"$group": {"_id": "$status", "count": {"$sum": 1}}}]
        async for row in db.match_requests.aggregate(pipeline):
            stats["total"] += row["count"]
            if row["_id"]:
                stats[str(row["_id"]).lower()] = row["count"]
        return stats

    async def get_dashboard(self, user_id: str) -> Dict[str, Any]:
        """Exchange statistics and recent activity for the user"""
        db = await self._get_db()
        object_id = to_object_id(user_id, "User")
        active_listing_ids = [
            listing["_id"]
            async for listing in db.room_listings.find({"listed_by": object_id, "is_active": True}, {"_id": 1})
        ]
        all_listing_ids = await self._owned_listing_ids(object_id)

        sent = {"requester_id": object_id, "is_active": True}
        received = {"listing_id": {"$in": all_listing_ids}, "requester_id": {"$ne": object_id}, "is_active": True}
        sent_stats = await self._count_by_status(sent)
        received_stats = await self._count_by_status(received)

        involved = {"$or": [{"requester_id": object_id}, {"listing_id": {"$in": all_listing_ids}}]}
        completed = await db.match_requests.count_documents({**involved, "swap_details.completed": True})

        cursor = db.match_requests.find({**involved, "is_active": True}).sort("updated_at", -1).limit(10)
        recent = await self._build_responses([request async for request in cursor], str(user_id))
        activity = []
        for item in recent:
            entry = item.model_dump()
            entry["action_type"] = "sent" if item.is_requester else "received"
            activity.append(entry)

        return {
            "sent_requests": sent_stats,
            "received_requests": received_stats,
            "approved_exchanges": completed,
            "total_active_listings": len(active_listing_ids),
            "recent_activity": activity,
            "summary": {
                "total_requests_sent": sent_stats["total"],
                "total_requests_received": received_stats["total"],
                "total_approved_exchanges": completed,
                "pending_action": sent_stats["pending"] + received_stats["pending"],
            },
        }


match_request_service = MatchRequestService()
