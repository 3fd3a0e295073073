#!/usr/bin/env python3
"""
Tests for match request service: lifecycle, dual approval and room swap
"""
from datetime import datetime, timezone
from unittest.mock import ANY, AsyncMock, MagicMock, call, patch

import pytest
from bson import ObjectId

from app.core.config import settings
from app.exceptions import AuthorizationError, ConflictError, NotFoundError, ValidationError
from app.models.match_request import (
    MatchRequestCreate,
    MatchRequestResponse,
    SwapArrangement,
    compute_approval_status,
    replace_approval,
)
from app.models.status_enums import ApprovalStatus
from app.services.match_request_service import MatchRequestService, is_expired, required_parties
from app.utils.document_utils import utcnow
from tests.test_utils import (
    generate_test_listing,
    generate_test_match_request,
    generate_test_room,
    generate_test_user,
    make_cursor,
)


class TestComputeApprovalStatus:
    """Test class for the derived approval state"""

    def test_no_approvals_is_pending(self):
        assert compute_approval_status([], ["a", "b"]) == ApprovalStatus.PENDING

    def test_one_of_two_is_partial(self):
        approvals = [{"user_id": "a", "approved": True}]
        assert compute_approval_status(approvals, ["a", "b"]) == ApprovalStatus.PARTIAL

    def test_all_parties_approved(self):
        approvals = [{"user_id": "b", "approved": True}, {"user_id": "a", "approved": True}]
        assert compute_approval_status(approvals, ["a", "b"]) == ApprovalStatus.APPROVED

    def test_any_decline_rejects(self):
        approvals = [{"user_id": "a", "approved": True}, {"user_id": "b", "approved": False}]
        assert compute_approval_status(approvals, ["a", "b"]) == ApprovalStatus.REJECTED

    def test_compares_object_ids_as_strings(self):
        a, b = ObjectId(), ObjectId()
        approvals = [{"user_id": a, "approved": True}, {"user_id": b, "approved": True}]
        assert compute_approval_status(approvals, [str(a), str(b)]) == ApprovalStatus.APPROVED

    def test_approvals_from_outsiders_do_not_count(self):
        approvals = [{"user_id": "a", "approved": True}, {"user_id": "x", "approved": True}]
        assert compute_approval_status(approvals, ["a", "b"]) == ApprovalStatus.PARTIAL

    def test_replace_approval_keeps_one_entry_per_user(self):
        user_id = ObjectId()
        approvals = [{"user_id": user_id, "approved": False}]
        result = replace_approval(approvals, {"user_id": user_id, "approved": True})
        assert result == [{"user_id": user_id, "approved": True}]

    def test_response_without_listing_is_never_fully_approved(self):
        request = generate_test_match_request(status="Accepted")
        request["approvals"] = [{"user_id": request["requester_id"], "approved": True}]

        response = MatchRequestResponse.from_db_doc(request)

        assert response.approval_status == "partial"


class TestMatchRequestHelpers:
    def test_required_parties_are_requester_and_owner(self):
        listing = generate_test_listing()
        request = generate_test_match_request(listing_id=listing["_id"])
        assert required_parties(request, listing) == [str(request["requester_id"]), str(listing["listed_by"])]

    def test_pending_request_past_expiry_is_expired(self):
        request = generate_test_match_request(expires_at=utcnow().replace(year=2000))
        assert is_expired(request) is True

    def test_accepted_request_never_expires(self):
        request = generate_test_match_request(status="Accepted", expires_at=utcnow().replace(year=2000))
        assert is_expired(request) is False


class TestMatchRequestService:
    """Test class for match request service"""

    @pytest.fixture
    def service(self):
        """Create service instance"""
        return MatchRequestService()

    @pytest.fixture
    def notifications(self, mock_mongodb):
        """Patch database and real-time delivery for the service module"""
        with patch("app.services.match_request_service.mongodb", mock_mongodb), patch(
            "app.services.match_request_service.connection_manager"
        ) as manager:
            manager.emit_to_user = AsyncMock(return_value=1)
            yield manager

    @pytest.fixture
    def requester(self):
        return generate_test_user(full_name="Asha Rao")

    @pytest.fixture
    def owner(self):
        return generate_test_user(full_name="Ben Ode")

    @pytest.fixture
    def listing(self, owner):
        return generate_test_listing(listed_by=owner["_id"])

    def _wire_responses(self, mock_db, listing, users):
        mock_db.room_listings.find.return_value = make_cursor([listing])
        mock_db.users.find.return_value = make_cursor(users)

    # create_request

    async def test_create_request_success(self, service, mock_db, notifications, requester, owner, listing):
        """Test a valid request is stored pending and the owner is notified"""
        mock_db.room_listings.find_one.return_value = listing
        mock_db.match_requests.insert_one.return_value = MagicMock(inserted_id=ObjectId())
        self._wire_responses(mock_db, listing, [requester])

        result = await service.create_request(
            requester, MatchRequestCreate(listing_id=str(listing["_id"]), message="Would love to swap rooms")
        )

        stored = mock_db.match_requests.insert_one.call_args[0][0]
        assert stored["status"] == "Pending"
        assert stored["approvals"] == []
        assert stored["version"] == 0
        assert result.status == "Pending"
        assert result.approval_status == "pending"
        assert result.is_requester is True
        notifications.emit_to_user.assert_awaited_once_with(str(owner["_id"]), "newMatchRequest", ANY)

    async def test_create_request_own_listing(self, service, mock_db, notifications, owner, listing):
        """Test requesting your own listing is rejected without a write"""
        mock_db.room_listings.find_one.return_value = listing

        with pytest.raises(ValidationError, match="your own listing"):
            await service.create_request(
                owner, MatchRequestCreate(listing_id=str(listing["_id"]), message="Swap with myself please")
            )
        mock_db.match_requests.insert_one.assert_not_awaited()

    async def test_create_request_duplicate_active(self, service, mock_db, notifications, requester, listing):
        """Test a second active request for the same listing conflicts"""
        mock_db.room_listings.find_one.return_value = listing
        mock_db.match_requests.find_one.return_value = generate_test_match_request(
            requester_id=requester["_id"], listing_id=listing["_id"]
        )

        with pytest.raises(ConflictError):
            await service.create_request(
                requester, MatchRequestCreate(listing_id=str(listing["_id"]), message="Would love to swap rooms")
            )
        mock_db.match_requests.insert_one.assert_not_awaited()

    async def test_create_request_reopens_withdrawn(self, service, mock_db, notifications, requester, listing):
        """Test a finished request for the same pair is reopened in place"""
        existing = generate_test_match_request(
            requester_id=requester["_id"], listing_id=listing["_id"], status="Withdrawn", is_active=False, version=2
        )
        reopened = {**existing, "status": "Pending", "is_active": True, "version": 3}
        mock_db.room_listings.find_one.return_value = listing
        mock_db.match_requests.find_one.return_value = existing
        mock_db.match_requests.find_one_and_update.return_value = reopened
        self._wire_responses(mock_db, listing, [requester])

        result = await service.create_request(
            requester, MatchRequestCreate(listing_id=str(listing["_id"]), message="Changed my mind, still keen")
        )

        query, update = mock_db.match_requests.find_one_and_update.call_args[0]
        assert query == {"_id": existing["_id"], "version": 2}
        assert update["$set"]["status"] == "Pending"
        assert result.status == "Pending"
        mock_db.match_requests.insert_one.assert_not_awaited()

    @pytest.mark.parametrize(
        "listing_overrides",
        [{"is_active": False}, {"status": "Closed"}, {"days_left": -1}],
    )
    async def test_create_request_unavailable_listing(
        self, service, mock_db, notifications, requester, owner, listing_overrides
    ):
        """Test inactive, closed or expired listings refuse requests"""
        listing = generate_test_listing(listed_by=owner["_id"], **listing_overrides)
        mock_db.room_listings.find_one.return_value = listing

        with pytest.raises(ValidationError, match="no longer available"):
            await service.create_request(
                requester, MatchRequestCreate(listing_id=str(listing["_id"]), message="Would love to swap rooms")
            )
        mock_db.match_requests.insert_one.assert_not_awaited()

    async def test_create_request_unknown_listing(self, service, mock_db, notifications, requester):
        mock_db.room_listings.find_one.return_value = None

        with pytest.raises(NotFoundError):
            await service.create_request(
                requester, MatchRequestCreate(listing_id=str(ObjectId()), message="Would love to swap rooms")
            )

    async def test_create_request_gender_mismatch(self, service, mock_db, notifications, owner):
        requester = generate_test_user(gender="Female")
        mock_db.room_listings.find_one.return_value = generate_test_listing(listed_by=owner["_id"])

        with pytest.raises(AuthorizationError):
            await service.create_request(
                requester, MatchRequestCreate(listing_id=str(ObjectId()), message="Would love to swap rooms")
            )

    @pytest.mark.parametrize("message", ["", "too short", "x" * 501])
    async def test_create_request_message_length(self, service, notifications, requester, message):
        with pytest.raises(ValidationError):
            await service.create_request(requester, MatchRequestCreate(listing_id=str(ObjectId()), message=message))

    # update_status

    async def test_owner_accepts_pending_request(self, service, mock_db, notifications, requester, owner, listing):
        """Test the owner moves a pending request to accepted with a versioned write"""
        request = generate_test_match_request(requester_id=requester["_id"], listing_id=listing["_id"])
        mock_db.match_requests.find_one.return_value = request
        mock_db.room_listings.find_one.return_value = listing
        mock_db.match_requests.find_one_and_update.return_value = {**request, "status": "Accepted", "version": 1}
        self._wire_responses(mock_db, listing, [requester])

        result = await service.update_status(str(request["_id"]), str(owner["_id"]), "Accepted", "Sure")

        query, update = mock_db.match_requests.find_one_and_update.call_args[0]
        assert query == {"_id": request["_id"], "status": "Pending", "version": 0}
        assert update["$inc"] == {"version": 1}
        assert result.status == "Accepted"
        notifications.emit_to_user.assert_awaited_once_with(str(requester["_id"]), "requestStatusUpdate", ANY)

    async def test_owner_rejects_pending_request(self, service, mock_db, notifications, requester, owner, listing):
        request = generate_test_match_request(requester_id=requester["_id"], listing_id=listing["_id"])
        mock_db.match_requests.find_one.return_value = request
        mock_db.room_listings.find_one.return_value = listing
        mock_db.match_requests.find_one_and_update.return_value = {**request, "status": "Rejected", "version": 1}
        self._wire_responses(mock_db, listing, [requester])

        result = await service.update_status(str(request["_id"]), str(owner["_id"]), "Rejected")

        assert result.status == "Rejected"
        assert result.swap_details["completed"] is False

    async def test_requester_cannot_accept(self, service, mock_db, notifications, requester, listing):
        request = generate_test_match_request(requester_id=requester["_id"], listing_id=listing["_id"])
        mock_db.match_requests.find_one.return_value = request
        mock_db.room_listings.find_one.return_value = listing

        with pytest.raises(ValidationError, match="only withdraw"):
            await service.update_status(str(request["_id"]), str(requester["_id"]), "Accepted")
        mock_db.match_requests.find_one_and_update.assert_not_awaited()

    async def test_requester_withdraws_and_deactivates(self, service, mock_db, notifications, requester, listing):
        request = generate_test_match_request(requester_id=requester["_id"], listing_id=listing["_id"])
        mock_db.match_requests.find_one.return_value = request
        mock_db.room_listings.find_one.return_value = listing
        mock_db.match_requests.find_one_and_update.return_value = {
            **request,
            "status": "Withdrawn",
            "is_active": False,
            "version": 1,
        }
        self._wire_responses(mock_db, listing, [requester])

        await service.update_status(str(request["_id"]), str(requester["_id"]), "Withdrawn")

        update = mock_db.match_requests.find_one_and_update.call_args[0][1]
        assert update["$set"]["is_active"] is False

    async def test_outsider_cannot_update(self, service, mock_db, notifications, listing):
        mock_db.match_requests.find_one.return_value = generate_test_match_request(listing_id=listing["_id"])
        mock_db.room_listings.find_one.return_value = listing

        with pytest.raises(AuthorizationError):
            await service.update_status(str(ObjectId()), str(ObjectId()), "Accepted")

    async def test_owner_cannot_accept_expired_request(self, service, mock_db, notifications, owner, listing):
        request = generate_test_match_request(listing_id=listing["_id"], expires_at=utcnow().replace(year=2000))
        mock_db.match_requests.find_one.return_value = request
        mock_db.room_listings.find_one.return_value = listing

        with pytest.raises(ValidationError, match="expired"):
            await service.update_status(str(request["_id"]), str(owner["_id"]), "Accepted")

    async def test_concurrent_status_change_conflicts(self, service, mock_db, notifications, owner, listing):
        request = generate_test_match_request(listing_id=listing["_id"])
        mock_db.match_requests.find_one.return_value = request
        mock_db.room_listings.find_one.return_value = listing
        mock_db.match_requests.find_one_and_update.return_value = None

        with pytest.raises(ConflictError):
            await service.update_status(str(request["_id"]), str(owner["_id"]), "Accepted")

    async def test_invalid_status_value(self, service, notifications):
        with pytest.raises(ValidationError, match="Status must be one of"):
            await service.update_status(str(ObjectId()), str(ObjectId()), "Done")

    # approve

    async def test_first_approval_is_partial(self, service, mock_db, notifications, requester, owner, listing):
        """Test one party's approval is recorded without starting the swap"""
        request = generate_test_match_request(
            requester_id=requester["_id"], listing_id=listing["_id"], status="Accepted", version=1
        )
        mock_db.match_requests.find_one.return_value = request
        mock_db.room_listings.find_one.return_value = listing
        mock_db.match_requests.find_one_and_update.side_effect = lambda query, update, **kwargs: {
            **request,
            **update["$set"],
            "version": 2,
        }
        self._wire_responses(mock_db, listing, [requester])

        with patch.object(service, "execute_swap", AsyncMock()) as execute_swap:
            result, swap_completed = await service.approve(str(request["_id"]), str(requester["_id"]), True, "ok")

        query, update = mock_db.match_requests.find_one_and_update.call_args[0]
        assert query == {"_id": request["_id"], "status": "Accepted", "version": 1}
        assert "swap_details.swap_state" not in update["$set"]
        assert swap_completed is False
        assert result.approval_status == "partial"
        execute_swap.assert_not_awaited()
        notifications.emit_to_user.assert_awaited_once_with(str(owner["_id"]), "requestApproved", ANY)

    async def test_second_approval_claims_and_runs_swap(
        self, service, mock_db, notifications, requester, owner, listing
    ):
        """Test the completing approval claims the swap in the same write"""
        request = generate_test_match_request(
            requester_id=requester["_id"],
            listing_id=listing["_id"],
            status="Accepted",
            approvals=[{"user_id": requester["_id"], "approved": True, "comments": "", "approved_at": utcnow()}],
            version=2,
        )
        mock_db.match_requests.find_one.return_value = request
        mock_db.room_listings.find_one.return_value = listing
        mock_db.match_requests.find_one_and_update.return_value = {**request, "version": 3}
        self._wire_responses(mock_db, listing, [requester])

        with patch.object(service, "execute_swap", AsyncMock(return_value=True)) as execute_swap:
            _, swap_completed = await service.approve(str(request["_id"]), str(owner["_id"]), True)

        update = mock_db.match_requests.find_one_and_update.call_args[0][1]
        assert update["$set"]["swap_details.swap_state"] == "in_progress"
        assert len(update["$set"]["approvals"]) == 2
        assert swap_completed is True
        execute_swap.assert_awaited_once_with(request["_id"])

    async def test_decline_rejects_request_without_swap(
        self, service, mock_db, notifications, requester, owner, listing
    ):
        request = generate_test_match_request(
            requester_id=requester["_id"],
            listing_id=listing["_id"],
            status="Accepted",
            approvals=[{"user_id": requester["_id"], "approved": True}],
        )
        mock_db.match_requests.find_one.return_value = request
        mock_db.room_listings.find_one.return_value = listing
        mock_db.match_requests.find_one_and_update.return_value = {**request, "status": "Rejected", "version": 1}
        self._wire_responses(mock_db, listing, [requester])

        with patch.object(service, "execute_swap", AsyncMock()) as execute_swap:
            result, swap_completed = await service.approve(str(request["_id"]), str(owner["_id"]), False)

        update = mock_db.match_requests.find_one_and_update.call_args[0][1]
        assert update["$set"]["status"] == "Rejected"
        assert swap_completed is False
        assert result.status == "Rejected"
        execute_swap.assert_not_awaited()
        mock_db.users.update_one.assert_not_awaited()
        notifications.emit_to_user.assert_awaited_once_with(str(requester["_id"]), "requestRejected", ANY)

    async def test_approval_merges_swap_arrangement(
        self, service, mock_db, notifications, requester, owner, listing
    ):
        """Test the agreed date and meeting point are stored with the approval"""
        request = generate_test_match_request(
            requester_id=requester["_id"], listing_id=listing["_id"], status="Accepted", version=1
        )
        mock_db.match_requests.find_one.return_value = request
        mock_db.room_listings.find_one.return_value = listing
        mock_db.match_requests.find_one_and_update.return_value = {**request, "version": 2}
        self._wire_responses(mock_db, listing, [requester])
        arrangement = SwapArrangement(
            scheduled_date=datetime(2026, 11, 2, 10, tzinfo=timezone.utc), meeting_point="Block C lobby"
        )

        with patch.object(service, "execute_swap", AsyncMock()):
            await service.approve(str(request["_id"]), str(requester["_id"]), True, "", arrangement)

        values = mock_db.match_requests.find_one_and_update.call_args[0][1]["$set"]
        assert values["swap_details.scheduled_date"] == datetime(2026, 11, 2, 10, tzinfo=timezone.utc)
        assert values["swap_details.meeting_point"] == "Block C lobby"
        assert "swap_details.additional_notes" not in values

    async def test_declined_approval_ignores_swap_arrangement(
        self, service, mock_db, notifications, requester, owner, listing
    ):
        request = generate_test_match_request(
            requester_id=requester["_id"], listing_id=listing["_id"], status="Accepted"
        )
        mock_db.match_requests.find_one.return_value = request
        mock_db.room_listings.find_one.return_value = listing
        mock_db.match_requests.find_one_and_update.return_value = {**request, "status": "Rejected", "version": 1}
        self._wire_responses(mock_db, listing, [requester])

        await service.approve(str(request["_id"]), str(owner["_id"]), False, "", SwapArrangement(meeting_point="Gate 2"))

        values = mock_db.match_requests.find_one_and_update.call_args[0][1]["$set"]
        assert "swap_details.meeting_point" not in values

    async def test_approval_retries_after_lost_update(
        self, service, mock_db, notifications, requester, owner, listing
    ):
        """Test a conflicting write is retried against a fresh read"""
        request = generate_test_match_request(
            requester_id=requester["_id"], listing_id=listing["_id"], status="Accepted"
        )
        mock_db.match_requests.find_one.return_value = request
        mock_db.room_listings.find_one.return_value = listing
        mock_db.match_requests.find_one_and_update.side_effect = [None, {**request, "version": 1}]
        self._wire_responses(mock_db, listing, [requester])

        _, swap_completed = await service.approve(str(request["_id"]), str(owner["_id"]), True)

        assert mock_db.match_requests.find_one_and_update.await_count == 2
        assert swap_completed is False

    async def test_approval_gives_up_after_retries(self, service, mock_db, notifications, owner, listing):
        request = generate_test_match_request(listing_id=listing["_id"], status="Accepted")
        mock_db.match_requests.find_one.return_value = request
        mock_db.room_listings.find_one.return_value = listing
        mock_db.match_requests.find_one_and_update.return_value = None

        with pytest.raises(ConflictError):
            await service.approve(str(request["_id"]), str(owner["_id"]), True)
        assert mock_db.match_requests.find_one_and_update.await_count == settings.APPROVAL_MAX_RETRIES + 1

    async def test_approval_requires_accepted_request(self, service, mock_db, notifications, owner, listing):
        mock_db.match_requests.find_one.return_value = generate_test_match_request(listing_id=listing["_id"])
        mock_db.room_listings.find_one.return_value = listing

        with pytest.raises(ValidationError, match="must be accepted"):
            await service.approve(str(ObjectId()), str(owner["_id"]), True)

    async def test_approval_by_outsider(self, service, mock_db, notifications, listing):
        mock_db.match_requests.find_one.return_value = generate_test_match_request(
            listing_id=listing["_id"], status="Accepted"
        )
        mock_db.room_listings.find_one.return_value = listing

        with pytest.raises(AuthorizationError):
            await service.approve(str(ObjectId()), str(ObjectId()), True)

    @pytest.mark.parametrize("approved", [None, "yes", 1])
    async def test_approval_must_be_boolean(self, service, notifications, approved):
        with pytest.raises(ValidationError, match="true or false"):
            await service.approve(str(ObjectId()), str(ObjectId()), approved)

    async def test_replayed_approval_after_completion(self, service, mock_db, notifications, owner, listing):
        """Test approving a completed exchange returns the current state"""
        request = generate_test_match_request(
            listing_id=listing["_id"],
            status="Accepted",
            swap_details={"completed": True, "swap_state": "completed"},
        )
        mock_db.match_requests.find_one.return_value = request
        mock_db.room_listings.find_one.return_value = listing
        self._wire_responses(mock_db, listing, [])

        result, swap_completed = await service.approve(str(request["_id"]), str(owner["_id"]), True)

        assert swap_completed is False
        assert result.swap_details["completed"] is True
        mock_db.match_requests.find_one_and_update.assert_not_awaited()

    # execute_swap

    async def test_execute_swap_exchanges_rooms(self, service, mock_db, notifications, requester, owner, listing):
        """Test both users get the other's room and the listing closes"""
        request_id = ObjectId()
        claimed = generate_test_match_request(
            request_id=request_id,
            requester_id=requester["_id"],
            listing_id=listing["_id"],
            status="Accepted",
            swap_details={"completed": False, "swap_state": "in_progress"},
        )
        snapshotted = {
            **claimed,
            "swap_details": {
                "completed": False,
                "swap_state": "in_progress",
                "requester_room": requester["current_room"],
                "owner_room": owner["current_room"],
            },
        }
        mock_db.match_requests.find_one.side_effect = [claimed, snapshotted]
        mock_db.room_listings.find_one.return_value = listing
        mock_db.users.find_one.side_effect = [requester, owner]

        assert await service.execute_swap(request_id) is True

        assert mock_db.users.update_one.call_args_list == [
            call(
                {"_id": requester["_id"], "applied_swap_ids": {"$ne": request_id}},
                {"$set": {"current_room": owner["current_room"], "updated_at": ANY}, "$push": {"applied_swap_ids": request_id}},
            ),
            call(
                {"_id": owner["_id"], "applied_swap_ids": {"$ne": request_id}},
                {"$set": {"current_room": requester["current_room"], "updated_at": ANY}, "$push": {"applied_swap_ids": request_id}},
            ),
        ]
        listing_update = mock_db.room_listings.update_one.call_args[0][1]
        assert listing_update["$set"]["status"] == "Closed"
        assert listing_update["$set"]["is_active"] is False
        final_update = mock_db.match_requests.update_one.call_args[0][1]
        assert final_update["$set"]["swap_details.completed"] is True
        assert notifications.emit_to_user.await_count == 2

    async def test_execute_swap_resumes_from_snapshots(self, service, mock_db, notifications, requester, owner, listing):
        """Test a resumed swap reuses stored rooms instead of re-reading users"""
        request_id = ObjectId()
        requester_room = generate_test_room(hostel_name="Hostel A")
        owner_room = generate_test_room(hostel_name="Hostel B")
        mock_db.match_requests.find_one.return_value = generate_test_match_request(
            request_id=request_id,
            requester_id=requester["_id"],
            listing_id=listing["_id"],
            status="Accepted",
            swap_details={
                "completed": False,
                "swap_state": "in_progress",
                "requester_room": requester_room,
                "owner_room": owner_room,
            },
        )
        mock_db.room_listings.find_one.return_value = listing

        assert await service.execute_swap(request_id) is True

        mock_db.users.find_one.assert_not_awaited()
        first_update = mock_db.users.update_one.call_args_list[0][0][1]
        assert first_update["$set"]["current_room"] == owner_room

    async def test_execute_swap_already_completed(self, service, mock_db, notifications):
        mock_db.match_requests.find_one.return_value = generate_test_match_request(
            status="Accepted", swap_details={"completed": True, "swap_state": "completed"}
        )

        assert await service.execute_swap(ObjectId()) is True
        mock_db.users.update_one.assert_not_awaited()
        notifications.emit_to_user.assert_not_awaited()

    async def test_execute_swap_unclaimed(self, service, mock_db, notifications):
        mock_db.match_requests.find_one.return_value = generate_test_match_request(status="Accepted")

        assert await service.execute_swap(ObjectId()) is False
        mock_db.users.update_one.assert_not_awaited()

    async def test_execute_swap_failure_leaves_request_in_progress(
        self, service, mock_db, notifications, requester, owner, listing
    ):
        """Test an interrupted swap reports False and is not marked complete"""
        mock_db.match_requests.find_one.return_value = generate_test_match_request(
            requester_id=requester["_id"],
            listing_id=listing["_id"],
            status="Accepted",
            swap_details={
                "completed": False,
                "swap_state": "in_progress",
                "requester_room": requester["current_room"],
                "owner_room": owner["current_room"],
            },
        )
        mock_db.room_listings.find_one.return_value = listing
        mock_db.users.update_one.side_effect = RuntimeError("connection reset")

        assert await service.execute_swap(ObjectId()) is False
        mock_db.match_requests.update_one.assert_not_awaited()
        notifications.emit_to_user.assert_not_awaited()

    async def test_resume_pending_swaps(self, service, mock_db, notifications):
        mock_db.match_requests.find.return_value = make_cursor([{"_id": ObjectId()}, {"_id": ObjectId()}])

        with patch.object(service, "execute_swap", AsyncMock(side_effect=[True, False])):
            assert await service.resume_pending_swaps() == 1

    async def test_full_exchange_scenario(self, service, mock_db, notifications, requester, owner, listing):
        """Test requester then owner approval swaps both rooms and closes the listing"""
        request_id = ObjectId()
        base = generate_test_match_request(
            request_id=request_id, requester_id=requester["_id"], listing_id=listing["_id"], status="Accepted"
        )
        requester_approval = {"user_id": requester["_id"], "approved": True, "comments": "", "approved_at": utcnow()}
        awaiting_owner = {**base, "approvals": [requester_approval], "version": 1}
        claimed = {**awaiting_owner, "version": 2, "swap_details": {"completed": False, "swap_state": "in_progress"}}
        snapshotted = {
            **claimed,
            "swap_details": {
                **claimed["swap_details"],
                "requester_room": requester["current_room"],
                "owner_room": owner["current_room"],
            },
        }
        completed = {**snapshotted, "swap_details": {**snapshotted["swap_details"], "completed": True}}

        mock_db.match_requests.find_one.side_effect = [awaiting_owner, claimed, snapshotted, completed]
        mock_db.match_requests.find_one_and_update.return_value = claimed
        mock_db.room_listings.find_one.return_value = listing
        mock_db.users.find_one.side_effect = [requester, owner]
        self._wire_responses(mock_db, listing, [requester])

        result, swap_completed = await service.approve(str(request_id), str(owner["_id"]), True)

        assert swap_completed is True
        assert result.swap_details["completed"] is True
        assert result.status == "Accepted"
        assert mock_db.users.update_one.await_count == 2
        assert mock_db.room_listings.update_one.call_args[0][1]["$set"]["status"] == "Closed"
        events = [c.args[1] for c in notifications.emit_to_user.await_args_list]
        assert events.count("exchangeCompleted") == 2
        assert "requestApproved" in events
