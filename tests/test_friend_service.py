"""
Tests for friends and friend requests
"""
from unittest.mock import ANY, AsyncMock, MagicMock, call, patch

import pytest
from bson import ObjectId

from app.exceptions import AuthorizationError, ConflictError, NotFoundError, ValidationError
from app.services.friend_service import FriendService
from app.utils.document_utils import utcnow
from tests.test_utils import generate_test_user, make_cursor


def make_friend_request(sender_id, receiver_id, status: str = "pending") -> dict:
    return {
        "_id": ObjectId(),
        "sender_id": sender_id,
        "receiver_id": receiver_id,
        "message": "Hey, neighbour!",
        "status": status,
        "created_at": utcnow(),
    }


class TestFriendService:
    """Test class for friend service"""

    @pytest.fixture
    def service(self):
        return FriendService()

    @pytest.fixture
    def notifications(self, mock_mongodb, mock_db):
        with patch("app.services.friend_service.mongodb", mock_mongodb), patch(
            "app.services.friend_service.connection_manager"
        ) as manager:
            manager.emit_to_user = AsyncMock(return_value=1)
            mock_db.friend_requests = MagicMock()
            mock_db.friend_requests.find_one = AsyncMock(return_value=None)
            mock_db.friend_requests.find_one_and_update = AsyncMock(return_value=None)
            mock_db.friend_requests.insert_one = AsyncMock(return_value=MagicMock(inserted_id=ObjectId()))
            mock_db.users.find.return_value = make_cursor([])
            yield manager

    @pytest.fixture
    def user(self):
        return generate_test_user(full_name="Asha Rao")

    @pytest.fixture
    def target(self):
        return generate_test_user()

    async def test_send_request(self, service, mock_db, notifications, user, target):
        mock_db.users.find_one.return_value = target

        result = await service.send_request(user, str(target["_id"]), "Hi!")

        stored = mock_db.friend_requests.insert_one.call_args[0][0]
        assert stored["status"] == "pending"
        assert result["is_sent_by_me"] is True
        notifications.emit_to_user.assert_awaited_once_with(str(target["_id"]), "friendRequestReceived", ANY)

    async def test_send_request_to_self(self, service, notifications, user):
        with pytest.raises(ValidationError, match="yourself"):
            await service.send_request(user, str(user["_id"]))

    async def test_send_request_to_unknown_user(self, service, notifications, user):
        with pytest.raises(NotFoundError):
            await service.send_request(user, str(ObjectId()))

    async def test_send_request_invalid_id(self, service, notifications, user):
        with pytest.raises(ValidationError):
            await service.send_request(user, "not-an-id")

    async def test_send_request_to_friend(self, service, mock_db, notifications, target):
        user = generate_test_user(friends=[target["_id"]])
        mock_db.users.find_one.return_value = target

        with pytest.raises(ConflictError, match="already friends"):
            await service.send_request(user, str(target["_id"]))

    async def test_send_request_when_reverse_pending(self, service, mock_db, notifications, user, target):
        mock_db.users.find_one.return_value = target
        mock_db.friend_requests.find_one.return_value = make_friend_request(target["_id"], user["_id"])

        with pytest.raises(ConflictError):
            await service.send_request(user, str(target["_id"]))
        mock_db.friend_requests.insert_one.assert_not_awaited()

    async def test_send_request_message_too_long(self, service, notifications, user):
        with pytest.raises(ValidationError, match="200"):
            await service.send_request(user, str(ObjectId()), "x" * 201)

    async def test_accept_adds_both_sides(self, service, mock_db, notifications, user, target):
        """Test accepting makes the friendship symmetric"""
        request = make_friend_request(target["_id"], user["_id"])
        mock_db.friend_requests.find_one.return_value = request
        mock_db.friend_requests.find_one_and_update.return_value = {**request, "status": "accepted"}

        result = await service.respond(str(request["_id"]), user, "accept")

        assert result["status"] == "accepted"
        assert mock_db.users.update_one.call_args_list == [
            call({"_id": target["_id"]}, {"$addToSet": {"friends": user["_id"]}}),
            call({"_id": user["_id"]}, {"$addToSet": {"friends": target["_id"]}}),
        ]
        notifications.emit_to_user.assert_awaited_once_with(str(target["_id"]), "friendRequestAccepted", ANY)

    async def test_reject_leaves_friend_lists(self, service, mock_db, notifications, user, target):
        request = make_friend_request(target["_id"], user["_id"])
        mock_db.friend_requests.find_one.return_value = request
        mock_db.friend_requests.find_one_and_update.return_value = {**request, "status": "rejected"}

        await service.respond(str(request["_id"]), user, "reject")

        mock_db.users.update_one.assert_not_awaited()
        notifications.emit_to_user.assert_awaited_once_with(str(target["_id"]), "friendRequestRejected", ANY)

    async def test_only_receiver_may_respond(self, service, mock_db, notifications, user, target):
        mock_db.friend_requests.find_one.return_value = make_friend_request(user["_id"], target["_id"])

        with pytest.raises(AuthorizationError):
            await service.respond(str(ObjectId()), user, "accept")

    async def test_respond_twice(self, service, mock_db, notifications, user, target):
        mock_db.friend_requests.find_one.return_value = make_friend_request(target["_id"], user["_id"], "accepted")
        mock_db.friend_requests.find_one_and_update.return_value = None

        with pytest.raises(ValidationError, match="already been handled"):
            await service.respond(str(ObjectId()), user, "accept")

    async def test_respond_invalid_action(self, service, notifications, user):
        with pytest.raises(ValidationError, match="accept or reject"):
            await service.respond(str(ObjectId()), user, "maybe")

    async def test_remove_friend(self, service, mock_db, notifications, target):
        user = generate_test_user(friends=[target["_id"]])
        mock_db.users.find_one.return_value = {"_id": target["_id"]}

        await service.remove_friend(user, str(target["_id"]))

        assert mock_db.users.update_one.call_args_list == [
            call({"_id": user["_id"]}, {"$pull": {"friends": target["_id"]}}),
            call({"_id": target["_id"]}, {"$pull": {"friends": user["_id"]}}),
        ]
        notifications.emit_to_user.assert_awaited_once_with(str(target["_id"]), "friendRemoved", ANY)

    async def test_remove_non_friend(self, service, mock_db, notifications, user, target):
        mock_db.users.find_one.return_value = {"_id": target["_id"]}

        with pytest.raises(ValidationError, match="not friends"):
            await service.remove_friend(user, str(target["_id"]))

    async def test_suggestions_exclude_friends_and_pending(self, service, mock_db, notifications, target):
        friend_id, pending_id = ObjectId(), ObjectId()
        user = generate_test_user(friends=[friend_id])
        mock_db.friend_requests.find.return_value = make_cursor([make_friend_request(user["_id"], pending_id)])
        mock_db.users.aggregate.return_value = make_cursor(
            [{"_id": target["_id"], "full_name": target["full_name"], "mutual_friends_count": 1}]
        )

        suggestions, pagination = await service.get_suggestions(user, limit=10)

        match = mock_db.users.aggregate.call_args[0][0][0]["$match"]
        assert set(map(str, match["_id"]["$nin"])) == {str(friend_id), str(user["_id"]), str(pending_id)}
        assert match["gender"] == user["gender"]
        assert suggestions[0]["mutual_friends_count"] == 1
        assert pagination == {"current_page": 1, "has_more": False}

    async def test_mutual_friends(self, service, mock_db, notifications):
        shared, only_mine = ObjectId(), ObjectId()
        user = generate_test_user(friends=[shared, only_mine])
        mock_db.users.find_one.return_value = {"_id": ObjectId(), "friends": [shared, ObjectId()]}
        mock_db.users.find.return_value = make_cursor([{"_id": shared, "full_name": "Common Pal"}])

        result = await service.get_mutual_friends(user, str(ObjectId()))

        assert result["count"] == 1
        assert result["mutual_friends"][0]["full_name"] == "Common Pal"
