"""
User service: accounts, authentication and profile management.
"""

import logging
import random
import re
from typing import List, Optional, Tuple

from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from app.core.security import create_access_token, hash_password, verify_password
from app.db.mongodb import mongodb
from app.exceptions import (
    AuthenticationError,
    AuthorizationError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from app.models.status_enums import RoomUpdateRequestStatus
from app.models.user import (
    CurrentRoom,
    ExchangePreferences,
    UserCreate,
    UserDetailsUpdate,
    UserResponse,
    UserSummary,
)
from app.utils.document_utils import contains_id, serialize_doc, to_object_id, utcnow

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 6
MIN_USERNAME_LENGTH = 3
MAX_BIO_LENGTH = 500
EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class UserService:
    """Service for user accounts and profiles"""

    async def _get_db(self):
        """Get database instance"""
        if mongodb.client is None:
            await mongodb.connect_to_mongo()
        return mongodb.get_database()

    async def get_user_doc(self, user_id: str) -> dict:
        db = await self._get_db()
        user = await db.users.find_one({"_id": to_object_id(user_id, "User")})
        if not user:
            raise NotFoundError("User not found")
        return user

    async def get_active_user(self, user_id: str) -> Optional[dict]:
        """Return the user document when it exists and is active, else None"""
        try:
            user = await self.get_user_doc(user_id)
        except NotFoundError:
            return None
        return user if user.get("is_active", True) else None

    async def _generate_username(self, email: str) -> str:
        db = await self._get_db()
        base = re.sub(r"[^a-z0-9_]", "", email.split("@")[0].lower()) or "user"
        for _ in range(10):
            candidate = f"{base}{random.randint(1000, 9999)}"
            if not await db.users.find_one({"username": candidate}):
                return candidate
        return f"{base}{random.randint(100000, 999999)}"

    async def signup(self, data: UserCreate) -> Tuple[UserResponse, str]:
        """Register a user and return it with an access token"""
        if not all([data.email, data.password, data.full_name, data.gender]):
            raise ValidationError("Email, password, full name and gender are required")

        email = data.email.strip().lower()
        if not EMAIL_PATTERN.match(email):
            raise ValidationError("Please provide a valid email")
        if len(data.password) < MIN_PASSWORD_LENGTH:
            raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long")

        db = await self._get_db()
        if await db.users.find_one({"email": email}):
            raise ConflictError("User with this email already exists")

        username = data.username.strip().lower() if data.username else None
        if username:
            if len(username) < MIN_USERNAME_LENGTH:
                raise ValidationError(f"Username must be at least {MIN_USERNAME_LENGTH} characters long")
            if await db.users.find_one({"username": username}):
                raise ConflictError("Username is already taken")
        else:
            username = await self._generate_username(email)

        now = utcnow()
        user_doc = {
            "email": email,
            "password_hash": hash_password(data.password),
            "full_name": data.full_name.strip(),
            "username": username,
            "phone_number": data.phone_number,
            "gender": data.gender.value,
            "profile_picture": None,
            "bio": "",
            "current_room": None,
            "exchange_preferences": ExchangePreferences().model_dump(mode="json"),
            "friends": [],
            "is_verified": False,
            "is_active": True,
            "last_login": now,
            "created_at": now,
            "updated_at": now,
        }
        try:
            result = await db.users.insert_one(user_doc)
        except DuplicateKeyError as e:
            raise ConflictError("User with this email already exists") from e
        user_doc["_id"] = result.inserted_id

        logger.info("Registered user %s (%s)", result.inserted_id, username)
        token = create_access_token({"user_id": str(result.inserted_id)})
        return UserResponse.from_db_doc(user_doc), token

    async def authenticate(self, email: Optional[str], password: Optional[str]) -> Tuple[UserResponse, str]:
        """Check credentials, record the login and return the user with a token"""
        if not email or not password:
            raise ValidationError("Email and password are required")

        db = await self._get_db()
        user = await db.users.find_one({"email": email.strip().lower()})
        if not user or not verify_password(password, user.get("password_hash")):
            raise AuthenticationError("Invalid email or password")
        if not user.get("is_active", True):
            raise AuthorizationError("Account is deactivated")

        now = utcnow()
        await db.users.update_one({"_id": user["_id"]}, {"$set": {"last_login": now}})
        user["last_login"] = now

        logger.info("User %s logged in", user["_id"])
        return UserResponse.from_db_doc(user), create_access_token({"user_id": str(user["_id"])})

    def refresh_token(self, user_id: str) -> str:
        return create_access_token({"user_id": str(user_id)})

    async def change_password(self, user_id: str, current_password: str, new_password: str) -> None:
        user = await self.get_user_doc(user_id)
        if not verify_password(current_password, user.get("password_hash")):
            raise AuthenticationError("Current password is incorrect")
        if len(new_password) < MIN_PASSWORD_LENGTH:
            raise ValidationError(f"New password must be at least {MIN_PASSWORD_LENGTH} characters long")
        if current_password == new_password:
            raise ValidationError("New password must be different from the current password")

        db = await self._get_db()
        await db.users.update_one(
            {"_id": user["_id"]},
            {"$set": {"password_hash": hash_password(new_password), "updated_at": utcnow()}},
        )
        logger.info("Password changed for user %s", user_id)

    async def request_password_reset(self, email: str) -> None:
        """Log a reset request; callers always get the same reply"""
        db = await self._get_db()
        user = await db.users.find_one({"email": email.strip().lower()})
        if user:
            logger.info("Password reset requested for user %s", user["_id"])
        else:
            logger.info("Password reset requested for unknown email")

    async def search_users(self, user_id: str, query: str, limit: int = 20) -> List[UserSummary]:
        if not query or len(query.strip()) < 2:
            raise ValidationError("Search query must be at least 2 characters long")

        db = await self._get_db()
        pattern = {"$regex": re.escape(query.strip()), "$options": "i"}
        cursor = db.users.find(
            {
                "_id": {"$ne": to_object_id(user_id, "User")},
                "is_active": True,
                "$or": [{"full_name": pattern}, {"username": pattern}, {"email": pattern}],
            }
        ).limit(limit)

        return [UserSummary.from_db_doc(doc) async for doc in cursor]

    async def update_details(self, user_id: str, data: UserDetailsUpdate) -> UserResponse:
        updates = {}
        db = await self._get_db()
        object_id = to_object_id(user_id, "User")

        if data.full_name is not None:
            if not data.full_name.strip():
                raise ValidationError("Full name cannot be empty")
            updates["full_name"] = data.full_name.strip()
        if data.username is not None:
            username = data.username.strip().lower()
            if len(username) < MIN_USERNAME_LENGTH:
                raise ValidationError(f"Username must be at least {MIN_USERNAME_LENGTH} characters long")
            if await db.users.find_one({"username": username, "_id": {"$ne": object_id}}):
                raise ConflictError("Username is already taken")
            updates["username"] = username
        if data.bio is not None:
            if len(data.bio) > MAX_BIO_LENGTH:
                raise ValidationError(f"Bio cannot exceed {MAX_BIO_LENGTH} characters")
            updates["bio"] = data.bio
        if data.phone_number is not None:
            updates["phone_number"] = data.phone_number

        if not updates:
            raise ValidationError("No valid fields to update")

        updates["updated_at"] = utcnow()
        user = await db.users.find_one_and_update(
            {"_id": object_id}, {"$set": updates}, return_document=ReturnDocument.AFTER
        )
        if not user:
            raise NotFoundError("User not found")
        return UserResponse.from_db_doc(user)

    async def get_preferences(self, user_id: str) -> dict:
        user = await self.get_user_doc(user_id)
        return user.get("exchange_preferences") or ExchangePreferences().model_dump(mode="json")

    async def update_preferences(self, user_id: str, preferences: ExchangePreferences) -> dict:
        db = await self._get_db()
        values = preferences.model_dump(mode="json")
        result = await db.users.update_one(
            {"_id": to_object_id(user_id, "User")},
            {"$set": {"exchange_preferences": values, "updated_at": utcnow()}},
        )
        if result.matched_count == 0:
            raise NotFoundError("User not found")
        return values

    async def get_current_room(self, user_id: str) -> Optional[dict]:
        user = await self.get_user_doc(user_id)
        return user.get("current_room")

    async def update_current_room(self, user_id: str, room: CurrentRoom) -> dict:
        db = await self._get_db()
        values = room.model_dump(mode="json")
        result = await db.users.update_one(
            {"_id": to_object_id(user_id, "User")},
            {"$set": {"current_room": values, "updated_at": utcnow()}},
        )
        if result.matched_count == 0:
            raise NotFoundError("User not found")
        logger.info("Current room updated for user %s", user_id)
        return values

    async def request_room_update(
        self, user_id: str, reason: str, proof_file: str, requested_room: Optional[CurrentRoom] = None
    ) -> dict:
        if not reason or len(reason.strip()) < 10:
            raise ValidationError("Reason must be at least 10 characters long")

        db = await self._get_db()
        doc = {
            "user_id": to_object_id(user_id, "User"),
            "reason": reason.strip(),
            "proof_file": proof_file,
            "requested_room": requested_room.model_dump(mode="json") if requested_room else None,
            "status": RoomUpdateRequestStatus.PENDING.value,
            "created_at": utcnow(),
        }
        result = await db.room_update_requests.insert_one(doc)
        doc["_id"] = result.inserted_id
        logger.info("Room update request %s submitted by %s", result.inserted_id, user_id)
        return serialize_doc(doc)

    async def update_profile_picture(self, user_id: str, path: str) -> UserResponse:
        db = await self._get_db()
        user = await db.users.find_one_and_update(
            {"_id": to_object_id(user_id, "User")},
            {"$set": {"profile_picture": path, "updated_at": utcnow()}},
            return_document=ReturnDocument.AFTER,
        )
        if not user:
            raise NotFoundError("User not found")
        return UserResponse.from_db_doc(user)

    async def get_public_profile(self, viewer_id: str, user_id: str) -> UserResponse:
        """Profile of another user; room details only for friends or self"""
        user = await self.get_user_doc(user_id)
        if not user.get("is_active", True):
            raise NotFoundError("User not found")
        is_self = str(user["_id"]) == str(viewer_id)
        is_friend = contains_id(user.get("friends", []), viewer_id)
        response = UserResponse.from_db_doc(user, include_private=is_self)
        if is_friend and not is_self:
            response.current_room = serialize_doc(user.get("current_room")) if user.get("current_room") else None
        return response

    async def deactivate(self, user_id: str, password: str) -> None:
        user = await self.get_user_doc(user_id)
        if not verify_password(password, user.get("password_hash")):
            raise AuthenticationError("Password is incorrect")

        db = await self._get_db()
        now = utcnow()
        await db.users.update_one({"_id": user["_id"]}, {"$set": {"is_active": False, "updated_at": now}})
        await db.room_listings.update_many(
            {"listed_by": user["_id"], "is_active": True}, {"$set": {"is_active": False, "updated_at": now}}
        )
        logger.info("User %s deactivated", user_id)


user_service = UserService()
