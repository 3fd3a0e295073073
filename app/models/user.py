from typing import List, Optional

from pydantic import BaseModel, Field

from app.models.status_enums import Gender, RoomType
from app.utils.document_utils import id_str, serialize_value


class CurrentRoom(BaseModel):
    """Room a user currently lives in"""
    hostel_name: str
    room_number: str
    block: str
    room_type: RoomType
    floor: Optional[int] = Field(None, ge=0, le=50)
    amenities: List[str] = Field(default_factory=list)


class ExchangePreferences(BaseModel):
    preferred_hostels: List[str] = Field(default_factory=list)
    preferred_room_types: List[RoomType] = Field(default_factory=list)
    preferred_floors: List[int] = Field(default_factory=list)
    max_budget: Optional[float] = Field(None, ge=0)
    amenities: List[str] = Field(default_factory=list)


class UserCreate(BaseModel):
    """Signup payload; required fields are checked by the service"""
    email: Optional[str] = None
    password: Optional[str] = None
    full_name: Optional[str] = None
    gender: Optional[Gender] = None
    username: Optional[str] = None
    phone_number: Optional[str] = None


class UserLogin(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None


class PasswordChange(BaseModel):
    current_password: str
    new_password: str


class PasswordResetRequest(BaseModel):
    email: str


class UserDetailsUpdate(BaseModel):
    full_name: Optional[str] = None
    username: Optional[str] = None
    phone_number: Optional[str] = None
    bio: Optional[str] = None


class AccountDeactivate(BaseModel):
    password: str


class UserResponse(BaseModel):
    """User as returned by the API (never carries the password hash)"""
    id: str
    email: Optional[str] = None
    full_name: str
    username: Optional[str] = None
    phone_number: Optional[str] = None
    gender: Optional[str] = None
    profile_picture: Optional[str] = None
    bio: Optional[str] = None
    current_room: Optional[dict] = None
    exchange_preferences: Optional[dict] = None
    friends: List[str] = Field(default_factory=list)
    is_verified: bool = False
    is_active: bool = True
    last_login: Optional[str] = None
    created_at: Optional[str] = None

    @classmethod
    def from_db_doc(cls, doc: dict, include_private: bool = True):
        """Create response model from database document"""
        return cls(
            id=str(doc["_id"]),
            email=doc.get("email") if include_private else None,
            full_name=doc.get("full_name", ""),
            username=doc.get("username"),
            phone_number=doc.get("phone_number") if include_private else None,
            gender=doc.get("gender"),
            profile_picture=doc.get("profile_picture"),
            bio=doc.get("bio"),
            current_room=serialize_value(doc.get("current_room")) if include_private else None,
            exchange_preferences=serialize_value(doc.get("exchange_preferences")) if include_private else None,
            friends=[id_str(friend_id) for friend_id in doc.get("friends", [])],
            is_verified=doc.get("is_verified", False),
            is_active=doc.get("is_active", True),
            last_login=serialize_value(doc.get("last_login")),
            created_at=serialize_value(doc.get("created_at")),
        )


class UserSummary(BaseModel):
    """Short user card embedded in other resources"""
    id: str
    full_name: str
    username: Optional[str] = None
    profile_picture: Optional[str] = None
    gender: Optional[str] = None

    @classmethod
    def from_db_doc(cls, doc: dict):
        return cls(
            id=str(doc["_id"]),
            full_name=doc.get("full_name", ""),
            username=doc.get("username"),
            profile_picture=doc.get("profile_picture"),
            gender=doc.get("gender"),
        )


# Fields fetched whenever a user is embedded in another resource
USER_SUMMARY_PROJECTION = {"full_name": 1, "username": 1, "profile_picture": 1, "gender": 1}

