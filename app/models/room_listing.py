from typing import List, Optional

from pydantic import BaseModel, Field

from app.models.status_enums import RoomType, Urgency
from app.utils.document_utils import id_str, serialize_value


class ListingRoom(BaseModel):
    """Room offered in a listing"""
    hostel_name: str
    room_number: str
    block: str
    room_type: RoomType
    floor: Optional[int] = Field(None, ge=0, le=50)
    amenities: List[str] = Field(default_factory=list)
    rent: Optional[float] = Field(None, ge=0)
    images: List[str] = Field(default_factory=list)


class DesiredRoom(BaseModel):
    """What the owner wants in exchange"""
    preferred_hostels: List[str] = Field(default_factory=list)
    preferred_room_types: List[RoomType] = Field(default_factory=list)
    preferred_floors: List[int] = Field(default_factory=list)
    amenity_preferences: List[str] = Field(default_factory=list)
    max_budget: Optional[float] = Field(None, ge=0)


class RoomListingUpdate(BaseModel):
    title: Optional[str] = Field(None, max_length=100)
    description: Optional[str] = Field(None, max_length=1000)
    current_room: Optional[ListingRoom] = None
    desired_room: Optional[DesiredRoom] = None
    urgency: Optional[Urgency] = None
    available_till: Optional[str] = None
    tags: Optional[List[str]] = None


class RoomListingResponse(BaseModel):
    """Model for API responses"""
    id: str
    title: str
    description: Optional[str] = None
    listed_by: Optional[dict] = None
    current_room: dict
    desired_room: dict = Field(default_factory=dict)
    status: str
    urgency: str
    available_from: Optional[str] = None
    available_till: Optional[str] = None
    room_proof_file: Optional[str] = None
    interest_count: int = 0
    views: int = 0
    is_active: bool = True
    tags: List[str] = Field(default_factory=list)
    gender_preference: Optional[str] = None
    user_interest: Optional[bool] = None
    trending_score: Optional[float] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @classmethod
    def from_db_doc(cls, doc: dict, owner: Optional[dict] = None, user_id: Optional[str] = None):
        """Create response model from database document"""
        interested = [id_str(uid) for uid in doc.get("interested_users", [])]
        return cls(
            id=str(doc["_id"]),
            title=doc.get("title", ""),
            description=doc.get("description"),
            listed_by=owner or {"id": id_str(doc.get("listed_by"))},
            current_room=serialize_value(doc.get("current_room") or {}),
            desired_room=serialize_value(doc.get("desired_room") or {}),
            status=doc.get("status", "Open"),
            urgency=doc.get("urgency", "Medium"),
            available_from=serialize_value(doc.get("available_from")),
            available_till=serialize_value(doc.get("available_till")),
            room_proof_file=doc.get("room_proof_file"),
            interest_count=len(interested),
            views=doc.get("views", 0),
            is_active=doc.get("is_active", True),
            tags=doc.get("tags", []),
            gender_preference=doc.get("gender_preference"),
            user_interest=(user_id in interested) if user_id else None,
            trending_score=doc.get("trending_score"),
            created_at=serialize_value(doc.get("created_at")),
            updated_at=serialize_value(doc.get("updated_at")),
        )
