from typing import Optional

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile
from pydantic import ValidationError as PydanticValidationError

from app.api.dependencies import get_current_user, get_optional_user
from app.exceptions import ValidationError
from app.models.response import ApiResponse
from app.models.room_listing import DesiredRoom, ListingRoom, RoomListingUpdate
from app.models.status_enums import Urgency
from app.services.file_storage_service import FileStorageService, file_storage_service
from app.services.room_listing_service import RoomListingService, room_listing_service

router = APIRouter()


def get_room_listing_service() -> RoomListingService:
    """Dependency to get RoomListingService"""
    return room_listing_service


def get_file_storage() -> FileStorageService:
    return file_storage_service


def parse_form_model(model, raw: Optional[str], field: str):
    """Multipart forms carry nested objects as JSON strings"""
    if not raw:
        return None
    try:
        return model.model_validate_json(raw)
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid {field}: {e.errors()[0]['msg']}") from e


@router.get("/", response_model=ApiResponse)
async def list_listings(
    hostel: Optional[str] = None,
    room_type: Optional[str] = None,
    urgency: Optional[str] = None,
    min_budget: Optional[float] = Query(None, ge=0),
    max_budget: Optional[float] = Query(None, ge=0),
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    user: Optional[dict] = Depends(get_optional_user),
    service: RoomListingService = Depends(get_room_listing_service),
):
    listings, pagination = await service.list_listings(
        user, hostel, room_type, urgency, min_budget, max_budget, search, page, limit
    )
    return ApiResponse(data={"listings": listings, "pagination": pagination}, message="Listings retrieved successfully")


@router.get("/trending", response_model=ApiResponse)
async def trending_listings(
    limit: int = Query(10, ge=1, le=50),
    user: Optional[dict] = Depends(get_optional_user),
    service: RoomListingService = Depends(get_room_listing_service),
):
    listings = await service.get_trending(user, limit)
    return ApiResponse(data=listings, message="Trending listings retrieved successfully")


@router.get("/my/listings", response_model=ApiResponse)
async def my_listings(
    current_user: dict = Depends(get_current_user),
    service: RoomListingService = Depends(get_room_listing_service),
):
    listings = await service.get_my_listings(str(current_user["_id"]))
    return ApiResponse(data=listings, message="Your listings retrieved successfully")


@router.get("/{listing_id}", response_model=ApiResponse)
async def get_listing(
    listing_id: str,
    user: Optional[dict] = Depends(get_optional_user),
    service: RoomListingService = Depends(get_room_listing_service),
):
    return ApiResponse(data=await service.get_listing(listing_id, user))


@router.post("/", response_model=ApiResponse, status_code=201)
async def create_listing(
    current_room: str = Form(..., description="Offered room as a JSON object"),
    description: str = Form(""),
    listing_type: str = Form("Exchange"),
    desired_room: Optional[str] = Form(None, description="Desired room as a JSON object"),
    urgency: Urgency = Form(Urgency.MEDIUM),
    room_proof_file: Optional[UploadFile] = File(None),
    current_user: dict = Depends(get_current_user),
    service: RoomListingService = Depends(get_room_listing_service),
    storage: FileStorageService = Depends(get_file_storage),
):
    room = parse_form_model(ListingRoom, current_room, "current room")
    if room is None:
        raise ValidationError("Current room details are required")
    desired = parse_form_model(DesiredRoom, desired_room, "desired room")
    if room_proof_file is None:
        raise ValidationError("Room proof file is required")

    proof_path = await storage.save(room_proof_file, "room-proofs")
    try:
        listing = await service.create_listing(
            current_user, room, description, proof_path, listing_type, desired, urgency
        )
    except Exception:
        await storage.delete(proof_path)
        raise
    return ApiResponse(data=listing, message="Room listing created successfully")


@router.post("/{listing_id}/interest", response_model=ApiResponse)
async def toggle_interest(
    listing_id: str,
    current_user: dict = Depends(get_current_user),
    service: RoomListingService = Depends(get_room_listing_service),
):
    result = await service.toggle_interest(listing_id, current_user)
    message = "Interest added" if result["is_interested"] else "Interest removed"
    return ApiResponse(data=result, message=message)


@router.patch("/{listing_id}", response_model=ApiResponse)
async def update_listing(
    listing_id: str,
    update: RoomListingUpdate,
    current_user: dict = Depends(get_current_user),
    service: RoomListingService = Depends(get_room_listing_service),
):
    listing = await service.update_listing(listing_id, str(current_user["_id"]), update)
    return ApiResponse(data=listing, message="Listing updated successfully")


@router.delete("/{listing_id}", response_model=ApiResponse)
async def delete_listing(
    listing_id: str,
    current_user: dict = Depends(get_current_user),
    service: RoomListingService = Depends(get_room_listing_service),
):
    await service.delete_listing(listing_id, str(current_user["_id"]))
    return ApiResponse(message="Listing deleted successfully")
