from typing import Optional

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile
from pydantic import ValidationError as PydanticValidationError

from app.api.dependencies import get_current_user
from app.exceptions import ValidationError
from app.models.response import ApiResponse
from app.models.user import AccountDeactivate, CurrentRoom, ExchangePreferences, UserDetailsUpdate, UserResponse
from app.services.file_storage_service import IMAGE_TYPES, FileStorageService, file_storage_service
from app.services.user_service import UserService, user_service

router = APIRouter()


def get_user_service() -> UserService:
    """Dependency to get UserService"""
    return user_service


def get_file_storage() -> FileStorageService:
    return file_storage_service


@router.get("/search", response_model=ApiResponse)
async def search_users(
    q: str = Query("", description="Name, username or email fragment"),
    limit: int = Query(20, ge=1, le=50),
    current_user: dict = Depends(get_current_user),
    service: UserService = Depends(get_user_service),
):
    users = await service.search_users(str(current_user["_id"]), q, limit)
    return ApiResponse(data=users, message="Users found")


@router.get("/profile", response_model=ApiResponse)
async def get_profile(current_user: dict = Depends(get_current_user)):
    return ApiResponse(data=UserResponse.from_db_doc(current_user), message="User profile retrieved successfully")


@router.patch("/details", response_model=ApiResponse)
async def update_details(
    data: UserDetailsUpdate,
    current_user: dict = Depends(get_current_user),
    service: UserService = Depends(get_user_service),
):
    user = await service.update_details(str(current_user["_id"]), data)
    return ApiResponse(data=user, message="User details updated successfully")


@router.get("/preferences", response_model=ApiResponse)
async def get_preferences(
    current_user: dict = Depends(get_current_user), service: UserService = Depends(get_user_service)
):
    return ApiResponse(data=await service.get_preferences(str(current_user["_id"])))


@router.patch("/preferences", response_model=ApiResponse)
async def update_preferences(
    preferences: ExchangePreferences,
    current_user: dict = Depends(get_current_user),
    service: UserService = Depends(get_user_service),
):
    values = await service.update_preferences(str(current_user["_id"]), preferences)
    return ApiResponse(data=values, message="Preferences updated successfully")


@router.get("/current-room", response_model=ApiResponse)
async def get_current_room(
    current_user: dict = Depends(get_current_user), service: UserService = Depends(get_user_service)
):
    return ApiResponse(data=await service.get_current_room(str(current_user["_id"])))


@router.patch("/current-room", response_model=ApiResponse)
async def update_current_room(
    room: CurrentRoom,
    current_user: dict = Depends(get_current_user),
    service: UserService = Depends(get_user_service),
):
    values = await service.update_current_room(str(current_user["_id"]), room)
    return ApiResponse(data=values, message="Current room updated successfully")


@router.post("/request-room-update", response_model=ApiResponse, status_code=201)
async def request_room_update(
    reason: str = Form(""),
    requested_room: Optional[str] = Form(None, description="Requested room as a JSON object"),
    proof_file: UploadFile = File(...),
    current_user: dict = Depends(get_current_user),
    service: UserService = Depends(get_user_service),
    storage: FileStorageService = Depends(get_file_storage),
):
    room = None
    if requested_room:
        try:
            room = CurrentRoom.model_validate_json(requested_room)
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid requested room: {e.errors()[0]['msg']}") from e
    if not reason or len(reason.strip()) < 10:
        raise ValidationError("Reason must be at least 10 characters long")

    path = await storage.save(proof_file, "room-proofs")
    try:
        result = await service.request_room_update(str(current_user["_id"]), reason, path, room)
    except Exception:
        await storage.delete(path)
        raise
    return ApiResponse(data=result, message="Room update request submitted successfully")


@router.post("/upload-profile-picture", response_model=ApiResponse)
async def upload_profile_picture(
    profile_picture: UploadFile = File(...),
    current_user: dict = Depends(get_current_user),
    service: UserService = Depends(get_user_service),
    storage: FileStorageService = Depends(get_file_storage),
):
    path = await storage.save(profile_picture, "profile-pictures", allowed_types=IMAGE_TYPES)
    try:
        user = await service.update_profile_picture(str(current_user["_id"]), path)
    except Exception:
        await storage.delete(path)
        raise
    return ApiResponse(data=user, message="Profile picture updated successfully")


@router.delete("/deactivate", response_model=ApiResponse)
async def deactivate_account(
    data: AccountDeactivate,
    current_user: dict = Depends(get_current_user),
    service: UserService = Depends(get_user_service),
):
    await service.deactivate(str(current_user["_id"]), data.password)
    return ApiResponse(message="Account deactivated successfully")


@router.get("/{user_id}", response_model=ApiResponse)
async def get_user(
    user_id: str,
    current_user: dict = Depends(get_current_user),
    service: UserService = Depends(get_user_service),
):
    user = await service.get_public_profile(str(current_user["_id"]), user_id)
    return ApiResponse(data=user)
