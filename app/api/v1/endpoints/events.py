from typing import Optional

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile
from pydantic import ValidationError as PydanticValidationError

from app.api.dependencies import get_current_user
from app.exceptions import ValidationError
from app.models.event import EventComment, EventCreate
from app.models.response import ApiResponse
from app.services.event_service import EventService, event_service
from app.services.file_storage_service import IMAGE_TYPES, FileStorageService, file_storage_service

router = APIRouter()


def get_event_service() -> EventService:
    """Dependency to get EventService"""
    return event_service


def get_file_storage() -> FileStorageService:
    return file_storage_service


@router.get("/", response_model=ApiResponse)
async def list_events(
    type: Optional[str] = None,
    upcoming: bool = True,
    featured: bool = False,
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    current_user: dict = Depends(get_current_user),
    service: EventService = Depends(get_event_service),
):
    events, pagination = await service.list_events(
        str(current_user["_id"]), type, upcoming, featured, search, page, limit
    )
    return ApiResponse(data={"events": events, "pagination": pagination}, message="Events retrieved successfully")


@router.post("/", response_model=ApiResponse, status_code=201)
async def submit_event(
    event: str = Form(..., description="Event details as a JSON object"),
    event_image: Optional[UploadFile] = File(None),
    current_user: dict = Depends(get_current_user),
    service: EventService = Depends(get_event_service),
    storage: FileStorageService = Depends(get_file_storage),
):
    try:
        data = EventCreate.model_validate_json(event)
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid event: {e.errors()[0]['msg']}") from e

    image_url = None
    if event_image is not None:
        image_url = await storage.save(event_image, "events", allowed_types=IMAGE_TYPES)
    try:
        created = await service.submit_event(str(current_user["_id"]), data, image_url)
    except Exception:
        await storage.delete(image_url)
        raise
    return ApiResponse(data=created, message="Event submitted for approval")


@router.get("/registered", response_model=ApiResponse)
async def registered_events(
    current_user: dict = Depends(get_current_user), service: EventService = Depends(get_event_service)
):
    return ApiResponse(data=await service.get_registered_events(str(current_user["_id"])))


@router.get("/user/{user_id}", response_model=ApiResponse)
async def user_events(
    user_id: str,
    current_user: dict = Depends(get_current_user),
    service: EventService = Depends(get_event_service),
):
    return ApiResponse(data=await service.get_user_events(user_id, str(current_user["_id"])))


@router.get("/{event_id}", response_model=ApiResponse)
async def get_event(
    event_id: str,
    current_user: dict = Depends(get_current_user),
    service: EventService = Depends(get_event_service),
):
    return ApiResponse(data=await service.get_event(event_id, str(current_user["_id"])))


@router.post("/{event_id}/register", response_model=ApiResponse)
async def toggle_registration(
    event_id: str,
    current_user: dict = Depends(get_current_user),
    service: EventService = Depends(get_event_service),
):
    result = await service.toggle_registration(event_id, current_user)
    message = "Registered for event" if result["is_registered"] else "Registration cancelled"
    return ApiResponse(data=result, message=message)


@router.post("/{event_id}/like", response_model=ApiResponse)
async def toggle_like(
    event_id: str,
    current_user: dict = Depends(get_current_user),
    service: EventService = Depends(get_event_service),
):
    result = await service.toggle_like(event_id, str(current_user["_id"]))
    return ApiResponse(data=result, message="Event liked" if result["is_liked"] else "Event unliked")


@router.post("/{event_id}/comments", response_model=ApiResponse, status_code=201)
async def add_comment(
    event_id: str,
    data: EventComment,
    current_user: dict = Depends(get_current_user),
    service: EventService = Depends(get_event_service),
):
    comment = await service.add_comment(event_id, current_user, data.text)
    return ApiResponse(data=comment, message="Comment added successfully")
