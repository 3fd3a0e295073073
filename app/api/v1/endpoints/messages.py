from fastapi import APIRouter, Depends, Query

from app.api.dependencies import get_current_user
from app.models.message import ConversationSync, DirectMessageCreate, DirectMessageEdit
from app.models.response import ApiResponse
from app.services.message_service import MessageService, message_service

router = APIRouter()


def get_message_service() -> MessageService:
    """Dependency to get MessageService"""
    return message_service


@router.get("/conversations", response_model=ApiResponse)
async def get_conversations(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    current_user: dict = Depends(get_current_user),
    service: MessageService = Depends(get_message_service),
):
    conversations = await service.get_conversations(str(current_user["_id"]), page, limit)
    return ApiResponse(data=conversations, message="Conversations retrieved successfully")


@router.get("/unread-count", response_model=ApiResponse)
async def get_unread_count(
    current_user: dict = Depends(get_current_user), service: MessageService = Depends(get_message_service)
):
    count = await service.get_unread_count(str(current_user["_id"]))
    return ApiResponse(data={"unread_count": count})


@router.get("/search", response_model=ApiResponse)
async def search_messages(
    q: str = Query(""),
    limit: int = Query(50, ge=1, le=100),
    current_user: dict = Depends(get_current_user),
    service: MessageService = Depends(get_message_service),
):
    messages = await service.search_messages(str(current_user["_id"]), q, limit)
    return ApiResponse(data=messages, message="Messages found")


@router.get("/sync-status", response_model=ApiResponse)
async def get_sync_status(
    current_user: dict = Depends(get_current_user), service: MessageService = Depends(get_message_service)
):
    return ApiResponse(data=await service.get_sync_status(str(current_user["_id"])))


@router.post("/sync-conversation", response_model=ApiResponse)
async def sync_conversation(
    data: ConversationSync,
    current_user: dict = Depends(get_current_user),
    service: MessageService = Depends(get_message_service),
):
    result = await service.sync_conversation(str(current_user["_id"]), data.other_user_id, data.last_sync_timestamp)
    return ApiResponse(data=result, message="Conversation synced successfully")


@router.post("/", response_model=ApiResponse, status_code=201)
async def send_message(
    data: DirectMessageCreate,
    current_user: dict = Depends(get_current_user),
    service: MessageService = Depends(get_message_service),
):
    message = await service.send_message(str(current_user["_id"]), data.receiver_id, data.message, data.listing_id)
    return ApiResponse(data=message, message="Message sent successfully")


@router.get("/{user_id}", response_model=ApiResponse)
async def get_conversation(
    user_id: str,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    current_user: dict = Depends(get_current_user),
    service: MessageService = Depends(get_message_service),
):
    conversation = await service.get_conversation(str(current_user["_id"]), user_id, page, limit)
    return ApiResponse(data=conversation, message="Conversation retrieved successfully")


@router.patch("/{message_id}/read", response_model=ApiResponse)
async def mark_as_read(
    message_id: str,
    current_user: dict = Depends(get_current_user),
    service: MessageService = Depends(get_message_service),
):
    message = await service.mark_as_read(message_id, str(current_user["_id"]))
    return ApiResponse(data=message, message="Message marked as read")


@router.patch("/{user_id}/read-all", response_model=ApiResponse)
async def mark_all_as_read(
    user_id: str,
    current_user: dict = Depends(get_current_user),
    service: MessageService = Depends(get_message_service),
):
    count = await service.mark_all_as_read(str(current_user["_id"]), user_id)
    return ApiResponse(data={"marked_count": count}, message="Messages marked as read")


@router.patch("/{message_id}/edit", response_model=ApiResponse)
async def edit_message(
    message_id: str,
    data: DirectMessageEdit,
    current_user: dict = Depends(get_current_user),
    service: MessageService = Depends(get_message_service),
):
    message = await service.edit_message(message_id, str(current_user["_id"]), data.message)
    return ApiResponse(data=message, message="Message edited successfully")


@router.delete("/{message_id}", response_model=ApiResponse)
async def delete_message(
    message_id: str,
    current_user: dict = Depends(get_current_user),
    service: MessageService = Depends(get_message_service),
):
    await service.delete_message(message_id, str(current_user["_id"]))
    return ApiResponse(message="Message deleted successfully")
