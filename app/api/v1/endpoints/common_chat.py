from typing import Optional

from fastapi import APIRouter, Depends, Query

from app.api.dependencies import get_current_user
from app.models.common_chat import CommonChatEdit, CommonChatMessageCreate, PollVote, ReactionCreate
from app.models.response import ApiResponse
from app.services.common_chat_service import CommonChatService, common_chat_service

router = APIRouter()


def get_common_chat_service() -> CommonChatService:
    """Dependency to get CommonChatService"""
    return common_chat_service


@router.get("/messages", response_model=ApiResponse)
async def get_recent_messages(
    limit: int = Query(50, ge=1, le=100),
    before: Optional[str] = None,
    current_user: dict = Depends(get_current_user),
    service: CommonChatService = Depends(get_common_chat_service),
):
    messages = await service.get_recent_messages(limit, before)
    return ApiResponse(data=messages, message="Messages retrieved successfully")


@router.get("/pinned", response_model=ApiResponse)
async def get_pinned_messages(
    current_user: dict = Depends(get_current_user),
    service: CommonChatService = Depends(get_common_chat_service),
):
    return ApiResponse(data=await service.get_pinned_messages())


@router.get("/search", response_model=ApiResponse)
async def search_messages(
    q: str = Query(""),
    limit: int = Query(50, ge=1, le=100),
    current_user: dict = Depends(get_current_user),
    service: CommonChatService = Depends(get_common_chat_service),
):
    return ApiResponse(data=await service.search_messages(q, limit), message="Messages found")


@router.post("/message", response_model=ApiResponse, status_code=201)
async def send_message(
    data: CommonChatMessageCreate,
    current_user: dict = Depends(get_current_user),
    service: CommonChatService = Depends(get_common_chat_service),
):
    message = await service.send_message(current_user, data)
    return ApiResponse(data=message, message="Message sent successfully")


@router.post("/{message_id}/vote", response_model=ApiResponse)
async def vote_on_poll(
    message_id: str,
    data: PollVote,
    current_user: dict = Depends(get_current_user),
    service: CommonChatService = Depends(get_common_chat_service),
):
    message = await service.vote_on_poll(message_id, str(current_user["_id"]), data.option_index)
    return ApiResponse(data=message, message="Vote recorded successfully")


@router.post("/{message_id}/reaction", response_model=ApiResponse)
async def add_reaction(
    message_id: str,
    data: ReactionCreate,
    current_user: dict = Depends(get_current_user),
    service: CommonChatService = Depends(get_common_chat_service),
):
    result = await service.add_reaction(message_id, str(current_user["_id"]), data.reaction)
    return ApiResponse(data=result, message="Reaction added successfully")


@router.delete("/{message_id}/reaction", response_model=ApiResponse)
async def remove_reaction(
    message_id: str,
    current_user: dict = Depends(get_current_user),
    service: CommonChatService = Depends(get_common_chat_service),
):
    result = await service.remove_reaction(message_id, str(current_user["_id"]))
    return ApiResponse(data=result, message="Reaction removed successfully")


@router.patch("/{message_id}", response_model=ApiResponse)
async def edit_message(
    message_id: str,
    data: CommonChatEdit,
    current_user: dict = Depends(get_current_user),
    service: CommonChatService = Depends(get_common_chat_service),
):
    message = await service.edit_message(message_id, str(current_user["_id"]), data.content)
    return ApiResponse(data=message, message="Message edited successfully")


@router.delete("/{message_id}", response_model=ApiResponse)
async def delete_message(
    message_id: str,
    current_user: dict = Depends(get_current_user),
    service: CommonChatService = Depends(get_common_chat_service),
):
    await service.delete_message(message_id, str(current_user["_id"]))
    return ApiResponse(message="Message deleted successfully")


@router.post("/{message_id}/pin", response_model=ApiResponse)
async def toggle_pin(
    message_id: str,
    current_user: dict = Depends(get_current_user),
    service: CommonChatService = Depends(get_common_chat_service),
):
    message = await service.toggle_pin(message_id, str(current_user["_id"]))
    state = "pinned" if message.get("is_pinned") else "unpinned"
    return ApiResponse(data=message, message=f"Message {state} successfully")
