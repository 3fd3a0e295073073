from typing import Optional

from fastapi import APIRouter, Depends, Query

from app.api.dependencies import get_current_user
from app.models.friend import FriendRequestCreate, FriendRequestResponse
from app.models.response import ApiResponse
from app.services.friend_service import FriendService, friend_service

router = APIRouter()


def get_friend_service() -> FriendService:
    """Dependency to get FriendService"""
    return friend_service


@router.get("/list", response_model=ApiResponse)
async def list_friends(
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    current_user: dict = Depends(get_current_user),
    service: FriendService = Depends(get_friend_service),
):
    friends, pagination = await service.list_friends(current_user, search, page, limit)
    return ApiResponse(data={"friends": friends, "pagination": pagination}, message="Friends retrieved successfully")


@router.get("/requests", response_model=ApiResponse)
async def list_requests(
    type: str = Query("all", description="sent, received or all"),
    status: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    current_user: dict = Depends(get_current_user),
    service: FriendService = Depends(get_friend_service),
):
    requests, pagination = await service.list_requests(str(current_user["_id"]), type, status, page, limit)
    return ApiResponse(
        data={"requests": requests, "pagination": pagination}, message="Friend requests retrieved successfully"
    )


@router.get("/suggestions", response_model=ApiResponse)
async def suggestions(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=50),
    current_user: dict = Depends(get_current_user),
    service: FriendService = Depends(get_friend_service),
):
    users, pagination = await service.get_suggestions(current_user, page, limit)
    return ApiResponse(data={"suggestions": users, "pagination": pagination})


@router.get("/mutual/{user_id}", response_model=ApiResponse)
async def mutual_friends(
    user_id: str,
    current_user: dict = Depends(get_current_user),
    service: FriendService = Depends(get_friend_service),
):
    return ApiResponse(data=await service.get_mutual_friends(current_user, user_id))


@router.post("/request/{user_id}", response_model=ApiResponse, status_code=201)
async def send_request(
    user_id: str,
    data: Optional[FriendRequestCreate] = None,
    current_user: dict = Depends(get_current_user),
    service: FriendService = Depends(get_friend_service),
):
    request = await service.send_request(current_user, user_id, data.message if data else "")
    return ApiResponse(data=request, message="Friend request sent successfully")


@router.patch("/request/{request_id}", response_model=ApiResponse)
async def respond_to_request(
    request_id: str,
    data: FriendRequestResponse,
    current_user: dict = Depends(get_current_user),
    service: FriendService = Depends(get_friend_service),
):
    request = await service.respond(request_id, current_user, data.action, data.response_message)
    return ApiResponse(data=request, message=f"Friend request {data.action}ed successfully")


@router.delete("/{friend_id}", response_model=ApiResponse)
async def remove_friend(
    friend_id: str,
    current_user: dict = Depends(get_current_user),
    service: FriendService = Depends(get_friend_service),
):
    await service.remove_friend(current_user, friend_id)
    return ApiResponse(message="Friend removed successfully")
