from typing import Optional

from fastapi import APIRouter, Depends, Query

from app.api.dependencies import get_current_user
from app.models.match_request import ApprovalCreate, MatchRequestCreate, MatchRequestStatusUpdate
from app.models.response import ApiResponse
from app.services.match_request_service import MatchRequestService, match_request_service

router = APIRouter()


def get_match_request_service() -> MatchRequestService:
    """Dependency to get MatchRequestService"""
    return match_request_service


@router.get("/", response_model=ApiResponse)
async def list_requests(
    type: str = Query("all", description="sent, received or all"),
    status: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    current_user: dict = Depends(get_current_user),
    service: MatchRequestService = Depends(get_match_request_service),
):
    requests, pagination = await service.list_requests(str(current_user["_id"]), type, status, page, limit)
    return ApiResponse(
        data={"requests": requests, "pagination": pagination}, message="Match requests retrieved successfully"
    )


@router.post("/", response_model=ApiResponse, status_code=201)
async def create_request(
    data: MatchRequestCreate,
    current_user: dict = Depends(get_current_user),
    service: MatchRequestService = Depends(get_match_request_service),
):
    request = await service.create_request(current_user, data)
    return ApiResponse(data=request, message="Match request sent successfully")


@router.get("/history", response_model=ApiResponse)
async def exchange_history(
    current_user: dict = Depends(get_current_user),
    service: MatchRequestService = Depends(get_match_request_service),
):
    history = await service.get_history(str(current_user["_id"]))
    return ApiResponse(data=history, message="Exchange history retrieved successfully")


@router.get("/dashboard", response_model=ApiResponse)
async def exchange_dashboard(
    current_user: dict = Depends(get_current_user),
    service: MatchRequestService = Depends(get_match_request_service),
):
    dashboard = await service.get_dashboard(str(current_user["_id"]))
    return ApiResponse(data=dashboard, message="Exchange dashboard retrieved successfully")


@router.get("/{request_id}", response_model=ApiResponse)
async def get_request(
    request_id: str,
    current_user: dict = Depends(get_current_user),
    service: MatchRequestService = Depends(get_match_request_service),
):
    return ApiResponse(data=await service.get_request(request_id, str(current_user["_id"])))


@router.patch("/{request_id}", response_model=ApiResponse)
async def update_request_status(
    request_id: str,
    data: MatchRequestStatusUpdate,
    current_user: dict = Depends(get_current_user),
    service: MatchRequestService = Depends(get_match_request_service),
):
    request = await service.update_status(request_id, str(current_user["_id"]), data.status, data.response_message)
    return ApiResponse(data=request, message=f"Request {str(data.status).lower()} successfully")


async def approve_request(
    request_id: str,
    data: ApprovalCreate,
    current_user: dict = Depends(get_current_user),
    service: MatchRequestService = Depends(get_match_request_service),
):
    request, swap_completed = await service.approve(
        request_id, str(current_user["_id"]), data.approved, data.comments, data.swap_details
    )
    if swap_completed:
        message = "Room exchange completed successfully"
    elif data.approved:
        message = "Exchange approved, waiting for the other party"
    else:
        message = "Exchange rejected"
    return ApiResponse(data={"request": request, "swap_completed": swap_completed}, message=message)


router.add_api_route("/{request_id}/approve", approve_request, methods=["POST"], response_model=ApiResponse)
router.add_api_route("/{request_id}/exchange-approve", approve_request, methods=["POST"], response_model=ApiResponse)
