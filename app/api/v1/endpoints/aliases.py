"""
Alternate paths kept for web clients that call these operations by other names.
"""

from fastapi import APIRouter

from app.api.v1.endpoints import attendance, matches, rooms
from app.models.response import ApiResponse

router = APIRouter()

router.add_api_route(
    "/exchange-dashboard", matches.exchange_dashboard, methods=["GET"], response_model=ApiResponse
)
router.add_api_route(
    "/exchange-requests/{request_id}/approve", matches.approve_request, methods=["POST"], response_model=ApiResponse
)
router.add_api_route(
    "/room-listings/trending", rooms.trending_listings, methods=["GET"], response_model=ApiResponse
)
router.add_api_route("/courses", attendance.list_courses, methods=["GET"], response_model=ApiResponse)
router.add_api_route(
    "/courses", attendance.add_course, methods=["POST"], response_model=ApiResponse, status_code=201
)
router.add_api_route(
    "/courses/{course_id}/attendance", attendance.mark_course_attendance, methods=["POST"], response_model=ApiResponse
)
