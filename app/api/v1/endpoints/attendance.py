from typing import Optional

from fastapi import APIRouter, Depends, Query

from app.api.dependencies import get_current_user
from app.exceptions import ValidationError
from app.models.course import AssignmentCreate, AttendanceMark, CourseCreate, CourseUpdate, ExamCreate
from app.models.response import ApiResponse
from app.services.course_service import CourseService, course_service

router = APIRouter()


def get_course_service() -> CourseService:
    """Dependency to get CourseService"""
    return course_service


@router.get("/courses", response_model=ApiResponse)
async def list_courses(
    current_user: dict = Depends(get_current_user), service: CourseService = Depends(get_course_service)
):
    result = await service.list_courses(str(current_user["_id"]))
    return ApiResponse(data=result, message="Courses retrieved successfully")


@router.post("/courses", response_model=ApiResponse, status_code=201)
async def add_course(
    data: CourseCreate,
    current_user: dict = Depends(get_current_user),
    service: CourseService = Depends(get_course_service),
):
    course = await service.add_course(str(current_user["_id"]), data)
    return ApiResponse(data=course, message="Course added successfully")


@router.get("/courses/{course_id}", response_model=ApiResponse)
async def get_course(
    course_id: str,
    current_user: dict = Depends(get_current_user),
    service: CourseService = Depends(get_course_service),
):
    return ApiResponse(data=await service.get_course(course_id, str(current_user["_id"])))


@router.patch("/courses/{course_id}", response_model=ApiResponse)
async def update_course(
    course_id: str,
    data: CourseUpdate,
    current_user: dict = Depends(get_current_user),
    service: CourseService = Depends(get_course_service),
):
    course = await service.update_course(course_id, str(current_user["_id"]), data)
    return ApiResponse(data=course, message="Course updated successfully")


@router.delete("/courses/{course_id}", response_model=ApiResponse)
async def delete_course(
    course_id: str,
    current_user: dict = Depends(get_current_user),
    service: CourseService = Depends(get_course_service),
):
    await service.delete_course(course_id, str(current_user["_id"]))
    return ApiResponse(message="Course deleted successfully")


@router.post("/mark", response_model=ApiResponse)
async def mark_attendance(
    data: AttendanceMark,
    current_user: dict = Depends(get_current_user),
    service: CourseService = Depends(get_course_service),
):
    if not data.course_id:
        raise ValidationError("Course ID is required")
    course = await service.mark_attendance(data.course_id, str(current_user["_id"]), data.date, data.status, data.notes)
    return ApiResponse(data=course, message="Attendance marked successfully")


@router.post("/courses/{course_id}/attendance", response_model=ApiResponse)
async def mark_course_attendance(
    course_id: str,
    data: AttendanceMark,
    current_user: dict = Depends(get_current_user),
    service: CourseService = Depends(get_course_service),
):
    course = await service.mark_attendance(course_id, str(current_user["_id"]), data.date, data.status, data.notes)
    return ApiResponse(data=course, message="Attendance marked successfully")


@router.get("/summary", response_model=ApiResponse)
async def attendance_summary(
    course_id: Optional[str] = None,
    month: Optional[int] = None,
    year: Optional[int] = None,
    current_user: dict = Depends(get_current_user),
    service: CourseService = Depends(get_course_service),
):
    user_id = str(current_user["_id"])
    if course_id:
        summary = await service.get_attendance_summary(course_id, user_id, month, year)
    else:
        courses = await service.list_courses(user_id)
        summary = courses["summary"]
    return ApiResponse(data=summary, message="Attendance summary retrieved successfully")


@router.get("/upcoming", response_model=ApiResponse)
async def upcoming(
    days: int = Query(7, ge=1, le=90),
    current_user: dict = Depends(get_current_user),
    service: CourseService = Depends(get_course_service),
):
    events = await service.get_upcoming(str(current_user["_id"]), days)
    return ApiResponse(data=events, message="Upcoming events retrieved successfully")


@router.post("/courses/{course_id}/assignments", response_model=ApiResponse, status_code=201)
async def add_assignment(
    course_id: str,
    data: AssignmentCreate,
    current_user: dict = Depends(get_current_user),
    service: CourseService = Depends(get_course_service),
):
    course = await service.add_assignment(course_id, str(current_user["_id"]), data)
    return ApiResponse(data=course, message="Assignment added successfully")


@router.post("/courses/{course_id}/exams", response_model=ApiResponse, status_code=201)
async def add_exam(
    course_id: str,
    data: ExamCreate,
    current_user: dict = Depends(get_current_user),
    service: CourseService = Depends(get_course_service),
):
    course = await service.add_exam(course_id, str(current_user["_id"]), data)
    return ApiResponse(data=course, message="Exam added successfully")
