from datetime import date, datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from app.models.status_enums import AttendanceStatus

SCHEDULE_DAYS = ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday"]


class ScheduleSlot(BaseModel):
    day: str
    start_time: str
    end_time: str
    room: Optional[str] = None


class CourseCreate(BaseModel):
    """Course payload; required fields are checked by the service"""
    course_code: Optional[str] = None
    course_name: Optional[str] = None
    instructor: Optional[str] = None
    credits: int = 3
    color: str = "#3B82F6"
    schedule: List[ScheduleSlot] = Field(default_factory=list)
    start_date: Optional[date] = None
    end_date: Optional[date] = None


class CourseUpdate(BaseModel):
    course_name: Optional[str] = None
    instructor: Optional[str] = None
    credits: Optional[int] = None
    color: Optional[str] = None
    schedule: Optional[List[ScheduleSlot]] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None


class AttendanceMark(BaseModel):
    course_id: Optional[str] = None
    date: date
    status: AttendanceStatus
    notes: Optional[str] = Field(None, max_length=200)


class AssignmentCreate(BaseModel):
    title: str
    description: Optional[str] = None
    due_date: datetime
    max_marks: float = Field(100, gt=0)
    obtained_marks: Optional[float] = Field(None, ge=0)
    weight: float = Field(1.0, gt=0)
    submitted: bool = False


class ExamCreate(BaseModel):
    title: str
    exam_type: str = "Midterm"
    date: datetime
    venue: Optional[str] = None
    max_marks: float = Field(100, gt=0)
    obtained_marks: Optional[float] = Field(None, ge=0)
    weight: float = Field(1.0, gt=0)
