"""
Tests for course and attendance tracking
"""
from datetime import date, datetime, timezone
from unittest.mock import MagicMock, patch

import pytest
from bson import ObjectId

from app.exceptions import ConflictError, NotFoundError, ValidationError
from app.models.course import CourseCreate, ExamCreate, ScheduleSlot
from app.models.status_enums import AttendanceStatus
from app.services.course_service import (
    CourseService,
    attendance_percentage,
    attendance_streak,
    current_average,
    day_start,
    next_class,
)

# 2026-10-19 is a Monday
MONDAY_MORNING = datetime(2026, 10, 19, 10, 0, tzinfo=timezone.utc)


def record(day: int, status: str) -> dict:
    return {"date": datetime(2026, 10, day, tzinfo=timezone.utc), "status": status, "notes": ""}


def make_course(**overrides) -> dict:
    course = {
        "_id": ObjectId(),
        "user_id": ObjectId(),
        "course_code": "CS101",
        "course_name": "Intro to Programming",
        "instructor": "Dr. Mehta",
        "credits": 4,
        "color": "#3B82F6",
        "schedule": [],
        "start_date": day_start(date(2026, 8, 1)),
        "end_date": day_start(date(2026, 12, 15)),
        "attendance": [],
        "assignments": [],
        "exams": [],
        "is_active": True,
    }
    course.update(overrides)
    return course


class TestAttendanceMath:
    """Test class for attendance and grade helpers"""

    def test_percentage_counts_late_as_attended(self):
        records = [record(1, "present"), record(2, "late"), record(3, "absent"), record(4, "present")]
        assert attendance_percentage(records) == 75

    def test_percentage_without_records(self):
        assert attendance_percentage([]) == 0

    def test_percentage_rounds(self):
        records = [record(1, "present"), record(2, "absent"), record(3, "absent")]
        assert attendance_percentage(records) == 33

    def test_streak_stops_at_latest_absence(self):
        records = [record(5, "present"), record(1, "present"), record(3, "absent"), record(4, "late")]
        assert attendance_streak(records) == 2

    def test_streak_zero_when_latest_missed(self):
        assert attendance_streak([record(1, "present"), record(2, "absent")]) == 0

    def test_current_average_is_weighted(self):
        course = make_course(
            assignments=[{"max_marks": 10, "obtained_marks": 5, "weight": 1.0}],
            exams=[{"max_marks": 100, "obtained_marks": 80, "weight": 3.0}],
        )
        # (50 * 1 + 80 * 3) / 4
        assert current_average(course) == 72.5

    def test_current_average_ignores_ungraded(self):
        course = make_course(assignments=[{"max_marks": 10, "obtained_marks": None}])
        assert current_average(course) == 0


class TestNextClass:
    def test_picks_earliest_upcoming_slot(self):
        course = make_course(
            schedule=[
                {"day": "Monday", "start_time": "09:00", "end_time": "10:00", "room": "L1"},
                {"day": "Wednesday", "start_time": "14:00", "end_time": "15:00", "room": "L2"},
            ]
        )
        result = next_class(course, MONDAY_MORNING)
        assert result["date"] == datetime(2026, 10, 21, 14, 0, tzinfo=timezone.utc)
        assert result["venue"] == "L2"

    def test_slot_later_today(self):
        course = make_course(schedule=[{"day": "Monday", "start_time": "11:30", "end_time": "12:30"}])
        assert next_class(course, MONDAY_MORNING)["date"] == datetime(2026, 10, 19, 11, 30, tzinfo=timezone.utc)

    def test_slot_starting_now_rolls_to_next_week(self):
        course = make_course(schedule=[{"day": "Monday", "start_time": "10:00", "end_time": "11:00"}])
        assert next_class(course, MONDAY_MORNING)["date"] == datetime(2026, 10, 26, 10, 0, tzinfo=timezone.utc)

    def test_no_schedule(self):
        assert next_class(make_course(), MONDAY_MORNING) is None


class TestCourseService:
    """Test class for course service"""

    @pytest.fixture
    def service(self):
        return CourseService()

    @pytest.fixture(autouse=True)
    def patched_db(self, mock_mongodb):
        with patch("app.services.course_service.mongodb", mock_mongodb):
            yield

    @pytest.fixture
    def course_data(self):
        return CourseCreate(
            course_code="cs101",
            course_name="Intro to Programming",
            instructor="Dr. Mehta",
            credits=4,
            schedule=[ScheduleSlot(day="Tuesday", start_time="09:00", end_time="10:30")],
            start_date=date(2026, 8, 1),
            end_date=date(2026, 12, 15),
        )

    async def test_add_course_uppercases_code(self, service, mock_db, course_data):
        mock_db.courses.insert_one.return_value = MagicMock(inserted_id=ObjectId())

        result = await service.add_course(str(ObjectId()), course_data)

        stored = mock_db.courses.insert_one.call_args[0][0]
        assert stored["course_code"] == "CS101"
        assert stored["start_date"] == datetime(2026, 8, 1, tzinfo=timezone.utc)
        assert result["attendance_percentage"] == 0

    async def test_add_course_duplicate_code(self, service, mock_db, course_data):
        mock_db.courses.find_one.return_value = make_course()

        with pytest.raises(ConflictError):
            await service.add_course(str(ObjectId()), course_data)

    async def test_add_course_missing_fields(self, service):
        with pytest.raises(ValidationError, match="instructor"):
            await service.add_course(
                str(ObjectId()), CourseCreate(course_code="CS1", course_name="X", start_date=date(2026, 1, 1))
            )

    @pytest.mark.parametrize(
        "overrides, message",
        [
            ({"end_date": date(2026, 7, 1)}, "End date"),
            ({"credits": 11}, "Credits"),
            ({"color": "blue"}, "hex"),
            ({"schedule": [ScheduleSlot(day="Funday", start_time="09:00", end_time="10:00")]}, "schedule day"),
            ({"schedule": [ScheduleSlot(day="Monday", start_time="9am", end_time="10:00")]}, "HH:MM"),
            ({"schedule": [ScheduleSlot(day="Monday", start_time="11:00", end_time="10:00")]}, "after start"),
        ],
    )
    async def test_add_course_validation(self, service, mock_db, course_data, overrides, message):
        data = course_data.model_copy(update=overrides)
        with pytest.raises(ValidationError, match=message):
            await service.add_course(str(ObjectId()), data)
        mock_db.courses.insert_one.assert_not_awaited()

    async def test_get_course_of_other_user(self, service, mock_db):
        mock_db.courses.find_one.return_value = None

        with pytest.raises(NotFoundError):
            await service.get_course(str(ObjectId()), str(ObjectId()))

    async def test_mark_attendance_replaces_same_day(self, service, mock_db):
        course = make_course(attendance=[record(5, "absent"), record(6, "present")])
        mock_db.courses.find_one.return_value = course
        mock_db.courses.find_one_and_update.side_effect = lambda query, update, **kwargs: {
            **course,
            **update["$set"],
        }

        result = await service.mark_attendance(
            str(course["_id"]), str(course["user_id"]), date(2026, 10, 5), AttendanceStatus.LATE
        )

        records = mock_db.courses.find_one_and_update.call_args[0][1]["$set"]["attendance"]
        assert [(r["date"].day, r["status"]) for r in records] == [(5, "late"), (6, "present")]
        assert result["attendance_percentage"] == 100

    async def test_mark_attendance_outside_course(self, service, mock_db):
        course = make_course()
        mock_db.courses.find_one.return_value = course

        with pytest.raises(ValidationError, match="within the course duration"):
            await service.mark_attendance(
                str(course["_id"]), str(course["user_id"]), date(2027, 1, 10), AttendanceStatus.PRESENT
            )
        mock_db.courses.find_one_and_update.assert_not_awaited()

    async def test_add_exam_marks_above_maximum(self, service, mock_db):
        with pytest.raises(ValidationError, match="cannot exceed"):
            await service.add_exam(
                str(ObjectId()),
                str(ObjectId()),
                ExamCreate(title="Midterm", date=MONDAY_MORNING, max_marks=50, obtained_marks=60),
            )

    async def test_attendance_summary_for_month(self, service, mock_db):
        course = make_course(
            attendance=[
                record(1, "present"),
                record(2, "absent"),
                {"date": datetime(2026, 9, 30, tzinfo=timezone.utc), "status": "present"},
            ]
        )
        mock_db.courses.find_one.return_value = course

        summary = await service.get_attendance_summary(str(course["_id"]), str(course["user_id"]), 10, 2026)

        assert summary["total_classes"] == 2
        assert summary["present_count"] == 1
        assert summary["absent_count"] == 1
        assert summary["attendance_percentage"] == 50
        assert summary["records"][0]["date"].startswith("2026-10-02")

    async def test_upcoming_requires_positive_days(self, service):
        with pytest.raises(ValidationError):
            await service.get_upcoming(str(ObjectId()), 0)
