"""
Course and attendance tracking service.

Courses belong to a single user. Attendance is kept as one record per
calendar day; marking the same day again replaces the earlier record.
"""

import logging
import re
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Dict, List, Optional

from pymongo import ReturnDocument

from app.db.mongodb import mongodb
from app.exceptions import ConflictError, NotFoundError, ValidationError
from app.models.course import SCHEDULE_DAYS, AssignmentCreate, CourseCreate, CourseUpdate, ExamCreate, ScheduleSlot
from app.models.status_enums import AttendanceStatus
from app.utils.document_utils import as_utc, serialize_doc, serialize_value, to_object_id, utcnow

logger = logging.getLogger(__name__)

COLOR_PATTERN = re.compile(r"^#[0-9A-Fa-f]{6}$")
TIME_PATTERN = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")
MIN_CREDITS = 1
MAX_CREDITS = 10
ATTENDED = (AttendanceStatus.PRESENT.value, AttendanceStatus.LATE.value)


def day_start(value: date) -> datetime:
    """Midnight UTC of a calendar day (BSON has no date-only type)"""
    return datetime.combine(value, time.min, tzinfo=timezone.utc)


def attendance_percentage(records: List[dict]) -> int:
    if not records:
        return 0
    attended = sum(1 for record in records if record.get("status") in ATTENDED)
    return round(attended / len(records) * 100)


def attendance_streak(records: List[dict]) -> int:
    """Consecutive attended classes counting back from the latest record"""
    streak = 0
    for record in sorted(records, key=lambda r: as_utc(r["date"]), reverse=True):
        if record.get("status") not in ATTENDED:
            break
        streak += 1
    return streak


def current_average(course: dict) -> float:
    """Weighted percentage over graded assignments and exams"""
    graded = [
        item
        for item in course.get("assignments", []) + course.get("exams", [])
        if item.get("obtained_marks") is not None and item.get("max_marks")
    ]
    total_weight = sum(item.get("weight", 1.0) for item in graded)
    if not total_weight:
        return 0
    score = sum(item["obtained_marks"] / item["max_marks"] * 100 * item.get("weight", 1.0) for item in graded)
    return round(score / total_weight, 2)


def next_class(course: dict, now: Optional[datetime] = None) -> Optional[Dict[str, Any]]:
    now = now or utcnow()
    best = None
    for slot in course.get("schedule", []):
        if slot.get("day") not in SCHEDULE_DAYS:
            continue
        hours, minutes = (int(part) for part in slot["start_time"].split(":"))
        days_ahead = (SCHEDULE_DAYS.index(slot["day"]) - now.weekday()) % 7
        if days_ahead == 0 and (hours, minutes) <= (now.hour, now.minute):
            days_ahead = 7
        start = (now + timedelta(days=days_ahead)).replace(hour=hours, minute=minutes, second=0, microsecond=0)
        if best is None or start < best["date"]:
            best = {"date": start, "time": slot["start_time"], "venue": slot.get("room")}
    return best


def validate_schedule(schedule: List[ScheduleSlot]) -> None:
    for slot in schedule:
        if slot.day not in SCHEDULE_DAYS:
            raise ValidationError(f"Invalid schedule day: {slot.day}")
        if not TIME_PATTERN.match(slot.start_time) or not TIME_PATTERN.match(slot.end_time):
            raise ValidationError("Schedule times must use HH:MM format")
        if slot.end_time <= slot.start_time:
            raise ValidationError("Class end time must be after start time")


class CourseService:
    """Service for courses, attendance and grades"""

    async def _get_db(self):
        """Get database instance"""
        if mongodb.client is None:
            await mongodb.connect_to_mongo()
        return mongodb.get_database()

    async def _get_course_doc(self, course_id: str, user_id: str) -> dict:
        db = await self._get_db()
        course = await db.courses.find_one(
            {"_id": to_object_id(course_id, "Course"), "user_id": to_object_id(user_id, "User"), "is_active": True}
        )
        if not course:
            raise NotFoundError("Course not found")
        return course

    @staticmethod
    def _serialize(course: dict) -> dict:
        item = serialize_doc(course)
        records = course.get("attendance", [])
        item["attendance_percentage"] = attendance_percentage(records)
        item["classes_attended"] = sum(1 for r in records if r.get("status") in ATTENDED)
        item["classes_missed"] = sum(1 for r in records if r.get("status") == AttendanceStatus.ABSENT.value)
        item["current_average"] = current_average(course)
        upcoming_class = next_class(course)
        item["next_class"] = serialize_doc(upcoming_class) if upcoming_class else None
        return item

    async def list_courses(self, user_id: str) -> dict:
        db = await self._get_db()
        cursor = db.courses.find({"user_id": to_object_id(user_id, "User"), "is_active": True}).sort("course_name", 1)
        courses = [self._serialize(course) async for course in cursor]
        count = len(courses)
        summary = {
            "total_courses": count,
            "total_credits": sum(course.get("credits", 0) for course in courses),
            "average_attendance": round(sum(c["attendance_percentage"] for c in courses) / count) if count else 0,
            "average_grade": round(sum(c["current_average"] for c in courses) / count) if count else 0,
        }
        return {"courses": courses, "summary": summary}

    async def add_course(self, user_id: str, data: CourseCreate) -> dict:
        missing = [
            name
            for name in ("course_code", "course_name", "instructor", "start_date", "end_date")
            if not getattr(data, name)
        ]
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")
        if data.end_date <= data.start_date:
            raise ValidationError("End date must be after start date")
        if not MIN_CREDITS <= data.credits <= MAX_CREDITS:
            raise ValidationError(f"Credits must be between {MIN_CREDITS} and {MAX_CREDITS}")
        if not COLOR_PATTERN.match(data.color):
            raise ValidationError("Color must be a valid hex code")
        validate_schedule(data.schedule)

        db = await self._get_db()
        user_oid = to_object_id(user_id, "User")
        code = data.course_code.strip().upper()
        if await db.courses.find_one({"user_id": user_oid, "course_code": code, "is_active": True}):
            raise ConflictError("Course with this code already exists")

        now = utcnow()
        course = {
            "user_id": user_oid,
            "course_code": code,
            "course_name": data.course_name.strip(),
            "instructor": data.instructor.strip(),
            "credits": data.credits,
            "color": data.color,
            "schedule": [slot.model_dump() for slot in data.schedule],
            "start_date": day_start(data.start_date),
            "end_date": day_start(data.end_date),
            "attendance": [],
            "assignments": [],
            "exams": [],
            "is_active": True,
            "created_at": now,
            "updated_at": now,
        }
        result = await db.courses.insert_one(course)
        course["_id"] = result.inserted_id
        logger.info("Course %s (%s) added for user %s", result.inserted_id, code, user_id)
        return self._serialize(course)

    async def get_course(self, course_id: str, user_id: str) -> dict:
        return self._serialize(await self._get_course_doc(course_id, user_id))

    async def update_course(self, course_id: str, user_id: str, data: CourseUpdate) -> dict:
        course = await self._get_course_doc(course_id, user_id)
        values = data.model_dump(exclude_none=True)
        if "credits" in values and not MIN_CREDITS <= values["credits"] <= MAX_CREDITS:
            raise ValidationError(f"Credits must be between {MIN_CREDITS} and {MAX_CREDITS}")
        if "color" in values and not COLOR_PATTERN.match(values["color"]):
            raise ValidationError("Color must be a valid hex code")
        if data.schedule is not None:
            validate_schedule(data.schedule)
        for field in ("start_date", "end_date"):
            if field in values:
                values[field] = day_start(values[field])
        start = values.get("start_date", as_utc(course["start_date"]))
        end = values.get("end_date", as_utc(course["end_date"]))
        if end <= start:
            raise ValidationError("End date must be after start date")
        if not values:
            raise ValidationError("No valid fields to update")

        values["updated_at"] = utcnow()
        db = await self._get_db()
        updated = await db.courses.find_one_and_update(
            {"_id": course["_id"]}, {"$set": values}, return_document=ReturnDocument.AFTER
        )
        return self._serialize(updated)

    async def delete_course(self, course_id: str, user_id: str) -> None:
        course = await self._get_course_doc(course_id, user_id)
        db = await self._get_db()
        await db.courses.update_one({"_id": course["_id"]}, {"$set": {"is_active": False, "updated_at": utcnow()}})

    async def mark_attendance(
        self, course_id: str, user_id: str, day: date, status: AttendanceStatus, notes: Optional[str] = None
    ) -> dict:
        course = await self._get_course_doc(course_id, user_id)
        marked = day_start(day)
        if not as_utc(course["start_date"]) <= marked <= as_utc(course["end_date"]):
            raise ValidationError("Attendance date must be within the course duration")

        records = [r for r in course.get("attendance", []) if as_utc(r["date"]) != marked]
        records.append({"date": marked, "status": status.value, "notes": notes or ""})
        records.sort(key=lambda r: as_utc(r["date"]))

        db = await self._get_db()
        updated = await db.courses.find_one_and_update(
            {"_id": course["_id"]},
            {"$set": {"attendance": records, "updated_at": utcnow()}},
            return_document=ReturnDocument.AFTER,
        )
        return self._serialize(updated)

    async def add_assignment(self, course_id: str, user_id: str, data: AssignmentCreate) -> dict:
        return await self._push_graded_item(course_id, user_id, "assignments", data.model_dump())

    async def add_exam(self, course_id: str, user_id: str, data: ExamCreate) -> dict:
        if data.obtained_marks is not None and data.obtained_marks > data.max_marks:
            raise ValidationError("Obtained marks cannot exceed maximum marks")
        return await self._push_graded_item(course_id, user_id, "exams", data.model_dump())

    async def _push_graded_item(self, course_id: str, user_id: str, field: str, item: dict) -> dict:
        course = await self._get_course_doc(course_id, user_id)
        if item.get("obtained_marks") is not None and item["obtained_marks"] > item["max_marks"]:
            raise ValidationError("Obtained marks cannot exceed maximum marks")
        for key in ("due_date", "date"):
            if key in item:
                item[key] = as_utc(item[key])
        item["created_at"] = utcnow()

        db = await self._get_db()
        updated = await db.courses.find_one_and_update(
            {"_id": course["_id"]},
            {"$push": {field: item}, "$set": {"updated_at": utcnow()}},
            return_document=ReturnDocument.AFTER,
        )
        return self._serialize(updated)

    async def get_attendance_summary(
        self, course_id: str, user_id: str, month: Optional[int] = None, year: Optional[int] = None
    ) -> dict:
        course = await self._get_course_doc(course_id, user_id)
        records = course.get("attendance", [])
        if month and year:
            if not 1 <= month <= 12:
                raise ValidationError("Month must be between 1 and 12")
            records = [
                r for r in records if as_utc(r["date"]).month == month and as_utc(r["date"]).year == year
            ]

        present = sum(1 for r in records if r.get("status") == AttendanceStatus.PRESENT.value)
        late = sum(1 for r in records if r.get("status") == AttendanceStatus.LATE.value)
        absent = sum(1 for r in records if r.get("status") == AttendanceStatus.ABSENT.value)
        return {
            "course_name": course.get("course_name"),
            "course_code": course.get("course_code"),
            "total_classes": len(records),
            "present_count": present,
            "late_count": late,
            "absent_count": absent,
            "attendance_percentage": attendance_percentage(records),
            "attendance_streak": attendance_streak(course.get("attendance", [])),
            "records": serialize_value(sorted(records, key=lambda r: as_utc(r["date"]), reverse=True)),
        }

    async def get_upcoming(self, user_id: str, days: int = 7) -> List[dict]:
        """Exams, open assignments and next classes in the next `days` days"""
        if days < 1:
            raise ValidationError("Days must be a positive number")
        db = await self._get_db()
        now = utcnow()
        horizon = now + timedelta(days=days)
        cursor = db.courses.find({"user_id": to_object_id(user_id, "User"), "is_active": True, "end_date": {"$gte": now}})

        upcoming = []
        async for course in cursor:
            card = {
                "id": str(course["_id"]),
                "name": course.get("course_name"),
                "code": course.get("course_code"),
                "color": course.get("color"),
            }
            for exam in course.get("exams", []):
                when = as_utc(exam.get("date"))
                if when and now <= when <= horizon:
                    upcoming.append({"type": "exam", "course": card, "title": exam.get("title"), "date": when,
                                     "details": {"max_marks": exam.get("max_marks"), "venue": exam.get("venue")}})
            for assignment in course.get("assignments", []):
                when = as_utc(assignment.get("due_date"))
                if when and now <= when <= horizon and not assignment.get("submitted"):
                    upcoming.append({"type": "assignment", "course": card, "title": assignment.get("title"),
                                     "date": when, "details": {"max_marks": assignment.get("max_marks")}})
            upcoming_class = next_class(course, now)
            if upcoming_class and upcoming_class["date"] <= horizon:
                upcoming.append({"type": "class", "course": card, "title": f"{course.get('course_name')} Class",
                                 "date": upcoming_class["date"],
                                 "details": {"time": upcoming_class["time"], "venue": upcoming_class["venue"]}})

        upcoming.sort(key=lambda event: event["date"])
        return [serialize_doc(event) for event in upcoming]


course_service = CourseService()
