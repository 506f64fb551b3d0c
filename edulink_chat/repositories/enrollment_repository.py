from typing import List

from motor.motor_asyncio import AsyncIOMotorDatabase

from edulink_chat.models.enrollment import INACTIVE_ENROLLMENT_STATUSES
from edulink_chat.repositories.base import backend_errors, id_candidates


class EnrollmentRepository:
    """Read-only view over the course catalogue's enrollments and courses."""

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._enrollments = db.get_collection("enrollments")
        self._courses = db.get_collection("courses")

    async def instructor_ids_for_student(self, student_id: str) -> List[str]:
        with backend_errors("load enrollments"):
            enrollments = await self._enrollments.find(
                {"student_id": {"$in": id_candidates(student_id)}, "status": {"$nin": list(INACTIVE_ENROLLMENT_STATUSES)}}
            ).to_list(length=None)
            course_ids: list = []
            for enrollment in enrollments:
                if enrollment.get("course_id") is not None:
                    course_ids.extend(id_candidates(str(enrollment["course_id"])))
            if not course_ids:
                return []
            courses = await self._courses.find({"_id": {"$in": course_ids}}).to_list(length=None)

        instructor_ids: List[str] = []
        for course in courses:
            instructor_id = course.get("instructor_id")
            if instructor_id and str(instructor_id) not in instructor_ids:
                instructor_ids.append(str(instructor_id))
        return instructor_ids
