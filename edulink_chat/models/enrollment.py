from typing import Literal, TypedDict


EnrollmentStatus = Literal["active", "completed", "cancelled", "refunded"]

INACTIVE_ENROLLMENT_STATUSES = ("cancelled", "refunded")


class EnrollmentDocument(TypedDict, total=False):
    _id: str
    student_id: str
    course_id: str
    status: EnrollmentStatus


class CourseDocument(TypedDict, total=False):
    _id: str
    title: str
    instructor_id: str
