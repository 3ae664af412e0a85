"""Marks entry schemas."""

from datetime import datetime
from decimal import Decimal

from pydantic import Field

from gradebook.core.policy import Role
from gradebook.schemas.common import BaseSchema
from gradebook.schemas.exam import ExamSubjectResponse


class MarksEntry(BaseSchema):
    """Marks of one student in a submission batch.

    Bounds are checked against the exam subject snapshot by the service so
    that every offending entry can be reported at once.
    """

    student_id: int
    marks_obtained: Decimal | None = Field(None, description="Theory marks")
    practical_marks: Decimal | None = Field(None, description="Practical/internal marks")
    is_absent: bool = False
    remarks: str | None = Field(None, max_length=500)


class SubmitMarksRequest(BaseSchema):
    """Marks batch for one exam subject and section."""

    exam_subject_id: int
    section_id: int
    entries: list[MarksEntry] = Field(..., min_length=1)


class ExamResultResponse(BaseSchema):
    """Stored exam result."""

    id: int
    exam_subject_id: int
    student_id: int
    student_class_id: int | None
    marks_obtained: Decimal | None
    practical_marks: Decimal | None
    is_absent: bool
    remarks: str | None
    entered_by: int
    entered_by_role: Role
    updated_at: datetime


class RejectedStudent(BaseSchema):
    """Student filtered out of a batch."""

    student_id: int
    reason: str


class SubmitMarksResponse(BaseSchema):
    """Outcome of a marks batch."""

    saved_count: int
    results: list[ExamResultResponse]
    rejected: list[RejectedStudent] = []
    message: str


class MarksEntryStudent(BaseSchema):
    """Roster row for the marks entry screen."""

    student_id: int
    student_class_id: int
    roll_number: int | None
    first_name: str
    last_name: str
    is_subject_enrolled: bool = True
    existing_result: ExamResultResponse | None = None


class MarksEntryRoster(BaseSchema):
    """Roster of a section with any results already entered."""

    exam_subject: ExamSubjectResponse
    section_id: int
    is_advanced_track: bool
    students: list[MarksEntryStudent]


class MarksUploadRowError(BaseSchema):
    """Problem found while reading a marks sheet row."""

    row: int
    column: str | None = None
    message: str
