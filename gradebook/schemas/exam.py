"""Exam schemas."""

from datetime import date, datetime, time
from decimal import Decimal

from pydantic import Field, model_validator

from gradebook.models.exam import ExamStatus, ExamType
from gradebook.schemas.common import BaseSchema


# ==========================================
# Exam Schemas
# ==========================================

class ExamCreate(BaseSchema):
    """Exam creation schema. Listed classes get their subjects linked."""

    name: str = Field(..., min_length=1, max_length=255)
    exam_type: ExamType
    academic_year_id: int
    start_date: date | None = None
    end_date: date | None = None
    class_ids: list[int] = Field(default_factory=list)

    @model_validator(mode="after")
    def validate_dates(self) -> "ExamCreate":
        if self.start_date and self.end_date and self.end_date < self.start_date:
            raise ValueError("end_date cannot be before start_date")
        return self


class ExamUpdate(BaseSchema):
    """Exam update schema (DRAFT exams only)."""

    name: str | None = Field(None, min_length=1, max_length=255)
    exam_type: ExamType | None = None
    start_date: date | None = None
    end_date: date | None = None


class ExamResponse(BaseSchema):
    """Exam response schema."""

    id: int
    school_id: int
    academic_year_id: int
    name: str
    exam_type: ExamType
    status: ExamStatus
    start_date: date | None
    end_date: date | None
    published_at: datetime | None
    created_at: datetime
    updated_at: datetime


class ExamListItem(ExamResponse):
    """Exam list entry with linked subject count."""

    subject_count: int


# ==========================================
# Exam Subject (snapshot) Schemas
# ==========================================

class ExamSubjectLink(BaseSchema):
    """One scoring unit to link, with schedule and optional marks overrides."""

    class_subject_id: int
    exam_date: date | None = None
    start_time: time | None = None
    end_time: time | None = None
    full_marks: Decimal | None = Field(None, gt=0)
    pass_marks: Decimal | None = Field(None, gt=0)
    theory_full_marks: Decimal | None = Field(None, ge=0)
    practical_full_marks: Decimal | None = Field(None, ge=0)


class ExamSubjectLinkRequest(BaseSchema):
    """Link or update exam subjects."""

    subjects: list[ExamSubjectLink] = Field(..., min_length=1)


class ExamSubjectResponse(BaseSchema):
    """Exam subject snapshot response."""

    id: int
    exam_id: int
    class_subject_id: int
    class_id: int
    subject_id: int
    subject_name: str
    subject_code: str | None
    exam_date: date | None
    start_time: time | None
    end_time: time | None
    has_theory: bool
    has_practical: bool
    theory_full_marks: Decimal
    practical_full_marks: Decimal
    full_marks: Decimal
    pass_marks: Decimal


class ExamDetailResponse(ExamResponse):
    """Exam with its linked subjects."""

    subjects: list[ExamSubjectResponse]


# ==========================================
# Marks Entry Listing
# ==========================================

class MarksEntrySubject(ExamSubjectResponse):
    """Exam subject the caller may enter marks for."""

    assigned_section_ids: list[int] | None = Field(
        None, description="Sections assigned to the caller; null means every section"
    )


class MarksEntryExam(ExamResponse):
    """Published exam with the subjects open to the caller."""

    subjects: list[MarksEntrySubject]
