"""Report card schemas."""

from datetime import date, datetime
from decimal import Decimal

from gradebook.models.exam import ExamType
from gradebook.schemas.common import BaseSchema
from gradebook.schemas.grading import OverallResult, SubjectGrade


class ReportCardScope(BaseSchema):
    """Exam + class + section a report card batch applies to."""

    exam_id: int
    class_id: int
    section_id: int


class ReportCardResponse(BaseSchema):
    """Stored report card."""

    id: int
    student_id: int
    exam_id: int
    student_class_id: int
    total_marks: Decimal
    total_full_marks: Decimal
    percentage: Decimal
    gpa: Decimal
    overall_grade: str
    is_passed: bool
    class_rank: int | None
    is_published: bool
    generated_at: datetime


class GenerateReportCardsResponse(BaseSchema):
    """Outcome of a report card generation run."""

    count: int
    skipped_student_ids: list[int] = []
    report_cards: list[ReportCardResponse]
    message: str


class PublishReportCardsResponse(BaseSchema):
    """Outcome of publishing or unpublishing report cards."""

    updated: int
    message: str


class ReportCardExamInfo(BaseSchema):
    """Exam block of a report card."""

    id: int
    name: str
    exam_type: ExamType
    academic_year_id: int
    start_date: date | None
    end_date: date | None


class ReportCardStudentInfo(BaseSchema):
    """Student block of a report card."""

    id: int
    first_name: str
    last_name: str
    admission_number: str | None
    roll_number: int | None
    class_id: int
    section_id: int
    grade_level: int


class ReportCardDetail(BaseSchema):
    """Report card with per-subject breakdown, the data a renderer consumes."""

    report_card: ReportCardResponse
    exam: ReportCardExamInfo
    student: ReportCardStudentInfo
    is_advanced_track: bool
    subjects: list[SubjectGrade]
    summary: OverallResult


class ClassReportCardRow(BaseSchema):
    """One student of the class-section report card view."""

    student_id: int
    student_class_id: int
    roll_number: int | None
    first_name: str
    last_name: str
    subjects: list[SubjectGrade]
    summary: OverallResult | None
    report_card: ReportCardResponse | None


class ClassReportCardSummary(BaseSchema):
    """Counts for the class-section report card view."""

    exam_id: int
    exam_name: str
    class_id: int
    section_id: int
    total_students: int
    report_cards_generated: int
    published: int
    passed: int
    failed: int


class ClassReportCardsResponse(BaseSchema):
    """Staff view of a class-section's results for an exam."""

    summary: ClassReportCardSummary
    students: list[ClassReportCardRow]


class PublishedExamItem(BaseSchema):
    """Published report card entry for a student's exam history."""

    exam_id: int
    exam_name: str
    exam_type: ExamType
    academic_year_id: int
    class_id: int
    section_id: int
    overall_grade: str
    percentage: Decimal
    gpa: Decimal
    class_rank: int | None
    generated_at: datetime
