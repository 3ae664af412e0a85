"""Grade computation schemas."""

from decimal import Decimal

from gradebook.schemas.common import BaseSchema


class ComponentCredits(BaseSchema):
    """Credit hours and pass marks of an advanced-track subject's components."""

    theory_credit_hours: Decimal
    practical_credit_hours: Decimal = Decimal("0")
    theory_pass_marks: Decimal | None = None
    practical_pass_marks: Decimal | None = None
    theory_code: str | None = None
    practical_code: str | None = None

    @property
    def total(self) -> Decimal:
        return self.theory_credit_hours + self.practical_credit_hours


class SubjectGrade(BaseSchema):
    """Graded result of one subject for one student."""

    # Identity, filled in by the aggregator
    exam_subject_id: int | None = None
    subject_id: int | None = None
    subject_name: str | None = None
    subject_code: str | None = None

    # Theory
    theory_marks: Decimal | None
    theory_full_marks: Decimal
    theory_grade: str | None = None
    theory_grade_point: Decimal | None = None
    theory_credit_hours: Decimal | None = None

    # Practical / internal
    practical_marks: Decimal | None
    practical_full_marks: Decimal
    practical_grade: str | None = None
    practical_grade_point: Decimal | None = None
    practical_credit_hours: Decimal | None = None

    # Combined
    total_marks: Decimal
    full_marks: Decimal
    percentage: Decimal
    final_grade: str
    grade_point: Decimal
    is_passed: bool
    is_absent: bool
    remark: str | None = None


class OverallResult(BaseSchema):
    """Aggregate of all subject grades of one student in one exam."""

    total_marks: Decimal
    total_full_marks: Decimal
    percentage: Decimal
    gpa: Decimal
    grade: str
    is_passed: bool
    total_subjects: int
    passed_subjects: int
    failed_subjects: int
    total_credits: Decimal | None = None
