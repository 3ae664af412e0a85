"""Exam, exam subject snapshot and exam result models."""

import enum
from datetime import date, datetime, time
from decimal import Decimal

from sqlalchemy import (
    DECIMAL,
    BigInteger,
    Boolean,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    String,
    Text,
    Time,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from gradebook.core.database import Base
from gradebook.core.policy import Role
from gradebook.models.base import IDMixin, SchoolScopedMixin, TimestampMixin


class ExamType(str, enum.Enum):
    """Kind of assessment window."""

    UNIT_TEST = "unit_test"
    MIDTERM = "midterm"
    FINAL = "final"
    BOARD = "board"


class ExamStatus(str, enum.Enum):
    """Exam lifecycle status."""

    DRAFT = "DRAFT"
    PUBLISHED = "PUBLISHED"
    LOCKED = "LOCKED"


class Exam(Base, IDMixin, TimestampMixin, SchoolScopedMixin):
    """Assessment window for one school and academic year."""

    __tablename__ = "exams"

    academic_year_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("academic_years.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    exam_type: Mapped[ExamType] = mapped_column(Enum(ExamType), nullable=False)
    status: Mapped[ExamStatus] = mapped_column(
        Enum(ExamStatus),
        default=ExamStatus.DRAFT,
        nullable=False,
        index=True,
    )
    start_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    end_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    published_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Relationships
    exam_subjects: Mapped[list["ExamSubject"]] = relationship(
        "ExamSubject",
        back_populates="exam",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    __table_args__ = (
        UniqueConstraint(
            "school_id", "academic_year_id", "name",
            name="uq_exam_school_year_name",
        ),
    )

    def __repr__(self) -> str:
        return f"<Exam(id={self.id}, name={self.name}, status={self.status})>"


class ExamSubject(Base, IDMixin, TimestampMixin):
    """Snapshot of a scoring unit's marks structure bound to one exam.

    The marks fields are copied from the class subject while the exam is
    DRAFT and are the only inputs used for grading afterwards.
    """

    __tablename__ = "exam_subjects"

    exam_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("exams.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    class_subject_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("class_subjects.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    # Schedule
    exam_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    start_time: Mapped[time | None] = mapped_column(Time, nullable=True)
    end_time: Mapped[time | None] = mapped_column(Time, nullable=True)

    # Snapshot
    has_theory: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    has_practical: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    theory_full_marks: Mapped[Decimal] = mapped_column(DECIMAL(6, 2), nullable=False)
    practical_full_marks: Mapped[Decimal] = mapped_column(DECIMAL(6, 2), nullable=False)
    full_marks: Mapped[Decimal] = mapped_column(DECIMAL(6, 2), nullable=False)
    pass_marks: Mapped[Decimal] = mapped_column(DECIMAL(6, 2), nullable=False)

    # Relationships
    exam: Mapped["Exam"] = relationship("Exam", back_populates="exam_subjects", lazy="selectin")
    class_subject: Mapped["ClassSubject"] = relationship("ClassSubject", lazy="selectin")

    __table_args__ = (
        UniqueConstraint("exam_id", "class_subject_id", name="uq_exam_class_subject"),
    )

    def __repr__(self) -> str:
        return f"<ExamSubject(id={self.id}, exam_id={self.exam_id}, class_subject_id={self.class_subject_id})>"


class ExamResult(Base, IDMixin, TimestampMixin, SchoolScopedMixin):
    """Marks of one student for one exam subject."""

    __tablename__ = "exam_results"

    exam_subject_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("exam_subjects.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    student_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("students.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    # Enrollment active when the marks were entered
    student_class_id: Mapped[int | None] = mapped_column(
        BigInteger,
        ForeignKey("student_classes.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    marks_obtained: Mapped[Decimal | None] = mapped_column(DECIMAL(6, 2), nullable=True)
    practical_marks: Mapped[Decimal | None] = mapped_column(DECIMAL(6, 2), nullable=True)
    is_absent: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    remarks: Mapped[str | None] = mapped_column(Text, nullable=True)
    entered_by: Mapped[int] = mapped_column(BigInteger, nullable=False)
    entered_by_role: Mapped[Role] = mapped_column(Enum(Role), nullable=False)

    # Relationships
    exam_subject: Mapped["ExamSubject"] = relationship("ExamSubject", lazy="selectin")
    student: Mapped["Student"] = relationship("Student", lazy="selectin")

    __table_args__ = (
        UniqueConstraint("exam_subject_id", "student_id", name="uq_exam_result_student"),
    )

    def __repr__(self) -> str:
        return f"<ExamResult(exam_subject_id={self.exam_subject_id}, student_id={self.student_id})>"


# Import to resolve relationship targets
from gradebook.models.academic import ClassSubject, Student  # noqa: E402
