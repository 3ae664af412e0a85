"""Academic structure models.

These tables are owned by the school administration service. The exam
engine reads them (scoring configuration, enrollments, teaching
assignments) and only ever writes ``ClassSubject.is_locked``.
"""

import enum
from decimal import Decimal

from sqlalchemy import (
    DECIMAL,
    BigInteger,
    Boolean,
    Enum,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from gradebook.core.database import Base
from gradebook.models.base import IDMixin, SchoolScopedMixin, TimestampMixin


class EnrollmentStatus(str, enum.Enum):
    """Student enrollment status within an academic year."""

    ACTIVE = "active"
    PROMOTED = "promoted"
    TRANSFERRED = "transferred"
    DROPPED = "dropped"


class SubjectEnrollmentStatus(str, enum.Enum):
    """Per-student elective subject status (advanced track)."""

    ACTIVE = "ACTIVE"
    DROPPED = "DROPPED"


class ComponentType(str, enum.Enum):
    """Scoring component of an advanced-track subject."""

    THEORY = "THEORY"
    PRACTICAL = "PRACTICAL"


class AcademicYear(Base, IDMixin, SchoolScopedMixin):
    """School academic year."""

    __tablename__ = "academic_years"

    name: Mapped[str] = mapped_column(String(50), nullable=False)
    is_current: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)


class SchoolClass(Base, IDMixin, SchoolScopedMixin):
    """Class (grade) within a school."""

    __tablename__ = "classes"

    name: Mapped[str] = mapped_column(String(50), nullable=False)
    grade_level: Mapped[int] = mapped_column(Integer, nullable=False)

    def __repr__(self) -> str:
        return f"<SchoolClass(id={self.id}, name={self.name}, grade_level={self.grade_level})>"


class Section(Base, IDMixin, SchoolScopedMixin):
    """Section of a class."""

    __tablename__ = "sections"

    class_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("classes.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name: Mapped[str] = mapped_column(String(50), nullable=False)


class Subject(Base, IDMixin, SchoolScopedMixin):
    """Subject catalogue entry."""

    __tablename__ = "subjects"

    name: Mapped[str] = mapped_column(String(100), nullable=False)
    code: Mapped[str | None] = mapped_column(String(20), nullable=True)


class Student(Base, IDMixin, SchoolScopedMixin):
    """Student identity as seen by the exam engine."""

    __tablename__ = "students"

    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    admission_number: Mapped[str | None] = mapped_column(String(50), nullable=True)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class ClassSubject(Base, IDMixin, TimestampMixin, SchoolScopedMixin):
    """Scoring unit: one subject's marks structure for a class and year."""

    __tablename__ = "class_subjects"

    class_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("classes.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    subject_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("subjects.id", ondelete="CASCADE"),
        nullable=False,
    )
    academic_year_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("academic_years.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    has_theory: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    has_practical: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    theory_marks: Mapped[Decimal] = mapped_column(DECIMAL(6, 2), default=Decimal("100"), nullable=False)
    practical_marks: Mapped[Decimal] = mapped_column(DECIMAL(6, 2), default=Decimal("0"), nullable=False)
    full_marks: Mapped[Decimal] = mapped_column(DECIMAL(6, 2), default=Decimal("100"), nullable=False)
    pass_marks: Mapped[Decimal] = mapped_column(DECIMAL(6, 2), default=Decimal("40"), nullable=False)
    credit_hours: Mapped[Decimal | None] = mapped_column(DECIMAL(5, 2), nullable=True)
    is_locked: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    school_class: Mapped["SchoolClass"] = relationship("SchoolClass", lazy="selectin")
    subject: Mapped["Subject"] = relationship("Subject", lazy="selectin")

    __table_args__ = (
        UniqueConstraint(
            "class_id", "subject_id", "academic_year_id",
            name="uq_class_subject_year",
        ),
    )

    def __repr__(self) -> str:
        return f"<ClassSubject(id={self.id}, class_id={self.class_id}, subject_id={self.subject_id})>"


class SubjectComponent(Base, IDMixin, SchoolScopedMixin):
    """Theory or practical split of an advanced-track subject."""

    __tablename__ = "subject_components"

    class_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("classes.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    subject_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("subjects.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    type: Mapped[ComponentType] = mapped_column(Enum(ComponentType), nullable=False)
    subject_code: Mapped[str | None] = mapped_column(String(20), nullable=True)
    full_marks: Mapped[Decimal] = mapped_column(DECIMAL(6, 2), nullable=False)
    pass_marks: Mapped[Decimal] = mapped_column(DECIMAL(6, 2), nullable=False)
    credit_hours: Mapped[Decimal] = mapped_column(DECIMAL(5, 2), nullable=False)

    __table_args__ = (
        UniqueConstraint("class_id", "subject_id", "type", name="uq_subject_component"),
    )


class StudentClass(Base, IDMixin, TimestampMixin, SchoolScopedMixin):
    """Enrollment of a student in a class/section for an academic year."""

    __tablename__ = "student_classes"

    student_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("students.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    class_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("classes.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    section_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("sections.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    academic_year_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("academic_years.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    roll_number: Mapped[int | None] = mapped_column(Integer, nullable=True)
    status: Mapped[EnrollmentStatus] = mapped_column(
        Enum(EnrollmentStatus),
        default=EnrollmentStatus.ACTIVE,
        nullable=False,
    )

    student: Mapped["Student"] = relationship("Student", lazy="selectin")

    def __repr__(self) -> str:
        return f"<StudentClass(id={self.id}, student_id={self.student_id}, section_id={self.section_id})>"


class StudentSubject(Base, IDMixin):
    """Explicit subject enrollment for advanced-track students."""

    __tablename__ = "student_subjects"

    student_class_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("student_classes.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    class_subject_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("class_subjects.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    status: Mapped[SubjectEnrollmentStatus] = mapped_column(
        Enum(SubjectEnrollmentStatus),
        default=SubjectEnrollmentStatus.ACTIVE,
        nullable=False,
    )

    __table_args__ = (
        UniqueConstraint("student_class_id", "class_subject_id", name="uq_student_subject"),
    )


class TeacherSubject(Base, IDMixin, SchoolScopedMixin):
    """Teaching assignment of a user to a (class subject, section) pair."""

    __tablename__ = "teacher_subjects"

    user_id: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)
    class_subject_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("class_subjects.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    section_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("sections.id", ondelete="CASCADE"),
        nullable=False,
    )

    __table_args__ = (
        UniqueConstraint("user_id", "class_subject_id", "section_id", name="uq_teacher_subject"),
    )
