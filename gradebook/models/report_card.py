"""Report card model."""

from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import (
    DECIMAL,
    BigInteger,
    Boolean,
    DateTime,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from gradebook.core.database import Base
from gradebook.models.base import IDMixin, SchoolScopedMixin, TimestampMixin


class ReportCard(Base, IDMixin, TimestampMixin, SchoolScopedMixin):
    """Per-student aggregate of one exam, regenerable from exam results."""

    __tablename__ = "report_cards"

    student_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("students.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    exam_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("exams.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    student_class_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("student_classes.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    total_marks: Mapped[Decimal] = mapped_column(DECIMAL(8, 2), nullable=False)
    total_full_marks: Mapped[Decimal] = mapped_column(DECIMAL(8, 2), nullable=False)
    percentage: Mapped[Decimal] = mapped_column(DECIMAL(5, 2), nullable=False)
    gpa: Mapped[Decimal] = mapped_column(DECIMAL(3, 2), nullable=False)
    overall_grade: Mapped[str] = mapped_column(String(5), nullable=False)
    is_passed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    class_rank: Mapped[int | None] = mapped_column(Integer, nullable=True)
    is_published: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    generated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    # Relationships
    exam: Mapped["Exam"] = relationship("Exam", lazy="selectin")
    student: Mapped["Student"] = relationship("Student", lazy="selectin")
    student_class: Mapped["StudentClass"] = relationship("StudentClass", lazy="selectin")

    __table_args__ = (
        UniqueConstraint("student_id", "exam_id", name="uq_report_card_student_exam"),
    )

    def __repr__(self) -> str:
        return f"<ReportCard(student_id={self.student_id}, exam_id={self.exam_id}, rank={self.class_rank})>"


# Import to resolve relationship targets
from gradebook.models.academic import Student, StudentClass  # noqa: E402
from gradebook.models.exam import Exam  # noqa: E402
