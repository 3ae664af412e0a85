"""Audit log model."""

import enum
from datetime import datetime, timezone

from sqlalchemy import JSON, BigInteger, DateTime, Enum, String, Text, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from gradebook.core.database import Base
from gradebook.models.base import IDMixin


class AuditAction(str, enum.Enum):
    """Audit action types."""

    # Exam lifecycle
    EXAM_CREATED = "EXAM_CREATED"
    EXAM_UPDATED = "EXAM_UPDATED"
    EXAM_SUBJECTS_LINKED = "EXAM_SUBJECTS_LINKED"
    EXAM_SUBJECT_REMOVED = "EXAM_SUBJECT_REMOVED"
    EXAM_PUBLISHED = "EXAM_PUBLISHED"
    EXAM_LOCKED = "EXAM_LOCKED"
    EXAM_UNLOCKED = "EXAM_UNLOCKED"
    EXAM_DELETED = "EXAM_DELETED"

    # Scoring configuration
    SCORING_UNIT_LOCKED = "SCORING_UNIT_LOCKED"

    # Marks
    MARKS_SUBMITTED = "MARKS_SUBMITTED"

    # Report cards
    REPORT_CARDS_GENERATED = "REPORT_CARDS_GENERATED"
    REPORT_CARDS_PUBLISHED = "REPORT_CARDS_PUBLISHED"
    REPORT_CARDS_UNPUBLISHED = "REPORT_CARDS_UNPUBLISHED"


class AuditLog(Base, IDMixin):
    """Append-only audit log model."""

    __tablename__ = "audit_logs"

    school_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True, index=True)

    # Actor
    user_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True, index=True)

    # Action details
    action: Mapped[AuditAction] = mapped_column(
        Enum(AuditAction),
        nullable=False,
        index=True,
    )
    resource_type: Mapped[str] = mapped_column(String(100), nullable=False)
    resource_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Old/new values and other context
    extra_data: Mapped[dict | None] = mapped_column(
        JSON().with_variant(JSONB(), "postgresql"),
        nullable=True,
    )

    # Request context
    ip_address: Mapped[str | None] = mapped_column(String(50), nullable=True)

    # Timestamp (append-only, no updated_at)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        server_default=func.now(),
        nullable=False,
        index=True,
    )

    def __repr__(self) -> str:
        return f"<AuditLog(id={self.id}, action={self.action})>"
