"""Audit logging service."""

from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from gradebook.models.audit import AuditAction, AuditLog


class AuditService:
    """Audit logging service - append-only."""

    def __init__(self, db: Session):
        self.db = db

    def log(
        self,
        action: AuditAction,
        resource_type: str,
        resource_id: str | None = None,
        school_id: int | None = None,
        user_id: int | None = None,
        description: str | None = None,
        extra_data: dict[str, Any] | None = None,
        ip_address: str | None = None,
    ) -> AuditLog:
        """Create an audit log entry."""
        log = AuditLog(
            school_id=school_id,
            user_id=user_id,
            action=action,
            resource_type=resource_type,
            resource_id=resource_id,
            description=description,
            extra_data=extra_data,
            ip_address=ip_address,
        )
        self.db.add(log)
        self.db.flush()
        return log

    def list_for_resource(
        self,
        school_id: int,
        resource_type: str,
        resource_id: str,
    ) -> list[AuditLog]:
        """Audit entries of one resource, oldest first."""
        result = self.db.execute(
            select(AuditLog)
            .where(
                AuditLog.school_id == school_id,
                AuditLog.resource_type == resource_type,
                AuditLog.resource_id == resource_id,
            )
            .order_by(AuditLog.created_at, AuditLog.id)
        )
        return list(result.scalars().all())
