"""Exam lifecycle endpoints."""

from typing import Annotated

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from gradebook.core.database import get_db
from gradebook.core.dependencies import require_operation
from gradebook.core.policy import CurrentUserContext, Operation
from gradebook.models.audit import AuditAction
from gradebook.models.exam import ExamStatus
from gradebook.schemas.common import ERROR_RESPONSES, MessageResponse
from gradebook.schemas.exam import (
    ExamCreate,
    ExamDetailResponse,
    ExamListItem,
    ExamResponse,
    ExamSubjectLinkRequest,
    ExamSubjectResponse,
    ExamUpdate,
)
from gradebook.services.audit import AuditService
from gradebook.services.exam import ExamService, exam_subject_to_response

router = APIRouter(responses=ERROR_RESPONSES)


def client_ip(request: Request) -> str | None:
    return request.client.host if request.client else None


@router.post("", response_model=ExamDetailResponse)
def create_exam(
    request: ExamCreate,
    context: Annotated[CurrentUserContext, Depends(require_operation(Operation.CREATE_EXAM))],
    db: Annotated[Session, Depends(get_db)],
    http_request: Request,
):
    """
    Create a DRAFT exam.
    Subjects of the listed classes are linked with a snapshot of their marks structure.
    """
    service = ExamService(db)
    exam = service.create_exam(context, request)

    AuditService(db).log(
        action=AuditAction.EXAM_CREATED,
        resource_type="exam",
        resource_id=str(exam.id),
        school_id=context.school_id,
        user_id=context.user_id,
        description=f"Exam '{exam.name}' created",
        extra_data={"class_ids": request.class_ids, "subject_count": len(exam.exam_subjects)},
        ip_address=client_ip(http_request),
    )

    return service.get_exam_detail(context, exam.id)


@router.get("", response_model=list[ExamListItem])
def list_exams(
    context: Annotated[CurrentUserContext, Depends(require_operation(Operation.VIEW_EXAMS))],
    db: Annotated[Session, Depends(get_db)],
    academic_year_id: int | None = None,
    status: ExamStatus | None = None,
):
    """
    List exams of the school.
    Defaults to the current academic year.
    """
    return ExamService(db).list_exams(context, academic_year_id=academic_year_id, status=status)


@router.get("/{exam_id}", response_model=ExamDetailResponse)
def get_exam(
    exam_id: int,
    context: Annotated[CurrentUserContext, Depends(require_operation(Operation.VIEW_EXAMS))],
    db: Annotated[Session, Depends(get_db)],
):
    """Get an exam with its subjects."""
    return ExamService(db).get_exam_detail(context, exam_id)


@router.patch("/{exam_id}", response_model=ExamResponse)
def update_exam(
    exam_id: int,
    request: ExamUpdate,
    context: Annotated[CurrentUserContext, Depends(require_operation(Operation.UPDATE_EXAM))],
    db: Annotated[Session, Depends(get_db)],
    http_request: Request,
):
    """
    Update a DRAFT exam.
    Fails with STATE_CONFLICT once the exam is published.
    """
    exam = ExamService(db).update_exam(context, exam_id, request)

    AuditService(db).log(
        action=AuditAction.EXAM_UPDATED,
        resource_type="exam",
        resource_id=str(exam.id),
        school_id=context.school_id,
        user_id=context.user_id,
        extra_data=request.model_dump(mode="json", exclude_unset=True),
        ip_address=client_ip(http_request),
    )

    return exam


@router.put("/{exam_id}/subjects", response_model=list[ExamSubjectResponse])
def link_exam_subjects(
    exam_id: int,
    request: ExamSubjectLinkRequest,
    context: Annotated[CurrentUserContext, Depends(require_operation(Operation.MANAGE_EXAM_SUBJECTS))],
    db: Annotated[Session, Depends(get_db)],
    http_request: Request,
):
    """
    Link scoring units to a DRAFT exam or refresh their snapshots.
    Optional overrides replace the configured full and pass marks for this exam only.
    """
    linked = ExamService(db).link_or_update_exam_subjects(context, exam_id, request)

    AuditService(db).log(
        action=AuditAction.EXAM_SUBJECTS_LINKED,
        resource_type="exam",
        resource_id=str(exam_id),
        school_id=context.school_id,
        user_id=context.user_id,
        description=f"{len(linked)} exam subjects linked or updated",
        extra_data={"class_subject_ids": [s.class_subject_id for s in linked]},
        ip_address=client_ip(http_request),
    )

    return [exam_subject_to_response(s) for s in linked]


@router.delete("/{exam_id}/subjects/{exam_subject_id}", response_model=MessageResponse)
def delete_exam_subject(
    exam_id: int,
    exam_subject_id: int,
    context: Annotated[CurrentUserContext, Depends(require_operation(Operation.MANAGE_EXAM_SUBJECTS))],
    db: Annotated[Session, Depends(get_db)],
    http_request: Request,
):
    """Remove a subject from a DRAFT exam."""
    removed = ExamService(db).delete_exam_subject(context, exam_id, exam_subject_id)

    AuditService(db).log(
        action=AuditAction.EXAM_SUBJECT_REMOVED,
        resource_type="exam",
        resource_id=str(exam_id),
        school_id=context.school_id,
        user_id=context.user_id,
        extra_data={"exam_subject_id": exam_subject_id, "class_subject_id": removed.class_subject_id},
        ip_address=client_ip(http_request),
    )

    return MessageResponse(message="Exam subject removed")


@router.post("/{exam_id}/publish", response_model=ExamResponse)
def publish_exam(
    exam_id: int,
    context: Annotated[CurrentUserContext, Depends(require_operation(Operation.PUBLISH_EXAM))],
    db: Annotated[Session, Depends(get_db)],
    http_request: Request,
):
    """
    Publish a DRAFT exam.
    Freezes the subject snapshots, locks the scoring units and opens marks entry.
    """
    exam, locked = ExamService(db).publish_exam(context, exam_id)

    audit = AuditService(db)
    audit.log(
        action=AuditAction.EXAM_PUBLISHED,
        resource_type="exam",
        resource_id=str(exam.id),
        school_id=context.school_id,
        user_id=context.user_id,
        description=f"Exam '{exam.name}' published",
        ip_address=client_ip(http_request),
    )
    for class_subject_id in locked:
        audit.log(
            action=AuditAction.SCORING_UNIT_LOCKED,
            resource_type="class_subject",
            resource_id=str(class_subject_id),
            school_id=context.school_id,
            user_id=context.user_id,
            extra_data={"exam_id": exam.id},
            ip_address=client_ip(http_request),
        )

    return exam


@router.post("/{exam_id}/lock", response_model=ExamResponse)
def lock_exam(
    exam_id: int,
    context: Annotated[CurrentUserContext, Depends(require_operation(Operation.LOCK_EXAM))],
    db: Annotated[Session, Depends(get_db)],
    http_request: Request,
):
    """Lock a PUBLISHED exam; marks can no longer be changed."""
    exam = ExamService(db).lock_exam(context, exam_id)

    AuditService(db).log(
        action=AuditAction.EXAM_LOCKED,
        resource_type="exam",
        resource_id=str(exam.id),
        school_id=context.school_id,
        user_id=context.user_id,
        ip_address=client_ip(http_request),
    )

    return exam


@router.post("/{exam_id}/unlock", response_model=ExamResponse)
def unlock_exam(
    exam_id: int,
    context: Annotated[CurrentUserContext, Depends(require_operation(Operation.UNLOCK_EXAM))],
    db: Annotated[Session, Depends(get_db)],
    http_request: Request,
):
    """Unlock a LOCKED exam back to PUBLISHED."""
    exam = ExamService(db).unlock_exam(context, exam_id)

    AuditService(db).log(
        action=AuditAction.EXAM_UNLOCKED,
        resource_type="exam",
        resource_id=str(exam.id),
        school_id=context.school_id,
        user_id=context.user_id,
        ip_address=client_ip(http_request),
    )

    return exam


@router.delete("/{exam_id}", response_model=MessageResponse)
def delete_exam(
    exam_id: int,
    context: Annotated[CurrentUserContext, Depends(require_operation(Operation.DELETE_EXAM))],
    db: Annotated[Session, Depends(get_db)],
    http_request: Request,
):
    """
    Delete an exam.
    Published or locked exams can only be deleted while they have no results.
    """
    exam = ExamService(db).delete_exam(context, exam_id)

    AuditService(db).log(
        action=AuditAction.EXAM_DELETED,
        resource_type="exam",
        resource_id=str(exam_id),
        school_id=context.school_id,
        user_id=context.user_id,
        description=f"Exam '{exam.name}' deleted while {exam.status.value}",
        ip_address=client_ip(http_request),
    )

    return MessageResponse(message="Exam deleted")
