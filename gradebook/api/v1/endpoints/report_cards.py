"""Report card endpoints."""

from typing import Annotated

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from gradebook.api.v1.endpoints.exams import client_ip
from gradebook.core.config import Settings
from gradebook.core.database import get_db
from gradebook.core.dependencies import AppSettings, require_operation
from gradebook.core.policy import CurrentUserContext, Operation
from gradebook.models.audit import AuditAction
from gradebook.schemas.common import ERROR_RESPONSES
from gradebook.schemas.report_card import (
    ClassReportCardsResponse,
    GenerateReportCardsResponse,
    PublishedExamItem,
    PublishReportCardsResponse,
    ReportCardDetail,
    ReportCardScope,
)
from gradebook.services.audit import AuditService
from gradebook.services.report_card import ReportCardService

router = APIRouter(responses=ERROR_RESPONSES)


@router.post("/generate", response_model=GenerateReportCardsResponse)
def generate_report_cards(
    request: ReportCardScope,
    context: Annotated[CurrentUserContext, Depends(require_operation(Operation.GENERATE_REPORT_CARDS))],
    db: Annotated[Session, Depends(get_db)],
    settings: AppSettings,
    http_request: Request,
):
    """
    Generate (or regenerate) report cards for a class section and rank it.
    Students without any result for the exam are skipped.
    """
    service = ReportCardService(db, settings.ADVANCED_GRADE_THRESHOLD)
    result = service.generate_report_cards(context, request)

    AuditService(db).log(
        action=AuditAction.REPORT_CARDS_GENERATED,
        resource_type="exam",
        resource_id=str(request.exam_id),
        school_id=context.school_id,
        user_id=context.user_id,
        description=f"{result.count} report cards generated",
        extra_data={
            "class_id": request.class_id,
            "section_id": request.section_id,
            "skipped_student_ids": result.skipped_student_ids,
        },
        ip_address=client_ip(http_request),
    )

    return result


def _set_published(
    request: ReportCardScope,
    context: CurrentUserContext,
    db: Session,
    settings: Settings,
    http_request: Request,
    published: bool,
) -> PublishReportCardsResponse:
    service = ReportCardService(db, settings.ADVANCED_GRADE_THRESHOLD)
    if published:
        updated = service.publish_report_cards(context, request)
    else:
        updated = service.unpublish_report_cards(context, request)

    AuditService(db).log(
        action=AuditAction.REPORT_CARDS_PUBLISHED if published else AuditAction.REPORT_CARDS_UNPUBLISHED,
        resource_type="exam",
        resource_id=str(request.exam_id),
        school_id=context.school_id,
        user_id=context.user_id,
        extra_data={"class_id": request.class_id, "section_id": request.section_id, "count": updated},
        ip_address=client_ip(http_request),
    )

    state = "published" if published else "unpublished"
    return PublishReportCardsResponse(updated=updated, message=f"{updated} report cards {state}")


@router.post("/publish", response_model=PublishReportCardsResponse)
def publish_report_cards(
    request: ReportCardScope,
    context: Annotated[CurrentUserContext, Depends(require_operation(Operation.PUBLISH_REPORT_CARDS))],
    db: Annotated[Session, Depends(get_db)],
    settings: AppSettings,
    http_request: Request,
):
    """Make the report cards of a class section visible to students and guardians."""
    return _set_published(request, context, db, settings, http_request, True)


@router.post("/unpublish", response_model=PublishReportCardsResponse)
def unpublish_report_cards(
    request: ReportCardScope,
    context: Annotated[CurrentUserContext, Depends(require_operation(Operation.PUBLISH_REPORT_CARDS))],
    db: Annotated[Session, Depends(get_db)],
    settings: AppSettings,
    http_request: Request,
):
    """Hide the report cards of a class section from students and guardians."""
    return _set_published(request, context, db, settings, http_request, False)


@router.get("", response_model=ClassReportCardsResponse)
def list_report_cards(
    context: Annotated[CurrentUserContext, Depends(require_operation(Operation.VIEW_CLASS_REPORT_CARDS))],
    db: Annotated[Session, Depends(get_db)],
    settings: AppSettings,
    exam_id: int = Query(...),
    class_id: int = Query(...),
    section_id: int = Query(...),
):
    """Results and report cards of a class section for one exam."""
    service = ReportCardService(db, settings.ADVANCED_GRADE_THRESHOLD)
    scope = ReportCardScope(exam_id=exam_id, class_id=class_id, section_id=section_id)
    return service.list_report_cards(context, scope)


@router.get("/students/{student_id}", response_model=list[PublishedExamItem])
def list_published_exams_for_student(
    student_id: int,
    context: Annotated[CurrentUserContext, Depends(require_operation(Operation.VIEW_REPORT_CARD))],
    db: Annotated[Session, Depends(get_db)],
    settings: AppSettings,
):
    """Published report cards of a student, newest first."""
    service = ReportCardService(db, settings.ADVANCED_GRADE_THRESHOLD)
    return service.list_published_exams_for_student(context, student_id)


@router.get("/students/{student_id}/exams/{exam_id}", response_model=ReportCardDetail)
def fetch_report_card(
    student_id: int,
    exam_id: int,
    context: Annotated[CurrentUserContext, Depends(require_operation(Operation.VIEW_REPORT_CARD))],
    db: Annotated[Session, Depends(get_db)],
    settings: AppSettings,
):
    """
    Report card of a student with per-subject breakdown.
    Students and guardians can only read published cards of their own student.
    """
    service = ReportCardService(db, settings.ADVANCED_GRADE_THRESHOLD)
    return service.fetch_report_card(context, student_id, exam_id)
