"""Marks entry endpoints."""

from io import BytesIO
from typing import Annotated

from fastapi import APIRouter, Depends, File, Query, Request, UploadFile
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session

from gradebook.api.v1.endpoints.exams import client_ip
from gradebook.core.database import get_db
from gradebook.core.dependencies import AppSettings, require_operation
from gradebook.core.exceptions import UploadError
from gradebook.core.policy import CurrentUserContext, Operation
from gradebook.models.audit import AuditAction
from gradebook.schemas.common import ERROR_RESPONSES
from gradebook.schemas.exam import MarksEntryExam
from gradebook.schemas.marks import MarksEntryRoster, SubmitMarksRequest, SubmitMarksResponse
from gradebook.services.audit import AuditService
from gradebook.services.marks import MarksService
from gradebook.services.marks_sheet import MarksSheetService

router = APIRouter(responses=ERROR_RESPONSES)


def _log_submission(
    db: Session,
    context: CurrentUserContext,
    result: SubmitMarksResponse,
    exam_subject_id: int,
    section_id: int,
    http_request: Request,
    source: str,
) -> None:
    AuditService(db).log(
        action=AuditAction.MARKS_SUBMITTED,
        resource_type="exam_subject",
        resource_id=str(exam_subject_id),
        school_id=context.school_id,
        user_id=context.user_id,
        description=f"Marks for {result.saved_count} students in section {section_id} ({source})",
        extra_data={
            "section_id": section_id,
            "saved_count": result.saved_count,
            "rejected_student_ids": [r.student_id for r in result.rejected],
            "role": context.effective_role.value,
        },
        ip_address=client_ip(http_request),
    )


@router.get("/exams", response_model=list[MarksEntryExam])
def list_exams_for_marks_entry(
    context: Annotated[CurrentUserContext, Depends(require_operation(Operation.VIEW_MARKS))],
    db: Annotated[Session, Depends(get_db)],
    settings: AppSettings,
):
    """
    List published exams with the subjects the caller may enter marks for.
    Teachers see only their assigned subjects and sections.
    """
    service = MarksService(db, settings.ADVANCED_GRADE_THRESHOLD)
    return service.list_exams_for_marks_entry(context)


@router.get("/entry", response_model=MarksEntryRoster)
def fetch_marks_for_entry(
    context: Annotated[CurrentUserContext, Depends(require_operation(Operation.VIEW_MARKS))],
    db: Annotated[Session, Depends(get_db)],
    settings: AppSettings,
    exam_subject_id: int = Query(...),
    section_id: int = Query(...),
):
    """Section roster with any marks already entered."""
    service = MarksService(db, settings.ADVANCED_GRADE_THRESHOLD)
    return service.fetch_marks_for_entry(context, exam_subject_id, section_id)


@router.post("", response_model=SubmitMarksResponse)
def submit_marks(
    request: SubmitMarksRequest,
    context: Annotated[CurrentUserContext, Depends(require_operation(Operation.SUBMIT_MARKS))],
    db: Annotated[Session, Depends(get_db)],
    settings: AppSettings,
    http_request: Request,
):
    """
    Submit marks for one exam subject and section.
    The exam must be PUBLISHED. Re-submitting a student updates the stored result.
    """
    service = MarksService(db, settings.ADVANCED_GRADE_THRESHOLD)
    result = service.submit_marks(context, request)
    _log_submission(db, context, result, request.exam_subject_id, request.section_id, http_request, "form")
    return result


@router.get("/template")
def download_marks_template(
    context: Annotated[CurrentUserContext, Depends(require_operation(Operation.VIEW_MARKS))],
    db: Annotated[Session, Depends(get_db)],
    settings: AppSettings,
    exam_subject_id: int = Query(...),
    section_id: int = Query(...),
):
    """Download the marks sheet of a section, pre-filled with existing marks."""
    service = MarksSheetService(db, settings.ADVANCED_GRADE_THRESHOLD)
    content = service.generate_template(context, exam_subject_id, section_id)

    filename = f"marks_{exam_subject_id}_section_{section_id}.xlsx"
    return StreamingResponse(
        BytesIO(content),
        media_type="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        headers={"Content-Disposition": f"attachment; filename={filename}"},
    )


@router.post("/upload", response_model=SubmitMarksResponse)
def upload_marks_sheet(
    context: Annotated[CurrentUserContext, Depends(require_operation(Operation.SUBMIT_MARKS))],
    db: Annotated[Session, Depends(get_db)],
    settings: AppSettings,
    http_request: Request,
    exam_subject_id: int = Query(...),
    section_id: int = Query(...),
    file: UploadFile = File(...),
):
    """
    Upload a filled marks sheet.
    The sheet is applied as one batch with the same rules as a form submission.
    """
    if not file.filename:
        raise UploadError("No file provided")

    if not any(file.filename.lower().endswith(ext) for ext in settings.ALLOWED_EXTENSIONS):
        raise UploadError("Only .xlsx files are allowed")

    content = file.file.read()
    if len(content) > settings.MAX_UPLOAD_SIZE_MB * 1024 * 1024:
        raise UploadError(f"File size exceeds {settings.MAX_UPLOAD_SIZE_MB}MB limit")

    service = MarksSheetService(db, settings.ADVANCED_GRADE_THRESHOLD)
    result = service.process_upload(context, exam_subject_id, section_id, content)
    _log_submission(db, context, result, exam_subject_id, section_id, http_request, file.filename)
    return result
