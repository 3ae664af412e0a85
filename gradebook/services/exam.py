"""Exam service: lifecycle transitions and exam subject snapshots."""

import logging
from datetime import datetime, timezone

from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session

from gradebook.core.exceptions import (
    IntegrityConflictError,
    NotFoundError,
    StateConflictError,
    ValidationError,
)
from gradebook.core.policy import CurrentUserContext, Operation, authorize
from gradebook.models.academic import AcademicYear, ClassSubject, SchoolClass
from gradebook.models.exam import Exam, ExamResult, ExamStatus, ExamSubject
from gradebook.models.report_card import ReportCard
from gradebook.schemas.exam import (
    ExamCreate,
    ExamDetailResponse,
    ExamListItem,
    ExamResponse,
    ExamSubjectLinkRequest,
    ExamSubjectResponse,
    ExamUpdate,
)
from gradebook.services.exam_lifecycle import ExamTransition, apply_transition, ensure_status
from gradebook.services.scoring import ScoringConfigLock, ScoringConfigReader, build_snapshot

logger = logging.getLogger(__name__)


def exam_subject_to_response(exam_subject: ExamSubject) -> ExamSubjectResponse:
    """Convert ExamSubject to response schema."""
    class_subject = exam_subject.class_subject
    return ExamSubjectResponse(
        id=exam_subject.id,
        exam_id=exam_subject.exam_id,
        class_subject_id=exam_subject.class_subject_id,
        class_id=class_subject.class_id,
        subject_id=class_subject.subject_id,
        subject_name=class_subject.subject.name if class_subject.subject else "",
        subject_code=class_subject.subject.code if class_subject.subject else None,
        exam_date=exam_subject.exam_date,
        start_time=exam_subject.start_time,
        end_time=exam_subject.end_time,
        has_theory=exam_subject.has_theory,
        has_practical=exam_subject.has_practical,
        theory_full_marks=exam_subject.theory_full_marks,
        practical_full_marks=exam_subject.practical_full_marks,
        full_marks=exam_subject.full_marks,
        pass_marks=exam_subject.pass_marks,
    )


class ExamService:
    """Exam lifecycle management service.

    Every public method takes the caller's context and plain ids, and runs
    inside the caller's unit of work. Status checks are repeated on a row
    selected ``FOR UPDATE`` so racing transitions lose with StateConflict.
    """

    def __init__(self, db: Session):
        self.db = db
        self.scoring = ScoringConfigReader(db)
        self.config_lock = ScoringConfigLock(db)

    # ==========================================
    # Lookups
    # ==========================================

    def _get_exam(self, school_id: int, exam_id: int, for_update: bool = False) -> Exam:
        query = select(Exam).where(Exam.id == exam_id, Exam.school_id == school_id)
        if for_update:
            query = query.with_for_update()
        exam = self.db.execute(query).scalar_one_or_none()
        if not exam:
            raise NotFoundError("Exam", str(exam_id))
        return exam

    def _get_academic_year(self, school_id: int, academic_year_id: int) -> AcademicYear:
        year = self.db.execute(
            select(AcademicYear).where(
                AcademicYear.id == academic_year_id,
                AcademicYear.school_id == school_id,
            )
        ).scalar_one_or_none()
        if not year:
            raise NotFoundError("Academic year", str(academic_year_id))
        return year

    def _ensure_unique_name(
        self,
        school_id: int,
        academic_year_id: int,
        name: str,
        exclude_id: int | None = None,
    ) -> None:
        query = select(Exam.id).where(
            Exam.school_id == school_id,
            Exam.academic_year_id == academic_year_id,
            func.lower(Exam.name) == name.lower(),
        )
        if exclude_id is not None:
            query = query.where(Exam.id != exclude_id)
        if self.db.execute(query).first():
            raise IntegrityConflictError(
                f"Exam '{name}' already exists for this academic year",
                details={"name": name, "academic_year_id": academic_year_id},
            )

    def _count_results(self, exam_id: int, exam_subject_id: int | None = None) -> int:
        query = (
            select(func.count(ExamResult.id))
            .join(ExamSubject, ExamResult.exam_subject_id == ExamSubject.id)
            .where(ExamSubject.exam_id == exam_id)
        )
        if exam_subject_id is not None:
            query = query.where(ExamSubject.id == exam_subject_id)
        return self.db.execute(query).scalar() or 0

    def get_exam(self, context: CurrentUserContext, exam_id: int) -> Exam:
        """Get exam by ID within the caller's school."""
        authorize(context, Operation.VIEW_EXAMS)
        return self._get_exam(context.school_id, exam_id)

    def get_exam_detail(self, context: CurrentUserContext, exam_id: int) -> ExamDetailResponse:
        """Exam with its linked subject snapshots."""
        exam = self.get_exam(context, exam_id)
        subjects = sorted(exam.exam_subjects, key=lambda s: s.id)
        data = ExamResponse.model_validate(exam).model_dump()
        return ExamDetailResponse(
            **data,
            subjects=[exam_subject_to_response(s) for s in subjects],
        )

    def list_exams(
        self,
        context: CurrentUserContext,
        academic_year_id: int | None = None,
        status: ExamStatus | None = None,
    ) -> list[ExamListItem]:
        """List exams of the school, defaulting to the current academic year."""
        authorize(context, Operation.VIEW_EXAMS)

        if academic_year_id is None:
            academic_year_id = self.db.execute(
                select(AcademicYear.id).where(
                    AcademicYear.school_id == context.school_id,
                    AcademicYear.is_current.is_(True),
                )
            ).scalar()

        subject_count = (
            select(func.count(ExamSubject.id))
            .where(ExamSubject.exam_id == Exam.id)
            .correlate(Exam)
            .scalar_subquery()
        )
        query = select(Exam, subject_count.label("subject_count")).where(
            Exam.school_id == context.school_id
        )
        if academic_year_id is not None:
            query = query.where(Exam.academic_year_id == academic_year_id)
        if status is not None:
            query = query.where(Exam.status == status)
        query = query.order_by(Exam.created_at.desc(), Exam.id.desc())

        items = []
        for exam, count in self.db.execute(query).all():
            data = ExamResponse.model_validate(exam).model_dump()
            items.append(ExamListItem(**data, subject_count=count or 0))
        return items

    # ==========================================
    # DRAFT editing
    # ==========================================

    def create_exam(self, context: CurrentUserContext, request: ExamCreate) -> Exam:
        """Create a DRAFT exam, optionally linking every subject of the given classes."""
        authorize(context, Operation.CREATE_EXAM)
        school_id = context.school_id

        self._get_academic_year(school_id, request.academic_year_id)
        self._ensure_unique_name(school_id, request.academic_year_id, request.name)

        class_subjects: list[ClassSubject] = []
        if request.class_ids:
            class_ids = sorted(set(request.class_ids))
            found = set(
                self.db.execute(
                    select(SchoolClass.id).where(
                        SchoolClass.school_id == school_id,
                        SchoolClass.id.in_(class_ids),
                    )
                ).scalars().all()
            )
            missing = [cid for cid in class_ids if cid not in found]
            if missing:
                raise NotFoundError("Class", ", ".join(str(m) for m in missing))
            class_subjects = self.scoring.list_for_classes(
                school_id, request.academic_year_id, class_ids
            )

        exam = Exam(
            school_id=school_id,
            academic_year_id=request.academic_year_id,
            name=request.name,
            exam_type=request.exam_type,
            status=ExamStatus.DRAFT,
            start_date=request.start_date,
            end_date=request.end_date,
        )
        self.db.add(exam)
        self.db.flush()

        for class_subject in class_subjects:
            self.db.add(
                ExamSubject(
                    exam_id=exam.id,
                    class_subject_id=class_subject.id,
                    **build_snapshot(class_subject),
                )
            )
        self.db.flush()
        self.db.refresh(exam)

        logger.info(
            f"[EXAM] Created exam_id={exam.id} name='{exam.name}' school_id={school_id} "
            f"with {len(class_subjects)} subjects"
        )
        return exam

    def update_exam(
        self,
        context: CurrentUserContext,
        exam_id: int,
        request: ExamUpdate,
    ) -> Exam:
        """Update a DRAFT exam's mutable fields."""
        authorize(context, Operation.UPDATE_EXAM)
        exam = self._get_exam(context.school_id, exam_id, for_update=True)
        ensure_status(exam, ExamStatus.DRAFT, "update the exam")

        update_data = request.model_dump(exclude_unset=True)
        if update_data.get("name"):
            self._ensure_unique_name(
                context.school_id, exam.academic_year_id, update_data["name"], exclude_id=exam.id
            )

        start = update_data.get("start_date", exam.start_date)
        end = update_data.get("end_date", exam.end_date)
        if start and end and end < start:
            raise ValidationError("end_date cannot be before start_date")

        for field, value in update_data.items():
            if value is None and field in ("name", "exam_type"):
                continue
            setattr(exam, field, value)

        self.db.flush()
        self.db.refresh(exam)
        return exam

    def link_or_update_exam_subjects(
        self,
        context: CurrentUserContext,
        exam_id: int,
        request: ExamSubjectLinkRequest,
    ) -> list[ExamSubject]:
        """Link scoring units to a DRAFT exam or refresh existing snapshots.

        Each entry re-copies the live scoring configuration and applies the
        entry's overrides. All entries are validated before anything is
        written.
        """
        authorize(context, Operation.MANAGE_EXAM_SUBJECTS)
        exam = self._get_exam(context.school_id, exam_id, for_update=True)
        ensure_status(exam, ExamStatus.DRAFT, "change exam subjects")

        seen: set[int] = set()
        errors: list[dict] = []
        prepared = []
        for link in request.subjects:
            if link.class_subject_id in seen:
                errors.append({
                    "class_subject_id": link.class_subject_id,
                    "message": "Class subject listed more than once",
                })
                continue
            seen.add(link.class_subject_id)

            class_subject = self.scoring.get_class_subject(context.school_id, link.class_subject_id)
            if class_subject.academic_year_id != exam.academic_year_id:
                errors.append({
                    "class_subject_id": link.class_subject_id,
                    "message": "Class subject belongs to a different academic year",
                })
                continue
            try:
                snapshot = build_snapshot(class_subject, link)
            except ValidationError as e:
                errors.append({
                    "class_subject_id": link.class_subject_id,
                    "message": e.message,
                    "errors": e.details.get("errors", {}),
                })
                continue
            prepared.append((link, snapshot))

        if errors:
            raise ValidationError("Invalid exam subjects", details={"errors": errors})

        existing = {s.class_subject_id: s for s in exam.exam_subjects}
        linked: list[ExamSubject] = []
        for link, snapshot in prepared:
            exam_subject = existing.get(link.class_subject_id)
            if exam_subject is None:
                exam_subject = ExamSubject(exam_id=exam.id, class_subject_id=link.class_subject_id)
                exam.exam_subjects.append(exam_subject)
            for field, value in snapshot.items():
                setattr(exam_subject, field, value)
            for field in ("exam_date", "start_time", "end_time"):
                if field in link.model_fields_set:
                    setattr(exam_subject, field, getattr(link, field))
            linked.append(exam_subject)

        self.db.flush()
        for exam_subject in linked:
            self.db.refresh(exam_subject)

        logger.info(f"[EXAM] Linked {len(linked)} subjects to exam_id={exam.id}")
        return linked

    def delete_exam_subject(
        self,
        context: CurrentUserContext,
        exam_id: int,
        exam_subject_id: int,
    ) -> ExamSubject:
        """Remove a subject from a DRAFT exam that has no results for it."""
        authorize(context, Operation.MANAGE_EXAM_SUBJECTS)
        exam = self._get_exam(context.school_id, exam_id, for_update=True)
        ensure_status(exam, ExamStatus.DRAFT, "remove exam subjects")

        exam_subject = next((s for s in exam.exam_subjects if s.id == exam_subject_id), None)
        if exam_subject is None:
            raise NotFoundError("Exam subject", str(exam_subject_id))

        if self._count_results(exam.id, exam_subject_id) > 0:
            raise StateConflictError(
                "Cannot remove an exam subject that already has results",
                current_status=exam.status.value,
            )

        exam.exam_subjects.remove(exam_subject)
        self.db.flush()
        logger.info(f"[EXAM] Removed exam_subject_id={exam_subject_id} from exam_id={exam.id}")
        return exam_subject

    # ==========================================
    # Transitions
    # ==========================================

    def publish_exam(self, context: CurrentUserContext, exam_id: int) -> tuple[Exam, list[int]]:
        """Publish a DRAFT exam and lock its scoring units.

        Returns the exam and the ids of the class subjects newly locked.
        """
        authorize(context, Operation.PUBLISH_EXAM)
        exam = self._get_exam(context.school_id, exam_id, for_update=True)
        ensure_status(exam, ExamStatus.DRAFT, "publish")
        if not exam.exam_subjects:
            raise ValidationError(
                "Cannot publish an exam without subjects",
                details={"exam_id": exam.id, "subject_count": 0},
            )

        apply_transition(exam, ExamTransition.PUBLISH)
        exam.published_at = datetime.now(timezone.utc)
        self.db.flush()

        locked = self.config_lock.lock(
            context.school_id, [s.class_subject_id for s in exam.exam_subjects]
        )
        self.db.refresh(exam)

        logger.info(
            f"[EXAM] Published exam_id={exam.id} by user_id={context.user_id}; "
            f"locked {len(locked)} class subjects"
        )
        return exam, locked

    def lock_exam(self, context: CurrentUserContext, exam_id: int) -> Exam:
        """PUBLISHED -> LOCKED: freeze all result writes."""
        authorize(context, Operation.LOCK_EXAM)
        exam = self._get_exam(context.school_id, exam_id, for_update=True)
        apply_transition(exam, ExamTransition.LOCK)
        self.db.flush()
        self.db.refresh(exam)
        logger.info(f"[EXAM] Locked exam_id={exam.id} by user_id={context.user_id}")
        return exam

    def unlock_exam(self, context: CurrentUserContext, exam_id: int) -> Exam:
        """LOCKED -> PUBLISHED: reopen result writes."""
        authorize(context, Operation.UNLOCK_EXAM)
        exam = self._get_exam(context.school_id, exam_id, for_update=True)
        apply_transition(exam, ExamTransition.UNLOCK)
        self.db.flush()
        self.db.refresh(exam)
        logger.info(f"[EXAM] Unlocked exam_id={exam.id} by user_id={context.user_id}")
        return exam

    def delete_exam(self, context: CurrentUserContext, exam_id: int) -> Exam:
        """Delete a DRAFT exam, or a later-stage exam that has no results."""
        authorize(context, Operation.DELETE_EXAM)
        exam = self._get_exam(context.school_id, exam_id, for_update=True)

        if exam.status != ExamStatus.DRAFT:
            result_count = self._count_results(exam.id)
            if result_count > 0:
                raise StateConflictError(
                    f"Exam has {result_count} results and cannot be deleted; lock it instead",
                    current_status=exam.status.value,
                    required_status=ExamStatus.DRAFT.value,
                )

        self.db.execute(delete(ReportCard).where(ReportCard.exam_id == exam.id))
        self.db.delete(exam)
        self.db.flush()
        logger.info(f"[EXAM] Deleted exam_id={exam_id} ({exam.status.value}) by user_id={context.user_id}")
        return exam
