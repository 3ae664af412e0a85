"""Marks entry service: authorization, roster filtering and result upsert."""

import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

from gradebook.core.exceptions import AuthorizationDeniedError, NotFoundError, ValidationError
from gradebook.core.policy import CurrentUserContext, Operation, authorize
from gradebook.models.academic import ClassSubject, SchoolClass, Section, StudentClass
from gradebook.models.exam import Exam, ExamResult, ExamStatus, ExamSubject
from gradebook.schemas.exam import ExamResponse, MarksEntryExam, MarksEntrySubject
from gradebook.schemas.marks import (
    ExamResultResponse,
    MarksEntry,
    MarksEntryRoster,
    MarksEntryStudent,
    RejectedStudent,
    SubmitMarksRequest,
    SubmitMarksResponse,
)
from gradebook.services.enrollment import EnrollmentReader
from gradebook.services.exam import exam_subject_to_response
from gradebook.services.exam_lifecycle import ensure_status
from gradebook.services.grading import is_advanced_track

logger = logging.getLogger(__name__)

NOT_IN_SECTION = "Student is not actively enrolled in this class section"
NOT_SUBJECT_ENROLLED = "Student is not enrolled in this subject"


class MarksService:
    """Marks entry for one exam subject and section at a time."""

    def __init__(self, db: Session, advanced_grade_threshold: int = 11):
        self.db = db
        self.advanced_grade_threshold = advanced_grade_threshold
        self.enrollment = EnrollmentReader(db)

    # ==========================================
    # Helpers
    # ==========================================

    def _get_exam_subject(
        self,
        school_id: int,
        exam_subject_id: int,
        for_update: bool = False,
    ) -> tuple[ExamSubject, Exam]:
        """Get an exam subject and its exam, locking the exam row if asked."""
        exam_subject = self.db.execute(
            select(ExamSubject)
            .join(Exam, ExamSubject.exam_id == Exam.id)
            .where(ExamSubject.id == exam_subject_id, Exam.school_id == school_id)
        ).scalar_one_or_none()
        if not exam_subject:
            raise NotFoundError("Exam subject", str(exam_subject_id))

        query = select(Exam).where(Exam.id == exam_subject.exam_id)
        if for_update:
            query = query.with_for_update()
        exam = self.db.execute(query).scalar_one()
        return exam_subject, exam

    def _get_section(self, school_id: int, class_id: int, section_id: int) -> Section:
        section = self.db.execute(
            select(Section).where(
                Section.id == section_id,
                Section.class_id == class_id,
                Section.school_id == school_id,
            )
        ).scalar_one_or_none()
        if not section:
            raise NotFoundError("Section", str(section_id))
        return section

    def _is_advanced(self, class_subject: ClassSubject) -> bool:
        school_class = class_subject.school_class or self.db.get(SchoolClass, class_subject.class_id)
        return is_advanced_track(school_class.grade_level, self.advanced_grade_threshold)

    def _existing_results(self, exam_subject_id: int, student_ids: list[int]) -> dict[int, ExamResult]:
        if not student_ids:
            return {}
        result = self.db.execute(
            select(ExamResult).where(
                ExamResult.exam_subject_id == exam_subject_id,
                ExamResult.student_id.in_(student_ids),
            )
        )
        return {r.student_id: r for r in result.scalars().all()}

    def _validate_entry(self, exam_subject: ExamSubject, entry: MarksEntry) -> list[dict]:
        """Check one entry against the snapshot bounds."""
        errors = []

        def error(field: str, message: str) -> None:
            errors.append({"student_id": entry.student_id, "field": field, "message": message})

        theory = None if entry.is_absent else entry.marks_obtained
        practical = entry.practical_marks

        if theory is not None:
            if not exam_subject.has_theory:
                error("marks_obtained", "Subject has no theory component")
            elif theory < 0:
                error("marks_obtained", "Marks cannot be negative")
            elif theory > exam_subject.theory_full_marks:
                error(
                    "marks_obtained",
                    f"Theory marks ({theory}) exceed full marks ({exam_subject.theory_full_marks})",
                )

        if practical is not None:
            if not exam_subject.has_practical:
                error("practical_marks", "Subject has no practical component")
            elif practical < 0:
                error("practical_marks", "Marks cannot be negative")
            elif practical > exam_subject.practical_full_marks:
                error(
                    "practical_marks",
                    f"Practical marks ({practical}) exceed full marks ({exam_subject.practical_full_marks})",
                )

        if not entry.is_absent and theory is None and practical is None:
            error("marks_obtained", "Marks are required unless the student is absent")

        return errors

    # ==========================================
    # Submission
    # ==========================================

    def submit_marks(
        self,
        context: CurrentUserContext,
        request: SubmitMarksRequest,
    ) -> SubmitMarksResponse:
        """Validate and upsert a marks batch for one exam subject and section.

        Students outside the section roster, or without a subject enrollment
        on the advanced track, are rejected individually. Any numeric error
        aborts the whole batch before anything is written.
        """
        exam_subject, exam = self._get_exam_subject(
            context.school_id, request.exam_subject_id, for_update=True
        )
        class_subject = exam_subject.class_subject
        if not context.can_mark(Operation.SUBMIT_MARKS, class_subject.id, request.section_id):
            logger.warning(
                f"[MARKS] Denied user_id={context.user_id} for class_subject_id={class_subject.id} "
                f"section_id={request.section_id}"
            )
            raise AuthorizationDeniedError()
        ensure_status(exam, ExamStatus.PUBLISHED, "submit marks")
        self._get_section(context.school_id, class_subject.class_id, request.section_id)

        submitted_ids = [e.student_id for e in request.entries]
        duplicates = sorted({sid for sid in submitted_ids if submitted_ids.count(sid) > 1})
        if duplicates:
            raise ValidationError(
                "Students listed more than once in the batch",
                details={"duplicate_student_ids": duplicates},
            )

        # Resolve the valid population
        roster = {
            sc.student_id: sc
            for sc in self.enrollment.active_roster(
                context.school_id, class_subject.class_id, request.section_id, exam.academic_year_id
            )
        }
        not_in_section = [sid for sid in submitted_ids if sid not in roster]

        not_subject_enrolled: list[int] = []
        if self._is_advanced(class_subject):
            candidates = [roster[sid].id for sid in submitted_ids if sid in roster]
            enrolled = self.enrollment.subject_enrolled(class_subject.id, candidates)
            not_subject_enrolled = [
                sid for sid in submitted_ids if sid in roster and roster[sid].id not in enrolled
            ]

        rejected = [RejectedStudent(student_id=sid, reason=NOT_IN_SECTION) for sid in not_in_section]
        rejected += [
            RejectedStudent(student_id=sid, reason=NOT_SUBJECT_ENROLLED) for sid in not_subject_enrolled
        ]
        rejected_ids = {r.student_id for r in rejected}
        accepted = [e for e in request.entries if e.student_id not in rejected_ids]

        if not accepted:
            raise ValidationError(
                "No valid students in batch",
                details={
                    "not_in_section": not_in_section,
                    "not_subject_enrolled": not_subject_enrolled,
                },
            )

        # Numeric validation against the snapshot
        errors = []
        for entry in accepted:
            errors.extend(self._validate_entry(exam_subject, entry))
        if errors:
            raise ValidationError("Invalid marks in batch", details={"errors": errors})

        # Upsert keyed by (exam_subject, student)
        existing = self._existing_results(exam_subject.id, [e.student_id for e in accepted])
        role = context.effective_role
        saved: list[ExamResult] = []
        for entry in accepted:
            values = {
                "marks_obtained": None if entry.is_absent else entry.marks_obtained,
                "practical_marks": entry.practical_marks,
                "is_absent": entry.is_absent,
                "remarks": entry.remarks,
                "entered_by": context.user_id,
                "entered_by_role": role,
                "student_class_id": roster[entry.student_id].id,
            }
            result = existing.get(entry.student_id)
            if result is None:
                result = ExamResult(
                    school_id=context.school_id,
                    exam_subject_id=exam_subject.id,
                    student_id=entry.student_id,
                    **values,
                )
                self.db.add(result)
            else:
                for field, value in values.items():
                    setattr(result, field, value)
            saved.append(result)

        self.db.flush()
        for result in saved:
            self.db.refresh(result)

        if rejected:
            logger.warning(
                f"[MARKS] exam_subject_id={exam_subject.id} rejected students: "
                f"not_in_section={not_in_section} not_subject_enrolled={not_subject_enrolled}"
            )
        logger.info(
            f"[MARKS] Saved {len(saved)} results for exam_subject_id={exam_subject.id} "
            f"section_id={request.section_id} by user_id={context.user_id}"
        )

        message = f"Saved marks for {len(saved)} students."
        if rejected:
            message += f" Rejected {len(rejected)}: " + ", ".join(
                f"{r.student_id} ({r.reason})" for r in rejected
            )
        return SubmitMarksResponse(
            saved_count=len(saved),
            results=[ExamResultResponse.model_validate(r) for r in saved],
            rejected=rejected,
            message=message,
        )

    # ==========================================
    # Reads
    # ==========================================

    def fetch_marks_for_entry(
        self,
        context: CurrentUserContext,
        exam_subject_id: int,
        section_id: int,
    ) -> MarksEntryRoster:
        """Section roster with any results already entered."""
        exam_subject, exam = self._get_exam_subject(context.school_id, exam_subject_id)
        class_subject = exam_subject.class_subject
        if not context.can_mark(Operation.VIEW_MARKS, class_subject.id, section_id):
            raise AuthorizationDeniedError()
        self._get_section(context.school_id, class_subject.class_id, section_id)

        roster: list[StudentClass] = self.enrollment.active_roster(
            context.school_id, class_subject.class_id, section_id, exam.academic_year_id
        )
        advanced = self._is_advanced(class_subject)
        enrolled = (
            self.enrollment.subject_enrolled(class_subject.id, [sc.id for sc in roster])
            if advanced else None
        )
        existing = self._existing_results(exam_subject.id, [sc.student_id for sc in roster])

        students = []
        for sc in roster:
            result = existing.get(sc.student_id)
            students.append(MarksEntryStudent(
                student_id=sc.student_id,
                student_class_id=sc.id,
                roll_number=sc.roll_number,
                first_name=sc.student.first_name,
                last_name=sc.student.last_name,
                is_subject_enrolled=enrolled is None or sc.id in enrolled,
                existing_result=ExamResultResponse.model_validate(result) if result else None,
            ))

        return MarksEntryRoster(
            exam_subject=exam_subject_to_response(exam_subject),
            section_id=section_id,
            is_advanced_track=advanced,
            students=students,
        )

    def list_exams_for_marks_entry(self, context: CurrentUserContext) -> list[MarksEntryExam]:
        """Published exams with the subjects the caller may enter marks for."""
        authorize(context, Operation.VIEW_MARKS)

        exams = self.db.execute(
            select(Exam)
            .where(Exam.school_id == context.school_id, Exam.status == ExamStatus.PUBLISHED)
            .order_by(Exam.published_at.desc(), Exam.id.desc())
        ).scalars().all()

        privileged = context.is_privileged()
        sections_by_unit: dict[int, list[int]] = {}
        for class_subject_id, section_id in context.teaching_assignments:
            sections_by_unit.setdefault(class_subject_id, []).append(section_id)

        items = []
        for exam in exams:
            subjects = []
            for exam_subject in sorted(exam.exam_subjects, key=lambda s: s.id):
                if privileged:
                    sections = None
                else:
                    sections = sorted(sections_by_unit.get(exam_subject.class_subject_id, []))
                    if not sections:
                        continue
                data = exam_subject_to_response(exam_subject).model_dump()
                subjects.append(MarksEntrySubject(**data, assigned_section_ids=sections))
            if subjects:
                data = ExamResponse.model_validate(exam).model_dump()
                items.append(MarksEntryExam(**data, subjects=subjects))
        return items
