"""Report card aggregation, ranking and visibility."""

import logging
from collections import defaultdict
from datetime import datetime, timezone

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from gradebook.core.exceptions import AuthorizationDeniedError, NotFoundError, ValidationError
from gradebook.core.policy import CurrentUserContext, Operation, authorize
from gradebook.models.academic import EnrollmentStatus, SchoolClass, Section, StudentClass
from gradebook.models.exam import Exam, ExamResult, ExamSubject
from gradebook.models.report_card import ReportCard
from gradebook.schemas.grading import ComponentCredits, OverallResult, SubjectGrade
from gradebook.schemas.report_card import (
    ClassReportCardRow,
    ClassReportCardsResponse,
    ClassReportCardSummary,
    GenerateReportCardsResponse,
    PublishedExamItem,
    ReportCardDetail,
    ReportCardExamInfo,
    ReportCardResponse,
    ReportCardScope,
    ReportCardStudentInfo,
)
from gradebook.services.enrollment import EnrollmentReader
from gradebook.services.grading import (
    grade_advanced_subject,
    grade_standard_subject,
    is_advanced_track,
    summarize,
)
from gradebook.services.scoring import ScoringConfigReader

logger = logging.getLogger(__name__)


class ReportCardService:
    """Builds report cards from stored exam results and ranks a class section."""

    def __init__(self, db: Session, advanced_grade_threshold: int = 11):
        self.db = db
        self.advanced_grade_threshold = advanced_grade_threshold
        self.enrollment = EnrollmentReader(db)
        self.scoring = ScoringConfigReader(db)
        self._credits_cache: dict[int, ComponentCredits] = {}

    # ==========================================
    # Helpers
    # ==========================================

    def _get_exam(self, school_id: int, exam_id: int) -> Exam:
        exam = self.db.execute(
            select(Exam).where(Exam.id == exam_id, Exam.school_id == school_id)
        ).scalar_one_or_none()
        if not exam:
            raise NotFoundError("Exam", str(exam_id))
        return exam

    def _get_class(self, school_id: int, class_id: int, section_id: int) -> SchoolClass:
        """Get a class and check the section belongs to it."""
        school_class = self.db.execute(
            select(SchoolClass).where(SchoolClass.id == class_id, SchoolClass.school_id == school_id)
        ).scalar_one_or_none()
        if not school_class:
            raise NotFoundError("Class", str(class_id))
        section = self.db.execute(
            select(Section.id).where(Section.id == section_id, Section.class_id == class_id)
        ).first()
        if not section:
            raise NotFoundError("Section", str(section_id))
        return school_class

    def _is_advanced(self, school_class: SchoolClass) -> bool:
        return is_advanced_track(school_class.grade_level, self.advanced_grade_threshold)

    def _results_by_student(self, exam_id: int, student_ids: list[int]) -> dict[int, list[ExamResult]]:
        if not student_ids:
            return {}
        result = self.db.execute(
            select(ExamResult)
            .join(ExamSubject, ExamResult.exam_subject_id == ExamSubject.id)
            .where(ExamSubject.exam_id == exam_id, ExamResult.student_id.in_(student_ids))
            .order_by(ExamResult.student_id, ExamSubject.id)
        )
        grouped: dict[int, list[ExamResult]] = defaultdict(list)
        for r in result.scalars().all():
            grouped[r.student_id].append(r)
        return grouped

    def _credits(self, school_id: int, exam_subject: ExamSubject) -> ComponentCredits:
        class_subject_id = exam_subject.class_subject_id
        if class_subject_id not in self._credits_cache:
            self._credits_cache[class_subject_id] = self.scoring.component_credits(
                school_id, exam_subject.class_subject, exam_subject.has_practical
            )
        return self._credits_cache[class_subject_id]

    def _grade_result(self, school_id: int, result: ExamResult, advanced: bool) -> SubjectGrade:
        """Grade one stored result from its exam subject snapshot."""
        snapshot = result.exam_subject
        if advanced:
            grade = grade_advanced_subject(
                theory_marks=result.marks_obtained,
                practical_marks=result.practical_marks,
                has_theory=snapshot.has_theory,
                has_practical=snapshot.has_practical,
                theory_full_marks=snapshot.theory_full_marks,
                practical_full_marks=snapshot.practical_full_marks,
                credits=self._credits(school_id, snapshot),
                is_absent=result.is_absent,
            )
        else:
            grade = grade_standard_subject(
                theory_marks=result.marks_obtained,
                practical_marks=result.practical_marks,
                theory_full_marks=snapshot.theory_full_marks,
                practical_full_marks=snapshot.practical_full_marks,
                full_marks=snapshot.full_marks,
                pass_marks=snapshot.pass_marks,
                is_absent=result.is_absent,
            )

        subject = snapshot.class_subject.subject
        grade.exam_subject_id = snapshot.id
        grade.subject_id = snapshot.class_subject.subject_id
        grade.subject_name = subject.name if subject else None
        grade.subject_code = subject.code if subject else None
        if result.remarks:
            grade.remark = result.remarks
        return grade

    def _grade_student(
        self,
        school_id: int,
        results: list[ExamResult],
        advanced: bool,
    ) -> tuple[list[SubjectGrade], OverallResult]:
        subjects = [self._grade_result(school_id, r, advanced) for r in results]
        return subjects, summarize(subjects, advanced)

    def _section_cards(self, exam_id: int, class_id: int, section_id: int):
        return self.db.execute(
            select(ReportCard, StudentClass)
            .join(StudentClass, ReportCard.student_class_id == StudentClass.id)
            .where(
                ReportCard.exam_id == exam_id,
                StudentClass.class_id == class_id,
                StudentClass.section_id == section_id,
            )
        ).all()

    @staticmethod
    def _in_scope(exam: Exam, enrollment: StudentClass) -> bool:
        return (
            enrollment.status == EnrollmentStatus.ACTIVE
            and enrollment.academic_year_id == exam.academic_year_id
        )

    def _scope_cards(self, exam: Exam, class_id: int, section_id: int) -> list[ReportCard]:
        """Cards of the section reached through an active enrollment of the exam's year."""
        return [
            card
            for card, enrollment in self._section_cards(exam.id, class_id, section_id)
            if self._in_scope(exam, enrollment)
        ]

    def _assign_ranks(self, exam: Exam, class_id: int, section_id: int) -> list[ReportCard]:
        """Rank every card of the scope and clear ranks that fell out of it.

        Ordinal ranks: percentage descending, then total marks descending,
        then student id, so ranks always run 1..N.
        """
        cards = []
        for card, enrollment in self._section_cards(exam.id, class_id, section_id):
            if self._in_scope(exam, enrollment):
                cards.append(card)
            else:
                card.class_rank = None
        cards.sort(key=lambda c: (-c.percentage, -c.total_marks, c.student_id))
        for position, card in enumerate(cards, start=1):
            card.class_rank = position
        self.db.flush()
        return cards

    def _ensure_can_view_student(self, context: CurrentUserContext, student_id: int) -> bool:
        """Return True for staff; raise unless the caller is the student or a guardian."""
        authorize(context, Operation.VIEW_REPORT_CARD)
        if context.can(Operation.VIEW_UNPUBLISHED_REPORT_CARD):
            return True
        if not context.can_view_student(student_id):
            raise AuthorizationDeniedError()
        return False

    # ==========================================
    # Generation & Ranking
    # ==========================================

    def generate_report_cards(
        self,
        context: CurrentUserContext,
        scope: ReportCardScope,
    ) -> GenerateReportCardsResponse:
        """Aggregate results into report cards for a class section and rank it.

        Students without any result for the exam get no card. Ranking reads
        every stored card of the scope after the upserts.
        """
        authorize(context, Operation.GENERATE_REPORT_CARDS)
        school_id = context.school_id
        exam = self._get_exam(school_id, scope.exam_id)
        school_class = self._get_class(school_id, scope.class_id, scope.section_id)
        advanced = self._is_advanced(school_class)

        roster = self.enrollment.active_roster(
            school_id, scope.class_id, scope.section_id, exam.academic_year_id
        )
        results = self._results_by_student(exam.id, [sc.student_id for sc in roster])
        skipped = [sc.student_id for sc in roster if not results.get(sc.student_id)]
        graded = [sc for sc in roster if results.get(sc.student_id)]
        if not graded:
            raise ValidationError(
                "No students with results in this class section",
                details={"exam_id": exam.id, "class_id": scope.class_id, "section_id": scope.section_id},
            )

        existing = {
            c.student_id: c
            for c in self.db.execute(
                select(ReportCard).where(
                    ReportCard.exam_id == exam.id,
                    ReportCard.student_id.in_([sc.student_id for sc in graded]),
                )
            ).scalars().all()
        }

        now = datetime.now(timezone.utc)
        for enrollment in graded:
            _, overall = self._grade_student(school_id, results[enrollment.student_id], advanced)
            card = existing.get(enrollment.student_id)
            if card is None:
                card = ReportCard(
                    school_id=school_id,
                    student_id=enrollment.student_id,
                    exam_id=exam.id,
                )
                self.db.add(card)
            card.student_class_id = enrollment.id
            card.total_marks = overall.total_marks
            card.total_full_marks = overall.total_full_marks
            card.percentage = overall.percentage
            card.gpa = overall.gpa
            card.overall_grade = overall.grade
            card.is_passed = overall.is_passed
            card.generated_at = now
        self.db.flush()

        cards = self._assign_ranks(exam, scope.class_id, scope.section_id)
        for card in cards:
            self.db.refresh(card)

        logger.info(
            f"[REPORT CARD] Generated {len(graded)} cards for exam_id={exam.id} "
            f"class_id={scope.class_id} section_id={scope.section_id}; skipped {len(skipped)}"
        )
        return GenerateReportCardsResponse(
            count=len(graded),
            skipped_student_ids=skipped,
            report_cards=[ReportCardResponse.model_validate(c) for c in cards],
            message=f"Generated {len(graded)} report cards.",
        )

    def set_published(
        self,
        context: CurrentUserContext,
        scope: ReportCardScope,
        published: bool,
    ) -> int:
        """Set the visibility flag of every card in scope; returns the count in scope."""
        authorize(context, Operation.PUBLISH_REPORT_CARDS)
        exam = self._get_exam(context.school_id, scope.exam_id)
        self._get_class(context.school_id, scope.class_id, scope.section_id)

        card_ids = [c.id for c in self._scope_cards(exam, scope.class_id, scope.section_id)]
        if card_ids:
            self.db.execute(
                update(ReportCard)
                .where(ReportCard.id.in_(card_ids))
                .values(is_published=published)
                .execution_options(synchronize_session="fetch")
            )
            self.db.flush()

        action = "Published" if published else "Unpublished"
        logger.info(
            f"[REPORT CARD] {action} {len(card_ids)} cards for exam_id={exam.id} "
            f"class_id={scope.class_id} section_id={scope.section_id}"
        )
        return len(card_ids)

    def publish_report_cards(self, context: CurrentUserContext, scope: ReportCardScope) -> int:
        return self.set_published(context, scope, True)

    def unpublish_report_cards(self, context: CurrentUserContext, scope: ReportCardScope) -> int:
        return self.set_published(context, scope, False)

    # ==========================================
    # Reads
    # ==========================================

    def list_report_cards(
        self,
        context: CurrentUserContext,
        scope: ReportCardScope,
    ) -> ClassReportCardsResponse:
        """Staff view of a class section with live subject grades and stored cards."""
        authorize(context, Operation.VIEW_CLASS_REPORT_CARDS)
        school_id = context.school_id
        exam = self._get_exam(school_id, scope.exam_id)
        school_class = self._get_class(school_id, scope.class_id, scope.section_id)
        advanced = self._is_advanced(school_class)

        roster = self.enrollment.active_roster(
            school_id, scope.class_id, scope.section_id, exam.academic_year_id
        )
        results = self._results_by_student(exam.id, [sc.student_id for sc in roster])
        cards = {c.student_id: c for c in self._scope_cards(exam, scope.class_id, scope.section_id)}

        rows = []
        for enrollment in roster:
            student_results = results.get(enrollment.student_id, [])
            subjects, overall = (
                self._grade_student(school_id, student_results, advanced)
                if student_results else ([], None)
            )
            card = cards.get(enrollment.student_id)
            rows.append(ClassReportCardRow(
                student_id=enrollment.student_id,
                student_class_id=enrollment.id,
                roll_number=enrollment.roll_number,
                first_name=enrollment.student.first_name,
                last_name=enrollment.student.last_name,
                subjects=subjects,
                summary=overall,
                report_card=ReportCardResponse.model_validate(card) if card else None,
            ))

        stored = list(cards.values())
        summary = ClassReportCardSummary(
            exam_id=exam.id,
            exam_name=exam.name,
            class_id=scope.class_id,
            section_id=scope.section_id,
            total_students=len(roster),
            report_cards_generated=len(stored),
            published=sum(1 for c in stored if c.is_published),
            passed=sum(1 for c in stored if c.is_passed),
            failed=sum(1 for c in stored if not c.is_passed),
        )
        return ClassReportCardsResponse(summary=summary, students=rows)

    def fetch_report_card(
        self,
        context: CurrentUserContext,
        student_id: int,
        exam_id: int,
    ) -> ReportCardDetail:
        """Report card with per-subject breakdown.

        Students and guardians only see published cards of their own
        student; an unpublished card is reported as not found to them.
        """
        is_staff = self._ensure_can_view_student(context, student_id)

        card = self.db.execute(
            select(ReportCard).where(
                ReportCard.student_id == student_id,
                ReportCard.exam_id == exam_id,
                ReportCard.school_id == context.school_id,
            )
        ).scalar_one_or_none()
        if not card or (not is_staff and not card.is_published):
            raise NotFoundError("Report card", f"student={student_id}, exam={exam_id}")

        exam = card.exam
        enrollment = card.student_class
        school_class = self.db.get(SchoolClass, enrollment.class_id)
        advanced = self._is_advanced(school_class)
        results = self._results_by_student(exam.id, [student_id]).get(student_id, [])
        subjects, overall = self._grade_student(context.school_id, results, advanced)

        return ReportCardDetail(
            report_card=ReportCardResponse.model_validate(card),
            exam=ReportCardExamInfo.model_validate(exam),
            student=ReportCardStudentInfo(
                id=card.student.id,
                first_name=card.student.first_name,
                last_name=card.student.last_name,
                admission_number=card.student.admission_number,
                roll_number=enrollment.roll_number,
                class_id=enrollment.class_id,
                section_id=enrollment.section_id,
                grade_level=school_class.grade_level,
            ),
            is_advanced_track=advanced,
            subjects=subjects,
            summary=overall,
        )

    def list_published_exams_for_student(
        self,
        context: CurrentUserContext,
        student_id: int,
    ) -> list[PublishedExamItem]:
        """Published report cards of a student, newest first."""
        self._ensure_can_view_student(context, student_id)

        result = self.db.execute(
            select(ReportCard)
            .where(
                ReportCard.student_id == student_id,
                ReportCard.school_id == context.school_id,
                ReportCard.is_published.is_(True),
            )
            .order_by(ReportCard.generated_at.desc(), ReportCard.id.desc())
        )
        items = []
        for card in result.scalars().all():
            items.append(PublishedExamItem(
                exam_id=card.exam_id,
                exam_name=card.exam.name,
                exam_type=card.exam.exam_type,
                academic_year_id=card.exam.academic_year_id,
                class_id=card.student_class.class_id,
                section_id=card.student_class.section_id,
                overall_grade=card.overall_grade,
                percentage=card.percentage,
                gpa=card.gpa,
                class_rank=card.class_rank,
                generated_at=card.generated_at,
            ))
        return items
