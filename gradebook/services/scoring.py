"""Scoring configuration reader, snapshot builder and locking sink."""

import logging
from decimal import Decimal

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from gradebook.core.exceptions import NotFoundError, ValidationError
from gradebook.models.academic import ClassSubject, ComponentType, SubjectComponent
from gradebook.schemas.exam import ExamSubjectLink
from gradebook.schemas.grading import ComponentCredits
from gradebook.services.grading import default_component_credits

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


class ScoringConfigReader:
    """Read-only access to class subjects and their component splits."""

    def __init__(self, db: Session):
        self.db = db

    def get_class_subject(self, school_id: int, class_subject_id: int) -> ClassSubject:
        """Get a scoring unit of the school."""
        result = self.db.execute(
            select(ClassSubject).where(
                ClassSubject.id == class_subject_id,
                ClassSubject.school_id == school_id,
            )
        )
        class_subject = result.scalar_one_or_none()
        if not class_subject:
            raise NotFoundError("Class subject", str(class_subject_id))
        return class_subject

    def list_for_classes(
        self,
        school_id: int,
        academic_year_id: int,
        class_ids: list[int],
    ) -> list[ClassSubject]:
        """All scoring units of the given classes in one academic year."""
        if not class_ids:
            return []
        result = self.db.execute(
            select(ClassSubject)
            .where(
                ClassSubject.school_id == school_id,
                ClassSubject.academic_year_id == academic_year_id,
                ClassSubject.class_id.in_(class_ids),
            )
            .order_by(ClassSubject.class_id, ClassSubject.id)
        )
        return list(result.scalars().all())

    def get_components(
        self,
        school_id: int,
        class_id: int,
        subject_id: int,
    ) -> dict[ComponentType, SubjectComponent]:
        result = self.db.execute(
            select(SubjectComponent).where(
                SubjectComponent.school_id == school_id,
                SubjectComponent.class_id == class_id,
                SubjectComponent.subject_id == subject_id,
            )
        )
        return {c.type: c for c in result.scalars().all()}

    def component_credits(
        self,
        school_id: int,
        class_subject: ClassSubject,
        has_practical: bool,
    ) -> ComponentCredits:
        """Credit hours and component pass marks for advanced-track grading.

        Falls back to splitting the class subject's credit hours when no
        component rows exist.
        """
        components = self.get_components(
            school_id, class_subject.class_id, class_subject.subject_id
        )
        theory = components.get(ComponentType.THEORY)
        practical = components.get(ComponentType.PRACTICAL)
        if theory is None and practical is None:
            return default_component_credits(class_subject.credit_hours, has_practical)

        return ComponentCredits(
            theory_credit_hours=theory.credit_hours if theory else ZERO,
            practical_credit_hours=practical.credit_hours if practical else ZERO,
            theory_pass_marks=theory.pass_marks if theory else None,
            practical_pass_marks=practical.pass_marks if practical else None,
            theory_code=theory.subject_code if theory else None,
            practical_code=practical.subject_code if practical else None,
        )


def build_snapshot(class_subject: ClassSubject, link: ExamSubjectLink | None = None) -> dict:
    """Copy a scoring unit's marks structure, applying per-exam overrides.

    Returns the snapshot columns of an ExamSubject. Overrides must stay
    consistent with the component flags: a component that does not apply
    cannot receive full marks, and a full-marks override must equal the sum
    of the component full marks.
    """
    has_theory = class_subject.has_theory
    has_practical = class_subject.has_practical
    errors: dict[str, str] = {}

    theory_full = class_subject.theory_marks if has_theory else ZERO
    practical_full = class_subject.practical_marks if has_practical else ZERO

    if link is not None and link.theory_full_marks is not None:
        if has_theory:
            theory_full = link.theory_full_marks
        elif link.theory_full_marks > 0:
            errors["theory_full_marks"] = "Subject has no theory component"
    if link is not None and link.practical_full_marks is not None:
        if has_practical:
            practical_full = link.practical_full_marks
        elif link.practical_full_marks > 0:
            errors["practical_full_marks"] = "Subject has no practical component"

    full_marks = theory_full + practical_full
    if full_marks <= 0:
        full_marks = class_subject.full_marks

    if link is not None and link.full_marks is not None:
        if has_theory and has_practical:
            if link.full_marks != theory_full + practical_full:
                errors["full_marks"] = (
                    f"Full marks ({link.full_marks}) must equal theory + practical "
                    f"({theory_full + practical_full})"
                )
        elif has_practical:
            if link.practical_full_marks is not None and link.practical_full_marks != link.full_marks:
                errors["full_marks"] = (
                    f"Full marks ({link.full_marks}) must equal practical ({link.practical_full_marks})"
                )
            practical_full = link.full_marks
        else:
            if link.theory_full_marks is not None and link.theory_full_marks != link.full_marks:
                errors["full_marks"] = (
                    f"Full marks ({link.full_marks}) must equal theory ({link.theory_full_marks})"
                )
            theory_full = link.full_marks
        full_marks = link.full_marks

    pass_marks = class_subject.pass_marks
    if link is not None and link.pass_marks is not None:
        pass_marks = link.pass_marks
    if pass_marks > full_marks:
        errors["pass_marks"] = f"Pass marks ({pass_marks}) exceed full marks ({full_marks})"

    if errors:
        raise ValidationError(
            "Invalid marks override",
            details={"class_subject_id": class_subject.id, "errors": errors},
        )

    return {
        "has_theory": has_theory,
        "has_practical": has_practical,
        "theory_full_marks": theory_full,
        "practical_full_marks": practical_full,
        "full_marks": full_marks,
        "pass_marks": pass_marks,
    }


class ScoringConfigLock:
    """Locking sink called by the publish transition.

    Marks scoring units immutable at the configuration layer so that grading
    inputs cannot change under a live exam.
    """

    def __init__(self, db: Session):
        self.db = db

    def lock(self, school_id: int, class_subject_ids: list[int]) -> list[int]:
        """Lock the given scoring units and return the ids newly locked."""
        if not class_subject_ids:
            return []
        result = self.db.execute(
            select(ClassSubject.id).where(
                ClassSubject.school_id == school_id,
                ClassSubject.id.in_(class_subject_ids),
                ClassSubject.is_locked.is_(False),
            )
        )
        to_lock = sorted(r[0] for r in result.all())
        if to_lock:
            self.db.execute(
                update(ClassSubject)
                .where(ClassSubject.id.in_(to_lock))
                .values(is_locked=True)
                .execution_options(synchronize_session="fetch")
            )
            logger.info(f"[SCORING LOCK] school_id={school_id} locked class_subjects={to_lock}")
        return to_lock
