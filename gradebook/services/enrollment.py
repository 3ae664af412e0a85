"""Enrollment reader: rosters, subject enrollments and teaching assignments."""

from sqlalchemy import select
from sqlalchemy.orm import Session

from gradebook.models.academic import (
    EnrollmentStatus,
    StudentClass,
    StudentSubject,
    SubjectEnrollmentStatus,
    TeacherSubject,
)


class EnrollmentReader:
    """Read-only access to enrollment records owned by the administration service."""

    def __init__(self, db: Session):
        self.db = db

    def active_roster(
        self,
        school_id: int,
        class_id: int,
        section_id: int,
        academic_year_id: int,
    ) -> list[StudentClass]:
        """Active enrollments of a class section, by roll number."""
        result = self.db.execute(
            select(StudentClass)
            .where(
                StudentClass.school_id == school_id,
                StudentClass.class_id == class_id,
                StudentClass.section_id == section_id,
                StudentClass.academic_year_id == academic_year_id,
                StudentClass.status == EnrollmentStatus.ACTIVE,
            )
            .order_by(StudentClass.roll_number, StudentClass.student_id)
        )
        return list(result.scalars().all())

    def subject_enrolled(
        self,
        class_subject_id: int,
        student_class_ids: list[int],
    ) -> set[int]:
        """Enrollment ids holding an active subject enrollment for the scoring unit."""
        if not student_class_ids:
            return set()
        result = self.db.execute(
            select(StudentSubject.student_class_id).where(
                StudentSubject.class_subject_id == class_subject_id,
                StudentSubject.student_class_id.in_(student_class_ids),
                StudentSubject.status == SubjectEnrollmentStatus.ACTIVE,
            )
        )
        return {r[0] for r in result.all()}

    def teaching_assignments(self, school_id: int, user_id: int) -> list[tuple[int, int]]:
        """(class_subject_id, section_id) pairs a user teaches."""
        result = self.db.execute(
            select(TeacherSubject.class_subject_id, TeacherSubject.section_id).where(
                TeacherSubject.school_id == school_id,
                TeacherSubject.user_id == user_id,
            )
        )
        return [(r[0], r[1]) for r in result.all()]
