"""Shared fixtures: an in-memory database seeded with two classes, and caller contexts."""

from decimal import Decimal
from types import SimpleNamespace

import pytest

from gradebook.core.config import Settings
from gradebook.core.database import Database
from gradebook.core.policy import CurrentUserContext, Role
from gradebook.models import (
    AcademicYear,
    ClassSubject,
    ComponentType,
    EnrollmentStatus,
    SchoolClass,
    Section,
    Student,
    StudentClass,
    StudentSubject,
    Subject,
    SubjectComponent,
    TeacherSubject,
)
from gradebook.models.exam import ExamType
from gradebook.schemas.exam import ExamCreate, ExamSubjectLink, ExamSubjectLinkRequest
from gradebook.services.exam import ExamService

SCHOOL_ID = 1
OTHER_SCHOOL_ID = 2

ADMIN_ID = 1
OFFICER_ID = 2
MATH_TEACHER_ID = 100
PHYSICS_TEACHER_ID = 101
PARENT_ID = 200


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        DATABASE_URL="sqlite://",
        JWT_SECRET_KEY="test-secret",
        ADVANCED_GRADE_THRESHOLD=11,
    )


@pytest.fixture
def database(settings):
    db = Database.from_settings(settings)
    db.create_all()
    yield db
    db.dispose()


def _add(session, obj):
    session.add(obj)
    session.flush()
    return obj


@pytest.fixture
def school(database) -> SimpleNamespace:
    """Seed one school with a standard-track and an advanced-track class.

    Grade 5 (standard): sections A and B; Math (theory 100) and Science
    (theory 75 + practical 25). Grade 11 (advanced): section A; Physics with
    component rows and Computer without them.
    """
    with database.unit_of_work() as s:
        year = _add(s, AcademicYear(school_id=SCHOOL_ID, name="2081", is_current=True))
        other_year = _add(s, AcademicYear(school_id=OTHER_SCHOOL_ID, name="2081", is_current=True))

        grade5 = _add(s, SchoolClass(school_id=SCHOOL_ID, name="Grade 5", grade_level=5))
        grade11 = _add(s, SchoolClass(school_id=SCHOOL_ID, name="Grade 11", grade_level=11))
        sec5a = _add(s, Section(school_id=SCHOOL_ID, class_id=grade5.id, name="A"))
        sec5b = _add(s, Section(school_id=SCHOOL_ID, class_id=grade5.id, name="B"))
        sec11a = _add(s, Section(school_id=SCHOOL_ID, class_id=grade11.id, name="A"))

        math = _add(s, Subject(school_id=SCHOOL_ID, name="Mathematics", code="MTH"))
        science = _add(s, Subject(school_id=SCHOOL_ID, name="Science", code="SCI"))
        physics = _add(s, Subject(school_id=SCHOOL_ID, name="Physics", code="PHY"))
        computer = _add(s, Subject(school_id=SCHOOL_ID, name="Computer Science", code="CMP"))

        cs_math = _add(s, ClassSubject(
            school_id=SCHOOL_ID, class_id=grade5.id, subject_id=math.id, academic_year_id=year.id,
            has_theory=True, has_practical=False,
            theory_marks=Decimal("100"), practical_marks=Decimal("0"),
            full_marks=Decimal("100"), pass_marks=Decimal("40"), credit_hours=Decimal("4"),
        ))
        cs_science = _add(s, ClassSubject(
            school_id=SCHOOL_ID, class_id=grade5.id, subject_id=science.id, academic_year_id=year.id,
            has_theory=True, has_practical=True,
            theory_marks=Decimal("75"), practical_marks=Decimal("25"),
            full_marks=Decimal("100"), pass_marks=Decimal("40"), credit_hours=Decimal("4"),
        ))
        cs_physics = _add(s, ClassSubject(
            school_id=SCHOOL_ID, class_id=grade11.id, subject_id=physics.id, academic_year_id=year.id,
            has_theory=True, has_practical=True,
            theory_marks=Decimal("75"), practical_marks=Decimal("25"),
            full_marks=Decimal("100"), pass_marks=Decimal("35"), credit_hours=Decimal("5"),
        ))
        cs_computer = _add(s, ClassSubject(
            school_id=SCHOOL_ID, class_id=grade11.id, subject_id=computer.id, academic_year_id=year.id,
            has_theory=True, has_practical=True,
            theory_marks=Decimal("50"), practical_marks=Decimal("50"),
            full_marks=Decimal("100"), pass_marks=Decimal("35"), credit_hours=Decimal("4"),
        ))

        _add(s, SubjectComponent(
            school_id=SCHOOL_ID, class_id=grade11.id, subject_id=physics.id,
            type=ComponentType.THEORY, subject_code="PHY101",
            full_marks=Decimal("75"), pass_marks=Decimal("27"), credit_hours=Decimal("3.75"),
        ))
        _add(s, SubjectComponent(
            school_id=SCHOOL_ID, class_id=grade11.id, subject_id=physics.id,
            type=ComponentType.PRACTICAL, subject_code="PHY102",
            full_marks=Decimal("25"), pass_marks=Decimal("10"), credit_hours=Decimal("1.25"),
        ))

        students = {}
        enrollments = {}
        roster = [
            ("asha", grade5, sec5a, 1),
            ("bikash", grade5, sec5a, 2),
            ("chandra", grade5, sec5a, 3),
            ("dipa", grade5, sec5b, 1),
            ("eka", grade11, sec11a, 1),
            ("firoj", grade11, sec11a, 2),
        ]
        for name, school_class, section, roll in roster:
            student = _add(s, Student(school_id=SCHOOL_ID, first_name=name.title(), last_name="Test"))
            students[name] = student.id
            enrollments[name] = _add(s, StudentClass(
                school_id=SCHOOL_ID, student_id=student.id, class_id=school_class.id,
                section_id=section.id, academic_year_id=year.id, roll_number=roll,
                status=EnrollmentStatus.ACTIVE,
            )).id

        # A student who left section A keeps an inactive enrollment
        gita = _add(s, Student(school_id=SCHOOL_ID, first_name="Gita", last_name="Test"))
        students["gita"] = gita.id
        _add(s, StudentClass(
            school_id=SCHOOL_ID, student_id=gita.id, class_id=grade5.id, section_id=sec5a.id,
            academic_year_id=year.id, roll_number=9, status=EnrollmentStatus.TRANSFERRED,
        ))

        # Eka takes both advanced subjects, Firoj only Computer Science
        for name, class_subject in (("eka", cs_physics), ("eka", cs_computer), ("firoj", cs_computer)):
            _add(s, StudentSubject(student_class_id=enrollments[name], class_subject_id=class_subject.id))

        _add(s, TeacherSubject(
            school_id=SCHOOL_ID, user_id=MATH_TEACHER_ID, class_subject_id=cs_math.id, section_id=sec5a.id,
        ))
        _add(s, TeacherSubject(
            school_id=SCHOOL_ID, user_id=PHYSICS_TEACHER_ID, class_subject_id=cs_physics.id, section_id=sec11a.id,
        ))

        return SimpleNamespace(
            year_id=year.id,
            other_year_id=other_year.id,
            grade5_id=grade5.id,
            grade11_id=grade11.id,
            sec5a_id=sec5a.id,
            sec5b_id=sec5b.id,
            sec11a_id=sec11a.id,
            cs_math_id=cs_math.id,
            cs_science_id=cs_science.id,
            cs_physics_id=cs_physics.id,
            cs_computer_id=cs_computer.id,
            students=students,
            enrollments=enrollments,
        )


@pytest.fixture
def admin() -> CurrentUserContext:
    return CurrentUserContext(user_id=ADMIN_ID, school_id=SCHOOL_ID, roles=[Role.ADMIN])


@pytest.fixture
def exam_officer() -> CurrentUserContext:
    return CurrentUserContext(user_id=OFFICER_ID, school_id=SCHOOL_ID, roles=[Role.EXAM_OFFICER])


@pytest.fixture
def math_teacher(school) -> CurrentUserContext:
    return CurrentUserContext(
        user_id=MATH_TEACHER_ID,
        school_id=SCHOOL_ID,
        roles=[Role.TEACHER],
        teaching_assignments=[(school.cs_math_id, school.sec5a_id)],
    )


@pytest.fixture
def physics_teacher(school) -> CurrentUserContext:
    return CurrentUserContext(
        user_id=PHYSICS_TEACHER_ID,
        school_id=SCHOOL_ID,
        roles=[Role.TEACHER],
        teaching_assignments=[(school.cs_physics_id, school.sec11a_id)],
    )


@pytest.fixture
def student_asha(school) -> CurrentUserContext:
    return CurrentUserContext(
        user_id=300,
        school_id=SCHOOL_ID,
        roles=[Role.STUDENT],
        student_id=school.students["asha"],
    )


@pytest.fixture
def parent_of_asha(school) -> CurrentUserContext:
    return CurrentUserContext(
        user_id=PARENT_ID,
        school_id=SCHOOL_ID,
        roles=[Role.PARENT],
        ward_ids=[school.students["asha"]],
    )


@pytest.fixture
def other_school_admin() -> CurrentUserContext:
    return CurrentUserContext(user_id=900, school_id=OTHER_SCHOOL_ID, roles=[Role.ADMIN])


def create_exam(database, context, school, name="Midterm", class_subject_ids=None, publish=False):
    """Create an exam linking the given class subjects; returns (exam_id, {cs_id: exam_subject_id})."""
    with database.unit_of_work() as s:
        service = ExamService(s)
        exam = service.create_exam(
            context,
            ExamCreate(name=name, exam_type=ExamType.MIDTERM, academic_year_id=school.year_id),
        )
        linked = []
        if class_subject_ids:
            linked = service.link_or_update_exam_subjects(
                context,
                exam.id,
                ExamSubjectLinkRequest(
                    subjects=[ExamSubjectLink(class_subject_id=cs_id) for cs_id in class_subject_ids]
                ),
            )
        if publish:
            service.publish_exam(context, exam.id)
        return exam.id, {es.class_subject_id: es.id for es in linked}


@pytest.fixture
def make_exam(database, admin, school):
    def factory(name="Midterm", class_subject_ids=None, publish=False):
        return create_exam(database, admin, school, name, class_subject_ids, publish)

    return factory
