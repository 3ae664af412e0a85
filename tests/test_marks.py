from decimal import Decimal

import pytest
from sqlalchemy import select

from gradebook.core.exceptions import (
    AuthorizationDeniedError,
    NotFoundError,
    StateConflictError,
    ValidationError,
)
from gradebook.core.policy import Role
from gradebook.models import ExamResult
from gradebook.schemas.marks import MarksEntry, SubmitMarksRequest
from gradebook.services.exam import ExamService
from gradebook.services.marks import NOT_IN_SECTION, NOT_SUBJECT_ENROLLED, MarksService


def entry(student_id, theory=None, practical=None, **kwargs):
    return MarksEntry(
        student_id=student_id,
        marks_obtained=None if theory is None else Decimal(theory),
        practical_marks=None if practical is None else Decimal(practical),
        **kwargs,
    )


def submit(database, context, exam_subject_id, section_id, entries):
    with database.unit_of_work() as s:
        return MarksService(s).submit_marks(
            context,
            SubmitMarksRequest(exam_subject_id=exam_subject_id, section_id=section_id, entries=entries),
        )


def stored_results(database, exam_subject_id):
    with database.unit_of_work() as s:
        rows = s.execute(
            select(ExamResult).where(ExamResult.exam_subject_id == exam_subject_id)
        ).scalars().all()
        return {r.student_id: r for r in rows}


@pytest.fixture
def grade5_exam(make_exam, school):
    _, subjects = make_exam(class_subject_ids=[school.cs_math_id, school.cs_science_id], publish=True)
    return subjects


@pytest.fixture
def grade11_exam(make_exam, school):
    _, subjects = make_exam(
        name="Grade 11 Midterm",
        class_subject_ids=[school.cs_physics_id, school.cs_computer_id],
        publish=True,
    )
    return subjects


class TestSubmitMarks:
    def test_assigned_teacher_saves_batch(self, database, math_teacher, school, grade5_exam):
        es_id = grade5_exam[school.cs_math_id]
        response = submit(database, math_teacher, es_id, school.sec5a_id, [
            entry(school.students["asha"], "85"),
            entry(school.students["bikash"], "38", remarks="Needs practice"),
        ])
        assert response.saved_count == 2
        assert response.rejected == []

        results = stored_results(database, es_id)
        asha = results[school.students["asha"]]
        assert asha.marks_obtained == Decimal("85")
        assert asha.entered_by == math_teacher.user_id
        assert asha.entered_by_role == Role.TEACHER
        assert asha.student_class_id == school.enrollments["asha"]
        assert results[school.students["bikash"]].remarks == "Needs practice"

    def test_resubmission_updates_in_place(self, database, math_teacher, admin, school, grade5_exam):
        es_id = grade5_exam[school.cs_math_id]
        submit(database, math_teacher, es_id, school.sec5a_id, [entry(school.students["asha"], "60")])
        first_id = stored_results(database, es_id)[school.students["asha"]].id

        submit(database, admin, es_id, school.sec5a_id, [entry(school.students["asha"], "66")])
        results = stored_results(database, es_id)
        assert len(results) == 1
        asha = results[school.students["asha"]]
        assert asha.id == first_id
        assert asha.marks_obtained == Decimal("66")
        assert asha.entered_by_role == Role.ADMIN

    def test_absent_clears_theory_marks(self, database, admin, school, grade5_exam):
        es_id = grade5_exam[school.cs_science_id]
        submit(database, admin, es_id, school.sec5a_id, [
            entry(school.students["asha"], "50", "20", is_absent=True),
        ])
        asha = stored_results(database, es_id)[school.students["asha"]]
        assert asha.is_absent
        assert asha.marks_obtained is None
        assert asha.practical_marks == Decimal("20")

    def test_students_outside_section_are_rejected(self, database, admin, school, grade5_exam):
        es_id = grade5_exam[school.cs_math_id]
        response = submit(database, admin, es_id, school.sec5a_id, [
            entry(school.students["asha"], "70"),
            entry(school.students["dipa"], "70"),
            entry(school.students["gita"], "70"),
        ])
        assert response.saved_count == 1
        assert {(r.student_id, r.reason) for r in response.rejected} == {
            (school.students["dipa"], NOT_IN_SECTION),
            (school.students["gita"], NOT_IN_SECTION),
        }
        assert set(stored_results(database, es_id)) == {school.students["asha"]}

    def test_batch_with_no_valid_students(self, database, admin, school, grade5_exam):
        with pytest.raises(ValidationError) as exc_info:
            submit(database, admin, grade5_exam[school.cs_math_id], school.sec5a_id, [
                entry(school.students["dipa"], "70"),
            ])
        assert exc_info.value.message == "No valid students in batch"
        assert exc_info.value.details["not_in_section"] == [school.students["dipa"]]

    def test_advanced_batch_without_subject_enrollments(self, database, admin, school, grade11_exam):
        with pytest.raises(ValidationError) as exc_info:
            submit(database, admin, grade11_exam[school.cs_physics_id], school.sec11a_id, [
                entry(school.students["firoj"], "55", "18"),
            ])
        assert exc_info.value.message == "No valid students in batch"
        assert exc_info.value.details["not_in_section"] == []
        assert exc_info.value.details["not_subject_enrolled"] == [school.students["firoj"]]

    def test_unassigned_teacher_denied_on_draft_exam(self, database, math_teacher, school, make_exam):
        _, subjects = make_exam(class_subject_ids=[school.cs_math_id])
        with pytest.raises(AuthorizationDeniedError):
            submit(database, math_teacher, subjects[school.cs_math_id], school.sec5b_id, [
                entry(school.students["dipa"], "70"),
            ])

    def test_advanced_track_requires_subject_enrollment(
        self, database, physics_teacher, school, grade11_exam
    ):
        es_id = grade11_exam[school.cs_physics_id]
        response = submit(database, physics_teacher, es_id, school.sec11a_id, [
            entry(school.students["eka"], "60", "20"),
            entry(school.students["firoj"], "55", "18"),
        ])
        assert response.saved_count == 1
        assert [(r.student_id, r.reason) for r in response.rejected] == [
            (school.students["firoj"], NOT_SUBJECT_ENROLLED),
        ]

    def test_out_of_range_marks_abort_whole_batch(self, database, admin, school, grade5_exam):
        es_id = grade5_exam[school.cs_science_id]
        with pytest.raises(ValidationError) as exc_info:
            submit(database, admin, es_id, school.sec5a_id, [
                entry(school.students["asha"], "70", "20"),
                entry(school.students["bikash"], "76", "20"),
                entry(school.students["chandra"], "50", "-1"),
            ])
        errors = exc_info.value.details["errors"]
        assert [(e["student_id"], e["field"]) for e in errors] == [
            (school.students["bikash"], "marks_obtained"),
            (school.students["chandra"], "practical_marks"),
        ]
        assert stored_results(database, es_id) == {}

    def test_practical_marks_on_theory_only_subject(self, database, admin, school, grade5_exam):
        with pytest.raises(ValidationError):
            submit(database, admin, grade5_exam[school.cs_math_id], school.sec5a_id, [
                entry(school.students["asha"], "70", "10"),
            ])

    def test_missing_marks_require_absence(self, database, admin, school, grade5_exam):
        with pytest.raises(ValidationError):
            submit(database, admin, grade5_exam[school.cs_math_id], school.sec5a_id, [
                entry(school.students["asha"]),
            ])

    def test_duplicate_students_in_batch(self, database, admin, school, grade5_exam):
        with pytest.raises(ValidationError) as exc_info:
            submit(database, admin, grade5_exam[school.cs_math_id], school.sec5a_id, [
                entry(school.students["asha"], "70"),
                entry(school.students["asha"], "71"),
            ])
        assert exc_info.value.details["duplicate_student_ids"] == [school.students["asha"]]

    def test_unassigned_section_is_denied(self, database, math_teacher, school, grade5_exam):
        with pytest.raises(AuthorizationDeniedError):
            submit(database, math_teacher, grade5_exam[school.cs_math_id], school.sec5b_id, [
                entry(school.students["dipa"], "70"),
            ])

    def test_unassigned_subject_is_denied(self, database, math_teacher, school, grade5_exam):
        with pytest.raises(AuthorizationDeniedError):
            submit(database, math_teacher, grade5_exam[school.cs_science_id], school.sec5a_id, [
                entry(school.students["asha"], "70", "20"),
            ])

    def test_section_of_another_class(self, database, admin, school, grade5_exam):
        with pytest.raises(NotFoundError):
            submit(database, admin, grade5_exam[school.cs_math_id], school.sec11a_id, [
                entry(school.students["eka"], "70"),
            ])

    def test_draft_exam_rejects_marks(self, database, admin, school, make_exam):
        _, subjects = make_exam(class_subject_ids=[school.cs_math_id])
        with pytest.raises(StateConflictError) as exc_info:
            submit(database, admin, subjects[school.cs_math_id], school.sec5a_id, [
                entry(school.students["asha"], "70"),
            ])
        assert exc_info.value.details["required_status"] == "PUBLISHED"

    def test_locked_exam_rejects_marks_until_unlocked(self, database, admin, school, make_exam):
        exam_id, subjects = make_exam(class_subject_ids=[school.cs_math_id], publish=True)
        es_id = subjects[school.cs_math_id]
        with database.unit_of_work() as s:
            ExamService(s).lock_exam(admin, exam_id)

        with pytest.raises(StateConflictError):
            submit(database, admin, es_id, school.sec5a_id, [entry(school.students["asha"], "70")])

        with database.unit_of_work() as s:
            ExamService(s).unlock_exam(admin, exam_id)
        response = submit(database, admin, es_id, school.sec5a_id, [entry(school.students["asha"], "70")])
        assert response.saved_count == 1

    def test_other_school_cannot_see_exam_subject(self, database, other_school_admin, school, grade5_exam):
        with pytest.raises(NotFoundError):
            submit(database, other_school_admin, grade5_exam[school.cs_math_id], school.sec5a_id, [
                entry(school.students["asha"], "70"),
            ])


class TestMarksEntryReads:
    def test_roster_with_existing_results(self, database, math_teacher, school, grade5_exam):
        es_id = grade5_exam[school.cs_math_id]
        submit(database, math_teacher, es_id, school.sec5a_id, [entry(school.students["bikash"], "45")])

        with database.unit_of_work() as s:
            roster = MarksService(s).fetch_marks_for_entry(math_teacher, es_id, school.sec5a_id)

        assert not roster.is_advanced_track
        assert [st.roll_number for st in roster.students] == [1, 2, 3]
        by_id = {st.student_id: st for st in roster.students}
        assert school.students["gita"] not in by_id
        assert by_id[school.students["bikash"]].existing_result.marks_obtained == Decimal("45")
        assert by_id[school.students["asha"]].existing_result is None

    def test_advanced_roster_flags_subject_enrollment(self, database, physics_teacher, school, grade11_exam):
        with database.unit_of_work() as s:
            roster = MarksService(s).fetch_marks_for_entry(
                physics_teacher, grade11_exam[school.cs_physics_id], school.sec11a_id
            )
        assert roster.is_advanced_track
        flags = {st.student_id: st.is_subject_enrolled for st in roster.students}
        assert flags == {school.students["eka"]: True, school.students["firoj"]: False}

    def test_roster_requires_assignment(self, database, math_teacher, school, grade5_exam):
        with pytest.raises(AuthorizationDeniedError):
            with database.unit_of_work() as s:
                MarksService(s).fetch_marks_for_entry(
                    math_teacher, grade5_exam[school.cs_math_id], school.sec5b_id
                )

    def test_exams_for_marks_entry_filtered_by_assignment(
        self, database, math_teacher, admin, school, grade5_exam, make_exam
    ):
        make_exam(name="Draft Exam", class_subject_ids=[school.cs_math_id])

        with database.unit_of_work() as s:
            teacher_view = MarksService(s).list_exams_for_marks_entry(math_teacher)
            admin_view = MarksService(s).list_exams_for_marks_entry(admin)

        assert len(teacher_view) == 1
        subjects = teacher_view[0].subjects
        assert [sub.class_subject_id for sub in subjects] == [school.cs_math_id]
        assert subjects[0].assigned_section_ids == [school.sec5a_id]

        assert len(admin_view) == 1
        assert {sub.class_subject_id for sub in admin_view[0].subjects} == {
            school.cs_math_id, school.cs_science_id,
        }
        assert all(sub.assigned_section_ids is None for sub in admin_view[0].subjects)
