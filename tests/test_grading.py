from decimal import Decimal

import pytest

from gradebook.schemas.grading import ComponentCredits
from gradebook.services.grading import (
    calculate_percentage,
    default_component_credits,
    grade_advanced_subject,
    grade_from_gpa,
    grade_from_percentage,
    grade_standard_subject,
    is_advanced_track,
    q2,
    summarize,
)

D = Decimal


def test_q2_rounds_half_up():
    assert q2("2.345") == D("2.35")
    assert q2("2.344") == D("2.34")
    assert q2(D("0.005")) == D("0.01")


def test_percentage_of_zero_full_marks_is_zero():
    assert calculate_percentage(D("10"), D("0")) == D("0.00")
    assert calculate_percentage(D("45"), D("75")) == D("60.00")
    assert calculate_percentage(D("1"), D("3")) == D("33.33")


@pytest.mark.parametrize(
    "percentage, grade, point",
    [
        ("100", "A+", "4.0"),
        ("90", "A+", "4.0"),
        ("89.99", "A", "3.6"),
        ("80", "A", "3.6"),
        ("70", "B+", "3.2"),
        ("60", "B", "2.8"),
        ("50", "C+", "2.4"),
        ("40", "C", "2.0"),
        ("39.99", "F", "0"),
        ("0", "F", "0"),
    ],
)
def test_standard_ladder(percentage, grade, point):
    assert grade_from_percentage(D(percentage)) == (grade, D(point))


@pytest.mark.parametrize(
    "percentage, grade",
    [("40", "C"), ("35", "D"), ("34.99", "NG")],
)
def test_advanced_ladder_adds_d_and_ng(percentage, grade):
    assert grade_from_percentage(D(percentage), advanced=True)[0] == grade


@pytest.mark.parametrize(
    "gpa, grade",
    [
        ("4.00", "A+"),
        ("3.60", "A+"),
        ("3.59", "A"),
        ("3.20", "A"),
        ("2.80", "B+"),
        ("2.40", "B"),
        ("2.00", "C+"),
        ("1.60", "C"),
        ("1.20", "D"),
        ("1.19", "NG"),
    ],
)
def test_gpa_ladder(gpa, grade):
    assert grade_from_gpa(D(gpa)) == grade


def test_track_threshold():
    assert not is_advanced_track(10, 11)
    assert is_advanced_track(11, 11)
    assert is_advanced_track(12, 11)


def test_default_credit_split():
    credits = default_component_credits(D("4"), has_practical=True)
    assert credits.theory_credit_hours == D("3.00")
    assert credits.practical_credit_hours == D("1.00")

    single = default_component_credits(None, has_practical=False)
    assert single.theory_credit_hours == D("4")
    assert single.practical_credit_hours == D("0")


class TestStandardSubject:
    def test_theory_and_practical_are_combined(self):
        grade = grade_standard_subject(
            theory_marks=D("60"),
            practical_marks=D("20"),
            theory_full_marks=D("75"),
            practical_full_marks=D("25"),
            full_marks=D("100"),
            pass_marks=D("40"),
        )
        assert grade.total_marks == D("80.00")
        assert grade.percentage == D("80.00")
        assert grade.final_grade == "A"
        assert grade.grade_point == D("3.6")
        assert grade.is_passed

    def test_below_pass_marks_fails_but_keeps_ladder_grade(self):
        grade = grade_standard_subject(
            theory_marks=D("42"),
            practical_marks=None,
            theory_full_marks=D("100"),
            practical_full_marks=D("0"),
            full_marks=D("100"),
            pass_marks=D("45"),
        )
        assert grade.final_grade == "C"
        assert not grade.is_passed

    def test_absent_is_ab_and_failed(self):
        grade = grade_standard_subject(
            theory_marks=D("50"),
            practical_marks=D("20"),
            theory_full_marks=D("75"),
            practical_full_marks=D("25"),
            full_marks=D("100"),
            pass_marks=D("40"),
            is_absent=True,
        )
        assert grade.final_grade == "AB"
        assert grade.grade_point == D("0")
        assert grade.theory_marks is None
        assert grade.total_marks == D("20.00")
        assert not grade.is_passed
        assert grade.remark == "Absent"


class TestAdvancedSubject:
    credits = ComponentCredits(
        theory_credit_hours=D("3.75"),
        practical_credit_hours=D("1.25"),
        theory_pass_marks=D("27"),
        practical_pass_marks=D("10"),
    )

    def grade(self, theory, practical, is_absent=False):
        return grade_advanced_subject(
            theory_marks=None if theory is None else D(theory),
            practical_marks=None if practical is None else D(practical),
            has_theory=True,
            has_practical=True,
            theory_full_marks=D("75"),
            practical_full_marks=D("25"),
            credits=self.credits,
            is_absent=is_absent,
        )

    def test_components_graded_separately(self):
        grade = self.grade("60", "20")
        assert grade.theory_grade == "A"
        assert grade.practical_grade == "A"
        assert grade.theory_credit_hours == D("3.75")
        assert grade.practical_credit_hours == D("1.25")
        assert grade.final_grade == "A"
        assert grade.is_passed

    def test_final_grade_is_weaker_component(self):
        grade = self.grade("70", "15")
        assert grade.theory_grade == "A+"
        assert grade.practical_grade == "B"
        assert grade.final_grade == "B"
        assert grade.grade_point == D("2.8")

    def test_component_below_pass_marks_is_ng(self):
        # 26/75 is 34.67%: below both the 35% floor and the 27 pass marks
        grade = self.grade("26", "24")
        assert grade.theory_grade == "NG"
        assert grade.theory_grade_point == D("0")
        assert grade.final_grade == "NG"
        assert not grade.is_passed

    def test_component_pass_marks_apply_above_floor(self):
        # 9/25 is 36% but under the component pass marks of 10
        grade = self.grade("60", "9")
        assert grade.practical_grade == "NG"
        assert not grade.is_passed

    def test_absent_theory(self):
        grade = self.grade("60", "20", is_absent=True)
        assert grade.theory_grade == "AB"
        assert grade.practical_grade == "A"
        assert grade.final_grade == "AB"
        assert not grade.is_passed

    def test_theory_only_subject_carries_all_credits(self):
        grade = grade_advanced_subject(
            theory_marks=D("80"),
            practical_marks=None,
            has_theory=True,
            has_practical=False,
            theory_full_marks=D("100"),
            practical_full_marks=D("0"),
            credits=ComponentCredits(theory_credit_hours=D("4")),
        )
        assert grade.practical_grade is None
        assert grade.theory_credit_hours == D("4")
        assert grade.final_grade == "A"


class TestSummary:
    def test_advanced_gpa_is_credit_weighted(self):
        physics = TestAdvancedSubject().grade("60", "20")
        computer = grade_advanced_subject(
            theory_marks=D("45"),
            practical_marks=D("40"),
            has_theory=True,
            has_practical=True,
            theory_full_marks=D("50"),
            practical_full_marks=D("50"),
            credits=default_component_credits(D("4"), has_practical=True),
        )
        overall = summarize([physics, computer], advanced=True)

        # (3.6*3.75 + 3.6*1.25 + 4.0*3 + 3.6*1) / 9
        assert overall.gpa == D("3.73")
        assert overall.grade == "A+"
        assert overall.total_credits == D("9.00")
        assert overall.total_marks == D("165.00")
        assert overall.percentage == D("82.50")
        assert overall.is_passed

    def test_advanced_overall_ng_when_any_subject_fails(self):
        passing = TestAdvancedSubject().grade("70", "24")
        failing = TestAdvancedSubject().grade("20", "24")
        overall = summarize([passing, failing], advanced=True)
        assert overall.grade == "NG"
        assert not overall.is_passed
        assert overall.failed_subjects == 1

    def test_standard_gpa_is_mean_of_points_and_grade_from_percentage(self):
        subjects = [
            grade_standard_subject(D("95"), None, D("100"), D("0"), D("100"), D("40")),
            grade_standard_subject(D("55"), D("10"), D("75"), D("25"), D("100"), D("40")),
        ]
        overall = summarize(subjects, advanced=False)
        assert overall.gpa == D("3.40")
        assert overall.percentage == D("80.00")
        assert overall.grade == "A"
        assert overall.total_credits is None
        assert overall.passed_subjects == 2

    def test_empty_summary(self):
        overall = summarize([], advanced=False)
        assert overall.gpa == D("0.00")
        assert overall.percentage == D("0.00")
        assert not overall.is_passed
