"""Grade and GPA computation.

Everything here is a pure function of marks, full marks and the track rules,
so the same inputs always produce the same grade. Two rule sets exist:

* **Standard track** (grade level below the advanced threshold): theory and
  practical are added and graded from a percentage ladder.
* **Advanced track** (grade level at or above the threshold): theory and
  internal/practical are graded separately, each with its own credit hours.
  The subject's final grade is the lower of the two and the exam GPA is the
  credit-hour-weighted mean of all component grade points.
"""

from collections.abc import Sequence
from decimal import ROUND_HALF_UP, Decimal

from gradebook.schemas.grading import ComponentCredits, OverallResult, SubjectGrade

Q2 = Decimal("0.01")
ZERO = Decimal("0")
HUNDRED = Decimal("100")

ABSENT_GRADE = "AB"
STANDARD_FAIL_GRADE = "F"
ADVANCED_FAIL_GRADE = "NG"

# A component scoring below this percentage always fails
COMPONENT_PASS_PERCENTAGE = Decimal("35")

# (minimum percentage, grade, grade point), highest first
STANDARD_SCALE: tuple[tuple[Decimal, str, Decimal], ...] = (
    (Decimal("90"), "A+", Decimal("4.0")),
    (Decimal("80"), "A", Decimal("3.6")),
    (Decimal("70"), "B+", Decimal("3.2")),
    (Decimal("60"), "B", Decimal("2.8")),
    (Decimal("50"), "C+", Decimal("2.4")),
    (Decimal("40"), "C", Decimal("2.0")),
)

ADVANCED_SCALE: tuple[tuple[Decimal, str, Decimal], ...] = STANDARD_SCALE + (
    (Decimal("35"), "D", Decimal("1.6")),
)

# (minimum GPA, grade), highest first
GPA_SCALE: tuple[tuple[Decimal, str], ...] = (
    (Decimal("3.6"), "A+"),
    (Decimal("3.2"), "A"),
    (Decimal("2.8"), "B+"),
    (Decimal("2.4"), "B"),
    (Decimal("2.0"), "C+"),
    (Decimal("1.6"), "C"),
    (Decimal("1.2"), "D"),
)

# Credit split used when an advanced subject has no component rows
DEFAULT_CREDIT_HOURS = Decimal("4")
THEORY_CREDIT_SHARE = Decimal("0.75")


def q2(x) -> Decimal:
    """Quantize to two decimal places, rounding half up."""
    return Decimal(str(x)).quantize(Q2, rounding=ROUND_HALF_UP)


def calculate_percentage(obtained: Decimal, full_marks: Decimal) -> Decimal:
    """Percentage of ``full_marks``; zero when full marks are not positive."""
    if full_marks is None or full_marks <= 0:
        return ZERO.quantize(Q2)
    return q2(Decimal(obtained) / Decimal(full_marks) * HUNDRED)


def grade_from_percentage(
    percentage: Decimal,
    advanced: bool = False,
) -> tuple[str, Decimal]:
    """Letter grade and grade point for a percentage."""
    scale = ADVANCED_SCALE if advanced else STANDARD_SCALE
    for minimum, grade, point in scale:
        if percentage >= minimum:
            return grade, point
    return (ADVANCED_FAIL_GRADE if advanced else STANDARD_FAIL_GRADE), ZERO


def grade_from_gpa(gpa: Decimal) -> str:
    for minimum, grade in GPA_SCALE:
        if gpa >= minimum:
            return grade
    return ADVANCED_FAIL_GRADE


def is_advanced_track(grade_level: int, threshold: int) -> bool:
    """Check if a class grades theory and internal marks separately."""
    return grade_level >= threshold


def default_component_credits(
    credit_hours: Decimal | None,
    has_practical: bool,
) -> ComponentCredits:
    """Split a subject's credit hours when it has no component rows."""
    total = Decimal(credit_hours) if credit_hours else DEFAULT_CREDIT_HOURS
    if not has_practical:
        return ComponentCredits(theory_credit_hours=total)
    theory = q2(total * THEORY_CREDIT_SHARE)
    return ComponentCredits(
        theory_credit_hours=theory,
        practical_credit_hours=total - theory,
    )


def grade_standard_subject(
    theory_marks: Decimal | None,
    practical_marks: Decimal | None,
    theory_full_marks: Decimal,
    practical_full_marks: Decimal,
    full_marks: Decimal,
    pass_marks: Decimal,
    is_absent: bool = False,
) -> SubjectGrade:
    """Grade one subject on the standard track.

    Theory and practical are combined and graded against the snapshot's full
    marks. An absent student keeps any practical marks in the total but the
    subject is recorded as ``AB`` and failed.
    """
    theory = None if is_absent else theory_marks
    total = (theory or ZERO) + (practical_marks or ZERO)
    percentage = calculate_percentage(total, full_marks)

    if is_absent:
        grade, point, passed = ABSENT_GRADE, ZERO, False
    else:
        grade, point = grade_from_percentage(percentage)
        passed = total >= pass_marks

    return SubjectGrade(
        theory_marks=theory,
        theory_full_marks=theory_full_marks,
        practical_marks=practical_marks,
        practical_full_marks=practical_full_marks,
        total_marks=q2(total),
        full_marks=q2(full_marks),
        percentage=percentage,
        final_grade=grade,
        grade_point=point,
        is_passed=passed,
        is_absent=is_absent,
        remark="Absent" if is_absent else None,
    )


def _grade_component(
    marks: Decimal | None,
    full_marks: Decimal,
    pass_marks: Decimal | None,
    is_absent: bool,
) -> tuple[str, Decimal, bool]:
    if is_absent:
        return ABSENT_GRADE, ZERO, False
    obtained = marks or ZERO
    percentage = calculate_percentage(obtained, full_marks)
    passed = percentage >= COMPONENT_PASS_PERCENTAGE
    if pass_marks is not None and obtained < pass_marks:
        passed = False
    if not passed:
        return ADVANCED_FAIL_GRADE, ZERO, False
    grade, point = grade_from_percentage(percentage, advanced=True)
    return grade, point, True


def grade_advanced_subject(
    theory_marks: Decimal | None,
    practical_marks: Decimal | None,
    has_theory: bool,
    has_practical: bool,
    theory_full_marks: Decimal,
    practical_full_marks: Decimal,
    credits: ComponentCredits,
    is_absent: bool = False,
) -> SubjectGrade:
    """Grade one subject on the advanced track.

    Each component present in the snapshot is graded on its own. The final
    grade is the weaker component's grade; absence in theory yields ``AB``
    and fails the subject.
    """
    theory = None if is_absent else theory_marks
    grades: list[tuple[str, Decimal, bool]] = []

    theory_grade = theory_point = theory_credit = None
    if has_theory and theory_full_marks > 0:
        theory_grade, theory_point, theory_passed = _grade_component(
            theory, theory_full_marks, credits.theory_pass_marks, is_absent
        )
        theory_credit = credits.theory_credit_hours
        grades.append((theory_grade, theory_point, theory_passed))

    practical_grade = practical_point = practical_credit = None
    if has_practical and practical_full_marks > 0:
        practical_grade, practical_point, practical_passed = _grade_component(
            practical_marks, practical_full_marks, credits.practical_pass_marks, False
        )
        practical_credit = credits.practical_credit_hours
        if theory_credit is None:
            practical_credit = credits.total
        grades.append((practical_grade, practical_point, practical_passed))

    full_marks = (theory_full_marks if has_theory else ZERO) + (
        practical_full_marks if has_practical else ZERO
    )
    total = (theory or ZERO) + (practical_marks or ZERO)

    if any(g[0] == ABSENT_GRADE for g in grades):
        final_grade, final_point, passed = ABSENT_GRADE, ZERO, False
    elif grades:
        final_grade, final_point, passed = min(grades, key=lambda g: g[1])
        passed = all(g[2] for g in grades)
    else:
        final_grade, final_point, passed = ADVANCED_FAIL_GRADE, ZERO, False

    return SubjectGrade(
        theory_marks=theory,
        theory_full_marks=theory_full_marks,
        theory_grade=theory_grade,
        theory_grade_point=theory_point,
        theory_credit_hours=theory_credit,
        practical_marks=practical_marks,
        practical_full_marks=practical_full_marks,
        practical_grade=practical_grade,
        practical_grade_point=practical_point,
        practical_credit_hours=practical_credit,
        total_marks=q2(total),
        full_marks=q2(full_marks),
        percentage=calculate_percentage(total, full_marks),
        final_grade=final_grade,
        grade_point=final_point,
        is_passed=passed,
        is_absent=is_absent,
        remark="Absent" if is_absent else None,
    )


def summarize(subjects: Sequence[SubjectGrade], advanced: bool) -> OverallResult:
    """Aggregate subject grades into totals, percentage, GPA and overall grade."""
    total_marks = sum((s.total_marks for s in subjects), ZERO)
    total_full = sum((s.full_marks for s in subjects), ZERO)
    percentage = calculate_percentage(total_marks, total_full)
    passed_count = sum(1 for s in subjects if s.is_passed)
    all_passed = bool(subjects) and passed_count == len(subjects)

    total_credits = None
    if advanced:
        weighted = ZERO
        total_credits = ZERO
        for s in subjects:
            for point, credit in (
                (s.theory_grade_point, s.theory_credit_hours),
                (s.practical_grade_point, s.practical_credit_hours),
            ):
                if point is None or not credit:
                    continue
                weighted += point * credit
                total_credits += credit
        gpa = q2(weighted / total_credits) if total_credits else q2(ZERO)
        grade = grade_from_gpa(gpa) if all_passed else ADVANCED_FAIL_GRADE
    else:
        points = [s.grade_point for s in subjects]
        gpa = q2(sum(points, ZERO) / len(points)) if points else q2(ZERO)
        grade, _ = grade_from_percentage(percentage)

    return OverallResult(
        total_marks=q2(total_marks),
        total_full_marks=q2(total_full),
        percentage=percentage,
        gpa=gpa,
        grade=grade,
        is_passed=all_passed,
        total_subjects=len(subjects),
        passed_subjects=passed_count,
        failed_subjects=len(subjects) - passed_count,
        total_credits=total_credits,
    )
