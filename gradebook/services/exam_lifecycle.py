"""Exam status state machine.

DRAFT -> PUBLISHED -> LOCKED, with UNLOCK (LOCKED -> PUBLISHED) as the only
backward edge. Status is never assigned anywhere else.
"""

import enum

from gradebook.core.exceptions import StateConflictError
from gradebook.models.exam import Exam, ExamStatus


class ExamTransition(str, enum.Enum):
    """Named edges of the exam state machine."""

    PUBLISH = "publish"
    LOCK = "lock"
    UNLOCK = "unlock"


# transition -> (required source status, target status)
TRANSITIONS: dict[ExamTransition, tuple[ExamStatus, ExamStatus]] = {
    ExamTransition.PUBLISH: (ExamStatus.DRAFT, ExamStatus.PUBLISHED),
    ExamTransition.LOCK: (ExamStatus.PUBLISHED, ExamStatus.LOCKED),
    ExamTransition.UNLOCK: (ExamStatus.LOCKED, ExamStatus.PUBLISHED),
}


def next_status(current: ExamStatus, transition: ExamTransition) -> ExamStatus:
    """Return the target status or raise StateConflictError."""
    source, target = TRANSITIONS[transition]
    if current != source:
        raise StateConflictError(
            f"Cannot {transition.value} an exam that is {current.value}",
            current_status=current.value,
            required_status=source.value,
        )
    return target


def apply_transition(exam: Exam, transition: ExamTransition) -> ExamStatus:
    """Move ``exam`` along ``transition`` and return the previous status."""
    previous = exam.status
    exam.status = next_status(previous, transition)
    return previous


def ensure_status(exam: Exam, required: ExamStatus, action: str) -> None:
    """Raise StateConflictError unless ``exam`` is in ``required`` status."""
    if exam.status != required:
        raise StateConflictError(
            f"Cannot {action} while the exam is {exam.status.value}",
            current_status=exam.status.value,
            required_status=required.value,
        )
