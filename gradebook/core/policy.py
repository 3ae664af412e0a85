"""Role/operation authorization policy.

Every authorization rule of the exam engine lives in ``POLICY``: a closed
mapping from :class:`Operation` to the set of :class:`Role` values allowed
to perform it. Teaching-assignment checks for marks entry are layered on
top by :meth:`CurrentUserContext.can_mark`.
"""

import enum
from collections.abc import Iterable

from gradebook.core.exceptions import AuthorizationDeniedError


class Role(str, enum.Enum):
    """Roles issued by the identity service."""

    SUPER_ADMIN = "SUPER_ADMIN"
    ADMIN = "ADMIN"
    EXAM_OFFICER = "EXAM_OFFICER"
    TEACHER = "TEACHER"
    STUDENT = "STUDENT"
    PARENT = "PARENT"


class Operation(str, enum.Enum):
    """Operations exposed by the exam engine."""

    VIEW_EXAMS = "exam:view"
    CREATE_EXAM = "exam:create"
    UPDATE_EXAM = "exam:update"
    MANAGE_EXAM_SUBJECTS = "exam:manage_subjects"
    PUBLISH_EXAM = "exam:publish"
    LOCK_EXAM = "exam:lock"
    UNLOCK_EXAM = "exam:unlock"
    DELETE_EXAM = "exam:delete"
    VIEW_MARKS = "marks:view"
    SUBMIT_MARKS = "marks:submit"
    GENERATE_REPORT_CARDS = "report_card:generate"
    PUBLISH_REPORT_CARDS = "report_card:publish"
    VIEW_CLASS_REPORT_CARDS = "report_card:view_all"
    VIEW_REPORT_CARD = "report_card:view"
    VIEW_UNPUBLISHED_REPORT_CARD = "report_card:view_unpublished"


# Roles that bypass teaching-assignment checks
PRIVILEGED_ROLES = frozenset({Role.SUPER_ADMIN, Role.ADMIN, Role.EXAM_OFFICER})
ADMIN_ROLES = frozenset({Role.SUPER_ADMIN, Role.ADMIN})
STAFF_ROLES = PRIVILEGED_ROLES | {Role.TEACHER}

POLICY: dict[Operation, frozenset[Role]] = {
    Operation.VIEW_EXAMS: STAFF_ROLES,
    Operation.CREATE_EXAM: ADMIN_ROLES,
    Operation.UPDATE_EXAM: ADMIN_ROLES,
    Operation.MANAGE_EXAM_SUBJECTS: ADMIN_ROLES,
    Operation.PUBLISH_EXAM: ADMIN_ROLES,
    Operation.LOCK_EXAM: PRIVILEGED_ROLES,
    Operation.UNLOCK_EXAM: ADMIN_ROLES,
    Operation.DELETE_EXAM: ADMIN_ROLES,
    Operation.VIEW_MARKS: STAFF_ROLES,
    Operation.SUBMIT_MARKS: STAFF_ROLES,
    Operation.GENERATE_REPORT_CARDS: PRIVILEGED_ROLES,
    Operation.PUBLISH_REPORT_CARDS: ADMIN_ROLES,
    Operation.VIEW_CLASS_REPORT_CARDS: STAFF_ROLES,
    Operation.VIEW_REPORT_CARD: STAFF_ROLES | {Role.STUDENT, Role.PARENT},
    Operation.VIEW_UNPUBLISHED_REPORT_CARD: STAFF_ROLES,
}

# Order used to pick the role recorded against a marks entry
_ROLE_PRECEDENCE = (
    Role.SUPER_ADMIN,
    Role.ADMIN,
    Role.EXAM_OFFICER,
    Role.TEACHER,
    Role.PARENT,
    Role.STUDENT,
)


def is_allowed(operation: Operation, roles: Iterable[Role]) -> bool:
    """Return True if any of ``roles`` may perform ``operation``."""
    allowed = POLICY.get(operation, frozenset())
    return any(role in allowed for role in roles)


class CurrentUserContext:
    """Authorization context of the caller for one request."""

    def __init__(
        self,
        user_id: int,
        school_id: int,
        roles: Iterable[Role],
        teaching_assignments: Iterable[tuple[int, int]] | None = None,
        student_id: int | None = None,
        ward_ids: Iterable[int] | None = None,
    ):
        self.user_id = user_id
        self.school_id = school_id
        self.roles = frozenset(roles)
        # (class_subject_id, section_id) pairs
        self.teaching_assignments = frozenset(teaching_assignments or ())
        self.student_id = student_id
        self.ward_ids = frozenset(ward_ids or ())

    def __repr__(self) -> str:
        roles = ",".join(sorted(r.value for r in self.roles))
        return f"<CurrentUserContext(user_id={self.user_id}, school_id={self.school_id}, roles={roles})>"

    def has_role(self, role: Role) -> bool:
        return role in self.roles

    def is_privileged(self) -> bool:
        """Check if caller bypasses teaching-assignment checks."""
        return bool(self.roles & PRIVILEGED_ROLES)

    def can(self, operation: Operation) -> bool:
        return is_allowed(operation, self.roles)

    def is_assigned(self, class_subject_id: int, section_id: int) -> bool:
        return (class_subject_id, section_id) in self.teaching_assignments

    def can_mark(self, operation: Operation, class_subject_id: int, section_id: int) -> bool:
        """Check role policy plus the teaching assignment for one section."""
        if not self.can(operation):
            return False
        return self.is_privileged() or self.is_assigned(class_subject_id, section_id)

    def can_view_student(self, student_id: int) -> bool:
        """Check if the caller is the student or one of their guardians."""
        if self.has_role(Role.STUDENT) and self.student_id == student_id:
            return True
        return self.has_role(Role.PARENT) and student_id in self.ward_ids

    @property
    def effective_role(self) -> Role:
        """Highest-precedence role held by the caller."""
        for role in _ROLE_PRECEDENCE:
            if role in self.roles:
                return role
        raise AuthorizationDeniedError()


def authorize(context: CurrentUserContext, operation: Operation) -> None:
    """Raise AuthorizationDeniedError unless the caller may perform ``operation``."""
    if not context.can(operation):
        raise AuthorizationDeniedError()
