"""Database models package."""

from gradebook.models.academic import (
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
    SubjectEnrollmentStatus,
    TeacherSubject,
)
from gradebook.models.audit import AuditAction, AuditLog
from gradebook.models.exam import Exam, ExamResult, ExamStatus, ExamSubject, ExamType
from gradebook.models.report_card import ReportCard

__all__ = [
    # Academic structure (read-only collaborators)
    "AcademicYear",
    "SchoolClass",
    "Section",
    "Subject",
    "Student",
    "ClassSubject",
    "SubjectComponent",
    "ComponentType",
    "StudentClass",
    "StudentSubject",
    "EnrollmentStatus",
    "SubjectEnrollmentStatus",
    "TeacherSubject",
    # Exam
    "Exam",
    "ExamType",
    "ExamStatus",
    "ExamSubject",
    "ExamResult",
    # Report card
    "ReportCard",
    # Audit
    "AuditLog",
    "AuditAction",
]
