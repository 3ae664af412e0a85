"""FastAPI dependency injection utilities."""

from typing import Annotated

from fastapi import Depends, Header, Request
from sqlalchemy.orm import Session

from gradebook.core.config import Settings
from gradebook.core.database import get_db
from gradebook.core.exceptions import AuthenticationError
from gradebook.core.policy import CurrentUserContext, Operation, Role, authorize
from gradebook.core.security import verify_access_token
from gradebook.services.enrollment import EnrollmentReader


def get_app_settings(request: Request) -> Settings:
    """Settings of the running application instance."""
    return request.app.state.settings


def get_user_context(
    db: Annotated[Session, Depends(get_db)],
    settings: Annotated[Settings, Depends(get_app_settings)],
    authorization: str | None = Header(None, description="Bearer token"),
) -> CurrentUserContext:
    """Build the caller's authorization context from the JWT and teaching assignments."""
    if not authorization or not authorization.startswith("Bearer "):
        raise AuthenticationError("Invalid authorization header format")

    token = authorization[7:]  # Remove "Bearer " prefix
    payload = verify_access_token(settings, token)

    if not payload:
        raise AuthenticationError("Invalid or expired token")

    try:
        user_id = int(payload["sub"])
        school_id = int(payload["school_id"])
    except (KeyError, TypeError, ValueError):
        raise AuthenticationError("Invalid token payload")

    roles = []
    for value in payload.get("roles") or []:
        try:
            roles.append(Role(value))
        except ValueError:
            # Roles of other services are ignored
            continue
    if not roles:
        raise AuthenticationError("Token carries no recognised role")

    assignments: list[tuple[int, int]] = []
    if Role.TEACHER in roles:
        assignments = EnrollmentReader(db).teaching_assignments(school_id, user_id)

    return CurrentUserContext(
        user_id=user_id,
        school_id=school_id,
        roles=roles,
        teaching_assignments=assignments,
        student_id=payload.get("student_id"),
        ward_ids=payload.get("ward_ids") or [],
    )


def require_operation(operation: Operation):
    """Dependency factory that requires the caller's roles to allow an operation."""

    def check_operation(
        context: Annotated[CurrentUserContext, Depends(get_user_context)],
    ) -> CurrentUserContext:
        authorize(context, operation)
        return context

    return check_operation


# Type aliases for dependency injection
AppSettings = Annotated[Settings, Depends(get_app_settings)]
UserContext = Annotated[CurrentUserContext, Depends(get_user_context)]
