"""Access token utilities.

Tokens are issued by the identity service; this module only needs to read
them. ``create_access_token`` mirrors the issuer's claim layout and is used
by tooling and tests.
"""

from collections.abc import Iterable
from datetime import datetime, timedelta, timezone
from typing import Any

from jose import JWTError, jwt

from gradebook.core.config import Settings


def create_access_token(
    settings: Settings,
    user_id: int,
    school_id: int,
    roles: Iterable[str],
    student_id: int | None = None,
    ward_ids: Iterable[int] | None = None,
    expires_delta: timedelta | None = None,
) -> str:
    """Create a JWT access token."""
    if expires_delta:
        expire = datetime.now(timezone.utc) + expires_delta
    else:
        expire = datetime.now(timezone.utc) + timedelta(
            minutes=settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES
        )

    to_encode: dict[str, Any] = {
        "sub": str(user_id),
        "school_id": school_id,
        "roles": [str(getattr(role, "value", role)) for role in roles],
        "exp": expire,
        "type": "access",
    }
    if student_id is not None:
        to_encode["student_id"] = student_id
    if ward_ids:
        to_encode["ward_ids"] = list(ward_ids)

    return jwt.encode(
        to_encode,
        settings.JWT_SECRET_KEY,
        algorithm=settings.JWT_ALGORITHM,
    )


def decode_token(settings: Settings, token: str) -> dict[str, Any] | None:
    """Decode and validate a JWT token."""
    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET_KEY,
            algorithms=[settings.JWT_ALGORITHM],
        )
        return payload
    except JWTError:
        return None


def verify_access_token(settings: Settings, token: str) -> dict[str, Any] | None:
    """Verify an access token and return its payload."""
    payload = decode_token(settings, token)
    if payload and payload.get("type") == "access":
        return payload
    return None
