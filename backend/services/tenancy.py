"""
Tenant scoping for school actors.

School users may only touch entities that belong to their own school. Other
roles are scoped by the authorization guard alone.
"""
from typing import Optional

from backend.core.exceptions import ForbiddenError, ValidationError
from backend.db.models import User, UserRole


def is_school_actor(user: User) -> bool:
    return user.role == UserRole.SCHOOL.value


def require_school_access(user: User, school_id: Optional[int]) -> None:
    """Raise ForbiddenError when a school user reaches into another school"""
    if is_school_actor(user) and (user.school_id is None or user.school_id != school_id):
        raise ForbiddenError(
            "School users may only act on their own school",
            {"user_id": user.id, "school_id": school_id},
        )


def resolve_school_id(user: User, requested: Optional[int]) -> int:
    """School users default to their own school; everyone else must name one"""
    if is_school_actor(user):
        if requested is not None:
            require_school_access(user, requested)
        if user.school_id is None:
            raise ForbiddenError("School user is not linked to a school")
        return user.school_id
    if requested is None:
        raise ValidationError("school_id is required")
    return requested
