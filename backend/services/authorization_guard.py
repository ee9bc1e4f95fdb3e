"""
Authorization Guard

Pure role checks for workflow transitions and engine actions. Anything not
listed in the tables below is denied.
"""
from enum import Enum
from typing import Dict, FrozenSet, Tuple, Union

from backend.db.models import BlogStatus, SubmissionStatus, UserRole


class EntityType(str, Enum):
    BLOG = "blog"
    SUBMISSION = "submission"


class Action(str, Enum):
    CREATE_SUBMISSION = "create_submission"
    GENERATE_DRAFT = "generate_draft"
    EDIT_BLOG = "edit_blog"
    FAN_OUT = "fan_out"
    MANAGE_CONNECTIONS = "manage_connections"
    REFRESH_TOKENS = "refresh_tokens"
    PURCHASE_COINS = "purchase_coins"
    VIEW_LEDGER = "view_ledger"
    ADJUST_LEDGER = "adjust_ledger"
    VIEW_ANALYTICS = "view_analytics"


_ADMIN = UserRole.ADMIN
_WRITER = UserRole.WRITER
_SCHOOL = UserRole.SCHOOL
_MARKETER = UserRole.MARKETER


TRANSITION_PERMISSIONS: Dict[Tuple[EntityType, str, str], FrozenSet[UserRole]] = {
    # Blog lifecycle
    (EntityType.BLOG, BlogStatus.DRAFT_CREATED.value, BlogStatus.REVIEW.value): frozenset({_WRITER, _ADMIN}),
    (EntityType.BLOG, BlogStatus.REVIEW.value, BlogStatus.DRAFT_WRITER.value): frozenset({_SCHOOL, _ADMIN}),
    (EntityType.BLOG, BlogStatus.REVIEW.value, BlogStatus.APPROVED_SCHOOL.value): frozenset({_SCHOOL, _ADMIN}),
    (EntityType.BLOG, BlogStatus.APPROVED_SCHOOL.value, BlogStatus.DRAFT_WRITER.value): frozenset({_SCHOOL, _ADMIN}),
    (EntityType.BLOG, BlogStatus.DRAFT_WRITER.value, BlogStatus.REVIEW.value): frozenset({_WRITER, _ADMIN}),
    (EntityType.BLOG, BlogStatus.APPROVED_SCHOOL.value, BlogStatus.PUBLISHED_WP.value): frozenset({_SCHOOL, _ADMIN}),
    # Submission lifecycle
    (EntityType.SUBMISSION, SubmissionStatus.SUBMITTED_SCHOOL.value, SubmissionStatus.DRAFT_CREATED.value): frozenset({_WRITER, _ADMIN}),
    (EntityType.SUBMISSION, SubmissionStatus.DRAFT_CREATED.value, SubmissionStatus.REVIEW.value): frozenset({_WRITER, _ADMIN}),
    (EntityType.SUBMISSION, SubmissionStatus.REVIEW.value, SubmissionStatus.PUBLISHED_WP.value): frozenset({_SCHOOL, _ADMIN}),
}

ACTION_PERMISSIONS: Dict[Action, FrozenSet[UserRole]] = {
    Action.CREATE_SUBMISSION: frozenset({_SCHOOL, _ADMIN}),
    Action.GENERATE_DRAFT: frozenset({_WRITER, _ADMIN}),
    Action.EDIT_BLOG: frozenset({_WRITER, _ADMIN}),
    Action.FAN_OUT: frozenset({_ADMIN, _MARKETER, _SCHOOL}),
    Action.MANAGE_CONNECTIONS: frozenset({_ADMIN, _SCHOOL}),
    Action.REFRESH_TOKENS: frozenset({_ADMIN}),
    Action.PURCHASE_COINS: frozenset({_SCHOOL}),
    Action.VIEW_LEDGER: frozenset({_ADMIN, _SCHOOL}),
    Action.ADJUST_LEDGER: frozenset({_ADMIN}),
    Action.VIEW_ANALYTICS: frozenset({_ADMIN}),
}


def _coerce(value: Union[Enum, str]) -> str:
    return value.value if isinstance(value, Enum) else str(value)


def _role(role: Union[UserRole, str]):
    try:
        return UserRole(_coerce(role))
    except ValueError:
        return None


def can_transition(
    role: Union[UserRole, str],
    entity_type: Union[EntityType, str],
    from_state: Union[Enum, str],
    to_state: Union[Enum, str],
) -> bool:
    """True only if (entity_type, from, to) is declared and lists the role"""
    user_role = _role(role)
    if user_role is None:
        return False
    try:
        entity = EntityType(_coerce(entity_type))
    except ValueError:
        return False
    allowed = TRANSITION_PERMISSIONS.get((entity, _coerce(from_state), _coerce(to_state)))
    return allowed is not None and user_role in allowed


def can_perform(role: Union[UserRole, str], action: Union[Action, str]) -> bool:
    user_role = _role(role)
    if user_role is None:
        return False
    try:
        allowed = ACTION_PERMISSIONS.get(Action(_coerce(action)))
    except ValueError:
        return False
    return allowed is not None and user_role in allowed
