"""
Unit tests for the authorization guard

Pure role checks: declared transitions, deny-by-omission and action permissions.
"""

import itertools

import pytest

from backend.db.models import BlogStatus, SubmissionStatus, UserRole
from backend.services.authorization_guard import (
    ACTION_PERMISSIONS,
    TRANSITION_PERMISSIONS,
    Action,
    EntityType,
    can_perform,
    can_transition,
)
from backend.services.workflow_service import BLOG_TRANSITIONS, SUBMISSION_TRANSITIONS


class TestTransitionPermissions:
    """Role checks for status transitions"""

    @pytest.mark.parametrize("role,allowed", [
        (UserRole.WRITER, True),
        (UserRole.ADMIN, True),
        (UserRole.SCHOOL, False),
        (UserRole.MARKETER, False),
    ])
    def test_submit_for_review(self, role, allowed):
        assert can_transition(role, EntityType.BLOG, BlogStatus.DRAFT_CREATED, BlogStatus.REVIEW) is allowed

    @pytest.mark.parametrize("role,allowed", [
        (UserRole.SCHOOL, True),
        (UserRole.ADMIN, True),
        (UserRole.WRITER, False),
        (UserRole.MARKETER, False),
    ])
    def test_school_approval(self, role, allowed):
        assert can_transition(role, EntityType.BLOG, BlogStatus.REVIEW, BlogStatus.APPROVED_SCHOOL) is allowed

    def test_publish_requires_school_or_admin(self):
        assert can_transition("school", "blog", "approved_school", "published_wp")
        assert can_transition("admin", "blog", "approved_school", "published_wp")
        assert not can_transition("writer", "blog", "approved_school", "published_wp")

    def test_undeclared_transition_denied_even_for_admin(self):
        """Admin gets nothing that is not listed"""
        assert not can_transition(UserRole.ADMIN, EntityType.BLOG, BlogStatus.REVIEW, BlogStatus.PUBLISHED_WP)
        assert not can_transition(UserRole.ADMIN, EntityType.BLOG, BlogStatus.PUBLISHED_WP, BlogStatus.REVIEW)
        assert not can_transition(UserRole.ADMIN, EntityType.BLOG, BlogStatus.DRAFT_CREATED, BlogStatus.DRAFT_CREATED)

    def test_marketer_has_no_transitions(self):
        for (entity, from_state, to_state) in TRANSITION_PERMISSIONS:
            assert not can_transition(UserRole.MARKETER, entity, from_state, to_state)

    def test_unknown_role_and_entity_denied(self):
        assert not can_transition("principal", "blog", "draft_created", "review")
        assert not can_transition("admin", "newsletter", "draft_created", "review")
        assert not can_transition("admin", "blog", "draft_created", "archived")

    def test_submission_transitions(self):
        assert can_transition("writer", "submission", "submitted_school", "draft_created")
        assert not can_transition("school", "submission", "submitted_school", "draft_created")
        assert can_transition("school", "submission", "review", "published_wp")

    def test_declared_transitions_are_reachable(self):
        """Every permission entry corresponds to an edge of the state machine"""
        for (entity, from_state, to_state) in TRANSITION_PERMISSIONS:
            if entity == EntityType.BLOG:
                assert BlogStatus(to_state) in BLOG_TRANSITIONS[BlogStatus(from_state)]
            else:
                assert SubmissionStatus(to_state) in SUBMISSION_TRANSITIONS[SubmissionStatus(from_state)]

    def test_every_reachable_blog_edge_has_an_owner(self):
        for from_state, targets in BLOG_TRANSITIONS.items():
            for to_state in targets:
                roles = [r for r in UserRole if can_transition(r, EntityType.BLOG, from_state, to_state)]
                assert roles, f"{from_state.value} -> {to_state.value} has no permitted role"

    def test_unreachable_pairs_always_denied(self):
        for from_state, to_state in itertools.product(BlogStatus, BlogStatus):
            if to_state in BLOG_TRANSITIONS[from_state]:
                continue
            for role in UserRole:
                assert not can_transition(role, EntityType.BLOG, from_state, to_state)


class TestActionPermissions:
    """Role checks for non-transition actions"""

    def test_fan_out_roles(self):
        assert can_perform(UserRole.MARKETER, Action.FAN_OUT)
        assert can_perform(UserRole.SCHOOL, Action.FAN_OUT)
        assert can_perform(UserRole.ADMIN, Action.FAN_OUT)
        assert not can_perform(UserRole.WRITER, Action.FAN_OUT)

    def test_admin_only_actions(self):
        for action in (Action.REFRESH_TOKENS, Action.ADJUST_LEDGER, Action.VIEW_ANALYTICS):
            assert can_perform("admin", action)
            for role in (UserRole.WRITER, UserRole.SCHOOL, UserRole.MARKETER):
                assert not can_perform(role, action)

    def test_only_schools_buy_coins(self):
        assert can_perform("school", "purchase_coins")
        assert not can_perform("admin", "purchase_coins")

    def test_unknown_action_denied(self):
        assert not can_perform("admin", "delete_everything")
        assert not can_perform("nobody", Action.FAN_OUT)

    def test_every_action_declared(self):
        assert set(ACTION_PERMISSIONS) == set(Action)
