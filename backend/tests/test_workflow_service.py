"""
Tests for the submission / blog state machine

Covers submission intake, draft generation, review transitions with their
cascade to the submission, optimistic concurrency and the publish hand-off.
"""

import itertools

import pytest
from sqlalchemy import update
from sqlalchemy.orm import Session

from backend.core.exceptions import (
    ConflictError,
    ForbiddenError,
    InvalidTransitionError,
    NotFoundError,
    PublishDelegationRequired,
    ValidationError,
)
from backend.db.models import Blog, BlogStatus, Submission, SubmissionStatus
from backend.integrations.draft_generator import DraftGenerationError
from backend.services.authorization_guard import EntityType
from backend.services.workflow_service import BLOG_TRANSITIONS, WorkflowService
from backend.tests.fixtures.fakes import FakeDraftGenerator


@pytest.fixture
def workflow():
    return WorkflowService()


def _submission(test_db: Session, blog: Blog) -> Submission:
    return test_db.get(Submission, blog.submission_id, populate_existing=True)


class TestSubmissions:
    """Submission intake"""

    def test_school_creates_submission_for_own_school(self, workflow, test_db, school_user, school_a):
        submission = workflow.create_submission(
            test_db, school_user, title=" Sports day ", description="Annual sports day", category="event",
            attachments=["blob://a.jpg", "blob://b.jpg"],
        )
        assert submission.status == SubmissionStatus.SUBMITTED_SCHOOL.value
        assert submission.school_id == school_a.id
        assert submission.title == "Sports day"
        assert submission.attachments == ["blob://a.jpg", "blob://b.jpg"]
        assert submission.version == 0

    def test_admin_must_name_school(self, workflow, test_db, admin_user, school_b):
        with pytest.raises(ValidationError):
            workflow.create_submission(test_db, admin_user, title="t", description="d")
        submission = workflow.create_submission(test_db, admin_user, title="t", description="d", school_id=school_b.id)
        assert submission.school_id == school_b.id

    def test_writer_cannot_create_submission(self, workflow, test_db, writer_user, school_a):
        with pytest.raises(ForbiddenError):
            workflow.create_submission(test_db, writer_user, title="t", description="d", school_id=school_a.id)

    def test_school_cannot_submit_for_another_school(self, workflow, test_db, school_user, school_b):
        with pytest.raises(ForbiddenError):
            workflow.create_submission(test_db, school_user, title="t", description="d", school_id=school_b.id)

    def test_rejects_blank_fields_and_unknown_category(self, workflow, test_db, school_user):
        with pytest.raises(ValidationError):
            workflow.create_submission(test_db, school_user, title="   ", description="d")
        with pytest.raises(ValidationError):
            workflow.create_submission(test_db, school_user, title="t", description="d", category="gossip")

    def test_school_lists_only_own_submissions(self, workflow, test_db, school_user, other_school_user, admin_user):
        workflow.create_submission(test_db, school_user, title="mine", description="d")
        workflow.create_submission(test_db, other_school_user, title="theirs", description="d")

        assert [s.title for s in workflow.list_submissions(test_db, school_user)] == ["mine"]
        assert len(workflow.list_submissions(test_db, admin_user)) == 2

    def test_school_cannot_read_other_school_submission(self, workflow, test_db, school_user, other_school_user):
        theirs = workflow.create_submission(test_db, other_school_user, title="theirs", description="d")
        with pytest.raises(ForbiddenError):
            workflow.get_submission(test_db, theirs.id, school_user)


class TestDraftGeneration:
    """Writer turns a submission into a draft blog"""

    @pytest.mark.asyncio
    async def test_generate_draft_creates_blog_and_advances_submission(self, workflow, test_db, school_user, writer_user, school_a):
        submission = workflow.create_submission(test_db, school_user, title="Solar car", description="We built one")
        generator = FakeDraftGenerator()

        blog = await workflow.generate_draft(test_db, submission.id, writer_user, generator=generator)

        assert blog.status == BlogStatus.DRAFT_CREATED.value
        assert blog.assigned_school_id == school_a.id
        assert blog.submission_id == submission.id
        assert blog.seo_keywords == ["science", "solar"]
        assert blog.tags == ["science", "events"]
        assert blog.reading_time == 3
        refreshed = workflow.get_submission(test_db, submission.id)
        assert refreshed.status == SubmissionStatus.DRAFT_CREATED.value
        assert refreshed.version == 1
        assert generator.calls == ["Solar car"]

    @pytest.mark.asyncio
    async def test_second_generation_rejected(self, workflow, test_db, school_user, writer_user):
        submission = workflow.create_submission(test_db, school_user, title="Solar car", description="We built one")
        await workflow.generate_draft(test_db, submission.id, writer_user, generator=FakeDraftGenerator())

        with pytest.raises(InvalidTransitionError):
            await workflow.generate_draft(test_db, submission.id, writer_user, generator=FakeDraftGenerator())
        assert test_db.query(Blog).count() == 1

    @pytest.mark.asyncio
    async def test_generator_failure_leaves_submission_untouched(self, workflow, test_db, school_user, writer_user):
        submission = workflow.create_submission(test_db, school_user, title="Solar car", description="We built one")
        generator = FakeDraftGenerator(error=DraftGenerationError("model unavailable"))

        with pytest.raises(ValidationError):
            await workflow.generate_draft(test_db, submission.id, writer_user, generator=generator)

        assert workflow.get_submission(test_db, submission.id).status == SubmissionStatus.SUBMITTED_SCHOOL.value
        assert test_db.query(Blog).count() == 0

    @pytest.mark.asyncio
    async def test_school_cannot_generate_draft(self, workflow, test_db, school_user):
        submission = workflow.create_submission(test_db, school_user, title="Solar car", description="We built one")
        with pytest.raises(ForbiddenError):
            await workflow.generate_draft(test_db, submission.id, school_user, generator=FakeDraftGenerator())


class TestTransitions:
    """Review loop, cascade and publish hand-off"""

    def test_submit_for_review_cascades_to_submission(self, workflow, test_db, make_blog, school_a, writer_user):
        blog = make_blog(school_a, BlogStatus.DRAFT_CREATED)

        result = workflow.request_transition(test_db, EntityType.BLOG, blog.id, BlogStatus.REVIEW, writer_user)

        assert result.status == BlogStatus.REVIEW.value
        assert result.version == 1
        submission = _submission(test_db, blog)
        assert submission.status == SubmissionStatus.REVIEW.value
        assert submission.version == 1

    def test_revision_loop_leaves_submission_in_review(self, workflow, test_db, make_blog, school_a, school_user, writer_user):
        blog = make_blog(school_a, BlogStatus.REVIEW)

        workflow.request_transition(test_db, "blog", blog.id, "draft_writer", school_user)
        workflow.request_transition(test_db, "blog", blog.id, "review", writer_user)
        result = workflow.request_transition(test_db, "blog", blog.id, "approved_school", school_user)

        assert result.status == BlogStatus.APPROVED_SCHOOL.value
        assert result.version == 3
        submission = _submission(test_db, blog)
        assert submission.status == SubmissionStatus.REVIEW.value
        assert submission.version == 0

    def test_school_can_request_changes_after_approval(self, workflow, test_db, make_blog, school_a, school_user):
        blog = make_blog(school_a, BlogStatus.APPROVED_SCHOOL)
        result = workflow.request_transition(test_db, "blog", blog.id, "draft_writer", school_user)
        assert result.status == BlogStatus.DRAFT_WRITER.value

    def test_unreachable_state_rejected(self, workflow, test_db, make_blog, school_a, admin_user):
        blog = make_blog(school_a, BlogStatus.DRAFT_CREATED)
        with pytest.raises(InvalidTransitionError):
            workflow.request_transition(test_db, "blog", blog.id, "approved_school", admin_user)

    def test_reachability_checked_before_role(self, workflow, test_db, make_blog, school_a, marketer_user):
        blog = make_blog(school_a, BlogStatus.DRAFT_CREATED)
        with pytest.raises(InvalidTransitionError):
            workflow.request_transition(test_db, "blog", blog.id, "published_wp", marketer_user)

    def test_writer_cannot_approve(self, workflow, test_db, make_blog, school_a, writer_user):
        blog = make_blog(school_a, BlogStatus.REVIEW)
        with pytest.raises(ForbiddenError):
            workflow.request_transition(test_db, "blog", blog.id, "approved_school", writer_user)
        assert workflow.get_blog(test_db, blog.id).status == BlogStatus.REVIEW.value

    def test_school_cannot_approve_other_school_blog(self, workflow, test_db, make_blog, school_a, other_school_user):
        blog = make_blog(school_a, BlogStatus.REVIEW)
        with pytest.raises(ForbiddenError):
            workflow.request_transition(test_db, "blog", blog.id, "approved_school", other_school_user)

    def test_missing_blog(self, workflow, test_db, admin_user):
        with pytest.raises(NotFoundError):
            workflow.request_transition(test_db, "blog", 404, "review", admin_user)

    def test_unknown_state_rejected(self, workflow, test_db, make_blog, school_a, admin_user):
        blog = make_blog(school_a, BlogStatus.REVIEW)
        with pytest.raises(InvalidTransitionError):
            workflow.request_transition(test_db, "blog", blog.id, "archived", admin_user)

    def test_publish_is_delegated(self, workflow, test_db, make_blog, school_a, school_user):
        blog = make_blog(school_a, BlogStatus.APPROVED_SCHOOL)
        with pytest.raises(PublishDelegationRequired):
            workflow.request_transition(test_db, "blog", blog.id, "published_wp", school_user)
        assert workflow.get_blog(test_db, blog.id).status == BlogStatus.APPROVED_SCHOOL.value

    def test_submission_publish_is_delegated(self, workflow, test_db, make_blog, school_a, admin_user):
        blog = make_blog(school_a, BlogStatus.APPROVED_SCHOOL)
        with pytest.raises(PublishDelegationRequired):
            workflow.request_transition(test_db, "submission", blog.submission_id, "published_wp", admin_user)
        assert _submission(test_db, blog).status == SubmissionStatus.REVIEW.value

    def test_lost_compare_and_set_raises_conflict(self, workflow, test_db, make_blog, school_a, writer_user, monkeypatch):
        blog = make_blog(school_a, BlogStatus.DRAFT_CREATED)
        monkeypatch.setattr(workflow, "_cas_status", lambda *args, **kwargs: False)

        with pytest.raises(ConflictError):
            workflow.request_transition(test_db, "blog", blog.id, "review", writer_user)

        assert workflow.get_blog(test_db, blog.id).status == BlogStatus.DRAFT_CREATED.value
        assert _submission(test_db, blog).status == SubmissionStatus.DRAFT_CREATED.value

    def test_cascade_conflict_rolls_back_blog(self, workflow, test_db, make_blog, school_a, writer_user, monkeypatch):
        blog = make_blog(school_a, BlogStatus.DRAFT_CREATED)
        original = WorkflowService._cas_status

        def cas(db, model, *args):
            if model is Submission:
                return False
            return original(db, model, *args)

        monkeypatch.setattr(workflow, "_cas_status", cas)
        with pytest.raises(ConflictError):
            workflow.request_transition(test_db, "blog", blog.id, "review", writer_user)

        assert workflow.get_blog(test_db, blog.id).status == BlogStatus.DRAFT_CREATED.value

    @pytest.mark.parametrize("from_state,to_state", list(itertools.product(BlogStatus, BlogStatus)))
    def test_every_state_pair(self, workflow, test_db, make_blog, school_a, admin_user, from_state, to_state):
        """Admin may take every declared edge; everything else is unreachable"""
        blog = make_blog(school_a, from_state)

        if to_state not in BLOG_TRANSITIONS[from_state]:
            with pytest.raises(InvalidTransitionError):
                workflow.request_transition(test_db, "blog", blog.id, to_state, admin_user)
        elif to_state == BlogStatus.PUBLISHED_WP:
            with pytest.raises(PublishDelegationRequired):
                workflow.request_transition(test_db, "blog", blog.id, to_state, admin_user)
        else:
            result = workflow.request_transition(test_db, "blog", blog.id, to_state, admin_user)
            assert result.status == to_state.value


class TestBlogEditing:
    """Content edits while the blog is in the writing loop"""

    def test_writer_edits_draft(self, workflow, test_db, make_blog, school_a, writer_user):
        blog = make_blog(school_a, BlogStatus.DRAFT_CREATED)

        updated = workflow.update_blog_content(
            test_db, blog.id, writer_user,
            {"title": "New title", "seo_keywords": ["b", "a", "b"], "version": 0},
        )

        assert updated.title == "New title"
        assert updated.seo_keywords == ["a", "b"]
        assert updated.version == 1

    def test_stale_version_rejected(self, workflow, test_db, make_blog, school_a, writer_user):
        blog = make_blog(school_a, BlogStatus.DRAFT_CREATED)
        test_db.execute(update(Blog).where(Blog.id == blog.id).values(version=5))
        test_db.commit()

        with pytest.raises(ConflictError):
            workflow.update_blog_content(test_db, blog.id, writer_user, {"title": "x", "version": 0})

    def test_approved_blog_is_frozen(self, workflow, test_db, make_blog, school_a, writer_user):
        blog = make_blog(school_a, BlogStatus.APPROVED_SCHOOL)
        with pytest.raises(InvalidTransitionError):
            workflow.update_blog_content(test_db, blog.id, writer_user, {"title": "x"})

    def test_status_is_not_editable(self, workflow, test_db, make_blog, school_a, writer_user):
        blog = make_blog(school_a, BlogStatus.DRAFT_CREATED)
        with pytest.raises(ValidationError):
            workflow.update_blog_content(test_db, blog.id, writer_user, {"status": "published_wp"})

    def test_school_cannot_edit(self, workflow, test_db, make_blog, school_a, school_user):
        blog = make_blog(school_a, BlogStatus.REVIEW)
        with pytest.raises(ForbiddenError):
            workflow.update_blog_content(test_db, blog.id, school_user, {"title": "x"})


class TestOverview:

    def test_admin_overview_counts(self, workflow, test_db, make_blog, school_a, school_b):
        make_blog(school_a, BlogStatus.DRAFT_CREATED)
        make_blog(school_a, BlogStatus.DRAFT_WRITER)
        make_blog(school_a, BlogStatus.REVIEW)
        make_blog(school_b, BlogStatus.APPROVED_SCHOOL)
        make_blog(school_b, BlogStatus.PUBLISHED_WP)

        overview = workflow.admin_overview(test_db)

        assert overview == {
            "totalSchools": 2,
            "totalSubmissions": 5,
            "totalPublished": 1,
            "draftsPending": 2,
            "blogsInReview": 1,
            "awaitingPublication": 1,
        }
