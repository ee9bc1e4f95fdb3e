"""
Workflow Service

Lifecycle of school submissions and the blogs written from them. Every status
change is validated against the static transition tables, checked by the
authorization guard, and committed with a compare-and-set on (status, version).
Blog transitions cascade to the owning submission inside the same transaction.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from backend.core.exceptions import (
    ConflictError,
    ForbiddenError,
    InvalidTransitionError,
    NotFoundError,
    PublishDelegationRequired,
    ValidationError,
)
from backend.db.models import (
    Blog,
    BlogStatus,
    School,
    Submission,
    SubmissionCategory,
    SubmissionStatus,
    User,
)
from backend.integrations.draft_generator import DraftGenerationError, get_draft_generator
from backend.services.authorization_guard import Action, EntityType, can_perform, can_transition
from backend.services.tenancy import is_school_actor, require_school_access

logger = logging.getLogger(__name__)


BLOG_TRANSITIONS = {
    BlogStatus.DRAFT_CREATED: {BlogStatus.REVIEW},
    BlogStatus.REVIEW: {BlogStatus.DRAFT_WRITER, BlogStatus.APPROVED_SCHOOL},
    BlogStatus.DRAFT_WRITER: {BlogStatus.REVIEW},
    BlogStatus.APPROVED_SCHOOL: {BlogStatus.DRAFT_WRITER, BlogStatus.PUBLISHED_WP},
    BlogStatus.PUBLISHED_WP: set(),
}

SUBMISSION_TRANSITIONS = {
    SubmissionStatus.SUBMITTED_SCHOOL: {SubmissionStatus.DRAFT_CREATED},
    SubmissionStatus.DRAFT_CREATED: {SubmissionStatus.REVIEW},
    SubmissionStatus.REVIEW: {SubmissionStatus.PUBLISHED_WP},
    SubmissionStatus.PUBLISHED_WP: set(),
}

EDITABLE_BLOG_STATES = {BlogStatus.DRAFT_CREATED, BlogStatus.DRAFT_WRITER, BlogStatus.REVIEW}

EDITABLE_BLOG_FIELDS = (
    "title", "content", "slug", "meta_title", "meta_description",
    "seo_keywords", "tags", "category", "featured_image", "reading_time",
)


def _entity_type(value: Union[EntityType, str]) -> EntityType:
    try:
        return EntityType(value.value if isinstance(value, EntityType) else str(value))
    except ValueError:
        raise ValidationError(f"Unknown entity type: {value}")


def _state(entity_type: EntityType, value):
    enum_cls = BlogStatus if entity_type == EntityType.BLOG else SubmissionStatus
    try:
        return enum_cls(value.value if hasattr(value, "value") else str(value))
    except ValueError:
        raise InvalidTransitionError(f"Unknown {entity_type.value} state: {value}")


def is_reachable(entity_type: EntityType, from_state, to_state) -> bool:
    table = BLOG_TRANSITIONS if entity_type == EntityType.BLOG else SUBMISSION_TRANSITIONS
    return to_state in table.get(from_state, set())


class WorkflowService:
    """State machine for submissions and blogs"""

    # Lookup

    def get_submission(self, db: Session, submission_id: int, acting_user: Optional[User] = None) -> Submission:
        submission = db.get(Submission, submission_id, populate_existing=True)
        if submission is None:
            raise NotFoundError(f"Submission {submission_id} not found")
        if acting_user is not None:
            require_school_access(acting_user, submission.school_id)
        return submission

    def get_blog(self, db: Session, blog_id: int, acting_user: Optional[User] = None) -> Blog:
        blog = db.get(Blog, blog_id, populate_existing=True)
        if blog is None:
            raise NotFoundError(f"Blog {blog_id} not found")
        if acting_user is not None:
            require_school_access(acting_user, blog.assigned_school_id)
        return blog

    def list_submissions(
        self,
        db: Session,
        acting_user: User,
        status: Optional[str] = None,
        school_id: Optional[int] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[Submission]:
        query = db.query(Submission)
        if is_school_actor(acting_user):
            query = query.filter(Submission.school_id == acting_user.school_id)
        elif school_id is not None:
            query = query.filter(Submission.school_id == school_id)
        if status:
            query = query.filter(Submission.status == _state(EntityType.SUBMISSION, status).value)
        return query.order_by(Submission.created_at.desc(), Submission.id.desc()).offset(offset).limit(limit).all()

    def list_blogs(
        self,
        db: Session,
        acting_user: User,
        status: Optional[str] = None,
        school_id: Optional[int] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[Blog]:
        query = db.query(Blog)
        if is_school_actor(acting_user):
            query = query.filter(Blog.assigned_school_id == acting_user.school_id)
        elif school_id is not None:
            query = query.filter(Blog.assigned_school_id == school_id)
        if status:
            query = query.filter(Blog.status == _state(EntityType.BLOG, status).value)
        return query.order_by(Blog.updated_at.desc(), Blog.id.desc()).offset(offset).limit(limit).all()

    # Submissions

    def create_submission(
        self,
        db: Session,
        acting_user: User,
        title: str,
        description: str,
        category: str = SubmissionCategory.OTHER.value,
        attachments: Optional[List[str]] = None,
        school_id: Optional[int] = None,
    ) -> Submission:
        """Record a school's story pitch in submitted_school"""
        if not can_perform(acting_user.role, Action.CREATE_SUBMISSION):
            raise ForbiddenError(f"Role {acting_user.role} cannot create submissions")

        if is_school_actor(acting_user):
            school_id = acting_user.school_id if school_id is None else school_id
            require_school_access(acting_user, school_id)
        if school_id is None:
            raise ValidationError("school_id is required")
        if db.get(School, school_id) is None:
            raise NotFoundError(f"School {school_id} not found")

        if not (title or "").strip() or not (description or "").strip():
            raise ValidationError("title and description are required")
        try:
            category = SubmissionCategory(category).value
        except ValueError:
            raise ValidationError(f"Unknown category: {category}")

        submission = Submission(
            school_id=school_id,
            title=title.strip(),
            description=description.strip(),
            category=category,
            attachments=list(attachments or []),
            status=SubmissionStatus.SUBMITTED_SCHOOL.value,
            created_by=acting_user.id,
            version=0,
        )
        try:
            db.add(submission)
            db.commit()
            db.refresh(submission)
        except Exception:
            db.rollback()
            raise

        logger.info(f"Submission {submission.id} created by user {acting_user.id}", extra={"school_id": school_id, "user_id": acting_user.id})
        return submission

    async def generate_draft(self, db: Session, submission_id: int, acting_user: User, generator=None) -> Blog:
        """
        Ask the external generator for a draft and create the Blog.

        The new Blog (draft_created) and the Submission's move to draft_created
        are committed together.

        Raises:
            ConflictError: the submission already has a blog or changed meanwhile
            ValidationError: the generator could not produce a draft
        """
        if not can_perform(acting_user.role, Action.GENERATE_DRAFT):
            raise ForbiddenError(f"Role {acting_user.role} cannot generate drafts")

        submission = self.validate_transition(
            db, EntityType.SUBMISSION, submission_id, SubmissionStatus.DRAFT_CREATED, acting_user
        )
        if submission.blog is not None:
            raise ConflictError(f"Submission {submission_id} already has a blog")

        seen_version = submission.version
        generator = generator or get_draft_generator()
        try:
            draft = await generator.generate(
                title=submission.title,
                description=submission.description,
                category=submission.category,
                attachments=list(submission.attachments or []),
            )
        except DraftGenerationError as e:
            raise ValidationError(str(e))

        try:
            if not self._cas_status(
                db, Submission, submission.id, SubmissionStatus.SUBMITTED_SCHOOL, SubmissionStatus.DRAFT_CREATED, seen_version
            ):
                db.rollback()
                raise ConflictError(f"Submission {submission_id} changed while the draft was generated")

            blog = Blog(
                submission_id=submission.id,
                title=draft.title,
                content=draft.content,
                slug=draft.slug,
                meta_title=draft.meta_title,
                meta_description=draft.meta_description,
                seo_keywords=sorted(set(draft.seo_keywords)),
                tags=list(draft.tags),
                category=submission.category,
                reading_time=max(1, draft.reading_time),
                status=BlogStatus.DRAFT_CREATED.value,
                assigned_school_id=submission.school_id,
                created_by=acting_user.id,
                version=0,
            )
            db.add(blog)
            db.commit()
        except IntegrityError:
            db.rollback()
            raise ConflictError(f"Submission {submission_id} already has a blog")
        except ConflictError:
            raise
        except Exception:
            db.rollback()
            raise

        db.refresh(blog)
        logger.info(f"Draft blog {blog.id} generated for submission {submission_id}", extra={"blog_id": blog.id, "user_id": acting_user.id})
        return blog

    # Blogs

    def update_blog_content(self, db: Session, blog_id: int, acting_user: User, fields: Dict[str, Any]) -> Blog:
        """Edit blog content while it is still in the writing loop"""
        if not can_perform(acting_user.role, Action.EDIT_BLOG):
            raise ForbiddenError(f"Role {acting_user.role} cannot edit blogs")
        blog = self.get_blog(db, blog_id, acting_user)

        current = BlogStatus(blog.status)
        if current not in EDITABLE_BLOG_STATES:
            raise InvalidTransitionError(f"Blog {blog_id} cannot be edited in state {current.value}")

        expected_version = fields.pop("version", None)
        if expected_version is not None and expected_version != blog.version:
            raise ConflictError(f"Blog {blog_id} was modified by someone else")

        unknown = set(fields) - set(EDITABLE_BLOG_FIELDS)
        if unknown:
            raise ValidationError(f"Fields cannot be edited: {', '.join(sorted(unknown))}")

        values = dict(fields)
        if "seo_keywords" in values:
            values["seo_keywords"] = sorted({str(k).strip() for k in values["seo_keywords"] or [] if str(k).strip()})
        if "reading_time" in values and (not isinstance(values["reading_time"], int) or values["reading_time"] < 1):
            raise ValidationError("reading_time must be a positive integer")
        if "title" in values and not (values["title"] or "").strip():
            raise ValidationError("title cannot be empty")

        try:
            result = db.execute(
                update(Blog)
                .where(Blog.id == blog.id, Blog.version == blog.version, Blog.status == blog.status)
                .values(version=blog.version + 1, updated_at=datetime.now(timezone.utc), **values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                db.rollback()
                raise ConflictError(f"Blog {blog_id} was modified by someone else")
            db.commit()
        except ConflictError:
            raise
        except Exception:
            db.rollback()
            raise

        return self.get_blog(db, blog_id)

    # Transitions

    def validate_transition(
        self,
        db: Session,
        entity_type: Union[EntityType, str],
        entity_id: int,
        to_state,
        acting_user: User,
    ):
        """
        Check that a transition may happen without committing anything.

        Returns the loaded entity.

        Raises:
            NotFoundError, InvalidTransitionError, ForbiddenError
        """
        entity_type = _entity_type(entity_type)
        model = Blog if entity_type == EntityType.BLOG else Submission
        entity = db.get(model, entity_id, populate_existing=True)
        if entity is None:
            raise NotFoundError(f"{entity_type.value.capitalize()} {entity_id} not found")

        current = _state(entity_type, entity.status)
        target = _state(entity_type, to_state)
        if not is_reachable(entity_type, current, target):
            raise InvalidTransitionError(
                f"{entity_type.value} {entity_id} cannot move from {current.value} to {target.value}",
                {"from": current.value, "to": target.value},
            )

        if not can_transition(acting_user.role, entity_type, current, target):
            raise ForbiddenError(
                f"Role {acting_user.role} may not move {entity_type.value} from {current.value} to {target.value}"
            )
        school_id = entity.assigned_school_id if entity_type == EntityType.BLOG else entity.school_id
        require_school_access(acting_user, school_id)
        return entity

    def request_transition(
        self,
        db: Session,
        entity_type: Union[EntityType, str],
        entity_id: int,
        to_state,
        acting_user: User,
    ):
        """
        Validate and commit a status change.

        Publishing is never committed here: both blog and submission moves to
        published_wp raise PublishDelegationRequired so that callers go through
        the publish orchestrator.
        """
        entity_type = _entity_type(entity_type)
        entity = self.validate_transition(db, entity_type, entity_id, to_state, acting_user)
        current = _state(entity_type, entity.status)
        target = _state(entity_type, to_state)

        if target.value == BlogStatus.PUBLISHED_WP.value:
            raise PublishDelegationRequired(
                f"{entity_type.value} {entity_id} is published through the publish endpoint",
                {"entity_type": entity_type.value, "entity_id": entity_id},
            )

        model = Blog if entity_type == EntityType.BLOG else Submission
        try:
            if not self._cas_status(db, model, entity.id, current, target, entity.version):
                db.rollback()
                raise ConflictError(f"{entity_type.value} {entity_id} was modified concurrently")

            if entity_type == EntityType.BLOG:
                self._cascade_blog_transition(db, entity, current, target)
            db.commit()
        except ConflictError:
            db.rollback()
            raise
        except Exception:
            db.rollback()
            raise

        logger.info(
            f"{entity_type.value} {entity_id}: {current.value} -> {target.value} by user {acting_user.id}",
            extra={"user_id": acting_user.id, "blog_id": entity_id if entity_type == EntityType.BLOG else None},
        )
        db.refresh(entity)
        return entity

    def apply_publication(
        self,
        db: Session,
        blog: Blog,
        expected_version: int,
        wordpress_post_id: int,
        wordpress_url: str,
    ) -> bool:
        """
        Move an approved blog to published_wp with its WordPress reference and
        advance the submission. Runs inside the caller's transaction.

        Returns False when the blog changed since it was validated.
        """
        now = datetime.now(timezone.utc)
        result = db.execute(
            update(Blog)
            .where(
                Blog.id == blog.id,
                Blog.status == BlogStatus.APPROVED_SCHOOL.value,
                Blog.version == expected_version,
            )
            .values(
                status=BlogStatus.PUBLISHED_WP.value,
                version=expected_version + 1,
                wordpress_post_id=wordpress_post_id,
                wordpress_url=wordpress_url,
                published_at=now,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            return False
        self._cascade_blog_transition(db, blog, BlogStatus.APPROVED_SCHOOL, BlogStatus.PUBLISHED_WP)
        return True

    def _cascade_blog_transition(self, db: Session, blog: Blog, current: BlogStatus, target: BlogStatus) -> None:
        submission = db.get(Submission, blog.submission_id, populate_existing=True)
        if submission is None:
            raise NotFoundError(f"Submission {blog.submission_id} not found")

        if current == BlogStatus.DRAFT_CREATED and target == BlogStatus.REVIEW:
            expected = SubmissionStatus.DRAFT_CREATED
            advance_to = SubmissionStatus.REVIEW
        elif target == BlogStatus.PUBLISHED_WP:
            expected = SubmissionStatus.REVIEW
            advance_to = SubmissionStatus.PUBLISHED_WP
        else:
            # revision loop and resubmission leave the submission alone
            return

        if submission.status != expected.value:
            logger.warning(
                f"Submission {submission.id} is {submission.status}, expected {expected.value}; not cascading",
                extra={"blog_id": blog.id},
            )
            return
        if not self._cas_status(db, Submission, submission.id, expected, advance_to, submission.version):
            raise ConflictError(f"Submission {submission.id} was modified concurrently")

    @staticmethod
    def _cas_status(db: Session, model, entity_id: int, current, target, version: int) -> bool:
        result = db.execute(
            update(model)
            .where(model.id == entity_id, model.status == current.value, model.version == version)
            .values(status=target.value, version=version + 1, updated_at=datetime.now(timezone.utc))
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    # Dashboards

    def admin_overview(self, db: Session) -> Dict[str, int]:
        blog_counts = dict(db.query(Blog.status, func.count(Blog.id)).group_by(Blog.status).all())
        return {
            "totalSchools": db.query(func.count(School.id)).scalar(),
            "totalSubmissions": db.query(func.count(Submission.id)).scalar(),
            "totalPublished": blog_counts.get(BlogStatus.PUBLISHED_WP.value, 0),
            "draftsPending": blog_counts.get(BlogStatus.DRAFT_CREATED.value, 0) + blog_counts.get(BlogStatus.DRAFT_WRITER.value, 0),
            "blogsInReview": blog_counts.get(BlogStatus.REVIEW.value, 0),
            "awaitingPublication": blog_counts.get(BlogStatus.APPROVED_SCHOOL.value, 0),
        }


_workflow_service: Optional[WorkflowService] = None


def get_workflow_service() -> WorkflowService:
    global _workflow_service
    if _workflow_service is None:
        _workflow_service = WorkflowService()
    return _workflow_service
