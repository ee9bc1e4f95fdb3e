"""
Publish Service

Publishes an approved blog to WordPress. The school pays the publish cost up
front; a WordPress failure refunds it, a success records the post and credits
the publish reward. A persisted PublishAttempt row (unique per blog) keeps
publication of one blog single-flight across workers.

Once validation passes the saga runs as its own task under asyncio.shield: a
caller that goes away stops waiting, but payment, the WordPress call and the
refund or recording still run to completion.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Optional, Set

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from backend.core.config import get_settings
from backend.core.exceptions import (
    CMSPublishError,
    ConflictError,
    InsufficientCreditsError,
    InsufficientFundsError,
    PostPublishedButNotRecordedError,
)
from backend.core.observability import PUBLISH_OUTCOMES, PUBLISH_REFUNDS
from backend.db.models import Blog, BlogStatus, PublishAttempt, PublishAttemptStatus, TransactionType, User
from backend.integrations.wordpress_client import WordPressError, WordPressPost, get_wordpress_client
from backend.services.authorization_guard import EntityType
from backend.services.ledger_service import (
    PUBLISH_DESCRIPTION,
    REFUND_DESCRIPTION,
    REWARD_DESCRIPTION,
    LedgerService,
)
from backend.services.workflow_service import WorkflowService, get_workflow_service

logger = logging.getLogger(__name__)

# Strong references to running sagas; the event loop only keeps weak ones
_running_publishes: Set[asyncio.Future] = set()


class PublishService:
    """Publish orchestrator"""

    def __init__(self, db: Session, cms_client=None, workflow: Optional[WorkflowService] = None, ledger: Optional[LedgerService] = None):
        self.db = db
        self.settings = get_settings()
        self.cms = cms_client or get_wordpress_client()
        self.workflow = workflow or get_workflow_service()
        self.ledger = ledger or LedgerService(db)

    async def publish(self, blog_id: int, acting_user: User) -> Blog:
        """
        Publish an approved blog.

        Raises:
            NotFoundError / InvalidTransitionError / ForbiddenError: validation failed
            ConflictError: another publish of this blog is in flight or needs reconciliation
            InsufficientCreditsError: the school cannot pay the publish cost
            CMSPublishError: WordPress failed; the publish cost was refunded
            PostPublishedButNotRecordedError: the post exists on WordPress but could not be recorded
        """
        blog = self.workflow.validate_transition(
            self.db, EntityType.BLOG, blog_id, BlogStatus.PUBLISHED_WP, acting_user
        )
        saga = asyncio.ensure_future(self._run_saga(blog, acting_user))
        _running_publishes.add(saga)
        saga.add_done_callback(_running_publishes.discard)
        return await asyncio.shield(saga)

    async def _run_saga(self, blog: Blog, acting_user: User) -> Blog:
        blog_id = blog.id
        school_id = blog.assigned_school_id
        seen_version = blog.version
        cost = self.settings.publish_cost_coins
        log_extra = {"blog_id": blog_id, "school_id": school_id, "user_id": acting_user.id}

        try:
            attempt = self._acquire_marker(blog_id, acting_user.id)
        except ConflictError:
            PUBLISH_OUTCOMES.labels(outcome="conflict").inc()
            raise

        try:
            self.ledger.debit(
                school_id, cost, PUBLISH_DESCRIPTION.format(blog_id=blog_id), related_blog_id=blog_id
            )
        except InsufficientFundsError as e:
            self._release_marker(attempt)
            PUBLISH_OUTCOMES.labels(outcome="insufficient_credits").inc()
            logger.info(f"Publish of blog {blog_id} rejected: {e.message}", extra=log_extra)
            raise InsufficientCreditsError(
                f"Publishing costs {cost} coins; school {school_id} has {e.balance}",
                {"required": cost, "balance": e.balance, "school_id": school_id},
            )
        except Exception:
            self._release_marker(attempt)
            raise

        try:
            post: WordPressPost = await self.cms.create_post(
                title=blog.title,
                content=blog.content,
                slug=blog.slug,
                excerpt=blog.meta_description,
                tags=list(blog.tags or []),
                categories=[blog.category] if blog.category else None,
                featured_image_url=blog.featured_image,
                meta_title=blog.meta_title,
                seo_keywords=list(blog.seo_keywords or []),
            )
        except Exception as e:
            logger.error(f"WordPress publish failed for blog {blog_id}: {e}", extra=log_extra)
            self._refund(school_id, blog_id)
            self._release_marker(attempt)
            PUBLISH_OUTCOMES.labels(outcome="cms_failed").inc()
            if isinstance(e, WordPressError):
                raise CMSPublishError(
                    f"WordPress rejected blog {blog_id}: {e}",
                    {"status_code": e.status_code, "blog_id": blog_id},
                )
            raise CMSPublishError(f"WordPress publish failed for blog {blog_id}: {e}", {"blog_id": blog_id})

        log_extra["wordpress_post_id"] = post.post_id
        try:
            recorded = self.workflow.apply_publication(self.db, blog, seen_version, post.post_id, post.link)
            if recorded:
                reward = self.settings.publish_reward_coins
                if reward > 0:
                    self.ledger.credit(
                        school_id,
                        reward,
                        REWARD_DESCRIPTION.format(blog_id=blog_id),
                        related_blog_id=blog_id,
                        tx_type=TransactionType.REWARD,
                        commit=False,
                    )
                self._finish_marker(attempt, PublishAttemptStatus.PUBLISHED, post.post_id)
                self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.critical(
                f"Blog {blog_id} published to WordPress as post {post.post_id} but recording failed: {e}",
                extra=log_extra,
            )
            recorded = False

        if not recorded:
            logger.critical(
                f"Blog {blog_id} is live on WordPress (post {post.post_id}) but not marked published; manual reconciliation required",
                extra=log_extra,
            )
            self._mark_needs_reconciliation(attempt, post.post_id)
            PUBLISH_OUTCOMES.labels(outcome="not_recorded").inc()
            raise PostPublishedButNotRecordedError(
                f"Blog {blog_id} was published to WordPress but could not be recorded",
                {"blog_id": blog_id, "wordpress_post_id": post.post_id, "wordpress_url": post.link},
            )

        PUBLISH_OUTCOMES.labels(outcome="published").inc()
        logger.info(f"Blog {blog_id} published as WordPress post {post.post_id}", extra=log_extra)
        return self.workflow.get_blog(self.db, blog_id)

    # Publish marker

    def _acquire_marker(self, blog_id: int, user_id: int) -> PublishAttempt:
        """Insert the unique per-blog marker; losing the insert means another publish holds it"""
        attempt = PublishAttempt(
            blog_id=blog_id,
            status=PublishAttemptStatus.IN_FLIGHT.value,
            acting_user_id=user_id,
        )
        try:
            self.db.add(attempt)
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            existing = (
                self.db.query(PublishAttempt)
                .filter(PublishAttempt.blog_id == blog_id)
                .populate_existing()
                .first()
            )
            state = existing.status if existing is not None else PublishAttemptStatus.IN_FLIGHT.value
            raise ConflictError(
                f"Blog {blog_id} has a publish attempt in state {state}",
                {"blog_id": blog_id, "attempt_status": state},
            )
        self.db.refresh(attempt)
        return attempt

    def _release_marker(self, attempt: PublishAttempt) -> None:
        try:
            self.db.rollback()
            self.db.query(PublishAttempt).filter(
                PublishAttempt.id == attempt.id,
                PublishAttempt.status == PublishAttemptStatus.IN_FLIGHT.value,
            ).delete(synchronize_session=False)
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.error(f"Could not release publish marker for blog {attempt.blog_id}: {e}", extra={"blog_id": attempt.blog_id})
            raise

    def _finish_marker(self, attempt: PublishAttempt, status: PublishAttemptStatus, post_id: Optional[int], error: Optional[str] = None) -> None:
        self.db.execute(
            update(PublishAttempt)
            .where(PublishAttempt.id == attempt.id)
            .values(status=status.value, wordpress_post_id=post_id, error=error, finished_at=datetime.now(timezone.utc))
            .execution_options(synchronize_session=False)
        )

    def _mark_needs_reconciliation(self, attempt: PublishAttempt, post_id: int) -> None:
        try:
            self._finish_marker(
                attempt,
                PublishAttemptStatus.NEEDS_RECONCILIATION,
                post_id,
                error="post created on WordPress but blog status could not be recorded",
            )
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.critical(f"Could not flag publish attempt for blog {attempt.blog_id}: {e}", extra={"blog_id": attempt.blog_id})

    # Compensation

    def _refund(self, school_id: int, blog_id: int) -> None:
        """Return the publish cost once per outstanding publish debit"""
        if self.ledger.outstanding_publish_debits(school_id, blog_id) <= 0:
            logger.info(f"No outstanding publish debit for blog {blog_id}; refund skipped", extra={"blog_id": blog_id})
            return
        try:
            self.ledger.credit(
                school_id,
                self.settings.publish_cost_coins,
                REFUND_DESCRIPTION.format(blog_id=blog_id),
                related_blog_id=blog_id,
                tx_type=TransactionType.ADJUSTMENT,
            )
            PUBLISH_REFUNDS.inc()
        except Exception as e:
            logger.critical(
                f"Refund of publish cost for blog {blog_id} failed: {e}",
                extra={"blog_id": blog_id, "school_id": school_id},
            )
            raise
