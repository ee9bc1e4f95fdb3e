"""
Social Fan-out Service

Posts a published blog to several social platforms at once. Each platform is
resolved, refreshed, and posted independently; one platform failing never
fails the others. Outcomes are stored as SocialPost rows.
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

from sqlalchemy.orm import Session

from backend.core.config import get_settings
from backend.core.observability import SOCIAL_PLATFORM_POSTS
from backend.core.exceptions import (
    ForbiddenError,
    InvalidTransitionError,
    PlatformError,
    PlatformErrorCode,
    ValidationError,
)
from backend.db.models import Blog, BlogStatus, Platform, SocialPost, User
from backend.integrations.platform_base import ErrorKind, PlatformAPIError, PostContent
from backend.services.authorization_guard import Action, can_perform
from backend.services.social_connection_service import (
    ConnectionSnapshot,
    SocialConnectionService,
    parse_platform,
)
from backend.services.workflow_service import get_workflow_service

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 3
BACKOFF_BASE_SECONDS = 0.5


@dataclass
class FanOutResult:
    platform: Platform
    remote_post_id: Optional[str] = None
    error: Optional[PlatformError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> Dict:
        return {
            "platform": self.platform.value,
            "status": "posted" if self.ok else "failed",
            "remote_post_id": self.remote_post_id,
            "error": self.error.to_dict() if self.error else None,
        }


def _to_platform_error(error: PlatformAPIError) -> PlatformError:
    if error.is_auth:
        code = PlatformErrorCode.AUTH_EXPIRED
    elif error.is_transient:
        code = PlatformErrorCode.TIMEOUT
    else:
        code = PlatformErrorCode.REMOTE_REJECTED
    return PlatformError(code, str(error), error.status_code)


class SocialFanoutService:

    def __init__(
        self,
        db: Session,
        connections: Optional[SocialConnectionService] = None,
        max_attempts: int = MAX_ATTEMPTS,
        backoff_base: float = BACKOFF_BASE_SECONDS,
    ):
        self.db = db
        self.settings = get_settings()
        self.connections = connections or SocialConnectionService(db)
        self.max_attempts = max_attempts
        self.backoff_base = backoff_base

    async def fan_out(
        self,
        blog_id: int,
        caption: str,
        hashtags: Iterable[str],
        platforms: Iterable,
        acting_user: User,
    ) -> Dict[Platform, FanOutResult]:
        """
        Post a published blog to the requested platforms.

        Raises:
            ForbiddenError: role may not fan out, or school user on another school's blog
            InvalidTransitionError: blog is not published_wp
        """
        if not can_perform(acting_user.role, Action.FAN_OUT):
            raise ForbiddenError(f"Role {acting_user.role} cannot post to social media")

        targets = self._unique_platforms(platforms)
        blog = get_workflow_service().get_blog(self.db, blog_id, acting_user)
        if blog.status != BlogStatus.PUBLISHED_WP.value:
            raise InvalidTransitionError(
                f"Blog {blog_id} must be published before it is shared (status {blog.status})",
                {"status": blog.status},
            )

        content = PostContent(
            caption=(caption or blog.meta_description or blog.title).strip(),
            hashtags=[h.strip() for h in hashtags or [] if h and h.strip()],
            link=blog.wordpress_url,
            image_url=blog.featured_image,
        )

        # Resolve every connection before dispatch so the tasks share no session state
        snapshots: Dict[Platform, ConnectionSnapshot] = {}
        results: Dict[Platform, FanOutResult] = {}
        for platform in targets:
            try:
                snapshots[platform] = await self.connections.get_credentials(blog.assigned_school_id, platform)
            except PlatformError as e:
                results[platform] = FanOutResult(platform=platform, error=e)

        semaphore = asyncio.Semaphore(self.settings.fanout_max_concurrency)
        dispatch = asyncio.gather(
            *(self._dispatch(semaphore, snapshot, content) for snapshot in snapshots.values())
        )
        # Caller cancellation must not abort posts that are already on their way
        try:
            dispatched = await asyncio.shield(dispatch)
        except asyncio.CancelledError:
            dispatch.add_done_callback(lambda done: self._record_abandoned(done, blog, results, acting_user))
            raise
        for result in dispatched:
            results[result.platform] = result

        self._record(blog, results, acting_user)
        ordered = {p: results[p] for p in targets}
        logger.info(
            f"Fan-out of blog {blog_id}: " + ", ".join(f"{p.value}={'ok' if r.ok else r.error.code.value}" for p, r in ordered.items()),
            extra={"blog_id": blog_id, "user_id": acting_user.id},
        )
        return ordered

    @staticmethod
    def _unique_platforms(platforms: Iterable) -> List[Platform]:
        targets: List[Platform] = []
        for value in platforms or []:
            platform = parse_platform(value)
            if platform not in targets:
                targets.append(platform)
        if not targets:
            raise ValidationError("At least one platform is required")
        return targets

    async def _dispatch(self, semaphore: asyncio.Semaphore, snapshot: ConnectionSnapshot, content: PostContent) -> FanOutResult:
        async with semaphore:
            client = self.connections.clients[snapshot.platform]
            for attempt in range(1, self.max_attempts + 1):
                try:
                    remote_id = await client.publish(snapshot.access_token, snapshot.target_id, content)
                    return FanOutResult(platform=snapshot.platform, remote_post_id=str(remote_id))
                except PlatformAPIError as e:
                    if e.kind != ErrorKind.TRANSIENT or attempt >= self.max_attempts:
                        logger.warning(
                            f"{snapshot.platform.value} post failed after {attempt} attempt(s): {e}",
                            extra={"platform": snapshot.platform.value, "school_id": snapshot.school_id},
                        )
                        return FanOutResult(platform=snapshot.platform, error=_to_platform_error(e))
                    delay = self.backoff_base * (2 ** (attempt - 1))
                    logger.info(
                        f"{snapshot.platform.value} post failed transiently ({e}); retrying in {delay:.1f}s",
                        extra={"platform": snapshot.platform.value},
                    )
                    await asyncio.sleep(delay)
                except Exception as e:
                    logger.error(f"Unexpected {snapshot.platform.value} failure: {e}", extra={"platform": snapshot.platform.value})
                    return FanOutResult(
                        platform=snapshot.platform,
                        error=PlatformError(PlatformErrorCode.REMOTE_REJECTED, str(e)),
                    )

    def _record_abandoned(self, dispatch: asyncio.Future, blog: Blog, results: Dict[Platform, FanOutResult], acting_user: User) -> None:
        """Record outcomes of a dispatch whose caller was cancelled"""
        if dispatch.cancelled():
            return
        if dispatch.exception() is not None:
            logger.error(f"Fan-out of blog {blog.id} failed after its caller left: {dispatch.exception()}", extra={"blog_id": blog.id})
            return
        for result in dispatch.result():
            results[result.platform] = result
        logger.info(f"Recording fan-out of blog {blog.id} after its caller left", extra={"blog_id": blog.id})
        self._record(blog, results, acting_user)

    def _record(self, blog: Blog, results: Dict[Platform, FanOutResult], acting_user: User) -> None:
        for platform, result in results.items():
            SOCIAL_PLATFORM_POSTS.labels(platform=platform.value, status="posted" if result.ok else "failed").inc()
        try:
            for platform, result in results.items():
                self.db.add(SocialPost(
                    blog_id=blog.id,
                    platform=platform.value,
                    status="posted" if result.ok else "failed",
                    remote_post_id=result.remote_post_id,
                    error_code=result.error.code.value if result.error else None,
                    error_message=result.error.message if result.error else None,
                    created_by=acting_user.id,
                ))
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.error(f"Could not record fan-out outcomes for blog {blog.id}: {e}", extra={"blog_id": blog.id})
