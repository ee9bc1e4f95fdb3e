"""
Tests for social fan-out

Independent per-platform outcomes, retry of transient failures only, and
recording of every outcome.
"""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest
from prometheus_client import REGISTRY

from backend.core.exceptions import (
    ForbiddenError,
    InvalidTransitionError,
    PlatformErrorCode,
    ValidationError,
)
from backend.db.models import BlogStatus, Platform, SocialPost
from backend.integrations.platform_base import ErrorKind, PlatformAPIError
from backend.services.social_connection_service import SocialConnectionService
from backend.services.social_fanout_service import SocialFanoutService
from backend.tests.fixtures.fakes import fresh_grant


def _in(hours: float) -> datetime:
    return datetime.now(timezone.utc) + timedelta(hours=hours)


@pytest.fixture
def connections(test_db, platform_clients):
    return SocialConnectionService(test_db, clients=platform_clients)


@pytest.fixture
def fanout(test_db, connections):
    return SocialFanoutService(test_db, connections=connections, backoff_base=0)


@pytest.fixture
def published_blog(make_blog, school_a):
    return make_blog(school_a, BlogStatus.PUBLISHED_WP)


def _connect_all(connections, school):
    connections.connect(school.id, "facebook", "fb-token", expires_at=_in(24 * 60), target_id="page-1")
    connections.connect(school.id, "instagram", "ig-token", expires_at=_in(24 * 60), target_id="ig-1")
    connections.connect(school.id, "linkedin", "li-token", refresh_token="li-refresh", expires_at=_in(24 * 60), target_id="urn:li:organization:1")


class TestFanOutOutcomes:
    """One platform's failure never affects the others"""

    @pytest.mark.asyncio
    async def test_partial_success_with_unconnected_platform(self, fanout, connections, platform_clients, test_db, published_blog, school_a, marketer_user):
        connections.connect(school_a.id, "facebook", "fb-token", expires_at=_in(24 * 60), target_id="page-1")
        connections.connect(school_a.id, "linkedin", "li-token", expires_at=_in(24 * 60), target_id="urn:li:organization:1")

        results = await fanout.fan_out(
            published_blog.id, "Our solar car won!", ["science", "#STEM"],
            ["facebook", "instagram", "linkedin"], marketer_user,
        )

        assert list(results) == [Platform.FACEBOOK, Platform.INSTAGRAM, Platform.LINKEDIN]
        assert results[Platform.FACEBOOK].ok
        assert results[Platform.FACEBOOK].remote_post_id == "facebook-post-1"
        assert results[Platform.LINKEDIN].ok
        assert results[Platform.INSTAGRAM].error.code == PlatformErrorCode.NOT_CONNECTED
        assert platform_clients[Platform.INSTAGRAM].publish_calls == []

        token, target, content = platform_clients[Platform.FACEBOOK].publish_calls[0]
        assert (token, target) == ("fb-token", "page-1")
        assert content.text() == "Our solar car won!\n\n#science #STEM"
        assert content.link == published_blog.wordpress_url

        rows = test_db.query(SocialPost).filter_by(blog_id=published_blog.id).order_by(SocialPost.platform).all()
        assert [(r.platform, r.status, r.error_code) for r in rows] == [
            ("facebook", "posted", None),
            ("instagram", "failed", "not_connected"),
            ("linkedin", "posted", None),
        ]

    @pytest.mark.asyncio
    async def test_failed_refresh_reports_auth_expired(self, fanout, connections, platform_clients, published_blog, school_a, admin_user):
        _connect_all(connections, school_a)
        connections.connect(school_a.id, "linkedin", "li-token", refresh_token="li-refresh", expires_at=_in(-1), target_id="urn:li:organization:1")
        platform_clients[Platform.LINKEDIN].refresh_result = PlatformAPIError("invalid_grant", kind=ErrorKind.AUTH, status_code=400)

        results = await fanout.fan_out(published_blog.id, "caption", [], ["facebook", "instagram", "linkedin"], admin_user)

        assert results[Platform.FACEBOOK].ok
        assert results[Platform.INSTAGRAM].ok
        assert results[Platform.LINKEDIN].error.code == PlatformErrorCode.AUTH_EXPIRED
        assert platform_clients[Platform.LINKEDIN].publish_calls == []

    @pytest.mark.asyncio
    async def test_refreshed_token_is_used(self, fanout, connections, platform_clients, published_blog, school_a, school_user):
        connections.connect(school_a.id, "linkedin", "old-token", refresh_token="li-refresh", expires_at=_in(1), target_id="urn:li:organization:1")
        platform_clients[Platform.LINKEDIN].refresh_result = fresh_grant("new-token")

        results = await fanout.fan_out(published_blog.id, "caption", [], ["linkedin"], school_user)

        assert results[Platform.LINKEDIN].ok
        assert platform_clients[Platform.LINKEDIN].publish_calls[0][0] == "new-token"

    @pytest.mark.asyncio
    async def test_duplicate_platforms_posted_once(self, fanout, connections, platform_clients, published_blog, school_a, admin_user):
        _connect_all(connections, school_a)

        results = await fanout.fan_out(published_blog.id, "caption", [], ["facebook", "FACEBOOK", Platform.FACEBOOK], admin_user)

        assert list(results) == [Platform.FACEBOOK]
        assert len(platform_clients[Platform.FACEBOOK].publish_calls) == 1

    @pytest.mark.asyncio
    async def test_caption_defaults_to_meta_description(self, fanout, connections, platform_clients, published_blog, school_a, admin_user):
        _connect_all(connections, school_a)

        await fanout.fan_out(published_blog.id, "", [], ["facebook"], admin_user)

        content = platform_clients[Platform.FACEBOOK].publish_calls[0][2]
        assert content.caption == "Solar car success"
        assert content.image_url == "https://cdn.schoolchamps.example/solar.jpg"


class TestFanOutRetries:
    """Only transient failures are retried"""

    @pytest.mark.asyncio
    async def test_transient_failure_retried(self, fanout, connections, platform_clients, published_blog, school_a, admin_user):
        _connect_all(connections, school_a)
        client = platform_clients[Platform.FACEBOOK]
        client.publish_results = [PlatformAPIError("503", kind=ErrorKind.TRANSIENT, status_code=503), "fb-123"]

        results = await fanout.fan_out(published_blog.id, "caption", [], ["facebook"], admin_user)

        assert results[Platform.FACEBOOK].remote_post_id == "fb-123"
        assert len(client.publish_calls) == 2

    @pytest.mark.asyncio
    async def test_transient_failures_exhaust_attempts(self, fanout, connections, platform_clients, published_blog, school_a, admin_user):
        _connect_all(connections, school_a)
        client = platform_clients[Platform.INSTAGRAM]
        client.publish_results = [PlatformAPIError("timeout", kind=ErrorKind.TRANSIENT) for _ in range(5)]

        results = await fanout.fan_out(published_blog.id, "caption", [], ["instagram", "facebook"], admin_user)

        assert results[Platform.INSTAGRAM].error.code == PlatformErrorCode.TIMEOUT
        assert len(client.publish_calls) == 3
        assert results[Platform.FACEBOOK].ok

    @pytest.mark.asyncio
    async def test_auth_failure_not_retried(self, fanout, connections, platform_clients, published_blog, school_a, admin_user):
        _connect_all(connections, school_a)
        client = platform_clients[Platform.LINKEDIN]
        client.publish_results = [PlatformAPIError("401", kind=ErrorKind.AUTH, status_code=401)]

        results = await fanout.fan_out(published_blog.id, "caption", [], ["linkedin"], admin_user)

        assert results[Platform.LINKEDIN].error.code == PlatformErrorCode.AUTH_EXPIRED
        assert results[Platform.LINKEDIN].error.status_code == 401
        assert len(client.publish_calls) == 1

    @pytest.mark.asyncio
    async def test_rejection_not_retried(self, fanout, connections, platform_clients, published_blog, school_a, admin_user):
        _connect_all(connections, school_a)
        client = platform_clients[Platform.FACEBOOK]
        client.publish_results = [PlatformAPIError("duplicate post", kind=ErrorKind.REJECTED, status_code=400)]

        results = await fanout.fan_out(published_blog.id, "caption", [], ["facebook"], admin_user)

        assert results[Platform.FACEBOOK].error.code == PlatformErrorCode.REMOTE_REJECTED
        assert len(client.publish_calls) == 1


class TestFanOutPreconditions:

    @pytest.mark.asyncio
    async def test_blog_must_be_published(self, fanout, make_blog, school_a, admin_user):
        blog = make_blog(school_a, BlogStatus.APPROVED_SCHOOL)
        with pytest.raises(InvalidTransitionError):
            await fanout.fan_out(blog.id, "caption", [], ["facebook"], admin_user)

    @pytest.mark.asyncio
    async def test_writer_cannot_fan_out(self, fanout, published_blog, writer_user):
        with pytest.raises(ForbiddenError):
            await fanout.fan_out(published_blog.id, "caption", [], ["facebook"], writer_user)

    @pytest.mark.asyncio
    async def test_school_cannot_share_other_school_blog(self, fanout, published_blog, other_school_user):
        with pytest.raises(ForbiddenError):
            await fanout.fan_out(published_blog.id, "caption", [], ["facebook"], other_school_user)

    @pytest.mark.asyncio
    async def test_platform_list_validated(self, fanout, published_blog, admin_user):
        with pytest.raises(ValidationError):
            await fanout.fan_out(published_blog.id, "caption", [], ["tiktok"], admin_user)
        with pytest.raises(ValidationError):
            await fanout.fan_out(published_blog.id, "caption", [], [], admin_user)


class TestFanOutCancellation:
    """Posts already on their way finish and are recorded when the caller leaves"""

    @pytest.mark.asyncio
    async def test_outcomes_recorded_after_caller_cancelled(self, fanout, connections, platform_clients, test_db, published_blog, school_a, admin_user):
        _connect_all(connections, school_a)
        gate = asyncio.Event()
        platform_clients[Platform.FACEBOOK].gate = gate

        caller = asyncio.create_task(
            fanout.fan_out(published_blog.id, "We won", [], ["facebook", "linkedin"], admin_user)
        )
        await platform_clients[Platform.FACEBOOK].started.wait()
        caller.cancel()
        with pytest.raises(asyncio.CancelledError):
            await caller

        gate.set()
        for _ in range(100):
            if test_db.query(SocialPost).filter_by(blog_id=published_blog.id).count() == 2:
                break
            await asyncio.sleep(0.01)

        rows = test_db.query(SocialPost).filter_by(blog_id=published_blog.id).order_by(SocialPost.platform).all()
        assert [(r.platform, r.status, r.remote_post_id) for r in rows] == [
            ("facebook", "posted", "facebook-post-1"),
            ("linkedin", "posted", "linkedin-post-1"),
        ]

    @pytest.mark.asyncio
    async def test_outcomes_counted_per_platform(self, fanout, connections, platform_clients, published_blog, school_a, admin_user):
        connections.connect(school_a.id, "facebook", "fb-token", expires_at=_in(24 * 60), target_id="page-1")
        posted = REGISTRY.get_sample_value("social_platform_posts_total", {"platform": "facebook", "status": "posted"}) or 0.0
        failed = REGISTRY.get_sample_value("social_platform_posts_total", {"platform": "instagram", "status": "failed"}) or 0.0

        await fanout.fan_out(published_blog.id, "We won", [], ["facebook", "instagram"], admin_user)

        assert REGISTRY.get_sample_value("social_platform_posts_total", {"platform": "facebook", "status": "posted"}) == posted + 1
        assert REGISTRY.get_sample_value("social_platform_posts_total", {"platform": "instagram", "status": "failed"}) == failed + 1
