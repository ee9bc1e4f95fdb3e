"""
Blogs API

Editing, review transitions and publication of blogs.
"""

import logging
from typing import Any, Dict, List, Optional

from fastapi import Depends, Query
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session

from backend.api.schemas import BlogResponse
from backend.auth.dependencies import get_current_active_user
from backend.core.api_version import create_versioned_router
from backend.core.exceptions import PublishDelegationRequired
from backend.db.database import get_db
from backend.db.models import BlogStatus, User
from backend.integrations.wordpress_client import get_wordpress_client
from backend.services.authorization_guard import EntityType
from backend.services.publish_service import PublishService
from backend.services.workflow_service import get_workflow_service

logger = logging.getLogger(__name__)
router = create_versioned_router(prefix="/blogs", tags=["Blogs"])


class BlogUpdateRequest(BaseModel):
    """Partial blog content update"""
    model_config = ConfigDict(from_attributes=True)

    title: Optional[str] = Field(None, min_length=1, max_length=500)
    content: Optional[str] = None
    slug: Optional[str] = Field(None, max_length=500)
    meta_title: Optional[str] = Field(None, max_length=500)
    meta_description: Optional[str] = None
    seo_keywords: Optional[List[str]] = None
    tags: Optional[List[str]] = None
    category: Optional[str] = None
    featured_image: Optional[str] = None
    reading_time: Optional[int] = Field(None, ge=1)
    version: Optional[int] = Field(None, description="Expected version for optimistic locking")


class TransitionRequest(BaseModel):
    to_state: BlogStatus


class PublishResponse(BaseModel):
    blog: BlogResponse
    wordpress_url: Optional[str]
    wordpress_post_id: Optional[int]


def get_cms_client():
    return get_wordpress_client()


async def _publish(db: Session, blog_id: int, current_user: User, cms_client) -> PublishResponse:
    blog = await PublishService(db, cms_client=cms_client).publish(blog_id, current_user)
    return PublishResponse(
        blog=BlogResponse.model_validate(blog),
        wordpress_url=blog.wordpress_url,
        wordpress_post_id=blog.wordpress_post_id,
    )


@router.get("", response_model=List[BlogResponse])
def list_blogs(
    status_filter: Optional[str] = Query(None, alias="status"),
    school_id: Optional[int] = Query(None),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    current_user: User = Depends(get_current_active_user),
    db: Session = Depends(get_db),
):
    blogs = get_workflow_service().list_blogs(
        db, current_user, status=status_filter, school_id=school_id, limit=limit, offset=offset
    )
    return [BlogResponse.model_validate(b) for b in blogs]


@router.get("/{blog_id}", response_model=BlogResponse)
def get_blog(
    blog_id: int,
    current_user: User = Depends(get_current_active_user),
    db: Session = Depends(get_db),
):
    return BlogResponse.model_validate(get_workflow_service().get_blog(db, blog_id, current_user))


@router.put("/{blog_id}", response_model=BlogResponse)
def update_blog(
    blog_id: int,
    request: BlogUpdateRequest,
    current_user: User = Depends(get_current_active_user),
    db: Session = Depends(get_db),
):
    fields: Dict[str, Any] = request.model_dump(exclude_unset=True)
    blog = get_workflow_service().update_blog_content(db, blog_id, current_user, fields)
    return BlogResponse.model_validate(blog)


@router.post("/{blog_id}/transition")
async def transition_blog(
    blog_id: int,
    request: TransitionRequest,
    current_user: User = Depends(get_current_active_user),
    db: Session = Depends(get_db),
    cms_client=Depends(get_cms_client),
):
    """Move a blog through review; a move to published_wp runs the publish flow"""
    try:
        blog = get_workflow_service().request_transition(
            db, EntityType.BLOG, blog_id, request.to_state, current_user
        )
    except PublishDelegationRequired:
        return await _publish(db, blog_id, current_user, cms_client)
    return BlogResponse.model_validate(blog)


@router.post("/{blog_id}/publish", response_model=PublishResponse)
async def publish_blog(
    blog_id: int,
    current_user: User = Depends(get_current_active_user),
    db: Session = Depends(get_db),
    cms_client=Depends(get_cms_client),
):
    """Publish an approved blog to WordPress, paying the publish cost"""
    return await _publish(db, blog_id, current_user, cms_client)
