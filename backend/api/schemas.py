"""
Shared response models for submissions and blogs
"""
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class SubmissionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    school_id: int
    title: str
    description: str
    category: str
    attachments: List[str] = Field(default_factory=list)
    status: str
    created_by: int
    version: int
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class BlogResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    submission_id: int
    title: str
    content: str
    slug: str
    meta_title: Optional[str] = None
    meta_description: Optional[str] = None
    seo_keywords: List[str] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    category: Optional[str] = None
    featured_image: Optional[str] = None
    reading_time: int
    status: str
    assigned_school_id: int
    created_by: int
    wordpress_post_id: Optional[int] = None
    wordpress_url: Optional[str] = None
    published_at: Optional[datetime] = None
    version: int
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
