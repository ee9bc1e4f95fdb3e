"""
Submissions API

Schools pitch stories here; writers turn them into blog drafts.
"""

import logging
from typing import List, Optional

from fastapi import Depends, Query, status
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session

from backend.api.schemas import BlogResponse, SubmissionResponse
from backend.auth.dependencies import get_current_active_user
from backend.core.api_version import create_versioned_router
from backend.db.database import get_db
from backend.db.models import SubmissionCategory, User
from backend.integrations.draft_generator import get_draft_generator
from backend.services.workflow_service import get_workflow_service

logger = logging.getLogger(__name__)
router = create_versioned_router(prefix="/submissions", tags=["Submissions"])


class SubmissionCreateRequest(BaseModel):
    """Request to create a submission"""
    model_config = ConfigDict(from_attributes=True)

    title: str = Field(..., min_length=1, max_length=500)
    description: str = Field(..., min_length=1)
    category: SubmissionCategory = Field(SubmissionCategory.OTHER)
    attachments: List[str] = Field(default_factory=list, description="Ordered blob references")
    school_id: Optional[int] = Field(None, description="Required for admins; schools default to their own")


@router.post("", response_model=SubmissionResponse, status_code=status.HTTP_201_CREATED)
def create_submission(
    request: SubmissionCreateRequest,
    current_user: User = Depends(get_current_active_user),
    db: Session = Depends(get_db),
):
    submission = get_workflow_service().create_submission(
        db,
        current_user,
        title=request.title,
        description=request.description,
        category=request.category.value,
        attachments=request.attachments,
        school_id=request.school_id,
    )
    return SubmissionResponse.model_validate(submission)


@router.get("", response_model=List[SubmissionResponse])
def list_submissions(
    status_filter: Optional[str] = Query(None, alias="status"),
    school_id: Optional[int] = Query(None),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    current_user: User = Depends(get_current_active_user),
    db: Session = Depends(get_db),
):
    submissions = get_workflow_service().list_submissions(
        db, current_user, status=status_filter, school_id=school_id, limit=limit, offset=offset
    )
    return [SubmissionResponse.model_validate(s) for s in submissions]


@router.get("/{submission_id}", response_model=SubmissionResponse)
def get_submission(
    submission_id: int,
    current_user: User = Depends(get_current_active_user),
    db: Session = Depends(get_db),
):
    return SubmissionResponse.model_validate(get_workflow_service().get_submission(db, submission_id, current_user))


@router.post("/{submission_id}/generate-draft", response_model=BlogResponse, status_code=status.HTTP_201_CREATED)
async def generate_draft(
    submission_id: int,
    current_user: User = Depends(get_current_active_user),
    db: Session = Depends(get_db),
    generator=Depends(get_draft_generator),
):
    """Generate the blog draft for a submission with the external generator"""
    blog = await get_workflow_service().generate_draft(db, submission_id, current_user, generator=generator)
    return BlogResponse.model_validate(blog)
