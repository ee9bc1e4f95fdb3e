"""
Social API

Connection management per school and fan-out of published blogs.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, AsyncIterator, Dict, List, Optional

from fastapi import Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from backend.auth.dependencies import get_current_active_user
from backend.core.api_version import create_versioned_router
from backend.core.exceptions import ForbiddenError
from backend.db.database import get_db
from backend.db.models import Platform, User
from backend.services.authorization_guard import Action, can_perform
from backend.services.social_connection_service import (
    SocialConnectionService,
    close_platform_clients,
    default_platform_clients,
)
from backend.services.social_fanout_service import SocialFanoutService
from backend.services.tenancy import resolve_school_id

logger = logging.getLogger(__name__)
router = create_versioned_router(prefix="/social", tags=["Social"])


class FanOutRequest(BaseModel):
    blog_id: int
    caption: str = Field("", max_length=3000)
    hashtags: List[str] = Field(default_factory=list)
    platforms: List[Platform] = Field(..., min_length=1)


class ConnectRequest(BaseModel):
    """Tokens obtained by the OAuth flow in the client application"""
    access_token: str = Field(..., min_length=1)
    refresh_token: Optional[str] = None
    expires_in: Optional[int] = Field(None, gt=0, description="Seconds until the access token expires")
    target_id: Optional[str] = Field(None, description="Page id / business account id / organization URN")
    target_name: Optional[str] = None
    school_id: Optional[int] = None


class SelectTargetRequest(BaseModel):
    target_id: str = Field(..., min_length=1, description="Organization URN, e.g. urn:li:organization:123")
    target_name: Optional[str] = None
    school_id: Optional[int] = None


async def get_platform_clients() -> AsyncIterator[Dict[Platform, Any]]:
    clients = default_platform_clients()
    try:
        yield clients
    finally:
        await close_platform_clients(clients)


def _require(user: User, action: Action) -> None:
    if not can_perform(user.role, action):
        raise ForbiddenError(f"Role {user.role} may not {action.value.replace('_', ' ')}")


@router.post("/fanout")
async def fan_out(
    request: FanOutRequest,
    current_user: User = Depends(get_current_active_user),
    db: Session = Depends(get_db),
    clients=Depends(get_platform_clients),
):
    """Post a published blog to the selected platforms; partial failure is reported per platform"""
    service = SocialFanoutService(db, connections=SocialConnectionService(db, clients=clients))
    results = await service.fan_out(
        request.blog_id, request.caption, request.hashtags, request.platforms, current_user
    )
    return {
        "blog_id": request.blog_id,
        "results": {platform.value: result.to_dict() for platform, result in results.items()},
    }


@router.get("/connections")
def list_connections(
    school_id: Optional[int] = Query(None),
    current_user: User = Depends(get_current_active_user),
    db: Session = Depends(get_db),
):
    _require(current_user, Action.MANAGE_CONNECTIONS)
    school_id = resolve_school_id(current_user, school_id)
    return {"school_id": school_id, "connections": SocialConnectionService(db, clients={}).status(school_id)}


@router.get("/connections/linkedin/organizations")
async def list_linkedin_organizations(
    school_id: Optional[int] = Query(None),
    current_user: User = Depends(get_current_active_user),
    db: Session = Depends(get_db),
    clients=Depends(get_platform_clients),
):
    """Organizations the connected LinkedIn member can post as"""
    _require(current_user, Action.MANAGE_CONNECTIONS)
    school_id = resolve_school_id(current_user, school_id)
    organizations = await SocialConnectionService(db, clients=clients).list_linkedin_organizations(school_id)
    return {"organizations": organizations}


@router.post("/connections/linkedin/select-target")
def select_linkedin_target(
    request: SelectTargetRequest,
    current_user: User = Depends(get_current_active_user),
    db: Session = Depends(get_db),
):
    _require(current_user, Action.MANAGE_CONNECTIONS)
    school_id = resolve_school_id(current_user, request.school_id)
    service = SocialConnectionService(db, clients={})
    service.select_target(school_id, Platform.LINKEDIN, request.target_id, request.target_name)
    return service.status(school_id)[Platform.LINKEDIN.value]


@router.post("/connections/{platform}")
def connect_platform(
    platform: Platform,
    request: ConnectRequest,
    current_user: User = Depends(get_current_active_user),
    db: Session = Depends(get_db),
):
    _require(current_user, Action.MANAGE_CONNECTIONS)
    school_id = resolve_school_id(current_user, request.school_id)
    expires_at = None
    if request.expires_in:
        expires_at = datetime.now(timezone.utc) + timedelta(seconds=request.expires_in)

    service = SocialConnectionService(db, clients={})
    service.connect(
        school_id,
        platform,
        access_token=request.access_token,
        refresh_token=request.refresh_token,
        expires_at=expires_at,
        target_id=request.target_id,
        metadata={"target_name": request.target_name} if request.target_name else None,
    )
    return service.status(school_id)[platform.value]


@router.delete("/connections/{platform}")
def disconnect_platform(
    platform: Platform,
    school_id: Optional[int] = Query(None),
    current_user: User = Depends(get_current_active_user),
    db: Session = Depends(get_db),
):
    _require(current_user, Action.MANAGE_CONNECTIONS)
    school_id = resolve_school_id(current_user, school_id)
    service = SocialConnectionService(db, clients={})
    service.disconnect(school_id, platform)
    return service.status(school_id)[platform.value]


@router.post("/token-refresh")
async def refresh_tokens(
    window_hours: Optional[int] = Query(None, ge=0, le=24 * 60),
    current_user: User = Depends(get_current_active_user),
    db: Session = Depends(get_db),
    clients=Depends(get_platform_clients),
):
    """Refresh every token expiring within the window (defaults to the configured window)"""
    _require(current_user, Action.REFRESH_TOKENS)
    return await SocialConnectionService(db, clients=clients).refresh_expiring(window_hours)
