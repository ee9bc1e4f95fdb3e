"""
LinkedIn API Client

Posts on behalf of a school's LinkedIn organization page using the versioned
REST Posts API and refreshes member tokens with the refresh_token grant.
Organization posting needs the w_organization_social scope and an admin role
on the page.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from backend.core.config import get_settings
from backend.core.http_client import HTTPClient
from backend.integrations.constants import (
    LINKEDIN_API_URL,
    LINKEDIN_API_VERSION,
    LINKEDIN_SCOPES,
    LINKEDIN_TOKEN_URL,
)
from backend.integrations.platform_base import (
    ErrorKind,
    PlatformAPIError,
    PostContent,
    TokenGrant,
    default_platform_http,
    send,
    send_raw,
)

logger = logging.getLogger(__name__)


@dataclass
class LinkedInConfig:
    """LinkedIn API configuration"""
    client_id: str
    client_secret: str
    redirect_uri: str = ""
    base_url: str = LINKEDIN_API_URL
    token_url: str = LINKEDIN_TOKEN_URL
    api_version: str = LINKEDIN_API_VERSION
    scopes: List[str] = field(default_factory=lambda: list(LINKEDIN_SCOPES))


class LinkedInClient:
    """
    LinkedIn organization posting client.

    Target ids are organization URNs (urn:li:organization:<id>) chosen by the
    school after connecting.
    """

    platform = "linkedin"

    def __init__(self, config: Optional[LinkedInConfig] = None, http: Optional[HTTPClient] = None):
        if config is None:
            settings = get_settings()
            config = LinkedInConfig(
                client_id=settings.linkedin_client_id or "",
                client_secret=settings.linkedin_client_secret or "",
                redirect_uri=settings.linkedin_redirect_uri or "",
            )
        self.config = config
        self.http = http or default_platform_http()

        if not self.config.client_id or not self.config.client_secret:
            logger.warning("LinkedIn OAuth credentials not provided. Set LINKEDIN_CLIENT_ID and LINKEDIN_CLIENT_SECRET environment variables.")

    def _headers(self, access_token: str) -> Dict[str, str]:
        return {
            'Authorization': f'Bearer {access_token}',
            'LinkedIn-Version': self.config.api_version,
            'X-Restli-Protocol-Version': '2.0.0',
        }

    async def publish(self, access_token: str, target_id: Optional[str], content: PostContent) -> str:
        """Create an organization post; returns the post URN"""
        if not target_id:
            raise PlatformAPIError("No LinkedIn organization selected", kind=ErrorKind.REJECTED)

        post_data: Dict[str, Any] = {
            "author": target_id,
            "commentary": content.text(),
            "visibility": "PUBLIC",
            "distribution": {
                "feedDistribution": "MAIN_FEED",
                "targetEntities": [],
                "thirdPartyDistributionChannels": [],
            },
            "lifecycleState": "PUBLISHED",
            "isReshareDisabledByAuthor": False,
        }
        if content.link:
            post_data["content"] = {"article": {"source": content.link, "title": content.caption[:200]}}

        response = await send_raw(
            self.http,
            self.platform,
            "POST",
            f"{self.config.base_url}/rest/posts",
            json=post_data,
            headers=self._headers(access_token),
        )
        post_urn = response.headers.get("x-restli-id") or (response.json().get("id") if response.content else None)
        if not post_urn:
            raise PlatformAPIError("LinkedIn did not return a post id", kind=ErrorKind.REJECTED)
        logger.info(f"Published LinkedIn post {post_urn} as {target_id}", extra={"platform": self.platform})
        return post_urn

    async def list_organizations(self, access_token: str) -> List[Dict[str, str]]:
        """Organizations the member administers, for target selection"""
        result = await send(
            self.http,
            self.platform,
            "GET",
            f"{self.config.base_url}/rest/organizationAcls",
            params={"q": "roleAssignee", "role": "ADMINISTRATOR", "state": "APPROVED"},
            headers=self._headers(access_token),
        )
        return [
            {"urn": element["organization"], "name": element.get("organizationName", "")}
            for element in result.get("elements", [])
            if element.get("organization")
        ]

    async def refresh(self, access_token: str, refresh_token: Optional[str] = None) -> TokenGrant:
        """Refresh the member token; LinkedIn rotates refresh tokens only sometimes"""
        if not refresh_token:
            raise PlatformAPIError("LinkedIn connection has no refresh token", kind=ErrorKind.AUTH)
        result = await send(
            self.http,
            self.platform,
            "POST",
            self.config.token_url,
            data={
                'grant_type': 'refresh_token',
                'refresh_token': refresh_token,
                'client_id': self.config.client_id,
                'client_secret': self.config.client_secret,
            },
            headers={'Content-Type': 'application/x-www-form-urlencoded'},
        )
        return TokenGrant.from_response(result, previous_refresh_token=refresh_token)
