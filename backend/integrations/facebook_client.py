"""
Facebook Page client

Posts to a school's Facebook Page through the Graph API and extends page
tokens with the fb_exchange_token grant.
"""
import logging
from typing import Optional

from backend.core.config import get_settings
from backend.core.http_client import HTTPClient
from backend.integrations.constants import FB_GRAPH_URL
from backend.integrations.platform_base import (
    ErrorKind,
    PlatformAPIError,
    PostContent,
    TokenGrant,
    default_platform_http,
    send,
)

logger = logging.getLogger(__name__)


class FacebookClient:
    platform = "facebook"

    def __init__(self, http: Optional[HTTPClient] = None, graph_url: str = FB_GRAPH_URL):
        settings = get_settings()
        self.http = http or default_platform_http()
        self.graph_url = graph_url
        self.app_id = settings.facebook_app_id
        self.app_secret = settings.facebook_app_secret

    async def publish(self, access_token: str, target_id: Optional[str], content: PostContent) -> str:
        """Create a feed post on the page; returns the Graph post id"""
        if not target_id:
            raise PlatformAPIError("No Facebook Page selected", kind=ErrorKind.REJECTED)

        data = {"message": content.text(), "access_token": access_token}
        if content.link:
            data["link"] = content.link

        result = await send(self.http, self.platform, "POST", f"{self.graph_url}/{target_id}/feed", data=data)
        post_id = result.get("id")
        if not post_id:
            raise PlatformAPIError("Facebook did not return a post id", kind=ErrorKind.REJECTED, response_data=result)
        logger.info(f"Published Facebook post {post_id} to page {target_id}", extra={"platform": self.platform})
        return post_id

    async def refresh(self, access_token: str, refresh_token: Optional[str] = None) -> TokenGrant:
        """Exchange the current token for a fresh long-lived one"""
        if not self.app_id or not self.app_secret:
            raise PlatformAPIError("Facebook app credentials not configured", kind=ErrorKind.AUTH)
        result = await send(
            self.http,
            self.platform,
            "GET",
            f"{self.graph_url}/oauth/access_token",
            params={
                "grant_type": "fb_exchange_token",
                "client_id": self.app_id,
                "client_secret": self.app_secret,
                "fb_exchange_token": access_token,
            },
        )
        return TokenGrant.from_response(result, previous_refresh_token=refresh_token)
