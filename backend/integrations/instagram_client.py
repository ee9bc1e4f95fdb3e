"""
Instagram Business client

Instagram publishing is two calls: create a media container for the image,
then publish the container.
"""
import logging
from typing import Optional

from backend.core.http_client import HTTPClient
from backend.integrations.constants import IG_GRAPH_URL
from backend.integrations.facebook_client import FacebookClient
from backend.integrations.platform_base import (
    ErrorKind,
    PlatformAPIError,
    PostContent,
    TokenGrant,
    default_platform_http,
    send,
)

logger = logging.getLogger(__name__)


class InstagramClient:
    platform = "instagram"

    def __init__(self, http: Optional[HTTPClient] = None, graph_url: str = IG_GRAPH_URL):
        self.http = http or default_platform_http()
        self.graph_url = graph_url
        # Instagram Business accounts authenticate through Facebook Login
        self._token_exchange = FacebookClient(http=self.http, graph_url=graph_url)

    async def publish(self, access_token: str, target_id: Optional[str], content: PostContent) -> str:
        if not target_id:
            raise PlatformAPIError("No Instagram business account linked", kind=ErrorKind.REJECTED)
        if not content.image_url:
            raise PlatformAPIError("Instagram posts require an image", kind=ErrorKind.REJECTED)

        container = await send(
            self.http,
            self.platform,
            "POST",
            f"{self.graph_url}/{target_id}/media",
            data={"image_url": content.image_url, "caption": content.text(), "access_token": access_token},
        )
        creation_id = container.get("id")
        if not creation_id:
            raise PlatformAPIError("Instagram did not return a media container", kind=ErrorKind.REJECTED, response_data=container)

        published = await send(
            self.http,
            self.platform,
            "POST",
            f"{self.graph_url}/{target_id}/media_publish",
            data={"creation_id": creation_id, "access_token": access_token},
        )
        media_id = published.get("id")
        if not media_id:
            raise PlatformAPIError("Instagram did not return a media id", kind=ErrorKind.REJECTED, response_data=published)
        logger.info(f"Published Instagram media {media_id}", extra={"platform": self.platform})
        return media_id

    async def refresh(self, access_token: str, refresh_token: Optional[str] = None) -> TokenGrant:
        return await self._token_exchange.refresh(access_token, refresh_token)
