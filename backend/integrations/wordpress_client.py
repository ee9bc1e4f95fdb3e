"""
WordPress REST client

Creates posts on the SchoolChamps WordPress site using an Application Password
(Basic auth). Falls back to index.php?rest_route=... when /wp-json/ is blocked
by the host. Featured images are side-loaded into the media library and
categories and tags are resolved to term ids before the post is created.
"""
import base64
import logging
import mimetypes
import posixpath
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional
from urllib.parse import urlencode, urlparse

import httpx

from backend.core.config import get_settings
from backend.core.http_client import HTTPClient, HTTPClientConfig
from backend.integrations.constants import WORDPRESS_REST_PREFIX

logger = logging.getLogger(__name__)


class WordPressError(Exception):
    """WordPress rejected the request or could not be reached"""

    def __init__(self, message: str, status_code: Optional[int] = None, body: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


@dataclass
class WordPressPost:
    post_id: int
    link: str


def wordpress_http_config(**overrides) -> HTTPClientConfig:
    """
    Retry policy for WordPress calls.

    Creating a post is not idempotent, so only failures where WordPress cannot
    have processed the request are retried: connection failures, pool
    exhaustion and 429/503. A read timeout is returned to the caller.
    """
    overrides.setdefault("retry_on_status", [429, 503])
    overrides.setdefault("retry_on_exceptions", (httpx.ConnectError, httpx.ConnectTimeout, httpx.PoolTimeout))
    return HTTPClientConfig(**overrides)


class WordPressClient:

    def __init__(
        self,
        base_url: Optional[str] = None,
        username: Optional[str] = None,
        app_password: Optional[str] = None,
        http: Optional[HTTPClient] = None,
        default_status: Optional[str] = None,
    ):
        settings = get_settings()
        self.base = (base_url if base_url is not None else settings.wordpress_base_url).rstrip("/")
        user = username if username is not None else settings.wordpress_username
        password = app_password if app_password is not None else settings.wordpress_app_password
        token = base64.b64encode(f"{user}:{password}".encode("utf-8")).decode("utf-8")
        self._auth = {"Authorization": f"Basic {token}", "Accept": "application/json"}
        self.default_status = default_status or settings.wordpress_default_status
        self.http = http or HTTPClient(wordpress_http_config())

    def _urls(self, path: str) -> List[str]:
        if not path.startswith("/"):
            path = "/" + path
        canonical = f"{self.base}/wp-json{path}"
        alternate = f"{self.base}/index.php?" + urlencode({"rest_route": path})
        return [canonical, alternate]

    async def _request(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        if not self.base:
            raise WordPressError("WordPress base URL not configured")

        last_error: Optional[WordPressError] = None
        for index, url in enumerate(self._urls(path)):
            try:
                response = await self.http.request(method, url, headers=self._auth, **kwargs)
            except httpx.HTTPError as e:
                raise WordPressError(f"WordPress unreachable: {e}") from e

            if index == 0 and response.status_code in (403, 404):
                logger.info(f"WordPress REST route {path} returned {response.status_code}; trying rest_route fallback")
                last_error = WordPressError(
                    f"WP API error {response.status_code}", response.status_code, response.text[:500]
                )
                continue
            if response.status_code >= 400:
                raise WordPressError(
                    f"WP API error {response.status_code}", response.status_code, response.text[:500]
                )
            return response.json() if response.content else {}

        raise last_error

    async def ensure_terms(self, names: Iterable[str], taxonomy: str = "tags") -> List[int]:
        """Resolve category or tag names to ids, creating missing terms"""
        ids: List[int] = []
        for name in names or []:
            name = (name or "").strip()
            if not name:
                continue
            path = f"{WORDPRESS_REST_PREFIX}/{taxonomy}"
            found = await self._request("GET", path, params={"search": name, "per_page": 100})
            match = next((t for t in found or [] if (t.get("name") or "").strip().lower() == name.lower()), None)
            if match is None:
                match = await self._request("POST", path, json={"name": name})
            ids.append(int(match["id"]))
        return ids

    async def upload_media(self, image_url: str, alt_text: str = "") -> int:
        """
        Copy a remote image into the WordPress media library.

        Raises:
            WordPressError: the image could not be fetched or WordPress refused it
        """
        try:
            image = await self.http.get(image_url)
        except httpx.HTTPError as e:
            raise WordPressError(f"Could not fetch image {image_url}: {e}") from e
        if image.status_code >= 400 or not image.content:
            raise WordPressError(f"Could not fetch image {image_url}", image.status_code)

        filename = posixpath.basename(urlparse(image_url).path) or "featured-image"
        content_type = image.headers.get("content-type", "").split(";")[0].strip()
        content_type = content_type or mimetypes.guess_type(filename)[0] or "application/octet-stream"
        if "." not in filename:
            filename += mimetypes.guess_extension(content_type) or ""

        media = await self._request(
            "POST",
            f"{WORDPRESS_REST_PREFIX}/media",
            files={"file": (filename, image.content, content_type)},
            data={"alt_text": alt_text} if alt_text else None,
        )
        if not media.get("id"):
            raise WordPressError("WordPress media response did not include an id")
        return int(media["id"])

    async def create_post(
        self,
        title: str,
        content: str,
        slug: Optional[str] = None,
        excerpt: Optional[str] = None,
        tags: Optional[List[str]] = None,
        categories: Optional[List[str]] = None,
        featured_media: Optional[int] = None,
        featured_image_url: Optional[str] = None,
        meta_title: Optional[str] = None,
        seo_keywords: Optional[List[str]] = None,
    ) -> WordPressPost:
        """
        Create a post and return its id and public link.

        A featured image that cannot be side-loaded is skipped; the post is
        still created without it.

        Raises:
            WordPressError: WordPress did not acknowledge the post
        """
        body: Dict[str, Any] = {"title": title, "content": content, "status": self.default_status}
        if slug:
            body["slug"] = slug
        if excerpt:
            body["excerpt"] = excerpt
        if categories:
            body["categories"] = await self.ensure_terms(categories, taxonomy="categories")
        if tags:
            body["tags"] = await self.ensure_terms(tags, taxonomy="tags")

        if not featured_media and featured_image_url:
            try:
                featured_media = await self.upload_media(featured_image_url, alt_text=title)
            except WordPressError as e:
                logger.warning(f"Featured image {featured_image_url} not uploaded: {e}")
        if featured_media:
            body["featured_media"] = featured_media

        # Yoast SEO fields; WordPress ignores meta keys that are not registered
        meta: Dict[str, str] = {}
        if meta_title:
            meta["_yoast_wpseo_title"] = meta_title
        if excerpt:
            meta["_yoast_wpseo_metadesc"] = excerpt
        if seo_keywords:
            meta["_yoast_wpseo_focuskw"] = seo_keywords[0]
        if meta:
            body["meta"] = meta

        data = await self._request("POST", f"{WORDPRESS_REST_PREFIX}/posts", json=body)
        post_id = data.get("id")
        if not post_id:
            raise WordPressError("WordPress response did not include a post id")
        logger.info(f"Created WordPress post {post_id}", extra={"wordpress_post_id": post_id})
        return WordPressPost(post_id=int(post_id), link=data.get("link") or f"{self.base}/?p={post_id}")


_client: Optional[WordPressClient] = None


def get_wordpress_client() -> WordPressClient:
    global _client
    if _client is None:
        _client = WordPressClient()
    return _client
