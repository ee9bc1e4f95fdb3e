"""
Common pieces of the social platform clients.

Each client publishes one post with an already-decrypted access token and can
refresh that token. Failures are raised as PlatformAPIError with a kind that
the fan-out orchestrator uses to decide on retries.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

import httpx

from backend.core.http_client import HTTPClient, HTTPClientConfig


class ErrorKind(str, Enum):
    AUTH = "auth"
    TRANSIENT = "transient"
    REJECTED = "rejected"


class PlatformAPIError(Exception):
    """Social platform API failure"""

    def __init__(
        self,
        message: str,
        kind: ErrorKind = ErrorKind.REJECTED,
        status_code: Optional[int] = None,
        response_data: Optional[Dict] = None,
    ):
        super().__init__(message)
        self.kind = kind
        self.status_code = status_code
        self.response_data = response_data

    @property
    def is_auth(self) -> bool:
        return self.kind == ErrorKind.AUTH

    @property
    def is_transient(self) -> bool:
        return self.kind == ErrorKind.TRANSIENT


@dataclass
class TokenGrant:
    """Result of a token exchange or refresh"""
    access_token: str
    refresh_token: Optional[str] = None
    expires_at: Optional[datetime] = None

    @classmethod
    def from_response(cls, data: Dict[str, Any], previous_refresh_token: Optional[str] = None) -> "TokenGrant":
        access_token = data.get("access_token")
        if not access_token:
            raise PlatformAPIError("Token response did not include an access token", ErrorKind.AUTH)
        expires_at = None
        if data.get("expires_in"):
            expires_at = datetime.now(timezone.utc) + timedelta(seconds=int(data["expires_in"]))
        return cls(
            access_token=access_token,
            refresh_token=data.get("refresh_token") or previous_refresh_token,
            expires_at=expires_at,
        )


@dataclass
class PostContent:
    """Immutable snapshot of what gets posted to every platform"""
    caption: str
    hashtags: List[str]
    link: Optional[str] = None
    image_url: Optional[str] = None

    def text(self) -> str:
        tags = " ".join(f"#{tag.lstrip('#')}" for tag in self.hashtags if tag and tag.lstrip("#"))
        return f"{self.caption}\n\n{tags}".strip() if tags else self.caption


def classify_response(response: httpx.Response, platform: str) -> None:
    """Raise PlatformAPIError for any non-2xx response"""
    status = response.status_code
    if status < 400:
        return
    try:
        data = response.json() if response.content else {}
    except ValueError:
        data = {"raw": response.text[:500]}

    if status in (401, 403):
        kind = ErrorKind.AUTH
    elif status in (408, 429) or status >= 500:
        kind = ErrorKind.TRANSIENT
    else:
        kind = ErrorKind.REJECTED

    # Graph API reports expired tokens as 400 with OAuthException code 190
    error = data.get("error") if isinstance(data, dict) else None
    if isinstance(error, dict) and error.get("code") == 190:
        kind = ErrorKind.AUTH

    raise PlatformAPIError(f"{platform} API error: {status}", kind=kind, status_code=status, response_data=data)


def default_platform_http() -> HTTPClient:
    """HTTP client for platform calls; the fan-out orchestrator owns retries"""
    return HTTPClient(HTTPClientConfig(max_attempts=1))


async def send_raw(http: HTTPClient, platform: str, method: str, url: str, **kwargs) -> httpx.Response:
    """Perform one platform call, mapping network failures and error statuses"""
    try:
        response = await http.request(method, url, **kwargs)
    except httpx.TimeoutException as e:
        raise PlatformAPIError(f"{platform} request timed out: {e}", kind=ErrorKind.TRANSIENT) from e
    except httpx.HTTPError as e:
        raise PlatformAPIError(f"{platform} request failed: {e}", kind=ErrorKind.TRANSIENT) from e
    classify_response(response, platform)
    return response


async def send(http: HTTPClient, platform: str, method: str, url: str, **kwargs) -> Dict[str, Any]:
    response = await send_raw(http, platform, method, url, **kwargs)
    return response.json() if response.content else {}
