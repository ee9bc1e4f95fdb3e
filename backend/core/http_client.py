"""
Shared async HTTP client

One pooled httpx.AsyncClient for the CMS and social platform clients, with
bounded retry and exponential backoff on transient failures. Authentication
failures (401/403) are returned to the caller untouched.
"""
import os
import asyncio
import logging
from typing import List, Optional, Tuple, Type

import httpx

logger = logging.getLogger(__name__)


class HTTPClientConfig:
    """Configuration for HTTP client."""

    def __init__(
        self,
        timeout: Optional[float] = None,
        max_attempts: Optional[int] = None,
        backoff_factor: Optional[float] = None,
        retry_on_status: Optional[List[int]] = None,
        retry_on_exceptions: Optional[Tuple[Type[Exception], ...]] = None,
    ):
        self.timeout = timeout if timeout is not None else float(os.getenv('HTTP_TIMEOUT', '30.0'))
        self.max_attempts = max_attempts if max_attempts is not None else int(os.getenv('HTTP_MAX_ATTEMPTS', '3'))
        self.max_connections = int(os.getenv('HTTP_MAX_CONNECTIONS', '100'))
        self.max_keepalive_connections = int(os.getenv('HTTP_MAX_KEEPALIVE', '20'))
        self.user_agent = os.getenv('HTTP_USER_AGENT', 'SchoolChamps-Publishing-Engine/1.0')

        self.retry_on_status = retry_on_status if retry_on_status is not None else [408, 429, 500, 502, 503, 504]
        self.retry_backoff_factor = backoff_factor if backoff_factor is not None else 0.3
        # Network errors that get another attempt
        self.retry_on_exceptions = retry_on_exceptions if retry_on_exceptions is not None else (httpx.ConnectError, httpx.TimeoutException)

    def backoff(self, attempt: int) -> float:
        """Delay before attempt+1 (attempt is 1-based)"""
        return self.retry_backoff_factor * (2 ** (attempt - 1))

    def to_limits(self):
        return httpx.Limits(
            max_connections=self.max_connections,
            max_keepalive_connections=self.max_keepalive_connections
        )

    def to_timeout(self):
        return httpx.Timeout(self.timeout)


class HTTPClient:
    """Pooled async HTTP client with transient-failure retry."""

    def __init__(self, config: Optional[HTTPClientConfig] = None, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.config = config or HTTPClientConfig()
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def _ensure_client(self):
        if self._client is None:
            self._client = httpx.AsyncClient(
                limits=self.config.to_limits(),
                timeout=self.config.to_timeout(),
                headers={'User-Agent': self.config.user_agent},
                follow_redirects=True,
                transport=self._transport,
            )

    async def close(self):
        if self._client:
            await self._client.aclose()
            self._client = None

    async def request(self, method: str, url: str, **kwargs) -> httpx.Response:
        """
        Make an HTTP request, retrying retryable statuses and network errors.

        Returns the last response once attempts are exhausted so that callers
        can classify the status themselves.

        Raises:
            httpx.HTTPError: network failure that is not retryable or persists to the final attempt
        """
        await self._ensure_client()
        max_attempts = max(1, self.config.max_attempts)

        for attempt in range(1, max_attempts + 1):
            try:
                response = await self._client.request(method, url, **kwargs)
            except self.config.retry_on_exceptions as e:
                if attempt >= max_attempts:
                    raise
                delay = self.config.backoff(attempt)
                logger.warning(
                    "HTTP {} {} failed: {}. Retrying in {:.1f}s (attempt {}/{})".format(
                        method, url, e, delay, attempt, max_attempts
                    )
                )
                await asyncio.sleep(delay)
                continue

            if response.status_code in self.config.retry_on_status and attempt < max_attempts:
                delay = self.config.backoff(attempt)
                logger.warning(
                    "HTTP {} {} returned {}. Retrying in {:.1f}s (attempt {}/{})".format(
                        method, url, response.status_code, delay, attempt, max_attempts
                    )
                )
                await asyncio.sleep(delay)
                continue

            return response

        return response

    async def get(self, url: str, **kwargs) -> httpx.Response:
        return await self.request('GET', url, **kwargs)

    async def post(self, url: str, **kwargs) -> httpx.Response:
        return await self.request('POST', url, **kwargs)


# Global HTTP client instance
_global_client: Optional[HTTPClient] = None


def get_http_client() -> HTTPClient:
    """Get the process-wide HTTP client."""
    global _global_client
    if _global_client is None:
        _global_client = HTTPClient()
    return _global_client


async def close_http_client():
    """Close the global HTTP client."""
    global _global_client
    if _global_client:
        await _global_client.close()
        _global_client = None
