"""HTTP client service — managed httpx.AsyncClient with connection pooling."""
from __future__ import annotations

import logging
from typing import Optional

import httpx

from iptv_cache.models.xtream import DEFAULT_TIMEOUT, HEADERS

logger = logging.getLogger(__name__)


class HttpClientService:
    """Manages a shared httpx.AsyncClient for provider API calls."""

    def __init__(self, timeout: float = DEFAULT_TIMEOUT, user_agent: Optional[str] = None):
        self.timeout = timeout
        self.headers = dict(HEADERS)
        if user_agent:
            self.headers["User-Agent"] = user_agent
        self._client: Optional[httpx.AsyncClient] = None

    async def get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                headers=self.headers,
                timeout=httpx.Timeout(self.timeout),
                limits=httpx.Limits(max_connections=20, max_keepalive_connections=5),
                follow_redirects=True,
            )
        return self._client

    async def close(self):
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
            self._client = None
            logger.info("Provider HTTP client closed")
