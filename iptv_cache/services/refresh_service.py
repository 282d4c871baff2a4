"""Category refresh service — background refresh tied to category selection.

Selecting a category cancels the refresh started for the previous
selection, then starts a new one when the category has nothing cached yet
(or when the caller forces it, e.g. pull-to-refresh). A cancelled refresh
never writes: the token is checked after the network round trip and again
inside the write lock.
"""
from __future__ import annotations

import asyncio
import logging
import sqlite3
from typing import TYPE_CHECKING, Optional

from iptv_cache.errors import ProviderError, RefreshCancelled
from iptv_cache.models.xtream import MediaKind
from iptv_cache.services.cache_service import CancellationToken

if TYPE_CHECKING:
    from iptv_cache.services.cache_service import CacheService

logger = logging.getLogger(__name__)


class CategoryRefreshService:
    def __init__(self, cache_service: "CacheService"):
        self.cache_service = cache_service
        self._task: Optional[asyncio.Task] = None
        self._token: Optional[CancellationToken] = None
        self.selection: Optional[tuple[str, MediaKind, str]] = None
        self.last_error: Optional[Exception] = None

    def _has_cached_rows(self, account_id: str, kind: MediaKind, category_id: str) -> bool:
        if kind == MediaKind.SERIES:
            return bool(self.cache_service.list_series(account_id, category_id))
        return bool(self.cache_service.list_streams(account_id, kind, category_id))

    def cancel(self) -> None:
        if self._token is not None:
            self._token.cancel()
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None
        self._token = None

    def select_category(
        self, account_id: str, kind: MediaKind, category_id: str, force: bool = False
    ) -> Optional[asyncio.Task]:
        """Switch selection; returns the refresh task if one was started."""
        kind = MediaKind(kind)
        self.cancel()
        self.selection = (account_id, kind, category_id)
        self.last_error = None
        if not force and self._has_cached_rows(account_id, kind, category_id):
            return None

        token = CancellationToken()
        self._token = token
        self._task = asyncio.create_task(self._run(account_id, kind, category_id, token))
        return self._task

    async def _run(self, account_id: str, kind: MediaKind, category_id: str, token: CancellationToken):
        try:
            return await self.cache_service.refresh_category(account_id, kind, category_id, token)
        except RefreshCancelled:
            logger.info(f"[{account_id}] Refresh of {kind.value} category {category_id} superseded")
            return None
        except ProviderError as e:
            if not token.is_cancelled:
                self.last_error = e
            logger.warning(f"[{account_id}] Refresh of {kind.value} category {category_id} failed: {e}")
            return None
        except sqlite3.Error as e:
            self.last_error = e
            logger.error(f"[{account_id}] Could not store {kind.value} category {category_id}: {e}")
            return None

    async def wait(self):
        """Await the in-flight refresh, if any."""
        task = self._task
        if task is None:
            return None
        await asyncio.wait([task])
        if task.cancelled():
            return None
        return task.result()
