"""Catalog browsing API routes — categories, streams, series, episodes, search."""
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse

from iptv_cache.dependencies import get_cache_service, get_refresh_service
from iptv_cache.errors import ProviderError, error_payload
from iptv_cache.models.xtream import MediaKind
from iptv_cache.services.cache_service import CacheService
from iptv_cache.services.refresh_service import CategoryRefreshService

router = APIRouter(tags=["browse"])


def _not_found():
    return JSONResponse({"error": "Account not found"}, status_code=404)


@router.get("/api/accounts/{account_id}/categories/{kind}")
async def get_categories(account_id: str, kind: MediaKind, cache: CacheService = Depends(get_cache_service)):
    if cache.get_account(account_id) is None:
        return _not_found()
    return {"categories": [c.model_dump() for c in cache.list_categories(account_id, kind)]}


@router.get("/api/accounts/{account_id}/streams/{kind}")
async def get_streams(
    account_id: str,
    kind: MediaKind,
    category_id: Optional[str] = None,
    cache: CacheService = Depends(get_cache_service),
):
    if kind == MediaKind.SERIES:
        return JSONResponse({"error": "Use the series endpoint for series"}, status_code=400)
    if cache.get_account(account_id) is None:
        return _not_found()
    streams = cache.list_streams(account_id, kind, category_id)
    return {"streams": [s.model_dump() for s in streams], "count": len(streams)}


@router.post("/api/accounts/{account_id}/categories/{kind}/{category_id}/select")
async def select_category(
    account_id: str,
    kind: MediaKind,
    category_id: str,
    refresh: CategoryRefreshService = Depends(get_refresh_service),
    cache: CacheService = Depends(get_cache_service),
):
    """Mark a category as selected; refreshes it in the background when empty."""
    if cache.get_account(account_id) is None:
        return _not_found()
    task = refresh.select_category(account_id, kind, category_id)
    return {"status": "ok", "refreshing": task is not None}


@router.post("/api/accounts/{account_id}/categories/{kind}/{category_id}/refresh")
async def refresh_category(
    account_id: str,
    kind: MediaKind,
    category_id: str,
    refresh: CategoryRefreshService = Depends(get_refresh_service),
    cache: CacheService = Depends(get_cache_service),
):
    if cache.get_account(account_id) is None:
        return _not_found()
    refresh.select_category(account_id, kind, category_id, force=True)
    rows = await refresh.wait()
    if refresh.last_error is not None:
        e = refresh.last_error
        # Store failures carry no status of their own
        return JSONResponse(error_payload(e), status_code=getattr(e, "http_status", 500))
    if rows is None:
        return JSONResponse({"status": "cancelled"}, status_code=409)
    key = "series" if kind == MediaKind.SERIES else "streams"
    return {"status": "ok", key: [r.model_dump() for r in rows], "count": len(rows)}


@router.get("/api/accounts/{account_id}/series")
async def get_series(
    account_id: str,
    category_id: Optional[str] = None,
    cache: CacheService = Depends(get_cache_service),
):
    if cache.get_account(account_id) is None:
        return _not_found()
    series = cache.list_series(account_id, category_id)
    return {"series": [s.model_dump() for s in series], "count": len(series)}


@router.get("/api/accounts/{account_id}/series/{series_id}/episodes")
async def get_episodes(
    account_id: str,
    series_id: str,
    refresh: bool = False,
    cache: CacheService = Depends(get_cache_service),
):
    if cache.get_account(account_id) is None:
        return _not_found()
    try:
        result = await cache.load_episodes(account_id, series_id, force_refresh=refresh)
    except ProviderError as e:
        return JSONResponse(error_payload(e), status_code=e.http_status)
    return result.model_dump()


@router.get("/api/search")
async def search(
    q: str = Query(""),
    account_id: Optional[str] = None,
    cache: CacheService = Depends(get_cache_service),
):
    results = cache.search(account_id, q)
    return {"results": [r.model_dump() for r in results], "count": len(results)}
