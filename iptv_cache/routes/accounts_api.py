"""Provider account management and sync API routes."""
from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from iptv_cache.dependencies import get_cache_service
from iptv_cache.errors import ProviderError, error_payload
from iptv_cache.models.catalog import AccountDraft
from iptv_cache.services.cache_service import CacheService

router = APIRouter(tags=["accounts"])

_EDITABLE_FIELDS = ("display_name", "base_url", "username", "password")


@router.get("/api/accounts")
async def get_accounts(cache: CacheService = Depends(get_cache_service)):
    return {"accounts": [a.model_dump() for a in cache.list_accounts()]}


@router.post("/api/accounts")
async def add_account(request: Request, cache: CacheService = Depends(get_cache_service)):
    data = await request.json()
    draft = AccountDraft(**{k: str(data.get(k) or "") for k in _EDITABLE_FIELDS})
    try:
        account = await cache.full_sync(draft)
    except ProviderError as e:
        return JSONResponse(error_payload(e), status_code=e.http_status)
    return {"status": "ok", "account": account.model_dump(), "counts": cache.cache_counts(account.id)}


@router.get("/api/accounts/{account_id}")
async def get_account(account_id: str, cache: CacheService = Depends(get_cache_service)):
    account = cache.get_account(account_id)
    if account is None:
        return JSONResponse({"error": "Account not found"}, status_code=404)
    return {"account": account.model_dump(), "counts": cache.cache_counts(account_id)}


@router.put("/api/accounts/{account_id}")
async def update_account(account_id: str, request: Request, cache: CacheService = Depends(get_cache_service)):
    account = cache.get_account(account_id)
    if account is None:
        return JSONResponse({"error": "Account not found"}, status_code=404)
    data = await request.json()
    changes = {k: str(data[k]) for k in _EDITABLE_FIELDS if k in data and data[k] is not None}
    try:
        account = await cache.full_sync(account.model_copy(update=changes))
    except ProviderError as e:
        return JSONResponse(error_payload(e), status_code=e.http_status)
    return {"status": "ok", "account": account.model_dump()}


@router.post("/api/accounts/{account_id}/sync")
async def sync_account(account_id: str, cache: CacheService = Depends(get_cache_service)):
    if cache.get_account(account_id) is None:
        return JSONResponse({"error": "Account not found"}, status_code=404)
    try:
        account = await cache.reload_account(account_id)
    except ProviderError as e:
        return JSONResponse(error_payload(e), status_code=e.http_status)
    return {"status": "ok", "account": account.model_dump(), "counts": cache.cache_counts(account_id)}


@router.delete("/api/accounts/{account_id}")
async def delete_account(account_id: str, cache: CacheService = Depends(get_cache_service)):
    if await cache.delete_account(account_id):
        return {"status": "ok"}
    return JSONResponse({"error": "Account not found"}, status_code=404)


@router.get("/api/sync/progress")
async def sync_progress(cache: CacheService = Depends(get_cache_service)):
    """Progress of every sync started since launch, keyed by account id."""
    return {"syncs": cache.sync_progress()}


@router.get("/api/accounts/{account_id}/sync/progress")
async def account_sync_progress(account_id: str, cache: CacheService = Depends(get_cache_service)):
    if account_id not in cache.trackers:
        return JSONResponse({"error": "No sync started for this account"}, status_code=404)
    return cache.tracker_for(account_id).snapshot()
