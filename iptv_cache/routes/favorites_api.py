"""Favorites API routes."""
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from iptv_cache.dependencies import get_cache_service
from iptv_cache.models.catalog import PlayableItem
from iptv_cache.services.cache_service import CacheService

router = APIRouter(prefix="/api/favorites", tags=["favorites"])


@router.get("")
async def get_favorites(account_id: Optional[str] = None, cache: CacheService = Depends(get_cache_service)):
    favorites = cache.list_favorites(account_id)
    return {"favorites": [f.model_dump() for f in favorites], "count": len(favorites)}


@router.post("/toggle")
async def toggle_favorite(request: Request, cache: CacheService = Depends(get_cache_service)):
    data = await request.json()
    try:
        item = PlayableItem.model_validate(data)
    except ValidationError as e:
        return JSONResponse({"error": "Invalid playable item", "details": e.errors()}, status_code=400)
    is_favorite = await cache.toggle_favorite(item)
    return {"status": "ok", "favorite": is_favorite, "favorite_key": item.favorite_key}
