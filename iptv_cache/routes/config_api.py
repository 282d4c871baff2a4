"""Configuration and options API routes."""
from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from iptv_cache.dependencies import get_config_service
from iptv_cache.models.config import Options
from iptv_cache.services.config_service import ConfigService

router = APIRouter(tags=["config"])


@router.get("/api/options")
async def get_options(cfg: ConfigService = Depends(get_config_service)):
    return cfg.config.options.model_dump()


@router.post("/api/options")
async def update_options(request: Request, cfg: ConfigService = Depends(get_config_service)):
    """Merge and persist options; client settings apply on next start."""
    data = await request.json()
    try:
        options = Options.model_validate({**cfg.config.options.model_dump(), **data})
    except ValidationError as e:
        return JSONResponse({"error": "Invalid options", "details": e.errors()}, status_code=400)
    cfg.save(cfg.config.model_copy(update={"options": options}))
    return {"status": "ok", "options": options.model_dump()}
