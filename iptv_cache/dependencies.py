"""FastAPI dependency injection — provides services via Depends()."""
from __future__ import annotations

from fastapi import Request

from iptv_cache.services.cache_service import CacheService
from iptv_cache.services.config_service import ConfigService
from iptv_cache.services.refresh_service import CategoryRefreshService


def get_config_service(request: Request) -> ConfigService:
    return request.app.state.config_service


def get_cache_service(request: Request) -> CacheService:
    return request.app.state.cache_service


def get_refresh_service(request: Request) -> CategoryRefreshService:
    return request.app.state.refresh_service
