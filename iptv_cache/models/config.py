"""Pydantic models for application configuration."""
from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from iptv_cache.models.xtream import API_PATH, DEFAULT_EPISODE_CONTAINER, DEFAULT_TIMEOUT, HEADERS


class Options(BaseModel):
    """Provider client and cache options."""
    model_config = ConfigDict(extra="allow")

    request_timeout: float = Field(default=DEFAULT_TIMEOUT, gt=0)
    user_agent: str = HEADERS["User-Agent"]
    api_path: str = API_PATH
    default_episode_container: str = DEFAULT_EPISODE_CONTAINER


class AppConfig(BaseModel):
    """Root application configuration."""
    model_config = ConfigDict(extra="allow")

    options: Options = Field(default_factory=Options)
