"""Pydantic models for decoded provider payloads."""
from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class Credentials(BaseModel):
    """Base URL + login used either for API calls or for playback URLs."""
    model_config = ConfigDict(frozen=True)

    base_url: str
    username: str
    password: str


class ServerInfo(BaseModel):
    url: Optional[str] = None
    port: Optional[str] = None
    https_port: Optional[str] = None
    server_protocol: Optional[str] = None


class Authentication(BaseModel):
    """Decoded ``player_api.php`` login answer."""

    authenticated: bool = False
    username: str = ""
    status: Optional[str] = None
    exp_date: Optional[str] = None
    max_connections: Optional[int] = None
    active_cons: Optional[int] = None
    allowed_output_formats: list[str] = Field(default_factory=list)
    server_info: ServerInfo = Field(default_factory=ServerInfo)


class Category(BaseModel):
    category_id: str
    name: str


class Stream(BaseModel):
    """A live channel or movie entry from ``get_live_streams`` / ``get_vod_streams``."""

    stream_id: str
    name: str
    category_id: Optional[str] = None
    category_ids: list[str] = Field(default_factory=list)
    logo_url: Optional[str] = None
    container_extension: Optional[str] = None
    direct_source: Optional[str] = None


class Series(BaseModel):
    series_id: str
    name: str
    category_id: Optional[str] = None
    category_ids: list[str] = Field(default_factory=list)
    cover_url: Optional[str] = None
    synopsis: Optional[str] = None


class Episode(BaseModel):
    id: str
    title: str
    season: int = 0
    number: int = 0
    stream_url: str
    container_extension: Optional[str] = None
    overview: Optional[str] = None


class EpisodeListing(BaseModel):
    """Result of ``get_series_info``: flattened episodes or why there are none."""

    episodes: list[Episode] = Field(default_factory=list)
    unsupported_reason: Optional[str] = None
