"""Pydantic models for the locally cached catalog."""
from __future__ import annotations

import uuid
from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from iptv_cache.models.xtream import MediaKind


def _now() -> str:
    return datetime.now().isoformat()


class AccountDraft(BaseModel):
    """Provider login entered by the user, not yet validated."""

    display_name: str = ""
    base_url: str = ""
    username: str = ""
    password: str = ""


class ProviderAccount(BaseModel):
    """A configured provider login; the only authoritative row besides favorites."""
    model_config = ConfigDict(extra="ignore")

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    display_name: str
    base_url: str
    username: str
    password: str
    updated_at: str = Field(default_factory=_now)
    # Resolved by the last successful sync
    playback_base_url: Optional[str] = None
    live_container: Optional[str] = None
    vod_container: Optional[str] = None
    status: Optional[str] = None
    exp_date: Optional[str] = None
    last_synced_at: Optional[str] = None


class MediaCategory(BaseModel):
    account_id: str
    media_kind: MediaKind
    category_id: str
    name: str
    order_index: int = 0
    updated_at: str = Field(default_factory=_now)


class MediaStream(BaseModel):
    account_id: str
    media_kind: MediaKind
    category_id: str
    stream_id: str
    title: str
    playback_url: str
    logo_url: Optional[str] = None

    def as_playable(self) -> "PlayableItem":
        return PlayableItem(
            id=self.stream_id,
            title=self.title,
            subtitle=self.media_kind.display_name,
            stream_url=self.playback_url,
            media_kind=self.media_kind,
            account_id=self.account_id,
        )


class SeriesRecord(BaseModel):
    account_id: str
    category_id: str
    series_id: str
    title: str
    cover_url: Optional[str] = None
    synopsis: Optional[str] = None

    @property
    def key(self) -> str:
        return f"{self.account_id}|{self.series_id}"


class SeriesEpisode(BaseModel):
    account_id: str
    series_id: str
    episode_id: str
    season_number: int = 0
    episode_number: int = 0
    title: str
    playback_url: str
    overview: Optional[str] = None

    def as_playable(self, series_title: Optional[str] = None) -> "PlayableItem":
        label = f"S{self.season_number} E{self.episode_number}"
        return PlayableItem(
            id=self.episode_id,
            title=self.title,
            subtitle=f"{series_title} · {label}" if series_title else label,
            stream_url=self.playback_url,
            media_kind=MediaKind.SERIES,
            account_id=self.account_id,
        )


class PlayableItem(BaseModel):
    """Value handed to the playback surface."""
    model_config = ConfigDict(frozen=True)

    id: str
    title: str
    subtitle: str = ""
    stream_url: str
    media_kind: MediaKind
    account_id: str

    @property
    def favorite_key(self) -> str:
        return f"{self.account_id}|{self.media_kind.value}|{self.id}|{self.stream_url}"


class FavoriteItem(BaseModel):
    favorite_key: str
    account_id: str
    media_kind: MediaKind
    item_id: str
    title: str
    playback_url: str
    created_at: str = Field(default_factory=_now)

    def as_playable(self) -> PlayableItem:
        return PlayableItem(
            id=self.item_id,
            title=self.title,
            subtitle=f"Favorite · {self.media_kind.display_name}",
            stream_url=self.playback_url,
            media_kind=self.media_kind,
            account_id=self.account_id,
        )


class SearchResult(BaseModel):
    """Either something directly playable or a pointer to open a series."""

    kind: Literal["playable", "series"]
    playable: Optional[PlayableItem] = None
    series: Optional[SeriesRecord] = None

    @property
    def title(self) -> str:
        if self.playable is not None:
            return self.playable.title
        return self.series.title if self.series is not None else ""


class EpisodeLoadResult(BaseModel):
    """Outcome of loading a series' episodes.

    ``episodes``: structured episodes (cached or fresh).
    ``fallback``: the provider had none; ``fallback`` plays the series id itself.
    ``unsupported``: nothing playable could be derived.
    """

    kind: Literal["episodes", "fallback", "unsupported"]
    episodes: list[SeriesEpisode] = Field(default_factory=list)
    fallback: Optional[PlayableItem] = None
    reason: Optional[str] = None
    from_cache: bool = False
