"""Xtream-related constants, media kinds and sync steps."""
from __future__ import annotations

from enum import Enum

API_PATH = "player_api.php"

# Shared timeout for every provider call (seconds)
DEFAULT_TIMEOUT = 20.0

DEFAULT_CONTAINER = "m3u8"
DEFAULT_EPISODE_CONTAINER = "mp4"

# Tokens providers use to mean "no value"
ABSENT_TOKENS = frozenset({"null", "nil", "none", "undefined"})
ABSENT_CONTAINER_TOKENS = ABSENT_TOKENS | {"", "0"}

# Primary category_id values meaning "uncategorised"
NO_CATEGORY_SENTINELS = frozenset({"0", "-1"})
FALLBACK_CATEGORY_ID = "0"

LIVE_CONTAINER_PRIORITY = ("m3u8", "ts")
VOD_CONTAINER_PRIORITY = ("m3u8", "mp4", "m4v", "mov", "ts", "avi", "mkv")

# Header set sent with every provider request
HEADERS = {
    "User-Agent": "IPTVSmartersPro",
    "Accept": "*/*",
    "Accept-Encoding": "gzip, deflate",
    "Connection": "keep-alive",
}


class MediaKind(str, Enum):
    LIVE = "live"
    MOVIE = "movie"
    SERIES = "series"

    @property
    def display_name(self) -> str:
        return {
            MediaKind.LIVE: "Live TV",
            MediaKind.MOVIE: "Movies",
            MediaKind.SERIES: "Series",
        }[self]

    @property
    def category_action(self) -> str:
        return {
            MediaKind.LIVE: "get_live_categories",
            MediaKind.MOVIE: "get_vod_categories",
            MediaKind.SERIES: "get_series_categories",
        }[self]

    @property
    def stream_action(self) -> str:
        return {
            MediaKind.LIVE: "get_live_streams",
            MediaKind.MOVIE: "get_vod_streams",
            MediaKind.SERIES: "get_series",
        }[self]

    @property
    def path_segment(self) -> str:
        """URL segment used when building playback URLs."""
        return self.value


class ValidationStep(str, Enum):
    """Phases of a full provider sync, in execution order."""

    AUTHENTICATE = "authenticate"
    LIVE = "live"
    VOD = "vod"
    SERIES = "series"

    @property
    def label(self) -> str:
        return {
            ValidationStep.AUTHENTICATE: "Authenticating",
            ValidationStep.LIVE: "Live TV",
            ValidationStep.VOD: "Movies",
            ValidationStep.SERIES: "Series",
        }[self]


SYNC_STEPS = (
    ValidationStep.AUTHENTICATE,
    ValidationStep.LIVE,
    ValidationStep.VOD,
    ValidationStep.SERIES,
)
