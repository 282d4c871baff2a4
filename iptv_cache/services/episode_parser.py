"""Flatten the ``episodes`` node of a ``get_series_info`` answer.

Providers return that node as a season-keyed object of arrays, a flat array,
a single episode object, or any nesting of those. The walker below tries
the shapes in a fixed order and skips anything it does not recognise.
"""
from __future__ import annotations

import logging
from typing import Any, Optional

from iptv_cache.models.provider import Credentials, Episode
from iptv_cache.models.xtream import MediaKind
from iptv_cache.services.flexible import as_clean_string, as_flexible_int, first_int, first_present
from iptv_cache.services.url_builder import build_playback_url, normalize_container_extension

logger = logging.getLogger(__name__)

_EPISODE_KEYS = ("id", "episode_num", "stream_id", "title")


def looks_like_episode(node: dict) -> bool:
    return any(key in node for key in _EPISODE_KEYS)


def _nested(node: dict, key: str) -> Optional[str]:
    info = node.get("info")
    if isinstance(info, dict):
        return as_clean_string(info.get(key))
    return None


def make_episode(
    node: dict,
    season_hint: Optional[int],
    credentials: Credentials,
    series_id: str,
    default_container: Optional[str],
) -> Episode:
    episode_id = first_present(node, "id", "episode_id", "stream_id") or series_id
    season = as_flexible_int(node.get("season"))
    if season is None:
        season = season_hint if season_hint is not None else 0
    number = first_int(node, "episode_num", "episode")
    if number is None:
        number = 0
    title = first_present(node, "title", "name") or f"S{season} E{number}"
    container = normalize_container_extension(node.get("container_extension")) or default_container
    direct_source = as_clean_string(node.get("direct_source")) or _nested(node, "direct_source")
    overview = as_clean_string(node.get("plot")) or _nested(node, "plot")

    return Episode(
        id=episode_id,
        title=title,
        season=season,
        number=number,
        stream_url=build_playback_url(
            credentials, MediaKind.SERIES, episode_id, container, direct_source
        ),
        container_extension=container,
        overview=overview,
    )


def parse_episode_node(
    node: Any,
    credentials: Credentials,
    series_id: str,
    default_container: Optional[str] = None,
    season_hint: Optional[int] = None,
) -> list[Episode]:
    if isinstance(node, dict):
        if looks_like_episode(node):
            try:
                return [make_episode(node, season_hint, credentials, series_id, default_container)]
            except (TypeError, ValueError) as e:
                logger.debug(f"Skipping malformed episode in series {series_id}: {e}")
                return []
        episodes: list[Episode] = []
        for key, value in node.items():
            season = as_flexible_int(key)
            episodes.extend(
                parse_episode_node(
                    value,
                    credentials,
                    series_id,
                    default_container,
                    season if season is not None else season_hint,
                )
            )
        return episodes
    if isinstance(node, list):
        episodes = []
        for item in node:
            episodes.extend(
                parse_episode_node(item, credentials, series_id, default_container, season_hint)
            )
        return episodes
    return []


def parse_series_info(
    payload: Any,
    credentials: Credentials,
    series_id: str,
    default_container: Optional[str] = None,
) -> list[Episode]:
    """Episodes found under the ``episodes`` key of a series-info payload."""
    if not isinstance(payload, dict):
        return []
    return parse_episode_node(payload.get("episodes"), credentials, series_id, default_container)
