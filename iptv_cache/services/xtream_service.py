"""Xtream service — authenticated calls to ``player_api.php`` and DTO mapping."""
from __future__ import annotations

import json
import logging
import time
from typing import TYPE_CHECKING, Any, Optional

import httpx

from iptv_cache.errors import (
    DecodingError,
    EmptyResponse,
    NetworkError,
    ProviderTimeout,
    ServerError,
    Unauthorized,
)
from iptv_cache.models.provider import (
    Authentication,
    Category,
    Credentials,
    EpisodeListing,
    Series,
    ServerInfo,
    Stream,
)
from iptv_cache.models.xtream import API_PATH, DEFAULT_EPISODE_CONTAINER, MediaKind
from iptv_cache.services.episode_parser import parse_series_info
from iptv_cache.services.flexible import (
    as_clean_string,
    as_flexible_bool,
    as_flexible_int,
    decode_category_id_list,
    decode_string_list,
    first_present,
    normalize_category_identifier,
    normalize_list,
)
from iptv_cache.services.url_builder import normalize_container_extension

if TYPE_CHECKING:
    from iptv_cache.services.http_client import HttpClientService

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Payload mapping
# ---------------------------------------------------------------------------

def parse_authentication(data: Any) -> Authentication:
    if not isinstance(data, dict):
        raise DecodingError("authentication")
    user_info = data.get("user_info")
    if not isinstance(user_info, dict):
        raise Unauthorized()
    server_info = data.get("server_info")
    if not isinstance(server_info, dict):
        server_info = {}

    status = as_clean_string(user_info.get("status"))
    authenticated = as_flexible_bool(user_info.get("auth"))
    if authenticated is None:
        # Some panels omit "auth" and only report the account status
        authenticated = (status or "").lower() == "active"

    return Authentication(
        authenticated=authenticated,
        username=as_clean_string(user_info.get("username")) or "",
        status=status,
        exp_date=as_clean_string(user_info.get("exp_date")),
        max_connections=as_flexible_int(user_info.get("max_connections")),
        active_cons=as_flexible_int(user_info.get("active_cons")),
        allowed_output_formats=decode_string_list(user_info.get("allowed_output_formats")),
        server_info=ServerInfo(
            url=as_clean_string(server_info.get("url")),
            port=as_clean_string(server_info.get("port")),
            https_port=as_clean_string(server_info.get("https_port")),
            server_protocol=as_clean_string(server_info.get("server_protocol")),
        ),
    )


def parse_categories(data: Any) -> list[Category]:
    categories: list[Category] = []
    for item in normalize_list(data):
        if not isinstance(item, dict):
            continue
        category_id = normalize_category_identifier(item.get("category_id"))
        if category_id is None:
            continue
        categories.append(
            Category(
                category_id=category_id,
                name=first_present(item, "category_name", "name") or category_id,
            )
        )
    return categories


def parse_streams(data: Any) -> list[Stream]:
    streams: list[Stream] = []
    for item in normalize_list(data):
        if not isinstance(item, dict):
            continue
        stream_id = first_present(item, "stream_id", "id")
        if stream_id is None:
            continue
        streams.append(
            Stream(
                stream_id=stream_id,
                name=first_present(item, "name", "title") or f"Stream {stream_id}",
                category_id=normalize_category_identifier(item.get("category_id")),
                category_ids=decode_category_id_list(item.get("category_ids")),
                logo_url=as_clean_string(item.get("stream_icon")),
                container_extension=normalize_container_extension(item.get("container_extension")),
                direct_source=as_clean_string(item.get("direct_source")),
            )
        )
    return streams


def parse_series_list(data: Any) -> list[Series]:
    series: list[Series] = []
    for item in normalize_list(data):
        if not isinstance(item, dict):
            continue
        series_id = first_present(item, "series_id", "id")
        if series_id is None:
            continue
        series.append(
            Series(
                series_id=series_id,
                name=first_present(item, "name", "title") or f"Series {series_id}",
                category_id=normalize_category_identifier(item.get("category_id")),
                category_ids=decode_category_id_list(item.get("category_ids")),
                cover_url=first_present(item, "cover", "cover_big"),
                synopsis=first_present(item, "plot", "description"),
            )
        )
    return series


def unsupported_reason(data: Any) -> Optional[str]:
    """Provider message explaining an empty series-info answer."""
    if not isinstance(data, dict):
        return None
    message = as_clean_string(data.get("message"))
    if message is None and isinstance(data.get("info"), dict):
        message = as_clean_string(data["info"].get("message"))
    return message


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------

class XtreamClient:
    """Xtream Codes API client.

    Every call is a GET on ``{base_url}/player_api.php`` with the login in the
    query string; the ``action`` parameter selects the resource. Failures are
    raised as :mod:`iptv_cache.errors` types, never retried here.
    """

    def __init__(self, http_client: "HttpClientService", api_path: str = API_PATH):
        self.http_client = http_client
        self.api_path = api_path.strip("/")

    async def _request(self, credentials: Credentials, action: Optional[str] = None, **kwargs) -> Any:
        url = f"{credentials.base_url}/{self.api_path}"
        params = {"username": credentials.username, "password": credentials.password}
        if action:
            params["action"] = action
        params.update({k: v for k, v in kwargs.items() if v is not None})
        label = action or "authenticate"

        client = await self.http_client.get_client()
        start_time = time.time()
        try:
            response = await client.get(url, params=params)
        except httpx.TimeoutException as e:
            logger.error(f"Timeout fetching {label}: {e}")
            raise ProviderTimeout() from e
        except httpx.HTTPError as e:
            logger.error(f"Network error fetching {label}: {e}")
            raise NetworkError(str(e) or type(e).__name__) from e
        elapsed = time.time() - start_time

        if response.status_code in (401, 403):
            logger.warning(f"Fetch {label} rejected with status {response.status_code}")
            raise Unauthorized()
        if not 200 <= response.status_code < 300:
            logger.warning(f"Fetch {label} failed with status {response.status_code} in {elapsed:.1f}s")
            raise ServerError(response.status_code)

        body = response.text
        if not body.strip():
            raise EmptyResponse()
        try:
            data = json.loads(body)
        except ValueError as e:
            raise DecodingError(label) from e
        logger.debug(
            f"Fetched {label}: {len(data) if isinstance(data, (list, dict)) else 'ok'} items in {elapsed:.1f}s"
        )
        return data

    async def authenticate(self, credentials: Credentials) -> Authentication:
        data = await self._request(credentials)
        auth = parse_authentication(data)
        if not auth.authenticated:
            raise Unauthorized()
        return auth

    async def fetch_categories(self, credentials: Credentials, kind: MediaKind) -> list[Category]:
        return parse_categories(await self._request(credentials, kind.category_action))

    async def fetch_streams(
        self, credentials: Credentials, kind: MediaKind, category_id: Optional[str] = None
    ) -> list[Stream]:
        data = await self._request(
            credentials, kind.stream_action, category_id=(category_id or "").strip() or None
        )
        if isinstance(data, dict) and not normalize_list(data) and data:
            # An error object instead of a list: the filter was not understood
            raise DecodingError(f"{kind.stream_action} returned an object")
        return parse_streams(data)

    async def fetch_series_list(
        self, credentials: Credentials, category_id: Optional[str] = None
    ) -> list[Series]:
        data = await self._request(
            credentials, MediaKind.SERIES.stream_action, category_id=(category_id or "").strip() or None
        )
        if isinstance(data, dict) and not normalize_list(data) and data:
            raise DecodingError("get_series returned an object")
        return parse_series_list(data)

    async def fetch_series_episodes(
        self,
        credentials: Credentials,
        series_id: str,
        default_container_extension: Optional[str] = DEFAULT_EPISODE_CONTAINER,
        playback: Optional[Credentials] = None,
    ) -> EpisodeListing:
        data = await self._request(credentials, "get_series_info", series_id=series_id)
        episodes = parse_series_info(
            data,
            playback or credentials,
            series_id,
            normalize_container_extension(default_container_extension),
        )
        if episodes:
            return EpisodeListing(episodes=episodes)
        reason = unsupported_reason(data)
        logger.info(f"Series {series_id} has no structured episodes ({reason or 'no reason given'})")
        return EpisodeListing(episodes=[], unsupported_reason=reason)
