"""Shared fixtures: a scripted Xtream provider behind respx, and a cache on tmp_path."""

import copy

import httpx
import pytest
import respx

from iptv_cache.database import init_db
from iptv_cache.models.catalog import AccountDraft
from iptv_cache.services.cache_service import CacheService
from iptv_cache.services.http_client import HttpClientService
from iptv_cache.services.xtream_service import XtreamClient

BASE_URL = "http://provider.test"
API_URL = f"{BASE_URL}/player_api.php"
PLAYBACK_BASE = "http://stream.provider.test:8080"

CATALOG = {
    "get_live_categories": [
        {"category_id": "10", "category_name": "News", "parent_id": 0},
        {"category_id": "20", "category_name": "Sports", "parent_id": 0},
    ],
    "get_vod_categories": [{"category_id": "30", "category_name": "Action"}],
    "get_series_categories": [{"category_id": "40", "category_name": "Drama"}],
    "get_live_streams": [
        {"stream_id": 1, "name": "BBC News", "category_id": "10", "stream_icon": "http://img.test/bbc.png"},
        {"stream_id": 2, "name": "Sky Sports", "category_id": "20"},
        {"stream_id": 3, "name": "Euro News", "category_id": "10", "category_ids": [10, 20]},
    ],
    "get_vod_streams": [
        {"stream_id": 100, "name": "Die Hard", "category_id": "30", "container_extension": "mkv"},
    ],
    "get_series": [
        {"series_id": 500, "name": "The Wire", "category_id": "40", "cover": "http://img.test/wire.jpg", "plot": "Baltimore"},
    ],
}

SERIES_INFO = {
    "500": {
        "info": {"name": "The Wire"},
        "episodes": {
            "1": [
                {"id": "5001", "episode_num": 1, "title": "The Target", "container_extension": "mp4"},
                {"id": "5002", "episode_num": 2, "title": "The Detail"},
            ]
        },
    },
}


class FakeProvider:
    """Answers ``player_api.php`` requests from an editable in-memory catalog."""

    def __init__(self):
        self.user_info = {
            "username": "alice",
            "password": "secret",
            "auth": 1,
            "status": "Active",
            "exp_date": "1767225600",
            "max_connections": "1",
            "allowed_output_formats": ["m3u8", "ts"],
        }
        self.server_info = {"url": "stream.provider.test", "port": "8080", "server_protocol": "http"}
        self.catalog = copy.deepcopy(CATALOG)
        self.series_info = copy.deepcopy(SERIES_INFO)
        # action -> status code, raw body, or exception
        self.failures = {}
        self.reject_category_filter = False
        self.passwords = {"alice": "secret"}
        # Called with the query params of every request before it is answered
        self.on_request = None
        self.requests = []

    def handle(self, request: httpx.Request) -> httpx.Response:
        params = dict(request.url.params)
        self.requests.append(params)
        if self.on_request is not None:
            self.on_request(params)
        action = params.get("action", "")

        failure = self.failures.get(action or "authenticate")
        if isinstance(failure, Exception):
            raise failure
        if isinstance(failure, int):
            return httpx.Response(failure)
        if isinstance(failure, str):
            return httpx.Response(200, text=failure)

        if self.passwords.get(params.get("username")) != params.get("password"):
            return httpx.Response(200, json={"user_info": {"auth": 0}})
        if not action:
            return httpx.Response(200, json={"user_info": self.user_info, "server_info": self.server_info})
        if action == "get_series_info":
            return httpx.Response(200, json=self.series_info.get(params.get("series_id"), {}))

        items = self.catalog.get(action, [])
        category_id = params.get("category_id")
        if category_id is not None:
            if self.reject_category_filter:
                return httpx.Response(500)
            items = [
                item for item in items
                if str(item.get("category_id")) == category_id
                or category_id in [str(c) for c in item.get("category_ids", [])]
            ]
        return httpx.Response(200, json=items)

    def actions(self):
        return [p.get("action", "authenticate") for p in self.requests]


@pytest.fixture()
def provider():
    fake = FakeProvider()
    with respx.mock(assert_all_called=False) as router:
        router.get(API_URL).mock(side_effect=fake.handle)
        yield fake


@pytest.fixture()
def db_path(tmp_path):
    path = str(tmp_path / "catalog.db")
    init_db(path)
    return path


@pytest.fixture()
def cache(db_path):
    return CacheService(db_path, XtreamClient(HttpClientService(timeout=5)))


@pytest.fixture()
def draft():
    return AccountDraft(display_name="Home", base_url=BASE_URL + "/", username="alice", password="secret")
