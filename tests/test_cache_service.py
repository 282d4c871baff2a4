"""Tests for CacheService: full sync, scoped refresh, episodes, favorites and search."""

import asyncio

import pytest

from iptv_cache.errors import DecodingError, InvalidInput, RefreshCancelled, ServerError, Unauthorized
from iptv_cache.models.catalog import AccountDraft, SeriesRecord
from iptv_cache.models.provider import Credentials, Stream
from iptv_cache.models.xtream import MediaKind, ValidationStep
from iptv_cache.services.cache_service import CancellationToken, build_stream_rows, category_memberships
from iptv_cache.services.progress import ValidationStepTracker

PLAYBACK_BASE = "http://stream.provider.test:8080"
PLAYBACK = Credentials(base_url=PLAYBACK_BASE, username="alice", password="secret")


def _titles(rows):
    return sorted(r.title for r in rows)


class TestMemberships:
    def test_stream_in_two_categories_gives_two_rows(self):
        streams = [
            Stream(stream_id="55", name="Multi", category_id="3"),
            Stream(stream_id="55", name="Multi", category_id="7"),
        ]
        rows = build_stream_rows("acct", MediaKind.LIVE, streams, PLAYBACK, "m3u8")
        assert [(r.stream_id, r.category_id) for r in rows] == [("55", "3"), ("55", "7")]
        assert rows[0].playback_url == f"{PLAYBACK_BASE}/live/alice/secret/55.m3u8"

    def test_category_ids_list_expands(self):
        stream = Stream(stream_id="55", name="Multi", category_ids=["3", "7", "3"])
        rows = build_stream_rows("acct", MediaKind.LIVE, [stream], PLAYBACK)
        assert [r.category_id for r in rows] == ["3", "7"]

    def test_uncategorised_items_land_in_fallback(self):
        assert category_memberships(None, []) == ["0"]
        assert category_memberships("0", []) == ["0"]
        assert category_memberships("-1", []) == ["-1"]
        assert category_memberships("0", ["12"]) == ["12"]

    def test_scoped_build_keeps_only_requested_category(self):
        streams = [
            Stream(stream_id="1", name="A", category_id="10"),
            Stream(stream_id="2", name="B", category_id="20"),
            Stream(stream_id="3", name="C", category_ids=["10", "20"]),
            Stream(stream_id="4", name="D"),
        ]
        rows = build_stream_rows("acct", MediaKind.LIVE, streams, PLAYBACK, only_category="10")
        assert [(r.stream_id, r.category_id) for r in rows] == [("1", "10"), ("3", "10"), ("4", "10")]

    def test_movie_keeps_own_container(self):
        stream = Stream(stream_id="100", name="Film", category_id="30", container_extension="mkv")
        (row,) = build_stream_rows("acct", MediaKind.MOVIE, [stream], PLAYBACK, "mp4")
        assert row.playback_url.endswith("/movie/alice/secret/100.mkv")


class TestFullSync:
    @pytest.mark.asyncio
    async def test_sync_new_account(self, cache, provider, draft):
        steps = []
        tracker = ValidationStepTracker()
        tracker.subscribe(lambda t: steps.append(t.current_step))

        account = await cache.full_sync(draft, progress=tracker)

        assert account.base_url == "http://provider.test"
        assert account.display_name == "Home"
        assert account.playback_base_url == PLAYBACK_BASE
        assert account.live_container == "m3u8"
        assert account.status == "Active"
        assert account.last_synced_at is not None
        assert cache.get_account(account.id) == account
        assert steps == [
            None,
            ValidationStep.AUTHENTICATE,
            ValidationStep.LIVE,
            ValidationStep.VOD,
            ValidationStep.SERIES,
            None,
        ]
        assert tracker.current_step is None
        assert cache.current_validation_step(account.id) is None

        categories = cache.list_categories(account.id, MediaKind.LIVE)
        assert [c.category_id for c in categories] == ["10", "20"]
        news = cache.list_streams(account.id, MediaKind.LIVE, "10")
        assert _titles(news) == ["BBC News", "Euro News"]
        bbc = next(s for s in news if s.stream_id == "1")
        assert bbc.playback_url == f"{PLAYBACK_BASE}/live/alice/secret/1.m3u8"
        assert bbc.logo_url == "http://img.test/bbc.png"
        # One row per membership, one entry per stream when unscoped
        assert len(cache.list_streams(account.id, MediaKind.LIVE)) == 3
        (movie,) = cache.list_streams(account.id, MediaKind.MOVIE)
        assert movie.playback_url == f"{PLAYBACK_BASE}/movie/alice/secret/100.mkv"
        (series,) = cache.list_series(account.id)
        assert series.title == "The Wire"
        assert series.cover_url == "http://img.test/wire.jpg"

        counts = cache.cache_counts(account.id)
        assert counts["live_streams"] == 3
        assert counts["movie_streams"] == 1
        assert counts["series"] == 1

    @pytest.mark.asyncio
    async def test_invalid_input_fails_before_network(self, cache, provider):
        with pytest.raises(InvalidInput) as excinfo:
            await cache.full_sync(AccountDraft(base_url="not a url", username="alice", password="secret"))
        assert excinfo.value.step == ValidationStep.AUTHENTICATE
        assert provider.requests == []
        assert cache.list_accounts() == []

    @pytest.mark.asyncio
    async def test_bad_password_is_unauthorized(self, cache, provider, draft):
        with pytest.raises(Unauthorized):
            await cache.full_sync(draft.model_copy(update={"password": "wrong"}))
        (tracker,) = cache.trackers.values()
        assert tracker.failed_step == ValidationStep.AUTHENTICATE
        assert cache.list_accounts() == []

    @pytest.mark.asyncio
    async def test_vod_failure_keeps_previous_cache(self, cache, provider, draft):
        account = await cache.full_sync(draft)
        provider.catalog["get_live_streams"] = []
        provider.failures["get_vod_categories"] = 500

        with pytest.raises(ServerError) as excinfo:
            await cache.reload_account(account.id)

        assert excinfo.value.step == ValidationStep.VOD
        tracker = cache.tracker_for(account.id)
        assert cache.current_validation_step(account.id) == ValidationStep.VOD
        assert tracker.failed_step == ValidationStep.VOD
        assert tracker.in_progress is False
        stored = cache.get_account(account.id)
        assert stored.last_synced_at == account.last_synced_at
        assert len(cache.list_streams(account.id, MediaKind.LIVE)) == 3

    @pytest.mark.asyncio
    async def test_failed_draft_is_not_saved(self, cache, provider, draft):
        provider.failures["get_series"] = "not json"
        with pytest.raises(DecodingError):
            await cache.full_sync(draft)
        (tracker,) = cache.trackers.values()
        assert tracker.current_step == ValidationStep.SERIES
        assert cache.list_accounts() == []

    @pytest.mark.asyncio
    async def test_resync_keeps_id_and_favorites(self, cache, provider, draft):
        account = await cache.full_sync(draft)
        item = cache.list_streams(account.id, MediaKind.LIVE, "10")[0].as_playable()
        await cache.toggle_favorite(item)
        await cache.load_episodes(account.id, "500")

        edited = await cache.full_sync(account.model_copy(update={"display_name": "Living room"}))

        assert edited.id == account.id
        assert [a.display_name for a in cache.list_accounts()] == ["Living room"]
        assert cache.is_favorite(item)
        # Episodes are cache rows and are rebuilt on demand
        assert cache.list_episodes(account.id, "500") == []

    @pytest.mark.asyncio
    async def test_accounts_sync_concurrently_without_mixing(self, cache, provider, draft):
        first, second = await asyncio.gather(
            cache.full_sync(draft, progress=ValidationStepTracker()),
            cache.full_sync(draft.model_copy(update={"display_name": "Office"}), progress=ValidationStepTracker()),
        )
        assert first.id != second.id
        assert len(cache.list_accounts()) == 2

        assert await cache.delete_account(first.id) is True
        assert cache.cache_counts(first.id)["live_streams"] == 0
        assert cache.cache_counts(second.id)["live_streams"] == 3

    @pytest.mark.asyncio
    async def test_concurrent_syncs_report_their_own_phase(self, cache, provider, draft, monkeypatch):
        provider.passwords["bob"] = "hunter2"
        home = await cache.full_sync(draft)
        office = await cache.full_sync(
            draft.model_copy(update={"display_name": "Office", "username": "bob", "password": "hunter2"})
        )

        office_in_series = asyncio.Event()
        release_office = asyncio.Event()
        fetch_categories = cache.xtream.fetch_categories
        fetch_series_list = cache.xtream.fetch_series_list

        async def failing_vod_categories(credentials, kind):
            if credentials.username == "alice" and kind == MediaKind.MOVIE:
                await office_in_series.wait()
                raise ServerError(500)
            return await fetch_categories(credentials, kind)

        async def held_series_list(credentials, category_id=None):
            if credentials.username == "bob":
                office_in_series.set()
                await release_office.wait()
            return await fetch_series_list(credentials, category_id)

        monkeypatch.setattr(cache.xtream, "fetch_categories", failing_vod_categories)
        monkeypatch.setattr(cache.xtream, "fetch_series_list", held_series_list)

        office_sync = asyncio.create_task(cache.reload_account(office.id))
        with pytest.raises(ServerError) as excinfo:
            await cache.reload_account(home.id)

        assert excinfo.value.step == ValidationStep.VOD
        assert cache.tracker_for(home.id).failed_step == ValidationStep.VOD
        assert cache.tracker_for(office.id).in_progress is True
        assert cache.current_validation_step(office.id) == ValidationStep.SERIES

        release_office.set()
        await office_sync
        assert cache.current_validation_step(office.id) is None
        assert cache.tracker_for(office.id).failed_step is None
        assert cache.sync_progress()[home.id]["failed_step"] == "vod"


class TestCategoryRefresh:
    @pytest.mark.asyncio
    async def test_refresh_only_touches_its_category(self, cache, provider, draft):
        account = await cache.full_sync(draft)
        sports_before = cache.list_streams(account.id, MediaKind.LIVE, "20")
        provider.catalog["get_live_streams"][0]["name"] = "BBC World"
        provider.catalog["get_live_streams"][1]["name"] = "Sky Sports 2"

        rows = await cache.refresh_category(account.id, MediaKind.LIVE, "10")

        assert _titles(rows) == ["BBC World", "Euro News"]
        assert provider.requests[-1]["category_id"] == "10"
        assert cache.list_streams(account.id, MediaKind.LIVE, "20") == sports_before

    @pytest.mark.asyncio
    async def test_rejected_filter_falls_back_to_full_kind(self, cache, provider, draft):
        account = await cache.full_sync(draft)
        provider.reject_category_filter = True
        provider.catalog["get_live_streams"][1]["name"] = "Sky Sports 2"

        rows = await cache.refresh_category(account.id, MediaKind.LIVE, "20")

        assert _titles(rows) == ["Euro News", "Sky Sports 2"]
        assert provider.actions()[-2:] == ["get_live_categories", "get_live_streams"]
        assert len(cache.list_categories(account.id, MediaKind.LIVE)) == 2

    @pytest.mark.asyncio
    async def test_series_category_refresh(self, cache, provider, draft):
        account = await cache.full_sync(draft)
        provider.catalog["get_series"].append({"series_id": 501, "name": "Bleak House", "category_id": "40"})

        rows = await cache.refresh_category(account.id, MediaKind.SERIES, "40")

        assert _titles(rows) == ["Bleak House", "The Wire"]

    @pytest.mark.asyncio
    async def test_cancelled_refresh_does_not_write(self, cache, provider, draft):
        account = await cache.full_sync(draft)
        provider.catalog["get_live_streams"][0]["name"] = "BBC World"
        token = CancellationToken()
        token.cancel()

        with pytest.raises(RefreshCancelled):
            await cache.refresh_category(account.id, MediaKind.LIVE, "10", token)

        assert "BBC News" in _titles(cache.list_streams(account.id, MediaKind.LIVE, "10"))

    @pytest.mark.asyncio
    async def test_cancel_while_fetching_discards_rows(self, cache, provider, draft):
        account = await cache.full_sync(draft)
        provider.catalog["get_live_streams"][0]["name"] = "BBC World"
        token = CancellationToken()

        def cancel_on_scoped_listing(params):
            if params.get("category_id") == "10":
                token.cancel()

        provider.on_request = cancel_on_scoped_listing

        with pytest.raises(RefreshCancelled):
            await cache.refresh_category(account.id, MediaKind.LIVE, "10", token)

        assert provider.actions()[-1] == "get_live_streams"
        titles = _titles(cache.list_streams(account.id, MediaKind.LIVE, "10"))
        assert "BBC News" in titles
        assert "BBC World" not in titles

    @pytest.mark.asyncio
    async def test_cancel_during_full_kind_fallback_discards_rows(self, cache, provider, draft):
        account = await cache.full_sync(draft)
        provider.reject_category_filter = True
        provider.catalog["get_live_streams"][1]["name"] = "Sky Sports 2"
        token = CancellationToken()

        def cancel_on_full_listing(params):
            if params.get("action") == "get_live_streams" and "category_id" not in params:
                token.cancel()

        provider.on_request = cancel_on_full_listing

        with pytest.raises(RefreshCancelled):
            await cache.refresh_category(account.id, MediaKind.LIVE, "20", token)

        assert provider.actions()[-3:] == ["get_live_streams", "get_live_categories", "get_live_streams"]
        assert _titles(cache.list_streams(account.id, MediaKind.LIVE, "20")) == ["Euro News", "Sky Sports"]
        assert len(cache.list_categories(account.id, MediaKind.LIVE)) == 2

    @pytest.mark.asyncio
    async def test_sentinel_category_is_invalid(self, cache, provider, draft):
        account = await cache.full_sync(draft)
        with pytest.raises(InvalidInput):
            await cache.refresh_category(account.id, MediaKind.LIVE, "null")


class TestEpisodes:
    @pytest.mark.asyncio
    async def test_load_then_cache(self, cache, provider, draft):
        account = await cache.full_sync(draft)

        result = await cache.load_episodes(account.id, "500")

        assert result.kind == "episodes"
        assert result.from_cache is False
        assert [e.episode_id for e in result.episodes] == ["5001", "5002"]
        assert result.episodes[0].playback_url == f"{PLAYBACK_BASE}/series/alice/secret/5001.mp4"
        # Container missing upstream: the account's preferred VOD container
        assert result.episodes[1].playback_url.endswith("/5002.m3u8")

        again = await cache.load_episodes(account.id, cache.list_series(account.id)[0])
        assert again.from_cache is True
        assert len(again.episodes) == 2

    @pytest.mark.asyncio
    async def test_force_refresh_refetches(self, cache, provider, draft):
        account = await cache.full_sync(draft)
        await cache.load_episodes(account.id, "500")
        provider.series_info["500"]["episodes"]["1"].pop()

        result = await cache.load_episodes(account.id, "500", force_refresh=True)

        assert result.from_cache is False
        assert [e.episode_id for e in result.episodes] == ["5001"]

    @pytest.mark.asyncio
    async def test_fallback_when_no_episodes(self, cache, provider, draft):
        account = await cache.full_sync(draft)
        provider.series_info["500"] = {"info": {"message": "Episodes unavailable"}, "episodes": {}}

        result = await cache.load_episodes(account.id, "500")

        assert result.kind == "fallback"
        assert result.reason == "Episodes unavailable"
        assert result.fallback.title == "The Wire"
        assert result.fallback.media_kind == MediaKind.SERIES
        assert result.fallback.stream_url == f"{PLAYBACK_BASE}/series/alice/secret/500.m3u8"

    @pytest.mark.asyncio
    async def test_blank_series_id_is_unsupported(self, cache, provider, draft):
        account = await cache.full_sync(draft)
        record = SeriesRecord(account_id=account.id, category_id="40", series_id="  ", title="Broken")
        result = await cache.load_episodes(account.id, record)
        assert result.kind == "unsupported"

    @pytest.mark.asyncio
    async def test_account_deleted_while_fetching(self, cache, provider, draft, monkeypatch):
        account = await cache.full_sync(draft)
        fetch_series_episodes = cache.xtream.fetch_series_episodes

        async def fetch_then_delete(*args, **kwargs):
            listing = await fetch_series_episodes(*args, **kwargs)
            await cache.delete_account(account.id)
            return listing

        monkeypatch.setattr(cache.xtream, "fetch_series_episodes", fetch_then_delete)

        with pytest.raises(InvalidInput):
            await cache.load_episodes(account.id, "500")
        assert cache.list_episodes(account.id, "500") == []
        assert cache.cache_counts(account.id)["episodes"] == 0


class TestFavoritesAndSearch:
    @pytest.mark.asyncio
    async def test_toggle_twice_restores_state(self, cache, provider, draft):
        account = await cache.full_sync(draft)
        item = cache.list_streams(account.id, MediaKind.MOVIE)[0].as_playable()

        assert await cache.toggle_favorite(item) is True
        assert cache.is_favorite(item)
        (favorite,) = cache.list_favorites(account.id)
        assert favorite.as_playable().stream_url == item.stream_url

        assert await cache.toggle_favorite(item) is False
        assert not cache.is_favorite(item)
        assert cache.list_favorites() == []

    @pytest.mark.asyncio
    async def test_search_is_case_insensitive_and_deduplicated(self, cache, provider, draft):
        account = await cache.full_sync(draft)

        results = cache.search(account.id, "NEWS")

        assert [r.title for r in results] == ["BBC News", "Euro News"]
        assert all(r.kind == "playable" for r in results)
        assert cache.search(account.id, "   ") == []

    @pytest.mark.asyncio
    async def test_search_finds_series_and_episodes(self, cache, provider, draft):
        account = await cache.full_sync(draft)
        await cache.load_episodes(account.id, "500")

        (series,) = cache.search(None, "wire")
        assert series.kind == "series"
        assert series.series.series_id == "500"

        (episode,) = cache.search(account.id, "target")
        assert episode.playable.subtitle == "The Wire · S1 E1"

    @pytest.mark.asyncio
    async def test_delete_account_removes_everything(self, cache, provider, draft):
        account = await cache.full_sync(draft)
        await cache.toggle_favorite(cache.list_streams(account.id, MediaKind.LIVE)[0].as_playable())
        await cache.load_episodes(account.id, "500")

        assert await cache.delete_account(account.id) is True

        assert cache.get_account(account.id) is None
        assert cache.list_favorites(account.id) == []
        assert all(v == 0 for v in cache.cache_counts(account.id).values())
        assert await cache.delete_account(account.id) is False
