"""Cache service — provider catalog mirrored into SQLite, scoped per account.

Every mutation runs under one ``asyncio.Lock`` so writes never interleave;
network round trips happen before the lock is taken. Reads open their own
connection and may run concurrently with each other.

Full syncs are committed at the end of the pipeline: each phase fetches into
memory and a single transaction then replaces the account's cache rows, so a
failure in any phase leaves the previous cache untouched.
"""
from __future__ import annotations

import asyncio
import logging
import sqlite3
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Optional, Union
from urllib.parse import urlsplit

from iptv_cache.database import CACHE_TABLES, db_connect
from iptv_cache.errors import (
    DecodingError,
    EmptyResponse,
    InvalidInput,
    ProviderError,
    RefreshCancelled,
    ServerError,
)
from iptv_cache.models.catalog import (
    AccountDraft,
    EpisodeLoadResult,
    FavoriteItem,
    MediaCategory,
    MediaStream,
    PlayableItem,
    ProviderAccount,
    SearchResult,
    SeriesEpisode,
    SeriesRecord,
)
from iptv_cache.models.provider import Authentication, Category, Credentials, Episode, Series, Stream
from iptv_cache.models.xtream import (
    DEFAULT_EPISODE_CONTAINER,
    FALLBACK_CATEGORY_ID,
    NO_CATEGORY_SENTINELS,
    MediaKind,
    ValidationStep,
)
from iptv_cache.services.flexible import normalize_category_identifier
from iptv_cache.services.progress import ValidationStepTracker
from iptv_cache.services.url_builder import (
    build_playback_url,
    make_credentials,
    normalized_base_url,
    playback_credentials,
    select_preferred_container,
)

if TYPE_CHECKING:
    from iptv_cache.services.xtream_service import XtreamClient

logger = logging.getLogger(__name__)

# A category-filtered query failing with one of these is retried as a full-kind refresh
_FILTER_REJECTIONS = (ServerError, DecodingError, EmptyResponse)


class CancellationToken:
    """Flag checked before every write of a background refresh."""

    def __init__(self):
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def is_cancelled(self) -> bool:
        return self._cancelled

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise RefreshCancelled()


# ---------------------------------------------------------------------------
# Category membership and row building
# ---------------------------------------------------------------------------

def _explicit_memberships(primary: Optional[str], category_ids: list[str]) -> list[str]:
    result: list[str] = []
    if primary and primary not in NO_CATEGORY_SENTINELS:
        result.append(primary)
    for raw in category_ids:
        category_id = normalize_category_identifier(raw)
        if category_id is not None and category_id not in result:
            result.append(category_id)
    return result


def category_memberships(primary: Optional[str], category_ids: list[str]) -> list[str]:
    """Categories an upstream item belongs to, never empty."""
    explicit = _explicit_memberships(primary, category_ids)
    if explicit:
        return explicit
    if primary and primary not in NO_CATEGORY_SENTINELS:
        return [primary]
    secondary = next((c for c in category_ids if normalize_category_identifier(c)), None)
    if secondary:
        return [normalize_category_identifier(secondary)]
    return [primary or FALLBACK_CATEGORY_ID]


def _scoped_memberships(primary, category_ids, only_category: Optional[str]) -> list[str]:
    if only_category is None:
        return category_memberships(primary, category_ids)
    explicit = _explicit_memberships(primary, category_ids)
    # Items without a usable category came from the filtered query itself
    if not explicit or only_category in explicit:
        return [only_category]
    return []


def build_category_rows(account_id: str, kind: MediaKind, categories: list[Category]) -> list[MediaCategory]:
    now = datetime.now().isoformat()
    seen: set[str] = set()
    rows: list[MediaCategory] = []
    for category in categories:
        if category.category_id in seen:
            continue
        seen.add(category.category_id)
        rows.append(
            MediaCategory(
                account_id=account_id,
                media_kind=kind,
                category_id=category.category_id,
                name=category.name,
                order_index=len(rows),
                updated_at=now,
            )
        )
    return rows


def build_stream_rows(
    account_id: str,
    kind: MediaKind,
    streams: list[Stream],
    playback: Credentials,
    preferred_container: Optional[str] = None,
    only_category: Optional[str] = None,
) -> list[MediaStream]:
    seen: set[tuple[str, str]] = set()
    rows: list[MediaStream] = []
    for stream in streams:
        if kind == MediaKind.LIVE:
            container = preferred_container or stream.container_extension
        else:
            container = stream.container_extension or preferred_container
        url = build_playback_url(playback, kind, stream.stream_id, container, stream.direct_source)
        for category_id in _scoped_memberships(stream.category_id, stream.category_ids, only_category):
            pair = (stream.stream_id, category_id)
            if pair in seen:
                continue
            seen.add(pair)
            rows.append(
                MediaStream(
                    account_id=account_id,
                    media_kind=kind,
                    category_id=category_id,
                    stream_id=stream.stream_id,
                    title=stream.name,
                    playback_url=url,
                    logo_url=stream.logo_url,
                )
            )
    return rows


def build_series_rows(
    account_id: str, series_list: list[Series], only_category: Optional[str] = None
) -> list[SeriesRecord]:
    seen: set[tuple[str, str]] = set()
    rows: list[SeriesRecord] = []
    for series in series_list:
        for category_id in _scoped_memberships(series.category_id, series.category_ids, only_category):
            pair = (series.series_id, category_id)
            if pair in seen:
                continue
            seen.add(pair)
            rows.append(
                SeriesRecord(
                    account_id=account_id,
                    category_id=category_id,
                    series_id=series.series_id,
                    title=series.name,
                    cover_url=series.cover_url,
                    synopsis=series.synopsis,
                )
            )
    return rows


def build_episode_rows(account_id: str, series_id: str, episodes: list[Episode]) -> list[SeriesEpisode]:
    seen: set[str] = set()
    rows: list[SeriesEpisode] = []
    for episode in episodes:
        if episode.id in seen:
            continue
        seen.add(episode.id)
        rows.append(
            SeriesEpisode(
                account_id=account_id,
                series_id=series_id,
                episode_id=episode.id,
                season_number=episode.season,
                episode_number=episode.number,
                title=episode.title,
                playback_url=episode.stream_url,
                overview=episode.overview,
            )
        )
    return rows


@dataclass
class _CatalogSnapshot:
    """Rows fetched during a full sync, waiting for the final commit."""

    categories: list[MediaCategory] = field(default_factory=list)
    streams: list[MediaStream] = field(default_factory=list)
    series: list[SeriesRecord] = field(default_factory=list)


@dataclass
class _PlaybackContext:
    credentials: Credentials
    playback: Credentials
    live_container: Optional[str]
    vod_container: Optional[str]
    auth: Authentication

    def container_for(self, kind: MediaKind) -> Optional[str]:
        return self.live_container if kind == MediaKind.LIVE else self.vod_container


# ---------------------------------------------------------------------------
# SQL helpers
# ---------------------------------------------------------------------------

def _insert_categories(conn: sqlite3.Connection, rows: list[MediaCategory]) -> None:
    conn.executemany(
        "INSERT OR REPLACE INTO media_categories "
        "(account_id, media_kind, category_id, name, order_index, updated_at) "
        "VALUES (?,?,?,?,?,?)",
        [(r.account_id, r.media_kind.value, r.category_id, r.name, r.order_index, r.updated_at) for r in rows],
    )


def _insert_streams(conn: sqlite3.Connection, rows: list[MediaStream]) -> None:
    conn.executemany(
        "INSERT OR IGNORE INTO media_streams "
        "(account_id, media_kind, category_id, stream_id, title, playback_url, logo_url) "
        "VALUES (?,?,?,?,?,?,?)",
        [
            (r.account_id, r.media_kind.value, r.category_id, r.stream_id, r.title, r.playback_url, r.logo_url)
            for r in rows
        ],
    )


def _insert_series(conn: sqlite3.Connection, rows: list[SeriesRecord]) -> None:
    conn.executemany(
        "INSERT OR IGNORE INTO series_records "
        "(account_id, category_id, series_id, title, cover_url, synopsis) "
        "VALUES (?,?,?,?,?,?)",
        [(r.account_id, r.category_id, r.series_id, r.title, r.cover_url, r.synopsis) for r in rows],
    )


def _insert_episodes(conn: sqlite3.Connection, rows: list[SeriesEpisode]) -> None:
    conn.executemany(
        "INSERT OR IGNORE INTO series_episodes "
        "(account_id, series_id, episode_id, season_number, episode_number, title, playback_url, overview) "
        "VALUES (?,?,?,?,?,?,?,?)",
        [
            (r.account_id, r.series_id, r.episode_id, r.season_number, r.episode_number,
             r.title, r.playback_url, r.overview)
            for r in rows
        ],
    )


def _upsert_account(conn: sqlite3.Connection, account: ProviderAccount) -> None:
    conn.execute(
        """INSERT INTO provider_accounts
           (id, display_name, base_url, username, password, updated_at,
            playback_base_url, live_container, vod_container, status, exp_date, last_synced_at)
           VALUES (?,?,?,?,?,?,?,?,?,?,?,?)
           ON CONFLICT(id) DO UPDATE SET
            display_name=excluded.display_name, base_url=excluded.base_url,
            username=excluded.username, password=excluded.password,
            updated_at=excluded.updated_at, playback_base_url=excluded.playback_base_url,
            live_container=excluded.live_container, vod_container=excluded.vod_container,
            status=excluded.status, exp_date=excluded.exp_date,
            last_synced_at=excluded.last_synced_at""",
        (
            account.id, account.display_name, account.base_url, account.username, account.password,
            account.updated_at, account.playback_base_url, account.live_container,
            account.vod_container, account.status, account.exp_date, account.last_synced_at,
        ),
    )


def _best_effort(conn: sqlite3.Connection, sql: str, params: tuple) -> None:
    """Run a cleanup statement; failures surface later at commit instead."""
    try:
        conn.execute(sql, params)
    except sqlite3.Error as e:
        logger.warning(f"Cache cleanup failed ({sql.split(' WHERE')[0]}): {e}")


def _require_account_row(conn: sqlite3.Connection, account_id: str) -> None:
    # The account may have been deleted while its rows were being fetched
    if conn.execute("SELECT 1 FROM provider_accounts WHERE id = ?", (account_id,)).fetchone() is None:
        raise InvalidInput(f"Unknown provider account: {account_id}")


def _dedupe_by(items: list, key) -> list:
    seen: set = set()
    result = []
    for item in items:
        k = key(item)
        if k in seen:
            continue
        seen.add(k)
        result.append(item)
    return result


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------

class CacheService:
    """Owns the local catalog store and the sync workflows that fill it."""

    def __init__(
        self,
        db_path: str,
        xtream: "XtreamClient",
        default_episode_container: str = DEFAULT_EPISODE_CONTAINER,
    ):
        self.db_path = db_path
        self.xtream = xtream
        # Sync progress keyed by account id, drafts included
        self.trackers: dict[str, ValidationStepTracker] = {}
        self.default_episode_container = default_episode_container
        self._write_lock = asyncio.Lock()

    def tracker_for(self, account_id: str) -> ValidationStepTracker:
        tracker = self.trackers.get(account_id)
        if tracker is None:
            tracker = self.trackers[account_id] = ValidationStepTracker()
        return tracker

    def current_validation_step(self, account_id: str) -> Optional[ValidationStep]:
        tracker = self.trackers.get(account_id)
        return tracker.current_step if tracker else None

    def sync_progress(self) -> dict:
        return {account_id: t.snapshot() for account_id, t in self.trackers.items()}

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    def list_accounts(self) -> list[ProviderAccount]:
        conn = db_connect(self.db_path)
        try:
            rows = conn.execute(
                "SELECT * FROM provider_accounts ORDER BY casefold(display_name), id"
            ).fetchall()
            return [ProviderAccount(**dict(r)) for r in rows]
        finally:
            conn.close()

    def get_account(self, account_id: str) -> Optional[ProviderAccount]:
        conn = db_connect(self.db_path)
        try:
            row = conn.execute("SELECT * FROM provider_accounts WHERE id = ?", (account_id,)).fetchone()
            return ProviderAccount(**dict(row)) if row else None
        finally:
            conn.close()

    def _require_account(self, account_id: str) -> ProviderAccount:
        account = self.get_account(account_id)
        if account is None:
            raise InvalidInput(f"Unknown provider account: {account_id}")
        return account

    async def delete_account(self, account_id: str) -> bool:
        """Drop an account with its cache rows and favorites in one transaction."""
        async with self._write_lock:
            conn = db_connect(self.db_path)
            try:
                for table in CACHE_TABLES:
                    conn.execute(f"DELETE FROM {table} WHERE account_id = ?", (account_id,))
                conn.execute("DELETE FROM favorites WHERE account_id = ?", (account_id,))
                cur = conn.execute("DELETE FROM provider_accounts WHERE id = ?", (account_id,))
                conn.commit()
                deleted = cur.rowcount > 0
            finally:
                conn.close()
        self.trackers.pop(account_id, None)
        if deleted:
            logger.info(f"Deleted provider account {account_id}")
        return deleted

    # ------------------------------------------------------------------
    # Read queries
    # ------------------------------------------------------------------

    def list_categories(self, account_id: str, kind: MediaKind) -> list[MediaCategory]:
        kind = MediaKind(kind)
        conn = db_connect(self.db_path)
        try:
            rows = conn.execute(
                "SELECT * FROM media_categories WHERE account_id = ? AND media_kind = ? "
                "ORDER BY order_index, casefold(name)",
                (account_id, kind.value),
            ).fetchall()
            return [MediaCategory(**dict(r)) for r in rows]
        finally:
            conn.close()

    def list_streams(
        self, account_id: str, kind: MediaKind, category_id: Optional[str] = None
    ) -> list[MediaStream]:
        """Streams of one category, or of the whole kind (one row per stream)."""
        kind = MediaKind(kind)
        sql = "SELECT * FROM media_streams WHERE account_id = ? AND media_kind = ?"
        params: list = [account_id, kind.value]
        category_id = normalize_category_identifier(category_id)
        if category_id is not None:
            sql += " AND category_id = ?"
            params.append(category_id)
        sql += " ORDER BY casefold(title), stream_id, category_id"
        conn = db_connect(self.db_path)
        try:
            streams = [MediaStream(**dict(r)) for r in conn.execute(sql, params).fetchall()]
        finally:
            conn.close()
        if category_id is None:
            streams = _dedupe_by(streams, lambda s: s.stream_id)
        return streams

    def list_series(self, account_id: str, category_id: Optional[str] = None) -> list[SeriesRecord]:
        sql = "SELECT * FROM series_records WHERE account_id = ?"
        params: list = [account_id]
        category_id = normalize_category_identifier(category_id)
        if category_id is not None:
            sql += " AND category_id = ?"
            params.append(category_id)
        sql += " ORDER BY casefold(title), series_id, category_id"
        conn = db_connect(self.db_path)
        try:
            series = [SeriesRecord(**dict(r)) for r in conn.execute(sql, params).fetchall()]
        finally:
            conn.close()
        if category_id is None:
            series = _dedupe_by(series, lambda s: s.series_id)
        return series

    def list_episodes(self, account_id: str, series_id: str) -> list[SeriesEpisode]:
        conn = db_connect(self.db_path)
        try:
            rows = conn.execute(
                "SELECT * FROM series_episodes WHERE account_id = ? AND series_id = ? "
                "ORDER BY season_number, episode_number, casefold(title)",
                (account_id, str(series_id)),
            ).fetchall()
            return [SeriesEpisode(**dict(r)) for r in rows]
        finally:
            conn.close()

    def list_favorites(self, account_id: Optional[str] = None) -> list[FavoriteItem]:
        sql = "SELECT * FROM favorites"
        params: tuple = ()
        if account_id is not None:
            sql += " WHERE account_id = ?"
            params = (account_id,)
        sql += " ORDER BY created_at DESC, casefold(title)"
        conn = db_connect(self.db_path)
        try:
            return [FavoriteItem(**dict(r)) for r in conn.execute(sql, params).fetchall()]
        finally:
            conn.close()

    def is_favorite(self, item: PlayableItem) -> bool:
        conn = db_connect(self.db_path)
        try:
            row = conn.execute(
                "SELECT 1 FROM favorites WHERE favorite_key = ?", (item.favorite_key,)
            ).fetchone()
            return row is not None
        finally:
            conn.close()

    def search(self, account_id: Optional[str], query: str) -> list[SearchResult]:
        """Case-insensitive title search over streams, episodes and series.

        ``account_id=None`` searches every account.
        """
        needle = (query or "").strip().casefold()
        if not needle:
            return []
        scope = ""
        params: list = [needle]
        if account_id is not None:
            scope = " AND account_id = ?"
            params.append(account_id)

        conn = db_connect(self.db_path)
        try:
            stream_rows = conn.execute(
                f"SELECT * FROM media_streams WHERE instr(casefold(title), ?) > 0{scope} "
                "ORDER BY category_id",
                params,
            ).fetchall()
            episode_rows = conn.execute(
                "SELECT e.*, (SELECT s.title FROM series_records s "
                "  WHERE s.account_id = e.account_id AND s.series_id = e.series_id LIMIT 1) AS series_title "
                f"FROM series_episodes e WHERE instr(casefold(e.title), ?) > 0"
                f"{scope.replace('account_id', 'e.account_id')}",
                params,
            ).fetchall()
            series_rows = conn.execute(
                f"SELECT * FROM series_records WHERE instr(casefold(title), ?) > 0{scope} "
                "ORDER BY category_id",
                params,
            ).fetchall()
        finally:
            conn.close()

        results: list[SearchResult] = []
        seen: set[str] = set()
        for row in stream_rows:
            playable = MediaStream(**dict(row)).as_playable()
            if playable.favorite_key in seen:
                continue
            seen.add(playable.favorite_key)
            results.append(SearchResult(kind="playable", playable=playable))
        for row in episode_rows:
            data = dict(row)
            series_title = data.pop("series_title", None)
            playable = SeriesEpisode(**data).as_playable(series_title)
            if playable.favorite_key in seen:
                continue
            seen.add(playable.favorite_key)
            results.append(SearchResult(kind="playable", playable=playable))
        for row in series_rows:
            record = SeriesRecord(**dict(row))
            if record.key in seen:
                continue
            seen.add(record.key)
            results.append(SearchResult(kind="series", series=record))

        results.sort(key=lambda r: r.title.casefold())
        return results

    def cache_counts(self, account_id: str) -> dict:
        conn = db_connect(self.db_path)
        try:
            counts = {}
            for kind in (MediaKind.LIVE, MediaKind.MOVIE, MediaKind.SERIES):
                counts[f"{kind.value}_categories"] = conn.execute(
                    "SELECT COUNT(*) FROM media_categories WHERE account_id = ? AND media_kind = ?",
                    (account_id, kind.value),
                ).fetchone()[0]
            for kind in (MediaKind.LIVE, MediaKind.MOVIE):
                counts[f"{kind.value}_streams"] = conn.execute(
                    "SELECT COUNT(DISTINCT stream_id) FROM media_streams WHERE account_id = ? AND media_kind = ?",
                    (account_id, kind.value),
                ).fetchone()[0]
            counts["series"] = conn.execute(
                "SELECT COUNT(DISTINCT series_id) FROM series_records WHERE account_id = ?", (account_id,)
            ).fetchone()[0]
            counts["episodes"] = conn.execute(
                "SELECT COUNT(*) FROM series_episodes WHERE account_id = ?", (account_id,)
            ).fetchone()[0]
            counts["favorites"] = conn.execute(
                "SELECT COUNT(*) FROM favorites WHERE account_id = ?", (account_id,)
            ).fetchone()[0]
            return counts
        finally:
            conn.close()

    # ------------------------------------------------------------------
    # Favorites
    # ------------------------------------------------------------------

    async def toggle_favorite(self, item: PlayableItem) -> bool:
        """Add or remove *item* from favorites; returns whether it is now a favorite."""
        async with self._write_lock:
            conn = db_connect(self.db_path)
            try:
                cur = conn.execute("DELETE FROM favorites WHERE favorite_key = ?", (item.favorite_key,))
                added = cur.rowcount == 0
                if added:
                    conn.execute(
                        "INSERT OR IGNORE INTO favorites "
                        "(favorite_key, account_id, media_kind, item_id, title, playback_url, created_at) "
                        "VALUES (?,?,?,?,?,?,?)",
                        (
                            item.favorite_key, item.account_id, item.media_kind.value, item.id,
                            item.title, item.stream_url, datetime.now().isoformat(),
                        ),
                    )
                conn.commit()
            finally:
                conn.close()
        return added

    # ------------------------------------------------------------------
    # Upstream helpers
    # ------------------------------------------------------------------

    async def _playback_context(self, credentials: Credentials) -> _PlaybackContext:
        auth = await self.xtream.authenticate(credentials)
        return _PlaybackContext(
            credentials=credentials,
            playback=playback_credentials(credentials, auth),
            live_container=select_preferred_container(auth.allowed_output_formats, MediaKind.LIVE),
            vod_container=select_preferred_container(auth.allowed_output_formats, MediaKind.MOVIE),
            auth=auth,
        )

    async def _fetch_kind(
        self, account_id: str, kind: MediaKind, ctx: _PlaybackContext
    ) -> tuple[list[MediaCategory], list]:
        categories = await self.xtream.fetch_categories(ctx.credentials, kind)
        category_rows = build_category_rows(account_id, kind, categories)
        if kind == MediaKind.SERIES:
            series = await self.xtream.fetch_series_list(ctx.credentials)
            return category_rows, build_series_rows(account_id, series)
        streams = await self.xtream.fetch_streams(ctx.credentials, kind)
        return category_rows, build_stream_rows(
            account_id, kind, streams, ctx.playback, ctx.container_for(kind)
        )

    # ------------------------------------------------------------------
    # Full sync
    # ------------------------------------------------------------------

    async def full_sync(
        self,
        target: Union[ProviderAccount, AccountDraft],
        progress: Optional[ValidationStepTracker] = None,
    ) -> ProviderAccount:
        """Authenticate and rebuild the whole cache of one account.

        *target* is a new :class:`AccountDraft` or an existing (possibly
        edited) :class:`ProviderAccount`. The account row is only written
        once every phase succeeded.
        """
        if isinstance(target, AccountDraft):
            account = ProviderAccount(
                display_name=target.display_name,
                base_url=target.base_url,
                username=target.username,
                password=target.password,
            )
        else:
            account = target.model_copy()

        tracker = progress or self.tracker_for(account.id)
        step: Optional[ValidationStep] = None
        tracker.begin()
        try:
            step = ValidationStep.AUTHENTICATE
            tracker.advance(step)
            credentials = make_credentials(account.base_url, account.username, account.password)
            ctx = await self._playback_context(credentials)

            snapshot = _CatalogSnapshot()
            for kind_step, kind in (
                (ValidationStep.LIVE, MediaKind.LIVE),
                (ValidationStep.VOD, MediaKind.MOVIE),
                (ValidationStep.SERIES, MediaKind.SERIES),
            ):
                step = kind_step
                tracker.advance(step)
                categories, items = await self._fetch_kind(account.id, kind, ctx)
                snapshot.categories.extend(categories)
                if kind == MediaKind.SERIES:
                    snapshot.series.extend(items)
                else:
                    snapshot.streams.extend(items)
                logger.info(
                    f"[{account.id}] {kind.display_name}: {len(categories)} categories, {len(items)} rows"
                )

            now = datetime.now().isoformat()
            account = account.model_copy(
                update={
                    "display_name": account.display_name.strip() or urlsplit(credentials.base_url).hostname,
                    "base_url": credentials.base_url,
                    "username": credentials.username,
                    "password": credentials.password,
                    "updated_at": now,
                    "playback_base_url": ctx.playback.base_url,
                    "live_container": ctx.live_container,
                    "vod_container": ctx.vod_container,
                    "status": ctx.auth.status,
                    "exp_date": ctx.auth.exp_date,
                    "last_synced_at": now,
                }
            )
            async with self._write_lock:
                self._commit_full_sync(account, snapshot)
        except Exception as e:
            if isinstance(e, ProviderError) and e.step is None:
                e.step = step
            logger.error(f"Sync of account {account.id} failed during {step.value if step else 'start'}: {e}")
            tracker.fail(e, step)
            raise

        tracker.complete()
        logger.info(
            f"Sync of account {account.id} complete: {len(snapshot.streams)} streams, "
            f"{len(snapshot.series)} series"
        )
        return account

    def _commit_full_sync(self, account: ProviderAccount, snapshot: _CatalogSnapshot) -> None:
        conn = db_connect(self.db_path)
        try:
            _upsert_account(conn, account)
            for table in CACHE_TABLES:
                _best_effort(conn, f"DELETE FROM {table} WHERE account_id = ?", (account.id,))
            _insert_categories(conn, snapshot.categories)
            _insert_streams(conn, snapshot.streams)
            _insert_series(conn, snapshot.series)
            conn.commit()
        finally:
            conn.close()

    async def reload_account(
        self, account_id: str, progress: Optional[ValidationStepTracker] = None
    ) -> ProviderAccount:
        return await self.full_sync(self._require_account(account_id), progress)

    # ------------------------------------------------------------------
    # Category refresh
    # ------------------------------------------------------------------

    async def refresh_category(
        self,
        account_id: str,
        kind: MediaKind,
        category_id: str,
        token: Optional[CancellationToken] = None,
    ) -> list[Union[MediaStream, SeriesRecord]]:
        """Refetch one category and replace only its rows.

        Raises :class:`RefreshCancelled` when *token* is cancelled before the
        write; nothing is written in that case.
        """
        kind = MediaKind(kind)
        token = token or CancellationToken()
        scoped_id = normalize_category_identifier(category_id)
        if scoped_id is None:
            raise InvalidInput(f"Invalid category id: {category_id!r}")
        account = self._require_account(account_id)
        credentials = make_credentials(account.base_url, account.username, account.password)

        ctx = await self._playback_context(credentials)
        token.raise_if_cancelled()
        try:
            if kind == MediaKind.SERIES:
                series = await self.xtream.fetch_series_list(credentials, scoped_id)
                rows = build_series_rows(account_id, series, only_category=scoped_id)
            else:
                streams = await self.xtream.fetch_streams(credentials, kind, scoped_id)
                rows = build_stream_rows(
                    account_id, kind, streams, ctx.playback, ctx.container_for(kind), only_category=scoped_id
                )
        except _FILTER_REJECTIONS as e:
            logger.warning(
                f"[{account_id}] Category {scoped_id} query rejected ({e}); refreshing all {kind.display_name}"
            )
            await self._refresh_media_kind(account_id, kind, ctx, token)
        else:
            token.raise_if_cancelled()
            async with self._write_lock:
                token.raise_if_cancelled()
                self._replace_category(account_id, kind, scoped_id, rows)
            logger.info(f"[{account_id}] Refreshed {kind.value} category {scoped_id}: {len(rows)} rows")

        if kind == MediaKind.SERIES:
            return self.list_series(account_id, scoped_id)
        return self.list_streams(account_id, kind, scoped_id)

    def _replace_category(self, account_id: str, kind: MediaKind, category_id: str, rows: list) -> None:
        conn = db_connect(self.db_path)
        try:
            _require_account_row(conn, account_id)
            if kind == MediaKind.SERIES:
                _best_effort(
                    conn,
                    "DELETE FROM series_records WHERE account_id = ? AND category_id = ?",
                    (account_id, category_id),
                )
                _insert_series(conn, rows)
            else:
                _best_effort(
                    conn,
                    "DELETE FROM media_streams WHERE account_id = ? AND media_kind = ? AND category_id = ?",
                    (account_id, kind.value, category_id),
                )
                _insert_streams(conn, rows)
            conn.execute(
                "UPDATE media_categories SET updated_at = ? "
                "WHERE account_id = ? AND media_kind = ? AND category_id = ?",
                (datetime.now().isoformat(), account_id, kind.value, category_id),
            )
            conn.commit()
        finally:
            conn.close()

    async def _refresh_media_kind(
        self, account_id: str, kind: MediaKind, ctx: _PlaybackContext, token: CancellationToken
    ) -> None:
        categories, items = await self._fetch_kind(account_id, kind, ctx)
        token.raise_if_cancelled()
        async with self._write_lock:
            token.raise_if_cancelled()
            conn = db_connect(self.db_path)
            try:
                _require_account_row(conn, account_id)
                _best_effort(
                    conn,
                    "DELETE FROM media_categories WHERE account_id = ? AND media_kind = ?",
                    (account_id, kind.value),
                )
                if kind == MediaKind.SERIES:
                    _best_effort(conn, "DELETE FROM series_records WHERE account_id = ?", (account_id,))
                    _insert_series(conn, items)
                else:
                    _best_effort(
                        conn,
                        "DELETE FROM media_streams WHERE account_id = ? AND media_kind = ?",
                        (account_id, kind.value),
                    )
                    _insert_streams(conn, items)
                _insert_categories(conn, categories)
                conn.commit()
            finally:
                conn.close()
        logger.info(f"[{account_id}] Refreshed all {kind.display_name}: {len(items)} rows")

    # ------------------------------------------------------------------
    # Episodes
    # ------------------------------------------------------------------

    def _series_title(self, account_id: str, series_id: str) -> Optional[str]:
        conn = db_connect(self.db_path)
        try:
            row = conn.execute(
                "SELECT title FROM series_records WHERE account_id = ? AND series_id = ? LIMIT 1",
                (account_id, series_id),
            ).fetchone()
            return row["title"] if row else None
        finally:
            conn.close()

    async def load_episodes(
        self,
        account_id: str,
        series: Union[SeriesRecord, str],
        force_refresh: bool = False,
    ) -> EpisodeLoadResult:
        """Cached episodes, or fetch them; falls back to one playable stream per series."""
        if isinstance(series, SeriesRecord):
            series_id, title = series.series_id.strip(), series.title
        else:
            series_id = str(series).strip()
            title = self._series_title(account_id, series_id) if series_id else None
        if not series_id:
            return EpisodeLoadResult(kind="unsupported", reason="Series has no identifier")

        if not force_refresh:
            cached = self.list_episodes(account_id, series_id)
            if cached:
                return EpisodeLoadResult(kind="episodes", episodes=cached, from_cache=True)

        account = self._require_account(account_id)
        credentials = make_credentials(account.base_url, account.username, account.password)
        playback = Credentials(
            base_url=normalized_base_url(account.playback_base_url or credentials.base_url),
            username=credentials.username,
            password=credentials.password,
        )
        default_container = account.vod_container or self.default_episode_container

        listing = await self.xtream.fetch_series_episodes(credentials, series_id, default_container, playback)
        if not listing.episodes:
            fallback = PlayableItem(
                id=series_id,
                title=title or f"Series {series_id}",
                subtitle=MediaKind.SERIES.display_name,
                stream_url=build_playback_url(playback, MediaKind.SERIES, series_id, default_container),
                media_kind=MediaKind.SERIES,
                account_id=account_id,
            )
            return EpisodeLoadResult(kind="fallback", fallback=fallback, reason=listing.unsupported_reason)

        rows = build_episode_rows(account_id, series_id, listing.episodes)
        async with self._write_lock:
            conn = db_connect(self.db_path)
            try:
                _require_account_row(conn, account_id)
                _best_effort(
                    conn,
                    "DELETE FROM series_episodes WHERE account_id = ? AND series_id = ?",
                    (account_id, series_id),
                )
                _insert_episodes(conn, rows)
                conn.commit()
            finally:
                conn.close()
        logger.info(f"[{account_id}] Cached {len(rows)} episodes for series {series_id}")
        return EpisodeLoadResult(kind="episodes", episodes=self.list_episodes(account_id, series_id))
