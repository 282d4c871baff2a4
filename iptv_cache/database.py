"""SQLite local store — schema and connection helpers.

Usage
-----
    conn = db_connect(db_path)
    try:
        conn.execute(...)
        conn.commit()
    finally:
        conn.close()

A connection closed without ``commit()`` discards its pending writes, which
is what the cache relies on to keep multi-table replacements atomic.
"""
from __future__ import annotations

import logging
import sqlite3

logger = logging.getLogger(__name__)

DB_NAME = "catalog.db"


# ---------------------------------------------------------------------------
# Low-level connection helpers
# ---------------------------------------------------------------------------

def _casefold(value: str | None) -> str:
    """SQLite user function: Unicode-aware lower()."""
    if value is None:
        return ""
    return str(value).casefold()


def db_connect(db_path: str) -> sqlite3.Connection:
    """Return a :class:`sqlite3.Connection` with row access by name.

    *Always* called inside a ``try/finally`` block by callers.
    """
    conn = sqlite3.connect(db_path, timeout=30, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA foreign_keys=ON")
    conn.execute("PRAGMA synchronous=NORMAL")
    conn.create_function("casefold", 1, _casefold, deterministic=True)
    return conn


# ---------------------------------------------------------------------------
# Schema – CREATE TABLE IF NOT EXISTS
# ---------------------------------------------------------------------------

_SCHEMA = """
-- ── Accounts ──────────────────────────────────────────────────────────────

CREATE TABLE IF NOT EXISTS provider_accounts (
    id                TEXT PRIMARY KEY,
    display_name      TEXT NOT NULL,
    base_url          TEXT NOT NULL,
    username          TEXT NOT NULL,
    password          TEXT NOT NULL,
    updated_at        TEXT,
    playback_base_url TEXT,
    live_container    TEXT,
    vod_container     TEXT,
    status            TEXT,
    exp_date          TEXT,
    last_synced_at    TEXT
);

-- ── Catalog mirror (rebuilt from upstream) ────────────────────────────────

CREATE TABLE IF NOT EXISTS media_categories (
    account_id   TEXT NOT NULL
                 REFERENCES provider_accounts(id) ON DELETE CASCADE,
    media_kind   TEXT NOT NULL,
    category_id  TEXT NOT NULL,
    name         TEXT NOT NULL,
    order_index  INTEGER NOT NULL DEFAULT 0,
    updated_at   TEXT,
    PRIMARY KEY (account_id, media_kind, category_id)
);

-- One row per (stream, category) membership
CREATE TABLE IF NOT EXISTS media_streams (
    account_id   TEXT NOT NULL
                 REFERENCES provider_accounts(id) ON DELETE CASCADE,
    media_kind   TEXT NOT NULL,
    category_id  TEXT NOT NULL,
    stream_id    TEXT NOT NULL,
    title        TEXT NOT NULL,
    playback_url TEXT NOT NULL,
    logo_url     TEXT,
    PRIMARY KEY (account_id, media_kind, category_id, stream_id)
);

CREATE INDEX IF NOT EXISTS idx_streams_account_kind
    ON media_streams (account_id, media_kind);

CREATE TABLE IF NOT EXISTS series_records (
    account_id   TEXT NOT NULL
                 REFERENCES provider_accounts(id) ON DELETE CASCADE,
    category_id  TEXT NOT NULL,
    series_id    TEXT NOT NULL,
    title        TEXT NOT NULL,
    cover_url    TEXT,
    synopsis     TEXT,
    PRIMARY KEY (account_id, category_id, series_id)
);

CREATE TABLE IF NOT EXISTS series_episodes (
    account_id     TEXT NOT NULL
                   REFERENCES provider_accounts(id) ON DELETE CASCADE,
    series_id      TEXT NOT NULL,
    episode_id     TEXT NOT NULL,
    season_number  INTEGER NOT NULL DEFAULT 0,
    episode_number INTEGER NOT NULL DEFAULT 0,
    title          TEXT NOT NULL,
    playback_url   TEXT NOT NULL,
    overview       TEXT,
    PRIMARY KEY (account_id, series_id, episode_id)
);

-- ── User data ─────────────────────────────────────────────────────────────

CREATE TABLE IF NOT EXISTS favorites (
    favorite_key TEXT PRIMARY KEY,
    account_id   TEXT NOT NULL,
    media_kind   TEXT NOT NULL,
    item_id      TEXT NOT NULL,
    title        TEXT NOT NULL,
    playback_url TEXT NOT NULL,
    created_at   TEXT
);

CREATE INDEX IF NOT EXISTS idx_favorites_account
    ON favorites (account_id);
"""

CACHE_TABLES = ("series_episodes", "series_records", "media_streams", "media_categories")


def init_db(db_path: str) -> None:
    """Create all tables and indexes. Safe to call on every startup (idempotent)."""
    conn = db_connect(db_path)
    try:
        conn.executescript(_SCHEMA)
        conn.commit()
        logger.info(f"Database initialised at {db_path}")
    finally:
        conn.close()
