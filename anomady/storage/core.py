"""Storage initialization, path helpers, and SQLite connection handling."""

import json
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

_data_dir: Path | None = None
_presets_dir: Path | None = None

DB_FILENAME = "anomady.db"

_SCHEMA = """
CREATE TABLE IF NOT EXISTS game_states (
    player_id TEXT NOT NULL,
    theme_id TEXT NOT NULL,
    player_identifier TEXT NOT NULL DEFAULT '',
    raw_history TEXT NOT NULL DEFAULT '[]',
    cumulative_summary TEXT NOT NULL DEFAULT '',
    world_lore TEXT NOT NULL DEFAULT '',
    prompt_mode TEXT NOT NULL DEFAULT 'initial',
    narrative_language TEXT NOT NULL DEFAULT 'en',
    dashboard_snapshot TEXT NOT NULL DEFAULT '{}',
    indicator_snapshot TEXT NOT NULL DEFAULT '{}',
    suggested_actions TEXT NOT NULL DEFAULT '[]',
    panel_states TEXT NOT NULL DEFAULT '{}',
    pending_choice INTEGER NOT NULL DEFAULT 0,
    compaction_in_flight INTEGER NOT NULL DEFAULT 0,
    compaction_job_id TEXT,
    model_used TEXT NOT NULL DEFAULT '',
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    PRIMARY KEY (player_id, theme_id)
);

CREATE TABLE IF NOT EXISTS theme_progress (
    player_id TEXT NOT NULL,
    theme_id TEXT NOT NULL,
    level INTEGER NOT NULL DEFAULT 1 CHECK (level >= 1),
    current_xp INTEGER NOT NULL DEFAULT 0 CHECK (current_xp >= 0),
    max_integrity_bonus INTEGER NOT NULL DEFAULT 0,
    max_willpower_bonus INTEGER NOT NULL DEFAULT 0,
    aptitude_bonus INTEGER NOT NULL DEFAULT 0,
    resilience_bonus INTEGER NOT NULL DEFAULT 0,
    acquired_trait_keys TEXT NOT NULL DEFAULT '[]',
    updated_at TEXT NOT NULL,
    PRIMARY KEY (player_id, theme_id)
);

CREATE TABLE IF NOT EXISTS world_shards (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    player_id TEXT NOT NULL,
    theme_id TEXT NOT NULL,
    shard_key TEXT NOT NULL,
    title TEXT NOT NULL,
    content TEXT NOT NULL,
    unlock_condition TEXT NOT NULL,
    is_active_for_new_games INTEGER NOT NULL DEFAULT 1,
    created_at TEXT NOT NULL,
    UNIQUE (player_id, theme_id, shard_key)
);
CREATE INDEX IF NOT EXISTS idx_shards_player_theme ON world_shards(player_id, theme_id);

CREATE TABLE IF NOT EXISTS theme_interactions (
    player_id TEXT NOT NULL,
    theme_id TEXT NOT NULL,
    is_playing INTEGER NOT NULL DEFAULT 0,
    is_liked INTEGER NOT NULL DEFAULT 0,
    last_played_at TEXT,
    PRIMARY KEY (player_id, theme_id)
);
"""


def init_storage(data_dir: Path, presets_dir: Path | None = None) -> None:
    global _data_dir, _presets_dir

    _data_dir = data_dir
    _data_dir.mkdir(parents=True, exist_ok=True)
    if presets_dir is None:
        # Default: repo_root/presets
        presets_dir = Path(__file__).parent.parent.parent / "presets"
    _presets_dir = presets_dir
    conn = connect()
    try:
        conn.executescript(_SCHEMA)
    finally:
        conn.close()


def data_dir() -> Path:
    assert _data_dir is not None, "Call init_storage() before using storage"
    return _data_dir


def presets_dir() -> Path:
    assert _presets_dir is not None, "Call init_storage() before using storage"
    return _presets_dir


def themes_dir() -> Path:
    return presets_dir() / "themes"


def db_path() -> Path:
    return data_dir() / DB_FILENAME


def connect() -> sqlite3.Connection:
    """Open a connection in autocommit mode; transactions are explicit."""
    conn = sqlite3.connect(str(db_path()), timeout=10, isolation_level=None)
    conn.row_factory = sqlite3.Row
    return conn


@contextmanager
def transaction() -> Iterator[sqlite3.Connection]:
    """Run the block inside one write transaction.

    BEGIN IMMEDIATE takes the write lock up front, so read-then-write
    sequences inside the block cannot interleave with another writer.
    Any exception rolls everything back and propagates.
    """
    conn = connect()
    try:
        conn.execute("BEGIN IMMEDIATE")
        yield conn
        conn.execute("COMMIT")
    except BaseException:
        if conn.in_transaction:
            conn.execute("ROLLBACK")
        raise
    finally:
        conn.close()


@contextmanager
def reader() -> Iterator[sqlite3.Connection]:
    conn = connect()
    try:
        yield conn
    finally:
        conn.close()


def utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


def dumps(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False)


def loads(text: str | None, default: Any) -> Any:
    if not text:
        return default
    return json.loads(text)
