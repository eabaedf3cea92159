"""World shards: persistent lore fragments unlocked during play.

Unlocking is idempotent per (player, theme, shard_key). The narrator may
propose the same key more than once, so a unique-key violation is a no-op.
"""

import logging
import sqlite3
from typing import Any

from anomady.models import WorldShard

from .core import reader, transaction, utcnow

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("key", "title", "content", "unlock_condition")


def _row_to_shard(row: sqlite3.Row) -> WorldShard:
    return WorldShard(
        id=row["id"],
        player_id=row["player_id"],
        theme_id=row["theme_id"],
        shard_key=row["shard_key"],
        title=row["title"],
        content=row["content"],
        unlock_condition=row["unlock_condition"],
        is_active_for_new_games=bool(row["is_active_for_new_games"]),
        created_at=row["created_at"],
    )


def unlock_shard(
    conn: sqlite3.Connection, player_id: str, theme_id: str, fragment: dict[str, Any]
) -> bool:
    """Insert a fragment. Returns True if a new row was written.

    Incomplete fragments are logged and skipped. Duplicates are skipped.
    Any other database error propagates and fails the enclosing save.
    """
    missing = [f for f in REQUIRED_FIELDS if not str(fragment.get(f) or "").strip()]
    if missing:
        logger.warning(
            "rejected lore unlock for player=%s theme=%s: missing %s",
            player_id, theme_id, ", ".join(missing),
        )
        return False

    try:
        conn.execute(
            "INSERT INTO world_shards (player_id, theme_id, shard_key, title, content, "
            "unlock_condition, is_active_for_new_games, created_at) VALUES (?, ?, ?, ?, ?, ?, 1, ?)",
            (
                player_id,
                theme_id,
                fragment["key"].strip(),
                fragment["title"],
                fragment["content"],
                fragment["unlock_condition"],
                utcnow(),
            ),
        )
    except sqlite3.IntegrityError as e:
        if "UNIQUE" not in str(e):
            raise
        logger.info(
            "world shard '%s' already unlocked for player=%s theme=%s",
            fragment["key"], player_id, theme_id,
        )
        return False
    logger.info("world shard '%s' unlocked for player=%s theme=%s", fragment["key"], player_id, theme_id)
    return True


def list_shards(player_id: str, theme_id: str) -> list[WorldShard]:
    with reader() as conn:
        rows = conn.execute(
            "SELECT * FROM world_shards WHERE player_id = ? AND theme_id = ? ORDER BY id",
            (player_id, theme_id),
        ).fetchall()
    return [_row_to_shard(r) for r in rows]


def set_shard_active(player_id: str, shard_id: int, active: bool) -> WorldShard | None:
    """Toggle whether a shard seeds new games. Returns None if not found."""
    with transaction() as conn:
        cur = conn.execute(
            "UPDATE world_shards SET is_active_for_new_games = ? WHERE id = ? AND player_id = ?",
            (int(active), shard_id, player_id),
        )
        if cur.rowcount == 0:
            return None
        row = conn.execute("SELECT * FROM world_shards WHERE id = ?", (shard_id,)).fetchone()
    return _row_to_shard(row)


def delete_shard(player_id: str, shard_id: int) -> bool:
    with transaction() as conn:
        cur = conn.execute(
            "DELETE FROM world_shards WHERE id = ? AND player_id = ?",
            (shard_id, player_id),
        )
        return cur.rowcount > 0


def reset_shards(player_id: str, theme_id: str) -> int:
    """Delete every shard of a theme. Returns how many were removed."""
    with transaction() as conn:
        cur = conn.execute(
            "DELETE FROM world_shards WHERE player_id = ? AND theme_id = ?",
            (player_id, theme_id),
        )
        return cur.rowcount


def shaped_themes_summary(player_id: str) -> dict[str, dict[str, Any]]:
    """{theme_id: {"has_shards": bool, "active_shard_count": int}}"""
    with reader() as conn:
        rows = conn.execute(
            "SELECT theme_id, COUNT(*) AS total, SUM(is_active_for_new_games) AS active "
            "FROM world_shards WHERE player_id = ? GROUP BY theme_id",
            (player_id,),
        ).fetchall()
    return {
        r["theme_id"]: {"has_shards": r["total"] > 0, "active_shard_count": r["active"] or 0}
        for r in rows
    }
