"""Theme interaction tracking (is playing, is liked, last played)."""

import sqlite3

from anomady.models import ThemeInteraction

from .core import reader, transaction


def _row_to_interaction(row: sqlite3.Row) -> ThemeInteraction:
    return ThemeInteraction(
        player_id=row["player_id"],
        theme_id=row["theme_id"],
        is_playing=bool(row["is_playing"]),
        is_liked=bool(row["is_liked"]),
        last_played_at=row["last_played_at"],
    )


def touch_interaction(conn: sqlite3.Connection, player_id: str, theme_id: str, timestamp: str) -> None:
    """Mark the theme as being played. New records start unliked."""
    conn.execute(
        "INSERT INTO theme_interactions (player_id, theme_id, is_playing, is_liked, last_played_at) "
        "VALUES (?, ?, 1, 0, ?) "
        "ON CONFLICT (player_id, theme_id) DO UPDATE SET is_playing = 1, "
        "last_played_at = excluded.last_played_at",
        (player_id, theme_id, timestamp),
    )


def mark_not_playing(conn: sqlite3.Connection, player_id: str, theme_id: str) -> None:
    conn.execute(
        "UPDATE theme_interactions SET is_playing = 0 WHERE player_id = ? AND theme_id = ?",
        (player_id, theme_id),
    )


def get_interaction(conn: sqlite3.Connection, player_id: str, theme_id: str) -> ThemeInteraction | None:
    row = conn.execute(
        "SELECT * FROM theme_interactions WHERE player_id = ? AND theme_id = ?",
        (player_id, theme_id),
    ).fetchone()
    return _row_to_interaction(row) if row else None


def list_interactions(player_id: str) -> list[ThemeInteraction]:
    with reader() as conn:
        rows = conn.execute(
            "SELECT * FROM theme_interactions WHERE player_id = ? ORDER BY theme_id",
            (player_id,),
        ).fetchall()
    return [_row_to_interaction(r) for r in rows]


def set_liked(player_id: str, theme_id: str, liked: bool) -> ThemeInteraction:
    """Like or unlike a theme. Creates a not-playing record if missing."""
    with transaction() as conn:
        conn.execute(
            "INSERT INTO theme_interactions (player_id, theme_id, is_playing, is_liked) "
            "VALUES (?, ?, 0, ?) "
            "ON CONFLICT (player_id, theme_id) DO UPDATE SET is_liked = excluded.is_liked",
            (player_id, theme_id, int(liked)),
        )
        interaction = get_interaction(conn, player_id, theme_id)
    assert interaction is not None
    return interaction
