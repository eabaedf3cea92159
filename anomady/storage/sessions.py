"""Game state rows, one per (player, theme)."""

import logging
import sqlite3

from anomady.errors import ConflictError
from anomady.models import Session, Turn

from .core import dumps, loads, reader, transaction

logger = logging.getLogger(__name__)

_COLUMNS = (
    "player_id",
    "theme_id",
    "player_identifier",
    "raw_history",
    "cumulative_summary",
    "world_lore",
    "prompt_mode",
    "narrative_language",
    "dashboard_snapshot",
    "indicator_snapshot",
    "suggested_actions",
    "panel_states",
    "pending_choice",
    "compaction_in_flight",
    "compaction_job_id",
    "model_used",
    "created_at",
    "updated_at",
)


def _row_to_session(row: sqlite3.Row) -> Session:
    return Session(
        player_id=row["player_id"],
        theme_id=row["theme_id"],
        player_identifier=row["player_identifier"],
        raw_history=[Turn.model_validate(t) for t in loads(row["raw_history"], [])],
        cumulative_summary=row["cumulative_summary"],
        world_lore=row["world_lore"],
        prompt_mode=row["prompt_mode"],
        narrative_language=row["narrative_language"],
        dashboard_snapshot=loads(row["dashboard_snapshot"], {}),
        indicator_snapshot=loads(row["indicator_snapshot"], {}),
        suggested_actions=loads(row["suggested_actions"], []),
        panel_states=loads(row["panel_states"], {}),
        pending_choice=bool(row["pending_choice"]),
        compaction_in_flight=bool(row["compaction_in_flight"]),
        compaction_job_id=row["compaction_job_id"],
        model_used=row["model_used"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _session_values(session: Session) -> tuple:
    return (
        session.player_id,
        session.theme_id,
        session.player_identifier,
        dumps([t.model_dump() for t in session.raw_history]),
        session.cumulative_summary,
        session.world_lore,
        session.prompt_mode,
        session.narrative_language,
        dumps(session.dashboard_snapshot),
        dumps(session.indicator_snapshot),
        dumps(session.suggested_actions),
        dumps(session.panel_states),
        int(session.pending_choice),
        int(session.compaction_in_flight),
        session.compaction_job_id,
        session.model_used,
        session.created_at,
        session.updated_at,
    )


def get_session(conn: sqlite3.Connection, player_id: str, theme_id: str) -> Session | None:
    row = conn.execute(
        "SELECT * FROM game_states WHERE player_id = ? AND theme_id = ?",
        (player_id, theme_id),
    ).fetchone()
    return _row_to_session(row) if row else None


def load_session(player_id: str, theme_id: str) -> Session | None:
    """Read the committed session outside of any write transaction."""
    with reader() as conn:
        return get_session(conn, player_id, theme_id)


def insert_session(conn: sqlite3.Connection, session: Session) -> None:
    placeholders = ", ".join("?" for _ in _COLUMNS)
    try:
        conn.execute(
            f"INSERT INTO game_states ({', '.join(_COLUMNS)}) VALUES ({placeholders})",
            _session_values(session),
        )
    except sqlite3.IntegrityError as e:
        raise ConflictError(
            f"Game state for theme '{session.theme_id}' was created concurrently, retry the save"
        ) from e


def update_session(conn: sqlite3.Connection, session: Session) -> None:
    """Overwrite every mutable column. Identity and created_at stay put."""
    mutable = [c for c in _COLUMNS if c not in ("player_id", "theme_id", "created_at")]
    values = dict(zip(_COLUMNS, _session_values(session)))
    conn.execute(
        f"UPDATE game_states SET {', '.join(f'{c} = ?' for c in mutable)} "
        "WHERE player_id = ? AND theme_id = ?",
        [values[c] for c in mutable] + [session.player_id, session.theme_id],
    )


def delete_session(conn: sqlite3.Connection, player_id: str, theme_id: str) -> bool:
    cur = conn.execute(
        "DELETE FROM game_states WHERE player_id = ? AND theme_id = ?",
        (player_id, theme_id),
    )
    return cur.rowcount > 0


def clear_compaction_flag(player_id: str, theme_id: str, job_id: str) -> bool:
    """Release the compaction guard if `job_id` still owns the session.

    Returns False when the row is gone or another job owns it now.
    """
    with transaction() as conn:
        cur = conn.execute(
            "UPDATE game_states SET compaction_in_flight = 0, compaction_job_id = NULL "
            "WHERE player_id = ? AND theme_id = ? AND compaction_job_id = ?",
            (player_id, theme_id, job_id),
        )
        return cur.rowcount > 0


def release_all_compaction_flags() -> int:
    """Clear every compaction guard. Only safe when no compaction is running,
    i.e. at startup of a single-process deployment."""
    with transaction() as conn:
        cur = conn.execute(
            "UPDATE game_states SET compaction_in_flight = 0, compaction_job_id = NULL "
            "WHERE compaction_in_flight = 1"
        )
        return cur.rowcount
