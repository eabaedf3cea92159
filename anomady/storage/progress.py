"""Per-theme player progression (level, XP, stat bonuses, traits).

Three ways in, in priority order:
  1. Full snapshot from the client. Create takes every supplied field;
     update overwrites level, current_xp and acquired_trait_keys only.
     Stat bonuses are never touched on update (boons own them).
  2. Legacy XP delta. Create at level 1 with current_xp = delta, or add
     the delta to an existing record. Level is never derived from XP here.
  3. Neither. Create a zeroed record if none exists so reads never miss.
"""

import logging
import sqlite3
from typing import Any

from anomady.errors import ValidationError
from anomady.models import STAT_BONUSES, ProgressRecord

from .core import dumps, loads, reader, transaction, utcnow

logger = logging.getLogger(__name__)


def _unique(keys: list[str]) -> list[str]:
    return list(dict.fromkeys(keys))


def _row_to_progress(row: sqlite3.Row) -> ProgressRecord:
    return ProgressRecord(
        player_id=row["player_id"],
        theme_id=row["theme_id"],
        level=row["level"],
        current_xp=row["current_xp"],
        max_integrity_bonus=row["max_integrity_bonus"],
        max_willpower_bonus=row["max_willpower_bonus"],
        aptitude_bonus=row["aptitude_bonus"],
        resilience_bonus=row["resilience_bonus"],
        acquired_trait_keys=loads(row["acquired_trait_keys"], []),
        updated_at=row["updated_at"],
    )


def get_progress(conn: sqlite3.Connection, player_id: str, theme_id: str) -> ProgressRecord | None:
    row = conn.execute(
        "SELECT * FROM theme_progress WHERE player_id = ? AND theme_id = ?",
        (player_id, theme_id),
    ).fetchone()
    return _row_to_progress(row) if row else None


def load_progress(player_id: str, theme_id: str) -> ProgressRecord | None:
    with reader() as conn:
        return get_progress(conn, player_id, theme_id)


def _insert(conn: sqlite3.Connection, record: ProgressRecord) -> None:
    conn.execute(
        "INSERT INTO theme_progress (player_id, theme_id, level, current_xp, "
        "max_integrity_bonus, max_willpower_bonus, aptitude_bonus, resilience_bonus, "
        "acquired_trait_keys, updated_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
        (
            record.player_id,
            record.theme_id,
            record.level,
            record.current_xp,
            record.max_integrity_bonus,
            record.max_willpower_bonus,
            record.aptitude_bonus,
            record.resilience_bonus,
            dumps(record.acquired_trait_keys),
            record.updated_at,
        ),
    )


def merge_progress(
    conn: sqlite3.Connection,
    player_id: str,
    theme_id: str,
    snapshot: dict[str, Any] | None = None,
    xp_delta: int | None = None,
) -> ProgressRecord:
    """Apply a save's progression input and return the resulting record.

    `snapshot` keys: level, current_xp, acquired_trait_keys and, honoured on
    create only, the STAT_BONUSES names. A snapshot always wins over a
    delta supplied alongside it.
    """
    existing = get_progress(conn, player_id, theme_id)
    now = utcnow()

    if snapshot is not None:
        if existing is None:
            record = ProgressRecord(
                player_id=player_id,
                theme_id=theme_id,
                level=snapshot.get("level") or 1,
                current_xp=snapshot.get("current_xp") or 0,
                acquired_trait_keys=_unique(snapshot.get("acquired_trait_keys") or []),
                updated_at=now,
                **{k: snapshot.get(k) or 0 for k in STAT_BONUSES},
            )
            _insert(conn, record)
            logger.debug("progress created from snapshot player=%s theme=%s", player_id, theme_id)
            return record
        record = existing.model_copy(update={
            "level": snapshot.get("level") or 1,
            "current_xp": snapshot.get("current_xp") or 0,
            "acquired_trait_keys": _unique(snapshot.get("acquired_trait_keys") or []),
            "updated_at": now,
        })
        conn.execute(
            "UPDATE theme_progress SET level = ?, current_xp = ?, acquired_trait_keys = ?, "
            "updated_at = ? WHERE player_id = ? AND theme_id = ?",
            (record.level, record.current_xp, dumps(record.acquired_trait_keys), now,
             player_id, theme_id),
        )
        return record

    if xp_delta is not None:
        if xp_delta < 0:
            raise ValidationError("xp_delta must be non-negative.")
        if existing is None:
            record = ProgressRecord(
                player_id=player_id, theme_id=theme_id, current_xp=xp_delta, updated_at=now,
            )
            _insert(conn, record)
            return record
        record = existing.model_copy(update={
            "current_xp": existing.current_xp + xp_delta,
            "updated_at": now,
        })
        conn.execute(
            "UPDATE theme_progress SET current_xp = current_xp + ?, updated_at = ? "
            "WHERE player_id = ? AND theme_id = ?",
            (xp_delta, now, player_id, theme_id),
        )
        return record

    if existing is None:
        record = ProgressRecord(player_id=player_id, theme_id=theme_id, updated_at=now)
        _insert(conn, record)
        return record
    return existing


def apply_boon(player_id: str, theme_id: str, attribute: str, value: int) -> ProgressRecord:
    """Increase one stat bonus. Creates a zeroed record first if needed."""
    if attribute not in STAT_BONUSES:
        raise ValidationError(
            "Unknown boon attribute.",
            details=[f"attribute must be one of: {', '.join(STAT_BONUSES)}"],
        )
    if value <= 0:
        raise ValidationError("Boon value must be positive.")

    with transaction() as conn:
        merge_progress(conn, player_id, theme_id)
        # attribute is whitelisted above
        conn.execute(
            f"UPDATE theme_progress SET {attribute} = {attribute} + ?, updated_at = ? "
            "WHERE player_id = ? AND theme_id = ?",
            (value, utcnow(), player_id, theme_id),
        )
        record = get_progress(conn, player_id, theme_id)
    assert record is not None
    logger.info("boon applied player=%s theme=%s %s+%d", player_id, theme_id, attribute, value)
    return record
