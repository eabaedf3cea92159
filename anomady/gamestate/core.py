"""Save, load and delete of game states.

A save commits four writes in one transaction: the reconciled session, the
progress merge, an optional world shard unlock and the interaction touch.
Compaction, when armed, runs after the commit and outside of it.
"""

import logging
import sqlite3
from typing import Any

from pydantic import BaseModel

from anomady import storage
from anomady.errors import GameStateError, NotFoundError, TransactionError, ValidationError
from anomady.models import GameStatePayload, ProgressRecord, Session

from .compaction import CompactionJob, CompactionScheduler, arm_job
from .history import recent_tail, reconcile

logger = logging.getLogger(__name__)


class SaveResult(BaseModel):
    session: Session
    progress: ProgressRecord
    reconciliation: str
    shard_unlocked: bool = False
    compaction_job: CompactionJob | None = None


class LoadResult(BaseModel):
    found: bool
    session: Session | None = None
    progress: ProgressRecord | None = None
    base_lore: str = ""
    theme_name: str = ""


def session_view(session: Session, window: int | None = None) -> dict[str, Any]:
    """Client-facing dict of a session; history cut to `window` if given."""
    view = session.model_dump(exclude={"compaction_job_id"})
    if window is not None:
        view["raw_history"] = [t.model_dump() for t in recent_tail(session.raw_history, window)]
    return view


def _validate(player_id: str, payload: GameStatePayload, history_cfg: dict[str, Any]) -> None:
    errors = []
    if not player_id or not player_id.strip():
        errors.append("player_id is required and must be a non-empty string.")
    limit = history_cfg["max_history_turns"]
    if len(payload.game_history) > limit:
        errors.append(f"game_history has {len(payload.game_history)} turns, the limit is {limit}.")
    max_chars = history_cfg["max_turn_chars"]
    oversized = [i for i, t in enumerate(payload.game_history) if len(t.content) > max_chars]
    if oversized:
        errors.append(
            f"game_history turns {oversized[:5]} exceed {max_chars} characters.",
        )
    if errors:
        logger.warning("game state payload rejected for player %s: %s", player_id, errors)
        raise ValidationError("Invalid game state payload.", details=errors)


def save_game_state(
    player_id: str,
    payload: GameStatePayload,
    scheduler: CompactionScheduler | None = None,
) -> SaveResult:
    """Reconcile and commit one save, then kick off compaction if armed.

    Raises ValidationError before writing anything, ConflictError when a
    concurrent create won the race, TransactionError when the commit fails.
    """
    config = storage.get_config()
    history_cfg = config["history"]
    _validate(player_id, payload, history_cfg)

    theme = storage.get_theme(payload.theme_id, payload.narrative_language)
    if theme is None:
        raise ValidationError(
            "Invalid game state payload.", details=[f"Unknown theme_id '{payload.theme_id}'."],
        )

    job: CompactionJob | None = None
    try:
        with storage.transaction() as conn:
            stored = storage.get_session(conn, player_id, payload.theme_id)
            rec = reconcile(stored, payload.game_history, theme.base_lore, history_cfg["recent_window"])
            now = storage.utcnow()

            session = Session(
                player_id=player_id,
                theme_id=payload.theme_id,
                player_identifier=payload.player_identifier,
                raw_history=rec.history,
                cumulative_summary=rec.summary,
                world_lore=rec.lore,
                prompt_mode=payload.prompt_mode,
                narrative_language=payload.narrative_language,
                dashboard_snapshot=payload.dashboard_snapshot,
                indicator_snapshot=payload.indicator_snapshot,
                suggested_actions=payload.suggested_actions,
                panel_states=payload.panel_states,
                pending_choice=payload.pending_choice,
                compaction_in_flight=stored.compaction_in_flight if stored else False,
                compaction_job_id=stored.compaction_job_id if stored else None,
                model_used=payload.model_name or config["default_model"],
                created_at=stored.created_at if stored else now,
                updated_at=now,
            )

            if rec.is_reset and session.compaction_in_flight:
                # A job armed before the reset must not write into the new game
                logger.info(
                    "reset of player=%s theme=%s revokes compaction %s",
                    player_id, payload.theme_id, session.compaction_job_id,
                )
                session.compaction_in_flight = False
                session.compaction_job_id = None

            if not session.compaction_in_flight:
                job = arm_job(
                    player_id, payload.theme_id, session.raw_history,
                    session.cumulative_summary, session.world_lore,
                    theme.base_lore, theme.name, payload.narrative_language,
                    history_cfg["max_buffer"], history_cfg["chunk_size"],
                )
                if job is not None:
                    session.compaction_in_flight = True
                    session.compaction_job_id = job.job_id

            if stored is None:
                storage.insert_session(conn, session)
            else:
                storage.update_session(conn, session)

            progress = storage.merge_progress(
                conn, player_id, payload.theme_id,
                snapshot=payload.progress.model_dump(exclude_none=True) if payload.progress else None,
                xp_delta=payload.xp_delta,
            )

            unlocked = False
            if payload.new_lore_unlock is not None:
                unlocked = storage.unlock_shard(
                    conn, player_id, payload.theme_id, payload.new_lore_unlock.model_dump(),
                )

            storage.touch_interaction(conn, player_id, payload.theme_id, now)
    except GameStateError:
        raise
    except sqlite3.Error as e:
        logger.error(
            "transaction error saving game state for player %s, theme %s",
            player_id, payload.theme_id, exc_info=True,
        )
        raise TransactionError("Failed to save game state due to a server error.") from e

    logger.info(
        "game state saved player=%s theme=%s turns=%d (%s)%s",
        player_id, payload.theme_id, len(session.raw_history), rec.kind,
        ", compaction armed" if job else "",
    )
    if job is not None and scheduler is not None:
        scheduler.schedule(job)

    return SaveResult(
        session=session,
        progress=progress,
        reconciliation=rec.kind,
        shard_unlocked=unlocked,
        compaction_job=job,
    )


def load_game_state(player_id: str, theme_id: str) -> LoadResult:
    """Committed session plus progress; found=False still carries base lore."""
    session = storage.load_session(player_id, theme_id)
    progress = storage.load_progress(player_id, theme_id)
    language = session.narrative_language if session else "en"
    theme = storage.get_theme(theme_id, language)
    base_lore = theme.base_lore if theme else ""
    theme_name = theme.name if theme else theme_id

    if session is None:
        logger.info("no game state found for player %s, theme %s", player_id, theme_id)
        return LoadResult(found=False, progress=progress, base_lore=base_lore, theme_name=theme_name)

    if not session.world_lore:
        session.world_lore = base_lore
    return LoadResult(
        found=True, session=session, progress=progress, base_lore=base_lore, theme_name=theme_name,
    )


def delete_game_state(player_id: str, theme_id: str) -> None:
    """Remove the session and mark the theme not playing. Progress is kept."""
    try:
        with storage.transaction() as conn:
            if not storage.delete_session(conn, player_id, theme_id):
                raise NotFoundError("Game state not found, nothing to delete.")
            storage.mark_not_playing(conn, player_id, theme_id)
    except GameStateError:
        raise
    except sqlite3.Error as e:
        logger.error(
            "transaction error deleting game state for player %s, theme %s",
            player_id, theme_id, exc_info=True,
        )
        raise TransactionError("Failed to delete game state.") from e
    logger.info("game state deleted for player %s, theme %s", player_id, theme_id)
