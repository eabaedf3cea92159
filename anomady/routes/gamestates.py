"""Game state save / load / delete endpoints."""

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from anomady import storage
from anomady.gamestate import (
    CompactionScheduler,
    delete_game_state,
    load_game_state,
    save_game_state,
    session_view,
)
from anomady.models import GameStatePayload

from .deps import get_scheduler

router = APIRouter()


@router.post("/players/{player_id}/gamestates")
async def save_gamestate(
    player_id: str,
    body: GameStatePayload,
    scheduler: CompactionScheduler | None = Depends(get_scheduler),
):
    """Save a game state. History in the response is cut to the recent window."""
    result = save_game_state(player_id, body, scheduler=scheduler)
    window = storage.get_config()["history"]["recent_window"]
    return {
        "session": session_view(result.session, window),
        "progress": result.progress.model_dump(),
        "reconciliation": result.reconciliation,
        "shard_unlocked": result.shard_unlocked,
        "compaction_scheduled": result.compaction_job is not None,
    }


@router.get("/players/{player_id}/gamestates/{theme_id}")
async def get_gamestate(player_id: str, theme_id: str):
    """Load a game state. A miss still returns base lore and any progress."""
    result = load_game_state(player_id, theme_id)
    progress = result.progress.model_dump() if result.progress else None
    if not result.found:
        return JSONResponse(
            status_code=404,
            content={
                "error": {"message": "Game state not found.", "code": "GAME_STATE_NOT_FOUND"},
                "base_lore": result.base_lore,
                "theme_name": result.theme_name,
                "progress": progress,
            },
        )
    return {
        "session": session_view(result.session),
        "progress": progress,
        "base_lore": result.base_lore,
        "theme_name": result.theme_name,
    }


@router.delete("/players/{player_id}/gamestates/{theme_id}")
async def remove_gamestate(player_id: str, theme_id: str):
    """Delete a game state. Progress and world shards are kept."""
    delete_game_state(player_id, theme_id)
    return {"ok": True}
