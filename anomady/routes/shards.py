"""World shard endpoints: list, toggle, delete, reset, shaped-themes summary."""

from fastapi import APIRouter

from anomady import storage
from anomady.errors import NotFoundError

from .models import ShardStatusBody

router = APIRouter()

_SHARD_NOT_FOUND = "WORLD_SHARD_NOT_FOUND"


@router.get("/players/{player_id}/themes/{theme_id}/worldshards")
async def list_shards(player_id: str, theme_id: str):
    return [s.model_dump() for s in storage.list_shards(player_id, theme_id)]


@router.delete("/players/{player_id}/themes/{theme_id}/worldshards")
async def reset_shards(player_id: str, theme_id: str):
    """Delete every world shard of a theme."""
    return {"deleted": storage.reset_shards(player_id, theme_id)}


@router.put("/players/{player_id}/worldshards/{shard_id}/status")
async def set_shard_status(player_id: str, shard_id: int, body: ShardStatusBody):
    """Toggle whether a shard is used to seed new games."""
    shard = storage.set_shard_active(player_id, shard_id, body.is_active_for_new_games)
    if shard is None:
        raise NotFoundError("World shard not found.", code=_SHARD_NOT_FOUND)
    return shard.model_dump()


@router.delete("/players/{player_id}/worldshards/{shard_id}")
async def delete_shard(player_id: str, shard_id: int):
    if not storage.delete_shard(player_id, shard_id):
        raise NotFoundError("World shard not found.", code=_SHARD_NOT_FOUND)
    return {"ok": True}


@router.get("/players/{player_id}/shaped-themes-summary")
async def shaped_themes_summary(player_id: str):
    """Per theme: whether it has shards and how many are active."""
    return storage.shaped_themes_summary(player_id)
