"""Theme interaction endpoints (playing / liked flags)."""

from fastapi import APIRouter

from anomady import storage

from .models import LikeBody

router = APIRouter()


@router.get("/players/{player_id}/theme-interactions")
async def list_interactions(player_id: str):
    return {i.theme_id: i.model_dump() for i in storage.list_interactions(player_id)}


@router.put("/players/{player_id}/theme-interactions/{theme_id}")
async def set_liked(player_id: str, theme_id: str, body: LikeBody):
    """Like or unlike a theme."""
    return storage.set_liked(player_id, theme_id, body.is_liked).model_dump()
