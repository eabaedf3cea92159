"""Progression endpoints: read a ProgressRecord, apply a boon."""

from fastapi import APIRouter

from anomady import storage
from anomady.errors import NotFoundError

from .models import BoonBody

router = APIRouter()


@router.get("/players/{player_id}/themes/{theme_id}/progress")
async def get_progress(player_id: str, theme_id: str):
    record = storage.load_progress(player_id, theme_id)
    if record is None:
        raise NotFoundError("No progress recorded for this theme.", code="PROGRESS_NOT_FOUND")
    return record.model_dump()


@router.post("/players/{player_id}/themes/{theme_id}/boon")
async def apply_boon(player_id: str, theme_id: str, body: BoonBody):
    """Increase one stat bonus (max_integrity_bonus, aptitude_bonus, ...)."""
    return storage.apply_boon(player_id, theme_id, body.attribute, body.value).model_dump()
