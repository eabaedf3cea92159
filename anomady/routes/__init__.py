"""FastAPI API endpoints under /api/v1.

Endpoint groups: game states (save/load/delete), progression (read,
boon), world shards, theme interactions, narration proxy, settings and
health. Player-owned resources are nested under
/api/v1/players/{player_id}/.

Errors from anomady.errors are rendered by the handlers in anomady.app as
{"error": {"message", "code", "details"?}}.
"""

from fastapi import APIRouter

from .gamestates import router as gamestates_router
from .interactions import router as interactions_router
from .narration import router as narration_router
from .progress import router as progress_router
from .settings import router as settings_router
from .shards import router as shards_router

router = APIRouter()
router.include_router(settings_router)
router.include_router(gamestates_router)
router.include_router(progress_router)
router.include_router(shards_router)
router.include_router(interactions_router)
router.include_router(narration_router)
