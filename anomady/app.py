import logging
import os
from pathlib import Path

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from anomady import llm, storage
from anomady.errors import GameStateError
from anomady.gamestate import CompactionScheduler
from anomady.narrative import LoreEvolver, Summarizer
from anomady.routes import router
from anomady.usage import UsageLimiter

load_dotenv(Path(__file__).parent.parent / ".env")

DEFAULT_DATA_DIR = Path(__file__).parent.parent / "data"
LOG_FORMAT = "%(asctime)s [anomady] [%(levelname)s] %(name)s: %(message)s"

logger = logging.getLogger(__name__)


def configure_logging(level: str | None = None) -> None:
    """Install one stream handler on the `anomady` logger at LOG_LEVEL."""
    resolved = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    root = logging.getLogger("anomady")
    root.setLevel(getattr(logging, resolved, logging.INFO))
    if not root.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root.addHandler(handler)


def build_scheduler() -> CompactionScheduler:
    """Scheduler whose collaborators pick up the LLM settings at call time."""

    async def summarize(turns, language):
        return await Summarizer(llm.from_config(storage.get_config()))(turns, language)

    async def evolve_lore(turns, current_lore, base_lore, theme_name, language):
        evolver = LoreEvolver(llm.from_config(storage.get_config()))
        return await evolver(turns, current_lore, base_lore, theme_name, language)

    return CompactionScheduler(summarize, evolve_lore)


async def _game_state_error(request: Request, exc: GameStateError) -> JSONResponse:
    return JSONResponse(status_code=exc.status, content=exc.to_dict())


async def _request_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    details = [
        f"{'.'.join(str(p) for p in err['loc'] if p != 'body')}: {err['msg']}"
        for err in exc.errors()
    ]
    logger.warning("invalid payload on %s %s: %s", request.method, request.url.path, details)
    return JSONResponse(
        status_code=400,
        content={"error": {"message": "Invalid payload.", "code": "INVALID_PAYLOAD", "details": details}},
    )


async def _http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": {"message": str(exc.detail), "code": f"HTTP_{exc.status_code}"}},
    )


def create_app(data_dir: Path | None = None, presets_dir: Path | None = None) -> FastAPI:
    configure_logging()
    resolved = data_dir or Path(os.getenv("DATA_DIR", str(DEFAULT_DATA_DIR)))
    storage.init_storage(resolved, presets_dir=presets_dir)

    # No compaction survives a restart; flags left by a killed process are stale.
    released = storage.release_all_compaction_flags()
    if released:
        logger.warning("released %d stale compaction flag(s) at startup", released)

    app = FastAPI(title="Anomady")
    app.state.compaction = build_scheduler()
    app.state.usage_limiter = UsageLimiter()

    app.add_exception_handler(GameStateError, _game_state_error)
    app.add_exception_handler(RequestValidationError, _request_validation_error)
    app.add_exception_handler(StarletteHTTPException, _http_error)

    app.include_router(router, prefix="/api/v1")
    return app


# Default app instance for uvicorn (uses DATA_DIR env var or default)
app = create_app()
