"""Request-scoped access to app-wide singletons kept on app.state."""

from fastapi import Request

from anomady.gamestate import CompactionScheduler
from anomady.usage import UsageLimiter


def get_scheduler(request: Request) -> CompactionScheduler | None:
    return getattr(request.app.state, "compaction", None)


def get_usage_limiter(request: Request) -> UsageLimiter:
    return request.app.state.usage_limiter


def caller_key(request: Request) -> str:
    """Key used for usage limits: the client address, or "unknown"."""
    return request.client.host if request.client else "unknown"
