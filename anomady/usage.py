"""Per-caller LLM usage limits with hourly and daily windows.

Each (caller key, model) pair has two counters. A counter restarts at 1
when its window (one hour / 24 hours since its last reset) has passed.
Callers are tracked in an LRU-bounded map so a flood of distinct
addresses cannot grow memory without bound; an evicted caller simply
starts over with fresh counters.
"""

import logging
import threading
from collections import OrderedDict
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Any

from anomady.errors import ModelNotAllowedError, UsageLimitError

logger = logging.getLogger(__name__)

HOUR = timedelta(hours=1)
DAY = timedelta(hours=24)

USER_TIERS: dict[str, dict[str, dict[str, int]]] = {
    "anonymous": {
        "gemini-1.5-flash-latest": {"hourly_limit": 10, "daily_limit": 25},
    },
    "free": {
        "gemini-1.5-flash-latest": {"hourly_limit": 25, "daily_limit": 100},
    },
    "pro": {
        "gemini-1.5-flash-latest": {"hourly_limit": 25, "daily_limit": 100},
        "gemini-2.5-flash-preview-04-17": {"hourly_limit": 25, "daily_limit": 50},
    },
}

_EPOCH = datetime.fromtimestamp(0, tz=timezone.utc)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _fresh_counter() -> dict[str, Any]:
    return {"hourly": 0, "daily": 0, "last_hourly_reset": _EPOCH, "last_daily_reset": _EPOCH}


class UsageLimiter:
    """Thread-safe, bounded usage tracker for one tier table."""

    def __init__(
        self,
        tier: str = "anonymous",
        tiers: dict[str, dict[str, dict[str, int]]] | None = None,
        max_callers: int = 10_000,
        clock: Callable[[], datetime] = _now,
    ) -> None:
        self._limits = (tiers or USER_TIERS)[tier]
        self._tier = tier
        self._max_callers = max_callers
        self._clock = clock
        self._usage: OrderedDict[str, dict[str, dict[str, Any]]] = OrderedDict()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._usage)

    def _current(self, counter: dict[str, Any], now: datetime) -> tuple[int, int]:
        hourly = 0 if counter["last_hourly_reset"] < now - HOUR else counter["hourly"]
        daily = 0 if counter["last_daily_reset"] < now - DAY else counter["daily"]
        return hourly, daily

    def _model_limits(self, key: str, model: str) -> dict[str, int]:
        limits = self._limits.get(model)
        if limits is None:
            logger.warning("caller %s (tier %s) tried disallowed model %s", key, self._tier, model)
            raise ModelNotAllowedError(f"The '{model}' model is not available for your tier.")
        return limits

    def check(self, key: str, model: str) -> None:
        """Raise if `key` may not call `model` right now."""
        limits = self._model_limits(key, model)
        now = self._clock()
        with self._lock:
            counter = self._usage.get(key, {}).get(model) or _fresh_counter()
            hourly, daily = self._current(counter, now)
        if hourly >= limits["hourly_limit"] or daily >= limits["daily_limit"]:
            logger.warning(
                "API limit for model %s exceeded for %s. Hourly: %d/%d, Daily: %d/%d",
                model, key, hourly, limits["hourly_limit"], daily, limits["daily_limit"],
            )
            raise UsageLimitError("You have exceeded your API call limit for this period.")

    def record(self, key: str, model: str) -> dict[str, Any]:
        """Count one successful call and return the caller's usage snapshot."""
        self._model_limits(key, model)
        now = self._clock()
        with self._lock:
            per_model = self._usage.pop(key, {})
            counter = per_model.get(model) or _fresh_counter()
            hourly_expired = counter["last_hourly_reset"] < now - HOUR
            daily_expired = counter["last_daily_reset"] < now - DAY
            per_model[model] = {
                "hourly": 1 if hourly_expired else counter["hourly"] + 1,
                "daily": 1 if daily_expired else counter["daily"] + 1,
                "last_hourly_reset": now if hourly_expired else counter["last_hourly_reset"],
                "last_daily_reset": now if daily_expired else counter["last_daily_reset"],
            }
            self._usage[key] = per_model
            while len(self._usage) > self._max_callers:
                self._usage.popitem(last=False)
            return self._snapshot(per_model, now)

    def snapshot(self, key: str) -> dict[str, Any]:
        with self._lock:
            return self._snapshot(self._usage.get(key, {}), self._clock())

    def _snapshot(self, per_model: dict[str, dict[str, Any]], now: datetime) -> dict[str, Any]:
        result: dict[str, Any] = {}
        for model, limits in self._limits.items():
            hourly, daily = self._current(per_model.get(model) or _fresh_counter(), now)
            result[model] = {
                "hourly": {"count": hourly, "limit": limits["hourly_limit"]},
                "daily": {"count": daily, "limit": limits["daily_limit"]},
            }
        return result
